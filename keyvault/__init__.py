"""
KEYVAULT: Credential Vault Program

Per-owner vaults of encrypted credentials stored in size-exact,
deterministically addressed accounts on a host ledger.

Architecture
────────────

    ┌─────────────────────────────────────────────────────────────────────────┐
    │                          KEYVAULT PROGRAM                                │
    │                                                                          │
    │  ENTRYPOINT                                                              │
    │    processor.py   Vault Processor: authorize, verify, mutate            │
    │                                                                          │
    │  ACCOUNT ENGINE                                                          │
    │    lifecycle.py   Create / resize accounts, settle rent with payer      │
    │    address.py     Program-derived addresses (the only access check)     │
    │    state.py       Exact binary layouts for user, vault, credential      │
    │    instruction.py Discriminated-union instruction codec                 │
    │                                                                          │
    │  HOST + TOOLING                                                          │
    │    ledger.py      In-process host ledger with all-or-nothing calls      │
    │    client.py      Instruction builders and wallet client                │
    │    scenario.py    Scripted runs validated by JSON Schema                │
    │    cli.py         Developer CLI                                         │
    │                                                                          │
    └─────────────────────────────────────────────────────────────────────────┘

Core Concepts
─────────────

    User account: one per owner wallet at address derive([b"user", owner]).
    Holds the ordered list of the owner's vault addresses.

    Vault account: one per (owner, name) at derive([b"vault", owner, name]).
    Holds a 32-byte name, a back-reference to the user account, and an
    index-addressable sequence of 64-byte credentials.

    Rent floor: every account holds exactly the minimum retained balance for
    its size. Growth is paid by the owner wallet; shrinking refunds it.

Copyright (c) 2026 Momentum. All rights reserved.
"""

__version__ = "0.3.0"


def __getattr__(name):
    """Lazy import keyvault modules on first access."""

    if name in ("Pubkey", "Keypair", "find_program_address", "verify_program_address",
                "derive_user_address", "derive_vault_address", "SYSTEM_PROGRAM_ID",
                "VAULT_PROGRAM_ID"):
        from keyvault import address
        return getattr(address, name)

    if name in ("Credential", "UserAccount", "VaultAccount"):
        from keyvault import state
        return getattr(state, name)

    if name in ("decode_instruction", "encode_instruction", "InitUserAccount",
                "InitVaultAccount", "AddCredential", "EditOrDelete"):
        from keyvault import instruction
        return getattr(instruction, name)

    if name in ("Ledger", "Transaction", "TransactionResult", "Rent"):
        from keyvault import ledger
        return getattr(ledger, name)

    if name in ("VaultProcessor", "process_instruction", "install"):
        from keyvault import processor
        return getattr(processor, name)

    if name in ("VaultClient",):
        from keyvault import client
        return getattr(client, name)

    raise AttributeError(f"module 'keyvault' has no attribute '{name}'")


__all__ = [
    "__version__",
    # Addresses
    "Pubkey",
    "Keypair",
    "find_program_address",
    "verify_program_address",
    # State
    "Credential",
    "UserAccount",
    "VaultAccount",
    # Codec
    "decode_instruction",
    "encode_instruction",
    # Host
    "Ledger",
    "Transaction",
    # Program
    "VaultProcessor",
    "process_instruction",
    "VaultClient",
]
