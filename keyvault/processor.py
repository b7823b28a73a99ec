"""
Keyvault Vault Processor

Program entrypoint and per-operation handlers. Each handler follows the same
discipline:

    1. take its accounts in fixed order        (NotEnoughAccountKeys)
    2. require the owner wallet's signature    (UnauthorizedCaller)
    3. re-derive every program address it will
       touch and compare with the supplied key (AddressMismatch)
    4. check lifecycle state                   (AccountStateConflict)
    5. settle rent / resize via the lifecycle
       manager, then re-serialize state

Account lifecycle: ``absent -> initialized``; nothing moves an account back.
InitUserAccount is idempotent, InitVaultAccount is not.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

from typing import Callable, Dict, List, Optional, Sequence, Type

from keyvault.address import (
    SYSTEM_PROGRAM_ID,
    Pubkey,
    PubkeyError,
    find_program_address,
    user_seeds,
    vault_seeds,
)
from keyvault.config import get_config
from keyvault.errors import (
    AccountStateConflict,
    AddressMismatch,
    CapacityExceeded,
    IndexOutOfRange,
    InvalidInstruction,
    MalformedInstruction,
    NotEnoughAccountKeys,
    UnauthorizedCaller,
)
from keyvault.instruction import (
    AddCredential,
    EditOrDelete,
    InitUserAccount,
    InitVaultAccount,
    Operation,
    decode_instruction,
)
from keyvault.ledger import AccountInfo, InvokeContext
from keyvault.lifecycle import AccountLifecycleManager
from keyvault.observability import KeyvaultLayer, get_logger, timed_operation
from keyvault.state import Credential, UserAccount, VaultAccount

logger = get_logger("processor", KeyvaultLayer.PROCESSOR)


class VaultProcessor:
    """Executes one decoded operation against the accounts of one call."""

    def __init__(
        self,
        ctx: InvokeContext,
        accounts: Sequence[AccountInfo],
        max_account_size: Optional[int] = None,
    ):
        self.ctx = ctx
        self.accounts = list(accounts)
        self.lifecycle = AccountLifecycleManager(ctx)
        self.max_account_size = (
            max_account_size if max_account_size is not None
            else get_config().program.max_account_size.get()
        )
        self._handlers: Dict[Type, Callable[..., None]] = {
            InitUserAccount: self._init_user_account,
            InitVaultAccount: self._init_vault_account,
            AddCredential: self._add_credential,
            EditOrDelete: self._edit_or_delete,
        }

    @property
    def program_id(self) -> Pubkey:
        return self.ctx.program_id

    def process(self, op: Operation) -> None:
        handler = self._handlers.get(type(op))
        if handler is None:
            raise InvalidInstruction(getattr(op, "tag", None))
        handler(op)

    # ------------------------------------------------------------------
    # Checks
    # ------------------------------------------------------------------

    def _take_accounts(self, n: int) -> List[AccountInfo]:
        if len(self.accounts) < n:
            raise NotEnoughAccountKeys(f"expected {n} accounts, got {len(self.accounts)}")
        return self.accounts[:n]

    @staticmethod
    def _require_signer(wallet: AccountInfo) -> None:
        if not wallet.is_signer:
            raise UnauthorizedCaller(f"{wallet.key} did not sign")

    @staticmethod
    def _require_system_program(info: AccountInfo) -> None:
        if info.key != SYSTEM_PROGRAM_ID:
            raise AddressMismatch(f"expected system program, got {info.key}")

    def _verify_derived(self, info: AccountInfo, seeds: Sequence[bytes], what: str) -> int:
        """Derive the address for ``seeds`` and require it equals ``info.key``.

        Returns the bump used for the derivation.
        """
        try:
            expected, bump = find_program_address(seeds, self.program_id)
        except PubkeyError as e:
            raise MalformedInstruction(f"cannot derive {what} address: {e}") from e
        if expected != info.key:
            raise AddressMismatch(f"{what} {info.key} does not match derived address {expected}")
        return bump

    def _require_initialized(self, info: AccountInfo, what: str) -> None:
        if info.data_is_empty():
            raise AccountStateConflict(f"{what} {info.key} is not initialized")
        if info.owner != self.program_id:
            raise AccountStateConflict(f"{what} {info.key} is not owned by this program")

    def _load_vault(self, wallet: AccountInfo, vault: AccountInfo, name: str) -> VaultAccount:
        self._require_initialized(vault, "vault account")
        state = VaultAccount.unpack(vault.data)
        user_address, _ = find_program_address(user_seeds(wallet.key), self.program_id)
        if state.user_account != user_address:
            raise AccountStateConflict(f"vault {vault.key} belongs to user account {state.user_account}")
        if state.name != name:
            raise AccountStateConflict(f"vault {vault.key} is named {state.name!r}, not {name!r}")
        return state

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def _init_user_account(self, op: InitUserAccount) -> None:
        wallet, system_program, user = self._take_accounts(3)
        self._require_signer(wallet)
        self._require_system_program(system_program)
        seeds = user_seeds(wallet.key)
        bump = self._verify_derived(user, seeds, "user account")

        if not user.data_is_empty():
            if user.owner != self.program_id:
                raise AccountStateConflict(f"user account {user.key} is not owned by this program")
            self.ctx.log("User account already created!")
            return

        state = UserAccount(owner=wallet.key)
        self.lifecycle.create(seeds, bump, wallet, user, state.size)
        state.pack_into(user.data)
        self.ctx.log("User account created")
        logger.info("user account created", operation="init_user_account", owner=str(wallet.key), user=str(user.key))

    def _init_vault_account(self, op: InitVaultAccount) -> None:
        wallet, user, system_program, vault = self._take_accounts(4)
        self._require_signer(wallet)
        self._require_system_program(system_program)
        self._verify_derived(user, user_seeds(wallet.key), "user account")
        seeds = vault_seeds(wallet.key, op.name)
        bump = self._verify_derived(vault, seeds, "vault account")

        self._require_initialized(user, "user account")
        user_state = UserAccount.unpack(user.data)
        if user_state.owner != wallet.key:
            raise AccountStateConflict(f"user account {user.key} belongs to {user_state.owner}")
        if not vault.data_is_empty():
            raise AccountStateConflict(f"vault {op.name!r} already initialized at {vault.key}")

        vault_state = VaultAccount(name=op.name, user_account=user.key)
        self.lifecycle.create(seeds, bump, wallet, vault, vault_state.size)
        vault_state.pack_into(vault.data)

        old_size = user_state.size
        user_state.vaults.append(vault.key)
        self.lifecycle.resize(user, old_size, user_state.size, wallet)
        user_state.pack_into(user.data)

        self.ctx.log(f"Vault account {op.name} created")
        logger.info(
            "vault account created",
            operation="init_vault_account",
            owner=str(wallet.key),
            vault=str(vault.key),
            vault_count=len(user_state.vaults),
        )

    def _add_credential(self, op: AddCredential) -> None:
        wallet, vault, system_program = self._take_accounts(3)
        self._require_signer(wallet)
        self._require_system_program(system_program)
        self._verify_derived(vault, vault_seeds(wallet.key, op.name), "vault account")

        state = self._load_vault(wallet, vault, op.name)
        credential = Credential.unpack(op.payload)
        old_size = state.size
        new_size = state.size_for(len(state.credentials) + 1)
        if new_size > self.max_account_size:
            raise CapacityExceeded(new_size, self.max_account_size)

        self.lifecycle.resize(vault, old_size, new_size, wallet)
        state.credentials.append(credential)
        state.pack_into(vault.data)
        self.ctx.log(f"Credential added at index {len(state.credentials) - 1}")
        logger.info(
            "credential added",
            operation="add_credential",
            vault=str(vault.key),
            count=len(state.credentials),
        )

    def _edit_or_delete(self, op: EditOrDelete) -> None:
        wallet, vault, system_program = self._take_accounts(3)
        self._require_signer(wallet)
        self._require_system_program(system_program)
        self._verify_derived(vault, vault_seeds(wallet.key, op.name), "vault account")

        state = self._load_vault(wallet, vault, op.name)
        if op.index >= len(state.credentials):
            raise IndexOutOfRange(op.index, len(state.credentials))

        if not op.is_delete:
            state.credentials[op.index] = Credential.unpack(op.payload)
            state.pack_into(vault.data)
            self.ctx.log(f"Credential {op.index} replaced")
            logger.info("credential replaced", operation="edit_credential", vault=str(vault.key), index=op.index)
            return

        old_size = state.size
        self.lifecycle.resize(vault, old_size, state.size_for(len(state.credentials) - 1), wallet)
        del state.credentials[op.index]
        state.pack_into(vault.data)
        self.ctx.log(f"Credential {op.index} deleted")
        logger.info(
            "credential deleted",
            operation="delete_credential",
            vault=str(vault.key),
            index=op.index,
            count=len(state.credentials),
        )


@timed_operation(logger, "process_instruction")
def process_instruction(ctx: InvokeContext, accounts: List[AccountInfo], data: bytes) -> None:
    """Program entrypoint registered with the host ledger."""
    op = decode_instruction(data)
    ctx.log(f"Instruction: {type(op).__name__}")
    VaultProcessor(ctx, accounts).process(op)


def install(ledger, program_id: Optional[Pubkey] = None) -> Pubkey:
    """Register the vault program on ``ledger``; returns its program id."""
    from keyvault.address import VAULT_PROGRAM_ID

    pid = program_id or VAULT_PROGRAM_ID
    ledger.register_program(pid, process_instruction)
    return pid
