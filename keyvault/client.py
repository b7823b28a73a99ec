"""keyvault.client

Instruction builders and a thin wallet-side client.

The builders fix the account ordering each handler expects; ``VaultClient``
signs and submits them against a ``Ledger`` and decodes the resulting state.
"""

from __future__ import annotations

from typing import List, Optional, Union

from keyvault.address import (
    SYSTEM_PROGRAM_ID,
    VAULT_PROGRAM_ID,
    Keypair,
    Pubkey,
    derive_user_address,
    derive_vault_address,
)
from keyvault.instruction import (
    AddCredential,
    EditOrDelete,
    InitUserAccount,
    InitVaultAccount,
    encode_instruction,
)
from keyvault.ledger import AccountMeta, Instruction, Ledger, Transaction, TransactionResult
from keyvault.state import CREDENTIAL_SIZE, Credential, UserAccount, VaultAccount

CredentialLike = Union[Credential, bytes]


def _payload(credential: Optional[CredentialLike]) -> bytes:
    if credential is None:
        return bytes(CREDENTIAL_SIZE)
    if isinstance(credential, Credential):
        return credential.pack()
    return bytes(credential)


def _wallet(owner: Pubkey, signer: bool = True) -> AccountMeta:
    return AccountMeta(owner, is_signer=signer, is_writable=True)


def init_user_account(owner: Pubkey, program_id: Pubkey = VAULT_PROGRAM_ID, signer: bool = True) -> Instruction:
    user, _ = derive_user_address(owner, program_id)
    return Instruction(
        program_id=program_id,
        accounts=[
            _wallet(owner, signer),
            AccountMeta(SYSTEM_PROGRAM_ID),
            AccountMeta(user, is_writable=True),
        ],
        data=encode_instruction(InitUserAccount()),
    )


def init_vault_account(
    owner: Pubkey,
    name: str,
    program_id: Pubkey = VAULT_PROGRAM_ID,
    signer: bool = True,
) -> Instruction:
    data = encode_instruction(InitVaultAccount(name=name))
    user, _ = derive_user_address(owner, program_id)
    vault, _ = derive_vault_address(owner, name, program_id)
    return Instruction(
        program_id=program_id,
        accounts=[
            _wallet(owner, signer),
            AccountMeta(user, is_writable=True),
            AccountMeta(SYSTEM_PROGRAM_ID),
            AccountMeta(vault, is_writable=True),
        ],
        data=data,
    )


def _vault_metas(owner: Pubkey, name: str, program_id: Pubkey, signer: bool) -> List[AccountMeta]:
    vault, _ = derive_vault_address(owner, name, program_id)
    return [
        _wallet(owner, signer),
        AccountMeta(vault, is_writable=True),
        AccountMeta(SYSTEM_PROGRAM_ID),
    ]


def add_credential(
    owner: Pubkey,
    name: str,
    credential: CredentialLike,
    program_id: Pubkey = VAULT_PROGRAM_ID,
    signer: bool = True,
) -> Instruction:
    data = encode_instruction(AddCredential(name=name, payload=_payload(credential)))
    return Instruction(program_id=program_id, accounts=_vault_metas(owner, name, program_id, signer), data=data)


def edit_credential(
    owner: Pubkey,
    name: str,
    index: int,
    credential: CredentialLike,
    program_id: Pubkey = VAULT_PROGRAM_ID,
    signer: bool = True,
) -> Instruction:
    op = EditOrDelete(name=name, index=index, delete_flag=0, payload=_payload(credential))
    data = encode_instruction(op)
    return Instruction(program_id=program_id, accounts=_vault_metas(owner, name, program_id, signer), data=data)


def delete_credential(
    owner: Pubkey,
    name: str,
    index: int,
    program_id: Pubkey = VAULT_PROGRAM_ID,
    signer: bool = True,
) -> Instruction:
    op = EditOrDelete(name=name, index=index, delete_flag=1, payload=_payload(None))
    data = encode_instruction(op)
    return Instruction(program_id=program_id, accounts=_vault_metas(owner, name, program_id, signer), data=data)


class VaultClient:
    """Wallet-side helper: build, sign, submit, and read back vault state."""

    def __init__(self, ledger: Ledger, wallet: Keypair, program_id: Pubkey = VAULT_PROGRAM_ID):
        self.ledger = ledger
        self.wallet = wallet
        self.program_id = program_id

    @property
    def owner(self) -> Pubkey:
        return self.wallet.pubkey

    @property
    def user_address(self) -> Pubkey:
        return derive_user_address(self.owner, self.program_id)[0]

    def vault_address(self, name: str) -> Pubkey:
        return derive_vault_address(self.owner, name, self.program_id)[0]

    def send(self, *instructions: Instruction) -> TransactionResult:
        tx = Transaction(instructions=list(instructions), recent_blockhash=self.ledger.latest_blockhash)
        signers = [self.wallet] if tx.required_signers() else []
        return self.ledger.process_transaction(tx.sign(*signers))

    def init_user(self) -> TransactionResult:
        return self.send(init_user_account(self.owner, self.program_id))

    def init_vault(self, name: str) -> TransactionResult:
        return self.send(init_vault_account(self.owner, name, self.program_id))

    def add(self, name: str, credential: CredentialLike) -> TransactionResult:
        return self.send(add_credential(self.owner, name, credential, self.program_id))

    def edit(self, name: str, index: int, credential: CredentialLike) -> TransactionResult:
        return self.send(edit_credential(self.owner, name, index, credential, self.program_id))

    def delete(self, name: str, index: int) -> TransactionResult:
        return self.send(delete_credential(self.owner, name, index, self.program_id))

    def fetch_user(self) -> Optional[UserAccount]:
        acct = self.ledger.get_account(self.user_address)
        if acct is None or not acct.data:
            return None
        return UserAccount.unpack(acct.data)

    def fetch_vault(self, name: str) -> Optional[VaultAccount]:
        acct = self.ledger.get_account(self.vault_address(name))
        if acct is None or not acct.data:
            return None
        return VaultAccount.unpack(acct.data)
