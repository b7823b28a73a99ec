"""Instruction builder tests: account ordering and flags."""

import pytest

from keyvault.address import SYSTEM_PROGRAM_ID, VAULT_PROGRAM_ID, Keypair, derive_user_address, derive_vault_address
from keyvault.client import add_credential, delete_credential, init_user_account, init_vault_account
from keyvault.errors import MalformedInstruction
from keyvault.instruction import EditOrDelete, decode_instruction


OWNER = Keypair.from_label("alice").pubkey


def _keys(ix):
    return [(m.pubkey, m.is_signer, m.is_writable) for m in ix.accounts]


def test_init_user_ordering():
    user, _ = derive_user_address(OWNER)
    ix = init_user_account(OWNER)
    assert ix.program_id == VAULT_PROGRAM_ID
    assert _keys(ix) == [(OWNER, True, True), (SYSTEM_PROGRAM_ID, False, False), (user, False, True)]
    assert ix.data == b"\x00"


def test_init_vault_ordering():
    user, _ = derive_user_address(OWNER)
    vault, _ = derive_vault_address(OWNER, "work")
    ix = init_vault_account(OWNER, "work")
    assert _keys(ix) == [
        (OWNER, True, True),
        (user, False, True),
        (SYSTEM_PROGRAM_ID, False, False),
        (vault, False, True),
    ]


def test_credential_ordering(make_credential):
    vault, _ = derive_vault_address(OWNER, "work")
    ix = add_credential(OWNER, "work", make_credential("a"))
    assert _keys(ix) == [(OWNER, True, True), (vault, False, True), (SYSTEM_PROGRAM_ID, False, False)]


def test_delete_sends_zero_payload():
    op = decode_instruction(delete_credential(OWNER, "work", 3).data)
    assert op == EditOrDelete(name="work", index=3, delete_flag=1, payload=bytes(64))


def test_unsigned_builder():
    assert not init_user_account(OWNER, signer=False).accounts[0].is_signer


def test_name_checked_before_derivation():
    with pytest.raises(MalformedInstruction):
        init_vault_account(OWNER, "n" * 33)
