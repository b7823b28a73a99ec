"""
Vault program end-to-end tests.

Every test drives the program through signed transactions on the in-process
ledger and inspects the committed account state afterwards.

Run with: pytest tests/test_processor.py -v

Copyright (c) 2026 Momentum. All rights reserved.
"""

import pytest

from keyvault.address import VAULT_PROGRAM_ID, Keypair, Pubkey
from keyvault.client import VaultClient, add_credential, edit_credential, init_user_account, init_vault_account
from keyvault.config import get_config_manager
from keyvault.errors import (
    AccountStateConflict,
    AddressMismatch,
    CapacityExceeded,
    HostLedgerError,
    IndexOutOfRange,
    MalformedInstruction,
    NotEnoughAccountKeys,
    UnauthorizedCaller,
)
from keyvault.ledger import AccountMeta, Instruction, Transaction
from keyvault.state import CREDENTIAL_SIZE, VaultAccount


USER_RENT = 1_141_440
VAULT_RENT = 1_364_160
CREDENTIAL_RENT = 445_440
USER_SLOT_RENT = 222_720


def _with_accounts(ix, metas):
    return Instruction(ix.program_id, metas, ix.data)


@pytest.fixture
def vault(alice):
    assert alice.init_user().success
    assert alice.init_vault("myv").success
    return "myv"


class TestInitUserAccount:

    def test_creates_user_account(self, ledger, alice):
        before = ledger.get_balance(alice.owner)
        result = alice.init_user()

        assert result.success, result.error
        assert "Program log: User account created" in result.logs
        acct = ledger.get_account(alice.user_address)
        assert acct.owner == VAULT_PROGRAM_ID
        assert len(acct.data) == 36
        assert acct.lamports == USER_RENT
        user = alice.fetch_user()
        assert user.owner == alice.owner
        assert user.vaults == []
        assert ledger.get_balance(alice.owner) == before - USER_RENT

    def test_second_call_is_noop(self, ledger, alice):
        assert alice.init_user().success
        snapshot = ledger.to_dict()["accounts"]

        result = alice.init_user()

        assert result.success
        assert "Program log: User account already created!" in result.logs
        assert ledger.to_dict()["accounts"] == snapshot

    def test_requires_signature(self, ledger, alice):
        result = alice.send(init_user_account(alice.owner, signer=False))
        assert not result.success
        assert isinstance(result.error, UnauthorizedCaller)
        assert ledger.get_account(alice.user_address) is None

    def test_address_must_match_signer(self, ledger, alice, bob):
        ix = init_user_account(alice.owner)
        metas = list(ix.accounts)
        metas[2] = AccountMeta(bob.user_address, is_writable=True)
        result = alice.send(_with_accounts(ix, metas))
        assert isinstance(result.error, AddressMismatch)
        assert ledger.get_account(bob.user_address) is None

    def test_wrong_system_program(self, alice):
        ix = init_user_account(alice.owner)
        metas = list(ix.accounts)
        metas[1] = AccountMeta(Pubkey(b"\x01" * 32))
        result = alice.send(_with_accounts(ix, metas))
        assert isinstance(result.error, AddressMismatch)

    def test_not_enough_accounts(self, alice):
        ix = init_user_account(alice.owner)
        result = alice.send(_with_accounts(ix, list(ix.accounts)[:2]))
        assert isinstance(result.error, NotEnoughAccountKeys)
        assert result.error_code == 8

    def test_wallet_cannot_afford_rent(self, ledger):
        poor = VaultClient(ledger, Keypair.from_label("poor"))
        ledger.airdrop(poor.owner, USER_RENT - 1)
        result = poor.init_user()
        assert isinstance(result.error, HostLedgerError)
        assert ledger.get_balance(poor.owner) == USER_RENT - 1


class TestInitVaultAccount:

    def test_creates_vault_and_indexes_it(self, ledger, alice):
        assert alice.init_user().success
        before = ledger.get_balance(alice.owner)

        result = alice.init_vault("myv")

        assert result.success, result.error
        address = alice.vault_address("myv")
        vault = ledger.get_account(address)
        assert vault.owner == VAULT_PROGRAM_ID
        assert len(vault.data) == 68
        assert vault.lamports == VAULT_RENT
        state = alice.fetch_vault("myv")
        assert state.name == "myv"
        assert state.user_account == alice.user_address
        assert state.credentials == []

        user_acct = ledger.get_account(alice.user_address)
        assert len(user_acct.data) == 68
        assert user_acct.lamports == USER_RENT + USER_SLOT_RENT
        assert alice.fetch_user().vaults == [address]
        assert ledger.get_balance(alice.owner) == before - VAULT_RENT - USER_SLOT_RENT

    def test_vaults_indexed_in_creation_order(self, alice):
        assert alice.init_user().success
        for name in ("work", "personal", "café"):
            assert alice.init_vault(name).success
        assert alice.fetch_user().vaults == [
            alice.vault_address("work"),
            alice.vault_address("personal"),
            alice.vault_address("café"),
        ]

    def test_reinit_conflicts(self, ledger, alice, vault, make_credential):
        assert alice.add(vault, make_credential("one")).success
        snapshot = ledger.to_dict()["accounts"]

        result = alice.init_vault(vault)

        assert isinstance(result.error, AccountStateConflict)
        assert ledger.to_dict()["accounts"] == snapshot

    def test_requires_user_account(self, ledger, alice):
        result = alice.init_vault("myv")
        assert isinstance(result.error, AccountStateConflict)
        assert ledger.get_account(alice.vault_address("myv")) is None

    def test_requires_signature(self, alice):
        assert alice.init_user().success
        result = alice.send(init_vault_account(alice.owner, "myv", signer=False))
        assert isinstance(result.error, UnauthorizedCaller)

    def test_vault_address_bound_to_name(self, alice):
        assert alice.init_user().success
        ix = init_vault_account(alice.owner, "myv")
        metas = list(ix.accounts)
        metas[3] = AccountMeta(alice.vault_address("other"), is_writable=True)
        result = alice.send(_with_accounts(ix, metas))
        assert isinstance(result.error, AddressMismatch)

    def test_cannot_create_under_foreign_user_account(self, alice, bob):
        assert alice.init_user().success
        assert bob.init_user().success
        ix = init_vault_account(bob.owner, "myv")
        metas = list(ix.accounts)
        metas[1] = AccountMeta(alice.user_address, is_writable=True)
        result = bob.send(_with_accounts(ix, metas))
        assert isinstance(result.error, AddressMismatch)
        assert alice.fetch_user().vaults == []

    def test_partial_funding_rolls_back(self, ledger):
        wallet = VaultClient(ledger, Keypair.from_label("tight"))
        # enough for the user account and the vault, not for the user slot
        ledger.airdrop(wallet.owner, USER_RENT + VAULT_RENT + 100_000)
        assert wallet.init_user().success
        before = ledger.get_balance(wallet.owner)

        result = wallet.init_vault("myv")

        assert isinstance(result.error, HostLedgerError)
        assert ledger.get_account(wallet.vault_address("myv")) is None
        assert ledger.get_balance(wallet.owner) == before
        assert len(ledger.get_account(wallet.user_address).data) == 36


class TestCredentials:

    def test_add_to_empty_vault(self, ledger, alice, vault, make_credential):
        c1 = make_credential("c1")
        before = ledger.get_balance(alice.owner)

        result = alice.add(vault, c1)

        assert result.success, result.error
        assert alice.fetch_vault(vault).credentials == [c1]
        acct = ledger.get_account(alice.vault_address(vault))
        assert len(acct.data) == 68 + CREDENTIAL_SIZE
        assert acct.lamports == VAULT_RENT + CREDENTIAL_RENT
        assert ledger.get_balance(alice.owner) == before - CREDENTIAL_RENT

    def test_edit_replaces_in_place(self, ledger, alice, vault, make_credential):
        c1, c2 = make_credential("c1"), make_credential("c2")
        assert alice.add(vault, c1).success
        before = ledger.get_account(alice.vault_address(vault))

        result = alice.edit(vault, 0, c2)

        assert result.success, result.error
        after = ledger.get_account(alice.vault_address(vault))
        assert alice.fetch_vault(vault).credentials == [c2]
        assert len(after.data) == len(before.data)
        assert after.lamports == before.lamports

    def test_delete_last_refunds_wallet(self, ledger, alice, vault, make_credential):
        assert alice.add(vault, make_credential("c2")).success
        before_wallet = ledger.get_balance(alice.owner)

        result = alice.delete(vault, 0)

        assert result.success, result.error
        acct = ledger.get_account(alice.vault_address(vault))
        assert alice.fetch_vault(vault).credentials == []
        assert len(acct.data) == 68
        assert acct.lamports == VAULT_RENT
        assert ledger.get_balance(alice.owner) == before_wallet + CREDENTIAL_RENT

    def test_delete_shifts_later_credentials(self, alice, vault, make_credential):
        creds = [make_credential(str(i)) for i in range(4)]
        for c in creds:
            assert alice.add(vault, c).success

        assert alice.delete(vault, 1).success

        assert alice.fetch_vault(vault).credentials == [creds[0], creds[2], creds[3]]

    def test_edit_only_touches_target_index(self, alice, vault, make_credential):
        creds = [make_credential(str(i)) for i in range(3)]
        for c in creds:
            assert alice.add(vault, c).success
        replacement = make_credential("new")

        assert alice.edit(vault, 2, replacement).success

        assert alice.fetch_vault(vault).credentials == [creds[0], creds[1], replacement]

    @pytest.mark.parametrize("delete", [False, True])
    def test_index_equal_to_length_out_of_range(self, ledger, alice, vault, make_credential, delete):
        assert alice.add(vault, make_credential("c1")).success
        snapshot = ledger.to_dict()["accounts"]

        result = alice.delete(vault, 1) if delete else alice.edit(vault, 1, make_credential("x"))

        assert isinstance(result.error, IndexOutOfRange)
        assert result.error_code == 5
        assert ledger.to_dict()["accounts"] == snapshot

    def test_delete_on_empty_vault(self, alice, vault):
        assert isinstance(alice.delete(vault, 0).error, IndexOutOfRange)

    def test_absent_vault(self, ledger, alice, make_credential):
        assert alice.init_user().success
        result = alice.add("missing", make_credential("c"))
        assert isinstance(result.error, AccountStateConflict)
        assert ledger.get_account(alice.vault_address("missing")) is None

    def test_requires_signature(self, alice, vault, make_credential):
        result = alice.send(add_credential(alice.owner, vault, make_credential("c"), signer=False))
        assert isinstance(result.error, UnauthorizedCaller)
        assert alice.fetch_vault(vault).credentials == []

    def test_other_wallet_cannot_edit(self, alice, bob, vault, make_credential):
        c1 = make_credential("c1")
        assert alice.add(vault, c1).success
        ix = edit_credential(bob.owner, vault, 0, make_credential("evil"))
        metas = list(ix.accounts)
        metas[1] = AccountMeta(alice.vault_address(vault), is_writable=True)

        result = bob.send(_with_accounts(ix, metas))

        assert isinstance(result.error, AddressMismatch)
        assert alice.fetch_vault(vault).credentials == [c1]

    def test_not_enough_accounts(self, alice, vault, make_credential):
        ix = add_credential(alice.owner, vault, make_credential("c"))
        result = alice.send(_with_accounts(ix, list(ix.accounts)[:2]))
        assert isinstance(result.error, NotEnoughAccountKeys)

    def test_wrong_system_program(self, alice, vault, make_credential):
        ix = add_credential(alice.owner, vault, make_credential("c"))
        metas = list(ix.accounts)
        metas[2] = AccountMeta(Pubkey(b"\x02" * 32))
        assert isinstance(alice.send(_with_accounts(ix, metas)).error, AddressMismatch)


class TestCapacity:

    def test_ceiling_blocks_without_mutation(self, ledger, alice, vault, make_credential):
        get_config_manager().set("program.max_account_size", VaultAccount.size_for(2))
        assert alice.add(vault, make_credential("a")).success
        assert alice.add(vault, make_credential("b")).success
        snapshot = ledger.to_dict()["accounts"]

        result = alice.add(vault, make_credential("c"))

        assert isinstance(result.error, CapacityExceeded)
        assert result.error_code == 6
        assert ledger.to_dict()["accounts"] == snapshot

    def test_delete_frees_capacity(self, alice, vault, make_credential):
        get_config_manager().set("program.max_account_size", VaultAccount.size_for(1))
        assert alice.add(vault, make_credential("a")).success
        assert not alice.add(vault, make_credential("b")).success
        assert alice.delete(vault, 0).success
        assert alice.add(vault, make_credential("b")).success

    def test_default_ceiling_allows_157_credentials(self, ledger, alice, vault, make_credential):
        for i in range(157):
            assert alice.add(vault, make_credential(str(i))).success
        assert len(ledger.get_account(alice.vault_address(vault)).data) == VaultAccount.size_for(157) == 10116
        assert VaultAccount.size_for(158) > 10176

        snapshot = ledger.to_dict()["accounts"]
        result = alice.add(vault, make_credential("overflow"))
        assert isinstance(result.error, CapacityExceeded)
        assert ledger.to_dict()["accounts"] == snapshot


class TestMalformed:

    def _raw(self, alice, data):
        ix = Instruction(VAULT_PROGRAM_ID, [AccountMeta(alice.owner, is_signer=True, is_writable=True)], data)
        tx = Transaction([ix], alice.ledger.latest_blockhash).sign(alice.wallet)
        return alice.ledger.process_transaction(tx)

    def test_empty_data(self, alice):
        result = self._raw(alice, b"")
        assert isinstance(result.error, MalformedInstruction)
        assert result.error_code == 1

    def test_unknown_tag(self, alice):
        result = self._raw(alice, b"\x09")
        assert isinstance(result.error, MalformedInstruction)
        assert result.logs[-1].endswith("custom program error: 0x1")

    def test_truncated_payload(self, alice):
        assert isinstance(self._raw(alice, b"\x02" + bytes(10)).error, MalformedInstruction)

    @pytest.mark.parametrize("writable, reason", [
        (True, "modified by non-owner program"),
        (False, "read-only account"),
    ])
    def test_foreign_program_cannot_rewrite_vault(self, ledger, alice, vault, writable, reason):
        scribbler = Pubkey(b"\x42" * 32)

        def scribble(ctx, accounts, data):
            accounts[1].data[:4] = b"\xff" * 4

        ledger.register_program(scribbler, scribble)
        vault_key = alice.vault_address(vault)
        before = ledger.get_account(vault_key).data
        ix = Instruction(scribbler, [
            AccountMeta(alice.owner, is_signer=True, is_writable=True),
            AccountMeta(vault_key, is_writable=writable),
        ], b"")
        result = ledger.process_transaction(Transaction([ix], ledger.latest_blockhash).sign(alice.wallet))

        assert not result.success
        assert reason in result.error.message
        assert ledger.get_account(vault_key).data == before
