"""
CLI tests.

Run with: pytest tests/test_cli.py -v

Copyright (c) 2026 Momentum. All rights reserved.
"""

import json
from pathlib import Path

import pytest
import yaml

from keyvault.address import Keypair, derive_user_address, derive_vault_address
from keyvault.cli import KeyvaultCLI
from keyvault.state import UserAccount


SCENARIOS = Path(__file__).parent / "scenarios"


def _run(capsys, *args):
    code = KeyvaultCLI().run(list(args))
    out = capsys.readouterr()
    return code, out.out, out.err


def _json(capsys, *args):
    code, out, err = _run(capsys, *args)
    assert code == 0, err
    return json.loads(out)


@pytest.fixture
def owner():
    return Keypair.from_label("alice").pubkey


class TestAddress:

    def test_user(self, capsys, owner):
        data = _json(capsys, "address", "user", "--owner", str(owner))
        address, bump = derive_user_address(owner)
        assert data == {"owner": str(owner), "address": str(address), "bump": bump}

    def test_vault_accepts_hex_owner(self, capsys, owner):
        data = _json(capsys, "address", "vault", "--owner", owner.data.hex(), "--name", "work")
        assert data["address"] == str(derive_vault_address(owner, "work")[0])

    def test_bad_owner(self, capsys):
        code, _, err = _run(capsys, "address", "user", "--owner", "0OIl")
        assert code == 1
        assert "Error" in err

    @pytest.mark.parametrize("name, reason", [
        ("x" * 40, "longer than 32 bytes"),
        ("", "empty"),
        ("a\x00b", "NUL"),
    ])
    def test_vault_name_follows_instruction_rules(self, capsys, owner, name, reason):
        code, out, err = _run(capsys, "address", "vault", "--owner", str(owner), "--name", name)
        assert code == 1
        assert out == ""
        assert "MalformedInstruction" in err
        assert reason in err


class TestInstruction:

    def test_decode(self, capsys):
        data = _json(capsys, "instruction", "decode", "01" + b"myv".hex())
        assert data == {"operation": "InitVaultAccount", "tag": 1, "name": "myv"}

    def test_decode_malformed(self, capsys):
        code, _, err = _run(capsys, "instruction", "decode", "09")
        assert code == 1
        assert "InvalidInstruction" in err

    def test_encode_delete(self, capsys):
        data = _json(capsys, "instruction", "encode", "delete", "--name", "v", "--index", "2")
        assert data["data"] == "03" + "01" + "02000000" + "00" * 64 + b"v".hex()
        assert data["length"] == 1 + 1 + 4 + 64 + 1

    def test_encode_requires_payload(self, capsys):
        code, _, err = _run(capsys, "instruction", "encode", "add", "--name", "v")
        assert code == 1
        assert "--payload" in err

    def test_yaml_output(self, capsys):
        code, out, _ = _run(capsys, "--format", "yaml", "instruction", "encode", "init-user")
        assert code == 0
        assert yaml.safe_load(out) == {"data": "00", "length": 1}


class TestState:

    def test_decode_user(self, capsys, owner):
        raw = UserAccount(owner=owner).pack().hex()
        data = _json(capsys, "state", "decode", "user", raw)
        assert data == {"owner": str(owner), "vaults": [], "size": 36}

    def test_decode_truncated(self, capsys):
        code, _, err = _run(capsys, "state", "decode", "vault", "00" * 10)
        assert code == 1
        assert "DataUnpackError" in err


class TestRentAndConfig:

    def test_rent(self, capsys):
        assert _json(capsys, "rent", "--size", "68") == {"size": 68, "minimum_balance": 1_364_160}

    def test_rent_follows_config_file(self, capsys, tmp_path):
        path = tmp_path / "keyvault.yaml"
        path.write_text("rent:\n  exemption_threshold: 1.0\n")
        data = _json(capsys, "--config", str(path), "rent", "--size", "0")
        assert data["minimum_balance"] == 128 * 3480

    def test_bad_config_file_exit_code(self, capsys, tmp_path):
        path = tmp_path / "keyvault.yaml"
        path.write_text("nope: 1\n")
        code, _, _ = _run(capsys, "--config", str(path), "rent", "--size", "0")
        assert code == 2

    @pytest.mark.parametrize("body", [
        "program:\n  max_account_size: abc\n",
        "program: [unclosed\n",
    ])
    def test_unusable_config_file_exit_code(self, capsys, tmp_path, body):
        path = tmp_path / "keyvault.yaml"
        path.write_text(body)
        code, out, err = _run(capsys, "--config", str(path), "config", "show")
        assert code == 2
        assert out == ""
        assert err.startswith("Error:")

    def test_config_show(self, capsys):
        assert _json(capsys, "config", "show")["program"]["max_account_size"] == 10176

    def test_config_validate(self, capsys, monkeypatch):
        assert _json(capsys, "config", "validate") == {"valid": True}
        monkeypatch.setenv("KEYVAULT_LOG_LEVEL", "loud")
        code, _, _ = _run(capsys, "config", "validate")
        assert code == 2


class TestScenario:

    def test_run_with_snapshot(self, capsys, tmp_path):
        snapshot = tmp_path / "ledger.json"
        report = _json(capsys, "scenario", "run", str(SCENARIOS / "lifecycle.yaml"), "--snapshot", str(snapshot))
        assert report["ok"]
        assert "ledger" not in report
        assert "accounts" in json.loads(snapshot.read_text())

    def test_failed_expectations_exit_code(self, capsys, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("wallets: {a: {}}\nsteps:\n  - {op: init_vault, wallet: a, name: v}\n")
        code, out, _ = _run(capsys, "scenario", "run", str(path))
        assert code == 3
        assert json.loads(out)["ok"] is False

    def test_missing_file(self, capsys, tmp_path):
        code, _, err = _run(capsys, "scenario", "run", str(tmp_path / "absent.yaml"))
        assert code == 1
        assert "not found" in err


def test_no_command_prints_help(capsys):
    code, out, _ = _run(capsys)
    assert code == 0
    assert "keyvault" in out
