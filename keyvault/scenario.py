"""keyvault.scenario

Scripted end-to-end runs of the vault program on a fresh in-process ledger.

A scenario document (YAML or JSON, see ``schemas/scenario.schema.json``)::

    wallets:
      alice: {lamports: 10000000000}
    steps:
      - {op: init_user, wallet: alice}
      - {op: init_vault, wallet: alice, name: personal}
      - op: add_credential
        wallet: alice
        name: personal
        credential: {field: "mail", passkey: "ciphertext"}
      - {op: delete_credential, wallet: alice, name: personal, index: 3,
         expect_error: IndexOutOfRange}

Each step becomes one signed transaction. ``expect_error`` names the error
kind the step must fail with; a step without it must succeed.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional

from keyvault.address import Keypair
from keyvault.client import (
    VaultClient,
    add_credential,
    delete_credential,
    edit_credential,
    init_user_account,
    init_vault_account,
)
from keyvault.config import KeyvaultConfig
from keyvault.errors import MalformedInstruction
from keyvault.ledger import Instruction, Ledger, TransactionResult
from keyvault.observability import KeyvaultLayer, get_logger
from keyvault.processor import install
from keyvault.schema import SCENARIO_SCHEMA, load_document, validate_against_schema
from keyvault.state import CREDENTIAL_SIZE, FIELD_SIZE, Credential, VaultAccount

logger = get_logger("scenario", KeyvaultLayer.SCENARIO)

DEFAULT_AIRDROP = 10_000_000_000


class ScenarioError(ValueError):
    """Scenario document is invalid."""
    pass


def parse_credential(value: Any) -> Credential:
    """Credential from a 64-byte hex string or a ``{field, passkey}`` mapping."""
    if isinstance(value, str):
        s = value[2:] if value.startswith("0x") else value
        raw = bytes.fromhex(s)
        if len(raw) != CREDENTIAL_SIZE:
            raise ScenarioError(f"credential hex must be {CREDENTIAL_SIZE} bytes")
        return Credential.unpack(raw)
    parts = []
    for key in ("field", "passkey"):
        raw = str(value[key]).encode("utf-8")
        if len(raw) > FIELD_SIZE:
            raise ScenarioError(f"credential {key} longer than {FIELD_SIZE} bytes")
        parts.append(raw.ljust(FIELD_SIZE, b"\x00"))
    return Credential(field=parts[0], passkey=parts[1])


def _build(step: Dict[str, Any], client: VaultClient) -> Instruction:
    op = step["op"]
    owner, pid = client.owner, client.program_id
    signer = not step.get("unsigned", False)
    if op == "init_user":
        return init_user_account(owner, pid, signer=signer)
    if op == "init_vault":
        return init_vault_account(owner, step["name"], pid, signer=signer)
    if op == "add_credential":
        return add_credential(owner, step["name"], parse_credential(step["credential"]), pid, signer=signer)
    if op == "edit_credential":
        cred = parse_credential(step["credential"])
        return edit_credential(owner, step["name"], step["index"], cred, pid, signer=signer)
    if op == "delete_credential":
        return delete_credential(owner, step["name"], step["index"], pid, signer=signer)
    raise ScenarioError(f"unknown op: {op}")


def _final_state(ledger: Ledger, clients: Dict[str, VaultClient]) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for label, client in clients.items():
        entry: Dict[str, Any] = {
            "owner": str(client.owner),
            "lamports": ledger.get_balance(client.owner),
            "user_account": None,
            "vaults": [],
        }
        user = client.fetch_user()
        if user is not None:
            entry["user_account"] = {
                "address": str(client.user_address),
                "lamports": ledger.get_balance(client.user_address),
                "vaults": [str(v) for v in user.vaults],
            }
            for vault_key in user.vaults:
                acct = ledger.get_account(vault_key)
                if acct is None:
                    continue
                vault = VaultAccount.unpack(acct.data)
                entry["vaults"].append({
                    "address": str(vault_key),
                    "name": vault.name,
                    "size": len(acct.data),
                    "lamports": acct.lamports,
                    "credentials": [c.pack().hex() for c in vault.credentials],
                })
        out[label] = entry
    return out


def run_scenario(doc: Dict[str, Any], config: Optional[KeyvaultConfig] = None) -> Dict[str, Any]:
    """Validate and execute a scenario; returns a JSON-ready report."""
    errors = validate_against_schema(doc, SCENARIO_SCHEMA)
    if errors:
        raise ScenarioError(f"invalid scenario: {errors[0]}")

    ledger = Ledger(config)
    program_id = install(ledger)
    clients: Dict[str, VaultClient] = {}
    for label, funding in doc["wallets"].items():
        kp = Keypair.from_label(funding.get("seed") or label)
        ledger.airdrop(kp.pubkey, funding.get("lamports", DEFAULT_AIRDROP))
        clients[label] = VaultClient(ledger, kp, program_id)

    steps: List[Dict[str, Any]] = []
    ok = True
    for i, step in enumerate(doc["steps"]):
        client = clients.get(step["wallet"])
        if client is None:
            raise ScenarioError(f"step {i}: unknown wallet {step['wallet']!r}")
        try:
            ix = _build(step, client)
        except MalformedInstruction as e:
            # rejected client-side; never reaches the ledger
            result = TransactionResult(signature="", success=False, error=e)
        else:
            result = client.send(ix)
        expected = step.get("expect_error")
        actual = result.error.kind if result.error else None
        matched = (actual == expected) if expected else result.success
        ok = ok and matched
        record = {"index": i, "op": step["op"], "wallet": step["wallet"], "matched": matched}
        record.update(result.to_dict())
        steps.append(record)
        if not matched:
            logger.warning(
                "scenario step did not match expectation",
                operation="run_scenario",
                step=i,
                expected=expected,
                actual=actual,
            )

    return {
        "ok": ok,
        "steps": steps,
        "final_state": _final_state(ledger, clients),
        "ledger": ledger.to_dict(),
    }


def run_scenario_file(path: Path, config: Optional[KeyvaultConfig] = None) -> Dict[str, Any]:
    doc = load_document(path)
    if not isinstance(doc, dict):
        raise ScenarioError(f"scenario must be a mapping: {path}")
    return run_scenario(doc, config)
