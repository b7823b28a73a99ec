#!/usr/bin/env python3
"""
Keyvault CLI

Developer tooling for the vault program: address derivation, instruction and
state decoding, rent figures, configuration, and scripted scenario runs on an
in-process ledger.

Usage:
    keyvault <command> [subcommand] [options]

Commands:
    address       Derive user / vault program addresses
    instruction   Decode or encode instruction data
    state         Decode user / vault account data
    rent          Minimum retained balance for an account size
    config        Show or validate configuration
    scenario      Run a scenario file

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import argparse
import json
import sys
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from keyvault import __version__


class OutputFormat(Enum):
    """Output format options."""
    JSON = "json"
    YAML = "yaml"
    TEXT = "text"


class CLIError(Exception):
    """CLI error with exit code."""
    def __init__(self, message: str, exit_code: int = 1):
        super().__init__(message)
        self.exit_code = exit_code


def format_output(data: Any, fmt: OutputFormat = OutputFormat.JSON) -> str:
    """Format data for output."""
    if fmt == OutputFormat.JSON:
        return json.dumps(data, indent=2, default=str)
    elif fmt == OutputFormat.YAML:
        import yaml
        return yaml.dump(data, default_flow_style=False, sort_keys=False)
    if isinstance(data, dict):
        return "\n".join(f"{k}: {v}" for k, v in data.items())
    return str(data)


def _hex_arg(value: str) -> bytes:
    s = value[2:] if value.startswith("0x") else value
    try:
        return bytes.fromhex(s)
    except ValueError as e:
        raise CLIError(f"invalid hex: {e}") from e


def _operation_to_dict(op: Any) -> Dict[str, Any]:
    from keyvault.instruction import AddCredential, EditOrDelete, InitVaultAccount

    d: Dict[str, Any] = {"operation": type(op).__name__, "tag": int(op.tag)}
    if isinstance(op, (InitVaultAccount, AddCredential, EditOrDelete)):
        d["name"] = op.name
    if isinstance(op, EditOrDelete):
        d["index"] = op.index
        d["delete"] = op.is_delete
    if isinstance(op, (AddCredential, EditOrDelete)):
        d["payload"] = op.payload.hex()
    return d


class KeyvaultCLI:
    """Main CLI application."""

    def __init__(self):
        self.parser = argparse.ArgumentParser(
            prog="keyvault",
            description="Keyvault program developer CLI",
            formatter_class=argparse.RawDescriptionHelpFormatter,
        )
        self.parser.add_argument(
            "--version", "-V",
            action="version",
            version=f"keyvault {__version__}",
        )
        self.parser.add_argument(
            "--format", "-f",
            choices=["json", "yaml", "text"],
            default="json",
            help="Output format (default: json)",
        )
        self.parser.add_argument(
            "--quiet", "-q",
            action="store_true",
            help="Suppress error messages",
        )
        self.parser.add_argument(
            "--config", "-c",
            help="Path to a keyvault YAML config file",
        )

        self.subparsers = self.parser.add_subparsers(dest="command", help="Commands")
        self._register_commands()

    def _register_commands(self) -> None:
        self._register_address_commands()
        self._register_instruction_commands()
        self._register_state_commands()
        self._register_rent_commands()
        self._register_config_commands()
        self._register_scenario_commands()

    def _register_address_commands(self) -> None:
        address = self.subparsers.add_parser("address", help="Derive program addresses")
        address_sub = address.add_subparsers(dest="subcommand")

        user = address_sub.add_parser("user", help="Derive a user account address")
        user.add_argument("--owner", "-o", required=True, help="Owner wallet (base58 or hex)")
        user.add_argument("--program", "-p", help="Program id (default: keyvault program)")

        vault = address_sub.add_parser("vault", help="Derive a vault account address")
        vault.add_argument("--owner", "-o", required=True, help="Owner wallet (base58 or hex)")
        vault.add_argument("--name", "-n", required=True, help="Vault name")
        vault.add_argument("--program", "-p", help="Program id (default: keyvault program)")

    def _register_instruction_commands(self) -> None:
        ix = self.subparsers.add_parser("instruction", help="Instruction codec")
        ix_sub = ix.add_subparsers(dest="subcommand")

        decode = ix_sub.add_parser("decode", help="Decode instruction data")
        decode.add_argument("data", help="Instruction data as hex")

        encode = ix_sub.add_parser("encode", help="Encode instruction data")
        encode.add_argument("op", choices=["init-user", "init-vault", "add", "edit", "delete"])
        encode.add_argument("--name", "-n", help="Vault name")
        encode.add_argument("--index", "-i", type=int, default=0, help="Credential index")
        encode.add_argument("--payload", help="64-byte credential payload as hex")

    def _register_state_commands(self) -> None:
        state = self.subparsers.add_parser("state", help="Decode account data")
        state_sub = state.add_subparsers(dest="subcommand")
        decode = state_sub.add_parser("decode", help="Decode account data")
        decode.add_argument("kind", choices=["user", "vault"])
        decode.add_argument("data", help="Account data as hex")

    def _register_rent_commands(self) -> None:
        rent = self.subparsers.add_parser("rent", help="Minimum retained balance")
        rent.add_argument("--size", "-s", type=int, required=True, help="Account data size in bytes")

    def _register_config_commands(self) -> None:
        config = self.subparsers.add_parser("config", help="Configuration management")
        config_sub = config.add_subparsers(dest="subcommand")
        config_sub.add_parser("show", help="Show current configuration")
        config_sub.add_parser("validate", help="Validate configuration")

    def _register_scenario_commands(self) -> None:
        scenario = self.subparsers.add_parser("scenario", help="Scenario runner")
        scenario_sub = scenario.add_subparsers(dest="subcommand")
        run = scenario_sub.add_parser("run", help="Run a scenario file on a fresh ledger")
        run.add_argument("file", help="Scenario YAML or JSON file")
        run.add_argument("--snapshot", help="Write the final ledger snapshot to this JSON file")

    def run(self, args: Optional[List[str]] = None) -> int:
        """Run the CLI."""
        parsed = self.parser.parse_args(args)

        if not parsed.command:
            self.parser.print_help()
            return 0

        try:
            if parsed.config:
                from keyvault.config import ConfigError, get_config_manager
                try:
                    get_config_manager().load_from_file(parsed.config)
                except ConfigError as e:
                    raise CLIError(str(e), exit_code=2) from e

            fmt = OutputFormat(parsed.format)
            result = self._dispatch(parsed)

            if result is not None:
                print(format_output(result, fmt))

            return 0

        except CLIError as e:
            if not parsed.quiet:
                print(f"Error: {e}", file=sys.stderr)
            return e.exit_code

        except (ValueError, OSError) as e:
            if not parsed.quiet:
                print(f"Error: {e}", file=sys.stderr)
            return 1

    def _dispatch(self, args: argparse.Namespace) -> Any:
        """Dispatch command to handler."""
        cmd = args.command
        subcmd = getattr(args, "subcommand", None)

        handler_name = f"_handle_{cmd}_{subcmd}" if subcmd else f"_handle_{cmd}"
        handler = getattr(self, handler_name, None)

        if handler is None:
            raise CLIError(f"Unknown command: {cmd} {subcmd or ''}")

        return handler(args)

    @staticmethod
    def _program(args: argparse.Namespace):
        from keyvault.address import VAULT_PROGRAM_ID, Pubkey
        return Pubkey.parse(args.program) if args.program else VAULT_PROGRAM_ID

    # Address handlers
    def _handle_address_user(self, args: argparse.Namespace) -> Any:
        from keyvault.address import Pubkey, derive_user_address

        owner = Pubkey.parse(args.owner)
        address, bump = derive_user_address(owner, self._program(args))
        return {"owner": str(owner), "address": str(address), "bump": bump}

    def _handle_address_vault(self, args: argparse.Namespace) -> Any:
        from keyvault.address import Pubkey, PubkeyError, derive_vault_address
        from keyvault.errors import MalformedInstruction
        from keyvault.instruction import encode_name

        owner = Pubkey.parse(args.owner)
        try:
            encode_name(args.name)
            address, bump = derive_vault_address(owner, args.name, self._program(args))
        except MalformedInstruction as e:
            raise CLIError(f"{e.kind}: {e.message}") from e
        except PubkeyError as e:
            raise CLIError(str(e)) from e
        return {"owner": str(owner), "name": args.name, "address": str(address), "bump": bump}

    # Instruction handlers
    def _handle_instruction_decode(self, args: argparse.Namespace) -> Any:
        from keyvault.errors import MalformedInstruction
        from keyvault.instruction import decode_instruction

        try:
            op = decode_instruction(_hex_arg(args.data))
        except MalformedInstruction as e:
            raise CLIError(f"{e.kind}: {e.message}") from e
        return _operation_to_dict(op)

    def _handle_instruction_encode(self, args: argparse.Namespace) -> Any:
        from keyvault.errors import MalformedInstruction
        from keyvault.instruction import (
            AddCredential,
            EditOrDelete,
            InitUserAccount,
            InitVaultAccount,
            encode_instruction,
        )
        from keyvault.state import CREDENTIAL_SIZE

        if args.op != "init-user" and not args.name:
            raise CLIError(f"--name is required for {args.op}")
        payload = _hex_arg(args.payload) if args.payload else bytes(CREDENTIAL_SIZE)
        if args.op in ("add", "edit") and not args.payload:
            raise CLIError(f"--payload is required for {args.op}")

        ops = {
            "init-user": lambda: InitUserAccount(),
            "init-vault": lambda: InitVaultAccount(name=args.name),
            "add": lambda: AddCredential(name=args.name, payload=payload),
            "edit": lambda: EditOrDelete(name=args.name, index=args.index, delete_flag=0, payload=payload),
            "delete": lambda: EditOrDelete(name=args.name, index=args.index, delete_flag=1, payload=payload),
        }
        try:
            data = encode_instruction(ops[args.op]())
        except MalformedInstruction as e:
            raise CLIError(f"{e.kind}: {e.message}") from e
        return {"data": data.hex(), "length": len(data)}

    # State handlers
    def _handle_state_decode(self, args: argparse.Namespace) -> Any:
        from keyvault.errors import DataUnpackError
        from keyvault.state import UserAccount, VaultAccount

        raw = _hex_arg(args.data)
        try:
            if args.kind == "user":
                user = UserAccount.unpack(raw)
                return {"owner": str(user.owner), "vaults": [str(v) for v in user.vaults], "size": user.size}
            vault = VaultAccount.unpack(raw)
        except DataUnpackError as e:
            raise CLIError(f"{e.kind}: {e.message}") from e
        return {
            "name": vault.name,
            "user_account": str(vault.user_account),
            "credentials": [
                {"field": c.field.hex(), "passkey": c.passkey.hex()} for c in vault.credentials
            ],
            "size": vault.size,
        }

    # Rent handlers
    def _handle_rent(self, args: argparse.Namespace) -> Any:
        from keyvault.ledger import Rent

        if args.size < 0:
            raise CLIError("--size must be non-negative")
        return {"size": args.size, "minimum_balance": Rent.from_config().minimum_balance(args.size)}

    # Config handlers
    def _handle_config_show(self, args: argparse.Namespace) -> Any:
        from keyvault.config import get_config
        return get_config().to_dict()

    def _handle_config_validate(self, args: argparse.Namespace) -> Any:
        from keyvault.config import get_config_manager

        errors = get_config_manager().validate()
        if errors:
            raise CLIError("; ".join(errors), exit_code=2)
        return {"valid": True}

    # Scenario handlers
    def _handle_scenario_run(self, args: argparse.Namespace) -> Any:
        from keyvault.scenario import run_scenario_file

        path = Path(args.file)
        if not path.exists():
            raise CLIError(f"scenario file not found: {path}")
        report = run_scenario_file(path)
        if args.snapshot:
            Path(args.snapshot).write_text(json.dumps(report.pop("ledger"), indent=2), encoding="utf-8")
        else:
            report.pop("ledger", None)
        if not report["ok"]:
            print(format_output(report, OutputFormat(args.format)))
            raise CLIError("scenario expectations not met", exit_code=3)
        return report


def main() -> int:
    """CLI entry point."""
    cli = KeyvaultCLI()
    return cli.run()


if __name__ == "__main__":
    sys.exit(main())
