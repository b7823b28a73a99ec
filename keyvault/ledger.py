"""
Keyvault host ledger model.

An in-process stand-in for the host ledger the vault program runs on. It owns
account storage, verifies transaction signatures, and executes program
entrypoints with an all-or-nothing guarantee.

    ┌──────────────────────────────────────────────────────────────────┐
    │ Ledger.process_transaction(tx)                                   │
    │   1. blockhash + replay check                                    │
    │   2. Ed25519 signature verification  -> signer set               │
    │   3. with ledger.transaction() as staged:                        │
    │        for each instruction:                                     │
    │          snapshot -> entrypoint(ctx, infos, data) -> validate    │
    │      commit only if every instruction succeeded                  │
    └──────────────────────────────────────────────────────────────────┘

Programs never touch ledger storage directly. They receive ``AccountInfo``
views over *staged copies* and an ``InvokeContext`` exposing the host
primitives (create, transfer, realloc, rent, signer predicate, log). When a
call raises, the staged copies are dropped and no byte or balance change is
visible afterwards.

After each instruction the ledger checks:
    - lamports are conserved across the instruction's accounts
    - read-only accounts are unchanged
    - only the invoked program changed an account's data or took ownership
    - every account holding data keeps at least its rent-exempt minimum

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import hashlib
import struct
from collections import deque
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, Iterator, List, Optional, Sequence, Set

from keyvault.address import (
    SYSTEM_PROGRAM_ID,
    Keypair,
    Pubkey,
    b58decode,
    b58encode,
    create_program_address,
    PubkeyError,
    verify_signature,
)
from keyvault.config import KeyvaultConfig, get_config
from keyvault.errors import HostLedgerError, VaultError
from keyvault.observability import (
    KeyvaultLayer,
    generate_correlation_id,
    get_logger,
    reset_correlation_id,
    set_correlation_id,
)

logger = get_logger("ledger", KeyvaultLayer.LEDGER)

MAX_RECENT_BLOCKHASHES = 150


@dataclass
class Rent:
    """Minimum retained balance as a function of account size."""
    lamports_per_byte_year: int = 3480
    exemption_threshold: float = 2.0
    account_storage_overhead: int = 128

    @classmethod
    def from_config(cls, config: Optional[KeyvaultConfig] = None) -> "Rent":
        rent = (config or get_config()).rent
        return cls(
            lamports_per_byte_year=rent.lamports_per_byte_year.get(),
            exemption_threshold=rent.exemption_threshold.get(),
            account_storage_overhead=rent.account_storage_overhead.get(),
        )

    def minimum_balance(self, data_len: int) -> int:
        if data_len < 0:
            raise ValueError("data length cannot be negative")
        return int(
            (self.account_storage_overhead + data_len) * self.lamports_per_byte_year * self.exemption_threshold
        )

    def is_exempt(self, lamports: int, data_len: int) -> bool:
        return lamports >= self.minimum_balance(data_len)


@dataclass
class Account:
    """Host-managed storage unit: balance, owner tag, resizable data."""
    lamports: int = 0
    data: bytearray = field(default_factory=bytearray)
    owner: Pubkey = SYSTEM_PROGRAM_ID
    executable: bool = False

    def copy(self) -> "Account":
        return Account(
            lamports=self.lamports,
            data=bytearray(self.data),
            owner=self.owner,
            executable=self.executable,
        )

    @property
    def is_vacant(self) -> bool:
        """No balance, no data, system owned: the ledger forgets such accounts."""
        return self.lamports == 0 and not self.data and self.owner == SYSTEM_PROGRAM_ID

    def to_dict(self) -> Dict[str, Any]:
        return {
            "lamports": self.lamports,
            "owner": str(self.owner),
            "data": bytes(self.data).hex(),
            "executable": self.executable,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Account":
        return cls(
            lamports=int(d["lamports"]),
            data=bytearray(bytes.fromhex(d["data"])),
            owner=Pubkey.from_string(d["owner"]),
            executable=bool(d.get("executable", False)),
        )


@dataclass(frozen=True)
class AccountMeta:
    pubkey: Pubkey
    is_signer: bool = False
    is_writable: bool = False


@dataclass(frozen=True)
class Instruction:
    program_id: Pubkey
    accounts: Sequence[AccountMeta]
    data: bytes


@dataclass
class Transaction:
    """One or more instructions executed atomically, signed by their signers."""
    instructions: List[Instruction]
    recent_blockhash: bytes
    signatures: Dict[Pubkey, bytes] = field(default_factory=dict)

    def message_bytes(self) -> bytes:
        out = bytearray(b"keyvault-tx-v1")
        out += self.recent_blockhash
        out += struct.pack("<H", len(self.instructions))
        for ix in self.instructions:
            out += ix.program_id.data
            out += struct.pack("<H", len(ix.accounts))
            for meta in ix.accounts:
                out += meta.pubkey.data
                out.append((1 if meta.is_signer else 0) | (2 if meta.is_writable else 0))
            out += struct.pack("<I", len(ix.data))
            out += ix.data
        return bytes(out)

    def required_signers(self) -> List[Pubkey]:
        seen: List[Pubkey] = []
        for ix in self.instructions:
            for meta in ix.accounts:
                if meta.is_signer and meta.pubkey not in seen:
                    seen.append(meta.pubkey)
        return seen

    def sign(self, *keypairs: Keypair) -> "Transaction":
        message = self.message_bytes()
        for kp in keypairs:
            self.signatures[kp.pubkey] = kp.sign(message)
        return self

    @property
    def signature(self) -> str:
        """Transaction id: first signature, or the message digest if unsigned."""
        for key in self.required_signers():
            if key in self.signatures:
                return b58encode(self.signatures[key])
        return b58encode(hashlib.sha256(self.message_bytes()).digest())


@dataclass
class TransactionResult:
    signature: str
    success: bool
    error: Optional[VaultError] = None
    logs: List[str] = field(default_factory=list)

    @property
    def error_code(self) -> Optional[int]:
        return self.error.code if self.error else None

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {"signature": self.signature, "success": self.success, "logs": list(self.logs)}
        if self.error:
            d["error"] = self.error.to_dict()
        return d


class AccountInfo:
    """Program-side view of one staged account for the current call."""

    def __init__(self, key: Pubkey, account: Account, is_signer: bool, is_writable: bool):
        self.key = key
        self._account = account
        self.is_signer = is_signer
        self.is_writable = is_writable

    @property
    def lamports(self) -> int:
        return self._account.lamports

    @property
    def owner(self) -> Pubkey:
        return self._account.owner

    @property
    def data(self) -> bytearray:
        return self._account.data

    @property
    def data_len(self) -> int:
        return len(self._account.data)

    def data_is_empty(self) -> bool:
        return not self._account.data

    def __repr__(self) -> str:
        return f"AccountInfo({self.key}, lamports={self.lamports}, len={self.data_len}, owner={self.owner})"


class StagedAccounts:
    """Copy-on-load account set for one transaction; committed only on success."""

    def __init__(self, base: Dict[Pubkey, Account]):
        self._base = base
        self._staged: Dict[Pubkey, Account] = {}

    def load(self, key: Pubkey) -> Account:
        if key not in self._staged:
            existing = self._base.get(key)
            self._staged[key] = existing.copy() if existing else Account()
        return self._staged[key]

    def snapshot(self, keys: Sequence[Pubkey]) -> Dict[Pubkey, Account]:
        return {k: self.load(k).copy() for k in keys}

    def commit(self) -> None:
        for key, acct in self._staged.items():
            if acct.is_vacant:
                self._base.pop(key, None)
            else:
                self._base[key] = acct.copy()


class InvokeContext:
    """Host primitives available to a program during one instruction."""

    def __init__(
        self,
        program_id: Pubkey,
        signers: Set[Pubkey],
        rent: Rent,
        original_lengths: Dict[Pubkey, int],
        max_data_increase: int,
        max_data_length: int,
        logs: List[str],
    ):
        self.program_id = program_id
        self.rent = rent
        self._signers = signers
        self._original_lengths = original_lengths
        self._max_data_increase = max_data_increase
        self._max_data_length = max_data_length
        self._logs = logs

    def is_signer(self, key: Pubkey) -> bool:
        return key in self._signers

    def minimum_balance(self, data_len: int) -> int:
        return self.rent.minimum_balance(data_len)

    def log(self, message: str) -> None:
        self._logs.append(f"Program log: {message}")
        logger.debug(message, operation="program_log", program=str(self.program_id))

    @staticmethod
    def _require_writable(info: AccountInfo, what: str) -> None:
        if not info.is_writable:
            raise HostLedgerError(f"{what} {info.key} is not writable")

    def create_account(
        self,
        payer: AccountInfo,
        new_account: AccountInfo,
        lamports: int,
        space: int,
        owner: Pubkey,
        signer_seeds: Optional[Sequence[bytes]] = None,
    ) -> None:
        """Allocate ``space`` zeroed bytes at ``new_account`` funded by ``payer``.

        The new address must either sign the transaction or be reproduced by
        ``signer_seeds`` under the invoking program id.
        """
        self._require_writable(payer, "payer")
        self._require_writable(new_account, "new account")
        if not payer.is_signer:
            raise HostLedgerError(f"payer {payer.key} did not sign")
        if payer.owner != SYSTEM_PROGRAM_ID or not payer.data_is_empty():
            raise HostLedgerError(f"payer {payer.key} must be a plain system account")
        if not new_account.data_is_empty() or new_account.owner != SYSTEM_PROGRAM_ID:
            raise HostLedgerError(f"account {new_account.key} already in use")
        if not new_account.is_signer:
            if signer_seeds is None:
                raise HostLedgerError(f"account {new_account.key} requires a signature")
            try:
                certified = create_program_address(signer_seeds, self.program_id)
            except PubkeyError as e:
                raise HostLedgerError(f"invalid signer seeds: {e}") from e
            if certified != new_account.key:
                raise HostLedgerError(f"signer seeds do not certify {new_account.key}")
        if space > self._max_data_length:
            raise HostLedgerError(f"requested space {space} exceeds {self._max_data_length}")
        if lamports < 0 or payer.lamports < lamports:
            raise HostLedgerError(f"insufficient funds: payer has {payer.lamports}, needs {lamports}")

        payer._account.lamports -= lamports
        acct = new_account._account
        acct.lamports += lamports
        acct.data = bytearray(space)
        acct.owner = owner

    def transfer(self, source: AccountInfo, destination: AccountInfo, lamports: int) -> None:
        """Move lamports; debits need a signing system account or program ownership."""
        self._require_writable(source, "source")
        self._require_writable(destination, "destination")
        if lamports < 0:
            raise HostLedgerError(f"negative transfer: {lamports}")
        if source.owner == self.program_id:
            pass
        elif source.owner == SYSTEM_PROGRAM_ID and source.data_is_empty():
            if not source.is_signer:
                raise HostLedgerError(f"transfer source {source.key} did not sign")
        else:
            raise HostLedgerError(f"program may not debit {source.key}")
        if source.lamports < lamports:
            raise HostLedgerError(f"insufficient funds: {source.key} has {source.lamports}, needs {lamports}")
        source._account.lamports -= lamports
        destination._account.lamports += lamports

    def realloc(self, info: AccountInfo, new_len: int) -> None:
        """Change data length; growth is zero-filled, shrink truncates the tail."""
        self._require_writable(info, "account")
        if info.owner != self.program_id:
            raise HostLedgerError(f"program does not own {info.key}")
        if new_len < 0 or new_len > self._max_data_length:
            raise HostLedgerError(f"invalid realloc length {new_len}")
        original = self._original_lengths.get(info.key, 0)
        if new_len - original > self._max_data_increase:
            raise HostLedgerError(
                f"realloc of {info.key} grows {new_len - original} bytes, limit {self._max_data_increase}"
            )
        data = info._account.data
        old_len = len(data)
        if new_len > old_len:
            data.extend(bytes(new_len - old_len))
        else:
            del data[new_len:]


Entrypoint = Callable[[InvokeContext, List[AccountInfo], bytes], None]


class Ledger:
    """In-process host ledger holding accounts and registered programs."""

    def __init__(self, config: Optional[KeyvaultConfig] = None):
        cfg = config or get_config()
        self.rent = Rent.from_config(cfg)
        self.max_data_increase = cfg.ledger.max_permitted_data_increase.get()
        self.max_data_length = cfg.ledger.max_permitted_data_length.get()
        self._accounts: Dict[Pubkey, Account] = {}
        self._programs: Dict[Pubkey, Entrypoint] = {}
        self._processed: Set[str] = set()
        self._blockhashes: Deque[bytes] = deque(maxlen=MAX_RECENT_BLOCKHASHES)
        self._blockhashes.append(hashlib.sha256(b"keyvault-genesis").digest())

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def register_program(self, program_id: Pubkey, entrypoint: Entrypoint) -> None:
        self._programs[program_id] = entrypoint
        acct = self._accounts.setdefault(program_id, Account())
        acct.executable = True
        acct.lamports = max(acct.lamports, 1)

    def airdrop(self, key: Pubkey, lamports: int) -> None:
        if lamports <= 0:
            raise ValueError("airdrop amount must be positive")
        self._accounts.setdefault(key, Account()).lamports += lamports
        logger.debug("airdrop", operation="airdrop", account=str(key), lamports=lamports)

    def get_account(self, key: Pubkey) -> Optional[Account]:
        acct = self._accounts.get(key)
        return acct.copy() if acct else None

    def get_balance(self, key: Pubkey) -> int:
        acct = self._accounts.get(key)
        return acct.lamports if acct else 0

    def minimum_balance(self, data_len: int) -> int:
        return self.rent.minimum_balance(data_len)

    @property
    def latest_blockhash(self) -> bytes:
        return self._blockhashes[-1]

    def _advance_blockhash(self, salt: bytes) -> None:
        self._blockhashes.append(hashlib.sha256(self.latest_blockhash + salt).digest())

    # ------------------------------------------------------------------
    # Transactional scope
    # ------------------------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator[StagedAccounts]:
        """Stage account writes; commit only if the block exits cleanly."""
        staged = StagedAccounts(self._accounts)
        yield staged
        staged.commit()

    def _validate(
        self,
        program_id: Pubkey,
        metas: Sequence[AccountMeta],
        before: Dict[Pubkey, Account],
        staged: StagedAccounts,
    ) -> None:
        writable = {m.pubkey for m in metas if m.is_writable}
        pre_total = sum(a.lamports for a in before.values())
        post_total = sum(staged.load(k).lamports for k in before)
        if pre_total != post_total:
            raise HostLedgerError(f"unbalanced instruction: lamports {pre_total} -> {post_total}")

        for key, pre in before.items():
            post = staged.load(key)
            if post == pre:
                continue
            if key not in writable:
                raise HostLedgerError(f"read-only account {key} was modified")
            if post.owner != pre.owner:
                if not (pre.owner == SYSTEM_PROGRAM_ID and not pre.data and post.owner == program_id):
                    raise HostLedgerError(f"illegal owner change on {key}")
            if post.data != pre.data and post.owner != program_id:
                raise HostLedgerError(f"data of {key} modified by non-owner program")
            if post.data and not self.rent.is_exempt(post.lamports, len(post.data)):
                raise HostLedgerError(
                    f"insufficient funds for rent: {key} holds {post.lamports}, "
                    f"needs {self.rent.minimum_balance(len(post.data))}"
                )

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def _verify_signers(self, tx: Transaction) -> Set[Pubkey]:
        if tx.recent_blockhash not in self._blockhashes:
            raise HostLedgerError("blockhash not found")
        message = tx.message_bytes()
        signers: Set[Pubkey] = set()
        for key, sig in tx.signatures.items():
            if not verify_signature(key, message, sig):
                raise HostLedgerError(f"signature verification failed for {key}")
            signers.add(key)
        for key in tx.required_signers():
            if key not in signers:
                raise HostLedgerError(f"missing signature for {key}")
        return signers

    def process_transaction(self, tx: Transaction) -> TransactionResult:
        """Execute every instruction of ``tx`` atomically."""
        token = set_correlation_id(generate_correlation_id())
        tx_id = tx.signature
        logs: List[str] = []
        try:
            if tx_id in self._processed:
                raise HostLedgerError("transaction already processed")
            signers = self._verify_signers(tx)
            with self.transaction() as staged:
                for ix in tx.instructions:
                    self._execute(ix, signers, staged, logs)
        except VaultError as e:
            logger.warning(
                f"transaction failed: {e.message}",
                operation="process_transaction",
                error_code=e.kind,
                signature=tx_id,
            )
            return TransactionResult(signature=tx_id, success=False, error=e, logs=logs)
        finally:
            reset_correlation_id(token)

        self._processed.add(tx_id)
        self._advance_blockhash(tx_id.encode("ascii"))
        logger.info("transaction committed", operation="process_transaction", signature=tx_id)
        return TransactionResult(signature=tx_id, success=True, logs=logs)

    def _execute(
        self,
        ix: Instruction,
        signers: Set[Pubkey],
        staged: StagedAccounts,
        logs: List[str],
    ) -> None:
        entrypoint = self._programs.get(ix.program_id)
        if entrypoint is None:
            raise HostLedgerError(f"program {ix.program_id} not found")

        keys = list(dict.fromkeys(m.pubkey for m in ix.accounts))
        before = staged.snapshot(keys)
        infos = [
            AccountInfo(
                key=m.pubkey,
                account=staged.load(m.pubkey),
                is_signer=m.pubkey in signers,
                is_writable=m.is_writable,
            )
            for m in ix.accounts
        ]
        ctx = InvokeContext(
            program_id=ix.program_id,
            signers=signers,
            rent=self.rent,
            original_lengths={k: len(a.data) for k, a in before.items()},
            max_data_increase=self.max_data_increase,
            max_data_length=self.max_data_length,
            logs=logs,
        )

        logs.append(f"Program {ix.program_id} invoke [1]")
        try:
            entrypoint(ctx, infos, bytes(ix.data))
            self._validate(ix.program_id, ix.accounts, before, staged)
        except VaultError as e:
            logs.append(f"Program {ix.program_id} failed: custom program error: {e.code:#x}")
            raise
        logs.append(f"Program {ix.program_id} success")

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        return {
            "blockhash": b58encode(self.latest_blockhash),
            "accounts": {str(k): a.to_dict() for k, a in sorted(self._accounts.items(), key=lambda kv: str(kv[0]))},
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any], config: Optional[KeyvaultConfig] = None) -> "Ledger":
        from keyvault.schema import LEDGER_SNAPSHOT_SCHEMA, validate_against_schema

        errors = validate_against_schema(d, LEDGER_SNAPSHOT_SCHEMA)
        if errors:
            raise ValueError(f"invalid ledger snapshot: {errors[0]}")
        ledger = cls(config)
        if d.get("blockhash"):
            ledger._blockhashes.append(b58decode(d["blockhash"]))
        for key, acct in d["accounts"].items():
            ledger._accounts[Pubkey.from_string(key)] = Account.from_dict(acct)
        return ledger
