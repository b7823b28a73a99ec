"""
Keyvault program errors.

Every failure the program can report is a subclass of ``VaultError`` carrying a
stable numeric ``code``. The code is what the host ledger reports back to the
submitter as the custom program error; the message is for logs only.

    VaultError
    ├── MalformedInstruction        1   bad tag, short segment, bad UTF-8 name
    │   └── InvalidInstruction      1   unknown discriminant tag
    ├── UnauthorizedCaller          2   owner wallet did not sign
    ├── AddressMismatch             3   supplied key != derived address
    ├── AccountStateConflict        4   init on existing / mutate on absent
    ├── IndexOutOfRange             5   credential index >= len(credentials)
    ├── CapacityExceeded            6   account would outgrow the ceiling
    ├── DataUnpackError             7   stored bytes do not decode
    ├── NotEnoughAccountKeys        8   fewer account metas than required
    └── HostLedgerError           100   funds, realloc limits, rent, conservation

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class VaultError(Exception):
    """Base exception for all keyvault program failures."""

    code: int = 0

    def __init__(self, message: str = "", **context: Any):
        self.message = message or self.__class__.__name__
        self.context: Dict[str, Any] = context
        super().__init__(self.message)

    @property
    def kind(self) -> str:
        return self.__class__.__name__

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {"kind": self.kind, "code": self.code, "message": self.message}
        if self.context:
            d["context"] = {k: str(v) for k, v in self.context.items()}
        return d


class MalformedInstruction(VaultError):
    """Instruction bytes could not be decoded."""
    code = 1


class InvalidInstruction(MalformedInstruction):
    """Unknown instruction discriminant."""

    def __init__(self, tag: Optional[int] = None):
        super().__init__(f"unknown instruction tag: {tag}", tag=tag)
        self.tag = tag


class UnauthorizedCaller(VaultError):
    """A required signer did not sign the call."""
    code = 2


class AddressMismatch(VaultError):
    """Supplied account key differs from the deterministically derived address."""
    code = 3


class AccountStateConflict(VaultError):
    """Operation is not valid for the account's current lifecycle state."""
    code = 4


class IndexOutOfRange(VaultError):
    """Credential index outside ``[0, len(credentials))``."""
    code = 5

    def __init__(self, index: int, length: int):
        super().__init__(f"credential index {index} out of range (len={length})", index=index, length=length)
        self.index = index
        self.length = length


class CapacityExceeded(VaultError):
    """Account would grow past the storage ceiling."""
    code = 6

    def __init__(self, requested: int, ceiling: int):
        super().__init__(f"account size {requested} exceeds ceiling {ceiling}", requested=requested, ceiling=ceiling)
        self.requested = requested
        self.ceiling = ceiling


class DataUnpackError(VaultError):
    """Stored account bytes are truncated or inconsistent with the schema."""
    code = 7


class NotEnoughAccountKeys(VaultError):
    """The instruction did not supply every account the handler needs."""
    code = 8


class HostLedgerError(VaultError):
    """Failure raised by the host ledger's account primitives."""
    code = 100

