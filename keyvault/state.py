"""
Keyvault persisted state.

Binary layouts (all integers little-endian):

    Credential      field: 32 bytes | passkey: 32 bytes                    = 64
    UserAccount     owner: 32 | count: u32 | count x vault address (32)    = 36 + 32n
    VaultAccount    name: 32 (zero padded UTF-8) | user account: 32 |
                    count: u32 | count x Credential (64)                    = 68 + 64n

An account's data length is always exactly the serialized size of its
content; ``unpack`` rejects truncated buffers and trailing bytes alike, and
``pack_into`` refuses to write into a buffer of the wrong length.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from typing import List, Tuple

from keyvault.address import PUBKEY_BYTES, Pubkey
from keyvault.errors import DataUnpackError

NAME_SIZE = 32
FIELD_SIZE = 32
CREDENTIAL_SIZE = 2 * FIELD_SIZE
COUNT_SIZE = 4

USER_ACCOUNT_BASE_SIZE = PUBKEY_BYTES + COUNT_SIZE
VAULT_ACCOUNT_BASE_SIZE = NAME_SIZE + PUBKEY_BYTES + COUNT_SIZE

_COUNT = struct.Struct("<I")


class LayoutMismatch(DataUnpackError):
    """Destination buffer length differs from the serialized size."""
    pass


def _read(buf: bytes, offset: int, n: int, what: str) -> Tuple[bytes, int]:
    end = offset + n
    if end > len(buf):
        raise DataUnpackError(f"{what} truncated: need {n} bytes at offset {offset}, have {len(buf) - offset}")
    return bytes(buf[offset:end]), end


def _read_count(buf: bytes, offset: int, element_size: int, what: str) -> Tuple[int, int]:
    raw, offset = _read(buf, offset, COUNT_SIZE, f"{what} count")
    (count,) = _COUNT.unpack(raw)
    need = count * element_size
    if offset + need > len(buf):
        raise DataUnpackError(
            f"{what} count {count} needs {need} bytes, only {len(buf) - offset} present"
        )
    return count, offset


def _expect_consumed(buf: bytes, offset: int, what: str) -> None:
    if offset != len(buf):
        raise DataUnpackError(f"{what}: {len(buf) - offset} trailing bytes")


def _write(buf: bytearray, payload: bytes, what: str) -> None:
    if len(buf) != len(payload):
        raise LayoutMismatch(f"{what}: account holds {len(buf)} bytes, content needs {len(payload)}")
    buf[:] = payload


@dataclass(frozen=True)
class Credential:
    """Opaque encrypted credential record."""
    field: bytes
    passkey: bytes

    def __post_init__(self):
        for name in ("field", "passkey"):
            v = getattr(self, name)
            if len(v) != FIELD_SIZE:
                raise ValueError(f"Credential.{name} must be {FIELD_SIZE} bytes, got {len(v)}")
            object.__setattr__(self, name, bytes(v))

    @classmethod
    def unpack(cls, data: bytes) -> "Credential":
        if len(data) != CREDENTIAL_SIZE:
            raise DataUnpackError(f"credential must be {CREDENTIAL_SIZE} bytes, got {len(data)}")
        return cls(field=bytes(data[:FIELD_SIZE]), passkey=bytes(data[FIELD_SIZE:]))

    def pack(self) -> bytes:
        return self.field + self.passkey


@dataclass
class UserAccount:
    """Per-owner index of vault addresses, in creation order."""
    owner: Pubkey
    vaults: List[Pubkey] = field(default_factory=list)

    @staticmethod
    def size_for(vault_count: int) -> int:
        return USER_ACCOUNT_BASE_SIZE + vault_count * PUBKEY_BYTES

    @property
    def size(self) -> int:
        return self.size_for(len(self.vaults))

    def pack(self) -> bytes:
        out = bytearray(self.owner.data)
        out += _COUNT.pack(len(self.vaults))
        for v in self.vaults:
            out += v.data
        return bytes(out)

    def pack_into(self, buf: bytearray) -> None:
        _write(buf, self.pack(), "user account")

    @classmethod
    def unpack(cls, data: bytes) -> "UserAccount":
        raw_owner, off = _read(data, 0, PUBKEY_BYTES, "user owner")
        count, off = _read_count(data, off, PUBKEY_BYTES, "vault list")
        vaults = []
        for _ in range(count):
            raw, off = _read(data, off, PUBKEY_BYTES, "vault address")
            vaults.append(Pubkey(raw))
        _expect_consumed(data, off, "user account")
        return cls(owner=Pubkey(raw_owner), vaults=vaults)


def pack_name(name: str) -> bytes:
    raw = name.encode("utf-8")
    if len(raw) > NAME_SIZE:
        raise ValueError(f"vault name longer than {NAME_SIZE} bytes")
    return raw.ljust(NAME_SIZE, b"\x00")


def unpack_name(raw: bytes) -> str:
    try:
        return raw.rstrip(b"\x00").decode("utf-8")
    except UnicodeDecodeError as e:
        raise DataUnpackError(f"vault name is not valid UTF-8: {e}") from e


@dataclass
class VaultAccount:
    """Named, ordered sequence of credentials belonging to one user account."""
    name: str
    user_account: Pubkey
    credentials: List[Credential] = field(default_factory=list)

    @staticmethod
    def size_for(credential_count: int) -> int:
        return VAULT_ACCOUNT_BASE_SIZE + credential_count * CREDENTIAL_SIZE

    @property
    def size(self) -> int:
        return self.size_for(len(self.credentials))

    def credential_offset(self, index: int) -> int:
        """Byte offset of credential ``index`` inside the account data."""
        return VAULT_ACCOUNT_BASE_SIZE + index * CREDENTIAL_SIZE

    def pack(self) -> bytes:
        out = bytearray(pack_name(self.name))
        out += self.user_account.data
        out += _COUNT.pack(len(self.credentials))
        for c in self.credentials:
            out += c.pack()
        return bytes(out)

    def pack_into(self, buf: bytearray) -> None:
        _write(buf, self.pack(), "vault account")

    @classmethod
    def unpack(cls, data: bytes) -> "VaultAccount":
        raw_name, off = _read(data, 0, NAME_SIZE, "vault name")
        raw_user, off = _read(data, off, PUBKEY_BYTES, "vault user account")
        count, off = _read_count(data, off, CREDENTIAL_SIZE, "credential list")
        creds = []
        for _ in range(count):
            raw, off = _read(data, off, CREDENTIAL_SIZE, "credential")
            creds.append(Credential.unpack(raw))
        _expect_consumed(data, off, "vault account")
        return cls(name=unpack_name(raw_name), user_account=Pubkey(raw_user), credentials=creds)
