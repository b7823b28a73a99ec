"""
Keyvault instruction codec.

Wire format (byte offsets from the start of the instruction data):

    tag  operation          payload
    ───  ─────────────────  ──────────────────────────────────────────────────
     0   InitUserAccount    (none)
     1   InitVaultAccount   name: remaining bytes, UTF-8
     2   AddCredential      credential: 64 bytes | name: remaining bytes
     3   EditOrDelete       delete flag: 1 byte | index: u32 LE |
                            credential: 64 bytes | name: remaining bytes

Names are 1..32 bytes of UTF-8 without NUL: they must fit both the vault's
fixed 32-byte name field and a single address seed.

Decoding is a pure function of the input buffer. Every operation is a frozen
dataclass so the processor can dispatch on type.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from enum import IntEnum
from typing import Tuple, Union

from keyvault.errors import InvalidInstruction, MalformedInstruction
from keyvault.state import CREDENTIAL_SIZE, NAME_SIZE


class InstructionTag(IntEnum):
    INIT_USER_ACCOUNT = 0
    INIT_VAULT_ACCOUNT = 1
    ADD_CREDENTIAL = 2
    EDIT_OR_DELETE = 3


_INDEX = struct.Struct("<I")


@dataclass(frozen=True)
class InitUserAccount:
    tag = InstructionTag.INIT_USER_ACCOUNT


@dataclass(frozen=True)
class InitVaultAccount:
    name: str
    tag = InstructionTag.INIT_VAULT_ACCOUNT


@dataclass(frozen=True)
class AddCredential:
    name: str
    payload: bytes
    tag = InstructionTag.ADD_CREDENTIAL


@dataclass(frozen=True)
class EditOrDelete:
    name: str
    index: int
    delete_flag: int
    payload: bytes
    tag = InstructionTag.EDIT_OR_DELETE

    @property
    def is_delete(self) -> bool:
        return self.delete_flag != 0


Operation = Union[InitUserAccount, InitVaultAccount, AddCredential, EditOrDelete]


def _decode_name(raw: bytes) -> str:
    if not raw:
        raise MalformedInstruction("vault name is empty")
    if len(raw) > NAME_SIZE:
        raise MalformedInstruction(f"vault name longer than {NAME_SIZE} bytes: {len(raw)}")
    try:
        name = raw.decode("utf-8")
    except UnicodeDecodeError as e:
        raise MalformedInstruction(f"vault name is not valid UTF-8: {e}") from e
    if "\x00" in name:
        raise MalformedInstruction("vault name contains NUL")
    return name


def _take(buf: bytes, n: int, what: str) -> Tuple[bytes, bytes]:
    if len(buf) < n:
        raise MalformedInstruction(f"{what}: need {n} bytes, got {len(buf)}")
    return buf[:n], buf[n:]


def decode_instruction(data: bytes) -> Operation:
    """Decode raw instruction data into a typed operation."""
    if not data:
        raise MalformedInstruction("instruction data is empty")
    tag, rest = data[0], bytes(data[1:])

    if tag == InstructionTag.INIT_USER_ACCOUNT:
        return InitUserAccount()

    if tag == InstructionTag.INIT_VAULT_ACCOUNT:
        return InitVaultAccount(name=_decode_name(rest))

    if tag == InstructionTag.ADD_CREDENTIAL:
        payload, rest = _take(rest, CREDENTIAL_SIZE, "credential payload")
        return AddCredential(name=_decode_name(rest), payload=payload)

    if tag == InstructionTag.EDIT_OR_DELETE:
        flag, rest = _take(rest, 1, "delete flag")
        raw_index, rest = _take(rest, _INDEX.size, "credential index")
        payload, rest = _take(rest, CREDENTIAL_SIZE, "credential payload")
        (index,) = _INDEX.unpack(raw_index)
        return EditOrDelete(name=_decode_name(rest), index=index, delete_flag=flag[0], payload=payload)

    raise InvalidInstruction(tag)


def encode_name(name: str) -> bytes:
    """UTF-8 bytes of a vault name, held to the decoder's rules."""
    raw = name.encode("utf-8")
    _decode_name(raw)
    return raw


def _check_payload(payload: bytes) -> bytes:
    if len(payload) != CREDENTIAL_SIZE:
        raise MalformedInstruction(f"credential payload must be {CREDENTIAL_SIZE} bytes, got {len(payload)}")
    return bytes(payload)


def encode_instruction(op: Operation) -> bytes:
    """Encode an operation into its wire format."""
    if isinstance(op, InitUserAccount):
        return bytes([InstructionTag.INIT_USER_ACCOUNT])
    if isinstance(op, InitVaultAccount):
        return bytes([InstructionTag.INIT_VAULT_ACCOUNT]) + encode_name(op.name)
    if isinstance(op, AddCredential):
        return bytes([InstructionTag.ADD_CREDENTIAL]) + _check_payload(op.payload) + encode_name(op.name)
    if isinstance(op, EditOrDelete):
        if not 0 <= op.delete_flag <= 0xFF:
            raise MalformedInstruction(f"delete flag out of range: {op.delete_flag}")
        if not 0 <= op.index <= 0xFFFFFFFF:
            raise MalformedInstruction(f"index out of u32 range: {op.index}")
        return (
            bytes([InstructionTag.EDIT_OR_DELETE, op.delete_flag])
            + _INDEX.pack(op.index)
            + _check_payload(op.payload)
            + encode_name(op.name)
        )
    raise TypeError(f"not an instruction operation: {type(op).__name__}")
