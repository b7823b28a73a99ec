"""keyvault.address

Account identities and deterministic (program-derived) addresses.

Profile / invariants:
- An identity is 32 raw bytes, rendered as base58 for humans.
- Wallet identities are Ed25519 public keys; ``Keypair`` wraps the private half
  using ``cryptography``.
- A program-derived address is ``sha256(seeds || [bump] || program_id || MARKER)``
  and MUST NOT decode to a point on the Ed25519 curve. No private key can exist
  for such an address, so a matching derived address is proof that the account
  belongs to the program. The processor re-derives every address it touches
  with ``find_program_address`` (it needs the bump) and compares keys;
  ``verify_program_address`` is the same check without the bump.
- ``find_program_address`` walks bumps 255 -> 0 and keeps the first off-curve
  candidate, so the result is a pure function of (seeds, program id).
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey, Ed25519PublicKey
from cryptography.exceptions import InvalidSignature


PUBKEY_BYTES = 32
MAX_SEEDS = 16
MAX_SEED_LEN = 32
PDA_MARKER = b"ProgramDerivedAddress"

USER_SEED = b"user"
VAULT_SEED = b"vault"


class PubkeyError(Exception):
    """Address derivation failure."""
    pass


class MaxSeedLengthExceeded(PubkeyError):
    pass


class InvalidSeeds(PubkeyError):
    """Seeds hash to an on-curve point (not usable as a program address)."""
    pass


# Base58 (bitcoin alphabet)
B58_ALPHABET = b"123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"
B58_MAP = {c: i for i, c in enumerate(B58_ALPHABET)}


def b58decode(s: str) -> bytes:
    s_bytes = s.encode("ascii") if isinstance(s, str) else s
    num = 0
    for c in s_bytes:
        if c not in B58_MAP:
            raise ValueError("Invalid base58 character")
        num = num * 58 + B58_MAP[c]
    n_pad = 0
    for c in s_bytes:
        if c == B58_ALPHABET[0]:
            n_pad += 1
        else:
            break
    full = num.to_bytes((num.bit_length() + 7) // 8, "big") if num else b""
    return b"\x00" * n_pad + full


def b58encode(b: bytes) -> str:
    n_pad = 0
    for c in b:
        if c == 0:
            n_pad += 1
        else:
            break
    num = int.from_bytes(b, "big")
    out = bytearray()
    while num > 0:
        num, rem = divmod(num, 58)
        out.append(B58_ALPHABET[rem])
    out.extend(B58_ALPHABET[0] for _ in range(n_pad))
    out.reverse()
    return out.decode("ascii")


# ---------------------------------------------------------------------------
# Ed25519 curve membership
# ---------------------------------------------------------------------------

_P = 2 ** 255 - 19
_D = (-121665 * pow(121666, _P - 2, _P)) % _P


def is_on_curve(data: bytes) -> bool:
    """Return True if ``data`` decompresses to a point on the Ed25519 curve.

    Mirrors the decompression used by the host: the y coordinate is the low 255
    bits reduced mod p, and the point exists iff (y^2 - 1) / (d*y^2 + 1) is a
    square in GF(p). The sign bit never affects membership.
    """
    if len(data) != PUBKEY_BYTES:
        raise ValueError(f"expected {PUBKEY_BYTES} bytes, got {len(data)}")
    y = (int.from_bytes(data, "little") & ((1 << 255) - 1)) % _P
    y2 = y * y % _P
    u = (y2 - 1) % _P
    v = (_D * y2 + 1) % _P
    # v is never zero: -1/d is not a square mod p
    x2 = u * pow(v, _P - 2, _P) % _P
    if x2 == 0:
        return True
    return pow(x2, (_P - 1) // 2, _P) == 1


# ---------------------------------------------------------------------------
# Pubkey / Keypair
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Pubkey:
    """32-byte account identity."""
    data: bytes

    def __post_init__(self):
        if not isinstance(self.data, (bytes, bytearray)) or len(self.data) != PUBKEY_BYTES:
            raise ValueError(f"Pubkey must be exactly {PUBKEY_BYTES} bytes")
        object.__setattr__(self, "data", bytes(self.data))

    @classmethod
    def from_string(cls, s: str) -> "Pubkey":
        raw = b58decode(s)
        if len(raw) != PUBKEY_BYTES:
            raise ValueError(f"base58 pubkey decodes to {len(raw)} bytes: {s}")
        return cls(raw)

    @classmethod
    def from_hex(cls, s: str) -> "Pubkey":
        if s.startswith("0x"):
            s = s[2:]
        return cls(bytes.fromhex(s))

    @classmethod
    def parse(cls, s: str) -> "Pubkey":
        """Accept base58 or 64-char hex."""
        if len(s) == 64 or s.startswith("0x"):
            try:
                return cls.from_hex(s)
            except ValueError:
                pass
        return cls.from_string(s)

    @classmethod
    def default(cls) -> "Pubkey":
        return cls(b"\x00" * PUBKEY_BYTES)

    def is_on_curve(self) -> bool:
        return is_on_curve(self.data)

    def __bytes__(self) -> bytes:
        return self.data

    def __str__(self) -> str:
        return b58encode(self.data)

    def __repr__(self) -> str:
        return f"Pubkey({self})"


SYSTEM_PROGRAM_ID = Pubkey.default()
# Default program identity for the vault program.
VAULT_PROGRAM_ID = Pubkey(hashlib.sha256(b"keyvault-program").digest())


class Keypair:
    """Ed25519 signing identity for a wallet."""

    def __init__(self, private_key: Optional[Ed25519PrivateKey] = None):
        self._sk = private_key or Ed25519PrivateKey.generate()
        pub = self._sk.public_key().public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw,
        )
        self._pubkey = Pubkey(pub)

    @classmethod
    def from_seed(cls, seed: bytes) -> "Keypair":
        if len(seed) != 32:
            raise ValueError("Keypair seed must be 32 bytes")
        return cls(Ed25519PrivateKey.from_private_bytes(seed))

    @classmethod
    def from_label(cls, label: str) -> "Keypair":
        """Deterministic keypair for fixtures and scenarios."""
        return cls.from_seed(hashlib.sha256(label.encode("utf-8")).digest())

    @property
    def pubkey(self) -> Pubkey:
        return self._pubkey

    def sign(self, message: bytes) -> bytes:
        return self._sk.sign(message)


def verify_signature(pubkey: Pubkey, message: bytes, signature: bytes) -> bool:
    """Ed25519 signature check; False for malformed keys or signatures."""
    try:
        Ed25519PublicKey.from_public_bytes(pubkey.data).verify(signature, message)
        return True
    except (InvalidSignature, ValueError):
        return False


# ---------------------------------------------------------------------------
# Program-derived addresses
# ---------------------------------------------------------------------------

def _check_seeds(seeds: Sequence[bytes]) -> None:
    if len(seeds) > MAX_SEEDS:
        raise MaxSeedLengthExceeded(f"too many seeds: {len(seeds)} > {MAX_SEEDS}")
    for s in seeds:
        if len(s) > MAX_SEED_LEN:
            raise MaxSeedLengthExceeded(f"seed longer than {MAX_SEED_LEN} bytes: {len(s)}")


def create_program_address(seeds: Sequence[bytes], program_id: Pubkey) -> Pubkey:
    """Hash seeds (bump included by the caller) into an off-curve address."""
    # the bump seed is appended as its own one-byte seed
    _check_seeds(seeds)
    h = hashlib.sha256()
    for s in seeds:
        h.update(bytes(s))
    h.update(program_id.data)
    h.update(PDA_MARKER)
    candidate = h.digest()
    if is_on_curve(candidate):
        raise InvalidSeeds("derived address lies on the ed25519 curve")
    return Pubkey(candidate)


def find_program_address(seeds: Sequence[bytes], program_id: Pubkey) -> Tuple[Pubkey, int]:
    """Return ``(address, bump)`` for the highest bump yielding an off-curve address."""
    _check_seeds(list(seeds) + [b"\xff"])
    for bump in range(255, -1, -1):
        try:
            return create_program_address(list(seeds) + [bytes([bump])], program_id), bump
        except InvalidSeeds:
            continue
    raise InvalidSeeds("no viable bump seed found")


def verify_program_address(address: Pubkey, seeds: Sequence[bytes], program_id: Pubkey) -> bool:
    """Recompute the derived address for ``seeds`` and compare."""
    expected, _ = find_program_address(seeds, program_id)
    return expected == address


def user_seeds(owner: Pubkey) -> List[bytes]:
    return [USER_SEED, owner.data]


def vault_seeds(owner: Pubkey, name: str) -> List[bytes]:
    return [VAULT_SEED, owner.data, name.encode("utf-8")]


def derive_user_address(owner: Pubkey, program_id: Pubkey = VAULT_PROGRAM_ID) -> Tuple[Pubkey, int]:
    return find_program_address(user_seeds(owner), program_id)


def derive_vault_address(owner: Pubkey, name: str, program_id: Pubkey = VAULT_PROGRAM_ID) -> Tuple[Pubkey, int]:
    return find_program_address(vault_seeds(owner, name), program_id)
