"""charity_ledger.keys

Identities and addresses.

Every entity in the ledger (wallets, charities, vaults, donation receipts,
the program itself) is named by a 32-byte ``Address``. Wallet addresses are
raw Ed25519 public keys and can sign; derived addresses are deliberately
*off* the Ed25519 curve so that no private key exists for them.

Text form is base58 (Bitcoin alphabet), the same encoding used for did:key
identifiers elsewhere in the ecosystem.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from cryptography.exceptions import InvalidSignature as _BadSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey, Ed25519PublicKey


ADDRESS_LENGTH = 32
SIGNATURE_LENGTH = 64

# Base58 implementation (no external deps)
B58_ALPHABET = b"123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"
B58_MAP = {c: i for i, c in enumerate(B58_ALPHABET)}


def b58decode(s: Union[str, bytes]) -> bytes:
    if isinstance(s, str):
        s_bytes = s.encode("ascii")
    else:
        s_bytes = s
    num = 0
    for c in s_bytes:
        if c not in B58_MAP:
            raise ValueError("Invalid base58 character")
        num = num * 58 + B58_MAP[c]
    # Count leading zeros
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


def is_on_curve(raw: bytes) -> bool:
    """Return True when ``raw`` decompresses to a point on edwards25519.

    The y coordinate is read little-endian with the sign bit masked off and
    reduced mod p. The point exists iff (y^2 - 1) / (d*y^2 + 1) is a square.
    """
    if len(raw) != ADDRESS_LENGTH:
        return False
    y = (int.from_bytes(raw, "little") & ((1 << 255) - 1)) % _P
    yy = y * y % _P
    u = (yy - 1) % _P
    v = (_D * yy + 1) % _P
    x2 = u * pow(v, _P - 2, _P) % _P
    if x2 == 0:
        return True
    return pow(x2, (_P - 1) // 2, _P) == 1


# ---------------------------------------------------------------------------
# Address
# ---------------------------------------------------------------------------

@dataclass(frozen=True, order=True)
class Address:
    """A 32-byte entity address."""
    raw: bytes

    def __post_init__(self):
        if not isinstance(self.raw, (bytes, bytearray)):
            raise TypeError(f"Address requires bytes, got {type(self.raw).__name__}")
        if len(self.raw) != ADDRESS_LENGTH:
            raise ValueError(f"Address must be {ADDRESS_LENGTH} bytes, got {len(self.raw)}")
        object.__setattr__(self, "raw", bytes(self.raw))

    def __str__(self) -> str:
        return b58encode(self.raw)

    def __repr__(self) -> str:
        return f"Address({self})"

    def __bytes__(self) -> bytes:
        return self.raw

    @property
    def on_curve(self) -> bool:
        return is_on_curve(self.raw)

    @classmethod
    def from_string(cls, text: str) -> "Address":
        try:
            raw = b58decode(text.strip())
        except ValueError as e:
            raise ValueError(f"Invalid base58 address: {text!r}") from e
        return cls(raw)

    @classmethod
    def coerce(cls, value: Union["Address", str, bytes]) -> "Address":
        """Accept an Address, its base58 text, or its raw bytes."""
        if isinstance(value, Address):
            return value
        if isinstance(value, str):
            return cls.from_string(value)
        if isinstance(value, (bytes, bytearray)):
            return cls(bytes(value))
        raise TypeError(f"Cannot interpret {type(value).__name__} as an Address")

    @classmethod
    def zero(cls) -> "Address":
        return cls(b"\x00" * ADDRESS_LENGTH)


# ---------------------------------------------------------------------------
# Keypairs and signatures
# ---------------------------------------------------------------------------

class Keypair:
    """An Ed25519 signing identity whose address is its raw public key."""

    def __init__(self, private_key: Ed25519PrivateKey):
        self._private_key = private_key
        pub = private_key.public_key().public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw,
        )
        self._address = Address(pub)

    @classmethod
    def generate(cls) -> "Keypair":
        return cls(Ed25519PrivateKey.generate())

    @classmethod
    def from_seed(cls, seed: bytes) -> "Keypair":
        """Load a keypair from its 32-byte private seed."""
        if len(seed) != 32:
            raise ValueError("Ed25519 seed must be 32 bytes")
        return cls(Ed25519PrivateKey.from_private_bytes(seed))

    @property
    def address(self) -> Address:
        return self._address

    def seed(self) -> bytes:
        return self._private_key.private_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PrivateFormat.Raw,
            encryption_algorithm=serialization.NoEncryption(),
        )

    def sign(self, message: bytes) -> bytes:
        return self._private_key.sign(message)

    def __repr__(self) -> str:
        return f"Keypair({self._address})"


def verify_signature(signer: Address, message: bytes, signature: bytes) -> bool:
    """Verify an Ed25519 signature made by ``signer`` over ``message``."""
    if len(signature) != SIGNATURE_LENGTH:
        return False
    try:
        Ed25519PublicKey.from_public_bytes(signer.raw).verify(signature, message)
    except (_BadSignature, ValueError):
        return False
    return True
