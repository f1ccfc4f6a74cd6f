"""charity_ledger.state

Typed entity records and their fixed-width byte layouts.

Layout rules:
- 8-byte discriminator = sha256("account:<Record>")[:8]
- addresses: 32 raw bytes
- u64 / i64: 8 bytes little-endian; bool / bump: 1 byte
- optional i64: 1 tag byte (0 = none, 1 = some) + 8 bytes
- bounded string: u32 length prefix + zero-padded slot of max_len bytes

A Charity's description slot is the last field, so its width is implied by
the record size (``len(data) - CHARITY_FIXED_SIZE``). Records are therefore
sized once at creation and only grow through an explicit reallocation.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import hashlib
import struct
from dataclasses import dataclass, replace
from typing import Any, Dict, Optional, Tuple

from charity_ledger.derivation import MAX_SEED_LEN
from charity_ledger.errors import AddressMismatch, InvalidLength
from charity_ledger.keys import ADDRESS_LENGTH, Address


NAME_SLOT = MAX_SEED_LEN
U64_MAX = 2 ** 64 - 1


def discriminator(record_name: str) -> bytes:
    return hashlib.sha256(f"account:{record_name}".encode("utf-8")).digest()[:8]


CHARITY_DISCRIMINATOR = discriminator("Charity")
DONATION_DISCRIMINATOR = discriminator("Donation")


# ---------------------------------------------------------------------------
# Field codecs
# ---------------------------------------------------------------------------

_U32 = struct.Struct("<I")
_U64 = struct.Struct("<Q")
_I64 = struct.Struct("<q")


def _pack_string(value: str, slot: int, field_name: str) -> bytes:
    raw = value.encode("utf-8")
    if len(raw) > slot:
        raise InvalidLength(f"{field_name} exceeds {slot} bytes", field=field_name, length=len(raw))
    return _U32.pack(len(raw)) + raw + b"\x00" * (slot - len(raw))


def _unpack_string(data: bytes, offset: int, slot: int) -> Tuple[str, int]:
    (length,) = _U32.unpack_from(data, offset)
    offset += _U32.size
    if length > slot:
        raise ValueError(f"string length {length} exceeds slot {slot}")
    value = data[offset:offset + length].decode("utf-8")
    return value, offset + slot


def _pack_optional_i64(value: Optional[int]) -> bytes:
    if value is None:
        return b"\x00" + b"\x00" * 8
    return b"\x01" + _I64.pack(value)


def _unpack_optional_i64(data: bytes, offset: int) -> Tuple[Optional[int], int]:
    tag = data[offset]
    (value,) = _I64.unpack_from(data, offset + 1)
    return (value if tag == 1 else None), offset + 9


def _unpack_address(data: bytes, offset: int) -> Tuple[Address, int]:
    return Address(data[offset:offset + ADDRESS_LENGTH]), offset + ADDRESS_LENGTH


def _check_discriminator(data: bytes, expected: bytes, record_name: str) -> None:
    if len(data) < 8 or data[:8] != expected:
        raise AddressMismatch(f"account does not hold a {record_name} record")


# =============================================================================
# CHARITY
# =============================================================================

CHARITY_FIXED_SIZE = (
    8                               # discriminator
    + ADDRESS_LENGTH                # authority
    + _U32.size + NAME_SLOT         # name
    + 8                             # total_received
    + 8                             # donation_count
    + 1                             # paused
    + 8                             # created_at
    + 8                             # updated_at
    + 9                             # deleted_at
    + 9                             # withdrawn_at
    + 1                             # bump
    + 1                             # vault_bump
    + _U32.size                     # description length prefix
)


def charity_space(description_max: int) -> int:
    """Bytes a Charity record needs for a given description limit."""
    return CHARITY_FIXED_SIZE + description_max


@dataclass(frozen=True)
class Charity:
    """A fundraising entity's metadata record (funds live in its vault)."""
    authority: Address
    name: str
    description: str
    total_received: int = 0
    donation_count: int = 0
    paused: bool = False
    created_at: int = 0
    updated_at: int = 0
    deleted_at: Optional[int] = None
    withdrawn_at: Optional[int] = None
    bump: int = 0
    vault_bump: int = 0

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    @property
    def status(self) -> str:
        if self.deleted_at is not None:
            return "deleted"
        return "paused" if self.paused else "active"

    def evolve(self, **changes: Any) -> "Charity":
        return replace(self, **changes)

    def pack(self, description_slot: int) -> bytes:
        out = bytearray()
        out += CHARITY_DISCRIMINATOR
        out += self.authority.raw
        out += _pack_string(self.name, NAME_SLOT, "name")
        out += _U64.pack(self.total_received)
        out += _U64.pack(self.donation_count)
        out += b"\x01" if self.paused else b"\x00"
        out += _I64.pack(self.created_at)
        out += _I64.pack(self.updated_at)
        out += _pack_optional_i64(self.deleted_at)
        out += _pack_optional_i64(self.withdrawn_at)
        out += bytes([self.bump, self.vault_bump])
        out += _pack_string(self.description, description_slot, "description")
        return bytes(out)

    @classmethod
    def unpack(cls, data: bytes) -> "Charity":
        _check_discriminator(data, CHARITY_DISCRIMINATOR, "Charity")
        if len(data) < CHARITY_FIXED_SIZE:
            raise AddressMismatch("Charity record truncated")
        offset = 8
        authority, offset = _unpack_address(data, offset)
        name, offset = _unpack_string(data, offset, NAME_SLOT)
        (total_received,) = _U64.unpack_from(data, offset)
        (donation_count,) = _U64.unpack_from(data, offset + 8)
        paused = data[offset + 16] == 1
        (created_at,) = _I64.unpack_from(data, offset + 17)
        (updated_at,) = _I64.unpack_from(data, offset + 25)
        offset += 33
        deleted_at, offset = _unpack_optional_i64(data, offset)
        withdrawn_at, offset = _unpack_optional_i64(data, offset)
        bump, vault_bump = data[offset], data[offset + 1]
        offset += 2
        description, _ = _unpack_string(data, offset, len(data) - CHARITY_FIXED_SIZE)
        return cls(
            authority=authority,
            name=name,
            description=description,
            total_received=total_received,
            donation_count=donation_count,
            paused=paused,
            created_at=created_at,
            updated_at=updated_at,
            deleted_at=deleted_at,
            withdrawn_at=withdrawn_at,
            bump=bump,
            vault_bump=vault_bump,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "authority": str(self.authority),
            "name": self.name,
            "description": self.description,
            "total_received": self.total_received,
            "donation_count": self.donation_count,
            "paused": self.paused,
            "status": self.status,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "deleted_at": self.deleted_at,
            "withdrawn_at": self.withdrawn_at,
            "bump": self.bump,
            "vault_bump": self.vault_bump,
        }


def description_slot(data: bytes) -> int:
    """Description capacity implied by an existing Charity record."""
    return len(data) - CHARITY_FIXED_SIZE


# =============================================================================
# DONATION
# =============================================================================

DONATION_SIZE = (
    8                               # discriminator
    + ADDRESS_LENGTH                # donor
    + ADDRESS_LENGTH                # charity
    + _U32.size + NAME_SLOT         # charity_name_snapshot
    + 8                             # amount
    + 8                             # created_at
    + 8                             # sequence
    + 1                             # bump
)


@dataclass(frozen=True)
class Donation:
    """Immutable receipt of one contribution."""
    donor: Address
    charity: Address
    charity_name_snapshot: str
    amount: int
    created_at: int
    sequence: int
    bump: int

    def pack(self) -> bytes:
        out = bytearray()
        out += DONATION_DISCRIMINATOR
        out += self.donor.raw
        out += self.charity.raw
        out += _pack_string(self.charity_name_snapshot, NAME_SLOT, "charity_name_snapshot")
        out += _U64.pack(self.amount)
        out += _I64.pack(self.created_at)
        out += _U64.pack(self.sequence)
        out += bytes([self.bump])
        return bytes(out)

    @classmethod
    def unpack(cls, data: bytes) -> "Donation":
        _check_discriminator(data, DONATION_DISCRIMINATOR, "Donation")
        if len(data) != DONATION_SIZE:
            raise AddressMismatch("Donation record has wrong size")
        offset = 8
        donor, offset = _unpack_address(data, offset)
        charity, offset = _unpack_address(data, offset)
        snapshot, offset = _unpack_string(data, offset, NAME_SLOT)
        (amount,) = _U64.unpack_from(data, offset)
        (created_at,) = _I64.unpack_from(data, offset + 8)
        (sequence,) = _U64.unpack_from(data, offset + 16)
        bump = data[offset + 24]
        return cls(
            donor=donor,
            charity=charity,
            charity_name_snapshot=snapshot,
            amount=amount,
            created_at=created_at,
            sequence=sequence,
            bump=bump,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "donor": str(self.donor),
            "charity": str(self.charity),
            "charity_name_snapshot": self.charity_name_snapshot,
            "amount": self.amount,
            "created_at": self.created_at,
            "sequence": self.sequence,
        }


def is_charity_record(data: bytes) -> bool:
    return len(data) >= 8 and data[:8] == CHARITY_DISCRIMINATOR


def is_donation_record(data: bytes) -> bool:
    return len(data) >= 8 and data[:8] == DONATION_DISCRIMINATOR
