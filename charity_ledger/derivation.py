"""Deterministic entity addressing.

Every charity, vault and donation receipt lives at an address derived from a
namespace tag plus seed parts, so any party can recompute where an entity
must live without a lookup table.

Derivation:

    candidate(bump) = SHA256( for each seed: u8(len(seed)) || seed
                              || u8(bump) || program_id || "ProgramDerivedAddress" )

The search starts at bump 255 and counts down, returning the first
candidate that is *not* a valid Ed25519 point, together with the bump
("proof"). Off-curve addresses have no private key, so only the program can
authorize anything on their behalf. Recording the bump lets later
instructions re-derive the address with a single hash.

Seeds are length-prefixed so that distinct seed tuples never produce the same
hash input (``("ab", "c")`` and ``("a", "bc")`` stay distinct).

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import hashlib
from typing import Optional, Tuple, Union

from charity_ledger.errors import AddressDerivationExhausted, InvalidSeeds
from charity_ledger.keys import Address, is_on_curve


PDA_MARKER = b"ProgramDerivedAddress"
MAX_SEED_LEN = 32
MAX_SEEDS = 16
MAX_BUMP = 255

NAMESPACE_CHARITY = "charity"
NAMESPACE_VAULT = "vault"
NAMESPACE_DONATION = "donation"

NAMESPACES = frozenset({NAMESPACE_CHARITY, NAMESPACE_VAULT, NAMESPACE_DONATION})

PROGRAM_ID = Address(hashlib.sha256(b"charity_ledger.program.v1").digest())

SeedPart = Union[Address, str, bytes, int]


def seed_bytes(part: SeedPart) -> bytes:
    """Encode one seed part: addresses raw, text UTF-8, ints as u64 LE."""
    if isinstance(part, Address):
        return part.raw
    if isinstance(part, bool):
        raise InvalidSeeds("bool is not a valid seed part")
    if isinstance(part, int):
        if part < 0 or part >= 2 ** 64:
            raise InvalidSeeds(f"integer seed out of u64 range: {part}")
        return part.to_bytes(8, "little")
    if isinstance(part, str):
        return part.encode("utf-8")
    if isinstance(part, (bytes, bytearray)):
        return bytes(part)
    raise InvalidSeeds(f"unsupported seed type: {type(part).__name__}")


def _encode_seeds(namespace: str, parts: Tuple[SeedPart, ...]) -> Tuple[bytes, ...]:
    if namespace not in NAMESPACES:
        raise InvalidSeeds(f"unknown namespace {namespace!r}", namespace=namespace)
    seeds = (seed_bytes(namespace),) + tuple(seed_bytes(p) for p in parts)
    if len(seeds) > MAX_SEEDS:
        raise InvalidSeeds(f"too many seeds: {len(seeds)} > {MAX_SEEDS}")
    for seed in seeds:
        if len(seed) > MAX_SEED_LEN:
            raise InvalidSeeds(f"seed longer than {MAX_SEED_LEN} bytes: {len(seed)}")
    return seeds


def _candidate(seeds: Tuple[bytes, ...], bump: int, program_id: Address) -> bytes:
    h = hashlib.sha256()
    for seed in seeds:
        h.update(bytes([len(seed)]))
        h.update(seed)
    h.update(bytes([bump]))
    h.update(program_id.raw)
    h.update(PDA_MARKER)
    return h.digest()


def create_address(
    namespace: str,
    *parts: SeedPart,
    bump: int,
    program_id: Address = PROGRAM_ID,
) -> Address:
    """Recompute the address for a known bump.

    Raises InvalidSeeds if the candidate is on-curve (the bump is not a
    valid proof for these seeds).
    """
    if not 0 <= bump <= MAX_BUMP:
        raise InvalidSeeds(f"bump out of range: {bump}")
    seeds = _encode_seeds(namespace, parts)
    raw = _candidate(seeds, bump, program_id)
    if is_on_curve(raw):
        raise InvalidSeeds("derived address lies on the ed25519 curve", namespace=namespace, bump=bump)
    return Address(raw)


def derive(
    namespace: str,
    *parts: SeedPart,
    program_id: Address = PROGRAM_ID,
    max_attempts: int = MAX_BUMP + 1,
) -> Tuple[Address, int]:
    """Find the canonical (address, bump) for ``namespace`` and seed parts."""
    seeds = _encode_seeds(namespace, parts)
    attempts = min(max_attempts, MAX_BUMP + 1)
    for bump in range(MAX_BUMP, MAX_BUMP - attempts, -1):
        raw = _candidate(seeds, bump, program_id)
        if not is_on_curve(raw):
            return Address(raw), bump
    raise AddressDerivationExhausted(
        f"no off-curve address within {attempts} attempts",
        namespace=namespace,
    )


def verify_derivation(
    address: Address,
    namespace: str,
    *parts: SeedPart,
    bump: int,
    program_id: Address = PROGRAM_ID,
) -> bool:
    """True when ``address`` is exactly what (namespace, parts, bump) derive to."""
    try:
        return create_address(namespace, *parts, bump=bump, program_id=program_id) == address
    except InvalidSeeds:
        return False


# ---------------------------------------------------------------------------
# Namespace helpers
# ---------------------------------------------------------------------------

def charity_address(
    authority: Address,
    name: str,
    program_id: Address = PROGRAM_ID,
    max_attempts: int = MAX_BUMP + 1,
) -> Tuple[Address, int]:
    return derive(NAMESPACE_CHARITY, authority, name, program_id=program_id, max_attempts=max_attempts)


def vault_address(
    charity: Address,
    program_id: Address = PROGRAM_ID,
    bump: Optional[int] = None,
    max_attempts: int = MAX_BUMP + 1,
) -> Tuple[Address, int]:
    """Derive a charity's vault; with a recorded bump this is a single hash."""
    if bump is not None:
        return create_address(NAMESPACE_VAULT, charity, bump=bump, program_id=program_id), bump
    return derive(NAMESPACE_VAULT, charity, program_id=program_id, max_attempts=max_attempts)


def donation_address(
    donor: Address,
    charity: Address,
    sequence: int,
    program_id: Address = PROGRAM_ID,
    max_attempts: int = MAX_BUMP + 1,
) -> Tuple[Address, int]:
    return derive(
        NAMESPACE_DONATION, donor, charity, sequence,
        program_id=program_id, max_attempts=max_attempts,
    )
