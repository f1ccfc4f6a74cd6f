"""
Address derivation tests: determinism, uniqueness, the off-curve search and
seed limits.
"""

import hashlib

import pytest

from charity_ledger import derivation
from charity_ledger.derivation import (
    MAX_SEED_LEN,
    NAMESPACE_CHARITY,
    NAMESPACE_VAULT,
    PROGRAM_ID,
    charity_address,
    create_address,
    derive,
    donation_address,
    seed_bytes,
    vault_address,
    verify_derivation,
)
from charity_ledger.errors import AddressDerivationExhausted, ErrorKind, InvalidSeeds
from charity_ledger.keys import Address, Keypair, b58decode, b58encode, is_on_curve


def _addr(label: str) -> Address:
    return Keypair.from_seed(hashlib.sha256(label.encode()).digest()).address


class TestKeys:

    def test_keypair_addresses_are_on_curve(self):
        for i in range(5):
            assert _addr(f"wallet-{i}").on_curve

    def test_base58_of_zero_address(self):
        assert b58encode(b"\x00" * 32) == "1" * 32
        assert b58decode("1" * 32) == b"\x00" * 32

    def test_address_text_form_round_trips(self):
        a = _addr("alice")
        assert Address.from_string(str(a)) == a
        assert Address.coerce(str(a)) == a
        assert Address.coerce(a.raw) == a

    def test_address_rejects_wrong_length(self):
        with pytest.raises(ValueError):
            Address(b"\x01" * 31)

    def test_invalid_base58_rejected(self):
        with pytest.raises(ValueError):
            Address.from_string("0OIl")

    def test_is_on_curve_rejects_short_input(self):
        assert is_on_curve(b"\x01" * 31) is False


class TestDeterminism:

    def test_same_inputs_same_address_and_bump(self):
        authority = _addr("alice")
        assert charity_address(authority, "Water Fund") == charity_address(authority, "Water Fund")

    def test_derived_address_is_off_curve(self):
        address, bump = charity_address(_addr("alice"), "Water Fund")
        assert not address.on_curve
        assert 0 <= bump <= 255

    def test_recorded_bump_reproduces_address(self):
        authority = _addr("alice")
        address, bump = charity_address(authority, "Water Fund")
        assert create_address(NAMESPACE_CHARITY, authority, "Water Fund", bump=bump) == address
        assert verify_derivation(address, NAMESPACE_CHARITY, authority, "Water Fund", bump=bump)

    def test_wrong_bump_fails_verification(self):
        authority = _addr("alice")
        address, bump = charity_address(authority, "Water Fund")
        assert not verify_derivation(address, NAMESPACE_CHARITY, authority, "Water Fund", bump=(bump - 1) % 256)

    def test_bump_is_first_off_curve_from_255(self, monkeypatch):
        real = derivation.is_on_curve
        calls = []

        def counting(raw):
            calls.append(raw)
            return real(raw)

        monkeypatch.setattr(derivation, "is_on_curve", counting)
        _, bump = derive(NAMESPACE_CHARITY, _addr("alice"), "Water Fund")
        assert len(calls) == 256 - bump

    def test_program_id_changes_address(self):
        authority = _addr("alice")
        other_program = Address(hashlib.sha256(b"other-program").digest())
        a, _ = charity_address(authority, "Water Fund")
        b, _ = charity_address(authority, "Water Fund", program_id=other_program)
        assert a != b


class TestUniqueness:

    def test_distinct_names_distinct_addresses(self):
        authority = _addr("alice")
        names = ["Water Fund", "Food Bank", "water fund", "Water Fund "]
        addresses = {charity_address(authority, n)[0] for n in names}
        assert len(addresses) == len(names)

    def test_distinct_authorities_distinct_addresses(self):
        addresses = {charity_address(_addr(f"auth-{i}"), "Water Fund")[0] for i in range(10)}
        assert len(addresses) == 10

    def test_vault_differs_from_charity(self):
        charity, _ = charity_address(_addr("alice"), "Water Fund")
        vault, _ = vault_address(charity)
        assert vault != charity
        assert not vault.on_curve

    def test_vault_from_recorded_bump(self):
        charity, _ = charity_address(_addr("alice"), "Water Fund")
        vault, bump = vault_address(charity)
        assert vault_address(charity, bump=bump) == (vault, bump)

    def test_seed_boundaries_are_length_prefixed(self):
        a, _ = derive(NAMESPACE_VAULT, "ab", "c")
        b, _ = derive(NAMESPACE_VAULT, "a", "bc")
        assert a != b

    def test_donation_sequence_distinguishes(self):
        donor = _addr("bob")
        charity, _ = charity_address(_addr("alice"), "Water Fund")
        seen = {donation_address(donor, charity, seq)[0] for seq in range(5)}
        assert len(seen) == 5


class TestSeedLimits:

    def test_seed_encoding(self):
        a = _addr("alice")
        assert seed_bytes(a) == a.raw
        assert seed_bytes("é") == "é".encode("utf-8")
        assert seed_bytes(1) == b"\x01" + b"\x00" * 7

    def test_seed_too_long(self):
        with pytest.raises(InvalidSeeds) as exc:
            derive(NAMESPACE_CHARITY, _addr("alice"), "x" * (MAX_SEED_LEN + 1))
        assert exc.value.kind is ErrorKind.ADDRESSING

    def test_seed_at_limit_ok(self):
        address, _ = derive(NAMESPACE_CHARITY, _addr("alice"), "x" * MAX_SEED_LEN)
        assert isinstance(address, Address)

    def test_too_many_seeds(self):
        with pytest.raises(InvalidSeeds):
            derive(NAMESPACE_VAULT, *[str(i) for i in range(16)])

    def test_bool_and_negative_seeds_rejected(self):
        with pytest.raises(InvalidSeeds):
            seed_bytes(True)
        with pytest.raises(InvalidSeeds):
            seed_bytes(-1)

    def test_bump_out_of_range(self):
        with pytest.raises(InvalidSeeds):
            create_address(NAMESPACE_VAULT, _addr("alice"), bump=256)

    def test_unknown_namespace_rejected(self):
        with pytest.raises(InvalidSeeds):
            derive("treasury", _addr("alice"))
        assert not verify_derivation(_addr("alice"), "treasury", _addr("alice"), bump=255)


class TestExhaustion:

    def test_all_candidates_on_curve_raises(self, monkeypatch):
        monkeypatch.setattr(derivation, "is_on_curve", lambda raw: True)
        with pytest.raises(AddressDerivationExhausted) as exc:
            derive(NAMESPACE_CHARITY, _addr("alice"), "Water Fund")
        assert exc.value.kind is ErrorKind.ADDRESSING

    def test_attempt_bound_respected(self, monkeypatch):
        calls = []

        def always_on_curve(raw):
            calls.append(raw)
            return True

        monkeypatch.setattr(derivation, "is_on_curve", always_on_curve)
        with pytest.raises(AddressDerivationExhausted):
            derive(NAMESPACE_CHARITY, _addr("alice"), "Water Fund", max_attempts=3)
        assert len(calls) == 3

    def test_create_address_rejects_on_curve_candidate(self, monkeypatch):
        monkeypatch.setattr(derivation, "is_on_curve", lambda raw: True)
        with pytest.raises(InvalidSeeds):
            create_address(NAMESPACE_VAULT, _addr("alice"), bump=255)

    def test_program_id_constant_is_stable(self):
        assert PROGRAM_ID == Address(hashlib.sha256(b"charity_ledger.program.v1").digest())
