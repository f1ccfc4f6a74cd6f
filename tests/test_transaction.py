"""Signed envelopes and the processor."""

from dataclasses import replace

import pytest

from charity_ledger.errors import ErrorKind, MalformedInstruction
from charity_ledger.transaction import NonceRegistry, Processor, Transaction


@pytest.fixture
def processor(program):
    return Processor(program)


class TestTransaction:

    def test_signature_verifies(self, alice):
        tx = Transaction.build(alice, "create_charity", name="Water Fund", description="desc")
        assert tx.signer == alice.address
        assert tx.verify()

    def test_tampered_args_fail(self, alice):
        tx = Transaction.build(alice, "donate", charity="x", amount=5)
        assert not replace(tx, args={"charity": "x", "amount": 6}).verify()

    def test_dict_round_trip_keeps_signature(self, alice):
        tx = Transaction.build(alice, "donate", charity="x", amount=5)
        restored = Transaction.from_dict(tx.to_dict())
        assert restored == tx
        assert restored.verify()

    def test_from_dict_missing_fields(self):
        with pytest.raises(MalformedInstruction):
            Transaction.from_dict({"instruction": "donate"})

    def test_nonces_are_unique(self, alice):
        a = Transaction.build(alice, "donate", charity="x", amount=5)
        b = Transaction.build(alice, "donate", charity="x", amount=5)
        assert a.nonce != b.nonce


class TestNonceRegistry:

    def test_single_use(self):
        registry = NonceRegistry()
        assert registry.check_and_register("n1")
        assert not registry.check_and_register("n1")
        assert not registry.is_fresh("n1")
        assert registry.size() == 1


class TestProcessor:

    def test_create_and_donate(self, processor, program, alice, bob):
        created = processor.process(
            Transaction.build(alice, "create_charity", name="Water Fund", description="desc")
        )
        assert created.success
        charity = created.value

        donated = processor.process(Transaction.build(bob, "donate", charity=charity, amount=1_000))
        assert donated.success, donated.error
        assert [e.event_type for e in donated.events] == ["DonationMade"]
        assert donated.events[0].correlation_id == donated.correlation_id
        assert program.get_charity(charity).total_received == 1_000

    def test_signer_is_the_caller(self, processor, program, charity, carol):
        result = processor.process(
            Transaction.build(carol, "pause_donations", charity=charity, paused=True)
        )
        assert not result.success
        assert result.error_code == "UNAUTHORIZED"
        assert result.error.kind is ErrorKind.AUTHORIZATION
        assert program.status(charity) == "active"

    def test_bad_signature(self, processor, charity, alice):
        tx = Transaction.build(alice, "pause_donations", charity=charity, paused=True)
        forged = replace(tx, args={"charity": str(charity), "paused": False})
        result = processor.process(forged)
        assert result.error_code == "INVALID_SIGNATURE"

    def test_replay_rejected(self, processor, program, charity, bob):
        tx = Transaction.build(bob, "donate", charity=charity, amount=10)
        assert processor.process(tx).success
        replayed = processor.process(tx)
        assert replayed.error_code == "REPLAYED_TRANSACTION"
        assert program.get_charity(charity).donation_count == 1

    def test_unknown_instruction(self, processor, alice):
        result = processor.process(Transaction.build(alice, "drain_vault", charity="x"))
        assert result.error_code == "UNKNOWN_INSTRUCTION"
        assert result.error.kind is ErrorKind.VALIDATION

    def test_signer_role_cannot_be_overridden(self, processor, charity, alice, carol):
        tx = Transaction.build(carol, "pause_donations", charity=charity, paused=True, authority=alice.address)
        assert processor.process(tx).error_code == "MALFORMED_INSTRUCTION"

    def test_missing_and_unexpected_args(self, processor, charity, bob):
        missing = processor.process(Transaction.build(bob, "donate", charity=charity))
        assert missing.error_code == "MALFORMED_INSTRUCTION"
        extra = processor.process(Transaction.build(bob, "donate", charity=charity, amount=1, memo="hi"))
        assert extra.error_code == "MALFORMED_INSTRUCTION"

    def test_bad_address_argument(self, processor, bob):
        result = processor.process(Transaction.build(bob, "donate", charity="not-base58!", amount=1))
        assert result.error_code == "MALFORMED_INSTRUCTION"

    def test_handler_errors_keep_their_code(self, processor, charity, bob):
        result = processor.process(Transaction.build(bob, "donate", charity=charity, amount=0))
        assert result.error_code == "INVALID_AMOUNT"
        data = result.to_dict()
        assert data["success"] is False
        assert data["error"]["number"] == 6011

    def test_result_dict(self, processor, alice):
        result = processor.process(
            Transaction.build(alice, "create_charity", name="Water Fund", description="desc")
        )
        data = result.to_dict()
        assert data["value"] == str(result.value)
        assert data["events"][0]["event_type"] == "CharityCreated"
        assert data["error"] is None
