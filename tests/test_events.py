"""Event log: append-only records, streams, subscribers, digests."""

import json

import pytest

from charity_ledger.errors import DonationsPaused
from charity_ledger.events import (
    CharityCreated,
    DonationMade,
    Event,
    EventLog,
    PauseToggled,
)
from charity_ledger.observability import reset_correlation_id, set_correlation_id


def _donation(charity="C1", amount=10):
    return DonationMade(donor="D", charity=charity, donation="R", amount=amount,
                        new_total=amount, new_count=1, created_at=5)


class TestEvent:

    def test_event_type_and_dict(self):
        event = _donation()
        data = event.to_dict()
        assert data["event_type"] == "DonationMade"
        assert data["amount"] == 10
        assert json.loads(event.to_json())["charity"] == "C1"

    def test_digest_covers_payload_only(self):
        a, b = _donation(), _donation()
        assert a.event_id != b.event_id
        assert a.digest() == b.digest()
        assert a.digest() != _donation(amount=11).digest()

    def test_from_dict_restores_subclass(self):
        event = _donation()
        restored = Event.from_dict(event.to_dict())
        assert isinstance(restored, DonationMade)
        assert restored == event

    def test_correlation_id_captured(self):
        token = set_correlation_id("corr-test")
        try:
            event = _donation()
        finally:
            reset_correlation_id(token)
        assert event.correlation_id == "corr-test"
        assert _donation().correlation_id is None


class TestEventLog:

    def test_sequence_and_streams(self):
        log = EventLog()
        log.append(CharityCreated(charity="C1", name="one"))
        log.append(CharityCreated(charity="C2", name="two"))
        record = log.append(_donation("C1"))

        assert record.sequence_number == 3
        assert record.version == 2
        assert [r.event.event_type for r in log.read_stream("C1")] == ["CharityCreated", "DonationMade"]
        assert len(log.read_stream("C2")) == 1
        assert log.read_stream("missing") == []
        assert log.stream_ids() == ["C1", "C2"]
        assert [r.sequence_number for r in log.read_all(1, max_count=1)] == [2]

    def test_typed_subscription(self):
        log = EventLog()
        seen = []

        @log.subscribe(DonationMade)
        def on_donation(event):
            seen.append(event.amount)

        log.append(CharityCreated(charity="C1"))
        log.append(_donation(amount=7))
        assert seen == [7]
        assert log.unsubscribe(on_donation)
        log.append(_donation(amount=8))
        assert seen == [7]

    def test_failing_subscriber_is_counted_not_raised(self):
        log = EventLog()

        @log.subscribe()
        def broken(event):
            raise RuntimeError("subscriber down")

        log.append(_donation())
        assert len(log) == 1
        assert log.metrics["error_count"] == 1

    def test_events_filter(self):
        log = EventLog()
        log.append(CharityCreated(charity="C1"))
        log.append(PauseToggled(charity="C1", paused=True))
        assert [e.event_type for e in log.events(PauseToggled)] == ["PauseToggled"]
        assert len(log.events()) == 2


class TestProgramEvents:

    def test_subscriber_failure_does_not_undo_commit(self, program, charity, bob):
        @program.events.subscribe(DonationMade)
        def broken(event):
            raise RuntimeError("indexer offline")

        program.donate(charity, bob.address, 100)
        assert program.get_charity(charity).total_received == 100
        assert program.events.metrics["error_count"] == 1

    def test_created_event_fields(self, program, alice):
        charity = program.create_charity(alice.address, "Water Fund", "Clean water")
        (record,) = program.events.read_stream(charity)
        event = record.event
        assert isinstance(event, CharityCreated)
        assert event.authority == str(alice.address)
        assert (event.name, event.description) == ("Water Fund", "Clean water")

    def test_update_event_carries_both_descriptions(self, program, charity, alice):
        program.update_charity(charity, alice.address, "Updated")
        event = program.events.read_stream(charity)[-1].event
        assert (event.old_description, event.new_description) == ("Clean water for all", "Updated")

    def test_rejected_instruction_not_logged(self, program, charity, alice, bob):
        program.pause_donations(charity, alice.address, True)
        count = len(program.events)
        with pytest.raises(DonationsPaused):
            program.donate(charity, bob.address, 5)
        assert len(program.events) == count
