"""
Test delivery record store

Creation, lookup, the atomic event update and the retention range delete.
"""
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import IntegrityError

from core.exceptions import DatabaseError
from core.utils import as_utc
from deliverability.delivery_store import DeliveryRecordStore, record_email_sent, transition_sources
from deliverability.models import BounceType, DeliveryRecord, DeliveryStatus

T0 = datetime(2026, 1, 1, 10, 0, tzinfo=timezone.utc)


class TestCreate:
    """Test record creation"""

    def test_create_defaults_to_pending(self, session_factory):
        with session_factory() as session:
            record = DeliveryRecordStore(session).create("campaign-1", "a@example.com", "m1", recipient_id=42)
            session.commit()

            assert record.status == DeliveryStatus.PENDING.value
            assert record.recipient_id == "42"
            assert record.created_at is not None

    def test_create_as_sent(self, session_factory):
        """Records created at send time start as SENT"""
        with session_factory() as session:
            record = DeliveryRecordStore(session).create(
                "campaign-1", "a@example.com", "m1", status=DeliveryStatus.SENT, sent_at=T0
            )
            assert record.status == "SENT"
            assert as_utc(record.sent_at) == T0

    def test_create_stores_offset_sent_at_as_utc(self, session_factory, load_record):
        plus_two = timezone(timedelta(hours=2))
        with session_factory() as session:
            record = DeliveryRecordStore(session).create(
                "campaign-1", "a@example.com", "m1", status=DeliveryStatus.SENT, sent_at=T0.astimezone(plus_two)
            )
            session.commit()
            record_id = record.id

        assert as_utc(load_record(record_id).sent_at) == T0

    def test_create_rejects_later_status(self, session_factory):
        with session_factory() as session:
            with pytest.raises(ValueError):
                DeliveryRecordStore(session).create("c", "a@example.com", "m1", status=DeliveryStatus.DELIVERED)

    def test_provider_message_id_unique(self, session_factory, make_record):
        make_record("m1")
        with session_factory() as session:
            with pytest.raises(IntegrityError):
                DeliveryRecordStore(session).create("campaign-2", "b@example.com", "m1")

    def test_record_email_sent_utility(self, session_factory):
        record_id = record_email_sent("campaign-1", "a@example.com", "m9", session_factory=session_factory)

        with session_factory() as session:
            record = DeliveryRecordStore(session).find_by_provider_message_id("m9")
            assert str(record.id) == record_id

    def test_record_email_sent_duplicate_raises_database_error(self, session_factory, make_record):
        make_record("m1")
        with pytest.raises(DatabaseError):
            record_email_sent("campaign-1", "a@example.com", "m1", session_factory=session_factory)


class TestLookup:
    def test_find_by_provider_message_id(self, session_factory, make_record):
        record_id = make_record("m1")
        with session_factory() as session:
            assert DeliveryRecordStore(session).find_by_provider_message_id("m1").id == record_id

    def test_find_missing_returns_none(self, session_factory):
        with session_factory() as session:
            assert DeliveryRecordStore(session).find_by_provider_message_id("nope") is None


class TestTransitionSources:
    """Test the status transition guard"""

    def test_ranks_follow_lifecycle(self):
        assert DeliveryStatus.PENDING.rank < DeliveryStatus.SENT.rank < DeliveryStatus.DELIVERED.rank
        assert DeliveryStatus.BOUNCED.rank == DeliveryStatus.COMPLAINED.rank == DeliveryStatus.UNSUBSCRIBED.rank

    def test_delivered_only_from_earlier_states(self):
        assert set(transition_sources(DeliveryStatus.DELIVERED)) == {"PENDING", "SENT"}

    def test_sent_only_from_pending(self):
        assert transition_sources(DeliveryStatus.SENT) == ["PENDING"]

    @pytest.mark.parametrize(
        "target", [DeliveryStatus.BOUNCED, DeliveryStatus.COMPLAINED, DeliveryStatus.UNSUBSCRIBED]
    )
    def test_terminal_from_anywhere(self, target):
        assert set(transition_sources(target)) == {status.value for status in DeliveryStatus}


class TestApplyEvent:
    """Test the single-statement state update"""

    def _apply(self, session_factory, record_id, target, ts, **kwargs):
        with session_factory() as session:
            changed = DeliveryRecordStore(session).apply_event(record_id, target, ts, **kwargs)
            session.commit()
        return changed

    def test_sets_status_and_stage_timestamp(self, session_factory, make_record, load_record):
        record_id = make_record()

        assert self._apply(session_factory, record_id, DeliveryStatus.DELIVERED, T0) is True

        record = load_record(record_id)
        assert record.status == "DELIVERED"
        assert as_utc(record.delivered_at) == T0

    def test_stage_timestamp_first_wins(self, session_factory, make_record, load_record):
        record_id = make_record()
        self._apply(session_factory, record_id, DeliveryStatus.DELIVERED, T0)

        assert self._apply(session_factory, record_id, DeliveryStatus.DELIVERED, T0 + timedelta(hours=1)) is False
        assert as_utc(load_record(record_id).delivered_at) == T0

    def test_bounce_writes_metadata(self, session_factory, make_record, load_record):
        record_id = make_record()
        self._apply(
            session_factory,
            record_id,
            DeliveryStatus.BOUNCED,
            T0,
            bounce_type=BounceType.HARD,
            bounce_reason="550 mailbox unavailable",
        )

        record = load_record(record_id)
        assert record.status == "BOUNCED"
        assert record.bounce_type == "hard"
        assert record.bounce_reason == "550 mailbox unavailable"
        assert as_utc(record.bounced_at) == T0

    def test_bounce_without_type_is_undetermined(self, session_factory, make_record, load_record):
        record_id = make_record()
        self._apply(session_factory, record_id, DeliveryStatus.BOUNCED, T0)

        assert load_record(record_id).bounce_type == "undetermined"

    def test_late_delivered_does_not_downgrade_bounce(self, session_factory, make_record, load_record):
        """Terminal statuses are sticky against earlier-stage events"""
        record_id = make_record()
        self._apply(session_factory, record_id, DeliveryStatus.BOUNCED, T0, bounce_type=BounceType.HARD)

        changed = self._apply(session_factory, record_id, DeliveryStatus.DELIVERED, T0 + timedelta(minutes=5))

        record = load_record(record_id)
        assert changed is False
        assert record.status == "BOUNCED"
        # The stage timestamp is still recorded for forensics
        assert as_utc(record.delivered_at) == T0 + timedelta(minutes=5)

    def test_terminal_to_terminal_is_kept(self, session_factory, make_record, load_record):
        """A complaint after a bounce is the stronger signal"""
        record_id = make_record()
        self._apply(session_factory, record_id, DeliveryStatus.BOUNCED, T0)

        assert self._apply(session_factory, record_id, DeliveryStatus.COMPLAINED, T0) is True
        assert load_record(record_id).status == "COMPLAINED"

    def test_offset_timestamp_stored_as_utc(self, session_factory, make_record, load_record):
        record_id = make_record()
        self._apply(session_factory, record_id, DeliveryStatus.DELIVERED, T0.astimezone(timezone(timedelta(hours=-5))))

        assert as_utc(load_record(record_id).delivered_at) == T0

    def test_delivered_after_sent_advances(self, session_factory, make_record, load_record):
        record_id = make_record(status=DeliveryStatus.PENDING)
        self._apply(session_factory, record_id, DeliveryStatus.SENT, T0)
        self._apply(session_factory, record_id, DeliveryStatus.DELIVERED, T0 + timedelta(seconds=3))

        record = load_record(record_id)
        assert record.status == "DELIVERED"
        assert as_utc(record.sent_at) == T0


class TestMarkFirstEngagement:
    def test_first_open_wins(self, session_factory, make_record, load_record):
        record_id = make_record()
        with session_factory() as session:
            store = DeliveryRecordStore(session)
            assert store.mark_first_engagement(record_id, "opened_at", T0) is True
            assert store.mark_first_engagement(record_id, "opened_at", T0 + timedelta(hours=2)) is False
            session.commit()

        record = load_record(record_id)
        assert as_utc(record.opened_at) == T0
        assert record.status == "SENT"

    def test_unknown_field_rejected(self, session_factory, make_record):
        record_id = make_record()
        with session_factory() as session:
            with pytest.raises(ValueError):
                DeliveryRecordStore(session).mark_first_engagement(record_id, "status", T0)


class TestDeleteOlderThan:
    def test_deletes_only_older_records(self, session_factory, make_record):
        make_record("old", created_at=T0 - timedelta(days=100))
        make_record("edge", created_at=T0)
        make_record("new", created_at=T0 + timedelta(days=1))

        with session_factory() as session:
            deleted = DeliveryRecordStore(session).delete_older_than(T0)
            session.commit()

        assert deleted == 1
        with session_factory() as session:
            remaining = {pmid for (pmid,) in session.query(DeliveryRecord.provider_message_id).all()}
        assert remaining == {"edge", "new"}
