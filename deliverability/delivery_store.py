"""
Delivery Record Store

Durable per-message delivery state keyed by the provider message id.
Every mutation used by event processing is a single UPDATE statement so
concurrent duplicate callbacks cannot lose each other's writes.
"""

from datetime import datetime
from typing import Any, Callable, Dict, Optional

from sqlalchemy import case, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from core.exceptions import DatabaseError
from core.logging import get_logger
from core.utils import as_utc, mask_email
from database.session import SessionLocal
from deliverability.models import BounceType, DeliveryRecord, DeliveryStatus

logger = get_logger(__name__, component="delivery_store")

ENGAGEMENT_FIELDS = ("opened_at", "clicked_at")

STAGE_FIELDS = {
    DeliveryStatus.SENT: "sent_at",
    DeliveryStatus.DELIVERED: "delivered_at",
    DeliveryStatus.BOUNCED: "bounced_at",
    DeliveryStatus.COMPLAINED: "complained_at",
    DeliveryStatus.UNSUBSCRIBED: "unsubscribed_at",
}


def transition_sources(target: DeliveryStatus) -> list:
    """
    Statuses a record may move from into ``target``

    Non-terminal targets only advance lower-ranked records. Terminal targets
    are accepted from anywhere so a complaint after a bounce is kept.
    """
    target = DeliveryStatus(target)
    if target.is_terminal:
        return [status.value for status in DeliveryStatus]
    return [status.value for status in DeliveryStatus if status.rank < target.rank]


class DeliveryRecordStore:
    """Repository over DeliveryRecord bound to one session"""

    def __init__(self, session: Session):
        self.session = session

    def create(
        self,
        campaign_id: str,
        recipient_email: str,
        provider_message_id: str,
        recipient_id: Optional[str] = None,
        status: DeliveryStatus = DeliveryStatus.PENDING,
        sent_at: Optional[datetime] = None,
    ) -> DeliveryRecord:
        """Create the record for a dispatched message"""
        status = DeliveryStatus(status)
        if status not in (DeliveryStatus.PENDING, DeliveryStatus.SENT):
            raise ValueError(f"Delivery records start as PENDING or SENT, not {status.value}")

        record = DeliveryRecord(
            campaign_id=str(campaign_id),
            recipient_id=str(recipient_id) if recipient_id is not None else None,
            recipient_email=recipient_email,
            provider_message_id=provider_message_id,
            status=status.value,
            sent_at=as_utc(sent_at),
        )
        self.session.add(record)
        self.session.flush()
        logger.debug(f"Created delivery record {record.id} for {mask_email(recipient_email)}")
        return record

    def find_by_provider_message_id(self, provider_message_id: str) -> Optional[DeliveryRecord]:
        return (
            self.session.query(DeliveryRecord)
            .filter(DeliveryRecord.provider_message_id == provider_message_id)
            .first()
        )

    def apply_event(
        self,
        record_id,
        target_status: DeliveryStatus,
        timestamp: datetime,
        bounce_type: Optional[BounceType] = None,
        bounce_reason: Optional[str] = None,
    ) -> bool:
        """
        Atomically apply a state-changing event

        The status moves only along allowed transitions, the stage timestamp
        keeps its first value, and bounce details are always written for
        bounce events.

        Returns:
            True if the status column changed. The check runs just before the
            UPDATE, so two concurrent duplicates may both report True. The flag is
            informational only.
        """
        target_status = DeliveryStatus(target_status)
        timestamp = as_utc(timestamp)
        stage_column = getattr(DeliveryRecord, STAGE_FIELDS[target_status])
        allowed = transition_sources(target_status)

        status_changed = (
            self.session.query(DeliveryRecord.id)
            .filter(
                DeliveryRecord.id == record_id,
                DeliveryRecord.status.in_(allowed),
                DeliveryRecord.status != target_status.value,
            )
            .first()
            is not None
        )

        values: Dict[Any, Any] = {
            DeliveryRecord.status: case(
                (DeliveryRecord.status.in_(allowed), target_status.value),
                else_=DeliveryRecord.status,
            ),
            stage_column: func.coalesce(stage_column, timestamp),
        }
        if target_status == DeliveryStatus.BOUNCED:
            values[DeliveryRecord.bounce_type] = BounceType(bounce_type or BounceType.UNDETERMINED).value
            values[DeliveryRecord.bounce_reason] = bounce_reason

        self.session.query(DeliveryRecord).filter(DeliveryRecord.id == record_id).update(
            values, synchronize_session=False
        )
        return status_changed

    def mark_first_engagement(self, record_id, field: str, timestamp: datetime) -> bool:
        """
        Set opened_at/clicked_at only if still null

        Returns:
            True if this call set the timestamp
        """
        if field not in ENGAGEMENT_FIELDS:
            raise ValueError(f"Unknown engagement field: {field}")
        column = getattr(DeliveryRecord, field)
        timestamp = as_utc(timestamp)
        updated = (
            self.session.query(DeliveryRecord)
            .filter(DeliveryRecord.id == record_id, column.is_(None))
            .update({column: timestamp}, synchronize_session=False)
        )
        return updated > 0

    def delete_older_than(self, cutoff: datetime) -> int:
        """Range-delete records created before ``cutoff``"""
        cutoff = as_utc(cutoff)
        return (
            self.session.query(DeliveryRecord)
            .filter(DeliveryRecord.created_at < cutoff)
            .delete(synchronize_session=False)
        )


def record_email_sent(
    campaign_id: str,
    recipient_email: str,
    provider_message_id: str,
    recipient_id: Optional[str] = None,
    session_factory: Optional[Callable[[], Session]] = None,
) -> str:
    """
    Utility function for the send pipeline to register a dispatched message

    Returns:
        Id of the new delivery record
    """
    try:
        with (session_factory or SessionLocal)() as session:
            record = DeliveryRecordStore(session).create(
                campaign_id=campaign_id,
                recipient_email=recipient_email,
                provider_message_id=provider_message_id,
                recipient_id=recipient_id,
            )
            session.commit()
            return str(record.id)
    except SQLAlchemyError as e:
        logger.error(f"Error recording send for message {provider_message_id}: {e}")
        raise DatabaseError("Failed to record email send", operation="record_email_sent") from e
