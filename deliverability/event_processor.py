"""
Delivery Event Processor

Consumes normalized delivery events, advances the delivery record,
applies automatic suppression and appends audit entries.

Each event is an independent unit of work in one database transaction.
Storage failures roll the transaction back and surface as retryable
DatabaseError; every write is idempotent or deduplicated so a retry is safe.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Iterable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from core.exceptions import DatabaseError
from core.logging import get_logger
from core.utils import as_utc, mask_email
from database.session import SessionLocal
from deliverability.audit import (
    AuditAction,
    AuditLogger,
    DeliveryAuditMetadata,
    ResourceType,
    delivery_dedupe_key,
)
from deliverability.delivery_store import DeliveryRecordStore
from deliverability.events import BouncedEvent, EmailEvent, EmailEventType
from deliverability.models import DeliveryRecord, SuppressionReason, TrackingConfig
from deliverability.suppression import SuppressionManager
from deliverability.tracking_config import TrackingConfigManager

logger = get_logger(__name__, component="event_processor")

# Event types gated by a tracking flag
TRACKING_FLAGS = {
    EmailEventType.OPENED: "track_opens",
    EmailEventType.CLICKED: "track_clicks",
    EmailEventType.BOUNCED: "track_bounces",
    EmailEventType.COMPLAINED: "track_complaints",
}

# delivered/opened/clicked are too high-volume to audit individually
AUDITED_ACTIONS = {
    EmailEventType.SENT: AuditAction.EMAIL_SENT,
    EmailEventType.BOUNCED: AuditAction.EMAIL_BOUNCED,
    EmailEventType.COMPLAINED: AuditAction.EMAIL_COMPLAINED,
    EmailEventType.UNSUBSCRIBED: AuditAction.EMAIL_UNSUBSCRIBED,
}


class ProcessingOutcome(str, Enum):
    APPLIED = "applied"
    UNKNOWN_MESSAGE = "unknown_message"
    TRACKING_DISABLED = "tracking_disabled"


@dataclass
class ProcessingResult:
    """What happened to one event; every outcome should be acknowledged"""

    outcome: ProcessingOutcome
    event_type: EmailEventType
    provider_message_id: str
    record_id: Optional[str] = None
    status_changed: bool = False
    engagement_recorded: bool = False
    suppressed: bool = False
    audited: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "outcome": self.outcome.value,
            "event_type": self.event_type.value,
            "provider_message_id": self.provider_message_id,
            "record_id": self.record_id,
            "status_changed": self.status_changed,
            "engagement_recorded": self.engagement_recorded,
            "suppressed": self.suppressed,
            "audited": self.audited,
        }


class EventProcessor:
    """
    Delivery state machine

    Unknown message ids are acknowledged with a warning: provider webhooks
    are at-least-once and may reference purged or never-recorded messages,
    so retrying cannot help.
    """

    def __init__(
        self,
        session_factory: Optional[Callable[[], Session]] = None,
        config_manager: Optional[TrackingConfigManager] = None,
        suppression_manager: Optional[SuppressionManager] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self.session_factory = session_factory or SessionLocal
        self.audit_logger = audit_logger or AuditLogger(self.session_factory)
        self.config_manager = config_manager or TrackingConfigManager(self.session_factory, self.audit_logger)
        self.suppression_manager = suppression_manager or SuppressionManager(
            self.session_factory, self.audit_logger
        )

    def process_email_event(self, event: EmailEvent, actor_id: Optional[str] = None) -> ProcessingResult:
        """
        Process a single normalized delivery event

        Args:
            event: Event variant produced by the webhook layer
            actor_id: Optional actor stamped on audit entries

        Returns:
            ProcessingResult describing the outcome

        Raises:
            DatabaseError: storage failure, safe to retry
        """
        result = ProcessingResult(
            outcome=ProcessingOutcome.APPLIED,
            event_type=event.type,
            provider_message_id=event.provider_message_id,
        )

        session = self.session_factory()
        try:
            store = DeliveryRecordStore(session)
            record = store.find_by_provider_message_id(event.provider_message_id)
            if record is None:
                logger.warning(f"No delivery record found for provider message id {event.provider_message_id}")
                result.outcome = ProcessingOutcome.UNKNOWN_MESSAGE
                return result

            result.record_id = str(record.id)

            config = self.config_manager.load(session)
            if not self._is_tracked(event, config):
                logger.debug(f"Dropping {event.type.value} event for {record.id}: tracking disabled")
                result.outcome = ProcessingOutcome.TRACKING_DISABLED
                session.commit()
                return result

            timestamp = as_utc(event.timestamp)

            if event.changes_status:
                result.status_changed = store.apply_event(
                    record.id,
                    event.target_status,
                    timestamp,
                    bounce_type=getattr(event, "bounce_type", None),
                    bounce_reason=getattr(event, "bounce_reason", None),
                )
                if not result.status_changed:
                    logger.info(
                        f"Status of {record.id} kept at {record.status}, "
                        f"{event.type.value} event does not advance it"
                    )
            else:
                result.engagement_recorded = store.mark_first_engagement(record.id, event.stage_field, timestamp)

            result.suppressed = self._apply_auto_suppression(session, event, record, config)
            result.audited = self._audit(session, event, record, result, actor_id)

            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Error processing {event.type.value} event for {event.provider_message_id}: {e}")
            raise DatabaseError(
                "Failed to process email event",
                operation="process_email_event",
                retryable=True,
                provider_message_id=event.provider_message_id,
                event_type=event.type.value,
            ) from e
        finally:
            session.close()

        if result.status_changed:
            logger.info(f"Delivery record {result.record_id} moved to {event.target_status.value}")
        return result

    def process_events(self, events: Iterable[EmailEvent]) -> Dict[str, Any]:
        """
        Process a batch of events in order

        Storage errors propagate; events before the failure stay applied and
        the whole batch can be redelivered.

        Returns:
            Summary of processing results
        """
        summary: Dict[str, Any] = {
            "total_events": 0,
            "applied": 0,
            "unknown_message": 0,
            "tracking_disabled": 0,
            "events_by_type": {},
        }
        for event in events:
            result = self.process_email_event(event)
            summary["total_events"] += 1
            summary[result.outcome.value] += 1
            summary["events_by_type"][event.type.value] = summary["events_by_type"].get(event.type.value, 0) + 1

        logger.info(
            f"Event batch complete: {summary['applied']} applied, "
            f"{summary['unknown_message']} unknown, {summary['tracking_disabled']} dropped"
        )
        return summary

    @staticmethod
    def _is_tracked(event: EmailEvent, config: TrackingConfig) -> bool:
        flag = TRACKING_FLAGS.get(event.type)
        return flag is None or bool(getattr(config, flag))

    def _apply_auto_suppression(
        self, session: Session, event: EmailEvent, record: DeliveryRecord, config: TrackingConfig
    ) -> bool:
        # Soft and undetermined bounces are not evidence of a permanent failure
        if isinstance(event, BouncedEvent):
            if not (event.is_hard and config.auto_suppress_hard_bounce):
                return False
            reason = SuppressionReason.HARD_BOUNCE
            notes = event.bounce_reason
        elif event.type == EmailEventType.COMPLAINED:
            if not config.auto_suppress_complaint:
                return False
            reason = SuppressionReason.COMPLAINT
            notes = None
        else:
            return False

        self.suppression_manager.upsert(
            session,
            record.recipient_email,
            reason.value,
            source_record_id=record.id,
            notes=notes,
        )
        logger.info(f"Suppressed {mask_email(record.recipient_email)} after {event.type.value} ({reason.value})")
        return True

    def _audit(
        self,
        session: Session,
        event: EmailEvent,
        record: DeliveryRecord,
        result: ProcessingResult,
        actor_id: Optional[str],
    ) -> bool:
        action = AUDITED_ACTIONS.get(event.type)
        if action is None:
            return False

        timestamp = as_utc(event.timestamp)
        metadata = DeliveryAuditMetadata(
            recipient_email=event.recipient_email,
            provider_message_id=event.provider_message_id,
            event_timestamp=timestamp.isoformat(),
            status_changed=result.status_changed,
        )
        if isinstance(event, BouncedEvent):
            metadata.bounce_type = event.bounce_type.value
            metadata.bounce_reason = event.bounce_reason

        return self.audit_logger.record(
            session,
            action=action,
            resource_type=ResourceType.DELIVERY_RECORD,
            resource_id=record.id,
            metadata=metadata,
            actor_id=actor_id,
            dedupe_key=delivery_dedupe_key(action, record.id, timestamp),
        )


def process_email_event(event: EmailEvent, actor_id: Optional[str] = None) -> ProcessingResult:
    """Utility function to process one event with default wiring"""
    return EventProcessor().process_email_event(event, actor_id)
