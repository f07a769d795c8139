"""
Normalized Delivery Events

Provider callbacks are translated by the webhook layer into one of the
event variants below. Each variant carries only the fields relevant to it;
only bounces carry bounce details.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, ClassVar, Dict, Mapping, Optional, Type

from core.exceptions import ValidationError
from deliverability.models import BounceType, DeliveryStatus


class EmailEventType(str, Enum):
    """Normalized event types"""

    SENT = "sent"
    DELIVERED = "delivered"
    BOUNCED = "bounced"
    COMPLAINED = "complained"
    UNSUBSCRIBED = "unsubscribed"
    OPENED = "opened"
    CLICKED = "clicked"


@dataclass(frozen=True)
class EmailEvent:
    """Fields shared by every event variant"""

    provider_message_id: str
    recipient_email: str
    timestamp: datetime
    metadata: Optional[Dict[str, Any]] = None

    type: ClassVar[EmailEventType]
    # Status the record moves to, None for engagement events
    target_status: ClassVar[Optional[DeliveryStatus]] = None
    # DeliveryRecord column stamped by this event
    stage_field: ClassVar[str]

    @property
    def changes_status(self) -> bool:
        return self.target_status is not None


@dataclass(frozen=True)
class SentEvent(EmailEvent):
    type: ClassVar[EmailEventType] = EmailEventType.SENT
    target_status: ClassVar[Optional[DeliveryStatus]] = DeliveryStatus.SENT
    stage_field: ClassVar[str] = "sent_at"


@dataclass(frozen=True)
class DeliveredEvent(EmailEvent):
    type: ClassVar[EmailEventType] = EmailEventType.DELIVERED
    target_status: ClassVar[Optional[DeliveryStatus]] = DeliveryStatus.DELIVERED
    stage_field: ClassVar[str] = "delivered_at"


@dataclass(frozen=True)
class BouncedEvent(EmailEvent):
    bounce_type: BounceType = BounceType.UNDETERMINED
    bounce_reason: Optional[str] = None

    type: ClassVar[EmailEventType] = EmailEventType.BOUNCED
    target_status: ClassVar[Optional[DeliveryStatus]] = DeliveryStatus.BOUNCED
    stage_field: ClassVar[str] = "bounced_at"

    @property
    def is_hard(self) -> bool:
        return self.bounce_type == BounceType.HARD


@dataclass(frozen=True)
class ComplainedEvent(EmailEvent):
    type: ClassVar[EmailEventType] = EmailEventType.COMPLAINED
    target_status: ClassVar[Optional[DeliveryStatus]] = DeliveryStatus.COMPLAINED
    stage_field: ClassVar[str] = "complained_at"


@dataclass(frozen=True)
class UnsubscribedEvent(EmailEvent):
    type: ClassVar[EmailEventType] = EmailEventType.UNSUBSCRIBED
    target_status: ClassVar[Optional[DeliveryStatus]] = DeliveryStatus.UNSUBSCRIBED
    stage_field: ClassVar[str] = "unsubscribed_at"


@dataclass(frozen=True)
class OpenedEvent(EmailEvent):
    type: ClassVar[EmailEventType] = EmailEventType.OPENED
    stage_field: ClassVar[str] = "opened_at"


@dataclass(frozen=True)
class ClickedEvent(EmailEvent):
    type: ClassVar[EmailEventType] = EmailEventType.CLICKED
    stage_field: ClassVar[str] = "clicked_at"


EVENT_CLASSES: Dict[EmailEventType, Type[EmailEvent]] = {
    cls.type: cls
    for cls in (
        SentEvent,
        DeliveredEvent,
        BouncedEvent,
        ComplainedEvent,
        UnsubscribedEvent,
        OpenedEvent,
        ClickedEvent,
    )
}

_FIELD_ALIASES = {
    "providerMessageId": "provider_message_id",
    "providerMsgId": "provider_message_id",
    "recipientEmail": "recipient_email",
    "bounceType": "bounce_type",
    "bounceReason": "bounce_reason",
}


def _parse_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            return datetime.fromtimestamp(value, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            raise ValidationError(f"Event timestamp out of range: {value}", field="timestamp")
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            raise ValidationError(f"Invalid event timestamp: {value}", field="timestamp")
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    raise ValidationError("Event timestamp is required", field="timestamp")


def parse_event(data: Mapping[str, Any]) -> EmailEvent:
    """
    Build the event variant for a normalized event mapping

    Accepts camelCase or snake_case keys. Bounce fields are only allowed
    on bounce events.

    Raises:
        ValidationError: unknown type, missing fields or misplaced bounce data
    """
    normalized = {_FIELD_ALIASES.get(key, key): value for key, value in data.items()}

    try:
        event_type = EmailEventType(normalized.get("type"))
    except ValueError:
        raise ValidationError(f"Unknown event type: {normalized.get('type')}", field="type")

    provider_message_id = normalized.get("provider_message_id")
    if not provider_message_id:
        raise ValidationError("providerMessageId is required", field="provider_message_id")

    recipient_email = normalized.get("recipient_email")
    if not recipient_email:
        raise ValidationError("recipientEmail is required", field="recipient_email")

    kwargs: Dict[str, Any] = {
        "provider_message_id": str(provider_message_id),
        "recipient_email": str(recipient_email),
        "timestamp": _parse_timestamp(normalized.get("timestamp")),
        "metadata": normalized.get("metadata"),
    }

    has_bounce_fields = normalized.get("bounce_type") is not None or normalized.get("bounce_reason") is not None
    if event_type == EmailEventType.BOUNCED:
        raw_bounce_type = normalized.get("bounce_type") or BounceType.UNDETERMINED
        if isinstance(raw_bounce_type, BounceType):
            raw_bounce_type = raw_bounce_type.value
        try:
            kwargs["bounce_type"] = BounceType(str(raw_bounce_type).lower())
        except ValueError:
            raise ValidationError(f"Unknown bounce type: {raw_bounce_type}", field="bounce_type")
        kwargs["bounce_reason"] = normalized.get("bounce_reason")
    elif has_bounce_fields:
        raise ValidationError(
            f"Bounce details are only valid on bounced events, got {event_type.value}",
            field="bounce_type",
        )

    return EVENT_CLASSES[event_type](**kwargs)
