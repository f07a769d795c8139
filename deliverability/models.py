"""
Deliverability Models

SQLAlchemy models for per-message delivery tracking, the suppression list,
the singleton tracking configuration and the append-only audit trail.
"""

from datetime import timedelta
from enum import Enum
from typing import Any, Dict, Optional

from sqlalchemy import JSON, Boolean, CheckConstraint, Column, DateTime, Index, Integer, String, Text

from core.utils import as_utc, normalize_email, utc_now
from database.base import UUID, Base, generate_uuid


class DeliveryStatus(str, Enum):
    """Delivery record status enumeration"""

    PENDING = "PENDING"
    SENT = "SENT"
    DELIVERED = "DELIVERED"
    BOUNCED = "BOUNCED"
    COMPLAINED = "COMPLAINED"
    UNSUBSCRIBED = "UNSUBSCRIBED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @property
    def rank(self) -> int:
        return STATUS_RANK[self]


TERMINAL_STATUSES = frozenset(
    {DeliveryStatus.BOUNCED, DeliveryStatus.COMPLAINED, DeliveryStatus.UNSUBSCRIBED}
)

# Ordering used by the transition guard; terminal statuses share the top rank.
STATUS_RANK = {
    DeliveryStatus.PENDING: 0,
    DeliveryStatus.SENT: 1,
    DeliveryStatus.DELIVERED: 2,
    DeliveryStatus.BOUNCED: 3,
    DeliveryStatus.COMPLAINED: 3,
    DeliveryStatus.UNSUBSCRIBED: 3,
}

# Every status that has left PENDING counts as sent.
DISPATCHED_STATUSES = (
    DeliveryStatus.SENT,
    DeliveryStatus.DELIVERED,
    DeliveryStatus.BOUNCED,
    DeliveryStatus.COMPLAINED,
    DeliveryStatus.UNSUBSCRIBED,
)


class BounceType(str, Enum):
    """Bounce type enumeration"""

    HARD = "hard"
    SOFT = "soft"
    UNDETERMINED = "undetermined"


class SuppressionReason(str, Enum):
    """Well-known suppression reasons; free-form reasons are also accepted"""

    HARD_BOUNCE = "hard_bounce"
    COMPLAINT = "complaint"
    MANUAL = "manual"


class DeliveryRecord(Base):
    """
    Per-message delivery tracking

    One row per outbound message attempt, correlated with provider
    callbacks through ``provider_message_id``.
    """

    __tablename__ = "delivery_records"

    id = Column(UUID(), primary_key=True, default=generate_uuid)

    provider_message_id = Column(String(255), nullable=False, unique=True)
    campaign_id = Column(String(255), nullable=False, index=True)
    recipient_id = Column(String(255), nullable=True)
    recipient_email = Column(String(320), nullable=False)

    status = Column(String(20), nullable=False, default=DeliveryStatus.PENDING.value, index=True)

    # Stage timestamps, first occurrence wins
    sent_at = Column(DateTime(timezone=True), nullable=True)
    delivered_at = Column(DateTime(timezone=True), nullable=True)
    bounced_at = Column(DateTime(timezone=True), nullable=True)
    complained_at = Column(DateTime(timezone=True), nullable=True)
    unsubscribed_at = Column(DateTime(timezone=True), nullable=True)

    # Engagement flags, never change status
    opened_at = Column(DateTime(timezone=True), nullable=True)
    clicked_at = Column(DateTime(timezone=True), nullable=True)

    bounce_type = Column(String(20), nullable=True)
    bounce_reason = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)

    __table_args__ = (
        Index("idx_delivery_records_created", "created_at"),
        Index("idx_delivery_records_campaign_created", "campaign_id", "created_at"),
        Index("idx_delivery_records_status_created", "status", "created_at"),
    )

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        if self.id is None:
            self.id = generate_uuid()
        if self.status is None:
            self.status = DeliveryStatus.PENDING.value
        if self.created_at is None:
            self.created_at = utc_now()

    def __repr__(self):
        return (
            f"<DeliveryRecord(id={self.id}, provider_message_id='{self.provider_message_id}', "
            f"status='{self.status}')>"
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation"""

        def iso(value):
            value = as_utc(value)
            return value.isoformat() if value else None

        return {
            "id": str(self.id),
            "provider_message_id": self.provider_message_id,
            "campaign_id": self.campaign_id,
            "recipient_id": self.recipient_id,
            "recipient_email": self.recipient_email,
            "status": self.status,
            "sent_at": iso(self.sent_at),
            "delivered_at": iso(self.delivered_at),
            "bounced_at": iso(self.bounced_at),
            "complained_at": iso(self.complained_at),
            "unsubscribed_at": iso(self.unsubscribed_at),
            "opened_at": iso(self.opened_at),
            "clicked_at": iso(self.clicked_at),
            "bounce_type": self.bounce_type,
            "bounce_reason": self.bounce_reason,
            "created_at": iso(self.created_at),
        }


class SuppressionEntry(Base):
    """
    Email suppression list entry

    At most one row per normalized email. An entry whose ``expires_at``
    is in the past is treated as absent.
    """

    __tablename__ = "suppression_entries"

    id = Column(Integer, primary_key=True)

    email = Column(String(320), nullable=False, unique=True)
    reason = Column(String(100), nullable=False, index=True)
    source_record_id = Column(UUID(), nullable=True)
    notes = Column(Text, nullable=True)

    added_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    expires_at = Column(DateTime(timezone=True), nullable=True, index=True)

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        if self.email is not None:
            self.email = normalize_email(self.email)
        if self.added_at is None:
            self.added_at = utc_now()

    def __repr__(self):
        return f"<SuppressionEntry(id={self.id}, email='{self.email}', reason='{self.reason}')>"

    def to_dict(self) -> Dict[str, Any]:
        added_at = as_utc(self.added_at)
        expires_at = as_utc(self.expires_at)
        return {
            "email": self.email,
            "reason": self.reason,
            "source_record_id": str(self.source_record_id) if self.source_record_id else None,
            "notes": self.notes,
            "added_at": added_at.isoformat() if added_at else None,
            "expires_at": expires_at.isoformat() if expires_at else None,
        }


class TrackingConfig(Base):
    """
    Singleton tracking configuration

    Stored as a single row with a fixed primary key so every process sees
    the same settings. Defaults are privacy-first: opens and clicks are not
    tracked until an administrator opts in.
    """

    __tablename__ = "tracking_config"

    SINGLETON_ID = 1
    MIN_RETENTION_DAYS = 7
    MAX_RETENTION_DAYS = 365

    id = Column(Integer, primary_key=True)

    track_opens = Column(Boolean, nullable=False, default=False)
    track_clicks = Column(Boolean, nullable=False, default=False)
    track_bounces = Column(Boolean, nullable=False, default=True)
    track_complaints = Column(Boolean, nullable=False, default=True)
    auto_suppress_hard_bounce = Column(Boolean, nullable=False, default=True)
    auto_suppress_complaint = Column(Boolean, nullable=False, default=True)
    retention_days = Column(Integer, nullable=False, default=90)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now)

    __table_args__ = (
        CheckConstraint("retention_days >= 7 AND retention_days <= 365", name="ck_tracking_config_retention"),
    )

    FIELDS = (
        "track_opens",
        "track_clicks",
        "track_bounces",
        "track_complaints",
        "auto_suppress_hard_bounce",
        "auto_suppress_complaint",
        "retention_days",
    )

    DEFAULTS = {
        "track_opens": False,
        "track_clicks": False,
        "track_bounces": True,
        "track_complaints": True,
        "auto_suppress_hard_bounce": True,
        "auto_suppress_complaint": True,
        "retention_days": 90,
    }

    def __repr__(self):
        return f"<TrackingConfig(opens={self.track_opens}, clicks={self.track_clicks}, retention={self.retention_days})>"

    @property
    def retention_window(self) -> timedelta:
        return timedelta(days=self.retention_days)

    def to_dict(self) -> Dict[str, Any]:
        return {field: getattr(self, field) for field in self.FIELDS}


class AuditEntry(Base):
    """
    Append-only audit trail

    Entries are never updated. ``dedupe_key`` is unique when present so a
    retried webhook cannot write the same delivery audit twice.
    """

    __tablename__ = "audit_entries"

    id = Column(UUID(), primary_key=True, default=generate_uuid)

    action = Column(String(50), nullable=False, index=True)
    resource_type = Column(String(50), nullable=False)
    resource_id = Column(String(64), nullable=False)
    actor_id = Column(String(255), nullable=True)

    before = Column(JSON, nullable=True)
    after = Column(JSON, nullable=True)
    audit_metadata = Column("metadata", JSON, nullable=True)

    dedupe_key = Column(String(255), nullable=True, unique=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)

    __table_args__ = (
        Index("idx_audit_entries_resource", "resource_type", "resource_id", "created_at"),
    )

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        if self.id is None:
            self.id = generate_uuid()
        if self.created_at is None:
            self.created_at = utc_now()

    def __repr__(self):
        return f"<AuditEntry(action='{self.action}', resource='{self.resource_type}:{self.resource_id}')>"

    def to_dict(self) -> Dict[str, Optional[Any]]:
        created_at = as_utc(self.created_at)
        return {
            "id": str(self.id),
            "action": self.action,
            "resource_type": self.resource_type,
            "resource_id": self.resource_id,
            "actor_id": self.actor_id,
            "before": self.before,
            "after": self.after,
            "metadata": self.audit_metadata,
            "created_at": created_at.isoformat() if created_at else None,
        }
