"""
Audit Trail

Append-only audit entries for delivery transitions and configuration
changes. Metadata is modelled per action family instead of a free-form
dict so callers cannot drift on key names.
"""

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from core.logging import get_logger
from database.session import SessionLocal
from deliverability.models import AuditEntry

logger = get_logger(__name__, component="audit")


class AuditAction(str, Enum):
    """Audit action enumeration"""

    EMAIL_SENT = "EMAIL_SENT"
    EMAIL_DELIVERED = "EMAIL_DELIVERED"
    EMAIL_BOUNCED = "EMAIL_BOUNCED"
    EMAIL_COMPLAINED = "EMAIL_COMPLAINED"
    EMAIL_UNSUBSCRIBED = "EMAIL_UNSUBSCRIBED"
    CONFIG_UPDATE = "CONFIG_UPDATE"
    SUPPRESSION_ADDED = "SUPPRESSION_ADDED"
    SUPPRESSION_REMOVED = "SUPPRESSION_REMOVED"


class ResourceType(str, Enum):
    DELIVERY_RECORD = "delivery_record"
    TRACKING_CONFIG = "tracking_config"
    SUPPRESSION_ENTRY = "suppression_entry"


@dataclass
class DeliveryAuditMetadata:
    """Metadata attached to delivery transition entries"""

    recipient_email: str
    provider_message_id: str
    event_timestamp: Optional[str] = None
    bounce_type: Optional[str] = None
    bounce_reason: Optional[str] = None
    status_changed: Optional[bool] = None

    def to_dict(self) -> Dict[str, Any]:
        return {key: value for key, value in asdict(self).items() if value is not None}


@dataclass
class ConfigChangeMetadata:
    """Metadata attached to configuration updates"""

    changed_fields: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class SuppressionAuditMetadata:
    """Metadata attached to manual suppression changes"""

    reason: Optional[str] = None
    notes: Optional[str] = None
    expires_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {key: value for key, value in asdict(self).items() if value is not None}


class AuditLogger:
    """
    Writes and reads audit entries

    ``record`` works inside the caller's session so the entry commits
    together with the change it describes.
    """

    def __init__(self, session_factory: Optional[Callable[[], Session]] = None):
        self.session_factory = session_factory or SessionLocal

    def record(
        self,
        session: Session,
        action: AuditAction,
        resource_type: ResourceType,
        resource_id: Any,
        metadata: Optional[Any] = None,
        actor_id: Optional[str] = None,
        before: Optional[Dict[str, Any]] = None,
        after: Optional[Dict[str, Any]] = None,
        dedupe_key: Optional[str] = None,
    ) -> bool:
        """
        Append an audit entry

        Returns:
            False if an entry with the same dedupe key already exists
        """
        if dedupe_key is not None:
            existing = session.query(AuditEntry.id).filter(AuditEntry.dedupe_key == dedupe_key).first()
            if existing is not None:
                logger.debug(f"Audit entry {dedupe_key} already recorded")
                return False

        entry = AuditEntry(
            action=AuditAction(action).value,
            resource_type=ResourceType(resource_type).value,
            resource_id=str(resource_id),
            actor_id=actor_id,
            before=before,
            after=after,
            audit_metadata=metadata.to_dict() if hasattr(metadata, "to_dict") else metadata,
            dedupe_key=dedupe_key,
        )

        # A concurrent retry may insert the same key between the check and the insert
        try:
            with session.begin_nested():
                session.add(entry)
        except IntegrityError:
            if dedupe_key is None:
                raise
            logger.debug(f"Audit entry {dedupe_key} inserted concurrently")
            return False

        return True

    def list_for_resource(
        self, resource_type: ResourceType, resource_id: Any, limit: int = 50
    ) -> List[AuditEntry]:
        """Newest-first audit history for one resource"""
        with self.session_factory() as session:
            entries = (
                session.query(AuditEntry)
                .filter(
                    AuditEntry.resource_type == ResourceType(resource_type).value,
                    AuditEntry.resource_id == str(resource_id),
                )
                .order_by(AuditEntry.created_at.desc())
                .limit(limit)
                .all()
            )
            session.expunge_all()
            return entries


def delivery_dedupe_key(action: AuditAction, record_id: Any, event_timestamp) -> str:
    """Key identifying one provider event for one record"""
    return f"{AuditAction(action).value}:{record_id}:{event_timestamp.isoformat()}"
