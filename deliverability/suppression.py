"""
Suppression List

Durable set of addresses that must not receive further campaign mail.
The send pipeline consults ``is_suppressed`` before every dispatch; this
module does not enforce that itself.

Expiry is lazy: an entry whose ``expires_at`` has passed reads as absent.
"""

from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from core.exceptions import DatabaseError, NotFoundError, ValidationError
from core.logging import get_logger
from core.utils import as_utc, mask_email, normalize_email, utc_now
from database.session import SessionLocal
from deliverability.audit import AuditAction, AuditLogger, ResourceType, SuppressionAuditMetadata
from deliverability.models import SuppressionEntry, SuppressionReason

logger = get_logger(__name__, component="suppression")


def _active_filter(now: datetime):
    return or_(SuppressionEntry.expires_at.is_(None), SuppressionEntry.expires_at > now)


class SuppressionManager:
    """
    Manages the suppression list

    ``upsert`` works inside the caller's session so automatic suppressions
    commit together with the delivery event that triggered them.
    """

    def __init__(
        self,
        session_factory: Optional[Callable[[], Session]] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self.session_factory = session_factory or SessionLocal
        self.audit_logger = audit_logger or AuditLogger(self.session_factory)

    def upsert(
        self,
        session: Session,
        email: str,
        reason: str,
        source_record_id: Optional[Any] = None,
        notes: Optional[str] = None,
        expires_at: Optional[datetime] = None,
    ) -> None:
        """
        Insert or refresh the entry for ``email``

        UPDATE first, then INSERT inside a savepoint; if a concurrent writer
        wins the INSERT the UPDATE is repeated. ``added_at`` is always
        refreshed.
        """
        normalized = normalize_email(email)
        expires_at = as_utc(expires_at)
        values = {
            SuppressionEntry.reason: reason,
            SuppressionEntry.source_record_id: source_record_id,
            SuppressionEntry.notes: notes,
            SuppressionEntry.expires_at: expires_at,
            SuppressionEntry.added_at: utc_now(),
        }

        def _update() -> int:
            return (
                session.query(SuppressionEntry)
                .filter(SuppressionEntry.email == normalized)
                .update(values, synchronize_session=False)
            )

        if _update():
            return

        try:
            with session.begin_nested():
                session.add(
                    SuppressionEntry(
                        email=normalized,
                        reason=reason,
                        source_record_id=source_record_id,
                        notes=notes,
                        expires_at=expires_at,
                    )
                )
        except IntegrityError:
            logger.debug(f"Suppression for {mask_email(normalized)} inserted concurrently, updating")
            _update()

    def is_suppressed(self, email: str) -> bool:
        """
        Check if email must not receive campaign mail

        Callers must not cache the result beyond the current send.
        """
        if not email:
            return False
        try:
            with self.session_factory() as session:
                entry_id = (
                    session.query(SuppressionEntry.id)
                    .filter(
                        SuppressionEntry.email == normalize_email(email),
                        _active_filter(utc_now()),
                    )
                    .first()
                )
                return entry_id is not None
        except SQLAlchemyError as e:
            logger.error(f"Error checking suppression for {mask_email(email)}: {e}")
            raise DatabaseError("Failed to check suppression list", operation="is_suppressed", retryable=True) from e

    def get(self, email: str) -> Optional[SuppressionEntry]:
        """Return the live entry for email, or None"""
        with self.session_factory() as session:
            entry = (
                session.query(SuppressionEntry)
                .filter(
                    SuppressionEntry.email == normalize_email(email),
                    _active_filter(utc_now()),
                )
                .first()
            )
            if entry is not None:
                session.expunge(entry)
            return entry

    def add(
        self,
        email: str,
        reason: str = SuppressionReason.MANUAL.value,
        source_record_id: Optional[Any] = None,
        notes: Optional[str] = None,
        expires_at: Optional[datetime] = None,
        expires_days: Optional[int] = None,
        actor_id: Optional[str] = None,
    ) -> SuppressionEntry:
        """
        Add or refresh a suppression

        Args:
            email: Address to suppress (case-insensitive)
            reason: hard_bounce, complaint, manual or any custom reason
            source_record_id: Delivery record that triggered the suppression
            notes: Free-text notes
            expires_at: When the suppression lapses (None for permanent)
            expires_days: Alternative to expires_at, days from now
            actor_id: Administrator adding the entry

        Returns:
            The stored entry
        """
        if not email or "@" not in email:
            raise ValidationError(f"Invalid email address: {email}", field="email")
        if not reason:
            raise ValidationError("Suppression reason is required", field="reason")
        if expires_at is not None and expires_days is not None:
            raise ValidationError("Pass either expires_at or expires_days, not both", field="expires_at")
        if expires_days is not None:
            if expires_days <= 0:
                raise ValidationError("expires_days must be positive", field="expires_days")
            expires_at = utc_now() + timedelta(days=expires_days)
        # SQLite keeps wall-clock time and drops the offset
        expires_at = as_utc(expires_at)

        reason = reason.value if isinstance(reason, SuppressionReason) else str(reason)
        normalized = normalize_email(email)
        try:
            with self.session_factory() as session:
                self.upsert(
                    session,
                    normalized,
                    reason,
                    source_record_id=source_record_id,
                    notes=notes,
                    expires_at=expires_at,
                )
                self.audit_logger.record(
                    session,
                    action=AuditAction.SUPPRESSION_ADDED,
                    resource_type=ResourceType.SUPPRESSION_ENTRY,
                    resource_id=normalized,
                    metadata=SuppressionAuditMetadata(
                        reason=reason,
                        notes=notes,
                        expires_at=expires_at.isoformat() if expires_at else None,
                    ),
                    actor_id=actor_id,
                )
                session.commit()

                entry = session.query(SuppressionEntry).filter(SuppressionEntry.email == normalized).one()
                session.expunge(entry)
        except SQLAlchemyError as e:
            logger.error(f"Error recording suppression for {mask_email(normalized)}: {e}")
            raise DatabaseError("Failed to record suppression", operation="add", retryable=True) from e

        logger.info(f"Recorded suppression for {mask_email(normalized)} ({reason})")
        return entry

    def remove(self, email: str, actor_id: Optional[str] = None) -> None:
        """
        Hard-delete the entry for email

        Raises:
            NotFoundError: no entry exists for the address
        """
        normalized = normalize_email(email)
        try:
            with self.session_factory() as session:
                deleted = (
                    session.query(SuppressionEntry)
                    .filter(SuppressionEntry.email == normalized)
                    .delete(synchronize_session=False)
                )
                if not deleted:
                    raise NotFoundError("Suppression entry", normalized)

                self.audit_logger.record(
                    session,
                    action=AuditAction.SUPPRESSION_REMOVED,
                    resource_type=ResourceType.SUPPRESSION_ENTRY,
                    resource_id=normalized,
                    actor_id=actor_id,
                )
                session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Error removing suppression for {mask_email(normalized)}: {e}")
            raise DatabaseError("Failed to remove suppression", operation="remove", retryable=True) from e

        logger.info(f"Removed suppression for {mask_email(normalized)}")

    def summary(self) -> Dict[str, Any]:
        """
        Suppression counts for dashboards

        Returns:
            {"total": int, "by_reason": {reason: count}}
        """
        now = utc_now()
        with self.session_factory() as session:
            rows = (
                session.query(SuppressionEntry.reason, func.count(SuppressionEntry.id))
                .filter(_active_filter(now))
                .group_by(SuppressionEntry.reason)
                .all()
            )

        by_reason = {reason: count for reason, count in rows}
        return {"total": sum(by_reason.values()), "by_reason": by_reason}

    def purge_expired(self) -> int:
        """Delete entries whose expiry has passed"""
        with self.session_factory() as session:
            deleted = (
                session.query(SuppressionEntry)
                .filter(SuppressionEntry.expires_at.isnot(None), SuppressionEntry.expires_at <= utc_now())
                .delete(synchronize_session=False)
            )
            session.commit()

        if deleted:
            logger.info(f"Purged {deleted} expired suppression entries")
        return deleted


# Utility functions


def check_email_suppression(email: str) -> bool:
    """
    Utility function to check if email is suppressed

    Args:
        email: Email address to check

    Returns:
        True if suppressed, False otherwise
    """
    return SuppressionManager().is_suppressed(email)
