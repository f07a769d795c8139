"""
Retention Cleanup

Purges delivery records older than the configured retention window.
Suppression entries and audit entries are kept; they have their own,
longer-lived retention.
"""

from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from core.exceptions import DatabaseError
from core.logging import get_logger
from core.utils import as_utc, utc_now
from database.session import SessionLocal
from deliverability.delivery_store import DeliveryRecordStore
from deliverability.tracking_config import TrackingConfigManager

logger = get_logger(__name__, component="retention")


class RetentionManager:
    """Applies the delivery record retention policy"""

    def __init__(
        self,
        session_factory: Optional[Callable[[], Session]] = None,
        config_manager: Optional[TrackingConfigManager] = None,
    ):
        self.session_factory = session_factory or SessionLocal
        self.config_manager = config_manager or TrackingConfigManager(self.session_factory)

    def cleanup_old_delivery_logs(self, now: Optional[datetime] = None) -> int:
        """
        Delete delivery records created before now - retention_days

        A single range delete: safe to re-run and safe alongside ingestion,
        since fresh records are never inside the range.

        Returns:
            Number of records deleted
        """
        now = as_utc(now) if now else utc_now()
        try:
            with self.session_factory() as session:
                config = self.config_manager.load(session)
                cutoff = now - config.retention_window
                deleted = DeliveryRecordStore(session).delete_older_than(cutoff)
                session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Error cleaning up delivery records: {e}")
            raise DatabaseError("Failed to clean up delivery records", operation="cleanup", retryable=True) from e

        logger.info(f"Deleted {deleted} delivery records created before {cutoff.isoformat()}")
        return deleted


def cleanup_old_delivery_logs() -> int:
    """Utility function for schedulers"""
    return RetentionManager().cleanup_old_delivery_logs()
