"""
Deliverability Statistics & Health Alerts

Read-only aggregation over delivery records. Rates are computed against
``sent`` (every record that left PENDING) and are 0 when nothing was sent.
Alert thresholds are fixed constants.
"""

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy import case, func
from sqlalchemy.orm import Session

from core.config import get_settings
from core.logging import get_logger
from core.utils import as_utc, email_domain, safe_divide, utc_now
from database.session import SessionLocal
from deliverability.models import DISPATCHED_STATUSES, DeliveryRecord, DeliveryStatus

logger = get_logger(__name__, component="stats")

ALERT_THRESHOLDS = {
    "bounce_rate_warning": 0.02,
    "bounce_rate_critical": 0.05,
    "complaint_rate_warning": 0.001,
    "complaint_rate_critical": 0.005,
    "delivery_rate_warning": 0.90,
}

# Rows fetched per round trip when scanning bounced recipients for domains
BOUNCE_SCAN_BATCH_SIZE = 1000


@dataclass
class DeliveryStats:
    """Delivery counts and rates for one window"""

    period_start: datetime
    period_end: datetime
    sent: int = 0
    delivered: int = 0
    bounced: int = 0
    complained: int = 0
    unsubscribed: int = 0
    pending: int = 0
    opened: int = 0
    clicked: int = 0
    top_bounce_domains: List[Tuple[str, int]] = field(default_factory=list)

    @property
    def delivery_rate(self) -> float:
        return safe_divide(self.delivered, self.sent)

    @property
    def bounce_rate(self) -> float:
        return safe_divide(self.bounced, self.sent)

    @property
    def complaint_rate(self) -> float:
        return safe_divide(self.complained, self.sent)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "period": {"start": self.period_start.isoformat(), "end": self.period_end.isoformat()},
            "sent": self.sent,
            "delivered": self.delivered,
            "bounced": self.bounced,
            "complained": self.complained,
            "unsubscribed": self.unsubscribed,
            "pending": self.pending,
            "opened": self.opened,
            "clicked": self.clicked,
            "delivery_rate": self.delivery_rate,
            "bounce_rate": self.bounce_rate,
            "complaint_rate": self.complaint_rate,
            "top_bounce_domains": [{"domain": d, "count": c} for d, c in self.top_bounce_domains],
        }


@dataclass
class HealthAlert:
    """Threshold breach for one metric"""

    level: str  # warning | critical
    type: str  # bounce_rate | complaint_rate | delivery_rate
    message: str
    value: float
    threshold: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "level": self.level,
            "type": self.type,
            "message": self.message,
            "value": self.value,
            "threshold": self.threshold,
        }


@dataclass
class CampaignStats:
    """Per-campaign rollup for dashboard drill-down"""

    campaign_id: str
    recipients: int
    sent: int
    delivered: int
    bounced: int
    complained: int
    unsubscribed: int
    opened: int
    clicked: int
    last_sent_at: Optional[datetime]

    @property
    def delivery_rate(self) -> float:
        return safe_divide(self.delivered, self.sent)

    @property
    def bounce_rate(self) -> float:
        return safe_divide(self.bounced, self.sent)

    @property
    def complaint_rate(self) -> float:
        return safe_divide(self.complained, self.sent)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "campaign_id": self.campaign_id,
            "recipients": self.recipients,
            "sent": self.sent,
            "delivered": self.delivered,
            "bounced": self.bounced,
            "complained": self.complained,
            "unsubscribed": self.unsubscribed,
            "opened": self.opened,
            "clicked": self.clicked,
            "last_sent_at": self.last_sent_at.isoformat() if self.last_sent_at else None,
            "delivery_rate": self.delivery_rate,
            "bounce_rate": self.bounce_rate,
            "complaint_rate": self.complaint_rate,
        }


def _status_count(status: DeliveryStatus):
    return func.sum(case((DeliveryRecord.status == status.value, 1), else_=0))


def _tiered_alert(
    metric: str, label: str, value: float, critical: float, warning: float, decimals: int
) -> Optional[HealthAlert]:
    """Higher tier wins when both thresholds are crossed"""
    for level, threshold in (("critical", critical), ("warning", warning)):
        if value >= threshold:
            return HealthAlert(
                level=level,
                type=metric,
                message=(
                    f"{level.capitalize()}: {label} is {value * 100:.{decimals}f}% "
                    f"(threshold: {threshold * 100:g}%)"
                ),
                value=value,
                threshold=threshold,
            )
    return None


class HealthMonitor:
    """Computes delivery statistics and threshold alerts"""

    def __init__(self, session_factory: Optional[Callable[[], Session]] = None, config: Optional[Any] = None):
        self.session_factory = session_factory or SessionLocal
        self.config = config or get_settings()

    def get_delivery_stats(self, start: datetime, end: datetime) -> DeliveryStats:
        """
        Count delivery records created in [start, end) by status

        Args:
            start: Inclusive window start
            end: Exclusive window end

        Returns:
            DeliveryStats, all zero for an empty window
        """
        start, end = as_utc(start), as_utc(end)
        stats = DeliveryStats(period_start=start, period_end=end)
        if end <= start:
            return stats

        window = (DeliveryRecord.created_at >= start, DeliveryRecord.created_at < end)

        with self.session_factory() as session:
            status_rows = (
                session.query(DeliveryRecord.status, func.count(DeliveryRecord.id))
                .filter(*window)
                .group_by(DeliveryRecord.status)
                .all()
            )
            opened, clicked = (
                session.query(
                    func.count(DeliveryRecord.opened_at),
                    func.count(DeliveryRecord.clicked_at),
                )
                .filter(*window)
                .one()
            )
            bounced_emails = (
                session.query(DeliveryRecord.recipient_email)
                .filter(*window, DeliveryRecord.status == DeliveryStatus.BOUNCED.value)
                .yield_per(BOUNCE_SCAN_BATCH_SIZE)
            )
            domains = Counter(filter(None, (email_domain(email) for (email,) in bounced_emails)))

        counts = {status: count for status, count in status_rows}
        stats.sent = sum(counts.get(status.value, 0) for status in DISPATCHED_STATUSES)
        stats.delivered = counts.get(DeliveryStatus.DELIVERED.value, 0)
        stats.bounced = counts.get(DeliveryStatus.BOUNCED.value, 0)
        stats.complained = counts.get(DeliveryStatus.COMPLAINED.value, 0)
        stats.unsubscribed = counts.get(DeliveryStatus.UNSUBSCRIBED.value, 0)
        stats.pending = counts.get(DeliveryStatus.PENDING.value, 0)
        stats.opened = opened or 0
        stats.clicked = clicked or 0

        stats.top_bounce_domains = domains.most_common(self.config.top_bounce_domains_limit)
        return stats

    def get_email_health_alerts(self, days: Optional[int] = None, now: Optional[datetime] = None) -> List[HealthAlert]:
        """
        Compare the trailing window against fixed alert thresholds

        At most one alert per metric. The delivery rate alert is only
        evaluated once the window holds more than the minimum sample.
        """
        days = days if days is not None else self.config.health_alert_window_days
        if days <= 0:
            raise ValueError("days must be positive")

        end = as_utc(now) if now else utc_now()
        # Small margin so records written at "now" fall inside the half-open window
        stats = self.get_delivery_stats(end - timedelta(days=days), end + timedelta(seconds=1))
        alerts: List[HealthAlert] = []

        bounce_alert = _tiered_alert(
            "bounce_rate",
            "Bounce rate",
            stats.bounce_rate,
            ALERT_THRESHOLDS["bounce_rate_critical"],
            ALERT_THRESHOLDS["bounce_rate_warning"],
            decimals=1,
        )
        if bounce_alert:
            alerts.append(bounce_alert)

        complaint_alert = _tiered_alert(
            "complaint_rate",
            "Complaint rate",
            stats.complaint_rate,
            ALERT_THRESHOLDS["complaint_rate_critical"],
            ALERT_THRESHOLDS["complaint_rate_warning"],
            decimals=2,
        )
        if complaint_alert:
            alerts.append(complaint_alert)

        threshold = ALERT_THRESHOLDS["delivery_rate_warning"]
        if stats.sent > self.config.health_alert_min_sample and stats.delivery_rate < threshold:
            alerts.append(
                HealthAlert(
                    level="warning",
                    type="delivery_rate",
                    message=(
                        f"Warning: Delivery rate is {stats.delivery_rate * 100:.1f}% "
                        f"(threshold: {threshold * 100:g}%)"
                    ),
                    value=stats.delivery_rate,
                    threshold=threshold,
                )
            )

        for alert in alerts:
            logger.warning(alert.message)
        return alerts

    def get_recent_campaign_stats(self, limit: Optional[int] = None) -> List[CampaignStats]:
        """Per-campaign rollups, most recently sent campaign first"""
        limit = limit if limit is not None else self.config.recent_campaign_limit
        if limit <= 0:
            return []

        sent_count = func.sum(
            case((DeliveryRecord.status.in_([s.value for s in DISPATCHED_STATUSES]), 1), else_=0)
        )
        last_sent_at = func.max(func.coalesce(DeliveryRecord.sent_at, DeliveryRecord.created_at))

        with self.session_factory() as session:
            rows = (
                session.query(
                    DeliveryRecord.campaign_id,
                    func.count(DeliveryRecord.id),
                    sent_count,
                    _status_count(DeliveryStatus.DELIVERED),
                    _status_count(DeliveryStatus.BOUNCED),
                    _status_count(DeliveryStatus.COMPLAINED),
                    _status_count(DeliveryStatus.UNSUBSCRIBED),
                    func.count(DeliveryRecord.opened_at),
                    func.count(DeliveryRecord.clicked_at),
                    last_sent_at,
                )
                .group_by(DeliveryRecord.campaign_id)
                .having(sent_count > 0)
                .order_by(last_sent_at.desc())
                .limit(limit)
                .all()
            )

        return [
            CampaignStats(
                campaign_id=campaign_id,
                recipients=recipients,
                sent=int(sent or 0),
                delivered=int(delivered or 0),
                bounced=int(bounced or 0),
                complained=int(complained or 0),
                unsubscribed=int(unsubscribed or 0),
                opened=opened,
                clicked=clicked,
                last_sent_at=_coerce_datetime(last_sent),
            )
            for (
                campaign_id,
                recipients,
                sent,
                delivered,
                bounced,
                complained,
                unsubscribed,
                opened,
                clicked,
                last_sent,
            ) in rows
        ]


def _coerce_datetime(value) -> Optional[datetime]:
    # SQLite returns MAX(COALESCE(...)) as a string
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    return as_utc(value)
