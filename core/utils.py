"""
Core utility functions used across components
"""
from datetime import datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime"""
    return datetime.now(timezone.utc)


def as_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on round trip)"""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def normalize_email(email: str) -> str:
    """Canonical form used as the suppression key"""
    return email.strip().lower()


def email_domain(email: str) -> Optional[str]:
    """Extract the domain part of an email address"""
    if not email or "@" not in email:
        return None
    domain = email.rsplit("@", 1)[1].strip().lower()
    return domain or None


def safe_divide(numerator: float, denominator: float, default: float = 0.0) -> float:
    """Safely divide two numbers, returning default if denominator is zero"""
    if denominator == 0:
        return default
    return numerator / denominator


def mask_email(email: str, visible_chars: int = 2) -> str:
    """Mask the local part of an email for log output"""
    if not email or "@" not in email:
        return "*" * len(email or "")
    local, domain = email.rsplit("@", 1)
    if len(local) <= visible_chars:
        return "*" * len(local) + "@" + domain
    return local[:visible_chars] + "*" * (len(local) - visible_chars) + "@" + domain
