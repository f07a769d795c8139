"""Core utilities and configuration for the deliverability engine"""
from core.config import settings
from core.exceptions import DatabaseError, DeliverabilityError, NotFoundError, ValidationError
from core.logging import get_logger

__all__ = [
    "settings",
    "get_logger",
    "DeliverabilityError",
    "ValidationError",
    "NotFoundError",
    "DatabaseError",
]
