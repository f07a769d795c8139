"""
Email Deliverability Module

Tracks per-message delivery state from provider events, maintains the
suppression list that gates future sends, and reports deliverability
health.

Key Components:
- Delivery records, suppression entries, tracking config and audit models
- Event processor (delivery state machine)
- Suppression list management
- Statistics, health alerts and retention cleanup
"""

from .models import AuditEntry, DeliveryRecord, SuppressionEntry, TrackingConfig

__all__ = ["DeliveryRecord", "SuppressionEntry", "TrackingConfig", "AuditEntry"]
