"""
Tracking Configuration

Persisted singleton controlling which delivery signals are tracked and
whether hard bounces and complaints are suppressed automatically.
"""

from typing import Any, Callable, Dict, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from core.exceptions import DatabaseError, ValidationError
from core.logging import get_logger
from database.session import SessionLocal
from deliverability.audit import AuditAction, AuditLogger, ConfigChangeMetadata, ResourceType
from deliverability.models import TrackingConfig

logger = get_logger(__name__, component="tracking_config")


class TrackingConfigUpdate(BaseModel):
    """
    Partial update for the tracking configuration

    Only fields present in the patch are validated and applied. Keys may be
    snake_case or camelCase; unknown keys are rejected.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
    )

    track_opens: Optional[bool] = None
    track_clicks: Optional[bool] = None
    track_bounces: Optional[bool] = None
    track_complaints: Optional[bool] = None
    auto_suppress_hard_bounce: Optional[bool] = None
    auto_suppress_complaint: Optional[bool] = None
    retention_days: Optional[int] = Field(
        default=None,
        ge=TrackingConfig.MIN_RETENTION_DAYS,
        le=TrackingConfig.MAX_RETENTION_DAYS,
    )

    @field_validator("*", mode="before")
    @classmethod
    def reject_explicit_null(cls, v, info):
        if v is None:
            raise ValueError(f"{info.field_name} may not be null")
        return v

    @field_validator("retention_days", mode="before")
    @classmethod
    def reject_bool_retention(cls, v):
        if isinstance(v, bool):
            raise ValueError("retention_days must be an integer")
        return v

    def changes(self) -> Dict[str, Any]:
        return self.model_dump(exclude_unset=True)


def _to_validation_error(exc: PydanticValidationError) -> ValidationError:
    errors = [
        {"field": ".".join(str(part) for part in error["loc"]), "message": error["msg"]}
        for error in exc.errors()
    ]
    fields = [error["field"] for error in errors]
    return ValidationError(
        f"Invalid tracking configuration update: {', '.join(fields)}",
        field=fields[0] if len(fields) == 1 else None,
        errors=errors,
    )


class TrackingConfigManager:
    """
    Reads and updates the tracking configuration row

    The row is created lazily with privacy-first defaults the first time
    anything reads it.
    """

    def __init__(
        self,
        session_factory: Optional[Callable[[], Session]] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self.session_factory = session_factory or SessionLocal
        self.audit_logger = audit_logger or AuditLogger(self.session_factory)

    def load(self, session: Session) -> TrackingConfig:
        """Get-or-create the singleton inside an existing session"""
        config = session.get(TrackingConfig, TrackingConfig.SINGLETON_ID)
        if config is not None:
            return config

        config = TrackingConfig(id=TrackingConfig.SINGLETON_ID, **TrackingConfig.DEFAULTS)
        try:
            with session.begin_nested():
                session.add(config)
            logger.info("Created tracking configuration with default settings")
            return config
        except IntegrityError:
            # Another instance created the row first
            return session.get(TrackingConfig, TrackingConfig.SINGLETON_ID, populate_existing=True)

    def get_config(self) -> TrackingConfig:
        """
        Return the tracking configuration, creating it if absent

        Returns:
            Detached TrackingConfig snapshot
        """
        try:
            with self.session_factory() as session:
                config = self.load(session)
                session.commit()
                session.refresh(config)
                session.expunge(config)
                return config
        except SQLAlchemyError as e:
            logger.error(f"Error loading tracking configuration: {e}")
            raise DatabaseError("Failed to load tracking configuration", operation="get_config", retryable=True) from e

    def update_config(self, patch: Mapping[str, Any], actor_id: Optional[str] = None) -> TrackingConfig:
        """
        Validate and apply a partial configuration update

        The whole patch is rejected if any field fails validation. An audit
        entry records exactly the fields whose value changed.

        Args:
            patch: Field values to change
            actor_id: Administrator performing the change

        Returns:
            Updated TrackingConfig snapshot

        Raises:
            ValidationError: patch contains an invalid or unknown field
        """
        try:
            changes = TrackingConfigUpdate.model_validate(dict(patch)).changes()
        except PydanticValidationError as e:
            raise _to_validation_error(e) from e

        try:
            with self.session_factory() as session:
                config = self.load(session)

                before: Dict[str, Any] = {}
                after: Dict[str, Any] = {}
                for name, value in changes.items():
                    current = getattr(config, name)
                    if current != value:
                        before[name] = current
                        after[name] = value
                        setattr(config, name, value)

                if after:
                    self.audit_logger.record(
                        session,
                        action=AuditAction.CONFIG_UPDATE,
                        resource_type=ResourceType.TRACKING_CONFIG,
                        resource_id=config.id,
                        metadata=ConfigChangeMetadata(changed_fields=sorted(after)),
                        actor_id=actor_id,
                        before=before,
                        after=after,
                    )

                session.commit()
                session.refresh(config)
                session.expunge(config)
        except SQLAlchemyError as e:
            logger.error(f"Error updating tracking configuration: {e}")
            raise DatabaseError(
                "Failed to update tracking configuration", operation="update_config", retryable=True
            ) from e

        if after:
            logger.info(f"Tracking configuration updated: {', '.join(sorted(after))}")
        else:
            logger.info("Tracking configuration update contained no changes")
        return config


def get_tracking_config() -> TrackingConfig:
    """Utility function returning the current tracking configuration"""
    return TrackingConfigManager().get_config()
