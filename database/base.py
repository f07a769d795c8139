"""Base class for SQLAlchemy models"""
import uuid

from sqlalchemy import String, TypeDecorator
from sqlalchemy.dialects.postgresql import UUID as PostgreSQL_UUID
from sqlalchemy.orm import declarative_base


class UUID(TypeDecorator):
    """
    Database-agnostic UUID type.
    Uses PostgreSQL UUID for PostgreSQL, String for other databases.
    """

    impl = String
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(PostgreSQL_UUID())
        else:
            return dialect.type_descriptor(String(36))

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        return str(value)

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        if not isinstance(value, uuid.UUID):
            return uuid.UUID(str(value))
        return value


def generate_uuid() -> uuid.UUID:
    """Generate a new UUID"""
    return uuid.uuid4()


Base = declarative_base()
