"""
Shared test configuration for deliverability tests
"""
import pytest
from sqlalchemy.orm import sessionmaker

import deliverability.models  # noqa: F401
from database.base import Base
from database.session import build_engine
from deliverability.audit import AuditLogger
from deliverability.delivery_store import DeliveryRecordStore
from deliverability.event_processor import EventProcessor
from deliverability.models import DeliveryRecord, DeliveryStatus
from deliverability.suppression import SuppressionManager
from deliverability.tracking_config import TrackingConfigManager


@pytest.fixture(scope="function")
def db_engine():
    """Isolated in-memory database per test"""
    engine = build_engine("sqlite://")
    Base.metadata.create_all(engine)

    yield engine

    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(bind=db_engine, autoflush=False)


@pytest.fixture
def audit_logger(session_factory):
    return AuditLogger(session_factory)


@pytest.fixture
def config_manager(session_factory, audit_logger):
    return TrackingConfigManager(session_factory, audit_logger)


@pytest.fixture
def suppression_manager(session_factory, audit_logger):
    return SuppressionManager(session_factory, audit_logger)


@pytest.fixture
def processor(session_factory, config_manager, suppression_manager, audit_logger):
    return EventProcessor(session_factory, config_manager, suppression_manager, audit_logger)


@pytest.fixture
def make_record(session_factory):
    """Factory creating committed delivery records, returns the record id"""

    def _make(
        provider_message_id="m1",
        recipient_email="a@example.com",
        campaign_id="campaign-1",
        status=DeliveryStatus.SENT,
        **fields,
    ):
        with session_factory() as session:
            if fields:
                record = DeliveryRecord(
                    provider_message_id=provider_message_id,
                    recipient_email=recipient_email,
                    campaign_id=campaign_id,
                    status=DeliveryStatus(status).value,
                    **fields,
                )
                session.add(record)
                session.flush()
            else:
                record = DeliveryRecordStore(session).create(
                    campaign_id=campaign_id,
                    recipient_email=recipient_email,
                    provider_message_id=provider_message_id,
                    status=status,
                )
            record_id = record.id
            session.commit()
        return record_id

    return _make


@pytest.fixture
def load_record(session_factory):
    """Read a delivery record back through a fresh session"""

    def _load(record_id):
        with session_factory() as session:
            record = session.get(DeliveryRecord, record_id)
            if record is not None:
                session.expunge(record)
            return record

    return _load
