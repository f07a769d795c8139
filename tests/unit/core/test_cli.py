"""
Tests for the command-line interface

Commands run against the in-memory test database configured by the root
conftest.
"""
import json
from datetime import timedelta

import pytest
from click.testing import CliRunner

import deliverability.models  # noqa: F401
from core.cli import cli
from core.utils import utc_now
from database.base import Base
from database.session import SessionLocal, engine
from deliverability.models import DeliveryRecord


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture(autouse=True)
def clean_database():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


class TestConfigCommands:
    def test_init_db(self, runner):
        result = runner.invoke(cli, ["init-db"])

        assert result.exit_code == 0
        assert "Database initialized successfully!" in result.output

    def test_show_config_defaults(self, runner):
        result = runner.invoke(cli, ["show-config"])

        assert result.exit_code == 0
        config = json.loads(result.output)
        assert config["track_opens"] is False
        assert config["retention_days"] == 90

    def test_set_config(self, runner):
        result = runner.invoke(cli, ["set-config", "--track-opens", "--retention-days", "30", "--actor", "ops"])

        assert result.exit_code == 0
        config = json.loads(result.output)
        assert config["track_opens"] is True
        assert config["retention_days"] == 30

    def test_set_config_invalid_retention(self, runner):
        result = runner.invoke(cli, ["set-config", "--retention-days", "3"])

        assert result.exit_code == 1

    def test_set_config_nothing_to_update(self, runner):
        result = runner.invoke(cli, ["set-config"])

        assert result.exit_code == 0
        assert "Nothing to update" in result.output


class TestSuppressionCommands:
    def test_suppress_check_and_unsuppress(self, runner):
        result = runner.invoke(cli, ["suppress", "A@Example.com", "--reason", "manual", "--expires-days", "30"])
        assert result.exit_code == 0
        assert "a@example.com" in result.output

        result = runner.invoke(cli, ["check-suppression", "a@example.com"])
        assert "is suppressed (manual)" in result.output

        result = runner.invoke(cli, ["unsuppress", "a@example.com"])
        assert result.exit_code == 0

        result = runner.invoke(cli, ["check-suppression", "a@example.com"])
        assert "is not suppressed" in result.output

    def test_suppress_invalid_email(self, runner):
        result = runner.invoke(cli, ["suppress", "not-an-email"])

        assert result.exit_code == 1

    def test_unsuppress_missing(self, runner):
        result = runner.invoke(cli, ["unsuppress", "nobody@example.com"])

        assert result.exit_code == 1

    def test_suppression_summary(self, runner):
        runner.invoke(cli, ["suppress", "a@example.com", "--reason", "complaint"])

        result = runner.invoke(cli, ["suppression-summary"])

        assert json.loads(result.output) == {"total": 1, "by_reason": {"complaint": 1}}

    def test_purge_expired(self, runner):
        result = runner.invoke(cli, ["purge-expired-suppressions"])

        assert result.exit_code == 0
        assert "Purged 0" in result.output


class TestHealthCommands:
    def _seed(self, count, status, created_at=None):
        with SessionLocal() as session:
            for i in range(count):
                session.add(
                    DeliveryRecord(
                        provider_message_id=f"{status}-{i}",
                        campaign_id="campaign-1",
                        recipient_email=f"user{i}@example.com",
                        status=status,
                        sent_at=utc_now(),
                        created_at=created_at or utc_now(),
                    )
                )
            session.commit()

    def test_delivery_stats(self, runner):
        self._seed(9, "DELIVERED")
        self._seed(1, "BOUNCED")

        result = runner.invoke(cli, ["delivery-stats", "--days", "1"])

        stats = json.loads(result.output)
        assert stats["sent"] == 10
        assert stats["bounce_rate"] == 0.1

    def test_health_alerts(self, runner):
        self._seed(9, "DELIVERED")
        self._seed(1, "BOUNCED")

        result = runner.invoke(cli, ["health-alerts"])

        assert "[CRITICAL] Critical: Bounce rate is 10.0%" in result.output

    def test_health_alerts_none(self, runner):
        result = runner.invoke(cli, ["health-alerts", "--days", "3"])

        assert "No deliverability alerts" in result.output

    def test_campaign_stats(self, runner):
        self._seed(2, "DELIVERED")

        result = runner.invoke(cli, ["campaign-stats", "--limit", "5"])

        campaigns = json.loads(result.output)
        assert campaigns[0]["campaign_id"] == "campaign-1"
        assert campaigns[0]["delivered"] == 2

    def test_cleanup_delivery_logs(self, runner):
        self._seed(2, "DELIVERED", created_at=utc_now() - timedelta(days=365))
        self._seed(1, "SENT")

        result = runner.invoke(cli, ["cleanup-delivery-logs"])

        assert "Deleted 2 delivery records" in result.output

    def test_env_info(self, runner):
        result = runner.invoke(cli, ["env-info"])

        assert result.exit_code == 0
        assert "Environment: test" in result.output
