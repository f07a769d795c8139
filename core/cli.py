"""
Command-line interface for the deliverability engine
"""
import json
from datetime import timedelta

import click

from core.config import settings
from core.exceptions import DeliverabilityError
from core.logging import get_logger
from core.utils import utc_now
from database.base import Base
from database.session import engine

logger = get_logger(__name__)


def _echo_json(data) -> None:
    click.echo(json.dumps(data, indent=2, default=str))


def _fail(error: DeliverabilityError) -> None:
    logger.warning(f"Command failed: {error.message}", extra={"error_code": error.error_code})
    click.echo(f"✗ {error.message}", err=True)
    raise SystemExit(1)


@click.group()
@click.version_option(version=settings.app_version)
def cli():
    """Deliverability CLI - delivery tracking, suppression and health"""
    pass


@cli.command()
def init_db():
    """Initialize database with tables"""
    import deliverability.models  # noqa: F401

    click.echo("Creating database tables...")
    Base.metadata.create_all(bind=engine)
    click.echo("Database initialized successfully!")


@cli.command()
def show_config():
    """Show the tracking configuration"""
    from deliverability.tracking_config import TrackingConfigManager

    _echo_json(TrackingConfigManager().get_config().to_dict())


@cli.command()
@click.option("--track-opens/--no-track-opens", default=None)
@click.option("--track-clicks/--no-track-clicks", default=None)
@click.option("--track-bounces/--no-track-bounces", default=None)
@click.option("--track-complaints/--no-track-complaints", default=None)
@click.option("--auto-suppress-hard-bounce/--no-auto-suppress-hard-bounce", default=None)
@click.option("--auto-suppress-complaint/--no-auto-suppress-complaint", default=None)
@click.option("--retention-days", type=int, default=None, help="Days to keep delivery records (7-365)")
@click.option("--actor", default=None, help="Actor recorded in the audit trail")
def set_config(actor, **fields):
    """Update the tracking configuration"""
    from deliverability.tracking_config import TrackingConfigManager

    patch = {name: value for name, value in fields.items() if value is not None}
    if not patch:
        click.echo("Nothing to update")
        return

    try:
        config = TrackingConfigManager().update_config(patch, actor_id=actor)
    except DeliverabilityError as e:
        _fail(e)
    _echo_json(config.to_dict())


@cli.command()
@click.argument("email")
def check_suppression(email: str):
    """Check whether an address is suppressed"""
    from deliverability.suppression import SuppressionManager

    entry = SuppressionManager().get(email)
    if entry is None:
        click.echo(f"{email} is not suppressed")
    else:
        click.echo(f"{email} is suppressed ({entry.reason})")


@cli.command()
@click.argument("email")
@click.option("--reason", default="manual", help="Suppression reason")
@click.option("--notes", default=None, help="Free-text notes")
@click.option("--expires-days", type=int, default=None, help="Days until the suppression lapses")
@click.option("--actor", default=None, help="Actor recorded in the audit trail")
def suppress(email: str, reason: str, notes, expires_days, actor):
    """Add an address to the suppression list"""
    from deliverability.suppression import SuppressionManager

    try:
        entry = SuppressionManager().add(
            email, reason=reason, notes=notes, expires_days=expires_days, actor_id=actor
        )
    except DeliverabilityError as e:
        _fail(e)
    click.echo(f"✓ Suppressed {entry.email} ({entry.reason})")


@cli.command()
@click.argument("email")
@click.option("--actor", default=None, help="Actor recorded in the audit trail")
def unsuppress(email: str, actor):
    """Remove an address from the suppression list"""
    from deliverability.suppression import SuppressionManager

    try:
        SuppressionManager().remove(email, actor_id=actor)
    except DeliverabilityError as e:
        _fail(e)
    click.echo(f"✓ Removed {email} from the suppression list")


@cli.command()
def suppression_summary():
    """Show suppression counts by reason"""
    from deliverability.suppression import SuppressionManager

    _echo_json(SuppressionManager().summary())


@cli.command()
def purge_expired_suppressions():
    """Delete suppression entries whose expiry has passed"""
    from deliverability.suppression import SuppressionManager

    deleted = SuppressionManager().purge_expired()
    click.echo(f"Purged {deleted} expired suppression entries")


@cli.command()
@click.option("--days", default=7, type=int, help="Trailing window in days")
def delivery_stats(days: int):
    """Show delivery statistics for the trailing window"""
    from deliverability.stats import HealthMonitor

    end = utc_now()
    _echo_json(HealthMonitor().get_delivery_stats(end - timedelta(days=days), end).to_dict())


@cli.command()
@click.option("--days", default=None, type=int, help="Trailing window in days")
def health_alerts(days):
    """Evaluate deliverability health alerts"""
    from deliverability.stats import HealthMonitor

    alerts = HealthMonitor().get_email_health_alerts(days)
    if not alerts:
        click.echo("✓ No deliverability alerts")
        return
    for alert in alerts:
        click.echo(f"[{alert.level.upper()}] {alert.message}")


@cli.command()
@click.option("--limit", default=None, type=int, help="Number of campaigns")
def campaign_stats(limit):
    """Show rollups for the most recently sent campaigns"""
    from deliverability.stats import HealthMonitor

    _echo_json([stats.to_dict() for stats in HealthMonitor().get_recent_campaign_stats(limit)])


@cli.command()
def cleanup_delivery_logs():
    """Delete delivery records past the retention window"""
    from deliverability.retention import RetentionManager

    deleted = RetentionManager().cleanup_old_delivery_logs()
    click.echo(f"Deleted {deleted} delivery records")


@cli.command()
def env_info():
    """Display environment information"""
    click.echo(f"{settings.app_name} v{settings.app_version}")
    click.echo(f"Environment: {settings.environment}")
    click.echo(f"Database: {settings.database_url}")
    click.echo(f"Log format: {settings.log_format}")
    click.echo(f"Alert window: {settings.health_alert_window_days} days")


def main():
    """Main entry point"""
    cli()


if __name__ == "__main__":
    main()
