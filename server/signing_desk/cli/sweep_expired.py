"""
Maintenance CLI for signing envelopes
"""

import asyncio
from datetime import datetime, timezone
from typing import Optional

import click

from signing_desk.core.config import get_settings
from signing_desk.core.logging import configure_logging
from signing_desk.db.session import build_engine, build_session_factory, init_models
from signing_desk.integrations.esignature.registry import ProviderRegistry
from signing_desk.services.audit import SqlAuditTrail
from signing_desk.services.envelope_service import EnvelopeService
from signing_desk.services.repository import SqlAlchemyEnvelopeRepository


@click.group()
def cli():
    """Signing desk maintenance tool"""
    pass


async def _sweep(database_url: str, as_of: Optional[datetime]) -> int:
    settings = get_settings()
    engine = build_engine(database_url)
    registry = ProviderRegistry(settings)
    try:
        await init_models(engine)
        session_factory = build_session_factory(engine)
        service = EnvelopeService(
            repository=SqlAlchemyEnvelopeRepository(session_factory),
            registry=registry,
            audit=SqlAuditTrail(session_factory),
            settings=settings,
        )
        return await service.expire_overdue(as_of)
    finally:
        await registry.close()
        await engine.dispose()


@cli.command("sweep-expired")
@click.option("--database-url", default=None, help="Override the configured database URL")
@click.option(
    "--as-of",
    type=click.DateTime(formats=["%Y-%m-%dT%H:%M:%S", "%Y-%m-%d"]),
    default=None,
    help="Treat this UTC time as now",
)
def sweep_expired(database_url: Optional[str], as_of: Optional[datetime]):
    """Move every overdue envelope to expired"""
    settings = get_settings()
    configure_logging(settings.log_level)
    if as_of is not None:
        as_of = as_of.replace(tzinfo=timezone.utc)

    try:
        expired = asyncio.run(_sweep(database_url or settings.database_url, as_of))
    except Exception as exc:
        click.echo(f"Sweep failed: {exc}", err=True)
        raise SystemExit(1)
    click.echo(f"Expired {expired} envelope(s)")


if __name__ == "__main__":
    cli()
