import asyncio
from datetime import timedelta

import pytest
from click.testing import CliRunner

from signing_desk.cli import sweep_expired as sweep_module
from signing_desk.cli.sweep_expired import cli
from signing_desk.db.session import build_engine, build_session_factory, init_models
from signing_desk.domain.envelope import EnvelopeStatus
from signing_desk.services.repository import SqlAlchemyEnvelopeRepository

from tests.factories import NOW, build_envelope


async def _seed(database_url):
    engine = build_engine(database_url)
    await init_models(engine)
    repository = SqlAlchemyEnvelopeRepository(build_session_factory(engine))
    await repository.add(build_envelope(id="env_overdue", provider_envelope_id="p1", expires_at=NOW))
    await repository.add(build_envelope(id="env_fresh", provider_envelope_id="p2", expires_at=NOW + timedelta(days=10)))
    await engine.dispose()


async def _status(database_url, envelope_id):
    engine = build_engine(database_url)
    envelope = await SqlAlchemyEnvelopeRepository(build_session_factory(engine)).get(envelope_id)
    await engine.dispose()
    return envelope.status


class TestSweepExpired:
    def test_sweep_expires_overdue_envelopes(self, tmp_path):
        database_url = f"sqlite+aiosqlite:///{tmp_path / 'sweep.db'}"
        asyncio.run(_seed(database_url))

        result = CliRunner().invoke(
            cli, ["sweep-expired", "--database-url", database_url, "--as-of", "2025-03-02T00:00:00"]
        )

        assert result.exit_code == 0, result.output
        assert "Expired 1 envelope(s)" in result.output
        assert asyncio.run(_status(database_url, "env_overdue")) is EnvelopeStatus.EXPIRED
        assert asyncio.run(_status(database_url, "env_fresh")) is EnvelopeStatus.DRAFT

    def test_failure_exits_non_zero(self, monkeypatch):
        async def broken(database_url, as_of):
            raise RuntimeError("database unreachable")

        monkeypatch.setattr(sweep_module, "_sweep", broken)

        result = CliRunner().invoke(cli, ["sweep-expired", "--database-url", "sqlite+aiosqlite://"])

        assert result.exit_code == 1
        assert "database unreachable" in result.output

    @pytest.mark.parametrize("as_of", ["yesterday", "2025-13-01"])
    def test_rejects_malformed_timestamp(self, as_of):
        result = CliRunner().invoke(cli, ["sweep-expired", "--as-of", as_of])
        assert result.exit_code == 2
