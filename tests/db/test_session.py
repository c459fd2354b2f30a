# tests/db/test_session.py
"""Tests for database session configuration."""

from datetime import UTC, datetime, timedelta, timezone

import pytest
from sqlalchemy import text

from app.db.session import _engine_options, create_engine, init_models
from app.models.alert import Alert


class TestEngineOptions:
    def test_sqlite_has_no_pool_options(self):
        assert _engine_options("sqlite+aiosqlite:///./database/crowdsec.db") == {}

    def test_server_database_uses_pool_settings(self):
        options = _engine_options("postgresql+asyncpg://user:pw@db/crowdsec")
        assert options["pool_size"] == 20
        assert options["max_overflow"] == 40


class TestSqlite:
    @pytest.mark.asyncio
    async def test_foreign_keys_enabled(self, test_engine):
        async with test_engine.connect() as conn:
            result = await conn.execute(text("PRAGMA foreign_keys"))
            assert result.scalar_one() == 1

    @pytest.mark.asyncio
    async def test_init_models_creates_database_file(self, tmp_path):
        db_path = tmp_path / "nested" / "crowdsec.db"
        engine = create_engine(f"sqlite+aiosqlite:///{db_path}")

        await init_models(engine)

        assert db_path.exists()
        async with engine.connect() as conn:
            tables = (await conn.execute(text("SELECT name FROM sqlite_master WHERE type='table'"))).scalars().all()
        assert {"alerts", "decisions"} <= set(tables)
        await engine.dispose()


class TestUTCDateTime:
    @pytest.mark.asyncio
    async def test_values_come_back_as_aware_utc(self, session_factory):
        paris = timezone(timedelta(hours=1))
        started = datetime(2024, 1, 1, 1, 0, tzinfo=paris)

        async with session_factory() as session:
            session.add(
                Alert(
                    id=1,
                    scenario="crowdsecurity/ssh-bf",
                    source={"scope": "Ip", "value": "1.2.3.4"},
                    crowdsec_created_at=started,
                    start_at=started,
                    stop_at=started,
                )
            )
            await session.commit()

        async with session_factory() as session:
            alert = await session.get(Alert, 1)
            assert alert.start_at == datetime(2024, 1, 1, 0, 0, tzinfo=UTC)
            assert alert.start_at.tzinfo is not None
            assert alert.created_at.tzinfo is not None
