"""Tests for engine and session handling."""

import pytest
from sqlalchemy import select

from stacks_lakehouse.config import DatabaseSettings
from stacks_lakehouse.storage.database import (
    DatabaseManager,
    is_in_memory_sqlite,
    normalize_async_database_url,
)
from stacks_lakehouse.storage.models import ContractModel

BOOT = "SP000000000000000000002Q6VF78"


class TestUrls:
    def test_sync_postgres_url_is_rewritten(self) -> None:
        assert (
            normalize_async_database_url("postgresql://u:p@db:5432/lake")
            == "postgresql+asyncpg://u:p@db:5432/lake"
        )

    def test_other_urls_are_untouched(self) -> None:
        for url in ("postgresql+asyncpg://db/lake", "sqlite+aiosqlite:///lake.db"):
            assert normalize_async_database_url(url) == url

    def test_in_memory_detection(self) -> None:
        assert is_in_memory_sqlite("sqlite+aiosqlite:///:memory:")
        assert not is_in_memory_sqlite("sqlite+aiosqlite:///lake.db")
        assert not is_in_memory_sqlite("postgresql+asyncpg://db/lake")


class TestDatabaseManager:
    @pytest.fixture
    async def db(self):
        manager = DatabaseManager.from_settings(DatabaseSettings(DATABASE_URL="sqlite+aiosqlite:///:memory:"))
        await manager.init_schema_async()
        yield manager
        await manager.dispose_async()

    async def test_sessions_share_the_in_memory_database(self, db) -> None:
        async with db.get_async_session() as session:
            session.add(ContractModel(contract_id=f"{BOOT}.pox-4", deployer=BOOT, name="pox-4"))

        async with db.get_async_session() as session:
            names = (await session.execute(select(ContractModel.name))).scalars().all()

        assert names == ["pox-4"]

    async def test_error_rolls_back(self, db) -> None:
        with pytest.raises(RuntimeError):
            async with db.get_async_session() as session:
                session.add(ContractModel(contract_id=f"{BOOT}.bns", deployer=BOOT, name="bns"))
                await session.flush()
                raise RuntimeError("step failed")

        async with db.get_async_session() as session:
            assert (await session.execute(select(ContractModel))).first() is None

    async def test_dispose_is_idempotent(self, db) -> None:
        await db.dispose_async()
        await db.dispose_async()
