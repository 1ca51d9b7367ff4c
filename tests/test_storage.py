"""Tests for CRUD operations and SQLStorage against SQLite."""

from datetime import datetime, timezone

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine

from shortener.app.db.async_session import make_session_maker
from shortener.app.db.crud import (
    alias_exists,
    delete_url,
    get_last_peak_rate,
    get_resource_leaders,
    get_stats,
    get_url,
    get_url_count,
    reset_peak_rate,
    save_url,
    update_stats,
)
from shortener.app.db.init_db import create_all_tables, verify_connection
from shortener.app.exceptions import (
    PeakRateNotFoundError,
    StorageError,
    URLExistsError,
    URLNotFoundError,
)
from shortener.app.services.stats import ResourceInfo, Statistic
from shortener.app.services.storage import SQLStorage


def _sqlite_url_from_absolute_path(path: str) -> str:
    # SQLAlchemy expects 4 slashes for absolute paths.
    return f"sqlite+aiosqlite:////{path.lstrip('/')}"


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(_sqlite_url_from_absolute_path(str(tmp_path / "shortener.db")))
    await create_all_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(engine):
    return make_session_maker(engine)


async def _seed_urls(session_maker, urls):
    async with session_maker() as session:
        for alias, url in urls:
            await save_url(session, url, alias)
        await session.commit()


class TestUrlCrud:
    """Tests for short URL CRUD operations."""

    @pytest.mark.asyncio
    async def test_save_and_get(self, session_maker):
        async with session_maker() as session:
            record = await save_url(session, "https://www.Example.com/a", "abc123")
            await session.commit()

        assert record.resource == "example.com"

        async with session_maker() as session:
            assert await get_url(session, "abc123") == "https://www.Example.com/a"
            assert await alias_exists(session, "abc123") is True
            assert await alias_exists(session, "zzz999") is False

    @pytest.mark.asyncio
    async def test_duplicate_alias(self, session_maker):
        await _seed_urls(session_maker, [("dup", "https://example.com")])

        async with session_maker() as session:
            with pytest.raises(URLExistsError) as exc_info:
                await save_url(session, "https://python.org", "dup")
            await session.rollback()

        assert exc_info.value.status_code == 409
        async with session_maker() as session:
            assert await get_url(session, "dup") == "https://example.com"

    @pytest.mark.asyncio
    async def test_get_unknown_alias(self, session_maker):
        async with session_maker() as session:
            with pytest.raises(URLNotFoundError):
                await get_url(session, "missing")

    @pytest.mark.asyncio
    async def test_delete(self, session_maker):
        await _seed_urls(session_maker, [("gone", "https://example.com")])

        async with session_maker() as session:
            await delete_url(session, "gone")
            await session.commit()

        async with session_maker() as session:
            with pytest.raises(URLNotFoundError):
                await get_url(session, "gone")
            with pytest.raises(URLNotFoundError):
                await delete_url(session, "gone")

    @pytest.mark.asyncio
    async def test_count_and_leaders(self, session_maker):
        await _seed_urls(session_maker, [
            ("e1", "https://example.com/1"),
            ("e2", "https://www.example.com/2"),
            ("e3", "http://example.com/3"),
            ("p1", "https://python.org/a"),
            ("p2", "https://python.org/b"),
            ("g1", "https://go.dev"),
            ("a1", "https://a.io"),
        ])

        async with session_maker() as session:
            assert await get_url_count(session) == 7
            leaders = await get_resource_leaders(session, limit=3)

        # Ties are ordered by resource name
        assert leaders == [
            ResourceInfo("example.com", 3),
            ResourceInfo("python.org", 2),
            ResourceInfo("a.io", 1),
        ]

    @pytest.mark.asyncio
    async def test_empty_table(self, session_maker):
        async with session_maker() as session:
            assert await get_url_count(session) == 0
            assert await get_resource_leaders(session) == []


class TestAnalyticsCrud:
    """Tests for the single-row analytics table."""

    @pytest.mark.asyncio
    async def test_no_peak_before_first_snapshot(self, session_maker):
        async with session_maker() as session:
            with pytest.raises(PeakRateNotFoundError):
                await get_last_peak_rate(session)
            assert await get_stats(session) is None

    @pytest.mark.asyncio
    async def test_update_is_an_upsert(self, session_maker):
        first = datetime(2024, 5, 10, 9, 0, tzinfo=timezone.utc)
        second = datetime(2024, 5, 10, 9, 1, tzinfo=timezone.utc)

        async with session_maker() as session:
            await update_stats(session, Statistic(3, 1, 5, [ResourceInfo("example.com", 3)]), now=first)
            await session.commit()
        async with session_maker() as session:
            await update_stats(session, Statistic(4, 2, 8), now=second)
            await session.commit()

        async with session_maker() as session:
            record = await get_last_peak_rate(session)
            stats = await get_stats(session)

        assert record.day_peak == 8
        assert record.last_update == second
        assert record.last_update.tzinfo is not None
        assert stats.total_url_count == 4
        assert stats.url_per_min == 2
        assert stats.leaders == []

    @pytest.mark.asyncio
    async def test_reset_peak_rate(self, session_maker):
        async with session_maker() as session:
            await update_stats(session, Statistic(3, 1, 5, [ResourceInfo("example.com", 3)]))
            await reset_peak_rate(session)
            await session.commit()

        async with session_maker() as session:
            stats = await get_stats(session)

        assert stats.day_peak == 0
        assert stats.total_url_count == 3
        assert stats.leaders == [{"resource": "example.com", "url_count": 3}]

    @pytest.mark.asyncio
    async def test_reset_without_row_is_noop(self, session_maker):
        async with session_maker() as session:
            await reset_peak_rate(session)
            await session.commit()
            assert await get_stats(session) is None


class TestSQLStorage:
    """Tests for the session-owning storage used by background jobs."""

    @pytest.mark.asyncio
    async def test_round_trip(self, session_maker):
        await _seed_urls(session_maker, [
            ("e1", "https://example.com/1"),
            ("p1", "https://python.org/a"),
        ])
        storage = SQLStorage(session_maker, leaders_limit=1)

        assert await storage.get_url_count() == 2
        assert await storage.get_resource_leaders() == [ResourceInfo("example.com", 1)]

        await storage.update_stats(Statistic(2, 1, 6))
        record = await storage.get_last_peak_rate()
        assert record.day_peak == 6

        await storage.reset_peak_rate()
        assert (await storage.get_last_peak_rate()).day_peak == 0
        assert (await storage.get_stats()).total_url_count == 2

    @pytest.mark.asyncio
    async def test_missing_peak_is_not_a_storage_error(self, session_maker):
        storage = SQLStorage(session_maker)

        with pytest.raises(PeakRateNotFoundError):
            await storage.get_last_peak_rate()

    @pytest.mark.asyncio
    async def test_driver_errors_are_wrapped(self, tmp_path):
        # No tables created
        engine = create_async_engine(_sqlite_url_from_absolute_path(str(tmp_path / "empty.db")))
        storage = SQLStorage(make_session_maker(engine))

        with pytest.raises(StorageError) as exc_info:
            await storage.get_url_count()

        assert exc_info.value.operation == "get_url_count"
        assert exc_info.value.cause is not None
        await engine.dispose()


@pytest.mark.asyncio
async def test_verify_connection(engine):
    assert await verify_connection(engine) is True
