"""Concurrent issuing against one shared store."""

import asyncio
from datetime import datetime, timezone

import pytest
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.core.config import settings
from src.core.database.session import build_engine, build_sessionmaker
from src.core.documents import DocumentNumberGenerator, DocumentNumberService, parse_document_number
from src.core.exceptions import StorageUnavailableError

SAME_INSTANT = datetime(2025, 3, 1, 8, 0, tzinfo=timezone.utc)


class _PostgresDriverError(Exception):
    """Stand-in for the asyncpg adapter error, which carries the SQLSTATE."""

    def __init__(self, message: str, sqlstate: str):
        super().__init__(message)
        self.sqlstate = sqlstate


def _driver_error(sqlstate: str, message: str, connection_invalidated: bool = False) -> DBAPIError:
    # asyncpg errors arrive as a bare DBAPIError, not OperationalError
    return DBAPIError(
        "SELECT document_sequences.id FROM document_sequences FOR UPDATE",
        None,
        _PostgresDriverError(message, sqlstate),
        connection_invalidated=connection_invalidated,
    )


def _numbers(issued: list[str]) -> list[int]:
    return sorted(parse_document_number(value).number for value in issued)


class TestConcurrentIssuing:
    async def test_hundred_concurrent_calls_are_unique_and_gapless(
        self, number_service: DocumentNumberService
    ):
        issued = await asyncio.gather(
            *(number_service.issue_next("INV", SAME_INSTANT) for _ in range(100))
        )

        assert len(set(issued)) == 100
        assert _numbers(issued) == list(range(1, 101))
        assert all(value.startswith("INV-2025-") for value in issued)
        assert await number_service.current_number("INV", 2025) == 100

    async def test_new_key_race_creates_one_row(self, number_service: DocumentNumberService):
        first_of_year = datetime(2031, 1, 1, 0, 0, tzinfo=timezone.utc)

        issued = await asyncio.gather(
            *(number_service.issue_next("CON", first_of_year) for _ in range(20))
        )

        assert _numbers(issued) == list(range(1, 21))
        sequences = await number_service.list_sequences(2031)
        assert [(s.prefix, s.year, s.last_number) for s in sequences] == [("CON", 2031, 20)]

    async def test_concurrent_keys_do_not_interfere(self, number_service: DocumentNumberService):
        calls = [
            ("INV", SAME_INSTANT),
            ("CON", SAME_INSTANT),
            ("INV", datetime(2026, 3, 1, tzinfo=timezone.utc)),
        ] * 10

        issued = await asyncio.gather(
            *(number_service.issue_next(prefix, now) for prefix, now in calls)
        )

        by_key: dict[tuple[str, int], list[int]] = {}
        for value in issued:
            parsed = parse_document_number(value)
            by_key.setdefault((parsed.prefix, parsed.year), []).append(parsed.number)

        assert {key: sorted(nums) for key, nums in by_key.items()} == {
            ("INV", 2025): list(range(1, 11)),
            ("CON", 2025): list(range(1, 11)),
            ("INV", 2026): list(range(1, 11)),
        }

    async def test_sequential_then_concurrent_continues_the_run(
        self, number_service: DocumentNumberService
    ):
        for _ in range(5):
            await number_service.issue_next("HR", SAME_INSTANT)

        issued = await asyncio.gather(
            *(number_service.issue_next("HR", SAME_INSTANT) for _ in range(15))
        )

        assert _numbers(issued) == list(range(6, 21))


class TestStorageFailures:
    async def test_unreachable_store(self, tmp_path):
        engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'missing' / 'nowhere.db'}")
        service = DocumentNumberService(build_sessionmaker(engine))
        try:
            with pytest.raises(StorageUnavailableError) as exc_info:
                await service.issue_next("INV", SAME_INSTANT)
        finally:
            await engine.dispose()

        assert exc_info.value.status_code == 503

    async def test_lock_wait_timeout_leaves_counter_unchanged(
        self,
        monkeypatch,
        database_url: str,
        session_factory: async_sessionmaker[AsyncSession],
        number_service: DocumentNumberService,
    ):
        await number_service.issue_next("INV", SAME_INSTANT)

        monkeypatch.setattr(settings, "sqlite_busy_timeout_seconds", 0.2)
        impatient_engine = build_engine(database_url)
        impatient = DocumentNumberService(build_sessionmaker(impatient_engine))

        try:
            async with session_factory() as blocker:
                async with blocker.begin():
                    # BEGIN IMMEDIATE: holds the write lock until the block exits
                    await blocker.connection()
                    with pytest.raises(StorageUnavailableError):
                        await impatient.issue_next("INV", SAME_INSTANT)
        finally:
            await impatient_engine.dispose()

        assert await number_service.current_number("INV", 2025) == 1
        assert await number_service.issue_next("INV", SAME_INSTANT) == "INV-2025-00002"

    @pytest.mark.parametrize(
        "sqlstate, message",
        [
            ("55P03", "canceling statement due to lock timeout"),
            ("40P01", "deadlock detected"),
            ("57P01", "terminating connection due to administrator command"),
        ],
    )
    async def test_postgres_lock_and_shutdown_errors_are_storage_unavailable(
        self,
        monkeypatch,
        number_service: DocumentNumberService,
        sqlstate: str,
        message: str,
    ):
        await number_service.issue_next("INV", SAME_INSTANT)

        async def fail_lock(self, document_type, year):
            raise _driver_error(sqlstate, message)

        monkeypatch.setattr(DocumentNumberGenerator, "_lock_sequence", fail_lock)

        with pytest.raises(StorageUnavailableError) as exc_info:
            await number_service.issue_next("INV", SAME_INSTANT)
        assert isinstance(exc_info.value.__cause__, DBAPIError)

        monkeypatch.undo()
        assert await number_service.current_number("INV", 2025) == 1

    async def test_invalidated_connection_is_storage_unavailable(
        self, monkeypatch, number_service: DocumentNumberService
    ):
        async def fail_lock(self, document_type, year):
            raise _driver_error("08006", "connection was closed", connection_invalidated=True)

        monkeypatch.setattr(DocumentNumberGenerator, "_lock_sequence", fail_lock)

        with pytest.raises(StorageUnavailableError):
            await number_service.issue_next("CON", SAME_INSTANT)

    async def test_other_driver_errors_propagate_unchanged(
        self, monkeypatch, number_service: DocumentNumberService
    ):
        async def fail_lock(self, document_type, year):
            raise _driver_error("22003", "integer out of range")

        monkeypatch.setattr(DocumentNumberGenerator, "_lock_sequence", fail_lock)

        with pytest.raises(DBAPIError) as exc_info:
            await number_service.issue_next("INV", SAME_INSTANT)
        assert not isinstance(exc_info.value, StorageUnavailableError)
