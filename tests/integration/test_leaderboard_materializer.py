"""Leaderboard materialization: ranking, privacy, snapshot swap and failure handling."""

from __future__ import annotations

import asyncio
import uuid
from datetime import timedelta

import pytest
from sqlalchemy import select

from conftest import completed, load, utc
from studytrack.db.models import LeaderboardRefresh, LeaderboardSnapshot
from studytrack.errors import RefreshFailedError, UnknownPeriodError
from studytrack.leaderboard import materializer as materializer_module
from studytrack.leaderboard.materializer import LeaderboardMaterializer, RefreshState
from studytrack.leaderboard.service import build_cache_key, get_leaderboard, get_user_entry
from studytrack.sessions.completion_service import complete_session_with_retry

pytestmark = pytest.mark.asyncio

NOW = utc(2026, 3, 10, 12)


async def _study(session_factory, user: uuid.UUID, days_ago: int, seconds: int) -> None:
    start = utc(2026, 3, 10, 8) - timedelta(days=days_ago)
    await complete_session_with_retry(session_factory, completed(user, start, seconds))


async def _snapshot_versions(session_factory, period: str) -> set[str]:
    async with session_factory() as db:
        result = await db.execute(
            select(LeaderboardSnapshot.version).where(LeaderboardSnapshot.period == period).distinct()
        )
        return set(result.scalars().all())


async def _read(session_factory, period: str, redis=None, limit: int | None = None) -> dict:
    async with session_factory() as db:
        return await get_leaderboard(db, redis, period, limit)


@pytest.fixture
def materializer(session_factory, settings) -> LeaderboardMaterializer:
    return LeaderboardMaterializer(session_factory, settings)


class TestRanking:

    async def test_ordering_privacy_and_zero_activity(self, session_factory, make_profile, materializer):
        first = uuid.UUID(int=1)
        second = uuid.UUID(int=2)
        await make_profile(id=second, username="bea")
        await make_profile(id=first, username="ari")
        idle = await make_profile(username="cal")
        hidden = await make_profile(username="dex", show_in_leaderboard=False)
        leader = await make_profile(username="eve")

        await _study(session_factory, first, 0, 3000)
        await _study(session_factory, second, 1, 3000)
        await _study(session_factory, leader, 2, 5000)
        await _study(session_factory, hidden, 0, 9000)

        outcome = await materializer.refresh("week", now=NOW)
        assert outcome["entry_count"] == 4

        board = await _read(session_factory, "week")
        ids = [entry["user_id"] for entry in board["entries"]]
        assert ids == [leader, first, second, idle]
        assert [entry["rank"] for entry in board["entries"]] == [1, 2, 3, 4]
        assert [entry["total_seconds"] for entry in board["entries"]] == [5000, 3000, 3000, 0]
        assert hidden not in ids
        assert board["entries"][1]["username"] == "ari"

    async def test_window_excludes_older_activity(self, session_factory, make_profile, materializer):
        user = await make_profile()
        await _study(session_factory, user, 0, 600)
        await _study(session_factory, user, 6, 600)
        await _study(session_factory, user, 7, 600)
        await _study(session_factory, user, 29, 600)
        await _study(session_factory, user, 30, 600)

        await materializer.refresh("week", now=NOW)
        await materializer.refresh("month", now=NOW)
        await materializer.refresh("year", now=NOW)

        week = (await _read(session_factory, "week"))["entries"][0]
        month = (await _read(session_factory, "month"))["entries"][0]
        year = (await _read(session_factory, "year"))["entries"][0]
        assert week["total_seconds"] == 1200
        assert month["total_seconds"] == 2400
        assert year["total_seconds"] == 3000

    async def test_as_of_is_refresh_time(self, session_factory, make_profile, materializer):
        await make_profile()
        await materializer.refresh("week", now=NOW)

        board = await _read(session_factory, "week")
        assert board["as_of"] == NOW
        assert board["last_refresh_status"] == "ok"

    async def test_user_entry(self, session_factory, make_profile, materializer):
        user = await make_profile()
        hidden = await make_profile(show_in_leaderboard=False)
        await _study(session_factory, user, 0, 1200)
        await materializer.refresh("week", now=NOW)

        async with session_factory() as db:
            entry = await get_user_entry(db, "week", user)
            missing = await get_user_entry(db, "week", hidden)

        assert entry["entry"]["rank"] == 1
        assert entry["entry"]["total_seconds"] == 1200
        assert entry["total"] == 1
        assert missing is None

    async def test_limit_is_applied(self, session_factory, make_profile, materializer):
        for _ in range(5):
            await make_profile()
        await materializer.refresh("week", now=NOW)

        board = await _read(session_factory, "week", limit=2)
        assert len(board["entries"]) == 2
        assert board["total"] == 5

    async def test_no_snapshot_yet(self, session_factory):
        board = await _read(session_factory, "month")
        assert board["entries"] == []
        assert board["as_of"] is None

    async def test_unknown_period(self, materializer):
        with pytest.raises(UnknownPeriodError):
            await materializer.refresh("decade")


class TestSnapshotSwap:

    async def test_refresh_replaces_previous_version(self, session_factory, make_profile, materializer):
        user = await make_profile()
        first = await materializer.refresh("week", now=NOW)

        await _study(session_factory, user, 0, 900)
        second = await materializer.refresh("week", now=NOW + timedelta(hours=1))

        assert first["version"] != second["version"]
        assert await _snapshot_versions(session_factory, "week") == {second["version"]}
        board = await _read(session_factory, "week")
        assert board["version"] == second["version"]
        assert board["entries"][0]["total_seconds"] == 900

    async def test_periods_are_independent(self, session_factory, make_profile, materializer):
        await make_profile()
        week = await materializer.refresh("week", now=NOW)
        await materializer.refresh("month", now=NOW)

        assert await _snapshot_versions(session_factory, "week") == {week["version"]}

    async def test_concurrent_refreshes_leave_one_snapshot(self, session_factory, make_profile, materializer):
        for _ in range(3):
            await make_profile()

        outcomes = await asyncio.gather(
            materializer.refresh("week", now=NOW),
            materializer.refresh("week", now=NOW),
        )

        versions = await _snapshot_versions(session_factory, "week")
        assert len(versions) == 1
        assert versions <= {o["version"] for o in outcomes}
        status = await load(session_factory, LeaderboardRefresh, "week")
        assert status.active_version in versions
        board = await _read(session_factory, "week")
        assert len(board["entries"]) == 3

    async def test_refresh_all(self, session_factory, make_profile, materializer):
        await make_profile()
        results = await materializer.refresh_all(now=NOW)

        assert set(results) == {"week", "month", "year"}
        assert all("version" in r for r in results.values())


class TestRefreshFailure:

    async def test_failure_keeps_previous_snapshot(self, session_factory, make_profile, materializer, monkeypatch):
        user = await make_profile()
        await _study(session_factory, user, 0, 600)
        good = await materializer.refresh("week", now=NOW)

        async def broken(db, period, today):
            raise RuntimeError("aggregation exploded")

        monkeypatch.setattr(materializer_module, "compute_rankings", broken)
        with pytest.raises(RefreshFailedError, match="aggregation exploded"):
            await materializer.refresh("week", now=NOW + timedelta(hours=1))

        board = await _read(session_factory, "week")
        assert board["version"] == good["version"]
        assert board["as_of"] == NOW
        assert board["entries"][0]["total_seconds"] == 600
        assert board["last_refresh_status"] == "failed"

        status = await load(session_factory, LeaderboardRefresh, "week")
        assert status.last_status == "failed"
        assert "aggregation exploded" in status.last_error
        assert materializer.state("week") == RefreshState.FAILED

    async def test_timeout_keeps_previous_snapshot(
        self, session_factory, make_profile, materializer, settings, monkeypatch
    ):
        await make_profile()
        good = await materializer.refresh("week", now=NOW)
        quick = LeaderboardMaterializer(
            session_factory,
            settings.model_copy(update={"leaderboard_refresh_timeout_seconds": 0.05}),
        )

        async def slow(db, period, today):
            await asyncio.sleep(1)
            return []

        monkeypatch.setattr(materializer_module, "compute_rankings", slow)
        with pytest.raises(RefreshFailedError, match="timed out"):
            await quick.refresh("week", now=NOW + timedelta(hours=1))

        assert await _snapshot_versions(session_factory, "week") == {good["version"]}
        status = await load(session_factory, LeaderboardRefresh, "week")
        assert status.active_version == good["version"]
        assert status.last_status == "failed"
        assert quick.state("week") == RefreshState.FAILED

    async def test_failed_state_clears_on_next_success(self, session_factory, make_profile, materializer, monkeypatch):
        await make_profile()
        real = materializer_module.compute_rankings

        async def broken(db, period, today):
            raise RuntimeError("aggregation exploded")

        monkeypatch.setattr(materializer_module, "compute_rankings", broken)
        with pytest.raises(RefreshFailedError):
            await materializer.refresh("week", now=NOW)
        assert materializer.states() == {"week": "failed", "month": "idle", "year": "idle"}

        monkeypatch.setattr(materializer_module, "compute_rankings", real)
        await materializer.refresh("week", now=NOW + timedelta(hours=1))

        assert materializer.state("week") == RefreshState.IDLE
        status = await load(session_factory, LeaderboardRefresh, "week")
        assert status.last_status == "ok"
        assert status.last_error is None

    async def test_failure_before_first_snapshot(self, session_factory, materializer, monkeypatch):
        async def broken(db, period, today):
            raise RuntimeError("no database")

        monkeypatch.setattr(materializer_module, "compute_rankings", broken)
        results = await materializer.refresh_all(now=NOW)

        assert all("error" in r for r in results.values())
        board = await _read(session_factory, "year")
        assert board["entries"] == []
        assert board["last_refresh_status"] == "failed"


class TestReadCache:

    async def test_reads_are_cached_per_version(self, session_factory, make_profile, materializer, redis_client):
        user = await make_profile()
        first = await materializer.refresh("week", now=NOW)

        await _read(session_factory, "week", redis=redis_client, limit=10)
        assert await redis_client.exists(build_cache_key("week", first["version"], 10))

        await _study(session_factory, user, 0, 1200)
        second = await materializer.refresh("week", now=NOW + timedelta(hours=1))

        board = await _read(session_factory, "week", redis=redis_client, limit=10)
        assert board["version"] == second["version"]
        assert board["entries"][0]["total_seconds"] == 1200

    async def test_cached_read_matches_fresh_read(self, session_factory, make_profile, materializer, redis_client):
        user = await make_profile(username="ari")
        await _study(session_factory, user, 0, 300)
        await materializer.refresh("week", now=NOW)

        fresh = await _read(session_factory, "week", redis=redis_client)
        cached = await _read(session_factory, "week", redis=redis_client)

        assert cached["version"] == fresh["version"]
        assert cached["entries"][0]["username"] == "ari"
        assert cached["entries"][0]["total_seconds"] == 300
