"""Tests for the SQLite state repository."""

import asyncio

import aiosqlite
import pytest

from desk_sync.storage import CYCLE_KEY, DISPLAY_KEY, StateRepository


def run(coro):
    """Run an async function in a fresh event loop."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


@pytest.fixture
def repo(tmp_path):
    repo = StateRepository(tmp_path / "nested" / "state.db")
    run(repo.init_tables())
    return repo


class TestStateRepository:
    def test_creates_parent_directory(self, repo):
        assert repo.db_path.exists()

    def test_missing_key(self, repo):
        assert run(repo.load(CYCLE_KEY)) is None

    def test_save_and_load(self, repo):
        run(repo.save(DISPLAY_KEY, {"autoPlay": False}))
        assert run(repo.load(DISPLAY_KEY)) == {"autoPlay": False}

    def test_save_overwrites(self, repo):
        run(repo.save(DISPLAY_KEY, {"gifFps": 1}))
        run(repo.save(DISPLAY_KEY, {"gifFps": 2}))
        assert run(repo.load(DISPLAY_KEY)) == {"gifFps": 2}
        assert list(run(repo.load_all())) == [DISPLAY_KEY]

    def test_load_all(self, repo):
        run(repo.save(CYCLE_KEY, {"cycleItems": [], "cycleItemCounter": 3}))
        run(repo.save(DISPLAY_KEY, {"autoPlay": True}))
        assert run(repo.load_all()) == {
            CYCLE_KEY: {"cycleItems": [], "cycleItemCounter": 3},
            DISPLAY_KEY: {"autoPlay": True},
        }

    def test_corrupt_value_skipped(self, repo):
        async def _corrupt():
            async with aiosqlite.connect(repo.db_path) as db:
                await db.execute(
                    "INSERT INTO dashboard_state (key, value) VALUES (?, ?)", (CYCLE_KEY, "{not json")
                )
                await db.commit()

        run(_corrupt())
        run(repo.save(DISPLAY_KEY, {"autoPlay": True}))
        assert run(repo.load(CYCLE_KEY)) is None
        assert run(repo.load_all()) == {DISPLAY_KEY: {"autoPlay": True}}

    def test_init_is_idempotent(self, repo):
        run(repo.save(CYCLE_KEY, {"cycleItems": []}))
        run(repo.init_tables())
        assert run(repo.load(CYCLE_KEY)) == {"cycleItems": []}
