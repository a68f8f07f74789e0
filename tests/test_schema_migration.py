import asyncio
import os
import sqlite3
import sys

import aiosqlite
import pytest

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from db import Database, SetRepository, WorkoutRepository
from errors import StorageError
from migrate import MIGRATIONS, Migration, apply_migrations, current_version, migrate


class TestSchemaMigration:
    def test_creates_tables_and_records_version(self, tmp_path):
        db_file = str(tmp_path / "test.db")
        assert asyncio.run(migrate(db_file)) == MIGRATIONS[-1].version

        conn = sqlite3.connect(db_file)
        names = {
            row[0]
            for row in conn.execute("SELECT name FROM sqlite_master WHERE type IN ('table', 'index')")
        }
        assert {"exercises", "workouts", "workout_exercises", "sets", "meta"} <= names
        assert "idx_sets_workout_exercise" in names
        value = conn.execute("SELECT value FROM meta WHERE key = 'schema_version'").fetchone()[0]
        assert value == str(MIGRATIONS[-1].version)
        conn.close()

    def test_existing_version_is_not_reset(self, tmp_path):
        db_file = str(tmp_path / "test.db")
        conn = sqlite3.connect(db_file)
        conn.execute("CREATE TABLE meta (key TEXT PRIMARY KEY, value TEXT NOT NULL)")
        conn.execute("INSERT INTO meta (key, value) VALUES ('schema_version', '1')")
        conn.execute("CREATE TABLE exercises (id TEXT PRIMARY KEY, name TEXT NOT NULL)")
        conn.commit()
        conn.close()

        # version 1 is treated as satisfied, so only migration 2 runs
        with pytest.raises(StorageError):
            asyncio.run(migrate(db_file))

        conn = sqlite3.connect(db_file)
        value = conn.execute("SELECT value FROM meta WHERE key = 'schema_version'").fetchone()[0]
        assert value == "1"
        conn.close()


@pytest.mark.asyncio
async def test_apply_twice_is_idempotent(db):
    first = await current_version(db)
    second = await apply_migrations(db)
    third = await apply_migrations(db)
    assert first == second == third == MIGRATIONS[-1].version


@pytest.mark.asyncio
async def test_failed_sweep_rolls_back_everything(tmp_path):
    db = Database.acquire(str(tmp_path / "broken.db"))
    broken = (
        Migration(1, ("CREATE TABLE IF NOT EXISTS notes (id TEXT PRIMARY KEY);",)),
        Migration(2, ("CREATE TABLE oops (;",)),
    )
    try:
        with pytest.raises(StorageError):
            await apply_migrations(db, broken)
        rows = await db.fetch_all(
            "SELECT name FROM sqlite_master WHERE name IN ('notes', 'meta');"
        )
        assert rows == []
        assert not db.in_transaction

        fixed = (broken[0], Migration(2, ("CREATE TABLE IF NOT EXISTS oops (id TEXT);",)))
        assert await apply_migrations(db, fixed) == 2
        assert await apply_migrations(db, fixed) == 2
    finally:
        await db.close()


@pytest.mark.asyncio
async def test_concurrent_first_use_opens_one_connection(tmp_path, monkeypatch):
    opened = []
    real_connect = aiosqlite.connect

    def counting_connect(*args, **kwargs):
        opened.append(args[0])
        return real_connect(*args, **kwargs)

    monkeypatch.setattr(aiosqlite, "connect", counting_connect)
    db = Database.acquire(str(tmp_path / "shared.db"))
    try:
        results = await asyncio.gather(*(db.fetch_all("SELECT 1 AS one;") for _ in range(5)))
        assert [r[0]["one"] for r in results] == [1] * 5
        assert len(opened) == 1
    finally:
        await db.close()


@pytest.mark.asyncio
async def test_rejects_unordered_migrations(db):
    with pytest.raises(ValueError):
        await apply_migrations(db, (Migration(2, ()), Migration(1, ())))
    with pytest.raises(ValueError):
        await apply_migrations(db, (Migration(0, ()),))


@pytest.mark.asyncio
async def test_deleting_workout_cascades(db, exercises):
    workouts = WorkoutRepository(db)
    sets = SetRepository(db)
    workout = await workouts.create({"user_id": "local-user"})
    entry = await workouts.add_exercise_to_workout(workout.id, exercises[0])
    await sets.create({"workout_exercise_id": entry.id, "reps": 5})
    await sets.create({"workout_exercise_id": entry.id, "reps": 5})

    await workouts.delete(workout.id)

    assert await workouts.list_workout_exercises(workout.id) == []
    assert await sets.list_for_workout_exercise(entry.id) == []
    row = await db.fetch_one("SELECT COUNT(*) AS n FROM sets;")
    assert row["n"] == 0
