import os
import sys

import pytest_asyncio

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from db import Database, ExerciseRepository
from migrate import apply_migrations


@pytest_asyncio.fixture
async def db(tmp_path):
    database = Database.acquire(str(tmp_path / "workout.db"))
    await apply_migrations(database)
    yield database
    await database.close()


@pytest_asyncio.fixture
async def exercises(db):
    repo = ExerciseRepository(db)
    bench = await repo.create({"name": "Bench Press", "category": "Push", "muscle_group": "Chest"})
    squat = await repo.create({"name": "Back Squat", "category": "Legs", "muscle_group": "Quadriceps"})
    row = await repo.create({"name": "Seated Cable Row", "category": "Pull", "muscle_group": "Back"})
    return [bench.id, squat.id, row.id]
