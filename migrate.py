import asyncio
import logging
import sys
from typing import NamedTuple, Sequence, Tuple

from db import DEFAULT_DB_PATH, Database

logger = logging.getLogger(__name__)


class Migration(NamedTuple):
    version: int
    statements: Tuple[str, ...]


MIGRATIONS: Tuple[Migration, ...] = (
    Migration(
        1,
        (
            """CREATE TABLE IF NOT EXISTS exercises (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    category TEXT,
                    equipment TEXT,
                    muscleGroup TEXT,
                    isCustom INTEGER NOT NULL DEFAULT 0,
                    createdAt INTEGER NOT NULL DEFAULT (CAST(strftime('%s','now') AS INTEGER) * 1000)
                );""",
            """CREATE TABLE IF NOT EXISTS workouts (
                    id TEXT PRIMARY KEY,
                    userId TEXT NOT NULL,
                    type TEXT,
                    startedAt INTEGER NOT NULL,
                    endedAt INTEGER,
                    notes TEXT
                );""",
            """CREATE TABLE IF NOT EXISTS workout_exercises (
                    id TEXT PRIMARY KEY,
                    workoutId TEXT NOT NULL REFERENCES workouts(id) ON DELETE CASCADE,
                    exerciseId TEXT NOT NULL REFERENCES exercises(id),
                    orderIndex INTEGER NOT NULL
                );""",
            """CREATE TABLE IF NOT EXISTS sets (
                    id TEXT PRIMARY KEY,
                    workoutExerciseId TEXT NOT NULL REFERENCES workout_exercises(id) ON DELETE CASCADE,
                    setIndex INTEGER NOT NULL,
                    weight REAL,
                    reps INTEGER,
                    rpe REAL,
                    restSeconds INTEGER,
                    notes TEXT
                );""",
        ),
    ),
    Migration(
        2,
        (
            "CREATE INDEX IF NOT EXISTS idx_workout_exercises_workout "
            "ON workout_exercises (workoutId, orderIndex);",
            "CREATE INDEX IF NOT EXISTS idx_sets_workout_exercise "
            "ON sets (workoutExerciseId, setIndex);",
            "CREATE INDEX IF NOT EXISTS idx_workouts_started ON workouts (startedAt);",
        ),
    ),
)


def _check_order(migrations: Sequence[Migration]) -> None:
    previous = 0
    for migration in migrations:
        if migration.version <= previous:
            raise ValueError(
                f"migration versions must be positive and strictly increasing "
                f"(got {migration.version} after {previous})"
            )
        previous = migration.version


async def current_version(db: Database) -> int:
    row = await db.fetch_one("SELECT value FROM meta WHERE key = 'schema_version';")
    return int(row["value"]) if row is not None else 0


async def apply_migrations(
    db: Database, migrations: Sequence[Migration] = MIGRATIONS
) -> int:
    """Bring the schema up to the newest version and return that version.

    Safe to call on every start: satisfied versions are skipped and the whole
    sweep runs in one transaction, so a failure leaves the stored version
    unchanged and the next call retries from the same point.
    """
    _check_order(migrations)
    async with db.transaction():
        await db.execute(
            "CREATE TABLE IF NOT EXISTS meta (key TEXT PRIMARY KEY, value TEXT NOT NULL);"
        )
        await db.execute(
            "INSERT OR IGNORE INTO meta (key, value) VALUES ('schema_version', '0');"
        )
        version = await current_version(db)
        for migration in migrations:
            if migration.version <= version:
                continue
            for statement in migration.statements:
                await db.execute(statement)
            version = migration.version
            await db.execute(
                "UPDATE meta SET value = ? WHERE key = 'schema_version';",
                (str(version),),
            )
            logger.info("Applied schema migration %d to %s", version, db.path)
    return version


async def init_database(db_path: str = DEFAULT_DB_PATH, seed: bool = True) -> Database:
    """Open the store for ``db_path``, migrate it and seed the catalog."""
    from seed_sample_data import run_seeds

    db = Database.acquire(db_path)
    await apply_migrations(db)
    if seed:
        await run_seeds(db)
    return db


async def migrate(db_path: str = DEFAULT_DB_PATH) -> int:
    db = Database.acquire(db_path)
    try:
        return await apply_migrations(db)
    finally:
        await Database.release(db_path)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    path = sys.argv[1] if len(sys.argv) > 1 else DEFAULT_DB_PATH
    print(f"Schema version {asyncio.run(migrate(path))}")
