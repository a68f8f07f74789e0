import asyncio
import logging
from typing import Tuple

from db import DEFAULT_DB_PATH, Database, ExerciseRepository
from tools import generate_id

logger = logging.getLogger(__name__)

# name, category, equipment, muscle group
BASE_EXERCISES: Tuple[Tuple[str, str, str, str], ...] = (
    ("Barbell Bench Press", "Push", "Barbell", "Chest"),
    ("Incline Dumbbell Press", "Push", "Dumbbells", "Chest"),
    ("Pull-Up", "Pull", "Bodyweight", "Back"),
    ("Seated Cable Row", "Pull", "Cable", "Back"),
    ("Back Squat", "Legs", "Barbell", "Quadriceps"),
    ("Romanian Deadlift", "Legs", "Barbell", "Hamstrings"),
    ("Dumbbell Shoulder Press", "Push", "Dumbbells", "Shoulders"),
    ("Cable Lateral Raise", "Push", "Cable", "Shoulders"),
    ("Hammer Curl", "Pull", "Dumbbells", "Biceps"),
    ("Rope Triceps Pushdown", "Push", "Cable", "Triceps"),
    ("Deadlift", "Pull", "Barbell", "Back"),
    ("Lat Pulldown", "Pull", "Machine", "Back"),
    ("Face Pull", "Pull", "Cable", "Rear Delts"),
    ("Single-Arm Dumbbell Row", "Pull", "Dumbbells", "Back"),
    ("Hip Thrust", "Legs", "Barbell", "Glutes"),
    ("Leg Press", "Legs", "Machine", "Quadriceps"),
    ("Lunge", "Legs", "Dumbbells", "Quadriceps"),
    ("Calf Raise", "Legs", "Machine", "Calves"),
    ("Plank", "Core", "Bodyweight", "Abs"),
    ("Hanging Knee Raise", "Core", "Bodyweight", "Abs"),
    ("Russian Twist", "Core", "Dumbbell", "Obliques"),
    ("Farmer's Walk", "Grip", "Dumbbells", "Forearms"),
    ("Push-Up", "Push", "Bodyweight", "Chest"),
)


async def run_seeds(db: Database) -> int:
    """Insert the base catalog into an empty exercises table.

    Returns the number of exercises inserted (0 when the catalog already has
    entries).
    """
    row = await db.fetch_one("SELECT COUNT(*) AS n FROM exercises;")
    if row is not None and int(row["n"]) > 0:
        return 0
    async with db.transaction():
        for name, category, equipment, muscle_group in BASE_EXERCISES:
            await db.execute(
                "INSERT INTO exercises (id, name, category, equipment, muscleGroup, isCustom) "
                "VALUES (?, ?, ?, ?, ?, 0);",
                (generate_id(), name, category, equipment, muscle_group),
            )
    logger.info("Seeded %d exercises into %s", len(BASE_EXERCISES), db.path)
    return len(BASE_EXERCISES)


async def reset_exercise_seeds(db: Database) -> int:
    """Drop every exercise and re-insert the base catalog.

    Raises :class:`errors.StorageError` while logged workouts still reference
    catalog entries.
    """
    await ExerciseRepository(db).delete_all()
    return await run_seeds(db)


async def seed(db_path: str = DEFAULT_DB_PATH) -> None:
    from migrate import apply_migrations

    db = Database.acquire(db_path)
    try:
        await apply_migrations(db)
        inserted = await run_seeds(db)
    finally:
        await Database.release(db_path)
    if inserted:
        print(f"Seeded {inserted} exercises")
    else:
        print("Database already contains exercises")


if __name__ == "__main__":
    asyncio.run(seed())
