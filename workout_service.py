import logging
from typing import Optional, Union

from db import DEFAULT_DB_PATH, Database, SetRepository, WorkoutRepository
from errors import NoActiveSessionError
from models import CommitResult
from session_draft import SessionDraft, SessionDraftStore
from tools import generate_id, now_ms

logger = logging.getLogger(__name__)

DEFAULT_USER_ID = "local-user"
DEFAULT_WORKOUT_TYPE = "strength"


async def _upsert_workout(
    workouts: WorkoutRepository,
    workout_id: str,
    user_id: str,
    workout_type: Optional[str],
    started_at: int,
    ended_at: int,
    notes: Optional[str],
) -> None:
    existing = await workouts.find_by_id(workout_id)
    if existing is None:
        await workouts.execute(
            "INSERT INTO workouts (id, userId, type, startedAt, endedAt, notes) "
            "VALUES (?, ?, ?, ?, ?, ?);",
            (workout_id, user_id, workout_type, started_at, ended_at, notes),
        )
        return
    await workouts.execute(
        "UPDATE workouts SET userId = ?, type = ?, startedAt = ?, endedAt = ?, notes = ? "
        "WHERE id = ?;",
        (user_id, workout_type, started_at, ended_at, notes, workout_id),
    )
    # the draft is the full content of the workout; drop rows from earlier saves
    await workouts.execute(
        "DELETE FROM workout_exercises WHERE workoutId = ?;", (workout_id,)
    )


async def save_workout_from_state(
    draft: SessionDraft,
    db: Union[Database, str] = DEFAULT_DB_PATH,
    user_id: str = DEFAULT_USER_ID,
    workout_type: Optional[str] = DEFAULT_WORKOUT_TYPE,
    notes: Optional[str] = None,
) -> CommitResult:
    """Write ``draft`` to the store as one finished workout.

    Exercises without sets are skipped. All rows are written in a single
    transaction; on any error nothing from this call remains and the error
    propagates.
    """
    if draft.started_at is None:
        raise NoActiveSessionError()

    database = db if isinstance(db, Database) else Database.acquire(db)
    workouts = WorkoutRepository(database)
    sets = SetRepository(database)
    workout_id = draft.workout_id or generate_id()
    ended_at = now_ms()

    exercise_count = 0
    set_count = 0
    async with database.transaction():
        await _upsert_workout(
            workouts, workout_id, user_id, workout_type, draft.started_at, ended_at, notes
        )
        for exercise_id, draft_sets in draft.sets_by_exercise.items():
            if not draft_sets:
                continue
            entry = await workouts.add_exercise_to_workout(
                workout_id, exercise_id, exercise_count
            )
            exercise_count += 1
            for position, draft_set in enumerate(draft_sets):
                await sets.create(
                    {
                        "workout_exercise_id": entry.id,
                        "set_index": (
                            draft_set.set_index
                            if draft_set.set_index is not None
                            else position
                        ),
                        "weight": draft_set.weight,
                        "reps": draft_set.reps,
                        "rpe": draft_set.rpe,
                        "rest_seconds": draft_set.rest_seconds,
                        "notes": draft_set.notes,
                    }
                )
                set_count += 1

    logger.info(
        "Committed workout %s with %d exercises and %d sets",
        workout_id,
        exercise_count,
        set_count,
    )
    return CommitResult(workout_id=workout_id, ended_at=ended_at)


async def finish_workout(
    store: SessionDraftStore,
    db: Union[Database, str] = DEFAULT_DB_PATH,
    user_id: str = DEFAULT_USER_ID,
    workout_type: Optional[str] = DEFAULT_WORKOUT_TYPE,
    notes: Optional[str] = None,
) -> CommitResult:
    """Commit the store's draft and clear it once the commit succeeded."""
    result = await save_workout_from_state(
        store.state, db, user_id=user_id, workout_type=workout_type, notes=notes
    )
    store.clear()
    return result
