import os
import sys

import pytest

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from db import SetRepository, WorkoutRepository
from errors import NoActiveSessionError, StorageError, ValidationError
from session_draft import DraftSet, SessionDraft, SessionDraftStore
from workout_service import finish_workout, save_workout_from_state

STARTED_AT = 1_700_000_000_000


def _draft_store(exercises, tmp_path=None):
    cache = str(tmp_path / "draft.yaml") if tmp_path is not None else None
    store = SessionDraftStore(cache, clock=lambda: STARTED_AT)
    store.start()
    first, second, third = exercises
    store.add_set(first, {"weight": 100, "reps": 5, "rpe": 8})
    store.add_set(first, {"weight": 102.5, "reps": 5, "rpe": 9, "rest_seconds": 180})
    store.add_exercise(second)
    store.add_set(third, {"reps": 12, "notes": "slow"})
    return store


async def _count(db, table):
    row = await db.fetch_one(f"SELECT COUNT(*) AS n FROM {table};")
    return row["n"]


@pytest.mark.asyncio
async def test_commit_skips_exercises_without_sets(db, exercises):
    draft = _draft_store(exercises).state
    result = await save_workout_from_state(draft, db)

    assert result.workout_id == draft.workout_id
    workouts = WorkoutRepository(db)
    workout = await workouts.find_by_id(result.workout_id)
    assert workout.started_at == STARTED_AT
    assert workout.ended_at == result.ended_at
    assert workout.user_id == "local-user"
    assert workout.type == "strength"
    assert workout.notes is None

    entries = await workouts.list_workout_exercises(result.workout_id)
    assert [e.exercise_id for e in entries] == [exercises[0], exercises[2]]
    assert [e.order_index for e in entries] == [0, 1]
    assert await _count(db, "workout_exercises") == 2
    assert await _count(db, "sets") == 3

    sets = SetRepository(db)
    first = await sets.list_for_workout_exercise(entries[0].id)
    assert [(s.set_index, s.weight, s.reps, s.rpe) for s in first] == [
        (0, 100.0, 5, 8.0),
        (1, 102.5, 5, 9.0),
    ]
    assert first[1].rest_seconds == 180
    third = await sets.list_for_workout_exercise(entries[1].id)
    assert third[0].weight is None
    assert third[0].notes == "slow"


@pytest.mark.asyncio
async def test_commit_options_and_generated_id(db, exercises):
    draft = SessionDraft(
        started_at=STARTED_AT,
        sets_by_exercise={
            exercises[1]: (DraftSet(id="s1", exercise_id=exercises[1], reps=3),),
        },
    )
    result = await save_workout_from_state(
        draft, db, user_id="athlete", workout_type="hypertrophy", notes="deload"
    )
    assert result.workout_id
    workout = await WorkoutRepository(db).find_by_id(result.workout_id)
    assert (workout.user_id, workout.type, workout.notes) == ("athlete", "hypertrophy", "deload")

    entries = await WorkoutRepository(db).list_workout_exercises(result.workout_id)
    sets = await SetRepository(db).list_for_workout_exercise(entries[0].id)
    assert sets[0].set_index == 0


@pytest.mark.asyncio
async def test_commit_empty_draft_creates_bare_workout(db):
    draft = SessionDraft(workout_id="w-empty", started_at=STARTED_AT)
    result = await save_workout_from_state(draft, db)
    assert result.workout_id == "w-empty"
    assert await _count(db, "workouts") == 1
    assert await _count(db, "workout_exercises") == 0


@pytest.mark.asyncio
async def test_commit_requires_active_session(db):
    with pytest.raises(NoActiveSessionError):
        await save_workout_from_state(SessionDraft(), db)
    with pytest.raises(ValidationError):
        await save_workout_from_state(SessionDraft(workout_id="w"), db)
    assert await _count(db, "workouts") == 0


@pytest.mark.asyncio
async def test_failed_set_insert_rolls_back_commit(db, exercises, monkeypatch):
    draft = _draft_store(exercises).state
    original_create = SetRepository.create
    calls = []

    async def flaky_create(self, data):
        calls.append(data)
        if len(calls) == 3:
            raise StorageError("disk I/O error")
        return await original_create(self, data)

    monkeypatch.setattr(SetRepository, "create", flaky_create)
    with pytest.raises(StorageError):
        await save_workout_from_state(draft, db)

    assert len(calls) == 3
    assert not db.in_transaction
    for table in ("workouts", "workout_exercises", "sets"):
        assert await _count(db, table) == 0


@pytest.mark.asyncio
async def test_invalid_set_value_rolls_back_commit(db, exercises):
    store = _draft_store(exercises)
    bad_id = store.sets_for(exercises[2])[0].id
    store.update_set(exercises[2], bad_id, {"rpe": 11})
    with pytest.raises(ValidationError):
        await save_workout_from_state(store.state, db)
    for table in ("workouts", "workout_exercises", "sets"):
        assert await _count(db, table) == 0


@pytest.mark.asyncio
async def test_unknown_exercise_rolls_back_commit(db, exercises):
    store = _draft_store(exercises)
    store.add_set("not-in-catalog", {"reps": 1})
    with pytest.raises(StorageError):
        await save_workout_from_state(store.state, db)
    for table in ("workouts", "workout_exercises", "sets"):
        assert await _count(db, table) == 0

    # a later good commit of the same draft id still works
    store.clear_exercise("not-in-catalog")
    result = await save_workout_from_state(store.state, db)
    assert await _count(db, "sets") == 3
    assert result.workout_id == store.state.workout_id


@pytest.mark.asyncio
async def test_recommit_replaces_existing_rows(db, exercises):
    store = _draft_store(exercises)
    first = await save_workout_from_state(store.state, db, notes="first")
    first_set = store.sets_for(exercises[0])[0].id
    store.remove_set(exercises[0], first_set)

    second = await save_workout_from_state(store.state, db)
    assert second.workout_id == first.workout_id
    assert await _count(db, "workouts") == 1
    assert await _count(db, "workout_exercises") == 2
    assert await _count(db, "sets") == 2
    workout = await WorkoutRepository(db).find_by_id(first.workout_id)
    assert workout.notes is None


@pytest.mark.asyncio
async def test_finish_workout_clears_draft_only_on_success(db, exercises, tmp_path):
    store = _draft_store(exercises, tmp_path)
    store.add_set("not-in-catalog", {"reps": 1})
    with pytest.raises(StorageError):
        await finish_workout(store, db)
    assert store.state.is_active
    assert os.path.exists(tmp_path / "draft.yaml")

    store.clear_exercise("not-in-catalog")
    result = await finish_workout(store, db)
    assert not store.state.is_active
    assert not os.path.exists(tmp_path / "draft.yaml")
    assert await WorkoutRepository(db).find_by_id(result.workout_id) is not None

