import asyncio
import logging
import sqlite3
from contextlib import asynccontextmanager
from typing import Any, ClassVar, Dict, List, Mapping, Optional, Tuple, Union

import aiosqlite

from errors import NotFoundError, StorageError
from models import (
    ExerciseCreate,
    ExercisePatch,
    ExerciseRecord,
    SetCreate,
    SetPatch,
    SetRecord,
    WorkoutCompletion,
    WorkoutCreate,
    WorkoutExerciseRecord,
    WorkoutRecord,
    parse_input,
)
from tools import escape_like, generate_id, now_ms

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = "fittracker.db"


def _casefold(value: Optional[str]) -> Optional[str]:
    return value.casefold() if value is not None else None


class Database:
    """Owns the single SQLite connection for one database file.

    Use :meth:`acquire` rather than the constructor: the first call for a path
    creates the instance and later calls reuse it. The connection itself is
    opened lazily by the first statement.
    """

    _instances: ClassVar[Dict[str, "Database"]] = {}

    def __init__(self, db_path: str = DEFAULT_DB_PATH) -> None:
        self._db_path = db_path
        self._conn: Optional[aiosqlite.Connection] = None
        self._open_lock: Optional[asyncio.Lock] = None
        self._tx_depth = 0

    @classmethod
    def acquire(cls, db_path: str = DEFAULT_DB_PATH) -> "Database":
        db = cls._instances.get(db_path)
        if db is None:
            db = cls(db_path)
            cls._instances[db_path] = db
        return db

    @classmethod
    async def release(cls, db_path: str = DEFAULT_DB_PATH) -> None:
        db = cls._instances.pop(db_path, None)
        if db is not None:
            await db.close()

    @property
    def path(self) -> str:
        return self._db_path

    @property
    def in_transaction(self) -> bool:
        return self._tx_depth > 0

    async def _connection(self) -> aiosqlite.Connection:
        if self._conn is not None:
            return self._conn
        if self._open_lock is None:
            self._open_lock = asyncio.Lock()
        async with self._open_lock:
            if self._conn is None:
                self._conn = await self._open()
                logger.info("Opened database %s", self._db_path)
        return self._conn

    async def _open(self) -> aiosqlite.Connection:
        try:
            # autocommit: BEGIN/COMMIT below are the only transaction boundaries
            conn = await aiosqlite.connect(self._db_path, isolation_level=None)
        except sqlite3.Error as exc:
            raise StorageError(f"cannot open {self._db_path}: {exc}") from exc
        try:
            conn.row_factory = aiosqlite.Row
            # SQLite's lower() only folds ASCII letters
            await conn.create_function("casefold", 1, _casefold, deterministic=True)
            await conn.execute("PRAGMA foreign_keys = ON;")
        except sqlite3.Error as exc:
            await conn.close()
            raise StorageError(f"cannot open {self._db_path}: {exc}") from exc
        return conn

    async def close(self) -> None:
        if self._conn is not None:
            await self._conn.close()
            self._conn = None
            self._tx_depth = 0
            logger.info("Closed database %s", self._db_path)
        if Database._instances.get(self._db_path) is self:
            del Database._instances[self._db_path]

    async def execute(self, query: str, params: Tuple = ()) -> int:
        """Run one statement and return the number of affected rows."""
        conn = await self._connection()
        try:
            cursor = await conn.execute(query, params)
        except sqlite3.Error as exc:
            raise StorageError(str(exc)) from exc
        rowcount = cursor.rowcount
        await cursor.close()
        return rowcount

    async def fetch_all(self, query: str, params: Tuple = ()) -> List[sqlite3.Row]:
        conn = await self._connection()
        try:
            cursor = await conn.execute(query, params)
            rows = await cursor.fetchall()
        except sqlite3.Error as exc:
            raise StorageError(str(exc)) from exc
        await cursor.close()
        return list(rows)

    async def fetch_one(self, query: str, params: Tuple = ()) -> Optional[sqlite3.Row]:
        rows = await self.fetch_all(query, params)
        return rows[0] if rows else None

    @asynccontextmanager
    async def transaction(self):
        """Run the enclosed statements atomically.

        The outermost block issues ``BEGIN``/``COMMIT``; nested blocks use
        savepoints. Any exception rolls back to the matching level and is
        re-raised unchanged.
        """
        depth = self._tx_depth
        savepoint = f"sp_{depth}"
        await self.execute("BEGIN;" if depth == 0 else f"SAVEPOINT {savepoint};")
        self._tx_depth += 1
        try:
            yield self
        except BaseException:
            self._tx_depth = depth
            if depth == 0:
                await self.execute("ROLLBACK;")
            else:
                await self.execute(f"ROLLBACK TO {savepoint};")
                await self.execute(f"RELEASE {savepoint};")
            logger.debug("Rolled back transaction level %d on %s", depth, self._db_path)
            raise
        self._tx_depth = depth
        if depth > 0:
            await self.execute(f"RELEASE {savepoint};")
            return
        try:
            await self.execute("COMMIT;")
        except StorageError:
            await self.execute("ROLLBACK;")
            raise


class BaseRepository:
    """Base repository providing helper methods."""

    def __init__(self, db: Union[Database, str] = DEFAULT_DB_PATH) -> None:
        self.db = db if isinstance(db, Database) else Database.acquire(db)

    async def execute(self, query: str, params: Tuple = ()) -> int:
        return await self.db.execute(query, params)

    async def fetch_all(self, query: str, params: Tuple = ()) -> List[sqlite3.Row]:
        return await self.db.fetch_all(query, params)

    async def fetch_one(self, query: str, params: Tuple = ()) -> Optional[sqlite3.Row]:
        return await self.db.fetch_one(query, params)

    async def _next_index(self, table: str, column: str, owner: str, owner_id: str) -> int:
        row = await self.fetch_one(
            f"SELECT MAX({column}) AS max_index FROM {table} WHERE {owner} = ?;",
            (owner_id,),
        )
        if row is None or row["max_index"] is None:
            return 0
        return int(row["max_index"]) + 1

    async def _renumber(
        self, table: str, column: str, owner: str, owner_id: str
    ) -> None:
        """Rewrite ``column`` as a dense 0..n-1 sequence for one owner."""
        rows = await self.fetch_all(
            f"SELECT id FROM {table} WHERE {owner} = ? ORDER BY {column}, rowid;",
            (owner_id,),
        )
        for index, row in enumerate(rows):
            await self.execute(
                f"UPDATE {table} SET {column} = ? WHERE id = ?;",
                (index, row["id"]),
            )

    async def _delete_all(self, table: str) -> None:
        await self.execute(f"DELETE FROM {table};")


def _optional_int(value: Any) -> Optional[int]:
    return int(value) if value is not None else None


def _optional_float(value: Any) -> Optional[float]:
    return float(value) if value is not None else None


def _exercise_from_row(row: Mapping[str, Any]) -> ExerciseRecord:
    return ExerciseRecord(
        id=row["id"],
        name=row["name"],
        category=row["category"],
        equipment=row["equipment"],
        muscle_group=row["muscleGroup"],
        is_custom=int(row["isCustom"] or 0) == 1,
        created_at=int(row["createdAt"] or 0),
    )


def _workout_from_row(row: Mapping[str, Any]) -> WorkoutRecord:
    return WorkoutRecord(
        id=row["id"],
        user_id=row["userId"],
        type=row["type"],
        started_at=int(row["startedAt"]),
        ended_at=_optional_int(row["endedAt"]),
        notes=row["notes"],
    )


def _workout_exercise_from_row(row: Mapping[str, Any]) -> WorkoutExerciseRecord:
    return WorkoutExerciseRecord(
        id=row["id"],
        workout_id=row["workoutId"],
        exercise_id=row["exerciseId"],
        order_index=int(row["orderIndex"]),
    )


def _set_from_row(row: Mapping[str, Any]) -> SetRecord:
    return SetRecord(
        id=row["id"],
        workout_exercise_id=row["workoutExerciseId"],
        set_index=int(row["setIndex"]),
        weight=_optional_float(row["weight"]),
        reps=_optional_int(row["reps"]),
        rpe=_optional_float(row["rpe"]),
        rest_seconds=_optional_int(row["restSeconds"]),
        notes=row["notes"],
    )


class ExerciseRepository(BaseRepository):
    """Repository for the exercise catalog."""

    _COLUMNS = "id, name, category, equipment, muscleGroup, isCustom, createdAt"

    async def list_all(self) -> List[ExerciseRecord]:
        rows = await self.fetch_all(
            f"SELECT {self._COLUMNS} FROM exercises ORDER BY name COLLATE NOCASE;"
        )
        return [_exercise_from_row(r) for r in rows]

    async def search(self, query: str) -> List[ExerciseRecord]:
        """Match ``query`` against name, category and muscle group."""
        query = (query or "").strip()
        if not query:
            return await self.list_all()
        like = f"%{escape_like(query.casefold())}%"
        rows = await self.fetch_all(
            f"SELECT {self._COLUMNS} FROM exercises "
            "WHERE casefold(name) LIKE ? ESCAPE '\\' "
            "OR casefold(category) LIKE ? ESCAPE '\\' "
            "OR casefold(muscleGroup) LIKE ? ESCAPE '\\' "
            "ORDER BY name COLLATE NOCASE;",
            (like, like, like),
        )
        return [_exercise_from_row(r) for r in rows]

    async def find_by_id(self, exercise_id: str) -> Optional[ExerciseRecord]:
        row = await self.fetch_one(
            f"SELECT {self._COLUMNS} FROM exercises WHERE id = ?;", (exercise_id,)
        )
        return _exercise_from_row(row) if row is not None else None

    async def create(
        self, data: Union[ExerciseCreate, Mapping[str, Any]]
    ) -> ExerciseRecord:
        entry = parse_input(ExerciseCreate, data)
        exercise_id = entry.id or generate_id()
        await self.execute(
            "INSERT INTO exercises (id, name, category, equipment, muscleGroup, isCustom) "
            "VALUES (?, ?, ?, ?, ?, ?);",
            (
                exercise_id,
                entry.name,
                entry.category,
                entry.equipment,
                entry.muscle_group,
                int(entry.is_custom),
            ),
        )
        fresh = await self.find_by_id(exercise_id)
        if fresh is None:
            raise StorageError("exercise missing after insert")
        return fresh

    async def update(
        self, exercise_id: str, patch: Union[ExercisePatch, Mapping[str, Any]]
    ) -> ExerciseRecord:
        changes = parse_input(ExercisePatch, patch).model_dump(exclude_unset=True)
        current = await self.find_by_id(exercise_id)
        if current is None:
            raise NotFoundError(f"exercise {exercise_id} not found")
        merged = current.model_copy(update=changes)
        await self.execute(
            "UPDATE exercises SET name = ?, category = ?, equipment = ?, "
            "muscleGroup = ?, isCustom = ? WHERE id = ?;",
            (
                merged.name,
                merged.category,
                merged.equipment,
                merged.muscle_group,
                int(merged.is_custom),
                exercise_id,
            ),
        )
        fresh = await self.find_by_id(exercise_id)
        if fresh is None:
            raise NotFoundError(f"exercise {exercise_id} not found")
        return fresh

    async def remove(self, exercise_id: str) -> None:
        await self.execute("DELETE FROM exercises WHERE id = ?;", (exercise_id,))

    async def count(self) -> int:
        row = await self.fetch_one("SELECT COUNT(*) AS n FROM exercises;")
        return int(row["n"]) if row is not None else 0

    async def delete_all(self) -> None:
        await self._delete_all("exercises")


class WorkoutRepository(BaseRepository):
    """Repository for workouts and their ordered exercise entries."""

    async def find_by_id(self, workout_id: str) -> Optional[WorkoutRecord]:
        row = await self.fetch_one("SELECT * FROM workouts WHERE id = ?;", (workout_id,))
        return _workout_from_row(row) if row is not None else None

    async def create(self, data: Union[WorkoutCreate, Mapping[str, Any]]) -> WorkoutRecord:
        entry = parse_input(WorkoutCreate, data)
        workout_id = entry.id or generate_id()
        started_at = entry.started_at if entry.started_at is not None else now_ms()
        await self.execute(
            "INSERT INTO workouts (id, userId, type, startedAt, notes) VALUES (?, ?, ?, ?, ?);",
            (workout_id, entry.user_id, entry.type, started_at, entry.notes),
        )
        fresh = await self.find_by_id(workout_id)
        if fresh is None:
            raise StorageError("workout missing after insert")
        return fresh

    async def complete(
        self, data: Union[WorkoutCompletion, Mapping[str, Any]]
    ) -> Optional[WorkoutRecord]:
        """Close a workout. Notes are only replaced when given."""
        entry = parse_input(WorkoutCompletion, data)
        ended_at = entry.ended_at if entry.ended_at is not None else now_ms()
        await self.execute(
            "UPDATE workouts SET endedAt = ?, notes = COALESCE(?, notes) WHERE id = ?;",
            (ended_at, entry.notes, entry.workout_id),
        )
        return await self.find_by_id(entry.workout_id)

    async def list_recent(self, limit: int = 10) -> List[WorkoutRecord]:
        rows = await self.fetch_all(
            "SELECT * FROM workouts ORDER BY startedAt DESC LIMIT ?;", (limit,)
        )
        return [_workout_from_row(r) for r in rows]

    async def delete(self, workout_id: str) -> None:
        await self.execute("DELETE FROM workouts WHERE id = ?;", (workout_id,))

    async def add_exercise_to_workout(
        self, workout_id: str, exercise_id: str, order_index: Optional[int] = None
    ) -> WorkoutExerciseRecord:
        if order_index is None:
            order_index = await self._next_index(
                "workout_exercises", "orderIndex", "workoutId", workout_id
            )
        entry_id = generate_id()
        await self.execute(
            "INSERT INTO workout_exercises (id, workoutId, exerciseId, orderIndex) "
            "VALUES (?, ?, ?, ?);",
            (entry_id, workout_id, exercise_id, order_index),
        )
        return WorkoutExerciseRecord(
            id=entry_id,
            workout_id=workout_id,
            exercise_id=exercise_id,
            order_index=order_index,
        )

    async def list_workout_exercises(self, workout_id: str) -> List[WorkoutExerciseRecord]:
        rows = await self.fetch_all(
            "SELECT * FROM workout_exercises WHERE workoutId = ? ORDER BY orderIndex ASC;",
            (workout_id,),
        )
        return [_workout_exercise_from_row(r) for r in rows]

    async def remove_workout_exercise(self, workout_exercise_id: str) -> None:
        """Delete one entry and close the gap in its workout's ordering."""
        async with self.db.transaction():
            row = await self.fetch_one(
                "SELECT workoutId FROM workout_exercises WHERE id = ?;",
                (workout_exercise_id,),
            )
            if row is None:
                return
            await self.execute(
                "DELETE FROM workout_exercises WHERE id = ?;", (workout_exercise_id,)
            )
            await self._renumber(
                "workout_exercises", "orderIndex", "workoutId", row["workoutId"]
            )


class SetRepository(BaseRepository):
    """Repository for sets table operations."""

    async def find_by_id(self, set_id: str) -> Optional[SetRecord]:
        row = await self.fetch_one("SELECT * FROM sets WHERE id = ?;", (set_id,))
        return _set_from_row(row) if row is not None else None

    async def list_for_workout_exercise(self, workout_exercise_id: str) -> List[SetRecord]:
        rows = await self.fetch_all(
            "SELECT * FROM sets WHERE workoutExerciseId = ? ORDER BY setIndex ASC;",
            (workout_exercise_id,),
        )
        return [_set_from_row(r) for r in rows]

    async def create(self, data: Union[SetCreate, Mapping[str, Any]]) -> SetRecord:
        entry = parse_input(SetCreate, data)
        set_index = entry.set_index
        if set_index is None:
            set_index = await self._next_index(
                "sets", "setIndex", "workoutExerciseId", entry.workout_exercise_id
            )
        set_id = generate_id()
        await self.execute(
            "INSERT INTO sets (id, workoutExerciseId, setIndex, weight, reps, rpe, restSeconds, notes) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?);",
            (
                set_id,
                entry.workout_exercise_id,
                set_index,
                entry.weight,
                entry.reps,
                entry.rpe,
                entry.rest_seconds,
                entry.notes,
            ),
        )
        fresh = await self.find_by_id(set_id)
        if fresh is None:
            raise StorageError("set missing after insert")
        return fresh

    async def update(
        self, set_id: str, patch: Union[SetPatch, Mapping[str, Any]]
    ) -> Optional[SetRecord]:
        changes = parse_input(SetPatch, patch).model_dump(exclude_unset=True)
        current = await self.find_by_id(set_id)
        if current is None:
            return None
        merged = current.model_copy(update=changes)
        await self.execute(
            "UPDATE sets SET setIndex = ?, weight = ?, reps = ?, rpe = ?, "
            "restSeconds = ?, notes = ? WHERE id = ?;",
            (
                merged.set_index,
                merged.weight,
                merged.reps,
                merged.rpe,
                merged.rest_seconds,
                merged.notes,
                set_id,
            ),
        )
        return await self.find_by_id(set_id)

    async def remove(self, set_id: str) -> None:
        """Delete a set and re-number its siblings to stay contiguous."""
        async with self.db.transaction():
            row = await self.fetch_one(
                "SELECT workoutExerciseId FROM sets WHERE id = ?;", (set_id,)
            )
            if row is None:
                return
            await self.execute("DELETE FROM sets WHERE id = ?;", (set_id,))
            await self._renumber(
                "sets", "setIndex", "workoutExerciseId", row["workoutExerciseId"]
            )

    async def remove_all_for_workout_exercise(self, workout_exercise_id: str) -> None:
        await self.execute(
            "DELETE FROM sets WHERE workoutExerciseId = ?;", (workout_exercise_id,)
        )
