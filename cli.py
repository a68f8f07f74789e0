import argparse
import asyncio
import datetime
import logging
import shutil
import sys
from typing import Optional

from config import load_settings
from db import ExerciseRepository, WorkoutRepository
from errors import FitTrackerError
from migrate import init_database, migrate
from seed_sample_data import reset_exercise_seeds, run_seeds
from session_draft import SessionDraftStore
from settings_schema import SettingsSchema
from workout_service import finish_workout

logger = logging.getLogger(__name__)


def _fmt_ms(value: Optional[int]) -> str:
    if value is None:
        return "-"
    return datetime.datetime.fromtimestamp(value / 1000).isoformat(timespec="seconds")


def backup_db(db_path: str, backup_path: str) -> None:
    shutil.copy(db_path, backup_path)


def restore_db(backup_path: str, db_path: str) -> None:
    shutil.copy(backup_path, db_path)


async def seed_db(db_path: str, reset: bool = False) -> int:
    db = await init_database(db_path, seed=False)
    try:
        if reset:
            return await reset_exercise_seeds(db)
        return await run_seeds(db)
    finally:
        await db.close()


async def list_exercises(db_path: str, query: str = "") -> None:
    db = await init_database(db_path)
    try:
        for ex in await ExerciseRepository(db).search(query):
            custom = " (custom)" if ex.is_custom else ""
            print(f"{ex.id}  {ex.name}{custom}  [{ex.category or '-'} / {ex.muscle_group or '-'}]")
    finally:
        await db.close()


async def recent_workouts(db_path: str, limit: int) -> None:
    db = await init_database(db_path)
    try:
        for w in await WorkoutRepository(db).list_recent(limit):
            print(f"{w.id}  {_fmt_ms(w.started_at)} -> {_fmt_ms(w.ended_at)}  {w.type or '-'}  {w.notes or ''}")
    finally:
        await db.close()


def show_draft(cache_path: str) -> None:
    draft = SessionDraftStore(cache_path).state
    if not draft.is_active:
        print("No active workout")
        return
    print(f"Workout {draft.workout_id} started {_fmt_ms(draft.started_at)}")
    for exercise_id, sets in draft.sets_by_exercise.items():
        print(f"  {exercise_id}: {len(sets)} set(s)")
        for s in sets:
            print(f"    #{s.set_index} weight={s.weight} reps={s.reps} rpe={s.rpe}")


async def commit_draft(settings: SettingsSchema) -> None:
    store = SessionDraftStore(settings.draft_cache_path)
    db = await init_database(settings.db_path, seed=settings.seed_catalog)
    try:
        result = await finish_workout(
            store,
            db,
            user_id=settings.default_user_id,
            workout_type=settings.default_workout_type,
        )
    finally:
        await db.close()
    print(f"Saved workout {result.workout_id}")


def main(argv: Optional[list] = None) -> int:
    parser = argparse.ArgumentParser(description="Workout store utilities")
    parser.add_argument("--config", default="settings.yaml")
    parser.add_argument("--db", default=None)
    sub = parser.add_subparsers(dest="cmd", required=True)

    sub.add_parser("migrate")
    sub.add_parser("seed")
    sub.add_parser("reseed")

    exs = sub.add_parser("exercises")
    exs.add_argument("--query", default="")

    rec = sub.add_parser("recent")
    rec.add_argument("--limit", type=int, default=None)

    sub.add_parser("draft")
    sub.add_parser("discard")
    sub.add_parser("commit")

    bkp = sub.add_parser("backup")
    bkp.add_argument("--out", default="backup.db")

    rst = sub.add_parser("restore")
    rst.add_argument("--in", dest="src", default="backup.db")

    args = parser.parse_args(argv)

    settings = load_settings(args.config)
    if args.db:
        settings = settings.model_copy(update={"db_path": args.db})
    logging.basicConfig(level=settings.log_level)

    try:
        if args.cmd == "migrate":
            print(f"Schema version {asyncio.run(migrate(settings.db_path))}")
        elif args.cmd in ("seed", "reseed"):
            count = asyncio.run(seed_db(settings.db_path, reset=args.cmd == "reseed"))
            print(f"Seeded {count} exercises" if count else "Database already contains exercises")
        elif args.cmd == "exercises":
            asyncio.run(list_exercises(settings.db_path, args.query))
        elif args.cmd == "recent":
            limit = args.limit if args.limit is not None else settings.recent_limit
            asyncio.run(recent_workouts(settings.db_path, limit))
        elif args.cmd == "draft":
            show_draft(settings.draft_cache_path)
        elif args.cmd == "discard":
            SessionDraftStore(settings.draft_cache_path).clear()
            print("Draft discarded")
        elif args.cmd == "commit":
            asyncio.run(commit_draft(settings))
        elif args.cmd == "backup":
            backup_db(settings.db_path, args.out)
        elif args.cmd == "restore":
            restore_db(args.src, settings.db_path)
    except FitTrackerError as exc:
        logger.exception("Command %s failed", args.cmd)
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
