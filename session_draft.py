"""In-progress workout state kept outside the relational store.

Every mutator returns a new :class:`SessionDraft` snapshot; snapshots are
never modified after creation. The store saves each accepted snapshot to a
small YAML cache so an active workout survives a restart.
"""

import logging
import math
from typing import Any, Callable, Dict, Mapping, Optional, Tuple, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field

from config import YamlConfig
from models import parse_input
from tools import generate_id, now_ms

logger = logging.getLogger(__name__)

DEFAULT_CACHE_PATH = "workout_draft.yaml"


class DraftSetValues(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    weight: Optional[float] = None
    reps: Optional[int] = None
    rpe: Optional[float] = None
    rest_seconds: Optional[int] = None
    notes: Optional[str] = None


class DraftSet(DraftSetValues):
    model_config = ConfigDict(extra="ignore", frozen=True)

    id: str
    exercise_id: str
    set_index: Optional[int] = None


class SessionDraft(BaseModel):
    model_config = ConfigDict(frozen=True)

    workout_id: Optional[str] = None
    started_at: Optional[int] = None
    active_exercise_id: Optional[str] = None
    rest_timer_ends_at: Optional[int] = None
    sets_by_exercise: Dict[str, Tuple[DraftSet, ...]] = Field(default_factory=dict)

    @property
    def is_active(self) -> bool:
        return self.started_at is not None

    def sets_for(self, exercise_id: str) -> Tuple[DraftSet, ...]:
        return self.sets_by_exercise.get(exercise_id, ())

    def with_sets(self, exercise_id: str, sets: Tuple[DraftSet, ...]) -> "SessionDraft":
        mapping = dict(self.sets_by_exercise)
        mapping[exercise_id] = sets
        return self.model_copy(update={"sets_by_exercise": mapping})


def _reindexed(sets) -> Tuple[DraftSet, ...]:
    return tuple(
        s if s.set_index == index else s.model_copy(update={"set_index": index})
        for index, s in enumerate(sets)
    )


class SessionDraftStore:
    """Holds the current :class:`SessionDraft` and keeps its cache in sync."""

    def __init__(
        self,
        cache_path: Optional[str] = DEFAULT_CACHE_PATH,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._cache = YamlConfig(cache_path) if cache_path else None
        self._clock = clock
        self.state = self._hydrate()

    def _hydrate(self) -> SessionDraft:
        if self._cache is None:
            return SessionDraft()
        try:
            data = self._cache.load()
            return SessionDraft.model_validate(data) if data else SessionDraft()
        except (OSError, yaml.YAMLError, ValueError) as exc:
            logger.warning("Ignoring unreadable draft cache %s: %s", self._cache.path, exc)
            return SessionDraft()

    def _accept(self, draft: SessionDraft) -> SessionDraft:
        self.state = draft
        if self._cache is not None:
            try:
                self._cache.save(draft.model_dump(mode="json"))
            except (OSError, yaml.YAMLError) as exc:
                logger.warning("Could not write draft cache %s: %s", self._cache.path, exc)
        return draft

    def start(self, workout_id: Optional[str] = None) -> SessionDraft:
        """Begin a new workout, discarding any uncommitted draft."""
        if self.state.is_active:
            logger.info("Discarding uncommitted draft %s", self.state.workout_id)
        draft = SessionDraft(
            workout_id=workout_id or generate_id(),
            started_at=self._clock(),
        )
        logger.info("Started workout draft %s", draft.workout_id)
        return self._accept(draft)

    def set_active_exercise(self, exercise_id: Optional[str]) -> SessionDraft:
        return self._accept(self.state.model_copy(update={"active_exercise_id": exercise_id}))

    def add_exercise(self, exercise_id: str) -> SessionDraft:
        if exercise_id in self.state.sets_by_exercise:
            return self.state
        return self._accept(self.state.with_sets(exercise_id, ()))

    def add_set(
        self,
        exercise_id: str,
        payload: Union[DraftSetValues, Mapping[str, Any], None] = None,
    ) -> SessionDraft:
        values = parse_input(DraftSetValues, payload)
        sets = self.state.sets_for(exercise_id)
        new_set = DraftSet(
            id=generate_id(),
            exercise_id=exercise_id,
            set_index=len(sets),
            **values.model_dump(),
        )
        return self._accept(self.state.with_sets(exercise_id, sets + (new_set,)))

    def update_set(
        self,
        exercise_id: str,
        set_id: str,
        patch: Union[DraftSetValues, Mapping[str, Any]],
    ) -> SessionDraft:
        changes = parse_input(DraftSetValues, patch).model_dump(exclude_unset=True)
        sets = self.state.sets_by_exercise.get(exercise_id)
        if sets is None or not any(s.id == set_id for s in sets):
            return self.state
        updated = tuple(s.model_copy(update=changes) if s.id == set_id else s for s in sets)
        return self._accept(self.state.with_sets(exercise_id, updated))

    def remove_set(self, exercise_id: str, set_id: str) -> SessionDraft:
        sets = self.state.sets_by_exercise.get(exercise_id)
        if sets is None:
            return self.state
        remaining = _reindexed(s for s in sets if s.id != set_id)
        return self._accept(self.state.with_sets(exercise_id, remaining))

    def clear_exercise(self, exercise_id: str) -> SessionDraft:
        mapping = dict(self.state.sets_by_exercise)
        mapping.pop(exercise_id, None)
        update: Dict[str, Any] = {"sets_by_exercise": mapping}
        if self.state.active_exercise_id == exercise_id:
            update["active_exercise_id"] = None
        return self._accept(self.state.model_copy(update=update))

    def start_rest_timer(self, seconds: float) -> SessionDraft:
        ends_at = self._clock() + int(seconds * 1000)
        return self._accept(self.state.model_copy(update={"rest_timer_ends_at": ends_at}))

    def clear_rest_timer(self) -> SessionDraft:
        return self._accept(self.state.model_copy(update={"rest_timer_ends_at": None}))

    def rest_remaining(self, now: Optional[int] = None) -> int:
        """Whole seconds left on the rest timer, rounded up."""
        if self.state.rest_timer_ends_at is None:
            return 0
        remaining = self.state.rest_timer_ends_at - (now if now is not None else self._clock())
        return math.ceil(remaining / 1000) if remaining > 0 else 0

    def sets_for(self, exercise_id: str) -> Tuple[DraftSet, ...]:
        return self.state.sets_for(exercise_id)

    def clear(self) -> SessionDraft:
        """Return to Idle and drop the cached snapshot."""
        self._accept(SessionDraft())
        if self._cache is not None:
            try:
                self._cache.clear()
            except OSError as exc:
                logger.warning("Could not remove draft cache %s: %s", self._cache.path, exc)
        logger.info("Cleared workout draft")
        return self.state
