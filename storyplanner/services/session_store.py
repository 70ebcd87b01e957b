"""
Session state store with keyed updates and JSON persistence.

Completions from independent backend calls land here in any order. Every
mutation is a keyed replace against the latest state ("replace the shot with
this id"), never a write-back of a stale snapshot. Per-item generation
counters decide whether a completion is still wanted: `begin_item` hands out
a token, and `finish_item` applies its patch only if no newer request for the
same item started in between.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from enum import Enum
from pathlib import Path
from typing import Any, Iterable

from pydantic import ValidationError

from storyplanner.core.exceptions import EntityNotFoundError
from storyplanner.core.metrics import record_item_transition, record_stale_completion
from storyplanner.models import (
    Character,
    ItemStatus,
    Plan,
    SessionState,
    UploadedFile,
    VisualItem,
    character_key,
)
from storyplanner.services.cast import reconcile
from storyplanner.services.content_extractor import FileListKind

logger = logging.getLogger(__name__)

STORAGE_KEY = "storyboard_planner_state"


class ItemKind(str, Enum):
    SHOT = "shot"
    CHARACTER = "character"


def dump_state(state: SessionState) -> str:
    """Serialize everything except the transient busy flags."""
    blob = state.model_dump(mode="json", exclude=set(SessionState.TRANSIENT_FIELDS))
    return json.dumps({STORAGE_KEY: blob})


def restore_state(raw: str) -> SessionState:
    """Inverse of `dump_state`; busy flags always come back False.

    Raises:
        ValueError: If `raw` is not a stored session blob.
    """
    try:
        blob = json.loads(raw)[STORAGE_KEY]
        state = SessionState.model_validate(blob)
    except (json.JSONDecodeError, KeyError, TypeError, ValidationError) as exc:
        raise ValueError(f"unreadable session state: {exc}") from exc
    return state.model_copy(update={field: False for field in SessionState.TRANSIENT_FIELDS})


def load_state(path: Path | None) -> SessionState:
    if path is None or not path.exists():
        return SessionState()
    try:
        return restore_state(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        logger.warning("session state unreadable, starting empty path=%s error=%s", path, exc)
        return SessionState()


def save_state(path: Path, state: SessionState) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    tmp_path.write_text(dump_state(state), encoding="utf-8")
    os.replace(tmp_path, path)


class StateWriter:
    """Writes session state to disk on a background thread.

    Only the newest submitted state is kept: a burst of commits (one per shot
    when a batch starts) costs one or two writes, and serialization of large
    image payloads never runs on the caller's thread.
    """

    def __init__(self, path: Path):
        self._path = path
        self._cond = threading.Condition()
        self._pending: SessionState | None = None
        self._writing = False
        self._closed = False
        self._thread = threading.Thread(target=self._run, name="session-state-writer", daemon=True)
        self._thread.start()

    def submit(self, state: SessionState) -> None:
        with self._cond:
            if self._closed:
                raise RuntimeError("state writer is closed")
            self._pending = state
            self._cond.notify_all()

    def _run(self) -> None:
        while True:
            with self._cond:
                self._cond.wait_for(lambda: self._pending is not None or self._closed)
                if self._pending is None:
                    return
                state, self._pending = self._pending, None
                self._writing = True
            try:
                save_state(self._path, state)
            except OSError as exc:
                logger.error("session state save failed path=%s error=%s", self._path, exc)
            finally:
                with self._cond:
                    self._writing = False
                    self._cond.notify_all()

    def flush(self, timeout: float | None = None) -> bool:
        """Block until everything submitted so far is on disk."""
        with self._cond:
            return self._cond.wait_for(lambda: self._pending is None and not self._writing, timeout)

    def close(self) -> None:
        """Write what is pending, then stop the thread."""
        with self._cond:
            self._closed = True
            self._cond.notify_all()
        self._thread.join()


class SessionStore:
    def __init__(self, path: str | Path | None = None):
        path = Path(path) if path else None
        self._lock = threading.Lock()
        self._state = load_state(path)
        self._generations: dict[tuple[ItemKind, str], int] = {}
        self._writer = StateWriter(path) if path is not None else None

    def flush(self) -> None:
        if self._writer is not None:
            self._writer.flush()

    def close(self) -> None:
        if self._writer is not None:
            self._writer.close()

    # -- reads ---------------------------------------------------------------

    def snapshot(self) -> SessionState:
        with self._lock:
            return self._state.model_copy(deep=True)

    def get_shot(self, shot_id: str) -> VisualItem:
        with self._lock:
            return self._find_shot(shot_id).model_copy()

    def get_character(self, name: str) -> Character:
        with self._lock:
            return self._find_character(name).model_copy()

    # -- internal helpers (lock held) -----------------------------------------

    def _commit(self, **fields: Any) -> SessionState:
        self._state = self._state.model_copy(update=fields)
        if self._writer is not None:
            self._writer.submit(self._state)
        return self._state

    def _find_shot(self, shot_id: str) -> VisualItem:
        for shot in self._state.visuals:
            if shot.id == shot_id:
                return shot
        raise EntityNotFoundError("Shot", shot_id)

    def _find_character(self, name: str) -> Character:
        key = character_key(name)
        for character in self._state.characters:
            if character.key == key:
                return character
        raise EntityNotFoundError("Character", name)

    def _patch_shot(self, shot_id: str, patch: dict[str, Any]) -> VisualItem:
        current = self._find_shot(shot_id)
        updated = current.model_copy(update=patch)
        self._commit(visuals=[updated if shot.id == shot_id else shot for shot in self._state.visuals])
        return updated

    def _patch_character(self, name: str, patch: dict[str, Any]) -> Character:
        current = self._find_character(name)
        updated = current.model_copy(update=patch)
        key = current.key
        self._commit(
            characters=[updated if character.key == key else character for character in self._state.characters]
        )
        return updated

    def _patch_item(self, kind: ItemKind, key: str, patch: dict[str, Any]) -> None:
        if kind is ItemKind.SHOT:
            self._patch_shot(key, patch)
        else:
            self._patch_character(key, patch)

    def _item_key(self, kind: ItemKind, key: str) -> tuple[ItemKind, str]:
        return (kind, key if kind is ItemKind.SHOT else character_key(key))

    # -- keyed updates --------------------------------------------------------

    def update(self, **fields: Any) -> SessionState:
        with self._lock:
            return self._commit(**fields).model_copy(deep=True)

    def try_acquire_flag(self, flag: str) -> bool:
        """Set a transient busy flag unless it is already set."""
        if flag not in SessionState.TRANSIENT_FIELDS:
            raise ValueError(f"not a busy flag: {flag}")
        with self._lock:
            if getattr(self._state, flag):
                return False
            self._commit(**{flag: True})
            return True

    def update_shot(self, shot_id: str, **patch: Any) -> VisualItem:
        with self._lock:
            return self._patch_shot(shot_id, patch)

    def update_character(self, name: str, **patch: Any) -> Character:
        with self._lock:
            return self._patch_character(name, patch)

    def remove_shot(self, shot_id: str) -> None:
        with self._lock:
            self._find_shot(shot_id)
            self._generations.pop((ItemKind.SHOT, shot_id), None)
            self._commit(visuals=[shot for shot in self._state.visuals if shot.id != shot_id])

    def add_files(self, kind: FileListKind, files: Iterable[UploadedFile]) -> list[UploadedFile]:
        field = "files" if kind == "chapter" else "context_files"
        with self._lock:
            combined = [*getattr(self._state, field), *files]
            self._commit(**{field: combined})
            return list(combined)

    def remove_file(self, kind: FileListKind, file_id: str) -> None:
        field = "files" if kind == "chapter" else "context_files"
        with self._lock:
            current = getattr(self._state, field)
            if not any(file.id == file_id for file in current):
                raise EntityNotFoundError("File", file_id)
            self._commit(**{field: [file for file in current if file.id != file_id]})

    def apply_plan(self, plan: Plan) -> SessionState:
        """Install a freshly generated plan and switch to the planning step.

        The cast in `plan` is expected to be reconciled already; it is merged
        once more against the latest cast so portraits finished while the
        plan was in flight are not lost.
        """
        with self._lock:
            for shot in self._state.visuals:
                self._generations.pop((ItemKind.SHOT, shot.id), None)
            return self._commit(
                step="planning",
                mood=plan.mood,
                characters=reconcile(self._state.characters, plan.characters),
                emotion_arc=list(plan.emotion_arc),
                visuals=list(plan.shots),
            ).model_copy(deep=True)

    def reset_project(self) -> SessionState:
        """Start over: drop plan, cast, reference sheet, inputs and files."""
        with self._lock:
            # Invalidate every in-flight completion.
            for item_key in self._generations:
                self._generations[item_key] += 1
            self._state = SessionState()
            return self._commit().model_copy(deep=True)

    # -- per-item lifecycle ---------------------------------------------------

    def begin_item(self, kind: ItemKind, key: str) -> int:
        """Mark an item `generating` and return the token its completion must present."""
        with self._lock:
            item_key = self._item_key(kind, key)
            self._patch_item(kind, key, {"status": ItemStatus.GENERATING})
            token = self._generations.get(item_key, 0) + 1
            self._generations[item_key] = token
        record_item_transition(kind.value, ItemStatus.GENERATING.value)
        return token

    def finish_item(self, kind: ItemKind, key: str, token: int, **patch: Any) -> bool:
        """Apply a completion if `token` is still current; report whether it was applied."""
        with self._lock:
            item_key = self._item_key(kind, key)
            if self._generations.get(item_key) != token:
                logger.info("discarding stale completion kind=%s key=%s token=%s", kind.value, key, token)
                record_stale_completion(kind.value)
                return False
            try:
                self._patch_item(kind, key, patch)
            except EntityNotFoundError:
                logger.info("discarding completion for removed item kind=%s key=%s", kind.value, key)
                return False
        status = patch.get("status")
        if status is not None:
            record_item_transition(kind.value, ItemStatus(status).value)
        return True
