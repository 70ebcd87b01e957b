"""
Workflow controller: the user-facing operations of the planner.

Top-level generations (reference sheet, visual plan) are guarded by a busy
flag in the session; a second request while one is in flight is refused.
Per-item work (shot images, portraits, refinements, edits) runs as
independent units: each item is marked `generating`, the blocking SDK call
is offloaded to a worker thread under a deadline, and the completion is
applied through the store only if no newer request for that item started.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Iterable

from storyplanner.core.exceptions import AppError, BackendError, InvalidImageFormatError, WorkflowBusyError
from storyplanner.core.gemini_factory import build_gemini_client
from storyplanner.core.profiles import SUPPORTED_ASPECT_RATIOS, OutputProfile
from storyplanner.core.request_context import log_context
from storyplanner.core.settings import settings
from storyplanner.models import Character, ItemStatus, ReferenceSheet, SessionState, UploadedFile, VisualItem
from storyplanner.services import image_director, plan_generator, reference_sheet, refiner
from storyplanner.services.content_extractor import FileListKind, validate_upload
from storyplanner.services.session_store import ItemKind, SessionStore
from storyplanner.services.vertex_gemini import GeminiClient, GeminiError

logger = logging.getLogger(__name__)

INPUT_FIELDS = frozenset(
    {
        "chapter_text",
        "context_text",
        "book_title",
        "book_author",
        "book_genre",
        "selected_profile",
        "image_aspect_ratio",
        "planning_tab",
    }
)

# Statuses that mean "no image yet, or the last attempt failed".
_NEEDS_GENERATION = (ItemStatus.PENDING, ItemStatus.ERROR, None)


class Workflow:
    def __init__(
        self,
        store: SessionStore,
        client_factory: Callable[[], GeminiClient] = build_gemini_client,
        item_timeout: float | None = None,
    ):
        self.store = store
        self._client_factory = client_factory
        self._client: GeminiClient | None = None
        self._item_timeout = item_timeout if item_timeout is not None else settings.item_timeout_seconds
        self._background: set[asyncio.Task] = set()
        self.last_error: str | None = None

    # -- plumbing -------------------------------------------------------------

    def _get_client(self) -> GeminiClient:
        if self._client is None:
            self._client = self._client_factory()
        return self._client

    async def _offload(self, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        return await asyncio.wait_for(asyncio.to_thread(func, *args, **kwargs), timeout=self._item_timeout)

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._on_background_done)
        return task

    def _on_background_done(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("background item task failed error=%s", exc, exc_info=exc)

    async def wait_for_background(self) -> None:
        """Wait until every fired batch task has settled."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def shutdown(self) -> None:
        await self.wait_for_background()
        await asyncio.to_thread(self.store.close)

    async def _complete_item(
        self,
        kind: ItemKind,
        key: str,
        token: int,
        call: Callable[[], dict[str, Any]],
    ) -> bool:
        """Run `call` for an item already marked generating and apply its patch."""
        with log_context(operation=f"{kind.value}_item", item_id=key):
            try:
                patch = await self._offload(call)
            except asyncio.TimeoutError:
                logger.warning("item timed out after %ss", self._item_timeout)
                self.store.finish_item(kind, key, token, status=ItemStatus.ERROR)
                return False
            except (AppError, GeminiError) as exc:
                logger.error("item failed error=%s", exc)
                self.store.finish_item(kind, key, token, status=ItemStatus.ERROR)
                return False
            except Exception:
                self.store.finish_item(kind, key, token, status=ItemStatus.ERROR)
                raise
            applied = self.store.finish_item(kind, key, token, **patch)
            if applied:
                logger.info("item completed status=%s", patch.get("status"))
            return applied

    async def _run_item(self, kind: ItemKind, key: str, call: Callable[[], dict[str, Any]]) -> bool:
        token = self.store.begin_item(kind, key)
        return await self._complete_item(kind, key, token, call)

    # -- top-level generations ------------------------------------------------

    async def analyze_reference_sheet(self) -> ReferenceSheet:
        """Build the Story Context sheet from context files or title research.

        Raises:
            WorkflowBusyError: An analysis is already running.
        """
        if not self.store.try_acquire_flag("is_analyzing_bible"):
            raise WorkflowBusyError("Story Context analysis is already running")
        self.last_error = None
        try:
            state = self.store.snapshot()
            client = self._get_client()
            try:
                sheet = await self._offload(
                    reference_sheet.build_reference_sheet,
                    client,
                    state.context_files,
                    state.metadata,
                )
            except asyncio.TimeoutError as exc:
                raise BackendError("Story Context analysis timed out", cause="timeout") from exc
            self.store.update(bible=sheet)
            return sheet
        except AppError as exc:
            self.last_error = exc.detail
            raise
        finally:
            self.store.update(is_analyzing_bible=False)

    async def generate_plan(self) -> SessionState:
        """Generate the visual plan for the current chapter and switch to planning.

        On failure the session is left as it was; the error message is kept
        in `last_error` and the exception propagates.

        Raises:
            WorkflowBusyError: A plan is already being generated.
        """
        if not self.store.try_acquire_flag("is_thinking"):
            raise WorkflowBusyError("A visual plan is already being generated")
        self.last_error = None
        try:
            state = self.store.snapshot()
            client = self._get_client()
            try:
                plan = await self._offload(
                    plan_generator.generate_plan,
                    client,
                    state.chapter_text,
                    state.files,
                    state.selected_profile,
                    notes=state.context_text,
                    bible=state.bible,
                    metadata=state.metadata,
                    retained_characters=state.characters,
                )
            except asyncio.TimeoutError as exc:
                raise BackendError("Visual plan generation timed out", cause="timeout") from exc
            self.store.apply_plan(plan)
        except AppError as exc:
            self.last_error = exc.detail
            raise
        finally:
            self.store.update(is_thinking=False)
        return self.store.snapshot()

    # -- shots ----------------------------------------------------------------

    async def regenerate_shot(self, shot_id: str) -> VisualItem:
        """Ask the refiner for a better description; success puts the shot back to pending."""
        state = self.store.snapshot()
        shot = self.store.get_shot(shot_id)
        client = self._get_client()

        def call() -> dict[str, Any]:
            refined = refiner.refine_description(
                client,
                shot.type,
                state.chapter_text,
                shot.description,
                title=state.book_title,
            )
            return {"type": refined.type, "description": refined.description, "status": ItemStatus.PENDING}

        await self._run_item(ItemKind.SHOT, shot_id, call)
        return self.store.get_shot(shot_id)

    def _shot_image_call(self, shot: VisualItem, state: SessionState) -> Callable[[], dict[str, Any]]:
        client = self._get_client()

        def call() -> dict[str, Any]:
            url = image_director.generate_shot_image(
                client,
                shot,
                state.selected_profile,
                state.mood,
                state.characters,
                state.image_aspect_ratio,
            )
            return {"image_url": url, "status": ItemStatus.DONE}

        return call

    async def generate_shot_image(self, shot_id: str) -> VisualItem:
        state = self.store.snapshot()
        shot = self.store.get_shot(shot_id)
        if state.mood is None:
            logger.warning("shot image skipped, no plan mood shot_id=%s", shot_id)
            return shot
        await self._run_item(ItemKind.SHOT, shot_id, self._shot_image_call(shot, state))
        return self.store.get_shot(shot_id)

    def generate_all_images(self) -> list[str]:
        """Fire one independent image request per shot without a finished image.

        Returns the ids of the shots that were started. Each shot settles on
        its own; a failure or timeout on one never affects its siblings.
        """
        state = self.store.snapshot()
        if state.mood is None:
            return []
        started: list[str] = []
        for shot in state.visuals:
            if shot.status not in _NEEDS_GENERATION:
                continue
            token = self.store.begin_item(ItemKind.SHOT, shot.id)
            self._spawn(self._complete_item(ItemKind.SHOT, shot.id, token, self._shot_image_call(shot, state)))
            started.append(shot.id)
        logger.info("batch image generation started shots=%d", len(started))
        return started

    async def edit_shot_image(self, shot_id: str, instruction: str) -> VisualItem:
        """Edit the shot's current image with a free-text instruction.

        Raises:
            InvalidImageFormatError: The shot has no usable image; nothing is sent.
        """
        shot = self.store.get_shot(shot_id)
        if not shot.image_url:
            raise InvalidImageFormatError()
        image_director.parse_data_url(shot.image_url)
        client = self._get_client()

        def call() -> dict[str, Any]:
            url = image_director.edit_image(client, shot.image_url, instruction)
            return {"image_url": url, "status": ItemStatus.DONE}

        await self._run_item(ItemKind.SHOT, shot_id, call)
        return self.store.get_shot(shot_id)

    def update_shot_description(self, shot_id: str, description: str) -> VisualItem:
        return self.store.update_shot(shot_id, description=description)

    def update_shot_type(self, shot_id: str, shot_type: str) -> VisualItem:
        if not shot_type.strip():
            raise ValueError("shot type must not be empty")
        return self.store.update_shot(shot_id, type=shot_type)

    def delete_shot(self, shot_id: str) -> None:
        self.store.remove_shot(shot_id)

    # -- characters -----------------------------------------------------------

    def _portrait_call(self, character: Character, profile: OutputProfile) -> Callable[[], dict[str, Any]]:
        client = self._get_client()

        def call() -> dict[str, Any]:
            url = image_director.generate_character_portrait(client, character, profile)
            return {"image_url": url, "status": ItemStatus.DONE}

        return call

    async def generate_portrait(self, name: str) -> Character:
        state = self.store.snapshot()
        character = self.store.get_character(name)
        await self._run_item(ItemKind.CHARACTER, character.name, self._portrait_call(character, state.selected_profile))
        return self.store.get_character(name)

    def generate_all_portraits(self) -> list[str]:
        state = self.store.snapshot()
        started: list[str] = []
        for character in state.characters:
            if character.status not in _NEEDS_GENERATION:
                continue
            token = self.store.begin_item(ItemKind.CHARACTER, character.name)
            call = self._portrait_call(character, state.selected_profile)
            self._spawn(self._complete_item(ItemKind.CHARACTER, character.name, token, call))
            started.append(character.name)
        logger.info("batch portrait generation started characters=%d", len(started))
        return started

    # -- inputs and navigation ------------------------------------------------

    def add_files(self, kind: FileListKind, files: Iterable[UploadedFile]) -> list[UploadedFile]:
        files = list(files)
        for file in files:
            validate_upload(file, kind)
        return self.store.add_files(kind, files)

    def remove_file(self, kind: FileListKind, file_id: str) -> None:
        self.store.remove_file(kind, file_id)

    def update_inputs(self, **fields: Any) -> SessionState:
        unknown = set(fields) - INPUT_FIELDS
        if unknown:
            raise ValueError(f"not editable: {', '.join(sorted(unknown))}")
        if "image_aspect_ratio" in fields and fields["image_aspect_ratio"] not in SUPPORTED_ASPECT_RATIOS:
            raise ValueError(f"unsupported aspect ratio: {fields['image_aspect_ratio']}")
        if "selected_profile" in fields:
            fields["selected_profile"] = OutputProfile(fields["selected_profile"])
        if "planning_tab" in fields and fields["planning_tab"] not in ("storyboard", "characters"):
            raise ValueError(f"unknown planning tab: {fields['planning_tab']}")
        return self.store.update(**fields)

    def start_new_project(self) -> SessionState:
        self.last_error = None
        return self.store.reset_project()

    def back_to_input(self) -> SessionState:
        return self.store.update(step="input")
