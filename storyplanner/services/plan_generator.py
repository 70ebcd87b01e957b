"""
Visual Selector agent.

Turns one chapter (pasted text plus attachments) into a storyboard plan:
chapter mood, cast, emotion arc and an ordered shot list. Grounding comes
from the reference sheet, inline notes, web research, or nothing, in that
order of preference.
"""

from __future__ import annotations

import logging
import uuid
from typing import Sequence

from pydantic import ValidationError

from storyplanner.core.exceptions import (
    BackendError,
    EmptyPlanError,
    MalformedResponseError,
    OversizedInputError,
)
from storyplanner.core.metrics import record_generation_mode
from storyplanner.core.profiles import OutputProfile
from storyplanner.core.request_context import log_context
from storyplanner.models import (
    Character,
    ItemStatus,
    Plan,
    PlannedShot,
    PlanPayload,
    ProjectMetadata,
    ReferenceSheet,
    UploadedFile,
    VisualItem,
)
from storyplanner.prompts.loader import render_prompt
from storyplanner.services.cast import characters_from_sheet, reconcile
from storyplanner.services.content_extractor import extract_content_from_files
from storyplanner.services.json_parser import parse_json_object
from storyplanner.services.pacing import ShotBounds, clamp_shots, compute_shot_bounds, count_words
from storyplanner.services.schemas import VISUAL_PLAN_SCHEMA
from storyplanner.services.strategy import (
    GenerationRequest,
    NotesGrounded,
    SearchGrounded,
    SheetGrounded,
    model_for_tier,
    select_plan_strategy,
)
from storyplanner.services.vertex_gemini import (
    GeminiClient,
    GeminiEmptyResponseError,
    GeminiError,
    GeminiInputTooLargeError,
)

logger = logging.getLogger(__name__)

PAGE_LIMIT_PHRASE = "exceeds the supported page limit"
ATTACHMENT_HEADER = "\n\n--- ATTACHED FILE CONTENT ---\n"


def combine_chapter_content(chapter_text: str, chapter_files: Sequence[UploadedFile]) -> str:
    """Pasted text followed by the extracted text of every attachment."""
    content = chapter_text or ""
    if chapter_files:
        content += ATTACHMENT_HEADER + extract_content_from_files(chapter_files)
    return content


def build_plan_parts(request: GenerationRequest, chapter_content: str) -> list[str]:
    """Ordered prompt parts: grounding block (if any), then the chapter."""
    parts: list[str] = []
    if isinstance(request, SheetGrounded):
        parts.append(render_prompt("prompt_visual_plan_bible", bible=request.sheet))
    elif isinstance(request, NotesGrounded):
        parts.append(render_prompt("prompt_visual_plan_notes", notes=request.notes))
    parts.append(render_prompt("prompt_visual_plan_chapter_header"))
    parts.append(chapter_content)
    return parts


def build_plan_instruction(
    request: GenerationRequest,
    bounds: ShotBounds,
    word_count: int,
    profile: OutputProfile,
) -> str:
    title = request.title if isinstance(request, SearchGrounded) else ""
    author = request.author if isinstance(request, SearchGrounded) else ""
    return render_prompt(
        "prompt_visual_plan_system",
        mode=request.mode.value,
        min_shots=bounds.min_shots,
        max_shots=bounds.max_shots,
        word_count=word_count,
        title=title,
        author=author,
        profile=OutputProfile(profile).value,
    )


def _is_size_limit_error(exc: Exception) -> bool:
    return isinstance(exc, GeminiInputTooLargeError) or PAGE_LIMIT_PHRASE in str(exc).lower()


def materialize_shots(planned: Sequence[PlannedShot]) -> list[VisualItem]:
    """Give each planned shot a client-side id and a fresh `pending` lifecycle."""
    return [
        VisualItem(
            id=str(uuid.uuid4()),
            type=shot.type.value,
            description=shot.description,
            reuse=bool(shot.reuse),
            status=ItemStatus.PENDING,
        )
        for shot in planned
    ]


def generate_plan(
    client: GeminiClient,
    chapter_text: str,
    chapter_files: Sequence[UploadedFile],
    profile: OutputProfile,
    notes: str | None = None,
    bible: ReferenceSheet | None = None,
    metadata: ProjectMetadata | None = None,
    retained_characters: Sequence[Character] | None = None,
) -> Plan:
    """Request and validate a storyboard plan for one chapter.

    Raises:
        ContentExtractionError: An attachment could not be read.
        OversizedInputError: The backend rejected the input as too large.
        EmptyPlanError: The backend returned no parseable payload.
        MalformedResponseError: The payload did not match the plan shape.
        BackendError: Any other backend failure.
    """
    chapter_content = combine_chapter_content(chapter_text, chapter_files)
    word_count = count_words(chapter_content)
    bounds = compute_shot_bounds(word_count)
    request = select_plan_strategy(bible, notes, metadata)
    model_name = model_for_tier(client, request.tier)

    with log_context(operation="visual_plan"):
        record_generation_mode("visual_selector", request.mode.value)
        logger.info(
            "plan requested mode=%s model=%s words=%d shots=%d-%d",
            request.mode.value,
            model_name,
            word_count,
            bounds.min_shots,
            bounds.max_shots,
        )
        try:
            text = client.generate_text(
                contents=build_plan_parts(request, chapter_content),
                model=model_name,
                system_instruction=build_plan_instruction(request, bounds, word_count, profile),
                response_schema=VISUAL_PLAN_SCHEMA,
                web_search=request.web_search,
            )
        except GeminiEmptyResponseError as exc:
            raise EmptyPlanError() from exc
        except GeminiError as exc:
            if _is_size_limit_error(exc):
                logger.warning("plan input rejected as oversized error=%s", exc)
                raise OversizedInputError(str(exc)) from exc
            logger.error("plan generation failed error=%s", exc)
            raise BackendError(f"Visual plan generation failed: {exc}", cause=str(exc)) from exc

        payload = parse_json_object(text)
        if payload is None:
            raise EmptyPlanError()
        try:
            parsed = PlanPayload.model_validate(payload)
        except ValidationError as exc:
            logger.warning("plan payload rejected errors=%s", exc.errors(include_url=False)[:5])
            raise MalformedResponseError(
                f"Visual plan response did not match the expected shape ({exc.error_count()} invalid fields)",
                cause=str(exc),
            ) from exc

        shots = clamp_shots(materialize_shots(parsed.visuals), bounds)
        characters = reconcile(retained_characters or [], characters_from_sheet(parsed.characters))
        logger.info(
            "plan ready shots=%d characters=%d beats=%d",
            len(shots),
            len(characters),
            len(parsed.emotion_arc),
        )
        return Plan(
            mood=parsed.chapter_mood,
            characters=characters,
            emotion_arc=parsed.emotion_arc,
            shots=shots,
        )
