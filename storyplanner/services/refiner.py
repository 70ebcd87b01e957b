"""Visual Refiner: rewrite one shot description, optionally lore-checked by search."""

from __future__ import annotations

import json
import logging

from pydantic import ValidationError

from storyplanner.core.exceptions import BackendError, MalformedResponseError
from storyplanner.models import RefinedShot
from storyplanner.prompts.loader import render_prompt
from storyplanner.services.json_parser import strip_code_fences
from storyplanner.services.schemas import REFINED_SHOT_SCHEMA
from storyplanner.services.vertex_gemini import GeminiClient, GeminiError

logger = logging.getLogger(__name__)

EXCERPT_CHARS = 8000
MAX_OUTPUT_TOKENS = 2000


def refine_description(
    client: GeminiClient,
    current_type: str,
    chapter_text: str,
    current_description: str,
    title: str | None = None,
) -> RefinedShot:
    """Return an improved `{type, description}` for a single shot.

    Raises:
        BackendError: The backend call failed.
        MalformedResponseError: The answer was not the two-field JSON object.
    """
    title = (title or "").strip()
    use_search = bool(title)
    model_name = client.search_model if use_search else client.text_model

    try:
        text = client.generate_text(
            contents=render_prompt(
                "prompt_refine_user",
                current_type=current_type,
                current_description=current_description,
                excerpt=(chapter_text or "")[:EXCERPT_CHARS],
            ),
            model=model_name,
            system_instruction=render_prompt("prompt_refine_system", title=title),
            response_schema=REFINED_SHOT_SCHEMA,
            web_search=use_search,
            max_output_tokens=MAX_OUTPUT_TOKENS,
        )
    except GeminiError as exc:
        logger.error("visual regeneration failed search=%s error=%s", use_search, exc)
        raise BackendError(f"Visual regeneration failed: {exc}", cause=str(exc)) from exc

    # Some models wrap JSON in fences even in JSON mode.
    cleaned = strip_code_fences(text or "{}")
    try:
        return RefinedShot.model_validate(json.loads(cleaned))
    except (json.JSONDecodeError, ValidationError) as exc:
        raise MalformedResponseError("Visual regeneration returned an unusable payload", cause=str(exc)) from exc
