"""
Context Extractor agent.

Builds the reusable "Story Context" sheet for a whole work, either from
uploaded background documents or, when only a title is known, from web
research through the search-grounded model tier.
"""

from __future__ import annotations

import logging
from typing import Sequence

from pydantic import ValidationError

from storyplanner.core.exceptions import (
    EmptyReferenceSheetError,
    EmptySourceError,
    ReferenceSheetGenerationError,
)
from storyplanner.core.metrics import record_generation_mode
from storyplanner.core.request_context import log_context
from storyplanner.models import ProjectMetadata, ReferenceSheet, UploadedFile
from storyplanner.prompts.loader import render_prompt
from storyplanner.services.content_extractor import extract_content_from_files
from storyplanner.services.json_parser import parse_json_object
from storyplanner.services.schemas import REFERENCE_SHEET_SCHEMA
from storyplanner.services.strategy import FileSource, model_for_tier, select_reference_source
from storyplanner.services.vertex_gemini import GeminiClient, GeminiEmptyResponseError, GeminiError

logger = logging.getLogger(__name__)

MAX_SOURCE_CHARS = 1_000_000


def build_reference_sheet(
    client: GeminiClient,
    context_files: Sequence[UploadedFile],
    metadata: ProjectMetadata | None = None,
) -> ReferenceSheet:
    """Produce a ReferenceSheet from background files or title research.

    Raises:
        NoSourceError: Neither files nor a title were supplied.
        EmptySourceError: Files were supplied but contain no readable text.
        ContentExtractionError: A PDF could not be decoded.
        ReferenceSheetGenerationError: The backend failed or returned an
            unusable payload.
    """
    metadata = metadata or ProjectMetadata()
    source = select_reference_source(context_files, metadata)
    title = metadata.title.strip() or "Unknown"
    author = metadata.author.strip() or "Unknown"

    if isinstance(source, FileSource):
        source_text = extract_content_from_files(source.files)
        if not source_text.strip():
            raise EmptySourceError()
        source_label = "Uploaded Documents"
    else:
        source_text = render_prompt("prompt_reference_sheet_research", title=source.title, author=source.author)
        source_label = "Google Search Results"

    system_instruction = render_prompt("prompt_reference_sheet_system", source_label=source_label)
    prompt = render_prompt(
        "prompt_reference_sheet_user",
        title=title,
        author=author,
        source_material=source_text[:MAX_SOURCE_CHARS],
    )
    model_name = model_for_tier(client, source.tier)

    with log_context(operation="reference_sheet"):
        record_generation_mode("context_extractor", source.mode.value)
        logger.info(
            "reference sheet requested mode=%s model=%s source_chars=%d",
            source.mode.value,
            model_name,
            len(source_text),
        )
        try:
            text = client.generate_text(
                contents=prompt,
                model=model_name,
                system_instruction=system_instruction,
                response_schema=REFERENCE_SHEET_SCHEMA,
                web_search=source.web_search,
            )
        except GeminiEmptyResponseError as exc:
            raise EmptyReferenceSheetError() from exc
        except GeminiError as exc:
            logger.error("reference sheet generation failed error=%s", exc)
            raise ReferenceSheetGenerationError(str(exc)) from exc

        payload = parse_json_object(text)
        if payload is None:
            raise EmptyReferenceSheetError()
        try:
            sheet = ReferenceSheet.model_validate(payload)
        except ValidationError as exc:
            raise ReferenceSheetGenerationError(f"Malformed context sheet: {exc.error_count()} invalid fields") from exc

        logger.info(
            "reference sheet ready characters=%d locations=%d",
            len(sheet.characters),
            len(sheet.locations),
        )
        return sheet
