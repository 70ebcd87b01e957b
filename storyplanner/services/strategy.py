"""
Strategy selection for grounded generation.

Each grounding mode is its own frozen variant carrying exactly what that
mode needs; `select_plan_strategy` is a total function onto those variants.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Sequence, Union

from storyplanner.core.exceptions import NoSourceError
from storyplanner.models import ProjectMetadata, ReferenceSheet, UploadedFile


class GenerationMode(str, Enum):
    SHEET_GROUNDED = "sheet_grounded"
    FILE_GROUNDED = "file_grounded"
    NOTES_GROUNDED = "notes_grounded"
    SEARCH_GROUNDED = "search_grounded"
    INFERENCE_ONLY = "inference_only"


class ModelTier(str, Enum):
    BASE = "base"
    SEARCH = "search"


@dataclass(frozen=True)
class SheetGrounded:
    sheet: ReferenceSheet

    mode = GenerationMode.SHEET_GROUNDED
    tier = ModelTier.BASE
    web_search = False


@dataclass(frozen=True)
class NotesGrounded:
    notes: str

    mode = GenerationMode.NOTES_GROUNDED
    tier = ModelTier.BASE
    web_search = False


@dataclass(frozen=True)
class SearchGrounded:
    title: str
    author: str

    mode = GenerationMode.SEARCH_GROUNDED
    tier = ModelTier.SEARCH
    web_search = True


@dataclass(frozen=True)
class InferenceOnly:
    mode = GenerationMode.INFERENCE_ONLY
    tier = ModelTier.BASE
    web_search = False


@dataclass(frozen=True)
class FileSource:
    files: tuple[UploadedFile, ...]

    mode = GenerationMode.FILE_GROUNDED
    tier = ModelTier.BASE
    web_search = False


GenerationRequest = Union[SheetGrounded, NotesGrounded, SearchGrounded, InferenceOnly]
ReferenceSource = Union[FileSource, SearchGrounded]


def _search_variant(metadata: ProjectMetadata) -> SearchGrounded:
    return SearchGrounded(title=metadata.title.strip(), author=metadata.author.strip() or "Unknown")


def select_plan_strategy(
    bible: ReferenceSheet | None,
    notes: str | None,
    metadata: ProjectMetadata | None,
) -> GenerationRequest:
    """Pick the grounding for a plan request: sheet, notes, web search, or none."""
    if bible is not None:
        return SheetGrounded(sheet=bible)
    if notes and notes.strip():
        return NotesGrounded(notes=notes.strip())
    if metadata is not None and metadata.has_title:
        return _search_variant(metadata)
    return InferenceOnly()


def select_reference_source(
    context_files: Sequence[UploadedFile],
    metadata: ProjectMetadata | None,
) -> ReferenceSource:
    """Pick the source for a reference sheet: uploaded documents, else web research.

    Raises:
        NoSourceError: If there are no files and no title.
    """
    if context_files:
        return FileSource(files=tuple(context_files))
    if metadata is not None and metadata.has_title:
        return _search_variant(metadata)
    raise NoSourceError()


def model_for_tier(client, tier: ModelTier) -> str:
    """Resolve a tier to the client's configured model name."""
    return client.search_model if tier is ModelTier.SEARCH else client.text_model
