"""
Domain models for the storyboard planner.

Two families live here:

- Session entities (`Character`, `VisualItem`, `SessionState`, ...) that are
  persisted between requests and mutated by the workflow.
- Backend payload shapes (`PlanPayload`, `RefinedShot`, `ReferenceSheet`)
  used to validate structured Gemini responses before anything is merged
  into the session. Validation fails closed: a payload that does not match
  is rejected as a whole.
"""

from __future__ import annotations

import math
import uuid
from enum import Enum
from typing import ClassVar, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from storyplanner.core.profiles import DEFAULT_ASPECT_RATIO, SUPPORTED_ASPECT_RATIOS, OutputProfile

HEX_COLOR_PATTERN = r"^#(?:[0-9a-fA-F]{3}|[0-9a-fA-F]{6})$"


def _short_id() -> str:
    return uuid.uuid4().hex[:7]


def character_key(name: str) -> str:
    """Identity key for a character: case-insensitive, whitespace-trimmed name."""
    return name.strip().lower()


class ShotType(str, Enum):
    CHARACTER_ANCHOR = "character_anchor"
    MOOD = "mood"
    LOCATION = "location"
    ACTION = "action"
    SYMBOLIC = "symbolic"


class ItemStatus(str, Enum):
    PENDING = "pending"
    GENERATING = "generating"
    DONE = "done"
    ERROR = "error"


class UploadedFile(BaseModel):
    """An attachment as received from the client: a data URL or bare base64."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=_short_id)
    name: str = Field(min_length=1)
    mime_type: str = ""
    data: str


class SheetCharacter(BaseModel):
    name: str = Field(min_length=1)
    physical_description: str = ""


class SheetLocation(BaseModel):
    name: str = Field(min_length=1)
    visual_description: str = ""


class ReferenceSheet(BaseModel):
    """Project-wide "Bible": synopsis, cast, locations and art style."""

    summary: str = ""
    characters: list[SheetCharacter] = Field(default_factory=list)
    locations: list[SheetLocation] = Field(default_factory=list)
    art_style_guide: str = ""


class ChapterMood(BaseModel):
    tone: str
    palette_hint: str


class EmotionPoint(BaseModel):
    beat_description: str
    emotion_label: str
    intensity: int = Field(ge=1, le=10)
    color_hex: str = Field(pattern=HEX_COLOR_PATTERN)

    @field_validator("intensity", mode="before")
    @classmethod
    def _round_numeric_intensity(cls, value):
        # The schema declares NUMBER, so 6.5 is a legal backend answer.
        if isinstance(value, float):
            if not math.isfinite(value):
                raise ValueError("intensity must be a finite number")
            return round(value)
        return value


class Character(BaseModel):
    name: str = Field(min_length=1)
    physical_description: str = ""
    image_url: str | None = None
    status: ItemStatus | None = None

    @property
    def key(self) -> str:
        return character_key(self.name)


class VisualItem(BaseModel):
    """A planned shot. `type` is free text once in session (users may retype it)."""

    id: str
    type: str = Field(min_length=1)
    description: str
    reuse: bool = False
    status: ItemStatus = ItemStatus.PENDING
    image_url: str | None = None


class ProjectMetadata(BaseModel):
    title: str = ""
    author: str = ""
    genre: str = ""

    @property
    def has_title(self) -> bool:
        return bool(self.title.strip())


class PlannedShot(BaseModel):
    type: ShotType
    description: str = Field(min_length=1)
    reuse: bool | None = None


class PlanPayload(BaseModel):
    """Structured result of the Visual Selector request."""

    model_config = ConfigDict(extra="ignore")

    chapter_mood: ChapterMood
    characters: list[SheetCharacter]
    emotion_arc: list[EmotionPoint] = Field(min_length=1)
    visuals: list[PlannedShot]


class Plan(BaseModel):
    mood: ChapterMood
    characters: list[Character]
    emotion_arc: list[EmotionPoint]
    shots: list[VisualItem]


class RefinedShot(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: str = Field(min_length=1)
    description: str = Field(min_length=1)


class SessionState(BaseModel):
    """Everything the planner remembers between requests."""

    TRANSIENT_FIELDS: ClassVar[frozenset[str]] = frozenset({"is_analyzing_bible", "is_thinking"})

    step: Literal["input", "planning"] = "input"
    planning_tab: Literal["storyboard", "characters"] = "storyboard"
    chapter_text: str = ""
    context_text: str = ""

    book_title: str = ""
    book_author: str = ""
    book_genre: str = ""

    selected_profile: OutputProfile = OutputProfile.NOVEL_EXPLANATION
    image_aspect_ratio: str = DEFAULT_ASPECT_RATIO
    mood: ChapterMood | None = None
    characters: list[Character] = Field(default_factory=list)
    emotion_arc: list[EmotionPoint] = Field(default_factory=list)
    visuals: list[VisualItem] = Field(default_factory=list)
    files: list[UploadedFile] = Field(default_factory=list)
    context_files: list[UploadedFile] = Field(default_factory=list)

    bible: ReferenceSheet | None = None
    is_analyzing_bible: bool = False
    is_thinking: bool = False

    @field_validator("image_aspect_ratio")
    @classmethod
    def _check_aspect_ratio(cls, value: str) -> str:
        if value not in SUPPORTED_ASPECT_RATIOS:
            raise ValueError(f"unsupported aspect ratio: {value}")
        return value

    @property
    def metadata(self) -> ProjectMetadata:
        return ProjectMetadata(title=self.book_title, author=self.book_author, genre=self.book_genre)
