from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field

from storyplanner.core.profiles import OutputProfile
from storyplanner.models import SessionState


class FileKind(str, Enum):
    CHAPTER = "chapter"
    CONTEXT = "context"


class SessionRead(SessionState):
    """Session snapshot plus the message of the last failed top-level generation."""

    last_error: str | None = None


class SessionUpdate(BaseModel):
    chapter_text: str | None = None
    context_text: str | None = None
    book_title: str | None = None
    book_author: str | None = None
    book_genre: str | None = None
    selected_profile: OutputProfile | None = None
    image_aspect_ratio: str | None = None
    planning_tab: Literal["storyboard", "characters"] | None = None


class FileUploadItem(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    mime_type: str = ""
    data: str = Field(min_length=1, description="Data URL or bare base64 payload")


class FileUploadRequest(BaseModel):
    files: list[FileUploadItem] = Field(min_length=1)


class ShotUpdate(BaseModel):
    description: str | None = None
    type: str | None = Field(default=None, min_length=1)


class ImageEditRequest(BaseModel):
    instruction: str = Field(min_length=1)


class BatchStarted(BaseModel):
    started: list[str]
