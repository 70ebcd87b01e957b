"""
Image Director: prompts and requests for shot images, portraits and edits.

Images travel as data URLs (`data:<mime>;base64,<payload>`), which is also
the form stored on shots and characters in the session.
"""

from __future__ import annotations

import base64
import binascii
import logging
import re
from typing import Sequence

from storyplanner.core.exceptions import InvalidImageFormatError
from storyplanner.core.profiles import PORTRAIT_ASPECT_RATIO, OutputProfile, portrait_style, shot_style
from storyplanner.models import ChapterMood, Character, ItemStatus, VisualItem
from storyplanner.prompts.loader import render_prompt
from storyplanner.services.vertex_gemini import GeminiClient

logger = logging.getLogger(__name__)

_DATA_URL_PATTERN = re.compile(r"^data:(?P<mime>[^;,]+);base64,(?P<data>.+)$", re.DOTALL)


def to_data_url(image_bytes: bytes, mime_type: str) -> str:
    return f"data:{mime_type};base64,{base64.b64encode(image_bytes).decode('ascii')}"


def parse_data_url(value: str) -> tuple[bytes, str]:
    """Split a data URL into raw bytes and MIME type.

    Raises:
        InvalidImageFormatError: If `value` is not a base64 data URL.
    """
    match = _DATA_URL_PATTERN.match(value or "")
    if match is None:
        raise InvalidImageFormatError()
    try:
        image_bytes = base64.b64decode(match.group("data"), validate=True)
    except (binascii.Error, ValueError) as exc:
        raise InvalidImageFormatError() from exc
    return image_bytes, match.group("mime")


def build_shot_prompt(
    shot: VisualItem,
    profile: OutputProfile,
    mood: ChapterMood,
    characters: Sequence[Character],
    aspect_ratio: str,
) -> str:
    # Every known character goes on the sheet; the prompt tells the model to
    # apply a design only when that name occurs in the scene text.
    return render_prompt(
        "prompt_shot_image",
        style=shot_style(profile),
        description=shot.description,
        characters=list(characters),
        mood=mood,
        shot_type=shot.type,
        aspect_ratio=aspect_ratio,
    )


def build_portrait_prompt(character: Character, profile: OutputProfile) -> str:
    return render_prompt(
        "prompt_character_portrait",
        style=portrait_style(profile),
        name=character.name,
        description=character.physical_description,
        aspect_ratio=PORTRAIT_ASPECT_RATIO,
    )


def reference_portraits(shot: VisualItem, characters: Sequence[Character]) -> list[tuple[bytes, str]]:
    """Finished portraits of the characters named in the shot description.

    Names match as whole words, case-insensitively. A portrait that is not a
    usable data URL is left out.
    """
    references: list[tuple[bytes, str]] = []
    for character in characters:
        if character.status != ItemStatus.DONE or not character.image_url:
            continue
        if not re.search(rf"\b{re.escape(character.name.strip())}\b", shot.description, re.IGNORECASE):
            continue
        try:
            references.append(parse_data_url(character.image_url))
        except InvalidImageFormatError:
            logger.warning("portrait skipped as reference, bad image data character=%s", character.name)
    return references


def generate_shot_image(
    client: GeminiClient,
    shot: VisualItem,
    profile: OutputProfile,
    mood: ChapterMood,
    characters: Sequence[Character],
    aspect_ratio: str,
) -> str:
    prompt = build_shot_prompt(shot, profile, mood, characters, aspect_ratio)
    references = reference_portraits(shot, characters)
    logger.info(
        "shot image requested shot_id=%s type=%s aspect=%s references=%d",
        shot.id,
        shot.type,
        aspect_ratio,
        len(references),
    )
    image_bytes, mime_type = client.generate_image(
        prompt=prompt,
        aspect_ratio=aspect_ratio,
        reference_images=references or None,
    )
    return to_data_url(image_bytes, mime_type)


def generate_character_portrait(
    client: GeminiClient,
    character: Character,
    profile: OutputProfile,
) -> str:
    prompt = build_portrait_prompt(character, profile)
    logger.info("portrait requested character=%s", character.name)
    image_bytes, mime_type = client.generate_image(prompt=prompt, aspect_ratio=PORTRAIT_ASPECT_RATIO)
    return to_data_url(image_bytes, mime_type)


def edit_image(client: GeminiClient, image_data_url: str, instruction: str) -> str:
    """Request an edited variant of an existing data-URL image.

    The image is validated before anything is sent to the backend.
    """
    image_bytes, mime_type = parse_data_url(image_data_url)
    prompt = render_prompt("prompt_image_edit", instruction=instruction.strip())
    logger.info("image edit requested mime=%s bytes=%d", mime_type, len(image_bytes))
    edited_bytes, edited_mime = client.edit_image(
        image_bytes=image_bytes,
        mime_type=mime_type,
        instruction=prompt,
    )
    return to_data_url(edited_bytes, edited_mime)
