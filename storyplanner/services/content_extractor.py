"""
Turns uploaded attachments into one text blob with document markers.

PDFs go through `pypdf`; text-like files are base64-decoded; everything else
(chapter images included) is skipped without error.
"""

from __future__ import annotations

import base64
import binascii
import logging
from typing import Iterable, Literal

from storyplanner.core.exceptions import UnsupportedFileError
from storyplanner.models import UploadedFile
from storyplanner.services.pdf import extract_text_from_pdf

logger = logging.getLogger(__name__)

FileListKind = Literal["chapter", "context"]

TEXT_EXTENSIONS = (".txt", ".md", ".csv")
IMAGE_MIME_TYPES = frozenset({"image/png", "image/jpeg", "image/webp"})
IMAGE_EXTENSIONS = (".png", ".jpg", ".jpeg", ".webp")


def is_pdf(file: UploadedFile) -> bool:
    return file.mime_type == "application/pdf" or file.name.lower().endswith(".pdf")


def is_text(file: UploadedFile) -> bool:
    return file.mime_type.startswith("text/") or file.name.lower().endswith(TEXT_EXTENSIONS)


def is_image(file: UploadedFile) -> bool:
    return file.mime_type in IMAGE_MIME_TYPES or file.name.lower().endswith(IMAGE_EXTENSIONS)


def validate_upload(file: UploadedFile, kind: FileListKind) -> None:
    """Enforce per-list acceptance: chapter files may also be images."""
    if is_pdf(file) or is_text(file):
        return
    if kind == "chapter" and is_image(file):
        return
    accepted = "PDF, PNG, JPEG, WEBP, TXT, MD, CSV" if kind == "chapter" else "PDF, TXT, MD, CSV"
    raise UnsupportedFileError(
        f"Unsupported {kind} file: {file.name}",
        detail=f"Accepted types: {accepted}",
    )


def _payload(data: str) -> str:
    return data.split(",", 1)[1] if "," in data else data


def decode_base64_text(data: str) -> str:
    try:
        return base64.b64decode(_payload(data)).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError, ValueError):
        return ""


def _wrap_document(name: str, text: str) -> str:
    return f"\n--- START DOCUMENT: {name} ---\n{text}\n--- END DOCUMENT ---\n"


def extract_content_from_files(files: Iterable[UploadedFile]) -> str:
    """Concatenate the readable text of `files` in input order.

    Raises:
        ContentExtractionError: If a PDF cannot be decoded.
    """
    chunks: list[str] = []
    for file in files:
        if is_pdf(file):
            chunks.append(_wrap_document(file.name, extract_text_from_pdf(file.data)))
        elif is_text(file):
            chunks.append(_wrap_document(file.name, decode_base64_text(file.data)))
        else:
            logger.debug("skipping unsupported attachment name=%s mime=%s", file.name, file.mime_type)
    return "".join(chunks)
