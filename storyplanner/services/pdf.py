"""
PDF text extraction for uploaded chapters and background documents.

Text comes out page by page, each page headed by a `[Page n]` line so the
model can cite where something was read. Any failure to read the document,
including encrypted files and malformed object tables, becomes a
`ContentExtractionError`.
"""

import base64
import binascii
import io
import logging
import re

from pypdf import PdfReader
from pypdf.errors import PyPdfError

from storyplanner.core.exceptions import ContentExtractionError

logger = logging.getLogger(__name__)

_PDF_DATA_URL_PREFIX = re.compile(r"^data:application/pdf;base64,")

# pypdf reports broken object graphs as plain lookup/type errors.
_READ_ERRORS = (binascii.Error, PyPdfError, ValueError, KeyError, TypeError, IndexError)


def extract_text_from_pdf(base64_data: str) -> str:
    """Return the text of every page, each prefixed with a `[Page n]` line."""
    clean_base64 = _PDF_DATA_URL_PREFIX.sub("", base64_data)
    try:
        raw = base64.b64decode(clean_base64, validate=False)
        reader = PdfReader(io.BytesIO(raw))
        pages: list[str] = []
        for index, page in enumerate(reader.pages, start=1):
            page_text = (page.extract_text() or "").strip()
            pages.append(f"[Page {index}]\n{page_text}\n\n")
    except _READ_ERRORS as exc:
        logger.error("pdf extraction failed type=%s error=%s", type(exc).__name__, exc)
        raise ContentExtractionError("Failed to extract text from PDF.", detail=str(exc)) from exc

    return "".join(pages)
