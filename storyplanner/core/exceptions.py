"""
Application-level exception types.

Every error the planner surfaces to a caller derives from `AppError`.
Low-level Gemini transport errors live in `storyplanner.services.vertex_gemini`
and are wrapped into `BackendError` at the orchestration boundary.
"""

from __future__ import annotations


class AppError(Exception):
    """Base exception for all application errors."""

    def __init__(self, message: str, *, detail: str | None = None) -> None:
        self.detail = detail or message
        super().__init__(message)


class ConfigurationError(AppError):
    """Raised when required configuration is missing or invalid."""


class ContentExtractionError(AppError):
    """Raised when an attached document cannot be turned into text."""


class UnsupportedFileError(AppError):
    """Raised when an upload is not accepted by the target file list."""


class NoSourceError(AppError):
    """Raised when a reference sheet is requested without files or a title."""

    def __init__(self) -> None:
        super().__init__(
            "No context files or book title provided.",
            detail="Attach background documents or enter a book title first.",
        )


class EmptySourceError(AppError):
    """Raised when background documents yield no readable text."""

    def __init__(self) -> None:
        super().__init__("No readable text found in context files.")


class EmptyPlanError(AppError):
    """Raised when the plan request returns no parseable payload."""

    def __init__(self) -> None:
        super().__init__("No response from Visual Selector Agent")


class OversizedInputError(AppError):
    """Raised when the backend rejects chapter input for exceeding a size limit."""

    def __init__(self, backend_message: str | None = None) -> None:
        super().__init__(
            "Chapter file is too large. Please paste text directly or use a smaller file.",
        )
        self.backend_message = backend_message


class InvalidImageFormatError(AppError):
    """Raised when an image is not an encoded `data:<mime>;base64,` payload."""

    def __init__(self) -> None:
        super().__init__("Invalid image data format")


class BackendError(AppError):
    """Wraps a generative backend failure with its original message attached."""

    def __init__(self, message: str, *, cause: str | None = None) -> None:
        super().__init__(message, detail=message)
        self.cause = cause


class ReferenceSheetGenerationError(BackendError):
    """Raised when the Story Context sheet cannot be produced."""

    def __init__(self, cause: str) -> None:
        super().__init__(f"Failed to extract Story Context. {cause}", cause=cause)


class EmptyReferenceSheetError(ReferenceSheetGenerationError):
    """Raised when the reference sheet request returns no text."""

    def __init__(self) -> None:
        super().__init__("No Context generated.")


class MalformedResponseError(BackendError):
    """Raised when a structured backend response fails validation."""


class EntityNotFoundError(AppError):
    """Raised when a session entity cannot be found."""

    def __init__(self, entity_type: str, entity_id: object) -> None:
        super().__init__(
            f"{entity_type} not found: {entity_id}",
            detail=f"{entity_type} not found",
        )
        self.entity_type = entity_type
        self.entity_id = entity_id


class WorkflowBusyError(AppError):
    """Raised when a top-level operation is already in flight."""
