"""
Thin synchronous wrapper around `google-genai` for the planner.

Three operations are exposed: structured/plain text generation (optionally
grounded with Google Search), image generation and image editing. Each one
goes through the same attempt loop: circuit breaker check, call, response
validation, error classification, backoff. Callers only ever see the
`GeminiError` family.
"""

import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from typing import Any

from google import genai
from google.genai import types

from storyplanner.core.metrics import track_gemini_call

logger = logging.getLogger(__name__)

TEXT_OPERATION = "generate_text"
IMAGE_OPERATION = "generate_image"
EDIT_OPERATION = "edit_image"


class GeminiError(Exception):
    """Base exception for Gemini-related errors."""

    error_type = "unknown"

    def __init__(self, message: str, request_id: str | None = None, model: str | None = None):
        super().__init__(message)
        self.request_id = request_id
        self.model = model


class GeminiRateLimitError(GeminiError):
    error_type = "rate_limit"


class GeminiContentFilterError(GeminiError):
    """Raised when the prompt or answer is blocked by safety filters."""

    error_type = "content_filter"

    def __init__(
        self,
        message: str,
        request_id: str | None = None,
        model: str | None = None,
        blocked_categories: list[str] | None = None,
    ):
        super().__init__(message, request_id, model)
        self.blocked_categories = blocked_categories or []


class GeminiTimeoutError(GeminiError):
    error_type = "timeout"


class GeminiModelUnavailableError(GeminiError):
    error_type = "model_unavailable"


class GeminiInputTooLargeError(GeminiError):
    """Raised when an inline document or prompt is over the model's limits."""

    error_type = "input_too_large"


class GeminiInvalidRequestError(GeminiError):
    error_type = "invalid_request"


class GeminiEmptyResponseError(GeminiError):
    """Raised when a response carries no usable text or image part."""

    error_type = "empty_response"


class GeminiCircuitOpenError(GeminiError):
    """Raised without calling the backend while an operation's breaker is open."""

    error_type = "circuit_open"

    def __init__(self, message: str, retry_after: float | None = None):
        super().__init__(message)
        self.retry_after = retry_after


# Errors worth falling back to a second model for.
_FALLBACK_ERRORS = (GeminiModelUnavailableError, GeminiRateLimitError, GeminiTimeoutError)

_SIZE_LIMIT_PHRASES = (
    "exceeds the supported page limit",
    "request payload size exceeds",
    "input token count exceeds",
)

# (error class, retryable, matcher) checked in order; first match wins.
_CLASSIFICATION_RULES: tuple[tuple[type[GeminiError], bool, Any], ...] = (
    (GeminiInputTooLargeError, False, lambda text, lowered: any(p in lowered for p in _SIZE_LIMIT_PHRASES)),
    (GeminiRateLimitError, True, lambda text, lowered: "RESOURCE_EXHAUSTED" in text or "429" in text),
    (GeminiContentFilterError, False, lambda text, lowered: "safety" in lowered or "blocked" in lowered),
    (GeminiTimeoutError, True, lambda text, lowered: "timeout" in lowered or "deadline" in lowered),
    (GeminiModelUnavailableError, True, lambda text, lowered: "unavailable" in lowered or "503" in text),
    (GeminiInvalidRequestError, False, lambda text, lowered: "invalid" in lowered or "400" in text),
)


def classify_error(error_text: str) -> tuple[type[GeminiError], bool]:
    """Map a raw SDK error message to a `GeminiError` subclass and retryability."""
    lowered = error_text.lower()
    for error_class, retryable, matches in _CLASSIFICATION_RULES:
        if matches(error_text, lowered):
            return error_class, retryable
    return GeminiError, True


@dataclass
class CircuitBreaker:
    """Consecutive-failure breaker for one operation.

    Closed until `failure_threshold` failures in a row, then open for
    `recovery_timeout_seconds`. After that it is half-open: calls go through,
    and `half_open_successes` successes close it again. Batch items call the
    client from worker threads, so all state changes happen under `_lock`.
    """

    failure_threshold: int = 5
    recovery_timeout_seconds: float = 60
    half_open_successes: int = 2
    failures: int = 0
    successes: int = 0
    opened_at: float | None = None
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False, compare=False)

    def _state(self) -> str:
        if self.opened_at is None:
            return "closed"
        if time.monotonic() - self.opened_at < self.recovery_timeout_seconds:
            return "open"
        return "half_open"

    @property
    def state(self) -> str:
        with self._lock:
            return self._state()

    def before_call(self, operation: str) -> None:
        with self._lock:
            if self._state() != "open":
                return
            failures = self.failures
            retry_after = self.opened_at + self.recovery_timeout_seconds - time.monotonic()
        raise GeminiCircuitOpenError(
            f"{operation} paused after {failures} consecutive failures; retry in {retry_after:.0f}s",
            retry_after=retry_after,
        )

    def record_failure(self) -> None:
        with self._lock:
            self.failures += 1
            self.successes = 0
            if self.failures < self.failure_threshold:
                return
            self.opened_at = time.monotonic()
            failures = self.failures
        logger.warning("circuit breaker open failures=%d", failures)

    def record_success(self) -> None:
        with self._lock:
            if self.opened_at is None:
                self.failures = 0
                return
            self.successes += 1
            if self._state() != "half_open" or self.successes < self.half_open_successes:
                return
            successes = self.successes
            self._reset()
        logger.info("circuit breaker closed after %d successes", successes)

    def _reset(self) -> None:
        self.failures = 0
        self.successes = 0
        self.opened_at = None

    def reset(self) -> None:
        with self._lock:
            self._reset()


_DEFAULT_SAFETY_SETTINGS = [
    {"category": category, "threshold": types.HarmBlockThreshold.BLOCK_NONE}
    for category in (
        types.HarmCategory.HARM_CATEGORY_SEXUALLY_EXPLICIT,
        types.HarmCategory.HARM_CATEGORY_HATE_SPEECH,
        types.HarmCategory.HARM_CATEGORY_HARASSMENT,
        types.HarmCategory.HARM_CATEGORY_DANGEROUS_CONTENT,
    )
]


def _first_parts(response: types.GenerateContentResponse) -> list:
    candidate = (response.candidates or [None])[0]
    if candidate is None or not candidate.content or not candidate.content.parts:
        raise GeminiEmptyResponseError("Gemini returned empty content")
    return list(candidate.content.parts)


def _response_text(response: types.GenerateContentResponse) -> str:
    # Thought summaries are not part of the answer.
    texts = [part.text for part in _first_parts(response) if part.text and not getattr(part, "thought", False)]
    if not texts:
        raise GeminiEmptyResponseError("Gemini returned no textual content")
    return "\n".join(texts).strip()


def _response_image(response: types.GenerateContentResponse) -> tuple[bytes, str]:
    for part in _first_parts(response):
        inline_data = part.inline_data
        if inline_data and inline_data.data:
            return inline_data.data, inline_data.mime_type or "image/png"
    raise GeminiEmptyResponseError("No image data returned")


def _raise_if_blocked(response: types.GenerateContentResponse, request_id: str, model_name: str) -> None:
    candidate = (response.candidates or [None])[0]
    finish_reason = getattr(candidate, "finish_reason", None)
    if candidate is None or not finish_reason or "SAFETY" not in str(finish_reason).upper():
        return
    blocked = [
        str(getattr(rating, "category", "UNKNOWN"))
        for rating in (getattr(candidate, "safety_ratings", None) or [])
        if getattr(rating, "blocked", False)
    ]
    raise GeminiContentFilterError(
        f"Content blocked by safety filters: {blocked}",
        request_id=request_id,
        model=model_name,
        blocked_categories=blocked,
    )


class GeminiClient:
    def __init__(
        self,
        project: str | None,
        location: str | None,
        api_key: str | None,
        text_model: str,
        image_model: str,
        search_model: str | None = None,
        timeout_seconds: float = 60.0,
        max_retries: int = 3,
        initial_backoff_seconds: float = 0.8,
        rate_limit_backoff_seconds: list[float] | None = None,
        fallback_text_model: str | None = None,
        fallback_image_model: str | None = None,
        circuit_breaker_threshold: int = 5,
        circuit_breaker_timeout: int = 60,
    ):
        if not api_key and (not project or not location):
            raise RuntimeError(
                "Either GEMINI_API_KEY or both GOOGLE_CLOUD_PROJECT and GOOGLE_CLOUD_LOCATION must be configured"
            )

        self._text_model = text_model
        self._search_model = search_model or text_model
        self._image_model = image_model
        self._fallback_models = {
            TEXT_OPERATION: fallback_text_model,
            IMAGE_OPERATION: fallback_image_model,
        }
        self._max_retries = max(1, max_retries)
        self._initial_backoff_seconds = initial_backoff_seconds
        self._rate_limit_backoff_seconds = rate_limit_backoff_seconds or [5, 10, 30, 60, 120, 300]
        self.breakers: dict[str, CircuitBreaker] = {
            operation: CircuitBreaker(
                failure_threshold=circuit_breaker_threshold,
                recovery_timeout_seconds=circuit_breaker_timeout,
            )
            for operation in (TEXT_OPERATION, IMAGE_OPERATION, EDIT_OPERATION)
        }

        # HttpOptions.timeout is expressed in milliseconds.
        http_options = types.HttpOptions(timeout=int(timeout_seconds * 1000))
        if project and location:
            self._client = genai.Client(vertexai=True, project=project, location=location, http_options=http_options)
        else:
            self._client = genai.Client(api_key=api_key, http_options=http_options)

    @property
    def text_model(self) -> str:
        return self._text_model

    @property
    def search_model(self) -> str:
        return self._search_model

    def _backoff(self, error_class: type[GeminiError], attempt: int) -> float:
        if error_class is GeminiRateLimitError:
            return self._rate_limit_backoff_seconds[min(attempt, len(self._rate_limit_backoff_seconds) - 1)]
        return self._initial_backoff_seconds * (2**attempt)

    def _call(
        self,
        operation: str,
        model_name: str,
        contents: list,
        config: types.GenerateContentConfig,
    ) -> types.GenerateContentResponse:
        """Run one backend request through the breaker and the attempt loop.

        Rate-limited requests get the longer rate-limit schedule, which may
        allow more attempts than `max_retries`.
        """
        breaker = self.breakers[operation]
        breaker.before_call(operation)
        request_id = str(uuid.uuid4())

        attempt = 0
        max_attempts = self._max_retries
        while True:
            try:
                with track_gemini_call(operation):
                    response = self._client.models.generate_content(
                        model=model_name, contents=contents, config=config
                    )
            except Exception as exc:  # noqa: BLE001
                error_class, retryable = classify_error(str(exc))
                if error_class is GeminiRateLimitError:
                    max_attempts = max(max_attempts, len(self._rate_limit_backoff_seconds) + 1)
                if not retryable or attempt + 1 >= max_attempts:
                    logger.error(
                        "gemini.%s failed request_id=%s model=%s attempts=%d type=%s error=%r",
                        operation,
                        request_id,
                        model_name,
                        attempt + 1,
                        error_class.error_type,
                        exc,
                    )
                    # An oversized request says nothing about backend health.
                    if error_class is not GeminiInputTooLargeError:
                        breaker.record_failure()
                    raise error_class(str(exc), request_id=request_id, model=model_name) from exc
                backoff = self._backoff(error_class, attempt)
                logger.warning(
                    "gemini.%s retrying request_id=%s model=%s attempt=%d/%d type=%s backoff=%.1fs",
                    operation,
                    request_id,
                    model_name,
                    attempt + 1,
                    max_attempts,
                    error_class.error_type,
                    backoff,
                )
                time.sleep(backoff)
                attempt += 1
                continue

            try:
                _raise_if_blocked(response, response.response_id or request_id, model_name)
            except GeminiContentFilterError:
                breaker.record_failure()
                raise
            breaker.record_success()
            return response

    def _call_with_fallback(
        self,
        operation: str,
        model_name: str,
        contents: list,
        config: types.GenerateContentConfig,
        allow_fallback: bool,
    ) -> types.GenerateContentResponse:
        try:
            return self._call(operation, model_name, contents, config)
        except _FALLBACK_ERRORS as exc:
            fallback = self._fallback_models.get(operation)
            if not allow_fallback or not fallback or fallback == model_name:
                raise
            logger.warning("gemini.%s primary model %s failed, trying %s: %s", operation, model_name, fallback, exc)
            return self._call(operation, fallback, contents, config)

    def generate_text(
        self,
        contents: str | list[Any],
        model: str | None = None,
        system_instruction: str | None = None,
        response_schema: dict | None = None,
        web_search: bool = False,
        max_output_tokens: int | None = None,
        use_fallback: bool = True,
    ) -> str:
        """Generate text; JSON when `response_schema` is given.

        Grounded (`web_search`) requests never fall back to another model,
        since the fallback may not support the search tool.

        Raises:
            GeminiError: On failure (with specific subclass for error type)
        """
        model_name = model or self._text_model
        config = types.GenerateContentConfig(
            system_instruction=system_instruction,
            response_mime_type="application/json" if response_schema else None,
            response_schema=response_schema,
            tools=[types.Tool(google_search=types.GoogleSearch())] if web_search else None,
            max_output_tokens=max_output_tokens,
        )
        request_contents = contents if isinstance(contents, list) else [contents]
        response = self._call_with_fallback(
            TEXT_OPERATION,
            model_name,
            request_contents,
            config,
            allow_fallback=use_fallback and not web_search,
        )
        return _response_text(response)

    def generate_image(
        self,
        prompt: str,
        model: str | None = None,
        reference_images: list[tuple[bytes, str]] | None = None,
        aspect_ratio: str = "16:9",
        use_fallback: bool = True,
    ) -> tuple[bytes, str]:
        """Generate one image; returns `(image_bytes, mime_type)`.

        `reference_images` are `(bytes, mime)` pairs sent ahead of the prompt
        to keep character appearance consistent.
        """
        model_name = model or self._image_model
        config = types.GenerateContentConfig(
            image_config=types.ImageConfig(aspect_ratio=aspect_ratio),
            safety_settings=_DEFAULT_SAFETY_SETTINGS,
        )
        contents: list = [types.Part.from_bytes(data=data, mime_type=mime) for data, mime in reference_images or []]
        if contents:
            contents.append(f"Using the reference images above for character appearance consistency:\n\n{prompt}")
        else:
            contents.append(prompt)
        response = self._call_with_fallback(IMAGE_OPERATION, model_name, contents, config, allow_fallback=use_fallback)
        return _response_image(response)

    def edit_image(
        self,
        image_bytes: bytes,
        mime_type: str,
        instruction: str,
        model: str | None = None,
    ) -> tuple[bytes, str]:
        """Produce an edited variant of an existing image.

        The source image goes first, followed by the instruction text, so the
        model treats it as the composition to preserve.
        """
        model_name = model or self._image_model
        contents = [types.Part.from_bytes(data=image_bytes, mime_type=mime_type), instruction]
        config = types.GenerateContentConfig(safety_settings=_DEFAULT_SAFETY_SETTINGS)
        response = self._call(EDIT_OPERATION, model_name, contents, config)
        return _response_image(response)
