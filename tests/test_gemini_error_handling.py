"""Tests for Gemini client error handling and graceful degradation."""

import threading
from types import SimpleNamespace
from unittest.mock import patch

import pytest

from storyplanner.services.vertex_gemini import (
    CircuitBreaker,
    GeminiCircuitOpenError,
    GeminiClient,
    GeminiContentFilterError,
    GeminiEmptyResponseError,
    GeminiError,
    GeminiInputTooLargeError,
    GeminiInvalidRequestError,
    GeminiModelUnavailableError,
    GeminiRateLimitError,
    GeminiTimeoutError,
    classify_error,
)


def _part(text=None, thought=False, inline_data=None):
    return SimpleNamespace(text=text, thought=thought, inline_data=inline_data)


def _response(*parts, finish_reason="STOP"):
    candidate = SimpleNamespace(
        content=SimpleNamespace(parts=list(parts)),
        finish_reason=finish_reason,
        safety_ratings=None,
    )
    return SimpleNamespace(candidates=[candidate], response_id="resp-1", usage_metadata=None)


@pytest.fixture
def genai_mock():
    with patch("storyplanner.services.vertex_gemini.genai") as genai:
        yield genai


def _client(**overrides):
    options = dict(
        project=None,
        location=None,
        api_key="test-key",
        text_model="text-model",
        search_model="search-model",
        image_model="image-model",
        max_retries=1,
        initial_backoff_seconds=0,
        fallback_text_model="fallback-model",
    )
    options.update(overrides)
    return GeminiClient(**options)


class TestCircuitBreaker:
    def test_initial_state_is_closed(self):
        breaker = CircuitBreaker()
        assert breaker.state == "closed"
        assert breaker.failures == 0

    def test_opens_after_threshold_consecutive_failures(self):
        breaker = CircuitBreaker(failure_threshold=3)

        breaker.record_failure()
        breaker.record_failure()
        assert breaker.state == "closed"
        breaker.record_failure()
        assert breaker.state == "open"

    def test_success_while_closed_clears_failure_streak(self):
        breaker = CircuitBreaker(failure_threshold=2)
        breaker.record_failure()
        breaker.record_success()
        breaker.record_failure()

        assert breaker.state == "closed"

    def test_half_open_after_recovery_window_then_closes(self):
        breaker = CircuitBreaker(failure_threshold=1, recovery_timeout_seconds=0, half_open_successes=2)
        breaker.record_failure()
        assert breaker.state == "half_open"

        breaker.record_success()
        assert breaker.state == "half_open"
        breaker.record_success()
        assert breaker.state == "closed"

    def test_before_call_raises_when_open(self):
        breaker = CircuitBreaker(failure_threshold=1)
        breaker.record_failure()

        with pytest.raises(GeminiCircuitOpenError) as exc_info:
            breaker.before_call("generate_text")

        assert exc_info.value.retry_after is not None

    def test_failures_from_many_threads_are_all_counted(self):
        breaker = CircuitBreaker(failure_threshold=400)
        start = threading.Barrier(8)

        def fail_repeatedly():
            start.wait()
            for _ in range(50):
                breaker.record_failure()

        workers = [threading.Thread(target=fail_repeatedly) for _ in range(8)]
        for worker in workers:
            worker.start()
        for worker in workers:
            worker.join()

        assert breaker.failures == 400
        assert breaker.state == "open"

    def test_state_changes_wait_for_the_breaker_lock(self):
        breaker = CircuitBreaker()
        worker = threading.Thread(target=breaker.record_failure)

        with breaker._lock:
            worker.start()
            worker.join(timeout=0.1)
            assert worker.is_alive()
            assert breaker.failures == 0

        worker.join(timeout=5)
        assert breaker.failures == 1


class TestErrorClassification:
    @pytest.mark.parametrize(
        ("text", "expected"),
        [
            ("400 INVALID_ARGUMENT: The document has 1204 pages which exceeds the supported page limit of 1000", (GeminiInputTooLargeError, False)),
            ("Request payload size exceeds the limit: 20971520 bytes", (GeminiInputTooLargeError, False)),
            ("RESOURCE_EXHAUSTED: quota exceeded", (GeminiRateLimitError, True)),
            ("Content blocked by SAFETY filter", (GeminiContentFilterError, False)),
            ("Deadline exceeded", (GeminiTimeoutError, True)),
            ("503 Service Unavailable", (GeminiModelUnavailableError, True)),
            ("400 invalid argument", (GeminiInvalidRequestError, False)),
            ("something odd", (GeminiError, True)),
        ],
    )
    def test_classification(self, text, expected):
        assert classify_error(text) == expected


class TestGenerateText:
    def test_joins_answer_parts_and_skips_thoughts(self, genai_mock):
        client = _client()
        models = genai_mock.Client.return_value.models
        models.generate_content.return_value = _response(
            _part("thinking about it", thought=True),
            _part('{"a": 1}'),
        )

        assert client.generate_text("prompt") == '{"a": 1}'

    def test_schema_switches_to_json_and_search_adds_tool(self, genai_mock):
        client = _client()
        models = genai_mock.Client.return_value.models
        models.generate_content.return_value = _response(_part("{}"))

        client.generate_text(
            ["part one", "part two"],
            model="search-model",
            response_schema={"type": "OBJECT"},
            web_search=True,
            max_output_tokens=2000,
        )

        kwargs = models.generate_content.call_args.kwargs
        assert kwargs["model"] == "search-model"
        assert kwargs["contents"] == ["part one", "part two"]
        config = kwargs["config"]
        assert config.response_mime_type == "application/json"
        assert config.max_output_tokens == 2000
        assert config.tools[0].google_search is not None

    def test_empty_candidate_raises_empty_response(self, genai_mock):
        client = _client()
        genai_mock.Client.return_value.models.generate_content.return_value = _response()

        with pytest.raises(GeminiEmptyResponseError):
            client.generate_text("prompt")

    def test_safety_finish_reason_raises_content_filter(self, genai_mock):
        client = _client()
        genai_mock.Client.return_value.models.generate_content.return_value = _response(
            _part("x"), finish_reason="SAFETY"
        )

        with pytest.raises(GeminiContentFilterError):
            client.generate_text("prompt")

    def test_page_limit_raises_input_too_large_without_tripping_breaker(self, genai_mock):
        client = _client(max_retries=3)
        models = genai_mock.Client.return_value.models
        models.generate_content.side_effect = Exception(
            "400 INVALID_ARGUMENT: The document has 1204 pages which exceeds the supported page limit of 1000"
        )

        with pytest.raises(GeminiInputTooLargeError) as exc_info:
            client.generate_text("prompt")

        assert "exceeds the supported page limit" in str(exc_info.value)
        # Not retryable: exactly one attempt.
        assert models.generate_content.call_count == 1
        assert client.breakers["generate_text"].failures == 0

    def test_unavailable_model_falls_back_for_plain_requests(self, genai_mock):
        client = _client()
        models = genai_mock.Client.return_value.models
        models.generate_content.side_effect = [Exception("503 unavailable"), _response(_part("ok"))]

        assert client.generate_text("prompt") == "ok"
        assert models.generate_content.call_args.kwargs["model"] == "fallback-model"

    def test_grounded_requests_never_use_fallback(self, genai_mock):
        client = _client()
        models = genai_mock.Client.return_value.models
        models.generate_content.side_effect = Exception("503 unavailable")

        with pytest.raises(GeminiModelUnavailableError):
            client.generate_text("prompt", model="search-model", web_search=True)

        models_used = {call.kwargs["model"] for call in models.generate_content.call_args_list}
        assert models_used == {"search-model"}

    def test_open_circuit_short_circuits(self, genai_mock):
        client = _client(circuit_breaker_threshold=1)
        models = genai_mock.Client.return_value.models
        models.generate_content.side_effect = Exception("something odd")

        with pytest.raises(GeminiError):
            client.generate_text("prompt", use_fallback=False)
        with pytest.raises(GeminiCircuitOpenError):
            client.generate_text("prompt", use_fallback=False)

        client.breakers["generate_text"].reset()
        assert client.breakers["generate_text"].state == "closed"


class TestImages:
    def test_generate_image_returns_inline_bytes(self, genai_mock):
        client = _client()
        models = genai_mock.Client.return_value.models
        inline = SimpleNamespace(data=b"png-bytes", mime_type="image/png")
        models.generate_content.return_value = _response(_part(inline_data=inline))

        image_bytes, mime_type = client.generate_image("a castle", aspect_ratio="9:16")

        assert (image_bytes, mime_type) == (b"png-bytes", "image/png")
        config = models.generate_content.call_args.kwargs["config"]
        assert config.image_config.aspect_ratio == "9:16"

    def test_reference_images_precede_the_prompt(self, genai_mock):
        client = _client()
        models = genai_mock.Client.return_value.models
        inline = SimpleNamespace(data=b"png-bytes", mime_type="image/png")
        models.generate_content.return_value = _response(_part(inline_data=inline))

        client.generate_image("Elara on the bridge", reference_images=[(b"elara-face", "image/png")])

        contents = models.generate_content.call_args.kwargs["contents"]
        assert len(contents) == 2
        assert contents[0].inline_data.data == b"elara-face"
        assert contents[0].inline_data.mime_type == "image/png"
        assert contents[1].endswith("Elara on the bridge")

    def test_generate_image_without_image_part_is_empty(self, genai_mock):
        client = _client()
        genai_mock.Client.return_value.models.generate_content.return_value = _response(_part("sorry"))

        with pytest.raises(GeminiEmptyResponseError):
            client.generate_image("a castle")

    def test_edit_image_sends_source_image_first(self, genai_mock):
        client = _client()
        models = genai_mock.Client.return_value.models
        inline = SimpleNamespace(data=b"edited", mime_type="image/jpeg")
        models.generate_content.return_value = _response(_part(inline_data=inline))

        result = client.edit_image(b"source", "image/png", "make it night")

        assert result == (b"edited", "image/jpeg")
        contents = models.generate_content.call_args.kwargs["contents"]
        assert contents[-1] == "make it night"
        assert len(contents) == 2
