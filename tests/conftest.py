from unittest.mock import MagicMock

import httpx
import pytest

from storyplanner import main as main_module
from storyplanner.core import settings as settings_module
from storyplanner.main import app


@pytest.fixture()
def anyio_backend():
    return "asyncio"


@pytest.fixture(autouse=True)
def _isolated_state_file(tmp_path, monkeypatch):
    monkeypatch.setattr(settings_module.settings, "state_file", str(tmp_path / "session_state.json"))
    monkeypatch.setattr(settings_module.settings, "log_file", None)
    yield


@pytest.fixture()
def gemini_client():
    """Stand-in for GeminiClient; tests script generate_text/generate_image/edit_image."""
    client = MagicMock()
    client.text_model = "text-model"
    client.search_model = "search-model"
    client.generate_image.return_value = (b"\x89PNG-bytes", "image/png")
    client.edit_image.return_value = (b"\x89PNG-edited", "image/png")
    return client


@pytest.fixture()
def plan_payload():
    """Factory for a well-formed Visual Selector answer."""

    def _build(shots: int = 4, intensity=5, characters=None):
        return {
            "chapter_mood": {"tone": "somber", "palette_hint": "desaturated blues"},
            "characters": characters
            if characters is not None
            else [{"name": "Elara", "physical_description": "Silver hair, grey cloak"}],
            "emotion_arc": [
                {
                    "beat_description": f"beat {index}",
                    "emotion_label": "dread",
                    "intensity": intensity,
                    "color_hex": "#334455",
                }
                for index in range(6)
            ],
            "visuals": [
                {"type": "action", "description": f"Elara crosses the bridge, moment {index}", "reuse": False}
                for index in range(shots)
            ],
        }

    return _build


@pytest.fixture()
async def client(gemini_client, monkeypatch):
    monkeypatch.setattr(main_module, "build_gemini_client", lambda: gemini_client)
    async with app.router.lifespan_context(app):
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
            yield client
