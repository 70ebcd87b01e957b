"""Tests for the workflow controller: busy flags, per-item lifecycle, batch independence."""

import json
import time

import anyio
import pytest

from storyplanner.core.exceptions import (
    BackendError,
    InvalidImageFormatError,
    UnsupportedFileError,
    WorkflowBusyError,
)
from storyplanner.models import ChapterMood, Character, ItemStatus, Plan, ReferenceSheet, UploadedFile, VisualItem
from storyplanner.services.image_director import to_data_url
from storyplanner.services.session_store import SessionStore
from storyplanner.services.vertex_gemini import GeminiError
from storyplanner.services.workflow import Workflow

MOOD = ChapterMood(tone="tense", palette_hint="red")
IMAGE = to_data_url(b"\x89PNG-bytes", "image/png")


def _planned_store(*descriptions, characters=()):
    store = SessionStore()
    store.apply_plan(
        Plan(
            mood=MOOD,
            characters=list(characters),
            emotion_arc=[],
            shots=[
                VisualItem(id=f"s{index}", type="action", description=description)
                for index, description in enumerate(descriptions)
            ],
        )
    )
    return store


def _workflow(store, gemini_client, item_timeout=5.0):
    return Workflow(store, client_factory=lambda: gemini_client, item_timeout=item_timeout)


class TestGeneratePlan:
    @pytest.mark.anyio
    async def test_success_switches_to_planning(self, gemini_client, plan_payload):
        gemini_client.generate_text.return_value = json.dumps(plan_payload(shots=4))
        store = SessionStore()
        store.update(chapter_text="Elara crossed the bridge. " * 30)
        workflow = _workflow(store, gemini_client)

        state = await workflow.generate_plan()

        assert state.step == "planning"
        assert state.is_thinking is False
        assert len(state.visuals) == 4
        assert state.mood.tone == "somber"
        assert [c.name for c in state.characters] == ["Elara"]
        assert workflow.last_error is None

    @pytest.mark.anyio
    async def test_failure_leaves_state_unchanged(self, gemini_client):
        gemini_client.generate_text.side_effect = GeminiError("quota exhausted")
        store = _planned_store("existing shot")
        before = store.snapshot()
        workflow = _workflow(store, gemini_client)

        with pytest.raises(BackendError):
            await workflow.generate_plan()

        after = store.snapshot()
        assert after == before
        assert after.is_thinking is False
        assert "quota exhausted" in workflow.last_error

    @pytest.mark.anyio
    async def test_second_request_while_busy_is_refused(self, gemini_client):
        store = SessionStore()
        store.try_acquire_flag("is_thinking")
        workflow = _workflow(store, gemini_client)

        with pytest.raises(WorkflowBusyError):
            await workflow.generate_plan()
        gemini_client.generate_text.assert_not_called()
        # The running request still owns the flag.
        assert store.snapshot().is_thinking is True

    @pytest.mark.anyio
    async def test_slow_plan_times_out(self, gemini_client):
        gemini_client.generate_text.side_effect = lambda **kwargs: time.sleep(0.5)
        store = SessionStore()
        store.update(chapter_text="text")
        workflow = _workflow(store, gemini_client, item_timeout=0.05)

        with pytest.raises(BackendError):
            await workflow.generate_plan()
        assert store.snapshot().is_thinking is False


class TestReferenceSheet:
    @pytest.mark.anyio
    async def test_sheet_is_stored(self, gemini_client):
        gemini_client.generate_text.return_value = json.dumps(
            {"summary": "s", "characters": [], "locations": [], "art_style_guide": "ink"}
        )
        store = SessionStore()
        store.update(book_title="The Long Night")
        workflow = _workflow(store, gemini_client)

        sheet = await workflow.analyze_reference_sheet()

        assert store.snapshot().bible == sheet == ReferenceSheet(summary="s", art_style_guide="ink")
        assert store.snapshot().is_analyzing_bible is False

    @pytest.mark.anyio
    async def test_busy_flag_is_released_on_failure(self, gemini_client):
        workflow = _workflow(SessionStore(), gemini_client)

        with pytest.raises(Exception):
            await workflow.analyze_reference_sheet()

        assert workflow.store.snapshot().is_analyzing_bible is False
        assert workflow.last_error is not None


class TestShotImages:
    @pytest.mark.anyio
    async def test_single_image_success(self, gemini_client):
        workflow = _workflow(_planned_store("Elara runs"), gemini_client)

        shot = await workflow.generate_shot_image("s0")

        assert shot.status == ItemStatus.DONE
        assert shot.image_url == IMAGE

    @pytest.mark.anyio
    async def test_batch_items_settle_independently(self, gemini_client):
        def fake_generate_image(prompt, aspect_ratio):
            if "FAIL" in prompt:
                raise GeminiError("content blocked")
            return b"\x89PNG-bytes", "image/png"

        gemini_client.generate_image.side_effect = fake_generate_image
        store = _planned_store("Elara runs", "FAIL here", "Kael waits")
        workflow = _workflow(store, gemini_client)

        started = workflow.generate_all_images()
        assert started == ["s0", "s1", "s2"]
        assert all(shot.status == ItemStatus.GENERATING for shot in store.snapshot().visuals)

        await workflow.wait_for_background()

        statuses = {shot.id: shot.status for shot in store.snapshot().visuals}
        assert statuses == {"s0": ItemStatus.DONE, "s1": ItemStatus.ERROR, "s2": ItemStatus.DONE}

    @pytest.mark.anyio
    async def test_batch_skips_finished_shots(self, gemini_client):
        store = _planned_store("one", "two")
        store.update_shot("s0", status=ItemStatus.DONE, image_url=IMAGE)
        workflow = _workflow(store, gemini_client)

        assert workflow.generate_all_images() == ["s1"]
        await workflow.wait_for_background()

    @pytest.mark.anyio
    async def test_timeout_marks_error_and_late_result_is_ignored(self, gemini_client):
        def slow_image(prompt, aspect_ratio):
            time.sleep(0.3)
            return b"late", "image/png"

        gemini_client.generate_image.side_effect = slow_image
        store = _planned_store("slow shot")
        workflow = _workflow(store, gemini_client, item_timeout=0.05)

        shot = await workflow.generate_shot_image("s0")
        assert shot.status == ItemStatus.ERROR

        await anyio.sleep(0.4)
        assert store.get_shot("s0").status == ItemStatus.ERROR
        assert store.get_shot("s0").image_url is None

    @pytest.mark.anyio
    async def test_no_plan_mood_means_nothing_to_do(self, gemini_client):
        store = SessionStore()
        workflow = _workflow(store, gemini_client)
        assert workflow.generate_all_images() == []


class TestShotEditing:
    @pytest.mark.anyio
    async def test_regenerate_resets_to_pending(self, gemini_client):
        gemini_client.generate_text.return_value = '{"type": "mood", "description": "Fog over the river."}'
        store = _planned_store("old")
        store.update_shot("s0", status=ItemStatus.ERROR)
        workflow = _workflow(store, gemini_client)

        shot = await workflow.regenerate_shot("s0")

        assert shot.status == ItemStatus.PENDING
        assert (shot.type, shot.description) == ("mood", "Fog over the river.")

    @pytest.mark.anyio
    async def test_regenerate_failure_marks_error(self, gemini_client):
        gemini_client.generate_text.return_value = "not json"
        workflow = _workflow(_planned_store("old"), gemini_client)

        shot = await workflow.regenerate_shot("s0")

        assert shot.status == ItemStatus.ERROR
        assert shot.description == "old"

    @pytest.mark.anyio
    async def test_edit_requires_an_image(self, gemini_client):
        workflow = _workflow(_planned_store("no image yet"), gemini_client)

        with pytest.raises(InvalidImageFormatError):
            await workflow.edit_shot_image("s0", "make it night")
        gemini_client.edit_image.assert_not_called()
        assert workflow.store.get_shot("s0").status == ItemStatus.PENDING

    @pytest.mark.anyio
    async def test_edit_replaces_image(self, gemini_client):
        store = _planned_store("shot")
        store.update_shot("s0", status=ItemStatus.DONE, image_url=IMAGE)
        workflow = _workflow(store, gemini_client)

        shot = await workflow.edit_shot_image("s0", "make it night")

        assert shot.status == ItemStatus.DONE
        assert shot.image_url == to_data_url(b"\x89PNG-edited", "image/png")

    def test_manual_edits(self, gemini_client):
        workflow = _workflow(_planned_store("one", "two"), gemini_client)

        workflow.update_shot_description("s0", "rewritten")
        workflow.update_shot_type("s0", "close-up")
        workflow.delete_shot("s1")

        visuals = workflow.store.snapshot().visuals
        assert [(shot.id, shot.type, shot.description) for shot in visuals] == [("s0", "close-up", "rewritten")]
        with pytest.raises(ValueError):
            workflow.update_shot_type("s0", "   ")


class TestPortraits:
    @pytest.mark.anyio
    async def test_portrait_batch(self, gemini_client):
        store = _planned_store(
            "shot",
            characters=[
                Character(name="Elara"),
                Character(name="Kael", image_url=IMAGE, status=ItemStatus.DONE),
            ],
        )
        workflow = _workflow(store, gemini_client)

        assert workflow.generate_all_portraits() == ["Elara"]
        await workflow.wait_for_background()

        assert store.get_character("elara").status == ItemStatus.DONE
        assert gemini_client.generate_image.call_args.kwargs["aspect_ratio"] == "1:1"

    @pytest.mark.anyio
    async def test_single_portrait_by_any_case(self, gemini_client):
        workflow = _workflow(_planned_store("shot", characters=[Character(name="Elara")]), gemini_client)
        character = await workflow.generate_portrait("ELARA")
        assert character.status == ItemStatus.DONE
        assert character.image_url == IMAGE


class TestInputs:
    def test_add_files_validates_each_upload(self, gemini_client):
        workflow = _workflow(SessionStore(), gemini_client)
        image = UploadedFile(name="cover.png", mime_type="image/png", data="iVBORw0KGgo=")

        assert len(workflow.add_files("chapter", [image])) == 1
        with pytest.raises(UnsupportedFileError):
            workflow.add_files("context", [image])
        assert workflow.store.snapshot().context_files == []

    def test_update_inputs_validation(self, gemini_client):
        workflow = _workflow(SessionStore(), gemini_client)

        state = workflow.update_inputs(book_title="T", selected_profile="Anime Recap", image_aspect_ratio="9:16")
        assert state.selected_profile.value == "Anime Recap"

        with pytest.raises(ValueError):
            workflow.update_inputs(image_aspect_ratio="7:3")
        with pytest.raises(ValueError):
            workflow.update_inputs(step="planning")
        with pytest.raises(ValueError):
            workflow.update_inputs(selected_profile="Documentary")

    def test_navigation_and_reset(self, gemini_client):
        workflow = _workflow(_planned_store("shot"), gemini_client)
        workflow.store.update(bible=ReferenceSheet(summary="x"))

        assert workflow.back_to_input().step == "input"
        state = workflow.start_new_project()
        assert state.visuals == [] and state.characters == [] and state.bible is None
