import asyncio
import json

import httpx
import pytest

from sd_panel.config.panel_config import PanelSettings
from sd_panel.controller.generation_controller import (
    Failed, GenerationController, Idle, Running, StatusKind, Succeeded,
)
from sd_panel.controller.presets import PresetStore
from sd_panel.stable_diffusion.models import ToastType
from sd_panel.stable_diffusion.sd_client import SDClient

from conftest import BASE_URL


@pytest.fixture
def preset_store(tmp_path):
    return PresetStore(tmp_path / "presets")


@pytest.fixture
def controller(host, sd_client, preset_store):
    return GenerationController(PanelSettings(sd_endpoint=BASE_URL), host, preset_store, sd_client=sd_client, poll_interval=60)


def test_status_kinds():
    assert Idle().kind == StatusKind.IDLE
    assert Running(0.5).kind == StatusKind.RUNNING
    assert Succeeded(2).kind == StatusKind.SUCCESS
    assert Failed("x").kind == StatusKind.ERROR


class TestForm:
    def test_set_form_value_rejects_unknown_field(self, controller):
        with pytest.raises(KeyError):
            controller.set_form_value("nope", 1)

    def test_set_and_reset(self, controller):
        controller.set_form_value("steps", 30)
        controller.set_resolution(1024)
        assert controller.form.steps == 30
        assert controller.form.resolution == 1024
        controller.reset_form()
        assert controller.form.steps == 20

    def test_append_extra_prompt(self, controller):
        controller.set_form_value("positive_prompt", "castle")
        controller.set_form_value("extra_prompt", "  at night ")
        assert controller.append_extra_prompt_to_positive() is True
        assert controller.form.positive_prompt == "castle\nat night"
        assert controller.form.extra_prompt == ""

        assert controller.append_extra_prompt_to_negative() is False
        assert controller.toast.type == ToastType.WARNING


class TestOptions:
    @pytest.mark.asyncio
    async def test_refresh_fills_empty_fields(self, backend, controller):
        backend.routes["/sdapi/v1/sd-models"] = [{"title": "v1-5 [abc]", "model_name": "v1-5"}]
        backend.routes["/sdapi/v1/samplers"] = [{"name": "Euler a"}, {"name": "DPM++ 2M"}]
        controller.set_form_value("sampler", "DPM++ 2M")

        await controller.refresh_options()

        assert controller.form.model == "v1-5"
        assert controller.form.sampler == "DPM++ 2M"
        assert controller.options_error is None
        assert controller.options_loading is False

    @pytest.mark.asyncio
    async def test_refresh_without_endpoint(self, host, backend):
        controller = GenerationController(PanelSettings(sd_endpoint=""), host, sd_client=SDClient("", transport=backend.transport))
        await controller.refresh_options()
        assert controller.options_error == "Configure the SD backend endpoint in settings first"
        assert backend.requests == []


class TestGeneration:
    @pytest.mark.asyncio
    async def test_success(self, host, backend, controller):
        backend.generation_results.append({"images": ["AAA", "BBB"]})
        controller.set_form_value("positive_prompt", "castle")

        assert await controller.run_generation() is True

        assert isinstance(controller.status, Succeeded)
        assert controller.status.image_count == 2
        assert controller.last_images == ["data:image/png;base64,AAA", "data:image/png;base64,BBB"]
        assert controller.toast.type == ToastType.SUCCESS
        assert len(host.calls_named("place_image")) == 2
        payload = backend.generation_payloads()[0]
        assert (payload["width"], payload["height"]) == (256, 256)

    @pytest.mark.asyncio
    async def test_no_selection(self, host, backend, controller):
        host.selection = None

        assert await controller.run_generation() is False

        assert controller.error == "Select an area in the document first"
        assert controller.toast.type == ToastType.ERROR
        assert backend.generation_payloads() == []

    @pytest.mark.asyncio
    async def test_empty_result_fails(self, backend, controller):
        assert await controller.run_generation() is False
        assert controller.error == "No usable images were returned by the backend"

    @pytest.mark.asyncio
    async def test_backend_error_message(self, host, controller):
        def failing(request):
            return httpx.Response(500, text="CUDA out of memory")

        controller = GenerationController(PanelSettings(sd_endpoint=BASE_URL), host,
                                          sd_client=SDClient(BASE_URL, transport=httpx.MockTransport(failing)),
                                          poll_interval=60)
        assert await controller.run_generation() is False
        assert "Request failed (500)" in controller.error
        assert "CUDA out of memory" in controller.error

    @pytest.mark.asyncio
    async def test_runs_are_mutually_exclusive(self, host):
        release = asyncio.Event()
        generation_calls = []

        async def gated(request):
            if request.url.path == "/sdapi/v1/img2img":
                generation_calls.append(request)
                await release.wait()
                return httpx.Response(200, json={"images": ["AAA"]})
            return httpx.Response(404)

        controller = GenerationController(PanelSettings(sd_endpoint=BASE_URL), host,
                                          sd_client=SDClient(BASE_URL, transport=httpx.MockTransport(gated)),
                                          poll_interval=60)
        first = asyncio.create_task(controller.run_generation())
        await asyncio.sleep(0.05)
        assert controller.is_running

        assert await controller.run_generation() is False
        assert controller.toast.message == "A generation is already running"

        await controller.add_to_batch()
        assert await controller.run_batch() == 0
        assert controller.toast.message == "A generation is already running"

        release.set()
        assert await first is True
        assert len(generation_calls) == 1


class TestBatch:
    @pytest.mark.asyncio
    async def test_empty_queue_makes_no_requests(self, backend, controller):
        assert await controller.run_batch() == 0
        assert backend.requests == []
        assert isinstance(controller.status, Idle)
        assert controller.toast.message == "The batch queue is empty"

    @pytest.mark.asyncio
    async def test_add_without_selection(self, host, controller):
        host.selection = None
        assert await controller.add_to_batch() is None
        assert controller.toast.message == "No valid selection detected"
        assert controller.batch_items == []

    @pytest.mark.asyncio
    async def test_failure_keeps_remaining_items(self, backend, controller):
        for prompt in ("first", "second", "third"):
            controller.set_form_value("positive_prompt", prompt)
            await controller.add_to_batch()
        backend.generation_results = [{"images": ["AAA"]}, {"images": []}]

        assert await controller.run_batch() == 0

        assert isinstance(controller.status, Failed)
        assert controller.error == "batch item «second» returned no images"
        assert [item.name for item in controller.batch_items] == ["second", "third"]

    @pytest.mark.asyncio
    async def test_progress_resets_for_every_item(self, host):
        results = [{"images": ["AAA"]}, {"images": ["BBB"]}]
        progress_at_request = []
        progress_at_place = []

        def generate(request):
            if request.url.path != "/sdapi/v1/img2img":
                return httpx.Response(404)
            progress_at_request.append(controller.progress)
            return httpx.Response(200, json=results.pop(0))

        original_place = host.place_image

        async def place_image(context, image_b64, index):
            progress_at_place.append(controller.progress)
            return await original_place(context, image_b64, index)

        host.place_image = place_image
        controller = GenerationController(PanelSettings(sd_endpoint=BASE_URL), host,
                                          sd_client=SDClient(BASE_URL, transport=httpx.MockTransport(generate)),
                                          poll_interval=60)
        for prompt in ("first", "second"):
            controller.set_form_value("positive_prompt", prompt)
            await controller.add_to_batch()

        assert await controller.run_batch() == 2
        assert progress_at_request == [0.0, 0.0]
        assert progress_at_place == [1.0, 1.0]

    @pytest.mark.asyncio
    async def test_success_counts_images(self, backend, controller):
        for prompt in ("first", "second"):
            controller.set_form_value("positive_prompt", prompt)
            await controller.add_to_batch()
        backend.generation_results = [{"images": ["AAA", "BBB"]}, {"images": ["CCC"]}]

        assert await controller.run_batch() == 2

        assert controller.status.image_count == 3
        assert controller.last_images == [
            "data:image/png;base64,AAA",
            "data:image/png;base64,BBB",
            "data:image/png;base64,CCC",
        ]

    @pytest.mark.asyncio
    async def test_success_and_clear(self, backend, controller):
        controller.set_form_value("positive_prompt", "castle")
        item = await controller.add_to_batch()
        assert controller.toast.message == f"Added to batch: {item.name}"
        backend.generation_results = [{"images": ["AAA"]}]

        assert await controller.run_batch() == 1
        assert isinstance(controller.status, Succeeded)
        assert controller.batch_items == []

        await controller.add_to_batch()
        await controller.clear_batch()
        assert controller.batch_items == []
        assert controller.toast.message == "Batch cleared"


class TestPresets:
    def test_save_and_apply_round_trip(self, controller):
        controller.set_form_value("positive_prompt", "castle")
        controller.set_form_value("steps", 42)
        meta = controller.save_preset("My: Preset?")
        assert meta.file_name == "My Preset.json"

        controller.reset_form()
        assert controller.apply_preset(meta.file_name) is True
        assert controller.form.positive_prompt == "castle"
        assert controller.form.steps == 42
        assert controller.selected_preset == "My Preset"

    def test_partial_preset_merges_over_defaults(self, controller, preset_store):
        preset_store.folder.mkdir(parents=True, exist_ok=True)
        (preset_store.folder / "partial.json").write_text(json.dumps({
            "meta": {"name": "partial", "file_name": "partial.json", "created_at": "2024-01-01T00:00:00"},
            "data": {"form": {"steps": 40}},
            "version": 1,
        }))
        controller.set_form_value("cfg_scale", 12)

        assert controller.apply_preset("partial.json") is True
        assert controller.form.steps == 40
        assert controller.form.cfg_scale == 7.0

    def test_invalid_preset_rejected(self, controller, preset_store):
        preset_store.folder.mkdir(parents=True, exist_ok=True)
        (preset_store.folder / "broken.json").write_text("{not json")
        controller.set_form_value("steps", 33)

        assert controller.apply_preset("broken.json") is False
        assert controller.toast.message == "Preset file format is invalid"
        assert controller.form.steps == 33

    def test_delete_refreshes_list(self, controller):
        meta = controller.save_preset("one")
        assert [p.name for p in controller.presets] == ["one"]
        controller.delete_preset(meta.file_name)
        assert controller.presets == []
        assert controller.selected_preset is None
