"""
Generation Controller
Root state machine behind the panel: form, status, notices, catalog,
single-shot generation, batch queue and presets.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, ClassVar, List, Optional, Union

from ..config.panel_config import PanelSettings
from ..host.base_host import HostEditor
from ..stable_diffusion.errors import ConfigurationError, NoSelectionError
from ..stable_diffusion.models import (
    BatchItem, GenerationForm, PresetMeta, SdOptions, Toast, ToastType,
)
from ..stable_diffusion.progress_poller import DEFAULT_POLL_INTERVAL
from ..stable_diffusion.request_builder import clamp_resolution, compute_override_size, to_data_url
from ..stable_diffusion.sd_client import SDClient
from .batch_orchestrator import BatchOrchestrator
from .generation_job import GenerationJobRunner
from .presets import PresetStore

logger = logging.getLogger(__name__)


class StatusKind(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True)
class Idle:
    kind: ClassVar[StatusKind] = StatusKind.IDLE


@dataclass(frozen=True)
class Running:
    progress: float = 0.0
    kind: ClassVar[StatusKind] = StatusKind.RUNNING


@dataclass(frozen=True)
class Succeeded:
    image_count: int = 0
    kind: ClassVar[StatusKind] = StatusKind.SUCCESS


@dataclass(frozen=True)
class Failed:
    message: str
    kind: ClassVar[StatusKind] = StatusKind.ERROR


GenerationStatus = Union[Idle, Running, Succeeded, Failed]

CATALOG_DEFAULTS = {
    "sampler": "samplers",
    "scheduler": "schedulers",
    "model": "models",
    "vae": "vaes",
    "controlnet_model": "controlnet_models",
    "controlnet_module": "controlnet_modules",
}


class GenerationController:
    def __init__(self, settings: PanelSettings, host: HostEditor, preset_store: Optional[PresetStore] = None,
                 sd_client: Optional[SDClient] = None, poll_interval: float = DEFAULT_POLL_INTERVAL,
                 on_change: Optional[Callable[[], None]] = None):
        self.settings = settings
        self.host = host
        self.sd_client = sd_client or SDClient(settings.sd_endpoint, settings.timeout_options())
        self.preset_store = preset_store
        self.on_change = on_change

        self.form = GenerationForm()
        self.status: GenerationStatus = Idle()
        self.toast: Optional[Toast] = None
        self.last_images: List[str] = []

        self.options = SdOptions()
        self.options_loading = False
        self.options_error: Optional[str] = None

        self.presets: List[PresetMeta] = []
        self.selected_preset: Optional[str] = None

        self.job_runner = GenerationJobRunner(self.sd_client, host, self._set_progress, poll_interval=poll_interval)
        self.batch = BatchOrchestrator(host, self.job_runner)

    # ============ STATE ============

    @property
    def progress(self) -> float:
        return self.status.progress if isinstance(self.status, Running) else 0.0

    @property
    def error(self) -> Optional[str]:
        return self.status.message if isinstance(self.status, Failed) else None

    @property
    def is_running(self) -> bool:
        return isinstance(self.status, Running)

    @property
    def batch_items(self) -> List[BatchItem]:
        return list(self.batch.items)

    def _changed(self) -> None:
        if self.on_change:
            self.on_change()

    def _set_status(self, status: GenerationStatus) -> None:
        self.status = status
        self._changed()

    def _set_progress(self, value: float) -> None:
        if isinstance(self.status, Running):
            self._set_status(Running(progress=min(1.0, max(0.0, value))))

    def _fail(self, message: str) -> None:
        self._set_status(Failed(message))
        self.push_toast(ToastType.ERROR, message)

    def push_toast(self, toast_type: ToastType, message: str) -> None:
        self.toast = Toast(type=toast_type, message=message)
        self._changed()

    def dismiss_toast(self) -> None:
        self.toast = None
        self._changed()

    # ============ FORM ============

    def set_form_value(self, key: str, value: Any) -> None:
        if key not in GenerationForm.model_fields:
            raise KeyError(f"Unknown form field: {key}")
        self.form = GenerationForm(**{**self.form.model_dump(), key: value})
        self._changed()

    def reset_form(self) -> None:
        self.form = GenerationForm()
        self._changed()

    def set_resolution(self, value: int) -> None:
        self.set_form_value("resolution", value)

    def set_preset_shortcut(self, value: str) -> None:
        self.set_form_value("preset_shortcut", value)

    def _append_extra_prompt(self, target: str, label: str) -> bool:
        extra = self.form.extra_prompt.strip()
        if not extra:
            self.push_toast(ToastType.WARNING, "Enter an extra prompt first")
            return False
        current = getattr(self.form, target)
        self.form = self.form.model_copy(update={
            target: "\n".join(p for p in (current, extra) if p),
            "extra_prompt": "",
        })
        self.push_toast(ToastType.SUCCESS, f"Added to the {label} prompt")
        return True

    def append_extra_prompt_to_positive(self) -> bool:
        return self._append_extra_prompt("positive_prompt", "positive")

    def append_extra_prompt_to_negative(self) -> bool:
        return self._append_extra_prompt("negative_prompt", "negative")

    # ============ CATALOG ============

    async def refresh_options(self) -> None:
        """Reload the backend catalog and fill empty form identifiers with first entries"""
        if not self.settings.sd_endpoint:
            self.options = SdOptions()
            self.options_error = "Configure the SD backend endpoint in settings first"
            self._changed()
            return

        self.options_loading = True
        self.options_error = None
        self._changed()
        try:
            fetched = await self.sd_client.fetch_options()
            self.options = fetched
            updates = {}
            for field_name, category in CATALOG_DEFAULTS.items():
                choices = getattr(fetched, category)
                if not getattr(self.form, field_name) and choices:
                    updates[field_name] = choices[0].value
            if updates:
                self.form = self.form.model_copy(update=updates)
        except Exception as e:
            message = str(e) or "Failed to load options"
            logger.error(f"[Controller] Option refresh failed: {message}")
            self.options_error = message
            self.push_toast(ToastType.ERROR, message)
        finally:
            self.options_loading = False
            self._changed()

    # ============ GENERATION ============

    def _refuse_if_running(self) -> bool:
        if self.is_running:
            self.push_toast(ToastType.WARNING, "A generation is already running")
            return True
        return False

    def _require_endpoint(self) -> None:
        if not self.sd_client.base_url:
            raise ConfigurationError("SD backend endpoint is not configured")

    async def run_generation(self) -> bool:
        """Generate into the current selection of the active document"""
        if self._refuse_if_running():
            return False
        self.toast = None
        self._set_status(Running(progress=0.0))
        try:
            self._require_endpoint()
            context = await self.host.active_context()
            selection = await self.host.capture_selection(context)
            if selection is None:
                raise NoSelectionError("Select an area in the document first")

            form = self.form.model_copy(deep=True)
            width, height = compute_override_size(selection.width, selection.height, clamp_resolution(form.resolution))
            result = await self.job_runner.run(context, form, selection, width, height)

            self.last_images = [to_data_url(image) for image in result.images]
            self._set_status(Succeeded(image_count=len(result.images)))
            self.push_toast(ToastType.SUCCESS, "Generation finished")
            return True
        except Exception as e:
            message = str(e) or "Generation failed"
            logger.error(f"[Controller] Generation failed: {message}")
            self._fail(message)
            return False

    # ============ BATCH ============

    async def add_to_batch(self) -> Optional[BatchItem]:
        try:
            context = await self.host.active_context()
            item = await self.batch.add_to_batch(self.form, context)
        except NoSelectionError:
            self.push_toast(ToastType.WARNING, "No valid selection detected")
            return None
        except Exception as e:
            message = str(e) or "Failed to add to batch"
            logger.error(f"[Controller] Add to batch failed: {message}")
            self.push_toast(ToastType.ERROR, message)
            return None
        self.push_toast(ToastType.SUCCESS, f"Added to batch: {item.name}")
        return item

    async def remove_from_batch(self, item_id: str) -> bool:
        removed = await self.batch.remove_from_batch(item_id)
        self._changed()
        return removed

    async def clear_batch(self) -> None:
        await self.batch.clear_batch()
        self.push_toast(ToastType.INFO, "Batch cleared")

    async def run_batch(self) -> int:
        """Run every queued item in order; returns the number completed"""
        if not self.batch.items:
            self.push_toast(ToastType.WARNING, "The batch queue is empty")
            return 0
        if self._refuse_if_running():
            return 0
        self._set_status(Running(progress=0.0))
        try:
            self._require_endpoint()
            results = await self.batch.run_batch()
        except Exception as e:
            message = str(e) or "Batch run failed"
            logger.error(f"[Controller] Batch failed, {len(self.batch)} item(s) left in queue: {message}")
            self._fail(message)
            return 0
        self.last_images = [to_data_url(image) for result in results for image in result.images]
        self._set_status(Succeeded(image_count=len(self.last_images)))
        self.push_toast(ToastType.SUCCESS, "Batch finished")
        return len(results)

    # ============ PRESETS ============

    def _require_preset_store(self) -> PresetStore:
        if self.preset_store is None:
            raise ConfigurationError("Preset storage is not available")
        return self.preset_store

    def load_presets(self) -> List[PresetMeta]:
        self.presets = self._require_preset_store().list_presets()
        self._changed()
        return self.presets

    def apply_preset(self, file_name: str) -> bool:
        """Replace the whole form with the preset merged over defaults"""
        preset = self._require_preset_store().load_preset(file_name)
        form_data = preset.data.get("form") if preset else None
        if not isinstance(form_data, dict):
            self.push_toast(ToastType.ERROR, "Preset file format is invalid")
            return False
        try:
            self.form = GenerationForm(**{**GenerationForm().model_dump(), **form_data})
        except ValueError as e:
            logger.error(f"[Controller] Preset {file_name} has invalid values: {e}")
            self.push_toast(ToastType.ERROR, "Preset file format is invalid")
            return False
        self.selected_preset = preset.meta.name
        self.push_toast(ToastType.SUCCESS, f"Applied preset '{preset.meta.name}'")
        return True

    def save_preset(self, name: str) -> PresetMeta:
        store = self._require_preset_store()
        preset = store.save_preset(name, {"form": self.form.model_dump()})
        self.selected_preset = preset.meta.name
        self.load_presets()
        self.push_toast(ToastType.SUCCESS, f"Preset '{preset.meta.name}' saved")
        return preset.meta

    def delete_preset(self, file_name: str) -> None:
        self._require_preset_store().delete_preset(file_name)
        self.load_presets()
        if self.selected_preset and file_name.startswith(self.selected_preset):
            self.selected_preset = None
        self.push_toast(ToastType.INFO, "Preset deleted")
