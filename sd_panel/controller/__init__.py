from .generation_controller import GenerationController, Idle, Running, Succeeded, Failed, StatusKind
from .batch_orchestrator import BatchOrchestrator
from .generation_job import GenerationJobRunner
from .presets import PresetStore

__all__ = [
    "GenerationController",
    "BatchOrchestrator",
    "GenerationJobRunner",
    "PresetStore",
    "Idle",
    "Running",
    "Succeeded",
    "Failed",
    "StatusKind",
]
