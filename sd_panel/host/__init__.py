from .base_host import HostEditor, DocumentContext, HostStepResult, run_host_step
from .mask_geometry import MaskAdjustments, compute_mask_adjustments
from .result_importer import ResultImporter, ImportReport

__all__ = [
    "HostEditor",
    "DocumentContext",
    "HostStepResult",
    "run_host_step",
    "MaskAdjustments",
    "compute_mask_adjustments",
    "ResultImporter",
    "ImportReport",
]
