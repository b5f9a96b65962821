"""
Result Importer
Places generated images into the host document, fitted and masked to the
selection they were generated from.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from ..stable_diffusion.models import SelectionBounds
from ..stable_diffusion.request_builder import strip_data_url
from .base_host import HostEditor, DocumentContext, HostStepResult, run_host_step
from .mask_geometry import compute_mask_adjustments

logger = logging.getLogger(__name__)

DEFAULT_GROUP_NAME = "SD Panel Results"


@dataclass
class ImportReport:
    layer_ids: List[int] = field(default_factory=list)
    group_id: Optional[int] = None
    warnings: List[HostStepResult] = field(default_factory=list)

    def record(self, result: HostStepResult) -> HostStepResult:
        if not result.ok:
            self.warnings.append(result)
        return result


class ResultImporter:
    def __init__(self, host: HostEditor):
        self.host = host

    async def place_image(self, context: DocumentContext, image: str, index: int,
                          bounds: Optional[SelectionBounds], feather: Optional[float],
                          report: ImportReport) -> Optional[int]:
        """Place one image and mask it to the selection; placement failures propagate"""
        placed = await run_host_step(
            f"place image {index}",
            self.host.place_image(context, strip_data_url(image), index),
            fatal=True,
        )
        layer_id = placed.value

        if bounds is None:
            report.record(await run_host_step(
                "create reveal-all mask", self.host.create_layer_mask(context, reveal_selection=False)))
            return layer_id

        report.record(await run_host_step(
            "restore selection", self.host.set_selection_bounds(context, bounds)))
        report.record(await run_host_step(
            "fit layer to selection", self.host.resize_active_layer_to_bounds(context, bounds)))
        report.record(await run_host_step(
            "restore selection", self.host.set_selection_bounds(context, bounds)))

        adjustments = compute_mask_adjustments(bounds, feather)
        if not adjustments.is_noop:
            report.record(await run_host_step(
                "adjust selection for mask",
                self.host.adjust_selection(context, adjustments.contract, adjustments.feather)))

        report.record(await run_host_step(
            "create selection mask", self.host.create_layer_mask(context, reveal_selection=True)))
        report.record(await run_host_step(
            "restore selection", self.host.set_selection_bounds(context, bounds)))
        return layer_id

    async def import_results(self, context: DocumentContext, images: List[str],
                             bounds: Optional[SelectionBounds], feather: Optional[float] = None,
                             group_name: str = DEFAULT_GROUP_NAME) -> ImportReport:
        """Place every image of one job; several results end up grouped and on top"""
        report = ImportReport()
        for index, image in enumerate(images, start=1):
            layer_id = await self.place_image(context, image, index, bounds, feather, report)
            if layer_id:
                report.layer_ids.append(layer_id)

        unique_ids = list(dict.fromkeys(i for i in report.layer_ids if i and i > 0))
        if len(unique_ids) > 1:
            grouped = report.record(await run_host_step(
                "group layers", self.host.group_layers(context, unique_ids, group_name)))
            report.group_id = grouped.value

        report.record(await run_host_step(
            "move layer to top", self.host.move_active_layer_to_top(context)))

        if report.warnings:
            logger.info(f"[Host] Imported {len(report.layer_ids)} layer(s) with {len(report.warnings)} cosmetic warning(s)")
        else:
            logger.info(f"[Host] Imported {len(report.layer_ids)} layer(s)")
        return report
