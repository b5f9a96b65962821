"""
One generation job: build request, generate while polling progress, import results
"""

import logging
import math
from dataclasses import dataclass
from typing import Callable, List, Optional

from ..host.base_host import HostEditor, DocumentContext
from ..host.result_importer import ResultImporter, ImportReport, DEFAULT_GROUP_NAME
from ..stable_diffusion.errors import EmptyResultError
from ..stable_diffusion.models import GenerationForm, SelectionPixels
from ..stable_diffusion.progress_poller import ProgressPoller, DEFAULT_POLL_INTERVAL
from ..stable_diffusion.request_builder import build_img2img_params
from ..stable_diffusion.sd_client import SDClient

logger = logging.getLogger(__name__)

DEFAULT_MASK_FEATHER = GenerationForm().mask_feather


@dataclass
class JobResult:
    images: List[str]
    report: ImportReport


def resolve_feather(form: GenerationForm) -> float:
    feather = form.mask_feather
    if isinstance(feather, (int, float)) and math.isfinite(feather) and feather >= 0:
        return feather
    return DEFAULT_MASK_FEATHER


class GenerationJobRunner:
    def __init__(self, sd_client: SDClient, host: HostEditor, on_progress: Callable[[float], None],
                 poll_interval: float = DEFAULT_POLL_INTERVAL):
        self.sd_client = sd_client
        self.on_progress = on_progress
        self.importer = ResultImporter(host)
        self.poller = ProgressPoller(sd_client, on_progress, interval=poll_interval)

    async def run(self, context: DocumentContext, form: GenerationForm, selection: SelectionPixels,
                  width: int, height: int, group_name: str = DEFAULT_GROUP_NAME,
                  empty_error: Optional[Exception] = None) -> JobResult:
        """Run one job end to end; the poller is always stopped before this returns"""
        params = build_img2img_params(form, selection.image, width, height)
        logger.info(f"[Job] Generating {params.batch_size} image(s) at {width}x{height} for document {context.document_id}")

        self.on_progress(0.0)
        self.poller.start()
        try:
            response = await self.sd_client.img2img(params)
        finally:
            self.poller.stop()

        if not response.images:
            raise empty_error or EmptyResultError()
        self.on_progress(1.0)

        report = await self.importer.import_results(
            context, response.images, selection.bounds, resolve_feather(form), group_name)
        return JobResult(images=response.images, report=report)
