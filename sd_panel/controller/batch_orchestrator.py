import logging
import uuid
from datetime import datetime
from typing import List, Optional

from ..host.base_host import HostEditor, DocumentContext, run_host_step
from ..stable_diffusion.errors import BatchAbortedError, NoSelectionError
from ..stable_diffusion.models import BatchItem, BatchItemMetadata, GenerationForm
from ..stable_diffusion.request_builder import clamp_resolution, compute_override_size
from .generation_job import GenerationJobRunner, JobResult

logger = logging.getLogger(__name__)

BATCH_NAME_LENGTH = 32


def create_batch_item_name(form: GenerationForm, index: int) -> str:
    """First line of the prompt, or a positional fallback"""
    summary = " ".join(p for p in (form.positive_prompt, form.extra_prompt) if p).strip()
    if summary:
        return summary.split("\n")[0][:BATCH_NAME_LENGTH]
    return f"Batch item {index + 1}"


class BatchOrchestrator:
    """FIFO queue of self-contained generation jobs, run strictly one after another"""

    def __init__(self, host: HostEditor, job_runner: GenerationJobRunner):
        self.host = host
        self.job_runner = job_runner
        self.items: List[BatchItem] = []

    def __len__(self) -> int:
        return len(self.items)

    def get_item(self, item_id: str) -> Optional[BatchItem]:
        return next((item for item in self.items if item.id == item_id), None)

    async def add_to_batch(self, form: GenerationForm, context: DocumentContext) -> BatchItem:
        """Snapshot the form and current selection into a new queued item"""
        selection = await self.host.capture_selection(context)
        if selection is None:
            raise NoSelectionError("No active selection was detected")

        target = clamp_resolution(form.resolution)
        width, height = compute_override_size(selection.width, selection.height, target)

        scratch = await run_host_step("create batch scratch", self.host.create_batch_scratch(context))
        metadata = scratch.value if scratch.ok and scratch.value else None
        if metadata is None:
            metadata = BatchItemMetadata(active_document_id=context.document_id)

        item = BatchItem(
            id=str(uuid.uuid4()),
            name=create_batch_item_name(form, len(self.items)),
            created_at=datetime.now().isoformat(),
            form=form.model_copy(deep=True),
            selection=selection,
            override_width=width,
            override_height=height,
            metadata=metadata,
        )
        self.items.append(item)
        logger.info(f"[Batch] Queued '{item.name}' ({width}x{height}), {len(self.items)} item(s) pending")
        return item

    async def _release(self, item: BatchItem) -> None:
        if item.metadata and item.metadata.has_scratch:
            await run_host_step(f"close scratch for '{item.name}'", self.host.close_batch_scratch(item.metadata))

    async def remove_from_batch(self, item_id: str) -> bool:
        item = self.get_item(item_id)
        if item is None:
            return False
        self.items = [i for i in self.items if i.id != item_id]
        await self._release(item)
        return True

    async def clear_batch(self) -> int:
        removed, self.items = self.items, []
        for item in removed:
            await self._release(item)
        return len(removed)

    async def _enter_item_context(self, item: BatchItem) -> DocumentContext:
        """Switch to the item's document and selection, best effort"""
        document_id = item.metadata.active_document_id if item.metadata else None
        context = DocumentContext(document_id=document_id)
        if document_id:
            switched = await run_host_step(f"switch to document {document_id}", self.host.switch_to_document(document_id))
            if switched.ok and switched.value is not None:
                context = switched.value
        await run_host_step("restore batch selection", self.host.set_selection_bounds(context, item.selection.bounds))
        return context

    async def run_batch(self) -> List[JobResult]:
        """
        Process the queue in order and return one result per completed item.

        Completed items leave the queue as they finish; the first failure
        stops the run and leaves the failing item and everything after it queued.
        """
        results: List[JobResult] = []
        for item in list(self.items):
            context = await self._enter_item_context(item)
            logger.info(f"[Batch] Running '{item.name}' ({len(results) + 1}/{len(results) + len(self.items)})")
            result = await self.job_runner.run(
                context,
                item.form,
                item.selection,
                item.override_width,
                item.override_height,
                group_name=item.name,
                empty_error=BatchAbortedError(item.name),
            )
            self.items = [i for i in self.items if i.id != item.id]
            await self._release(item)
            results.append(result)

        logger.info(f"[Batch] Completed {len(results)} item(s), "
                    f"{sum(len(r.images) for r in results)} image(s)")
        return results
