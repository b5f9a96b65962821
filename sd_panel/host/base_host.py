"""
Host Editor Interface
Abstract capability set the generation core needs from the image editor
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Awaitable, List, Optional, TypeVar, Generic

from ..stable_diffusion.models import SelectionBounds, SelectionPixels, BatchItemMetadata

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class DocumentContext:
    """The document every host call operates on; never read from ambient state"""
    document_id: Optional[int] = None


@dataclass
class HostStepResult(Generic[T]):
    """Outcome of one host call; cosmetic failures are reported, not raised"""
    step: str
    ok: bool
    fatal: bool = False
    value: Optional[T] = None
    error: Optional[str] = None


async def run_host_step(step: str, call: Awaitable[T], fatal: bool = False) -> HostStepResult[T]:
    """
    Await a host call under the best-effort policy.

    Fatal steps re-raise; cosmetic steps log a warning and return a failed
    result so the caller can carry on.
    """
    try:
        value = await call
        return HostStepResult(step=step, ok=True, fatal=fatal, value=value)
    except Exception as e:
        if fatal:
            raise
        logger.warning(f"[Host] {step} failed: {e}")
        return HostStepResult(step=step, ok=False, fatal=False, error=str(e))


class HostEditor(ABC):
    """Abstract base class every host integration implements"""

    @abstractmethod
    async def active_context(self) -> DocumentContext:
        """Context of the document the user is currently working on"""
        pass

    @abstractmethod
    async def capture_selection(self, context: DocumentContext) -> Optional[SelectionPixels]:
        """Rasterize the current selection; None when there is no selection"""
        pass

    @abstractmethod
    async def place_image(self, context: DocumentContext, image_b64: str, index: int) -> Optional[int]:
        """Import an encoded image as a new layer at offset (0, 0); returns the layer id"""
        pass

    @abstractmethod
    async def resize_active_layer_to_bounds(self, context: DocumentContext, bounds: SelectionBounds) -> None:
        pass

    @abstractmethod
    async def set_selection_bounds(self, context: DocumentContext, bounds: SelectionBounds) -> None:
        pass

    @abstractmethod
    async def adjust_selection(self, context: DocumentContext, contract: int, feather: int) -> None:
        """Contract, then feather, the active selection"""
        pass

    @abstractmethod
    async def create_layer_mask(self, context: DocumentContext, reveal_selection: bool) -> None:
        pass

    @abstractmethod
    async def group_layers(self, context: DocumentContext, layer_ids: List[int], name: str) -> Optional[int]:
        """Group layers under a name; returns the resulting top layer id"""
        pass

    @abstractmethod
    async def move_active_layer_to_top(self, context: DocumentContext) -> None:
        pass

    @abstractmethod
    async def switch_to_document(self, document_id: int) -> DocumentContext:
        pass

    @abstractmethod
    async def create_batch_scratch(self, context: DocumentContext) -> Optional[BatchItemMetadata]:
        """Duplicate the target layer into a scratch document for batch isolation"""
        pass

    @abstractmethod
    async def close_batch_scratch(self, metadata: BatchItemMetadata) -> None:
        """Close the scratch document, delete its layer, restore the previous document"""
        pass
