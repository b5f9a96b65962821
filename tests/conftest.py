import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

import httpx
import pytest

from sd_panel.host.base_host import HostEditor, DocumentContext
from sd_panel.stable_diffusion.models import SelectionBounds, SelectionPixels, BatchItemMetadata
from sd_panel.stable_diffusion.sd_client import SDClient

BASE_URL = "http://sd.test"


class RecordingHost(HostEditor):
    """In-memory host that records every call and can be told to fail steps"""

    def __init__(self, selection: Optional[SelectionPixels] = None, document_id: int = 1):
        self.selection = selection
        self.document_id = document_id
        self.calls: List[tuple] = []
        self.fail_steps = set()
        self.next_layer_id = 100
        self.scratch: Optional[BatchItemMetadata] = None

    def _record(self, name: str, *args):
        self.calls.append((name, args))
        if name in self.fail_steps:
            raise RuntimeError(f"{name} failed")

    def names(self) -> List[str]:
        return [name for name, _ in self.calls]

    def calls_named(self, name: str) -> List[tuple]:
        return [args for call_name, args in self.calls if call_name == name]

    async def active_context(self) -> DocumentContext:
        return DocumentContext(document_id=self.document_id)

    async def capture_selection(self, context):
        self._record("capture_selection", context)
        return self.selection

    async def place_image(self, context, image_b64, index):
        self._record("place_image", context, image_b64, index)
        self.next_layer_id += 1
        return self.next_layer_id

    async def resize_active_layer_to_bounds(self, context, bounds):
        self._record("resize_active_layer_to_bounds", context, bounds)

    async def set_selection_bounds(self, context, bounds):
        self._record("set_selection_bounds", context, bounds)

    async def adjust_selection(self, context, contract, feather):
        self._record("adjust_selection", context, contract, feather)

    async def create_layer_mask(self, context, reveal_selection):
        self._record("create_layer_mask", context, reveal_selection)

    async def group_layers(self, context, layer_ids, name):
        self._record("group_layers", context, list(layer_ids), name)
        return 999

    async def move_active_layer_to_top(self, context):
        self._record("move_active_layer_to_top", context)

    async def switch_to_document(self, document_id):
        self._record("switch_to_document", document_id)
        return DocumentContext(document_id=document_id)

    async def create_batch_scratch(self, context):
        self._record("create_batch_scratch", context)
        return self.scratch

    async def close_batch_scratch(self, metadata):
        self._record("close_batch_scratch", metadata)


class FakeBackend:
    """Routes requests by path and keeps a log of what was called"""

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self.routes: Dict[str, Any] = {}
        self.generation_results: List[Dict[str, Any]] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path in ("/sdapi/v1/img2img", "/sdapi/v1/txt2img"):
            if not self.generation_results:
                return httpx.Response(200, json={"images": []})
            return httpx.Response(200, json=self.generation_results.pop(0))
        route = self.routes.get(path)
        if route is None:
            return httpx.Response(404, text="Not Found")
        if isinstance(route, httpx.Response):
            return route
        return httpx.Response(200, json=route)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def paths(self) -> List[str]:
        return [r.url.path for r in self.requests]

    def generation_payloads(self) -> List[Dict[str, Any]]:
        return [json.loads(r.content) for r in self.requests if r.url.path.endswith("2img")]


def make_selection(left=0, top=0, right=512, bottom=512, image="data:image/png;base64,QUJD") -> SelectionPixels:
    bounds = SelectionBounds(left=left, top=top, right=right, bottom=bottom)
    return SelectionPixels(image=image, width=bounds.width, height=bounds.height, bounds=bounds)


@pytest.fixture
def selection():
    return make_selection(100, 50, 356, 306)


@pytest.fixture
def host(selection):
    return RecordingHost(selection=selection)


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def sd_client(backend):
    return SDClient(BASE_URL, transport=backend.transport)
