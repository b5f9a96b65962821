import asyncio
import httpx
import logging
import time
from typing import List, Dict, Any, Optional, Sequence

from .models import SdOption, SdOptions, Txt2ImgParams, Img2ImgParams, GenerationResponse, ProgressResponse
from .request_builder import build_txt2img_payload, build_img2img_payload
from .timeout import TimeoutOptions, compute_dynamic_timeout
from .errors import ConfigurationError, BackendRequestError, BackendTimeoutError, PanelError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_MS = 15_000
PROGRESS_TIMEOUT_MS = 5_000
PING_TIMEOUT_MS = 5_000
PROBE_TIMEOUT_MS = 3_000

AUTODETECT_CANDIDATES = [
    "http://127.0.0.1:7860",
    "http://localhost:7860",
    "http://127.0.0.1:8000",
    "http://localhost:8000",
    "http://127.0.0.1:8080",
    "http://localhost:8080",
]

CONTROLNET_MODEL_ENDPOINTS = [
    "/controlnet/model_list",
    "/controlnet/models",
    "/sdapi/v1/controlnet/models",
    "/controlnet/control_types",
]


def sanitize_base_url(url: Optional[str]) -> str:
    return (url or "").strip().rstrip("/")


def _flatten_collection(payload: Any) -> List[Any]:
    """Lists pass through; dict payloads such as {"model_list": [...]} are flattened"""
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        flattened: List[Any] = []
        for value in payload.values():
            if isinstance(value, list):
                flattened.extend(value)
            else:
                flattened.append(value)
        return flattened
    return []


def normalize_options(collection: Any, label_keys: Sequence[str], value_key: Optional[str] = None) -> List[SdOption]:
    """Turn a backend catalog payload into (label, value, raw) options"""
    options = []
    for item in _flatten_collection(collection):
        if isinstance(item, str):
            name = item.strip()
            if name:
                options.append(SdOption(label=name, value=name, raw=item))
            continue
        if not isinstance(item, dict):
            continue

        label = ""
        for key in label_keys:
            candidate = item.get(key)
            if isinstance(candidate, str) and candidate.strip():
                label = candidate.strip()
                break
        if not label:
            fallback = item.get(value_key or label_keys[0])
            label = str(fallback).strip() if fallback is not None else ""

        raw_value = item.get(value_key) if value_key else None
        value = raw_value if isinstance(raw_value, str) and raw_value else label
        if not label or not value:
            continue
        options.append(SdOption(label=label, value=value, raw=item))
    return options


def _to_generation_response(data: Any) -> GenerationResponse:
    if not isinstance(data, dict):
        return GenerationResponse()
    info = data.get("info")
    return GenerationResponse(
        images=[image for image in (data.get("images") or []) if isinstance(image, str) and image],
        parameters=data.get("parameters") or {},
        info=info if isinstance(info, str) else None,
    )


class SDClient:
    def __init__(self, base_url: str = "http://127.0.0.1:7860", timeout_options: Optional[TimeoutOptions] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = sanitize_base_url(base_url)
        self.timeout_options = timeout_options or TimeoutOptions()
        self._transport = transport

    def _create_client(self) -> httpx.AsyncClient:
        """HTTP client without its own timeout; every call is raced against ours"""
        return httpx.AsyncClient(timeout=None, transport=self._transport)

    def _make_url(self, path: str) -> str:
        if not self.base_url:
            raise ConfigurationError("SD backend endpoint is not configured")
        return f"{self.base_url}{path}"

    async def _request_json(self, method: str, path: str, timeout_ms: int = DEFAULT_TIMEOUT_MS,
                            json: Optional[Dict[str, Any]] = None) -> Any:
        """Issue one request and give up waiting once timeout_ms has passed"""
        url = self._make_url(path)
        started = time.monotonic()
        async with self._create_client() as client:
            try:
                response = await asyncio.wait_for(client.request(method, url, json=json), timeout_ms / 1000)
            except asyncio.TimeoutError:
                raise BackendTimeoutError(timeout_ms)
            except httpx.TimeoutException:
                raise BackendTimeoutError(timeout_ms)
            except httpx.RequestError as e:
                raise PanelError(f"Request to {url} failed: {e}") from e

        if not response.is_success:
            elapsed_ms = int((time.monotonic() - started) * 1000)
            raise BackendRequestError(response.status_code, response.text, elapsed_ms, timeout_ms)
        try:
            return response.json()
        except ValueError as e:
            raise PanelError(f"Invalid JSON response from {url}: {response.text[:200]}") from e

    async def _fetch_or_empty(self, path: str, label: str) -> List[Any]:
        try:
            return _flatten_collection(await self._request_json("GET", path))
        except Exception as e:
            logger.warning(f"[SD] Failed to fetch {label}: {e}")
            return []

    async def _fetch_vaes(self) -> List[Any]:
        try:
            modules = await self._request_json("GET", "/sdapi/v1/sd-modules")
            if isinstance(modules, list):
                return modules
        except Exception as e:
            logger.debug(f"[SD] sd-modules unavailable, falling back to sd-vae: {e}")
        return await self._fetch_or_empty("/sdapi/v1/sd-vae", "VAE list")

    async def _fetch_controlnet_models(self) -> List[Any]:
        for endpoint in CONTROLNET_MODEL_ENDPOINTS:
            try:
                result = await self._request_json("GET", endpoint)
            except Exception as e:
                logger.debug(f"[SD] ControlNet model endpoint {endpoint} unavailable: {e}")
                continue
            if result:
                return _flatten_collection(result)
        return []

    async def ping(self) -> bool:
        """Check the backend answers the model listing"""
        if not self.base_url:
            return False
        try:
            await self._request_json("GET", "/sdapi/v1/sd-models", timeout_ms=PING_TIMEOUT_MS)
            return True
        except Exception as e:
            logger.warning(f"[SD] Ping {self.base_url} failed: {e}")
            return False

    async def fetch_options(self) -> SdOptions:
        """Fetch every catalog concurrently; a failing category comes back empty"""
        if not self.base_url:
            raise ConfigurationError("SD backend endpoint is not configured")

        models, vaes, loras, samplers, schedulers, controlnet_models, controlnet_modules = await asyncio.gather(
            self._fetch_or_empty("/sdapi/v1/sd-models", "models"),
            self._fetch_vaes(),
            self._fetch_or_empty("/sdapi/v1/loras", "loras"),
            self._fetch_or_empty("/sdapi/v1/samplers", "samplers"),
            self._fetch_or_empty("/sdapi/v1/schedulers", "schedulers"),
            self._fetch_controlnet_models(),
            self._fetch_or_empty("/controlnet/module_list", "controlnet modules"),
        )

        options = SdOptions(
            models=normalize_options(models, ["title", "model_name", "name"], "model_name"),
            vaes=normalize_options(vaes, ["model_name", "name", "title"]),
            loras=normalize_options(loras, ["name", "alias"]),
            samplers=normalize_options(samplers, ["name"]),
            schedulers=normalize_options(schedulers, ["name", "label"]),
            controlnet_models=normalize_options(controlnet_models, ["model", "name"]),
            controlnet_modules=normalize_options(controlnet_modules, ["module", "name"]),
        )
        logger.info(
            f"[SD] Options loaded: {len(options.models)} models, {len(options.samplers)} samplers, "
            f"{len(options.loras)} loras, {len(options.controlnet_models)} controlnet models"
        )
        return options

    async def txt2img(self, params: Txt2ImgParams) -> GenerationResponse:
        """Generate from text only"""
        payload = build_txt2img_payload(params)
        timeout_ms = compute_dynamic_timeout(params.steps, params.width, params.height, self.timeout_options)
        logger.info(f"[SD] txt2img {params.width}x{params.height}, {params.steps} steps, timeout {timeout_ms}ms")
        data = await self._request_json("POST", "/sdapi/v1/txt2img", timeout_ms=timeout_ms, json=payload)
        return _to_generation_response(data)

    async def img2img(self, params: Img2ImgParams) -> GenerationResponse:
        """Generate from the captured selection"""
        payload = build_img2img_payload(params)
        timeout_ms = compute_dynamic_timeout(params.steps, params.width, params.height, self.timeout_options)
        logger.info(f"[SD] img2img {params.width}x{params.height}, {params.steps} steps, "
                    f"denoising {params.denoising_strength}, timeout {timeout_ms}ms")
        data = await self._request_json("POST", "/sdapi/v1/img2img", timeout_ms=timeout_ms, json=payload)
        return _to_generation_response(data)

    async def fetch_progress(self) -> Optional[ProgressResponse]:
        """Current generation progress, or None when the query fails"""
        try:
            data = await self._request_json("GET", "/sdapi/v1/progress", timeout_ms=PROGRESS_TIMEOUT_MS)
            return ProgressResponse(**data)
        except Exception as e:
            logger.warning(f"[SD] Progress polling failed: {e}")
            return None


async def probe_endpoint(endpoint: str, transport: Optional[httpx.AsyncBaseTransport] = None) -> bool:
    try:
        async with httpx.AsyncClient(timeout=PROBE_TIMEOUT_MS / 1000, transport=transport) as client:
            response = await client.get(f"{sanitize_base_url(endpoint)}/sdapi/v1/sd-models")
            return response.is_success
    except httpx.HTTPError:
        return False


async def autodetect_endpoint(candidates: Sequence[str] = AUTODETECT_CANDIDATES,
                              transport: Optional[httpx.AsyncBaseTransport] = None) -> Optional[str]:
    """Return the first local endpoint that answers, if any"""
    for endpoint in candidates:
        if await probe_endpoint(endpoint, transport=transport):
            logger.info(f"[SD] Detected backend at {endpoint}")
            return endpoint
    return None
