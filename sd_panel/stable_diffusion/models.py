from pydantic import BaseModel, ConfigDict, Field, StrictFloat, StrictInt
from typing import List, Dict, Any, Optional, Union
from enum import Enum


class GenerationForm(BaseModel):
    positive_prompt: str = ""
    negative_prompt: str = ""
    extra_prompt: str = ""
    steps: int = 20
    cfg_scale: float = 7.0
    sampler: str = ""
    scheduler: str = ""
    model: str = ""
    vae: str = ""
    lora: str = ""
    lora_weight: float = 1.0
    controlnet_model: str = ""
    controlnet_module: str = ""
    controlnet_weight: float = 1.0
    denoising_strength: float = 0.35
    mask_feather: float = 20
    image_count: int = 1
    resolution: int = 768
    seed: int = -1
    clip_skip: int = 0
    restore_faces: bool = False
    tiling: bool = False
    preset_shortcut: str = ""


class SelectionBounds(BaseModel):
    """Pixel rectangle of a host selection, in document coordinates"""
    model_config = ConfigDict(frozen=True)

    left: int
    top: int
    right: int
    bottom: int

    @property
    def width(self) -> int:
        return max(0, self.right - self.left)

    @property
    def height(self) -> int:
        return max(0, self.bottom - self.top)


class SelectionPixels(BaseModel):
    model_config = ConfigDict(frozen=True)

    image: str  # base64 PNG, optionally as a data URL
    width: int
    height: int
    bounds: SelectionBounds


class BatchItemMetadata(BaseModel):
    """Host-side scratch document/layer recorded for one batch item"""
    active_document_id: Optional[int] = None
    batch_document_id: Optional[int] = None
    new_layer_id: Optional[int] = None

    @property
    def has_scratch(self) -> bool:
        return bool(self.active_document_id and self.batch_document_id and self.new_layer_id)


class BatchItem(BaseModel):
    id: str
    name: str
    created_at: str
    form: GenerationForm
    selection: SelectionPixels
    override_width: int
    override_height: int
    metadata: Optional[BatchItemMetadata] = None


class SdOption(BaseModel):
    label: str
    value: str
    raw: Any = None


class SdOptions(BaseModel):
    models: List[SdOption] = []
    vaes: List[SdOption] = []
    loras: List[SdOption] = []
    samplers: List[SdOption] = []
    schedulers: List[SdOption] = []
    controlnet_models: List[SdOption] = []
    controlnet_modules: List[SdOption] = []


class LoRAReference(BaseModel):
    name: str
    weight: float = 1.0


class ControlNetUnit(BaseModel):
    model: str
    module: Optional[str] = None
    weight: Optional[float] = None
    guidance_start: float = 0.0
    guidance_end: float = 1.0
    pixel_perfect: bool = True
    image: Optional[str] = None


class Txt2ImgParams(BaseModel):
    prompt: str
    negative_prompt: str = ""
    steps: int = 20
    cfg_scale: float = 7.0
    sampler: Optional[str] = None
    scheduler: Optional[str] = None
    seed: int = -1
    batch_size: int = 1
    width: int = 512
    height: int = 512
    model: Optional[str] = None
    vae: Optional[str] = None
    loras: List[LoRAReference] = []
    restore_faces: bool = False
    tiling: bool = False
    clip_skip: Optional[int] = None
    comments: Dict[str, Any] = {}
    controlnet: Optional[ControlNetUnit] = None


class Img2ImgParams(Txt2ImgParams):
    denoising_strength: float = 0.35
    base_image: str
    mask_image: Optional[str] = None


class GenerationResponse(BaseModel):
    images: List[str] = []
    parameters: Dict[str, Any] = {}
    info: Optional[str] = None


class ProgressResponse(BaseModel):
    progress: Optional[Union[StrictInt, StrictFloat]] = None  # numeric JSON only
    eta_relative: Optional[float] = None
    state: Optional[Dict[str, Any]] = None
    current_image: Optional[str] = None
    textinfo: Optional[str] = None


class ToastType(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


class Toast(BaseModel):
    type: ToastType
    message: str


class PresetMeta(BaseModel):
    name: str
    file_name: str
    created_at: str


class PresetFile(BaseModel):
    meta: PresetMeta
    data: Dict[str, Any] = Field(default_factory=dict)
    version: int = 1
