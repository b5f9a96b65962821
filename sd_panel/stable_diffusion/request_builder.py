"""
Request payload construction for the txt2img / img2img endpoints
"""

import math
from typing import Dict, Any, Optional, Tuple

from .models import GenerationForm, Txt2ImgParams, Img2ImgParams, ControlNetUnit, LoRAReference
from .timeout import clamp_number

STEPS_RANGE = (1, 150)
CFG_RANGE = (1, 30)
DENOISING_RANGE = (0, 0.99)
IMAGE_COUNT_RANGE = (1, 8)
RESOLUTION_RANGE = (128, 2048)
MIN_OVERRIDE_SIDE = 32


def strip_data_url(image: str) -> str:
    """Return the bare base64 part of a data URL"""
    if "," in image:
        return image.split(",", 1)[1]
    return image


def to_data_url(image_b64: str) -> str:
    return f"data:image/png;base64,{image_b64}"


def clamp_resolution(resolution) -> int:
    return int(clamp_number(resolution, *RESOLUTION_RANGE))


def compute_override_size(width: int, height: int, target: int) -> Tuple[int, int]:
    """Downscale (never upscale) a selection to fit within target, keeping aspect ratio"""
    if width <= target and height <= target:
        return width, height
    scale = min(target / width, target / height)
    return (
        max(MIN_OVERRIDE_SIDE, math.floor(width * scale + 0.5)),
        max(MIN_OVERRIDE_SIDE, math.floor(height * scale + 0.5)),
    )


def build_controlnet_unit(form: GenerationForm, base_image: str, conditioning_image: Optional[str] = None) -> Optional[ControlNetUnit]:
    """Single ControlNet unit for the form, or None when no model is chosen"""
    if not form.controlnet_model:
        return None
    weight = form.controlnet_weight if math.isfinite(form.controlnet_weight) else None
    return ControlNetUnit(
        model=form.controlnet_model,
        module=form.controlnet_module or None,
        weight=weight,
        guidance_start=0.0,
        guidance_end=1.0,
        pixel_perfect=True,
        image=conditioning_image or base_image,
    )


def build_img2img_params(form: GenerationForm, base_image: str, width: int, height: int,
                         conditioning_image: Optional[str] = None) -> Img2ImgParams:
    """Map a generation form onto clamped img2img parameters"""
    effective_prompt = "\n".join(p for p in (form.positive_prompt, form.extra_prompt) if p).strip()
    loras = [LoRAReference(name=form.lora, weight=form.lora_weight or 1)] if form.lora else []

    return Img2ImgParams(
        prompt=effective_prompt or form.positive_prompt,
        negative_prompt=form.negative_prompt,
        steps=int(clamp_number(form.steps, *STEPS_RANGE)),
        cfg_scale=clamp_number(form.cfg_scale, *CFG_RANGE),
        sampler=form.sampler or None,
        scheduler=form.scheduler or None,
        model=form.model or None,
        vae=form.vae or None,
        loras=loras,
        batch_size=int(clamp_number(form.image_count, *IMAGE_COUNT_RANGE)),
        width=width,
        height=height,
        denoising_strength=clamp_number(form.denoising_strength, *DENOISING_RANGE),
        seed=form.seed if form.seed is not None else -1,
        clip_skip=form.clip_skip if form.clip_skip > 0 else None,
        restore_faces=form.restore_faces,
        tiling=form.tiling,
        controlnet=build_controlnet_unit(form, base_image, conditioning_image),
        base_image=base_image,
    )


def build_txt2img_payload(params: Txt2ImgParams) -> Dict[str, Any]:
    """Build the JSON body shared by txt2img and img2img"""
    override_settings: Dict[str, Any] = {}
    if params.model:
        override_settings["sd_model_checkpoint"] = params.model
    if params.vae:
        override_settings["sd_vae"] = params.vae
    if params.clip_skip and params.clip_skip > 0:
        override_settings["CLIP_stop_at_last_layers"] = params.clip_skip

    prompt_parts = [params.prompt or ""]
    for lora in params.loras:
        if not lora.name:
            continue
        weight = lora.weight if math.isfinite(lora.weight) else 1
        prompt_parts.append(f" <lora:{lora.name}:{weight:g}>")

    payload: Dict[str, Any] = {
        "prompt": "".join(prompt_parts).strip(),
        "negative_prompt": params.negative_prompt or "",
        "steps": params.steps,
        "cfg_scale": params.cfg_scale,
        "batch_size": params.batch_size,
        "width": params.width,
        "height": params.height,
        "seed": params.seed,
        "restore_faces": params.restore_faces,
        "tiling": params.tiling,
        "send_images": True,
        "save_images": False,
        "override_settings": override_settings,
        "comments": params.comments,
    }
    if params.sampler:
        payload["sampler_name"] = params.sampler
        payload["sampler_index"] = params.sampler
    if params.scheduler:
        payload["scheduler"] = params.scheduler

    if params.controlnet and params.controlnet.model:
        unit: Dict[str, Any] = {
            "enabled": True,
            "model": params.controlnet.model,
            "module": params.controlnet.module,
            "weight": params.controlnet.weight if params.controlnet.weight is not None else 1,
            "guidance_start": params.controlnet.guidance_start,
            "guidance_end": params.controlnet.guidance_end,
            "pixel_perfect": params.controlnet.pixel_perfect,
        }
        if params.controlnet.image:
            unit["input_image"] = strip_data_url(params.controlnet.image)
        payload["controlnet_units"] = [unit]
        payload["alwayson_scripts"] = {"ControlNet": {"args": [unit]}}

    return payload


def build_img2img_payload(params: Img2ImgParams) -> Dict[str, Any]:
    payload = build_txt2img_payload(params)
    payload["init_images"] = [strip_data_url(params.base_image)]
    payload["denoising_strength"] = params.denoising_strength
    payload["mask"] = strip_data_url(params.mask_image) if params.mask_image else None
    return payload
