"""
Preset storage
Named generation forms saved as JSON files in the panel data folder
"""

import json
import logging
import re
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..stable_diffusion.models import PresetFile, PresetMeta

logger = logging.getLogger(__name__)

PRESET_FOLDER = "presets"
PRESET_VERSION = 1
_UNSAFE_CHARS = re.compile(r'[\\/:*?"<>|#]')


def sanitize_preset_name(name: str) -> str:
    return _UNSAFE_CHARS.sub("", name or "").strip()


class PresetStore:
    def __init__(self, folder: Path):
        self.folder = Path(folder)

    def _ensure_folder(self) -> Path:
        self.folder.mkdir(parents=True, exist_ok=True)
        return self.folder

    def list_presets(self) -> List[PresetMeta]:
        """All presets sorted by name; unreadable files are listed by file name"""
        folder = self._ensure_folder()
        presets = []
        for entry in folder.iterdir():
            if not entry.is_file() or entry.suffix.lower() != ".json":
                continue
            try:
                parsed = PresetFile(**json.loads(entry.read_text(encoding="utf-8")))
                presets.append(PresetMeta(name=parsed.meta.name, file_name=entry.name, created_at=parsed.meta.created_at))
            except Exception as e:
                logger.warning(f"[Presets] Could not read {entry.name}: {e}")
                presets.append(PresetMeta(name=entry.stem, file_name=entry.name, created_at=datetime.now().isoformat()))
        presets.sort(key=lambda p: (p.name or "").lower())
        return presets

    def load_preset(self, file_name: str) -> Optional[PresetFile]:
        path = self._ensure_folder() / file_name
        try:
            return PresetFile(**json.loads(path.read_text(encoding="utf-8")))
        except FileNotFoundError:
            logger.error(f"[Presets] Preset not found: {file_name}")
            return None
        except (json.JSONDecodeError, TypeError, ValueError) as e:
            logger.error(f"[Presets] Invalid preset {file_name}: {e}")
            return None

    def save_preset(self, name: str, data: Dict[str, Any]) -> PresetFile:
        sanitized = sanitize_preset_name(name)
        if not sanitized:
            raise ValueError("Preset name is required")
        file_name = f"{sanitized}.json"
        preset = PresetFile(
            meta=PresetMeta(name=sanitized, file_name=file_name, created_at=datetime.now().isoformat()),
            data=data,
            version=PRESET_VERSION,
        )
        path = self._ensure_folder() / file_name
        path.write_text(json.dumps(preset.model_dump(), indent=2, ensure_ascii=False), encoding="utf-8")
        logger.info(f"[Presets] Saved preset '{sanitized}'")
        return preset

    def delete_preset(self, file_name: str) -> bool:
        path = self._ensure_folder() / file_name
        try:
            path.unlink()
            return True
        except FileNotFoundError:
            logger.warning(f"[Presets] Nothing to delete for {file_name}")
            return False
