"""
Pure mask geometry for placed generation results.

No host dependencies, so it can be unit tested on its own.
"""

import math
from dataclasses import dataclass
from typing import Optional

from ..stable_diffusion.models import SelectionBounds

MASK_FEATHER_RATIO = 0.08
MASK_MAX_FEATHER = 1200


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


@dataclass(frozen=True)
class MaskAdjustments:
    contract: int
    feather: int

    @property
    def is_noop(self) -> bool:
        return self.contract <= 0 and self.feather <= 0


def compute_mask_adjustments(bounds: SelectionBounds, feather_override: Optional[float] = None) -> MaskAdjustments:
    """
    Derive contract/feather radii from the selection size.

    Args:
        bounds: Selection rectangle the result was fitted to
        feather_override: Explicit feather radius; ignored unless finite

    Returns:
        MaskAdjustments with contract equal to the resolved feather
    """
    min_size = max(1, min(bounds.width, bounds.height))
    max_feather = max(0, min_size // 2)

    feather = max(0, min(_round_half_up(min_size * MASK_FEATHER_RATIO), max_feather, MASK_MAX_FEATHER))
    if isinstance(feather_override, (int, float)) and math.isfinite(feather_override):
        feather = max(0, min(_round_half_up(feather_override), max_feather, MASK_MAX_FEATHER))

    return MaskAdjustments(contract=feather, feather=feather)
