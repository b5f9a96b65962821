"""
Dynamic request timeout for generation calls

The budget grows with output area and step count so large jobs are not
aborted early, while the configured ceiling bounds the worst-case wait.
"""

import math
from dataclasses import dataclass
from typing import Optional

BASE_RESOLUTION = 512 * 512
BASE_TIMEOUT_BUDGET_MS = 20_000
TIMEOUT_MARGIN_MS = 5_000
DEFAULT_MAX_TIMEOUT_MS = 120_000
MIN_TIMEOUT_FLOOR_MS = 5_000
STEP_REFERENCE = 20
MULTIPLIER_RANGE = (0.25, 10.0)


def clamp_number(value: float, minimum: float, maximum: float) -> float:
    return min(maximum, max(minimum, value))


def _is_finite(value) -> bool:
    try:
        return value is not None and math.isfinite(value)
    except TypeError:
        return False


@dataclass
class TimeoutOptions:
    """Operator-tunable bounds, all in milliseconds except the multiplier"""
    multiplier: Optional[float] = None
    min_ms: Optional[float] = None
    max_ms: Optional[float] = None

    @classmethod
    def from_seconds(cls, multiplier: Optional[float], min_seconds: Optional[float], max_seconds: Optional[float]) -> "TimeoutOptions":
        """Build options from the settings file, which stores seconds"""
        def to_ms(seconds: Optional[float], fallback_ms: int) -> int:
            if not _is_finite(seconds):
                return fallback_ms
            return max(0, round(seconds * 1000))

        min_ms = max(MIN_TIMEOUT_FLOOR_MS, to_ms(min_seconds, BASE_TIMEOUT_BUDGET_MS))
        max_ms = max(min_ms, to_ms(max_seconds, DEFAULT_MAX_TIMEOUT_MS))
        resolved_multiplier = clamp_number(multiplier, *MULTIPLIER_RANGE) if _is_finite(multiplier) else 1.0
        return cls(multiplier=resolved_multiplier, min_ms=min_ms, max_ms=max_ms)


def compute_dynamic_timeout(steps, width, height, options: Optional[TimeoutOptions] = None) -> int:
    """Return the request timeout in milliseconds for a generation job"""
    if not all(_is_finite(v) for v in (steps, width, height)) or steps <= 0 or width <= 0 or height <= 0:
        return BASE_TIMEOUT_BUDGET_MS

    options = options or TimeoutOptions()
    multiplier = clamp_number(options.multiplier, *MULTIPLIER_RANGE) if _is_finite(options.multiplier) else 1.0

    if _is_finite(options.max_ms):
        max_candidate = max(BASE_TIMEOUT_BUDGET_MS, options.max_ms)
    else:
        max_candidate = DEFAULT_MAX_TIMEOUT_MS
    if _is_finite(options.min_ms):
        min_ms = clamp_number(options.min_ms, MIN_TIMEOUT_FLOOR_MS, max_candidate)
    else:
        min_ms = BASE_TIMEOUT_BUDGET_MS
    max_ms = max(min_ms, max_candidate)

    area_scale = max(1.0, (width * height) / BASE_RESOLUTION)
    step_scale = clamp_number(steps / STEP_REFERENCE, 0.5, 5)
    budget = (BASE_TIMEOUT_BUDGET_MS + TIMEOUT_MARGIN_MS) * area_scale * step_scale * multiplier
    return int(round(clamp_number(budget, min_ms, max_ms)))
