import math
from typing import Iterable
import numpy as np


class MathTools:
    """Provides essential mathematical utilities for session analytics."""

    REST_STEP_SECONDS: int = 15
    TREND_WINDOW: int = 5

    @staticmethod
    def clamp(value: float, min_value: float, max_value: float) -> float:
        """Clamp ``value`` to the inclusive range [min_value, max_value]."""
        if min_value > max_value:
            raise ValueError("min_value must not exceed max_value")
        return max(min_value, min(value, max_value))

    @staticmethod
    def round_half_up(value: float, digits: int = 0) -> float:
        """Round ``value`` with ties going up instead of to even."""
        factor = 10**digits
        return math.floor(value * factor + 0.5) / factor

    @classmethod
    def round_to_step(cls, value: float, step: int | None = None) -> int:
        """Round ``value`` to the nearest multiple of ``step``."""
        step = step or cls.REST_STEP_SECONDS
        if step <= 0:
            raise ValueError("step must be positive")
        return int(math.floor(value / step + 0.5)) * step

    @staticmethod
    def safe_float(value, default: float | None = 0.0) -> float | None:
        """Return ``value`` as a finite float or ``default``."""
        if value is None or isinstance(value, bool):
            return default
        try:
            out = float(value)
        except (TypeError, ValueError):
            return default
        if math.isnan(out) or math.isinf(out):
            return default
        return out

    @staticmethod
    def mean(values: Iterable[float]) -> float:
        """Return the arithmetic mean or 0.0 for no values."""
        data = list(values)
        if not data:
            return 0.0
        return float(np.mean(np.array(data, dtype=float)))

    @staticmethod
    def percent_change(first: float, last: float) -> float:
        """Relative change from ``first`` to ``last`` in percent."""
        if first <= 0:
            return 0.0
        return (last - first) / first * 100

    @classmethod
    def net_step_trend(cls, values: Iterable[float], window: int | None = None) -> int:
        """Return ups minus downs between consecutive samples of the last window."""
        data = list(values)[-(window or cls.TREND_WINDOW):]
        if len(data) < 2:
            return 0
        steps = np.sign(np.diff(np.array(data, dtype=float)))
        return int(steps.sum())
