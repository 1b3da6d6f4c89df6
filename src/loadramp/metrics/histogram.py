"""HDR histogram wrapper backing every Trend metric.

``hdrh.histogram.HdrHistogram`` only stores positive integers, so values are
scaled by :data:`VALUE_SCALE` (three decimal places) before recording. For
millisecond trends such as ``http_req_duration`` this means microsecond
resolution.
"""

from __future__ import annotations

import math

from hdrh.histogram import HdrHistogram  # type: ignore[import-untyped]

# Three decimal places of the recorded unit.
VALUE_SCALE = 1000

# 0.001 .. 3_600_000 units (1 µs .. 1 h when the unit is milliseconds).
_LOWEST_TRACKABLE = 1
_HIGHEST_TRACKABLE = 3_600_000_000
_SIGNIFICANT_DIGITS = 3


class HdrHistogramWrapper:
    """Percentile estimator for a stream of float values.

    Values outside the trackable range are clamped into it, so the histogram
    never rejects a sample. Exact min/max/mean are tracked by the owning
    :class:`~loadramp.metrics.models.Trend`; this class answers percentile
    queries.

    Attributes:
        lowest: Lowest trackable scaled value.
        highest: Highest trackable scaled value.
    """

    def __init__(
        self,
        lowest: int = _LOWEST_TRACKABLE,
        highest: int = _HIGHEST_TRACKABLE,
        significant_digits: int = _SIGNIFICANT_DIGITS,
    ) -> None:
        self.lowest = lowest
        self.highest = highest
        self._histogram: HdrHistogram = HdrHistogram(  # type: ignore[no-any-unimported]
            lowest, highest, significant_digits
        )

    def record(self, value: float) -> bool:
        """Record one value (clamped into the trackable range).

        Args:
            value: Value in the trend's own unit.

        Returns:
            True if the histogram accepted the value; NaN and infinities are
            never accepted.
        """
        if not math.isfinite(value):
            return False
        scaled = int(value * VALUE_SCALE)
        scaled = max(self.lowest, min(scaled, self.highest))
        return bool(self._histogram.record_value(scaled))

    def get_percentile(self, percentile: float) -> float:
        """Return the value at *percentile* (0.0 to 100.0), or 0.0 when empty."""
        if self._histogram.total_count == 0:
            return 0.0
        scaled = self._histogram.get_value_at_percentile(percentile)
        return float(scaled) / VALUE_SCALE

    def get_total_count(self) -> int:
        """Return the number of recorded values."""
        return int(self._histogram.total_count)

