"""padvault - Progress reporting.

Import and export report percentages through a plain callable. The wrapper
clamps to [0, 100], never reports a value lower than one already reported,
and swallows nothing: a failing callback propagates to the caller.
"""

from collections.abc import Callable

ProgressCallback = Callable[[float], None]


class MonotonicProgress:
    """Forward progress values to a callback, never going backwards."""

    def __init__(self, callback: ProgressCallback | None = None):
        self._callback = callback
        self.value = 0.0

    def report(self, value: float) -> None:
        value = min(100.0, max(0.0, float(value)))
        if value < self.value:
            return
        self.value = value
        if self._callback is not None:
            self._callback(value)

    def span(self, start: float, end: float, fraction: float) -> None:
        """Report a point ``fraction`` of the way from ``start`` to ``end``."""
        fraction = min(1.0, max(0.0, fraction))
        self.report(start + (end - start) * fraction)
