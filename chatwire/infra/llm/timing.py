# chatwire/infra/llm/timing.py
"""
Latency instrumentation for streamed responses.

t0 is taken when the request is about to be sent, t1 on the first non-empty
content fragment, tn when the stream terminates. Values are microseconds from
a monotonic clock, so 0 <= ttft <= total always holds.
"""
from __future__ import annotations
import logging, time
from typing import Callable, Optional

log = logging.getLogger("llm.timing")


class LatencyTimer:
    def __init__(self, clock: Callable[[], int] = time.perf_counter_ns):
        self._clock = clock
        self._t0: Optional[int] = None
        self._tn: Optional[int] = None
        self.ttft_us: Optional[int] = None

    def start(self) -> None:
        self._t0 = self._clock()
        self._tn = None
        self.ttft_us = None

    @property
    def started(self) -> bool:
        return self._t0 is not None

    def _elapsed_us(self) -> int:
        if self._t0 is None:
            return 0
        return max(0, (self._clock() - self._t0) // 1000)

    def mark_token(self) -> bool:
        """Record TTFT on the first call; later calls are ignored. True when this call set it."""
        if self.ttft_us is not None or self._tn is not None:
            return False
        self.ttft_us = self._elapsed_us()
        return True

    def stop(self) -> int:
        if self._tn is None:
            self._tn = self._clock() if self._t0 is not None else None
        return self.total_us()

    def total_us(self) -> int:
        if self._t0 is None:
            return 0
        if self._tn is None:
            total = self._elapsed_us()
        else:
            total = max(0, (self._tn - self._t0) // 1000)
        # clocks with coarse resolution can tie; keep the invariant anyway
        return max(total, self.ttft_us or 0)


def log_ttft_metrics(ttft_us: Optional[int], total_us: int, logger: Optional[logging.Logger] = None) -> None:
    """Three-line timeline: t0 (start) -> t1 (first token) -> tn (complete)."""
    if ttft_us is None:
        return
    lg = logger or log
    t1_to_tn = max(total_us - ttft_us, 0)
    ratio = (ttft_us / total_us * 100.0) if total_us else 100.0
    lg.info("Timeline: t0 (start) -> t1 (first token) -> tn (complete)")
    lg.info("Elapsed: t0->t1=%.0fms | t1->tn=%.0fms | t0->tn=%.0fms",
            ttft_us / 1000.0, t1_to_tn / 1000.0, total_us / 1000.0)
    lg.info("TTFT: %.0fms (%.1f%% of total)", ttft_us / 1000.0, ratio)
