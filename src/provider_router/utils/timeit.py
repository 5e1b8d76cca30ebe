"""
Wall-clock timing helpers.

Used around provider attempts, cache lookups and chunk planning so the
measured seconds can go straight into log fields and metrics.

    with timeit("attempt", meta={"provider": "gemini_free"}) as t:
        result = await adapter.summarise(...)
    info(_LOG, "attempt_ok", seconds=t.timing.seconds)
"""
from __future__ import annotations

from dataclasses import dataclass
from time import perf_counter
from typing import Any, Dict, Optional


@dataclass
class Timing:
    """A single measurement: name, elapsed seconds and optional metadata."""
    name: str
    seconds: float
    meta: Optional[Dict[str, Any]] = None


class timeit:
    """
    Context manager that records elapsed perf_counter() time.

    `timing` is None inside the block and set on exit, including when the
    block raises, so failed attempts can still report their duration.
    """

    def __init__(self, name: str, meta: Optional[Dict[str, Any]] = None):
        self.name = name
        self.meta = meta
        self._t0: float | None = None
        self.timing: Timing | None = None

    def __enter__(self) -> "timeit":
        self._t0 = perf_counter()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        started = self._t0 if self._t0 is not None else perf_counter()
        self.timing = Timing(name=self.name, seconds=perf_counter() - started, meta=self.meta)

    @property
    def elapsed(self) -> float:
        """Seconds so far, or the final duration after exit."""
        if self.timing is not None:
            return self.timing.seconds
        if self._t0 is None:
            return 0.0
        return perf_counter() - self._t0
