"""
Non-behavioral client metrics.

Privacy boundary:
- No product identifiers
- No prices, commitments, or DIDs
- Latencies and error counts only
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict


@dataclass
class Metrics:
    """
    Infrastructure health for the prover, store and RPC clients.

    Counters are monotonically increasing; gauges hold the last observation.
    """

    counters: Dict[str, int] = field(default_factory=dict)
    gauges: Dict[str, float] = field(default_factory=dict)

    def inc(self, name: str, by: int = 1) -> None:
        self.counters[name] = self.counters.get(name, 0) + by

    def observe(self, name: str, value: float) -> None:
        self.gauges[name] = float(value)

    def snapshot(self) -> dict:
        """Copy of current counters and gauges (safe to serialize)."""
        return {
            "counters": dict(self.counters),
            "gauges": dict(self.gauges),
        }
