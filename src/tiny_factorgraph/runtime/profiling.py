"""
Lightweight profiling hooks.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict


@dataclass
class ProfileStats:
    forward_calls: int = 0
    backward_calls: int = 0
    skipped: int = 0
    passes: int = 0
    events: Dict[str, float] = field(default_factory=dict)


class Profiler:
    def __init__(self) -> None:
        self.stats = ProfileStats()

    def record_forward(self, name: str, duration_ms: float) -> None:
        self.stats.forward_calls += 1
        self.record_event(f"{name}.forward", duration_ms)

    def record_backward(self, name: str, duration_ms: float) -> None:
        self.stats.backward_calls += 1
        self.record_event(f"{name}.backward", duration_ms)

    def record_skip(self) -> None:
        self.stats.skipped += 1

    def record_pass(self) -> None:
        self.stats.passes += 1

    def record_event(self, name: str, duration_ms: float) -> None:
        self.stats.events[name] = self.stats.events.get(name, 0.0) + duration_ms

    def snapshot(self) -> ProfileStats:
        return self.stats
