from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from threading import Lock
from typing import Dict


@dataclass
class RewardsSnapshot:
    transitions: Dict[str, int]
    rejections: Dict[str, int]
    ledger_conflicts: int

    def as_dict(self) -> Dict[str, object]:
        return {
            "transitions": dict(self.transitions),
            "rejections": dict(self.rejections),
            "ledger_conflicts": self.ledger_conflicts,
        }


class RewardsObservabilityStore:
    """Count stamp-card transitions, rejections and version conflicts."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._transitions: Dict[str, int] = defaultdict(int)
        self._rejections: Dict[str, int] = defaultdict(int)
        self._conflicts = 0

    def record_transition(self, outcome: str, source: str) -> None:
        with self._lock:
            self._transitions[outcome] += 1
            self._transitions[f"source:{source}"] += 1

    def record_rejection(self, code: str) -> None:
        with self._lock:
            self._rejections[code] += 1

    def record_conflict(self) -> None:
        with self._lock:
            self._conflicts += 1

    def snapshot(self) -> RewardsSnapshot:
        with self._lock:
            return RewardsSnapshot(
                transitions=dict(self._transitions),
                rejections=dict(self._rejections),
                ledger_conflicts=self._conflicts,
            )

    def reset(self) -> None:
        with self._lock:
            self._transitions.clear()
            self._rejections.clear()
            self._conflicts = 0


_STORE = RewardsObservabilityStore()


def get_rewards_store() -> RewardsObservabilityStore:
    return _STORE


__all__ = ["get_rewards_store", "RewardsObservabilityStore", "RewardsSnapshot"]
