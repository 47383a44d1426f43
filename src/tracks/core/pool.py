"""
Feature pool: the handoff between analysis and timeline synthesis.
"""

from typing import Any, Iterator


class FeaturePool:
    """
    Append-only store of named feature series from one analysis run.

    A series is either scalar-per-frame, vector-per-frame or
    label-per-frame. Every key is written at most once; the planner
    finishes all writes before the synthesizer starts reading.
    """

    def __init__(self):
        self._series: dict[str, Any] = {}

    def put(self, key: str, series: Any) -> None:
        """Store a series under a new key."""
        if key in self._series:
            raise KeyError(f"feature '{key}' already written this run")
        self._series[key] = series

    def has(self, key: str) -> bool:
        return key in self._series

    def get(self, key: str) -> Any:
        """Return the series for a key; callers check has() first."""
        return self._series[key]

    def keys(self) -> list[str]:
        return sorted(self._series)

    def __contains__(self, key: str) -> bool:
        return self.has(key)

    def __iter__(self) -> Iterator[str]:
        return iter(self.keys())

    def __len__(self) -> int:
        return len(self._series)
