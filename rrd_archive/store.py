"""
In-memory multi-resolution sample store.

A DataArchive holds one tier's history: a DataSet per data-source id, each
kept newest first and bounded by the tier's sample budget. The store assumes a
single writer; the archive maintainer only mutates it from its event loop.
"""

import bisect
from typing import Dict, Iterator, List, Optional, Tuple

from rrd_archive.schemas import DataPoint


def _descending_key(point: DataPoint) -> int:
    return -point.timestamp_ms


class DataSet:
    """Bounded history for a single data source, ordered newest first."""

    def __init__(self, data_source_id: str, max_points: int):
        self.data_source_id = data_source_id
        self.max_points = max_points
        self._points: List[DataPoint] = []

    def insert(self, point: DataPoint) -> None:
        """
        Insert a point at its descending-timestamp position.

        A point with a timestamp already present replaces the stored value.
        Entries beyond max_points (the oldest ones) are evicted.
        """
        index = bisect.bisect_left(self._points, -point.timestamp_ms, key=_descending_key)
        if index < len(self._points) and self._points[index].timestamp_ms == point.timestamp_ms:
            self._points[index] = point
        else:
            self._points.insert(index, point)
        self.truncate()

    def truncate(self) -> None:
        """Drop the oldest points beyond max_points."""
        if len(self._points) > self.max_points:
            del self._points[max(self.max_points, 0) :]

    @property
    def points(self) -> Tuple[DataPoint, ...]:
        """Immutable snapshot of the history, newest first."""
        return tuple(self._points)

    @property
    def latest(self) -> Optional[DataPoint]:
        return self._points[0] if self._points else None

    def __len__(self) -> int:
        return len(self._points)

    def __iter__(self) -> Iterator[DataPoint]:
        return iter(self._points)

    def __repr__(self) -> str:
        return f"DataSet({self.data_source_id!r}, {len(self._points)}/{self.max_points})"


class DataArchive:
    """
    All data sets of one resolution tier.

    Args:
        max_points: Sample budget applied to every data set in this tier
    """

    def __init__(self, max_points: int):
        self._max_points = max_points
        self._sets: Dict[str, DataSet] = {}

    @property
    def max_points(self) -> int:
        return self._max_points

    def set_max_points(self, max_points: int) -> None:
        """Change the sample budget, trimming existing histories to fit."""
        self._max_points = max_points
        for data_set in self._sets.values():
            data_set.max_points = max_points
            data_set.truncate()

    def insert(self, data_source_id: str, point: DataPoint) -> None:
        """Insert a point, creating the data set on first use."""
        if self._max_points <= 0:
            return

        data_set = self._sets.get(data_source_id)
        if data_set is None:
            data_set = DataSet(data_source_id, self._max_points)
            self._sets[data_source_id] = data_set
        data_set.insert(point)

    def get(self, data_source_id: str) -> Tuple[DataPoint, ...]:
        """Copy of the history for an id; empty if the id is unknown."""
        data_set = self._sets.get(data_source_id)
        return data_set.points if data_set is not None else ()

    def try_get(self, data_source_id: str) -> Optional[DataSet]:
        """The live data set for an id without copying, or None."""
        return self._sets.get(data_source_id)

    def clear(self) -> None:
        """Forget every history but keep the configured max_points."""
        self._sets.clear()

    @property
    def data_source_ids(self) -> List[str]:
        return sorted(self._sets)

    def __contains__(self, data_source_id: object) -> bool:
        return data_source_id in self._sets

    def __len__(self) -> int:
        return len(self._sets)
