"""Bounded per-position price history used for peak/trough detection."""

from __future__ import annotations
from collections import deque
from typing import Deque, Dict, Iterable, List


class PriceHistory:
    """One ring buffer per position id; buffers of closed positions are evicted."""

    def __init__(self, maxlen: int = 10):
        self.maxlen = maxlen
        self._buffers: Dict[str, Deque[float]] = {}

    def record(self, position_id: str, price: float) -> None:
        buf = self._buffers.get(position_id)
        if buf is None:
            buf = self._buffers[position_id] = deque(maxlen=self.maxlen)
        buf.append(price)

    def samples(self, position_id: str) -> List[float]:
        return list(self._buffers.get(position_id, ()))

    def retain(self, open_ids: Iterable[str]) -> None:
        keep = set(open_ids)
        for pid in [pid for pid in self._buffers if pid not in keep]:
            del self._buffers[pid]

    def __contains__(self, position_id: str) -> bool:
        return position_id in self._buffers

    def __len__(self) -> int:
        return len(self._buffers)
