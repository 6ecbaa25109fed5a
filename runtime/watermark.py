from __future__ import annotations

import threading
from typing import Dict, List, Mapping, Optional

from core.model import ColdStartPolicy
from observability.metrics import Metrics

WATERMARK_FLOOR = 0


class WatermarkTracker:
    """Per-chain watermark: найвищий epoch, вже підтверджено опублікований.

    Лише в пам'яті, ніколи не зменшується, ланцюги не видаляються.
    """

    def __init__(self, metrics: Optional[Metrics] = None) -> None:
        self._marks: Dict[str, int] = {}
        self._lock = threading.Lock()
        self._metrics = metrics

    def get(self, chain: str) -> int:
        with self._lock:
            return self._marks.get(chain, WATERMARK_FLOOR)

    def advance(self, chain: str, epoch: int) -> bool:
        """True, якщо watermark зрушив; регрес і повтор - no-op."""
        epoch = int(epoch)
        with self._lock:
            if epoch <= self._marks.get(chain, WATERMARK_FLOOR):
                return False
            self._marks[chain] = epoch
        if self._metrics is not None:
            self._metrics.watermark_epoch.labels(chain=chain).set(epoch)
        return True

    def seed(self, max_epochs: Mapping[str, int], policy: ColdStartPolicy) -> int:
        """Cold start: skip -> watermark = поточний max, replay -> floor."""
        if policy == ColdStartPolicy.REPLAY:
            return 0
        seeded = 0
        for chain, epoch in max_epochs.items():
            if self.advance(chain, epoch):
                seeded += 1
        return seeded

    def chains(self) -> List[str]:
        with self._lock:
            return sorted(self._marks)

    def snapshot(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._marks)
