from __future__ import annotations

import logging
import threading
import time
from typing import Optional

from typing_extensions import Protocol

from core.model import ShareSnapshot
from observability.metrics import Metrics
from runtime.reconciler import STATE_SKIPPED, Reconciler, TickSummary
from store.share_store import SourceUnavailableError

log = logging.getLogger("shares_exporter.scheduler")


class SnapshotSource(Protocol):
    """Мінімальний контракт store для tick."""

    def snapshot(self) -> ShareSnapshot: ...


def _now_ms() -> int:
    return int(time.time() * 1000)


class Ticker:
    """Фіксований інтервал; пауза лише між tick, stop() перериває очікування."""

    def __init__(self, interval_s: float) -> None:
        if interval_s <= 0:
            raise ValueError("interval_s має бути > 0")
        self.interval_s = float(interval_s)
        self._stop_event = threading.Event()

    def wait(self) -> bool:
        """False, якщо під час очікування прийшов stop()."""
        return not self._stop_event.wait(self.interval_s)

    def stop(self) -> None:
        self._stop_event.set()

    def stopped(self) -> bool:
        return self._stop_event.is_set()


class Scheduler:
    """Послідовний цикл tick: один tick повністю завершується до наступного."""

    def __init__(
        self,
        source: SnapshotSource,
        reconciler: Reconciler,
        interval_s: float,
        metrics: Optional[Metrics] = None,
    ) -> None:
        self._source = source
        self._reconciler = reconciler
        self._ticker = Ticker(interval_s)
        self._metrics = metrics

    @property
    def interval_s(self) -> float:
        return self._ticker.interval_s

    def run_once(self) -> Optional[TickSummary]:
        """Один tick; None, якщо store недоступний і tick відкинуто."""
        started = time.monotonic()
        try:
            snapshot = self._source.snapshot()
        except SourceUnavailableError as exc:
            log.error("Помилка читання share counts: %s", exc)
            log.info("Повтор через %.0f с", self.interval_s)
            if self._metrics is not None:
                self._metrics.ticks_abandoned_total.inc()
            return None
        summary = self._reconciler.run_tick(snapshot)
        duration_ms = int((time.monotonic() - started) * 1000)
        log.info(
            "Tick завершено: chains=%s emitted=%s failed=%s skipped=%s (%s ms)",
            len(summary.chains),
            summary.emitted,
            summary.failed,
            summary.count_state(STATE_SKIPPED),
            duration_ms,
        )
        if self._metrics is not None:
            self._metrics.ticks_total.inc()
            self._metrics.last_tick_ts_ms.set(_now_ms())
            self._metrics.last_tick_duration_ms.set(duration_ms)
        return summary

    def run_forever(self) -> None:
        log.info("Старт циклу: інтервал %.0f с", self.interval_s)
        while not self._ticker.stopped():
            try:
                self.run_once()
            except Exception as exc:  # noqa: BLE001
                log.exception("Неочікувана помилка tick: %s", exc)
                if self._metrics is not None:
                    self._metrics.tick_errors_total.inc()
            log.debug("Очікування наступного tick...")
            if not self._ticker.wait():
                break
        log.info("Цикл зупинено.")

    def stop(self) -> None:
        self._ticker.stop()
