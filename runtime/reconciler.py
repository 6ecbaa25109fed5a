from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional

from core.model import SERIES_EPOCH_COUNT, SERIES_LATEST_NONZERO, Emission, ShareSnapshot
from observability.metrics import Metrics
from runtime.sink import EmitError, MetricSink
from runtime.watermark import WatermarkTracker

log = logging.getLogger("shares_exporter.reconciler")

STATE_UP_TO_DATE = "up_to_date"
STATE_EMITTED = "emitted"
STATE_PARTIAL = "partial"
STATE_FAILED = "failed"
STATE_SKIPPED = "skipped"


@dataclass
class ChainSummary:
    chain: str
    state: str
    watermark_before: int
    watermark_after: int
    emitted: int = 0
    failed: int = 0
    reason: str = ""


@dataclass
class TickSummary:
    chains: Dict[str, ChainSummary] = field(default_factory=dict)

    @property
    def emitted(self) -> int:
        return sum(s.emitted for s in self.chains.values())

    @property
    def failed(self) -> int:
        return sum(s.failed for s in self.chains.values())

    def count_state(self, state: str) -> int:
        return sum(1 for s in self.chains.values() if s.state == state)


class Reconciler:
    """Диф snapshot store проти watermark і публікація нових фактів.

    Усередині ланцюга epoch-и йдуть строго за зростанням. Watermark рухається
    лише поки префікс успіхів неперервний: після першої помилки решта epoch-ів
    ще публікується, але watermark стоїть, і наступний tick почне з помилкового.
    Пара epoch_count(max) + latest_nonzero - одна одиниця роботи для max epoch.
    """

    def __init__(self, tracker: WatermarkTracker, sink: MetricSink, metrics: Optional[Metrics] = None) -> None:
        self._tracker = tracker
        self._sink = sink
        self._metrics = metrics

    def run_tick(self, snapshot: ShareSnapshot) -> TickSummary:
        summary = TickSummary()
        for chain in snapshot.chains():
            mark = self._tracker.get(chain)
            try:
                chain_summary = self._reconcile_chain(chain, snapshot)
            except Exception as exc:  # noqa: BLE001
                log.exception("Ланцюг %s: неочікувана помилка, пропуск до наступного tick: %s", chain, exc)
                chain_summary = ChainSummary(
                    chain=chain,
                    state=STATE_FAILED,
                    watermark_before=mark,
                    watermark_after=self._tracker.get(chain),
                    reason="unexpected_error",
                )
            summary.chains[chain] = chain_summary
        return summary

    def _reconcile_chain(self, chain: str, snapshot: ShareSnapshot) -> ChainSummary:
        last_epoch = self._tracker.get(chain)
        counts = snapshot.positive_counts.get(chain)
        if not counts:
            return self._skip(chain, last_epoch, "missing_counts")
        if chain not in snapshot.max_epochs:
            return self._skip(chain, last_epoch, "missing_max_epoch")
        current_max = int(snapshot.max_epochs[chain])
        if current_max <= last_epoch:
            return ChainSummary(
                chain=chain,
                state=STATE_UP_TO_DATE,
                watermark_before=last_epoch,
                watermark_after=last_epoch,
            )

        result = ChainSummary(chain=chain, state=STATE_EMITTED, watermark_before=last_epoch, watermark_after=last_epoch)
        contiguous = True
        for epoch in _pending_epochs(counts, last_epoch, current_max):
            value = int(counts[epoch])
            if value <= 0:
                continue
            ok = self._emit(Emission(SERIES_EPOCH_COUNT, chain, epoch, value), result)
            if not ok:
                contiguous = False
            elif contiguous and epoch < current_max:
                self._tracker.advance(chain, epoch)

        latest_ok = True
        latest_value = int(counts.get(current_max, 0))
        if latest_value > 0:
            latest_ok = self._emit(Emission(SERIES_LATEST_NONZERO, chain, current_max, latest_value), result)
        if contiguous and latest_ok:
            self._tracker.advance(chain, current_max)

        result.watermark_after = self._tracker.get(chain)
        if result.failed and result.emitted:
            result.state = STATE_PARTIAL
        elif result.failed:
            result.state = STATE_FAILED
        log.info(
            "Ланцюг %s: epoch (%s, %s] emitted=%s failed=%s watermark=%s",
            chain,
            last_epoch,
            current_max,
            result.emitted,
            result.failed,
            result.watermark_after,
        )
        return result

    def _emit(self, emission: Emission, result: ChainSummary) -> bool:
        try:
            self._sink.emit(emission)
        except EmitError as exc:
            log.warning(
                "Emission %s{chain=%s} epoch=%s не вдалася: %s",
                emission.series,
                emission.chain,
                emission.epoch,
                exc,
            )
            return self._record(emission, result, ok=False)
        except Exception as exc:  # noqa: BLE001
            log.error(
                "Emission %s{chain=%s} epoch=%s: неочікувана помилка sink: %s",
                emission.series,
                emission.chain,
                emission.epoch,
                exc,
                exc_info=True,
            )
            return self._record(emission, result, ok=False)
        return self._record(emission, result, ok=True)

    def _record(self, emission: Emission, result: ChainSummary, ok: bool) -> bool:
        if ok:
            result.emitted += 1
        else:
            result.failed += 1
        if self._metrics is not None:
            self._metrics.emissions_total.labels(series=emission.series, state="ok" if ok else "error").inc()
        return ok

    def _skip(self, chain: str, last_epoch: int, reason: str) -> ChainSummary:
        log.warning("Ланцюг %s пропущено цього tick: %s", chain, reason)
        if self._metrics is not None:
            self._metrics.chains_skipped_total.labels(reason=reason).inc()
        return ChainSummary(
            chain=chain,
            state=STATE_SKIPPED,
            watermark_before=last_epoch,
            watermark_after=last_epoch,
            reason=reason,
        )


def _pending_epochs(counts: Mapping[int, int], last_epoch: int, current_max: int) -> list:
    return sorted(e for e in counts if last_epoch < e <= current_max)
