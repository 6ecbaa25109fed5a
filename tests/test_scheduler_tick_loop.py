from __future__ import annotations

import pytest
from prometheus_client import CollectorRegistry

from core.model import SERIES_EPOCH_COUNT, ShareSnapshot
from observability.metrics import create_metrics
from runtime.reconciler import STATE_SKIPPED, Reconciler
from runtime.scheduler import Scheduler, Ticker
from runtime.watermark import WatermarkTracker
from tests.fakes import RecordingSink, StaticSource


def _build(source: StaticSource, interval_s: float = 0.01):
    registry = CollectorRegistry()
    metrics = create_metrics(registry)
    tracker = WatermarkTracker(metrics=metrics)
    sink = RecordingSink()
    reconciler = Reconciler(tracker=tracker, sink=sink, metrics=metrics)
    scheduler = Scheduler(source=source, reconciler=reconciler, interval_s=interval_s, metrics=metrics)
    return scheduler, tracker, sink, registry


def test_store_down_abandons_tick_without_advancing() -> None:
    source = StaticSource({"alpha": {5: 10}})
    scheduler, tracker, sink, registry = _build(source)
    source.down = True

    assert scheduler.run_once() is None
    assert sink.attempts == []
    assert tracker.snapshot() == {}
    assert registry.get_sample_value("shares_exporter_ticks_abandoned_total") == 1.0

    source.down = False
    summary = scheduler.run_once()
    assert summary is not None
    assert tracker.get("alpha") == 5
    assert registry.get_sample_value("shares_exporter_ticks_total") == 1.0


def test_run_forever_retries_after_outage_until_stopped() -> None:
    source = StaticSource({"alpha": {1: 2}})
    scheduler, tracker, sink, registry = _build(source)
    source.down = True
    original = source.snapshot

    def _snapshot() -> ShareSnapshot:
        if source.calls == 1:
            source.down = False
        if source.calls >= 2:
            scheduler.stop()
        return original()

    source.snapshot = _snapshot  # type: ignore[method-assign]
    scheduler.run_forever()

    assert source.calls == 3
    assert registry.get_sample_value("shares_exporter_ticks_abandoned_total") == 1.0
    assert registry.get_sample_value("shares_exporter_ticks_total") == 2.0
    assert sink.values(SERIES_EPOCH_COUNT, "alpha") == [(1, 2)]
    assert tracker.get("alpha") == 1


def test_run_forever_survives_unexpected_tick_error() -> None:
    source = StaticSource({"alpha": {1: 2}})
    scheduler, _, _, registry = _build(source)
    calls = {"n": 0}

    def _broken_snapshot() -> ShareSnapshot:
        calls["n"] += 1
        if calls["n"] >= 2:
            scheduler.stop()
        raise KeyError("unexpected")

    source.snapshot = _broken_snapshot  # type: ignore[method-assign]
    scheduler.run_forever()

    assert calls["n"] == 2
    assert registry.get_sample_value("shares_exporter_tick_errors_total") == 2.0


def test_ticker_stop_interrupts_wait() -> None:
    ticker = Ticker(interval_s=60.0)
    ticker.stop()
    assert ticker.wait() is False
    assert ticker.stopped() is True


def test_ticker_rejects_non_positive_interval() -> None:
    with pytest.raises(ValueError):
        Ticker(interval_s=0)


def test_run_once_reports_skipped_chains() -> None:
    source = StaticSource({"alpha": {1: 2}, "orphan": {3: 1}}, max_epochs={"alpha": 1})
    scheduler, tracker, sink, _ = _build(source)

    summary = scheduler.run_once()

    assert summary is not None
    assert summary.count_state(STATE_SKIPPED) == 1
    assert summary.chains["orphan"].reason == "missing_max_epoch"
    assert tracker.snapshot() == {"alpha": 1}
    assert {e.chain for e in sink.emitted} == {"alpha"}
