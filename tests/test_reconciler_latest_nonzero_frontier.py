from __future__ import annotations

from core.model import SERIES_EPOCH_COUNT, SERIES_LATEST_NONZERO, ShareSnapshot
from runtime.reconciler import Reconciler
from runtime.watermark import WatermarkTracker
from tests.fakes import RecordingSink


def test_latest_nonzero_skipped_when_max_epoch_count_is_zero() -> None:
    tracker = WatermarkTracker()
    sink = RecordingSink()
    reconciler = Reconciler(tracker=tracker, sink=sink)

    snapshot = ShareSnapshot(positive_counts={"beta": {8: 2, 9: 8, 12: 0}}, max_epochs={"beta": 12})
    reconciler.run_tick(snapshot)

    assert sink.values(SERIES_EPOCH_COUNT, "beta") == [(8, 2), (9, 8)]
    assert sink.values(SERIES_LATEST_NONZERO, "beta") == []
    assert tracker.get("beta") == 12


def test_latest_nonzero_skipped_when_max_epoch_has_no_entry() -> None:
    tracker = WatermarkTracker()
    sink = RecordingSink()
    reconciler = Reconciler(tracker=tracker, sink=sink)

    snapshot = ShareSnapshot(positive_counts={"beta": {9: 8}}, max_epochs={"beta": 12})
    reconciler.run_tick(snapshot)
    reconciler.run_tick(snapshot)

    assert sink.values(SERIES_LATEST_NONZERO, "beta") == []
    assert sink.values(SERIES_EPOCH_COUNT, "beta") == [(9, 8)]


def test_latest_nonzero_emitted_once_per_processing_tick() -> None:
    tracker = WatermarkTracker()
    sink = RecordingSink()
    reconciler = Reconciler(tracker=tracker, sink=sink)

    reconciler.run_tick(ShareSnapshot(positive_counts={"gamma": {1: 4}}, max_epochs={"gamma": 1}))
    reconciler.run_tick(ShareSnapshot(positive_counts={"gamma": {1: 4, 2: 6}}, max_epochs={"gamma": 2}))

    assert sink.values(SERIES_LATEST_NONZERO, "gamma") == [(1, 4), (2, 6)]


def test_latest_nonzero_failure_keeps_frontier_pending() -> None:
    tracker = WatermarkTracker()
    sink = RecordingSink(fail_on={(SERIES_LATEST_NONZERO, "alpha", 7)})
    reconciler = Reconciler(tracker=tracker, sink=sink)
    snapshot = ShareSnapshot(positive_counts={"alpha": {5: 10, 7: 3}}, max_epochs={"alpha": 7})

    reconciler.run_tick(snapshot)
    assert tracker.get("alpha") == 5

    sink.fail_on.clear()
    sink.clear()
    reconciler.run_tick(snapshot)

    assert sink.values(SERIES_EPOCH_COUNT, "alpha") == [(7, 3)]
    assert sink.values(SERIES_LATEST_NONZERO, "alpha") == [(7, 3)]
    assert tracker.get("alpha") == 7
