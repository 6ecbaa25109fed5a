from __future__ import annotations

from core.model import SERIES_EPOCH_COUNT, SERIES_LATEST_NONZERO, ShareSnapshot
from runtime.reconciler import STATE_FAILED, STATE_PARTIAL, Reconciler
from runtime.watermark import WatermarkTracker
from tests.fakes import RecordingSink


def _snapshot() -> ShareSnapshot:
    return ShareSnapshot(
        positive_counts={"alpha": {1: 5, 2: 6, 3: 7, 4: 8, 5: 9}, "beta": {1: 1, 2: 2}},
        max_epochs={"alpha": 5, "beta": 2},
    )


def test_failed_epoch_stops_watermark_at_contiguous_prefix() -> None:
    tracker = WatermarkTracker()
    sink = RecordingSink(fail_on={(SERIES_EPOCH_COUNT, "alpha", 3)})
    reconciler = Reconciler(tracker=tracker, sink=sink)

    summary = reconciler.run_tick(_snapshot())

    # epoch 4 і 5 все одно публікуються, але watermark тримається на 2
    assert [e for e, _ in sink.values(SERIES_EPOCH_COUNT, "alpha")] == [1, 2, 4, 5]
    assert tracker.get("alpha") == 2
    assert summary.chains["alpha"].state == STATE_PARTIAL
    assert summary.chains["alpha"].failed == 1
    assert tracker.get("beta") == 2


def test_next_tick_resumes_from_failed_epoch() -> None:
    tracker = WatermarkTracker()
    sink = RecordingSink(fail_on={(SERIES_EPOCH_COUNT, "alpha", 3)})
    reconciler = Reconciler(tracker=tracker, sink=sink)
    reconciler.run_tick(_snapshot())

    sink.fail_on.clear()
    sink.clear()
    reconciler.run_tick(_snapshot())

    assert [e for e, _ in sink.values(SERIES_EPOCH_COUNT, "alpha")] == [3, 4, 5]
    assert sink.values(SERIES_EPOCH_COUNT, "beta") == []
    assert tracker.get("alpha") == 5


def test_failure_on_first_epoch_leaves_watermark_untouched() -> None:
    tracker = WatermarkTracker()
    tracker.advance("beta", 0)
    sink = RecordingSink(fail_on={(SERIES_EPOCH_COUNT, "beta", 1)})
    reconciler = Reconciler(tracker=tracker, sink=sink)

    summary = reconciler.run_tick(_snapshot())

    assert tracker.get("beta") == 0
    assert summary.chains["beta"].state == STATE_PARTIAL
    assert tracker.get("alpha") == 5


def test_all_emissions_failing_marks_chain_failed() -> None:
    tracker = WatermarkTracker()
    sink = RecordingSink(
        fail_on={
            (SERIES_EPOCH_COUNT, "beta", 1),
            (SERIES_EPOCH_COUNT, "beta", 2),
            (SERIES_LATEST_NONZERO, "beta", 2),
        }
    )
    reconciler = Reconciler(tracker=tracker, sink=sink)

    snapshot = ShareSnapshot(positive_counts={"beta": {1: 1, 2: 2}}, max_epochs={"beta": 2})
    summary = reconciler.run_tick(snapshot)

    assert summary.chains["beta"].state == STATE_FAILED
    assert summary.chains["beta"].emitted == 0
    assert tracker.get("beta") == 0


def test_watermark_non_decreasing_across_ticks() -> None:
    tracker = WatermarkTracker()
    sink = RecordingSink()
    reconciler = Reconciler(tracker=tracker, sink=sink)
    counts: dict = {"alpha": {}}
    history = []
    for epoch in range(1, 8):
        counts["alpha"][epoch] = epoch * 10
        sink.fail_on = {(SERIES_EPOCH_COUNT, "alpha", epoch)} if epoch % 3 == 0 else set()
        reconciler.run_tick(ShareSnapshot(positive_counts={"alpha": dict(counts["alpha"])}, max_epochs={"alpha": epoch}))
        history.append(tracker.get("alpha"))
    assert history == sorted(history)
    assert history[-1] == 7
