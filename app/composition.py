from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from config.config import Config
from core.model import parse_cold_start
from observability.metrics import Metrics, create_metrics, start_metrics_server
from runtime.reconciler import Reconciler
from runtime.scheduler import Scheduler
from runtime.sink import MetricSink, build_sink, ensure_output_path
from runtime.watermark import WatermarkTracker
from store.share_store import ShareStore, SourceUnavailableError

log = logging.getLogger("shares_exporter")


@dataclass
class RuntimeHandles:
    config: Config
    store: ShareStore
    sink: MetricSink
    tracker: WatermarkTracker
    reconciler: Reconciler
    scheduler: Scheduler
    metrics: Optional[Metrics]


def _prepare_output(config: Config) -> None:
    if config.sink_kind() != "file":
        log.info("Ціль виводу: Pushgateway %s", config.push_url)
        return
    try:
        ensure_output_path(Path(config.output_path).expanduser())
    except OSError as exc:
        raise SystemExit(f"Не вдалося створити каталог виводу {config.output_path}: {exc}")


def _connect_store(config: Config, metrics: Optional[Metrics]) -> ShareStore:
    log.info("Підключення до store...")
    try:
        store = ShareStore.from_dsn(config.ops_dsn, table=config.share_table, metrics=metrics)
        store.ping()
    except SourceUnavailableError as exc:
        raise SystemExit(f"Не вдалося підключитися до store: {exc}")
    log.info("Store підключено.")
    return store


def _seed_tracker(config: Config, store: ShareStore, tracker: WatermarkTracker) -> None:
    policy = parse_cold_start(config.cold_start)
    try:
        max_epochs = store.max_positive_epoch()
    except SourceUnavailableError as exc:
        raise SystemExit(f"Не вдалося прочитати стартовий watermark: {exc}")
    seeded = tracker.seed(max_epochs, policy)
    log.info(
        "Cold start=%s: ланцюгів у store=%s, засіяно watermark=%s",
        policy.value,
        len(max_epochs),
        seeded,
    )


def build_runtime(
    config: Config,
    metrics: Optional[Metrics] = None,
    sink: Optional[MetricSink] = None,
    store: Optional[ShareStore] = None,
) -> RuntimeHandles:
    if metrics is None and config.metrics_enabled:
        metrics = create_metrics()
        start_metrics_server(config.metrics_port, metrics.registry)
        log.info("/metrics піднято на порту %s", config.metrics_port)

    if sink is None:
        _prepare_output(config)
        sink = build_sink(config)
    if store is None:
        store = _connect_store(config, metrics)

    tracker = WatermarkTracker(metrics=metrics)
    _seed_tracker(config, store, tracker)

    reconciler = Reconciler(tracker=tracker, sink=sink, metrics=metrics)
    scheduler = Scheduler(
        source=store,
        reconciler=reconciler,
        interval_s=config.interval_s(),
        metrics=metrics,
    )
    return RuntimeHandles(
        config=config,
        store=store,
        sink=sink,
        tracker=tracker,
        reconciler=reconciler,
        scheduler=scheduler,
        metrics=metrics,
    )


def stop_runtime(handles: RuntimeHandles) -> None:
    handles.scheduler.stop()
    handles.store.dispose()
    log.info("Runtime зупинено; watermark=%s", handles.tracker.snapshot())
