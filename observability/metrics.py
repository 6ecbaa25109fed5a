from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Gauge,
    GCCollector,
    PlatformCollector,
    ProcessCollector,
    start_http_server,
)


@dataclass
class Metrics:
    """Власні метрики експортера (не плутати з опублікованими shares_*)."""

    ticks_total: Counter
    ticks_abandoned_total: Counter
    tick_errors_total: Counter
    last_tick_ts_ms: Gauge
    last_tick_duration_ms: Gauge
    emissions_total: Counter
    chains_skipped_total: Counter
    rows_rejected_total: Counter
    watermark_epoch: Gauge
    registry: CollectorRegistry


def create_metrics(registry: Optional[CollectorRegistry] = None) -> Metrics:
    """Без registry створює власний (з process/platform/gc колекторами), який і віддає /metrics."""
    if registry is None:
        registry = CollectorRegistry()
        ProcessCollector(registry=registry)
        PlatformCollector(registry=registry)
        GCCollector(registry=registry)
    ticks_total = Counter(
        "shares_exporter_ticks_total",
        "Кількість завершених tick",
        registry=registry,
    )
    ticks_abandoned_total = Counter(
        "shares_exporter_ticks_abandoned_total",
        "Кількість tick, відкинутих через недоступний store",
        registry=registry,
    )
    tick_errors_total = Counter(
        "shares_exporter_tick_errors_total",
        "Кількість неочікуваних помилок tick",
        registry=registry,
    )
    last_tick_ts_ms = Gauge(
        "shares_exporter_last_tick_ts_ms",
        "Час завершення останнього tick у ms",
        registry=registry,
    )
    last_tick_duration_ms = Gauge(
        "shares_exporter_last_tick_duration_ms",
        "Тривалість останнього tick у ms",
        registry=registry,
    )
    emissions_total = Counter(
        "shares_exporter_emissions_total",
        "Кількість спроб публікації",
        ["series", "state"],
        registry=registry,
    )
    chains_skipped_total = Counter(
        "shares_exporter_chains_skipped_total",
        "Кількість пропущених ланцюгів",
        ["reason"],
        registry=registry,
    )
    rows_rejected_total = Counter(
        "shares_exporter_rows_rejected_total",
        "Кількість некоректних рядків store",
        ["view"],
        registry=registry,
    )
    watermark_epoch = Gauge(
        "shares_exporter_watermark_epoch",
        "Поточний watermark ланцюга",
        ["chain"],
        registry=registry,
    )
    return Metrics(
        ticks_total=ticks_total,
        ticks_abandoned_total=ticks_abandoned_total,
        tick_errors_total=tick_errors_total,
        last_tick_ts_ms=last_tick_ts_ms,
        last_tick_duration_ms=last_tick_duration_ms,
        emissions_total=emissions_total,
        chains_skipped_total=chains_skipped_total,
        rows_rejected_total=rows_rejected_total,
        watermark_epoch=watermark_epoch,
        registry=registry,
    )


def start_metrics_server(port: int, registry: CollectorRegistry) -> None:
    """Запускає /metrics сервер для registry експортера."""
    start_http_server(port, registry=registry)
