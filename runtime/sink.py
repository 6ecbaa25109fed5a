from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Tuple

from prometheus_client import CollectorRegistry, Gauge, pushadd_to_gateway, write_to_textfile
from prometheus_client.exposition import default_handler
from typing_extensions import Protocol

from config.config import Config
from core.model import SERIES_EPOCH_COUNT, SERIES_HELP, SERIES_LATEST_NONZERO, Emission

log = logging.getLogger("shares_exporter.sink")

_UNSAFE_FILE_CHARS = re.compile(r"[^A-Za-z0-9_.-]")


class EmitError(RuntimeError):
    """Публікація одного sample не вдалася (unit повторюється наступного tick)."""


class MetricSink(Protocol):
    """Контракт sink: emit або EmitError."""

    def emit(self, emission: Emission) -> None: ...


def ensure_output_path(path: Path) -> None:
    if path.is_dir():
        log.info("Каталог виводу вже існує: %s", path)
        return
    log.info("Каталог виводу відсутній, створюю: %s", path)
    path.mkdir(mode=0o755, parents=True, exist_ok=True)
    log.info("Каталог виводу створено: %s", path)


def chain_file_name(chain: str) -> str:
    safe = _UNSAFE_FILE_CHARS.sub("_", chain).lstrip(".")
    return f"{safe or '_'}.prom"


class FileMetricSink:
    """Textfile-collector backend: один <chain>.prom на ланцюг, атомарний перезапис."""

    def __init__(self, output_dir: Path) -> None:
        self._output_dir = Path(output_dir)
        self._registries: Dict[str, Tuple[CollectorRegistry, Dict[str, Gauge]]] = {}
        self._owners: Dict[str, str] = {}

    def path_for(self, chain: str) -> Path:
        return self._output_dir / chain_file_name(chain)

    def emit(self, emission: Emission) -> None:
        name = chain_file_name(emission.chain)
        owner = self._owners.setdefault(name, emission.chain)
        if owner != emission.chain:
            raise EmitError(f"Файл {name} вже зайнятий ланцюгом {owner!r}, пропуск {emission.chain!r}")
        registry, gauges = self._registry_for(emission.chain)
        gauge = gauges.get(emission.series)
        if gauge is None:
            raise EmitError(f"Невідома серія: {emission.series}")
        gauge.labels(chain=emission.chain).set(emission.value)
        path = self.path_for(emission.chain)
        try:
            write_to_textfile(str(path), registry)
        except OSError as exc:
            raise EmitError(f"Не вдалося записати {path}: {exc}") from exc
        log.debug("Записано %s{chain=%s} %s у %s", emission.series, emission.chain, emission.value, path)

    def _registry_for(self, chain: str) -> Tuple[CollectorRegistry, Dict[str, Gauge]]:
        entry = self._registries.get(chain)
        if entry is None:
            registry = CollectorRegistry()
            gauges = {
                series: Gauge(series, SERIES_HELP[series], ["chain"], registry=registry)
                for series in (SERIES_EPOCH_COUNT, SERIES_LATEST_NONZERO)
            }
            entry = (registry, gauges)
            self._registries[chain] = entry
        return entry


class PushMetricSink:
    """Pushgateway backend: один POST на emission у групу job."""

    def __init__(
        self,
        push_url: str,
        job_template: str = "",
        timeout_s: float = 10.0,
        handler: Optional[Callable[..., Any]] = None,
    ) -> None:
        self._push_url = push_url
        self._job_template = job_template
        self._timeout_s = float(timeout_s)
        self._handler = handler or default_handler

    def job_for(self, chain: str) -> str:
        if not self._job_template:
            return chain
        return self._job_template.replace("{chain}", chain)

    def emit(self, emission: Emission) -> None:
        help_text = SERIES_HELP.get(emission.series)
        if help_text is None:
            raise EmitError(f"Невідома серія: {emission.series}")
        registry = CollectorRegistry()
        gauge = Gauge(emission.series, help_text, ["chain"], registry=registry)
        gauge.labels(chain=emission.chain).set(emission.value)
        job = self.job_for(emission.chain)
        try:
            pushadd_to_gateway(
                self._push_url,
                job=job,
                registry=registry,
                timeout=self._timeout_s,
                handler=self._handler,
            )
        except Exception as exc:  # noqa: BLE001
            raise EmitError(f"Push {emission.series} job={job} не вдався: {exc}") from exc
        log.debug("Push %s{chain=%s} %s job=%s", emission.series, emission.chain, emission.value, job)


def build_sink(config: Config) -> MetricSink:
    if config.sink_kind() == "push":
        return PushMetricSink(
            push_url=config.push_url,
            job_template=config.push_job,
            timeout_s=config.push_timeout_s,
        )
    return FileMetricSink(output_dir=Path(os.path.expanduser(config.output_path)))
