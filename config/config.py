from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, replace
from typing import Any, Dict, Mapping, Optional

from core.model import parse_cold_start

_TABLE_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)?$")


@dataclass(frozen=True)
class Config:
    """SSOT конфіг експортера share-лічильників."""

    ops_dsn: str = ""  # SQLAlchemy URL, напр. mysql+pymysql://user:pw@host:3306/ops_db
    share_table: str = "shares_epoch_counts"

    # Ціль виводу: рівно одна з двох
    output_path: str = ""  # каталог для <chain>.prom (textfile collector)
    push_url: str = ""  # адреса Pushgateway
    push_job: str = ""  # шаблон job; порожньо -> job = chain
    push_timeout_s: float = 10.0

    interval_minutes: int = 5
    cold_start: str = "skip"  # skip | replay

    metrics_enabled: bool = False  # власний /metrics експортера
    metrics_port: int = 9210

    log_level: str = "INFO"

    def sink_kind(self) -> str:
        if self.push_url:
            return "push"
        return "file"

    def interval_s(self) -> float:
        return float(self.interval_minutes) * 60.0


def _parse_bool(value: str) -> Optional[bool]:
    val = value.strip().lower()
    if val in {"1", "true", "yes"}:
        return True
    if val in {"0", "false", "no"}:
        return False
    return None


def _env_overrides_from_env(env: Mapping[str, str]) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    ops_dsn = env.get("SHARES_OPS_DSN", "").strip()
    if ops_dsn:
        overrides["ops_dsn"] = ops_dsn
    share_table = env.get("SHARES_TABLE", "").strip()
    if share_table:
        overrides["share_table"] = share_table
    output_path = env.get("SHARES_OUTPUT_PATH", "").strip()
    if output_path:
        overrides["output_path"] = output_path
    push_url = env.get("SHARES_PUSH_URL", "").strip()
    if push_url:
        overrides["push_url"] = push_url
    push_job = env.get("SHARES_PUSH_JOB", "").strip()
    if push_job:
        overrides["push_job"] = push_job
    interval = env.get("SHARES_INTERVAL_MINUTES", "").strip()
    if interval:
        overrides["interval_minutes"] = int(interval)
    cold_start = env.get("SHARES_COLD_START", "").strip()
    if cold_start:
        overrides["cold_start"] = cold_start
    metrics_enabled = _parse_bool(env.get("SHARES_METRICS_ENABLED", ""))
    if metrics_enabled is not None:
        overrides["metrics_enabled"] = metrics_enabled
    metrics_port = env.get("SHARES_METRICS_PORT", "").strip()
    if metrics_port:
        overrides["metrics_port"] = int(metrics_port)
    log_level = env.get("SHARES_LOG_LEVEL", "").strip()
    if log_level:
        overrides["log_level"] = log_level.upper()
    return overrides


def load_config(
    overrides: Optional[Mapping[str, Any]] = None,
    env: Optional[Mapping[str, str]] = None,
) -> Config:
    """Дефолти <- env (SHARES_*) <- явні overrides (CLI)."""
    env_overrides = _env_overrides_from_env(os.environ if env is None else env)
    explicit = {k: v for k, v in dict(overrides or {}).items() if v is not None}
    cfg = replace(Config(), **{**env_overrides, **explicit})
    validate_config(cfg)
    return cfg


def validate_config(cfg: Config) -> None:
    if not cfg.ops_dsn:
        raise ValueError("ops_dsn обов'язковий (SHARES_OPS_DSN або --ops-dsn)")
    if cfg.output_path and cfg.push_url:
        raise ValueError("output_path та push_url взаємовиключні: задайте лише одну ціль")
    if not cfg.output_path and not cfg.push_url:
        raise ValueError("Потрібна ціль виводу: output_path або push_url")
    if cfg.interval_minutes <= 0:
        raise ValueError("interval_minutes має бути > 0")
    if cfg.push_timeout_s <= 0:
        raise ValueError("push_timeout_s має бути > 0")
    parse_cold_start(cfg.cold_start)
    if not _TABLE_RE.match(cfg.share_table):
        raise ValueError(f"Некоректна назва таблиці: {cfg.share_table}")
    if cfg.push_job and "{chain}" not in cfg.push_job:
        logging.getLogger("config").warning(
            "push_job=%s без {chain}: усі ланцюги ділитимуть одну групу job", cfg.push_job
        )
