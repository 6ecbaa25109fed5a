from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from app.composition import build_runtime, stop_runtime
from config.config import load_config
from core.env_loader import load_env


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s | %(levelname)s | %(message)s",
    )


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Експорт shares_epoch_counts у Prometheus")
    parser.add_argument("--ops-dsn", help="SQLAlchemy URL, напр. mysql+pymysql://user:pw@host:3306/ops_db")
    target = parser.add_mutually_exclusive_group()
    target.add_argument("--output-path", help="Каталог для .prom файлів (textfile collector)")
    target.add_argument("--push-url", help="Адреса Pushgateway")
    parser.add_argument("--push-job", help="Шаблон job для push, {chain} підставляється")
    parser.add_argument("--interval", type=int, help="Інтервал перевірки у хвилинах (default 5)")
    parser.add_argument("--cold-start", choices=["skip", "replay"], help="Політика стартового watermark")
    parser.add_argument("--table", help="Таблиця з share counts")
    parser.add_argument("--metrics-port", type=int, help="Порт власного /metrics (вмикає його)")
    parser.add_argument("--once", action="store_true", help="Один tick і вихід")
    return parser.parse_args(argv)


def _cli_overrides(args: argparse.Namespace) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {
        "ops_dsn": args.ops_dsn,
        "output_path": args.output_path,
        "push_url": args.push_url,
        "push_job": args.push_job,
        "interval_minutes": args.interval,
        "cold_start": args.cold_start,
        "share_table": args.table,
    }
    if args.metrics_port is not None:
        overrides["metrics_enabled"] = True
        overrides["metrics_port"] = args.metrics_port
    return overrides


def main(argv: Optional[List[str]] = None) -> None:
    root_dir = Path(__file__).resolve().parents[1]
    load_env(root_dir)
    args = _parse_args(argv)
    try:
        config = load_config(overrides=_cli_overrides(args))
    except ValueError as exc:
        _setup_logging("INFO")
        raise SystemExit(f"Некоректна конфігурація: {exc}")
    _setup_logging(config.log_level)
    log = logging.getLogger("shares_exporter")
    log.info(
        "Старт експортера: sink=%s interval=%s хв cold_start=%s table=%s",
        config.sink_kind(),
        config.interval_minutes,
        config.cold_start,
        config.share_table,
    )

    handles = build_runtime(config=config)
    try:
        if args.once:
            handles.scheduler.run_once()
        else:
            handles.scheduler.run_forever()
    except KeyboardInterrupt:
        log.info("Отримано KeyboardInterrupt, зупинка.")
    finally:
        stop_runtime(handles)


if __name__ == "__main__":
    main()
