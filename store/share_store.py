from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Tuple

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from core.model import ShareSnapshot
from observability.metrics import Metrics

log = logging.getLogger("shares_exporter.store")


class SourceUnavailableError(RuntimeError):
    """Store недоступний або запит упав (tick відкидається цілком)."""


def _as_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    try:
        as_float = float(value)
    except (TypeError, ValueError):
        return None
    if not as_float.is_integer():
        return None
    return int(as_float)


@dataclass
class ShareStore:
    """Read-only адаптер до таблиці shares_epoch_counts (chain, epoch, share_count)."""

    engine: Engine
    table: str = "shares_epoch_counts"
    metrics: Optional[Metrics] = None
    _rejected_keys: set = field(default_factory=set, repr=False)

    @classmethod
    def from_dsn(cls, dsn: str, table: str = "shares_epoch_counts", metrics: Optional[Metrics] = None) -> "ShareStore":
        try:
            engine = create_engine(dsn, pool_pre_ping=True)
        except (SQLAlchemyError, ImportError, ValueError) as exc:
            raise SourceUnavailableError(f"Некоректний DSN або драйвер: {exc}") from exc
        return cls(engine=engine, table=table, metrics=metrics)

    def init_schema(self, schema_path: Path) -> None:
        sql = schema_path.read_text(encoding="utf-8").replace("shares_epoch_counts", self.table)
        with self.engine.begin() as conn:
            for statement in sql.split(";"):
                if statement.strip():
                    conn.execute(text(statement))

    def ping(self) -> None:
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError as exc:
            raise SourceUnavailableError(f"Store недоступний: {exc}") from exc

    def positive_counts(self) -> Dict[str, Dict[int, int]]:
        try:
            with self.engine.connect() as conn:
                return self._positive_counts_conn(conn)
        except SQLAlchemyError as exc:
            raise SourceUnavailableError(f"positive_counts: {exc}") from exc

    def max_positive_epoch(self) -> Dict[str, int]:
        try:
            with self.engine.connect() as conn:
                return self._max_positive_epoch_conn(conn)
        except SQLAlchemyError as exc:
            raise SourceUnavailableError(f"max_positive_epoch: {exc}") from exc

    def snapshot(self) -> ShareSnapshot:
        """Обидва читання через одне з'єднання."""
        try:
            with self.engine.connect() as conn:
                counts = self._positive_counts_conn(conn)
                max_epochs = self._max_positive_epoch_conn(conn)
        except SQLAlchemyError as exc:
            raise SourceUnavailableError(f"snapshot: {exc}") from exc
        return ShareSnapshot(positive_counts=counts, max_epochs=max_epochs)

    def dispose(self) -> None:
        self.engine.dispose()

    def _positive_counts_conn(self, conn: Connection) -> Dict[str, Dict[int, int]]:
        rows = conn.execute(
            text(f"SELECT chain, epoch, share_count FROM {self.table} WHERE share_count > 0")
        ).fetchall()
        counts: Dict[str, Dict[int, int]] = {}
        for chain, epoch, share_count in self._valid_rows(rows, "positive_counts"):
            counts.setdefault(chain, {})[epoch] = share_count
        return counts

    def _max_positive_epoch_conn(self, conn: Connection) -> Dict[str, int]:
        rows = conn.execute(
            text(f"SELECT chain, MAX(epoch) FROM {self.table} WHERE share_count > 0 GROUP BY chain")
        ).fetchall()
        max_epochs: Dict[str, int] = {}
        for row in rows:
            chain, epoch = row[0], _as_int(row[1])
            if not isinstance(chain, str) or not chain or epoch is None or epoch < 0:
                self._reject("max_positive_epoch", row)
                continue
            max_epochs[chain] = epoch
        return max_epochs

    def _valid_rows(self, rows: Iterable[Any], view: str) -> Iterable[Tuple[str, int, int]]:
        for row in rows:
            chain, epoch, share_count = row[0], _as_int(row[1]), _as_int(row[2])
            if not isinstance(chain, str) or not chain:
                self._reject(view, row)
                continue
            if epoch is None or epoch < 0 or share_count is None or share_count <= 0:
                self._reject(view, row)
                continue
            yield chain, epoch, share_count

    def _reject(self, view: str, row: Any) -> None:
        if self.metrics is not None:
            self.metrics.rows_rejected_total.labels(view=view).inc()
        key = (view, repr(tuple(row)))
        if key in self._rejected_keys:
            log.debug("Пропуск некоректного рядка %s: %r", view, tuple(row))
            return
        self._rejected_keys.add(key)
        log.warning("Некоректний рядок у %s пропущено: %r", view, tuple(row))
