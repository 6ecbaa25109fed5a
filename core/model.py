from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict

SERIES_EPOCH_COUNT = "shares_epoch_count"
SERIES_LATEST_NONZERO = "shares_latest_nonzero"

SERIES_HELP = {
    SERIES_EPOCH_COUNT: "Кількість shares за epoch (часовий ряд по epoch)",
    SERIES_LATEST_NONZERO: "Кількість shares на максимальному epoch ланцюга",
}


class ColdStartPolicy(str, Enum):
    SKIP = "skip"
    REPLAY = "replay"


def parse_cold_start(value: str) -> ColdStartPolicy:
    if value == ColdStartPolicy.SKIP.value:
        return ColdStartPolicy.SKIP
    if value == ColdStartPolicy.REPLAY.value:
        return ColdStartPolicy.REPLAY
    raise ValueError(f"Невідома cold_start політика: {value}")


@dataclass(frozen=True)
class Emission:
    """Один повністю визначений sample для sink."""

    series: str
    chain: str
    epoch: int
    value: int


@dataclass
class ShareSnapshot:
    """Одне читання store на tick; обидві серії рахуються з нього."""

    positive_counts: Dict[str, Dict[int, int]] = field(default_factory=dict)
    max_epochs: Dict[str, int] = field(default_factory=dict)

    def chains(self) -> list:
        return sorted(set(self.positive_counts) | set(self.max_epochs))
