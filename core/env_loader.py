from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Dict, List, Set, Tuple

ENV_SWITCH_KEY = "SHARES_ENV_FILE"

ALLOWED_ENV_KEYS: Set[str] = {
    ENV_SWITCH_KEY,
    "SHARES_OPS_DSN",
    "SHARES_TABLE",
    "SHARES_OUTPUT_PATH",
    "SHARES_PUSH_URL",
    "SHARES_PUSH_JOB",
    "SHARES_INTERVAL_MINUTES",
    "SHARES_COLD_START",
    "SHARES_METRICS_ENABLED",
    "SHARES_METRICS_PORT",
    "SHARES_LOG_LEVEL",
}

_ASSIGNMENT_RE = re.compile(r"^(?:export\s+)?([A-Za-z_][A-Za-z0-9_]*)\s*=\s*(.*)$")

# (ключ, значення, номер рядка)
EnvEntry = Tuple[str, str, int]


def _unquote(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
        return value[1:-1]
    return value


def _read_entries(path: Path) -> List[EnvEntry]:
    """Рядки KEY=VALUE; будь-який інший непорожній рядок без # є помилкою."""
    entries: List[EnvEntry] = []
    for lineno, raw in enumerate(path.read_text(encoding="utf-8").splitlines(), start=1):
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        match = _ASSIGNMENT_RE.match(line)
        if match is None:
            raise RuntimeError(f"{path}:{lineno}: очікується KEY=VALUE, отримано {line!r}")
        entries.append((match.group(1), _unquote(match.group(2).strip()), lineno))
    return entries


def _reject_keys(path: Path, entries: List[EnvEntry], allowed: Set[str]) -> None:
    bad = [f"{key} (рядок {lineno})" for key, _, lineno in entries if key not in allowed]
    if bad:
        raise RuntimeError(f"{path}: unknown env key: {', '.join(bad)}")


def _resolve_profile(root_dir: Path, switch: str) -> Path:
    profile = Path(switch).expanduser()
    if not profile.is_absolute():
        profile = root_dir / profile
    if not profile.is_file():
        raise RuntimeError(f"{ENV_SWITCH_KEY} вказує на відсутній файл: {profile}")
    return profile


def load_env(root_dir: Path) -> Dict[str, str]:
    """Завантажує профіль оточення до os.environ.

    `.env` у корені може містити лише SHARES_ENV_FILE. Значення перемикача з
    процесного оточення має пріоритет над `.env`. Ключі профілю перевіряються
    за allowlist; вже задані змінні процесу не перезаписуються.
    """
    base_path = root_dir / ".env"
    base_entries = _read_entries(base_path) if base_path.is_file() else []
    _reject_keys(base_path, base_entries, {ENV_SWITCH_KEY})
    merged: Dict[str, str] = {key: value for key, value, _ in base_entries}

    switch = os.environ.get(ENV_SWITCH_KEY) or merged.get(ENV_SWITCH_KEY, "")
    if switch:
        profile = _resolve_profile(root_dir, switch)
        profile_entries = _read_entries(profile)
        _reject_keys(profile, profile_entries, ALLOWED_ENV_KEYS)
        merged.update((key, value) for key, value, _ in profile_entries)

    for key, value in merged.items():
        os.environ.setdefault(key, value)
    return merged
