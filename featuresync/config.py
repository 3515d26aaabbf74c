from __future__ import annotations

import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any

import yaml

DEFAULT_EDITABLE_FIELDS = ("room_name", "use_type_new", "status")
DEFAULT_DATE_FIELDS = ("CreationDate", "EditDate", "date_submitted")
ENV_PREFIX = "FEATURESYNC_"


@dataclass(frozen=True)
class Settings:
    # Feature service
    layer_url: str | None = None
    token: str | None = None
    timeout_seconds: float = 30.0
    retries: int = 3
    retry_backoff_seconds: float = 0.5
    page_size: int = 1000
    max_pages: int | None = None
    tls_skip_verify: bool = False
    ca_file: str | None = None

    # Dataset
    id_field: str = "objectid"
    editable_fields: tuple[str, ...] = DEFAULT_EDITABLE_FIELDS
    date_fields: tuple[str, ...] = DEFAULT_DATE_FIELDS
    date_format: str | None = None

    # Paths / logging
    log_dir: str = "./logs"
    report_dir: str = "./reports"
    log_level: str = "INFO"
    report_items_limit: int = 200


@dataclass(frozen=True)
class LoadedSettings:
    settings: Settings
    sources_used: list[str]


_INT_FIELDS = {"retries", "page_size", "max_pages", "report_items_limit"}
_FLOAT_FIELDS = {"timeout_seconds", "retry_backoff_seconds"}
_BOOL_FIELDS = {"tls_skip_verify"}
_LIST_FIELDS = {"editable_fields", "date_fields"}
_LOG_LEVELS = {"ERROR", "WARN", "WARNING", "INFO", "DEBUG"}


def _read_yaml_config(path: Path) -> dict:
    if not path.exists() or not path.is_file():
        return {}
    with path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        return {}
    return data


def _env_get(name: str) -> str | None:
    v = os.getenv(name)
    if v is None or v.strip() == "":
        return None
    return v.strip()


def parse_bool(v: str) -> bool:
    vv = v.strip().lower()
    if vv in ("1", "true", "yes", "y"):
        return True
    if vv in ("0", "false", "no", "n"):
        return False
    raise ValueError(f"Invalid boolean value: {v}")


def _coerce(name: str, value: Any) -> Any:
    """
    Назначение:
        Приводит значение из config/env/CLI к типу поля Settings.
    Ошибки/исключения:
        ValueError для некорректных чисел/булевых значений.
    """
    if value is None:
        return None
    if name in _LIST_FIELDS:
        if isinstance(value, str):
            return tuple(item.strip() for item in value.split(",") if item.strip())
        return tuple(str(item).strip() for item in value)
    if name in _INT_FIELDS:
        return int(value)
    if name in _FLOAT_FIELDS:
        return float(value)
    if name in _BOOL_FIELDS:
        return value if isinstance(value, bool) else parse_bool(str(value))
    return value


def _validate(merged: dict[str, Any]) -> None:
    level = str(merged["log_level"] or "").strip().upper()
    if level not in _LOG_LEVELS:
        raise ValueError(f"Unsupported log level: {merged['log_level']}")
    if merged["page_size"] <= 0:
        raise ValueError(f"page_size must be positive: {merged['page_size']}")
    if merged["retries"] < 0:
        raise ValueError(f"retries must not be negative: {merged['retries']}")


def load_settings(config_path: str | None, cli_overrides: dict) -> LoadedSettings:
    """
    Priority: CLI > ENV > config > defaults
    """
    sources: list[str] = []
    names = [f.name for f in fields(Settings)]
    merged: dict[str, Any] = {name: getattr(Settings(), name) for name in names}

    # 1) config file
    if config_path:
        cfg = _read_yaml_config(Path(config_path))
        if cfg:
            sources.append("config")
        for name in names:
            if name in cfg and cfg[name] is not None:
                merged[name] = _coerce(name, cfg[name])

    # 2) env
    env = {name: _env_get(ENV_PREFIX + name.upper()) for name in names}
    if any(v is not None for v in env.values()):
        sources.append("env")
    for name, value in env.items():
        if value is not None:
            merged[name] = _coerce(name, value)

    # 3) CLI overrides (only those explicitly passed)
    passed = {k: v for k, v in cli_overrides.items() if v is not None}
    if passed:
        sources.append("cli")
    for name, value in passed.items():
        if name not in merged:
            raise ValueError(f"Unknown setting: {name}")
        merged[name] = _coerce(name, value)

    _validate(merged)
    return LoadedSettings(settings=Settings(**merged), sources_used=sources)
