from __future__ import annotations

from datetime import datetime, timezone
from typing import Any


def parseNull(value: str | None) -> str | None:
    """
    Назначение:
        Преобразует пустые/NULL значения в None и тримит строки.
    """
    if value is None:
        return None
    trimmed = value.strip()
    if trimmed == "" or trimmed.lower() == "null":
        return None
    return trimmed


def formatScalar(value: Any) -> str:
    """
    Назначение:
        Естественное строковое представление значения для CSV.

    Контракт:
        - None -> ""
        - bool -> "true"/"false"
        - целый float -> без ".0"
    """
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def formatEpochDate(epochMs: int | float, dateFormat: str | None = None) -> str:
    """
    Назначение:
        Форматирует timestamp (миллисекунды эпохи, UTC) как календарную дату.

    Входные данные:
        epochMs: int | float
        dateFormat: str | None
            strftime-шаблон; None -> M/D/YYYY без ведущих нулей.
    """
    moment = datetime.fromtimestamp(epochMs / 1000, tz=timezone.utc)
    if dateFormat:
        return moment.strftime(dateFormat)
    return f"{moment.month}/{moment.day}/{moment.year}"
