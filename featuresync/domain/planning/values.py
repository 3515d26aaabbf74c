from __future__ import annotations

import math
from typing import Any


IdentifierKey = tuple[str, str]


def _parse_number(text: str) -> int | float | None:
    if "_" in text:
        return None
    try:
        return int(text)
    except ValueError:
        pass
    try:
        number = float(text)
    except ValueError:
        return None
    if not math.isfinite(number):
        return None
    return number


def _to_bool(value: Any) -> bool | None:
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    if isinstance(value, str):
        v = value.strip().lower()
        if v in ("1", "true", "yes", "y"):
            return True
        if v in ("0", "false", "no", "n"):
            return False
    return None


def _number_text(value: int | float) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return repr(value) if isinstance(value, float) else str(value)


def identifier_key(value: Any) -> IdentifierKey | None:
    """
    Назначение:
        Ключ идентификатора в его собственном типе.

    Контракт:
        - Числа: ("number", ...), 5 и 5.0 дают один ключ.
        - Строки: ("text", trim), "007" и "7" - разные ключи.
        - Пустая строка и None дают None.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        return ("text", str(value).lower())
    if isinstance(value, (int, float)):
        return ("number", _number_text(value))
    text = str(value).strip()
    if text == "":
        return None
    return ("text", text)


def identifier_candidates(value: Any) -> list[IdentifierKey]:
    """
    Назначение:
        Ключи для поиска входного идентификатора в эталонном индексе.

    Алгоритм:
        1. Собственный ключ значения (точное совпадение типа).
        2. Ключ после приведения к другому типу: строка "5.0" ищется и как число 5,
           число 5 ищется и как строка "5".
    """
    key = identifier_key(value)
    if key is None:
        return []
    kind, text = key
    if kind == "number":
        return [key, ("text", text)]
    number = _parse_number(text)
    if number is None:
        return [key]
    return [key, ("number", _number_text(number))]


def coerce_like(value: Any, reference: Any) -> tuple[bool, Any]:
    """
    Назначение:
        Приводит входное значение к типу эталонного значения.

    Контракт:
        Возвращает (ok, coerced). ok=False, если привести не удалось;
        тогда coerced - исходное значение.
    """
    if value is None:
        return True, None
    if isinstance(reference, bool):
        parsed = _to_bool(value)
        if parsed is None:
            return False, value
        return True, parsed
    if isinstance(reference, (int, float)):
        if isinstance(value, bool):
            return False, value
        if isinstance(value, (int, float)):
            number: int | float | None = value
        else:
            number = _parse_number(str(value).strip())
        if number is None:
            return False, value
        if isinstance(reference, int) and isinstance(number, float) and number.is_integer():
            number = int(number)
        return True, number
    if isinstance(reference, str):
        if isinstance(value, str):
            return True, value.strip()
        return True, str(value)
    return True, value


def values_differ(incoming: Any, authoritative: Any) -> tuple[bool, Any]:
    """
    Назначение:
        Типизированное сравнение значения из входного набора с эталонным.

    Контракт:
        Возвращает (changed, value_to_write).
        - Пустая строка в эталоне эквивалентна None.
        - Числа сравниваются как числа ("5" == 5), строки - после trim.
        - Непреобразуемое значение считается изменённым и пишется как есть:
          отказ остаётся на стороне хранилища (поэлементно).
    """
    if isinstance(authoritative, str) and authoritative.strip() == "":
        authoritative = None
    ok, coerced = coerce_like(incoming, authoritative)
    if not ok:
        return True, incoming
    if authoritative is None:
        return coerced is not None, coerced
    if isinstance(authoritative, str):
        return coerced != authoritative.strip(), coerced
    return coerced != authoritative, coerced
