from __future__ import annotations

from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit


def maskSecret(value: str | None) -> str | None:
    """
    Назначение:
        Маскирует секреты (token) для безопасного вывода в stdout/logs.

    Выходные данные:
        str | None
            Если value задано - '***', иначе None.
    """
    if value is None:
        return None
    return "***"


def truncateText(value: str | None, limit: int = 500) -> str | None:
    """
    Назначение:
        Ограничивает длину текста, чтобы избежать раздувания логов/отчётов.
    """
    if value is None:
        return None
    if len(value) <= limit:
        return value
    suffix = "..." if limit > 3 else ""
    head = limit - len(suffix)
    return value[:head] + suffix


def maskTokenInUrl(url: str | None) -> str | None:
    """
    Назначение:
        Скрывает значение параметра token в URL слоя (его иногда вставляют прямо в ссылку).
    """
    if not url:
        return url
    parts = urlsplit(url)
    if not parts.query:
        return url
    query = [(k, "***" if k.lower() == "token" else v) for k, v in parse_qsl(parts.query, keep_blank_values=True)]
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(query, safe="*"), parts.fragment))
