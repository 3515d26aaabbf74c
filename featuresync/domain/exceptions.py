from __future__ import annotations

from typing import Any

from featuresync.domain.error_codes import ErrorCode
from featuresync.errors import AppError


class MalformedInputError(AppError):
    """
    Назначение:
        Входной текст не проходит структурный разбор
        (нет заголовка, нет колонки идентификатора, число полей строки != заголовку).
    Инварианты/гарантии:
        - Частичный результат декодирования не возвращается.
    """

    def __init__(self, message: str, line_no: int | None = None, details: dict[str, Any] | None = None):
        merged = dict(details or {})
        if line_no is not None:
            merged["line_no"] = line_no
        super().__init__(
            category="input",
            code=ErrorCode.MALFORMED_INPUT.value,
            message=message,
            retryable=False,
            details=merged,
        )
        self.line_no = line_no


class FetchError(AppError):
    """
    Назначение:
        Ошибка чтения эталонного набора. Прерывает прогон до вычисления diff.
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.UNEXPECTED_ERROR,
        retryable: bool = False,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(
            category="fetch",
            code=code.value,
            message=message,
            retryable=retryable,
            details=details or {},
        )


class FetchTimeoutError(FetchError):
    def __init__(self, message: str = "Fetch timed out", details: dict[str, Any] | None = None):
        super().__init__(message, code=ErrorCode.TIMEOUT, retryable=True, details=details)


class SubmissionError(AppError):
    """
    Назначение:
        Ошибка самого вызова applyEdits (до получения поэлементных результатов).
    Инварианты/гарантии:
        - Ничего не изменено, refresh не вызывается.
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.UNEXPECTED_ERROR,
        retryable: bool = False,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(
            category="submit",
            code=code.value,
            message=message,
            retryable=retryable,
            details=details or {},
        )


class SubmissionTimeoutError(SubmissionError):
    def __init__(self, message: str = "Submission timed out", details: dict[str, Any] | None = None):
        super().__init__(message, code=ErrorCode.TIMEOUT, retryable=True, details=details)


__all__ = [
    "FetchError",
    "FetchTimeoutError",
    "MalformedInputError",
    "SubmissionError",
    "SubmissionTimeoutError",
]
