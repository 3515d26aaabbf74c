from __future__ import annotations

from enum import Enum


class ErrorCode(str, Enum):
    """
    Назначение:
        Единая таксономия кодов ошибок для fetch/submit/decode и поэлементных результатов.
    """

    MALFORMED_INPUT = "MALFORMED_INPUT"
    NETWORK_ERROR = "NETWORK_ERROR"
    TIMEOUT = "TIMEOUT"
    HTTP_ERROR = "HTTP_ERROR"
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    INVALID_JSON = "INVALID_JSON"
    INVALID_RESPONSE = "INVALID_RESPONSE"
    SERVICE_ERROR = "SERVICE_ERROR"
    MAX_PAGES_EXCEEDED = "MAX_PAGES_EXCEEDED"
    ITEM_REJECTED = "ITEM_REJECTED"
    UNEXPECTED_ERROR = "UNEXPECTED_ERROR"

    @classmethod
    def from_status(cls, status_code: int | None) -> "ErrorCode":
        """
        Назначение:
            Подбор общего кода по HTTP-статусу.
        """
        if status_code == 401:
            return cls.UNAUTHORIZED
        if status_code == 403:
            return cls.FORBIDDEN
        return cls.HTTP_ERROR

    @classmethod
    def from_api_code(cls, code: str | None, status_code: int | None = None) -> "ErrorCode":
        """
        Назначение:
            Маппинг строкового кода ApiError в ErrorCode.
        """
        if not code:
            return cls.UNEXPECTED_ERROR
        try:
            return cls(code)
        except ValueError:
            pass
        if code.startswith("HTTP_"):
            return cls.from_status(status_code)
        return cls.UNEXPECTED_ERROR
