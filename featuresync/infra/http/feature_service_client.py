from __future__ import annotations

import json
import time
from typing import Any, Iterator, Sequence

import httpx

from featuresync.errors import AppError


class ApiError(AppError):
    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        body_snippet: str | None = None,
        retryable: bool = False,
        details: dict | None = None,
        code: str | None = None,
    ):
        """
        Назначение:
            Исключение для ошибок HTTP/API уровня FeatureServiceClient.
        Контракт:
            - code: строковый код (HTTP_*, NETWORK_ERROR, TIMEOUT, INVALID_JSON, SERVICE_ERROR и т.п.).
            - status_code/body_snippet используются для диагностики.
        """
        super().__init__(
            category="api",
            code=code or (f"HTTP_{status_code}" if status_code else "API_ERROR"),
            message=message,
            retryable=retryable,
            details=details or {},
        )
        self.status_code = status_code
        self.body_snippet = body_snippet


class FeatureServiceClient:
    """
    Назначение/ответственность:
        HTTP-клиент слоя feature service (ArcGIS REST): query и applyEdits.

    Ограничения:
        - Ретраи только для сетевых ошибок, таймаутов и 429/5xx.
        - Ошибка в теле ответа ({"error": {...}} при HTTP 200) не ретраится.
    """

    def __init__(
        self,
        layerUrl: str,
        token: str | None = None,
        timeoutSeconds: float = 30.0,
        tlsSkipVerify: bool = False,
        caFile: str | None = None,
        retries: int = 3,
        retryBackoffSeconds: float = 0.5,
        transport: httpx.BaseTransport | None = None,
    ):
        verify: bool | str = True
        if tlsSkipVerify:
            verify = False
        elif caFile:
            verify = caFile

        self.layerUrl = layerUrl.rstrip("/")
        self.token = token
        self.retries = retries
        self.retryBackoffSeconds = retryBackoffSeconds
        self.retry_attempts = 0

        self.client = httpx.Client(
            base_url=self.layerUrl,
            timeout=timeoutSeconds,
            verify=verify,
            transport=transport,
        )

    def close(self) -> None:
        self.client.close()

    def resetRetryAttempts(self) -> None:
        """Сбрасывает счётчик retry_attempts."""
        self.retry_attempts = 0

    def getRetryAttempts(self) -> int:
        """Возвращает количество выполненных повторных попыток."""
        return self.retry_attempts

    def _withToken(self, params: dict[str, Any]) -> dict[str, Any]:
        merged = {"f": "json", **params}
        if self.token:
            merged["token"] = self.token
        return merged

    def _should_retry(self, resp: httpx.Response) -> bool:
        """Решает, стоит ли повторить запрос (429 или 5xx)."""
        if resp.status_code == 429:
            return True
        if 500 <= resp.status_code <= 599:
            return True
        return False

    def _sleep_backoff(self, attempt: int) -> None:
        delay = self.retryBackoffSeconds * (2 ** attempt)
        time.sleep(delay)

    def _send(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        data: dict[str, Any] | None = None,
    ) -> httpx.Response:
        """
        Назначение:
            Запрос с ретраями по 429/5xx и сетевым ошибкам.
        Ошибки/исключения:
            ApiError с code TIMEOUT / NETWORK_ERROR / HTTP_<status>.
        """
        attempt = 0
        while True:
            try:
                resp = self.client.request(method, path, params=params, data=data)
            except httpx.TimeoutException as exc:
                if attempt >= self.retries:
                    raise ApiError("Request timed out", status_code=None, retryable=True, code="TIMEOUT") from exc
                self.retry_attempts += 1
                self._sleep_backoff(attempt)
                attempt += 1
                continue
            except httpx.TransportError as exc:
                if attempt >= self.retries:
                    raise ApiError("Network error", status_code=None, retryable=False, code="NETWORK_ERROR") from exc
                self.retry_attempts += 1
                self._sleep_backoff(attempt)
                attempt += 1
                continue

            if resp.status_code == 200:
                return resp

            if self._should_retry(resp) and attempt < self.retries:
                self.retry_attempts += 1
                self._sleep_backoff(attempt)
                attempt += 1
                continue

            body_snippet = resp.text[:200] if resp.text else None
            raise ApiError(
                f"HTTP {resp.status_code}",
                status_code=resp.status_code,
                body_snippet=body_snippet,
                retryable=self._should_retry(resp),
                details={"body_snippet": body_snippet},
            )

    def requestJson(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        data: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """
        Назначение:
            JSON-запрос к сервису. Для GET параметры идут в query, для POST - в form body.
        Контракт:
            Возвращает dict ответа или бросает ApiError
            (INVALID_JSON, SERVICE_ERROR при {"error": {...}} в теле).
        """
        if method.upper() == "GET":
            resp = self._send(method, path, params=self._withToken(params or {}))
        else:
            resp = self._send(method, path, params=params, data=self._withToken(data or {}))
        try:
            payload = resp.json()
        except ValueError as exc:
            raise ApiError(
                "Invalid JSON response",
                status_code=resp.status_code,
                body_snippet=resp.text[:200] if resp.text else None,
                retryable=False,
                code="INVALID_JSON",
            ) from exc
        if not isinstance(payload, dict):
            raise ApiError("Unexpected response format: object expected", code="INVALID_RESPONSE")
        error = payload.get("error")
        if isinstance(error, dict):
            service_code = error.get("code")
            raise ApiError(
                str(error.get("message") or "Service error"),
                status_code=service_code if isinstance(service_code, int) else None,
                retryable=False,
                details={"service_error": error},
                code="SERVICE_ERROR",
            )
        return payload

    def query(
        self,
        where: str = "1=1",
        outFields: Sequence[str] = ("*",),
        returnGeometry: bool = False,
        resultOffset: int | None = None,
        resultRecordCount: int | None = None,
    ) -> dict[str, Any]:
        params: dict[str, Any] = {
            "where": where,
            "outFields": ",".join(outFields),
            "returnGeometry": "true" if returnGeometry else "false",
        }
        if returnGeometry:
            params["outSR"] = 4326
        if resultOffset is not None:
            params["resultOffset"] = resultOffset
        if resultRecordCount is not None:
            params["resultRecordCount"] = resultRecordCount
        return self.requestJson("GET", "/query", params=params)

    def getFeaturePages(
        self,
        where: str,
        outFields: Sequence[str],
        returnGeometry: bool,
        pageSize: int,
        maxPages: int | None,
    ) -> Iterator[tuple[int, list[dict[str, Any]]]]:
        """
        Возвращает пары (page_number, features) постранично,
        пока сервис выставляет exceededTransferLimit.
        """
        page = 1
        offset = 0
        while True:
            if maxPages is not None and page > maxPages:
                raise ApiError("max pages exceeded", code="MAX_PAGES_EXCEEDED", status_code=None, retryable=False)
            data = self.query(
                where=where,
                outFields=outFields,
                returnGeometry=returnGeometry,
                resultOffset=offset,
                resultRecordCount=pageSize,
            )
            features = data.get("features")
            if not isinstance(features, list):
                raise ApiError("Unexpected response format: no features array", code="INVALID_RESPONSE")
            yield page, features
            if not features or not data.get("exceededTransferLimit"):
                break
            offset += len(features)
            page += 1

    def applyEdits(
        self,
        adds: list[dict[str, Any]] | None = None,
        updates: list[dict[str, Any]] | None = None,
        deletes: list[Any] | None = None,
    ) -> dict[str, Any]:
        """
        Назначение:
            Один вызов applyEdits для всех групп правок.
        Контракт:
            Пустые группы не отправляются; ответ - dict с addResults/updateResults/deleteResults.
        """
        data: dict[str, Any] = {}
        if adds:
            data["adds"] = json.dumps(adds, ensure_ascii=False)
        if updates:
            data["updates"] = json.dumps(updates, ensure_ascii=False)
        if deletes:
            data["deletes"] = ",".join(str(item) for item in deletes)
        return self.requestJson("POST", "/applyEdits", data=data)
