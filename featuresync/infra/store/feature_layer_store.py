from __future__ import annotations

from typing import Any, Sequence

from featuresync.common.sanitize import truncateText
from featuresync.domain.error_codes import ErrorCode
from featuresync.domain.exceptions import (
    FetchError,
    FetchTimeoutError,
    SubmissionError,
    SubmissionTimeoutError,
)
from featuresync.domain.models import (
    ApplyOutcome,
    EditResult,
    FieldUpdate,
    Identifier,
    ItemApplyError,
    Position,
    Record,
)
from featuresync.domain.planning.values import identifier_candidates, identifier_key
from featuresync.domain.ports.record_store import RecordStoreProtocol
from featuresync.infra.http.feature_service_client import ApiError, FeatureServiceClient


class FeatureLayerStore(RecordStoreProtocol):
    """
    Назначение/ответственность:
        Адаптер RecordStoreProtocol поверх FeatureServiceClient.
    Взаимодействия:
        ApiError клиента превращается в FetchError/SubmissionError;
        ответ applyEdits нормализуется в EditResult.
    """

    def __init__(
        self,
        client: FeatureServiceClient,
        id_field: str = "objectid",
        page_size: int = 1000,
        max_pages: int | None = None,
    ) -> None:
        self.client = client
        self.id_field = id_field
        self.page_size = page_size
        self.max_pages = max_pages

    def query(
        self,
        where: str = "1=1",
        return_geometry: bool = False,
        out_fields: Sequence[str] = ("*",),
    ) -> list[Record]:
        records: list[Record] = []
        try:
            for _page, features in self.client.getFeaturePages(
                where=where,
                outFields=out_fields,
                returnGeometry=return_geometry,
                pageSize=self.page_size,
                maxPages=self.max_pages,
            ):
                for feature in features:
                    records.append(self._to_record(feature))
        except ApiError as exc:
            raise self._fetch_error(exc) from exc
        return records

    def apply_edits(
        self,
        *,
        adds: Sequence[Record] = (),
        updates: Sequence[FieldUpdate] = (),
        deletes: Sequence[Identifier] = (),
    ) -> EditResult:
        try:
            response = self.client.applyEdits(
                adds=[self._to_feature(record) for record in adds] or None,
                updates=[{"attributes": update.to_attributes()} for update in updates] or None,
                deletes=list(deletes) or None,
            )
        except ApiError as exc:
            raise self._submission_error(exc) from exc

        return EditResult(
            add_results=self._parse_results(response, "addResults", [record.id for record in adds]),
            update_results=self._parse_results(response, "updateResults", [update.id for update in updates]),
            delete_results=self._parse_results(response, "deleteResults", list(deletes)),
        )

    def _to_record(self, feature: Any) -> Record:
        if not isinstance(feature, dict):
            raise FetchError("Unexpected feature format", code=ErrorCode.INVALID_RESPONSE)
        attributes = dict(feature.get("attributes") or {})
        id_key = self._resolve_id_key(attributes)
        if id_key is None or attributes.get(id_key) is None:
            raise FetchError(
                f"Feature without identifier field '{self.id_field}'",
                code=ErrorCode.INVALID_RESPONSE,
                details={"fields": sorted(attributes.keys())},
            )
        geometry = feature.get("geometry")
        position = None
        if isinstance(geometry, dict) and geometry.get("x") is not None and geometry.get("y") is not None:
            position = Position(x=float(geometry["x"]), y=float(geometry["y"]))
        return Record(id=attributes[id_key], attributes=attributes, position=position)

    def _to_feature(self, record: Record) -> dict[str, Any]:
        feature: dict[str, Any] = {"attributes": dict(record.attributes)}
        if record.position is not None:
            feature["geometry"] = {"x": record.position.x, "y": record.position.y}
        return feature

    def _resolve_id_key(self, attributes: dict[str, Any]) -> str | None:
        if self.id_field in attributes:
            return self.id_field
        wanted = self.id_field.lower()
        for key in attributes:
            if key.lower() == wanted:
                return key
        return None

    def _parse_results(self, response: dict[str, Any], key: str, requested: list[Identifier]) -> list[ApplyOutcome]:
        """
        Алгоритм:
            - Результаты сопоставляются с запросом по позиции.
            - Если сервис вернул objectId из запрошенного набора, используется он.
            - Число результатов должно совпадать с числом отправленных элементов.
        """
        if not requested:
            return []
        raw = response.get(key)
        if not isinstance(raw, list) or len(raw) != len(requested):
            got = len(raw) if isinstance(raw, list) else None
            raise SubmissionError(
                f"{key}: expected {len(requested)} results, got {got}",
                code=ErrorCode.INVALID_RESPONSE,
            )
        by_key = {identifier_key(identifier): identifier for identifier in requested}
        outcomes: list[ApplyOutcome] = []
        for index, item in enumerate(raw):
            identifier = requested[index]
            if not isinstance(item, dict):
                outcomes.append(self._failure(index, identifier, {"description": "Malformed result item"}))
                continue
            for candidate in identifier_candidates(item.get("objectId")):
                if candidate in by_key:
                    identifier = by_key[candidate]
                    break
            if item.get("success") is True:
                outcomes.append(ApplyOutcome(index=index, id=identifier, success=True))
            else:
                outcomes.append(self._failure(index, identifier, item.get("error") or {}))
        return outcomes

    @staticmethod
    def _failure(index: int, identifier: Identifier, error: dict[str, Any]) -> ApplyOutcome:
        code = error.get("code")
        message = error.get("description") or error.get("message") or "Edit rejected"
        return ApplyOutcome(
            index=index,
            id=identifier,
            success=False,
            error=ItemApplyError(
                id=identifier,
                code=str(code) if code is not None else ErrorCode.ITEM_REJECTED.value,
                message=truncateText(str(message)) or "",
                details=dict(error),
            ),
        )

    @staticmethod
    def _describe(exc: ApiError) -> tuple[ErrorCode, str, dict[str, Any]]:
        details: dict[str, Any] = dict(exc.details or {})
        if exc.status_code is not None:
            details["status_code"] = exc.status_code
        if exc.body_snippet:
            details["body_snippet"] = truncateText(exc.body_snippet)
        return ErrorCode.from_api_code(exc.code, exc.status_code), exc.message, details

    def _fetch_error(self, exc: ApiError) -> FetchError:
        code, message, details = self._describe(exc)
        if code == ErrorCode.TIMEOUT:
            return FetchTimeoutError(details=details)
        return FetchError(f"Query failed: {message}", code=code, retryable=exc.retryable, details=details)

    def _submission_error(self, exc: ApiError) -> SubmissionError:
        code, message, details = self._describe(exc)
        if code == ErrorCode.TIMEOUT:
            return SubmissionTimeoutError(details=details)
        return SubmissionError(f"applyEdits failed: {message}", code=code, retryable=exc.retryable, details=details)
