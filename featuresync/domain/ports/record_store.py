from __future__ import annotations

from typing import Protocol, Sequence

from featuresync.domain.models import EditResult, FieldUpdate, Identifier, Record


class RecordStoreProtocol(Protocol):
    """
    Назначение/ответственность:
        Порт эталонного хранилища: чтение снимка и применение правок.
    Взаимодействия:
        Используется use-case сверки и экспорта; реализации скрывают транспорт и формат API.
    """

    def query(
        self,
        where: str = "1=1",
        return_geometry: bool = False,
        out_fields: Sequence[str] = ("*",),
    ) -> list[Record]:
        """
        Контракт:
            - where="1=1" и out_fields=("*",) обязательно поддерживаются.
            - Возвращает полный список записей (все страницы).
        Ошибки/исключения:
            FetchError / FetchTimeoutError.
        """
        ...

    def apply_edits(
        self,
        *,
        adds: Sequence[Record] = (),
        updates: Sequence[FieldUpdate] = (),
        deletes: Sequence[Identifier] = (),
    ) -> EditResult:
        """
        Контракт:
            - Один вызов на все группы правок.
            - EditResult содержит по одному ApplyOutcome на каждый отправленный элемент.
        Ошибки/исключения:
            SubmissionError / SubmissionTimeoutError, если вызов не дал поэлементных результатов.
        """
        ...
