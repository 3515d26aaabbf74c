from __future__ import annotations

from typing import Iterable

from featuresync.domain.models import Identifier, Record
from featuresync.domain.planning.values import IdentifierKey, identifier_candidates, identifier_key


class SnapshotIndex:
    """
    Назначение/ответственность:
        Индекс эталонного снимка по идентификатору в его собственном типе (O(1) lookup).

    Ограничения:
        - Снимок считается неизменяемым на время сверки.
        - Строковые идентификаторы сравниваются как строки ("007" != "7");
          к числу приводится только входной id при поиске числового эталонного id.
        - При повторе идентификатора в снимке используется первая запись,
          повторы доступны через duplicate_ids.
    """

    def __init__(self, records: Iterable[Record]) -> None:
        self._by_key: dict[IdentifierKey, Record] = {}
        self.duplicate_ids: list[Identifier] = []
        for record in records:
            key = identifier_key(record.id)
            if key is None:
                continue
            if key in self._by_key:
                self.duplicate_ids.append(record.id)
                continue
            self._by_key[key] = record

    def resolve(self, identifier: Identifier | None) -> tuple[IdentifierKey | None, Record | None]:
        for key in identifier_candidates(identifier):
            record = self._by_key.get(key)
            if record is not None:
                return key, record
        return None, None

    def find(self, identifier: Identifier | None) -> Record | None:
        return self.resolve(identifier)[1]

    def __len__(self) -> int:
        return len(self._by_key)

    def __contains__(self, identifier: object) -> bool:
        return self.find(identifier) is not None  # type: ignore[arg-type]
