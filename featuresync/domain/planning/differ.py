from __future__ import annotations

from typing import Any, Sequence

from featuresync.domain.models import Record
from featuresync.domain.planning.values import values_differ


class FieldDiffer:
    """
    Назначение/ответственность:
        Вычисляет изменения между эталонной и входной записью по allowlist полей.

    Ограничения:
        - Поля вне editable_fields не сравниваются и не попадают в результат.
        - Поле, отсутствующее во входной записи (нет колонки), не считается изменённым.
    """

    def __init__(self, editable_fields: Sequence[str]) -> None:
        self.editable_fields = tuple(editable_fields)

    def calculate_changes(self, existing: Record, incoming: Record) -> dict[str, Any]:
        """
        Контракт:
            Вход: existing - запись из эталонного снимка, incoming - запись из CSV.
            Выход: словарь field -> new_value, порядок полей = порядок allowlist.
        """
        changes: dict[str, Any] = {}
        for field_name in self.editable_fields:
            if field_name not in incoming.attributes:
                continue
            changed, value = values_differ(incoming.attributes[field_name], existing.get(field_name))
            if changed:
                changes[field_name] = value
        return changes
