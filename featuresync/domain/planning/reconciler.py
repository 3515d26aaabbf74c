from __future__ import annotations

from typing import Sequence

from featuresync.domain.models import FieldUpdate, ReconcilePlan, Record, UpdateBatch
from featuresync.domain.planning.differ import FieldDiffer
from featuresync.domain.planning.matcher import SnapshotIndex
from featuresync.domain.planning.values import IdentifierKey, identifier_key


class Reconciler:
    """
    Назначение/ответственность:
        Сверка входного набора с эталонным снимком и сборка UpdateBatch.

    Взаимодействия:
        Получает оба снимка параметрами; не обращается к хранилищу и не пишет логи.

    Алгоритм:
        1. Индексирует эталонный снимок по идентификатору.
        2. Для каждой входной записи ищет эталонную; ненайденные пропускаются
           (только обновление, записи не создаются).
        3. Сравнивает поля allowlist; пустой diff отбрасывается.
        4. Порядок батча = порядок входного набора; повторная ссылка на ту же
           эталонную запись во входе пропускается.
    """

    def __init__(self, id_field: str, editable_fields: Sequence[str], differ: FieldDiffer | None = None) -> None:
        self.id_field = id_field
        self.editable_fields = tuple(name for name in editable_fields if name != id_field)
        self.differ = differ or FieldDiffer(self.editable_fields)

    def reconcile(self, authoritative: Sequence[Record], incoming: Sequence[Record]) -> ReconcilePlan:
        index = SnapshotIndex(authoritative)
        plan = ReconcilePlan(batch=UpdateBatch(self.editable_fields))
        seen: set[IdentifierKey] = set()

        for record in incoming:
            plan.incoming_total += 1
            key, existing = index.resolve(record.id)
            if key is None:
                key = identifier_key(record.id)
            if key in seen:
                plan.duplicate_ids.append(record.id)
                continue
            if key is not None:
                seen.add(key)

            if existing is None:
                plan.unmatched_ids.append(record.id)
                continue

            plan.matched += 1
            changes = self.differ.calculate_changes(existing, record)
            if not changes:
                plan.unchanged += 1
                continue

            plan.batch.add(FieldUpdate(id_field=self.id_field, id=existing.id, changes=changes))

        return plan
