from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterator, Mapping, Sequence

from featuresync.domain.planning.values import IdentifierKey, identifier_key

Identifier = int | float | str


@dataclass(frozen=True)
class Position:
    """
    Назначение:
        Точечная геометрия записи (x = долгота, y = широта).
    """

    x: float
    y: float


@dataclass(frozen=True)
class Record:
    """
    Назначение:
        Одна запись набора данных: идентификатор, атрибуты и необязательная позиция.

    Инварианты/гарантии:
        - id совпадает со значением поля-идентификатора в attributes (если оно там есть).
        - position заполняется только эталонным хранилищем; входной CSV геометрии не несёт.
    """

    id: Identifier
    attributes: Mapping[str, Any]
    position: Position | None = None

    def get(self, field_name: str, default: Any = None) -> Any:
        return self.attributes.get(field_name, default)


@dataclass(frozen=True)
class FieldUpdate:
    """
    Назначение:
        Частичное обновление одной записи: идентификатор + только изменившиеся поля.

    Инварианты/гарантии:
        - changes непустой: обновление без реального diff не конструируется.
        - поле-идентификатор не входит в changes.
    """

    id_field: str
    id: Identifier
    changes: Mapping[str, Any]

    def __post_init__(self) -> None:
        if not self.changes:
            raise ValueError(f"FieldUpdate for id={self.id!r} has no changed fields")
        if self.id_field in self.changes:
            raise ValueError(f"FieldUpdate must not change identifier field '{self.id_field}'")

    def to_attributes(self) -> dict[str, Any]:
        return {self.id_field: self.id, **self.changes}


class UpdateBatch:
    """
    Назначение/ответственность:
        Упорядоченный набор FieldUpdate для одного вызова applyEdits.

    Инварианты/гарантии:
        - Не более одного FieldUpdate на идентификатор.
        - Все изменяемые поля входят в editable_fields.
        - Порядок = порядок добавления (порядок строк входного набора).
    """

    def __init__(self, editable_fields: Sequence[str], updates: Sequence[FieldUpdate] = ()) -> None:
        self.editable_fields = tuple(editable_fields)
        self._updates: list[FieldUpdate] = []
        self._keys: set[IdentifierKey | None] = set()
        for update in updates:
            self.add(update)

    def add(self, update: FieldUpdate) -> None:
        outside = [name for name in update.changes if name not in self.editable_fields]
        if outside:
            raise ValueError(f"Fields are not editable: {', '.join(sorted(outside))}")
        key = identifier_key(update.id)
        if key in self._keys:
            raise ValueError(f"Duplicate update for id={update.id!r}")
        self._keys.add(key)
        self._updates.append(update)

    def ids(self) -> list[Identifier]:
        return [update.id for update in self._updates]

    def to_payload(self) -> list[dict[str, Any]]:
        return [{"attributes": update.to_attributes()} for update in self._updates]

    def __iter__(self) -> Iterator[FieldUpdate]:
        return iter(self._updates)

    def __len__(self) -> int:
        return len(self._updates)

    def __bool__(self) -> bool:
        return bool(self._updates)

    def __getitem__(self, index: int) -> FieldUpdate:
        return self._updates[index]


@dataclass(frozen=True)
class ItemApplyError:
    """
    Назначение:
        Отказ хранилища применить один FieldUpdate. Не бросается, а агрегируется.
    """

    id: Identifier | None
    code: str
    message: str
    details: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ApplyOutcome:
    """
    Назначение:
        Результат применения одного элемента батча, сопоставленный по позиции и id.
    """

    index: int
    id: Identifier | None
    success: bool
    error: ItemApplyError | None = None


@dataclass
class EditResult:
    """
    Назначение:
        Нормализованный ответ applyEdits: по одному ApplyOutcome на каждый отправленный элемент.
    """

    add_results: list[ApplyOutcome] = field(default_factory=list)
    update_results: list[ApplyOutcome] = field(default_factory=list)
    delete_results: list[ApplyOutcome] = field(default_factory=list)


@dataclass
class ApplyReport:
    """
    Назначение:
        Итог работы BatchUpdateApplier.

    Поля:
        submitted: был ли вызов хранилища (False для пустого батча)
        refreshed: был ли отправлен сигнал обновления
        applied: идентификаторы успешно применённых обновлений
        failures: поэлементные отказы
    """

    submitted: bool = False
    refreshed: bool = False
    applied: list[Identifier] = field(default_factory=list)
    failures: list[ItemApplyError] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.applied) + len(self.failures)

    @property
    def has_failures(self) -> bool:
        return bool(self.failures)


class RunState(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    DIFFING = "diffing"
    SUBMITTING = "submitting"
    DONE = "done"
    FAILED = "failed"


@dataclass
class ReconcilePlan:
    """
    Назначение:
        Результат сверки двух снимков: батч обновлений и счётчики сопоставления.

    Поля:
        incoming_total: строк во входном наборе
        matched: строк, найденных в эталонном наборе
        unchanged: найденных строк без изменений в редактируемых полях
        unmatched_ids: идентификаторы, отсутствующие в эталонном наборе (пропущены)
        duplicate_ids: повторные идентификаторы входного набора (учитывается первое вхождение)
    """

    batch: UpdateBatch
    incoming_total: int = 0
    matched: int = 0
    unchanged: int = 0
    unmatched_ids: list[Identifier] = field(default_factory=list)
    duplicate_ids: list[Identifier] = field(default_factory=list)
