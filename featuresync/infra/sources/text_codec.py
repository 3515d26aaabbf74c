from __future__ import annotations

import csv
import io
from pathlib import Path
from typing import Any, Sequence

from featuresync.domain.exceptions import MalformedInputError
from featuresync.domain.models import Record
from featuresync.infra.sources.csv_utils import formatEpochDate, formatScalar, parseNull

LATITUDE_COLUMN = "latitude"
LONGITUDE_COLUMN = "longitude"


class TextCodec:
    """
    Назначение/ответственность:
        Декодирование CSV-текста в Record и кодирование Record обратно в CSV
        с производными колонками latitude/longitude.

    Ограничения:
        - Разделитель без экранирования: кавычки не обрабатываются ни при чтении,
          ни при записи. Значения с запятой или переводом строки ломают round-trip.
        - Геометрия во входном формате отсутствует: position у декодированных записей всегда None.
    """

    def __init__(
        self,
        id_field: str = "objectid",
        date_fields: Sequence[str] = (),
        date_format: str | None = None,
        delimiter: str = ",",
    ) -> None:
        self.id_field = id_field
        self.date_fields = frozenset(date_fields)
        self.date_format = date_format
        self.delimiter = delimiter

    def decode(self, text: str) -> list[Record]:
        """
        Контракт (вход/выход):
            Вход: текст с заголовком и строками данных.
            Выход: список Record в порядке строк.
        Ошибки/исключения:
            MalformedInputError - нет заголовка, нет колонки идентификатора,
            число полей строки не совпадает с заголовком, пустой идентификатор.
        """
        if text.startswith("\ufeff"):
            text = text[1:]
        reader = csv.reader(io.StringIO(text, newline=""), delimiter=self.delimiter, quoting=csv.QUOTE_NONE)

        header: list[str] | None = None
        id_column: int | None = None
        records: list[Record] = []
        for line_no, row in enumerate(reader, start=1):
            if not row or all(cell.strip() == "" for cell in row):
                continue
            if header is None:
                header = [cell.strip() for cell in row]
                id_column = self._find_id_column(header)
                continue
            if len(row) != len(header):
                raise MalformedInputError(
                    f"Invalid column count at line {line_no}: expected {len(header)}, got {len(row)}",
                    line_no=line_no,
                )
            values = {name: parseNull(cell) for name, cell in zip(header, row)}
            identifier = values[header[id_column]]
            if identifier is None:
                raise MalformedInputError(f"Empty identifier '{self.id_field}' at line {line_no}", line_no=line_no)
            records.append(Record(id=identifier, attributes=values, position=None))

        if header is None:
            raise MalformedInputError("Missing header row")
        return records

    def encode(self, records: Sequence[Record]) -> str:
        """
        Контракт (вход/выход):
            Вход: последовательность Record (набор атрибутов берётся из первой записи).
            Выход: CSV-текст; для пустой последовательности - пустая строка.
        """
        if not records:
            return ""
        keys = list(records[0].attributes.keys())
        lines = [self.delimiter.join([*keys, LATITUDE_COLUMN, LONGITUDE_COLUMN])]
        for record in records:
            cells = [self._format_cell(key, record.attributes.get(key)) for key in keys]
            if record.position is not None:
                cells.append(formatScalar(record.position.y))
                cells.append(formatScalar(record.position.x))
            else:
                cells.extend(["", ""])
            lines.append(self.delimiter.join(cells))
        return "\n".join(lines)

    def _find_id_column(self, header: list[str]) -> int:
        wanted = self.id_field.lower()
        for idx, name in enumerate(header):
            if name.lower() == wanted:
                return idx
        raise MalformedInputError(
            f"Identifier column '{self.id_field}' is missing in header",
            details={"header": header},
        )

    def _format_cell(self, key: str, value: Any) -> str:
        if key in self.date_fields and isinstance(value, (int, float)) and not isinstance(value, bool):
            try:
                return formatEpochDate(value, self.date_format)
            except (ValueError, OverflowError, OSError):
                # вне диапазона datetime: значение как есть
                return formatScalar(value)
        return formatScalar(value)


def readRecords(path: str, codec: TextCodec) -> list[Record]:
    """
    Назначение:
        Читает CSV-файл (UTF-8, BOM допускается) и декодирует его.
    Ошибки/исключения:
        MalformedInputError - файл не в UTF-8 или не проходит разбор.
    """
    try:
        with open(path, "r", encoding="utf-8-sig", newline="") as f:
            text = f.read()
    except UnicodeDecodeError as exc:
        raise MalformedInputError(
            "Input is not valid UTF-8",
            details={"position": exc.start, "reason": exc.reason},
        ) from exc
    return codec.decode(text)
