from __future__ import annotations

import logging

from featuresync.domain.ports.record_store import RecordStoreProtocol
from featuresync.infra.artifacts.report_writer import Report
from featuresync.infra.logging.setup import logEvent
from featuresync.infra.sources.text_codec import TextCodec


class ExportUseCase:
    """
    Назначение/ответственность:
        Экспорт эталонного набора (с геометрией) в CSV-текст.
    Ограничения:
        Пустой слой даёт пустую строку, а не заголовок.
    """

    def __init__(self, store: RecordStoreProtocol, codec: TextCodec) -> None:
        self.store = store
        self.codec = codec

    def run(self, logger: logging.Logger, run_id: str, report: Report | None = None) -> str:
        records = self.store.query(where="1=1", return_geometry=True, out_fields=("*",))
        logEvent(logger, logging.INFO, run_id, "export", f"Fetched {len(records)} records for export")
        if report is not None:
            report.summary.authoritative = len(records)
            report.summary.exported = len(records)
        return self.codec.encode(records)
