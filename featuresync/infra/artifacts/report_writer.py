from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

from featuresync.common.time import getNowIso


@dataclass
class ReportMeta:
    """
    Назначение:
        Метаданные отчёта запуска команды.
    """

    run_id: str
    command: str
    started_at: str
    finished_at: str | None = None
    duration_ms: int | None = None
    status: str | None = None
    csv_path: str | None = None
    output_path: str | None = None
    layer_url: str | None = None
    dry_run: bool = False
    log_file: str | None = None
    report_dir: str | None = None
    config_sources: list[str] = field(default_factory=list)
    items_limit: int | None = None
    items_truncated: bool = False
    error: dict[str, Any] | None = None


@dataclass
class ReportSummary:
    """
    Назначение:
        Сводные счётчики сверки/экспорта.
    """

    incoming: int = 0
    authoritative: int = 0
    matched: int = 0
    unmatched: int = 0
    duplicates: int = 0
    unchanged: int = 0
    planned_update: int = 0
    updated: int = 0
    failed: int = 0
    exported: int = 0


@dataclass
class Report:
    meta: ReportMeta
    summary: ReportSummary
    items: list[dict[str, Any]]

    def addItem(self, item: dict[str, Any]) -> bool:
        """
        Назначение:
            Добавляет элемент с учётом items_limit.
        Выходные данные:
            True, если элемент сохранён; иначе отмечает items_truncated.
        """
        limit = self.meta.items_limit
        if limit is not None and len(self.items) >= limit:
            self.meta.items_truncated = True
            return False
        self.items.append(item)
        return True


def createEmptyReport(runId: str, command: str, configSources: list[str], itemsLimit: int | None = None) -> Report:
    meta = ReportMeta(
        run_id=runId,
        command=command,
        started_at=getNowIso(),
        config_sources=list(configSources or []),
        items_limit=itemsLimit,
    )
    return Report(meta=meta, summary=ReportSummary(), items=[])


def finalizeReport(report: Report, durationMs: int, logFile: str | None, reportDir: str, status: str) -> None:
    report.meta.finished_at = getNowIso()
    report.meta.duration_ms = durationMs
    report.meta.log_file = logFile
    report.meta.report_dir = reportDir
    report.meta.status = status


def writeReportJson(report: Report, reportDir: str, fileBaseName: str) -> str:
    """
    Назначение:
        Записывает report.json на диск.

    Входные данные:
        fileBaseName: str
            Например: "report_reconcile_<runId>"

    Выходные данные:
        Полный путь к созданному файлу.
    """
    Path(reportDir).mkdir(parents=True, exist_ok=True)
    reportPath = str(Path(reportDir) / f"{fileBaseName}.json")

    data: dict[str, Any] = {
        "meta": asdict(report.meta),
        "summary": asdict(report.summary),
        "items": report.items,
    }

    with open(reportPath, "w", encoding="utf-8") as f:
        json.dump(data, f, ensure_ascii=False, indent=2, default=str)

    return reportPath


def writeExportCsv(content: str, outputPath: str) -> str:
    """
    Назначение:
        Сохраняет результат экспорта (CSV-текст) в файл, создавая каталог.
    """
    path = Path(outputPath)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8", newline="") as f:
        f.write(content)
    return str(path)
