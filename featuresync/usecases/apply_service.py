from __future__ import annotations

import logging

from featuresync.domain.error_codes import ErrorCode
from featuresync.domain.exceptions import SubmissionError
from featuresync.domain.models import ApplyReport, ItemApplyError, UpdateBatch
from featuresync.domain.ports.record_store import RecordStoreProtocol
from featuresync.domain.ports.refresh import RefreshNotifierProtocol
from featuresync.infra.artifacts.report_writer import Report
from featuresync.infra.logging.setup import logEvent


class BatchUpdateApplier:
    """
    Назначение/ответственность:
        Отправляет UpdateBatch одним вызовом applyEdits, разбирает поэлементные результаты
        и один раз сигнализирует об обновлении.

    Ограничения:
        - Пустой батч: хранилище не вызывается, refresh не отправляется.
        - Частичный отказ допустим: ошибки элементов собираются, обработка не прерывается.
        - SubmissionError пробрасывается, refresh не отправляется.
    """

    def __init__(self, store: RecordStoreProtocol, notifier: RefreshNotifierProtocol) -> None:
        self.store = store
        self.notifier = notifier

    def apply(
        self,
        batch: UpdateBatch,
        logger: logging.Logger,
        run_id: str,
        report: Report | None = None,
    ) -> ApplyReport:
        result = ApplyReport()
        if not batch:
            logEvent(logger, logging.INFO, run_id, "apply", "No updates to apply.")
            return result

        logEvent(logger, logging.INFO, run_id, "apply", f"Submitting {len(batch)} updates")
        try:
            edit_result = self.store.apply_edits(updates=list(batch))
        except SubmissionError as exc:
            logEvent(logger, logging.ERROR, run_id, "apply", f"Error applying edits: {exc}")
            raise
        result.submitted = True

        for outcome in edit_result.update_results:
            if outcome.success:
                result.applied.append(outcome.id)
                continue
            error = outcome.error or ItemApplyError(
                id=outcome.id, code=ErrorCode.ITEM_REJECTED.value, message="Edit rejected"
            )
            result.failures.append(error)
            logEvent(
                logger,
                logging.ERROR,
                run_id,
                "apply",
                f"Error updating feature id={outcome.id}: {error.code} {error.message}",
            )
            if report is not None:
                report.addItem(
                    {
                        "status": "FAILED",
                        "id": outcome.id,
                        "changes": dict(batch[outcome.index].changes),
                        "error": {"code": error.code, "message": error.message},
                    }
                )

        logEvent(
            logger,
            logging.INFO,
            run_id,
            "apply",
            f"Bulk update finished: applied={len(result.applied)} failed={len(result.failures)}",
        )
        if report is not None:
            report.summary.updated += len(result.applied)
            report.summary.failed += len(result.failures)

        self.notifier.refresh()
        result.refreshed = True
        return result
