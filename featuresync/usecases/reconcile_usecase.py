from __future__ import annotations

import logging
from dataclasses import dataclass, field

from featuresync.domain.models import ApplyReport, ReconcilePlan, Record, RunState
from featuresync.domain.planning.reconciler import Reconciler
from featuresync.domain.ports.record_store import RecordStoreProtocol
from featuresync.infra.artifacts.report_writer import Report
from featuresync.infra.logging.setup import logEvent
from featuresync.usecases.apply_service import BatchUpdateApplier

_TRANSITIONS: dict[RunState, tuple[RunState, ...]] = {
    RunState.IDLE: (RunState.FETCHING, RunState.FAILED),
    RunState.FETCHING: (RunState.DIFFING, RunState.FAILED),
    RunState.DIFFING: (RunState.SUBMITTING, RunState.DONE, RunState.FAILED),
    RunState.SUBMITTING: (RunState.DONE, RunState.FAILED),
    RunState.DONE: (),
    RunState.FAILED: (),
}


@dataclass
class ReconcileRun:
    """
    Назначение:
        Состояние одного прогона сверки: fetch -> diff -> submit -> refresh.

    Инварианты/гарантии:
        - Переходы только по _TRANSITIONS; DONE/FAILED терминальные.
    """

    state: RunState = RunState.IDLE
    history: list[RunState] = field(default_factory=lambda: [RunState.IDLE])
    plan: ReconcilePlan | None = None
    apply_report: ApplyReport | None = None

    def advance(self, state: RunState) -> None:
        if state not in _TRANSITIONS[self.state]:
            raise RuntimeError(f"Invalid run state transition: {self.state.value} -> {state.value}")
        self.state = state
        self.history.append(state)


class ReconcileUseCase:
    """
    Назначение/ответственность:
        Оркестратор прогона сверки.

    Взаимодействия:
        RecordStoreProtocol (полный снимок), Reconciler (diff), BatchUpdateApplier (submit + refresh).

    Ограничения:
        - Каждый шаг начинается только после завершения предыдущего.
        - FetchError/SubmissionError пробрасываются наверх, прогон помечается FAILED.
        - dry_run останавливается после diff, хранилище не изменяется.
    """

    def __init__(self, store: RecordStoreProtocol, reconciler: Reconciler, applier: BatchUpdateApplier) -> None:
        self.store = store
        self.reconciler = reconciler
        self.applier = applier

    def run(
        self,
        incoming: list[Record],
        logger: logging.Logger,
        run_id: str,
        report: Report | None = None,
        dry_run: bool = False,
    ) -> ReconcileRun:
        run = ReconcileRun()
        try:
            self._move(run, RunState.FETCHING, logger, run_id)
            authoritative = self.store.query(where="1=1", return_geometry=False, out_fields=("*",))
            logEvent(logger, logging.INFO, run_id, "fetch", f"Fetched {len(authoritative)} authoritative records")

            self._move(run, RunState.DIFFING, logger, run_id)
            plan = self.reconciler.reconcile(authoritative, incoming)
            run.plan = plan
            self._log_plan(plan, logger, run_id)
            if report is not None:
                self._fill_report(report, plan, len(authoritative), dry_run)

            if dry_run:
                self._move(run, RunState.DONE, logger, run_id)
                return run

            self._move(run, RunState.SUBMITTING, logger, run_id)
            run.apply_report = self.applier.apply(plan.batch, logger, run_id, report)
            self._move(run, RunState.DONE, logger, run_id)
            return run
        except Exception:
            if run.state not in (RunState.DONE, RunState.FAILED):
                self._move(run, RunState.FAILED, logger, run_id)
            raise

    @staticmethod
    def _move(run: ReconcileRun, state: RunState, logger: logging.Logger, run_id: str) -> None:
        previous = run.state
        run.advance(state)
        logEvent(logger, logging.DEBUG, run_id, "reconcile", f"State {previous.value} -> {state.value}")

    @staticmethod
    def _log_plan(plan: ReconcilePlan, logger: logging.Logger, run_id: str) -> None:
        for update in plan.batch:
            logEvent(
                logger,
                logging.DEBUG,
                run_id,
                "diff",
                f"Updating feature with id={update.id}: {', '.join(update.changes)}",
            )
        if plan.unmatched_ids:
            logEvent(
                logger,
                logging.WARNING,
                run_id,
                "diff",
                f"Skipped {len(plan.unmatched_ids)} records not present in the layer",
            )
        if plan.duplicate_ids:
            logEvent(
                logger,
                logging.WARNING,
                run_id,
                "diff",
                f"Skipped {len(plan.duplicate_ids)} repeated identifiers in input",
            )
        logEvent(
            logger,
            logging.INFO,
            run_id,
            "diff",
            f"incoming={plan.incoming_total} matched={plan.matched} unchanged={plan.unchanged} "
            f"planned_update={len(plan.batch)}",
        )

    @staticmethod
    def _fill_report(report: Report, plan: ReconcilePlan, authoritative_total: int, dry_run: bool) -> None:
        summary = report.summary
        summary.incoming = plan.incoming_total
        summary.authoritative = authoritative_total
        summary.matched = plan.matched
        summary.unmatched = len(plan.unmatched_ids)
        summary.duplicates = len(plan.duplicate_ids)
        summary.unchanged = plan.unchanged
        summary.planned_update = len(plan.batch)
        for identifier in plan.unmatched_ids:
            report.addItem({"status": "SKIPPED", "id": identifier, "reason": "not_found"})
        for identifier in plan.duplicate_ids:
            report.addItem({"status": "SKIPPED", "id": identifier, "reason": "duplicate_id"})
        if dry_run:
            for update in plan.batch:
                report.addItem({"status": "PLANNED", "id": update.id, "changes": dict(update.changes)})
