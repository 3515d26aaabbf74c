from __future__ import annotations

import logging
import sys
import time
from pathlib import Path

import typer

from featuresync.common.run_id import generate_run_id
from featuresync.common.sanitize import maskSecret, maskTokenInUrl
from featuresync.common.time import getDurationMs
from featuresync.config import Settings, load_settings
from featuresync.domain.exceptions import FetchError, MalformedInputError, SubmissionError
from featuresync.domain.planning.reconciler import Reconciler
from featuresync.infra.artifacts.report_writer import (
    Report,
    createEmptyReport,
    finalizeReport,
    writeExportCsv,
    writeReportJson,
)
from featuresync.infra.http.feature_service_client import ApiError, FeatureServiceClient
from featuresync.infra.logging.setup import (
    StdStreamToLogger,
    TeeStream,
    closeCommandLogger,
    createCommandLogger,
    logEvent,
)
from featuresync.infra.notify.refresh import LoggingRefreshNotifier
from featuresync.infra.sources.text_codec import TextCodec, readRecords
from featuresync.infra.store.feature_layer_store import FeatureLayerStore
from featuresync.usecases.apply_service import BatchUpdateApplier
from featuresync.usecases.export_usecase import ExportUseCase
from featuresync.usecases.reconcile_usecase import ReconcileUseCase

DEFAULT_EXPORT_FILE = "feature_table_data.csv"

app = typer.Typer(no_args_is_help=True, add_completion=False)

_STATUS_BY_EXIT_CODE = {0: "SUCCESS", 1: "PARTIAL", 2: "FAILED"}


def ensureDir(path: str) -> None:
    Path(path).mkdir(parents=True, exist_ok=True)


def requireCsv(csvPath: str | None) -> None:
    """
    Назначение:
        Проверка входного файла: задан, существует, имеет расширение .csv.

    Поведение:
        - Иначе завершает процесс с exit code 2.
    """
    if not csvPath:
        typer.echo("ERROR: --csv is required", err=True)
        raise typer.Exit(code=2)

    p = Path(csvPath)
    if not p.exists() or not p.is_file():
        typer.echo(f"ERROR: CSV file not found: {csvPath}", err=True)
        raise typer.Exit(code=2)
    if p.suffix.lower() != ".csv":
        typer.echo(f"ERROR: not a .csv file: {csvPath}", err=True)
        raise typer.Exit(code=2)


def requireService(settings: Settings) -> None:
    if not settings.layer_url:
        typer.echo("ERROR: missing service settings: layer_url", err=True)
        raise typer.Exit(code=2)


def printRunHeader(runId: str, command: str, settings: Settings, sources: list[str]) -> None:
    """
    Назначение:
        Печатает безопасную сводку параметров запуска (без секретов).
    """
    typer.echo(
        f"run_id={runId} command={command} "
        f"layer_url={maskTokenInUrl(settings.layer_url)} token={maskSecret(settings.token)} "
        f"id_field={settings.id_field} editable_fields={','.join(settings.editable_fields)} "
        f"sources={sources} log_level={settings.log_level}"
    )


def buildClient(settings: Settings) -> FeatureServiceClient:
    return FeatureServiceClient(
        layerUrl=settings.layer_url or "",
        token=settings.token,
        timeoutSeconds=settings.timeout_seconds,
        tlsSkipVerify=settings.tls_skip_verify,
        caFile=settings.ca_file,
        retries=settings.retries,
        retryBackoffSeconds=settings.retry_backoff_seconds,
    )


def buildStore(settings: Settings, client: FeatureServiceClient) -> FeatureLayerStore:
    return FeatureLayerStore(
        client,
        id_field=settings.id_field,
        page_size=settings.page_size,
        max_pages=settings.max_pages,
    )


def buildCodec(settings: Settings) -> TextCodec:
    return TextCodec(
        id_field=settings.id_field,
        date_fields=settings.date_fields,
        date_format=settings.date_format,
    )


def runWithReport(
    ctx: typer.Context,
    commandName: str,
    csvPath: str | None,
    requiresCsv: bool,
    runner,
) -> None:
    """
    Назначение:
        Унифицированная обвязка выполнения команд:
        - создаёт логгер + файл лога
        - создаёт report.json skeleton
        - валидирует обязательные входы (CSV/layer_url)
        - перенаправляет stdout/stderr в лог (tee)
        - гарантирует запись отчёта в finally
    """
    runId = ctx.obj["runId"]
    settings: Settings = ctx.obj["settings"]
    sources = ctx.obj["sources"]

    startMonotonic = time.monotonic()

    logger, logFilePath = createCommandLogger(
        commandName=commandName,
        logDir=settings.log_dir,
        runId=runId,
        logLevel=settings.log_level,
    )

    report = createEmptyReport(
        runId=runId,
        command=commandName,
        configSources=sources,
        itemsLimit=settings.report_items_limit,
    )
    report.meta.csv_path = csvPath
    report.meta.layer_url = maskTokenInUrl(settings.layer_url)

    originalStdout = sys.stdout
    originalStderr = sys.stderr
    sys.stdout = TeeStream(originalStdout, StdStreamToLogger(logger, logging.INFO, runId, "stdout"))
    sys.stderr = TeeStream(originalStderr, StdStreamToLogger(logger, logging.ERROR, runId, "stderr"))

    exitCode: int | None = None
    try:
        logEvent(logger, logging.INFO, runId, "core", "Command started")
        printRunHeader(runId, commandName, settings, sources)

        try:
            requireService(settings)
        except typer.Exit:
            logEvent(logger, logging.ERROR, runId, "config", "Missing layer_url")
            exitCode = 2
            return

        if requiresCsv:
            try:
                requireCsv(csvPath)
            except typer.Exit:
                logEvent(logger, logging.ERROR, runId, "csv", "CSV is missing or not accessible")
                exitCode = 2
                return

        exitCode = runner(logger, report)

    finally:
        durationMs = getDurationMs(startMonotonic, time.monotonic())
        finalizeReport(
            report=report,
            durationMs=durationMs,
            logFile=logFilePath,
            reportDir=settings.report_dir,
            status=_STATUS_BY_EXIT_CODE.get(exitCode, "FAILED"),
        )
        reportPath = writeReportJson(report, settings.report_dir, f"report_{commandName}_{runId}")
        logEvent(logger, logging.INFO, runId, "report", f"Report written: {reportPath}")

        sys.stdout.flush()
        sys.stderr.flush()
        sys.stdout = originalStdout
        sys.stderr = originalStderr
        closeCommandLogger(logger)

        if exitCode is not None:
            raise typer.Exit(code=exitCode)


def _fail(logger, report: Report, runId: str, component: str, exc: Exception, echo: str) -> int:
    logEvent(logger, logging.ERROR, runId, component, f"{echo}: {exc}")
    report.meta.error = exc.to_dict() if hasattr(exc, "to_dict") else {"message": str(exc)}
    typer.echo(f"ERROR: {echo}: {exc}", err=True)
    return 2


def runReconcileCommand(ctx: typer.Context, csvPath: str | None, dryRun: bool) -> None:
    settings: Settings = ctx.obj["settings"]
    runId = ctx.obj["runId"]

    def execute(logger, report: Report) -> int:
        report.meta.dry_run = dryRun
        codec = buildCodec(settings)
        try:
            incoming = readRecords(csvPath or "", codec)
        except MalformedInputError as exc:
            return _fail(logger, report, runId, "csv", exc, "CSV format error")
        except OSError as exc:
            return _fail(logger, report, runId, "csv", exc, "CSV read error")
        logEvent(logger, logging.INFO, runId, "csv", f"Decoded {len(incoming)} records from {csvPath}")

        client = buildClient(settings)
        try:
            store = buildStore(settings, client)
            notifier = LoggingRefreshNotifier(logger, runId)
            usecase = ReconcileUseCase(
                store=store,
                reconciler=Reconciler(settings.id_field, settings.editable_fields),
                applier=BatchUpdateApplier(store, notifier),
            )
            run = usecase.run(incoming, logger, runId, report=report, dry_run=dryRun)
        except FetchError as exc:
            return _fail(logger, report, runId, "fetch", exc, "Error querying features")
        except SubmissionError as exc:
            return _fail(logger, report, runId, "apply", exc, "Error applying edits")
        finally:
            client.close()

        summary = report.summary
        typer.echo(
            f"incoming={summary.incoming} matched={summary.matched} unmatched={summary.unmatched} "
            f"unchanged={summary.unchanged} planned_update={summary.planned_update} "
            f"updated={summary.updated} failed={summary.failed}"
        )
        if not run.plan.batch:
            typer.echo("No updates to apply.")
            return 0
        if dryRun:
            return 0
        if run.apply_report.has_failures:
            typer.echo("WARNING: some updates were rejected (see logs/report)", err=True)
            return 1
        return 0

    runWithReport(
        ctx=ctx,
        commandName="reconcile",
        csvPath=csvPath,
        requiresCsv=True,
        runner=execute,
    )


def runExportCommand(ctx: typer.Context, outPath: str) -> None:
    settings: Settings = ctx.obj["settings"]
    runId = ctx.obj["runId"]

    def execute(logger, report: Report) -> int:
        report.meta.output_path = outPath
        client = buildClient(settings)
        try:
            content = ExportUseCase(buildStore(settings, client), buildCodec(settings)).run(logger, runId, report)
        except FetchError as exc:
            return _fail(logger, report, runId, "export", exc, "Error downloading CSV")
        finally:
            client.close()
        try:
            written = writeExportCsv(content, outPath)
        except OSError as exc:
            return _fail(logger, report, runId, "export", exc, "CSV write error")
        logEvent(logger, logging.INFO, runId, "export", f"Export written: {written}")
        typer.echo(f"exported={report.summary.exported} path={written}")
        return 0

    runWithReport(
        ctx=ctx,
        commandName="export",
        csvPath=None,
        requiresCsv=False,
        runner=execute,
    )


def runCheckServiceCommand(ctx: typer.Context) -> None:
    settings: Settings = ctx.obj["settings"]
    runId = ctx.obj["runId"]

    def execute(logger, report: Report) -> int:
        client = buildClient(settings)
        try:
            start = time.monotonic()
            client.query(where="1=1", outFields=(settings.id_field,), resultRecordCount=1)
            latency_ms = int((time.monotonic() - start) * 1000)
            logEvent(logger, logging.INFO, runId, "api", f"service ok latency_ms={latency_ms}")
            typer.echo(f"service ok latency_ms={latency_ms}")
            return 0
        except ApiError as exc:
            return _fail(logger, report, runId, "api", exc, "Service check failed")
        finally:
            client.close()

    runWithReport(
        ctx=ctx,
        commandName="check-service",
        csvPath=None,
        requiresCsv=False,
        runner=execute,
    )


@app.callback()
def main(
    ctx: typer.Context,
    config: str | None = typer.Option(None, "--config", help="Path to config.yml"),
    runId: str | None = typer.Option(None, "--run-id", help="Run identifier (UUID). If omitted, generated."),
    logLevel: str | None = typer.Option(None, "--log-level", help="Log level: ERROR|WARN|INFO|DEBUG"),
    logDir: str | None = typer.Option(None, "--log-dir", help="Directory for logs."),
    reportDir: str | None = typer.Option(None, "--report-dir", help="Directory for reports."),
    layerUrl: str | None = typer.Option(None, "--layer-url", help="Feature layer URL (.../FeatureServer/0)"),
    token: str | None = typer.Option(None, "--token", help="Service token (avoid; use env/file)"),
    tokenFile: str | None = typer.Option(None, "--token-file", help="Read service token from file"),
    idField: str | None = typer.Option(None, "--id-field", help="Identifier field name"),
    editableFields: str | None = typer.Option(None, "--editable-fields", help="Comma-separated editable fields"),
    dateFields: str | None = typer.Option(None, "--date-fields", help="Comma-separated date fields for export"),
    timeoutSeconds: float | None = typer.Option(None, "--timeout-seconds", help="Request timeout in seconds"),
    retries: int | None = typer.Option(None, "--retries", help="Retry attempts for requests"),
    retryBackoffSeconds: float | None = typer.Option(None, "--retry-backoff-seconds", help="Base backoff for retries"),
    pageSize: int | None = typer.Option(None, "--page-size", help="Records per query page"),
    maxPages: int | None = typer.Option(None, "--max-pages", help="Max query pages"),
    tlsSkipVerify: bool | None = typer.Option(None, "--tls-skip-verify", help="Disable TLS verification"),
    caFile: str | None = typer.Option(None, "--ca-file", help="CA file path"),
):
    """
    Назначение:
        Глобальная инициализация CLI:
        - генерирует/принимает run_id
        - загружает настройки (CLI > ENV > config > defaults)
        - создаёт каталоги log/report
        - сохраняет всё в ctx.obj для подкоманд
    """
    if tokenFile and not token:
        p = Path(tokenFile)
        if not p.exists() or not p.is_file():
            typer.echo(f"ERROR: token-file not found: {tokenFile}", err=True)
            raise typer.Exit(code=2)
        token = p.read_text(encoding="utf-8").strip()

    if not runId:
        runId = generate_run_id()

    cliOverrides = {
        "layer_url": layerUrl,
        "token": token,
        "id_field": idField,
        "editable_fields": editableFields,
        "date_fields": dateFields,
        "log_level": logLevel,
        "log_dir": logDir,
        "report_dir": reportDir,
        "timeout_seconds": timeoutSeconds,
        "retries": retries,
        "retry_backoff_seconds": retryBackoffSeconds,
        "page_size": pageSize,
        "max_pages": maxPages,
        "tls_skip_verify": tlsSkipVerify,
        "ca_file": caFile,
    }
    try:
        loaded = load_settings(config_path=config, cli_overrides=cliOverrides)
    except ValueError as exc:
        typer.echo(f"ERROR: invalid settings: {exc}", err=True)
        raise typer.Exit(code=2)

    ensureDir(loaded.settings.log_dir)
    ensureDir(loaded.settings.report_dir)

    ctx.obj = {
        "runId": runId,
        "settings": loaded.settings,
        "sources": loaded.sources_used,
        "configPath": config,
    }


@app.command("reconcile")
def reconcile(
    ctx: typer.Context,
    csv: str | None = typer.Option(None, "--csv", help="Path to input CSV"),
    dryRun: bool = typer.Option(False, "--dry-run/--no-dry-run", help="Compute updates without submitting them"),
):
    runReconcileCommand(ctx, csv, dryRun)


@app.command("export")
def export(
    ctx: typer.Context,
    out: str = typer.Option(DEFAULT_EXPORT_FILE, "--out", help="Output CSV path"),
):
    runExportCommand(ctx, out)


@app.command("check-service")
def checkService(ctx: typer.Context):
    runCheckServiceCommand(ctx)


if __name__ == "__main__":
    app()
