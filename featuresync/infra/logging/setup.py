from __future__ import annotations

import logging
from pathlib import Path

LOG_FORMAT = "%(asctime)s %(levelname)s runId=%(runId)s comp=%(component)s msg=%(message)s"
LOG_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"

_LEVELS = {
    "ERROR": logging.ERROR,
    "WARN": logging.WARNING,
    "WARNING": logging.WARNING,
    "INFO": logging.INFO,
    "DEBUG": logging.DEBUG,
}


class EnsureFieldsFilter(logging.Filter):
    """
    Назначение:
        Гарантирует наличие полей runId и component в LogRecord,
        чтобы форматтер не падал KeyError на сторонних сообщениях.
    """

    def __init__(self, runId: str, defaultComponent: str = "core"):
        super().__init__()
        self.runId = runId
        self.defaultComponent = defaultComponent

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "runId"):
            record.runId = self.runId
        if not hasattr(record, "component"):
            record.component = self.defaultComponent
        return True


class StdStreamToLogger:
    """
    Назначение:
        Построчно пишет перехваченный stdout/stderr в логгер команды.
    """

    def __init__(self, logger: logging.Logger, level: int, runId: str, component: str):
        self.logger = logger
        self.level = level
        self.runId = runId
        self.component = component
        self.buffer = ""

    def _emit(self, line: str) -> None:
        if line.strip():
            logEvent(self.logger, self.level, self.runId, self.component, line.rstrip())

    def write(self, s: str) -> int:
        if not s:
            return 0
        self.buffer += s
        *lines, self.buffer = self.buffer.split("\n")
        for line in lines:
            self._emit(line)
        return len(s)

    def flush(self) -> None:
        self._emit(self.buffer)
        self.buffer = ""


class TeeStream:
    """
    Назначение:
        Дублирует вывод: в исходный поток и в StdStreamToLogger.
    """

    def __init__(self, primary, secondary):
        self.primary = primary
        self.secondary = secondary

    def write(self, s: str) -> int:
        written = self.primary.write(s)
        self.secondary.write(s)
        return written

    def flush(self) -> None:
        self.primary.flush()
        self.secondary.flush()


def mapLogLevel(levelName: str) -> int:
    """
    Назначение:
        Преобразует ERROR|WARN|INFO|DEBUG в уровень logging.
    """
    value = (levelName or "").strip().upper()
    if value not in _LEVELS:
        raise ValueError(f"Unsupported log level: {levelName}")
    return _LEVELS[value]


def createCommandLogger(commandName: str, logDir: str, runId: str, logLevel: str) -> tuple[logging.Logger, str]:
    """
    Назначение:
        Создаёт логгер команды с файлом <logDir>/<command>_<runId>.log.

    Выходные данные:
        (logger, logFilePath)
    """
    Path(logDir).mkdir(parents=True, exist_ok=True)
    logFilePath = str(Path(logDir) / f"{commandName}_{runId}.log")

    logger = logging.getLogger(f"featuresync.{commandName}.{runId}")
    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)
    logger.propagate = False

    level = mapLogLevel(logLevel)
    logger.setLevel(level)

    fileHandler = logging.FileHandler(logFilePath, encoding="utf-8")
    fileHandler.setLevel(level)
    fileHandler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
    fileHandler.addFilter(EnsureFieldsFilter(runId=runId))
    logger.addHandler(fileHandler)

    return logger, logFilePath


def closeCommandLogger(logger: logging.Logger) -> None:
    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)


def logEvent(logger: logging.Logger, level: int, runId: str, component: str, message: str) -> None:
    """
    Назначение:
        Унифицированная запись событий с runId/component.
    """
    logger.log(level, message, extra={"runId": runId, "component": component})
