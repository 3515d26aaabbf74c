from __future__ import annotations

import logging
from typing import Callable

from featuresync.domain.ports.refresh import RefreshNotifierProtocol
from featuresync.infra.logging.setup import logEvent


class LoggingRefreshNotifier(RefreshNotifierProtocol):
    """
    Назначение:
        Сигнал обновления для CLI: потребителя-таблицы нет, событие пишется в лог.
    """

    def __init__(self, logger: logging.Logger, run_id: str) -> None:
        self.logger = logger
        self.run_id = run_id
        self.calls = 0

    def refresh(self) -> None:
        self.calls += 1
        logEvent(self.logger, logging.INFO, self.run_id, "refresh", "Refresh requested for display consumers")


class CallbackRefreshNotifier(RefreshNotifierProtocol):
    """
    Назначение:
        Адаптер для встраивания: вызывает переданные callback-и без аргументов.
    """

    def __init__(self, *callbacks: Callable[[], None]) -> None:
        self.callbacks = list(callbacks)

    def refresh(self) -> None:
        for callback in self.callbacks:
            callback()
