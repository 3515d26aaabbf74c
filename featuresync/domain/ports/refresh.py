from __future__ import annotations

from typing import Protocol


class RefreshNotifierProtocol(Protocol):
    """
    Назначение:
        Сигнал внешнему потребителю (таблица/отображение), что эталонные данные могли измениться.
    Ограничения:
        Идемпотентен; повторный вызов безопасен.
    """

    def refresh(self) -> None: ...
