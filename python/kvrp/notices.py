"""User-visible notices.

Feeds and services report outcomes through a Notifier instead of printing or
raising into the front end. A front end supplies its own implementation
(toast, status bar, stderr); LogNotifier is the default.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol

from kvrp.errors import DEFAULT_NOTICES, SyncError
from kvrp.logging import get_logger

logger = get_logger(__name__)


class NoticeLevel(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    ERROR = "error"


class Notifier(Protocol):
    def info(self, message: str) -> None: ...

    def success(self, message: str) -> None: ...

    def error(self, message: str) -> None: ...


class LogNotifier:
    """Writes notices to the structured log."""

    def info(self, message: str) -> None:
        logger.info("notice", level=NoticeLevel.INFO.value, notice=message)

    def success(self, message: str) -> None:
        logger.info("notice", level=NoticeLevel.SUCCESS.value, notice=message)

    def error(self, message: str) -> None:
        logger.warning("notice", level=NoticeLevel.ERROR.value, notice=message)


@dataclass
class CollectingNotifier:
    """Records notices in order. Used by tests and headless front ends."""

    notices: list[tuple[NoticeLevel, str]] = field(default_factory=list)

    def info(self, message: str) -> None:
        self.notices.append((NoticeLevel.INFO, message))

    def success(self, message: str) -> None:
        self.notices.append((NoticeLevel.SUCCESS, message))

    def error(self, message: str) -> None:
        self.notices.append((NoticeLevel.ERROR, message))

    def messages(self, level: NoticeLevel | None = None) -> list[str]:
        return [m for lvl, m in self.notices if level is None or lvl == level]

    def clear(self) -> None:
        self.notices.clear()


def notify_failure(notifier: Notifier, error: SyncError, fallback: str | None = None) -> None:
    """Post an error notice for a SyncError.

    Uses `fallback` when the error only carries its code's default text.
    """
    message = error.message
    if fallback and message == DEFAULT_NOTICES.get(error.code):
        message = fallback
    notifier.error(message)
