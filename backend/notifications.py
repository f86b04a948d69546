from __future__ import annotations
import asyncio
import itertools
import logging
from typing import Callable, Optional

from schemas import Notification, NotificationType

logger = logging.getLogger(__name__)

Listener = Callable[[Optional[Notification]], None]


class NotificationCenter:
    """Single-slot toast state. A new message always supersedes the current one."""

    def __init__(self, default_duration: float = 3.0):
        self.default_duration = default_duration
        self._current: Optional[Notification] = None
        self._timer: Optional[asyncio.TimerHandle] = None
        self._ids = itertools.count(1)
        self._listeners: list[Listener] = []

    @property
    def current(self) -> Optional[Notification]:
        return self._current

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def show(self, message: str, type: NotificationType = "success", duration: Optional[float] = None) -> Notification:
        self._cancel_timer()
        self._current = Notification(id=next(self._ids), message=message, type=type, is_visible=True)
        logger.debug("notification %s: %s", type, message)
        self._emit()

        delay = self.default_duration if duration is None else duration
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop: the message stays until dismissed or replaced.
            loop = None
        if loop is not None and delay > 0:
            self._timer = loop.call_later(delay, self.dismiss)
        return self._current

    def dismiss(self) -> None:
        self._cancel_timer()
        if self._current is not None and self._current.is_visible:
            self._current = self._current.model_copy(update={"is_visible": False})
            self._emit()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _emit(self) -> None:
        for listener in list(self._listeners):
            listener(self._current)
