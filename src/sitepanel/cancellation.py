from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

logger = logging.getLogger(__name__)

CancelObserver = Callable[[], None]


class CancellationToken:
    """One-shot cooperative cancellation shared between components.

    The token moves from not-cancelled to cancelled exactly once. Every
    observer is called exactly once, including observers added after the
    token was already cancelled (those fire immediately).
    """

    def __init__(self) -> None:
        self._cancelled = False
        self._observers: list[CancelObserver] = []

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled

    def add_observer(self, observer: CancelObserver) -> None:
        if self._cancelled:
            self._notify(observer)
            return
        if observer not in self._observers:
            self._observers.append(observer)

    def remove_observer(self, observer: CancelObserver) -> None:
        try:
            self._observers.remove(observer)
        except ValueError:
            pass

    def cancel(self) -> bool:
        """Cancel the token. Returns False when it was already cancelled."""
        if self._cancelled:
            return False
        self._cancelled = True
        observers, self._observers = self._observers, []
        for observer in observers:
            self._notify(observer)
        return True

    async def wait(self) -> None:
        if self._cancelled:
            return
        loop = asyncio.get_running_loop()
        fired: asyncio.Future[None] = loop.create_future()

        def _resolve() -> None:
            if not fired.done():
                fired.set_result(None)

        self.add_observer(_resolve)
        try:
            await fired
        finally:
            self.remove_observer(_resolve)

    @staticmethod
    def _notify(observer: CancelObserver) -> None:
        try:
            observer()
        except Exception:
            logger.exception("Cancellation observer %r failed", observer)
