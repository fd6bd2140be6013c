from __future__ import annotations

import asyncio
import inspect
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import Any

from sitepanel.messaging.messages import Message, MessageKind, ProtocolError, decode, dumps, kind_of

logger = logging.getLogger(__name__)

Handler = Callable[[Any], Awaitable[None] | None]
ErrorHook = Callable[[Exception], None]


class Transport(ABC):
    @abstractmethod
    async def send(self, raw: str) -> None:
        """Deliver one encoded message to the peer context."""

    async def close(self) -> None:
        return None


class LoopbackTransport(Transport):
    """Delivers to another bus in the same process on a later loop iteration."""

    def __init__(self, peer: MessageBus) -> None:
        self.peer = peer

    async def send(self, raw: str) -> None:
        await asyncio.sleep(0)
        self.peer.dispatch(raw)


class MessageBus:
    """Typed, ordered channel between the host and the UI.

    ``post`` never blocks: messages are queued and a single pump task hands
    them to the transport in the order they were posted. ``dispatch`` routes
    an inbound message to the one handler registered for its kind and never
    raises; protocol problems go to ``error_hook`` and the log instead.
    """

    def __init__(self, name: str = "bus", *, error_hook: ErrorHook | None = None) -> None:
        self.name = name
        self.error_hook = error_hook
        self.protocol_errors = 0
        self._handlers: dict[MessageKind, Handler] = {}
        self._outbound: asyncio.Queue[str] = asyncio.Queue()
        self._transport: Transport | None = None
        self._pump_task: asyncio.Task[None] | None = None
        self._handler_tasks: set[asyncio.Task[Any]] = set()
        self._closing = False
        self._closed = False

    @classmethod
    def pair(
        cls,
        *,
        host_error_hook: ErrorHook | None = None,
        ui_error_hook: ErrorHook | None = None,
    ) -> tuple[MessageBus, MessageBus]:
        host = cls("host", error_hook=host_error_hook)
        ui = cls("ui", error_hook=ui_error_hook)
        host.attach(LoopbackTransport(ui))
        ui.attach(LoopbackTransport(host))
        return host, ui

    @property
    def closed(self) -> bool:
        return self._closed

    def attach(self, transport: Transport) -> None:
        if self._transport is not None:
            raise RuntimeError(f"{self.name} bus already has a transport attached.")
        self._transport = transport
        self._pump_task = asyncio.get_running_loop().create_task(
            self._pump(), name=f"bus-pump:{self.name}"
        )

    def register(self, kind: MessageKind | str, handler: Handler) -> None:
        self._handlers[MessageKind(kind)] = handler

    def unregister(self, kind: MessageKind | str) -> None:
        self._handlers.pop(MessageKind(kind), None)

    def post(self, message: Message) -> None:
        if self._closed:
            logger.warning("%s bus is closed, dropping %s", self.name, kind_of(message))
            return
        self._outbound.put_nowait(dumps(message))

    def dispatch(self, raw: dict[str, Any] | str | bytes) -> bool:
        try:
            message = decode(raw)
        except ProtocolError as exc:
            self.report(exc)
            return False

        kind = kind_of(message)
        handler = self._handlers.get(kind)
        if handler is None:
            self.report(ProtocolError(f"No handler registered for '{kind}'", kind=kind))
            return False

        try:
            result = handler(message)
        except Exception as exc:
            logger.exception("%s handler for '%s' failed", self.name, kind)
            self.report(exc)
            return False

        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._handler_tasks.add(task)
            task.add_done_callback(self._handler_finished)
        return True

    async def flush(self) -> None:
        if self._pump_task is None or self._pump_task.done():
            return
        await self._outbound.join()

    async def close(self) -> None:
        if self._closed or self._closing:
            return
        self._closing = True
        if self._handler_tasks:
            await asyncio.gather(*list(self._handler_tasks), return_exceptions=True)
        await self.flush()
        self._closed = True
        if self._pump_task is not None:
            self._pump_task.cancel()
            try:
                await self._pump_task
            except asyncio.CancelledError:
                pass
        if self._transport is not None:
            await self._transport.close()

    async def _pump(self) -> None:
        transport = self._transport
        assert transport is not None
        while True:
            raw = await self._outbound.get()
            try:
                await transport.send(raw)
            except (ConnectionError, OSError) as exc:
                logger.warning("%s bus failed to deliver message: %s", self.name, exc)
                self.report(exc)
            finally:
                self._outbound.task_done()

    def _handler_finished(self, task: asyncio.Task[Any]) -> None:
        self._handler_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("%s handler task failed: %s", self.name, exc, exc_info=exc)
            self.report(exc)

    def report(self, exc: Exception) -> None:
        """Count protocol errors and hand any failure to ``error_hook``."""
        if isinstance(exc, ProtocolError):
            self.protocol_errors += 1
            logger.warning("%s bus protocol error: %s", self.name, exc)
        if self.error_hook:
            try:
                self.error_hook(exc)
            except Exception:
                logger.exception("%s bus error hook failed", self.name)
