from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Awaitable, Callable
from contextlib import suppress
from pathlib import Path

from sitepanel.messaging.bus import MessageBus, Transport
from sitepanel.messaging.messages import ProtocolError

logger = logging.getLogger(__name__)

# Upper bound for one JSON line; asyncio's own default is 64 KiB.
MAX_LINE_BYTES = 16 * 1024 * 1024

ConnectionHandler = Callable[[MessageBus], Awaitable[None]]


class StreamTransport(Transport):
    """Newline-delimited JSON over an asyncio stream pair."""

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self.reader = reader
        self.writer = writer

    async def send(self, raw: str) -> None:
        self.writer.write(raw.encode("utf-8") + b"\n")
        await self.writer.drain()

    async def receive_into(self, bus: MessageBus) -> None:
        """Feed inbound lines to ``bus.dispatch`` until the peer hangs up."""
        while True:
            try:
                raw_line = await self.reader.readline()
            except ValueError as exc:
                # The reader drops the oversized line, so the stream stays usable.
                bus.report(ProtocolError(f"Inbound message exceeds the line limit: {exc}"))
                continue
            if not raw_line:
                return
            line = raw_line.decode("utf-8", errors="replace").strip()
            if line:
                bus.dispatch(line)

    async def close(self) -> None:
        self.writer.close()
        with suppress(ConnectionError, OSError):
            await self.writer.wait_closed()


async def serve_unix(
    socket_path: Path,
    on_connect: ConnectionHandler,
    *,
    name: str = "host",
    limit: int = MAX_LINE_BYTES,
) -> asyncio.AbstractServer:
    """Accept UI connections, giving each one its own bus."""
    if socket_path.exists():
        socket_path.unlink()
    socket_path.parent.mkdir(parents=True, exist_ok=True)

    async def _handle(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        transport = StreamTransport(reader, writer)
        bus = MessageBus(name)
        bus.attach(transport)
        logger.info("UI connected to %s", socket_path)
        try:
            await on_connect(bus)
            await transport.receive_into(bus)
        except (ConnectionError, OSError) as exc:
            logger.info("UI connection dropped: %s", exc)
        finally:
            await bus.close()
            logger.info("UI disconnected from %s", socket_path)

    server = await asyncio.start_unix_server(_handle, path=str(socket_path), limit=limit)
    os.chmod(socket_path, 0o600)
    return server


async def connect_unix(
    socket_path: Path, *, name: str = "ui", limit: int = MAX_LINE_BYTES
) -> tuple[MessageBus, asyncio.Task[None]]:
    """Open a bus to a running host. The returned task ends when the host hangs up."""
    reader, writer = await asyncio.open_unix_connection(str(socket_path), limit=limit)
    transport = StreamTransport(reader, writer)
    bus = MessageBus(name)
    bus.attach(transport)
    receiver = asyncio.get_running_loop().create_task(
        transport.receive_into(bus), name=f"bus-receive:{name}"
    )
    return bus, receiver
