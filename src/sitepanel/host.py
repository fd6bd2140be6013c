from __future__ import annotations

import logging
from pathlib import Path

from sitepanel.cancellation import CancellationToken
from sitepanel.messaging import MessageBus, MessageKind, Ping, Pong, RequestSave, SaveResult
from sitepanel.messaging.transport import serve_unix
from sitepanel.supervisor import ProcessSupervisor
from sitepanel.workflow import ReconciliationWorkflow

logger = logging.getLogger(__name__)


class HostCoordinator:
    """Answers UI requests with supervisor liveness and git status.

    The host never pushes on its own schedule: each status request gets
    one consolidated reply, so nothing is sent to a UI that is not there.
    """

    def __init__(
        self,
        workflow: ReconciliationWorkflow,
        supervisor: ProcessSupervisor | None = None,
        *,
        token: CancellationToken | None = None,
    ) -> None:
        self.workflow = workflow
        self.supervisor = supervisor
        self.token = token or (supervisor.token if supervisor else CancellationToken())
        self._buses: set[MessageBus] = set()

    def bind(self, bus: MessageBus) -> None:
        async def _on_ping(message: Ping) -> None:
            _ = message
            bus.post(await self.gather_status())

        async def _on_save(message: RequestSave) -> None:
            logger.info("Save requested (%d chars)", len(message.commit_message))
            report = await self.workflow.save(message.commit_message)
            bus.post(SaveResult(ok=report.ok))

        bus.register(MessageKind.PING, _on_ping)
        bus.register(MessageKind.REQUEST_SAVE, _on_save)
        self._buses = {known for known in self._buses if not known.closed}
        self._buses.add(bus)

    def server_active(self) -> bool:
        if self.supervisor is None:
            return False
        return self.supervisor.is_running()

    async def gather_status(self) -> Pong:
        status = await self.workflow.current_status()
        return Pong(
            server_active=self.server_active(),
            review_link=status.review_link,
            branch_name=status.branch_name,
        )

    async def start(self) -> None:
        if self.supervisor is not None:
            await self.supervisor.start()

    async def shutdown(self) -> None:
        self.token.cancel()
        if self.supervisor is not None:
            await self.supervisor.stop()

    async def serve(self, socket_path: Path) -> None:
        """Run until the token is cancelled, accepting UI connections on a unix socket."""

        async def _on_connect(bus: MessageBus) -> None:
            self.bind(bus)

        await self.start()
        server = await serve_unix(socket_path, _on_connect)
        logger.info("Host listening on %s", socket_path)
        try:
            await self.token.wait()
        finally:
            server.close()
            for bus in list(self._buses):
                await bus.close()
            self._buses.clear()
            await server.wait_closed()
            await self.shutdown()
            if socket_path.exists():
                socket_path.unlink()
            logger.info("Host stopped")

