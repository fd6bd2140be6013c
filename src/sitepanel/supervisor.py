from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import Any

from sitepanel.cancellation import CancellationToken

logger = logging.getLogger(__name__)

SupervisorEventHook = Callable[[dict[str, Any]], None]

EXIT_POLL_SECONDS = 0.1
STREAM_SETTLE_SECONDS = 0.2


class ProcessStatus(StrEnum):
    STARTING = "starting"
    RUNNING = "running"
    STOPPED = "stopped"
    TERMINATING = "terminating"


@dataclass(slots=True)
class SupervisedProcess:
    command: list[str]
    working_directory: Path
    status: ProcessStatus = ProcessStatus.STOPPED
    restart_count: int = 0
    spawn_count: int = 0
    pid: int | None = None
    last_exit_code: int | None = None
    spawn_error: str | None = None


class ProcessSupervisor:
    """Keeps a single worker process alive until the token is cancelled.

    Unexpected exits are followed by an immediate respawn with the same
    arguments and working directory. A failed spawn (missing executable,
    permission denied) is terminal for this instance.
    """

    def __init__(
        self,
        command: Sequence[str],
        working_directory: Path,
        *,
        token: CancellationToken | None = None,
        stop_timeout_seconds: float = 5.0,
        event_hook: SupervisorEventHook | None = None,
    ) -> None:
        if not command:
            raise ValueError("Supervised command must not be empty.")
        self.process = SupervisedProcess(
            command=list(command),
            working_directory=Path(working_directory),
        )
        self.token = token or CancellationToken()
        self.stop_timeout_seconds = stop_timeout_seconds
        self.event_hook = event_hook
        self._child: asyncio.subprocess.Process | None = None
        self._monitor_task: asyncio.Task[None] | None = None
        self._stream_tasks: list[asyncio.Task[None]] = []
        self._spawn_lock = asyncio.Lock()
        self.token.add_observer(self._on_cancel)

    @property
    def spawn_failed(self) -> bool:
        return self.process.spawn_error is not None

    @property
    def status(self) -> ProcessStatus:
        return self.process.status

    def _emit(self, event: dict[str, Any]) -> None:
        if not self.event_hook:
            return
        try:
            self.event_hook(event)
        except Exception:
            logger.exception("Supervisor event hook failed on %s", event.get("event"))

    def is_running(self) -> bool:
        child = self._child
        return (
            child is not None
            and child.returncode is None
            and self.process.status == ProcessStatus.RUNNING
        )

    async def start(self) -> None:
        if self.token.is_cancelled or self.spawn_failed:
            return
        if self._monitor_task is not None and not self._monitor_task.done():
            return
        if not await self._spawn():
            return
        self._monitor_task = asyncio.create_task(
            self._monitor(), name=f"supervise:{self.process.command[0]}"
        )

    async def stop(self) -> None:
        self.token.cancel()
        # Let an in-flight spawn settle; it re-checks the token and tears itself down.
        async with self._spawn_lock:
            pass

        task = self._monitor_task
        if task is not None:
            try:
                await asyncio.wait_for(asyncio.shield(task), timeout=self.stop_timeout_seconds)
            except TimeoutError:
                child = self._child
                if child is not None and child.returncode is None:
                    logger.warning("Worker %s ignored SIGTERM, killing", child.pid)
                    self._kill(child)
                await task
        self.process.status = ProcessStatus.STOPPED
        self._emit({"event": "process_stopped", "spawn_count": self.process.spawn_count})

    async def _spawn(self) -> bool:
        async with self._spawn_lock:
            if self.token.is_cancelled:
                self.process.status = ProcessStatus.STOPPED
                return False

            self.process.status = ProcessStatus.STARTING
            command = self.process.command
            try:
                child = await asyncio.create_subprocess_exec(
                    *command,
                    cwd=str(self.process.working_directory),
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                )
            except OSError as exc:
                self.process.status = ProcessStatus.STOPPED
                self.process.spawn_error = str(exc)
                logger.error("Cannot spawn %s, giving up: %s", command[0], exc)
                self._emit({"event": "process_spawn_failed", "error": str(exc)})
                return False

            self._child = child
            self.process.spawn_count += 1
            self.process.pid = child.pid

            if self.token.is_cancelled:
                # stop() was requested while the exec was in flight.
                self.process.status = ProcessStatus.TERMINATING
                await self._terminate(child)
                self.process.status = ProcessStatus.STOPPED
                return False

            self.process.status = ProcessStatus.RUNNING
            self._stream_tasks = [
                asyncio.create_task(self._drain(child.stdout, "stdout")),
                asyncio.create_task(self._drain(child.stderr, "stderr")),
            ]
            logger.info("Started %s (pid %s)", " ".join(command), child.pid)
            self._emit(
                {
                    "event": "process_spawned",
                    "pid": child.pid,
                    "restart_count": self.process.restart_count,
                }
            )
            return True

    async def _monitor(self) -> None:
        while True:
            child = self._child
            if child is None:
                return
            exit_code = await self._wait_for_exit(child)
            if self.process.status == ProcessStatus.RUNNING:
                self.process.status = ProcessStatus.STOPPED
            await self._settle_streams()
            self.process.last_exit_code = exit_code
            self._emit({"event": "process_exited", "pid": child.pid, "exit_code": exit_code})

            if self.token.is_cancelled:
                self.process.status = ProcessStatus.STOPPED
                logger.info("Worker %s terminated on shutdown", child.pid)
                return

            logger.warning(
                "%s exited with code %s, restarting", self.process.command[0], exit_code
            )
            self.process.restart_count += 1
            if not await self._spawn():
                return

    def _on_cancel(self) -> None:
        child = self._child
        if child is None or child.returncode is not None:
            return
        self.process.status = ProcessStatus.TERMINATING
        try:
            child.terminate()
        except ProcessLookupError:
            pass

    async def _terminate(self, child: asyncio.subprocess.Process) -> None:
        if child.returncode is None:
            try:
                child.terminate()
            except ProcessLookupError:
                pass
        try:
            await asyncio.wait_for(self._wait_for_exit(child), timeout=self.stop_timeout_seconds)
        except TimeoutError:
            self._kill(child)
            await self._wait_for_exit(child)

    @staticmethod
    async def _wait_for_exit(child: asyncio.subprocess.Process) -> int:
        # Process.wait() can also wait for the pipes, which an orphaned
        # grandchild may hold open long after the worker itself exited.
        waiter = asyncio.ensure_future(child.wait())
        try:
            while True:
                done, _pending = await asyncio.wait({waiter}, timeout=EXIT_POLL_SECONDS)
                if done:
                    return waiter.result()
                if child.returncode is not None:
                    return child.returncode
        finally:
            if not waiter.done():
                waiter.cancel()

    async def _settle_streams(self) -> None:
        tasks, self._stream_tasks = self._stream_tasks, []
        if not tasks:
            return
        _done, pending = await asyncio.wait(tasks, timeout=STREAM_SETTLE_SECONDS)
        for task in pending:
            task.cancel()
        if pending:
            logger.debug(
                "Worker output still open after exit, detaching %d stream(s)", len(pending)
            )
            await asyncio.gather(*pending, return_exceptions=True)

    @staticmethod
    def _kill(child: asyncio.subprocess.Process) -> None:
        try:
            child.kill()
        except ProcessLookupError:
            pass

    @staticmethod
    async def _drain(stream: asyncio.StreamReader | None, label: str) -> None:
        if stream is None:
            return
        async for raw_line in stream:
            line = raw_line.decode("utf-8", errors="replace").rstrip()
            if line:
                logger.debug("worker %s: %s", label, line)
