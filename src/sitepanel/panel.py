from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum

import click

from sitepanel.messaging import MessageBus, MessageKind, Ping, Pong, RequestSave, SaveResult

logger = logging.getLogger(__name__)

RenderCallback = Callable[["PanelState"], None]


class SaveIndicator(StrEnum):
    IDLE = "idle"
    LOADING = "loading"
    OK = "ok"
    ERROR = "error"


@dataclass(slots=True)
class ServerState:
    running: bool = False


@dataclass(slots=True)
class SaveState:
    commit_message: str = ""
    in_flight: bool = False
    indicator: SaveIndicator = SaveIndicator.IDLE


@dataclass(slots=True)
class PanelState:
    server: ServerState = field(default_factory=ServerState)
    save: SaveState = field(default_factory=SaveState)
    branch_name: str | None = None
    review_link: str | None = None
    received_status: bool = False


class PanelClient:
    """UI side of the sync loop.

    Polls the host for status on a fixed interval and keeps ``state`` up to
    date. The save indicator clears itself after ``indicator_timeout_seconds``
    whether or not the host has answered; the save itself has no deadline.
    """

    def __init__(
        self,
        bus: MessageBus,
        *,
        poll_interval_seconds: float = 1.0,
        indicator_timeout_seconds: float = 1.0,
        min_commit_message_length: int = 10,
        on_render: RenderCallback | None = None,
    ) -> None:
        self.bus = bus
        self.poll_interval_seconds = poll_interval_seconds
        self.indicator_timeout_seconds = indicator_timeout_seconds
        self.min_commit_message_length = min_commit_message_length
        self.on_render = on_render
        self.state = PanelState()
        self._poll_task: asyncio.Task[None] | None = None
        self._clear_handle: asyncio.TimerHandle | None = None
        self._status_waiters: list[asyncio.Future[PanelState]] = []
        self._save_waiters: list[asyncio.Future[bool]] = []
        bus.register(MessageKind.PONG, self._on_pong)
        bus.register(MessageKind.SAVE_RESULT, self._on_save_result)

    def start(self) -> None:
        if self._poll_task is None or self._poll_task.done():
            self._poll_task = asyncio.get_running_loop().create_task(
                self._poll(), name="panel-poll"
            )

    async def stop(self) -> None:
        if self._clear_handle is not None:
            self._clear_handle.cancel()
            self._clear_handle = None
        if self._poll_task is not None:
            self._poll_task.cancel()
            try:
                await self._poll_task
            except asyncio.CancelledError:
                pass
            self._poll_task = None

    async def _poll(self) -> None:
        while True:
            self.bus.post(Ping())
            await asyncio.sleep(self.poll_interval_seconds)

    def can_save(self, commit_message: str) -> bool:
        return len(commit_message.strip()) >= self.min_commit_message_length

    def request_save(self, commit_message: str) -> bool:
        if not self.can_save(commit_message):
            logger.info(
                "Commit message needs at least %d characters", self.min_commit_message_length
            )
            return False
        self.state.save.commit_message = commit_message
        self.state.save.in_flight = True
        self.state.save.indicator = SaveIndicator.LOADING
        self.bus.post(RequestSave(commit_message=commit_message))
        self._schedule_clear()
        self._render()
        return True

    async def save(self, commit_message: str) -> bool:
        """Request a save and wait for the host's answer."""
        if not self.request_save(commit_message):
            return False
        waiter: asyncio.Future[bool] = asyncio.get_running_loop().create_future()
        self._save_waiters.append(waiter)
        return await waiter

    async def refresh(self) -> PanelState:
        """Ask for one status update and wait for it."""
        waiter: asyncio.Future[PanelState] = asyncio.get_running_loop().create_future()
        self._status_waiters.append(waiter)
        self.bus.post(Ping())
        return await waiter

    def _on_pong(self, message: Pong) -> None:
        self.state.server.running = message.server_active
        # An unknown branch leaves the branch and link as they were.
        if message.branch_name is not None:
            self.state.branch_name = message.branch_name
            self.state.review_link = message.review_link
        self.state.received_status = True
        self._render()
        waiters, self._status_waiters = self._status_waiters, []
        for waiter in waiters:
            if not waiter.done():
                waiter.set_result(self.state)

    def _on_save_result(self, message: SaveResult) -> None:
        self.state.save.in_flight = False
        self.state.save.indicator = SaveIndicator.OK if message.ok else SaveIndicator.ERROR
        self._schedule_clear()
        self._render()
        waiters, self._save_waiters = self._save_waiters, []
        for waiter in waiters:
            if not waiter.done():
                waiter.set_result(message.ok)

    def _schedule_clear(self) -> None:
        if self._clear_handle is not None:
            self._clear_handle.cancel()
        self._clear_handle = asyncio.get_running_loop().call_later(
            self.indicator_timeout_seconds, self._clear_indicator
        )

    def _clear_indicator(self) -> None:
        self._clear_handle = None
        self.state.save.in_flight = False
        self.state.save.indicator = SaveIndicator.IDLE
        self._render()

    def _render(self) -> None:
        if self.on_render is not None:
            self.on_render(self.state)


def render_status_line(state: PanelState, *, color: bool = True) -> str:
    def _style(text: str, fg: str) -> str:
        return click.style(text, fg=fg) if color else text

    if state.server.running:
        parts = [f"server: {_style('running', 'green')}"]
    else:
        parts = [f"server: {_style('down', 'red')}"]
    parts.append(f"branch: {state.branch_name or '-'}")
    if state.review_link:
        parts.append(f"review: {state.review_link}")

    indicator = state.save.indicator
    if indicator is SaveIndicator.LOADING:
        parts.append(_style("saving...", "yellow"))
    elif indicator is SaveIndicator.OK:
        parts.append(_style("saved", "green"))
    elif indicator is SaveIndicator.ERROR:
        parts.append(_style("save failed", "red"))
    return " | ".join(parts)
