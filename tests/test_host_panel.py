import asyncio
from pathlib import Path

from sitepanel.cancellation import CancellationToken
from sitepanel.host import HostCoordinator
from sitepanel.messaging import MessageBus, Pong, SaveResult, connect_unix, encode
from sitepanel.panel import PanelClient, PanelState, SaveIndicator, render_status_line
from sitepanel.vcs import CommitOutcome, ReviewLookup, VersionControl
from sitepanel.workflow import ReconciliationWorkflow

PR_URL = "https://github.com/acme/site/pull/5"


class StubSupervisor:
    def __init__(self, running: bool = True) -> None:
        self.running = running
        self.started = 0
        self.stopped = 0

    def is_running(self) -> bool:
        return self.running

    async def start(self) -> None:
        self.started += 1

    async def stop(self) -> None:
        self.stopped += 1


class MemoryRepository(VersionControl):
    def __init__(self, branch: str = "updates", *, commit_delay: float = 0.0) -> None:
        self.branch = branch
        self.commit_delay = commit_delay
        self.dirty = True
        self.commits: list[str] = []

    async def current_branch(self) -> str | None:
        return self.branch

    async def list_branches(self) -> list[str] | None:
        return [self.branch]

    async def checkout(self, branch: str) -> bool:
        self.branch = branch
        return True

    async def checkout_new(self, branch: str) -> bool:
        self.branch = branch
        return True

    async def stage_and_commit(self, message: str) -> CommitOutcome:
        await asyncio.sleep(self.commit_delay)
        if not self.dirty:
            return CommitOutcome.NOTHING_TO_COMMIT
        self.dirty = False
        self.commits.append(message)
        return CommitOutcome.COMMITTED

    async def push(self, branch: str, *, set_upstream: bool = True) -> bool:
        return True


class FixedReviewLookup(ReviewLookup):
    async def find_open_review(self, branch: str) -> str | None:
        return PR_URL if branch == "updates" else None


def _coordinator(
    repository: MemoryRepository, supervisor: StubSupervisor | None
) -> HostCoordinator:
    workflow = ReconciliationWorkflow(repository, review_lookup=FixedReviewLookup())
    token = CancellationToken()
    return HostCoordinator(workflow, supervisor, token=token)  # type: ignore[arg-type]


def test_status_round_trip_over_loopback() -> None:
    async def _run() -> PanelState:
        host_bus, ui_bus = MessageBus.pair()
        _coordinator(MemoryRepository(), StubSupervisor(running=True)).bind(host_bus)
        client = PanelClient(ui_bus)
        state = await asyncio.wait_for(client.refresh(), timeout=2.0)
        await ui_bus.close()
        await host_bus.close()
        return state

    state = asyncio.run(_run())

    assert state.received_status is True
    assert state.server.running is True
    assert state.branch_name == "updates"
    assert state.review_link == PR_URL


def test_server_inactive_without_supervisor() -> None:
    async def _run() -> Pong:
        coordinator = _coordinator(MemoryRepository(branch="main"), None)
        return await coordinator.gather_status()

    assert asyncio.run(_run()) == Pong(server_active=False, review_link=None, branch_name="main")


def test_save_round_trip_reports_result() -> None:
    repository = MemoryRepository()

    async def _run() -> tuple[bool, bool, SaveIndicator]:
        host_bus, ui_bus = MessageBus.pair()
        _coordinator(repository, StubSupervisor()).bind(host_bus)
        client = PanelClient(ui_bus, indicator_timeout_seconds=5.0)
        first = await asyncio.wait_for(client.save("Fix typo on about page"), timeout=2.0)
        second = await asyncio.wait_for(client.save("Nothing changed since"), timeout=2.0)
        indicator = client.state.save.indicator
        await client.stop()
        await ui_bus.close()
        await host_bus.close()
        return first, second, indicator

    first, second, indicator = asyncio.run(_run())

    assert (first, second) == (True, False)
    assert indicator == SaveIndicator.ERROR
    assert repository.commits == ["Fix typo on about page"]


def test_short_commit_message_is_not_sent() -> None:
    repository = MemoryRepository()

    async def _run() -> tuple[bool, SaveIndicator]:
        host_bus, ui_bus = MessageBus.pair()
        _coordinator(repository, StubSupervisor()).bind(host_bus)
        client = PanelClient(ui_bus, min_commit_message_length=10)
        ok = await client.save("   tiny   ")
        await ui_bus.close()
        await host_bus.close()
        return ok, client.state.save.indicator

    assert asyncio.run(_run()) == (False, SaveIndicator.IDLE)
    assert repository.commits == []


def test_indicator_clears_before_a_slow_save_answers() -> None:
    repository = MemoryRepository(commit_delay=0.3)
    renders: list[SaveIndicator] = []

    async def _run() -> tuple[SaveIndicator, bool, bool, SaveIndicator]:
        host_bus, ui_bus = MessageBus.pair()
        _coordinator(repository, StubSupervisor()).bind(host_bus)
        client = PanelClient(
            ui_bus,
            indicator_timeout_seconds=0.05,
            on_render=lambda state: renders.append(state.save.indicator),
        )
        save_task = asyncio.create_task(client.save("Slow but steady change"))
        await asyncio.sleep(0.15)
        cleared = client.state.save.indicator
        in_flight = client.state.save.in_flight
        ok = await asyncio.wait_for(save_task, timeout=2.0)
        answered = client.state.save.indicator
        await asyncio.sleep(0.1)
        await ui_bus.close()
        await host_bus.close()
        return cleared, in_flight, ok, answered

    cleared, in_flight, ok, answered = asyncio.run(_run())

    assert cleared == SaveIndicator.IDLE
    assert in_flight is False
    assert ok is True
    assert answered == SaveIndicator.OK
    assert renders == [
        SaveIndicator.LOADING,
        SaveIndicator.IDLE,
        SaveIndicator.OK,
        SaveIndicator.IDLE,
    ]


def test_pong_without_branch_keeps_previous_branch_and_link() -> None:
    async def _run() -> PanelState:
        bus = MessageBus("ui")
        client = PanelClient(bus)
        bus.dispatch(encode(Pong(server_active=True, review_link=PR_URL, branch_name="updates")))
        bus.dispatch(encode(Pong(server_active=False)))
        return client.state

    state = asyncio.run(_run())

    assert state.server.running is False
    assert state.branch_name == "updates"
    assert state.review_link == PR_URL


def test_late_save_result_after_clear_is_applied() -> None:
    async def _run() -> SaveIndicator:
        bus = MessageBus("ui")
        client = PanelClient(bus, indicator_timeout_seconds=5.0)
        bus.dispatch(encode(SaveResult(ok=False)))
        indicator = client.state.save.indicator
        await client.stop()
        return indicator

    assert asyncio.run(_run()) == SaveIndicator.ERROR


def test_polling_keeps_state_fresh() -> None:
    supervisor = StubSupervisor(running=False)

    async def _run() -> tuple[bool, bool]:
        host_bus, ui_bus = MessageBus.pair()
        _coordinator(MemoryRepository(), supervisor).bind(host_bus)
        client = PanelClient(ui_bus, poll_interval_seconds=0.02)
        client.start()
        await asyncio.sleep(0.1)
        before = client.state.server.running
        supervisor.running = True
        await asyncio.sleep(0.1)
        after = client.state.server.running
        await client.stop()
        await ui_bus.close()
        await host_bus.close()
        return before, after

    assert asyncio.run(_run()) == (False, True)


def test_host_serves_ui_over_unix_socket(tmp_path: Path) -> None:
    socket_path = tmp_path / "host.sock"
    supervisor = StubSupervisor(running=True)
    coordinator = _coordinator(MemoryRepository(), supervisor)

    async def _run() -> tuple[PanelState, bool]:
        serve_task = asyncio.create_task(coordinator.serve(socket_path))
        for _ in range(100):
            if socket_path.exists():
                break
            await asyncio.sleep(0.01)
        bus, receiver = await connect_unix(socket_path)
        client = PanelClient(bus)
        state = await asyncio.wait_for(client.refresh(), timeout=2.0)
        saved = await asyncio.wait_for(client.save("Edit over the socket"), timeout=2.0)
        coordinator.token.cancel()
        await asyncio.wait_for(serve_task, timeout=5.0)
        await asyncio.wait_for(receiver, timeout=2.0)
        await bus.close()
        return state, saved

    state, saved = asyncio.run(_run())

    assert state.server.running is True
    assert state.branch_name == "updates"
    assert saved is True
    assert supervisor.started == 1
    assert supervisor.stopped == 1
    assert not socket_path.exists()


def test_large_commit_message_over_unix_socket(tmp_path: Path) -> None:
    socket_path = tmp_path / "host.sock"
    repository = MemoryRepository()
    coordinator = _coordinator(repository, StubSupervisor())
    message = "Long release notes: " + "x" * 200_000

    async def _run() -> bool:
        serve_task = asyncio.create_task(coordinator.serve(socket_path))
        for _ in range(100):
            if socket_path.exists():
                break
            await asyncio.sleep(0.01)
        bus, receiver = await connect_unix(socket_path)
        client = PanelClient(bus, indicator_timeout_seconds=5.0)
        saved = await asyncio.wait_for(client.save(message), timeout=5.0)
        await client.stop()
        coordinator.token.cancel()
        await asyncio.wait_for(serve_task, timeout=5.0)
        await asyncio.wait_for(receiver, timeout=2.0)
        await bus.close()
        return saved

    assert asyncio.run(_run()) is True
    assert repository.commits == [message]


def test_render_status_line_plain() -> None:
    state = PanelState()
    assert render_status_line(state, color=False) == "server: down | branch: -"

    state.server.running = True
    state.branch_name = "updates"
    state.review_link = PR_URL
    state.save.indicator = SaveIndicator.LOADING
    assert render_status_line(state, color=False) == (
        f"server: running | branch: updates | review: {PR_URL} | saving..."
    )

    state.save.indicator = SaveIndicator.ERROR
    assert render_status_line(state, color=False).endswith("save failed")


def test_render_status_line_colors_liveness() -> None:
    state = PanelState()
    state.server.running = True

    assert "\x1b[32mrunning" in render_status_line(state)
