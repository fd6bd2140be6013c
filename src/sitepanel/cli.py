from __future__ import annotations

import asyncio
import json
import logging
import os
import signal
from dataclasses import dataclass
from pathlib import Path

import click

from sitepanel.cancellation import CancellationToken
from sitepanel.config import CONFIG_FILENAME, PanelConfig, load_config, save_config
from sitepanel.host import HostCoordinator
from sitepanel.messaging import MessageBus, connect_unix
from sitepanel.panel import PanelClient, PanelState, RenderCallback, render_status_line
from sitepanel.supervisor import ProcessSupervisor
from sitepanel.vcs import (
    GitHubReviewLookup,
    GitRepository,
    NoReviewLookup,
    ReviewLookup,
    parse_github_repository,
)
from sitepanel.workflow import ReconciliationWorkflow
from sitepanel.workspace import discover_site_config

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


@dataclass(slots=True)
class Runtime:
    workspace: Path
    config_path: Path
    config: PanelConfig
    site_config: Path | None
    repository: GitRepository
    socket_path: Path


def _resolve_path(workspace: Path, value: str) -> Path:
    path = Path(value)
    if not path.is_absolute():
        path = workspace / path
    return path.resolve()


def _load_runtime(workspace: Path, config_value: str) -> Runtime:
    config_path = _resolve_path(workspace, config_value)
    config = load_config(config_path)
    return Runtime(
        workspace=workspace,
        config_path=config_path,
        config=config,
        site_config=discover_site_config(workspace, config.server.site_config),
        repository=GitRepository(workspace, remote=config.git.remote),
        socket_path=_resolve_path(workspace, config.sync.socket_path),
    )


def _prepare_runtime_dir(runtime: Runtime) -> None:
    directory = runtime.socket_path.parent
    directory.mkdir(parents=True, exist_ok=True)
    # Saves stage the whole tree, so the socket directory must ignore itself.
    if directory != runtime.workspace and directory.is_relative_to(runtime.workspace):
        gitignore = directory / ".gitignore"
        if not gitignore.exists():
            gitignore.write_text("# Created by sitepanel.\n*\n", encoding="utf-8")


async def _build_review_lookup(runtime: Runtime) -> ReviewLookup:
    review = runtime.config.review
    if review.provider != "github":
        return NoReviewLookup()
    repository_name = review.repository or parse_github_repository(
        await runtime.repository.remote_url() or ""
    )
    if not repository_name:
        logger.warning("Cannot tell which GitHub repository to query, review links disabled")
        return NoReviewLookup()
    return GitHubReviewLookup(
        repository_name,
        token=os.environ.get(review.token_env) or None,
        api_url=review.api_url,
        timeout_seconds=review.timeout_seconds,
    )


async def _build_host(runtime: Runtime) -> HostCoordinator:
    token = CancellationToken()
    supervisor = None
    if runtime.site_config is not None:
        supervisor = ProcessSupervisor(
            runtime.config.server.command(),
            runtime.site_config.parent,
            token=token,
            stop_timeout_seconds=runtime.config.server.stop_timeout_seconds,
        )
    workflow = ReconciliationWorkflow(
        runtime.repository,
        target_branch=runtime.config.git.target_branch,
        review_lookup=await _build_review_lookup(runtime),
    )
    return HostCoordinator(workflow, supervisor, token=token)


async def _connect(runtime: Runtime) -> tuple[MessageBus, asyncio.Task[None]]:
    try:
        return await connect_unix(runtime.socket_path)
    except (FileNotFoundError, ConnectionRefusedError) as exc:
        raise click.ClickException(
            f"No host is listening on {runtime.socket_path}. Start one with 'sitepanel serve'."
        ) from exc


def _panel_client(
    runtime: Runtime, bus: MessageBus, on_render: RenderCallback | None = None
) -> PanelClient:
    sync = runtime.config.sync
    return PanelClient(
        bus,
        poll_interval_seconds=sync.poll_interval_seconds,
        indicator_timeout_seconds=sync.save_indicator_timeout_seconds,
        min_commit_message_length=sync.min_commit_message_length,
        on_render=on_render,
    )


@click.group()
@click.option("-v", "--verbose", count=True, help="-v for info, -vv for debug logging.")
def cli(verbose: int) -> None:
    """Keep a site server running and publish edits through git."""
    level = logging.WARNING
    if verbose == 1:
        level = logging.INFO
    elif verbose > 1:
        level = logging.DEBUG
    logging.basicConfig(level=level, format=LOG_FORMAT)


@cli.command("init")
@click.option("--target-branch", default=None)
@click.option("--review", "review_provider", type=click.Choice(["none", "github"]), default=None)
@click.option("--config", "config_value", default=CONFIG_FILENAME, show_default=True)
def init_command(target_branch: str | None, review_provider: str | None, config_value: str) -> None:
    workspace = Path.cwd().resolve()
    config_path = _resolve_path(workspace, config_value)
    config = load_config(config_path)
    if target_branch:
        config.git.target_branch = target_branch
    if review_provider:
        config.review.provider = review_provider  # type: ignore[assignment]
    save_config(config_path, config)

    site_config = discover_site_config(workspace, config.server.site_config)
    click.echo(f"Initialized sitepanel in {workspace}")
    click.echo(f"Config: {config_path}")
    click.echo(f"Target branch: {config.git.target_branch}")
    if site_config is None:
        click.echo(f"Site config: none (exactly one {config.server.site_config} is required)")
    else:
        click.echo(f"Site config: {site_config}")


@cli.command("serve")
@click.option("--config", "config_value", default=CONFIG_FILENAME, show_default=True)
def serve_command(config_value: str) -> None:
    runtime = _load_runtime(Path.cwd().resolve(), config_value)
    _prepare_runtime_dir(runtime)

    async def _serve() -> None:
        host = await _build_host(runtime)
        loop = asyncio.get_running_loop()
        for signum in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(signum, host.token.cancel)
        if host.supervisor is None:
            click.echo("No site config found; running without a site server.", err=True)
        click.echo(f"Listening on {runtime.socket_path}")
        await host.serve(runtime.socket_path)

    asyncio.run(_serve())


@cli.command("watch")
@click.option("--config", "config_value", default=CONFIG_FILENAME, show_default=True)
def watch_command(config_value: str) -> None:
    runtime = _load_runtime(Path.cwd().resolve(), config_value)

    def _draw(state: PanelState) -> None:
        click.echo("\r" + render_status_line(state) + "\x1b[K", nl=False)

    async def _watch() -> None:
        bus, receiver = await _connect(runtime)
        client = _panel_client(runtime, bus, on_render=_draw)
        client.start()
        try:
            await receiver
        finally:
            await client.stop()
            await bus.close()
        click.echo("")
        click.echo("Host went away.")

    try:
        asyncio.run(_watch())
    except KeyboardInterrupt:
        click.echo("")


@cli.command("save")
@click.argument("message")
@click.option("--timeout", "timeout_seconds", default=300.0, show_default=True, type=float)
@click.option("--config", "config_value", default=CONFIG_FILENAME, show_default=True)
def save_command(message: str, timeout_seconds: float, config_value: str) -> None:
    runtime = _load_runtime(Path.cwd().resolve(), config_value)
    minimum = runtime.config.sync.min_commit_message_length
    if len(message.strip()) < minimum:
        raise click.ClickException(f"Commit message needs at least {minimum} characters.")

    async def _save() -> bool:
        bus, receiver = await _connect(runtime)
        client = _panel_client(runtime, bus)
        try:
            return await asyncio.wait_for(client.save(message), timeout=timeout_seconds)
        finally:
            receiver.cancel()
            await bus.close()

    try:
        ok = asyncio.run(_save())
    except TimeoutError as exc:
        raise click.ClickException(
            f"No answer within {timeout_seconds:.0f}s; the save may still complete."
        ) from exc
    if not ok:
        raise click.ClickException("Save failed. Run the host with -v for details.")
    click.echo(f"Saved to {runtime.config.git.target_branch}.")


@cli.command("status")
@click.option("--config", "config_value", default=CONFIG_FILENAME, show_default=True)
def status_command(config_value: str) -> None:
    runtime = _load_runtime(Path.cwd().resolve(), config_value)

    async def _status() -> PanelState:
        bus, receiver = await _connect(runtime)
        client = _panel_client(runtime, bus)
        try:
            return await asyncio.wait_for(client.refresh(), timeout=30.0)
        finally:
            receiver.cancel()
            await bus.close()

    try:
        state = asyncio.run(_status())
    except TimeoutError as exc:
        raise click.ClickException("Host did not answer the status request.") from exc
    payload = {
        "server_running": state.server.running,
        "branch": state.branch_name,
        "review_link": state.review_link,
    }
    click.echo(json.dumps(payload, ensure_ascii=False, indent=2))
