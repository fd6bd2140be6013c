from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass
from pathlib import Path

from sitepanel.vcs.base import CommitOutcome, VersionControl, VersionControlError

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class GitResult:
    returncode: int
    stdout: str
    stderr: str


class GitRepository(VersionControl):
    def __init__(
        self,
        repo_root: Path,
        *,
        remote: str = "origin",
        binary: str = "git",
        timeout_seconds: float = 120.0,
    ) -> None:
        self.repo_root = repo_root.resolve()
        self.remote = remote
        self.binary = binary
        self.timeout_seconds = timeout_seconds

    async def _run_git(self, args: list[str], check: bool = True) -> GitResult:
        env = os.environ.copy()
        # Never wait on an interactive credential prompt.
        env["GIT_TERMINAL_PROMPT"] = "0"
        try:
            proc = await asyncio.create_subprocess_exec(
                self.binary,
                "--no-pager",
                *args,
                cwd=str(self.repo_root),
                env=env,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise VersionControlError(f"Cannot run {self.binary}: {exc}") from exc

        try:
            raw_stdout, raw_stderr = await asyncio.wait_for(
                proc.communicate(), timeout=self.timeout_seconds
            )
        except TimeoutError as exc:
            proc.kill()
            await proc.wait()
            raise VersionControlError(
                f"git {args[0]} timed out after {self.timeout_seconds:.1f}s"
            ) from exc

        result = GitResult(
            returncode=proc.returncode if proc.returncode is not None else -1,
            stdout=raw_stdout.decode("utf-8", errors="replace"),
            stderr=raw_stderr.decode("utf-8", errors="replace"),
        )
        if check and result.returncode != 0:
            raise VersionControlError(
                result.stderr.strip() or result.stdout.strip() or f"git {args[0]} failed",
                returncode=result.returncode,
            )
        return result

    async def current_branch(self) -> str | None:
        try:
            result = await self._run_git(["branch", "--show-current"])
        except VersionControlError as exc:
            logger.debug("Cannot read current branch: %s", exc)
            return None
        return result.stdout.strip() or None

    async def list_branches(self) -> list[str] | None:
        try:
            result = await self._run_git(["branch", "--list", "--format=%(refname:short)"])
        except VersionControlError as exc:
            logger.warning("Cannot list branches: %s", exc)
            return None
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]

    async def checkout(self, branch: str) -> bool:
        try:
            await self._run_git(["checkout", branch])
        except VersionControlError as exc:
            logger.warning("Checkout of %s failed: %s", branch, exc)
            return False
        return True

    async def checkout_new(self, branch: str) -> bool:
        try:
            await self._run_git(["checkout", "-b", branch])
        except VersionControlError as exc:
            logger.warning("Creating branch %s failed: %s", branch, exc)
            return False
        return True

    async def stage_and_commit(self, message: str) -> CommitOutcome:
        try:
            await self._run_git(["add", "--all"])
            staged = await self._run_git(["diff", "--cached", "--quiet"], check=False)
            if staged.returncode == 0:
                return CommitOutcome.NOTHING_TO_COMMIT
            if staged.returncode != 1:
                raise VersionControlError(
                    staged.stderr.strip() or "git diff --cached failed",
                    returncode=staged.returncode,
                )
            await self._run_git(["commit", "-m", message])
        except VersionControlError as exc:
            logger.warning("Commit failed: %s", exc)
            return CommitOutcome.FAILED
        return CommitOutcome.COMMITTED

    async def push(self, branch: str, *, set_upstream: bool = True) -> bool:
        args = ["push"]
        if set_upstream:
            args.append("--set-upstream")
        args.extend([self.remote, branch])
        try:
            await self._run_git(args)
        except VersionControlError as exc:
            logger.warning("Push of %s to %s failed: %s", branch, self.remote, exc)
            return False
        return True

    async def remote_url(self) -> str | None:
        try:
            result = await self._run_git(["remote", "get-url", self.remote])
        except VersionControlError as exc:
            logger.debug("No URL for remote %s: %s", self.remote, exc)
            return None
        return result.stdout.strip() or None
