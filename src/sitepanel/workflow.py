from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from sitepanel.vcs.base import CommitOutcome, NoReviewLookup, ReviewLookup, VersionControl

logger = logging.getLogger(__name__)

DEFAULT_TARGET_BRANCH = "updates"


class SaveStep(StrEnum):
    VALIDATE = "validate"
    BRANCH = "branch"
    COMMIT = "commit"
    PUSH = "push"


@dataclass(slots=True)
class SaveReport:
    ok: bool
    failed_step: SaveStep | None = None
    detail: str = ""


@dataclass(slots=True)
class BranchState:
    name: str
    is_target_branch: bool


@dataclass(slots=True)
class BranchStatus:
    branch_name: str | None = None
    review_link: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"branch_name": self.branch_name, "review_link": self.review_link}


class ReconciliationWorkflow:
    """Publishes working-tree changes onto one fixed target branch.

    Every save lands on the same branch so repeated saves accumulate on a
    single pending review. Saves and status polls for a target branch run one
    at a time; a poll never sees the tree halfway through a save.
    """

    _locks: dict[str, asyncio.Lock]

    def __init__(
        self,
        vcs: VersionControl,
        *,
        target_branch: str = DEFAULT_TARGET_BRANCH,
        review_lookup: ReviewLookup | None = None,
    ) -> None:
        if not target_branch.strip():
            raise ValueError("Target branch must not be empty.")
        self.vcs = vcs
        self.target_branch = target_branch
        self.review_lookup = review_lookup or NoReviewLookup()
        self._locks = {}

    def _lock(self) -> asyncio.Lock:
        lock = self._locks.get(self.target_branch)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[self.target_branch] = lock
        return lock

    @property
    def save_in_progress(self) -> bool:
        return self._lock().locked()

    async def branch_state(self) -> BranchState | None:
        name = await self.vcs.current_branch()
        if name is None:
            return None
        return BranchState(name=name, is_target_branch=name == self.target_branch)

    async def save(self, commit_message: str) -> SaveReport:
        if not commit_message.strip():
            return SaveReport(
                ok=False, failed_step=SaveStep.VALIDATE, detail="Empty commit message."
            )

        async with self._lock():
            try:
                report = await self._save_locked(commit_message)
            except Exception as exc:
                logger.exception("Save onto %s crashed", self.target_branch)
                report = SaveReport(ok=False, failed_step=None, detail=str(exc))
        if report.ok:
            logger.info("Saved and pushed to %s", self.target_branch)
        else:
            logger.warning(
                "Save onto %s failed at %s: %s",
                self.target_branch,
                report.failed_step or "unknown step",
                report.detail,
            )
        return report

    async def _save_locked(self, commit_message: str) -> SaveReport:
        if not await self._ensure_target_branch():
            return SaveReport(
                ok=False,
                failed_step=SaveStep.BRANCH,
                detail=f"Could not switch to branch '{self.target_branch}'.",
            )

        outcome = await self.vcs.stage_and_commit(commit_message)
        if outcome is CommitOutcome.NOTHING_TO_COMMIT:
            return SaveReport(ok=False, failed_step=SaveStep.COMMIT, detail="Nothing to commit.")
        if outcome is not CommitOutcome.COMMITTED:
            return SaveReport(ok=False, failed_step=SaveStep.COMMIT, detail="Commit failed.")

        # A failed push keeps the local commit in place.
        if not await self.vcs.push(self.target_branch, set_upstream=True):
            return SaveReport(
                ok=False,
                failed_step=SaveStep.PUSH,
                detail=f"Push of '{self.target_branch}' failed; commit kept locally.",
            )
        return SaveReport(ok=True)

    async def _ensure_target_branch(self) -> bool:
        state = await self.branch_state()
        if state is None:
            return False
        if state.is_target_branch:
            return True

        branches = await self.vcs.list_branches()
        if branches is None:
            return False
        if self.target_branch in branches:
            switched = await self.vcs.checkout(self.target_branch)
        else:
            switched = await self.vcs.checkout_new(self.target_branch)
        if not switched:
            return False

        state = await self.branch_state()
        return state is not None and state.is_target_branch

    async def current_status(self) -> BranchStatus:
        async with self._lock():
            state = await self.branch_state()
        if state is None:
            return BranchStatus()
        if not state.is_target_branch:
            return BranchStatus(branch_name=state.name)
        return BranchStatus(branch_name=state.name, review_link=await self._review_link())

    async def _review_link(self) -> str | None:
        try:
            return await self.review_lookup.find_open_review(self.target_branch)
        except Exception as exc:
            logger.info("Review lookup for %s failed: %s", self.target_branch, exc)
            return None
