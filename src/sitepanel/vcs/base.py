from __future__ import annotations

from abc import ABC, abstractmethod
from enum import StrEnum


class VersionControlError(RuntimeError):
    """Raised when a version-control command fails."""

    def __init__(self, message: str, *, returncode: int | None = None) -> None:
        super().__init__(message)
        self.returncode = returncode


class ReviewLookupError(RuntimeError):
    """Raised when the review service cannot be queried."""


class CommitOutcome(StrEnum):
    COMMITTED = "committed"
    NOTHING_TO_COMMIT = "nothing_to_commit"
    FAILED = "failed"


class VersionControl(ABC):
    """Minimal capability needed to publish a change.

    Implementations never raise: failures come back as ``None``, ``False``
    or ``CommitOutcome.FAILED``.
    """

    @abstractmethod
    async def current_branch(self) -> str | None:
        """Name of the checked-out branch, or None when it cannot be read."""

    @abstractmethod
    async def list_branches(self) -> list[str] | None:
        """Local branch names, or None on failure."""

    @abstractmethod
    async def checkout(self, branch: str) -> bool:
        """Switch to an existing branch."""

    @abstractmethod
    async def checkout_new(self, branch: str) -> bool:
        """Create a branch at HEAD and switch to it."""

    @abstractmethod
    async def stage_and_commit(self, message: str) -> CommitOutcome:
        """Stage every change in the working tree and commit it."""

    @abstractmethod
    async def push(self, branch: str, *, set_upstream: bool = True) -> bool:
        """Push ``branch`` to the remote."""


class ReviewLookup(ABC):
    @abstractmethod
    async def find_open_review(self, branch: str) -> str | None:
        """URL of an open review for ``branch``, if there is one."""


class NoReviewLookup(ReviewLookup):
    async def find_open_review(self, branch: str) -> str | None:
        _ = branch
        return None
