from sitepanel.vcs.base import (
    CommitOutcome,
    NoReviewLookup,
    ReviewLookup,
    ReviewLookupError,
    VersionControl,
    VersionControlError,
)
from sitepanel.vcs.git import GitRepository
from sitepanel.vcs.github import GitHubReviewLookup, parse_github_repository

__all__ = [
    "CommitOutcome",
    "GitHubReviewLookup",
    "GitRepository",
    "NoReviewLookup",
    "ReviewLookup",
    "ReviewLookupError",
    "VersionControl",
    "VersionControlError",
    "parse_github_repository",
]
