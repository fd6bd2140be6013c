from __future__ import annotations

import json
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

ReviewProviderName = Literal["none", "github"]

CONFIG_FILENAME = "sitepanel.toml"


@dataclass(slots=True)
class ServerConfig:
    binary: str = "reSsg"
    subcommand: str = "serve"
    site_config: str = "config.toml"
    stop_timeout_seconds: float = 5.0

    def command(self) -> list[str]:
        return [self.binary, *self.subcommand.split()]


@dataclass(slots=True)
class GitConfig:
    target_branch: str = "updates"
    remote: str = "origin"


@dataclass(slots=True)
class ReviewConfig:
    provider: ReviewProviderName = "none"
    api_url: str = "https://api.github.com"
    repository: str = ""
    token_env: str = "GITHUB_TOKEN"
    timeout_seconds: float = 5.0


@dataclass(slots=True)
class SyncConfig:
    poll_interval_seconds: float = 1.0
    save_indicator_timeout_seconds: float = 1.0
    min_commit_message_length: int = 10
    socket_path: str = ".sitepanel/host.sock"


@dataclass(slots=True)
class PanelConfig:
    server: ServerConfig = field(default_factory=ServerConfig)
    git: GitConfig = field(default_factory=GitConfig)
    review: ReviewConfig = field(default_factory=ReviewConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)

    @classmethod
    def default(cls) -> PanelConfig:
        return cls()

    @classmethod
    def from_dict(cls, data: dict) -> PanelConfig:
        return cls(
            server=ServerConfig(**data.get("server", {})),
            git=GitConfig(**data.get("git", {})),
            review=ReviewConfig(**data.get("review", {})),
            sync=SyncConfig(**data.get("sync", {})),
        )

    def to_dict(self) -> dict:
        return {
            "server": {
                "binary": self.server.binary,
                "subcommand": self.server.subcommand,
                "site_config": self.server.site_config,
                "stop_timeout_seconds": self.server.stop_timeout_seconds,
            },
            "git": {
                "target_branch": self.git.target_branch,
                "remote": self.git.remote,
            },
            "review": {
                "provider": self.review.provider,
                "api_url": self.review.api_url,
                "repository": self.review.repository,
                "token_env": self.review.token_env,
                "timeout_seconds": self.review.timeout_seconds,
            },
            "sync": {
                "poll_interval_seconds": self.sync.poll_interval_seconds,
                "save_indicator_timeout_seconds": self.sync.save_indicator_timeout_seconds,
                "min_commit_message_length": self.sync.min_commit_message_length,
                "socket_path": self.sync.socket_path,
            },
        }


def _toml_value(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        rendered = f"{value:.3f}".rstrip("0").rstrip(".")
        if not rendered:
            return "0.0"
        return rendered if "." in rendered else f"{rendered}.0"
    if isinstance(value, list):
        return "[" + ", ".join(_toml_value(item) for item in value) + "]"
    return json.dumps(str(value), ensure_ascii=False)


def dumps_toml(config: PanelConfig) -> str:
    data = config.to_dict()
    lines: list[str] = []
    for section in ("server", "git", "review", "sync"):
        lines.append(f"[{section}]")
        for key, value in data[section].items():
            lines.append(f"{key} = {_toml_value(value)}")
        lines.append("")
    return "\n".join(lines).strip() + "\n"


def load_config(path: Path) -> PanelConfig:
    if not path.exists():
        return PanelConfig.default()
    return PanelConfig.from_dict(tomllib.loads(path.read_text(encoding="utf-8")))


def save_config(path: Path, config: PanelConfig) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(dumps_toml(config), encoding="utf-8")
