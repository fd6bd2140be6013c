from __future__ import annotations

import json
from dataclasses import dataclass
from enum import StrEnum
from typing import Any


class ProtocolError(RuntimeError):
    """Raised when a wire message cannot be decoded or routed."""

    def __init__(self, message: str, *, kind: str | None = None) -> None:
        super().__init__(message)
        self.kind = kind


class MessageKind(StrEnum):
    PING = "status-request"
    PONG = "status-response"
    REQUEST_SAVE = "save-request"
    SAVE_RESULT = "save-response"


@dataclass(frozen=True, slots=True)
class Ping:
    pass


@dataclass(frozen=True, slots=True)
class Pong:
    server_active: bool
    review_link: str | None = None
    branch_name: str | None = None


@dataclass(frozen=True, slots=True)
class RequestSave:
    commit_message: str


@dataclass(frozen=True, slots=True)
class SaveResult:
    ok: bool


Message = Ping | Pong | RequestSave | SaveResult


def kind_of(message: Message) -> MessageKind:
    match message:
        case Ping():
            return MessageKind.PING
        case Pong():
            return MessageKind.PONG
        case RequestSave():
            return MessageKind.REQUEST_SAVE
        case SaveResult():
            return MessageKind.SAVE_RESULT
    raise ProtocolError(f"Not a message: {message!r}")


def encode(message: Message) -> dict[str, Any]:
    match message:
        case Ping():
            payload: dict[str, Any] = {}
        case Pong(server_active=active, review_link=link, branch_name=branch):
            payload = {"server_active": active}
            if link is not None:
                payload["review_link"] = link
            if branch is not None:
                payload["branch_name"] = branch
        case RequestSave(commit_message=commit_message):
            payload = {"commit_message": commit_message}
        case SaveResult(ok=ok):
            payload = {"ok": ok}
        case _:
            raise ProtocolError(f"Not a message: {message!r}")
    return {"kind": str(kind_of(message)), "payload": payload}


def dumps(message: Message) -> str:
    return json.dumps(encode(message), ensure_ascii=False, separators=(",", ":"))


def _field(payload: dict[str, Any], name: str, expected: type, kind: str) -> Any:
    value = payload.get(name)
    if not isinstance(value, expected):
        raise ProtocolError(
            f"Field '{name}' of {kind} must be {expected.__name__}, got {type(value).__name__}",
            kind=kind,
        )
    return value


def _optional_str(payload: dict[str, Any], name: str, kind: str) -> str | None:
    if payload.get(name) is None:
        return None
    return _field(payload, name, str, kind)


def decode(raw: dict[str, Any] | str | bytes) -> Message:
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ProtocolError(f"Message is not valid JSON: {exc}") from exc
    if not isinstance(raw, dict):
        raise ProtocolError(f"Message envelope must be an object, got {type(raw).__name__}")

    raw_kind = raw.get("kind")
    payload = raw.get("payload", {})
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ProtocolError("Message payload must be an object.", kind=str(raw_kind))
    try:
        kind = MessageKind(raw_kind)
    except ValueError as exc:
        raise ProtocolError(f"Unknown message kind: {raw_kind!r}", kind=str(raw_kind)) from exc

    match kind:
        case MessageKind.PING:
            return Ping()
        case MessageKind.PONG:
            return Pong(
                server_active=_field(payload, "server_active", bool, kind),
                review_link=_optional_str(payload, "review_link", kind),
                branch_name=_optional_str(payload, "branch_name", kind),
            )
        case MessageKind.REQUEST_SAVE:
            return RequestSave(commit_message=_field(payload, "commit_message", str, kind))
        case MessageKind.SAVE_RESULT:
            return SaveResult(ok=_field(payload, "ok", bool, kind))
