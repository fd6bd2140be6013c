from sitepanel.messaging.bus import LoopbackTransport, MessageBus, Transport
from sitepanel.messaging.messages import (
    Message,
    MessageKind,
    Ping,
    Pong,
    ProtocolError,
    RequestSave,
    SaveResult,
    decode,
    dumps,
    encode,
    kind_of,
)
from sitepanel.messaging.transport import StreamTransport, connect_unix, serve_unix

__all__ = [
    "LoopbackTransport",
    "Message",
    "MessageBus",
    "MessageKind",
    "Ping",
    "Pong",
    "ProtocolError",
    "RequestSave",
    "SaveResult",
    "StreamTransport",
    "Transport",
    "connect_unix",
    "decode",
    "dumps",
    "encode",
    "kind_of",
    "serve_unix",
]
