from __future__ import annotations

import json
import time
import uuid
from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError


# ---------------------------------------------------------------------------
# Errors raised at the wire boundary
# ---------------------------------------------------------------------------

class ProtocolError(ValueError):
    """Inbound frame could not be decoded into a known message."""

    def __init__(self, message: str, details: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class RelayValidationError(ValueError):
    """Well-formed message that must not be relayed to the partner."""


# ---------------------------------------------------------------------------
# Client -> server messages
# ---------------------------------------------------------------------------

class _Inbound(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class QueueRequest(_Inbound):
    type: Literal["queue"]


class HeartbeatRequest(_Inbound):
    type: Literal["heartbeat"]


class ChatRequest(_Inbound):
    type: Literal["chat"]
    message: Optional[str] = None
    message_id: Optional[str] = Field(default=None, alias="messageId")
    nickname: Optional[str] = None
    reply_to: Optional[str] = Field(default=None, alias="replyTo")

    def checked_text(self, max_length: int) -> str:
        return _checked_length(self.message, max_length)


class TypingRequest(_Inbound):
    type: Literal["typing"]
    nickname: Optional[str] = None


class StoppedTypingRequest(_Inbound):
    type: Literal["stopped-typing"]
    nickname: Optional[str] = None


class EditRequest(_Inbound):
    type: Literal["edit"]
    message_id: Optional[str] = Field(default=None, alias="messageId")
    message: Optional[str] = None
    nickname: Optional[str] = None

    def checked_text(self, max_length: int) -> str:
        if not self.message_id or not self.message:
            raise RelayValidationError("Invalid edit request: missing required fields")
        return _checked_length(self.message, max_length)


class DeleteRequest(_Inbound):
    type: Literal["delete"]
    message_id: Optional[str] = Field(default=None, alias="messageId")
    nickname: Optional[str] = None

    def checked_message_id(self) -> str:
        if not self.message_id:
            raise RelayValidationError("Invalid delete request: missing messageId")
        return self.message_id


InboundMessage = Annotated[
    Union[
        QueueRequest,
        HeartbeatRequest,
        ChatRequest,
        TypingRequest,
        StoppedTypingRequest,
        EditRequest,
        DeleteRequest,
    ],
    Field(discriminator="type"),
]

_inbound_adapter: TypeAdapter[InboundMessage] = TypeAdapter(InboundMessage)


def _checked_length(text: Optional[str], max_length: int) -> str:
    trimmed = (text or "").strip()
    if not trimmed or len(trimmed) > max_length:
        raise RelayValidationError("Invalid message length")
    return trimmed


def parse_inbound(raw: str | bytes) -> InboundMessage:
    """Decode one websocket frame into a typed inbound message."""

    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as exc:
        raise ProtocolError("Failed to process message", f"invalid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise ProtocolError("Failed to process message", "frame must be a JSON object")
    if "type" not in data:
        raise ProtocolError("Failed to process message", "missing type")

    try:
        return _inbound_adapter.validate_python(data)
    except ValidationError as exc:
        first = exc.errors()[0]
        if first["type"] == "union_tag_invalid":
            detail = f"unknown message type: {data.get('type')!r}"
        else:
            loc = ".".join(str(part) for part in first["loc"])
            detail = f"{loc}: {first['msg']}"
        raise ProtocolError("Failed to process message", detail) from exc


# ---------------------------------------------------------------------------
# Server -> client messages
# ---------------------------------------------------------------------------

class _Outbound(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class Connected(_Outbound):
    type: Literal["connected"] = "connected"
    client_id: str = Field(alias="clientId")


class Waiting(_Outbound):
    type: Literal["waiting"] = "waiting"


class Matched(_Outbound):
    type: Literal["matched"] = "matched"


class PartnerLeft(_Outbound):
    type: Literal["partner-left"] = "partner-left"


class ChatRelay(_Outbound):
    type: Literal["chat"] = "chat"
    sender_id: str = Field(alias="senderId")
    message_id: str = Field(alias="messageId")
    message: str
    nickname: Optional[str] = None
    reply_to: Optional[str] = Field(default=None, alias="replyTo")


class TypingRelay(_Outbound):
    type: Literal["typing", "stopped-typing"]
    sender_id: str = Field(alias="senderId")
    nickname: Optional[str] = None


class EditRelay(_Outbound):
    type: Literal["edit"] = "edit"
    sender_id: str = Field(alias="senderId")
    message_id: str = Field(alias="messageId")
    message: str
    nickname: Optional[str] = None


class DeleteRelay(_Outbound):
    type: Literal["delete"] = "delete"
    sender_id: str = Field(alias="senderId")
    message_id: str = Field(alias="messageId")
    nickname: Optional[str] = None


class ErrorEvent(_Outbound):
    type: Literal["error"] = "error"
    message: str
    details: Optional[str] = None


OutboundMessage = Union[
    Connected,
    Waiting,
    Matched,
    PartnerLeft,
    ChatRelay,
    TypingRelay,
    EditRelay,
    DeleteRelay,
    ErrorEvent,
]


def frame_dict(message: OutboundMessage) -> Dict[str, Any]:
    """Wire representation: camelCase keys, absent optionals omitted."""

    return message.model_dump(by_alias=True, exclude_none=True)


def encode_frame(frame: Dict[str, Any]) -> str:
    return json.dumps(frame, separators=(",", ":"))


# ---------------------------------------------------------------------------
# Identifiers
# ---------------------------------------------------------------------------

def now_ms() -> int:
    """Milliseconds since the Unix epoch."""

    return int(time.time() * 1000)


def new_client_id() -> str:
    return str(uuid.uuid4())


def new_message_id(prefix: str = "srv") -> str:
    return f"{prefix}_{now_ms()}_{uuid.uuid4().hex[:8]}"


__all__ = [
    "ProtocolError",
    "RelayValidationError",
    "QueueRequest",
    "HeartbeatRequest",
    "ChatRequest",
    "TypingRequest",
    "StoppedTypingRequest",
    "EditRequest",
    "DeleteRequest",
    "InboundMessage",
    "parse_inbound",
    "Connected",
    "Waiting",
    "Matched",
    "PartnerLeft",
    "ChatRelay",
    "TypingRelay",
    "EditRelay",
    "DeleteRelay",
    "ErrorEvent",
    "OutboundMessage",
    "frame_dict",
    "encode_frame",
    "now_ms",
    "new_client_id",
    "new_message_id",
]
