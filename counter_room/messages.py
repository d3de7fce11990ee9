"""
Wire messages exchanged over the room WebSocket.

Every frame is one JSON object tagged by `type`. Field names are camelCase on the
wire (`userId`) and snake_case in Python (`user_id`).
"""

from __future__ import annotations

import json
import time
from typing import Annotated, Any, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError
from pydantic.alias_generators import to_camel


class ProtocolError(ValueError):
    """An inbound frame that is not valid JSON or violates the message schema."""


class WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class UserRecord(WireModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    count: int = Field(default=0, ge=0)


Timestamp = Union[int, float]


# Client -> server


class Join(WireModel):
    type: Literal["join"] = "join"
    user_id: Optional[str] = Field(default=None, pattern=r"^[A-Za-z0-9_-]{1,64}$")
    name: Optional[str] = Field(default=None, min_length=1)


class IncrementCounter(WireModel):
    type: Literal["increment_counter"] = "increment_counter"


class ChangeName(WireModel):
    type: Literal["change_name"] = "change_name"
    name: str = Field(min_length=1)


class Ping(WireModel):
    type: Literal["ping"] = "ping"
    timestamp: Optional[Timestamp] = None


class ProbeAck(WireModel):
    """Client answer to a server liveness probe."""

    type: Literal["pong"] = "pong"
    timestamp: Optional[Timestamp] = None


InboundMessage = Annotated[
    Union[Join, IncrementCounter, ChangeName, Ping, ProbeAck],
    Field(discriminator="type"),
]

_inbound_adapter: TypeAdapter[Any] = TypeAdapter(InboundMessage)

INBOUND_TYPES = frozenset({"join", "increment_counter", "change_name", "ping", "pong"})


# Server -> client


class UserJoined(WireModel):
    type: Literal["user_joined"] = "user_joined"
    user_id: str
    name: Optional[str] = None


class UserList(WireModel):
    type: Literal["user_list"] = "user_list"
    users: List[UserRecord]


class CounterUpdate(WireModel):
    type: Literal["counter_update"] = "counter_update"
    user_id: str
    count: int


class NameChange(WireModel):
    type: Literal["name_change"] = "name_change"
    user_id: str
    name: str


class Pong(WireModel):
    type: Literal["pong"] = "pong"
    timestamp: Optional[Timestamp] = None


class Probe(WireModel):
    """Server liveness probe; clients answer with `pong`."""

    type: Literal["ping"] = "ping"
    timestamp: Optional[Timestamp] = None


OutboundMessage = Union[UserJoined, UserList, CounterUpdate, NameChange, Pong, Probe]


def decode(text_data: str) -> Optional[InboundMessage]:
    """
    Parse one inbound frame.

    Returns None for a well-formed frame whose `type` is not part of the inbound
    catalogue (those are ignored). Raises ProtocolError for anything malformed.
    """

    try:
        raw = json.loads(text_data)
    except (json.JSONDecodeError, TypeError) as exc:
        raise ProtocolError(f"invalid JSON: {exc}") from exc

    if not isinstance(raw, dict):
        raise ProtocolError("frame must be a JSON object")

    msg_type = raw.get("type")
    if not isinstance(msg_type, str):
        raise ProtocolError("missing or non-string 'type'")
    if msg_type not in INBOUND_TYPES:
        return None

    try:
        return _inbound_adapter.validate_python(raw)
    except ValidationError as exc:
        raise ProtocolError(f"invalid {msg_type!r} message: {exc.error_count()} error(s)") from exc


def encode(message: OutboundMessage) -> str:
    payload = message.model_dump(by_alias=True, exclude_none=True)
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False)


def epoch_ms() -> int:
    return int(time.time() * 1000)
