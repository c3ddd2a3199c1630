"""Messages exchanged between the site and the agent.

Every message is a JSON object whose ``type`` field names its variant:

- requests:  ``{"type": "GetModStatus"}`` and ``{"type": "Patch"}``
- responses: ``{"type": "ModStatus", "app_info": {...} | null}``

``app_info`` is null when the target application is not installed.
"""
from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictBool,
    StrictStr,
    TypeAdapter,
    ValidationError,
)

__all__ = [
    "AppInfo",
    "GetModStatus",
    "Patch",
    "Request",
    "ModStatus",
    "Response",
    "REQUEST_TYPES",
    "RESPONSE_TYPES",
    "MessageError",
    "MalformedMessageError",
    "UnknownMessageTypeError",
    "parse_request",
    "parse_response",
    "dump_message",
]


# ------------------------
# Errors
# ------------------------
class MessageError(ValueError):
    """Base class for message decoding errors."""

    code: str = "invalid_message"


class MalformedMessageError(MessageError):
    code = "malformed_message"


class UnknownMessageTypeError(MessageError):
    code = "unknown_message_type"


# ------------------------
# Schema
# ------------------------
class _Message(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class AppInfo(_Message):
    """Version and mod state of the installed target app.

    Strict types: "true", 1 or "0" are not booleans on the wire.
    """

    version: StrictStr
    is_modded: StrictBool


class GetModStatus(_Message):
    type: Literal["GetModStatus"] = "GetModStatus"


class Patch(_Message):
    type: Literal["Patch"] = "Patch"


class ModStatus(_Message):
    type: Literal["ModStatus"] = "ModStatus"
    # Required on the wire, but may be null.
    app_info: Optional[AppInfo]


Request = Annotated[Union[GetModStatus, Patch], Field(discriminator="type")]

# Only one response variant exists so far; widen to a discriminated union
# like Request when another is added.
Response = ModStatus

REQUEST_TYPES = frozenset({"GetModStatus", "Patch"})
RESPONSE_TYPES = frozenset({"ModStatus"})

_REQUEST_ADAPTER: TypeAdapter[Request] = TypeAdapter(Request)
_RESPONSE_ADAPTER: TypeAdapter[Response] = TypeAdapter(Response)


# ------------------------
# Internals
# ------------------------

def _load(data: bytes | str | Mapping[str, Any]) -> dict[str, Any]:
    if isinstance(data, Mapping):
        obj: Any = dict(data)
    else:
        try:
            obj = json.loads(data)
        except (ValueError, TypeError) as e:
            raise MalformedMessageError("Message is not valid JSON") from e

    if not isinstance(obj, dict):
        raise MalformedMessageError("Message must be a JSON object")
    if "type" not in obj:
        raise MalformedMessageError("Message has no type field")
    return obj


def _validate(adapter: TypeAdapter, data: bytes | str | Mapping[str, Any], known: frozenset[str]):
    obj = _load(data)
    kind = obj["type"]
    if not isinstance(kind, str):
        raise MalformedMessageError("Message type must be a string")
    if kind not in known:
        raise UnknownMessageTypeError(f"Unknown message type: {kind!r}")
    try:
        return adapter.validate_python(obj)
    except ValidationError as e:
        raise MalformedMessageError(f"Message schema invalid: {e}") from e


# ------------------------
# Public encode/decode
# ------------------------

def parse_request(data: bytes | str | Mapping[str, Any]) -> Request:
    """Decode a request from JSON text/bytes or an already-decoded mapping.

    Raises `UnknownMessageTypeError` if ``type`` names no request variant and
    `MalformedMessageError` for any other structural problem.
    """
    return _validate(_REQUEST_ADAPTER, data, REQUEST_TYPES)


def parse_response(data: bytes | str | Mapping[str, Any]) -> Response:
    """Decode a response; same error contract as `parse_request`."""
    return _validate(_RESPONSE_ADAPTER, data, RESPONSE_TYPES)


def dump_message(msg: BaseModel) -> str:
    """Encode a request or response as compact JSON."""
    return msg.model_dump_json()
