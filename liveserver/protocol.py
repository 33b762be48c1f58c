"""
Control-plane wire protocol.

Every WebSocket text frame carries one JSON envelope:

    {
      "correlation_id": 17,          # u64, echoed by every result
      "actor_id": 42,                # u32, chosen by the sender
      "from_address": "127.0.0.1",
      "from_port": 62007,
      "payload": ...
    }

Payloads are externally tagged variants. Variants without fields are a
bare string, variants with fields a one-key object:

    "Reload"
    {"Hello": {"role_name": "controller"}}
    {"Echo": {"target_id": 3, "message": "hi"}}

Commands (sender -> server): NoOperation, Hello, Reload, Ping, Echo.
Results (server -> receiver): NoOperation, Hello, Reload, Ping, Echo.

A payload whose tag or shape is not recognized decodes to ``Unknown``
instead of failing, so newer peers can talk to older servers.
"""

from typing import Any, ClassVar, Dict, Type, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_serializer, field_validator

from liveserver.errors import ProtocolError

U32_MAX = 2 ** 32 - 1
U64_MAX = 2 ** 64 - 1

# Largest integer a browser's JSON.parse keeps exact
JS_SAFE_INTEGER_MAX = 2 ** 53 - 1

ROLE_CONTROLLER = "controller"
ROLE_CLIENT = "client"


class Variant(BaseModel):
    """Base for tagged payload variants."""

    model_config = ConfigDict(strict=True, frozen=True, extra="ignore")

    TAG: ClassVar[str] = ""

    @classmethod
    def from_body(cls, body: Any) -> "Variant":
        if not cls.model_fields:
            if body not in (None, {}):
                raise ValueError(f"{cls.TAG} takes no fields")
            return cls()
        if not isinstance(body, dict):
            raise ValueError(f"{cls.TAG} expects an object body")
        try:
            return cls.model_validate(body)
        except ValidationError as e:
            raise ValueError(f"Invalid {cls.TAG} body: {e}") from e

    def to_wire(self) -> Any:
        if not type(self).model_fields:
            return self.TAG
        return {self.TAG: self.model_dump()}


class Unknown(Variant):
    """A payload this server does not understand."""
    tag: str

    def to_wire(self) -> Any:
        raise ProtocolError(f"Cannot encode unrecognized variant {self.tag!r}")


# =============================================================================
# Commands
# =============================================================================

class NoOperation(Variant):
    TAG: ClassVar[str] = "NoOperation"


class Hello(Variant):
    TAG: ClassVar[str] = "Hello"
    role_name: str


class Reload(Variant):
    TAG: ClassVar[str] = "Reload"


class Ping(Variant):
    TAG: ClassVar[str] = "Ping"


class Echo(Variant):
    TAG: ClassVar[str] = "Echo"
    target_id: int = Field(ge=0, le=U64_MAX)
    message: str


Command = Union[NoOperation, Hello, Reload, Ping, Echo, Unknown]


# =============================================================================
# Results
# =============================================================================

class NoOperationResult(Variant):
    TAG: ClassVar[str] = "NoOperation"


class HelloResult(Variant):
    TAG: ClassVar[str] = "Hello"
    assigned_id: int = Field(ge=0, le=U64_MAX)


class ReloadResult(Variant):
    TAG: ClassVar[str] = "Reload"


class PingResult(Variant):
    TAG: ClassVar[str] = "Ping"


class EchoResult(Variant):
    TAG: ClassVar[str] = "Echo"
    target_id: int = Field(ge=0, le=U64_MAX)
    from_id: int = Field(ge=0, le=U64_MAX)
    message: str


CommandResult = Union[NoOperationResult, HelloResult, ReloadResult, PingResult, EchoResult, Unknown]

COMMANDS: Dict[str, Type[Variant]] = {
    cls.TAG: cls for cls in (NoOperation, Hello, Reload, Ping, Echo)
}
RESULTS: Dict[str, Type[Variant]] = {
    cls.TAG: cls for cls in (NoOperationResult, HelloResult, ReloadResult, PingResult, EchoResult)
}


def decode_variant(value: Any, variants: Dict[str, Type[Variant]]) -> Variant:
    """
    Decode an externally tagged payload.

    Unrecognized tags and shapes give Unknown. A recognized tag with an
    invalid body raises ValueError.
    """
    if isinstance(value, str):
        tag, body = value, None
    elif isinstance(value, dict) and len(value) == 1:
        (tag, body), = value.items()
    else:
        return Unknown(tag=type(value).__name__)

    cls = variants.get(tag)
    if cls is None:
        return Unknown(tag=tag)
    return cls.from_body(body)


# =============================================================================
# Envelopes
# =============================================================================

class Envelope(BaseModel):
    """Fields shared by command and result envelopes."""

    model_config = ConfigDict(strict=True, frozen=True)

    correlation_id: int = Field(ge=0, le=U64_MAX)
    actor_id: int = Field(ge=0, le=U32_MAX)
    from_address: str
    from_port: int = Field(ge=0, le=U32_MAX)
    payload: Any

    @field_serializer("payload")
    def _serialize_payload(self, payload: Variant) -> Any:
        return payload.to_wire()

    def encode(self) -> str:
        """Encode to a JSON text frame."""
        return self.model_dump_json()


class CommandEnvelope(Envelope):
    """Inbound request."""

    @field_validator("payload")
    @classmethod
    def _decode_payload(cls, value: Any) -> Variant:
        if isinstance(value, Variant):
            return value
        return decode_variant(value, COMMANDS)


class ResultEnvelope(Envelope):
    """Outbound answer or relayed message."""

    @field_validator("payload")
    @classmethod
    def _decode_payload(cls, value: Any) -> Variant:
        if isinstance(value, Variant):
            return value
        return decode_variant(value, RESULTS)

    @classmethod
    def reply_to(cls, request: CommandEnvelope, payload: Variant) -> "ResultEnvelope":
        """Result carrying the correlation id and sender identity of ``request``."""
        return cls(
            correlation_id=request.correlation_id,
            actor_id=request.actor_id,
            from_address=request.from_address,
            from_port=request.from_port,
            payload=payload,
        )


def decode_command(text: Union[str, bytes]) -> CommandEnvelope:
    """Decode a command frame. Raises ProtocolError when malformed."""
    try:
        return CommandEnvelope.model_validate_json(text)
    except ValidationError as e:
        raise ProtocolError(f"Malformed command envelope: {e}") from e


def decode_result(text: Union[str, bytes]) -> ResultEnvelope:
    """Decode a result frame. Raises ProtocolError when malformed."""
    try:
        return ResultEnvelope.model_validate_json(text)
    except ValidationError as e:
        raise ProtocolError(f"Malformed result envelope: {e}") from e
