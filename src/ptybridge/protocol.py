"""Wire protocol between the host and the PTY helper process.

Every message is one JSON object on its own line (UTF-8, ``\\n``
terminated). The ``type`` field selects the message kind:

    host -> helper:  create, write, resize, terminate
    helper -> host:  created, output, closed

Sessions are addressed by an integer ``id`` that the helper assigns and
reports in ``created``. ``create`` and ``terminate`` carry no id.
"""

from __future__ import annotations

from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from ptybridge.errors import ProtocolError

TYPE_CREATE = "create"
TYPE_CREATED = "created"
TYPE_WRITE = "write"
TYPE_RESIZE = "resize"
TYPE_OUTPUT = "output"
TYPE_CLOSED = "closed"
TYPE_TERMINATE = "terminate"


class _BaseMessage(BaseModel):
    # Newer helpers may add fields; they are ignored rather than rejected.
    model_config = ConfigDict(extra="ignore")


class CreateMessage(_BaseMessage):
    """Ask the helper to start a process in a new PTY."""

    type: Literal["create"] = TYPE_CREATE
    argv: list[str] = Field(min_length=1)
    rows: int = Field(default=24, ge=1)
    columns: int = Field(default=80, ge=1)
    env: dict[str, str] = Field(default_factory=dict)
    request_id: int | None = None  # Only set by RequestIdResolver


class CreatedMessage(_BaseMessage):
    """The helper started a session and assigned it ``id``."""

    type: Literal["created"] = TYPE_CREATED
    id: int = Field(ge=0)
    request_id: int | None = None


class WriteMessage(_BaseMessage):
    """Input for a session. ``id`` is None while the session is unassigned."""

    type: Literal["write"] = TYPE_WRITE
    id: int | None = None
    data: str = ""


class ResizeMessage(_BaseMessage):
    type: Literal["resize"] = TYPE_RESIZE
    id: int | None = None
    rows: int = Field(ge=1)
    columns: int = Field(ge=1)


class OutputMessage(_BaseMessage):
    """Output produced by the process on the other side of the PTY."""

    type: Literal["output"] = TYPE_OUTPUT
    id: int = Field(ge=0)
    data: str = ""


class ClosedMessage(_BaseMessage):
    type: Literal["closed"] = TYPE_CLOSED
    id: int = Field(ge=0)


class TerminateMessage(_BaseMessage):
    """Shut down the whole helper process."""

    type: Literal["terminate"] = TYPE_TERMINATE


class UnknownMessage(BaseModel):
    """A well-formed message whose ``type`` this side does not handle."""

    model_config = ConfigDict(extra="allow")

    type: str


Message = Annotated[
    Union[
        CreateMessage,
        CreatedMessage,
        WriteMessage,
        ResizeMessage,
        OutputMessage,
        ClosedMessage,
        TerminateMessage,
    ],
    Field(discriminator="type"),
]

# Messages that are addressed to a session which may still be unassigned.
SessionMessage = Union[WriteMessage, ResizeMessage]

_MESSAGE_ADAPTER: TypeAdapter[Message] = TypeAdapter(Message)


def encode_message(message: BaseModel) -> bytes:
    """Serialize a message as one compact JSON line.

    Unset optional fields (``None``) are left out, so ``create`` and
    ``terminate`` lines never carry an ``id`` key.
    """
    return message.model_dump_json(exclude_none=True).encode("utf-8") + b"\n"


def decode_message(line: bytes | str) -> Message | UnknownMessage:
    """Parse one line (without its newline) into a typed message.

    Raises:
        ProtocolError: The line is not valid UTF-8, not JSON, not an object,
            has a missing ``type``, or fails field validation. An object
            with an unrecognized string ``type`` decodes to
            ``UnknownMessage`` instead, so callers can ignore it.
    """
    if isinstance(line, bytes):
        try:
            text = line.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ProtocolError(f"Line is not valid UTF-8: {e}", line=line) from e
    else:
        text = line

    try:
        return _MESSAGE_ADAPTER.validate_json(text)
    except ValidationError as e:
        errors = e.errors(include_url=False)
        if errors and errors[0]["type"] == "union_tag_invalid":
            try:
                return UnknownMessage.model_validate_json(text)
            except ValidationError:
                pass  # Non-string tag; reported as malformed below
        detail = errors[0]["msg"] if errors else str(e)
        raise ProtocolError(f"Invalid message: {detail}", line=line) from e
