"""
Wire schemas for client -> server relay messages.

Every frame is a JSON object whose "type" field names the event. Payload
fields use the camelCase names the editor front end sends.
"""

from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError


class ClientMessage(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class JoinDocument(ClientMessage):
    type: Literal["join_document"]
    document_id: str = Field(alias="documentId")


class LeaveDocument(ClientMessage):
    type: Literal["leave_document"]
    document_id: str = Field(alias="documentId")


class CodeChange(ClientMessage):
    type: Literal["code_change"]
    document_id: str = Field(alias="documentId")
    new_content: str = Field(alias="newContent")
    sender_id: str = Field(alias="senderId")
    file_name: Optional[str] = Field(default=None, alias="fileName")


class CursorUpdate(ClientMessage):
    type: Literal["cursor_update"]
    document_id: str = Field(alias="documentId")
    file_name: Optional[str] = Field(default=None, alias="fileName")
    user_id: str = Field(alias="userId")
    # Editor-specific shapes, relayed verbatim
    position: Any = None
    selection: Any = None


class RunCode(ClientMessage):
    type: Literal["run_code"]
    document_id: str = Field(alias="documentId")


IncomingMessage = Annotated[
    Union[JoinDocument, LeaveDocument, CodeChange, CursorUpdate, RunCode],
    Field(discriminator="type"),
]

_incoming_adapter = TypeAdapter(IncomingMessage)


class MessageError(ValueError):
    """Raised when a frame does not match any known message schema."""
    pass


def parse_message(data: Any) -> ClientMessage:
    """
    Validate a decoded JSON frame and return the matching message model.

    Raises:
        MessageError: if the frame is not an object, has an unknown type,
            or is missing required fields
    """
    if not isinstance(data, dict):
        raise MessageError("Message must be a JSON object")
    if "type" not in data:
        raise MessageError("Message is missing 'type'")

    try:
        return _incoming_adapter.validate_python(data)
    except ValidationError as e:
        errors = e.errors()
        if any(err.get("type") == "union_tag_invalid" for err in errors):
            raise MessageError(f"Unknown message type: {data.get('type')}") from e
        fields = ", ".join(
            ".".join(str(part) for part in err.get("loc", ()) if part != data.get("type"))
            for err in errors
        )
        raise MessageError(f"Invalid {data.get('type')} message: {fields}") from e
