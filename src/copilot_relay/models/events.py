"""
Assistant session events — closed set of typed variants.

Raw events come from the assistant client either as mappings
({"type": ..., "id": ..., "parentId": ..., "data": {...}}) or as objects
exposing the same attributes. Both camelCase and snake_case field names
are accepted.
"""

import dataclasses
from collections.abc import Mapping
from enum import Enum
from typing import Any, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

from copilot_relay.errors import EventParseError


class EventType(str, Enum):
    ASSISTANT_MESSAGE = "assistant.message"
    ASSISTANT_MESSAGE_DELTA = "assistant.message_delta"
    TOOL_EXECUTION_START = "tool.execution_start"
    TOOL_EXECUTION_COMPLETE = "tool.execution_complete"
    SESSION_IDLE = "session.idle"


class _BaseEvent(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    type: str
    id: Optional[str] = None
    parent_id: Optional[str] = Field(None, validation_alias=AliasChoices("parent_id", "parentId"))


class AssistantMessage(_BaseEvent):
    """Final answer for the current turn."""
    content: str = ""


class AssistantMessageDelta(_BaseEvent):
    """Streaming fragment of the answer."""
    delta_content: str = Field(validation_alias=AliasChoices("delta_content", "deltaContent"))


class ToolExecutionStart(_BaseEvent):
    tool_call_id: Optional[str] = Field(None, validation_alias=AliasChoices("tool_call_id", "toolCallId"))
    tool_name: str = Field(
        "unknown tool", validation_alias=AliasChoices("tool_name", "toolName", "name"),
    )
    arguments: Optional[Any] = Field(
        None, validation_alias=AliasChoices("arguments", "params", "input", "parameters"),
    )


class ToolExecutionComplete(_BaseEvent):
    tool_call_id: Optional[str] = Field(None, validation_alias=AliasChoices("tool_call_id", "toolCallId"))
    tool_name: Optional[str] = Field(None, validation_alias=AliasChoices("tool_name", "toolName", "name"))
    success: Optional[bool] = None
    result: Optional[Any] = None
    results: Optional[Any] = None
    error: Optional[Any] = None

    @property
    def output(self) -> Any:
        """Tool output: result.content when present, else the raw results field."""
        if isinstance(self.result, Mapping) and "content" in self.result:
            return self.result["content"]
        if self.result is not None and not isinstance(self.result, Mapping):
            return self.result
        return self.results

    @property
    def error_message(self) -> Optional[str]:
        if self.error is None:
            return None
        if isinstance(self.error, Mapping):
            message = self.error.get("message")
            return str(message) if message else None
        return str(self.error) or None

    @property
    def failed(self) -> bool:
        return self.error_message is not None or self.success is False


class SessionIdle(_BaseEvent):
    """No further output is pending for the current turn."""


class UnhandledEvent(_BaseEvent):
    data: Optional[Any] = None


AssistantEvent = Union[
    AssistantMessage,
    AssistantMessageDelta,
    ToolExecutionStart,
    ToolExecutionComplete,
    SessionIdle,
    UnhandledEvent,
]

EVENT_MODELS: dict[str, type[_BaseEvent]] = {
    EventType.ASSISTANT_MESSAGE.value: AssistantMessage,
    EventType.ASSISTANT_MESSAGE_DELTA.value: AssistantMessageDelta,
    EventType.TOOL_EXECUTION_START.value: ToolExecutionStart,
    EventType.TOOL_EXECUTION_COMPLETE.value: ToolExecutionComplete,
    EventType.SESSION_IDLE.value: SessionIdle,
}


def _as_mapping(obj: Any) -> dict[str, Any]:
    if obj is None:
        return {}
    if isinstance(obj, Mapping):
        return dict(obj)
    if isinstance(obj, BaseModel):
        return obj.model_dump(by_alias=False)
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return dataclasses.asdict(obj)
    if hasattr(obj, "__dict__"):
        return {k: v for k, v in vars(obj).items() if not k.startswith("_")}
    return {}


def _type_name(value: Any) -> str:
    if isinstance(value, Enum):
        return str(value.value)
    return str(value) if value is not None else ""


def _optional_str(value: Any) -> Optional[str]:
    return None if value is None else str(value)


def parse_event(raw: Any) -> AssistantEvent:
    """Build the typed event for a raw assistant event.

    Unknown event types become UnhandledEvent; a known type with a missing
    required field raises EventParseError.
    """
    envelope = _as_mapping(raw)
    event_type = _type_name(envelope.get("type"))
    if not event_type:
        raise EventParseError("unknown", "event has no type")
    data = _as_mapping(envelope.get("data"))
    fields = {
        **data,
        "type": event_type,
        "id": _optional_str(envelope.get("id")),
        "parent_id": _optional_str(envelope.get("parent_id", envelope.get("parentId"))),
    }
    model = EVENT_MODELS.get(event_type)
    try:
        if model is None:
            return UnhandledEvent.model_validate({**fields, "data": envelope.get("data")})
        return model.model_validate(fields)  # type: ignore[return-value]
    except ValidationError as e:
        raise EventParseError(event_type, str(e))
