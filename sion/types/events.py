"""
Events emitted while a turn streams.
"""

from enum import Enum
from typing import Any, Dict

from pydantic import BaseModel, Field


class StreamEventType(str, Enum):
    MESSAGE_ID = "message-id"
    TEXT_DELTA = "text-delta"
    TOOL_CALL = "tool-call"
    TOOL_RESULT = "tool-result"
    ANNOTATION = "annotation"
    ERROR = "error"
    FINISH = "finish"


class StreamEvent(BaseModel):
    type: StreamEventType
    data: Dict[str, Any] = Field(default_factory=dict)

    def to_payload(self) -> Dict[str, Any]:
        return {"type": self.type.value, **self.data}


def message_id_event(message_id: str) -> StreamEvent:
    return StreamEvent(type=StreamEventType.MESSAGE_ID, data={"messageId": message_id})


def text_delta_event(text: str) -> StreamEvent:
    return StreamEvent(type=StreamEventType.TEXT_DELTA, data={"textDelta": text})


def tool_call_event(tool_call_id: str, tool_name: str, args: Any) -> StreamEvent:
    return StreamEvent(
        type=StreamEventType.TOOL_CALL,
        data={"toolCallId": tool_call_id, "toolName": tool_name, "args": args},
    )


def tool_result_event(tool_call_id: str, tool_name: str, result: Any, is_error: bool) -> StreamEvent:
    return StreamEvent(
        type=StreamEventType.TOOL_RESULT,
        data={"toolCallId": tool_call_id, "toolName": tool_name, "result": result, "isError": is_error},
    )


def annotation_event(kind: str, **values: Any) -> StreamEvent:
    return StreamEvent(type=StreamEventType.ANNOTATION, data={"kind": kind, **values})


def error_event(code: str, message: str) -> StreamEvent:
    return StreamEvent(type=StreamEventType.ERROR, data={"code": code, "message": message})


def finish_event(reason: str, steps: int) -> StreamEvent:
    return StreamEvent(type=StreamEventType.FINISH, data={"finishReason": reason, "steps": steps})
