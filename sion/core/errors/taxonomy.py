"""
Error taxonomy.

Every failure the agent reports to the model or to HTTP clients is one of
these. ``code`` is stable and appears in tool-result payloads and response
bodies.
"""

from typing import Any, Dict, List, Optional


class SionError(Exception):
    """Base class for all domain errors."""

    code: str = "internal_error"
    retryable: bool = False

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class InvalidArguments(SionError):
    """Tool arguments do not satisfy the declared schema."""

    code = "invalid_arguments"

    def __init__(self, message: str, field: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)
        self.field = field

    def to_payload(self) -> Dict[str, Any]:
        payload = super().to_payload()
        payload["field"] = self.field
        return payload


class UnknownTool(SionError):
    """Tool name is not enumerated or not in the session allow-list."""

    code = "unknown_tool"

    def __init__(self, name: str):
        super().__init__(f"Unknown tool: {name}", {"tool": name})
        self.name = name


class ToolExecutionError(SionError):
    """A tool handler failed. Wraps the original failure and keeps its code."""

    code = "tool_execution_failed"

    def __init__(
        self,
        tool: str,
        message: str,
        code: Optional[str] = None,
        retryable: bool = False,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.tool = tool
        if code:
            self.code = code
        self.retryable = retryable

    def to_payload(self) -> Dict[str, Any]:
        payload = super().to_payload()
        payload["tool"] = self.tool
        payload["retryable"] = self.retryable
        return payload


class SimulationFailed(SionError):
    """The transaction would fail on-chain; it is never submitted."""

    code = "simulation_failed"

    def __init__(self, message: str, logs: Optional[List[str]] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)
        self.logs = list(logs or [])

    def to_payload(self) -> Dict[str, Any]:
        payload = super().to_payload()
        payload["logs"] = self.logs
        return payload


class SubmissionFailed(SionError):
    """The network or relay rejected the transaction."""

    code = "submission_failed"


class ConfirmationTimeout(SionError):
    """No confirmation within the timeout. The transaction stays queryable."""

    code = "confirmation_timeout"


class DataUnavailable(SionError):
    """An enrichment or price source has no data. Never reported as zero."""

    code = "data_unavailable"

    def __init__(self, message: str, source: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)
        self.source = source

    def to_payload(self) -> Dict[str, Any]:
        payload = super().to_payload()
        if self.source:
            payload["source"] = self.source
        return payload


class Unauthorized(SionError):
    code = "unauthorized"


class NotFound(SionError):
    code = "not_found"


class InvalidStatusTransition(SionError):
    """A pending transaction was asked to move along an edge the table forbids."""

    code = "invalid_status_transition"

    def __init__(self, from_status: Any, to_status: Any, message: Optional[str] = None):
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            message or f"Cannot transition from {_value(from_status)} to {_value(to_status)}",
            {"from": _value(from_status), "to": _value(to_status)},
        )


class InvalidTurnTransition(SionError):
    """The orchestrator state machine was driven along a forbidden edge."""

    code = "invalid_turn_transition"

    def __init__(self, from_state: Any, to_state: Any):
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(f"Invalid turn transition from {_value(from_state)} to {_value(to_state)}")


def _value(state: Any) -> str:
    return getattr(state, "value", str(state))
