"""
Error handling: taxonomy, retry classification and the central tracker.
"""

from .taxonomy import (
    SionError,
    InvalidArguments,
    UnknownTool,
    ToolExecutionError,
    SimulationFailed,
    SubmissionFailed,
    ConfirmationTimeout,
    DataUnavailable,
    Unauthorized,
    NotFound,
    InvalidStatusTransition,
    InvalidTurnTransition,
)
from .recovery import ErrorCategory, ErrorContext, RetryPolicy, NO_RETRY, classify_error
from .tracker import ErrorTracker, is_logged, mark_logged

__all__ = [
    # Taxonomy
    "SionError",
    "InvalidArguments",
    "UnknownTool",
    "ToolExecutionError",
    "SimulationFailed",
    "SubmissionFailed",
    "ConfirmationTimeout",
    "DataUnavailable",
    "Unauthorized",
    "NotFound",
    "InvalidStatusTransition",
    "InvalidTurnTransition",
    # Recovery
    "ErrorCategory",
    "ErrorContext",
    "RetryPolicy",
    "NO_RETRY",
    "classify_error",
    # Tracking
    "ErrorTracker",
    "is_logged",
    "mark_logged",
]
