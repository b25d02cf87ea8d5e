"""
Central error tracker.

Each failure is logged exactly once with its classification. Counters are
kept per scope and surfaced on the health endpoint.
"""

from collections import Counter, OrderedDict
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import structlog

from .recovery import ErrorContext, classify_error

_LOGGED_MARKER = "__sion_logged__"


class ErrorTracker:
    """Logs classified errors and keeps bounded per-scope counters."""

    def __init__(self, logger: Optional[Any] = None, max_scopes: int = 256):
        self._logger = logger or structlog.stdlib.get_logger("sion.errors")
        self._max_scopes = max_scopes
        self._counts: "OrderedDict[str, Counter]" = OrderedDict()
        self._last_error: Dict[str, Dict[str, Any]] = {}

    def log_error(self, scope: str, error: BaseException, **context: Any) -> ErrorContext:
        """Log ``error`` under ``scope`` unless it was already logged.

        Returns the classification either way so callers can decide on
        retries or payload shape.
        """
        classification = classify_error(error)
        if is_logged(error):
            return classification

        code = getattr(error, "code", type(error).__name__)
        self._logger.error(
            "tool_error" if scope.startswith("tool:") else "pipeline_error",
            scope=scope,
            code=code,
            category=classification.category.value,
            retryable=classification.recoverable,
            error=str(error),
            **context,
        )
        mark_logged(error)
        self._count(scope, code)
        self._last_error[scope] = {
            "code": code,
            "message": str(error),
            "at": datetime.now(timezone.utc).isoformat(),
        }
        return classification

    def snapshot(self) -> Dict[str, Any]:
        return {
            "total": sum(sum(c.values()) for c in self._counts.values()),
            "scopes": {
                scope: {
                    "count": sum(counter.values()),
                    "by_code": dict(counter),
                    "last": self._last_error.get(scope),
                }
                for scope, counter in self._counts.items()
            },
        }

    def reset(self) -> None:
        self._counts.clear()
        self._last_error.clear()

    def _count(self, scope: str, code: str) -> None:
        counter = self._counts.get(scope)
        if counter is None:
            counter = Counter()
            self._counts[scope] = counter
            while len(self._counts) > self._max_scopes:
                evicted, _ = self._counts.popitem(last=False)
                self._last_error.pop(evicted, None)
        else:
            self._counts.move_to_end(scope)
        counter[code] += 1


def mark_logged(error: BaseException) -> None:
    try:
        setattr(error, _LOGGED_MARKER, True)
    except AttributeError:
        pass


def is_logged(error: BaseException) -> bool:
    return bool(getattr(error, _LOGGED_MARKER, False))
