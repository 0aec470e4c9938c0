"""
Error taxonomy for matebench.

Every error raised by the orchestrator derives from ``MateBenchError`` and carries
a category so callers (and logs) can tell configuration problems apart from
engine-side failures.
"""

from __future__ import annotations

import time
from enum import Enum
from typing import Any, Dict, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from matebench.results import SolveOutcome


class ErrorCategory(Enum):
    """Error categories for classification."""
    CONFIGURATION = "configuration"
    SESSION_START = "session_start"
    PROTOCOL = "protocol"
    TIMEOUT = "timeout"
    POOL = "pool"


class MateBenchError(Exception):
    """Base exception class for matebench errors."""

    def __init__(self, message: str, category: ErrorCategory,
                 context_data: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.category = category
        self.context_data = context_data or {}
        self.timestamp = time.time()

    def __str__(self):
        return f"[{self.category.value}] {super().__str__()}"


class ConfigurationError(MateBenchError):
    """Invalid run setup: empty input, missing engine, bad numeric parameter."""
    def __init__(self, message: str, **kwargs):
        super().__init__(message, ErrorCategory.CONFIGURATION, **kwargs)


class SessionStartFailure(MateBenchError):
    """The engine could not be spawned or did not complete the handshake."""
    def __init__(self, message: str, **kwargs):
        super().__init__(message, ErrorCategory.SESSION_START, **kwargs)


class ProtocolError(MateBenchError):
    """Malformed response or closed stream while solving.

    ``outcome`` holds the ``EngineError`` outcome describing the failed call so
    the caller can record it once the requeue bound is exhausted.
    """
    def __init__(self, message: str, outcome: Optional["SolveOutcome"] = None, **kwargs):
        super().__init__(message, ErrorCategory.PROTOCOL, **kwargs)
        self.outcome = outcome


class SolveTimeout(MateBenchError):
    """No terminal response arrived within the allotted time."""
    def __init__(self, message: str, **kwargs):
        super().__init__(message, ErrorCategory.TIMEOUT, **kwargs)


class PoolExhaustedError(MateBenchError):
    """Every worker exited fatally before the job queue drained."""
    def __init__(self, message: str, **kwargs):
        super().__init__(message, ErrorCategory.POOL, **kwargs)
