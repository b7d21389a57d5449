"""Task orchestration engine for PastForward."""

from .client import GeminiImageClient, GenerationClient, RetryConfig
from .errors import (
    GenerationError,
    GenerationFailure,
    LoadFailure,
    PastForwardError,
    PreconditionViolation,
    StateTransitionError,
)
from .regeneration import RegenerationController
from .results import ResultRecord, ResultStore, Status
from .scheduler import GenerationTask, TaskScheduler

__all__ = [
    "GeminiImageClient",
    "GenerationClient",
    "GenerationError",
    "GenerationFailure",
    "GenerationTask",
    "LoadFailure",
    "PastForwardError",
    "PreconditionViolation",
    "RegenerationController",
    "ResultRecord",
    "ResultStore",
    "RetryConfig",
    "StateTransitionError",
    "Status",
    "TaskScheduler",
]
