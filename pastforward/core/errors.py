"""Exception taxonomy shared by the orchestration engine and the compositor."""

from __future__ import annotations

import httpx

UNKNOWN_ERROR_MESSAGE = "An unknown error occurred."
SOURCE_PREVIEW_LENGTH = 50


class PastForwardError(Exception):
    """Base class for every error raised by the package."""


class GenerationError(PastForwardError):
    """The generation service answered, but not with a usable image."""


class GenerationFailure(PastForwardError):
    """One task key's remote call failed; recorded on that key only."""

    def __init__(self, key: str, cause: BaseException | None = None) -> None:
        self.key = key
        self.cause = cause
        super().__init__(f"{key}: {describe_failure(cause)}")

    @property
    def message(self) -> str:
        return describe_failure(self.cause)


class LoadFailure(PastForwardError):
    """An album source image could not be decoded."""

    def __init__(self, source: object, cause: BaseException | None = None) -> None:
        self.source = source
        self.cause = cause
        super().__init__(f"Failed to load image: {preview_source(source)}")


class PreconditionViolation(PastForwardError):
    """The caller asked for something the current state does not allow."""


class StateTransitionError(PastForwardError):
    """A result record write would break the pending -> terminal lifecycle."""


def describe_failure(cause: BaseException | None) -> str:
    """Return a human-readable message that keeps the underlying cause."""

    if cause is None:
        return UNKNOWN_ERROR_MESSAGE
    if isinstance(cause, httpx.HTTPStatusError):
        response = cause.response
        detail = response.text.strip()[:200] if response is not None else ""
        status = response.status_code if response is not None else "?"
        return f"HTTP {status}: {detail}" if detail else f"HTTP {status}"
    text = str(cause).strip()
    return text or UNKNOWN_ERROR_MESSAGE


def preview_source(source: object) -> str:
    if isinstance(source, (bytes, bytearray)):
        text = f"<{len(source)} bytes>"
    else:
        text = str(source)
    if len(text) > SOURCE_PREVIEW_LENGTH:
        return text[:SOURCE_PREVIEW_LENGTH] + "..."
    return text


__all__ = [
    "GenerationError",
    "GenerationFailure",
    "LoadFailure",
    "PastForwardError",
    "PreconditionViolation",
    "StateTransitionError",
    "UNKNOWN_ERROR_MESSAGE",
    "describe_failure",
    "preview_source",
]
