"""In-memory result state for the current generation run."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional

from ..logging_utils import LOGGER_NAME, run_context
from .errors import StateTransitionError


class Status(str, Enum):
    PENDING = "pending"
    DONE = "done"
    ERROR = "error"


@dataclass(frozen=True)
class ResultRecord:
    key: str
    status: Status
    image: bytes | None = None
    error: str | None = None

    def __post_init__(self) -> None:
        if (self.image is not None) != (self.status is Status.DONE):
            raise ValueError("image must be present exactly when status is done")
        if (self.error is not None) != (self.status is Status.ERROR):
            raise ValueError("error must be present exactly when status is error")

    @classmethod
    def pending(cls, key: str) -> "ResultRecord":
        return cls(key=key, status=Status.PENDING)

    @classmethod
    def done(cls, key: str, image: bytes) -> "ResultRecord":
        return cls(key=key, status=Status.DONE, image=image)

    @classmethod
    def failed(cls, key: str, message: str) -> "ResultRecord":
        return cls(key=key, status=Status.ERROR, error=message)

    @property
    def is_terminal(self) -> bool:
        return self.status is not Status.PENDING


Listener = Callable[[ResultRecord], None]


class ResultStore:
    """Single source of truth for per-key status during a run.

    Every run starts with :meth:`reset`, which hands out a run token. Writers
    pass that token back with each write; writes carrying a token from an
    earlier run are dropped, so late results of a discarded run never leak
    into the current one.
    """

    def __init__(self, *, logger=None) -> None:
        self.logger = logger or logging.getLogger(LOGGER_NAME)
        self._lock = threading.Lock()
        self._records: Dict[str, ResultRecord] = {}
        self._token = 0
        self._listeners: List[Listener] = []

    # ------------------------------------------------------------------
    @property
    def token(self) -> int:
        with self._lock:
            return self._token

    def reset(self, keys: Iterable[str]) -> int:
        records = {key: ResultRecord.pending(key) for key in keys}
        with self._lock:
            self._token += 1
            self._records = records
            token = self._token
        for record in records.values():
            self._notify(record)
        return token

    # ------------------------------------------------------------------
    def get(self, key: str) -> ResultRecord:
        with self._lock:
            try:
                return self._records[key]
            except KeyError:
                raise KeyError(f"Unknown task key: {key!r}") from None

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._records)

    def snapshot(self) -> Dict[str, ResultRecord]:
        with self._lock:
            return dict(self._records)

    # ------------------------------------------------------------------
    def set(self, key: str, record: ResultRecord, *, token: Optional[int] = None) -> bool:
        """Replace the record for ``key``; returns ``False`` for stale writes."""

        if record.key != key:
            raise ValueError(f"Record for {record.key!r} written under key {key!r}")
        with self._lock:
            if token is not None and token != self._token:
                stale = True
            else:
                stale = False
                current = self._records.get(key)
                if current is None:
                    raise KeyError(f"Unknown task key: {key!r}")
                # terminal records only go back to pending through claim()
                if current.is_terminal:
                    raise StateTransitionError(
                        f"{key}: cannot move from {current.status.value} to {record.status.value}"
                    )
                self._records[key] = record
        if stale:
            self.logger.debug(
                "Ignoring stale %s result for %s",
                record.status.value,
                key,
                extra=run_context(key=key, run_token=token),
            )
            return False
        self._notify(record)
        return True

    def claim(self, key: str, *, token: Optional[int] = None) -> bool:
        """Atomically move ``key`` back to pending unless it already is."""

        with self._lock:
            if token is not None and token != self._token:
                return False
            current = self._records.get(key)
            if current is None:
                raise KeyError(f"Unknown task key: {key!r}")
            if not current.is_terminal:
                return False
            record = ResultRecord.pending(key)
            self._records[key] = record
        self._notify(record)
        return True

    # ------------------------------------------------------------------
    def missing(self, keys: Iterable[str]) -> List[str]:
        """Keys (by identity) that do not currently hold a done record."""

        with self._lock:
            return [
                key
                for key in dict.fromkeys(keys)
                if key not in self._records or self._records[key].status is not Status.DONE
            ]

    def is_complete(self, keys: Iterable[str]) -> bool:
        return not self.missing(keys)

    def images(self, keys: Iterable[str]) -> Dict[str, bytes]:
        with self._lock:
            return {
                key: self._records[key].image
                for key in keys
                if key in self._records and self._records[key].status is Status.DONE
            }

    # ------------------------------------------------------------------
    def subscribe(self, listener: Listener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def _unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return _unsubscribe

    def _notify(self, record: ResultRecord) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(record)
            except Exception:
                # a broken observer must not stop the writer that triggered it
                self.logger.exception(
                    "Result listener %r failed for %s",
                    listener,
                    record.key,
                    extra=run_context(key=record.key),
                )


__all__ = ["ResultRecord", "ResultStore", "Status"]
