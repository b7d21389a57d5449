"""Single-key re-runs outside the bulk worker pool."""

from __future__ import annotations

import asyncio
from typing import Optional

from ..logging_utils import run_context
from ..metrics import RunMetrics
from .client import GenerationClient
from .errors import PreconditionViolation
from .results import ResultRecord, ResultStore, Status
from .scheduler import GenerationTask, execute_task

CANCELLED_MESSAGE = "Regeneration was cancelled."


class RegenerationController:
    def __init__(
        self,
        *,
        client: GenerationClient,
        store: ResultStore,
        logger,
        metrics: Optional[RunMetrics] = None,
    ) -> None:
        self.client = client
        self.store = store
        self.logger = logger
        self.metrics = metrics

    def can_regenerate(self, key: str) -> bool:
        try:
            return self.store.get(key).status is not Status.PENDING
        except KeyError:
            return False

    async def regenerate(self, key: str, task: GenerationTask) -> ResultRecord:
        """Re-run ``task`` for ``key``; rejected while the key is still pending.

        A cancelled regeneration leaves the key in ``error`` so it can be
        retried again.
        """

        if task.key != key:
            raise ValueError(f"Task for {task.key!r} cannot regenerate key {key!r}")
        token = self.store.token
        if not self.store.claim(key, token=token):
            raise PreconditionViolation(f"{key} is already being generated")

        context = run_context(key=key, origin="regenerate", run_token=token)
        self.logger.info("Regenerating image for %s...", key, extra=context)
        try:
            record = await execute_task(
                task,
                self.client,
                metrics=self.metrics,
                logger=self.logger,
                origin="regenerate",
                run_token=token,
            )
        except asyncio.CancelledError:
            self.store.set(key, ResultRecord.failed(key, CANCELLED_MESSAGE), token=token)
            raise
        if not self.store.set(key, record, token=token):
            self.logger.info(
                "Discarded regeneration result for %s from a previous run", key, extra=context
            )
        return record


__all__ = ["CANCELLED_MESSAGE", "RegenerationController"]
