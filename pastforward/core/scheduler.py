"""Bounded worker pool that fans a mode's prompts out to the generation client."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Dict, Iterable, Optional

from ..logging_utils import run_context
from ..metrics import RunMetrics
from .client import GenerationClient
from .errors import GenerationFailure, StateTransitionError
from .results import ResultRecord, ResultStore, Status

DEFAULT_CONCURRENCY_LIMIT = 2


@dataclass(frozen=True)
class GenerationTask:
    key: str
    source_image: bytes
    prompt: str


async def execute_task(
    task: GenerationTask,
    client: GenerationClient,
    *,
    metrics: Optional[RunMetrics],
    logger,
    origin: str = "run",
    run_token: Optional[int] = None,
) -> ResultRecord:
    """Call the client for one task and turn the outcome into a terminal record.

    Cancellation is not converted into a record: it is counted as a failed
    call in ``metrics`` and re-raised for the caller to settle the key.
    """

    context = run_context(key=task.key, origin=origin, run_token=run_token)
    if metrics is not None:
        metrics.call_started()
    start = time.perf_counter()
    try:
        image = await client.generate(task.source_image, task.prompt)
    except asyncio.CancelledError:
        if metrics is not None:
            metrics.record(
                task.key, time.perf_counter() - start, status=Status.ERROR.value, origin=origin
            )
        logger.warning("Generation for %s was cancelled", task.key, extra=context)
        raise
    except Exception as exc:
        failure = GenerationFailure(task.key, exc)
        logger.error("Failed to generate image for %s: %s", task.key, failure.message, extra=context)
        logger.debug("Generation failure details for %s", task.key, exc_info=True, extra=context)
        record = ResultRecord.failed(task.key, failure.message)
    else:
        if not image:
            failure = GenerationFailure(task.key, None)
            logger.error("Generation for %s returned an empty image", task.key, extra=context)
            record = ResultRecord.failed(task.key, failure.message)
        else:
            record = ResultRecord.done(task.key, image)
    elapsed = time.perf_counter() - start
    if metrics is not None:
        metrics.record(task.key, elapsed, status=record.status.value, origin=origin)
    logger.debug("%s finished as %s in %.2fs", task.key, record.status.value, elapsed, extra=context)
    return record


class TaskScheduler:
    def __init__(
        self,
        *,
        client: GenerationClient,
        store: ResultStore,
        logger,
        metrics: Optional[RunMetrics] = None,
        concurrency_limit: int = DEFAULT_CONCURRENCY_LIMIT,
    ) -> None:
        self.client = client
        self.store = store
        self.logger = logger
        self.metrics = metrics
        self.concurrency_limit = concurrency_limit

    async def run(
        self,
        tasks: Iterable[GenerationTask],
        concurrency_limit: Optional[int] = None,
    ) -> Dict[str, ResultRecord]:
        task_list = list(tasks)
        limit = self.concurrency_limit if concurrency_limit is None else concurrency_limit
        if int(limit) < 1:
            raise ValueError("concurrency_limit must be at least 1")
        keys = [task.key for task in task_list]
        if len(set(keys)) != len(keys):
            raise ValueError("Task keys must be unique within a run")

        token = self.store.reset(keys)
        queue: asyncio.Queue[GenerationTask] = asyncio.Queue()
        for task in task_list:
            queue.put_nowait(task)

        self.logger.info(
            "Dispatching %d task(s) across %d worker(s).",
            len(task_list),
            int(limit),
            extra=run_context(run_token=token),
        )
        workers = [
            asyncio.create_task(self._worker(idx, queue, token), name=f"worker-{idx}")
            for idx in range(int(limit))
        ]
        await asyncio.gather(*workers)
        snapshot = self.store.snapshot()
        self._log_summary(snapshot, keys)
        return snapshot

    async def _worker(self, worker_id: int, queue: "asyncio.Queue[GenerationTask]", token: int) -> None:
        while True:
            try:
                task = queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            context = run_context(key=task.key, run_token=token)
            self.logger.debug("worker-%d picked %s", worker_id, task.key, extra=context)
            try:
                record = await execute_task(
                    task, self.client, metrics=self.metrics, logger=self.logger, run_token=token
                )
                self.store.set(task.key, record, token=token)
            except (KeyError, StateTransitionError):
                # keep draining: the remaining keys still need a terminal record
                self.logger.exception("Could not store result for %s", task.key, extra=context)
            finally:
                queue.task_done()

    def _log_summary(self, snapshot: Dict[str, ResultRecord], keys: list[str]) -> None:
        statuses = [snapshot[key].status.value for key in keys if key in snapshot]
        self.logger.info(
            "Run finished: %d done, %d failed.",
            statuses.count("done"),
            statuses.count("error"),
        )


__all__ = ["DEFAULT_CONCURRENCY_LIMIT", "GenerationTask", "TaskScheduler", "execute_task"]
