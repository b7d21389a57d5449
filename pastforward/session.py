"""One user's run of a creative mode: generate, retry keys, build the album."""

from __future__ import annotations

from typing import Dict, List, Optional

from .album.compositor import AlbumCompositor
from .core.client import GenerationClient
from .core.errors import PreconditionViolation
from .core.regeneration import RegenerationController
from .core.results import ResultRecord, ResultStore
from .core.scheduler import DEFAULT_CONCURRENCY_LIMIT, GenerationTask, TaskScheduler
from .metrics import RunMetrics
from .modes import Mode, build_tasks

IMAGE_FILENAME_PATTERN = "creative-output-{key}.jpg"


class CreativeSession:
    def __init__(
        self,
        mode: Mode,
        client: GenerationClient,
        *,
        logger,
        store: Optional[ResultStore] = None,
        compositor: Optional[AlbumCompositor] = None,
        metrics: Optional[RunMetrics] = None,
        concurrency_limit: int = DEFAULT_CONCURRENCY_LIMIT,
    ) -> None:
        self.mode = mode
        self.logger = logger
        self.store = store or ResultStore(logger=logger)
        self.compositor = compositor or AlbumCompositor(logger=logger)
        self.metrics = metrics or RunMetrics()
        self.scheduler = TaskScheduler(
            client=client,
            store=self.store,
            logger=logger,
            metrics=self.metrics,
            concurrency_limit=concurrency_limit,
        )
        self.regenerator = RegenerationController(
            client=client, store=self.store, logger=logger, metrics=self.metrics
        )
        self._tasks: Dict[str, GenerationTask] = {}

    # ------------------------------------------------------------------
    @property
    def keys(self) -> List[str]:
        return self.mode.keys

    async def generate(self, source_image: bytes) -> Dict[str, ResultRecord]:
        if not source_image:
            raise PreconditionViolation("A source image is required before generating")
        tasks = build_tasks(self.mode, source_image)
        self._tasks = {task.key: task for task in tasks}
        self.logger.info("Generating %d image(s) for mode %s.", len(tasks), self.mode.id)
        return await self.scheduler.run(tasks)

    async def regenerate(self, key: str) -> ResultRecord:
        task = self._tasks.get(key)
        if task is None:
            raise PreconditionViolation(f"No generated run holds key {key!r}")
        return await self.regenerator.regenerate(key, task)

    def can_regenerate(self, key: str) -> bool:
        return key in self._tasks and self.regenerator.can_regenerate(key)

    def discard(self) -> None:
        """Forget the current run; late results from it are ignored."""

        self._tasks = {}
        self.store.reset([])

    # ------------------------------------------------------------------
    def missing_keys(self) -> List[str]:
        return self.store.missing(self.keys)

    def is_complete(self) -> bool:
        return bool(self._tasks) and not self.missing_keys()

    def snapshot(self) -> Dict[str, ResultRecord]:
        return self.store.snapshot()

    async def compose_album(self) -> bytes:
        if not self.mode.is_multi:
            raise PreconditionViolation(f"Mode {self.mode.id} does not produce an album")
        missing = self.missing_keys()
        if not self._tasks or missing:
            raise PreconditionViolation(
                "Wait for every image to finish before creating the album; "
                f"missing: {', '.join(missing) or 'all'}"
            )
        images = self.store.images(self.keys)
        return await self.compositor.compose(
            images,
            self.mode.album_title or self.mode.title,
            self.mode.album_subtitle or "",
        )

    # ------------------------------------------------------------------
    @staticmethod
    def image_filename(key: str) -> str:
        return IMAGE_FILENAME_PATTERN.format(key=key)

    @property
    def album_filename(self) -> str:
        return self.mode.album_name


__all__ = ["CreativeSession", "IMAGE_FILENAME_PATTERN"]
