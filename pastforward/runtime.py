"""Runtime orchestration for PastForward."""

from __future__ import annotations

import asyncio
import os
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from tqdm import tqdm

from .album.compositor import AlbumCompositor, AlbumFonts, AlbumSpec
from .core.client import GeminiImageClient, GenerationClient
from .core.errors import LoadFailure, PreconditionViolation
from .core.results import ResultRecord, Status
from .metrics import RunMetrics
from .modes import Mode, get_mode, load_modes, mode_catalogue
from .output import OutputWriter
from .session import CreativeSession


class PastForwardRuntime:
    def __init__(self, config: Dict[str, Any], logger) -> None:
        self.config = config
        self.logger = logger

    # ------------------------------------------------------------------
    def catalogue(self) -> Dict[str, Mode]:
        modes_file = self.config.get("paths", {}).get("modes_file")
        extra = load_modes(modes_file) if modes_file else []
        return mode_catalogue(extra)

    def build_client(self) -> GeminiImageClient:
        generation = self.config.get("generation", {})
        env_name = str(generation.get("api_key_env") or "GEMINI_API_KEY")
        if not os.getenv(env_name):
            self.logger.warning("%s is not set; generation requests will be unauthenticated.", env_name)
        return GeminiImageClient.from_config(generation, logger=self.logger)

    def build_compositor(self) -> AlbumCompositor:
        album = self.config.get("album", {})
        return AlbumCompositor(
            AlbumSpec.from_mapping(album),
            fonts=AlbumFonts.from_mapping(album.get("fonts") or {}),
            logger=self.logger,
        )

    # ------------------------------------------------------------------
    async def run(
        self,
        mode_id: str,
        image_path: str | Path,
        *,
        album: bool = False,
        concurrency: Optional[int] = None,
        client: Optional[GenerationClient] = None,
    ) -> bool:
        try:
            mode = get_mode(mode_id, self.catalogue())
        except (KeyError, ValueError, FileNotFoundError) as exc:
            self.logger.error("Cannot select mode: %s", exc)
            return False
        try:
            source_image = Path(image_path).read_bytes()
        except OSError as exc:
            self.logger.error("Cannot read source image %s: %s", image_path, exc)
            return False

        scheduler_config = self.config.get("scheduler", {})
        limit = int(concurrency or scheduler_config.get("concurrency_limit", 2))
        owned_client = client is None
        active_client = client if client is not None else self.build_client()
        metrics = RunMetrics()
        session = CreativeSession(
            mode,
            active_client,
            logger=self.logger,
            compositor=self.build_compositor(),
            metrics=metrics,
            concurrency_limit=limit,
        )
        try:
            with self._progress(session, mode.id):
                await session.generate(source_image)
            await self._retry_failed(
                session, int(scheduler_config.get("regenerate_failed") or 0), limit
            )
            album_bytes = await self._album(session, album)
            return self._finish(session, album=album, metrics=metrics, album_bytes=album_bytes)
        finally:
            if owned_client:
                await active_client.aclose()

    async def _retry_failed(self, session: CreativeSession, rounds: int, limit: int) -> None:
        semaphore = asyncio.Semaphore(max(1, limit))

        async def _one(key: str) -> None:
            async with semaphore:
                await session.regenerate(key)

        for attempt in range(1, rounds + 1):
            failed = self._failed_keys(session.snapshot())
            if not failed:
                return
            self.logger.info(
                "Retry round %d/%d for %d failed key(s): %s",
                attempt,
                rounds,
                len(failed),
                ", ".join(failed),
            )
            with self._progress(session, f"retry {attempt}", total=len(failed)):
                await asyncio.gather(*(_one(key) for key in failed))

    async def _album(self, session: CreativeSession, requested: bool) -> Optional[bytes]:
        if not requested:
            return None
        if not session.mode.is_multi:
            self.logger.warning("Mode %s produces a single image; skipping album.", session.mode.id)
            return None
        try:
            return await session.compose_album()
        except PreconditionViolation as exc:
            self.logger.warning("Album not created: %s", exc)
        except LoadFailure as exc:
            self.logger.error("Album creation failed: %s", exc)
        return None

    def _finish(
        self,
        session: CreativeSession,
        *,
        album: bool,
        metrics: RunMetrics,
        album_bytes: Optional[bytes],
    ) -> bool:
        paths = self.config.get("paths", {})
        writer = OutputWriter(paths.get("outputs"), paths.get("summaries"), logger=self.logger)
        records = {key: session.store.get(key) for key in session.keys}
        written = writer.write_results(
            records, {key: session.image_filename(key) for key in session.keys}
        )
        album_path = writer.write_image(session.album_filename, album_bytes) if album_bytes else None
        if album_path:
            self.logger.info("Album written to %s", album_path)
        summary = metrics.summary()
        writer.write_summary(
            mode_id=session.mode.id,
            records=records,
            written=written,
            album=album_path,
            metrics=summary,
        )
        self._log_summary(records, summary)
        complete = all(record.status is Status.DONE for record in records.values())
        if album and session.mode.is_multi:
            return complete and album_path is not None
        return complete

    # ------------------------------------------------------------------
    @contextmanager
    def _progress(
        self, session: CreativeSession, desc: str, *, total: Optional[int] = None
    ) -> Iterator[tqdm]:
        keys = set(session.keys)
        bar = tqdm(total=total or len(keys), desc=desc, unit="image", leave=False)

        def _on_record(record: ResultRecord) -> None:
            if record.key in keys and record.is_terminal:
                bar.update(1)

        unsubscribe = session.store.subscribe(_on_record)
        try:
            yield bar
        finally:
            unsubscribe()
            bar.close()

    @staticmethod
    def _failed_keys(records: Dict[str, ResultRecord]) -> List[str]:
        return [key for key, record in records.items() if record.status is Status.ERROR]

    def _log_summary(self, records: Dict[str, ResultRecord], metrics: Dict[str, object]) -> None:
        self.logger.info("=== RUN SUMMARY ===")
        for key, record in records.items():
            if record.status is Status.ERROR:
                self.logger.info("%s -> error: %s", key, record.error)
            else:
                self.logger.info("%s -> %s", key, record.status.value)
        self.logger.info(
            "calls=%s success=%s failure=%s avg_elapsed=%.2fs peak_in_flight=%s",
            metrics.get("calls"),
            metrics.get("success"),
            metrics.get("failure"),
            float(metrics.get("avg_elapsed", 0.0)),
            metrics.get("peak_in_flight"),
        )
        self.logger.info("===================")


__all__ = ["PastForwardRuntime"]
