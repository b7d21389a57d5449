"""Atomic writers for generated images, albums and run summaries."""

from __future__ import annotations

import json
import re
import time
from pathlib import Path
from typing import Any, Dict, Mapping

from .core.results import ResultRecord, Status

_UNSAFE_FILENAME = re.compile(r"[\\/:*?\"<>|\x00-\x1f]")


def safe_filename(name: str) -> str:
    cleaned = _UNSAFE_FILENAME.sub("_", name).strip(" .")
    return cleaned or "output.jpg"


class OutputWriter:
    def __init__(self, outputs_dir: str | Path, summaries_dir: str | Path | None = None, *, logger) -> None:
        self.outputs_dir = Path(outputs_dir)
        self.summaries_dir = Path(summaries_dir) if summaries_dir else None
        self.logger = logger
        self.outputs_dir.mkdir(parents=True, exist_ok=True)
        if self.summaries_dir:
            self.summaries_dir.mkdir(parents=True, exist_ok=True)

    def write_image(self, filename: str, data: bytes) -> Path:
        path = self.outputs_dir / safe_filename(filename)
        self._atomic_write(path, data)
        self.logger.debug("Wrote %d byte(s) to %s", len(data), path)
        return path

    def write_results(
        self,
        records: Mapping[str, ResultRecord],
        filenames: Mapping[str, str],
    ) -> Dict[str, Path]:
        written: Dict[str, Path] = {}
        for key, record in records.items():
            if record.status is Status.DONE and record.image:
                written[key] = self.write_image(filenames[key], record.image)
        return written

    def write_summary(
        self,
        *,
        mode_id: str,
        records: Mapping[str, ResultRecord],
        written: Mapping[str, Path],
        album: Path | None,
        metrics: Mapping[str, Any],
    ) -> Path | None:
        if not self.summaries_dir:
            return None
        payload = {
            "mode": mode_id,
            "timestamp": time.time(),
            "keys": {
                key: {
                    "status": record.status.value,
                    "error": record.error,
                    "path": str(written[key]) if key in written else None,
                }
                for key, record in records.items()
            },
            "album": str(album) if album else None,
            "metrics": dict(metrics),
        }
        timestamp = time.strftime("%Y%m%dT%H%M%S", time.gmtime())
        path = self.summaries_dir / f"run-summary-{mode_id}-{timestamp}.json"
        self._atomic_write(
            path, (json.dumps(payload, indent=2, ensure_ascii=False) + "\n").encode("utf-8")
        )
        self.logger.info("Run summary written to %s", path)
        return path

    def _atomic_write(self, path: Path, data: bytes) -> None:
        tmp_path = path.with_suffix(path.suffix + ".tmp")
        tmp_path.write_bytes(data)
        tmp_path.replace(path)


__all__ = ["OutputWriter", "safe_filename"]
