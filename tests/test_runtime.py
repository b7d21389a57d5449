from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path

import pytest

from conftest import StubClient, make_png
from pastforward.modes import DECADES, get_mode
from pastforward.runtime import PastForwardRuntime


class FlakyClient(StubClient):
    """Fails each listed prompt once, then succeeds."""

    async def generate(self, source_image: bytes, prompt: str) -> bytes:
        try:
            return await super().generate(source_image, prompt)
        finally:
            self.failures.discard(prompt)


@pytest.fixture
def config(tmp_path: Path):
    return {
        "generation": {},
        "scheduler": {"concurrency_limit": 2, "regenerate_failed": 0},
        "album": {"canvas_width": 400, "canvas_height": 560, "padding": 20, "header_height": 80},
        "paths": {"outputs": str(tmp_path / "out"), "summaries": str(tmp_path / "summaries")},
    }


@pytest.fixture
def photo(tmp_path: Path) -> Path:
    path = tmp_path / "me.png"
    path.write_bytes(make_png())
    return path


def _summary(tmp_path: Path) -> dict:
    (path,) = (tmp_path / "summaries").glob("run-summary-time-travel-*.json")
    return json.loads(path.read_text(encoding="utf-8"))


def test_full_run_writes_images_album_and_summary(config, photo, tmp_path) -> None:
    runtime = PastForwardRuntime(config, logging.getLogger("pastforward-test"))
    client = StubClient()

    ok = asyncio.run(runtime.run("time-travel", photo, album=True, client=client))

    assert ok is True
    assert client.max_in_flight <= 2
    for decade in DECADES:
        assert (tmp_path / "out" / f"creative-output-{decade}.jpg").exists()
    assert (tmp_path / "out" / "past-forward-album.jpg").exists()
    summary = _summary(tmp_path)
    assert summary["album"].endswith("past-forward-album.jpg")
    assert summary["metrics"]["success"] == 6


def test_failed_key_without_retries_skips_album(config, photo, tmp_path) -> None:
    failing = get_mode("time-travel").prompt_for("1970s")
    runtime = PastForwardRuntime(config, logging.getLogger("pastforward-test"))

    ok = asyncio.run(
        runtime.run("time-travel", photo, album=True, client=FlakyClient(failures={failing}))
    )

    assert ok is False
    assert not (tmp_path / "out" / "past-forward-album.jpg").exists()
    assert not (tmp_path / "out" / "creative-output-1970s.jpg").exists()
    assert _summary(tmp_path)["keys"]["1970s"]["status"] == "error"


def test_retry_rounds_recover_failed_keys(config, photo, tmp_path) -> None:
    config["scheduler"]["regenerate_failed"] = 1
    failing = get_mode("time-travel").prompt_for("1970s")
    runtime = PastForwardRuntime(config, logging.getLogger("pastforward-test"))
    client = FlakyClient(failures={failing})

    ok = asyncio.run(runtime.run("time-travel", photo, album=True, client=client))

    assert ok is True
    assert len(client.calls) == 7
    assert _summary(tmp_path)["metrics"]["regenerations"] == 1


def test_single_mode_ignores_album_flag(config, photo, tmp_path) -> None:
    runtime = PastForwardRuntime(config, logging.getLogger("pastforward-test"))

    ok = asyncio.run(runtime.run("knitted-doll", photo, album=True, client=StubClient()))

    assert ok is True
    assert (tmp_path / "out" / "creative-output-knitted-doll.jpg").exists()


def test_bad_mode_or_image_returns_false(config, photo, tmp_path) -> None:
    runtime = PastForwardRuntime(config, logging.getLogger("pastforward-test"))

    assert asyncio.run(runtime.run("nope", photo, client=StubClient())) is False
    assert asyncio.run(runtime.run("time-travel", tmp_path / "missing.png", client=StubClient())) is False
