from __future__ import annotations

import asyncio
import io

import pytest
from PIL import Image

from conftest import StubClient
from pastforward.album.compositor import AlbumCompositor, AlbumSpec
from pastforward.core.errors import PreconditionViolation
from pastforward.core.results import Status
from pastforward.modes import MULTI, SINGLE, Mode, get_mode
from pastforward.session import CreativeSession

SMALL = AlbumSpec(canvas_width=400, canvas_height=560, padding=20, header_height=80)
TRIO = Mode(
    id="trio",
    kind=MULTI,
    title="Trio",
    prompts=(("a", "a"), ("b", "b"), ("c", "c")),
    album_title="Trio Album",
)


def _session(mode, client, logger) -> CreativeSession:
    return CreativeSession(mode, client, logger=logger, compositor=AlbumCompositor(SMALL))


def test_failed_key_blocks_album_until_regenerated(logger, source_image) -> None:
    client = StubClient(failures={"b"})
    session = _session(TRIO, client, logger)

    async def scenario():
        await session.generate(source_image)
        assert session.missing_keys() == ["b"]
        assert session.is_complete() is False
        with pytest.raises(PreconditionViolation, match="b"):
            await session.compose_album()
        client.failures.clear()
        await session.regenerate("b")
        return await session.compose_album()

    album = asyncio.run(scenario())

    assert session.is_complete()
    with Image.open(io.BytesIO(album)) as page:
        assert page.format == "JPEG"
        assert page.size == (400, 560)


def test_single_mode_yields_one_image_and_no_album(logger, source_image) -> None:
    mode = Mode(id="sketch", kind=SINGLE, title="Sketch", prompt="sketch")
    session = _session(mode, StubClient(), logger)

    snapshot = asyncio.run(session.generate(source_image))

    assert list(snapshot) == ["sketch"]
    assert snapshot["sketch"].status is Status.DONE
    assert session.is_complete()
    with pytest.raises(PreconditionViolation):
        asyncio.run(session.compose_album())


def test_generate_requires_source_image(logger) -> None:
    session = _session(TRIO, StubClient(), logger)

    with pytest.raises(PreconditionViolation):
        asyncio.run(session.generate(b""))
    with pytest.raises(PreconditionViolation):
        asyncio.run(session.regenerate("a"))
    assert session.can_regenerate("a") is False


def test_album_before_any_run_is_rejected(logger) -> None:
    session = _session(TRIO, StubClient(), logger)

    with pytest.raises(PreconditionViolation):
        asyncio.run(session.compose_album())


def test_discard_ignores_results_still_in_flight(logger, source_image) -> None:
    gate = asyncio.Event()
    client = StubClient(gates={"c": gate})
    session = _session(TRIO, client, logger)

    async def scenario():
        running = asyncio.create_task(session.generate(source_image))
        await asyncio.sleep(0.05)
        session.discard()
        gate.set()
        return await running

    snapshot = asyncio.run(scenario())

    assert snapshot == {}
    assert session.snapshot() == {}
    assert session.is_complete() is False


def test_filenames_follow_mode(logger) -> None:
    session = _session(get_mode("time-travel"), StubClient(), logger)

    assert session.keys == ["1950s", "1960s", "1970s", "1980s", "1990s", "2000s"]
    assert session.image_filename("1970s") == "creative-output-1970s.jpg"
    assert session.album_filename == "past-forward-album.jpg"
    assert _session(TRIO, StubClient(), logger).album_filename == "trio-album.jpg"
