from __future__ import annotations

import asyncio
import io
import random

import pytest
from PIL import Image

from conftest import make_png
from pastforward.album.compositor import (
    BACKGROUND_COLOR,
    AlbumCompositor,
    AlbumSpec,
    gradient_color,
)
from pastforward.core.errors import LoadFailure

DECADES = ["1950s", "1960s", "1970s", "1980s", "1990s", "2000s"]
SMALL = AlbumSpec(canvas_width=620, canvas_height=877, padding=25, header_height=100)


def test_frame_size_for_six_items_on_default_canvas() -> None:
    compositor = AlbumCompositor()
    width, height = compositor.frame_size(6)

    # 1090 wide cells, 902.67 tall cells: height-bound at 0.9 of the cell.
    assert height == pytest.approx(812.4)
    assert width == pytest.approx(677.0)
    assert compositor.spec.rows(6) == 3
    assert compositor.spec.rows(5) == 3


def test_layout_is_drawn_last_cell_first_with_bounded_rotation() -> None:
    compositor = AlbumCompositor(random_source=random.Random(7))
    placements = compositor.plan_layout(DECADES)

    assert [placement.key for placement in placements] == list(reversed(DECADES))
    assert [placement.index for placement in placements] == [5, 4, 3, 2, 1, 0]
    assert all(abs(placement.rotation) <= 0.05 for placement in placements)

    first = placements[-1]
    assert (first.row, first.col) == (0, 0)
    assert first.center[0] == pytest.approx(100 + 1090 / 2)
    assert first.center[1] == pytest.approx(400 + 100 + 902.6667 / 2, rel=1e-4)


def test_only_rotation_depends_on_randomness() -> None:
    one = AlbumCompositor(random_source=random.Random(1)).plan_layout(DECADES)
    two = AlbumCompositor(random_source=random.Random(2)).plan_layout(DECADES)

    assert [(p.x, p.y, p.width, p.height) for p in one] == [(p.x, p.y, p.width, p.height) for p in two]
    assert [p.rotation for p in one] != [p.rotation for p in two]


def test_no_keys_means_no_placements() -> None:
    assert AlbumCompositor().plan_layout([]) == []


def test_gradient_endpoints_and_clamping() -> None:
    assert gradient_color(0.0) == (0xF9, 0xD4, 0x23)
    assert gradient_color(0.5) == (0xFF, 0x4E, 0x50)
    assert gradient_color(1.0) == (0xFC, 0x91, 0x3A)
    assert gradient_color(-3.0) == gradient_color(0.0)
    assert gradient_color(9.0) == gradient_color(1.0)


def test_compose_returns_full_size_jpeg() -> None:
    compositor = AlbumCompositor(random_source=random.Random(3))
    images = {key: make_png(color=(idx * 40, 120, 200)) for idx, key in enumerate(DECADES)}

    data = asyncio.run(compositor.compose(images, "Past Forward", "Generated across the decades"))

    with Image.open(io.BytesIO(data)) as page:
        assert page.format == "JPEG"
        assert page.size == (2480, 3508)


def test_small_page_keeps_background_outside_frames() -> None:
    compositor = AlbumCompositor(SMALL, random_source=random.Random(0))
    images = {key: make_png() for key in DECADES[:3]}

    data = asyncio.run(compositor.compose(images, "Title", "Subtitle"))

    with Image.open(io.BytesIO(data)) as page:
        page = page.convert("RGB")
        assert page.size == (620, 877)
        corner = page.getpixel((2, 2))
        expected = tuple(int(BACKGROUND_COLOR[i : i + 2], 16) for i in (1, 3, 5))
        assert all(abs(a - b) <= 6 for a, b in zip(corner, expected))
        # a frame is white near the middle of the first cell
        first = compositor.plan_layout(list(images))[-1]
        _, y = first.center
        assert min(page.getpixel((int(first.x + 5), int(y)))) > 200


def test_header_only_page_for_empty_mapping() -> None:
    compositor = AlbumCompositor(SMALL)
    data = asyncio.run(compositor.compose({}, "Title", ""))

    with Image.open(io.BytesIO(data)) as page:
        assert page.size == (620, 877)


def test_undecodable_image_raises_load_failure_naming_the_source() -> None:
    compositor = AlbumCompositor(SMALL)
    broken = "data:image/png;base64," + "A" * 10 + "!!"

    with pytest.raises(LoadFailure) as excinfo:
        asyncio.run(compositor.compose({"1950s": make_png(), "1960s": broken}, "T", "S"))

    assert str(excinfo.value) == "Failed to load image: " + broken


def test_long_source_is_truncated_in_message() -> None:
    compositor = AlbumCompositor(SMALL)
    broken = "/does/not/exist/" + "x" * 80 + ".png"

    with pytest.raises(LoadFailure) as excinfo:
        asyncio.run(compositor.compose({"a": broken}, "T", "S"))

    assert str(excinfo.value) == "Failed to load image: " + broken[:50] + "..."
