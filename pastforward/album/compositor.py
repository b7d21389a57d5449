"""Compose a finished multi-image run into a single polaroid album page.

Layout is fully determined by the number of items: a two column grid below a
fixed header, one white frame per cell. The only randomness is the small
per-frame rotation, drawn from an injectable ``random.Random`` so tests can
pin it. Frames are drawn last-cell-first, so where rotated frames overlap the
earlier (top-left) items end up on top.
"""

from __future__ import annotations

import asyncio
import io
import math
import random
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Sequence, Tuple

from PIL import Image, ImageDraw, ImageFilter, ImageFont

from .loader import ImageRef, load_images

Color = Tuple[int, int, int]

BACKGROUND_COLOR = "#1a1a1a"
TITLE_GRADIENT: Tuple[Tuple[float, str], ...] = (
    (0.0, "#f9d423"),
    (0.5, "#ff4e50"),
    (1.0, "#fc913a"),
)
SUBTITLE_COLOR = "#e0e0e0"
FRAME_COLOR = "#ffffff"
CAPTION_COLOR = "#222222"

TITLE_Y = 220
SUBTITLE_Y = TITLE_Y + 100
TITLE_SIZE = 160
SUBTITLE_SIZE = 70
CAPTION_SIZE = 60

FRAME_ASPECT = 1.2  # frame height / width
FRAME_SCALE = 0.9
PHOTO_SCALE = 0.9

SHADOW_OPACITY = 0.6
SHADOW_BLUR = 50
SHADOW_OFFSET = (10, 15)


@dataclass(frozen=True)
class AlbumSpec:
    canvas_width: int = 2480
    canvas_height: int = 3508
    cols: int = 2
    padding: int = 100
    header_height: int = 400
    rotation_jitter: float = 0.05
    jpeg_quality: float = 0.9

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "AlbumSpec":
        defaults = cls()
        return cls(
            canvas_width=int(data.get("canvas_width", defaults.canvas_width)),
            canvas_height=int(data.get("canvas_height", defaults.canvas_height)),
            cols=int(data.get("cols", defaults.cols)),
            padding=int(data.get("padding", defaults.padding)),
            header_height=int(data.get("header_height", defaults.header_height)),
            rotation_jitter=float(data.get("rotation_jitter", defaults.rotation_jitter)),
            jpeg_quality=float(data.get("jpeg_quality", defaults.jpeg_quality)),
        )

    def rows(self, count: int) -> int:
        return math.ceil(count / self.cols)


@dataclass(frozen=True)
class FramePlacement:
    key: str
    index: int
    row: int
    col: int
    x: float
    y: float
    width: float
    height: float
    rotation: float

    @property
    def center(self) -> Tuple[float, float]:
        return self.x + self.width / 2, self.y + self.height / 2


def load_font(candidates: Sequence[str], size: int) -> ImageFont.FreeTypeFont:
    for candidate in candidates:
        try:
            return ImageFont.truetype(candidate, size)
        except OSError:
            continue
    return ImageFont.load_default(size=size)


@dataclass
class AlbumFonts:
    title: Sequence[str] = ()
    subtitle: Sequence[str] = ()
    caption: Sequence[str] = ()
    _cache: Dict[Tuple[str, int], Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "AlbumFonts":
        def _names(value: Any) -> Tuple[str, ...]:
            if isinstance(value, str):
                return (value,)
            return tuple(str(item) for item in value or ())

        return cls(
            title=_names(data.get("title")),
            subtitle=_names(data.get("subtitle")),
            caption=_names(data.get("caption")),
        )

    def get(self, role: str, size: int):
        cache_key = (role, size)
        if cache_key not in self._cache:
            self._cache[cache_key] = load_font(getattr(self, role), size)
        return self._cache[cache_key]


def _hex_to_rgb(value: str) -> Color:
    value = value.lstrip("#")
    return int(value[0:2], 16), int(value[2:4], 16), int(value[4:6], 16)


def gradient_color(t: float, stops: Sequence[Tuple[float, str]] = TITLE_GRADIENT) -> Color:
    """Colour at position ``t`` of a linear gradient, clamped to the end stops."""

    t = min(1.0, max(0.0, t))
    for (left_pos, left), (right_pos, right) in zip(stops, stops[1:]):
        if t <= right_pos:
            span = right_pos - left_pos
            ratio = (t - left_pos) / span if span else 0.0
            a, b = _hex_to_rgb(left), _hex_to_rgb(right)
            return (
                round(a[0] + (b[0] - a[0]) * ratio),
                round(a[1] + (b[1] - a[1]) * ratio),
                round(a[2] + (b[2] - a[2]) * ratio),
            )
    return _hex_to_rgb(stops[-1][1])


class AlbumCompositor:
    def __init__(
        self,
        spec: AlbumSpec | None = None,
        *,
        fonts: AlbumFonts | None = None,
        random_source: random.Random | None = None,
        logger=None,
    ) -> None:
        self.spec = spec or AlbumSpec()
        self.fonts = fonts or AlbumFonts()
        self.random = random_source or random.Random()
        self.logger = logger

    # ------------------------------------------------------------------
    def frame_size(self, count: int) -> Tuple[float, float]:
        spec = self.spec
        rows = max(1, spec.rows(count))
        cell_width, cell_height = self._cell_size(rows)
        width = cell_width * FRAME_SCALE
        height = width * FRAME_ASPECT
        if height > cell_height * FRAME_SCALE:
            height = cell_height * FRAME_SCALE
            width = height / FRAME_ASPECT
        return width, height

    def _cell_size(self, rows: int) -> Tuple[float, float]:
        spec = self.spec
        content_height = spec.canvas_height - spec.header_height
        cell_width = (spec.canvas_width - spec.padding * (spec.cols + 1)) / spec.cols
        cell_height = (content_height - spec.padding * (rows + 1)) / rows
        return cell_width, cell_height

    def plan_layout(self, keys: Sequence[str]) -> List[FramePlacement]:
        """Frame placements in draw order (last grid cell first)."""

        keys = list(keys)
        if not keys:
            return []
        spec = self.spec
        rows = spec.rows(len(keys))
        cell_width, cell_height = self._cell_size(rows)
        width, height = self.frame_size(len(keys))

        placements: List[FramePlacement] = []
        for index in reversed(range(len(keys))):
            row, col = divmod(index, spec.cols)
            x = spec.padding * (col + 1) + cell_width * col + (cell_width - width) / 2
            y = (
                spec.header_height
                + spec.padding * (row + 1)
                + cell_height * row
                + (cell_height - height) / 2
            )
            rotation = (self.random.random() - 0.5) * 2 * spec.rotation_jitter
            placements.append(
                FramePlacement(
                    key=keys[index],
                    index=index,
                    row=row,
                    col=col,
                    x=x,
                    y=y,
                    width=width,
                    height=height,
                    rotation=rotation,
                )
            )
        return placements

    # ------------------------------------------------------------------
    async def compose(
        self,
        images_by_key: Mapping[str, ImageRef],
        title: str,
        subtitle: str,
    ) -> bytes:
        images = await load_images(images_by_key)
        placements = self.plan_layout(list(images_by_key))
        if self.logger:
            self.logger.info("Composing album page with %d image(s).", len(placements))
        return await asyncio.to_thread(self._render_jpeg, images, title, subtitle, placements)

    def _render_jpeg(
        self,
        images: Mapping[str, Image.Image],
        title: str,
        subtitle: str,
        placements: Sequence[FramePlacement],
    ) -> bytes:
        canvas = self.render(images, title, subtitle, placements)
        buffer = io.BytesIO()
        canvas.save(buffer, format="JPEG", quality=round(self.spec.jpeg_quality * 100))
        return buffer.getvalue()

    def render(
        self,
        images: Mapping[str, Image.Image],
        title: str,
        subtitle: str,
        placements: Sequence[FramePlacement],
    ) -> Image.Image:
        spec = self.spec
        canvas = Image.new("RGB", (spec.canvas_width, spec.canvas_height), BACKGROUND_COLOR)
        self._draw_header(canvas, title, subtitle)
        for placement in placements:
            self._draw_frame(canvas, placement, images[placement.key])
        return canvas

    # ------------------------------------------------------------------
    def _draw_header(self, canvas: Image.Image, title: str, subtitle: str) -> None:
        center_x = self.spec.canvas_width / 2
        draw = ImageDraw.Draw(canvas)
        if title:
            font = self.fonts.get("title", TITLE_SIZE)
            left, top, right, bottom = (
                int(math.floor(v)) for v in draw.textbbox((center_x, TITLE_Y), title, font=font, anchor="ms")
            )
            width, height = max(1, right - left + 1), max(1, bottom - top + 1)
            mask = Image.new("L", (width, height), 0)
            ImageDraw.Draw(mask).text(
                (center_x - left, TITLE_Y - top), title, fill=255, font=font, anchor="ms"
            )
            canvas.paste(self._title_gradient(left, width, height), (left, top), mask)
        if subtitle:
            draw.text(
                (center_x, SUBTITLE_Y),
                subtitle,
                fill=SUBTITLE_COLOR,
                font=self.fonts.get("subtitle", SUBTITLE_SIZE),
                anchor="ms",
            )

    def _title_gradient(self, left: int, width: int, height: int) -> Image.Image:
        start = self.spec.canvas_width * 0.25
        span = self.spec.canvas_width * 0.5
        row = Image.new("RGB", (width, 1))
        row.putdata([gradient_color((left + x - start) / span) for x in range(width)])
        return row.resize((width, height), Image.NEAREST)

    def _draw_frame(self, canvas: Image.Image, placement: FramePlacement, image: Image.Image) -> None:
        tile = self._frame_tile(placement, image)
        rotated = tile.rotate(
            -math.degrees(placement.rotation), resample=Image.BICUBIC, expand=True
        )
        center_x, center_y = placement.center
        left = round(center_x - rotated.width / 2)
        top = round(center_y - rotated.height / 2)

        # Canvas-style shadow: blur ~ 2 * sigma, offset in page space.
        margin = SHADOW_BLUR * 2
        alpha = rotated.getchannel("A").point(lambda value: round(value * SHADOW_OPACITY))
        shadow_mask = Image.new("L", (rotated.width + margin * 2, rotated.height + margin * 2), 0)
        shadow_mask.paste(alpha, (margin, margin))
        shadow_mask = shadow_mask.filter(ImageFilter.GaussianBlur(SHADOW_BLUR / 2))
        shadow = Image.new("RGB", shadow_mask.size, (0, 0, 0))
        canvas.paste(
            shadow,
            (left - margin + SHADOW_OFFSET[0], top - margin + SHADOW_OFFSET[1]),
            shadow_mask,
        )
        canvas.paste(rotated, (left, top), rotated)

    def _frame_tile(self, placement: FramePlacement, image: Image.Image) -> Image.Image:
        width = max(1, round(placement.width))
        height = max(1, round(placement.height))
        tile = Image.new("RGBA", (width, height), FRAME_COLOR)

        photo_size = placement.width * PHOTO_SCALE
        photo_top = (placement.width - photo_size) / 2
        aspect = image.width / image.height if image.height else 1.0
        draw_width = photo_size
        draw_height = draw_width / aspect
        if draw_height > photo_size:
            draw_height = photo_size
            draw_width = draw_height * aspect
        fitted = image.resize(
            (max(1, round(draw_width)), max(1, round(draw_height))), Image.LANCZOS
        )
        tile.paste(
            fitted,
            (
                round((placement.width - draw_width) / 2),
                round(photo_top + (photo_size - draw_height) / 2),
            ),
        )

        caption_top = photo_top + photo_size
        caption_y = caption_top + (placement.height - caption_top) / 2
        ImageDraw.Draw(tile).text(
            (placement.width / 2, caption_y),
            placement.key,
            fill=CAPTION_COLOR,
            font=self.fonts.get("caption", CAPTION_SIZE),
            anchor="mm",
        )
        return tile


__all__ = [
    "AlbumCompositor",
    "AlbumFonts",
    "AlbumSpec",
    "FramePlacement",
    "gradient_color",
    "load_font",
]
