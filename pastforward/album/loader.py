"""Decode album source images from bytes, data URIs, URLs or paths."""

from __future__ import annotations

import asyncio
import base64
import binascii
import io
from pathlib import Path
from typing import Dict, Mapping, Union
from urllib.parse import unquote_to_bytes

import httpx
from PIL import Image, UnidentifiedImageError

from ..core.errors import LoadFailure

ImageRef = Union[bytes, bytearray, str, Path, Image.Image]

_LOAD_ERRORS = (
    OSError,
    ValueError,
    UnidentifiedImageError,
    Image.DecompressionBombError,
    binascii.Error,
    httpx.HTTPError,
    TypeError,
)


def _decode(data: bytes) -> Image.Image:
    with Image.open(io.BytesIO(data)) as image:
        image.load()
        return image.convert("RGB")


def _decode_data_uri(uri: str) -> bytes:
    header, sep, body = uri.partition(",")
    if not sep:
        raise ValueError("Malformed data URI")
    if header.endswith(";base64"):
        return base64.b64decode(body, validate=True)
    return unquote_to_bytes(body)


async def load_image(ref: ImageRef, *, http: httpx.AsyncClient | None = None) -> Image.Image:
    """Decode ``ref`` into an RGB raster; raises :class:`LoadFailure` on any error."""

    if isinstance(ref, Image.Image):
        return ref.convert("RGB")
    try:
        if isinstance(ref, (bytes, bytearray)):
            data = bytes(ref)
        elif isinstance(ref, str) and ref.startswith("data:"):
            data = _decode_data_uri(ref)
        elif isinstance(ref, str) and ref.startswith(("http://", "https://")):
            data = await _fetch(ref, http)
        elif isinstance(ref, (str, Path)):
            data = await asyncio.to_thread(Path(ref).read_bytes)
        else:
            raise TypeError(f"Unsupported image reference type: {type(ref).__name__}")
        return await asyncio.to_thread(_decode, data)
    except _LOAD_ERRORS as exc:
        raise LoadFailure(ref, exc) from exc


async def _fetch(url: str, http: httpx.AsyncClient | None) -> bytes:
    if http is not None:
        response = await http.get(url)
        response.raise_for_status()
        return response.content
    async with httpx.AsyncClient(timeout=30.0, follow_redirects=True) as client:
        response = await client.get(url)
        response.raise_for_status()
        return response.content


async def load_images(
    refs: Mapping[str, ImageRef],
    *,
    http: httpx.AsyncClient | None = None,
) -> Dict[str, Image.Image]:
    """Load every reference concurrently; the first failure aborts the batch."""

    keys = list(refs)
    loaded = await asyncio.gather(*(load_image(refs[key], http=http) for key in keys))
    return dict(zip(keys, loaded))


__all__ = ["ImageRef", "load_image", "load_images"]
