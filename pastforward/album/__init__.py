"""Album page composition."""

from .compositor import AlbumCompositor, AlbumFonts, AlbumSpec, FramePlacement
from .loader import load_image, load_images

__all__ = [
    "AlbumCompositor",
    "AlbumFonts",
    "AlbumSpec",
    "FramePlacement",
    "load_image",
    "load_images",
]
