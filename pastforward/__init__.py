"""PastForward: turn one photo into a themed set of images and an album page."""

__version__ = "0.1.0"
