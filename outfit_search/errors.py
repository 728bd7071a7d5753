"""
Error kinds raised by the outfit search pipeline.

Each failure mode is its own exception class so callers can tell a bad
histogram configuration from an unreadable image or an out-of-order
pipeline call. The classes also derive from the closest builtin, so code
that already catches ValueError or IndexError keeps working.
"""


class OutfitSearchError(Exception):
    """Base class for every error raised by outfit_search."""


class InvalidArgument(OutfitSearchError, ValueError):
    """Malformed configuration: bins, ranges, strategy, k or corpus shape."""


class ImageLoadError(OutfitSearchError, IOError):
    """An image reference could not be decoded by the loader."""

    def __init__(self, image, reason: str = "could not be decoded"):
        self.image = image
        self.reason = reason
        super().__init__(f"Image {image!r} {reason}")


class DimensionMismatch(OutfitSearchError, ValueError):
    """Query vector length doesn't match the index vector length."""


class InvalidState(OutfitSearchError, RuntimeError):
    """State machine operation called out of order."""


class IndexOutOfRange(OutfitSearchError, IndexError):
    """Selection index outside the currently emitted list."""
