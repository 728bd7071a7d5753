"""
Color space conversion for pixel buffers.

Histograms are built over channels in a specific color space, so every
feature strategy first converts the decoded RGB image into the space it
bins in. Conversions go through OpenCV's float32 path, then hue is
rescaled to radians so that it lines up with the 0..2π histogram range.

HSV convention used throughout the package:
    hue         radians in [0, 2π)
    saturation  [0, 1]
    value       [0, 1]

Pixels with zero saturation (greys, black) get hue 0.0. OpenCV already
does this for achromatic pixels, so the result is deterministic and never
NaN.
"""

import logging
from enum import Enum

import cv2
import numpy as np

from .errors import InvalidArgument

logger = logging.getLogger(__name__)

TWO_PI = 2.0 * np.pi


class ColorSpace(str, Enum):
    """Color representations a pixel buffer can be converted between."""

    RGB = "rgb"
    BGR = "bgr"
    HSV = "hsv"
    GRAY = "gray"


def _require_channels(pixels: np.ndarray, count: int, space: ColorSpace) -> None:
    if pixels.ndim < 1 or pixels.shape[-1] != count:
        raise InvalidArgument(
            f"{space.value} buffer must have {count} channels in the last "
            f"axis, got shape {pixels.shape}"
        )


def _as_unit_float(pixels: np.ndarray) -> np.ndarray:
    """Scale integer buffers to [0, 1]; clip float buffers into [0, 1]."""
    if np.issubdtype(pixels.dtype, np.integer):
        return pixels.astype(np.float32) / 255.0
    return np.clip(pixels, 0.0, 1.0).astype(np.float32)


def _apply(pixels: np.ndarray, code: int, out_channels: int = 3) -> np.ndarray:
    """Run cv2.cvtColor over a buffer of any leading shape."""
    channels = pixels.shape[-1]
    flat = np.ascontiguousarray(pixels.reshape(-1, 1, channels))
    if flat.shape[0] == 0:
        tail = (out_channels,) if out_channels > 1 else ()
        return np.empty(pixels.shape[:-1] + tail, dtype=pixels.dtype)
    converted = cv2.cvtColor(flat, code)
    return converted.reshape(pixels.shape[:-1] + converted.shape[2:])


def rgb_to_hsv(pixels: np.ndarray) -> np.ndarray:
    """
    Convert an RGB buffer (..., 3) to HSV with hue in radians.

    Args:
        pixels: uint8 RGB (0-255) or float RGB (0-1) buffer.

    Returns:
        Float64 buffer of the same shape holding (hue, sat, value).
    """
    pixels = np.asarray(pixels)
    _require_channels(pixels, 3, ColorSpace.RGB)

    hsv = _apply(_as_unit_float(pixels), cv2.COLOR_RGB2HSV).astype(np.float64)

    # OpenCV reports hue in degrees; 360 can appear from rounding
    hue = np.deg2rad(hsv[..., 0])
    hue[hue >= TWO_PI] = 0.0
    hsv[..., 0] = hue
    return hsv


def hsv_to_rgb(pixels: np.ndarray) -> np.ndarray:
    """Convert an HSV buffer (hue in radians) back to float RGB in [0, 1]."""
    pixels = np.asarray(pixels, dtype=np.float64)
    _require_channels(pixels, 3, ColorSpace.HSV)

    hsv = pixels.astype(np.float32)
    hsv[..., 0] = np.rad2deg(np.mod(pixels[..., 0], TWO_PI))
    hsv[..., 1:] = np.clip(hsv[..., 1:], 0.0, 1.0)

    rgb = _apply(hsv, cv2.COLOR_HSV2RGB).astype(np.float64)
    return np.clip(rgb, 0.0, 1.0)


def rgb_to_gray(pixels: np.ndarray) -> np.ndarray:
    """Luminance of an RGB buffer. uint8 input stays uint8."""
    pixels = np.asarray(pixels)
    _require_channels(pixels, 3, ColorSpace.RGB)

    if pixels.dtype == np.uint8:
        return _apply(pixels, cv2.COLOR_RGB2GRAY, out_channels=1)
    gray = _apply(_as_unit_float(pixels), cv2.COLOR_RGB2GRAY, out_channels=1)
    return gray.astype(np.float64)


def swap_red_blue(pixels: np.ndarray) -> np.ndarray:
    """RGB <-> BGR channel swap."""
    pixels = np.asarray(pixels)
    _require_channels(pixels, 3, ColorSpace.RGB)
    return np.ascontiguousarray(pixels[..., ::-1])


_CONVERSIONS = {
    (ColorSpace.RGB, ColorSpace.HSV): rgb_to_hsv,
    (ColorSpace.HSV, ColorSpace.RGB): hsv_to_rgb,
    (ColorSpace.RGB, ColorSpace.GRAY): rgb_to_gray,
    (ColorSpace.RGB, ColorSpace.BGR): swap_red_blue,
    (ColorSpace.BGR, ColorSpace.RGB): swap_red_blue,
}


def convert_color(pixels: np.ndarray, source, target) -> np.ndarray:
    """
    Convert a pixel buffer between color spaces.

    The input is never modified; the result is always a new buffer with
    the same leading (pixel) shape as the source.

    Args:
        pixels: Pixel buffer with channels in the last axis
                (no channel axis for GRAY).
        source: ColorSpace (or its string value) the buffer is in.
        target: ColorSpace (or its string value) to convert to.

    Returns:
        Converted pixel buffer.

    Raises:
        InvalidArgument: Unknown color space, unsupported conversion pair,
            or wrong channel count.
    """
    try:
        source = ColorSpace(source)
        target = ColorSpace(target)
    except ValueError as e:
        raise InvalidArgument(f"Unknown color space: {e}") from e

    if source == target:
        return np.array(pixels, copy=True)

    converter = _CONVERSIONS.get((source, target))
    if converter is None:
        raise InvalidArgument(
            f"Unsupported color conversion {source.value} -> {target.value}"
        )
    return converter(pixels)
