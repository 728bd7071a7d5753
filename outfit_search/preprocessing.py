"""
Image decoding and pixel-buffer normalization.

Every feature strategy expects the same input: an H×W×3 uint8 RGB
buffer. Images arrive from disk as BGR (OpenCV's native order), and
in-memory buffers handed in by callers may be grayscale, RGBA or float,
so everything passes through normalize_image() first.
"""

import os
import logging
from typing import Callable

import cv2
import numpy as np

from .color import ColorSpace, convert_color
from .errors import ImageLoadError, InvalidArgument

logger = logging.getLogger(__name__)

# Loader collaborator: image reference in, RGB pixel buffer out
ImageLoader = Callable[[object], np.ndarray]


def normalize_image(image_np: np.ndarray) -> np.ndarray:
    """
    Ensure image is uint8 RGB format.

    Grayscale buffers are replicated across three channels and an alpha
    channel is dropped. Float buffers in [0, 1] are scaled to 0-255; other
    float or wide integer buffers are clipped into 0-255.
    """
    image_np = np.asarray(image_np)

    if image_np.dtype != np.uint8:
        if np.issubdtype(image_np.dtype, np.floating) and image_np.size and image_np.max() <= 1.0:
            image_np = image_np * 255.0
        image_np = np.clip(image_np, 0, 255).astype(np.uint8)

    if image_np.ndim == 2:
        image_np = cv2.cvtColor(image_np, cv2.COLOR_GRAY2RGB)
    elif image_np.ndim == 3 and image_np.shape[2] == 4:
        image_np = cv2.cvtColor(image_np, cv2.COLOR_RGBA2RGB)
    elif image_np.ndim == 3 and image_np.shape[2] == 1:
        image_np = cv2.cvtColor(image_np, cv2.COLOR_GRAY2RGB)

    if image_np.ndim != 3 or image_np.shape[2] != 3:
        raise InvalidArgument(f"Unsupported pixel buffer shape: {image_np.shape}")

    return image_np


def load_image(path) -> np.ndarray:
    """
    Decode an image file into an RGB uint8 buffer.

    Args:
        path: Filesystem path (str or os.PathLike).

    Returns:
        H×W×3 uint8 RGB image.

    Raises:
        ImageLoadError: File is missing or OpenCV can't decode it.
    """
    filepath = os.fspath(path)
    if not os.path.exists(filepath):
        raise ImageLoadError(path, "does not exist")

    image = cv2.imread(filepath, cv2.IMREAD_COLOR)
    if image is None:
        raise ImageLoadError(path, "could not be decoded")

    return convert_color(image, ColorSpace.BGR, ColorSpace.RGB)
