"""Shared test fixtures for outfit search tests."""

import numpy as np
import cv2
import pytest

from outfit_search.errors import ImageLoadError


@pytest.fixture
def red_square_image():
    """Generate a 200x200 red square on white background."""
    img = np.ones((200, 200, 3), dtype=np.uint8) * 255
    img[40:160, 40:160] = [200, 30, 30]  # Red square
    return img


@pytest.fixture
def blue_circle_image():
    """Generate a 200x200 blue circle on white background."""
    img = np.ones((200, 200, 3), dtype=np.uint8) * 255
    cv2.circle(img, (100, 100), 60, (30, 30, 200), -1)
    return img


@pytest.fixture
def green_rectangle_image():
    """Generate a 200x200 green rectangle on white background."""
    img = np.ones((200, 200, 3), dtype=np.uint8) * 255
    img[30:170, 60:140] = [30, 180, 30]  # Tall green rectangle
    return img


@pytest.fixture
def gray_image():
    """Generate a 64x64 uniform mid-gray image (zero saturation)."""
    return np.full((64, 64, 3), 128, dtype=np.uint8)


@pytest.fixture
def noise_image():
    """Generate a 200x200 random noise image."""
    rng = np.random.RandomState(42)
    return rng.randint(0, 255, (200, 200, 3), dtype=np.uint8)


def solid(color, size=32):
    """Solid-color RGB image."""
    img = np.zeros((size, size, 3), dtype=np.uint8)
    img[:, :] = color
    return img


class DictLoader:
    """In-memory image store standing in for files on disk."""

    def __init__(self, images):
        self.images = dict(images)
        self.calls = []

    def __call__(self, ref):
        self.calls.append(ref)
        if ref not in self.images:
            raise ImageLoadError(ref, "does not exist")
        return self.images[ref]


@pytest.fixture
def wardrobe():
    """
    Loader plus the three garment lists of a small wardrobe.

    Solid colors give one-hot hue/saturation fingerprints: crimson and ruby
    share the red top's cell (distance 0), everything else against red is
    a tie at distance 2 resolved by insertion order.
    """
    images = {
        "tops/red.png": solid((220, 20, 20)),
        "tops/blue.png": solid((20, 20, 220)),
        "tops/green.png": solid((20, 200, 20)),
        "bottoms/navy.png": solid((10, 10, 120)),
        "bottoms/crimson.png": solid((210, 25, 25)),
        "bottoms/olive.png": solid((90, 120, 20)),
        "bottoms/gray.png": solid((128, 128, 128)),
        "accessories/ruby.png": solid((230, 30, 30)),
        "accessories/teal.png": solid((20, 160, 160)),
        "accessories/black.png": solid((0, 0, 0)),
    }
    loader = DictLoader(images)
    tops = [k for k in images if k.startswith("tops/")]
    bottoms = [k for k in images if k.startswith("bottoms/")]
    accessories = [k for k in images if k.startswith("accessories/")]
    return loader, tops, bottoms, accessories
