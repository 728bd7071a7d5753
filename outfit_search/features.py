"""
Color-histogram feature extraction.

Turns decoded images into fixed-length fingerprints under one of four
named strategies. Each strategy pins down the color space, the channels
that get binned, the bin counts and ranges, and whether the channels are
binned jointly (one N-dimensional histogram) or independently (1-D
histograms concatenated).

    coupled-hue-sat      HSV, 12×12 hue/saturation          144 dims
    independent-hue-sat  HSV, 30 hue + 30 saturation          60 dims
    coupled-rgb          RGB, 80×80×80                    512000 dims
    grayscale            intensity, 150 bins                 150 dims

Hue/saturation histograms ignore value, which makes them largely
lighting independent. The coupled RGB histogram is the most specific but
depends on lighting. Grayscale is the weakest at telling garments apart.

The default strategy is configurable via OUTFIT_STRATEGY.
"""

import os
import logging
from dataclasses import dataclass
from typing import Dict, List, Sequence, Tuple, Union

import numpy as np

from .color import TWO_PI, ColorSpace, convert_color
from .errors import InvalidArgument
from .histograms import build_histogram, concatenate_histograms, histogram_length
from .preprocessing import ImageLoader, load_image, normalize_image

logger = logging.getLogger(__name__)

DEFAULT_STRATEGY = os.environ.get("OUTFIT_STRATEGY", "coupled-rgb")


@dataclass(frozen=True)
class HistogramStrategy:
    """
    Fixed fingerprint configuration.

    Attributes:
        name: Registry key.
        color_space: Space the image is converted to before binning.
        channels: Channel indices to bin (empty for single-channel spaces).
        bins: Bin count per binned channel.
        ranges: (min, max) per binned channel.
        coupled: Bin all channels jointly. When False, each channel gets
                 its own 1-D histogram and the results are concatenated
                 and normalized together.
    """

    name: str
    color_space: ColorSpace
    channels: Tuple[int, ...]
    bins: Tuple[int, ...]
    ranges: Tuple[Tuple[float, float], ...]
    coupled: bool = True

    @property
    def length(self) -> int:
        if self.coupled:
            return histogram_length(self.bins)
        return int(sum(self.bins))


COUPLED_HUE_SAT = HistogramStrategy(
    name="coupled-hue-sat",
    color_space=ColorSpace.HSV,
    channels=(0, 1),
    bins=(12, 12),
    ranges=((0.0, TWO_PI), (0.0, 1.0)),
)

INDEPENDENT_HUE_SAT = HistogramStrategy(
    name="independent-hue-sat",
    color_space=ColorSpace.HSV,
    channels=(0, 1),
    bins=(30, 30),
    ranges=((0.0, TWO_PI), (0.0, 1.0)),
    coupled=False,
)

COUPLED_RGB = HistogramStrategy(
    name="coupled-rgb",
    color_space=ColorSpace.RGB,
    channels=(0, 1, 2),
    bins=(80, 80, 80),
    ranges=((0.0, 255.0), (0.0, 255.0), (0.0, 255.0)),
)

GRAYSCALE = HistogramStrategy(
    name="grayscale",
    color_space=ColorSpace.GRAY,
    channels=(),
    bins=(150,),
    ranges=((0.0, 255.0),),
)

STRATEGIES: Dict[str, HistogramStrategy] = {
    s.name: s for s in (COUPLED_HUE_SAT, INDEPENDENT_HUE_SAT, COUPLED_RGB, GRAYSCALE)
}


def get_strategy(strategy: Union[str, HistogramStrategy, None] = None) -> HistogramStrategy:
    """
    Resolve a strategy name (or pass through a strategy object).

    Raises:
        InvalidArgument: Unknown strategy name.
    """
    if isinstance(strategy, HistogramStrategy):
        return strategy
    name = strategy or DEFAULT_STRATEGY
    try:
        return STRATEGIES[name]
    except KeyError:
        raise InvalidArgument(
            f"Unknown feature strategy: {name!r} "
            f"(expected one of {sorted(STRATEGIES)})"
        ) from None


def _channel_samples(pixels: np.ndarray, strategy: HistogramStrategy) -> List[np.ndarray]:
    if not strategy.channels:
        return [pixels.ravel()]
    return [pixels[..., c].ravel() for c in strategy.channels]


def extract_feature(image_np: np.ndarray,
                    strategy: Union[str, HistogramStrategy, None] = None) -> np.ndarray:
    """
    Fingerprint one decoded image.

    Process:
        1. Normalize to uint8 RGB
        2. Convert to the strategy's color space
        3. Bin the strategy's channels (jointly or independently)
        4. L2-normalize

    Args:
        image_np: Pixel buffer (RGB, grayscale or RGBA; uint8 or float).
        strategy: Strategy name or object. Defaults to DEFAULT_STRATEGY.

    Returns:
        Float64 vector of length strategy.length.
    """
    strategy = get_strategy(strategy)
    image_np = normalize_image(image_np)
    pixels = convert_color(image_np, ColorSpace.RGB, strategy.color_space)
    samples = _channel_samples(pixels, strategy)

    if strategy.coupled:
        return build_histogram(samples, strategy.bins, strategy.ranges)

    parts = [
        build_histogram([values], [count], [value_range], normalize=False)
        for values, count, value_range in zip(samples, strategy.bins, strategy.ranges)
    ]
    return concatenate_histograms(parts)


def extract_features(images: Sequence,
                     strategy: Union[str, HistogramStrategy, None] = None,
                     loader: ImageLoader = load_image) -> List[np.ndarray]:
    """
    Fingerprint a list of images, preserving order.

    The batch is all-or-nothing: if any image fails to load, the
    ImageLoadError propagates and no vectors are returned, so a corpus can
    never end up shorter than its image list.

    Args:
        images: Image references understood by loader.
        strategy: Strategy name or object.
        loader: Callable decoding a reference into a pixel buffer.

    Returns:
        One vector per image, in input order.

    Raises:
        ImageLoadError: Propagated from loader.
        InvalidArgument: Unknown strategy.
    """
    strategy = get_strategy(strategy)
    vectors = []

    for i, image in enumerate(images):
        pixels = loader(image)
        vectors.append(extract_feature(pixels, strategy))

        if (i + 1) % 100 == 0:
            logger.info(f"Extracted {i + 1}/{len(images)} {strategy.name} fingerprints")

    logger.debug(f"Extracted {len(vectors)} {strategy.name} fingerprints ({strategy.length}d)")
    return vectors
