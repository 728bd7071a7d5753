"""
N-dimensional histogram construction for color fingerprints.

A histogram here is a feature descriptor, not an image-processing
artifact: any number of channel sequences can be binned jointly, each
with its own bin count and value range, and the result is flattened into
a single fixed-length vector.

Binning:
    bin = floor((value - min) / (max - min) * bins), clamped to [0, bins-1]

The clamp absorbs values sitting exactly on max (e.g. 255 in a 0-255
range) as well as anything outside the range.

Flattening is row-major with dimension 0 varying slowest, so for a
12×12 hue/saturation histogram the flat index is hue_bin * 12 + sat_bin.

Vectors are L2-normalized so that image size doesn't affect distances.
An empty input has no mass to normalize and comes back as the zero vector.
"""

import logging
from typing import List, Optional, Sequence, Tuple

import numpy as np

from .errors import InvalidArgument

logger = logging.getLogger(__name__)


def l2_normalize(vector: np.ndarray) -> np.ndarray:
    """
    Scale a vector to unit L2 norm.

    Args:
        vector: 1-D array of non-negative counts.

    Returns:
        New float64 vector with sum of squares 1.0, or the zero vector if
        the input has no mass.
    """
    vector = np.asarray(vector, dtype=np.float64)
    norm = np.sqrt(np.sum(vector * vector))
    if norm == 0:
        return np.zeros_like(vector)
    return vector / norm


def _validate(channels: Sequence, bins: Sequence[int],
              ranges: Sequence[Tuple[float, float]]) -> Tuple[List[np.ndarray], Tuple[int, ...]]:
    if len(bins) == 0:
        raise InvalidArgument("Histogram needs at least one dimension")
    if len(channels) != len(bins) or len(ranges) != len(bins):
        raise InvalidArgument(
            f"Got {len(channels)} channel sequences, {len(bins)} bin counts "
            f"and {len(ranges)} ranges; they must all match"
        )

    shape = []
    for dim, count in enumerate(bins):
        if isinstance(count, bool) or int(count) != count or count <= 0:
            raise InvalidArgument(f"Bin count for dimension {dim} must be a positive integer, got {count!r}")
        shape.append(int(count))

    for dim, (low, high) in enumerate(ranges):
        if not high > low:
            raise InvalidArgument(f"Range for dimension {dim} is empty: max {high} <= min {low}")

    samples = [np.asarray(c, dtype=np.float64).ravel() for c in channels]
    lengths = {s.size for s in samples}
    if len(lengths) > 1:
        raise InvalidArgument(f"Channel sequences differ in length: {sorted(lengths)}")
    for dim, values in enumerate(samples):
        if not np.all(np.isfinite(values)):
            raise InvalidArgument(f"Channel {dim} contains non-finite values")

    return samples, tuple(shape)


def bin_indices(values: np.ndarray, bins: int, low: float, high: float) -> np.ndarray:
    """Map sample values to clamped bin indices for one dimension."""
    scaled = (values - low) / (high - low) * bins
    idx = np.floor(scaled).astype(np.int64)
    np.clip(idx, 0, bins - 1, out=idx)
    return idx


def histogram_length(bins: Sequence[int]) -> int:
    """Number of cells in a coupled histogram with the given bin counts."""
    return int(np.prod([int(b) for b in bins]))


def build_histogram(channels: Sequence,
                    bins: Sequence[int],
                    ranges: Sequence[Tuple[float, float]],
                    normalize: bool = True) -> np.ndarray:
    """
    Build a coupled N-dimensional histogram and flatten it.

    Args:
        channels: One sample sequence per dimension, all the same length.
                  Arrays of any shape are flattened.
        bins: Bin count per dimension.
        ranges: (min, max) value range per dimension.
        normalize: L2-normalize the flattened histogram. Pass False to get
                   raw counts, e.g. to normalize several histograms jointly.

    Returns:
        Float64 vector of length prod(bins).

    Raises:
        InvalidArgument: Mismatched dimension counts or channel lengths,
            non-positive bin counts, empty ranges, or non-finite samples.
    """
    samples, shape = _validate(channels, bins, ranges)
    length = histogram_length(shape)

    if samples[0].size == 0:
        return np.zeros(length, dtype=np.float64)

    coords = [
        bin_indices(values, count, float(low), float(high))
        for values, count, (low, high) in zip(samples, shape, ranges)
    ]

    # C order: dimension 0 is the slowest-varying
    flat = np.ravel_multi_index(coords, shape)
    hist = np.bincount(flat, minlength=length).astype(np.float64)

    if normalize:
        hist = l2_normalize(hist)
    return hist


def concatenate_histograms(histograms: Sequence[np.ndarray],
                           normalize: bool = True) -> np.ndarray:
    """
    Join independent histograms into one descriptor.

    Normalization happens once, after concatenation, so the relative mass
    between the parts is preserved.
    """
    if not histograms:
        raise InvalidArgument("Nothing to concatenate")
    combined = np.concatenate([np.asarray(h, dtype=np.float64) for h in histograms])
    return l2_normalize(combined) if normalize else combined


def dominant_bins(vector: np.ndarray, bins: Sequence[int],
                  top: Optional[int] = None) -> List[Tuple[Tuple[int, ...], float]]:
    """
    List the non-empty cells of a flattened histogram, heaviest first.

    Useful for inspecting what a fingerprint captured.

    Returns:
        List of (per-dimension bin coordinates, weight) pairs.
    """
    vector = np.asarray(vector, dtype=np.float64)
    shape = tuple(int(b) for b in bins)
    if vector.size != histogram_length(shape):
        raise InvalidArgument(
            f"Vector length {vector.size} doesn't match bins {shape}"
        )

    nonzero = np.flatnonzero(vector)
    order = nonzero[np.argsort(-vector[nonzero], kind="stable")]
    if top is not None:
        order = order[:top]

    return [
        (tuple(int(c) for c in np.unravel_index(i, shape)), float(vector[i]))
        for i in order
    ]
