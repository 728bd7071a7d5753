"""
Fingerprinted image collections.

A Corpus pairs an ordered list of image references with one fingerprint
per image, all produced by the same strategy. Position in the corpus is
the identifier the rest of the pipeline uses, so the order set at build
time never changes.

Corpora can be cached to a compressed .npz file so that fingerprints for
a large directory are computed once:
    - vectors   n×L float64 fingerprints
    - images    image references as strings
    - strategy  strategy name
"""

import os
import logging
from typing import Iterable, Iterator, List, Optional, Sequence, Tuple, Union

import numpy as np

from .errors import InvalidArgument
from .features import HistogramStrategy, extract_features, get_strategy
from .preprocessing import ImageLoader, load_image

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = {'.jpg', '.jpeg', '.png', '.bmp', '.webp'}


def list_images(image_dir: str, extensions: Optional[Iterable[str]] = None) -> List[str]:
    """
    Sorted paths of the image files directly inside image_dir.

    Args:
        image_dir: Directory to scan (not recursive).
        extensions: Lower-case suffixes to accept. Defaults to IMAGE_EXTENSIONS.
    """
    extensions = set(extensions or IMAGE_EXTENSIONS)
    paths = []
    for f in sorted(os.listdir(image_dir)):
        filepath = os.path.join(image_dir, f)
        if not os.path.isfile(filepath):
            continue
        if os.path.splitext(f)[1].lower() not in extensions:
            logger.warning(f"Skipping non-image file: {filepath}")
            continue
        paths.append(filepath)
    return paths


class Corpus:
    """Ordered (image reference, fingerprint) pairs sharing one strategy."""

    def __init__(self, images: Sequence, vectors, strategy: Union[str, HistogramStrategy]):
        self.strategy = get_strategy(strategy)
        self.images = list(images)

        vectors = np.array(vectors, dtype=np.float64)
        if vectors.size == 0:
            vectors = vectors.reshape(0, self.strategy.length)
        if vectors.ndim != 2:
            raise InvalidArgument(f"Corpus vectors must be 2-D, got shape {vectors.shape}")
        if vectors.shape[0] != len(self.images):
            raise InvalidArgument(
                f"{len(self.images)} images but {vectors.shape[0]} vectors"
            )
        if vectors.shape[1] != self.strategy.length:
            raise InvalidArgument(
                f"Vectors have {vectors.shape[1]} dimensions, "
                f"{self.strategy.name} produces {self.strategy.length}"
            )

        self.vectors = vectors
        self.vectors.setflags(write=False)

    @property
    def dim(self) -> int:
        return self.vectors.shape[1]

    def __len__(self) -> int:
        return len(self.images)

    def __getitem__(self, position: int) -> Tuple[object, np.ndarray]:
        return self.images[position], self.vectors[position]

    def __iter__(self) -> Iterator[Tuple[object, np.ndarray]]:
        return iter(zip(self.images, self.vectors))

    def __repr__(self) -> str:
        return f"Corpus({len(self)} images, {self.strategy.name}, {self.dim}d)"

    @classmethod
    def build(cls, images: Sequence,
              strategy: Union[str, HistogramStrategy, None] = None,
              loader: ImageLoader = load_image) -> "Corpus":
        """
        Fingerprint images and wrap them in a corpus.

        Raises:
            ImageLoadError: Any image fails to load; no corpus is built.
        """
        strategy = get_strategy(strategy)
        images = list(images)
        vectors = extract_features(images, strategy, loader=loader)
        corpus = cls(images, vectors, strategy)
        logger.info(f"Built corpus: {len(corpus)} images, {strategy.name}, {corpus.dim}d vectors")
        return corpus

    @classmethod
    def from_directory(cls, image_dir: str,
                       strategy: Union[str, HistogramStrategy, None] = None,
                       loader: ImageLoader = load_image,
                       extensions: Optional[Iterable[str]] = None) -> "Corpus":
        """Build a corpus from every image file in a directory, sorted by name."""
        paths = list_images(image_dir, extensions)
        logger.info(f"Building corpus from {len(paths)} images in {image_dir}")
        return cls.build(paths, strategy, loader=loader)

    def save(self, path: str) -> None:
        """Write the corpus to a compressed .npz file."""
        directory = os.path.dirname(os.fspath(path))
        if directory:
            os.makedirs(directory, exist_ok=True)
        np.savez_compressed(
            path,
            vectors=self.vectors,
            images=np.array([str(i) for i in self.images], dtype=str),
            strategy=np.array(self.strategy.name),
        )
        logger.info(f"Saved corpus ({len(self)} images) to {path}")

    @classmethod
    def load(cls, path: str) -> "Corpus":
        """Read a corpus written by save(). Image references come back as strings."""
        with np.load(path, allow_pickle=False) as data:
            images = [str(i) for i in data["images"]]
            corpus = cls(images, data["vectors"], str(data["strategy"]))
        logger.info(f"Loaded corpus ({len(corpus)} images, {corpus.strategy.name}) from {path}")
        return corpus
