"""
outfit_search: color-histogram outfit matching.

Fingerprints garment images with color histograms and walks a user
through picking a top, a matching bottom and a matching accessory by
nearest-neighbor search over each garment corpus.

Modules:
    engine         OutfitEngine: shared corpora + indices, session factory
    pipeline       Three-stage selection state machine
    index          Exhaustive and FAISS nearest-neighbor search
    corpus         Fingerprinted image collections
    features       Feature strategies and extraction
    histograms     N-dimensional histogram builder
    color          Color space conversion
    preprocessing  Image loading and pixel normalization
    errors         Error kinds
"""

from .corpus import Corpus
from .engine import OutfitEngine
from .errors import (
    DimensionMismatch, ImageLoadError, IndexOutOfRange, InvalidArgument,
    InvalidState, OutfitSearchError,
)
from .features import STRATEGIES, extract_features
from .index import ALL, build_index, query
from .pipeline import OutfitSession, Stage, commit_selection, reset, run_session

__version__ = "1.0.0"

__all__ = [
    "ALL", "Corpus", "DimensionMismatch", "ImageLoadError", "IndexOutOfRange",
    "InvalidArgument", "InvalidState", "OutfitEngine", "OutfitSearchError",
    "OutfitSession", "STRATEGIES", "Stage", "build_index", "commit_selection",
    "extract_features", "query", "reset", "run_session",
]
