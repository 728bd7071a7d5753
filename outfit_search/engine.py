"""
Outfit search engine.

Owns the three corpora of a deployment and the indices built over them:

    tops         listed in full for the first selection
    bottoms      ranked against the selected top
    accessories  ranked against the selected top

Corpora and indices are built once and never modified afterwards, so
any number of sessions can share them. Each call to new_session()
returns an independent state machine.
"""

import logging
from typing import Optional, Union

from .corpus import Corpus
from .errors import InvalidArgument
from .features import HistogramStrategy, get_strategy
from .index import build_index
from .pipeline import OutfitSession
from .preprocessing import ImageLoader, load_image

logger = logging.getLogger(__name__)


class OutfitEngine:
    """
    Shared corpora and indices for outfit sessions.

    Args:
        tops: Primary corpus.
        bottoms: Secondary corpus.
        accessories: Accessory corpus.
        backend: Index backend name ('exhaustive' or 'faiss').

    Raises:
        InvalidArgument: The corpora were built with different strategies.
    """

    def __init__(self, tops: Corpus, bottoms: Corpus, accessories: Corpus,
                 backend: Optional[str] = None):
        strategies = {c.strategy.name for c in (tops, bottoms, accessories)}
        if len(strategies) != 1:
            raise InvalidArgument(
                f"All corpora must share one feature strategy, got {sorted(strategies)}"
            )

        self.tops = tops
        self.bottoms = bottoms
        self.accessories = accessories
        self.strategy = tops.strategy

        self.bottoms_index = build_index(bottoms, backend)
        self.accessories_index = build_index(accessories, backend)

        logger.info(
            f"Engine ready: {len(tops)} tops, {len(bottoms)} bottoms, "
            f"{len(accessories)} accessories ({self.strategy.name})"
        )

    @classmethod
    def from_directories(cls, tops_dir: str, bottoms_dir: str, accessories_dir: str,
                         strategy: Union[str, HistogramStrategy, None] = None,
                         backend: Optional[str] = None,
                         loader: ImageLoader = load_image) -> "OutfitEngine":
        """
        Fingerprint three image directories and build the engine.

        Raises:
            ImageLoadError: Any image in any directory fails to load.
        """
        strategy = get_strategy(strategy)
        tops = Corpus.from_directory(tops_dir, strategy, loader=loader)
        bottoms = Corpus.from_directory(bottoms_dir, strategy, loader=loader)
        accessories = Corpus.from_directory(accessories_dir, strategy, loader=loader)
        return cls(tops, bottoms, accessories, backend=backend)

    def new_session(self, secondary_k: Optional[int] = None,
                    accessory_k: Optional[int] = None) -> OutfitSession:
        """Start a fresh session in the AWAITING_PRIMARY stage."""
        return OutfitSession(
            self.tops,
            self.bottoms_index,
            self.accessories_index,
            secondary_k=secondary_k,
            accessory_k=accessory_k,
        )
