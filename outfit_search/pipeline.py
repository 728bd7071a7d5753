"""
Three-stage outfit selection.

A session walks through:

    AWAITING_PRIMARY    full list of tops shown, user picks one
    AWAITING_SECONDARY  bottoms ranked against the top, user picks one
    AWAITING_ACCESSORY  accessories ranked against the top, user picks one
    COMPOSED            top + bottom + accessory

The accessory stage is queried with the top's fingerprint, not the
bottom's. Selection indices are always relative to the list that was
just shown, never to the raw corpus.

Sessions hold their own state; nothing is stored at module level. The
indices they query are read-only and can be shared between sessions.
Every transition runs under a per-session lock and only writes state
after the query succeeded, so a failed or concurrent call can't leave a
half-updated selection history behind.

The display and selection collaborators are small abstract classes, so any UI
(or a test) can drive a session through run_session().
"""

import os
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Union

import numpy as np

from .corpus import Corpus
from .errors import IndexOutOfRange, InvalidState
from .index import MatchResult, NearestNeighborIndex

logger = logging.getLogger(__name__)

# Result counts per stage
DEFAULT_SECONDARY_K = int(os.environ.get("OUTFIT_SECONDARY_K", "20"))
DEFAULT_ACCESSORY_K = int(os.environ.get("OUTFIT_ACCESSORY_K", "10"))


class Stage(str, Enum):
    """Pipeline states, in order."""

    AWAITING_PRIMARY = "awaiting_primary_selection"
    AWAITING_SECONDARY = "awaiting_secondary_selection"
    AWAITING_ACCESSORY = "awaiting_accessory_selection"
    COMPOSED = "composed"


# Display nouns for the items listed while awaiting each stage
STAGE_LABELS = {
    Stage.AWAITING_PRIMARY: "Top",
    Stage.AWAITING_SECONDARY: "Bottom",
    Stage.AWAITING_ACCESSORY: "Accessory",
}

_NEXT_STAGE = {
    Stage.AWAITING_PRIMARY: Stage.AWAITING_SECONDARY,
    Stage.AWAITING_SECONDARY: Stage.AWAITING_ACCESSORY,
    Stage.AWAITING_ACCESSORY: Stage.COMPOSED,
}


@dataclass(frozen=True)
class RankedItem:
    """An entry of the list shown to the user. distance is None for the primary listing."""

    image: object
    label: str
    distance: Optional[float]
    position: int


@dataclass(frozen=True)
class Selection:
    """
    A committed choice and where it came from.

    Attributes:
        stage: Stage the selection was made in.
        image: Selected image reference.
        index: Index into the list that was shown.
        position: Position of the image in its corpus.
        distance: Distance to the query (None for the primary selection).
    """

    stage: Stage
    image: object
    index: int
    position: int
    distance: Optional[float]


@dataclass(frozen=True)
class Query:
    """Fingerprint driving the next stages, with its provenance."""

    vector: np.ndarray
    stage: Stage
    position: int


@dataclass(frozen=True)
class ComposedResult:
    """The finished outfit."""

    primary: Selection
    secondary: Selection
    accessory: Selection

    @property
    def images(self):
        return self.primary.image, self.secondary.image, self.accessory.image

    def items(self) -> List[RankedItem]:
        """The outfit as a labelled list for a display sink."""
        return [
            RankedItem(s.image, STAGE_LABELS[s.stage], s.distance, s.position)
            for s in (self.primary, self.secondary, self.accessory)
        ]


def label_results(results: List[MatchResult], stage: Stage) -> List[RankedItem]:
    """Attach 1-based display labels with distances, e.g. 'Bottom 3 (0.0123)'."""
    noun = STAGE_LABELS[stage]
    return [
        RankedItem(
            image=r.payload,
            label=f"{noun} {i + 1} ({r.distance:.6g})",
            distance=r.distance,
            position=r.position,
        )
        for i, r in enumerate(results)
    ]


def list_corpus(corpus: Corpus) -> List[RankedItem]:
    """The primary corpus in corpus order, labelled 'Top 1'..'Top n'."""
    noun = STAGE_LABELS[Stage.AWAITING_PRIMARY]
    return [
        RankedItem(image=image, label=f"{noun} {i + 1}", distance=None, position=i)
        for i, image in enumerate(corpus.images)
    ]


class OutfitSession:
    """
    State machine for one retrieval session.

    Args:
        primary: Corpus the first selection is made from.
        secondary_index: Index ranked against the primary selection.
        accessory_index: Index ranked against the primary selection after
            the secondary selection is committed.
        secondary_k: Results shown in the secondary stage.
        accessory_k: Results shown in the accessory stage.
    """

    def __init__(self,
                 primary: Corpus,
                 secondary_index: NearestNeighborIndex,
                 accessory_index: NearestNeighborIndex,
                 secondary_k: Optional[int] = None,
                 accessory_k: Optional[int] = None):
        self.primary = primary
        self.secondary_index = secondary_index
        self.accessory_index = accessory_index
        self.secondary_k = DEFAULT_SECONDARY_K if secondary_k is None else secondary_k
        self.accessory_k = DEFAULT_ACCESSORY_K if accessory_k is None else accessory_k

        self._lock = threading.Lock()
        self._primary_items = list_corpus(primary)
        self._clear()

    def _clear(self) -> None:
        self._stage = Stage.AWAITING_PRIMARY
        self._selections: Dict[Stage, Selection] = {}
        self._query: Optional[Query] = None
        self._candidates: List[RankedItem] = self._primary_items
        self._composed: Optional[ComposedResult] = None

    @property
    def stage(self) -> Stage:
        return self._stage

    @property
    def candidates(self) -> List[RankedItem]:
        """The list currently shown; selection indices refer to it."""
        return list(self._candidates)

    @property
    def selections(self) -> Dict[Stage, Selection]:
        return dict(self._selections)

    @property
    def query(self) -> Optional[Query]:
        return self._query

    @property
    def composed(self) -> Optional[ComposedResult]:
        return self._composed

    def reset(self) -> None:
        """Back to AWAITING_PRIMARY, dropping every selection and cached list."""
        with self._lock:
            previous = self._stage
            self._clear()
        logger.info(f"Session reset from {previous.value}")

    def commit_selection(self, index: int) -> Union[List[RankedItem], ComposedResult]:
        """
        Commit the user's pick from the current list and advance one stage.

        Args:
            index: Position in self.candidates.

        Returns:
            The next ranked list, or the ComposedResult after the
            accessory selection.

        Raises:
            InvalidState: Session is already COMPOSED.
            IndexOutOfRange: index is not a valid position in the current list.
            DimensionMismatch: Corpora were built with different strategies.
        """
        with self._lock:
            stage = self._stage
            if stage == Stage.COMPOSED:
                raise InvalidState("Session is composed; call reset() before selecting again")

            item = self._pick(index)
            selection = Selection(
                stage=stage,
                image=item.image,
                index=int(index),
                position=item.position,
                distance=item.distance,
            )

            if stage == Stage.AWAITING_PRIMARY:
                query = Query(
                    vector=self.primary.vectors[item.position],
                    stage=stage,
                    position=item.position,
                )
                results = self.secondary_index.query(query.vector, self.secondary_k)
                candidates = label_results(results, Stage.AWAITING_SECONDARY)
                composed = None
            elif stage == Stage.AWAITING_SECONDARY:
                query = self._query
                results = self.accessory_index.query(query.vector, self.accessory_k)
                candidates = label_results(results, Stage.AWAITING_ACCESSORY)
                composed = None
            else:
                query = self._query
                candidates = []
                composed = ComposedResult(
                    primary=self._selections[Stage.AWAITING_PRIMARY],
                    secondary=self._selections[Stage.AWAITING_SECONDARY],
                    accessory=selection,
                )

            # Commit only once everything above succeeded
            self._selections[stage] = selection
            self._query = query
            self._candidates = candidates
            self._composed = composed
            self._stage = next_stage = _NEXT_STAGE[stage]

        logger.info(
            f"{STAGE_LABELS[stage]} {index + 1} selected ({item.image}); "
            f"now {next_stage.value}"
        )
        return composed if composed is not None else list(candidates)

    def _pick(self, index) -> RankedItem:
        if isinstance(index, bool) or not isinstance(index, (int, np.integer)):
            raise IndexOutOfRange(f"Selection index must be an integer, got {index!r}")
        if not 0 <= index < len(self._candidates):
            raise IndexOutOfRange(
                f"Selection {index} outside the {len(self._candidates)} items shown"
            )
        return self._candidates[index]


def commit_selection(session: OutfitSession, index: int) -> Union[List[RankedItem], ComposedResult]:
    """Functional form of session.commit_selection()."""
    return session.commit_selection(index)


def reset(session: OutfitSession) -> None:
    """Functional form of session.reset()."""
    session.reset()


class DisplaySink(ABC):
    """Receives what a UI would render."""

    @abstractmethod
    def show(self, stage: Stage, items: List[RankedItem]) -> None:
        """Render the ranked list offered while awaiting stage."""

    @abstractmethod
    def show_composed(self, result: ComposedResult) -> None:
        """Render the finished outfit."""


class SelectionSource(ABC):
    """Yields the index the user picked from the items just shown."""

    @abstractmethod
    def select(self, stage: Stage, items: List[RankedItem]) -> int:
        """Return an index into items."""


def run_session(session: OutfitSession,
                sink: DisplaySink,
                source: SelectionSource) -> ComposedResult:
    """
    Drive a session from its current stage to COMPOSED.

    Shows every list on the sink, asks the source for one index per
    stage, and finally shows the composed outfit.

    Raises:
        InvalidState: Session is already COMPOSED.
    """
    if session.stage == Stage.COMPOSED:
        raise InvalidState("Session is composed; call reset() first")

    result: Union[List[RankedItem], ComposedResult] = session.candidates
    while not isinstance(result, ComposedResult):
        stage = session.stage
        sink.show(stage, result)
        result = session.commit_selection(source.select(stage, result))

    sink.show_composed(result)
    return result
