"""Tests for the three-stage selection state machine."""

import threading

import numpy as np
import pytest

from outfit_search.corpus import Corpus
from outfit_search.errors import DimensionMismatch, IndexOutOfRange, InvalidState
from outfit_search.index import build_index
from outfit_search.pipeline import (
    ComposedResult, DisplaySink, OutfitSession, SelectionSource, Stage,
    commit_selection, reset, run_session,
)

STRATEGY = "coupled-hue-sat"


@pytest.fixture
def session(wardrobe):
    loader, tops, bottoms, accessories = wardrobe
    return OutfitSession(
        Corpus.build(tops, STRATEGY, loader=loader),
        build_index(Corpus.build(bottoms, STRATEGY, loader=loader)),
        build_index(Corpus.build(accessories, STRATEGY, loader=loader)),
        secondary_k=3,
        accessory_k=2,
    )


class RecordingSink(DisplaySink):
    def __init__(self):
        self.shown = []
        self.composed = None

    def show(self, stage, items):
        self.shown.append((stage, [item.label for item in items]))

    def show_composed(self, result):
        self.composed = result


class ScriptedSource(SelectionSource):
    def __init__(self, picks):
        self.picks = list(picks)

    def select(self, stage, items):
        return self.picks.pop(0)


class TestTransitions:
    """Tests for the forward path through the stages."""

    def test_starts_awaiting_primary(self, session):
        assert session.stage == Stage.AWAITING_PRIMARY
        labels = [item.label for item in session.candidates]
        assert labels == ["Top 1", "Top 2", "Top 3"]
        assert all(item.distance is None for item in session.candidates)

    def test_primary_selection_ranks_bottoms(self, session):
        bottoms = session.commit_selection(0)  # tops/red.png
        assert session.stage == Stage.AWAITING_SECONDARY
        assert len(bottoms) == 3
        assert bottoms[0].image == "bottoms/crimson.png"
        assert bottoms[0].label.startswith("Bottom 1 (")
        distances = [item.distance for item in bottoms]
        assert distances == sorted(distances)

    def test_query_provenance(self, session):
        session.commit_selection(1)
        q = session.query
        assert q.stage == Stage.AWAITING_PRIMARY
        assert q.position == 1
        assert np.array_equal(q.vector, session.primary.vectors[1])

    def test_accessories_ranked_against_primary(self, session):
        session.commit_selection(0)  # red top
        bottoms = session.candidates
        # Pick the worst-matching bottom; accessories must still follow the top
        accessories = session.commit_selection(len(bottoms) - 1)
        assert session.stage == Stage.AWAITING_ACCESSORY
        assert len(accessories) == 2
        assert accessories[0].image == "accessories/ruby.png"
        expected = session.accessory_index.query(session.primary.vectors[0], 2)
        assert [item.image for item in accessories] == [r.payload for r in expected]

    def test_secondary_index_relative_to_shown_list(self, session):
        session.commit_selection(0)
        shown = session.candidates
        session.commit_selection(1)
        chosen = session.selections[Stage.AWAITING_SECONDARY]
        assert chosen.image == shown[1].image
        assert chosen.index == 1
        assert chosen.position == shown[1].position

    def test_three_commits_compose(self, session):
        session.commit_selection(2)
        session.commit_selection(0)
        result = session.commit_selection(1)
        assert isinstance(result, ComposedResult)
        assert session.stage == Stage.COMPOSED
        assert session.composed is result
        assert result.primary.image == "tops/green.png"
        assert result.images[0] == "tops/green.png"
        assert [item.label for item in result.items()] == ["Top", "Bottom", "Accessory"]
        assert session.candidates == []

    def test_functional_aliases(self, session):
        commit_selection(session, 0)
        assert session.stage == Stage.AWAITING_SECONDARY
        reset(session)
        assert session.stage == Stage.AWAITING_PRIMARY


class TestInvalidOperations:
    """Tests for rejected transitions."""

    def test_commit_after_composed(self, session):
        for _ in range(3):
            session.commit_selection(0)
        with pytest.raises(InvalidState):
            session.commit_selection(0)

    @pytest.mark.parametrize("index", [-1, 3, 99])
    def test_primary_index_out_of_range(self, session, index):
        with pytest.raises(IndexOutOfRange):
            session.commit_selection(index)
        assert session.stage == Stage.AWAITING_PRIMARY

    def test_secondary_index_bounded_by_shown_list(self, session):
        session.commit_selection(0)
        # Four bottoms in the corpus but only three shown
        with pytest.raises(IndexOutOfRange):
            session.commit_selection(3)
        assert session.stage == Stage.AWAITING_SECONDARY

    def test_non_integer_index(self, session):
        with pytest.raises(IndexOutOfRange):
            session.commit_selection("0")

    def test_failed_query_leaves_state_untouched(self, wardrobe):
        loader, tops, bottoms, accessories = wardrobe
        session = OutfitSession(
            Corpus.build(tops, "coupled-hue-sat", loader=loader),
            build_index(Corpus.build(bottoms, "grayscale", loader=loader)),
            build_index(Corpus.build(accessories, "coupled-hue-sat", loader=loader)),
        )
        with pytest.raises(DimensionMismatch):
            session.commit_selection(0)
        assert session.stage == Stage.AWAITING_PRIMARY
        assert session.selections == {}
        assert session.query is None


class TestReset:
    """Tests for returning to the first stage."""

    @pytest.mark.parametrize("commits", [0, 1, 2, 3])
    def test_reset_from_any_stage(self, session, commits):
        for _ in range(commits):
            session.commit_selection(0)
        session.reset()
        assert session.stage == Stage.AWAITING_PRIMARY
        assert session.selections == {}
        assert session.query is None
        assert session.composed is None
        assert len(session.candidates) == 3

    def test_replay_after_reset_is_identical(self, session):
        first = [session.commit_selection(1), session.commit_selection(0)]
        session.reset()
        second = [session.commit_selection(1), session.commit_selection(0)]
        assert first == second


class TestRunSession:
    """Tests for driving a session with display and selection collaborators."""

    def test_full_run(self, session):
        sink = RecordingSink()
        result = run_session(session, sink, ScriptedSource([0, 0, 0]))
        assert [stage for stage, _ in sink.shown] == [
            Stage.AWAITING_PRIMARY, Stage.AWAITING_SECONDARY, Stage.AWAITING_ACCESSORY,
        ]
        assert sink.shown[0][1] == ["Top 1", "Top 2", "Top 3"]
        assert sink.composed is result
        assert result.images == ("tops/red.png", "bottoms/crimson.png", "accessories/ruby.png")

    def test_resumes_mid_session(self, session):
        session.commit_selection(0)
        sink = RecordingSink()
        run_session(session, sink, ScriptedSource([0, 0]))
        assert sink.shown[0][0] == Stage.AWAITING_SECONDARY

    def test_refuses_composed_session(self, session):
        for _ in range(3):
            session.commit_selection(0)
        with pytest.raises(InvalidState):
            run_session(session, RecordingSink(), ScriptedSource([]))


class TestConcurrency:
    """Concurrent commits on one session never skip or corrupt stages."""

    def test_parallel_commits(self, session):
        outcomes = []

        def worker():
            try:
                session.commit_selection(0)
                outcomes.append("ok")
            except InvalidState:
                outcomes.append("composed")

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert outcomes.count("ok") == 3
        assert outcomes.count("composed") == 5
        assert session.stage == Stage.COMPOSED
        assert set(session.selections) == {
            Stage.AWAITING_PRIMARY, Stage.AWAITING_SECONDARY, Stage.AWAITING_ACCESSORY,
        }
