"""Tests for the clarification turn pipeline."""
import pytest

from tarot_session.clarify import (
    ClarificationLoop,
    DecisionStepFailed,
    InterpretationStepFailed,
    normalize_draw_count,
)
from tarot_session.coordinator import DrawCoordinator
from tarot_session.entropy import EntropySourceUnavailable
from tarot_session.session import SessionState, TurnStage
from tarot_session.tarot_core import DECK, DECK_SIZE


class Steps:
    """Scripted decide / interpret collaborators that record what they saw."""

    def __init__(self, counts, session=None, fail_decide=False, fail_interpret=False, reply="Slay."):
        self.counts = list(counts)
        self.session = session
        self.fail_decide = fail_decide
        self.fail_interpret = fail_interpret
        self.reply = reply
        self.decide_calls = []
        self.with_cards = []
        self.without_cards = []
        self.stages = []

    def decide(self, question, context, history):
        self.decide_calls.append((question, context, tuple(history)))
        if self.session is not None:
            self.stages.append(self.session.stage)
        if self.fail_decide:
            raise RuntimeError("model offline")
        return self.counts.pop(0)

    def interpret_with_cards(self, cards, question, context):
        self.with_cards.append(list(cards))
        if self.session is not None:
            self.stages.append(self.session.stage)
        if self.fail_interpret:
            raise RuntimeError("model offline")
        return self.reply

    def interpret_without_cards(self, question, context):
        self.without_cards.append(question)
        if self.fail_interpret:
            raise RuntimeError("model offline")
        return self.reply


def make_loop(coordinator, steps):
    return ClarificationLoop(coordinator, steps.decide, steps.interpret_with_cards, steps.interpret_without_cards)


@pytest.fixture
def celtic_cross_session(coordinator):
    session = SessionState(question="Should I move?", spread="celtic_cross", interpretation="Big change energy.")
    session.record_draw(coordinator.draw(10, session.excluded()))
    return session


def test_follow_up_draws_two_new_cards(coordinator, celtic_cross_session):
    original = set(celtic_cross_session.all_drawn_card_names)
    steps = Steps([2])

    turn = make_loop(coordinator, steps).run_turn(celtic_cross_session, "What should I do first?")

    assert len(turn.draw) == 2
    assert not original & set(turn.draw.names)
    assert len(celtic_cross_session.all_drawn_card_names) == 12
    assert steps.with_cards == [list(turn.draw.cards)]
    assert steps.without_cards == []
    assert celtic_cross_session.history == [turn]
    assert celtic_cross_session.stage == TurnStage.DONE


def test_request_clamped_to_last_card(coordinator):
    session = SessionState()
    session.record_draw(coordinator.draw(77))
    steps = Steps([3])

    turn = make_loop(coordinator, steps).run_turn(session, "Anything else?")

    assert len(turn.draw) == 1
    assert session.all_drawn_card_names == set(DECK)
    assert len(steps.with_cards[0]) == 1


def test_exhausted_deck_answers_without_cards(coordinator, stub_entropy):
    session = SessionState()
    session.record_draw(coordinator.draw(DECK_SIZE))
    stub_entropy.calls.clear()
    steps = Steps([2])

    turn = make_loop(coordinator, steps).run_turn(session, "More?")

    assert len(turn.draw) == 0
    assert steps.without_cards == ["More?"]
    assert steps.with_cards == []
    assert stub_entropy.calls == []


def test_zero_decision_skips_the_draw(coordinator, stub_entropy, celtic_cross_session):
    before = set(celtic_cross_session.all_drawn_card_names)
    stub_entropy.calls.clear()
    steps = Steps([0])

    turn = make_loop(coordinator, steps).run_turn(celtic_cross_session, "What does the Tower mean here?")

    assert len(turn.draw) == 0
    assert turn.response == "Slay."
    assert celtic_cross_session.all_drawn_card_names == before
    assert stub_entropy.calls == []
    assert steps.without_cards == ["What does the Tower mean here?"]


def test_stages_advance_in_order(coordinator, celtic_cross_session):
    steps = Steps([1], session=celtic_cross_session)
    make_loop(coordinator, steps).run_turn(celtic_cross_session, "And then?")
    assert steps.stages == [TurnStage.DECIDING, TurnStage.INTERPRETING]
    assert celtic_cross_session.stage == TurnStage.DONE


def test_later_turns_see_history_and_all_draws(coordinator, celtic_cross_session):
    steps = Steps([2, 3, 0, 1])
    loop = make_loop(coordinator, steps)
    drawn = list(celtic_cross_session.all_drawn_card_names)
    for q in ["one", "two", "three", "four"]:
        drawn.extend(loop.run_turn(celtic_cross_session, q).draw.names)

    assert len(drawn) == len(set(drawn)) == 16
    assert celtic_cross_session.all_drawn_card_names == set(drawn)
    assert [len(call[2]) for call in steps.decide_calls] == [0, 1, 2, 3]
    assert steps.decide_calls[1][1].interpretation == "Big change energy."


def test_decide_failure_leaves_session_untouched(coordinator, celtic_cross_session):
    before = set(celtic_cross_session.all_drawn_card_names)
    steps = Steps([], fail_decide=True)

    with pytest.raises(DecisionStepFailed) as excinfo:
        make_loop(coordinator, steps).run_turn(celtic_cross_session, "Why?")

    assert isinstance(excinfo.value.__cause__, RuntimeError)
    assert celtic_cross_session.all_drawn_card_names == before
    assert celtic_cross_session.history == []
    assert celtic_cross_session.stage == TurnStage.IDLE


def test_interpretation_failure_keeps_committed_draw(coordinator, celtic_cross_session):
    # The new cards stay consumed although the turn failed. Whether they
    # should go back to the deck is still an open product decision; this
    # pins the current behaviour.
    steps = Steps([2], fail_interpret=True)

    with pytest.raises(InterpretationStepFailed):
        make_loop(coordinator, steps).run_turn(celtic_cross_session, "Why?")

    assert len(celtic_cross_session.all_drawn_card_names) == 12
    assert celtic_cross_session.history == []
    assert celtic_cross_session.stage == TurnStage.IDLE


def test_entropy_failure_leaves_session_untouched(celtic_cross_session):
    class DeadEntropy:
        def fetch_random_ints(self, count):
            raise EntropySourceUnavailable("cancelled")

    before = set(celtic_cross_session.all_drawn_card_names)
    with pytest.raises(EntropySourceUnavailable):
        make_loop(DrawCoordinator(DeadEntropy()), Steps([2])).run_turn(celtic_cross_session, "Why?")
    assert celtic_cross_session.all_drawn_card_names == before


def test_blank_response_fails_the_turn(coordinator, celtic_cross_session):
    with pytest.raises(InterpretationStepFailed):
        make_loop(coordinator, Steps([0], reply="  ")).run_turn(celtic_cross_session, "Why?")


def test_out_of_range_decision_is_clamped(coordinator, celtic_cross_session):
    turn = make_loop(coordinator, Steps([7])).run_turn(celtic_cross_session, "Tell me everything")
    assert len(turn.draw) == 3


@pytest.mark.parametrize("value,expected", [(0, 0), (3, 3), (-2, 0), (9, 3)])
def test_normalize_draw_count(value, expected):
    assert normalize_draw_count(value) == expected


@pytest.mark.parametrize("value", ["2", 2.0, None, True])
def test_non_integer_decision_fails(value):
    with pytest.raises(DecisionStepFailed):
        normalize_draw_count(value)
