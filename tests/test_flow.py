from __future__ import annotations

import pytest

from dialogue.flow import FlowAdvisor
from dialogue.states import ConversationBeat, ConversationMood, EmotionalDirection

from conftest import StubRandom


class FakeClock:
    def __init__(self, *ticks: float) -> None:
        self.ticks = list(ticks)

    def __call__(self) -> float:
        return self.ticks.pop(0)


@pytest.mark.parametrize(
    "text, beat",
    [
        ("What do you think?", ConversationBeat.QUESTION_ANSWER),
        ("I remember the story my grandfather told us", ConversationBeat.STORY_LISTENING),
        ("I disagree because the argument is weak", ConversationBeat.DEBATE_DISCUSSION),
        ("Let us examine the implications", ConversationBeat.DEEP_DIVE),
        ("yeah totally", ConversationBeat.ACKNOWLEDGMENT),
        ("Nice weather today", ConversationBeat.CASUAL_CHAT),
        (
            "The weather has been nice lately and the garden looks lovely with all the new flowers",
            ConversationBeat.UNKNOWN,
        ),
        ("x" * 160, ConversationBeat.STORY_LISTENING),
    ],
)
def test_beat_precedence(text, beat):
    assert FlowAdvisor.detect_beat(text) == beat


def test_question_outranks_story():
    assert FlowAdvisor.detect_beat("Do you remember that story?") == ConversationBeat.QUESTION_ANSWER


@pytest.mark.parametrize(
    "text, mood",
    [
        ("haha that is so funny", ConversationMood.PLAYFUL),
        ("this is a serious problem", ConversationMood.SERIOUS),
        ("I wonder about the meaning of it all", ConversationMood.THOUGHTFUL),
        ("fun, but also serious", ConversationMood.PLAYFUL),
        ("the bus was late", ConversationMood.NEUTRAL),
    ],
)
def test_mood_first_match_wins(text, mood):
    assert FlowAdvisor.detect_mood(text) == mood


def test_rhythm_uses_exponential_moving_average():
    advisor = FlowAdvisor(clock=FakeClock(0.0, 10.0, 15.0))
    advisor.analyze_message("first", 1)
    assert advisor.state.rhythm.average_interval == pytest.approx(10.0)
    advisor.analyze_message("second", 2)
    assert advisor.state.rhythm.average_interval == pytest.approx(10.0 * 0.8 + 5.0 * 0.2)


def test_emotional_intensity_and_direction():
    advisor = FlowAdvisor()
    advisor.analyze_message("I love it, this is amazing", 1)
    assert advisor.state.emotional_flow.intensity == pytest.approx(0.7)
    assert advisor.state.emotional_flow.direction == EmotionalDirection.INCREASING

    advisor.analyze_message("ok", 2)
    assert advisor.state.emotional_flow.intensity == pytest.approx(0.5)
    assert advisor.state.emotional_flow.direction == EmotionalDirection.DECREASING

    advisor.analyze_message("sure", 3)
    assert advisor.state.emotional_flow.direction == EmotionalDirection.STABLE


def test_recent_beats_are_bounded():
    advisor = FlowAdvisor()
    for i in range(8):
        advisor.analyze_message("What now?", i)
    assert len(advisor.state.recent_beats) == 5


def test_pause_disabled_returns_none():
    advisor = FlowAdvisor(enable_pauses=False, rng=StubRandom(0.0))
    assert advisor.should_pause() is None


def test_pause_probability_depends_on_beat():
    advisor = FlowAdvisor(min_pause=0.5, max_pause=2.0, rng=StubRandom(0.2))
    # unknown beat -> 0.3
    assert advisor.should_pause() == 0.5
    assert advisor.state.rhythm.pause_count == 1

    advisor.analyze_message("Nice weather today", 1)
    # casual beat -> 0.1
    assert advisor.should_pause() is None
    assert advisor.state.rhythm.pause_count == 1

    advisor.analyze_message("Let us examine the implications", 2)
    # deep dive -> 0.6
    assert advisor.should_pause() == 0.5


def test_thinking_probability_doubles_for_deep_beats():
    advisor = FlowAdvisor(thinking_probability=0.1, rng=StubRandom(0.15))
    advisor.analyze_message("Nice weather today", 1)
    assert advisor.should_show_thinking() is False
    advisor.analyze_message("Let us examine the implications", 2)
    assert advisor.should_show_thinking() is True

    assert FlowAdvisor(enable_thinking=False, rng=StubRandom(0.0)).should_show_thinking() is False


def test_acknowledgment_boosted_after_question_or_story():
    advisor = FlowAdvisor(acknowledgment_probability=0.15, rng=StubRandom(0.2))
    advisor.analyze_message("Nice weather today", 1)
    assert advisor.should_generate_acknowledgment() is False
    advisor.analyze_message("What do you think?", 2)
    assert advisor.should_generate_acknowledgment() is True

    assert FlowAdvisor(enable_acknowledgment=False, rng=StubRandom(0.0)).should_generate_acknowledgment() is False


def test_flow_context_omits_unknown_and_neutral():
    advisor = FlowAdvisor()
    assert advisor.get_flow_context() is None

    advisor.analyze_message("What do you think about this serious problem?", 1)
    context = advisor.get_flow_context()
    assert context.startswith("[Flow: You're in a question-answer exchange]")
    assert "[Mood:" in context


def test_get_state_returns_copy_and_reset_clears():
    advisor = FlowAdvisor()
    advisor.analyze_message("What do you think?", 1)
    snapshot = advisor.get_state()
    snapshot.recent_beats.clear()
    assert advisor.state.recent_beats == [ConversationBeat.QUESTION_ANSWER]

    advisor.reset()
    assert advisor.state.current_beat == ConversationBeat.UNKNOWN
    assert advisor.state.recent_beats == []
