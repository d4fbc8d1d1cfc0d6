from __future__ import annotations

import copy
import random
import re
import time
from typing import Callable, Optional

from loguru import logger

from .states import (
    ConversationBeat,
    ConversationMood,
    EmotionalDirection,
    FlowState,
)


_QUESTION_RE = re.compile(r"\b(what|why|how|when|where|who|which)\b")
_STORY_RE = re.compile(r"\b(once|remember|story|happened|told|tale|narrative)\b")
_OPINION_RE = re.compile(r"\b(but|however|although|disagree|agree|opinion|think|believe)\b")
_REASON_RE = re.compile(r"\b(because|reason|why|argument)\b")
_ANALYTIC_RE = re.compile(r"\b(explore|analyze|understand|examine|consider|implications|complex)\b")
_CAUSAL_RE = re.compile(r"\b(because|since|therefore|thus)\b")
_ACK_RE = re.compile(r"^(yeah|yes|yep|right|ok|okay|sure|got it|i see|interesting|hmm|ah)\b")

# checked in order, first hit wins
_MOOD_WORDS = [
    (ConversationMood.PLAYFUL, ("fun", "funny", "laugh", "joke", "haha", "lol", "cool", "awesome")),
    (ConversationMood.SERIOUS, ("important", "serious", "critical", "problem", "issue", "concern", "worry", "difficult")),
    (ConversationMood.THOUGHTFUL, ("think", "consider", "wonder", "reflect", "philosophy", "meaning", "understand", "analyze")),
]
_INTENSE_WORDS = (
    "love", "hate", "amazing", "terrible", "excited", "angry",
    "passionate", "furious", "ecstatic", "devastated",
)

_BEAT_HINTS = {
    ConversationBeat.QUESTION_ANSWER: "You're in a question-answer exchange",
    ConversationBeat.STORY_LISTENING: "The other person is sharing a story - listen and react naturally",
    ConversationBeat.DEBATE_DISCUSSION: "You're having a discussion - feel free to present your perspective",
    ConversationBeat.CASUAL_CHAT: "Keep it light and casual",
    ConversationBeat.DEEP_DIVE: "You're exploring a topic in depth - elaborate and think deeply",
    ConversationBeat.TRANSITION: "You're transitioning between topics - make it smooth",
    ConversationBeat.ACKNOWLEDGMENT: "Keep your response brief and acknowledging",
    ConversationBeat.THINKING: "Take a moment to think before responding",
    ConversationBeat.PAUSE: "There's a natural pause - use it thoughtfully",
    ConversationBeat.INTERRUPTION: "You're building on the other person's thought",
    ConversationBeat.MULTI_PART: "You can break your response into parts if needed",
    ConversationBeat.UNKNOWN: "",
}
_MOOD_HINTS = {
    ConversationMood.LIGHT: "Keep the tone light and easygoing",
    ConversationMood.SERIOUS: "The conversation is serious - match the tone appropriately",
    ConversationMood.PLAYFUL: "The mood is playful - feel free to be lighthearted",
    ConversationMood.THOUGHTFUL: "The conversation is thoughtful - engage deeply",
    ConversationMood.NEUTRAL: "",
}

RECENT_BEATS = 5
EMA_WEIGHT = 0.2


class FlowAdvisor:
    """Infers conversational beat/mood and makes pacing decisions.

    Randomness comes from ``rng`` and time from ``clock`` so callers can
    make every decision reproducible.
    """

    def __init__(
        self,
        enable_pauses: bool = True,
        enable_thinking: bool = True,
        enable_acknowledgment: bool = True,
        min_pause: float = 0.5,
        max_pause: float = 2.0,
        thinking_probability: float = 0.1,
        acknowledgment_probability: float = 0.15,
        rng: Optional[random.Random] = None,
        clock: Callable[[], float] = time.monotonic,
        log=None,
    ) -> None:
        self.enable_pauses = enable_pauses
        self.enable_thinking = enable_thinking
        self.enable_acknowledgment = enable_acknowledgment
        self.min_pause = float(min_pause)
        self.max_pause = float(max(min_pause, max_pause))
        self.thinking_probability = float(thinking_probability)
        self.acknowledgment_probability = float(acknowledgment_probability)
        self.rng = rng or random.Random()
        self.clock = clock
        self.log = log or logger
        self.state = self._fresh_state()

    def _fresh_state(self) -> FlowState:
        state = FlowState()
        state.rhythm.last_response_at = self.clock()
        return state

    def analyze_message(self, content: str, turn_number: int) -> None:
        content = content or ""
        rhythm = self.state.rhythm
        now = self.clock()
        elapsed = now - rhythm.last_response_at
        rhythm.last_response_at = now
        if rhythm.average_interval == 0:
            rhythm.average_interval = elapsed
        else:
            rhythm.average_interval = rhythm.average_interval * (1 - EMA_WEIGHT) + elapsed * EMA_WEIGHT

        beat = self.detect_beat(content)
        self.state.current_beat = beat
        self.state.recent_beats.append(beat)
        if len(self.state.recent_beats) > RECENT_BEATS:
            self.state.recent_beats.pop(0)

        self.state.mood = self.detect_mood(content)
        self._update_emotional_flow(content)

        self.log.debug(
            f"flow_update | t={turn_number} beat={beat.value} mood={self.state.mood.value} "
            f"avg_interval={rhythm.average_interval:.2f}s intensity={self.state.emotional_flow.intensity:.2f}"
        )

    @staticmethod
    def detect_beat(content: str) -> ConversationBeat:
        low = content.lower()
        if "?" in low or _QUESTION_RE.search(low):
            return ConversationBeat.QUESTION_ANSWER
        if _STORY_RE.search(low) or len(content) > 150:
            return ConversationBeat.STORY_LISTENING
        if _OPINION_RE.search(low) and _REASON_RE.search(low):
            return ConversationBeat.DEBATE_DISCUSSION
        if _ANALYTIC_RE.search(low) or (len(content) > 100 and _CAUSAL_RE.search(low)):
            return ConversationBeat.DEEP_DIVE
        if _ACK_RE.search(low.strip()) and len(content) < 30:
            return ConversationBeat.ACKNOWLEDGMENT
        if len(content) < 80:
            return ConversationBeat.CASUAL_CHAT
        return ConversationBeat.UNKNOWN

    @staticmethod
    def detect_mood(content: str) -> ConversationMood:
        low = content.lower()
        for mood, words in _MOOD_WORDS:
            if any(w in low for w in words):
                return mood
        return ConversationMood.NEUTRAL

    def _update_emotional_flow(self, content: str) -> None:
        low = content.lower()
        hits = sum(1 for w in _INTENSE_WORDS if w in low)
        new = min(1.0, 0.5 + hits * 0.1)
        flow = self.state.emotional_flow
        if new > flow.intensity + 0.1:
            flow.direction = EmotionalDirection.INCREASING
        elif new < flow.intensity - 0.1:
            flow.direction = EmotionalDirection.DECREASING
        else:
            flow.direction = EmotionalDirection.STABLE
        flow.intensity = new

    # -- pacing ------------------------------------------------------------

    def should_pause(self) -> Optional[float]:
        if not self.enable_pauses:
            return None
        beat = self.state.current_beat
        if beat in (ConversationBeat.DEEP_DIVE, ConversationBeat.THINKING):
            probability = 0.6
        elif beat in (ConversationBeat.CASUAL_CHAT, ConversationBeat.ACKNOWLEDGMENT):
            probability = 0.1
        else:
            probability = 0.3
        if self.rng.random() < probability:
            self.state.rhythm.pause_count += 1
            return self.rng.uniform(self.min_pause, self.max_pause)
        return None

    def should_show_thinking(self) -> bool:
        if not self.enable_thinking:
            return False
        probability = self.thinking_probability
        if self.state.current_beat in (ConversationBeat.DEEP_DIVE, ConversationBeat.DEBATE_DISCUSSION):
            probability *= 2
        return self.rng.random() < probability

    def should_generate_acknowledgment(self) -> bool:
        if not self.enable_acknowledgment:
            return False
        probability = self.acknowledgment_probability
        recent = self.state.recent_beats
        if ConversationBeat.QUESTION_ANSWER in recent or ConversationBeat.STORY_LISTENING in recent:
            probability *= 1.5
        return self.rng.random() < probability

    def get_flow_context(self) -> Optional[str]:
        parts = []
        beat_hint = _BEAT_HINTS.get(self.state.current_beat, "")
        if beat_hint:
            parts.append(f"[Flow: {beat_hint}]")
        mood_hint = _MOOD_HINTS.get(self.state.mood, "")
        if mood_hint:
            parts.append(f"[Mood: {mood_hint}]")
        return " ".join(parts) if parts else None

    def get_state(self) -> FlowState:
        return copy.deepcopy(self.state)

    def reset(self) -> None:
        self.state = self._fresh_state()
