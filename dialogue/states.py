from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import FrozenSet, List, Optional


class Sentiment(Enum):
    POSITIVE = "positive"
    NEUTRAL = "neutral"
    NEGATIVE = "negative"


class SwitchType(Enum):
    NATURAL = "natural"
    SUGGESTED = "suggested"
    FORCED = "forced"


class InterventionType(Enum):
    TOPIC_CHANGE = "topic_change"
    VARIETY_INJECTION = "variety_injection"
    DEPTH_ENCOURAGEMENT = "depth_encouragement"
    NONE = "none"


class ConversationBeat(Enum):
    QUESTION_ANSWER = "question_answer"
    STORY_LISTENING = "story_listening"
    DEBATE_DISCUSSION = "debate_discussion"
    CASUAL_CHAT = "casual_chat"
    DEEP_DIVE = "deep_dive"
    TRANSITION = "transition"
    ACKNOWLEDGMENT = "acknowledgment"
    THINKING = "thinking"
    PAUSE = "pause"
    INTERRUPTION = "interruption"
    MULTI_PART = "multi_part"
    UNKNOWN = "unknown"


class ConversationMood(Enum):
    LIGHT = "light"
    SERIOUS = "serious"
    PLAYFUL = "playful"
    THOUGHTFUL = "thoughtful"
    NEUTRAL = "neutral"


class EmotionalDirection(Enum):
    INCREASING = "increasing"
    DECREASING = "decreasing"
    STABLE = "stable"


# --- conversation -----------------------------------------------------------


@dataclass
class Message:
    role: str  # "user" | "assistant"
    content: str
    speaker_id: str


@dataclass
class ConversationState:
    messages: List[Message] = field(default_factory=list)
    current_turn: int = 0
    current_speaker_id: str = ""
    is_complete: bool = False


@dataclass
class OrchestrationContext:
    turn_number: int
    speaker_a_id: str
    speaker_b_id: str
    current_speaker_id: str
    conversation_id: Optional[int] = None


# --- topics -----------------------------------------------------------------


@dataclass(frozen=True)
class Topic:
    id: str
    name: str
    keywords: FrozenSet[str]
    description: str = ""


@dataclass
class TopicMatch:
    topic: Topic
    relevance: float


@dataclass
class TopicDetection:
    matches: List[TopicMatch] = field(default_factory=list)
    dominant_topic: Optional[Topic] = None
    confidence: float = 0.0
    word_count: int = 0
    unique_words: int = 0
    sentiment: Sentiment = Sentiment.NEUTRAL

    @property
    def topic_ids(self) -> List[str]:
        return [m.topic.id for m in self.matches]


@dataclass
class TopicSwitch:
    from_topic: Topic
    to_topic: Topic
    switch_type: SwitchType
    confidence: float
    reason: str = ""


@dataclass
class TopicSuggestion:
    topic: Topic
    reason: str
    confidence: float
    context: str = ""


@dataclass
class HistoryEntry:
    turn_number: int
    message: str
    topic: Optional[Topic] = None
    confidence: float = 0.0


@dataclass
class TopicGuidanceState:
    history: List[HistoryEntry] = field(default_factory=list)
    current_topics: List[Topic] = field(default_factory=list)
    switches: List[TopicSwitch] = field(default_factory=list)
    suggestions: List[TopicSuggestion] = field(default_factory=list)
    lull_detected: bool = False
    last_lull_turn: Optional[int] = None


@dataclass
class TopicAnalysis:
    detection: TopicDetection
    switch: Optional[TopicSwitch] = None
    suggestion: Optional[TopicSuggestion] = None
    guidance: Optional[str] = None


# --- engagement -------------------------------------------------------------


@dataclass
class EngagementMetrics:
    message_diversity: float = 1.0
    response_quality: float = 1.0
    topic_flow_smoothness: float = 1.0
    conversation_depth: float = 0.5
    overall: float = 1.0


@dataclass
class EngagementIntervention:
    type: InterventionType
    reason: str
    suggested_action: Optional[str] = None


@dataclass
class QualityEvaluation:
    metrics: EngagementMetrics
    interventions: List[EngagementIntervention] = field(default_factory=list)


# --- flow -------------------------------------------------------------------


@dataclass
class Rhythm:
    average_interval: float = 0.0  # seconds, exponential moving average
    last_response_at: float = 0.0
    pause_count: int = 0


@dataclass
class EmotionalFlow:
    intensity: float = 0.5
    direction: EmotionalDirection = EmotionalDirection.STABLE


@dataclass
class FlowState:
    current_beat: ConversationBeat = ConversationBeat.UNKNOWN
    mood: ConversationMood = ConversationMood.NEUTRAL
    rhythm: Rhythm = field(default_factory=Rhythm)
    recent_beats: List[ConversationBeat] = field(default_factory=list)
    emotional_flow: EmotionalFlow = field(default_factory=EmotionalFlow)


@dataclass
class FlowGuidance:
    pause_seconds: Optional[float] = None
    show_thinking: bool = False
    acknowledge: bool = False
    flow_context: Optional[str] = None

    @property
    def should_pause(self) -> bool:
        return self.pause_seconds is not None


# --- memory -----------------------------------------------------------------


@dataclass
class WeightedMemory:
    content: str
    conversation_id: int
    turn_number: int
    speaker_id: str
    weight: float
    recency: float
    relevance: float
    frequency: float
