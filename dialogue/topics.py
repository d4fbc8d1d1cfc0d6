from __future__ import annotations

import re
from collections import Counter
from typing import Dict, Any, List, Optional, Sequence

from loguru import logger

from .states import (
    HistoryEntry,
    Sentiment,
    SwitchType,
    Topic,
    TopicAnalysis,
    TopicDetection,
    TopicGuidanceState,
    TopicMatch,
    TopicSuggestion,
    TopicSwitch,
)


def _topic(id: str, name: str, keywords: Sequence[str], description: str) -> Topic:
    return Topic(id=id, name=name, keywords=frozenset(keywords), description=description)


TOPIC_CATALOG: List[Topic] = [
    _topic(
        "technology", "Technology",
        ["computer", "software", "code", "programming", "tech", "app", "website",
         "digital", "internet", "ai", "algorithm"],
        "Technology, software, computers and digital tools",
    ),
    _topic(
        "food", "Food & Dining",
        ["food", "restaurant", "cooking", "recipe", "dinner", "lunch", "breakfast",
         "cuisine", "taste", "meal"],
        "Food, restaurants, cooking and dining experiences",
    ),
    _topic(
        "travel", "Travel",
        ["travel", "trip", "vacation", "journey", "destination", "visit", "explore",
         "adventure", "flight", "hotel"],
        "Travel, trips and visiting places",
    ),
    _topic(
        "work", "Work & Career",
        ["work", "job", "career", "office", "colleague", "project", "meeting", "boss",
         "client", "professional"],
        "Work, career and professional life",
    ),
    _topic(
        "hobbies", "Hobbies & Interests",
        ["hobby", "interest", "pastime", "activity", "sport", "music", "art", "reading",
         "gaming", "collection"],
        "Hobbies, interests and leisure activities",
    ),
    _topic(
        "philosophy", "Philosophy & Ideas",
        ["think", "idea", "meaning", "purpose", "belief", "philosophy", "theory",
         "concept", "perspective", "opinion"],
        "Philosophy, ideas and abstract concepts",
    ),
    _topic(
        "personal", "Personal Life",
        ["family", "friend", "home", "personal", "life", "relationship", "feeling",
         "emotion", "experience"],
        "Personal life, relationships and experiences",
    ),
    _topic(
        "entertainment", "Entertainment",
        ["movie", "show", "book", "music", "concert", "entertainment", "media", "film",
         "series", "performance"],
        "Movies, shows, books, music and entertainment",
    ),
    _topic(
        "general", "General Conversation",
        ["hello", "hi", "how", "what", "where", "when", "why", "conversation", "chat",
         "talk"],
        "General conversation and small talk",
    ),
]

_POSITIVE_WORDS = {"good", "great", "wonderful", "amazing", "love", "enjoy", "happy", "excited"}
_NEGATIVE_WORDS = {"bad", "terrible", "awful", "hate", "sad", "angry", "disappointed", "worried"}

_WORD_RE = re.compile(r"\w+")

HISTORY_LIMIT = 20
CURRENT_TOPICS_LIMIT = 3
RECENT_TOPIC_WINDOW = 5
STAGNATION_OVERLAP = 0.7


def _jaccard(a: str, b: str) -> float:
    wa = set(_WORD_RE.findall(a.lower()))
    wb = set(_WORD_RE.findall(b.lower()))
    union = wa | wb
    if not union:
        return 0.0
    return len(wa & wb) / len(union)


class TopicAdvisor:
    """Keyword topic detection, switch/lull detection and topic suggestion.

    Keeps a bounded ``TopicGuidanceState`` that is updated once per analyzed
    message through :meth:`analyze_message`. The individual detectors are
    pure and can be called on their own.
    """

    def __init__(
        self,
        lull_threshold: int = 3,
        min_message_length: int = 20,
        catalog: Optional[List[Topic]] = None,
        log=None,
    ) -> None:
        self.lull_threshold = max(1, int(lull_threshold))
        self.min_message_length = int(min_message_length)
        self.catalog = list(catalog) if catalog is not None else list(TOPIC_CATALOG)
        self.state = TopicGuidanceState()
        self.log = log or logger
        self._patterns = {
            t.id: [re.compile(rf"\b{re.escape(k.lower())}\b") for k in sorted(t.keywords)]
            for t in self.catalog
        }
        self.log.debug(
            f"topic_advisor_init | lull_threshold={self.lull_threshold} "
            f"min_len={self.min_message_length} topics={len(self.catalog)}"
        )

    # -- detectors -------------------------------------------------------

    def detect_topics(self, message: str) -> TopicDetection:
        low = (message or "").lower()
        words = low.split()
        word_count = len(words)

        matches: List[TopicMatch] = []
        if word_count:
            for topic in self.catalog:
                hits = sum(len(p.findall(low)) for p in self._patterns.get(topic.id, []))
                if hits:
                    relevance = min(1.0, hits / (word_count * 0.1))
                    matches.append(TopicMatch(topic=topic, relevance=relevance))
        # stable sort keeps catalog order among equal scores
        matches.sort(key=lambda m: m.relevance, reverse=True)

        pos = sum(1 for w in words if w in _POSITIVE_WORDS)
        neg = sum(1 for w in words if w in _NEGATIVE_WORDS)
        if pos > neg:
            sentiment = Sentiment.POSITIVE
        elif neg > pos:
            sentiment = Sentiment.NEGATIVE
        else:
            sentiment = Sentiment.NEUTRAL

        dominant = matches[0] if matches else None
        return TopicDetection(
            matches=matches,
            dominant_topic=dominant.topic if dominant else None,
            confidence=dominant.relevance if dominant else 0.0,
            word_count=word_count,
            unique_words=len(set(words)),
            sentiment=sentiment,
        )

    def detect_topic_switch(
        self, previous: TopicDetection, current: TopicDetection
    ) -> Optional[TopicSwitch]:
        prev_topic = previous.dominant_topic
        new_topic = current.dominant_topic
        if prev_topic is None or new_topic is None or prev_topic.id == new_topic.id:
            return None

        confidence = current.confidence
        if confidence > 0.5:
            switch_type = SwitchType.NATURAL
        elif confidence > 0.3:
            switch_type = SwitchType.SUGGESTED
        else:
            switch_type = SwitchType.FORCED

        return TopicSwitch(
            from_topic=prev_topic,
            to_topic=new_topic,
            switch_type=switch_type,
            confidence=confidence,
            reason=f'Topic moved from "{prev_topic.name}" to "{new_topic.name}"',
        )

    def detect_lull(self, history: Sequence[HistoryEntry], current_message: str) -> bool:
        """Return True when the trailing window looks stalled.

        Needs at least ``lull_threshold`` prior entries. A lull is either a run
        of short messages (all recent ones and the current one shorter than
        ``min_message_length``) or semantic stagnation, where the mean Jaccard
        word overlap between the current message and the recent ones is above
        0.7.
        """
        if len(history) < self.lull_threshold:
            return False
        recent = list(history)[-self.lull_threshold:]
        current = current_message or ""

        all_short = all(len(e.message) < self.min_message_length for e in recent)
        if all_short and len(current) < self.min_message_length:
            return True

        overlap = sum(_jaccard(current, e.message) for e in recent) / len(recent)
        return overlap > STAGNATION_OVERLAP

    def suggest_topic(
        self,
        agent,
        state: TopicGuidanceState,
        detection: TopicDetection,
        catalog: Optional[Sequence[Topic]] = None,
    ) -> Optional[TopicSuggestion]:
        topics = list(catalog) if catalog is not None else self.catalog
        interests = [i.lower() for i in agent.persona.interests]

        def _fits(topic: Topic) -> bool:
            return any(k in i or i in k for i in interests for k in topic.keywords)

        current_id = detection.dominant_topic.id if detection.dominant_topic else None
        eligible = [t for t in topics if _fits(t) and t.id != current_id]
        if not eligible:
            return None

        recent_ids = {
            e.topic.id for e in state.history[-RECENT_TOPIC_WINDOW:] if e.topic is not None
        }
        fresh = [t for t in eligible if t.id not in recent_ids]
        chosen = fresh[0] if fresh else eligible[0]

        name = agent.persona.name
        return TopicSuggestion(
            topic=chosen,
            reason=f"Based on {name}'s interests: {', '.join(agent.persona.interests[:2])}",
            confidence=0.7 if fresh else 0.5,
            context=f"{name} might enjoy discussing {chosen.name.lower()}",
        )

    def generate_guidance(
        self,
        lull_detected: bool,
        suggestion: Optional[TopicSuggestion],
        switch: Optional[TopicSwitch],
    ) -> Optional[str]:
        parts: List[str] = []
        if lull_detected and suggestion is not None:
            parts.append(
                f"[Subtle hint: You might enjoy discussing {suggestion.topic.name.lower()}. "
                f"{suggestion.context}]"
            )
        if switch is not None and switch.switch_type == SwitchType.SUGGESTED:
            parts.append(
                f"[Subtle hint: {switch.to_topic.name.lower()} could be interesting to explore.]"
            )
        return " ".join(parts) if parts else None

    # -- stateful analysis -------------------------------------------------

    def analyze_message(self, message: str, speaker_id: str, turn_number: int, agent) -> TopicAnalysis:
        detection = self.detect_topics(message)
        state = self.state

        switch = None
        if state.history and state.history[-1].topic is not None:
            prev = state.history[-1]
            words = prev.message.split()
            prev_detection = TopicDetection(
                matches=[TopicMatch(topic=prev.topic, relevance=0.5)],
                dominant_topic=prev.topic,
                confidence=0.5,
                word_count=len(words),
                unique_words=len(set(words)),
            )
            switch = self.detect_topic_switch(prev_detection, detection)
            if switch is not None:
                state.switches.append(switch)
                self.log.info(
                    f"topic_switch | t={turn_number} from={switch.from_topic.id} "
                    f"to={switch.to_topic.id} type={switch.switch_type.value} conf={switch.confidence:.2f}"
                )

        lull = self.detect_lull(state.history, message)
        state.lull_detected = lull
        suggestion = None
        if lull:
            state.last_lull_turn = turn_number
            self.log.warning(f"topic_lull | t={turn_number} spk={speaker_id} len={len(message or '')}")
            suggestion = self.suggest_topic(agent, state, detection)
            if suggestion is not None:
                state.suggestions.append(suggestion)
                self.log.info(
                    f"topic_suggestion | t={turn_number} topic={suggestion.topic.id} "
                    f"conf={suggestion.confidence:.2f}"
                )

        self._record(turn_number, message, detection)
        guidance = self.generate_guidance(lull, suggestion, switch)

        self.log.debug(
            f"topic_analysis | t={turn_number} spk={speaker_id} "
            f"dominant={detection.dominant_topic.id if detection.dominant_topic else None} "
            f"conf={detection.confidence:.2f} lull={lull} guidance={guidance is not None}"
        )
        return TopicAnalysis(detection=detection, switch=switch, suggestion=suggestion, guidance=guidance)

    def _record(self, turn_number: int, message: str, detection: TopicDetection) -> None:
        state = self.state
        state.history.append(
            HistoryEntry(
                turn_number=turn_number,
                message=message or "",
                topic=detection.dominant_topic,
                confidence=detection.confidence,
            )
        )
        if len(state.history) > HISTORY_LIMIT:
            del state.history[: len(state.history) - HISTORY_LIMIT]

        dominant = detection.dominant_topic
        if dominant is None:
            return
        ids = [t.id for t in state.current_topics]
        if dominant.id in ids:
            state.current_topics[ids.index(dominant.id)] = dominant
        else:
            state.current_topics.append(dominant)
            if len(state.current_topics) > CURRENT_TOPICS_LIMIT:
                state.current_topics.pop(0)

    def current_topic(self) -> Optional[Topic]:
        return self.state.current_topics[-1] if self.state.current_topics else None

    def get_statistics(self) -> Dict[str, Any]:
        history = self.state.history
        distribution = Counter(e.topic.name for e in history if e.topic is not None)
        most_common = distribution.most_common(1)
        confidences = [e.confidence for e in history if e.confidence > 0]
        return {
            "topic_distribution": dict(distribution),
            "most_common_topic": most_common[0][0] if most_common else None,
            "total_switches": len(self.state.switches),
            "total_suggestions": len(self.state.suggestions),
            "average_topic_confidence": (sum(confidences) / len(confidences)) if confidences else 0.0,
        }

    def log_statistics(self) -> None:
        stats = self.get_statistics()
        self.log.info(
            f"topic_stats | most_common={stats['most_common_topic']} "
            f"switches={stats['total_switches']} suggestions={stats['total_suggestions']} "
            f"avg_conf={stats['average_topic_confidence']:.3f} dist={stats['topic_distribution']}"
        )
