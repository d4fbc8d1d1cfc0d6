from __future__ import annotations

import re
from collections import deque
from typing import Deque, List, Optional, Tuple

import numpy as np
from loguru import logger

from .states import EngagementIntervention, EngagementMetrics, InterventionType


_DETAIL_WORDS = {"because", "since", "when", "why", "how", "example", "instance"}
_REFERENCE_WORDS = {"that", "this", "it", "they", "we", "you", "i"}
_WORD_RE = re.compile(r"\w+")

WEIGHTS = {
    "message_diversity": 0.25,
    "response_quality": 0.30,
    "topic_flow_smoothness": 0.25,
    "conversation_depth": 0.20,
}


class EngagementScorer:
    """Composite engagement score over a sliding window of recent messages."""

    def __init__(
        self,
        window_size: int = 10,
        min_message_length: int = 20,
        max_message_length: int = 200,
        low_threshold: float = 0.4,
        high_threshold: float = 0.7,
        log=None,
    ) -> None:
        self.window_size = max(1, int(window_size))
        self.min_message_length = int(min_message_length)
        self.max_message_length = int(max_message_length)
        self.low_threshold = float(low_threshold)
        self.high_threshold = float(high_threshold)
        self.log = log or logger
        self._window: Deque[Tuple[str, Optional[List[str]]]] = deque(maxlen=self.window_size)

    def track_message(self, content: str, topics: Optional[List[str]] = None) -> None:
        self._window.append((content or "", list(topics) if topics is not None else None))

    def reset(self) -> None:
        self._window.clear()

    def __len__(self) -> int:
        return len(self._window)

    def calculate_metrics(self) -> EngagementMetrics:
        if len(self._window) < 2:
            return EngagementMetrics()

        diversity = self._diversity()
        quality = self._quality()
        flow = self._flow_smoothness()
        depth = self._depth()
        overall = (
            diversity * WEIGHTS["message_diversity"]
            + quality * WEIGHTS["response_quality"]
            + flow * WEIGHTS["topic_flow_smoothness"]
            + depth * WEIGHTS["conversation_depth"]
        )
        return EngagementMetrics(
            message_diversity=diversity,
            response_quality=quality,
            topic_flow_smoothness=flow,
            conversation_depth=depth,
            overall=overall,
        )

    def should_intervene(self) -> EngagementIntervention:
        m = self.calculate_metrics()
        if m.overall >= self.low_threshold:
            return EngagementIntervention(InterventionType.NONE, "Engagement is within acceptable range")

        if m.topic_flow_smoothness < 0.3:
            iv = EngagementIntervention(
                InterventionType.TOPIC_CHANGE,
                "Low engagement and poor topic flow",
                "Suggest a new topic to re-engage",
            )
        elif m.message_diversity < 0.3:
            iv = EngagementIntervention(
                InterventionType.VARIETY_INJECTION,
                "Low message diversity, conversation becoming repetitive",
                "Encourage different perspectives or topics",
            )
        elif m.conversation_depth < 0.3:
            iv = EngagementIntervention(
                InterventionType.DEPTH_ENCOURAGEMENT,
                "Conversation is too shallow",
                "Encourage follow-up questions or elaboration",
            )
        else:
            iv = EngagementIntervention(
                InterventionType.TOPIC_CHANGE,
                "Overall engagement is low",
                "Suggest topic change or ask engaging questions",
            )
        self.log.debug(f"engagement_intervention | type={iv.type.value} overall={m.overall:.2f}")
        return iv

    def is_high(self) -> bool:
        return self.calculate_metrics().overall > self.high_threshold

    # -- sub-scores --------------------------------------------------------

    def _diversity(self) -> float:
        topics = [t for _, tags in self._window if tags for t in tags]
        topic_div = len(set(topics)) / len(topics) if topics else 0.5

        words = [w for content, _ in self._window for w in content.lower().split()]
        vocab_div = len(set(words)) / len(words) if words else 0.5
        return (topic_div + vocab_div) / 2

    def _quality(self) -> float:
        lo, hi = self.min_message_length, self.max_message_length
        scores = []
        for content, _ in self._window:
            n = len(content)
            if lo <= n <= hi:
                scores.append(1.0)
            elif n < lo:
                scores.append(n / lo if lo else 1.0)
            else:
                scores.append(max(0.3, 1 - (n - hi) / 200))
        return float(np.mean(scores))

    def _flow_smoothness(self) -> float:
        tagged = [tags for _, tags in self._window if tags is not None]
        if len(tagged) < 2:
            return 0.5

        smooth = switches = 0
        for prev, curr in zip(tagged, tagged[1:]):
            if not prev or not curr:
                continue
            if set(prev) & set(curr):
                smooth += 1
            else:
                switches += 1

        total = smooth + switches
        if total == 0:
            return 0.5
        penalty = 0.2 if switches > total * 0.5 else 0.0
        return max(0.0, smooth / total - penalty)

    def _depth(self) -> float:
        scores = []
        for content, _ in self._window:
            low = content.lower()
            words = set(_WORD_RE.findall(low))
            score = min(0.3, low.count("?") * 0.1)
            if words & _DETAIL_WORDS:
                score += 0.2
            score += min(0.2, len(words & _REFERENCE_WORDS) * 0.05)
            if len(content) > 50:
                score += 0.3
            scores.append(min(1.0, score))
        return float(np.mean(scores))
