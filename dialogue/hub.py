from __future__ import annotations

import inspect
import re
from collections import Counter
from typing import Any, Dict, List, Optional

from loguru import logger

from .exceptions import MemoryStoreError
from .states import (
    ConversationState,
    FlowGuidance,
    Message,
    OrchestrationContext,
    QualityEvaluation,
    WeightedMemory,
)


HOOKS = (
    "initialize",
    "on_message_generated",
    "on_context_summarized",
    "on_quality_evaluated",
    "on_state_changed",
    "on_memory_retrieved",
    "on_flow_managed",
    "cleanup",
)

_STOP_WORDS = {
    "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for", "of",
    "with", "by", "is", "are", "was", "were", "be", "been", "have", "has", "had",
    "do", "does", "did", "will", "would", "could", "should", "this", "that",
    "these", "those", "i", "you", "he", "she", "it", "we", "they",
}
_NON_WORD_RE = re.compile(r"[^\w]")

SUMMARY_TERMS = 10
PREVIEW_CHARS = 50
SUMMARY_SPEAKER = "hub"


class BasePlugin:
    """Plugins expose any subset of the hook methods; missing hooks are skipped."""

    name = "base"
    version: Optional[str] = None

    async def initialize(self) -> None:
        return None

    async def cleanup(self) -> None:
        return None


class TracePlugin(BasePlugin):
    """Implements every hook. Logs each event at debug level when enabled."""

    name = "trace"
    version = "1.0"

    def __init__(self, enabled: bool = False, log=None) -> None:
        self.enabled = enabled
        self.log = log or logger
        self.events: List[str] = []

    def _trace(self, event: str, detail: str = "") -> None:
        if not self.enabled:
            return
        self.events.append(event)
        self.log.debug(f"trace | event={event} {detail}".rstrip())

    async def initialize(self) -> None:
        self._trace("initialize")

    def on_message_generated(self, message: Message, context: OrchestrationContext) -> None:
        self._trace("message_generated", f"spk={message.speaker_id} t={context.turn_number} len={len(message.content)}")

    def on_context_summarized(self, summary: str, dropped: List[Message]) -> None:
        self._trace("context_summarized", f"dropped={len(dropped)} chars={len(summary)}")

    def on_quality_evaluated(self, evaluation: QualityEvaluation) -> None:
        self._trace("quality_evaluated", f"overall={evaluation.metrics.overall:.2f}")

    def on_state_changed(self, state: ConversationState, context: OrchestrationContext) -> None:
        self._trace("state_changed", f"t={context.turn_number} msgs={len(state.messages)}")

    def on_memory_retrieved(self, memories: List[WeightedMemory]) -> None:
        self._trace("memory_retrieved", f"count={len(memories)}")

    def on_flow_managed(self, guidance: FlowGuidance, flow_state) -> None:
        self._trace("flow_managed", f"pause={guidance.pause_seconds} thinking={guidance.show_thinking}")

    async def cleanup(self) -> None:
        self._trace("cleanup")


class OrchestrationHub:
    """Plugin registry plus delegation to the shared advisors and memory store.

    The hub never owns the advisors; ``TurnEngine`` and the hub receive the
    same instances at construction. Hook dispatch runs plugins in
    registration order, awaits coroutine hooks, and logs and skips any hook
    that raises.
    """

    def __init__(
        self,
        engagement=None,
        flow=None,
        memory_store=None,
        max_context_messages: int = 25,
        enable_summarization: bool = True,
        plugins: Optional[List[Any]] = None,
        log=None,
    ) -> None:
        self.engagement = engagement
        self.flow = flow
        self.memory_store = memory_store
        self.max_context_messages = max(1, int(max_context_messages))
        self.enable_summarization = enable_summarization
        self.log = log or logger
        self.plugins: Dict[str, Any] = {}
        self.conversation_summary: Optional[str] = None
        self._initialized = False
        for p in plugins or []:
            self._add_plugin(p)
        self.log.info(
            f"hub_init | max_context={self.max_context_messages} "
            f"summarize={self.enable_summarization} plugins={len(self.plugins)}"
        )

    # -- plugins -----------------------------------------------------------

    def _add_plugin(self, plugin, name: Optional[str] = None) -> str:
        key = name or getattr(plugin, "name", None) or type(plugin).__name__
        self.plugins[key] = plugin
        self.log.info(f"plugin_registered | name={key} version={getattr(plugin, 'version', None)}")
        return key

    async def register_plugin(self, plugin, name: Optional[str] = None) -> None:
        """Register a plugin; one added after ``initialize()`` is initialized right away."""
        key = self._add_plugin(plugin, name)
        if self._initialized:
            await self._call(key, plugin, "initialize")

    def get_plugin(self, name: str):
        return self.plugins.get(name)

    async def _call(self, name: str, plugin, hook: str, *args) -> None:
        handler = getattr(plugin, hook, None)
        if handler is None or not callable(handler):
            return
        try:
            result = handler(*args)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            self.log.warning(f"plugin_error | name={name} hook={hook} err={e}")

    async def _notify(self, hook: str, *args) -> None:
        for name, plugin in list(self.plugins.items()):
            await self._call(name, plugin, hook, *args)

    async def initialize(self) -> None:
        await self._notify("initialize")
        self._initialized = True

    async def cleanup(self) -> None:
        await self._notify("cleanup")
        self._initialized = False
        self.log.info(f"hub_cleanup | plugins={len(self.plugins)}")

    # -- context window ----------------------------------------------------

    async def manage_context_window(self, messages: List[Message]) -> List[Message]:
        cap = self.max_context_messages
        if len(messages) <= cap:
            return list(messages)

        recent = list(messages[-cap:])
        dropped = list(messages[:-cap])
        self.log.debug(
            f"context_window | total={len(messages)} kept={len(recent)} dropped={len(dropped)}"
        )
        if self.enable_summarization and dropped:
            summary = await self.summarize_context(dropped)
            if summary:
                return [Message("user", f"[Earlier conversation context: {summary}]", SUMMARY_SPEAKER)] + recent
        return recent

    async def summarize_context(self, messages: List[Message]) -> Optional[str]:
        if not messages:
            return None

        words = " ".join(m.content for m in messages).lower().split()
        freq: Counter = Counter()
        for w in words:
            clean = _NON_WORD_RE.sub("", w)
            if len(clean) > 3 and clean not in _STOP_WORDS:
                freq[clean] += 1
        top = [w for w, _ in freq.most_common(SUMMARY_TERMS)]

        parts = []
        if top:
            parts.append(f"Topics discussed: {', '.join(top)}")
        parts.append(f"Started with: {' | '.join(_preview(m.content) for m in messages[:2])}")
        parts.append(f"Ended with: {' | '.join(_preview(m.content) for m in messages[-2:])}")
        summary = ". ".join(parts)

        self.conversation_summary = summary
        await self._notify("on_context_summarized", summary, messages)
        self.log_event("context_summarized", chars=len(summary), dropped=len(messages))
        return summary

    # -- delegation --------------------------------------------------------

    async def evaluate_conversation_quality(self) -> Optional[QualityEvaluation]:
        if self.engagement is None:
            return None
        evaluation = QualityEvaluation(
            metrics=self.engagement.calculate_metrics(),
            interventions=[self.engagement.should_intervene()],
        )
        await self._notify("on_quality_evaluated", evaluation)
        m = evaluation.metrics
        self.log_event(
            "quality_evaluated",
            overall=f"{m.overall:.2f}",
            diversity=f"{m.message_diversity:.2f}",
            quality=f"{m.response_quality:.2f}",
            flow=f"{m.topic_flow_smoothness:.2f}",
            depth=f"{m.conversation_depth:.2f}",
            intervention=evaluation.interventions[0].type.value,
        )
        return evaluation

    async def retrieve_memories(
        self,
        speaker_a: str,
        speaker_b: str,
        topic_hint: Optional[str] = None,
        limit: int = 2,
    ) -> List[WeightedMemory]:
        if self.memory_store is None:
            return []
        try:
            memories = self.memory_store.get_weighted_memories(speaker_a, speaker_b, topic_hint, limit)
        except MemoryStoreError as e:
            self.log.warning(f"memory_retrieve_failed | a={speaker_a} b={speaker_b} err={e}")
            return []
        await self._notify("on_memory_retrieved", memories)
        self.log_event("memory_retrieved", count=len(memories), topic=topic_hint)
        return memories

    async def manage_conversation_flow(self) -> FlowGuidance:
        if self.flow is None:
            return FlowGuidance()
        guidance = FlowGuidance(
            pause_seconds=self.flow.should_pause(),
            show_thinking=self.flow.should_show_thinking(),
            acknowledge=self.flow.should_generate_acknowledgment(),
            flow_context=self.flow.get_flow_context(),
        )
        await self._notify("on_flow_managed", guidance, self.flow.get_state())
        self.log_event(
            "flow_managed",
            pause=guidance.pause_seconds,
            thinking=guidance.show_thinking,
            ack=guidance.acknowledge,
        )
        return guidance

    async def log_message_generated(self, message: Message, context: OrchestrationContext) -> None:
        self.log_event(
            "message_generated",
            spk=message.speaker_id,
            len=len(message.content),
            t=context.turn_number,
            conv=context.conversation_id,
        )
        await self._notify("on_message_generated", message, context)

    async def save_conversation_state(self, state: ConversationState, context: OrchestrationContext) -> None:
        self.log_event(
            "state_saved",
            conv=context.conversation_id,
            t=context.turn_number,
            msgs=len(state.messages),
        )
        await self._notify("on_state_changed", state, context)

    def log_event(self, event: str, **data) -> None:
        detail = " ".join(f"{k}={v}" for k, v in data.items())
        self.log.debug(f"hub_event | type={event} {detail}".rstrip())


def _preview(text: str) -> str:
    return text[:PREVIEW_CHARS] + ("..." if len(text) > PREVIEW_CHARS else "")
