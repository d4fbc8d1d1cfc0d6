from __future__ import annotations

import asyncio
import copy
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

from loguru import logger

from .agents import PersonaAgent, build_context_block
from .exceptions import MemoryStoreError
from .llm import GenerationRequest
from .memory import ConversationRecord, MessageRecord
from .states import (
    ConversationState,
    EngagementMetrics,
    FlowGuidance,
    Message,
    OrchestrationContext,
)


ACKNOWLEDGMENT_HINT = "[Flow: Open with a brief acknowledgment of what was just said before moving on]"


class TurnEngine:
    """Drives an unattended two-persona conversation one turn at a time.

    Speaker A opens and the speakers strictly alternate. Advisors (topic,
    engagement, flow) and the hub are optional and shared by reference with
    whoever built the engine. Generation failures end the run and propagate;
    persistence failures are logged and skipped.
    """

    def __init__(
        self,
        agent_a: PersonaAgent,
        agent_b: PersonaAgent,
        generator,
        max_turns: int = 10,
        infinite_mode: bool = False,
        use_past_memories: bool = False,
        memory_store=None,
        topic_advisor=None,
        engagement=None,
        flow=None,
        hub=None,
        pacing_enabled: bool = True,
        memory_injection_window: int = 3,
        memory_fragment_words: int = 30,
        memory_limit: int = 5,
        low_engagement_patience: int = 3,
        thinking_seconds: float = 0.8,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        model_name: Optional[str] = None,
        log=None,
    ) -> None:
        if agent_a.id == agent_b.id:
            raise ValueError("speakers must have distinct ids")
        self.agent_a = agent_a
        self.agent_b = agent_b
        self.generator = generator
        self.max_turns = max(1, int(max_turns))
        self.infinite_mode = infinite_mode
        self.use_past_memories = use_past_memories
        self.memory_store = memory_store
        self.topic_advisor = topic_advisor
        self.engagement = engagement
        self.flow = flow
        self.hub = hub
        self.pacing_enabled = pacing_enabled
        self.memory_injection_window = int(memory_injection_window)
        self.memory_fragment_words = max(1, int(memory_fragment_words))
        self.memory_limit = int(memory_limit)
        self.low_engagement_patience = max(1, int(low_engagement_patience))
        self.thinking_seconds = float(thinking_seconds)
        self.sleep = sleep
        self.model_name = model_name
        self.log = log or logger

        self.state = ConversationState(current_speaker_id=agent_a.id)
        self.conversation_id: Optional[int] = None
        self.memories_injected = False
        self.last_metrics: Optional[EngagementMetrics] = None
        self._low_engagement_streak = 0

    # -- helpers -----------------------------------------------------------

    def _speakers(self) -> Tuple[PersonaAgent, PersonaAgent]:
        if self.state.current_speaker_id == self.agent_a.id:
            return self.agent_a, self.agent_b
        return self.agent_b, self.agent_a

    def _context(self) -> OrchestrationContext:
        return OrchestrationContext(
            turn_number=self.state.current_turn,
            speaker_a_id=self.agent_a.id,
            speaker_b_id=self.agent_b.id,
            current_speaker_id=self.state.current_speaker_id,
            conversation_id=self.conversation_id,
        )

    def _truncate(self, text: str) -> str:
        words = (text or "").split()
        if len(words) <= self.memory_fragment_words:
            return " ".join(words)
        return " ".join(words[: self.memory_fragment_words]) + "..."

    def _topic_hint(self) -> Optional[str]:
        if self.topic_advisor is None:
            return None
        topic = self.topic_advisor.current_topic()
        if topic is None:
            return None
        return " ".join(sorted(topic.keywords)) or topic.name

    async def _retrieve_memories(self) -> List[str]:
        a, b = self.agent_a.id, self.agent_b.id
        if self.hub is not None:
            found = await self.hub.retrieve_memories(a, b, self._topic_hint(), self.memory_limit)
            contents = [m.content for m in found]
        elif self.memory_store is not None:
            try:
                rows = self.memory_store.get_relevant_past_messages(a, b, self.memory_limit)
            except MemoryStoreError as e:
                self.log.warning(f"memory_retrieve_failed | a={a} b={b} err={e}")
                return []
            contents = [r["content"] for r in rows]
        else:
            return []
        return [self._truncate(c) for c in contents if c and c.strip()]

    async def _pace(self, speaker: PersonaAgent) -> FlowGuidance:
        if self.hub is not None:
            guidance = await self.hub.manage_conversation_flow()
        elif self.flow is not None:
            guidance = FlowGuidance(
                pause_seconds=self.flow.should_pause(),
                show_thinking=self.flow.should_show_thinking(),
                acknowledge=self.flow.should_generate_acknowledgment(),
                flow_context=self.flow.get_flow_context(),
            )
        else:
            return FlowGuidance()

        if guidance.should_pause:
            self.log.debug(f"pacing_pause | spk={speaker.id} secs={guidance.pause_seconds:.2f}")
            await self.sleep(guidance.pause_seconds)
        if guidance.show_thinking:
            self.log.info(f"{speaker.name} is thinking...")
            await self.sleep(self.thinking_seconds)
        return guidance

    def _persist(self, action: str, fn, *args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except MemoryStoreError as e:
            self.log.warning(f"memory_{action}_failed | conv={self.conversation_id} err={e}")
            return None

    async def _history_for(self, speaker: PersonaAgent) -> List[Dict[str, str]]:
        history = list(self.state.messages)
        if self.hub is not None:
            history = await self.hub.manage_context_window(history)
        return [
            {"role": "assistant" if m.speaker_id == speaker.id else "user", "content": m.content}
            for m in history
        ]

    def _log_turn(self, message: Message) -> None:
        raw = message.content or ""
        snippet = raw if len(raw) <= 400 else raw[:400] + "..."
        one_line = " ".join(snippet.split())
        eng = f"{self.last_metrics.overall:.2f}" if self.last_metrics is not None else "-"
        self.log.info(
            f"ai_chat_turn | spk={message.speaker_id} t={self.state.current_turn} eng={eng} | msg='{one_line}'"
        )

    def _check_engagement(self) -> None:
        if not self.infinite_mode or self.engagement is None or self.last_metrics is None:
            return
        if self.last_metrics.overall < self.engagement.low_threshold:
            self._low_engagement_streak += 1
        else:
            self._low_engagement_streak = 0
        if self._low_engagement_streak >= self.low_engagement_patience:
            self.log.warning(
                f"low_engagement | t={self.state.current_turn} overall={self.last_metrics.overall:.2f} "
                f"streak={self._low_engagement_streak}"
            )

    # -- turn loop ---------------------------------------------------------

    async def execute_turn(self) -> Message:
        speaker, other = self._speakers()
        turn_number = self.state.current_turn + 1

        memories: List[str] = []
        if self.use_past_memories and not self.memories_injected:
            memories = await self._retrieve_memories()
            if memories and self.state.current_turn < self.memory_injection_window:
                self.memories_injected = True
                self.log.debug(f"memories_injected | t={turn_number} count={len(memories)}")

        topic_guidance = None
        if self.topic_advisor is not None and self.state.messages:
            previous = self.state.messages[-1]
            author = self.agent_a if previous.speaker_id == self.agent_a.id else self.agent_b
            analysis = self.topic_advisor.analyze_message(
                previous.content, previous.speaker_id, self.state.current_turn, author
            )
            topic_guidance = analysis.guidance
            if topic_guidance:
                self.log.info(f"topic_guidance | t={turn_number} spk={speaker.id} hint='{topic_guidance}'")

        flow_hint = None
        if self.pacing_enabled:
            guidance = await self._pace(speaker)
            flow_hint = guidance.flow_context
            if guidance.acknowledge:
                flow_hint = f"{flow_hint} {ACKNOWLEDGMENT_HINT}" if flow_hint else ACKNOWLEDGMENT_HINT
        elif self.flow is not None:
            flow_hint = self.flow.get_flow_context()

        messages = await self._history_for(speaker)
        if not messages and self.state.current_turn == 0:
            messages.append({"role": "user", "content": f"You are starting a conversation with {other.name}."})
        context_block = build_context_block(
            other.name,
            is_opening=self.state.current_turn == 0,
            topic_guidance=topic_guidance,
            memories=memories or None,
            flow_hint=flow_hint,
        )
        if context_block:
            messages.append({"role": "user", "content": context_block})

        request = GenerationRequest(
            system_prompt=speaker.system_prompt,
            messages=messages,
            temperature=speaker.temperature,
            max_tokens=speaker.max_tokens,
        )
        self.log.debug(f"generate | spk={speaker.id} t={turn_number} msgs={len(messages)}")
        try:
            result = await self.generator.generate(request)
        except Exception as e:
            self.state.is_complete = True
            self.log.error(f"ai_chat_generation_failed | spk={speaker.id} t={turn_number} err={e}")
            raise

        message = Message(role="assistant", content=result.content, speaker_id=speaker.id)
        self.state.messages.append(message)
        if self.conversation_id is not None:
            self._persist(
                "save",
                self.memory_store.save_message,
                MessageRecord(
                    conversation_id=self.conversation_id,
                    turn_number=turn_number,
                    role=message.role,
                    content=message.content,
                    speaker_id=message.speaker_id,
                ),
            )

        detection = self.topic_advisor.detect_topics(message.content) if self.topic_advisor else None
        if detection is not None and detection.dominant_topic is not None:
            self.log.debug(
                f"topic_detected | t={turn_number} spk={speaker.id} "
                f"topic={detection.dominant_topic.id} conf={detection.confidence:.2f}"
            )
        if self.engagement is not None:
            self.engagement.track_message(message.content, detection.topic_ids if detection else None)
        if self.flow is not None:
            self.flow.analyze_message(message.content, turn_number)

        evaluation = None
        if self.hub is not None:
            await self.hub.log_message_generated(message, self._context())
            evaluation = await self.hub.evaluate_conversation_quality()
        if evaluation is not None:
            self.last_metrics = evaluation.metrics
        elif self.engagement is not None:
            self.last_metrics = self.engagement.calculate_metrics()

        self.state.current_turn += 1
        self.state.current_speaker_id = other.id
        if not self.infinite_mode and self.state.current_turn >= self.max_turns:
            self.state.is_complete = True
        if self.conversation_id is not None:
            self._persist(
                "update",
                self.memory_store.update_conversation,
                self.conversation_id,
                total_turns=self.state.current_turn,
                is_complete=self.state.is_complete,
            )
        if self.hub is not None:
            await self.hub.save_conversation_state(self.state, self._context())

        self._log_turn(message)
        self._check_engagement()
        return message

    async def run(self) -> ConversationState:
        self.log.info(
            f"ai_chat_start | a={self.agent_a.id} b={self.agent_b.id} max_turns={self.max_turns} "
            f"infinite={self.infinite_mode} memories={self.use_past_memories}"
        )
        if self.memory_store is not None:
            self.conversation_id = self._persist(
                "create",
                self.memory_store.create_conversation,
                ConversationRecord(
                    speaker_a_id=self.agent_a.id,
                    speaker_b_id=self.agent_b.id,
                    speaker_a_name=self.agent_a.name,
                    speaker_b_name=self.agent_b.name,
                    max_turns=self.max_turns,
                    llm_provider=getattr(self.generator, "provider", None),
                    model_name=self.model_name,
                ),
            )
            if self.conversation_id is not None:
                self.log.info(f"conversation_created | id={self.conversation_id}")

        if self.hub is not None:
            await self.hub.initialize()
        try:
            while not self.state.is_complete:
                await self.execute_turn()
        finally:
            self._finalize()
            if self.hub is not None:
                await self.hub.cleanup()
        return self.state

    def _finalize(self) -> None:
        self.log.info(
            f"ai_chat_end | conv={self.conversation_id} turns={self.state.current_turn} "
            f"complete={self.state.is_complete}"
        )
        if self.topic_advisor is not None:
            self._record_last_message()
            self.topic_advisor.log_statistics()
        if self.conversation_id is not None and self.state.current_turn > 0:
            self._persist(
                "finalize",
                self.memory_store.update_conversation,
                self.conversation_id,
                total_turns=self.state.current_turn,
                is_complete=True,
            )

    def _record_last_message(self) -> None:
        # the final message is normally analyzed at the start of the next turn, which never comes
        if not self.state.messages:
            return
        history = self.topic_advisor.state.history
        if history and history[-1].turn_number == self.state.current_turn:
            return
        last = self.state.messages[-1]
        author = self.agent_a if last.speaker_id == self.agent_a.id else self.agent_b
        self.topic_advisor.analyze_message(last.content, last.speaker_id, self.state.current_turn, author)

    def get_state(self) -> ConversationState:
        return copy.deepcopy(self.state)
