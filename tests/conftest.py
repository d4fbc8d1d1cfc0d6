from __future__ import annotations

from typing import List, Optional

import pytest
from loguru import logger

from dialogue.agents import ALICE, BOB, PersonaAgent
from dialogue.exceptions import GenerationError, MemoryStoreError
from dialogue.llm import GenerationResult
from dialogue.memory import ConversationRecord, EpisodicMemoryStore, MessageRecord


class FakeGenerator:
    """Returns canned replies in order and records every request."""

    provider = "fake"

    def __init__(self, replies: Optional[List[str]] = None, fail_on: Optional[int] = None) -> None:
        self.replies = list(replies or [])
        self.fail_on = fail_on
        self.requests = []

    async def generate(self, request):
        self.requests.append(request)
        n = len(self.requests)
        if self.fail_on is not None and n >= self.fail_on:
            raise GenerationError("backend unavailable")
        if self.replies:
            content = self.replies[(n - 1) % len(self.replies)]
        else:
            content = f"This is reply number {n} about our chat."
        return GenerationResult(content=content, finish_reason="stop")


class BrokenStore:
    """Every persistence call fails."""

    def create_conversation(self, record):
        raise MemoryStoreError("disk full")

    def update_conversation(self, conversation_id, total_turns=None, is_complete=None):
        raise MemoryStoreError("disk full")

    def save_message(self, record):
        raise MemoryStoreError("disk full")

    def get_relevant_past_messages(self, a, b, limit=10):
        raise MemoryStoreError("disk full")

    def get_weighted_memories(self, a, b, topic_hint=None, limit=2):
        raise MemoryStoreError("disk full")


class FlakyStore(EpisodicMemoryStore):
    """Creates conversations but cannot save messages."""

    def save_message(self, record):
        raise MemoryStoreError("database is locked")


class StubRandom:
    """Deterministic stand-in for random.Random: fixed draws, uniform() returns the lower bound."""

    def __init__(self, value: float = 0.0) -> None:
        self.value = value

    def random(self) -> float:
        return self.value

    def uniform(self, a: float, b: float) -> float:
        return a


class SleepRecorder:
    def __init__(self) -> None:
        self.calls: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def alice():
    return PersonaAgent("alice", ALICE, BOB.name, system_prompt="You are Alice.")


@pytest.fixture
def bob():
    return PersonaAgent("bob", BOB, ALICE.name, system_prompt="You are Bob.")


@pytest.fixture
def store():
    s = EpisodicMemoryStore(":memory:")
    yield s
    s.close()


@pytest.fixture
def sleeper():
    return SleepRecorder()


@pytest.fixture
def log_messages():
    """Collect formatted loguru messages (DEBUG and above) for the duration of a test."""
    messages: List[str] = []
    sink_id = logger.add(lambda m: messages.append(str(m).rstrip("\n")), level="DEBUG", format="{level} | {message}")
    yield messages
    logger.remove(sink_id)


def seed_past_conversation(store: EpisodicMemoryStore, contents: List[str], complete: bool = True,
                           a: str = "alice", b: str = "bob") -> int:
    conv_id = store.create_conversation(
        ConversationRecord(speaker_a_id=a, speaker_b_id=b, speaker_a_name=a.title(),
                           speaker_b_name=b.title(), max_turns=len(contents))
    )
    for i, text in enumerate(contents, start=1):
        store.save_message(
            MessageRecord(conversation_id=conv_id, turn_number=i, role="assistant",
                          content=text, speaker_id=a if i % 2 else b)
        )
    store.update_conversation(conv_id, total_turns=len(contents), is_complete=complete)
    return conv_id
