from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from loguru import logger


_DEFAULT_PROMPT = (
    "You are {name}, a real person having a genuine conversation with {counterpart}.\n\n"
    "## Your Background\n{background}\n\n"
    "## Your Personality\nYou are {traits}.\n\n"
    "## How You Talk\n{speaking_style}\n\n"
    "## Your Interests\nYou naturally enjoy discussing: {interests}.\n\n"
    "## Your Quirks\n{quirks}\n\n"
    "## Things You Don't Do\n{avoidances}\n\n"
    "Respond in 1-4 sentences, never break character or acknowledge being an AI.\n\n"
    "You are {name}. Speak as yourself."
)


def _load_prompt_template() -> str:
    # Allow override via PROMPTS_DIR; else use local prompts/persona_system_prompt.md
    base_dir = os.getenv("PROMPTS_DIR")
    if base_dir:
        path = Path(base_dir) / "persona_system_prompt.md"
    else:
        path = Path(__file__).resolve().parents[1] / "prompts" / "persona_system_prompt.md"
    try:
        return path.read_text(encoding="utf-8")
    except OSError as e:
        logger.warning(f"Falling back to default persona prompt: {e}")
        return _DEFAULT_PROMPT


@dataclass
class Persona:
    name: str
    background: str
    speaking_style: str
    traits: List[str] = field(default_factory=list)
    interests: List[str] = field(default_factory=list)
    quirks: List[str] = field(default_factory=list)
    avoidances: List[str] = field(default_factory=list)


def _join_traits(traits: List[str]) -> str:
    if len(traits) <= 1:
        return "".join(traits)
    if len(traits) == 2:
        return f"{traits[0]} and {traits[1]}"
    return f"{', '.join(traits[:-1])}, and {traits[-1]}"


def _bullets(items: List[str]) -> str:
    return "\n".join(f"- {i}" for i in items)


def build_system_prompt(persona: Persona, counterpart_name: str, template: Optional[str] = None) -> str:
    tpl = template if template is not None else _load_prompt_template()
    return tpl.format(
        name=persona.name,
        counterpart=counterpart_name,
        background=persona.background.strip(),
        traits=_join_traits(persona.traits),
        speaking_style=persona.speaking_style.strip(),
        interests=", ".join(persona.interests),
        quirks=_bullets(persona.quirks),
        avoidances=_bullets(persona.avoidances),
    ).strip()


class PersonaAgent:
    def __init__(
        self,
        agent_id: str,
        persona: Persona,
        counterpart_name: str,
        temperature: float = 0.8,
        max_tokens: int = 300,
        system_prompt: Optional[str] = None,
    ) -> None:
        self.id = agent_id
        self.persona = persona
        self.counterpart_name = counterpart_name
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.system_prompt = system_prompt or build_system_prompt(persona, counterpart_name)

    @property
    def name(self) -> str:
        return self.persona.name

    def __repr__(self) -> str:
        return f"PersonaAgent(id={self.id!r}, name={self.persona.name!r})"


def build_context_block(
    counterpart_name: str,
    is_opening: bool = False,
    topic_guidance: Optional[str] = None,
    memories: Optional[List[str]] = None,
    flow_hint: Optional[str] = None,
) -> Optional[str]:
    """Per-turn context appended after the history as a final user message."""
    blocks = []
    if is_opening:
        blocks.append(
            f"[Setting: You and {counterpart_name} just met. Start the conversation naturally.]"
        )
    if topic_guidance:
        blocks.append(f"[The conversation could use a nudge. {topic_guidance}]")
    if memories:
        recalled = "\n".join(f"- {m}" for m in memories)
        blocks.append(f"[You recall from previous conversations:\n{recalled}]")
    if flow_hint:
        blocks.append(flow_hint)
    return "\n\n".join(blocks) if blocks else None


ALICE = Persona(
    name="Alice",
    traits=["curious", "thoughtful", "empathetic", "articulate"],
    background=(
        "Alice teaches history at a high school in a small New England town. She enjoys deep "
        "conversations about history, psychology and human nature, values authenticity and "
        "tends to ask meaningful questions."
    ),
    speaking_style=(
        "Clear and articulate but brief, typically 1-3 sentences. Asks concise follow-up "
        "questions when genuinely curious and uses everyday language."
    ),
    interests=[
        "history and literature",
        "psychology and human behavior",
        "philosophy and ethics",
        "books and storytelling",
        "exploring different cultures",
    ],
    quirks=[
        "often asks 'why' or 'how come' questions",
        "relates topics to broader concepts",
        "remembers details from earlier in the conversation",
    ],
    avoidances=[
        "making assumptions without asking",
        "being dismissive of other perspectives",
        "technical jargon without explanation",
    ],
)

BOB = Persona(
    name="Bob",
    traits=["easygoing", "witty", "storyteller", "observant"],
    background=(
        "Bob works in marketing in New York City after stints in Los Angeles and Boston, and "
        "has travelled widely for work. He is social, loves telling anecdotes and does not take "
        "himself too seriously."
    ),
    speaking_style=(
        "Casual and conversational with a playful sense of humor. Tells short stories and "
        "speaks in a relaxed, friendly manner."
    ),
    interests=[
        "local events and happenings",
        "latest technology and gadgets",
        "music and concerts",
        "food and restaurants",
        "travel stories and experiences",
        "casual sports and outdoor activities",
    ],
    quirks=[
        "shares short personal anecdotes",
        "uses light humor and occasional wordplay",
        "connects topics through personal experiences",
    ],
    avoidances=[
        "being overly serious or formal",
        "long-winded explanations",
        "pretending to know things he doesn't",
    ],
)


def default_agents(temperature: float = 0.8, max_tokens: int = 300) -> tuple[PersonaAgent, PersonaAgent]:
    alice = PersonaAgent("alice", ALICE, BOB.name, temperature=temperature, max_tokens=max_tokens)
    bob = PersonaAgent("bob", BOB, ALICE.name, temperature=temperature, max_tokens=max_tokens)
    return alice, bob
