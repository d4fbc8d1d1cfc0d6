from __future__ import annotations

import argparse
import asyncio
import json
import random
import sys
from typing import Any, Dict, Optional

from loguru import logger

from dialogue.agents import default_agents
from dialogue.config import SimulationConfig
from dialogue.engagement import EngagementScorer
from dialogue.exceptions import ConfigError, GenerationError, MemoryStoreError
from dialogue.flow import FlowAdvisor
from dialogue.hub import OrchestrationHub, TracePlugin
from dialogue.llm import LangChainGenerator
from dialogue.log import RunLogger
from dialogue.manager import TurnEngine
from dialogue.memory import EpisodicMemoryStore
from dialogue.states import ConversationState
from dialogue.topics import TopicAdvisor


def parse_args(argv=None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Run an unattended two-persona chat simulation")
    p.add_argument("--max-turns", type=int, default=None, help="Turns before the conversation ends (env MAX_TURNS)")
    p.add_argument("--infinite", action="store_true", help="Never stop on turn count; Ctrl+C or an LLM error ends the run")
    p.add_argument("--use-memories", action="store_true", help="Inject fragments of past conversations between the pair")
    p.add_argument("--db", type=str, default=None, help="SQLite database path (env MEMORY_DB_PATH)")
    p.add_argument("--no-pacing", action="store_true", help="Disable pauses and thinking delays")
    p.add_argument("--trace", action="store_true", help="Register the trace plugin (debug-level hub events)")
    p.add_argument("--json", action="store_true", help="Print the final transcript as JSON")
    p.add_argument("--seed", type=int, default=None, help="Seed for pacing decisions")
    return p.parse_args(argv)


def config_from_args(args: argparse.Namespace) -> SimulationConfig:
    overrides: Dict[str, Any] = {"max_turns": args.max_turns, "db_path": args.db}
    if args.infinite:
        overrides["infinite_mode"] = True
    if args.use_memories:
        overrides["use_past_memories"] = True
    if args.no_pacing:
        overrides["enable_pauses"] = False
        overrides["enable_thinking"] = False
    if args.trace:
        overrides["enable_trace_plugin"] = True
    return SimulationConfig.from_env(**overrides)


def build_engine(
    config: SimulationConfig,
    generator,
    store: Optional[EpisodicMemoryStore] = None,
    rng: Optional[random.Random] = None,
    log=None,
) -> TurnEngine:
    """Wire the advisors once and share them between the engine and the hub."""
    alice, bob = default_agents(temperature=config.temperature, max_tokens=config.max_tokens)
    topics = TopicAdvisor(
        lull_threshold=config.lull_threshold,
        min_message_length=config.min_message_length,
    )
    engagement = EngagementScorer(
        window_size=config.engagement_window,
        min_message_length=config.min_message_length,
        max_message_length=config.max_message_length,
        low_threshold=config.low_engagement_threshold,
        high_threshold=config.high_engagement_threshold,
    )
    flow = FlowAdvisor(
        enable_pauses=config.enable_pauses,
        enable_thinking=config.enable_thinking,
        enable_acknowledgment=config.enable_acknowledgment,
        min_pause=config.min_pause_seconds,
        max_pause=config.max_pause_seconds,
        thinking_probability=config.thinking_probability,
        acknowledgment_probability=config.acknowledgment_probability,
        rng=rng,
    )
    hub = OrchestrationHub(
        engagement=engagement,
        flow=flow,
        memory_store=store,
        max_context_messages=config.max_context_messages,
        enable_summarization=config.enable_summarization,
        plugins=[TracePlugin(enabled=config.enable_trace_plugin)],
    )
    return TurnEngine(
        alice,
        bob,
        generator,
        max_turns=config.max_turns,
        infinite_mode=config.infinite_mode,
        use_past_memories=config.use_past_memories,
        memory_store=store,
        topic_advisor=topics,
        engagement=engagement,
        flow=flow,
        hub=hub,
        pacing_enabled=config.pacing_enabled,
        memory_injection_window=config.memory_injection_window,
        memory_fragment_words=config.memory_fragment_words,
        memory_limit=config.memory_limit,
        low_engagement_patience=config.low_engagement_patience,
        thinking_seconds=config.thinking_seconds,
        model_name=config.model,
        log=log,
    )


def transcript(state: ConversationState, names: Dict[str, str]) -> Dict[str, Any]:
    return {
        "turns": state.current_turn,
        "complete": state.is_complete,
        "conversation": [
            {"speaker": names.get(m.speaker_id, m.speaker_id), "message": m.content}
            for m in state.messages
        ],
    }


async def main(argv=None) -> int:
    args = parse_args(argv)
    try:
        config = config_from_args(args)
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    run_log = RunLogger(config.log_level, config.log_dir).start()
    store = None
    try:
        store = EpisodicMemoryStore(config.db_path)
    except MemoryStoreError as e:
        logger.warning(f"memory_store_unavailable | path={config.db_path} err={e}")

    generator = LangChainGenerator(model=config.model, base_url=config.base_url, api_key=config.api_key)
    rng = random.Random(args.seed) if args.seed is not None else None
    engine = build_engine(config, generator, store, rng=rng, log=run_log.bind("engine"))
    names = {engine.agent_a.id: engine.agent_a.name, engine.agent_b.id: engine.agent_b.name}

    status = 0
    try:
        await engine.run()
    except GenerationError as e:
        logger.error(f"ai_chat_aborted | err={e}")
        status = 1
    except (KeyboardInterrupt, asyncio.CancelledError):
        logger.info("ai_chat_interrupted")
        status = 130
    finally:
        if store is not None:
            try:
                store.close()
            except MemoryStoreError as e:
                logger.warning(f"memory_store_close_failed | err={e}")
        await run_log.flush()
        run_log.close()

    result = transcript(engine.state, names)
    if args.json:
        print(json.dumps(result, ensure_ascii=False, indent=2))
    else:
        for turn in result["conversation"]:
            print(f"{turn['speaker']}: {turn['message']}\n")
    return status


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
