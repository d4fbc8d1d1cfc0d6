"""
Unattended two-persona conversation engine.

Modules:
- manager: TurnEngine turn loop (speaker alternation, prompt assembly, persistence)
- topics: TopicAdvisor keyword topic detection, lull detection, topic suggestions
- engagement: EngagementScorer sliding-window engagement metrics
- flow: FlowAdvisor beat/mood inference and pacing decisions
- hub: OrchestrationHub plugin registry, context-window summaries, delegation
- memory: SQLite episodic memory of past conversations
- agents: personas, system prompt and per-turn context block
- llm: LangChain ChatOpenAI generation (OpenAI or any OpenAI-compatible server)
- config / log: SimulationConfig and RunLogger
"""
