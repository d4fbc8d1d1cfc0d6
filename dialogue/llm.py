from __future__ import annotations

import time
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Dict, List, Optional

from loguru import logger
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI

from .exceptions import GenerationError

LOCAL_SERVER_API_KEY = "not-needed"


@dataclass
class GenerationRequest:
    system_prompt: str
    messages: List[Dict[str, str]]  # [{"role": "user"|"assistant", "content": ...}]
    temperature: float = 0.8
    max_tokens: int = 300


@dataclass
class GenerationResult:
    content: str
    finish_reason: Optional[str] = None
    usage: Dict[str, int] = field(default_factory=dict)


@lru_cache(maxsize=8)
def get_openai_chat(
    model: str,
    temperature: float,
    max_tokens: Optional[int],
    base_url: Optional[str] = None,
    api_key: Optional[str] = None,
) -> ChatOpenAI:
    """Return a cached LangChain ChatOpenAI client.

    ``base_url`` points the client at any OpenAI-compatible server, e.g. a local
    Ollama at ``http://localhost:11434/v1``.
    """
    logger.debug(f"Initializing OpenAI chat model={model} temperature={temperature} base_url={base_url}")
    kwargs = {"model": model, "temperature": temperature}
    if max_tokens:
        kwargs["max_tokens"] = max_tokens
    if base_url:
        kwargs["base_url"] = base_url
        # local servers ignore the key but the client refuses to build without one
        api_key = api_key or LOCAL_SERVER_API_KEY
    if api_key:
        kwargs["api_key"] = api_key
    return ChatOpenAI(**kwargs)


def to_langchain_messages(request: GenerationRequest) -> List[BaseMessage]:
    out: List[BaseMessage] = [SystemMessage(content=request.system_prompt)]
    for m in request.messages:
        if m.get("role") == "assistant":
            out.append(AIMessage(content=m.get("content", "")))
        else:
            out.append(HumanMessage(content=m.get("content", "")))
    return out


class LangChainGenerator:
    """Generation contract on top of a LangChain chat model."""

    provider = "openai"

    def __init__(
        self,
        model: str = "gpt-4o-mini",
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        log=None,
    ) -> None:
        self.model = model
        self.base_url = base_url
        self.api_key = api_key
        self.log = log or logger
        if base_url:
            self.provider = "openai-compatible"

    def _client(self, request: GenerationRequest) -> ChatOpenAI:
        return get_openai_chat(
            self.model, float(request.temperature), int(request.max_tokens), self.base_url, self.api_key
        )

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        messages = to_langchain_messages(request)
        t0 = time.perf_counter()
        try:
            result = await self._client(request).ainvoke(messages)
        except Exception as e:
            raise GenerationError(f"{self.provider} generation failed (model={self.model}): {e}") from e
        dt = time.perf_counter() - t0

        text = result.content if isinstance(result.content, str) else str(result.content or "")
        text = text.strip()
        meta = getattr(result, "response_metadata", None) or {}
        usage_meta = getattr(result, "usage_metadata", None) or {}
        usage = {
            "prompt_tokens": usage_meta.get("input_tokens", 0),
            "completion_tokens": usage_meta.get("output_tokens", 0),
            "total_tokens": usage_meta.get("total_tokens", 0),
        }
        self.log.info(
            f"llm_call | model={self.model} dt={dt:.2f}s finish={meta.get('finish_reason')} "
            f"tokens={usage['total_tokens']}"
        )
        if not text:
            self.log.warning(f"llm_empty_reply | model={self.model}")
        return GenerationResult(content=text, finish_reason=meta.get("finish_reason"), usage=usage)
