"""
Intelligence provider capability.

The generator only depends on the ``IntelligenceProvider`` protocol; the
LangChain adapter lets any chat model (anything with ``ainvoke``) serve as
the provider.
"""

import json
from typing import Any, Protocol, runtime_checkable

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import HumanMessage, SystemMessage

from .logger import logger


@runtime_checkable
class IntelligenceProvider(Protocol):
    """Opaque LLM-backed capability: prompt in, JSON out (or raise)."""

    async def request(
        self,
        prompt: str,
        *,
        max_tokens: int,
        temperature: float,
        system: str | None = None,
    ) -> dict[str, Any] | str: ...


def parse_json_response(content: Any) -> dict[str, Any]:
    """Extract the first JSON object from a model reply.

    Raises ValueError when the reply holds no JSON object.
    """
    if isinstance(content, dict):
        return content
    if not isinstance(content, str):
        raise ValueError(f"Unsupported response type: {type(content).__name__}")

    start = content.find("{")
    end = content.rfind("}") + 1
    if start < 0 or end <= start:
        raise ValueError("Response contains no JSON object")
    try:
        parsed = json.loads(content[start:end])
    except json.JSONDecodeError as e:
        raise ValueError(f"Response JSON is malformed: {e.msg}") from e
    if not isinstance(parsed, dict):
        raise ValueError("Response JSON is not an object")
    return parsed


class LangChainIntelligenceProvider:
    """Adapts a langchain chat model to the IntelligenceProvider protocol."""

    def __init__(self, llm: BaseChatModel):
        self.llm = llm

    async def request(
        self,
        prompt: str,
        *,
        max_tokens: int,
        temperature: float,
        system: str | None = None,
    ) -> dict[str, Any]:
        messages = []
        if system:
            messages.append(SystemMessage(content=system))
        messages.append(HumanMessage(content=prompt))

        # Not every chat model accepts sampling kwargs at call time
        try:
            bound = self.llm.bind(max_tokens=max_tokens, temperature=temperature)
        except (AttributeError, NotImplementedError, TypeError):
            bound = self.llm

        response = await bound.ainvoke(messages)
        content = getattr(response, "content", response)
        if isinstance(content, list):
            content = "".join(
                part.get("text", "") if isinstance(part, dict) else str(part) for part in content
            )
        logger.debug(f"[SCHEMA] Provider replied with {len(str(content))} chars")
        return parse_json_response(content)
