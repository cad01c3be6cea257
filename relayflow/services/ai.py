"""AI service backed by a pydantic-ai agent."""

from __future__ import annotations

import logging
from typing import Any, Optional

from pydantic_ai import Agent
from pydantic_ai.models import Model

logger = logging.getLogger(__name__)

DEFAULT_INSTRUCTIONS = (
    "You are an automation assistant for a project management workspace. "
    "Answer with the requested content only, without preamble."
)


class PydanticAIService:
    """``AIService`` implementation delegating to a ``pydantic_ai.Agent``.

    ``model`` is anything pydantic-ai accepts: a model name such as
    ``"openai:gpt-4o"`` or a ``Model`` instance (tests pass ``TestModel``).
    """

    def __init__(
        self, model: Model | str, instructions: Optional[str] = None
    ) -> None:
        self.model = model
        self._text_agent = Agent(model, system_prompt=instructions or DEFAULT_INSTRUCTIONS)
        self._structured_agent = Agent(
            model,
            output_type=dict,
            system_prompt=instructions or DEFAULT_INSTRUCTIONS,
        )

    async def generate(self, prompt: str, structured: bool = False) -> Any:
        agent = self._structured_agent if structured else self._text_agent
        logger.debug(f"Running AI prompt ({len(prompt)} chars, structured={structured})")
        result = await agent.run(prompt)
        return result.output
