"""AI generate, categorize and summarize actions."""

from __future__ import annotations

import json
import logging
from typing import List

from pydantic import BaseModel, Field

from ..context import WorkflowContext
from ..models import utcnow
from ..services import ActionServices
from ..templating import get_nested_value
from .registry import BUILTIN_ACTIONS, ActionResult, require_service, truncate

logger = logging.getLogger(__name__)


class AIGenerateConfig(BaseModel):
    prompt_template: str = Field(..., min_length=1)
    output_field: str = "result"
    structured: bool = False


class AICategorizeConfig(BaseModel):
    field_to_analyze: str
    categories: List[str] = Field(..., min_length=1)
    output_field: str = "category"


class AISummarizeConfig(BaseModel):
    field_to_summarize: str
    max_length: int = Field(default=500, ge=1)
    output_field: str = "summary"


def _text_at(context: WorkflowContext, path: str) -> str | None:
    value = get_nested_value(context.as_lookup(), path)
    if value is None or value == "":
        return None
    return value if isinstance(value, str) else json.dumps(value, default=str)


@BUILTIN_ACTIONS.register("ai_generate", AIGenerateConfig, "AI Generate Content")
async def ai_generate(
    config: AIGenerateConfig, context: WorkflowContext, services: ActionServices
) -> ActionResult:
    ai = require_service(services.ai, "AI", "ai_generate")
    # the prompt template was already interpolated against the context
    prompt = config.prompt_template
    result = await ai.generate(prompt, structured=config.structured)
    return ActionResult(
        {
            "success": True,
            config.output_field: result,
            "prompt_used": truncate(prompt, 200),
            "generated_at": utcnow().isoformat(),
        }
    )


@BUILTIN_ACTIONS.register("ai_categorize", AICategorizeConfig, "AI Categorize")
async def ai_categorize(
    config: AICategorizeConfig, context: WorkflowContext, services: ActionServices
) -> ActionResult:
    ai = require_service(services.ai, "AI", "ai_categorize")
    text = _text_at(context, config.field_to_analyze)
    if text is None:
        logger.warning(f"No text found to categorize at {config.field_to_analyze}")
        return ActionResult(
            {
                "success": False,
                "skipped": True,
                "reason": f"No text found at {config.field_to_analyze}",
                config.output_field: None,
            }
        )

    prompt = (
        "Analyze the following text and categorize it into one of these categories: "
        f"{', '.join(config.categories)}.\n\n"
        f'Text: "{text[:2000]}"\n\n'
        "Respond with ONLY the category name, nothing else. The category must be "
        "exactly one of the options listed above."
    )
    answer = str(await ai.generate(prompt)).strip()
    matched = next((c for c in config.categories if c.lower() == answer.lower()), None)
    if matched is None:
        logger.warning(f"AI returned category {answer!r} outside {config.categories}")
    return ActionResult(
        {
            "success": True,
            config.output_field: matched or answer,
            "analyzed_text": truncate(text, 100),
            "categorized_at": utcnow().isoformat(),
        }
    )


@BUILTIN_ACTIONS.register("ai_summarize", AISummarizeConfig, "AI Summarize")
async def ai_summarize(
    config: AISummarizeConfig, context: WorkflowContext, services: ActionServices
) -> ActionResult:
    ai = require_service(services.ai, "AI", "ai_summarize")
    text = _text_at(context, config.field_to_summarize)
    if text is None:
        logger.warning(f"No text found to summarize at {config.field_to_summarize}")
        return ActionResult(
            {
                "success": False,
                "skipped": True,
                "reason": f"No text found at {config.field_to_summarize}",
                config.output_field: None,
            }
        )

    prompt = (
        f"Summarize the following text in {config.max_length} characters or less. "
        "Be concise and capture the key points.\n\n"
        f'Text: "{text[:5000]}"\n\nSummary:'
    )
    summary = str(await ai.generate(prompt)).strip()
    return ActionResult(
        {
            "success": True,
            config.output_field: summary,
            "original_length": len(text),
            "summary_length": len(summary),
            "summarized_at": utcnow().isoformat(),
        }
    )
