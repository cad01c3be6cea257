"""Outbound HTTP call action."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Literal, Optional

import httpx
from pydantic import BaseModel, Field

from ..context import WorkflowContext
from ..errors import ActionError
from ..models import utcnow
from ..services import ActionServices
from ..utils.retry import schedule_retry
from .registry import BUILTIN_ACTIONS, ActionResult

logger = logging.getLogger(__name__)


class WebhookCallConfig(BaseModel):
    url: str = Field(..., min_length=1)
    method: Literal["GET", "POST", "PUT", "PATCH", "DELETE"] = "POST"
    headers: Dict[str, str] = Field(default_factory=dict)
    body_template: Optional[str] = None
    output_field: str = "response"
    timeout_ms: Optional[int] = Field(default=None, ge=1)
    max_retries: Optional[int] = Field(default=None, ge=0)


def _request_kwargs(config: WebhookCallConfig) -> Dict[str, Any]:
    headers = dict(config.headers)
    kwargs: Dict[str, Any] = {"headers": headers}
    if config.body_template is None or config.method in ("GET", "DELETE"):
        return kwargs
    try:
        kwargs["json"] = json.loads(config.body_template)
    except ValueError:
        headers.setdefault("content-type", "text/plain")
        kwargs["content"] = config.body_template
    return kwargs


def _response_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


async def _send(
    client: httpx.AsyncClient, config: WebhookCallConfig, timeout_ms: int, max_retries: int
) -> httpx.Response:
    kwargs = _request_kwargs(config)
    timeout = httpx.Timeout(timeout_ms / 1000)
    attempt = 0
    while True:
        try:
            response = await client.request(
                config.method, config.url, timeout=timeout, **kwargs
            )
        except httpx.TimeoutException as exc:
            if attempt >= max_retries:
                raise ActionError(
                    f"Webhook call timed out after {timeout_ms}ms: {config.url}"
                ) from exc
            logger.warning(f"Webhook timeout calling {config.url}, retrying")
        except httpx.TransportError as exc:
            if attempt >= max_retries:
                raise ActionError(f"Webhook call failed: {exc}") from exc
            logger.warning(f"Webhook transport error calling {config.url}: {exc}, retrying")
        else:
            if response.status_code < 500 or attempt >= max_retries:
                return response
            logger.warning(
                f"Webhook {config.url} returned {response.status_code}, retrying"
            )
        await schedule_retry(attempt)
        attempt += 1


@BUILTIN_ACTIONS.register("webhook_call", WebhookCallConfig, "Call Webhook")
async def webhook_call(
    config: WebhookCallConfig, context: WorkflowContext, services: ActionServices
) -> ActionResult:
    timeout_ms = config.timeout_ms or services.webhook.default_timeout_ms
    max_retries = (
        config.max_retries if config.max_retries is not None else services.webhook.max_retries
    )
    logger.info(f"Calling webhook {config.method} {config.url}")

    if services.http_client is not None:
        response = await _send(services.http_client, config, timeout_ms, max_retries)
    else:
        async with httpx.AsyncClient() as client:
            response = await _send(client, config, timeout_ms, max_retries)

    if response.status_code >= 400:
        raise ActionError(
            f"Webhook returned HTTP {response.status_code}: {response.text[:200]}"
        )
    return ActionResult(
        {
            "success": True,
            config.output_field: {
                "status": response.status_code,
                "headers": dict(response.headers),
                "body": _response_body(response),
            },
            "called_at": utcnow().isoformat(),
        }
    )
