"""Email, in-app notification, push and Slack actions."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from ..context import WorkflowContext
from ..errors import ActionError
from ..models import utcnow
from ..services import ActionServices
from .registry import BUILTIN_ACTIONS, ActionResult, require_service, resolve_ref

logger = logging.getLogger(__name__)


class SendEmailConfig(BaseModel):
    to: str
    subject: str
    body_html: str
    body_text: Optional[str] = None
    from_name: Optional[str] = None


class SendNotificationConfig(BaseModel):
    user_id: Optional[str] = None
    user_field: Optional[str] = Field(default=None, description="e.g. task.assignee_id")
    title: str
    message: str
    type: str = "workflow"
    metadata: Dict[str, Any] = Field(default_factory=dict)


class SendSlackConfig(BaseModel):
    channel: str = Field(..., min_length=1)
    message: str
    use_blocks: bool = False
    notify_channel: bool = False
    username: Optional[str] = None
    icon_emoji: Optional[str] = None


@BUILTIN_ACTIONS.register("send_email", SendEmailConfig, "Send Email")
async def send_email(
    config: SendEmailConfig, context: WorkflowContext, services: ActionServices
) -> ActionResult:
    email = require_service(services.email, "email", "send_email")
    to = config.to.strip()
    if not to:
        raise ActionError("No recipient email address resolved", action_type="send_email")
    message_id = await email.send_email(
        to=to,
        subject=config.subject,
        body_html=config.body_html,
        body_text=config.body_text,
        from_name=config.from_name,
    )
    logger.info(f"Email sent to {to}")
    return ActionResult(
        {
            "success": True,
            "message_id": message_id,
            "to": to,
            "subject": config.subject,
            "sent_at": utcnow().isoformat(),
        }
    )


def _notification_user(config: SendNotificationConfig, context: WorkflowContext) -> str:
    user_id = resolve_ref(config.user_id, config.user_field, context)
    if not user_id:
        raise ActionError("No user ID found for notification")
    return user_id


@BUILTIN_ACTIONS.register("send_notification", SendNotificationConfig, "Send In-App Notification")
async def send_notification(
    config: SendNotificationConfig, context: WorkflowContext, services: ActionServices
) -> ActionResult:
    notifier = require_service(services.notifier, "notification", "send_notification")
    user_id = _notification_user(config, context)
    notification_id = await notifier.notify(
        user_id=user_id,
        title=config.title,
        message=config.message,
        type=config.type,
        metadata=config.metadata,
    )
    return ActionResult(
        {
            "success": True,
            "notification_id": notification_id,
            "user_id": user_id,
            "sent_at": utcnow().isoformat(),
        }
    )


@BUILTIN_ACTIONS.register("send_push", SendNotificationConfig, "Send Push Notification")
async def send_push(
    config: SendNotificationConfig, context: WorkflowContext, services: ActionServices
) -> ActionResult:
    notifier = require_service(services.notifier, "notification", "send_push")
    user_id = _notification_user(config, context)
    devices = await notifier.push(
        user_id=user_id, title=config.title, message=config.message, data=config.metadata
    )
    if not devices:
        logger.info(f"No push subscriptions for user {user_id}")
    return ActionResult(
        {
            "success": True,
            "user_id": user_id,
            "devices": devices,
            "sent_at": utcnow().isoformat(),
        }
    )


@BUILTIN_ACTIONS.register("send_slack", SendSlackConfig, "Send Slack Message")
async def send_slack(
    config: SendSlackConfig, context: WorkflowContext, services: ActionServices
) -> ActionResult:
    slack = require_service(services.slack, "Slack", "send_slack")
    text = f"<!channel> {config.message}" if config.notify_channel else config.message
    blocks = None
    if config.use_blocks:
        blocks = [{"type": "section", "text": {"type": "mrkdwn", "text": text}}]
    posted = await slack.post_message(
        channel=config.channel,
        text=text,
        username=config.username,
        icon_emoji=config.icon_emoji,
        blocks=blocks,
    )
    return ActionResult(
        {
            "success": True,
            "channel": posted.get("channel", config.channel),
            "ts": posted.get("ts"),
            "sent_at": utcnow().isoformat(),
        }
    )
