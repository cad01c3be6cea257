"""Trigger matching for events, schedules, manual runs and webhooks."""

from .events import matches_event, matches_filters
from .matcher import TriggerMatcher
from .schedule import due_occurrence, is_valid_schedule, schedule_expression
from .webhook import check_webhook, compute_signature, verify_signature

__all__ = [
    "TriggerMatcher",
    "check_webhook",
    "compute_signature",
    "due_occurrence",
    "is_valid_schedule",
    "matches_event",
    "matches_filters",
    "schedule_expression",
    "verify_signature",
]
