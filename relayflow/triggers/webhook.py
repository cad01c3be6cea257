"""Inbound webhook verification."""

from __future__ import annotations

import hashlib
import hmac
import logging
from ipaddress import ip_address, ip_network
from typing import Mapping, Optional, Union

from ..constants import SIGNATURE_HEADERS
from ..errors import WebhookRejectedError
from ..models import WebhookTriggerConfig

logger = logging.getLogger(__name__)

Body = Union[str, bytes]


def _as_bytes(body: Body) -> bytes:
    return body.encode("utf-8") if isinstance(body, str) else body


def compute_signature(secret: str, body: Body) -> str:
    """HMAC-SHA256 of ``body`` keyed by ``secret``, hex encoded."""
    return hmac.new(secret.encode("utf-8"), _as_bytes(body), hashlib.sha256).hexdigest()


def verify_signature(secret: str, body: Body, signature: Optional[str]) -> bool:
    if not signature:
        return False
    # accept GitHub-style "sha256=<hex>" as well as the bare digest
    if signature.startswith("sha256="):
        signature = signature[len("sha256=") :]
    # bytes, so a non-ASCII signature compares unequal instead of raising
    expected = compute_signature(secret, body).encode()
    return hmac.compare_digest(expected, signature.strip().lower().encode("utf-8", "replace"))


def signature_from_headers(headers: Optional[Mapping[str, str]]) -> Optional[str]:
    if not headers:
        return None
    lowered = {key.lower(): value for key, value in headers.items()}
    return next((lowered[name] for name in SIGNATURE_HEADERS if name in lowered), None)


def _ip_allowed(client_ip: Optional[str], allowed: list[str]) -> bool:
    if not client_ip:
        return False
    try:
        address = ip_address(client_ip)
    except ValueError:
        return False
    for entry in allowed:
        try:
            if address in ip_network(entry, strict=False):
                return True
        except ValueError:
            logger.warning(f"Ignoring malformed allowed_ips entry {entry!r}")
    return False


def check_webhook(
    config: WebhookTriggerConfig,
    body: Body,
    signature: Optional[str] = None,
    client_ip: Optional[str] = None,
) -> None:
    """Raise ``WebhookRejectedError`` unless the call may start a run."""
    if config.allowed_ips and not _ip_allowed(client_ip, config.allowed_ips):
        raise WebhookRejectedError(f"IP address not allowed: {client_ip}")
    if config.secret and not verify_signature(config.secret, body, signature):
        raise WebhookRejectedError("Invalid webhook signature")
