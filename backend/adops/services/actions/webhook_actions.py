"""
adops/services/actions/webhook_actions.py

Outbound webhook action.

The JSON body is signed with HMAC-SHA256 over the exact bytes sent, using the
rule's secret, and carried in the X-Webhook-Signature header (hex digest).
A non-2xx response or a transport error fails the action. There is no retry;
failures stay visible in the execution log.
"""
from datetime import datetime
from typing import Any, Dict
import hashlib
import hmac
import json

import requests

from adops.models.schemas import EmitWebhookConfig
from adops.services.actions.base import ActionContext, ActionExecutorRegistry
from workflow_core.errors import ExternalError

import logging

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Webhook-Signature"


def sign_payload(body: bytes, secret: str) -> str:
    """hex(HMAC-SHA256(secret, body))"""
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def build_webhook_body(config: EmitWebhookConfig, ctx: ActionContext) -> bytes:
    body = {
        "event": ctx.event.event.value,
        "entityType": ctx.entity_type,
        "entityId": ctx.entity_id,
        "organizationId": ctx.tenant.org_id,
        "triggeredBy": ctx.trigger_id,
        "timestamp": datetime.utcnow().isoformat(),
        "data": config.payload if config.payload is not None else ctx.event.data,
    }
    return json.dumps(body, default=str, separators=(",", ":")).encode("utf-8")


def register_webhook_actions(registry: ActionExecutorRegistry) -> None:
    """Register emit_webhook."""

    @registry.register(
        name="emit_webhook",
        description="Send a signed JSON payload to an external URL.",
        side_effects=["calls_external_service"],
    )
    def handle_emit_webhook(config: EmitWebhookConfig, ctx: ActionContext) -> Dict[str, Any]:
        body = build_webhook_body(config, ctx)
        headers = {"Content-Type": "application/json", **config.headers}
        headers[SIGNATURE_HEADER] = sign_payload(body, config.secret)
        timeout = config.timeout or ctx.webhook_timeout

        try:
            response = requests.request(config.method, config.url, data=body, headers=headers, timeout=timeout)
        except requests.exceptions.RequestException as e:
            raise ExternalError(f"Webhook delivery to {config.url} failed: {e}", details={"url": config.url}) from e

        if not 200 <= response.status_code < 300:
            raise ExternalError(
                f"Webhook {config.url} responded with HTTP {response.status_code}",
                details={"url": config.url, "status_code": response.status_code},
            )

        logger.info(f"[{ctx.tenant}] webhook {config.method} {config.url} -> {response.status_code}")
        return {"url": config.url, "status_code": response.status_code}


__all__ = ["register_webhook_actions", "sign_payload", "build_webhook_body", "SIGNATURE_HEADER"]
