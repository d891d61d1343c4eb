"""Webhook alerting for high-severity security events.

The monitor hands over ``SecurityEvent.to_dict()`` output. Discord and Slack
webhooks get a colored embed/attachment; any other URL gets the raw event
wrapped in a small envelope.
"""

import json
import logging

import httpx

logger = logging.getLogger(__name__)

# Keep alert delivery from holding a request task
_WEBHOOK_TIMEOUT = 5.0

_SEVERITY_COLORS = {"low": 0x95A5A6, "medium": 0x3498DB, "high": 0xE67E22, "critical": 0xE74C3C}

_MAX_DETAILS_CHARS = 1000


def _summary(event: dict) -> str:
    return f"{event.get('severity', 'unknown').upper()} {event.get('type')} from {event.get('ip')}"


def _details_block(event: dict) -> str:
    rendered = json.dumps(event.get("details") or {}, indent=2, default=str)
    return rendered[:_MAX_DETAILS_CHARS]


def build_alert_payload(event: dict, webhook_url: str) -> dict:
    """Shape ``event`` for the webhook service behind ``webhook_url``."""
    severity = event.get("severity", "high")
    color = _SEVERITY_COLORS.get(severity, _SEVERITY_COLORS["high"])

    if "discord.com/api/webhooks" in webhook_url:
        return {
            "embeds": [
                {
                    "title": f"Security event: {event.get('type')}",
                    "description": f"```json\n{_details_block(event)}\n```",
                    "color": color,
                    "fields": [
                        {"name": "Severity", "value": severity, "inline": True},
                        {"name": "IP", "value": str(event.get("ip")), "inline": True},
                    ],
                    "timestamp": event.get("timestamp"),
                }
            ]
        }

    if "hooks.slack.com" in webhook_url:
        return {
            "text": _summary(event),
            "attachments": [
                {
                    "color": f"#{color:06x}",
                    "text": f"```{_details_block(event)}```",
                    "footer": event.get("user_agent", ""),
                }
            ],
        }

    return {"source": "vipbar", "summary": _summary(event), "event": event}


async def send_security_alert(webhook_url: str | None, event: dict) -> None:
    """POST ``event`` to ``webhook_url``.

    Delivery failures are logged and swallowed; an alert must never fail
    the request that produced the event.
    """
    if not webhook_url:
        return

    payload = build_alert_payload(event, webhook_url)
    try:
        async with httpx.AsyncClient(timeout=_WEBHOOK_TIMEOUT) as client:
            response = await client.post(webhook_url, json=payload)
            if response.status_code >= 400:
                logger.warning("Security alert webhook failed: HTTP %d", response.status_code)
    except Exception as e:
        logger.warning("Security alert webhook failed: %s", e)
