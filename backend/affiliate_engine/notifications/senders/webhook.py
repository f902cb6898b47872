from __future__ import annotations

from datetime import datetime, timezone
import hashlib
import hmac
import json
from typing import Any

import requests

from affiliate_engine.notifications.senders.base import NotificationSender


def _encode_payload(payload: dict[str, Any]) -> str:
    return json.dumps(payload, separators=(",", ":"), sort_keys=True, default=str)


def _sign_payload(secret: str, timestamp: str, body: str) -> str:
    message = f"{timestamp}.{body}".encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


class WebhookSender(NotificationSender):
    """Relays rendered emails as signed JSON to an external delivery service."""

    def __init__(self, url: str, *, secret: str | None = None, timeout: float = 10.0):
        if not url:
            raise ValueError("Mailer webhook URL not configured")
        self.url = url
        self.secret = secret
        self.timeout = timeout

    def send(
        self,
        *,
        template: str,
        to_email: str,
        subject: str,
        body: str,
        context: dict[str, Any],
    ) -> None:
        body_payload = {
            "template": template,
            "to": to_email,
            "subject": subject,
            "body": body,
            "context": context,
        }
        encoded = _encode_payload(body_payload)
        headers = {"Content-Type": "application/json"}
        if self.secret:
            timestamp = str(int(datetime.now(timezone.utc).timestamp()))
            headers["X-Timestamp"] = timestamp
            headers["X-Signature"] = _sign_payload(self.secret, timestamp, encoded)
        resp = requests.post(self.url, data=encoded, headers=headers, timeout=self.timeout)
        if resp.status_code >= 400:
            raise ValueError(f"Mailer webhook failed with status {resp.status_code}")
