import hashlib
import hmac
import json
import os

import pytest

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

from affiliate_engine.core.config import Settings
from affiliate_engine.notifications.dispatch import notify_safely
from affiliate_engine.notifications.mailer import AffiliateMailer, render_template
from affiliate_engine.notifications.senders import get_sender
from affiliate_engine.notifications.senders.email import EmailSender
from affiliate_engine.notifications.senders.webhook import WebhookSender, _sign_payload
from tests.factories import FailingSender, RecordingSender


class _Response:
    def __init__(self, status_code):
        self.status_code = status_code


def test_render_template_fills_known_fields_only():
    subject, body = render_template("affiliate_rejected", {"full_name": "Ada"})
    assert subject == "Your affiliate application"
    assert "Hi Ada" in body
    assert "{reason}" in body
    with pytest.raises(ValueError):
        render_template("unknown", {})


def test_mailer_methods_route_to_sender():
    sender = RecordingSender()
    mailer = AffiliateMailer(sender)
    mailer.send_approval_email("ada@example.com", full_name="Ada", referral_code="AFFY-1-ABC")
    mailer.send_rejection_email("bo@example.com", full_name="Bo", reason="duplicate")
    mailer.send_application_received("ops@example.com", application={"full_name": "Cy", "email": "cy@example.com"})

    assert [item["template"] for item in sender.sent] == [
        "affiliate_approved",
        "affiliate_rejected",
        "affiliate_application_received",
    ]
    assert "AFFY-1-ABC" in sender.sent[0]["body"]
    assert sender.sent[2]["to"] == "ops@example.com"


def test_webhook_sender_signs_payload(monkeypatch):
    captured = {}

    def fake_post(url, data=None, headers=None, timeout=None):
        captured.update(url=url, data=data, headers=headers, timeout=timeout)
        return _Response(202)

    monkeypatch.setattr("affiliate_engine.notifications.senders.webhook.requests.post", fake_post)
    sender = WebhookSender("https://mail.example.com/hooks", secret="s3cret", timeout=3)
    sender.send(
        template="affiliate_approved",
        to_email="ada@example.com",
        subject="Welcome",
        body="Hi",
        context={"referral_code": "AFFY-1-ABC"},
    )

    assert captured["url"] == "https://mail.example.com/hooks"
    assert captured["timeout"] == 3
    payload = json.loads(captured["data"])
    assert payload["to"] == "ada@example.com"
    timestamp = captured["headers"]["X-Timestamp"]
    expected = hmac.new(
        b"s3cret", f"{timestamp}.{captured['data']}".encode("utf-8"), hashlib.sha256
    ).hexdigest()
    assert captured["headers"]["X-Signature"] == expected
    assert _sign_payload("s3cret", timestamp, captured["data"]) == expected


def test_webhook_sender_raises_on_error_status(monkeypatch):
    monkeypatch.setattr(
        "affiliate_engine.notifications.senders.webhook.requests.post",
        lambda *args, **kwargs: _Response(500),
    )
    sender = WebhookSender("https://mail.example.com/hooks")
    with pytest.raises(ValueError):
        sender.send(template="t", to_email="a@example.com", subject="s", body="b", context={})


def test_get_sender_by_backend():
    assert isinstance(get_sender(Settings(_env_file=None)), EmailSender)
    webhook = get_sender(
        Settings(_env_file=None, MAILER_BACKEND="Webhook", MAILER_WEBHOOK_URL="https://mail.example.com")
    )
    assert isinstance(webhook, WebhookSender)
    with pytest.raises(ValueError):
        get_sender(Settings(_env_file=None, MAILER_BACKEND="webhook"))
    with pytest.raises(ValueError):
        get_sender(Settings(_env_file=None, MAILER_BACKEND="carrier-pigeon"))


def test_notify_safely_swallows_delivery_errors():
    mailer = AffiliateMailer(FailingSender())
    ok = notify_safely(
        "affiliate_approved",
        lambda m: m.send_approval_email("a@example.com", full_name="A", referral_code="X"),
        mailer=mailer,
    )
    assert ok is False


def test_notify_safely_swallows_misconfigured_backend():
    config = Settings(_env_file=None, MAILER_BACKEND="webhook")
    ok = notify_safely(
        "affiliate_rejected",
        lambda m: m.send_rejection_email("a@example.com", full_name="A", reason="r"),
        config=config,
    )
    assert ok is False


def test_notify_safely_reports_success():
    sender = RecordingSender()
    ok = notify_safely(
        "affiliate_rejected",
        lambda m: m.send_rejection_email("a@example.com", full_name="A", reason="r"),
        mailer=AffiliateMailer(sender),
    )
    assert ok is True
    assert len(sender.sent) == 1
