from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from affiliate_engine.core.config import Settings, get_settings
from affiliate_engine.notifications.senders import get_sender
from affiliate_engine.notifications.senders.base import NotificationSender


TEMPLATE_APPROVED = "affiliate_approved"
TEMPLATE_REJECTED = "affiliate_rejected"
TEMPLATE_APPLICATION_RECEIVED = "affiliate_application_received"


@dataclass(frozen=True)
class EmailTemplate:
    key: str
    subject: str
    body: str


TEMPLATES = {
    TEMPLATE_APPROVED: EmailTemplate(
        key=TEMPLATE_APPROVED,
        subject="Welcome to the affiliate program, {full_name}",
        body=(
            "Hi {full_name},\n\n"
            "Your affiliate application has been approved. Share your referral code "
            "{referral_code} with customers to start earning commission."
        ),
    ),
    TEMPLATE_REJECTED: EmailTemplate(
        key=TEMPLATE_REJECTED,
        subject="Your affiliate application",
        body=(
            "Hi {full_name},\n\n"
            "Thank you for applying. We are unable to approve your application at this time.\n"
            "Reason: {reason}"
        ),
    ),
    TEMPLATE_APPLICATION_RECEIVED: EmailTemplate(
        key=TEMPLATE_APPLICATION_RECEIVED,
        subject="New affiliate application: {full_name}",
        body=(
            "{full_name} <{email}> applied from {country}.\n"
            "Channel: {promotion_channel} ({platform_link})\n"
            "Phone: {phone}\n"
            "Audience size: {audience_size}\n"
            "Preferred payout: {payout_method}\n"
            "Reason: {reason}"
        ),
    ),
}


class _SafeDict(dict):
    def __missing__(self, key):
        return "{" + key + "}"


def render_template(key: str, context: dict[str, Any]) -> tuple[str, str]:
    template = TEMPLATES.get(key)
    if template is None:
        raise ValueError(f"Unknown email template: {key}")
    safe_context = _SafeDict({k: ("-" if v is None else v) for k, v in context.items()})
    return template.subject.format_map(safe_context), template.body.format_map(safe_context)


class AffiliateMailer:
    """Outbound affiliate notifications. Delivery errors propagate; callers
    decide whether a failure matters."""

    def __init__(self, sender: NotificationSender):
        self.sender = sender

    @classmethod
    def from_settings(cls, config: Settings | None = None) -> "AffiliateMailer":
        return cls(get_sender(config or get_settings()))

    def _deliver(self, template: str, to_email: str, context: dict[str, Any]) -> None:
        subject, body = render_template(template, context)
        self.sender.send(
            template=template,
            to_email=to_email,
            subject=subject,
            body=body,
            context=context,
        )

    def send_approval_email(self, email: str, *, full_name: str, referral_code: str) -> None:
        self._deliver(TEMPLATE_APPROVED, email, {"full_name": full_name, "referral_code": referral_code})

    def send_rejection_email(self, email: str, *, full_name: str, reason: str) -> None:
        self._deliver(TEMPLATE_REJECTED, email, {"full_name": full_name, "reason": reason})

    def send_application_received(self, admin_email: str, *, application: dict[str, Any]) -> None:
        self._deliver(TEMPLATE_APPLICATION_RECEIVED, admin_email, dict(application))
