from affiliate_engine.core.config import Settings
from affiliate_engine.notifications.senders.base import NotificationSender
from affiliate_engine.notifications.senders.email import EmailSender
from affiliate_engine.notifications.senders.webhook import WebhookSender


def get_sender(config: Settings) -> NotificationSender:
    backend = (config.MAILER_BACKEND or "log").strip().lower()
    if backend == "webhook":
        return WebhookSender(
            config.MAILER_WEBHOOK_URL,
            secret=config.MAILER_WEBHOOK_SECRET,
            timeout=config.MAILER_TIMEOUT_SECONDS,
        )
    if backend == "log":
        return EmailSender()
    raise ValueError(f"Unknown mailer backend: {config.MAILER_BACKEND}")
