from __future__ import annotations

from typing import Callable

from affiliate_engine.core.config import Settings, get_settings
from affiliate_engine.core.logging import get_structured_logger
from affiliate_engine.core.metrics import record_notification
from affiliate_engine.notifications.mailer import AffiliateMailer


logger = get_structured_logger(__name__)


def notify_safely(
    template: str,
    deliver: Callable[[AffiliateMailer], None],
    *,
    mailer: AffiliateMailer | None = None,
    config: Settings | None = None,
    affiliate_id: int | None = None,
) -> bool:
    """Run ``deliver`` against the mailer; failures are logged and counted only.

    The state change that triggered the notice is already committed, so a
    delivery problem must never reach the caller.
    """
    try:
        active_mailer = mailer or AffiliateMailer.from_settings(config or get_settings())
        deliver(active_mailer)
    except Exception:
        logger.exception(
            "notification.failed",
            extra={"template": template, "affiliate_id": affiliate_id},
        )
        record_notification(template, success=False)
        return False
    record_notification(template, success=True)
    logger.info("notification.sent", extra={"template": template, "affiliate_id": affiliate_id})
    return True
