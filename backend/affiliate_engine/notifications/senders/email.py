from __future__ import annotations

import logging
from typing import Any

from affiliate_engine.notifications.senders.base import NotificationSender


logger = logging.getLogger(__name__)


class EmailSender(NotificationSender):
    """Records the message instead of delivering it. Default backend."""

    def send(
        self,
        *,
        template: str,
        to_email: str,
        subject: str,
        body: str,
        context: dict[str, Any],
    ) -> None:
        _ = body
        logger.info(
            "Email stub: template=%s to=%s subject=%s context=%s",
            template,
            to_email,
            subject,
            context,
        )
