from __future__ import annotations

from typing import Any


class NotificationSender:
    def send(
        self,
        *,
        template: str,
        to_email: str,
        subject: str,
        body: str,
        context: dict[str, Any],
    ) -> None:
        raise NotImplementedError
