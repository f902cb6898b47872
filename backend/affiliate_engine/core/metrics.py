# Prometheus counters for the commission lifecycle. Exposition is left
# to the hosting process (prometheus_client.start_http_server or an
# ASGI mount); the engine only records.

from prometheus_client import Counter


COMMISSIONS_CREATED_TOTAL = Counter(
    "affiliate_commissions_created_total",
    "Pending commissions created from attributed orders",
    ["referral_type"],
)
COMMISSIONS_EARNED_TOTAL = Counter(
    "affiliate_commissions_earned_total",
    "Commissions moved from pending to earned",
)
ATTRIBUTIONS_TOTAL = Counter(
    "affiliate_attributions_total",
    "Order attribution attempts grouped by outcome",
    ["outcome"],  # outcome: code|customer_referral|none|error
)
PAYOUT_REQUESTS_TOTAL = Counter(
    "affiliate_payout_requests_total",
    "Payout requests grouped by outcome",
    ["outcome"],  # outcome: accepted|insufficient_balance|rejected
)
NOTIFICATIONS_TOTAL = Counter(
    "affiliate_notifications_total",
    "Affiliate notification deliveries",
    ["template", "status"],
)


def _label(value: object | None, default: str = "unknown") -> str:
    if value is None:
        return default
    text = str(getattr(value, "value", value)).strip()
    return text or default


def record_commission_created(referral_type: object | None) -> None:
    COMMISSIONS_CREATED_TOTAL.labels(referral_type=_label(referral_type)).inc()


def record_commissions_earned(count: int) -> None:
    if count > 0:
        COMMISSIONS_EARNED_TOTAL.inc(count)


def record_attribution(outcome: str) -> None:
    ATTRIBUTIONS_TOTAL.labels(outcome=_label(outcome)).inc()


def record_payout_request(outcome: str) -> None:
    PAYOUT_REQUESTS_TOTAL.labels(outcome=_label(outcome)).inc()


def record_notification(template: str, *, success: bool) -> None:
    NOTIFICATIONS_TOTAL.labels(
        template=_label(template),
        status="sent" if success else "failed",
    ).inc()
