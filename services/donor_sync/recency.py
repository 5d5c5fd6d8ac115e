"""
Recency classification: is a donor still active this month?

Two policies:
- Single-event sources: past once the payment is older than
  31 + grace period days.
- Subscription-aware sources: an active recurring donation is never
  past; otherwise fall back to the last payment date.

Anything that cannot be dated is treated as past.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

from .log_config import get_logger

logger = get_logger(__name__)


BILLING_PERIOD_DAYS = 31
ACTIVE_RECURRING_STATUS = "active"


def is_past(now: datetime, payment_time: datetime, grace_period_days: int = 0) -> bool:
    """
    Return True when a payment no longer covers the current month.

    Args:
        now: Reference time of the run
        payment_time: When the payment was made
        grace_period_days: Extra days allowed after the billing period

    Returns:
        True iff now - payment_time exceeds 31 + grace_period_days days
    """
    return now - payment_time > timedelta(days=BILLING_PERIOD_DAYS + grace_period_days)


def parse_payment_date(value: Optional[str], date_format: str) -> Optional[datetime]:
    """
    Parse a date column into an aware UTC datetime at midnight.

    Returns None for missing or malformed values.
    """
    if not value or not value.strip():
        return None

    try:
        parsed = datetime.strptime(value.strip(), date_format)
    except ValueError:
        logger.debug("Could not parse payment date", value=value, date_format=date_format)
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def classify_subscription(
    now: datetime,
    recurring_status: Optional[str],
    last_payment: Optional[str],
    date_format: str,
    grace_period_days: int = 0,
) -> bool:
    """
    Classify a subscription-aware record.

    Args:
        now: Reference time of the run
        recurring_status: Recurring donation status column ("Active", "Cancelled", ...)
        last_payment: Last payment date column
        date_format: strptime format of last_payment
        grace_period_days: Extra days allowed after the billing period

    Returns:
        True if the donor is past, False if still active
    """
    if recurring_status and recurring_status.strip().lower() == ACTIVE_RECURRING_STATUS:
        return False

    payment_time = parse_payment_date(last_payment, date_format)
    if payment_time is None:
        return True

    return is_past(now, payment_time, grace_period_days)
