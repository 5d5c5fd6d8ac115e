"""
Builders for donor sync test records.
"""

from datetime import datetime, timedelta, timezone

from services.donor_sync.models import PaymentEvent, SessionRecord


NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


def days_ago(days: float) -> datetime:
    return NOW - timedelta(days=days)


def make_event(
    id: str = "pi_1",
    payer_id: str = "cus_1",
    amount: int = 5000,
    currency: str = "usd",
    created: datetime = None,
    status: str = "succeeded",
) -> PaymentEvent:
    return PaymentEvent(
        id=id,
        payer_id=payer_id,
        amount=amount,
        currency=currency,
        created=created or days_ago(5),
        status=status,
    )


def make_session(
    id: str = "cs_1",
    payer_id: str = "cus_1",
    amount_total: int = 5000,
    created: datetime = None,
    status: str = "complete",
    payment_reference: str = None,
    name: str = None,
    link: str = None,
) -> SessionRecord:
    custom_fields = {}
    if name is not None:
        custom_fields["nametolistinbevycredits"] = name
    if link is not None:
        custom_fields["linktolistinbevycredits"] = link

    return SessionRecord(
        id=id,
        payer_id=payer_id,
        amount_total=amount_total,
        created=created or days_ago(5),
        status=status,
        payment_reference=payment_reference,
        custom_fields=custom_fields,
    )


