"""
Reconciliation of payment events with checkout sessions.

A card payment only carries who paid and how much. The name and link a
donor wants credited live on the checkout session that produced the
payment. This module pairs each successful payment with that session and
folds the results into one Donor per payer.

Two matching strategies exist, selected per source:
1. BY_AMOUNT - the payer's latest complete session with the same total
2. BY_REFERENCE - the latest complete session pointing at the payment

Events are folded in creation order so the newest payment of a payer
wins. Violations of the upstream data assumptions (foreign currency,
anonymous payment, payment with no session) abort the run.
"""

from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from .log_config import get_logger
from .models import Donor, DonorSyncError, PaymentEvent, SessionRecord
from .recency import is_past

logger = get_logger(__name__)


SUCCEEDED_STATUS = "succeeded"
COMPLETE_STATUS = "complete"

DEFAULT_NAME_FIELD = "nametolistinbevycredits"
DEFAULT_LINK_FIELD = "linktolistinbevycredits"

MINOR_UNITS_PER_MAJOR = 100


class MatchStrategy(str, Enum):
    """How a payment event finds its checkout session."""
    BY_AMOUNT = "amount"
    BY_REFERENCE = "reference"


class FatalReconciliationError(DonorSyncError):
    """Upstream data broke an assumption the totals depend on."""
    pass


class CurrencyMismatchError(FatalReconciliationError):
    """Successful payment in a currency other than the base currency."""
    pass


class MissingPayerError(FatalReconciliationError):
    """Successful payment without a payer identity."""
    pass


class UnmatchedPaymentError(FatalReconciliationError):
    """Successful payment with no matching checkout session."""
    pass


def _chronological(record) -> Tuple:
    # id breaks ties so equal timestamps never depend on input order
    return (record.created, record.id)


def _index_sessions(
    sessions: Iterable[SessionRecord],
    strategy: MatchStrategy,
) -> Dict[str, List[SessionRecord]]:
    """
    Group complete sessions by the key payments are matched on.

    Each group is sorted oldest first.

    Raises:
        MissingPayerError: BY_AMOUNT and a complete session has no payer
    """
    index: Dict[str, List[SessionRecord]] = {}

    for session in sessions:
        if session.status != COMPLETE_STATUS:
            continue

        if strategy is MatchStrategy.BY_AMOUNT:
            key = session.payer_id
            # Complete sessions always carry a customer
            if not key:
                raise MissingPayerError(
                    f"Checkout session {session.id} is complete but has no customer. "
                    "Every complete checkout session is expected to have one."
                )
        else:
            key = session.payment_reference
            if not key:
                logger.warning("Complete session references no payment", session_id=session.id)
                continue

        index.setdefault(key, []).append(session)

    for group in index.values():
        group.sort(key=_chronological)

    return index


def _select_session(
    event: PaymentEvent,
    index: Dict[str, List[SessionRecord]],
    strategy: MatchStrategy,
) -> SessionRecord:
    """
    Pick the session that supplies an event's credit fields.

    Raises:
        MissingPayerError: BY_AMOUNT and the event has no payer
        UnmatchedPaymentError: No qualifying session exists
    """
    if strategy is MatchStrategy.BY_AMOUNT:
        if not event.payer_id:
            raise MissingPayerError(
                f"Payment {event.id} succeeded without a customer. "
                "Every succeeded payment is expected to have one."
            )

        candidates = index.get(event.payer_id, [])
        if not candidates:
            raise UnmatchedPaymentError(
                f"Payment {event.id} has no complete checkout session for customer {event.payer_id}"
            )

        for session in reversed(candidates):
            if session.amount_total == event.amount:
                return session

        raise UnmatchedPaymentError(
            f"Payment {event.id} has no checkout session with amount {event.amount}"
        )

    candidates = index.get(event.id, [])
    if not candidates:
        raise UnmatchedPaymentError(
            f"Payment {event.id} is not referenced by any complete checkout session"
        )
    return candidates[-1]


def extract_credit_fields(
    session: SessionRecord,
    name_field: str = DEFAULT_NAME_FIELD,
    link_field: str = DEFAULT_LINK_FIELD,
) -> Tuple[Optional[str], Optional[str]]:
    """
    Read the credited name and link from a session's custom fields.

    Other keys are ignored. Blank answers count as absent.

    Returns:
        Tuple of (name, link)
    """
    def _value(key: str) -> Optional[str]:
        value = session.custom_fields.get(key)
        if value is None or not value.strip():
            return None
        return value

    return _value(name_field), _value(link_field)


def reconcile_payments(
    events: Iterable[PaymentEvent],
    sessions: Iterable[SessionRecord],
    now: datetime,
    *,
    source: str,
    strategy: MatchStrategy = MatchStrategy.BY_AMOUNT,
    base_currency: str = "usd",
    grace_period_days: int = 0,
    name_field: str = DEFAULT_NAME_FIELD,
    link_field: str = DEFAULT_LINK_FIELD,
) -> Mapping[str, Donor]:
    """
    Turn payment events and checkout sessions into one Donor per payer.

    Both inputs must be complete; the best session can only be chosen
    once every session is known.

    Args:
        events: All payment events of the source
        sessions: All checkout sessions of the source
        now: Reference time for recency classification
        source: Source name stamped on each Donor
        strategy: Session matching strategy for this source
        base_currency: The only accepted currency (case-insensitive)
        grace_period_days: Extra days before a payment counts as past
        name_field: Custom field key for the credited name
        link_field: Custom field key for the credited link

    Returns:
        Read-only mapping of payer id to Donor

    Raises:
        CurrencyMismatchError: A succeeded payment is in a foreign currency
        MissingPayerError: A succeeded payment, or a complete session under
            BY_AMOUNT, has no payer
        UnmatchedPaymentError: A succeeded payment has no session

    Example:
        >>> donors = reconcile_payments(events, sessions, now, source="stripe")
        >>> donors["cus_123"].amount
        50
    """
    index = _index_sessions(sessions, strategy)
    succeeded = sorted(
        (e for e in events if e.status == SUCCEEDED_STATUS),
        key=_chronological,
    )

    donors: Dict[str, Donor] = {}

    for event in succeeded:
        if event.currency.lower() != base_currency.lower():
            raise CurrencyMismatchError(
                f"Payment {event.id} is in {event.currency.upper()}, expected "
                f"{base_currency.upper()}. Currency conversion is not supported."
            )

        session = _select_session(event, index, strategy)

        payer_id = event.payer_id or session.payer_id
        if not payer_id:
            raise MissingPayerError(
                f"Payment {event.id} and its session {session.id} carry no customer"
            )

        name, link = extract_credit_fields(session, name_field, link_field)

        # Later events overwrite earlier ones for the same payer
        donors[payer_id] = Donor(
            payer_id=payer_id,
            source=source,
            amount=event.amount // MINOR_UNITS_PER_MAJOR,
            name=name,
            link=link,
            past=is_past(now, event.created, grace_period_days),
        )

    logger.debug(
        "Payments reconciled",
        source=source,
        strategy=strategy.value,
        succeeded_events=len(succeeded),
        donors=len(donors),
    )

    return MappingProxyType(donors)
