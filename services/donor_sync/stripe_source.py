"""
Stripe source: payment intents and checkout sessions.

Fetches both lists completely (cursor pagination), converts them into
PaymentEvent / SessionRecord and hands them to the reconciliation
matcher. Donation pages are Stripe Checkout links with two custom text
fields for the credited name and link.
"""

import asyncio
import time
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

import httpx

from .log_config import get_logger, log_api_call, log_source_batch
from .models import Donor, DonorSyncError, PaymentEvent, SessionRecord
from .reconcile import MatchStrategy, reconcile_payments
from .settings import DonorSyncSettings, settings

logger = get_logger(__name__)


SOURCE_NAME = "stripe"
PAYMENT_INTENTS_PATH = "/payment_intents"
CHECKOUT_SESSIONS_PATH = "/checkout/sessions"

# Backoff before retry n is RETRY_BASE_DELAY * 2 ** n seconds
RETRY_BASE_DELAY = 1.0


class StripeAPIError(DonorSyncError):
    """Base exception for Stripe API errors."""
    pass


class StripeAuthError(StripeAPIError):
    """Missing or rejected secret key (401/403)."""
    pass


async def fetch_page(
    client: httpx.AsyncClient,
    path: str,
    params: Dict[str, Any],
    *,
    max_retries: int = 3,
    retry_count: int = 0,
) -> Dict[str, Any]:
    """
    Fetch a single list page from the Stripe API with retries.

    Args:
        client: Client configured with base URL and auth headers
        path: List endpoint path (e.g., "/payment_intents")
        params: Query parameters (limit, starting_after)
        max_retries: Retries on network errors, timeouts and 5xx
        retry_count: Current retry attempt (internal use)

    Returns:
        JSON response from API

    Raises:
        StripeAuthError: Authentication failed
        StripeAPIError: Other API errors, or retries exhausted
    """
    start_time = time.monotonic()

    try:
        response = await client.get(path, params=params)

        if response.status_code in (401, 403):
            raise StripeAuthError(
                f"Stripe rejected the secret key: {response.status_code}"
            )

        response.raise_for_status()

        log_api_call(
            logger,
            method="GET",
            url=path,
            status_code=response.status_code,
            duration_ms=(time.monotonic() - start_time) * 1000,
            starting_after=params.get("starting_after"),
        )

        return response.json()

    except (httpx.TimeoutException, httpx.NetworkError) as e:
        if retry_count < max_retries:
            logger.warning(
                "Request failed, retrying",
                path=path,
                error=str(e),
                retry=retry_count + 1,
                max_retries=max_retries,
            )
            await asyncio.sleep(RETRY_BASE_DELAY * 2 ** retry_count)
            return await fetch_page(
                client, path, params, max_retries=max_retries, retry_count=retry_count + 1
            )
        raise StripeAPIError(f"Max retries exceeded for {path}: {e}") from e

    except httpx.HTTPStatusError as e:
        if e.response.status_code >= 500 and retry_count < max_retries:
            logger.warning(
                "Server error, retrying",
                path=path,
                status_code=e.response.status_code,
                retry=retry_count + 1,
            )
            await asyncio.sleep(RETRY_BASE_DELAY * 2 ** retry_count)
            return await fetch_page(
                client, path, params, max_retries=max_retries, retry_count=retry_count + 1
            )
        raise StripeAPIError(
            f"HTTP {e.response.status_code} from {path}: {e.response.text[:500]}"
        ) from e


async def list_all(
    client: httpx.AsyncClient,
    path: str,
    page_size: int = 100,
    max_retries: int = 3,
) -> AsyncIterator[Dict[str, Any]]:
    """
    Yield every object of a Stripe list endpoint, following `has_more`.

    Example:
        >>> async for intent in list_all(client, "/payment_intents"):
        ...     print(intent["id"])
    """
    params: Dict[str, Any] = {"limit": page_size}
    pages = 0

    while True:
        result = await fetch_page(client, path, params, max_retries=max_retries)
        data = result.get("data", [])
        pages += 1

        for obj in data:
            yield obj

        if not result.get("has_more") or not data:
            break

        params = {"limit": page_size, "starting_after": data[-1]["id"]}

    logger.debug("Pagination complete", path=path, pages=pages)


def _object_id(value: Any) -> Optional[str]:
    """Id of a reference that may or may not be expanded."""
    if value is None:
        return None
    if isinstance(value, dict):
        return value.get("id")
    return str(value)


def _timestamp(value: int) -> datetime:
    return datetime.fromtimestamp(value, tz=timezone.utc)


def payment_event_from_stripe(intent: Dict[str, Any]) -> PaymentEvent:
    """Convert a PaymentIntent object into a PaymentEvent."""
    return PaymentEvent(
        id=intent["id"],
        amount=intent["amount"],
        currency=intent["currency"],
        created=_timestamp(intent["created"]),
        status=intent["status"],
        payer_id=_object_id(intent.get("customer")),
    )


def session_record_from_stripe(session: Dict[str, Any]) -> SessionRecord:
    """
    Convert a Checkout Session object into a SessionRecord.

    Only text custom fields carry a value; dropdown and numeric fields
    are kept with a None value.
    """
    custom_fields: Dict[str, Optional[str]] = {}
    for custom_field in session.get("custom_fields") or []:
        text = custom_field.get("text") or {}
        custom_fields[custom_field["key"]] = text.get("value")

    return SessionRecord(
        id=session["id"],
        created=_timestamp(session["created"]),
        status=session.get("status") or "",
        payer_id=_object_id(session.get("customer")),
        payment_reference=_object_id(session.get("payment_intent")),
        amount_total=session.get("amount_total"),
        custom_fields=custom_fields,
    )


async def fetch_stripe_records(
    config: DonorSyncSettings,
    client: Optional[httpx.AsyncClient] = None,
) -> Tuple[List[PaymentEvent], List[SessionRecord]]:
    """
    Fetch all payment intents and checkout sessions.

    Raises:
        StripeAuthError: No secret key configured, or key rejected
        StripeAPIError: API failure after retries
    """
    if not config.stripe_secret_key:
        raise StripeAuthError("Missing STRIPE_SECRET_KEY in environment")

    owns_client = client is None
    if client is None:
        client = httpx.AsyncClient(
            base_url=config.stripe_api_base,
            headers=config.stripe_headers(),
            timeout=config.http_timeout,
        )

    try:
        events = [
            payment_event_from_stripe(obj)
            async for obj in list_all(
                client, PAYMENT_INTENTS_PATH, config.stripe_page_size, config.http_max_retries
            )
        ]
        sessions = [
            session_record_from_stripe(obj)
            async for obj in list_all(
                client, CHECKOUT_SESSIONS_PATH, config.stripe_page_size, config.http_max_retries
            )
        ]
    finally:
        if owns_client:
            await client.aclose()

    logger.info(
        "Stripe records fetched",
        payment_intents=len(events),
        checkout_sessions=len(sessions),
    )

    return events, sessions


async def get_stripe_donors(
    now: datetime,
    config: Optional[DonorSyncSettings] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> List[Donor]:
    """
    Fetch Stripe data and reconcile it into donors.

    Args:
        now: Reference time for recency classification
        config: Settings (defaults to the process settings)
        client: Preconfigured HTTP client (tests)

    Returns:
        One Donor per paying customer, ordered by customer id

    Raises:
        StripeAPIError: Fetch failed
        FatalReconciliationError: Data violates matching assumptions
    """
    config = config or settings()
    start_time = time.monotonic()

    events, sessions = await fetch_stripe_records(config, client)

    donors = reconcile_payments(
        events,
        sessions,
        now,
        source=SOURCE_NAME,
        strategy=MatchStrategy(config.stripe_match_strategy),
        base_currency=config.base_currency,
        grace_period_days=config.grace_period_days,
        name_field=config.credit_name_field,
        link_field=config.credit_link_field,
    )

    log_source_batch(
        logger,
        source=SOURCE_NAME,
        donors_emitted=len(donors),
        duration_ms=(time.monotonic() - start_time) * 1000,
        payment_intents=len(events),
        checkout_sessions=len(sessions),
    )

    return [donors[payer_id] for payer_id in sorted(donors)]
