"""
Consent-gated conversion of every.org supporter rows into Donors.

every.org marks each supporter as public or not. A supporter who did not
opt in must never have their name or amount exposed. Two policies:
- DROP: non-public rows produce no Donor at all
- REDACT: non-public rows produce a Donor with name and amount cleared,
  so overrides can still be keyed to them

The policy is chosen per deployment and applied to every row of a run.
"""

import math
import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from .log_config import get_logger
from .models import Donor
from .recency import classify_subscription

logger = get_logger(__name__)


SOURCE_NAME = "every.org"
PAYER_ID_PREFIX = "every.org:"
DEFAULT_DATE_FORMAT = "%m/%d/%Y"

# Column aliases for the every.org export; first match wins
COLUMN_ALIASES: Dict[str, List[str]] = {
    "donor_id": ["Donor id", "Donor ID", "donor_id"],
    "name": ["Name", "name"],
    "amount": ["Amount", "amount"],
    "public_supporter": ["Public supporter", "Public Supporter", "public_supporter"],
    "recurring_donation_status": [
        "Recurring donation status", "Recurring Donation Status", "recurring_donation_status",
    ],
    "last_donation": ["Last donation", "Last Donation", "last_donation"],
}


class ConsentPolicy(str, Enum):
    """What happens to supporters who did not opt in to being public."""
    DROP = "drop"
    REDACT = "redact"


class PrivacyFilterError(Exception):
    """A single row could not become a Donor."""
    pass


class PrivateSupporterError(PrivacyFilterError):
    """Supporter did not consent to being listed."""
    pass


class MissingAmountError(PrivacyFilterError):
    """Public supporter row without an amount."""
    pass


class InvalidAmountError(PrivacyFilterError):
    """Amount column is not a number."""
    pass


@dataclass
class PrivacyFilterResult:
    """Donors produced from a batch of rows plus per-outcome counts."""
    total_rows: int = 0
    donors: List[Donor] = field(default_factory=list)
    private_dropped: int = 0
    private_redacted: int = 0
    missing_amount: int = 0
    invalid_amount: int = 0

    @property
    def skipped(self) -> int:
        return self.private_dropped + self.missing_amount + self.invalid_amount

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging (counts only)."""
        return {
            "total_rows": self.total_rows,
            "donors": len(self.donors),
            "private_dropped": self.private_dropped,
            "private_redacted": self.private_redacted,
            "missing_amount": self.missing_amount,
            "invalid_amount": self.invalid_amount,
        }


def _find_column(row: Dict[str, Any], field_name: str) -> Optional[str]:
    """
    Find a field's value using column aliases.

    Falls back to a case-insensitive header match. Empty and
    whitespace-only values are returned as None.
    """
    aliases = COLUMN_ALIASES.get(field_name, [field_name])

    value: Any = None
    for alias in aliases:
        if alias in row:
            value = row[alias]
            break
    else:
        wanted = {alias.lower() for alias in aliases}
        for key, candidate in row.items():
            if isinstance(key, str) and key.strip().lower() in wanted:
                value = candidate
                break

    if value is None:
        return None
    value = str(value).strip()
    return value or None


def has_public_consent(row: Dict[str, Any]) -> bool:
    """True only when the supporter explicitly opted in."""
    value = _find_column(row, "public_supporter")
    return value is not None and value.lower() == "true"


def _parse_amount(value: str) -> int:
    """
    Parse an amount column into whole currency units.

    Fractions are truncated toward zero.

    Raises:
        InvalidAmountError: Value is not a finite number
    """
    cleaned = re.sub(r"[$,\s]", "", value)
    try:
        amount = float(cleaned)
    except ValueError as e:
        raise InvalidAmountError(f"Failed to parse amount: {value!r}") from e

    if not math.isfinite(amount):
        raise InvalidAmountError(f"Failed to parse amount: {value!r}")

    return int(amount)


def donor_from_row(
    row: Dict[str, Any],
    now: datetime,
    *,
    policy: ConsentPolicy = ConsentPolicy.DROP,
    date_format: str = DEFAULT_DATE_FORMAT,
    grace_period_days: int = 0,
) -> Donor:
    """
    Convert one every.org row into a Donor.

    Args:
        row: Row keyed by export column headers
        now: Reference time for recency classification
        policy: Consent policy for non-public supporters
        date_format: strptime format of the last donation column
        grace_period_days: Extra days before a donor counts as past

    Returns:
        Donor with payer id namespaced under "every.org:"

    Raises:
        PrivateSupporterError: DROP policy and no consent
        MissingAmountError: DROP policy, consent, but no amount
        InvalidAmountError: Consent and an unparseable amount
    """
    consented = has_public_consent(row)

    if not consented and policy is ConsentPolicy.DROP:
        raise PrivateSupporterError("every.org donor is a private supporter")

    donor_id = _find_column(row, "donor_id")

    name: Optional[str] = None
    amount: Optional[int] = None

    # Nothing sensitive is read from rows without consent
    if consented:
        name = _find_column(row, "name")

        amount_str = _find_column(row, "amount")
        if amount_str is None:
            if policy is ConsentPolicy.DROP:
                raise MissingAmountError("No amount provided")
        else:
            amount = _parse_amount(amount_str)

    past = classify_subscription(
        now,
        _find_column(row, "recurring_donation_status"),
        _find_column(row, "last_donation"),
        date_format,
        grace_period_days,
    )

    return Donor(
        payer_id=f"{PAYER_ID_PREFIX}{donor_id}" if donor_id else None,
        source=SOURCE_NAME,
        amount=amount,
        name=name,
        past=past,
    )


def filter_rows(
    rows: List[Dict[str, Any]],
    now: datetime,
    *,
    policy: ConsentPolicy = ConsentPolicy.DROP,
    date_format: str = DEFAULT_DATE_FORMAT,
    grace_period_days: int = 0,
) -> PrivacyFilterResult:
    """
    Convert every.org rows into Donors, skipping rows that cannot be used.

    Rejected rows are counted, never logged with their contents.

    Example:
        >>> result = filter_rows(rows, now, policy=ConsentPolicy.REDACT)
        >>> print(f"{len(result.donors)} donors, {result.private_redacted} redacted")
    """
    result = PrivacyFilterResult(total_rows=len(rows))

    for i, row in enumerate(rows):
        try:
            donor = donor_from_row(
                row,
                now,
                policy=policy,
                date_format=date_format,
                grace_period_days=grace_period_days,
            )
        except PrivateSupporterError:
            result.private_dropped += 1
            continue
        except MissingAmountError:
            result.missing_amount += 1
            logger.debug("Row skipped: no amount", row_index=i)
            continue
        except InvalidAmountError:
            result.invalid_amount += 1
            logger.warning("Row skipped: invalid amount", row_index=i)
            continue

        if policy is ConsentPolicy.REDACT and not has_public_consent(row):
            result.private_redacted += 1

        result.donors.append(donor)

    logger.info("Supporter rows filtered", policy=policy.value, **result.to_dict())

    return result
