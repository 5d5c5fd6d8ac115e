"""
Typed records shared by the donor sync pipeline.

PaymentEvent and SessionRecord are the source-neutral shapes the
reconciliation matcher consumes. Donor is the unified entity every
source produces and the override file is parsed into.
"""

from dataclasses import dataclass, field, fields
from datetime import datetime
from typing import Any, Dict, Optional


# Fields an override may overwrite on a computed donor, in application order
OVERRIDABLE_FIELDS = (
    "name",
    "link",
    "logo",
    "style",
    "amount",
    "square_logo",
    "logo_scale",
)


class DonorSyncError(Exception):
    """Base class for errors that abort a sync run."""
    pass


@dataclass
class PaymentEvent:
    """
    A payment from a card processor.

    Amount is in minor currency units (cents).
    """
    id: str
    amount: int
    currency: str
    created: datetime
    status: str
    payer_id: Optional[str] = None


@dataclass
class SessionRecord:
    """
    A checkout session carrying the fields a donor typed in.

    Either `payer_id` or `payment_reference` links it to a payment event,
    depending on the matching strategy in use.
    """
    id: str
    created: datetime
    status: str
    payer_id: Optional[str] = None
    payment_reference: Optional[str] = None
    amount_total: Optional[int] = None
    custom_fields: Dict[str, Optional[str]] = field(default_factory=dict)


@dataclass
class Donor:
    """
    Unified donor record.

    Computed donors come from a payment source; override donors come
    from donor_info.toml. `past` stays None until classified.
    """
    payer_id: Optional[str] = None
    source: Optional[str] = None
    amount: Optional[int] = None
    name: Optional[str] = None
    link: Optional[str] = None
    logo: Optional[str] = None
    style: Optional[str] = None
    square_logo: Optional[bool] = None
    logo_scale: Optional[float] = None
    past: Optional[bool] = None
    anonymize: Optional[bool] = None

    @property
    def counts_as_active(self) -> bool:
        """True unless explicitly classified as past; unclassified counts."""
        return self.past is not True

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary, keeping unset fields as None."""
        return {f.name: getattr(self, f.name) for f in fields(self)}


@dataclass
class Metrics:
    """Aggregate membership numbers for the current month."""
    monthly_total: int = 0
    sponsor_count: int = 0
    member_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the key names metrics.toml consumers read."""
        return {
            "monthly_dollars": self.monthly_total,
            "sponsors": self.sponsor_count,
            "members": self.member_count,
        }
