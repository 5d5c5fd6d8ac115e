"""
Merge of manual overrides (donor_info.toml) into computed donors.

Overrides keyed by payer id overwrite individual fields of the matching
computed donor; a field the override leaves unset never clears a
computed value. Overrides without a payer id are extra donors (offline
gifts, legacy sponsors) and are appended when they carry an amount.

Pure function design: neither the computed donors nor the overrides
passed in are modified.
"""

from dataclasses import dataclass, field, replace
from typing import Any, Dict, List

from .log_config import get_logger
from .models import OVERRIDABLE_FIELDS, Donor

logger = get_logger(__name__)


@dataclass
class OverrideMergeResult:
    """
    Result of merging overrides, with per-outcome counts.
    """
    donors: List[Donor] = field(default_factory=list)

    # Keyed overrides
    overrides_applied: int = 0
    overrides_unmatched: int = 0
    anonymized: int = 0

    # Keyless overrides
    overrides_appended: int = 0
    overrides_discarded: int = 0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging."""
        return {
            "donors": len(self.donors),
            "overrides_applied": self.overrides_applied,
            "overrides_unmatched": self.overrides_unmatched,
            "anonymized": self.anonymized,
            "overrides_appended": self.overrides_appended,
            "overrides_discarded": self.overrides_discarded,
        }


def apply_override(donor: Donor, override: Donor) -> bool:
    """
    Overwrite the fields of `donor` that `override` sets.

    Anonymize is applied last so it wins over any name just written.

    Returns:
        True if the donor's name was anonymized
    """
    for name in OVERRIDABLE_FIELDS:
        value = getattr(override, name)
        if value is not None:
            setattr(donor, name, value)

    if override.anonymize is True:
        donor.name = None
        return True

    return False


def merge_overrides(computed: List[Donor], overrides: List[Donor]) -> OverrideMergeResult:
    """
    Merge override records into computed donors.

    Steps:
    1. Split overrides into keyed (payer id) and keyless
    2. Apply each keyed override to the first computed donor with that id
    3. Append keyless overrides that carry an amount
    4. Drop keyed overrides that matched nothing

    A keyless override without a source that already appears in
    `computed` was appended by an earlier merge and is not appended again,
    so merging an already merged list is a no-op. Keyless overrides that
    set a source are always appended.

    Args:
        computed: Donors produced by the payment sources
        overrides: Donors loaded from the override file

    Returns:
        OverrideMergeResult holding new Donor objects

    Example:
        >>> result = merge_overrides(
        ...     [Donor(payer_id="cus_1", name="Alice", amount=50)],
        ...     [Donor(payer_id="cus_1", anonymize=True)],
        ... )
        >>> result.donors[0].name is None
        True
    """
    result = OverrideMergeResult()

    keyed: Dict[str, Donor] = {}
    keyless: List[Donor] = []
    for override in overrides:
        if override.payer_id:
            if override.payer_id in keyed:
                logger.warning("Duplicate override, last one wins", payer_id=override.payer_id)
            keyed[override.payer_id] = override
        else:
            keyless.append(override)

    # Consumed as donors are visited; the caller's overrides are untouched
    pending = dict(keyed)

    for donor in computed:
        merged = replace(donor)

        if merged.payer_id and merged.payer_id in pending:
            override = pending.pop(merged.payer_id)
            if apply_override(merged, override):
                result.anonymized += 1
            result.overrides_applied += 1

        result.donors.append(merged)

    result.overrides_unmatched = len(pending)
    for payer_id in pending:
        logger.info("Override matched no donor", payer_id=payer_id)

    for override in keyless:
        if override.amount is None:
            result.overrides_discarded += 1
            continue

        # Source donors always carry a source; only earlier appends can match here
        if override.source is None and override in computed:
            continue

        result.donors.append(replace(override))
        result.overrides_appended += 1

    logger.info("Overrides merged", **result.to_dict())

    return result
