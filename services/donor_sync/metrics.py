"""
Monthly membership metrics from the final donor list.
"""

from typing import Iterable

from .models import Donor, Metrics


DEFAULT_SPONSOR_THRESHOLD = 500


def compute_metrics(
    donors: Iterable[Donor],
    sponsor_threshold: int = DEFAULT_SPONSOR_THRESHOLD,
) -> Metrics:
    """
    Sum the amounts of active donors and split them into tiers.

    Only donors explicitly classified as past are skipped. Unclassified
    donors (past is None), such as keyless overrides, count as active.
    Donors without an amount are listed but contribute nothing.

    Args:
        donors: Final merged donor list
        sponsor_threshold: Amount at or above which a donor is a sponsor

    Returns:
        Metrics with monthly total, sponsor count and member count
    """
    metrics = Metrics()

    for donor in donors:
        if not donor.counts_as_active or donor.amount is None:
            continue

        metrics.monthly_total += donor.amount
        if donor.amount >= sponsor_threshold:
            metrics.sponsor_count += 1
        else:
            metrics.member_count += 1

    return metrics
