"""
Orchestrator for the donor sync pipeline.

Coordinates the complete flow:
1. Load manual overrides
2. Fetch and reconcile Stripe and every.org donors (concurrently)
3. Merge overrides into the combined donor list
4. Compute metrics
5. Return a SyncResult (writing files is left to the caller)

This module:
- Coordinates modules without business logic
- Lets fatal errors propagate so no partial report is produced
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .every_org_source import get_every_org_donors
from .log_config import get_logger
from .merge import OverrideMergeResult, merge_overrides
from .metrics import compute_metrics
from .models import Donor, Metrics
from .report import load_overrides
from .settings import DonorSyncSettings, settings
from .stripe_source import get_stripe_donors

logger = get_logger(__name__)


@dataclass
class SyncResult:
    """Outcome of one sync run."""
    timestamp: datetime
    donors: List[Donor] = field(default_factory=list)
    metrics: Metrics = field(default_factory=Metrics)
    merge: Optional[OverrideMergeResult] = None
    source_counts: Dict[str, int] = field(default_factory=dict)
    override_errors: int = 0

    def to_dict(self) -> Dict[str, Any]:
        """Summary for logging and --dry-run output."""
        return {
            "timestamp": self.timestamp.isoformat(),
            "sources": dict(self.source_counts),
            "override_errors": self.override_errors,
            "merge": self.merge.to_dict() if self.merge else None,
            "metrics": self.metrics.to_dict(),
        }


async def collect_donors(
    now: datetime,
    config: DonorSyncSettings,
    *,
    include_stripe: bool = True,
    include_every_org: bool = True,
    every_org_csv: Optional[str] = None,
) -> Dict[str, List[Donor]]:
    """
    Fetch all enabled sources concurrently.

    Returns:
        Source name -> donors, in a fixed source order
    """
    sources: Dict[str, Any] = {}
    if include_stripe:
        sources["stripe"] = get_stripe_donors(now, config)
    if include_every_org:
        sources["every.org"] = get_every_org_donors(now, config, csv_path=every_org_csv)

    results = await asyncio.gather(*sources.values())
    return dict(zip(sources.keys(), results))


async def run_donor_sync(
    now: datetime,
    config: Optional[DonorSyncSettings] = None,
    *,
    donor_info_path: Optional[Union[str, Path]] = None,
    every_org_csv: Optional[str] = None,
    include_stripe: bool = True,
    include_every_org: bool = True,
) -> SyncResult:
    """
    Execute the complete donor sync pipeline.

    Pipeline steps (fixed order):
    1. Load overrides (fails fast before any network call)
    2. Fetch and reconcile each source
    3. Merge overrides
    4. Compute metrics

    Args:
        now: Reference time for recency classification
        config: Settings (defaults to the process settings)
        donor_info_path: Override file (default from settings)
        every_org_csv: every.org CSV export (default from settings)
        include_stripe: Fetch Stripe donors
        include_every_org: Fetch every.org donors

    Returns:
        SyncResult with merged donors and metrics

    Raises:
        DonorSyncError: Any fatal condition; nothing should be written

    Example:
        >>> result = asyncio.run(run_donor_sync(datetime.now(timezone.utc)))
        >>> print(result.metrics.monthly_total)
    """
    config = config or settings()

    overrides = load_overrides(donor_info_path or config.donor_info_path)

    by_source = await collect_donors(
        now,
        config,
        include_stripe=include_stripe,
        include_every_org=include_every_org,
        every_org_csv=every_org_csv,
    )

    computed: List[Donor] = []
    for donors in by_source.values():
        computed.extend(donors)

    merged = merge_overrides(computed, overrides.donors)
    metrics = compute_metrics(merged.donors, config.sponsor_threshold)

    result = SyncResult(
        timestamp=now,
        donors=merged.donors,
        metrics=metrics,
        merge=merged,
        source_counts={name: len(donors) for name, donors in by_source.items()},
        override_errors=len(overrides.errors),
    )

    logger.info("Donor sync computed", **result.to_dict())

    return result
