"""
Integration tests for the donor sync orchestrator.

Sources are mocked at the module boundary; overrides come from a real
TOML file.
"""

from unittest.mock import AsyncMock, patch

import pytest

from ..models import Donor
from ..orchestrator import SyncResult, collect_donors, run_donor_sync
from ..reconcile import UnmatchedPaymentError
from ..report import OverrideFileError
from .builders import NOW


STRIPE_DONORS = [
    Donor(payer_id="cus_1", source="stripe", name="Alice", amount=600, past=False),
    Donor(payer_id="cus_2", source="stripe", name="Bob", amount=30, past=True),
]

EVERY_ORG_DONORS = [
    Donor(payer_id="every.org:d-1", source="every.org", name="Jane", amount=20, past=False),
]

OVERRIDES = """
[[donor]]
customer_id = "cus_1"
anonymize = true

[[donor]]
name = "Legacy Gift"
amount = 100
"""


@pytest.fixture
def donor_info(config, tmp_path):
    path = tmp_path / "donor_info.toml"
    path.write_text(OVERRIDES, encoding="utf-8")
    return path


@pytest.fixture
def mock_stripe():
    with patch(
        "services.donor_sync.orchestrator.get_stripe_donors",
        new_callable=AsyncMock,
        return_value=list(STRIPE_DONORS),
    ) as mock:
        yield mock


@pytest.fixture
def mock_every_org():
    with patch(
        "services.donor_sync.orchestrator.get_every_org_donors",
        new_callable=AsyncMock,
        return_value=list(EVERY_ORG_DONORS),
    ) as mock:
        yield mock


@pytest.mark.asyncio
class TestCollectDonors:
    """Source fan-out."""

    async def test_both_sources(self, config, mock_stripe, mock_every_org):
        by_source = await collect_donors(NOW, config, every_org_csv="export.csv")

        assert list(by_source) == ["stripe", "every.org"]
        mock_stripe.assert_awaited_once_with(NOW, config)
        mock_every_org.assert_awaited_once_with(NOW, config, csv_path="export.csv")

    async def test_skip_stripe(self, config, mock_stripe, mock_every_org):
        by_source = await collect_donors(NOW, config, include_stripe=False)

        assert list(by_source) == ["every.org"]
        mock_stripe.assert_not_called()

    async def test_no_sources(self, config, mock_stripe, mock_every_org):
        assert await collect_donors(
            NOW, config, include_stripe=False, include_every_org=False
        ) == {}


@pytest.mark.asyncio
class TestRunDonorSync:
    """Full pipeline."""

    async def test_pipeline(self, config, donor_info, mock_stripe, mock_every_org):
        result = await run_donor_sync(NOW, config)

        assert isinstance(result, SyncResult)
        assert [d.payer_id for d in result.donors] == ["cus_1", "cus_2", "every.org:d-1", None]

        alice = result.donors[0]
        assert alice.name is None
        assert alice.amount == 600

        # 600 (sponsor) + 20 + 100 (legacy, unclassified); Bob is past
        assert result.metrics.monthly_total == 720
        assert result.metrics.sponsor_count == 1
        assert result.metrics.member_count == 2

        assert result.source_counts == {"stripe": 2, "every.org": 1}
        assert result.merge.anonymized == 1
        assert result.merge.overrides_appended == 1

    async def test_sponsor_threshold_from_settings(self, config, donor_info,
                                                   mock_stripe, mock_every_org):
        config.sponsor_threshold = 10

        result = await run_donor_sync(NOW, config)

        assert result.metrics.sponsor_count == 3
        assert result.metrics.member_count == 0

    async def test_explicit_donor_info_path(self, config, tmp_path, mock_stripe, mock_every_org):
        path = tmp_path / "elsewhere.toml"
        path.write_text('[[donor]]\ncustomer_id = "cus_2"\nlogo = "bob.png"\n', encoding="utf-8")

        result = await run_donor_sync(NOW, config, donor_info_path=path)

        assert result.donors[1].logo == "bob.png"

    async def test_missing_overrides_fail_before_fetching(self, config, mock_stripe, mock_every_org):
        with pytest.raises(OverrideFileError):
            await run_donor_sync(NOW, config)

        mock_stripe.assert_not_called()
        mock_every_org.assert_not_called()

    async def test_fatal_source_error_propagates(self, config, donor_info, mock_every_org):
        with patch(
            "services.donor_sync.orchestrator.get_stripe_donors",
            new_callable=AsyncMock,
            side_effect=UnmatchedPaymentError("no checkout session for pi_1"),
        ):
            with pytest.raises(UnmatchedPaymentError):
                await run_donor_sync(NOW, config)

    async def test_to_dict_has_no_donor_identities(self, config, donor_info,
                                                   mock_stripe, mock_every_org):
        summary = (await run_donor_sync(NOW, config)).to_dict()

        assert summary["metrics"] == {"monthly_dollars": 720, "sponsors": 1, "members": 2}
        assert "Jane" not in str(summary)
        assert "cus_1" not in str(summary)
