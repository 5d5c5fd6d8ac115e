"""
Tests for the CLI entry point: argument wiring and exit codes.
"""

import json
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest
from pydantic import ValidationError

from ..main import create_parser, main
from ..models import Donor, Metrics
from ..orchestrator import SyncResult
from ..reconcile import CurrencyMismatchError
from ..report import DONORS_FILENAME, METRICS_FILENAME
from ..settings import DonorSyncSettings
from .builders import NOW


def sync_result():
    return SyncResult(
        timestamp=NOW,
        donors=[Donor(payer_id="cus_1", source="stripe", name="Alice", amount=50, past=False)],
        metrics=Metrics(monthly_total=50, sponsor_count=0, member_count=1),
        source_counts={"stripe": 1},
    )


@pytest.fixture
def mock_settings(config):
    with patch("services.donor_sync.main.settings", return_value=config):
        yield config


@pytest.fixture
def mock_run():
    with patch(
        "services.donor_sync.main.run_donor_sync",
        new_callable=AsyncMock,
        return_value=sync_result(),
    ) as mock:
        yield mock


class TestParser:
    """Argument parsing."""

    def test_defaults(self):
        args = create_parser().parse_args([])

        assert args.donor_info is None
        assert args.output_dir is None
        assert args.skip_stripe is False
        assert args.skip_every_org is False
        assert args.dry_run is False

    def test_all_flags(self):
        args = create_parser().parse_args([
            "--donor-info", "info.toml", "--output-dir", "out",
            "--every-org-csv", "export.csv", "--skip-stripe", "--skip-every-org",
            "--dry-run", "--log-level", "DEBUG", "--log-format", "text",
        ])

        assert args.donor_info == "info.toml"
        assert args.every_org_csv == "export.csv"
        assert args.skip_stripe and args.skip_every_org and args.dry_run
        assert (args.log_level, args.log_format) == ("DEBUG", "text")

    def test_version(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            create_parser().parse_args(["--version"])

        assert exc_info.value.code == 0
        assert "Donor Sync" in capsys.readouterr().out


@pytest.mark.asyncio
class TestMain:
    """Exit codes and report writing."""

    async def test_success_writes_report(self, mock_settings, mock_run):
        exit_code = await main([])

        assert exit_code == 0
        output_dir = Path(mock_settings.output_dir)
        assert (output_dir / DONORS_FILENAME).exists()
        assert (output_dir / METRICS_FILENAME).exists()

    async def test_flags_forwarded(self, mock_settings, mock_run, tmp_path):
        exit_code = await main([
            "--donor-info", "info.toml", "--every-org-csv", "export.csv",
            "--skip-every-org", "--output-dir", str(tmp_path / "site"),
        ])

        assert exit_code == 0
        kwargs = mock_run.await_args.kwargs
        assert kwargs["donor_info_path"] == "info.toml"
        assert kwargs["every_org_csv"] == "export.csv"
        assert kwargs["include_stripe"] is True
        assert kwargs["include_every_org"] is False
        assert (tmp_path / "site" / DONORS_FILENAME).exists()

    async def test_dry_run_writes_nothing(self, mock_settings, mock_run, capsys):
        exit_code = await main(["--dry-run"])

        assert exit_code == 0
        assert not Path(mock_settings.output_dir).exists()
        summary = json.loads(capsys.readouterr().out)
        assert summary["metrics"] == {"monthly_dollars": 50, "sponsors": 0, "members": 1}

    async def test_fatal_error_exits_nonzero_without_writing(self, mock_settings):
        with patch(
            "services.donor_sync.main.run_donor_sync",
            new_callable=AsyncMock,
            side_effect=CurrencyMismatchError("pi_1 is in eur"),
        ):
            exit_code = await main([])

        assert exit_code == 1
        assert not Path(mock_settings.output_dir).exists()

    async def test_unexpected_error_exits_nonzero(self, mock_settings):
        with patch(
            "services.donor_sync.main.run_donor_sync",
            new_callable=AsyncMock,
            side_effect=RuntimeError("boom"),
        ):
            assert await main([]) == 1

    async def test_write_failure_exits_nonzero(self, mock_settings, mock_run):
        with patch("services.donor_sync.main.write_report", side_effect=OSError("read-only")):
            assert await main([]) == 1

    async def test_invalid_configuration(self):
        with pytest.raises(ValidationError) as exc_info:
            DonorSyncSettings(_env_file=None, log_level="LOUD")

        with patch("services.donor_sync.main.settings", side_effect=exc_info.value):
            assert await main([]) == 1
