"""
Shared fixtures for donor sync tests.
"""

import logging
from datetime import datetime

import pytest
import structlog

from services.donor_sync.settings import DonorSyncSettings

from .builders import NOW


@pytest.fixture(autouse=True, scope="session")
def route_logs_to_stdlib():
    """Send structlog output through stdlib logging (caplog) instead of stdout."""
    structlog.configure(
        processors=[structlog.processors.JSONRenderer()],
        wrapper_class=structlog.make_filtering_bound_logger(logging.DEBUG),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )
    yield
    structlog.reset_defaults()


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def config(tmp_path) -> DonorSyncSettings:
    """Settings independent of the developer's environment."""
    return DonorSyncSettings(
        _env_file=None,
        stripe_secret_key="sk_test_123",
        stripe_api_base="https://stripe.test/v1",
        every_org_session_cookie="session=abc",
        every_org_csv_path=str(tmp_path / "missing.csv"),
        every_org_balance_url="https://every.test/donationsBalance",
        donor_info_path=str(tmp_path / "donor_info.toml"),
        output_dir=str(tmp_path / "out"),
        http_max_retries=2,
    )
