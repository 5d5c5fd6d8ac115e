"""
Configuration settings for Donor Sync service.

Loads configuration from environment variables and .env files
with validation and type conversion.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DonorSyncSettings(BaseSettings):
    """
    Configuration for the Donor Sync service.

    Settings are loaded in this order of precedence:
    1. Environment variables
    2. .env file in current directory
    3. Default values
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Stripe
    stripe_secret_key: Optional[str] = Field(
        default=None,
        description="Stripe secret API key (required unless Stripe is skipped)"
    )

    stripe_api_base: str = Field(
        default="https://api.stripe.com/v1",
        description="Base URL for the Stripe REST API"
    )

    stripe_page_size: int = Field(
        default=100,
        ge=1,
        le=100,
        description="Number of objects per Stripe list page (1-100)"
    )

    stripe_match_strategy: str = Field(
        default="amount",
        description="How payments are paired with checkout sessions (amount, reference)"
    )

    # every.org
    every_org_session_cookie: Optional[str] = Field(
        default=None,
        description="Session cookie for the every.org admin API"
    )

    every_org_csv_path: str = Field(
        default="every_org_donors/donors.csv",
        description="Local every.org donor export; used instead of the API when present"
    )

    every_org_balance_url: str = Field(
        default=(
            "https://api.www.every.org/api/nonprofits/"
            "958ff03c-9c7b-44a4-a66a-2fcc9b8dfed7/admin/donationsBalance"
        ),
        description="every.org donations balance route (carries the CSV export)"
    )

    every_org_consent_policy: str = Field(
        default="drop",
        description="Handling of non-public supporters (drop, redact)"
    )

    every_org_date_format: str = Field(
        default="%m/%d/%Y",
        description="strptime format of the 'Last donation' column"
    )

    # Reconciliation
    base_currency: str = Field(
        default="usd",
        description="Only currency accepted; anything else aborts the run"
    )

    grace_period_days: int = Field(
        default=0,
        ge=0,
        description="Extra days on top of 31 before a donor counts as past"
    )

    sponsor_threshold: int = Field(
        default=500,
        ge=0,
        description="Monthly amount at which a donor counts as a sponsor"
    )

    credit_name_field: str = Field(
        default="nametolistinbevycredits",
        description="Checkout custom field holding the credited name"
    )

    credit_link_field: str = Field(
        default="linktolistinbevycredits",
        description="Checkout custom field holding the credited link"
    )

    # Files
    donor_info_path: str = Field(
        default="donor_info.toml",
        description="Manual donor overrides"
    )

    output_dir: str = Field(
        default=".",
        description="Directory receiving donors.toml and metrics.toml"
    )

    # HTTP Client Configuration
    http_timeout: float = Field(
        default=30.0,
        gt=0,
        description="HTTP request timeout in seconds"
    )

    http_max_retries: int = Field(
        default=3,
        ge=0,
        le=10,
        description="Maximum number of retry attempts"
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )

    log_format: str = Field(
        default="json",
        description="Log output format (json, text)"
    )

    service_name: str = Field(
        default="donor-sync",
        description="Service name for logging"
    )

    environment: str = Field(
        default="development",
        description="Environment name (development, staging, production)"
    )

    @field_validator("stripe_match_strategy")
    @classmethod
    def validate_match_strategy(cls, v):
        """Validate the checkout matching strategy."""
        valid = {"amount", "reference"}
        if v.lower() not in valid:
            raise ValueError(f"stripe_match_strategy must be one of: {', '.join(sorted(valid))}")
        return v.lower()

    @field_validator("every_org_consent_policy")
    @classmethod
    def validate_consent_policy(cls, v):
        """Validate the consent policy name."""
        valid = {"drop", "redact"}
        if v.lower() not in valid:
            raise ValueError(f"every_org_consent_policy must be one of: {', '.join(sorted(valid))}")
        return v.lower()

    @field_validator("base_currency")
    @classmethod
    def validate_base_currency(cls, v):
        """Normalize the currency code to Stripe's lowercase form."""
        v = v.strip().lower()
        if len(v) != 3 or not v.isalpha():
            raise ValueError("base_currency must be a three-letter ISO currency code")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level is one of the standard levels."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in valid_levels:
            raise ValueError(f"log_level must be one of: {', '.join(valid_levels)}")
        return v.upper()

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v):
        """Validate log format is supported."""
        valid_formats = {"json", "text"}
        if v.lower() not in valid_formats:
            raise ValueError(f"log_format must be one of: {', '.join(valid_formats)}")
        return v.lower()

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v):
        """Validate environment name."""
        valid_envs = {"development", "staging", "production"}
        if v.lower() not in valid_envs:
            raise ValueError(f"environment must be one of: {', '.join(valid_envs)}")
        return v.lower()

    @field_validator("stripe_secret_key", "every_org_session_cookie")
    @classmethod
    def blank_to_none(cls, v):
        """Treat empty credentials as unset."""
        if v is None:
            return v
        v = v.strip()
        return v or None

    def stripe_headers(self) -> dict:
        """Get Stripe API headers with authentication."""
        return {
            "Authorization": f"Bearer {self.stripe_secret_key}",
            "User-Agent": f"{self.service_name}/1.0",
            "Accept": "application/json",
        }


@lru_cache()
def get_settings() -> DonorSyncSettings:
    """
    Get cached settings instance.

    Settings are read once per process.
    """
    return DonorSyncSettings()


def settings() -> DonorSyncSettings:
    """Get application settings."""
    return get_settings()
