"""
Tests for the consent-gated every.org row filter.

The central property: a supporter who did not opt in never has a name
or amount in the output, under either policy.
"""

import pytest

from ..privacy import (
    ConsentPolicy,
    InvalidAmountError,
    MissingAmountError,
    PrivateSupporterError,
    donor_from_row,
    filter_rows,
    has_public_consent,
)
from .builders import NOW


def make_row(**overrides):
    row = {
        "Created": "10/01/2026",
        "Donor id": "d-123",
        "Name": "Jane Supporter",
        "Email": "jane@example.com",
        "Amount": "25.00",
        "Frequency": "Monthly",
        "Public supporter": "true",
        "Recurring donation status": "Active",
        "Last donation": "10/01/2026",
    }
    row.update(overrides)
    return row


@pytest.fixture
def mixed_rows():
    return [
        make_row(**{"Donor id": "public-1", "Name": "Public One", "Amount": "10"}),
        make_row(**{"Donor id": "private-1", "Name": "Secret Person",
                    "Amount": "999", "Public supporter": "false"}),
        make_row(**{"Donor id": "private-2", "Name": "Also Secret",
                    "Amount": "5", "Public supporter": None}),
        make_row(**{"Donor id": "public-2", "Name": "No Amount", "Amount": ""}),
        make_row(**{"Donor id": "public-3", "Name": "Bad Amount", "Amount": "ten"}),
    ]


class TestHasPublicConsent:
    """Consent requires an explicit true."""

    @pytest.mark.parametrize("value", ["true", "TRUE", " True "])
    def test_true_values(self, value):
        assert has_public_consent({"Public supporter": value}) is True

    @pytest.mark.parametrize("value", ["false", "", None, "yes", "1"])
    def test_everything_else_is_private(self, value):
        assert has_public_consent({"Public supporter": value}) is False

    def test_missing_column_is_private(self):
        assert has_public_consent({"Name": "X"}) is False

    def test_header_case_insensitive(self):
        assert has_public_consent({"public SUPPORTER": "true"}) is True


class TestDropPolicy:
    """Rows without consent are excluded entirely."""

    def test_public_row_becomes_donor(self):
        donor = donor_from_row(make_row(), NOW)

        assert donor.payer_id == "every.org:d-123"
        assert donor.source == "every.org"
        assert donor.name == "Jane Supporter"
        assert donor.amount == 25
        assert donor.past is False

    def test_private_row_rejected(self):
        with pytest.raises(PrivateSupporterError):
            donor_from_row(make_row(**{"Public supporter": "false"}), NOW)

    def test_missing_amount_rejected(self):
        with pytest.raises(MissingAmountError):
            donor_from_row(make_row(Amount=""), NOW)

    def test_invalid_amount_rejected(self):
        with pytest.raises(InvalidAmountError):
            donor_from_row(make_row(Amount="lots"), NOW)

    def test_non_finite_amount_rejected(self):
        with pytest.raises(InvalidAmountError):
            donor_from_row(make_row(Amount="inf"), NOW)

    def test_private_rows_never_in_output(self, mixed_rows):
        result = filter_rows(mixed_rows, NOW, policy=ConsentPolicy.DROP)

        ids = [d.payer_id for d in result.donors]
        assert ids == ["every.org:public-1"]
        assert result.private_dropped == 2
        assert result.missing_amount == 1
        assert result.invalid_amount == 1
        assert result.skipped == 4
        assert result.total_rows == 5


class TestRedactPolicy:
    """Rows without consent are kept with sensitive fields cleared."""

    def test_private_row_redacted(self):
        row = make_row(**{"Public supporter": "false", "Name": "Secret", "Amount": "50"})

        donor = donor_from_row(row, NOW, policy=ConsentPolicy.REDACT)

        assert donor.payer_id == "every.org:d-123"
        assert donor.name is None
        assert donor.amount is None
        assert donor.past is False

    def test_private_row_with_garbage_amount_still_redacted(self):
        """Amount of a private row is never read, so it cannot fail."""
        row = make_row(**{"Public supporter": "false", "Amount": "not a number"})

        donor = donor_from_row(row, NOW, policy=ConsentPolicy.REDACT)

        assert donor.amount is None

    def test_public_row_without_amount_is_non_contributing(self):
        donor = donor_from_row(make_row(Amount=None), NOW, policy=ConsentPolicy.REDACT)

        assert donor.name == "Jane Supporter"
        assert donor.amount is None

    def test_no_private_name_or_amount_leaks(self, mixed_rows):
        result = filter_rows(mixed_rows, NOW, policy=ConsentPolicy.REDACT)

        by_id = {d.payer_id: d for d in result.donors}
        for private_id in ("every.org:private-1", "every.org:private-2"):
            assert by_id[private_id].name is None
            assert by_id[private_id].amount is None

        assert "Secret Person" not in [d.name for d in result.donors]
        assert result.private_redacted == 2
        assert result.private_dropped == 0
        assert result.invalid_amount == 1
        assert len(result.donors) == 4


class TestRowFields:
    """Identity, amount parsing and recency of rows."""

    def test_empty_donor_id_has_no_payer(self):
        donor = donor_from_row(make_row(**{"Donor id": ""}), NOW)
        assert donor.payer_id is None

    def test_empty_name_is_none(self):
        donor = donor_from_row(make_row(Name="   "), NOW)
        assert donor.name is None

    def test_fractional_amount_truncated(self):
        assert donor_from_row(make_row(Amount="24.99"), NOW).amount == 24

    def test_amount_with_symbol_and_separator(self):
        assert donor_from_row(make_row(Amount="$1,250.00"), NOW).amount == 1250

    def test_cancelled_recurring_with_old_last_donation_is_past(self):
        row = make_row(**{"Recurring donation status": "Cancelled", "Last donation": "06/01/2026"})
        assert donor_from_row(row, NOW).past is True

    def test_one_off_recent_donation_is_current(self):
        row = make_row(**{"Recurring donation status": None, "Last donation": "10/12/2026"})
        assert donor_from_row(row, NOW).past is False

    def test_unparseable_last_donation_is_past(self):
        row = make_row(**{"Recurring donation status": "", "Last donation": "2026-10-12"})
        assert donor_from_row(row, NOW).past is True

    def test_custom_date_format(self):
        row = make_row(**{"Recurring donation status": "", "Last donation": "2026-10-12"})
        assert donor_from_row(row, NOW, date_format="%Y-%m-%d").past is False
