"""Unit tests for money and timestamp helpers."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from library_fines.services.dates import (
    as_aware,
    parse_datetime,
    resolve_timezone,
    to_iso8601,
    to_utc,
)
from library_fines.services.money import from_cents, quantize, to_cents


class TestMoney:
    """Tests for cents conversion."""

    def test_to_cents(self):
        assert to_cents(Decimal("1.25")) == 125
        assert to_cents("3") == 300
        assert to_cents(None) == 0

    def test_to_cents_float_goes_through_str(self):
        """Test that 0.1 becomes 10 cents, not 9."""
        assert to_cents(0.1) == 10

    def test_to_cents_rounds_half_up(self):
        assert to_cents("2.005") == 201

    def test_from_cents(self):
        assert from_cents(125) == Decimal("1.25")
        assert from_cents(-5) == Decimal("-0.05")
        assert str(from_cents(300)) == "3.00"

    def test_quantize(self):
        assert quantize("1.234") == Decimal("1.23")


class TestDates:
    """Tests for timestamp normalization."""

    def test_as_aware_assumes_utc(self):
        naive = datetime(2025, 3, 12, 12, 0)
        assert as_aware(naive).tzinfo == timezone.utc

    def test_as_aware_keeps_existing_zone(self):
        plus_two = timezone(timedelta(hours=2))
        value = datetime(2025, 3, 12, 12, 0, tzinfo=plus_two)
        assert as_aware(value) is value

    def test_to_utc_converts(self):
        value = datetime(2025, 3, 12, 14, 0, tzinfo=timezone(timedelta(hours=2)))
        assert to_utc(value) == datetime(2025, 3, 12, 12, 0, tzinfo=timezone.utc)
        assert to_utc(value).utcoffset() == timedelta(0)

    def test_parse_datetime(self):
        parsed = parse_datetime("2025-03-12T12:00:00")
        assert parsed == datetime(2025, 3, 12, 12, 0, tzinfo=timezone.utc)

    def test_parse_datetime_rejects_garbage(self):
        with pytest.raises(ValueError, match="Could not parse datetime"):
            parse_datetime("next tuesday")

    def test_to_iso8601(self):
        value = datetime(2025, 3, 12, 12, 0, tzinfo=timezone.utc)
        assert to_iso8601(value) == "2025-03-12T12:00:00+0000"

    def test_resolve_named_timezone(self):
        tz = resolve_timezone("America/New_York")
        assert datetime(2025, 1, 15, 12, 0, tzinfo=tz).utcoffset() == timedelta(hours=-5)

    def test_resolve_local_timezone(self):
        assert resolve_timezone(None) is not None
        assert resolve_timezone("local") is not None

    def test_resolve_unknown_timezone(self):
        with pytest.raises(ValueError, match="Cannot parse timezone"):
            resolve_timezone("Nowhere/Special")
