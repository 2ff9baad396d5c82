"""
Unit Tests - ECB Parsing and Sync Timing
========================================
"""

from datetime import date, datetime, timedelta, timezone

import pytest

from exceptions import ValidationError
from services.exchange_rates import MAX_SYNC_INTERVAL_SECONDS, parse_ecb_rates, seconds_until_next_sync

UTC = timezone.utc


class TestParseEcbRates:

    @pytest.mark.unit
    def test_parses_dated_cube(self, ecb_xml):
        rates_date, rates = parse_ecb_rates(ecb_xml)

        assert rates_date == date(2024, 3, 15)
        assert rates == {"USD": 1.089, "GBP": 0.855, "JPY": 161.5}

    @pytest.mark.unit
    def test_unparsable_rate_skipped(self):
        xml = (
            '<Envelope><Cube><Cube time="2024-03-15">'
            '<Cube currency="USD" rate="abc"/><Cube currency="CHF" rate="0.96"/>'
            "</Cube></Cube></Envelope>"
        )

        assert parse_ecb_rates(xml)[1] == {"CHF": 0.96}

    @pytest.mark.unit
    def test_malformed_document(self):
        with pytest.raises(ValidationError):
            parse_ecb_rates("<not-closed")

    @pytest.mark.unit
    def test_document_without_rates(self):
        with pytest.raises(ValidationError):
            parse_ecb_rates("<Envelope><Cube/></Envelope>")


class TestSecondsUntilNextSync:

    @pytest.mark.unit
    def test_later_today_in_winter(self):
        # 10:00 UTC is 11:00 CET; 17:00 CET is 16:00 UTC
        now = datetime(2024, 1, 15, 10, 0, tzinfo=UTC)
        assert seconds_until_next_sync(now) == 6 * 3600

    @pytest.mark.unit
    def test_later_today_in_summer(self):
        # CEST is UTC+2; 17:00 CEST is 15:00 UTC
        now = datetime(2024, 7, 15, 10, 0, tzinfo=UTC)
        assert seconds_until_next_sync(now) == 5 * 3600

    @pytest.mark.unit
    def test_at_sync_hour_rolls_to_tomorrow(self):
        now = datetime(2024, 1, 15, 16, 0, tzinfo=UTC)
        assert seconds_until_next_sync(now) == 24 * 3600

    @pytest.mark.unit
    def test_across_spring_forward(self):
        """The night clocks jump from 02:00 to 03:00 is only 23 hours long."""
        # 2024-03-30 17:00 CET == 16:00 UTC; next target 2024-03-31 17:00 CEST == 15:00 UTC
        now = datetime(2024, 3, 30, 16, 0, 1, tzinfo=UTC)
        assert seconds_until_next_sync(now) == pytest.approx(23 * 3600 - 1)

    @pytest.mark.unit
    def test_across_fall_back(self):
        # 2024-10-26 17:00 CEST == 15:00 UTC; next target 2024-10-27 17:00 CET == 16:00 UTC
        now = datetime(2024, 10, 26, 15, 0, 1, tzinfo=UTC)
        # 25 hours away, capped at one day
        assert seconds_until_next_sync(now) == MAX_SYNC_INTERVAL_SECONDS

    @pytest.mark.unit
    def test_naive_now_is_utc(self):
        assert seconds_until_next_sync(datetime(2024, 1, 15, 10, 0)) == 6 * 3600

    @pytest.mark.unit
    def test_custom_hour_and_zone(self):
        now = datetime(2024, 1, 15, 12, 0, tzinfo=UTC)
        assert seconds_until_next_sync(now, hour=9, tz="America/New_York") == timedelta(hours=2).total_seconds()
