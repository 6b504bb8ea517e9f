"""Tests for recipient normalization and country checks."""

import pytest

from alert_engine.config import DEFAULT_COUNTRIES, CountryCode
from alert_engine.errors import CountryNotEnabledError, InvalidRecipientError
from alert_engine.phone import ensure_country_enabled, match_country, normalize_number


class TestNormalizeNumber:
    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("+1 (202) 555-0123", "+12025550123"),
            ("2025550123", "+12025550123"),
            ("12025550123", "+12025550123"),
            ("0044 20 7946 0958", "+442079460958"),
            ("+61.412.345.678", "+61412345678"),
        ],
    )
    def test_normalizes(self, raw, expected):
        assert normalize_number(raw) == expected

    @pytest.mark.parametrize("raw", ["", "   ", "+0123456", "abc", "+1234567890123456", "555-0123"])
    def test_rejects(self, raw):
        with pytest.raises(InvalidRecipientError):
            normalize_number(raw)


class TestCountries:
    def test_longest_prefix_wins(self):
        countries = [CountryCode(code="+1", name="NANP"), CountryCode(code="+1264", name="Anguilla", enabled=False)]
        assert match_country("+12645551234", countries).name == "Anguilla"
        assert match_country("+12025550123", countries).name == "NANP"

    def test_enabled_country_passes(self):
        assert ensure_country_enabled("+12025550123", DEFAULT_COUNTRIES).code == "+1"

    def test_disabled_country_rejected(self):
        with pytest.raises(CountryNotEnabledError) as exc_info:
            ensure_country_enabled("+8613800138000", DEFAULT_COUNTRIES)
        assert exc_info.value.country == "China"

    def test_unknown_country_rejected(self):
        with pytest.raises(CountryNotEnabledError) as exc_info:
            ensure_country_enabled("+2348012345678", DEFAULT_COUNTRIES)
        assert exc_info.value.country is None
