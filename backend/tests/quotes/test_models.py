"""Tests for quote data models."""

import pytest

from app.quotes.models import ProviderInfo, Quote, QuoteUpdate, UsageRecord, format_percent


class TestFormatPercent:
    """Unit tests for the change-percent formatter."""

    def test_positive(self):
        assert format_percent(1.0, 100.0) == "1.00%"

    def test_negative(self):
        assert format_percent(-2.5, 200.0) == "-1.25%"

    def test_zero_base(self):
        """A zero base can't produce a percentage."""
        assert format_percent(5.0, 0.0) == "0%"


class TestQuote:
    """Unit tests for the Quote model."""

    def test_to_dict_uses_dashboard_keys(self):
        quote = Quote(
            symbol="AAPL",
            price=190.5,
            change=0.5,
            change_percent="0.26%",
            volume=1000,
            previous_close=190.0,
            as_of="2024-02-10",
            exchange="NASDAQ",
            currency="USD",
            provider="twelve_data",
        )
        result = quote.to_dict()

        assert result["symbol"] == "AAPL"
        assert result["changePercent"] == "0.26%"
        assert result["previousClose"] == 190.0
        assert result["latestTradingDay"] == "2024-02-10"
        assert result["provider"] == "twelve_data"

    def test_immutability(self):
        """Test that Quote is immutable."""
        quote = Quote(symbol="AAPL", price=190.5)

        with pytest.raises(AttributeError):
            quote.price = 200.00  # Should raise error


class TestQuoteUpdate:
    """Unit tests for the QuoteUpdate model."""

    def test_direction_up(self):
        update = QuoteUpdate(symbol="AAPL", price=101.0, change=1.0, change_percent="1.00%")
        assert update.direction == "up"

    def test_direction_down(self):
        update = QuoteUpdate(symbol="AAPL", price=99.0, change=-1.0, change_percent="-1.00%")
        assert update.direction == "down"

    def test_direction_flat(self):
        update = QuoteUpdate(symbol="AAPL", price=100.0, change=0.0, change_percent="0.00%")
        assert update.direction == "flat"

    def test_to_dict(self):
        update = QuoteUpdate(
            symbol="AAPL", price=101.0, change=1.0, change_percent="1.00%", volume=50, timestamp=1707580800000
        )
        assert update.to_dict() == {
            "symbol": "AAPL",
            "price": 101.0,
            "change": 1.0,
            "changePercent": "1.00%",
            "volume": 50,
            "timestamp": 1707580800000,
            "direction": "up",
        }


class TestProviderInfo:
    """Unit tests for ProviderInfo."""

    def test_usable_needs_active_and_credential(self):
        assert ProviderInfo(name="finnhub", display_name="Finnhub", api_key="k").usable
        assert not ProviderInfo(name="finnhub", display_name="Finnhub", api_key=None).usable
        assert not ProviderInfo(name="finnhub", display_name="Finnhub", api_key="   ").usable
        assert not ProviderInfo(name="finnhub", display_name="Finnhub", api_key="k", active=False).usable

    def test_to_dict_hides_credential(self):
        info = ProviderInfo(name="finnhub", display_name="Finnhub", api_key="secret")
        result = info.to_dict()

        assert result["hasCredential"] is True
        assert "secret" not in result.values()
        assert "api_key" not in result


class TestUsageRecord:
    def test_ok(self):
        assert UsageRecord(provider="finnhub", endpoint="quote", latency_ms=10, status_code=200).ok
        assert not UsageRecord(provider="finnhub", endpoint="quote", latency_ms=10, status_code=500).ok
