"""
Tests for settings parsing and the frozen business rules.
"""
from decimal import Decimal

import pytest
from pydantic import ValidationError

from rate_router.core.config import BusinessRulesConfig, DEFAULT_RATE_PROVIDERS
from rate_router.core.exceptions import EXCEPTION_CATALOG, OrderFetchFailure, ProviderTimeout
from tests.conftest import make_settings


class TestSettings:
    """Environment parsing and production guards."""

    @pytest.mark.parametrize("value,expected", [
        ("internal,ups", ["internal", "ups"]),
        ('["Internal", "ShipEngine"]', ["internal", "shipengine"]),
        (["UPS ", "internal"], ["ups", "internal"]),
        ("", DEFAULT_RATE_PROVIDERS),
    ])
    def test_rate_providers_parsing(self, value, expected):
        assert make_settings(RATE_PROVIDERS=value).RATE_PROVIDERS == expected

    @pytest.mark.parametrize("url", [
        "postgres://u:p@db:5432/rates",
        "postgresql://u:p@db:5432/rates",
    ])
    def test_database_url_coerced_to_asyncpg(self, url):
        settings = make_settings(DATABASE_URL=url)
        assert settings.DATABASE_URL == "postgresql+asyncpg://u:p@db:5432/rates"

    def test_empty_min_savings_means_no_floor(self):
        assert make_settings(MIN_SAVINGS_CENTS="").MIN_SAVINGS_CENTS is None
        assert make_settings(MIN_SAVINGS_CENTS="250").MIN_SAVINGS_CENTS == 250

    def test_negative_margin_rejected(self):
        with pytest.raises(ValidationError):
            make_settings(RATE_MARGIN_PERCENTAGE="-1")

    def test_production_requires_webhook_secret(self):
        with pytest.raises(ValidationError) as exc_info:
            make_settings(
                ENVIRONMENT="production",
                DATABASE_URL="postgresql+asyncpg://u:p@db.internal:5432/rates",
            )
        assert "WEBHOOK_SECRET" in str(exc_info.value)

    def test_production_rejects_localhost_database(self):
        with pytest.raises(ValidationError) as exc_info:
            make_settings(ENVIRONMENT="production", WEBHOOK_SECRET="s3cret")
        assert "Localhost DATABASE_URL" in str(exc_info.value)

    def test_production_config_accepted(self):
        settings = make_settings(
            ENVIRONMENT="production",
            WEBHOOK_SECRET="s3cret",
            DATABASE_URL="postgresql+asyncpg://u:p@db.internal:5432/rates",
        )
        assert settings.ENVIRONMENT == "production"


class TestBusinessRulesConfig:
    """Rules are read once from settings and frozen."""

    def test_from_settings(self):
        rules = BusinessRulesConfig.from_settings(make_settings(
            RATE_MARGIN_PERCENTAGE="7.5",
            SPEED_ADVANTAGE_THRESHOLD_DAYS=1,
            MIN_SAVINGS_CENTS=100,
            INTERNAL_CARRIER_CODE="InHouse",
            MAX_WEIGHT_LBS="20",
            MAX_INTERNAL_ZONE=6,
        ))

        assert rules.margin_percentage == Decimal("7.5")
        assert rules.speed_advantage_threshold_days == 1
        assert rules.min_savings_cents == 100
        assert rules.internal_carrier == "inhouse"
        assert rules.eligibility.max_weight_grams == 9072
        assert rules.eligibility.max_dimensions_in == (Decimal("24"), Decimal("18"), Decimal("12"))
        assert rules.eligibility.max_zone == 6

    def test_rules_are_immutable(self):
        rules = BusinessRulesConfig()
        with pytest.raises(AttributeError):
            rules.margin_percentage = Decimal("50")

    def test_to_dict(self):
        data = BusinessRulesConfig().to_dict()
        assert data["margin_percentage"] == "5"
        assert data["max_weight_grams"] == 22680
        assert data["min_savings_cents"] is None


class TestExceptions:
    """Structured errors carry code, severity, and details."""

    def test_provider_timeout_details(self):
        error = ProviderTimeout("too slow", provider="ups", timeout_seconds=5.0)
        data = error.to_dict()

        assert data["error_type"] == "ProviderTimeout"
        assert data["code"] == "PROVIDER_TIMEOUT"
        assert data["details"] == {"provider": "ups", "status_code": None, "timeout_seconds": 5.0}

    def test_order_fetch_failure_defaults_to_transient(self):
        error = OrderFetchFailure("boom", order_id="1001")
        assert error.transient is True
        assert error.severity == "P1"

    def test_catalog_codes_match_classes(self):
        for code, entry in EXCEPTION_CATALOG.items():
            assert entry["class"].default_code == code
