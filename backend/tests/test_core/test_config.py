"""Tests for settings validation."""

from decimal import Decimal

import pytest

from homestay_checkout.config import Settings


class TestSettings:
    def test_postgres_url_uses_asyncpg(self):
        s = Settings(database_url="postgresql://u:p@db:5432/checkout")
        assert s.async_database_url == "postgresql+asyncpg://u:p@db:5432/checkout"

    def test_other_drivers_untouched(self):
        s = Settings(database_url="sqlite+aiosqlite:///:memory:")
        assert s.async_database_url == "sqlite+aiosqlite:///:memory:"

    def test_default_jwt_secret_rejected_in_production(self):
        with pytest.raises(ValueError, match="JWT_SECRET_KEY"):
            Settings(environment="production", jwt_secret_key="change-me-in-production")

    def test_default_jwt_secret_warns_in_development(self):
        with pytest.warns(UserWarning, match="default JWT secret"):
            Settings(environment="development", jwt_secret_key="change-me-in-production")

    def test_rate_must_be_positive(self):
        with pytest.raises(ValueError, match="NPR_PER_USD"):
            Settings(npr_per_usd=Decimal("0"))

    def test_frontend_added_to_cors(self):
        s = Settings(frontend_url="https://stay.example.com", cors_origins=["http://localhost:3000"])
        assert "https://stay.example.com" in s.cors_origins

    def test_payment_callback_url(self):
        s = Settings(site_url="https://stay.example.com/", payment_callback_path="/payment-callback")
        assert s.payment_callback_url == "https://stay.example.com/payment-callback"
