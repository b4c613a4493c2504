"""
Tests for application settings validation.
"""

import pytest
from pydantic import ValidationError

from src.core.config import Settings

STRONG_KEY = "k" * 48


class TestSettings:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("read committed", "READ COMMITTED"),
            ("REPEATABLE_READ", "REPEATABLE READ"),
            ("  Serializable ", "SERIALIZABLE"),
        ],
    )
    def test_isolation_level_normalized(self, raw, expected):
        assert Settings(db_isolation_level=raw).db_isolation_level == expected

    def test_weak_isolation_level_rejected(self):
        with pytest.raises(ValidationError):
            Settings(db_isolation_level="READ UNCOMMITTED")

    def test_default_secret_rejected_in_production(self):
        with pytest.raises(ValidationError, match="Default secret key"):
            Settings(environment="production", secret_key="dev-secret-key-change-in-production")

    def test_custom_secret_accepted_in_production(self):
        settings = Settings(environment="production", secret_key=STRONG_KEY)

        assert settings.is_production

    def test_database_url_scheme(self):
        with pytest.raises(ValidationError):
            Settings(database_url="mysql://root@localhost/meals")

    def test_cors_origins_from_string(self):
        settings = Settings(cors_origins="https://a.example, https://b.example,")

        assert settings.cors_origins == ["https://a.example", "https://b.example"]

    def test_receipt_url_prefix_normalized(self):
        assert Settings(receipt_url_prefix="receipts/").receipt_url_prefix == "/receipts"

    def test_environment_variables(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("APP_TRANSACTION_TIMEOUT_SECONDS", "5")
        monkeypatch.setenv("APP_FULFILLMENT_RETRY_MAX_ATTEMPTS", "3")

        settings = Settings()

        assert settings.transaction_timeout_seconds == 5.0
        assert settings.fulfillment_retry_max_attempts == 3
        assert settings.fulfillment_retry_interval_seconds == 0
