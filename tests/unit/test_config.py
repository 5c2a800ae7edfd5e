"""Tests for Settings parsing and derived flags."""

import pytest
from pydantic import ValidationError

from letzpocket.config import Settings


def make_settings(**overrides) -> Settings:
    return Settings(_env_file=None, **overrides)  # type: ignore[call-arg]


def test_defaults_to_free_plan_without_provider_key() -> None:
    settings = make_settings(propertydata_api_key="")

    assert settings.default_quota_plan == "free"
    assert settings.propertydata_configured is False


def test_plan_id_is_normalized() -> None:
    assert make_settings(default_quota_plan=" Professional ").default_quota_plan == (
        "professional"
    )


def test_base_url_trailing_slash_removed() -> None:
    settings = make_settings(propertydata_base_url="https://api.example.test/")

    assert settings.propertydata_base_url == "https://api.example.test"


def test_production_forces_json_logs() -> None:
    settings = make_settings(app_env="production", log_format="console")

    assert settings.use_json_logs is True


def test_pool_max_below_min_rejected() -> None:
    with pytest.raises(ValidationError, match="database_pool_max"):
        make_settings(database_pool_min=5, database_pool_max=2)


def test_reset_hour_bounds() -> None:
    with pytest.raises(ValidationError):
        make_settings(quota_reset_hour=24)
