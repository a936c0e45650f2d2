"""Tests for application settings."""

import pytest
from pydantic import ValidationError

from wealth_access.core.config import DEFAULT_GROUP_ROLE_MAP, Settings, get_settings


def test_hierarchy_defaults():
    settings = Settings()
    assert settings.TOP_ROLE == "super_admin"
    assert settings.ACCESSIBLE_USERS_LIMIT == 500
    assert settings.HIERARCHY_MAX_DEPTH == 32
    assert settings.IDENTITY_GROUP_ROLE_MAP == DEFAULT_GROUP_ROLE_MAP
    assert "client" not in settings.PRIVILEGED_ROLES
    assert "rm" not in settings.PRIVILEGED_ROLES


def test_group_map_from_environment(monkeypatch):
    monkeypatch.setenv("IDENTITY_GROUP_ROLE_MAP", '{"Wealth-Admins": "super_admin"}')
    settings = Settings()
    assert settings.IDENTITY_GROUP_ROLE_MAP == {"Wealth-Admins": "super_admin"}


def test_unknown_roles_rejected():
    with pytest.raises(ValidationError):
        Settings(TOP_ROLE="emperor")
    with pytest.raises(ValidationError):
        Settings(IDENTITY_GROUP_ROLE_MAP={"Admins": "root"})
    with pytest.raises(ValidationError):
        Settings(PRIVILEGED_ROLES=["director", "chief"])


def test_limit_bounds():
    with pytest.raises(ValidationError):
        Settings(ACCESSIBLE_USERS_LIMIT=0)


def test_production_requires_database_url():
    with pytest.raises(ValidationError):
        Settings(APP_ENV="production", DATABASE_URL="")


def test_wildcard_cors_with_credentials_rejected():
    with pytest.raises(ValidationError):
        Settings(CORS_ORIGINS="*", CORS_ALLOW_CREDENTIALS=True)


def test_cors_origins_list():
    settings = Settings(CORS_ORIGINS="https://a.example.com, https://b.example.com")
    assert settings.cors_origins_list == ["https://a.example.com", "https://b.example.com"]


def test_get_settings_is_cached():
    get_settings.cache_clear()
    assert get_settings() is get_settings()
