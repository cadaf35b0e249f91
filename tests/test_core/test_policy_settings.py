"""Tests for policy loading and settings."""

import pytest

from scopeguard.policy import SecurityPolicy, load_policy
from scopeguard.settings import Settings


def test_load_policy_defaults_without_file():
    policy = load_policy(None)
    assert policy.objects.user_management == "user.management"
    assert policy.is_ministry_only("inspection.management")
    assert "INSPECTOR" in policy.roles.inspection_approvers


def test_load_policy_from_yaml(tmp_path):
    path = tmp_path / "policy.yaml"
    path.write_text(
        "policy:\n"
        "  roles:\n"
        "    inspection_approvers: [CHIEF_INSPECTOR]\n"
        "  ministry_only_objects: [audit.management]\n",
        encoding="utf-8",
    )
    policy = load_policy(path)
    assert policy.roles.inspection_approvers == ["CHIEF_INSPECTOR"]
    assert policy.is_ministry_only("audit.management")
    assert not policy.is_ministry_only("inspection.management")
    # Untouched sections keep their defaults.
    assert policy.roles.financial_viewers == SecurityPolicy().roles.financial_viewers


def test_load_policy_requires_top_level_key(tmp_path):
    path = tmp_path / "policy.yaml"
    path.write_text("roles: {}\n", encoding="utf-8")
    with pytest.raises(ValueError, match="Missing top-level 'policy' key"):
        load_policy(path)


def test_settings_from_environment(monkeypatch):
    monkeypatch.setenv("SCOPEGUARD_CONTEXT_TTL_SECONDS", "60")
    monkeypatch.setenv("SCOPEGUARD_CACHE_URL", "redis://cache:6379/0")
    monkeypatch.setenv("SCOPEGUARD_USER_ID_HEADER", "X-Verified-User")
    settings = Settings()
    assert settings.context_ttl_seconds == 60
    assert settings.cache_url == "redis://cache:6379/0"
    assert settings.user_id_header == "X-Verified-User"
    assert settings.max_hierarchy_depth == 10


def test_settings_db_url_override():
    assert Settings(db_url="sqlite://").resolved_db_url() == "sqlite://"
    assert Settings().resolved_db_url().startswith("sqlite:///")


def test_bundled_policy_file_matches_defaults():
    path = Settings().resolved_policy_path()
    assert path is not None
    assert load_policy(path) == SecurityPolicy()
