from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Engine settings.

    Notes:
    - Defaults are local and deterministic (SQLite file, in-process cache).
    - Override via ``SCOPEGUARD_*`` env vars when embedding in an existing system.
    """

    model_config = SettingsConfigDict(env_prefix="SCOPEGUARD_", extra="ignore")

    db_url: str | None = None
    cache_url: str | None = None
    policy_path: str | None = None
    log_level: str = "INFO"

    context_ttl_seconds: int = 3600
    context_max_age_seconds: float = 3600.0
    store_timeout_seconds: float = 5.0
    fetch_workers: int = 4
    max_hierarchy_depth: int = 10

    # Header carrying the already-verified user id (set by the upstream identity layer).
    user_id_header: str = "X-User-Id"

    def resolved_db_url(self) -> str:
        if self.db_url:
            return self.db_url

        repo_root = Path(__file__).resolve().parents[1]
        db_path = repo_root / "scopeguard.db"
        return f"sqlite:///{db_path}"

    def resolved_policy_path(self) -> Path | None:
        if self.policy_path:
            return Path(self.policy_path)

        repo_root = Path(__file__).resolve().parents[1]
        default = repo_root / "config" / "policy.yaml"
        return default if default.exists() else None


@lru_cache
def get_settings() -> Settings:
    return Settings()
