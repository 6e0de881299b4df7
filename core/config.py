"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for boardkeep happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. token_lifespan_seconds -> TOKEN_LIFESPAN_SECONDS).

  @model_validator(mode="after"): Cross-field validation after all fields are
      resolved. Rejects TTLs and node ids that would make sessions unusable,
      and an owner account configured without a password.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("boardkeep.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'boardkeep.db'}"

# Snowflake node ids occupy 10 bits.
MAX_NODE_ID = 1023


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    # Verbose logging: api/main.py sets the root level to DEBUG.
    debug: bool = False
    database_url: str = _DEFAULT_DB_URL

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    # Lifetime of a fresh session, and the window each authenticated request
    # slides the deadline forward by. Both default to one week.
    token_lifespan_seconds: int = 7 * 24 * 3600
    token_renew_seconds: int = 7 * 24 * 3600
    # Distinguishes session ids minted by different processes/hosts.
    node_id: int = 0
    # Background sweep of expired sessions. 0 disables the loop; sweeps still
    # run on every session insert.
    sweep_interval_seconds: int = 3600
    secure_cookies: bool = False

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    signin_rate_limit: str = "10/minute"
    min_password_length: int = 8
    # Bootstrap owner account. Empty username means no owner is created.
    owner_username: str = ""
    owner_password: str = ""

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_sessions(self) -> "Settings":
        """Reject configurations that would produce unusable sessions.

        A zero or negative TTL would mint sessions that are expired on arrival,
        and a node id outside 10 bits would bleed into the timestamp bits of
        generated session ids.
        """
        if self.token_lifespan_seconds <= 0 or self.token_renew_seconds <= 0:
            raise ValueError("TOKEN_LIFESPAN_SECONDS and TOKEN_RENEW_SECONDS must be positive.")
        if not 0 <= self.node_id <= MAX_NODE_ID:
            raise ValueError(f"NODE_ID must be between 0 and {MAX_NODE_ID}.")
        if self.sweep_interval_seconds < 0:
            raise ValueError("SWEEP_INTERVAL_SECONDS must not be negative.")
        if self.owner_username and not self.owner_password:
            raise ValueError("OWNER_PASSWORD is required when OWNER_USERNAME is set.")
        if self.debug and not self.secure_cookies:
            logger.warning("Running in debug mode with insecure (non-HTTPS) session cookies.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
