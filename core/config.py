"""
core/config.py -- Environment-driven settings for the CRM auth service.

Every knob the service has (secrets, database URLs, session and reset
lifetimes, the rate-limit quota, admin addresses) is a field on Settings.
Nothing else in the tree reads os.environ.

get_settings() builds Settings on first call and caches it. Route handlers
receive it via Depends(get_settings); tests replace it through
app.dependency_overrides with a model_copy() of the real instance.

Variable names are the upper-cased field names (session_ttl_days ->
SESSION_TTL_DAYS). A .env file in the working directory is read if present.

Security notes:
  SECRET_KEY keys the HMAC used to store session and reset tokens. A key
  shorter than 32 chars is rejected outright, and production mode refuses to
  start without one.

Layer rule: core/ is the kernel. This module may not import from api/, auth/,
or licensing/.
"""

import logging
import secrets
from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("crmauth.config")


def _split_csv(value: str) -> list[str]:
    return [part.strip() for part in value.split(",") if part.strip()]


class Settings(BaseSettings):
    """Runtime configuration for the auth, licensing and gate layers.

    Only SECRET_KEY lacks a usable default, and DEBUG=true papers over that
    by generating one, so a bare Settings() works on a developer machine.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    # "development" unlocks test conveniences such as echoing reset tokens.
    environment: str = "production"
    # "" means unset; validate_secret_key() fills it in dev or refuses to start.
    secret_key: str = ""

    # ------------------------------------------------------------------
    # Storage (empty string = use the store's bundled SQLite file)
    # ------------------------------------------------------------------

    auth_database_url: str = ""
    license_database_url: str = ""

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    session_ttl_days: int = 30
    reset_token_ttl_hours: int = 24
    min_password_length: int = 8
    bcrypt_rounds: int = 12
    # Comma-separated e-mail addresses granted access to admin endpoints.
    admin_emails: str = ""

    # ------------------------------------------------------------------
    # Licensing
    # ------------------------------------------------------------------

    license_trial_days: int = 30

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    # limits storage URI, e.g. "memory://" or "redis://localhost:6379".
    # Empty disables the gate (fail open).
    rate_limit_storage_uri: str = ""
    rate_limit_requests: int = 60
    rate_limit_window_seconds: int = 60
    rate_limit_path_prefix: str = "/api/"

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    trusted_hosts: str = "localhost,127.0.0.1,*.localhost"
    cors_origins: str = "http://localhost,http://localhost:3000,http://127.0.0.1"

    # ------------------------------------------------------------------
    # Derived values
    # ------------------------------------------------------------------

    @property
    def is_development(self) -> bool:
        return self.environment.strip().lower() == "development"

    @property
    def admin_email_list(self) -> list[str]:
        return [e.lower() for e in _split_csv(self.admin_emails)]

    @property
    def trusted_host_list(self) -> list[str]:
        return _split_csv(self.trusted_hosts)

    @property
    def cors_origin_list(self) -> list[str]:
        return _split_csv(self.cors_origins)

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Check SECRET_KEY and the password policy before anything uses them.

        With DEBUG=true a missing key is replaced by a random one, which means
        every stored session hash goes stale on restart. Without DEBUG a
        missing key is fatal. Short keys are fatal either way.
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("SECRET_KEY not set; generated a throwaway key. Sessions end on restart.")
            else:
                raise ValueError(
                    "SECRET_KEY must be set unless DEBUG=true. "
                    "Provide it through the environment or .env."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        if self.min_password_length < 1:
            raise ValueError("MIN_PASSWORD_LENGTH must be a positive integer.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide Settings, building it on first use."""
    return Settings()
