"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for the CAS client happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. This is
      the FastAPI dependency injection pattern for config.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. cas_url -> CAS_URL). Type coercion and validation are built in.

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved from environment. Used for the DEBUG-conditional SECRET_KEY
      logic: dev mode generates a key with a warning, production mode refuses
      to start without one.

Security notes:
  SECRET_KEY signs the session cookie that carries the CAS identity. A key
  shorter than 32 chars is rejected outright; anyone who can forge the cookie
  can impersonate any CAS user.

Settings holds raw strings only. cas.config.config_from_settings() turns them
into a validated, immutable CasConfig.

Layer rule: core/ is the kernel. This module may not import from api/, web/,
or cas/.
"""

import logging
import secrets
from functools import lru_cache
from typing import Optional

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("casclient.config")


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file. The model_validator enforces
    production-safety rules at startup.
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
    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    secret_key: str = ""
    secure_cookies: bool = False

    # ------------------------------------------------------------------
    # CAS server
    # ------------------------------------------------------------------

    cas_url: str = "https://cas.example.com"
    cas_login_prefix: str = "login"
    cas_logout_prefix: str = "logout"
    cas_service_validate_prefix: str = "serviceValidate"
    cas_protocol: str = "V3"
    cas_validate_timeout: float = 10.0

    # ------------------------------------------------------------------
    # This application
    # ------------------------------------------------------------------

    app_url: str = "http://localhost:8080"
    # The CAS callback route. Together with app_url it forms the `service`
    # parameter sent on login and on ticket validation.
    cas_login_service_path: str = "auth/cas"
    cas_logout_path: str = "auth/cas/logout"
    cas_no_auth_behavior: str = "authenticate"
    cas_default_after_login_path: Optional[str] = None
    cas_url_to_403: Optional[str] = None
    cas_url_to_404: Optional[str] = None

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce the SECRET_KEY policy.

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Sessions will not survive restart -- acceptable for local dev.

        Production mode (DEBUG=false or not set): refuse to start if
            SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters.
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning(
                    "WARNING: Using auto-generated SECRET_KEY. " "Sessions will not persist across restarts."
                )
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    All modules should call get_settings() rather than constructing Settings()
    directly.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
