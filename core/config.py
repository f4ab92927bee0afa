"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for hrauth happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY). Type coercion and validation are built in.

  @model_validator(mode="after"): Cross-field validation after all fields are
      resolved. Dev mode (DEBUG=true) generates missing keys with a warning;
      production mode refuses to start without them.

Key handling:
  SECRET_KEY signs identity tokens and keys the HMAC used for stored API
  access keys. ENCRYPTION_KEY is the AES-256 key shared with the client
  application: it decrypts inbound credentials and encrypts every response
  envelope. Both are read once here and handed to SymmetricCipher and
  TokenIssuer as constructor arguments; nothing mutates them afterwards.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import secrets
from functools import lru_cache
from typing import Literal

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("hrauth.config")

_DEFAULT_SCOPES = {
    "staff": "ou=staff,ou=people,dc=example,dc=org",
    "faculty": "ou=faculty,ou=people,dc=example,dc=org",
    "project": "ou=project,ou=employee,dc=example,dc=org",
}


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file, as long as DEBUG=true or both keys
    are supplied.
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
    # Empty string is the sentinel for "not configured". The validator below
    # either generates a dev key or raises, so callers never see "".
    secret_key: str = ""
    encryption_key: str = ""

    # ------------------------------------------------------------------
    # Databases (empty -> reuse database_url)
    # ------------------------------------------------------------------

    database_url: str = "sqlite:///hrauth.db"
    hr_database_url: str = ""
    policy_database_url: str = ""

    # ------------------------------------------------------------------
    # Directory
    # ------------------------------------------------------------------

    ldap_url: str = "ldap://localhost:389"
    ldap_bind_dn: str = "cn=bind,ou=bind,dc=example,dc=org"
    ldap_bind_password: str = ""
    ldap_identity_attribute: str = "uid"
    # Ordered: the first scope whose entry accepts the password wins.
    # Set as a JSON object, e.g. LDAP_SEARCH_SCOPES='{"staff": "ou=staff,..."}'
    ldap_search_scopes: dict[str, str] = dict(_DEFAULT_SCOPES)
    ldap_connect_timeout: int = 10

    # ------------------------------------------------------------------
    # Tokens, sessions, OTP
    # ------------------------------------------------------------------

    token_expire_seconds: int = 2 * 60 * 60
    otp_valid_seconds: int = 45
    session_supersede_policy: Literal["lenient", "strict"] = "lenient"

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"
    otp_rate_limit: str = "10/minute"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_keys(self) -> "Settings":
        """Enforce the key policy.

        Dev mode (DEBUG=true): auto-generate missing keys with a warning.
            Tokens and client-side ciphertext will not survive a restart.

        Production mode: refuse to start if either key is missing.

        Both modes: SECRET_KEY must be at least 32 characters and
            ENCRYPTION_KEY exactly 32 bytes (AES-256).
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("Using auto-generated SECRET_KEY. Issued tokens will not survive a restart.")
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")

        if not self.encryption_key:
            if self.debug:
                self.encryption_key = secrets.token_hex(16)
                logger.warning("Using auto-generated ENCRYPTION_KEY. Clients cannot decrypt responses.")
            else:
                raise ValueError(
                    "ENCRYPTION_KEY is required in production mode. "
                    "Set ENCRYPTION_KEY in your environment or .env file."
                )
        if len(self.encryption_key.encode("utf-8")) != 32:
            raise ValueError("ENCRYPTION_KEY must be exactly 32 bytes.")

        if not self.ldap_search_scopes:
            raise ValueError("LDAP_SEARCH_SCOPES must name at least one scope.")
        return self

    @property
    def resolved_hr_database_url(self) -> str:
        return self.hr_database_url or self.database_url

    @property
    def resolved_policy_database_url(self) -> str:
        return self.policy_database_url or self.database_url


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
