"""
core/config.py -- Centralized store configuration via pydantic-settings.

All environment variable reads for the credential store happen here. No module
should call os.getenv() or os.environ.get() directly -- import get_settings()
or construct Settings(...) explicitly and hand it to HtpasswdStore.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from HTPASSWD_* environment
      variables and an optional .env file automatically. Field names map to
      env var names (e.g. group_file -> HTPASSWD_GROUP_FILE). Type coercion
      and validation are built in.

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved. Both backing files are mandatory; a store without them has
      nothing to authenticate against.

Paths:
  Relative file paths are resolved against base_dir, which the host sets to
  the directory of its own config file. users_path / groups_path return the
  resolved absolute paths; the raw strings are kept for display.

Layer rule: core/ is the kernel. This module may not import from credstore/.
"""

import logging
from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("core.config")

# Schemes add_user can generate. Verification always accepts every scheme.
Algorithm = Literal["crypt", "bcrypt", "md5", "sha1"]


class Settings(BaseSettings):
    """Store settings loaded from environment variables and .env file.

    file and group_file have no usable default -- they must come from the
    environment or be passed explicitly (tests always pass them).

    Environment variable name mapping: HTPASSWD_ prefix + uppercased field name.
    E.g. `max_users` reads from HTPASSWD_MAX_USERS.
    """

    model_config = SettingsConfigDict(
        env_prefix="HTPASSWD_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Backing files
    # ------------------------------------------------------------------

    # Empty string is the sentinel for "not configured"; the validator below
    # refuses to build a Settings object without both files.
    file: str = ""
    group_file: str = ""
    base_dir: Path = Path(".")

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    # None means unlimited.
    max_users: Optional[int] = Field(default=None, ge=1)
    algorithm: Algorithm = "crypt"
    # bcrypt cost factor, only used when algorithm == "bcrypt"
    rounds: int = Field(default=10, ge=4, le=31)

    # ------------------------------------------------------------------
    # Locking
    # ------------------------------------------------------------------

    # None means wait for the advisory lock indefinitely.
    lock_timeout: Optional[float] = Field(default=None, gt=0)
    lock_poll_interval: float = Field(default=0.05, gt=0)

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_files(self) -> "Settings":
        """Both backing files must be configured before the store can start."""
        if not self.file:
            raise ValueError('should specify "file" in config')
        if not self.group_file:
            raise ValueError('should specify "group_file" in config')
        if self.max_users is None:
            logger.debug("max_users not set -- registration is unlimited")
        return self

    # ------------------------------------------------------------------
    # Resolved paths
    # ------------------------------------------------------------------

    @property
    def users_path(self) -> Path:
        return (Path(self.base_dir) / self.file).resolve()

    @property
    def groups_path(self) -> Path:
        return (Path(self.base_dir) / self.group_file).resolve()


@lru_cache
def get_settings() -> Settings:
    """Return the Settings singleton built from the environment.

    Uses lru_cache so Settings() is instantiated exactly once -- at first call.
    Hosts that embed several stores should construct Settings(...) directly.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
