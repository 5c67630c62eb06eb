"""Pydantic configuration models for the consensus engine."""

import os
import re
from datetime import date
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from shared_types import OperationClass


class EngineConfig(BaseModel):
    """Reference date, accepted range and classification thresholds."""

    reference_date: date = date(2026, 11, 19)
    min_date: date = date(2026, 11, 19)
    max_date: date = date(2125, 12, 31)
    near_threshold_years: float = 5.0
    far_threshold_years: float = 50.0
    early_release_days: int = -60
    on_track_max_days: int = 60
    delay_likely_max_days: int = 180
    minimum_sample: int = 50
    distribution_min_count: int = 50

    @model_validator(mode="after")
    def validate_ordering(self):
        if not self.min_date <= self.max_date:
            raise ValueError(f"min_date {self.min_date} must not be after max_date {self.max_date}")
        if not 0 < self.near_threshold_years < self.far_threshold_years:
            raise ValueError("Weight thresholds must satisfy 0 < near < far")
        if not self.early_release_days <= self.on_track_max_days < self.delay_likely_max_days:
            raise ValueError("Status thresholds must be ascending")
        if self.minimum_sample < 0 or self.distribution_min_count < 0:
            raise ValueError("Sample minimums must be non-negative")
        return self


class CacheConfig(BaseModel):
    """Statistics cache configuration."""

    ttl_seconds: float = 300.0
    wait_timeout: float = 10.0

    @field_validator("ttl_seconds", "wait_timeout")
    @classmethod
    def validate_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f"Must be positive, got {v}")
        return v


class RateLimitRuleConfig(BaseModel):
    """Limit per sliding window."""

    limit: int = 10
    window_seconds: float = 60.0

    @model_validator(mode="after")
    def validate_rule(self):
        if self.limit < 1 or self.window_seconds <= 0:
            raise ValueError("Rate limit needs limit >= 1 and a positive window")
        return self


class RateLimitsConfig(BaseModel):
    """Per-operation rate limits."""

    enabled: bool = True
    fail_open: bool = True
    submit: RateLimitRuleConfig = Field(default_factory=RateLimitRuleConfig)
    update: RateLimitRuleConfig = Field(
        default_factory=lambda: RateLimitRuleConfig(limit=30, window_seconds=60)
    )
    read: RateLimitRuleConfig = Field(
        default_factory=lambda: RateLimitRuleConfig(limit=60, window_seconds=60)
    )
    delete: RateLimitRuleConfig = Field(default_factory=RateLimitRuleConfig)

    def rules(self) -> dict[OperationClass, RateLimitRuleConfig]:
        return {op: getattr(self, op.value) for op in OperationClass}


class StoreConfig(BaseModel):
    """Prediction store configuration."""

    db_path: Path = Path("~/.consensus/predictions.db")
    busy_timeout: float = 5.0
    retry_attempts: int = 3
    retry_min_wait: float = 0.05
    retry_max_wait: float = 1.0

    @model_validator(mode="after")
    def expand_paths(self):
        """Expand ~ in the database path."""
        self.db_path = self.db_path.expanduser()
        if self.retry_attempts < 1:
            raise ValueError("retry_attempts must be at least 1")
        return self


SALT_ENV_PATTERN = re.compile(r"^SALT_(V\d+)$")


class IdentityConfig(BaseModel):
    """Versioned identity salts. Secrets normally come from SALT_V<n> env vars."""

    salts: dict[str, str] = Field(default_factory=dict)
    current_version: str = "v1"


class VerificationConfig(BaseModel):
    """Human-verification (Turnstile) collaborator."""

    enabled: bool = False
    secret_key: Optional[str] = None
    fail_open: bool = True
    timeout: float = 3.0


class ServerConfig(BaseModel):
    """HTTP front end. Proxy headers are honored only behind a trusted proxy."""

    trust_proxy_headers: bool = False


VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    json_mode: bool = False

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        v_upper = v.upper()
        if v_upper not in VALID_LOG_LEVELS:
            raise ValueError(f"Invalid log level: {v}. Must be one of {VALID_LOG_LEVELS}")
        return v_upper


class ConsensusConfig(BaseModel):
    """Main configuration model."""

    engine: EngineConfig = Field(default_factory=EngineConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    rate_limits: RateLimitsConfig = Field(default_factory=RateLimitsConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    identity: IdentityConfig = Field(default_factory=IdentityConfig)
    verification: VerificationConfig = Field(default_factory=VerificationConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @model_validator(mode="after")
    def expand_env_vars(self):
        """Expand ${VAR} patterns in secrets and merge SALT_V<n> env vars."""
        for version, secret in list(self.identity.salts.items()):
            if secret.startswith("${") and secret.endswith("}"):
                self.identity.salts[version] = os.getenv(secret[2:-1], "")
        for name, value in os.environ.items():
            match = SALT_ENV_PATTERN.match(name)
            if match and value:
                self.identity.salts.setdefault(match.group(1).lower(), value)
        env_version = os.getenv("IDENTITY_SALT_VERSION")
        if env_version:
            self.identity.current_version = env_version.lower()

        key = self.verification.secret_key
        if key and key.startswith("${") and key.endswith("}"):
            self.verification.secret_key = os.getenv(key[2:-1], "")
        elif not key and os.getenv("TURNSTILE_SECRET_KEY"):
            self.verification.secret_key = os.getenv("TURNSTILE_SECRET_KEY")

        env_db = os.getenv("CONSENSUS_DB")
        if env_db:
            self.store.db_path = Path(env_db).expanduser()
        return self

    @classmethod
    def from_dict(cls, data: dict) -> "ConsensusConfig":
        """Create config from a plain dict (e.g. parsed YAML)."""
        if "store" in data and isinstance(data["store"].get("db_path"), str):
            data["store"]["db_path"] = Path(data["store"]["db_path"])
        return cls.model_validate(data)

    def to_dict(self) -> dict:
        return self.model_dump(mode="python")
