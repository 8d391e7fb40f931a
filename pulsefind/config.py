# pyright: reportExplicitAny=false
"""Configuration management for PulseFind."""

from __future__ import annotations

import os
import re
from enum import Enum
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator


class MatchingMode(str, Enum):
    """How aggressively low-confidence matches are filtered."""

    LOOSE = "loose"
    STRICT = "strict"


class PreprocessConfig(BaseModel):
    """Audio normalization settings."""

    silence_threshold: float = Field(
        default=0.01, description="Absolute amplitude below which samples count as silence"
    )
    target_peak: float = Field(default=0.9, description="Peak level after normalization")
    target_sample_rate: int = Field(
        default=44100, description="Output sample rate (fixed, downstream stages assume it)"
    )

    @field_validator("silence_threshold")
    @classmethod
    def validate_silence_threshold(cls, v: float) -> float:
        """Validate the silence threshold is a usable amplitude."""
        if not 0.0 < v < 1.0:
            raise ValueError(f"silence_threshold must be between 0 and 1, got {v}")
        return v

    @field_validator("target_peak")
    @classmethod
    def validate_target_peak(cls, v: float) -> float:
        """Validate the target peak leaves no room for clipping."""
        if not 0.0 < v <= 1.0:
            raise ValueError(f"target_peak must be in (0, 1], got {v}")
        return v

    @field_validator("target_sample_rate")
    @classmethod
    def validate_sample_rate(cls, v: int) -> int:
        """Only 44.1kHz output is supported."""
        if v != 44100:
            raise ValueError(f"target_sample_rate must be 44100, got {v}")
        return v


class SegmentConfig(BaseModel):
    """How many segments each scan mode submits for matching."""

    standard_count: int = Field(default=4, ge=1)
    deep_count: int = Field(default=8, ge=1)


class MatchingConfig(BaseModel):
    """Aggregation and filtering settings."""

    min_platform_confidence: int = Field(default=50, ge=0, le=100)
    platform_timeout_sec: float = Field(default=10.0, gt=0)
    max_hint_queries: int = Field(default=5, ge=1)
    oracle_sample_bytes: int = Field(
        default=500 * 1024,
        gt=44,
        description="Largest WAV (header included) sent to the oracle per segment",
    )
    corroborate: bool = True
    corroboration_threshold: int = Field(default=70, ge=0, le=100)
    strict_threshold: int = Field(default=85, ge=0, le=100)
    loose_threshold: int = Field(default=40, ge=0, le=100)
    adaptive_thresholds: bool = True

    @model_validator(mode="after")
    def validate_threshold_order(self) -> MatchingConfig:
        """Strict mode must never accept more than loose mode."""
        if self.loose_threshold > self.strict_threshold:
            raise ValueError(
                f"loose_threshold ({self.loose_threshold}) must not exceed "
                f"strict_threshold ({self.strict_threshold})"
            )
        return self


class SpotifyConfig(BaseModel):
    """Spotify Web API client credentials."""

    client_id: str = Field(..., description="Spotify application client ID")
    client_secret: str = Field(..., description="Spotify application client secret")


class YouTubeConfig(BaseModel):
    """YouTube Data API v3 credentials."""

    api_key: str = Field(..., description="YouTube Data API key")


class ACRCloudConfig(BaseModel):
    """Fingerprint oracle (ACRCloud) credentials."""

    host: str = Field(default="identify-eu-west-1.acrcloud.com")
    access_key: str = Field(..., description="ACRCloud access key")
    access_secret: str = Field(..., description="ACRCloud access secret")


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    file: str | None = None

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Normalize and validate the log level name."""
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level


class Config(BaseModel):
    """Global configuration."""

    preprocess: PreprocessConfig = Field(default_factory=PreprocessConfig)
    segments: SegmentConfig = Field(default_factory=SegmentConfig)
    matching: MatchingConfig = Field(default_factory=MatchingConfig)
    spotify: SpotifyConfig | None = Field(
        default=None, description="Spotify credentials (optional, search disabled if absent)"
    )
    youtube: YouTubeConfig | None = Field(
        default=None, description="YouTube credentials (optional, search disabled if absent)"
    )
    acrcloud: ACRCloudConfig | None = Field(
        default=None, description="Fingerprint oracle credentials (optional)"
    )
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def _collect_required_env_vars(cls, data: Any, collected: set[str] | None = None) -> set[str]:
        """Recursively collect all ${VAR_NAME} references from config data.

        Args:
            data: YAML data structure (dict, list, str, etc.)
            collected: Set of variable names found so far

        Returns:
            Set of all environment variable names referenced in config
        """
        if collected is None:
            collected = set()

        if isinstance(data, dict):
            for v in data.values():
                cls._collect_required_env_vars(v, collected)
        elif isinstance(data, list):
            for item in data:
                cls._collect_required_env_vars(item, collected)
        elif isinstance(data, str):
            collected.update(re.findall(r"\$\{([^}]+)\}", data))

        return collected

    @classmethod
    def _substitute_env_vars(cls, data: Any) -> Any:
        """Recursively substitute ${VAR_NAME} with environment variables.

        Raises:
            ValueError: If referenced environment variable is not set
        """
        if isinstance(data, dict):
            return {k: cls._substitute_env_vars(v) for k, v in data.items()}
        elif isinstance(data, list):
            return [cls._substitute_env_vars(item) for item in data]
        elif isinstance(data, str):

            def replace_var(match: re.Match[str]) -> str:
                var_name = match.group(1)
                value = os.getenv(var_name)
                if value is None:
                    raise ValueError(
                        f"Environment variable '{var_name}' referenced in config but not set"
                    )
                return value

            return re.sub(r"\$\{([^}]+)\}", replace_var, data)
        else:
            return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Config:
        """Validate raw (already parsed) config data.

        Credential sections set to null are skipped entirely, so their
        environment variables are never required.
        """
        data = {k: v for k, v in data.items() if v is not None}

        required_vars = cls._collect_required_env_vars(data)
        missing_vars = [var for var in required_vars if var not in os.environ]
        if missing_vars:
            raise ValueError(
                f"Missing required environment variables: {', '.join(sorted(missing_vars))}\n"
                + "Please set these in your .env file or environment.\n"
                + "See .env.example for reference."
            )

        return cls(**cls._substitute_env_vars(data))

    @classmethod
    def load(cls, config_path: str = "config.yaml") -> Config:
        """Load configuration from YAML file.

        Note: Assumes environment variables are already loaded (e.g., via load_dotenv()).
        """
        path = Path(config_path)
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(path, "r") as f:
            data: dict[str, Any] | None = yaml.safe_load(f)

        return cls.from_dict(data or {})


# Global config instance
_config: Config | None = None


def load_config(config_path: str = "config.yaml") -> Config:
    """Load and cache the global configuration."""
    global _config
    _config = Config.load(config_path)
    return _config


def get_config() -> Config:
    """Get the cached configuration.

    Loads config.yaml on first use; falls back to defaults when the file
    does not exist so the library works without one.
    """
    global _config
    if _config is None:
        config_path = os.getenv("PULSEFIND_CONFIG", "config.yaml")
        if Path(config_path).exists():
            _config = load_config(config_path)
        else:
            _config = Config()
    return _config
