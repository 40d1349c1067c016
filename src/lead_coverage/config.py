#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Configuration management for the Lead Coverage Monitor.

This module loads configuration from environment variables and an optional
catalog file, provides sensible defaults, and validates configuration values.
"""

import os
import json
import logging
from pathlib import Path
from dataclasses import dataclass, field
from typing import Dict, List, Any, Optional, Tuple

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator

# Load environment variables from .env file
load_dotenv()

# Base directories
ROOT_DIR = Path(os.getenv("LEAD_COVERAGE_HOME", str(Path.cwd()))).absolute()
CONFIG_DIR = ROOT_DIR / "config"
DATA_DIR = ROOT_DIR / "data"

# Default file paths
DEFAULT_CATALOG_PATH = CONFIG_DIR / "catalog.json"
DEFAULT_DB_PATH = DATA_DIR / "leads.db"
DEFAULT_FETCH_SCRIPT_PATH = ROOT_DIR / "scripts" / "data-acquisition" / "simple_fetch.py"
DEFAULT_FETCH_OUTPUT_DIR = DATA_DIR / "auto_fetch"

# Log levels
LOG_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

# Built-in industry catalog
DEFAULT_INDUSTRIES: Tuple[str, ...] = (
    "tattoo", "beauty", "barber", "spa", "nail_salon",
    "gym", "dentist", "pharmacy", "massage",
    "restaurant", "cafe", "bar", "bakery",
    "car_repair", "car_wash", "car_dealer",
    "clothing", "convenience",
    "lawyer", "accountant",
)

# Built-in country catalog (ISO-3166 alpha-2)
DEFAULT_COUNTRIES: Tuple[str, ...] = (
    # Americas
    "US", "CA", "MX", "BR", "AR", "CL", "CO", "PE", "VE", "EC",
    # Europe
    "GB", "DE", "FR", "ES", "IT", "NL", "BE", "CH", "AT", "SE",
    "NO", "DK", "FI", "PL", "CZ", "HU", "RO", "PT", "GR", "IE",
    # Asia-Pacific
    "JP", "CN", "IN", "AU", "NZ", "SG", "MY", "TH", "VN", "PH",
    "ID", "KR", "TW", "HK",
    # Middle East
    "AE", "SA", "IL", "TR", "EG",
    # Africa
    "ZA", "NG", "KE", "MA",
    # Eastern Europe
    "RU", "UA", "BY",
    # Rest of Europe
    "BG", "HR", "SI", "SK", "LT", "LV", "EE",
)


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


def _env_float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


class CatalogFile(BaseModel):
    """Schema of the optional catalog override file."""
    industries: List[str] = Field(min_length=1)
    countries: List[str] = Field(min_length=1)

    @field_validator("industries")
    @classmethod
    def _strip_industries(cls, value: List[str]) -> List[str]:
        cleaned = [v.strip() for v in value]
        if any(not v for v in cleaned):
            raise ValueError("industry names must be non-empty")
        return cleaned

    @field_validator("countries")
    @classmethod
    def _check_countries(cls, value: List[str]) -> List[str]:
        cleaned = [v.strip().upper() for v in value]
        bad = [v for v in cleaned if len(v) != 2 or not v.isalpha()]
        if bad:
            raise ValueError(f"countries must be ISO-3166 alpha-2 codes, got {bad}")
        return cleaned


@dataclass
class JobConfig:
    """
    Parameters of one scheduled job.

    ``threshold``, ``top_k``, ``target_count`` and ``max_concurrent`` are
    ignored by the stats job.
    """
    name: str
    cron: str
    timeout_seconds: float
    threshold: int = 0
    top_k: int = 0
    target_count: int = 0
    max_concurrent: int = 1
    floor: int = 0

    def validate(self, needs_fetch_params: bool = True, needs_threshold: bool = False) -> List[str]:
        """
        Validate job parameters (the cron expression is checked by the scheduler).

        Returns:
            List[str]: List of validation errors, empty if valid
        """
        errors = []
        prefix = f"Job '{self.name}'"

        if not self.cron or not self.cron.strip():
            errors.append(f"{prefix}: cron expression is required")
        if self.timeout_seconds <= 0:
            errors.append(f"{prefix}: timeout must be positive")

        if needs_threshold and self.threshold <= 0:
            errors.append(f"{prefix}: threshold must be positive")

        if needs_fetch_params:
            if self.top_k < 0:
                errors.append(f"{prefix}: top_k must be >= 0")
            if self.max_concurrent < 1:
                errors.append(f"{prefix}: max_concurrent must be >= 1")
            if self.target_count <= 0:
                errors.append(f"{prefix}: target_count must be positive")
            if self.floor < 0:
                errors.append(f"{prefix}: floor must be >= 0")

        return errors

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "cron": self.cron,
            "timeout_seconds": self.timeout_seconds,
            "threshold": self.threshold,
            "top_k": self.top_k,
            "target_count": self.target_count,
            "max_concurrent": self.max_concurrent,
            "floor": self.floor,
        }


@dataclass
class AppConfig:
    """Application configuration."""

    # Database
    db_path: Path = field(
        default_factory=lambda: Path(os.getenv("LEAD_DB_PATH", str(DEFAULT_DB_PATH)))
    )
    db_url: Optional[str] = field(default_factory=lambda: os.getenv("LEAD_DB_URL"))

    # Logging
    log_level: int = field(
        default_factory=lambda: LOG_LEVELS.get(
            os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO
        )
    )
    log_file_path: Optional[Path] = field(
        default_factory=lambda: Path(os.getenv("LOG_FILE_PATH")) if os.getenv("LOG_FILE_PATH") else None
    )
    log_json: bool = field(
        default_factory=lambda: os.getenv("LOG_JSON", "false").lower() == "true"
    )

    # Catalog
    catalog_path: Path = field(
        default_factory=lambda: Path(os.getenv("CATALOG_PATH", str(DEFAULT_CATALOG_PATH)))
    )

    # Daily low-data population job
    low_data_job: JobConfig = field(default_factory=lambda: JobConfig(
        name="low_data_population",
        cron=os.getenv("LOW_DATA_CRON", "0 2 * * *"),
        timeout_seconds=_env_float("LOW_DATA_TIMEOUT_SECS", 30 * 60),
        threshold=_env_int("LOW_DATA_THRESHOLD", 100),
        top_k=_env_int("LOW_DATA_TOP_K", 10),
        target_count=_env_int("LOW_DATA_TARGET", 1000),
        max_concurrent=_env_int("LOW_DATA_MAX_CONCURRENT", 3),
    ))

    # Weekly missing-combination population job
    missing_job: JobConfig = field(default_factory=lambda: JobConfig(
        name="missing_population",
        cron=os.getenv("MISSING_CRON", "0 3 * * 0"),
        timeout_seconds=_env_float("MISSING_TIMEOUT_SECS", 60 * 60),
        top_k=_env_int("MISSING_TOP_K", 20),
        target_count=_env_int("MISSING_TARGET", 500),
        max_concurrent=_env_int("MISSING_MAX_CONCURRENT", 5),
        floor=_env_int("MISSING_FLOOR", 0),
    ))

    # Daily stats report job
    stats_job: JobConfig = field(default_factory=lambda: JobConfig(
        name="stats_report",
        cron=os.getenv("STATS_CRON", "0 4 * * *"),
        timeout_seconds=_env_float("STATS_TIMEOUT_SECS", 60),
    ))
    stats_top_n: int = field(default_factory=lambda: _env_int("STATS_TOP_N", 10))

    # Lead data source
    lead_source_url: Optional[str] = field(default_factory=lambda: os.getenv("LEAD_SOURCE_URL"))
    lead_source_api_key: Optional[str] = field(default_factory=lambda: os.getenv("LEAD_SOURCE_API_KEY"))
    lead_source_timeout_secs: float = field(
        default_factory=lambda: _env_float("LEAD_SOURCE_TIMEOUT_SECS", 120)
    )
    fetch_script_path: Path = field(
        default_factory=lambda: Path(os.getenv("FETCH_SCRIPT_PATH", str(DEFAULT_FETCH_SCRIPT_PATH)))
    )
    fetch_output_dir: Path = field(
        default_factory=lambda: Path(os.getenv("FETCH_OUTPUT_DIR", str(DEFAULT_FETCH_OUTPUT_DIR)))
    )

    # Batch fetching
    fetch_spacing_secs: float = field(default_factory=lambda: _env_float("FETCH_SPACING_SECS", 2.0))
    fetch_tracker_ttl_secs: float = field(
        default_factory=lambda: _env_float("FETCH_TRACKER_TTL_SECS", 60 * 60)
    )

    # Background task pool for manual triggers
    background_workers: int = field(default_factory=lambda: _env_int("BACKGROUND_WORKERS", 2))
    background_queue_size: int = field(default_factory=lambda: _env_int("BACKGROUND_QUEUE_SIZE", 8))

    # Scheduler
    scheduler_timezone: str = field(default_factory=lambda: os.getenv("SCHEDULER_TIMEZONE", "UTC"))

    @property
    def database_url(self) -> str:
        """SQLAlchemy URL; LEAD_DB_URL wins over LEAD_DB_PATH."""
        if self.db_url:
            return self.db_url
        return f"sqlite:///{self.db_path}"

    @property
    def jobs(self) -> List[JobConfig]:
        return [self.low_data_job, self.missing_job, self.stats_job]

    def validate(self) -> List[str]:
        """
        Validate configuration values.

        Returns:
            List[str]: List of validation errors, empty if valid
        """
        errors = []

        errors.extend(self.low_data_job.validate(needs_fetch_params=True, needs_threshold=True))
        errors.extend(self.missing_job.validate(needs_fetch_params=True))
        errors.extend(self.stats_job.validate(needs_fetch_params=False))

        if self.stats_top_n <= 0:
            errors.append("STATS_TOP_N must be positive")
        if self.fetch_spacing_secs < 0:
            errors.append("FETCH_SPACING_SECS must be >= 0")
        if self.fetch_tracker_ttl_secs <= 0:
            errors.append("FETCH_TRACKER_TTL_SECS must be positive")
        if self.lead_source_timeout_secs <= 0:
            errors.append("LEAD_SOURCE_TIMEOUT_SECS must be positive")
        if self.background_workers < 1:
            errors.append("BACKGROUND_WORKERS must be >= 1")
        if self.background_queue_size < 1:
            errors.append("BACKGROUND_QUEUE_SIZE must be >= 1")

        if not self.db_url and self.db_path.exists() and self.db_path.is_dir():
            errors.append(f"Database path is a directory: {self.db_path}")

        try:
            self.load_catalog()
        except ValueError as e:
            errors.append(str(e))

        return errors

    def load_catalog(self) -> Tuple[List[str], List[str]]:
        """
        Load the industry and country catalog.

        Returns:
            Tuple: (industries, countries); the built-in catalog if no
            override file exists

        Raises:
            ValueError: If the override file exists but is malformed
        """
        path = self.catalog_path
        if not path or not path.exists():
            return list(DEFAULT_INDUSTRIES), list(DEFAULT_COUNTRIES)

        try:
            with open(path, "r", encoding="utf-8") as f:
                raw = json.load(f)
            catalog = CatalogFile.model_validate(raw)
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            raise ValueError(f"Invalid catalog file {path}: {e}") from e

        return catalog.industries, catalog.countries


# Create a global config instance
config = AppConfig()
