"""
Configuration management for FeederHub.

Loads settings from environment variables with sensible defaults.
All configuration is centralized here to avoid magic strings scattered
throughout the codebase.
"""

import os
from dataclasses import dataclass, field
from typing import Dict, Optional

from dotenv import load_dotenv

load_dotenv()

DEFAULT_API_KEY_SECRET = 'change-this-in-production'


@dataclass(frozen=True)
class DatabaseConfig:
    """Database configuration."""
    url: str = os.getenv('DATABASE_URL', 'sqlite:///feederhub.db')
    timeout_seconds: float = float(os.getenv('DB_TIMEOUT_SECONDS', '5'))
    echo: bool = os.getenv('DB_ECHO', '0') == '1'

    @property
    def is_sqlite(self) -> bool:
        return self.url.startswith('sqlite')

    @property
    def is_memory(self) -> bool:
        return self.is_sqlite and (self.url in ('sqlite://', 'sqlite:///:memory:'))


@dataclass(frozen=True)
class IngestionConfig:
    """Telemetry ingestion settings."""
    max_data_age_seconds: int = int(os.getenv('MAX_DATA_AGE_SECONDS', '300'))
    max_batch_size: int = int(os.getenv('INGEST_MAX_BATCH_SIZE', '1000'))

    # Records per merge/append round; the pipeline yields between rounds
    sub_batch_size: int = int(os.getenv('INGEST_SUB_BATCH_SIZE', '50'))
    worker_threads: int = int(os.getenv('INGEST_WORKER_THREADS', '4'))

    # Batch deadline = base + per_record * len(states)
    deadline_base_seconds: float = float(os.getenv('INGEST_DEADLINE_BASE_SECONDS', '5'))
    deadline_per_record_seconds: float = float(os.getenv('INGEST_DEADLINE_PER_RECORD_SECONDS', '0.05'))


@dataclass(frozen=True)
class PriorityConfig:
    """
    Trust ordering of ingestion channels.

    Higher wins. Feeder telemetry sits above bulk/batch sources and
    below live and manual overrides.
    """
    opensky: int = int(os.getenv('PRIORITY_OPENSKY', '10'))
    batch_import: int = int(os.getenv('PRIORITY_BATCH_IMPORT', '20'))
    feeder: int = int(os.getenv('PRIORITY_FEEDER', '30'))
    live: int = int(os.getenv('PRIORITY_LIVE', '40'))
    manual: int = int(os.getenv('PRIORITY_MANUAL', '50'))

    def for_source(self, source: str) -> int:
        try:
            return getattr(self, source)
        except AttributeError:
            raise KeyError(f'Unknown data source: {source}') from None


@dataclass(frozen=True)
class SecurityConfig:
    """Credential settings."""
    api_key_secret: str = os.getenv('API_KEY_SECRET', DEFAULT_API_KEY_SECRET)
    hash_method: str = os.getenv('API_KEY_HASH_METHOD', 'pbkdf2:sha256:260000')
    credential_cache_ttl_seconds: int = int(os.getenv('CREDENTIAL_CACHE_TTL_SECONDS', '60'))
    credential_cache_max_entries: int = 1000


@dataclass(frozen=True)
class RateLimitConfig:
    """
    Request budgets.

    Telemetry submission is never throttled here; tier budgets only
    apply to the other feeder operations (stats, health, etc.).
    """
    window_seconds: int = int(os.getenv('RATE_LIMIT_WINDOW_SECONDS', '60'))
    tiers: Dict[str, int] = field(default_factory=lambda: {
        'production': int(os.getenv('RATE_LIMIT_PRODUCTION', '500')),
        'standard': int(os.getenv('RATE_LIMIT_STANDARD', '1000')),
        'premium': int(os.getenv('RATE_LIMIT_PREMIUM', '5000')),
    })
    default_tier: str = 'standard'

    registration_max: int = int(os.getenv('REGISTRATION_LIMIT', '5'))
    registration_window_seconds: int = 3600

    def budget_for(self, tier: Optional[str]) -> int:
        return self.tiers.get(tier or self.default_tier, self.tiers[self.default_tier])


@dataclass(frozen=True)
class DownstreamConfig:
    """Tracking service that receives merged canonical states."""
    url: Optional[str] = os.getenv('DOWNSTREAM_URL') or None
    aircraft_endpoint: str = os.getenv('DOWNSTREAM_AIRCRAFT_ENDPOINT', '/api/feeder/aircraft')
    token: Optional[str] = os.getenv('DOWNSTREAM_TOKEN') or None
    timeout_seconds: float = float(os.getenv('DOWNSTREAM_TIMEOUT_SECONDS', '5'))

    @property
    def is_configured(self) -> bool:
        return bool(self.url)


@dataclass(frozen=True)
class AppConfig:
    """Main application configuration."""
    database: DatabaseConfig
    ingestion: IngestionConfig
    priorities: PriorityConfig
    security: SecurityConfig
    rate_limit: RateLimitConfig
    downstream: DownstreamConfig

    environment: str
    log_level: str
    debug: bool

    @property
    def is_production(self) -> bool:
        return self.environment == 'production'


def load_config() -> AppConfig:
    """Load and validate all configuration."""
    app_config = AppConfig(
        database=DatabaseConfig(),
        ingestion=IngestionConfig(),
        priorities=PriorityConfig(),
        security=SecurityConfig(),
        rate_limit=RateLimitConfig(),
        downstream=DownstreamConfig(),
        environment=os.getenv('FEEDERHUB_ENV', 'development'),
        log_level=os.getenv('LOG_LEVEL', 'INFO').upper(),
        debug=os.getenv('FLASK_DEBUG', '0') == '1',
    )
    validate_config(app_config)
    return app_config


def validate_config(app_config: AppConfig) -> None:
    """Reject settings that are unsafe or cannot work."""
    if app_config.is_production and app_config.security.api_key_secret == DEFAULT_API_KEY_SECRET:
        raise ValueError('API_KEY_SECRET must be set in production')
    if app_config.ingestion.sub_batch_size < 1:
        raise ValueError('INGEST_SUB_BATCH_SIZE must be at least 1')
    if app_config.ingestion.max_batch_size < 1:
        raise ValueError('INGEST_MAX_BATCH_SIZE must be at least 1')
