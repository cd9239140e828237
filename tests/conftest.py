"""Shared fixtures: configuration, file-backed SQLite database, registry, Flask client."""

import pytest

from feederhub.app import create_app
from feederhub.config import (
    AppConfig,
    DatabaseConfig,
    DownstreamConfig,
    IngestionConfig,
    PriorityConfig,
    RateLimitConfig,
    SecurityConfig,
)
from feederhub.models import Database
from feederhub.registry import build_registry
from feederhub.tasks import BestEffortRunner

NOW = 1_760_000_000


class FixedClock:
    """Wall clock that only moves when told to."""

    def __init__(self, now: float = NOW):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_config(tmp_path, **overrides) -> AppConfig:
    """AppConfig independent of the process environment."""
    values = dict(
        database=DatabaseConfig(url=f'sqlite:///{tmp_path / "feederhub.db"}', timeout_seconds=5, echo=False),
        ingestion=IngestionConfig(
            max_data_age_seconds=300,
            max_batch_size=1000,
            sub_batch_size=2,
            worker_threads=2,
            deadline_base_seconds=30,
            deadline_per_record_seconds=0.05,
        ),
        priorities=PriorityConfig(opensky=10, batch_import=20, feeder=30, live=40, manual=50),
        security=SecurityConfig(
            api_key_secret='test-secret',
            hash_method='pbkdf2:sha256:1000',
            credential_cache_ttl_seconds=60,
        ),
        rate_limit=RateLimitConfig(
            window_seconds=60,
            tiers={'production': 500, 'standard': 1000, 'premium': 5000},
            registration_max=5,
        ),
        downstream=DownstreamConfig(url=None, token=None),
        environment='test',
        log_level='DEBUG',
        debug=False,
    )
    values.update(overrides)
    return AppConfig(**values)


def observation(icao24='abc123', **fields) -> dict:
    """A fully populated, valid observation."""
    obs = {
        'icao24': icao24,
        'callsign': 'UAL839',
        'origin_country': 'United States',
        'time_position': NOW - 2,
        'last_contact': NOW - 1,
        'longitude': -122.37,
        'latitude': 37.62,
        'baro_altitude': 10668.0,
        'on_ground': False,
        'velocity': 230.5,
        'true_track': 271.3,
        'vertical_rate': -1.3,
        'sensors': [1, 2],
        'geo_altitude': 10800.0,
        'squawk': '2345',
        'spi': False,
        'position_source': 0,
        'category': 3,
    }
    obs.update(fields)
    return obs


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def app_config(tmp_path):
    return make_config(tmp_path)


@pytest.fixture
def database(app_config):
    db = Database(app_config.database)
    db.init_schema()
    yield db
    db.dispose()


@pytest.fixture
def registry(app_config, database, clock):
    reg = build_registry(
        app_config,
        database=database,
        runner=BestEffortRunner(inline=True),
        clock=clock,
    )
    yield reg
    reg.pipeline.shutdown()


@pytest.fixture
def feeder(registry):
    """A registered feeder: {'feeder_id', 'api_key', 'headers'}."""
    registered = registry.feeders.register_feeder(
        'Test Feeder',
        location={'latitude': 37.6, 'longitude': -122.4},
        metadata={'software': 'readsb'},
    )
    registered['headers'] = {'Authorization': f'Bearer {registered["api_key"]}'}
    return registered


@pytest.fixture
def app(registry):
    application = create_app(registry=registry)
    application.config['TESTING'] = True
    return application


@pytest.fixture
def client(app):
    return app.test_client()
