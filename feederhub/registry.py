"""
Explicit wiring of FeederHub components.

build_registry() constructs every long-lived handle once (database,
stores, services, admission gate, pipeline, background runner) and
returns them in one container. The Flask app keeps the container in
app.extensions; tests build their own.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from feederhub.admission.gate import AdmissionGate
from feederhub.cache import CredentialCache
from feederhub.config import AppConfig
from feederhub.ingestion.history import HistoryAppender, SqlHistoryStore
from feederhub.ingestion.merger import SqlStateStore, StateMerger
from feederhub.ingestion.pipeline import IngestionPipeline
from feederhub.models import Database
from feederhub.services.downstream import DownstreamNotifier
from feederhub.services.feeders import FeederService
from feederhub.services.stats import StatsService
from feederhub.tasks import BestEffortRunner

logger = logging.getLogger(__name__)


@dataclass
class Registry:
    config: AppConfig
    database: Database
    credential_cache: CredentialCache
    feeders: FeederService
    stats: StatsService
    gate: AdmissionGate
    state_store: SqlStateStore
    history_store: SqlHistoryStore
    merger: StateMerger
    history: HistoryAppender
    downstream: DownstreamNotifier
    runner: BestEffortRunner
    pipeline: IngestionPipeline

    def close(self) -> None:
        """Finish background work and release connections."""
        self.runner.drain(timeout=self.config.database.timeout_seconds)
        self.runner.shutdown()
        self.pipeline.shutdown()
        self.database.dispose()


def build_registry(
    app_config: AppConfig,
    database: Optional[Database] = None,
    runner: Optional[BestEffortRunner] = None,
    clock: Optional[Callable[[], float]] = None,
    init_schema: bool = True,
) -> Registry:
    """Construct all components from configuration."""
    database = database or Database(app_config.database)
    if init_schema:
        database.init_schema()

    credential_cache = CredentialCache(
        ttl_seconds=app_config.security.credential_cache_ttl_seconds,
        max_entries=app_config.security.credential_cache_max_entries,
    )
    feeders = FeederService(database, app_config.security, credential_cache)
    stats = StatsService(database, feeders)
    gate = AdmissionGate(feeders, app_config.security, app_config.rate_limit, cache=credential_cache)

    state_store = SqlStateStore(database)
    history_store = SqlHistoryStore(database)
    merger = StateMerger(state_store)
    history = HistoryAppender(history_store)
    downstream = DownstreamNotifier(app_config.downstream)
    runner = runner or BestEffortRunner()

    pipeline = IngestionPipeline(
        app_config.ingestion,
        app_config.priorities,
        merger,
        history,
        stats=stats,
        feeders=feeders,
        downstream=downstream,
        runner=runner,
        clock=clock,
    )

    logger.info(f'Registry ready ({database.dialect_name}, sub-batch {app_config.ingestion.sub_batch_size})')

    return Registry(
        config=app_config,
        database=database,
        credential_cache=credential_cache,
        feeders=feeders,
        stats=stats,
        gate=gate,
        state_store=state_store,
        history_store=history_store,
        merger=merger,
        history=history,
        downstream=downstream,
        runner=runner,
        pipeline=pipeline,
    )
