"""
Ingestion pipeline - orchestrates one feeder batch from payload to storage.

Pipeline stages:
1. Shape: payload is an object with a non-empty, bounded states list
2. Staleness: declared batch timestamp no older than the maximum age
3. Validate: per-record field checks, failures collected by index
4. Normalize: canonical 19-field vector in SI units
5. Merge + Append: per sub-batch, current-state merge and history append
   run concurrently on a worker pool
6. Side effects: daily stats, last seen, downstream forward (best effort)

Stages 1-2 reject the whole batch. From stage 3 on, records succeed or
fail individually and the batch reports both.
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Sequence, Tuple

from feederhub.config import IngestionConfig, PriorityConfig
from feederhub.errors import BatchShapeError, StaleBatchError, ValidationFailedError
from feederhub.ingestion.history import HistoryAppender
from feederhub.ingestion.merger import StateMerger
from feederhub.ingestion.normalizer import NormalizedObservation, normalize_observation
from feederhub.ingestion.outcomes import AppendReport, MergeReport, RecordError
from feederhub.ingestion.quality import batch_quality_score
from feederhub.ingestion.validator import check_batch_shape, is_number, validate_batch
from feederhub.tasks import BestEffortRunner

logger = logging.getLogger(__name__)


@dataclass
class IngestionResult:
    """
    Outcome of one batch.

    processed: records durably written to history
    merged: records that changed the current-state view
    """
    feeder_id: str
    processed: int = 0
    merged: int = 0
    superseded: int = 0
    errors: List[RecordError] = field(default_factory=list)
    processing_time_ms: int = 0
    quality_score: Optional[int] = None

    @property
    def success(self) -> bool:
        return self.processed > 0 or self.merged > 0

    @property
    def status_code(self) -> int:
        """200 on any success; 503 when nothing landed and every failure may be retried."""
        if self.success:
            return 200
        if self.errors and all(e.retryable for e in self.errors):
            return 503
        return 500

    def to_dict(self) -> dict:
        return {
            'success': self.success,
            'processed': self.processed,
            'merged': self.merged,
            'errors': [e.to_dict() for e in self.errors],
            'feeder_id': self.feeder_id,
            'processing_time_ms': self.processing_time_ms,
        }


def _chunks(items: Sequence, size: int):
    for start in range(0, len(items), size):
        yield items[start:start + size]


class IngestionPipeline:
    """
    Processes feeder batches.

    One instance is shared by all request threads; there is no
    cross-feeder lock. Concurrent merges on the same aircraft are
    serialized by the store's conditional upsert.
    """

    def __init__(
        self,
        ingestion: IngestionConfig,
        priorities: PriorityConfig,
        merger: StateMerger,
        history: HistoryAppender,
        stats=None,
        feeders=None,
        downstream=None,
        runner: Optional[BestEffortRunner] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        """
        Args:
            ingestion: batch size, sub-batch size, age and deadline settings
            priorities: channel priority table
            merger: current-state merge stage
            history: history append stage
            stats: StatsService for daily aggregates (optional)
            feeders: FeederService for last-seen updates (optional)
            downstream: DownstreamNotifier for forwarding (optional)
            runner: executes the optional side effects off the request path
            clock: wall clock in Unix seconds, injectable for tests
        """
        self.config = ingestion
        self.priorities = priorities
        self.merger = merger
        self.history = history
        self.stats_service = stats
        self.feeders = feeders
        self.downstream = downstream
        self.runner = runner or BestEffortRunner(inline=True)
        self.clock = clock or time.time

        self._executor = ThreadPoolExecutor(
            max_workers=max(2, ingestion.worker_threads),
            thread_name_prefix='ingest',
        )

        # Statistics
        self._lock = threading.Lock()
        self._batch_count = 0
        self._rejected_batches = 0
        self._record_count = 0
        self._error_count = 0

    # -------------------------------------------------------------------------
    # Batch-level checks
    # -------------------------------------------------------------------------

    def _check_timestamp(self, payload: dict, now: float) -> None:
        """Reject the batch if its declared timestamp is older than the maximum age."""
        timestamp = payload.get('timestamp')
        if timestamp is None:
            return

        if not is_number(timestamp) or timestamp < 0:
            raise BatchShapeError(
                'Timestamp must be a positive integer (Unix timestamp)',
                details=[{'field': 'timestamp', 'message': 'Timestamp must be a positive integer'}],
            )

        age = now - timestamp
        max_age = self.config.max_data_age_seconds
        if age > max_age:
            raise StaleBatchError(
                f'Data is too old. Maximum age is {max_age} seconds.',
                details={'age_seconds': int(age), 'max_age_seconds': max_age},
            )

    # -------------------------------------------------------------------------
    # Record stages
    # -------------------------------------------------------------------------

    def _validate(self, states: list) -> Tuple[List[int], List[RecordError]]:
        validation = validate_batch(states, self.config.max_batch_size)
        if validation.shape_error is not None:
            raise BatchShapeError(validation.shape_error.message, details=[validation.shape_error.to_dict()])

        errors = []
        for failure in validation.failures:
            raw = states[failure.index]
            icao24 = raw.get('icao24') if isinstance(raw, dict) else None
            errors.append(RecordError(
                error=failure.summary(),
                retryable=False,
                icao24=icao24.strip().lower() if isinstance(icao24, str) and icao24.strip() else None,
                index=failure.index,
                field=failure.violations[0].field,
            ))

        return validation.valid_indices, errors

    def _normalize(
        self,
        states: list,
        indices: List[int],
        feeder_id: str,
        now: float,
    ) -> Tuple[List[Tuple[int, NormalizedObservation]], List[RecordError]]:
        normalized = []
        errors = []
        for index in indices:
            try:
                normalized.append((index, normalize_observation(states[index], feeder_id, now)))
            except (KeyError, TypeError, ValueError) as e:
                logger.error(f'Normalization failed for record {index} from {feeder_id}: {e}')
                errors.append(RecordError(
                    error=f'Normalization failed: {e}',
                    index=index,
                    stage='normalize',
                ))
        return normalized, errors

    def _process_sub_batch(
        self,
        chunk: Sequence[Tuple[int, NormalizedObservation]],
        priority: int,
        data_source: str,
        deadline: float,
    ) -> Tuple[MergeReport, AppendReport]:
        """Run merge and history append for one sub-batch concurrently."""
        indices = [index for index, _ in chunk]
        observations = [obs for _, obs in chunk]

        merge_future = self._executor.submit(
            self.merger.merge_many, observations, priority, data_source, indices,
        )
        history_future = self._executor.submit(
            self.history.append_many, observations, priority, data_source, indices,
        )

        merge_report = self._collect(merge_future, deadline, observations, indices, 'merge', MergeReport)
        append_report = self._collect(history_future, deadline, observations, indices, 'history', AppendReport)
        return merge_report, append_report

    def _collect(self, future, deadline, observations, indices, stage, report_type):
        """
        Wait for a stage future until the batch deadline.

        A stage that does not finish in time, or dies outright, turns into
        retryable errors for every record of the sub-batch.
        """
        try:
            return future.result(timeout=max(0.0, deadline - time.monotonic()))
        except FutureTimeoutError:
            message = 'Processing deadline exceeded'
        except Exception as e:
            logger.error(f'{stage} stage failed for a sub-batch of {len(observations)}: {e}')
            message = f'{stage} stage failed: {e}'

        report = report_type()
        report.errors.extend(
            RecordError(error=message, retryable=True, icao24=obs.icao24, index=index, stage=stage)
            for index, obs in zip(indices, observations)
        )
        return report

    # -------------------------------------------------------------------------
    # Entry point
    # -------------------------------------------------------------------------

    def ingest(self, feeder_id: str, payload: Any, data_source: str = 'feeder') -> IngestionResult:
        """
        Process one telemetry batch from a feeder.

        Raises BatchShapeError, StaleBatchError or ValidationFailedError when
        the whole batch is rejected. Otherwise returns per-record results.
        """
        started = time.monotonic()
        now = self.clock()

        try:
            if not isinstance(payload, dict):
                raise BatchShapeError('Request body must be a JSON object')

            states = payload.get('states')
            shape_error = check_batch_shape(states, self.config.max_batch_size)
            if shape_error is not None:
                raise BatchShapeError(shape_error.message, details=[shape_error.to_dict()])
            self._check_timestamp(payload, now)

            valid_indices, errors = self._validate(states)
        except (BatchShapeError, StaleBatchError) as e:
            with self._lock:
                self._rejected_batches += 1
            logger.warning(f'Rejected batch from {feeder_id}: {e.message}')
            raise

        if not valid_indices:
            with self._lock:
                self._rejected_batches += 1
                self._error_count += len(errors)
            self._record_stats(feeder_id, [], errors, started)
            logger.warning(f'Rejected batch from {feeder_id}: all {len(states)} records invalid')
            raise ValidationFailedError(
                'Validation failed',
                details=[e.to_dict() for e in errors],
            )

        normalized, normalize_errors = self._normalize(states, valid_indices, feeder_id, now)
        errors.extend(normalize_errors)

        priority = self.priorities.for_source(data_source)
        deadline = started + self.config.deadline_base_seconds + (
            self.config.deadline_per_record_seconds * len(states)
        )

        merge_total = MergeReport()
        append_total = AppendReport()

        for position, chunk in enumerate(_chunks(normalized, self.config.sub_batch_size)):
            if time.monotonic() >= deadline:
                remaining = normalized[position * self.config.sub_batch_size:]
                logger.warning(f'Deadline reached for {feeder_id}, {len(remaining)} records not processed')
                errors.extend(
                    RecordError(
                        error='Processing deadline exceeded',
                        retryable=True,
                        icao24=obs.icao24,
                        index=index,
                        stage='deadline',
                    )
                    for index, obs in remaining
                )
                break

            merge_report, append_report = self._process_sub_batch(chunk, priority, data_source, deadline)
            merge_total.extend(merge_report)
            append_total.extend(append_report)

            # Let other request threads in between sub-batches
            time.sleep(0)

        errors.extend(merge_total.errors)
        errors.extend(append_total.errors)
        errors.sort(key=lambda e: (e.index if e.index is not None else -1))

        recorded = set(append_total.recorded)
        recorded_observations = [obs for index, obs in normalized if index in recorded]

        result = IngestionResult(
            feeder_id=feeder_id,
            processed=append_total.processed,
            merged=merge_total.merged,
            superseded=merge_total.superseded,
            errors=errors,
            processing_time_ms=int((time.monotonic() - started) * 1000),
            quality_score=batch_quality_score([obs.state for obs in recorded_observations]),
        )

        with self._lock:
            self._batch_count += 1
            self._record_count += result.processed
            self._error_count += len(errors)

        self._record_stats(feeder_id, recorded_observations, errors, started, result.quality_score)
        if result.success:
            self._touch_last_seen(feeder_id)
            self._forward(feeder_id, merge_total.applied)

        logger.info(
            f'Batch from {feeder_id}: {result.processed} recorded, {result.merged} merged, '
            f'{result.superseded} superseded, {len(errors)} errors in {result.processing_time_ms}ms'
        )
        return result

    # -------------------------------------------------------------------------
    # Side effects (never affect the response)
    # -------------------------------------------------------------------------

    def _record_stats(
        self,
        feeder_id: str,
        recorded: List[NormalizedObservation],
        errors: List[RecordError],
        started: float,
        quality_score: Optional[int] = None,
    ) -> None:
        if self.stats_service is None:
            return
        self.runner.submit(
            'record_stats',
            self.stats_service.record_batch,
            feeder_id,
            messages=len(recorded),
            unique_aircraft=len({obs.icao24 for obs in recorded}),
            quality_score=quality_score,
            latency_ms=(time.monotonic() - started) * 1000,
            error_count=len(errors),
        )

    def _touch_last_seen(self, feeder_id: str) -> None:
        if self.feeders is None:
            return
        self.runner.submit('touch_last_seen', self.feeders.touch_last_seen, feeder_id)

    def _forward(self, feeder_id: str, applied: List[NormalizedObservation]) -> None:
        if self.downstream is None or not self.downstream.enabled or not applied:
            return
        self.runner.submit(
            'forward_downstream',
            self.downstream.forward,
            feeder_id,
            [obs.state for obs in applied],
        )

    def shutdown(self) -> None:
        self._executor.shutdown(wait=True)

    @property
    def stats(self) -> dict:
        """Get pipeline statistics."""
        with self._lock:
            return {
                'batches_processed': self._batch_count,
                'batches_rejected': self._rejected_batches,
                'records_processed': self._record_count,
                'record_errors': self._error_count,
                'merge': self.merger.stats,
                'history': self.history.stats,
                'side_effects': self.runner.stats,
            }
