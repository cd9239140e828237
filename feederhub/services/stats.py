"""
Per-feeder statistics, health and quality feedback.

Daily aggregates live in feeder_stats, one row per (feeder, UTC date).
Every batch folds into its row with a single INSERT ... ON CONFLICT DO
UPDATE whose SET clause does the arithmetic in SQL, so concurrent
batches from one feeder never lose increments and nothing is read
before it is written.

Aggregation rules per row:
- messages_received: sum
- unique_aircraft: maximum seen in a single batch
- data_quality_score: message-weighted average (quality_weighted_sum / messages)
- avg_latency_ms: batch-weighted average
- error_count: sum
"""

import logging
from datetime import date, datetime, timedelta, timezone
from typing import List, Optional

from sqlalchemy import case, func, select

from feederhub.errors import InvalidParameterError
from feederhub.models import Database, Feeder, FeederDailyStats, FeederStatus, as_utc
from feederhub.services.feeders import FeederService

logger = logging.getLogger(__name__)

MIN_STATS_DAYS = 1
MAX_STATS_DAYS = 90

# Minutes since last submission
HEALTHY_MINUTES = 5
DEGRADED_MINUTES = 30

# Quality feedback weights
FEEDBACK_WEIGHTS = {
    'completeness': 0.3,
    'accuracy': 0.3,
    'timeliness': 0.2,
    'coverage': 0.2,
}

# Aircraft per day that counts as full coverage
FULL_COVERAGE_AIRCRAFT = 100


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


def health_status(status: str, minutes_since_last_seen: Optional[int]) -> str:
    """
    Classify feeder health.

    Administrative status wins over recency.
    """
    if status == FeederStatus.SUSPENDED.value:
        return 'suspended'
    if status == FeederStatus.INACTIVE.value:
        return 'inactive'
    if minutes_since_last_seen is None:
        return 'never_seen'
    if minutes_since_last_seen <= HEALTHY_MINUTES:
        return 'healthy'
    if minutes_since_last_seen <= DEGRADED_MINUTES:
        return 'degraded'
    return 'offline'


def letter_grade(score: float) -> str:
    if score >= 90:
        return 'A'
    if score >= 80:
        return 'B'
    if score >= 70:
        return 'C'
    if score >= 60:
        return 'D'
    return 'F'


def timeliness_score(minutes_since_last_seen: Optional[int]) -> int:
    if minutes_since_last_seen is None:
        return 30
    if minutes_since_last_seen < 5:
        return 100
    if minutes_since_last_seen < 15:
        return 80
    if minutes_since_last_seen < 60:
        return 60
    return 30


class StatsService:
    """Records and reports per-feeder daily aggregates."""

    def __init__(self, database: Database, feeders: FeederService):
        self.database = database
        self.feeders = feeders

    # -------------------------------------------------------------------------
    # Recording
    # -------------------------------------------------------------------------

    def record_batch(
        self,
        feeder_id: str,
        messages: int,
        unique_aircraft: int,
        quality_score: Optional[float],
        latency_ms: Optional[float],
        error_count: int = 0,
        on_date: Optional[date] = None,
    ) -> None:
        """Fold one batch into the feeder's row for the day."""
        on_date = on_date or utc_today()
        has_quality = messages > 0 and quality_score is not None

        table = FeederDailyStats.__table__
        stmt = self.database.insert(table).values(
            feeder_id=feeder_id,
            date=on_date,
            messages_received=messages,
            unique_aircraft=unique_aircraft,
            data_quality_score=float(quality_score) if has_quality else None,
            quality_weighted_sum=float(quality_score) * messages if has_quality else 0.0,
            avg_latency_ms=latency_ms,
            batch_count=1,
            error_count=error_count,
            created_at=datetime.now(timezone.utc),
        )
        current = table.c
        incoming = stmt.excluded

        total_messages = current.messages_received + incoming.messages_received
        total_weighted = current.quality_weighted_sum + incoming.quality_weighted_sum
        total_batches = current.batch_count + incoming.batch_count

        stmt = stmt.on_conflict_do_update(
            index_elements=['feeder_id', 'date'],
            set_={
                'messages_received': total_messages,
                'unique_aircraft': case(
                    (incoming.unique_aircraft > current.unique_aircraft, incoming.unique_aircraft),
                    else_=current.unique_aircraft,
                ),
                'quality_weighted_sum': total_weighted,
                'data_quality_score': case(
                    (total_messages > 0, total_weighted / total_messages),
                    else_=current.data_quality_score,
                ),
                'avg_latency_ms': case(
                    (incoming.avg_latency_ms.is_(None), current.avg_latency_ms),
                    else_=(
                        func.coalesce(current.avg_latency_ms, 0.0) * current.batch_count
                        + incoming.avg_latency_ms * incoming.batch_count
                    ) / total_batches,
                ),
                'batch_count': total_batches,
                'error_count': current.error_count + incoming.error_count,
            },
        )

        with self.database.session() as session:
            session.execute(stmt)

        logger.debug(
            f'Stats for {feeder_id} on {on_date}: +{messages} messages, '
            f'{unique_aircraft} aircraft, {error_count} errors'
        )

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def _rows_since(self, feeder_id: str, start: date) -> List[FeederDailyStats]:
        """Rows on or after start, newest first."""
        with self.database.session() as session:
            return list(session.execute(
                select(FeederDailyStats)
                .where(FeederDailyStats.feeder_id == feeder_id)
                .where(FeederDailyStats.stat_date >= start)
                .order_by(FeederDailyStats.stat_date.desc())
            ).scalars().all())

    def get_day(self, feeder_id: str, on_date: Optional[date] = None) -> Optional[FeederDailyStats]:
        on_date = on_date or utc_today()
        with self.database.session() as session:
            return session.execute(
                select(FeederDailyStats)
                .where(FeederDailyStats.feeder_id == feeder_id)
                .where(FeederDailyStats.stat_date == on_date)
            ).scalar_one_or_none()

    def get_today_summary(self, feeder_id: str) -> dict:
        """Today's counters plus the rolling last-24h view (today and yesterday)."""
        today = utc_today()
        rows = self._rows_since(feeder_id, today - timedelta(days=1))
        today_row = next((r for r in rows if r.stat_date == today), None)

        return {
            'today': {
                'messages_received': today_row.messages_received if today_row else 0,
                'unique_aircraft': today_row.unique_aircraft if today_row else 0,
            },
            'last_24h': {
                'messages_received': sum(r.messages_received or 0 for r in rows),
                'unique_aircraft': max((r.unique_aircraft or 0 for r in rows), default=0),
            },
        }

    def get_feeder_statistics(self, feeder_id: str, days: int = 7) -> dict:
        """Per-day rows and a summary for the last `days` days (1-90)."""
        if not MIN_STATS_DAYS <= days <= MAX_STATS_DAYS:
            raise InvalidParameterError(f'Days must be between {MIN_STATS_DAYS} and {MAX_STATS_DAYS}')

        rows = self._rows_since(feeder_id, utc_today() - timedelta(days=days))

        total_messages = sum(r.messages_received or 0 for r in rows)
        qualities = [r.data_quality_score for r in rows if r.data_quality_score is not None]

        return {
            'feeder_id': feeder_id,
            'period_days': days,
            'statistics': [r.to_dict() for r in rows],
            'summary': {
                'total_messages': total_messages,
                'total_unique_aircraft': max((r.unique_aircraft or 0 for r in rows), default=0),
                'avg_daily_messages': round(total_messages / days),
                'avg_data_quality': round(sum(qualities) / len(qualities)) if qualities else 0,
            },
        }

    def _minutes_since_last_seen(self, feeder: Feeder, now: Optional[datetime] = None) -> Optional[int]:
        if feeder.last_seen_at is None:
            return None
        now = now or datetime.now(timezone.utc)
        elapsed = now - as_utc(feeder.last_seen_at)
        return max(0, int(elapsed.total_seconds() // 60))

    def get_feeder_health(self, feeder_id: str, now: Optional[datetime] = None) -> dict:
        feeder = self.feeders.get_feeder(feeder_id)
        minutes = self._minutes_since_last_seen(feeder, now)

        return {
            'feeder_id': feeder.feeder_id,
            'status': feeder.status,
            'health': health_status(feeder.status, minutes),
            'last_seen_at': as_utc(feeder.last_seen_at).isoformat() if feeder.last_seen_at else None,
            'minutes_since_last_seen': minutes,
            'location': feeder.location,
        }

    def get_data_quality_feedback(self, feeder_id: str, now: Optional[datetime] = None) -> dict:
        """
        Graded, actionable feedback on a feeder's data.

        completeness and accuracy come from the most recent daily quality
        score, timeliness from last-seen age, coverage from aircraft seen.
        """
        feeder = self.feeders.get_feeder(feeder_id)
        today = utc_today()

        recent = self._rows_since(feeder_id, today - timedelta(days=1))
        week = self._rows_since(feeder_id, today - timedelta(days=7))

        latest = recent[0] if recent else None
        quality_24h = latest.data_quality_score if latest else None
        week_qualities = [r.data_quality_score for r in week if r.data_quality_score is not None]
        quality_7d = sum(week_qualities) / len(week_qualities) if week_qualities else None

        completeness = min(100.0, quality_24h) if quality_24h is not None else 50.0
        accuracy = quality_24h if quality_24h is not None else 50.0
        timeliness = timeliness_score(self._minutes_since_last_seen(feeder, now))
        unique_24h = latest.unique_aircraft if latest else 0
        coverage = min(100.0, unique_24h * 100.0 / FULL_COVERAGE_AIRCRAFT) if unique_24h else 0.0

        metrics = {
            'completeness': round(completeness, 1),
            'accuracy': round(accuracy, 1),
            'timeliness': timeliness,
            'coverage': round(coverage, 1),
        }
        overall = round(
            completeness * FEEDBACK_WEIGHTS['completeness']
            + accuracy * FEEDBACK_WEIGHTS['accuracy']
            + timeliness * FEEDBACK_WEIGHTS['timeliness']
            + coverage * FEEDBACK_WEIGHTS['coverage']
        )

        recommendations = []
        if completeness < 70:
            recommendations.append('Improve data completeness by ensuring all aircraft fields are populated')
        if accuracy < 70:
            recommendations.append('Check antenna positioning and signal quality for better accuracy')
        if timeliness < 60:
            recommendations.append('Ensure feeder is running continuously and check network connectivity')
        if coverage < 50:
            recommendations.append('Consider improving antenna height or location for better coverage')
        if not recommendations:
            recommendations.append('Your feeder is performing excellently! Keep up the great work.')

        return {
            'overall_score': overall,
            'grade': letter_grade(overall),
            'metrics': metrics,
            'recommendations': recommendations,
            'recent_stats': {
                'last_24h': {
                    'messages': latest.messages_received if latest else 0,
                    'unique_aircraft': unique_24h,
                    'avg_quality': round(quality_24h, 1) if quality_24h is not None else 0,
                },
                'last_7d': {
                    'messages': sum(r.messages_received or 0 for r in week),
                    'unique_aircraft': max((r.unique_aircraft or 0 for r in week), default=0),
                    'avg_quality': round(quality_7d, 1) if quality_7d is not None else 0,
                },
            },
        }

    def get_activity_summary(self, hours: int = 24, now: Optional[datetime] = None) -> dict:
        """Fleet-wide view: feeders by status, recently active feeders, today's volume."""
        now = now or datetime.now(timezone.utc)
        since = now - timedelta(hours=hours)

        with self.database.session() as session:
            by_status = dict(session.execute(
                select(Feeder.status, func.count()).group_by(Feeder.status)
            ).all())
            active = session.execute(
                select(func.count()).select_from(Feeder).where(Feeder.last_seen_at >= since)
            ).scalar_one()
            messages_today, reporting_today = session.execute(
                select(
                    func.coalesce(func.sum(FeederDailyStats.messages_received), 0),
                    func.count(FeederDailyStats.id),
                ).where(FeederDailyStats.stat_date == now.date())
            ).one()

        return {
            'period_hours': hours,
            'total_feeders': sum(by_status.values()),
            'feeders_by_status': {status.value: by_status.get(status.value, 0) for status in FeederStatus},
            'active_feeders': active,
            'feeders_reporting_today': reporting_today,
            'messages_today': int(messages_today),
        }
