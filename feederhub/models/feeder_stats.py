"""
FeederDailyStats model - simple per-feeder daily aggregates.

One row per (feeder, date). Rows are created by the first batch of the day
and updated in place by later batches with a single atomic upsert, so
concurrent batches from the same feeder never lose increments.
"""

from datetime import date, datetime, timezone
from typing import Optional

from sqlalchemy import BigInteger, Date, DateTime, Float, Integer, String, Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from feederhub.models.base import Base


class FeederDailyStats(Base):
    """
    Daily counters for one feeder.

    Fields:
        messages_received: sum of accepted observations
        unique_aircraft: high-water mark of distinct aircraft in one batch
        data_quality_score: message-weighted average quality (0-100)
        quality_weighted_sum: sum of score * messages, backs the average
        avg_latency_ms: average batch processing time
        batch_count: number of batches folded into the row
        error_count: rejected or failed records
    """

    __tablename__ = 'feeder_stats'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    feeder_id: Mapped[str] = mapped_column(String(40), nullable=False)

    stat_date: Mapped[date] = mapped_column('date', Date, nullable=False)

    messages_received: Mapped[int] = mapped_column(BigInteger().with_variant(Integer, 'sqlite'), default=0)

    unique_aircraft: Mapped[int] = mapped_column(Integer, default=0)

    data_quality_score: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    quality_weighted_sum: Mapped[float] = mapped_column(Float, default=0.0)

    avg_latency_ms: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    batch_count: Mapped[int] = mapped_column(Integer, default=0)

    error_count: Mapped[int] = mapped_column(Integer, default=0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        UniqueConstraint('feeder_id', 'date', name='uq_feeder_stats_feeder_date'),
        Index('ix_feeder_stats_date', 'date'),
    )

    def __repr__(self) -> str:
        return f'<FeederDailyStats {self.feeder_id} {self.stat_date} msgs={self.messages_received}>'

    def to_dict(self) -> dict:
        return {
            'date': self.stat_date.isoformat(),
            'messages_received': self.messages_received or 0,
            'unique_aircraft': self.unique_aircraft or 0,
            'data_quality_score': self.data_quality_score,
            'avg_latency_ms': self.avg_latency_ms,
            'error_count': self.error_count or 0,
        }
