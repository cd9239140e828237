"""
Feeder model - registered ground receivers.

A feeder is created at registration and is never hard-deleted; only its
status and last-seen timestamp change afterwards.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import JSON, String, Float, DateTime, Index
from sqlalchemy.orm import Mapped, mapped_column

from feederhub.models.base import Base


class FeederStatus(str, Enum):
    """Lifecycle status of a feeder."""
    ACTIVE = 'active'
    INACTIVE = 'inactive'
    SUSPENDED = 'suspended'


class FeederTier(str, Enum):
    """API tier used to pick the request budget for non-ingestion calls."""
    PRODUCTION = 'production'
    STANDARD = 'standard'
    PREMIUM = 'premium'


class Feeder(Base):
    """
    An independently operated ADS-B ground receiver.

    The API key itself is never stored. Two one-way digests are kept:
        api_key_lookup: keyed HMAC, unique and indexed, finds the row
        api_key_hash: salted slow hash, verifies the key
    """

    __tablename__ = 'feeders'

    feeder_id: Mapped[str] = mapped_column(
        String(40),
        primary_key=True,
        comment='Opaque feeder identifier (feeder_<hex>)'
    )

    name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        comment='Human-readable name'
    )

    latitude: Mapped[Optional[float]] = mapped_column(
        Float,
        nullable=True,
        comment='Receiver latitude in decimal degrees'
    )

    longitude: Mapped[Optional[float]] = mapped_column(
        Float,
        nullable=True,
        comment='Receiver longitude in decimal degrees'
    )

    status: Mapped[str] = mapped_column(
        String(10),
        default=FeederStatus.ACTIVE.value,
        nullable=False,
        comment='active, inactive or suspended'
    )

    tier: Mapped[str] = mapped_column(
        String(12),
        default=FeederTier.STANDARD.value,
        nullable=False,
        comment='Rate limit tier'
    )

    # "metadata" is reserved on declarative classes
    feeder_metadata: Mapped[dict] = mapped_column(
        'metadata',
        JSON,
        default=dict,
        comment='Hardware, software and version details'
    )

    api_key_hash: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment='Salted hash of the API key'
    )

    api_key_lookup: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        unique=True,
        comment='Keyed digest of the API key used for lookup'
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    last_seen_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment='Last accepted telemetry submission'
    )

    __table_args__ = (
        Index('ix_feeders_status', 'status'),
        Index('ix_feeders_last_seen', 'last_seen_at'),
    )

    def __repr__(self) -> str:
        return f'<Feeder {self.feeder_id} {self.name!r} {self.status}>'

    @property
    def location(self) -> Optional[dict]:
        if self.latitude is None or self.longitude is None:
            return None
        return {'latitude': self.latitude, 'longitude': self.longitude}
