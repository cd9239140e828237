"""
Feeder registry.

Registration, lookup and lifecycle changes for ground receivers. The
API key generated at registration is returned exactly once; only its
digests are stored.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError

from feederhub.admission.credentials import (
    generate_api_key,
    generate_feeder_id,
    hash_api_key,
    lookup_digest,
)
from feederhub.cache import CredentialCache
from feederhub.config import SecurityConfig
from feederhub.errors import FeederNotFoundError, RegistrationError
from feederhub.ingestion.validator import is_number
from feederhub.models import Database, Feeder, FeederStatus, FeederTier, as_utc

logger = logging.getLogger(__name__)

NAME_MIN_LENGTH = 3
NAME_MAX_LENGTH = 100


def validate_registration(
    name: Any,
    location: Optional[Any] = None,
    metadata: Optional[Any] = None,
) -> List[dict]:
    """Return a list of {field, message} problems; empty when valid."""
    errors = []

    if not isinstance(name, str) or not name.strip():
        errors.append({'field': 'name', 'message': 'Name is required'})
    elif not NAME_MIN_LENGTH <= len(name.strip()) <= NAME_MAX_LENGTH:
        errors.append({
            'field': 'name',
            'message': f'Name must be between {NAME_MIN_LENGTH} and {NAME_MAX_LENGTH} characters',
        })

    if location is not None:
        if not isinstance(location, dict):
            errors.append({'field': 'location', 'message': 'Location must be an object'})
        else:
            latitude = location.get('latitude')
            longitude = location.get('longitude')
            if not (is_number(latitude) and -90 <= latitude <= 90):
                errors.append({'field': 'location.latitude', 'message': 'Latitude must be between -90 and 90'})
            if not (is_number(longitude) and -180 <= longitude <= 180):
                errors.append({'field': 'location.longitude', 'message': 'Longitude must be between -180 and 180'})

    if metadata is not None and not isinstance(metadata, dict):
        errors.append({'field': 'metadata', 'message': 'Metadata must be an object'})

    return errors


class FeederService:
    """Creates feeders and manages their status and last-seen time."""

    def __init__(
        self,
        database: Database,
        security: SecurityConfig,
        credential_cache: Optional[CredentialCache] = None,
    ):
        self.database = database
        self.security = security
        self.credential_cache = credential_cache

    def register_feeder(
        self,
        name: Any,
        location: Optional[Any] = None,
        metadata: Optional[Any] = None,
        tier: str = FeederTier.STANDARD.value,
    ) -> Dict[str, str]:
        """
        Register a new feeder.

        Returns feeder_id and the plaintext api_key. The key cannot be
        recovered afterwards.
        """
        errors = validate_registration(name, location, metadata)
        if errors:
            raise RegistrationError('Validation failed', details=errors)

        feeder_id = generate_feeder_id()
        api_key = generate_api_key()

        feeder = Feeder(
            feeder_id=feeder_id,
            name=name.strip(),
            latitude=location['latitude'] if location else None,
            longitude=location['longitude'] if location else None,
            status=FeederStatus.ACTIVE.value,
            tier=tier,
            feeder_metadata=metadata or {},
            api_key_hash=hash_api_key(api_key, self.security.hash_method),
            api_key_lookup=lookup_digest(api_key, self.security.api_key_secret),
        )

        try:
            with self.database.session() as session:
                session.add(feeder)
        except IntegrityError as e:
            # Random id or key collision; astronomically rare
            logger.error(f'Feeder registration conflict: {e}')
            raise RegistrationError('Feeder ID conflict. Please try again.') from e

        logger.info(f'Registered feeder {feeder_id} ({feeder.name})')

        return {
            'feeder_id': feeder_id,
            'api_key': api_key,
            'message': 'Store this API key securely. It will not be shown again.',
        }

    def find_by_lookup(self, lookup: str) -> Optional[Feeder]:
        with self.database.session() as session:
            return session.execute(
                select(Feeder).where(Feeder.api_key_lookup == lookup)
            ).scalar_one_or_none()

    def get_feeder(self, feeder_id: str) -> Feeder:
        with self.database.session() as session:
            feeder = session.get(Feeder, feeder_id)
        if feeder is None:
            raise FeederNotFoundError('Feeder not found')
        return feeder

    def get_feeder_info(self, feeder_id: str) -> dict:
        feeder = self.get_feeder(feeder_id)
        info = {
            'feeder_id': feeder.feeder_id,
            'name': feeder.name,
            'status': feeder.status,
            'tier': feeder.tier,
            'metadata': feeder.feeder_metadata or {},
            'created_at': as_utc(feeder.created_at).isoformat() if feeder.created_at else None,
            'last_seen_at': as_utc(feeder.last_seen_at).isoformat() if feeder.last_seen_at else None,
        }
        if feeder.location is not None:
            info['location'] = feeder.location
        return info

    def set_status(self, feeder_id: str, status: str) -> None:
        """Change lifecycle status and drop any cached identity for the feeder."""
        status = FeederStatus(status).value

        with self.database.session() as session:
            result = session.execute(
                update(Feeder)
                .where(Feeder.feeder_id == feeder_id)
                .values(status=status, updated_at=datetime.now(timezone.utc))
            )
            if result.rowcount == 0:
                raise FeederNotFoundError('Feeder not found')

        if self.credential_cache is not None:
            self.credential_cache.invalidate_feeder(feeder_id)

        logger.info(f'Feeder {feeder_id} status set to {status}')

    def set_tier(self, feeder_id: str, tier: str) -> None:
        tier = FeederTier(tier).value

        with self.database.session() as session:
            result = session.execute(
                update(Feeder).where(Feeder.feeder_id == feeder_id).values(tier=tier)
            )
            if result.rowcount == 0:
                raise FeederNotFoundError('Feeder not found')

        if self.credential_cache is not None:
            self.credential_cache.invalidate_feeder(feeder_id)

    def touch_last_seen(self, feeder_id: str, seen_at: Optional[datetime] = None) -> None:
        """Record an accepted submission. Never moves last_seen_at backwards."""
        seen_at = seen_at or datetime.now(timezone.utc)
        with self.database.session() as session:
            session.execute(
                update(Feeder)
                .where(Feeder.feeder_id == feeder_id)
                .where((Feeder.last_seen_at.is_(None)) | (Feeder.last_seen_at < seen_at))
                .values(last_seen_at=seen_at)
            )

    def count(self) -> int:
        with self.database.session() as session:
            return session.execute(select(func.count()).select_from(Feeder)).scalar_one()
