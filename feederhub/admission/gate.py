"""
Admission gate.

Every feeder request passes through here before any work is done:

1. Identity: bearer header present, well formed, known, hash matches
2. Authorization: feeder is neither suspended nor inactive
3. Throttling: per-identity tier budget, except telemetry submission

Telemetry submission is exempt from volume throttling on purpose; it is
bounded by batch size and data age instead. Registration has its own
budget keyed by network origin.
"""

import logging
from enum import Enum
from typing import Optional

from feederhub.admission.credentials import (
    extract_bearer_token,
    is_valid_api_key_format,
    lookup_digest,
    verify_api_key,
)
from feederhub.admission.rate_limit import SlidingWindowLimiter
from feederhub.cache import CachedIdentity, CredentialCache
from feederhub.config import RateLimitConfig, SecurityConfig
from feederhub.errors import (
    FeederInactiveError,
    FeederSuspendedError,
    InvalidCredentialError,
    MalformedCredentialError,
    MissingCredentialError,
)
from feederhub.models import FeederStatus
from feederhub.services.feeders import FeederService

logger = logging.getLogger(__name__)


class Operation(str, Enum):
    """Feeder-facing operations, for throttling decisions."""
    INGEST = 'ingest'
    INFO = 'info'
    STATS = 'stats'
    HEALTH = 'health'
    QUALITY = 'quality'

    @property
    def throttled(self) -> bool:
        return self is not Operation.INGEST


class AdmissionGate:

    def __init__(
        self,
        feeders: FeederService,
        security: SecurityConfig,
        rate_limit: RateLimitConfig,
        cache: Optional[CredentialCache] = None,
        limiter: Optional[SlidingWindowLimiter] = None,
        registration_limiter: Optional[SlidingWindowLimiter] = None,
    ):
        self.feeders = feeders
        self.security = security
        self.rate_limit = rate_limit
        self.cache = cache or CredentialCache(
            ttl_seconds=security.credential_cache_ttl_seconds,
            max_entries=security.credential_cache_max_entries,
        )
        self.limiter = limiter or SlidingWindowLimiter(rate_limit.window_seconds)
        self.registration_limiter = registration_limiter or SlidingWindowLimiter(
            rate_limit.registration_window_seconds,
        )

    def authenticate(self, header: Optional[str]) -> CachedIdentity:
        """
        Resolve an Authorization header to a feeder identity.

        Raises the matching AdmissionError subclass when the header is
        missing, malformed or unknown, or the feeder is not active.
        """
        if not header:
            raise MissingCredentialError('Missing authorization header')

        api_key = extract_bearer_token(header)
        if api_key is None or not is_valid_api_key_format(api_key):
            raise MalformedCredentialError('Invalid API key format')

        lookup = lookup_digest(api_key, self.security.api_key_secret)

        identity = self.cache.get(lookup)
        if identity is None:
            feeder = self.feeders.find_by_lookup(lookup)
            if feeder is None or not verify_api_key(api_key, feeder.api_key_hash):
                logger.warning('Rejected unknown API key')
                raise InvalidCredentialError('Invalid API key')

            identity = CachedIdentity(
                feeder_id=feeder.feeder_id,
                name=feeder.name,
                status=feeder.status,
                tier=feeder.tier,
            )
            self.cache.put(lookup, identity)

        if identity.status == FeederStatus.SUSPENDED.value:
            raise FeederSuspendedError('Feeder is suspended')
        if identity.status == FeederStatus.INACTIVE.value:
            raise FeederInactiveError('Feeder is inactive')

        return identity

    def admit(self, header: Optional[str], operation: Operation) -> CachedIdentity:
        """Authenticate, then charge the identity's tier budget if the operation is throttled."""
        identity = self.authenticate(header)

        if operation.throttled:
            budget = self.rate_limit.budget_for(identity.tier)
            self.limiter.check(
                identity.feeder_id,
                budget,
                f'Rate limit exceeded. Maximum {budget} requests per {self.rate_limit.window_seconds} seconds.',
            )

        return identity

    def admit_registration(self, origin: Optional[str]) -> None:
        limit = self.rate_limit.registration_max
        self.registration_limiter.check(
            f'register:{origin or "unknown"}',
            limit,
            f'Too many registration attempts. Maximum {limit} registrations per hour.',
        )

    @property
    def stats(self) -> dict:
        return {
            'credential_cache': self.cache.stats,
            'throttled_identities': self.limiter.stats['tracked_keys'],
        }
