"""
Downstream forwarding of merged canonical states.

After a batch is merged, the states that changed the current-state view
are POSTed to the tracking service as canonical 19-field arrays. This is
a best-effort side effect: failures are raised to the caller (the
background runner) and never reach the feeder.
"""

import logging
import threading
from typing import Optional, Sequence

import requests

from feederhub.config import DownstreamConfig
from feederhub.errors import DownstreamUnavailableError
from feederhub.ingestion.normalizer import CanonicalState

logger = logging.getLogger(__name__)


class DownstreamNotifier:
    """
    Client for the tracking service's feeder endpoint.

    Does nothing when DOWNSTREAM_URL is not configured.
    """

    def __init__(self, downstream: DownstreamConfig, session: Optional[requests.Session] = None):
        self.config = downstream
        self.session = session or requests.Session()
        self._sent_batches = 0
        self._sent_states = 0
        self._failed_batches = 0
        self._lock = threading.Lock()

        if not downstream.is_configured:
            logger.info('Downstream URL not configured - forwarding disabled')

    @property
    def enabled(self) -> bool:
        return self.config.is_configured

    @property
    def endpoint(self) -> str:
        return f'{self.config.url.rstrip("/")}{self.config.aircraft_endpoint}'

    def _headers(self) -> dict:
        headers = {'Content-Type': 'application/json'}
        if self.config.token:
            headers['Authorization'] = f'Bearer {self.config.token}'
        return headers

    def forward(self, feeder_id: str, states: Sequence[CanonicalState]) -> int:
        """
        POST merged states downstream.

        Returns the number of states sent. Raises DownstreamUnavailableError
        on timeout, connection failure or a non-2xx answer.
        """
        if not self.enabled or not states:
            return 0

        payload = {
            'feeder_id': feeder_id,
            'states': [state.to_array() for state in states],
        }

        try:
            response = self.session.post(
                self.endpoint,
                json=payload,
                headers=self._headers(),
                timeout=self.config.timeout_seconds,
            )
        except requests.RequestException as e:
            self._count_failure()
            logger.error(f'Downstream forward failed: {e}')
            raise DownstreamUnavailableError('Downstream service unavailable') from e

        if not response.ok:
            self._count_failure()
            logger.warning(f'Downstream API error: {response.status_code}')
            raise DownstreamUnavailableError(
                f'Downstream service answered {response.status_code}',
                details={'status_code': response.status_code},
            )

        with self._lock:
            self._sent_batches += 1
            self._sent_states += len(states)
        logger.debug(f'Forwarded {len(states)} states from {feeder_id}')
        return len(states)

    def _count_failure(self) -> None:
        with self._lock:
            self._failed_batches += 1

    @property
    def stats(self) -> dict:
        with self._lock:
            return {
                'enabled': self.enabled,
                'sent_batches': self._sent_batches,
                'sent_states': self._sent_states,
                'failed_batches': self._failed_batches,
            }
