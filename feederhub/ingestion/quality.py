"""
Data quality score for a batch of observations.

Each observation earns points for the fields it carries:

    position (lat and lon)   30
    altitude (baro or geo)   20
    velocity                 15
    callsign                 15
    squawk                   10
    vertical rate            10

The batch score is the mean over observations, rounded to 0-100.
"""

from typing import Sequence

import numpy as np

from feederhub.ingestion.normalizer import CanonicalState

QUALITY_WEIGHTS = np.array([30, 20, 15, 15, 10, 10], dtype=float)


def presence_matrix(states: Sequence[CanonicalState]) -> np.ndarray:
    """(n, 6) matrix of 0/1 flags in QUALITY_WEIGHTS column order."""
    return np.array([
        [
            s.latitude is not None and s.longitude is not None,
            s.baro_altitude is not None or s.geo_altitude is not None,
            s.velocity is not None,
            s.callsign is not None,
            s.squawk is not None,
            s.vertical_rate is not None,
        ]
        for s in states
    ], dtype=float).reshape(-1, len(QUALITY_WEIGHTS))


def observation_scores(states: Sequence[CanonicalState]) -> np.ndarray:
    return presence_matrix(states) @ QUALITY_WEIGHTS


def batch_quality_score(states: Sequence[CanonicalState]) -> int:
    """Rounded mean score; 0 for an empty batch."""
    if not states:
        return 0
    return int(round(float(observation_scores(states).mean())))
