"""
Result types shared by the merge, history and pipeline stages.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from feederhub.ingestion.normalizer import NormalizedObservation


class MergeOutcome(str, Enum):
    """What a merge did to the current-state view."""
    APPLIED = 'applied'          # inserted, or replaced at >= priority
    SUPERSEDED = 'superseded'    # stored record has higher priority


@dataclass
class RecordError:
    """
    A per-record failure reported back to the feeder.

    retryable tells the feeder whether resubmitting the same record
    may succeed (lock timeout, connection loss, deadline).
    """
    error: str
    retryable: bool = False
    icao24: Optional[str] = None
    index: Optional[int] = None
    field: Optional[str] = None
    stage: str = 'validation'

    def to_dict(self) -> dict:
        body = {'error': self.error, 'retryable': self.retryable}
        if self.icao24 is not None:
            body['icao24'] = self.icao24
        if self.index is not None:
            body['index'] = self.index
        if self.field is not None:
            body['field'] = self.field
        return body


@dataclass
class MergeReport:
    applied: List[NormalizedObservation] = field(default_factory=list)
    superseded: int = 0
    errors: List[RecordError] = field(default_factory=list)

    @property
    def merged(self) -> int:
        return len(self.applied)

    def extend(self, other: 'MergeReport') -> None:
        self.applied.extend(other.applied)
        self.superseded += other.superseded
        self.errors.extend(other.errors)


@dataclass
class AppendReport:
    """Indices of records written to history, plus per-record failures."""
    recorded: List[int] = field(default_factory=list)
    errors: List[RecordError] = field(default_factory=list)

    @property
    def processed(self) -> int:
        return len(self.recorded)

    def extend(self, other: 'AppendReport') -> None:
        self.recorded.extend(other.recorded)
        self.errors.extend(other.errors)
