"""Nearest-profile matching of face descriptors."""

import logging
from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np
from sklearn.metrics.pairwise import euclidean_distances

from .profiles import ReferenceProfile

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MatchResult:
    """Closest enrolled profile for a query descriptor."""

    profile: ReferenceProfile
    distance: float

    @property
    def confidence(self) -> float:
        """Match confidence as a percentage rounded to one decimal place."""
        return round((1.0 - self.distance) * 100, 1)


def find_best_match(query: np.ndarray,
                    profiles: Sequence[ReferenceProfile],
                    threshold: float) -> Optional[MatchResult]:
    """
    Find the enrolled profile closest to a query descriptor.

    Ties go to the earliest enrolled profile. The match is only returned
    when its distance is strictly below the threshold.

    Args:
        query: Query face descriptor
        profiles: Enrolled profiles in enrollment order
        threshold: Acceptance threshold on Euclidean distance

    Returns:
        Best match or None
    """
    if not profiles:
        return None

    query = np.asarray(query, dtype=np.float64).reshape(1, -1)
    references = np.vstack([p.descriptor for p in profiles]).astype(np.float64)
    if references.shape[1] != query.shape[1]:
        raise ValueError(f"Descriptor dimension mismatch: {query.shape[1]} vs {references.shape[1]}")

    distances = euclidean_distances(query, references)[0]
    # argmin returns the first index on ties
    best = int(np.argmin(distances))
    distance = float(distances[best])

    if distance < threshold:
        return MatchResult(profile=profiles[best], distance=distance)
    return None
