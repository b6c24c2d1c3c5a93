"""
Similarity scoring for re-identifying an element whose locator broke.

Compares the last known snapshot of an element with the elements currently
on screen, property by property, and combines the per-property similarities
with fixed weights:

    text        0.30  (Levenshtein similarity)
    position    0.30  (exponential decay over center distance)
    size        0.20  (ratio of smaller to larger area)
    attributes  0.20  (share of identical attribute key/value pairs)

Properties the snapshot does not know (no text, no bounds, no attributes)
score zero; the weights are never renormalized.
"""

import math
import logging
from typing import Dict, List, Optional, Tuple

from ..core.models import ElementSnapshot, LiveElement


logger = logging.getLogger(__name__)


class SimilarityScorer:
    """Weighted multi-property similarity between a snapshot and live elements."""

    DEFAULT_WEIGHTS = {
        'text': 0.30,
        'position': 0.30,
        'size': 0.20,
        'attributes': 0.20,
    }

    # Exponential decay rate for center distance in pixels
    POSITION_DECAY = 0.005

    def __init__(self, custom_weights: Optional[Dict[str, float]] = None):
        """
        Initialize the similarity scorer.

        Args:
            custom_weights: Optional dictionary to override default weights
        """
        self.weights = self.DEFAULT_WEIGHTS.copy()
        if custom_weights:
            self.weights.update(custom_weights)

        self._levenshtein_cache: Dict[Tuple[str, str], int] = {}

    def calculate_similarity(self, target: ElementSnapshot, candidate: LiveElement) -> float:
        """
        Calculate overall similarity between the target snapshot and a live element.

        Properties the target does not know contribute nothing, so a match on
        text alone never exceeds the text weight.

        Returns:
            Similarity score in [0, 1]
        """
        total_weight = sum(self.weights.values())
        if total_weight <= 0:
            return 0.0

        total_score = 0.0
        for name, similarity in self.property_similarities(target, candidate).items():
            total_score += similarity * self.weights.get(name, 0)

        return total_score / total_weight

    def property_similarities(self, target: ElementSnapshot,
                              candidate: LiveElement) -> Dict[str, float]:
        """Similarity per property, for the properties the target knows."""
        similarities = {}

        if target.text:
            similarities['text'] = self._levenshtein_similarity(
                target.text.strip().lower(), candidate.text.strip().lower())

        if target.rect.area > 0:
            target_x, target_y = target.rect.center
            candidate_x, candidate_y = candidate.rect.center
            distance = math.sqrt((target_x - candidate_x) ** 2 + (target_y - candidate_y) ** 2)
            similarities['position'] = math.exp(-self.POSITION_DECAY * distance)

            target_area = target.rect.area
            candidate_area = candidate.rect.area
            if candidate_area > 0:
                similarities['size'] = min(target_area, candidate_area) / max(target_area, candidate_area)
            else:
                similarities['size'] = 0.0

        if target.attributes:
            similarities['attributes'] = self._intersect_value_similarity(
                target.attributes, candidate.attributes)

        return similarities

    def rank_candidates(self, target: ElementSnapshot,
                        candidates: List[LiveElement]) -> List[Tuple[LiveElement, float]]:
        """
        Rank all candidates by similarity score.

        Returns:
            List of (candidate, score) tuples sorted by score (descending);
            ties keep the order the driver reported
        """
        scored = [(candidate, self.calculate_similarity(target, candidate))
                  for candidate in candidates]
        scored.sort(key=lambda x: x[1], reverse=True)
        return scored

    def find_best_match(self, target: ElementSnapshot, candidates: List[LiveElement],
                        threshold: float = 0.70) -> Optional[Tuple[LiveElement, float]]:
        """
        Find the best candidate, accepted only if its score exceeds ``threshold``.

        Returns:
            Tuple of (best_match, score) or None if no candidate is good enough
        """
        ranked = self.rank_candidates(target, candidates)
        if not ranked:
            return None

        best_match, best_score = ranked[0]
        if best_score > threshold:
            logger.info(f"Found best match {best_match.locator} with similarity score: {best_score:.3f}")
            return best_match, best_score

        logger.info(f"No match above threshold {threshold} (best {best_score:.3f})")
        return None

    # =================== Similarity Functions ===================

    def _levenshtein_similarity(self, a: str, b: str) -> float:
        """Levenshtein distance normalized to similarity score [0, 1]."""
        if not a and not b:
            return 1.0
        if not a or not b:
            return 0.0

        cache_key = (a, b)
        if cache_key in self._levenshtein_cache:
            distance = self._levenshtein_cache[cache_key]
        else:
            distance = self._levenshtein_distance(a, b)
            self._levenshtein_cache[cache_key] = distance

        return 1.0 - (distance / max(len(a), len(b)))

    def _levenshtein_distance(self, s1: str, s2: str) -> int:
        """Calculate Levenshtein (edit) distance between two strings."""
        if len(s1) < len(s2):
            return self._levenshtein_distance(s2, s1)

        if len(s2) == 0:
            return len(s1)

        previous_row = list(range(len(s2) + 1))
        for i, c1 in enumerate(s1):
            current_row = [i + 1]
            for j, c2 in enumerate(s2):
                insertions = previous_row[j + 1] + 1
                deletions = current_row[j] + 1
                substitutions = previous_row[j] + (c1 != c2)
                current_row.append(min(insertions, deletions, substitutions))
            previous_row = current_row

        return previous_row[-1]

    def _intersect_value_similarity(self, a: Dict[str, str], b: Dict[str, str]) -> float:
        """Share of key/value pairs that are identical in both attribute maps."""
        if not a and not b:
            return 1.0
        if not a or not b:
            return 0.0

        common_keys = set(a.keys()) & set(b.keys())
        matching_pairs = sum(1 for k in common_keys if a[k] == b[k])

        return matching_pairs / max(len(a), len(b))
