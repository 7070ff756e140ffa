# core/similarity.py
import logging
from typing import Iterable, List, Sequence

import numpy as np

from app.exceptions import DimensionMismatchError
from core.models import ImageDescriptor, SimilarityResult

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD: float = 0.80


def normalized_dot(a: np.ndarray, b: np.ndarray) -> float:
    """
    Dot product of two embeddings that are ALREADY L2-normalized.

    For unit vectors this equals the cosine similarity. It is not a general
    cosine function: callers must only pass embeddings taken from
    ImageDescriptor, whose constructor enforces the normalization.

    Raises:
        DimensionMismatchError: If the vectors have different lengths.
    """
    if a.shape[0] != b.shape[0]:
        raise DimensionMismatchError(
            f"Embeddings must have the same dimensions ({a.shape[0]} != {b.shape[0]})")
    return float(np.dot(a.astype(np.float64), b.astype(np.float64)))


class SimilarityEngine:
    """
    Scores and ranks candidate descriptors against a reference descriptor.

    Attributes:
        threshold: Candidates are kept only when their score is strictly
                   greater than this value.
    """

    def __init__(self, threshold: float = DEFAULT_THRESHOLD):
        if not -1.0 <= threshold <= 1.0:
            raise ValueError(f"threshold must be within [-1, 1], got {threshold}")
        self.threshold = float(threshold)

    def compare(self, a: ImageDescriptor, b: ImageDescriptor) -> float:
        """Cosine similarity of two descriptors. Symmetric; compare(a, a) ≈ 1."""
        return normalized_dot(a.embedding, b.embedding)

    def score_all(
        self, reference: ImageDescriptor, candidates: Iterable[ImageDescriptor]
    ) -> List[SimilarityResult]:
        """Scores every candidate, in input order, without filtering."""
        return [
            SimilarityResult(source=reference, target=candidate, score=self.compare(reference, candidate))
            for candidate in candidates
        ]

    def sort_results(self, results: Iterable[SimilarityResult]) -> List[SimilarityResult]:
        """
        Drops results at or below the threshold and orders the rest by
        descending score. Equal scores keep their incoming order, so
        applying this twice gives the same sequence.
        """
        kept = [result for result in results if result.score > self.threshold]
        # sorted() stays stable with reverse=True
        return sorted(kept, key=lambda result: result.score, reverse=True)

    def rank(
        self, reference: ImageDescriptor, candidates: Sequence[ImageDescriptor]
    ) -> List[SimilarityResult]:
        """
        Ranks candidates by similarity to the reference.

        Args:
            reference: The descriptor every candidate is compared against.
            candidates: Candidate descriptors; their order breaks ties.
                        A candidate equal to the reference (same identity)
                        is the reference itself and is never reported.

        Returns:
            (reference, candidate, score) results above the threshold, in
            descending score order. An empty candidate list gives [].

        Raises:
            DimensionMismatchError: If any candidate's embedding length
                differs from the reference's. No partial ranking is returned.
        """
        if not candidates:
            logger.debug("No candidates to rank.")
            return []

        # The reference never matches itself, even when it sits among the candidates.
        others = [candidate for candidate in candidates if candidate != reference]
        ranked = self.sort_results(self.score_all(reference, others))
        logger.info(
            f"Ranked {len(candidates)} candidates: {len(ranked)} above threshold {self.threshold:.2f}.")
        return ranked
