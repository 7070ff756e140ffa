# app/models.py
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from core.models import ImageDescriptor, SimilarityResult


@dataclass(frozen=True)
class DescriptorFailure:
    """An image that was skipped while building descriptors."""
    path: str
    reason: str
    error_type: str  # "ImageDecodeError" or "InferenceError"


@dataclass(frozen=True)
class DescriptorBatch:
    """
    Outcome of building descriptors for a list of paths.
    Descriptors keep the order of the input paths.
    """
    descriptors: List[ImageDescriptor] = field(default_factory=list)
    failures: List[DescriptorFailure] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.descriptors)


class SearchStatus(Enum):
    NO_CANDIDATES = "no_candidates"  # target directory holds no supported images
    NO_MATCHES = "no_matches"  # candidates exist, none above the threshold
    MATCHES = "matches"


@dataclass(frozen=True)
class SimilarityReport:
    """
    Result of searching a directory for images similar to a reference.

    Attributes:
        reference: Descriptor of the reference image.
        threshold: Threshold used to filter results.
        results: Ranked results (descending score).
        candidates_found: Supported image files found in the target directory.
        failures: Candidates skipped because they could not be decoded or encoded.
    """
    reference: Optional[ImageDescriptor]
    threshold: float
    results: List[SimilarityResult] = field(default_factory=list)
    candidates_found: int = 0
    failures: List[DescriptorFailure] = field(default_factory=list)

    @property
    def status(self) -> SearchStatus:
        if self.candidates_found == 0:
            return SearchStatus.NO_CANDIDATES
        if not self.results:
            return SearchStatus.NO_MATCHES
        return SearchStatus.MATCHES

    @property
    def count(self) -> int:
        return len(self.results)

    @property
    def is_empty(self) -> bool:
        return not self.results
