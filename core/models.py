from dataclasses import dataclass, field
from typing import Sequence, Tuple, Union

import numpy as np

# Allowed deviation of a stored embedding's L2 norm from 1.0.
NORM_TOLERANCE: float = 1e-3

VectorLike = Union[Sequence[float], np.ndarray]


def l2_normalize(vector: VectorLike) -> np.ndarray:
    """
    Rescales a vector to unit L2 norm.

    An all-zero vector has no direction and is returned unchanged (as a
    copy) instead of being divided by zero. The input is never modified.

    Args:
        vector: One-dimensional sequence of floats.

    Returns:
        A new float32 array with ‖v‖₂ = 1, or the zero vector.
    """
    values = np.array(vector, dtype=np.float64)
    if values.ndim != 1:
        raise ValueError(f"Expected a 1-D vector, got shape {values.shape}")
    magnitude = float(np.sqrt(np.sum(values * values)))
    if magnitude > 0:
        values = values / magnitude
    return values.astype(np.float32)


@dataclass(frozen=True)
class ImageDescriptor:
    """
    Immutable pairing of an image identity with its normalized embedding.

    Attributes:
        identity: Path (or URI) of the source image. Used for display and
                  equality only.
        embedding: Read-only float32 vector with unit L2 norm (or the
                   degenerate all-zero vector).
    """

    identity: str
    embedding: np.ndarray = field(compare=False, repr=False)

    def __post_init__(self):
        vector = np.array(self.embedding, dtype=np.float32)
        if vector.ndim != 1 or vector.size == 0:
            raise ValueError(
                f"Embedding for '{self.identity}' must be a non-empty 1-D vector, got shape {vector.shape}")
        if not np.all(np.isfinite(vector)):
            raise ValueError(f"Embedding for '{self.identity}' contains non-finite values.")
        norm = float(np.linalg.norm(vector.astype(np.float64)))
        if norm != 0.0 and abs(norm - 1.0) > NORM_TOLERANCE:
            raise ValueError(
                f"Embedding for '{self.identity}' is not normalized (norm={norm:.6f}). "
                "Use ImageDescriptor.from_raw_embedding for raw model output.")
        vector.setflags(write=False)
        object.__setattr__(self, "embedding", vector)

    @classmethod
    def from_raw_embedding(cls, identity: str, raw_embedding: VectorLike) -> "ImageDescriptor":
        """Normalizes raw model output exactly once and wraps it."""
        return cls(identity=identity, embedding=l2_normalize(raw_embedding))

    @property
    def dimension(self) -> int:
        return int(self.embedding.shape[0])


@dataclass(frozen=True)
class SimilarityResult:
    """
    One (source, target, score) triple produced by the similarity engine.

    Attributes:
        source: The reference descriptor.
        target: The candidate descriptor.
        score: Cosine similarity in [-1, 1].
    """

    source: ImageDescriptor
    target: ImageDescriptor
    score: float

    def as_tuple(self) -> Tuple[str, str, float]:
        """Plain (source path, target path, score) triple for rendering."""
        return self.source.identity, self.target.identity, self.score
