import math

import numpy as np
import pytest

from app.exceptions import DimensionMismatchError
from core.models import ImageDescriptor
from core.similarity import SimilarityEngine, normalized_dot


def random_descriptor(rng, name, dim=512):
    return ImageDescriptor.from_raw_embedding(name, rng.normal(size=dim))


@pytest.fixture
def engine():
    return SimilarityEngine(threshold=0.80)


def test_self_similarity_is_one(engine):
    rng = np.random.RandomState(1)
    for i in range(25):
        d = random_descriptor(rng, f"{i}.png")
        assert abs(engine.compare(d, d) - 1.0) < 1e-5


def test_compare_is_symmetric(engine):
    rng = np.random.RandomState(2)
    for i in range(25):
        a = random_descriptor(rng, f"a{i}.png")
        b = random_descriptor(rng, f"b{i}.png")
        assert engine.compare(a, b) == engine.compare(b, a)


def test_compare_is_bounded(engine):
    rng = np.random.RandomState(3)
    a = random_descriptor(rng, "a.png", dim=16)
    opposite = ImageDescriptor("neg.png", -a.embedding)
    assert abs(engine.compare(a, opposite) + 1.0) < 1e-5


def test_compare_dimension_mismatch_raises(engine):
    a = ImageDescriptor("a.png", [1.0, 0.0, 0.0])
    b = ImageDescriptor("b.png", [1.0, 0.0])
    with pytest.raises(DimensionMismatchError):
        engine.compare(a, b)
    with pytest.raises(DimensionMismatchError):
        normalized_dot(a.embedding, b.embedding)


def test_rank_reference_example(engine):
    reference = ImageDescriptor("ref.png", [1.0, 0.0, 0.0])
    candidates = [
        ImageDescriptor("ref.png", [1.0, 0.0, 0.0]),
        ImageDescriptor("orthogonal.png", [0.0, 1.0, 0.0]),
        ImageDescriptor("close.png", [0.9, 0.436, 0.0]),
    ]

    results = engine.rank(reference, candidates)

    assert len(results) == 1
    assert results[0].source is reference
    assert results[0].target.identity == "close.png"
    assert results[0].score == pytest.approx(0.9, abs=1e-6)


def test_rank_keeps_identical_content_from_other_files(engine):
    reference = ImageDescriptor("ref.png", [1.0, 0.0, 0.0])
    twin = ImageDescriptor("twin.png", [1.0, 0.0, 0.0])
    results = engine.rank(reference, [twin])
    assert [r.target.identity for r in results] == ["twin.png"]
    assert results[0].score == pytest.approx(1.0)


def test_rank_orders_descending_and_filters():
    engine = SimilarityEngine(threshold=0.5)
    reference = ImageDescriptor("ref.png", [1.0, 0.0])

    def at_angle(name, cosine):
        return ImageDescriptor(name, [cosine, math.sqrt(1 - cosine ** 2)])

    candidates = [at_angle("c60", 0.6), at_angle("c95", 0.95), at_angle("c20", 0.2), at_angle("c80", 0.8)]
    results = engine.rank(reference, candidates)

    assert [r.target.identity for r in results] == ["c95", "c80", "c60"]
    scores = [r.score for r in results]
    assert scores == sorted(scores, reverse=True)


def test_rank_ties_keep_input_order(engine):
    reference = ImageDescriptor("ref.png", [1.0, 0.0])
    names = ["z.png", "a.png", "m.png"]
    candidates = [ImageDescriptor(name, [0.9, math.sqrt(1 - 0.81)]) for name in names]

    results = engine.rank(reference, candidates)
    assert [r.target.identity for r in results] == names


def test_threshold_is_strictly_greater_than():
    reference = ImageDescriptor("ref.png", [1.0, 0.0, 0.0])
    on_threshold = ImageDescriptor("half.png", [0.5, math.sqrt(0.75), 0.0])
    score = SimilarityEngine().compare(reference, on_threshold)

    assert SimilarityEngine(threshold=score).rank(reference, [on_threshold]) == []
    assert len(SimilarityEngine(threshold=score - 1e-6).rank(reference, [on_threshold])) == 1


def test_candidate_just_above_threshold_is_included():
    reference = ImageDescriptor("ref.png", [1.0, 0.0])
    x = 0.5 + 1e-6
    above = ImageDescriptor("above.png", [x, math.sqrt(1 - x * x)])
    assert len(SimilarityEngine(threshold=0.5).rank(reference, [above])) == 1


def test_rank_empty_candidates(engine):
    reference = ImageDescriptor("ref.png", [1.0, 0.0])
    assert engine.rank(reference, []) == []


def test_ranking_is_idempotent():
    engine = SimilarityEngine(threshold=0.0)
    rng = np.random.RandomState(4)
    reference = random_descriptor(rng, "ref.png", dim=8)
    candidates = [random_descriptor(rng, f"{i}.png", dim=8) for i in range(30)]
    candidates += [ImageDescriptor("dup.png", reference.embedding)]

    ranked = engine.rank(reference, candidates)

    assert engine.sort_results(ranked) == ranked
    reranked = engine.rank(reference, [r.target for r in ranked])
    assert [r.as_tuple() for r in reranked] == [r.as_tuple() for r in ranked]


def test_rank_aborts_on_dimension_mismatch(engine):
    reference = ImageDescriptor("ref.png", [1.0, 0.0, 0.0])
    candidates = [ImageDescriptor("ok.png", [1.0, 0.0, 0.0]), ImageDescriptor("bad.png", [1.0, 0.0])]
    with pytest.raises(DimensionMismatchError):
        engine.rank(reference, candidates)


@pytest.mark.parametrize("threshold", [-1.5, 1.01])
def test_invalid_threshold(threshold):
    with pytest.raises(ValueError):
        SimilarityEngine(threshold=threshold)
