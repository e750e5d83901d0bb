"""
Tests for the shared data model.
"""

import numpy as np
import pytest

from semrel.core.models import (
    CosimilarityMatrix,
    EnsembleWeight,
    FeatureVector,
    ResultList,
    SimilarityResult,
)


class TestFeatureVector:
    """Sparse vector construction and primitives."""

    def test_zero_weights_dropped(self):
        v = FeatureVector({5: 0.0, 3: 2.0, 1: 1.0})
        assert list(v) == [1, 3]
        assert len(v) == 2
        assert v.get(5) == 0.0

    def test_immutable_arrays(self):
        v = FeatureVector({1: 1.0})
        with pytest.raises(ValueError):
            v.weights[0] = 3.0

    def test_from_arrays_sums_duplicates(self):
        v = FeatureVector.from_arrays([4, 2, 4], [1.0, 2.0, 0.5])
        assert v.to_dict() == {2: 2.0, 4: 1.5}

    def test_from_arrays_length_mismatch(self):
        with pytest.raises(ValueError):
            FeatureVector.from_arrays([1, 2], [1.0])

    def test_from_members_is_binary(self):
        v = FeatureVector.from_members([7, 3, 7])
        assert v.to_dict() == {3: 1.0, 7: 1.0}

    def test_weighted_sum(self):
        a = FeatureVector({1: 1.0, 2: 1.0})
        b = FeatureVector({2: 1.0, 3: 2.0})
        combined = FeatureVector.weighted_sum([(a, 0.5), (b, 2.0)])
        assert combined.to_dict() == {1: 0.5, 2: 2.5, 3: 4.0}

    def test_weighted_sum_of_nothing_is_empty(self):
        assert FeatureVector.weighted_sum([]).is_empty()

    def test_cosine_self_similarity_is_one(self, scenario_vectors):
        for vector in scenario_vectors.values():
            assert vector.cosine(vector) == pytest.approx(1.0)

    def test_cosine_with_empty_vector_is_zero(self):
        assert FeatureVector({1: 1.0}).cosine(FeatureVector()) == 0.0
        assert FeatureVector().cosine(FeatureVector()) == 0.0

    def test_overlap(self):
        a = FeatureVector.from_members([1, 2, 3])
        b = FeatureVector.from_members([2, 3, 4])
        assert a.overlap(b) == 2

    def test_equality_and_hash(self):
        a = FeatureVector({1: 1.0, 2: 0.5})
        b = FeatureVector.from_arrays([2, 1], [0.5, 1.0])
        assert a == b
        assert hash(a) == hash(b)


class TestResultList:
    """Ordering, bounding and de-duplication."""

    def test_sorted_by_score_then_id(self):
        results = ResultList(
            [
                SimilarityResult(5, 0.2, 0.5),
                SimilarityResult(3, 0.9, 0.9),
                SimilarityResult(2, 0.3, 0.5),
            ],
            k=10,
        )
        assert results.ids() == [3, 2, 5]

    def test_bounded_to_k(self):
        results = ResultList([SimilarityResult(i, 0.0, 1.0 / (i + 1)) for i in range(10)], k=3)
        assert len(results) == 3
        assert results.ids() == [0, 1, 2]

    def test_duplicates_keep_best(self):
        results = ResultList(
            [SimilarityResult(1, 0.1, 0.1), SimilarityResult(1, 0.8, 0.8)],
            k=5,
        )
        assert results.ids() == [1]
        assert results.scores() == [0.8]

    def test_negative_k_rejected(self):
        with pytest.raises(ValueError):
            ResultList([], k=-1)


class TestCosimilarityMatrix:
    def test_shape_checked(self):
        with pytest.raises(ValueError):
            CosimilarityMatrix([1, 2], [3], np.zeros((1, 2)))

    def test_cells_read_only(self):
        m = CosimilarityMatrix([1], [2, 3], np.array([[0.1, 0.2]]))
        assert m.shape == (1, 2)
        assert m.cell(0, 1) == pytest.approx(0.2)
        with pytest.raises(ValueError):
            m.values[0, 0] = 1.0


class TestEnsembleWeight:
    def test_non_finite_rejected(self):
        with pytest.raises(ValueError):
            EnsembleWeight("esa", float("nan"))
