"""Tests for cosine similarity ranking."""

import pytest

from memoria.similarity import cosine_similarity, rank


class TestCosineSimilarity:
    """Tests for cosine_similarity."""

    def test_identical_vectors(self):
        assert cosine_similarity([1.0, 2.0, 3.0], [1.0, 2.0, 3.0]) == pytest.approx(1.0)

    def test_orthogonal_vectors(self):
        assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)

    def test_opposite_vectors(self):
        assert cosine_similarity([1.0, 2.0], [-1.0, -2.0]) == pytest.approx(-1.0)

    def test_zero_vector(self):
        """A zero-magnitude vector yields 0."""
        assert cosine_similarity([0.0, 0.0], [1.0, 1.0]) == 0.0

    def test_dimension_mismatch(self):
        """Vectors of different lengths yield 0."""
        assert cosine_similarity([1.0, 0.0], [1.0, 0.0, 0.0]) == 0.0

    def test_scale_invariant(self):
        """Vectors need not be normalized."""
        assert cosine_similarity([3.0, 4.0], [30.0, 40.0]) == pytest.approx(1.0)

    def test_never_exceeds_one(self):
        """Rounding error is clamped."""
        v = [0.1] * 1536
        assert cosine_similarity(v, v) <= 1.0


class TestRank:
    """Tests for rank."""

    def test_sorted_descending(self):
        hits = rank(
            [1.0, 0.0],
            [("far", [0.0, 1.0]), ("near", [1.0, 0.1]), ("mid", [1.0, 1.0])],
        )
        assert [h.id for h in hits] == ["near", "mid", "far"]

    def test_excludes_mismatched_dimensions(self):
        """Entries from another model's vector space are skipped."""
        hits = rank([1.0, 0.0], [("ok", [1.0, 0.0]), ("bad", [1.0, 0.0, 0.0])])
        assert [h.id for h in hits] == ["ok"]

    def test_ties_keep_input_order(self):
        hits = rank([1.0, 0.0], [("a", [2.0, 0.0]), ("b", [1.0, 0.0])])
        assert [h.id for h in hits] == ["a", "b"]

    def test_empty(self):
        assert rank([1.0], []) == []
