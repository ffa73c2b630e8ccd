import itertools
import math

import numpy as np
import pytest

from embedding_toolkit.analyzer import (
    SimilarityMeasure,
    UnresolvedQuery,
    WordSimilarityResult,
    analogy,
    analogy_masked,
    cosine_similarity,
    embedding_similarity,
    word_similarity,
)
from embedding_toolkit.embeddings import Embeddings
from embedding_toolkit.errors import ConfigurationError

from .conftest import ANALOGY_WORDS


@pytest.fixture
def tied_embeddings():
    return Embeddings.from_vectors(
        ["a", "b", "c", "d"],
        np.array([[1, 0], [1, 1], [1, 1], [0, 1]], dtype=np.float32),
    )


@pytest.mark.parametrize("k", [1, 2, 3, 5, 10])
def test_word_similarity_excludes_query_and_sorts(analogy_embeddings, k):
    for word in ANALOGY_WORDS:
        results = word_similarity(analogy_embeddings, word, k)

        assert word not in [r.word for r in results]
        assert len(results) == min(k, len(ANALOGY_WORDS) - 1)
        scores = [r.similarity for r in results]
        assert scores == sorted(scores, reverse=True)


def test_word_similarity_unknown_word(analogy_embeddings):
    assert word_similarity(analogy_embeddings, "unicorn", 10) is None


def test_word_similarity_scores(analogy_embeddings):
    results = word_similarity(analogy_embeddings, "queen", 2)

    assert results[0].word == "princess"
    assert results[0].similarity == pytest.approx(2 / math.sqrt(2 * 2.09), rel=1e-5)
    assert results[1].similarity == pytest.approx(math.sqrt(0.5), rel=1e-5)


def test_ties_follow_vocabulary_order(tied_embeddings):
    results = word_similarity(tied_embeddings, "a", 3)

    assert [r.word for r in results] == ["b", "c", "d"]
    assert results[0].similarity == results[1].similarity
    assert word_similarity(tied_embeddings, "a", 1)[0].word == "b"


def test_embedding_similarity_skip(analogy_embeddings):
    query = analogy_embeddings.embedding("apple")

    results = embedding_similarity(analogy_embeddings, query, k=2, skip=["apple", "unicorn"])

    assert [r.word for r in results] == ["princess", "king"]


def test_embedding_similarity_everything_skipped(analogy_embeddings):
    query = analogy_embeddings.embedding("apple")
    assert embedding_similarity(analogy_embeddings, query, skip=ANALOGY_WORDS) == []


def test_analogy_king_man_woman():
    embeddings = Embeddings.from_vectors(
        ["king", "man", "woman", "queen"],
        np.array(
            [[1.0, 1.0, 0.0], [0.0, 1.0, 0.0], [0.0, 0.0, 1.0], [1.0, 0.0, 1.0]],
            dtype=np.float32,
        ),
    )

    results = analogy(embeddings, ("king", "man", "woman"), k=1)

    assert [r.word for r in results] == ["queen"]

    # With all query words excluded there is no other candidate.
    assert [r.word for r in analogy(embeddings, ("king", "man", "woman"), k=10)] == ["queen"]


def test_analogy_prefers_answer_over_distractor(analogy_embeddings):
    results = analogy(analogy_embeddings, ("man", "king", "woman"), k=3)

    assert [r.word for r in results] == ["queen", "princess", "apple"]
    assert results[0].similarity == pytest.approx(0.9587, abs=1e-3)


@pytest.mark.parametrize("remove", list(itertools.product([True, False], repeat=3)))
def test_analogy_masks(analogy_embeddings, remove):
    query = ("man", "king", "woman")

    results = analogy_masked(analogy_embeddings, query, remove, k=10)

    words = {r.word for r in results}
    excluded = {token for token, flag in zip(query, remove) if flag}
    assert words == set(ANALOGY_WORDS) - excluded
    scores = [r.similarity for r in results]
    assert scores == sorted(scores, reverse=True)


@pytest.mark.parametrize("k", [1, 2, 4])
def test_analogy_respects_k(analogy_embeddings, k):
    results = analogy_masked(analogy_embeddings, ("man", "king", "woman"), (False, False, False), k)
    assert len(results) == k


def test_analogy_unresolved(analogy_embeddings):
    query = ("man", "unicorn", "dragon")

    result = analogy(analogy_embeddings, query)

    assert result == UnresolvedQuery((True, False, False))
    assert result.missing(query) == ["unicorn", "dragon"]


def test_similarity_measures():
    assert WordSimilarityResult("a", 1.0).angular_similarity == pytest.approx(1.0)
    assert WordSimilarityResult("a", 0.0).angular_similarity == pytest.approx(0.5)
    assert WordSimilarityResult("a", -1.0).angular_similarity == pytest.approx(0.0)
    # Rounding can push a cosine slightly outside [-1, 1].
    assert WordSimilarityResult("a", 1.0000001).angular_similarity == pytest.approx(1.0)

    result = WordSimilarityResult("a", 0.5)
    assert SimilarityMeasure.parse("cosine").score(result) == 0.5
    assert SimilarityMeasure.parse("angular").score(result) == pytest.approx(1 - 1 / 3)


def test_unknown_similarity_measure():
    with pytest.raises(ConfigurationError, match="Unknown similarity measure"):
        SimilarityMeasure.parse("euclidean")


def test_cosine_similarity():
    assert cosine_similarity(np.array([1.0, 0.0]), np.array([2.0, 0.0])) == pytest.approx(1.0)
    assert cosine_similarity(np.array([1.0, 0.0]), np.array([0.0, 0.0])) == 0.0
