"""
Similarity queries and word analogies.
"""

import math
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional, Union

import numpy as np

from .embeddings import Embeddings
from .errors import ConfigurationError
from .util import l2_normalize


class SimilarityMeasure(str, Enum):
    """Score reported for a similarity or analogy result."""
    ANGULAR = "angular"
    COSINE = "cosine"

    @classmethod
    def parse(cls, name: str) -> "SimilarityMeasure":
        try:
            return cls(name)
        except ValueError:
            raise ConfigurationError(f"Unknown similarity measure: {name}") from None

    def score(self, result: "WordSimilarityResult") -> float:
        if self is SimilarityMeasure.ANGULAR:
            return result.angular_similarity
        return result.cosine_similarity


@dataclass(frozen=True)
class WordSimilarityResult:
    """A word and its raw (cosine) similarity to a query."""
    word: str
    similarity: float

    @property
    def cosine_similarity(self) -> float:
        return self.similarity

    @property
    def angular_similarity(self) -> float:
        """Similarity in [0, 1] derived from the angle between the vectors."""
        cos = min(1.0, max(-1.0, self.similarity))
        return 1.0 - math.acos(cos) / math.pi


@dataclass(frozen=True)
class UnresolvedQuery:
    """
    An analogy query in which at least one token has no embedding.

    `resolved` holds one flag per query token, True if that token could be
    embedded.
    """
    resolved: tuple[bool, bool, bool]

    def missing(self, query: Iterable[str]) -> list[str]:
        """The tokens of `query` that could not be embedded."""
        return [token for token, ok in zip(query, self.resolved) if not ok]


AnalogyOutcome = Union[list[WordSimilarityResult], UnresolvedQuery]


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    """Compute cosine similarity between two vectors."""
    norm_a = np.linalg.norm(a)
    norm_b = np.linalg.norm(b)

    if norm_a == 0 or norm_b == 0:
        return 0.0

    return float(np.dot(a, b) / (norm_a * norm_b))


def _top_k(similarities: np.ndarray, k: int) -> np.ndarray:
    """Indices of the k highest scores; ties keep vocabulary order."""
    if k == 1:
        # argmax returns the first maximum
        return np.array([int(np.argmax(similarities))])
    return np.argsort(-similarities, kind="stable")[:k]


def embedding_similarity(
    embeddings: Embeddings,
    query: np.ndarray,
    k: int = 10,
    skip: Iterable[str] = (),
) -> list[WordSimilarityResult]:
    """
    Find the k words whose embeddings are most similar to a query vector.

    Args:
        embeddings: The embeddings to search
        query: Normalized query vector
        k: Number of neighbors to return
        skip: Words that may not appear in the result

    Returns:
        List of WordSimilarityResult objects, most similar first
    """
    words = embeddings.vocab.words
    similarities = embeddings.vocab_view() @ query

    skip_indices = [
        idx for idx in (embeddings.vocab.word_index(word) for word in set(skip))
        if idx is not None
    ]
    if skip_indices:
        similarities[skip_indices] = -np.inf

    n_candidates = len(words) - len(skip_indices)
    k = min(k, n_candidates)
    if k <= 0:
        return []

    return [
        WordSimilarityResult(word=words[idx], similarity=float(similarities[idx]))
        for idx in _top_k(similarities, k)
    ]


def word_similarity(
    embeddings: Embeddings,
    word: str,
    k: int = 10,
) -> Optional[list[WordSimilarityResult]]:
    """
    Find the k words most similar to `word`, excluding `word` itself.

    Returns None if no embedding can be computed for `word`.
    """
    query = embeddings.embedding(word)
    if query is None:
        return None

    return embedding_similarity(embeddings, query, k=k, skip=[word])


def analogy_masked(
    embeddings: Embeddings,
    query: tuple[str, str, str],
    remove: tuple[bool, bool, bool] = (True, True, True),
    k: int = 10,
) -> AnalogyOutcome:
    """
    Answer the analogy "a is to b as c is to ?".

    The answers are the words most similar to ``b - a + c``.

    Args:
        embeddings: The embeddings to search
        query: The tokens (a, b, c)
        remove: Per query token, whether the token may not be an answer
        k: Number of answers to return

    Returns:
        The answers, most similar first, or an UnresolvedQuery if any of the
        query tokens cannot be embedded
    """
    vectors = [embeddings.embedding(token) for token in query]
    resolved = tuple(vector is not None for vector in vectors)

    if not all(resolved):
        return UnresolvedQuery(resolved)

    a, b, c = vectors
    target = b - a + c
    l2_normalize(target)

    skip = [token for token, excluded in zip(query, remove) if excluded]

    return embedding_similarity(embeddings, target, k=k, skip=skip)


def analogy(
    embeddings: Embeddings,
    query: tuple[str, str, str],
    k: int = 10,
) -> AnalogyOutcome:
    """Answer an analogy; none of the query tokens may be an answer."""
    return analogy_masked(embeddings, query, (True, True, True), k)
