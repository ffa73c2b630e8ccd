"""
Select a subset of embeddings.
"""

import logging
from typing import Iterable

import numpy as np

from .embeddings import Embeddings
from .errors import EmbeddingToolkitError
from .vocab import SimpleVocab

logger = logging.getLogger(__name__)


class UnknownWordError(EmbeddingToolkitError):
    """A selected word has no embedding."""


def select_embeddings(
    embeddings: Embeddings,
    words: Iterable[str],
    ignore_unknown: bool = False,
    report_dropped: bool = True,
) -> Embeddings:
    """
    Copy the embeddings of the given words.

    Words keep the order in which they are first given. Words of a subword
    vocabulary that are not in the vocabulary get their subword embedding.

    Args:
        embeddings: Source embeddings
        words: Words to select, blank entries are ignored
        ignore_unknown: Drop words without an embedding instead of failing
        report_dropped: Log a warning for every dropped word

    Returns:
        Embeddings with a simple vocabulary of the selected words

    Raises:
        UnknownWordError: A word has no embedding and `ignore_unknown` is False
    """
    selected = []
    vectors = []
    norms = []
    dropped = []
    seen = set()

    for word in words:
        word = word.strip()
        if not word or word in seen:
            continue
        seen.add(word)

        embedding = embeddings.embedding_with_norm(word)
        if embedding is None:
            if not ignore_unknown:
                raise UnknownWordError(f"Cannot get embedding for: {word}")
            dropped.append(word)
            if report_dropped:
                logger.warning("Dropping word without embedding: %s", word)
            continue

        selected.append(word)
        vectors.append(embedding.embedding)
        norms.append(embedding.norm)

    if dropped:
        logger.info("Dropped %d word(s) without embedding", len(dropped))

    storage = np.array(vectors, dtype=np.float32).reshape(len(selected), embeddings.dims)

    return Embeddings(
        vocab=SimpleVocab(selected),
        storage=storage,
        norms=np.array(norms, dtype=np.float32),
    )
