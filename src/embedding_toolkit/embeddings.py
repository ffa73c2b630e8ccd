"""
The in-memory embedding collection.
"""

from dataclasses import dataclass, field
from typing import Iterable, Optional, Union

import numpy as np

from .errors import StorageError
from .storage import QuantizedArray
from .util import l2_normalize, l2_normalize_array
from .vocab import SimpleVocab

Storage = Union[np.ndarray, QuantizedArray]


@dataclass
class EmbeddingWithNorm:
    """A normalized embedding and the norm it had before normalization."""
    embedding: np.ndarray
    norm: float


@dataclass
class Embeddings:
    """
    Word embeddings: a vocabulary, its storage, norms and metadata.

    Word rows of dense storage are L2-normalized; `norms` keeps the norm of
    each word vector before normalization. The collection is treated as
    read-only once created and may be shared between threads.
    """
    vocab: SimpleVocab
    storage: Storage  # Shape: (vocab.vocab_len, dims)
    norms: Optional[np.ndarray] = None  # Shape: (vocab.words_len,)
    metadata: dict = field(default_factory=dict)

    def __post_init__(self):
        if self.storage.shape[0] != self.vocab.vocab_len:
            raise ValueError(
                f"Storage has {self.storage.shape[0]} rows, vocabulary needs {self.vocab.vocab_len}"
            )
        if self.norms is not None and len(self.norms) != self.vocab.words_len:
            raise ValueError(
                f"Got {len(self.norms)} norms for {self.vocab.words_len} words"
            )

    @classmethod
    def from_vectors(
        cls,
        words: Iterable[str],
        vectors: np.ndarray,
        metadata: Optional[dict] = None,
    ) -> "Embeddings":
        """Build embeddings from unnormalized word vectors."""
        vectors = np.array(vectors, dtype=np.float32)

        if vectors.ndim != 2:
            raise ValueError(f"Expected a matrix, got an array with {vectors.ndim} dimensions")

        norms = l2_normalize_array(vectors)

        return cls(
            vocab=SimpleVocab(words),
            storage=vectors,
            norms=norms,
            metadata=dict(metadata or {}),
        )

    def __len__(self) -> int:
        return len(self.vocab)

    def __contains__(self, word: str) -> bool:
        return self.vocab.idx(word) is not None

    @property
    def dims(self) -> int:
        """Dimensionality of the embeddings."""
        return self.storage.shape[1]

    @property
    def is_quantized(self) -> bool:
        return isinstance(self.storage, QuantizedArray)

    def view(self) -> np.ndarray:
        """The dense storage matrix, including bucket rows."""
        if self.is_quantized:
            raise StorageError(
                "Quantized embeddings cannot be queried directly, reconstruct them first"
            )
        return self.storage

    def vocab_view(self) -> np.ndarray:
        """The dense rows of the vocabulary words."""
        return self.view()[: self.vocab.words_len]

    def unnormalized_vocab(self) -> np.ndarray:
        """A copy of the word rows, scaled back by their norms when known."""
        if self.is_quantized:
            vectors = self.storage.reconstruct()[: self.vocab.words_len]
        else:
            vectors = np.array(self.vocab_view(), dtype=np.float32)

        if self.norms is not None:
            vectors *= self.norms[:, np.newaxis]

        return vectors

    def _row(self, idx: int) -> np.ndarray:
        if self.is_quantized:
            return self.storage.embedding(idx)
        return np.array(self.storage[idx], dtype=np.float32)

    def idx(self, word: str):
        """Storage row(s) of `word`, see :meth:`SimpleVocab.idx`."""
        return self.vocab.idx(word)

    def embedding(self, word: str) -> Optional[np.ndarray]:
        """
        Get the normalized embedding of a word.

        Unknown words of a subword vocabulary get the normalized mean of
        their n-gram rows. Returns None if no embedding can be computed.
        """
        result = self.embedding_with_norm(word)
        return None if result is None else result.embedding

    def embedding_with_norm(self, word: str) -> Optional[EmbeddingWithNorm]:
        """Get the normalized embedding of a word with its original norm."""
        idx = self.vocab.idx(word)

        if idx is None:
            return None

        if isinstance(idx, int):
            embedding = self._row(idx)
            if self.norms is not None:
                return EmbeddingWithNorm(embedding, float(self.norms[idx]))
            norm = l2_normalize(embedding)
            return EmbeddingWithNorm(embedding, norm)

        embedding = np.zeros(self.dims, dtype=np.float32)
        for row in idx:
            embedding += self._row(row)
        embedding /= len(idx)
        norm = l2_normalize(embedding)

        return EmbeddingWithNorm(embedding, norm)
