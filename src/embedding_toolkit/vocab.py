"""
Vocabularies map words to rows of the embedding storage.
"""

from typing import Iterable, Optional, Union

from gensim.models.fasttext import ft_ngram_hashes

# A known word maps to a single storage row, an unknown word of a subword
# vocabulary maps to the rows of its character n-grams.
Index = Union[int, list[int]]


class SimpleVocab:
    """A vocabulary of whole words."""

    def __init__(self, words: Iterable[str]):
        self.words = list(words)
        self._indices = {word: idx for idx, word in enumerate(self.words)}

        if len(self._indices) != len(self.words):
            raise ValueError("Vocabulary contains duplicate words")

    def __len__(self) -> int:
        return len(self.words)

    def __contains__(self, word: str) -> bool:
        return word in self._indices

    def __eq__(self, other) -> bool:
        return type(self) is type(other) and self.words == other.words

    @property
    def words_len(self) -> int:
        """Number of words (storage rows that belong to words)."""
        return len(self.words)

    @property
    def vocab_len(self) -> int:
        """Number of storage rows the vocabulary addresses."""
        return len(self.words)

    def word_index(self, word: str) -> Optional[int]:
        """Get the storage row of a known word."""
        return self._indices.get(word)

    def idx(self, word: str) -> Optional[Index]:
        """Get the storage row(s) from which an embedding of `word` is built."""
        return self.word_index(word)

    def to_dict(self) -> dict:
        return {"type": "simple", "words": self.words}


class SubwordVocab(SimpleVocab):
    """
    A vocabulary of words plus hashed character n-gram buckets.

    Bucket rows follow the word rows in storage. N-grams are extracted from
    the word wrapped in ``<`` and ``>`` and hashed the way fastText does, so
    embeddings read from fastText models keep their bucket layout.
    """

    def __init__(self, words: Iterable[str], min_n: int, max_n: int, buckets: int):
        super().__init__(words)

        if min_n < 1 or max_n < min_n:
            raise ValueError(f"Invalid n-gram range: [{min_n}, {max_n}]")
        if buckets < 1:
            raise ValueError(f"Number of buckets must be positive, was: {buckets}")

        self.min_n = min_n
        self.max_n = max_n
        self.buckets = buckets

    def __eq__(self, other) -> bool:
        return (
            super().__eq__(other)
            and (self.min_n, self.max_n, self.buckets) == (other.min_n, other.max_n, other.buckets)
        )

    @property
    def vocab_len(self) -> int:
        return len(self.words) + self.buckets

    def subword_indices(self, word: str) -> list[int]:
        """Storage rows of the n-grams of `word`."""
        offset = len(self.words)
        return [offset + h for h in ft_ngram_hashes(word, self.min_n, self.max_n, self.buckets)]

    def idx(self, word: str) -> Optional[Index]:
        word_idx = self.word_index(word)
        if word_idx is not None:
            return word_idx

        indices = self.subword_indices(word)
        return indices or None

    def to_dict(self) -> dict:
        return {
            "type": "subword",
            "words": self.words,
            "min_n": self.min_n,
            "max_n": self.max_n,
            "buckets": self.buckets,
        }


def vocab_from_dict(data: dict) -> SimpleVocab:
    """Rebuild a vocabulary from :meth:`SimpleVocab.to_dict` output."""
    vocab_type = data.get("type")

    if vocab_type == "simple":
        return SimpleVocab(data["words"])
    elif vocab_type == "subword":
        return SubwordVocab(data["words"], data["min_n"], data["max_n"], data["buckets"])
    else:
        raise ValueError(f"Unknown vocabulary type: {vocab_type}")
