"""
embedding-toolkit: Query, evaluate and compress word embeddings.

Load embeddings from various formats, find similar words and analogies,
measure analogy accuracy and product-quantize embedding matrices.
"""

__version__ = "0.1.0"

from .embeddings import Embeddings, EmbeddingWithNorm
from .loader import EmbeddingFormat, load_embeddings, read_metadata, write_embeddings
from .analyzer import (
    SimilarityMeasure,
    UnresolvedQuery,
    WordSimilarityResult,
    analogy,
    analogy_masked,
    embedding_similarity,
    word_similarity,
)
from .accuracy import AccuracyEvaluator, AccuracyReport, read_analogies
from .quantize import QuantizeConfig, QuantizerKind, quantize_embeddings
from .reconstruct import reconstruct_embeddings
from .select import select_embeddings

__all__ = [
    "Embeddings",
    "EmbeddingWithNorm",
    "EmbeddingFormat",
    "load_embeddings",
    "read_metadata",
    "write_embeddings",
    "SimilarityMeasure",
    "UnresolvedQuery",
    "WordSimilarityResult",
    "analogy",
    "analogy_masked",
    "embedding_similarity",
    "word_similarity",
    "AccuracyEvaluator",
    "AccuracyReport",
    "read_analogies",
    "QuantizeConfig",
    "QuantizerKind",
    "quantize_embeddings",
    "reconstruct_embeddings",
    "select_embeddings",
]
