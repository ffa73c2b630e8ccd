"""
Exceptions raised by embedding-toolkit.

Vocabulary misses are not exceptions: lookups return ``None`` and analogy
queries return an :class:`~embedding_toolkit.analyzer.UnresolvedQuery`.
"""


class EmbeddingToolkitError(Exception):
    """Base class for all errors raised by this package."""


class ConfigurationError(EmbeddingToolkitError, ValueError):
    """An option or parameter is invalid. Raised before any work is done."""


class FormatError(EmbeddingToolkitError):
    """An embedding file cannot be read or written in the requested format."""


class StorageError(EmbeddingToolkitError):
    """An operation does not support the storage type of the embeddings."""


class MalformedInputError(EmbeddingToolkitError, ValueError):
    """A line of query or test input does not have the expected shape."""

    def __init__(self, message: str, line_no: int | None = None):
        if line_no is not None:
            message = f"line {line_no}: {message}"
        super().__init__(message)
        self.line_no = line_no
