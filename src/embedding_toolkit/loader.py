"""
Load and save embeddings in various file formats.

Supported formats:
- native: single-file container with a JSON header followed by the raw
  arrays, dense or quantized storage
- native_mmap: native file with the dense arrays memory-mapped (read-only)
- word2vec: binary word2vec format
- text: one word per line followed by its vector components
- textdims: text format with a ``<n_words> <dims>`` header line
- fasttext: fastText binary model with subword buckets (read-only)
"""

import json
import logging
import struct
from enum import Enum
from pathlib import Path
from typing import Optional

import numpy as np
from gensim.models import KeyedVectors
from gensim.models.fasttext import load_facebook_vectors

from .embeddings import Embeddings
from .errors import ConfigurationError, FormatError
from .storage import QuantizedArray
from .util import l2_normalize_array
from .vocab import SimpleVocab, SubwordVocab, vocab_from_dict

logger = logging.getLogger(__name__)

MAGIC = b"EMBT"
VERSION = 1
# magic, version, header length
PREFIX = struct.Struct("<4sIQ")
ALIGNMENT = 16


class EmbeddingFormat(str, Enum):
    NATIVE = "native"
    NATIVE_MMAP = "native_mmap"
    FASTTEXT = "fasttext"
    WORD2VEC = "word2vec"
    TEXT = "text"
    TEXTDIMS = "textdims"

    @classmethod
    def parse(cls, name: str) -> "EmbeddingFormat":
        try:
            return cls(name)
        except ValueError:
            raise ConfigurationError(f"Unknown embedding format: {name}") from None

    @property
    def writable(self) -> bool:
        return self not in (EmbeddingFormat.NATIVE_MMAP, EmbeddingFormat.FASTTEXT)


READABLE_FORMATS = [fmt.value for fmt in EmbeddingFormat]
WRITABLE_FORMATS = [fmt.value for fmt in EmbeddingFormat if fmt.writable]


def load_embeddings(
    source: str | Path,
    fmt: EmbeddingFormat | str = EmbeddingFormat.NATIVE,
    lossy: bool = False,
) -> Embeddings:
    """
    Load embeddings from a file.

    Args:
        source: Path to embedding file
        fmt: File format
        lossy: Replace malformed UTF-8 in words instead of failing

    Returns:
        Embeddings with normalized word rows and their norms

    Raises:
        FileNotFoundError: The file does not exist
        FormatError: The file cannot be read in the given format
    """
    path = Path(source)
    fmt = EmbeddingFormat.parse(fmt) if isinstance(fmt, str) else fmt

    if not path.exists():
        raise FileNotFoundError(f"File not found: {path}")

    logger.info("Reading %s embeddings from %s", fmt.value, path)

    if fmt is EmbeddingFormat.NATIVE:
        return load_native(path)
    elif fmt is EmbeddingFormat.NATIVE_MMAP:
        return load_native(path, mmap=True)
    elif fmt is EmbeddingFormat.WORD2VEC:
        return load_word2vec(path, binary=True, lossy=lossy)
    elif fmt is EmbeddingFormat.TEXT:
        return load_word2vec(path, binary=False, no_header=True, lossy=lossy)
    elif fmt is EmbeddingFormat.TEXTDIMS:
        return load_word2vec(path, binary=False, lossy=lossy)
    elif fmt is EmbeddingFormat.FASTTEXT:
        return load_fasttext(path)
    else:
        raise ConfigurationError(f"Unknown embedding format: {fmt}")


def write_embeddings(
    embeddings: Embeddings,
    target: str | Path,
    fmt: EmbeddingFormat | str = EmbeddingFormat.NATIVE,
    unnormalize: bool = False,
) -> None:
    """
    Write embeddings to a file.

    Args:
        embeddings: Embeddings to write
        target: Output path
        fmt: File format
        unnormalize: Scale word vectors back by their norms (ignored by the
            native format, which stores the norms)

    Raises:
        FormatError: The format cannot be written
    """
    path = Path(target)
    fmt = EmbeddingFormat.parse(fmt) if isinstance(fmt, str) else fmt

    if not fmt.writable:
        raise FormatError(f"Writing to the {fmt.value} format is not supported")

    logger.info("Writing %s embeddings to %s", fmt.value, path)

    if fmt is EmbeddingFormat.NATIVE:
        write_native(embeddings, path)
        return

    vectors = _vocab_vectors(embeddings, unnormalize)

    if fmt is EmbeddingFormat.WORD2VEC:
        write_word2vec(embeddings.vocab.words, vectors, path)
    else:
        write_text(
            embeddings.vocab.words,
            vectors,
            path,
            write_dims=fmt is EmbeddingFormat.TEXTDIMS,
        )


def _vocab_vectors(embeddings: Embeddings, unnormalize: bool) -> np.ndarray:
    if unnormalize:
        return embeddings.unnormalized_vocab()
    if embeddings.is_quantized:
        return embeddings.storage.reconstruct()[: embeddings.vocab.words_len]
    return embeddings.vocab_view()


# ── Native format ─────────────────────────────────────────────────────────────


def _align(offset: int) -> int:
    return (offset + ALIGNMENT - 1) // ALIGNMENT * ALIGNMENT


def _native_arrays(embeddings: Embeddings) -> dict[str, np.ndarray]:
    arrays = {}

    if embeddings.is_quantized:
        arrays["quantizer"] = embeddings.storage.serialize()
        if embeddings.storage.norms is not None:
            arrays["quantizer_norms"] = np.asarray(embeddings.storage.norms, dtype=np.float32)
    else:
        arrays["storage"] = np.ascontiguousarray(embeddings.storage, dtype=np.float32)

    if embeddings.norms is not None:
        arrays["norms"] = np.asarray(embeddings.norms, dtype=np.float32)

    return arrays


def write_native(embeddings: Embeddings, path: Path) -> None:
    """Write embeddings in the native container format."""
    arrays = _native_arrays(embeddings)

    table = {}
    offset = 0
    for name, array in arrays.items():
        offset = _align(offset)
        table[name] = {
            "offset": offset,
            "dtype": array.dtype.str,
            "shape": list(array.shape),
        }
        offset += array.nbytes

    header = {
        "vocab": embeddings.vocab.to_dict(),
        "storage": {
            "type": "quantized" if embeddings.is_quantized else "array",
            "shape": list(embeddings.storage.shape),
        },
        "arrays": table,
        "metadata": embeddings.metadata,
    }

    try:
        header_bytes = json.dumps(header, ensure_ascii=False).encode("utf-8")
    except TypeError as e:
        raise FormatError(f"Metadata cannot be serialized: {e}") from e

    data_start = _align(PREFIX.size + len(header_bytes))

    with open(path, "wb") as f:
        f.write(PREFIX.pack(MAGIC, VERSION, len(header_bytes)))
        f.write(header_bytes)
        for name, array in arrays.items():
            f.write(b"\0" * (data_start + table[name]["offset"] - f.tell()))
            f.write(array.tobytes())


def _read_header(f, path: Path) -> tuple[dict, int]:
    prefix = f.read(PREFIX.size)
    if len(prefix) < PREFIX.size:
        raise FormatError(f"File is too short to contain embeddings: {path}")

    magic, version, header_len = PREFIX.unpack(prefix)
    if magic != MAGIC:
        raise FormatError(f"Not a native embeddings file: {path}")
    if version != VERSION:
        raise FormatError(f"Unsupported native format version {version}: {path}")

    try:
        header = json.loads(f.read(header_len).decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise FormatError(f"Corrupt header in {path}: {e}") from e

    return header, _align(PREFIX.size + header_len)


def _read_array(f, path: Path, data_start: int, entry: dict, mmap: bool) -> np.ndarray:
    dtype = np.dtype(entry["dtype"])
    shape = tuple(entry["shape"])
    count = int(np.prod(shape))
    offset = data_start + entry["offset"]

    if count == 0:
        return np.zeros(shape, dtype=dtype)

    if mmap:
        return np.memmap(path, dtype=dtype, mode="r", offset=offset, shape=shape)

    f.seek(offset)
    array = np.fromfile(f, dtype=dtype, count=count)
    if array.size != count:
        raise FormatError(f"Truncated array in {path}")

    return array.reshape(shape)


def load_native(path: Path, mmap: bool = False) -> Embeddings:
    """Load embeddings from the native container format."""
    with open(path, "rb") as f:
        header, data_start = _read_header(f, path)

        try:
            vocab = vocab_from_dict(header["vocab"])
            storage_info = header["storage"]
            arrays = {
                name: _read_array(f, path, data_start, entry, mmap and name == "storage")
                for name, entry in header["arrays"].items()
            }
            shape = tuple(storage_info["shape"])

            if storage_info["type"] == "array":
                storage = arrays["storage"]
            elif storage_info["type"] == "quantized":
                storage = QuantizedArray.deserialize(
                    arrays["quantizer"], shape, arrays.get("quantizer_norms")
                )
            else:
                raise FormatError(f"Unknown storage type: {storage_info['type']}")

            return Embeddings(
                vocab=vocab,
                storage=storage,
                norms=arrays.get("norms"),
                metadata=header.get("metadata") or {},
            )
        except (KeyError, ValueError, RuntimeError) as e:
            raise FormatError(f"Corrupt embeddings file {path}: {e}") from e


def read_metadata(source: str | Path) -> Optional[dict]:
    """Read the metadata of a native embeddings file without loading it."""
    path = Path(source)

    with open(path, "rb") as f:
        header, _ = _read_header(f, path)

    return header.get("metadata") or None


# ── word2vec, text and fastText formats ──────────────────────────────────────


def load_word2vec(
    path: Path,
    binary: bool,
    no_header: bool = False,
    lossy: bool = False,
) -> Embeddings:
    """Load word2vec binary or text embeddings."""
    try:
        kv = KeyedVectors.load_word2vec_format(
            str(path),
            binary=binary,
            no_header=no_header,
            unicode_errors="replace" if lossy else "strict",
        )
    except (ValueError, UnicodeDecodeError, EOFError) as e:
        raise FormatError(f"Cannot read embeddings from {path}: {e}") from e

    return Embeddings.from_vectors(kv.index_to_key, kv.vectors)


def load_fasttext(path: Path) -> Embeddings:
    """
    Load a fastText binary model.

    Word rows hold the word vectors composed with their subwords; the n-gram
    bucket rows follow them unchanged.
    """
    try:
        kv = load_facebook_vectors(str(path))
    except (ValueError, UnicodeDecodeError, EOFError, struct.error, NotImplementedError) as e:
        raise FormatError(f"Cannot read fastText model from {path}: {e}") from e

    vectors = np.array(kv.vectors, dtype=np.float32)
    norms = l2_normalize_array(vectors)

    if kv.bucket == 0:
        return Embeddings(vocab=SimpleVocab(kv.index_to_key), storage=vectors, norms=norms)

    storage = np.vstack([vectors, np.asarray(kv.vectors_ngrams, dtype=np.float32)])

    return Embeddings(
        vocab=SubwordVocab(kv.index_to_key, kv.min_n, kv.max_n, kv.bucket),
        storage=storage,
        norms=norms,
    )


def write_word2vec(words: list[str], vectors: np.ndarray, path: Path) -> None:
    """Write embeddings in the binary word2vec format."""
    kv = KeyedVectors(vector_size=vectors.shape[1])
    kv.add_vectors(words, np.asarray(vectors, dtype=np.float32))

    # Without counts gensim falls back to index order, but warns about it.
    for rank, word in enumerate(words):
        kv.set_vecattr(word, "count", len(words) - rank)

    kv.save_word2vec_format(str(path), binary=True)


def write_text(
    words: list[str],
    vectors: np.ndarray,
    path: Path,
    write_dims: bool = False,
) -> None:
    """Write embeddings as text, optionally with a dimensions header."""
    with open(path, "w", encoding="utf-8") as f:
        if write_dims:
            f.write(f"{vectors.shape[0]} {vectors.shape[1]}\n")

        for word, vector in zip(words, vectors):
            f.write(word)
            f.write(" ")
            f.write(" ".join(str(value) for value in vector.tolist()))
            f.write("\n")
