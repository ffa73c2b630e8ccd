"""
Command-line interface for embedding-toolkit.
"""

import json
import logging
from contextlib import contextmanager
from typing import Optional, TextIO

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import Progress

from .accuracy import STDERR, AccuracyEvaluator, read_analogies
from .analyzer import SimilarityMeasure, UnresolvedQuery, analogy_masked, word_similarity
from .embeddings import Embeddings
from .errors import EmbeddingToolkitError, MalformedInputError
from .loader import (
    READABLE_FORMATS,
    WRITABLE_FORMATS,
    EmbeddingFormat,
    load_embeddings,
    read_metadata,
    write_embeddings,
)
from .quantize import QuantizeConfig, QuantizerKind, quantize_embeddings
from .reconstruct import reconstruct_embeddings
from .select import select_embeddings
from .util import default_threads

err_console = Console(stderr=True)

SIMILARITY_MEASURES = [measure.value for measure in SimilarityMeasure]
QUANTIZERS = [kind.value for kind in QuantizerKind]


def _setup_logging(verbose: bool) -> None:
    logger = logging.getLogger("embedding_toolkit")
    if not logger.handlers:
        logger.addHandler(RichHandler(console=err_console, show_time=False, show_path=False))
    logger.setLevel(logging.INFO if verbose else logging.WARNING)


@contextmanager
def _fatal_errors():
    """Report configuration, format and I/O errors and exit with status 1."""
    try:
        yield
    except (EmbeddingToolkitError, OSError) as e:
        raise click.ClickException(str(e)) from e


def _load(path: str, fmt: str, lossy: bool = False) -> Embeddings:
    return load_embeddings(path, EmbeddingFormat.parse(fmt), lossy=lossy)


def _format_option(default: str = "native"):
    return click.option(
        "--format",
        "-f",
        "fmt",
        type=click.Choice(READABLE_FORMATS),
        default=default,
        show_default=True,
        help="Embedding file format",
    )


def _similarity_option():
    return click.option(
        "--similarity",
        "-s",
        type=click.Choice(SIMILARITY_MEASURES),
        default="cosine",
        show_default=True,
        help="Similarity measure",
    )


def _neighbors_option():
    return click.option(
        "--neighbors",
        "-k",
        "k",
        type=click.IntRange(min=1),
        default=10,
        show_default=True,
        help="Return K nearest neighbors",
    )


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Log progress information")
def main(verbose: bool):
    """
    Query, evaluate and compress word embeddings.

    Examples:

        embedding-toolkit similar vectors.emb words.txt -k 5

        embedding-toolkit analogy vectors.emb --include c

        embedding-toolkit compute-accuracy vectors.emb questions-words.txt

        embedding-toolkit quantize -f word2vec vectors.bin vectors-pq.emb

        embedding-toolkit reconstruct vectors-pq.emb vectors.emb
    """
    _setup_logging(verbose)


@main.command()
@click.argument("embeddings_file", metavar="EMBEDDINGS", type=click.Path(exists=True, dir_okay=False))
@click.argument("input_file", metavar="[INPUT]", type=click.File("r", encoding="utf-8"), default="-")
@_format_option()
@_neighbors_option()
@_similarity_option()
def similar(embeddings_file: str, input_file: TextIO, fmt: str, k: int, similarity: str):
    """
    Find words that are similar to a given word.

    Reads one word per line from INPUT (default: standard input).
    """
    measure = SimilarityMeasure.parse(similarity)

    with _fatal_errors():
        embeddings = _load(embeddings_file, fmt)
        embeddings.view()

        for line in input_file:
            word = line.strip()
            if not word:
                continue

            results = word_similarity(embeddings, word, k)
            if results is None:
                click.echo(f"Could not compute embedding for: {word}", err=True)
                continue

            for result in results:
                click.echo(f"{result.word}\t{measure.score(result):.4f}")


@main.command()
@click.argument("embeddings_file", metavar="EMBEDDINGS", type=click.Path(exists=True, dir_okay=False))
@click.argument("input_file", metavar="[INPUT]", type=click.File("r", encoding="utf-8"), default="-")
@_format_option()
@_neighbors_option()
@_similarity_option()
@click.option(
    "--include",
    type=click.Choice(["a", "b", "c"]),
    multiple=True,
    help="Query part that may be an answer (repeatable)",
)
@click.option("--strict", is_flag=True, help="Stop at queries that do not have three words")
def analogy(
    embeddings_file: str,
    input_file: TextIO,
    fmt: str,
    k: int,
    similarity: str,
    include: tuple[str, ...],
    strict: bool,
):
    """
    Find words that fit an analogy.

    Reads one query "a b c" per line from INPUT (default: standard input)
    and prints the words d such that a is to b as c is to d.
    """
    measure = SimilarityMeasure.parse(similarity)
    remove = tuple(part not in include for part in ("a", "b", "c"))

    with _fatal_errors():
        embeddings = _load(embeddings_file, fmt)
        embeddings.view()

        for line_no, line in enumerate(input_file, 1):
            line = line.strip()
            if not line:
                continue

            query = line.split()
            if len(query) != 3:
                if strict:
                    raise MalformedInputError(
                        f"Query does not consist of three tokens: {line}", line_no
                    )
                click.echo(f"Query does not consist of three tokens: {line}", err=True)
                continue

            results = analogy_masked(embeddings, tuple(query), remove, k)
            if isinstance(results, UnresolvedQuery):
                missing = ", ".join(results.missing(query))
                click.echo(f"Could not compute embedding(s) for: {missing}", err=True)
                continue

            for result in results:
                click.echo(f"{result.word}\t{measure.score(result):.4f}")


@main.command("compute-accuracy")
@click.argument("embeddings_file", metavar="EMBEDDINGS", type=click.Path(exists=True, dir_okay=False))
@click.argument("analogies_file", metavar="[ANALOGIES]", type=click.File("r", encoding="utf-8"), default="-")
@_format_option()
@click.option(
    "--threads",
    type=click.IntRange(min=1),
    default=None,
    help="Number of threads (default: logical CPUs / 2)",
)
def compute_accuracy(embeddings_file: str, analogies_file: TextIO, fmt: str, threads: Optional[int]):
    """
    Compute prediction accuracy on a set of analogies.
    """
    with _fatal_errors():
        embeddings = _load(embeddings_file, fmt)
        embeddings.view()
        instances = read_analogies(analogies_file)

        evaluator = AccuracyEvaluator(embeddings, n_threads=threads or default_threads())

        with Progress(console=err_console, transient=True) as progress:
            task = progress.add_task("Evaluating...", total=len(instances))
            report = evaluator.evaluate(
                instances, progress=lambda n: progress.advance(task, n)
            )

    for stream, line in report.report_lines():
        click.echo(line, err=stream == STDERR)


@main.command()
@click.argument("input_file", metavar="INPUT", type=click.Path(exists=True, dir_okay=False))
@click.argument("output_file", metavar="OUTPUT", type=click.Path(dir_okay=False))
@click.option("--attempts", "-a", default=1, show_default=True, help="Number of quantization attempts")
@click.option("--bits", "-b", default=8, show_default=True, help="Number of quantizer bits (max: 8)")
@_format_option(default="word2vec")
@click.option("--iter", "-i", "iterations", default=100, show_default=True, help="Number of iterations")
@click.option("--quantizer", "-q", type=click.Choice(QUANTIZERS), default="pq", show_default=True)
@click.option("--subquantizers", "-s", type=int, default=None, help="Number of subquantizers (default: d/2)")
@click.option("--threads", "-t", type=int, default=None, help="Number of threads (default: logical CPUs / 2)")
def quantize(
    input_file: str,
    output_file: str,
    attempts: int,
    bits: int,
    fmt: str,
    iterations: int,
    quantizer: str,
    subquantizers: Optional[int],
    threads: Optional[int],
):
    """
    Quantize embedding matrices.

    Reads INPUT, writes the quantized embeddings to OUTPUT in the native
    format and prints the reconstruction loss.
    """
    with _fatal_errors():
        config = QuantizeConfig(
            quantizer=QuantizerKind.parse(quantizer),
            n_subquantizers=subquantizers,
            quantizer_bits=bits,
            n_iterations=iterations,
            n_attempts=attempts,
            n_threads=threads or default_threads(),
        )

        embeddings = _load(input_file, fmt)
        quantized, loss = quantize_embeddings(embeddings, config)
        write_embeddings(quantized, output_file, EmbeddingFormat.NATIVE)

    click.echo(f"Average cosine similarity: {loss.mean_cosine_similarity}", err=True)
    click.echo(f"Average euclidean distance: {loss.mean_euclidean_distance}", err=True)


@main.command()
@click.argument("input_file", metavar="INPUT", type=click.Path(exists=True, dir_okay=False))
@click.argument("output_file", metavar="OUTPUT", type=click.Path(dir_okay=False))
def reconstruct(input_file: str, output_file: str):
    """
    Reconstruct quantized embedding matrices.

    Reads quantized embeddings from INPUT and writes the dense embeddings to
    OUTPUT, both in the native format.
    """
    with _fatal_errors():
        embeddings = load_embeddings(input_file, EmbeddingFormat.NATIVE)
        write_embeddings(reconstruct_embeddings(embeddings), output_file, EmbeddingFormat.NATIVE)


@main.command()
@click.argument("input_file", metavar="INPUT", type=click.Path(exists=True, dir_okay=False))
@click.argument("output_file", metavar="OUTPUT", type=click.Path(dir_okay=False))
@click.option("--from", "-f", "from_fmt", type=click.Choice(READABLE_FORMATS), default="word2vec", show_default=True)
@click.option("--to", "-t", "to_fmt", type=click.Choice(WRITABLE_FORMATS), default="native", show_default=True)
@click.option("--metadata", "-m", "metadata_file", type=click.Path(exists=True, dir_okay=False), help="JSON metadata to add")
@click.option("--lossy", is_flag=True, help="Do not fail on malformed UTF-8 byte sequences")
@click.option("--unnormalize", "-u", is_flag=True, help="Unnormalize embeddings (does not affect the native format)")
def convert(
    input_file: str,
    output_file: str,
    from_fmt: str,
    to_fmt: str,
    metadata_file: Optional[str],
    lossy: bool,
    unnormalize: bool,
):
    """
    Convert between embedding formats.
    """
    with _fatal_errors():
        metadata = None
        if metadata_file:
            metadata = _read_json_metadata(metadata_file)

        embeddings = _load(input_file, from_fmt, lossy=lossy)

        # Replace metadata if provided, otherwise retain existing metadata.
        if metadata is not None:
            embeddings.metadata = metadata

        write_embeddings(embeddings, output_file, EmbeddingFormat.parse(to_fmt), unnormalize)


def _read_json_metadata(path: str) -> dict:
    with open(path, encoding="utf-8") as f:
        try:
            metadata = json.load(f)
        except json.JSONDecodeError as e:
            raise click.ClickException(f"Cannot parse metadata JSON from {path}: {e}") from e

    if not isinstance(metadata, dict):
        raise click.ClickException(f"Metadata in {path} is not a JSON object")

    return metadata


@main.command()
@click.argument("input_file", metavar="INPUT", type=click.Path(exists=True, dir_okay=False))
@click.argument("output_file", metavar="[OUTPUT]", type=click.File("w", encoding="utf-8"), default="-")
def metadata(input_file: str, output_file: TextIO):
    """
    Extract metadata from native embeddings as JSON.
    """
    with _fatal_errors():
        data = read_metadata(input_file)

    if data is not None:
        output_file.write(json.dumps(data, indent=2, ensure_ascii=False))
        output_file.write("\n")


@main.command()
@click.argument("input_file", metavar="INPUT", type=click.Path(exists=True, dir_okay=False))
@click.argument("output_file", metavar="OUTPUT", type=click.Path(dir_okay=False))
@click.argument("select_file", metavar="[SELECT]", type=click.File("r", encoding="utf-8"), default="-")
@_format_option()
@click.option("--to", "-t", "to_fmt", type=click.Choice(WRITABLE_FORMATS), default="native", show_default=True)
@click.option("--ignore-unknown", "-i", is_flag=True, help="Ignore words for which no embedding is available")
@click.option(
    "--report-dropped/--no-report-dropped",
    default=True,
    show_default=True,
    help="Warn about every ignored word",
)
def select(
    input_file: str,
    output_file: str,
    select_file: TextIO,
    fmt: str,
    to_fmt: str,
    ignore_unknown: bool,
    report_dropped: bool,
):
    """
    Select embeddings from an embeddings file.

    Reads one word per line from SELECT (default: standard input).
    """
    with _fatal_errors():
        embeddings = _load(input_file, fmt)
        selected = select_embeddings(
            embeddings,
            select_file,
            ignore_unknown=ignore_unknown,
            report_dropped=report_dropped,
        )
        write_embeddings(selected, output_file, EmbeddingFormat.parse(to_fmt), unnormalize=True)


if __name__ == "__main__":
    main()
