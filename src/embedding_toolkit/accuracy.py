"""
Analogy accuracy evaluation.

Test files contain one analogy per line, ``a b c d``, meaning "a is to b as
c is to d". Lines starting with ``": "`` open a new section, e.g.
``: capital-common-countries``.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Iterable, Iterator, Optional

from .analyzer import UnresolvedQuery, analogy
from .embeddings import Embeddings
from .errors import MalformedInputError
from .util import default_threads

logger = logging.getLogger(__name__)

SECTION_PREFIX = ": "

STDOUT = "stdout"
STDERR = "stderr"


@dataclass(frozen=True)
class AnalogyInstance:
    """A test analogy and the section it belongs to."""
    section: str
    query: tuple[str, str, str]
    answer: str


@dataclass
class SectionCounts:
    """Evaluation counts of one section."""
    n_correct: int = 0
    n_instances: int = 0
    n_skipped: int = 0
    sum_cos: float = 0.0

    def merge(self, other: "SectionCounts") -> None:
        self.n_correct += other.n_correct
        self.n_instances += other.n_instances
        self.n_skipped += other.n_skipped
        self.sum_cos += other.sum_cos

    @property
    def accuracy(self) -> Optional[float]:
        """Percentage of correct instances, None without instances."""
        if self.n_instances == 0:
            return None
        return (self.n_correct / self.n_instances) * 100

    @property
    def average_cos(self) -> Optional[float]:
        if self.n_instances == 0:
            return None
        return self.sum_cos / self.n_instances


@dataclass(frozen=True)
class InstanceOutcome:
    """Result of evaluating a single instance."""
    skipped: bool
    correct: bool = False
    cos: float = 0.0


def read_analogies(lines: Iterable[str]) -> list[AnalogyInstance]:
    """
    Parse analogy test instances.

    Instances before the first section header belong to the section ``""``.
    Blank lines are ignored.

    Raises:
        MalformedInputError: A line does not consist of four tokens
    """
    section = ""
    instances = []

    for line_no, line in enumerate(lines, 1):
        line = line.rstrip("\r\n")

        if line.startswith(SECTION_PREFIX):
            section = line[len(SECTION_PREFIX):]
            continue

        tokens = line.split()
        if not tokens:
            continue

        if len(tokens) != 4:
            raise MalformedInputError(
                f"analogy does not consist of four tokens: {line}", line_no
            )

        a, b, c, answer = tokens
        instances.append(AnalogyInstance(section=section, query=(a, b, c), answer=answer))

    return instances


@dataclass
class AccuracyReport:
    """Per-section evaluation counts."""
    sections: dict[str, SectionCounts]

    def __post_init__(self):
        self.sections = dict(sorted(self.sections.items()))

    @property
    def total(self) -> SectionCounts:
        total = SectionCounts()
        for counts in self.sections.values():
            total.merge(counts)
        return total

    @property
    def skip_ratio(self) -> Optional[float]:
        """Percentage of skipped instances, None for an empty evaluation."""
        total = self.total
        n_with_skipped = total.n_instances + total.n_skipped
        if n_with_skipped == 0:
            return None
        return (total.n_skipped / n_with_skipped) * 100

    def report_lines(self) -> Iterator[tuple[str, str]]:
        """
        Render the report.

        Yields:
            (stream, line) pairs, where stream is ``"stdout"`` or ``"stderr"``
        """
        for section, counts in self.sections.items():
            if counts.n_instances == 0:
                yield STDERR, f"{section}: no evaluation instances"
                continue

            yield STDOUT, (
                f"{section}: {counts.n_correct}/{counts.n_instances} correct, "
                f"accuracy: {counts.accuracy:.2f}, avg cos: {counts.average_cos:.2f}, "
                f"skipped: {counts.n_skipped}"
            )

        total = self.total
        if total.n_instances == 0:
            yield STDOUT, "Total: no evaluation instances"
        else:
            yield STDOUT, (
                f"Total: {total.n_correct}/{total.n_instances} correct, "
                f"accuracy: {total.accuracy:.2f}, avg cos: {total.average_cos:.2f}"
            )

        skip_ratio = self.skip_ratio
        if skip_ratio is None:
            yield STDOUT, "Skipped: no evaluation instances"
        else:
            yield STDOUT, (
                f"Skipped: {total.n_skipped}/{total.n_instances + total.n_skipped} "
                f"({skip_ratio:.2f}%)"
            )


class AccuracyEvaluator:
    """
    Evaluate analogy prediction accuracy with a pool of worker threads.

    Instances are split into chunks. Every chunk is counted by one worker
    into its own partial counts, which are merged in chunk order once the
    worker is done, so the totals do not depend on thread scheduling.
    """

    def __init__(
        self,
        embeddings: Embeddings,
        n_threads: Optional[int] = None,
        chunk_size: int = 50,
    ):
        if n_threads is not None and n_threads < 1:
            raise ValueError(f"Number of threads must be positive, was: {n_threads}")
        if chunk_size < 1:
            raise ValueError(f"Chunk size must be positive, was: {chunk_size}")

        self.embeddings = embeddings
        self.n_threads = n_threads or default_threads()
        self.chunk_size = chunk_size

    def evaluate_instance(self, instance: AnalogyInstance) -> InstanceOutcome:
        # An answer without a word embedding says more about the vocabulary
        # than about the model, so such instances are not counted.
        if self.embeddings.vocab.word_index(instance.answer) is None:
            return InstanceOutcome(skipped=True)

        # A query that cannot be answered counts as an error.
        results = analogy(self.embeddings, instance.query, k=1)
        if isinstance(results, UnresolvedQuery) or not results:
            return InstanceOutcome(skipped=False, correct=False, cos=0.0)

        best = results[0]
        return InstanceOutcome(
            skipped=False,
            correct=best.word == instance.answer,
            cos=best.cosine_similarity,
        )

    def _evaluate_chunk(self, chunk: list[AnalogyInstance]) -> dict[str, SectionCounts]:
        partial: dict[str, SectionCounts] = {}

        for instance in chunk:
            outcome = self.evaluate_instance(instance)
            counts = partial.setdefault(instance.section, SectionCounts())
            if outcome.skipped:
                counts.n_skipped += 1
            else:
                counts.n_instances += 1
                counts.n_correct += int(outcome.correct)
                counts.sum_cos += outcome.cos

        return partial

    def evaluate(
        self,
        instances: list[AnalogyInstance],
        progress: Optional[Callable[[int], None]] = None,
    ) -> AccuracyReport:
        """
        Evaluate all instances.

        Args:
            instances: Test instances
            progress: Called with the number of instances in every finished chunk

        Returns:
            AccuracyReport with the counts of every section
        """
        chunks = [
            instances[i:i + self.chunk_size]
            for i in range(0, len(instances), self.chunk_size)
        ]

        logger.info(
            "Evaluating %d analogies with %d thread(s)", len(instances), self.n_threads
        )

        sections: dict[str, SectionCounts] = {}

        with ThreadPoolExecutor(max_workers=self.n_threads) as executor:
            for chunk, partial in zip(chunks, executor.map(self._evaluate_chunk, chunks)):
                for section, counts in partial.items():
                    sections.setdefault(section, SectionCounts()).merge(counts)
                if progress is not None:
                    progress(len(chunk))

        return AccuracyReport(sections)
