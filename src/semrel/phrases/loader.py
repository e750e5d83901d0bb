"""
Crosswikis phrase dictionary loader.

Reads the Stanford crosswikis `dictionary` format: anchor texts found on
web pages linking to Wikipedia, one (phrase, article) pair per line:

    jazz<TAB>0.826 Jazz W:512/620 Wx:3/4

Fields are the phrase, the fraction of the phrase's links pointing at the
article, the article title and optional flags. The `W:n/m` flag counts
links from Wikipedia itself; its numerator becomes the pair's count.

Titles are resolved to concept ids by an external callable; pairs whose
title does not resolve are dropped.
"""

from __future__ import annotations

import bz2
import gzip
import logging
import re
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, TextIO

from .normalizer import StringNormalizer

logger = logging.getLogger(__name__)

PROGRESS_INTERVAL = 100_000

_ENTRY = re.compile(r"([^\t]*)\t([0-9.e-]+) ([^ ]*)(| (.*))$")


@dataclass(frozen=True)
class CrosswikisEntry:
    """One parsed dictionary line."""

    text: str
    fraction: float
    article: str
    flags: tuple[str, ...] = ()

    @classmethod
    def parse(cls, line: str) -> CrosswikisEntry:
        """
        Parse a dictionary line.

        Raises:
            ValueError: If the line does not match the format
        """
        match = _ENTRY.match(line.rstrip("\r\n"))
        if not match:
            raise ValueError(f"invalid crosswikis entry: {line!r}")
        flags = tuple(f for f in match.group(4).strip().split(" ") if f)
        return cls(
            text=match.group(1),
            fraction=float(match.group(2)),
            article=match.group(3),
            flags=flags,
        )

    @property
    def num_links(self) -> int:
        """Numerator of the `W:n/m` flag, or 0 when absent."""
        for flag in self.flags:
            if flag.startswith("W:"):
                numerator, _, _ = flag[2:].partition("/")
                return int(numerator)
        return 0


class PhraseConceptCounts:
    """
    Normalized phrase -> {concept_id: count} table.

    `resolve` returns each phrase's concepts with their share of the
    counts, best first, which is the shape WeightedConceptCreator expects.
    """

    def __init__(self, normalizer: StringNormalizer | None = None):
        self.normalizer = normalizer or StringNormalizer()
        self._lock = threading.Lock()
        self._counts: dict[str, dict[int, int]] = {}

    def add(self, phrase: str, concept_id: int, count: int) -> None:
        key = self.normalizer.normalize(phrase)
        with self._lock:
            by_concept = self._counts.setdefault(key, {})
            by_concept[concept_id] = by_concept.get(concept_id, 0) + count

    def counts(self, phrase: str) -> dict[int, int]:
        return dict(self._counts.get(self.normalizer.normalize(phrase), {}))

    def resolve(self, phrase: str, limit: int | None = None) -> list[tuple[int, float]]:
        by_concept = self._counts.get(self.normalizer.normalize(phrase))
        if not by_concept:
            return []
        total = sum(by_concept.values())
        ranked = sorted(by_concept.items(), key=lambda item: (-item[1], item[0]))
        if limit is not None:
            ranked = ranked[:limit]
        if total == 0:
            share = 1.0 / len(ranked)
            return [(cid, share) for cid, _ in ranked]
        return [(cid, count / total) for cid, count in ranked]

    def __contains__(self, phrase: object) -> bool:
        return isinstance(phrase, str) and self.normalizer.normalize(phrase) in self._counts

    def __len__(self) -> int:
        return len(self._counts)


def load_crosswikis_dictionary(
    lines: Iterable[str],
    title_resolver: Callable[[str], int | None],
    counts: PhraseConceptCounts | None = None,
) -> PhraseConceptCounts:
    """
    Load crosswikis dictionary lines into a PhraseConceptCounts table.

    Can be called repeatedly with the same `counts` for chunked files.

    Args:
        lines: Dictionary lines
        title_resolver: Article title -> concept id, or None if unknown
        counts: Table to add to (a new one if omitted)

    Returns:
        The populated table
    """
    counts = counts if counts is not None else PhraseConceptCounts()
    num_lines = 0
    retained = 0
    malformed = 0

    for line in lines:
        num_lines += 1
        if num_lines % PROGRESS_INTERVAL == 0:
            logger.info(
                "Processing line %d, retained %d (%.1f%%)",
                num_lines,
                retained,
                100.0 * retained / num_lines,
            )
        try:
            entry = CrosswikisEntry.parse(line)
            num_links = entry.num_links
        except ValueError:
            logger.debug("Skipping malformed line %d: %r", num_lines, line)
            malformed += 1
            continue

        concept_id = title_resolver(entry.article)
        if concept_id is None:
            continue
        counts.add(entry.text, concept_id, num_links)
        retained += 1

    if malformed:
        logger.warning("Skipped %d malformed crosswikis lines", malformed)
    logger.info("Loaded %d of %d crosswikis lines (%d phrases)", retained, num_lines, len(counts))
    return counts


def _open_text(path: Path) -> TextIO:
    if path.suffix == ".bz2":
        return bz2.open(path, "rt", encoding="utf-8")
    if path.suffix == ".gz":
        return gzip.open(path, "rt", encoding="utf-8")
    return path.open(encoding="utf-8")


def load_crosswikis_file(
    path: Path | str,
    title_resolver: Callable[[str], int | None],
    counts: PhraseConceptCounts | None = None,
) -> PhraseConceptCounts:
    """Load a (possibly .bz2 / .gz compressed) crosswikis dictionary file."""
    with _open_text(Path(path)) as f:
        return load_crosswikis_dictionary(f, title_resolver, counts)
