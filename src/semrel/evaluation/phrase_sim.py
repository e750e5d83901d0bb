"""
Phrase relatedness evaluation over bundles.

A bundle is a list of phrases judged related to each other, e.g.
["jazz", "music", "blues"]. For each sampled bundle the evaluator asks for
the neighbours of its first phrase and counts how many of the other
bundle members come back.

    precision = hits / neighbours returned
    recall    = hits / related phrases that could have been returned
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Callable, Sequence

import numpy as np

from ..core.errors import NotFoundError
from ..phrases.resolver import PhraseResolver

logger = logging.getLogger(__name__)

Bundle = Sequence[str]


@dataclass
class EvaluationReport:
    """Totals of one evaluation run."""

    bundles: int
    k: int
    samples: int = 0
    errors: int = 0
    sample_hits: int = 0
    recommended: int = 0
    recommended_hits: int = 0
    possible: int = 0
    seconds: float = 0.0

    @property
    def precision(self) -> float:
        return self.recommended_hits / self.recommended if self.recommended else 0.0

    @property
    def recall(self) -> float:
        return self.recommended_hits / self.possible if self.possible else 0.0

    def to_dict(self) -> dict:
        data = asdict(self)
        data["precision"] = self.precision
        data["recall"] = self.recall
        return data


class PhraseSimEvaluator:
    """
    Samples bundles and scores phrase mostSimilar against them.

    Args:
        resolver: Resolver answering phrase queries
        concept_lookup: Phrase -> concept id (external identity resolution)
        k: Neighbours considered per query
        num_samples: Bundles sampled (with replacement)
        seed: RNG seed for sampling
        workers: Threads used to register bundle phrases
    """

    def __init__(
        self,
        resolver: PhraseResolver,
        concept_lookup: Callable[[str], int | None],
        k: int = 10,
        num_samples: int = 1000,
        seed: int = 0,
        workers: int = 1,
    ):
        self.resolver = resolver
        self.concept_lookup = concept_lookup
        self.k = k
        self.num_samples = num_samples
        self.seed = seed
        self.workers = max(1, workers)

    def _add_bundle(self, bundle: Bundle) -> int:
        added = 0
        for phrase in bundle:
            concept_id = self.concept_lookup(phrase)
            if concept_id is not None:
                self.resolver.add_phrase(phrase, concept_id)
                added += 1
        return added

    def add_bundles(self, bundles: Sequence[Bundle]) -> int:
        """Register every resolvable bundle phrase; returns how many were added."""
        if self.workers > 1:
            with ThreadPoolExecutor(max_workers=self.workers) as executor:
                return sum(executor.map(self._add_bundle, bundles))
        return sum(self._add_bundle(b) for b in bundles)

    def evaluate(self, bundles: Sequence[Bundle]) -> EvaluationReport:
        """
        Run the evaluation.

        Phrases with no neighbours (unknown to the resolver) count as
        errors. Any other query failure propagates.
        """
        logger.info("Processing %d bundles", len(bundles))
        self.add_bundles(bundles)

        report = EvaluationReport(bundles=len(bundles), k=self.k)
        if not bundles:
            return report

        rng = np.random.default_rng(self.seed)
        start = time.time()
        for _ in range(self.num_samples):
            bundle = bundles[int(rng.integers(len(bundles)))]
            if not bundle:
                continue
            report.samples += 1

            bundle_ids = {
                cid for cid in (self.resolver.concept_for(p) for p in bundle) if cid is not None
            }
            target = bundle[0]
            target_id = self.resolver.concept_for(target)

            try:
                neighbours = self.resolver.most_similar(target, self.k + 1)
            except NotFoundError:
                report.errors += 1
                continue

            has_hit = False
            kept = 0
            for result in neighbours:
                if result.id == target_id:
                    continue
                if result.id in bundle_ids:
                    has_hit = True
                    report.recommended_hits += 1
                report.recommended += 1
                kept += 1
                if kept >= self.k:
                    break

            report.possible += len(bundle_ids) - (1 if target_id in bundle_ids else 0)
            if has_hit:
                report.sample_hits += 1

        report.seconds = time.time() - start
        logger.info(
            "Top %d over %d samples: precision %.3f, recall %.3f (%d errors)",
            self.k,
            report.samples,
            report.precision,
            report.recall,
            report.errors,
        )
        return report


def read_bundles(path: Path | str) -> list[list[str]]:
    """Read tab-separated bundles, one per line, keeping those with two or more phrases."""
    bundles = []
    with open(path, encoding="utf-8") as f:
        for line in f:
            bundle = [token.strip() for token in line.split("\t") if token.strip()]
            if len(bundle) >= 2:
                bundles.append(bundle)
    return bundles
