"""
Tests for the phrase relatedness evaluator.
"""

import pytest

from semrel.evaluation import EvaluationReport, PhraseSimEvaluator, read_bundles
from semrel.phrases import PhraseResolver
from semrel.query import QueryEngine
from conftest import A, B, C, SCENARIO_LABELS

TITLES = {label.lower(): cid for cid, label in SCENARIO_LABELS.items()}


def lookup(phrase):
    return TITLES.get(phrase.lower())


@pytest.fixture
def resolver(vector_metric):
    return PhraseResolver(QueryEngine(vector_metric))


class TestPhraseSimEvaluator:
    def test_related_bundles_score_perfectly(self, resolver):
        bundles = [["Jazz", "Blues"], ["Algebra", "Jazz"]]
        evaluator = PhraseSimEvaluator(resolver, lookup, k=1, num_samples=20, seed=3)
        report = evaluator.evaluate(bundles)

        assert report.samples == 20
        assert report.errors == 0
        assert report.recommended == 20
        assert report.sample_hits == 20
        assert report.precision == pytest.approx(1.0)
        assert report.recall == pytest.approx(1.0)

    def test_unrelated_bundle_misses(self, resolver):
        evaluator = PhraseSimEvaluator(resolver, lookup, k=1, num_samples=5)
        report = evaluator.evaluate([["Algebra", "Blues"]])
        assert report.precision == 0.0
        assert report.recall == 0.0
        assert report.possible == 5

    def test_target_never_counted(self, resolver):
        evaluator = PhraseSimEvaluator(resolver, lookup, k=2, num_samples=1)
        report = evaluator.evaluate([["Jazz", "Blues", "Algebra"]])
        # neighbours of Jazz after dropping Jazz itself: Blues, then Algebra
        assert report.recommended == 2
        assert report.recommended_hits == 2
        assert report.possible == 2

    def test_unknown_phrases_are_errors(self, resolver):
        evaluator = PhraseSimEvaluator(resolver, lookup, k=1, num_samples=4)
        report = evaluator.evaluate([["Polka", "Jazz"]])
        assert report.errors == 4
        assert report.recommended == 0
        assert report.to_dict()["precision"] == 0.0

    def test_same_seed_same_report(self, vector_metric):
        bundles = [["Jazz", "Blues"], ["Algebra", "Blues"], ["Blues", "Jazz"]]
        reports = []
        for _ in range(2):
            resolver = PhraseResolver(QueryEngine(vector_metric))
            evaluator = PhraseSimEvaluator(resolver, lookup, k=1, num_samples=30, seed=11)
            reports.append(evaluator.evaluate(bundles))
        assert reports[0].recommended_hits == reports[1].recommended_hits
        assert reports[0].possible == reports[1].possible

    def test_parallel_registration(self, resolver):
        evaluator = PhraseSimEvaluator(resolver, lookup, workers=4)
        added = evaluator.add_bundles([["Jazz", "Blues"], ["Blues", "Polka"], ["Algebra"]])
        assert added == 4
        assert resolver.concept_for("jazz") == A
        assert resolver.concept_for("BLUES") == B
        assert resolver.concept_for("algebra") == C

    def test_no_bundles(self, resolver):
        report = PhraseSimEvaluator(resolver, lookup).evaluate([])
        assert report == EvaluationReport(bundles=0, k=10)


class TestReadBundles:
    def test_tab_separated(self, tmp_path):
        path = tmp_path / "bundles.txt"
        path.write_text("jazz\tblues\tswing\nlonely\n\nalgebra\t geometry \n", encoding="utf-8")
        assert read_bundles(path) == [["jazz", "blues", "swing"], ["algebra", "geometry"]]
