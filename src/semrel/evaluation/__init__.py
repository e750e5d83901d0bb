"""Evaluation harnesses."""

from .phrase_sim import EvaluationReport, PhraseSimEvaluator, read_bundles

__all__ = ["EvaluationReport", "PhraseSimEvaluator", "read_bundles"]
