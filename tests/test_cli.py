"""
Tests for the semrel command-line interface.
"""

import json
import os
from unittest.mock import patch

import pytest

from semrel.cli import main
from semrel.core.config import get_settings
from semrel.evaluation.phrase_sim import PhraseSimEvaluator
from conftest import SCENARIO_FEATURES, SCENARIO_LABELS


@pytest.fixture
def workspace(tmp_path, monkeypatch):
    """Scenario corpus on disk and settings pointing at a fresh store."""
    for name in list(os.environ):
        if name.startswith("SEMREL_"):
            monkeypatch.delenv(name)
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("SEMREL_FEATURE_MATRIX_LOCATION", str(tmp_path / "sr"))
    monkeypatch.setenv("SEMREL_EXCLUDE_QUERY_CONCEPT", "true")
    get_settings.cache_clear()

    corpus = tmp_path / "esa.jsonl"
    with corpus.open("w", encoding="utf-8") as f:
        for cid, weights in SCENARIO_FEATURES.items():
            record = {
                "id": cid,
                "label": SCENARIO_LABELS[cid],
                "features": {str(d): w for d, w in weights.items()},
            }
            f.write(json.dumps(record) + "\n")

    yield tmp_path
    get_settings.cache_clear()


def test_no_command_prints_help(capsys):
    assert main([]) == 0
    assert "usage" in capsys.readouterr().out


def test_build_then_query(workspace, capsys):
    assert main(["build", "--metric", "esa", "--kind", "vector", "--corpus", str(workspace / "esa.jsonl")]) == 0
    report = json.loads(capsys.readouterr().out)
    assert report["status"] == "completed"
    assert report["concepts_stored"] == 3

    assert main(["status"]) == 0
    assert "esa/simple (vector): 3 concepts" in capsys.readouterr().out

    assert main(["similarity", "1", "2"]) == 0
    assert "1 ~ 2" in capsys.readouterr().out

    assert main(["most-similar", "1", "-k", "2"]) == 0
    lines = [line for line in capsys.readouterr().out.splitlines() if line.strip().startswith(("1.", "2."))]
    assert lines[0].split()[1] == "2"


def test_query_unbuilt_metric_fails(workspace, capsys):
    assert main(["most-similar", "1"]) == 1


def test_build_missing_corpus_fails(workspace):
    assert main(["build", "--corpus", str(workspace / "missing.jsonl")]) == 1


def test_evaluate(workspace, capsys):
    main(["build", "--corpus", str(workspace / "esa.jsonl")])
    capsys.readouterr()

    bundles = workspace / "bundles.tsv"
    bundles.write_text("Jazz\tBlues\nswing\tJazz\n", encoding="utf-8")
    crosswikis = workspace / "dictionary"
    crosswikis.write_text("swing\t0.9 Jazz W:9/10\n", encoding="utf-8")

    assert main(["evaluate", "--bundles", str(bundles), "-k", "1", "--samples", "10", "--crosswikis", str(crosswikis)]) == 0
    report = json.loads(capsys.readouterr().out)
    assert report["samples"] == 10
    assert report["errors"] == 0
    assert report["precision"] == 1.0


def test_evaluate_worker_count(workspace, capsys):
    main(["build", "--corpus", str(workspace / "esa.jsonl")])
    capsys.readouterr()
    bundles = workspace / "bundles.tsv"
    bundles.write_text("Jazz\tBlues\n", encoding="utf-8")

    with patch("semrel.evaluation.phrase_sim.PhraseSimEvaluator", wraps=PhraseSimEvaluator) as evaluator:
        assert main(["evaluate", "--bundles", str(bundles), "-k", "1", "--samples", "4", "--workers", "2"]) == 0
    assert evaluator.call_args.kwargs["workers"] == 2
    assert json.loads(capsys.readouterr().out)["errors"] == 0
