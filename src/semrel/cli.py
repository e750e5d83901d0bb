#!/usr/bin/env python3
"""
Command-line interface for building and querying semantic relatedness metrics.

Usage:
    semrel build --metric esa --kind vector --corpus esa.jsonl
    semrel build --metric outlink --kind link --mode similarity --corpus links.jsonl
    semrel status
    semrel similarity 12 40 --metric esa
    semrel most-similar 12 -k 20
    semrel evaluate --bundles bundles.tsv -k 10 --crosswikis dictionary.bz2

Defaults come from SEMREL_* settings (see semrel.core.config).
"""

from __future__ import annotations

import argparse
import json
import logging
import sys

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("semrel.cli")


def _settings(args: argparse.Namespace):
    """Process settings with command-line overrides applied."""
    from .core.config import Settings, get_settings

    settings = get_settings()
    overrides = {}
    if getattr(args, "metric", None):
        overrides["metric_name"] = args.metric
    if getattr(args, "language", None):
        overrides["language"] = args.language
    if getattr(args, "kind", None):
        overrides["metric_kind"] = args.kind
    if not overrides:
        return settings
    return Settings(**{**settings.model_dump(), **overrides})


def cmd_build(args: argparse.Namespace) -> int:
    """Build, publish and report one feature matrix."""
    from .core.errors import SRError
    from .features.builder import BuildStatus, FeatureMatrixBuilder
    from .features.sources import JsonlFeatureSource
    from .features.store import FeatureMatrixStore
    from .metrics import create_matrix_metric
    from .normalizers import create_normalizer

    try:
        settings = _settings(args)
        store = FeatureMatrixStore(settings.feature_matrix_location)
        metric = create_matrix_metric(
            settings.metric_kind,
            settings.metric_name,
            settings.language,
            workers=settings.cosimilarity_workers,
        )
        normalizer = create_normalizer(
            args.normalizer or settings.normalizer_type,
            convention=settings.percentile_convention,
            span=settings.loess_span,
        )
        source = JsonlFeatureSource(args.corpus)
    except (SRError, OSError) as e:
        logger.error("Cannot start build: %s", e)
        return 1

    builder = FeatureMatrixBuilder(
        metric,
        source,
        store,
        normalizer,
        build_mode=args.mode or settings.build_mode,
        sample_size=settings.normalizer_sample_size,
        seed=settings.normalizer_seed,
        cancel_check_interval=settings.cancel_check_interval,
        keep_versions=settings.keep_versions,
    )
    result = builder.build(source.concepts())
    print(json.dumps(result.to_dict(), indent=2))
    return 0 if result.status is BuildStatus.COMPLETED else 1


def cmd_status(args: argparse.Namespace) -> int:
    """Show published feature matrices."""
    from .features.store import FeatureMatrixStore

    settings = _settings(args)
    store = FeatureMatrixStore(settings.feature_matrix_location)
    keys = store.keys()

    print("\nFeature Matrix Status")
    print("=" * 50)
    print(f"Location: {store.root}")
    if not keys:
        print("No feature matrices have been built")
        return 0
    for metric, language in keys:
        manifest = store.manifest(metric, language)
        versions = store.versions(metric, language)
        print(
            f"  {metric}/{language} ({manifest.kind}): {manifest.num_concepts:,} concepts, "
            f"version {manifest.version}, {len(versions)} kept, "
            f"normalizers: {', '.join(manifest.normalizers) or 'none'}"
        )
    return 0


def cmd_similarity(args: argparse.Namespace) -> int:
    """Normalized relatedness of two concepts."""
    from .core.errors import SRError
    from .registry import load_registry

    try:
        settings = _settings(args)
        engine = load_registry(settings).engine(settings.language, settings.metric_name)
        result = engine.similarity(args.a, args.b)
    except SRError as e:
        logger.error("%s: %s", e.code, e.message)
        return 1
    print(f"{args.a} ~ {args.b}: score={result.score:.4f} raw={result.raw:.4f}")
    return 0


def cmd_most_similar(args: argparse.Namespace) -> int:
    """Top-k related concepts."""
    from .core.errors import SRError
    from .registry import load_registry

    try:
        settings = _settings(args)
        engine = load_registry(settings).engine(settings.language, settings.metric_name)
        results = engine.most_similar(args.concept_id, args.k)
    except SRError as e:
        logger.error("%s: %s", e.code, e.message)
        return 1

    print(f"\n{engine.name}/{engine.language} - Top {args.k} for {args.concept_id}")
    print("=" * 50)
    for rank, r in enumerate(results, 1):
        print(f"{rank:3}. {r.id:<10} {r.score:.4f}  (raw {r.raw:.4f})")
    return 0


def _label_lookup(registry, language: str):
    """Phrase -> concept id through the labels stored with the served matrices."""
    from .metrics import MatrixMetric
    from .phrases.normalizer import StringNormalizer

    normalizer = StringNormalizer()
    by_label: dict[str, int] = {}
    for metric in registry.metrics(language):
        if isinstance(metric, MatrixMetric) and metric.is_built():
            for concept_id, label in sorted(metric.state().matrix.labels.items()):
                by_label.setdefault(normalizer.normalize(label), concept_id)
    return lambda text: by_label.get(normalizer.normalize(text))


def cmd_evaluate(args: argparse.Namespace) -> int:
    """Evaluate phrase mostSimilar against related-phrase bundles."""
    from .core.errors import SRError
    from .evaluation.phrase_sim import PhraseSimEvaluator, read_bundles
    from .phrases.creators import WeightedConceptCreator
    from .phrases.loader import load_crosswikis_file
    from .registry import load_registry

    try:
        settings = _settings(args)
        registry = load_registry(settings)
        lookup = _label_lookup(registry, settings.language)
        if args.crosswikis:
            counts = load_crosswikis_file(args.crosswikis, lookup)
            registry.add_phrase_creator(settings.language, WeightedConceptCreator(counts.resolve))
        resolver = registry.resolver(settings.language, settings.metric_name)

        evaluator = PhraseSimEvaluator(
            resolver,
            lookup,
            k=args.k,
            num_samples=args.samples,
            seed=settings.normalizer_seed,
            workers=args.workers or settings.evaluation_workers,
        )
        report = evaluator.evaluate(read_bundles(args.bundles))
    except (SRError, OSError) as e:
        logger.error("Evaluation failed: %s", e)
        return 1

    print(json.dumps(report.to_dict(), indent=2))
    return 0


def main(argv: list[str] | None = None) -> int:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Semantic relatedness builds and queries",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    def add_metric_args(p: argparse.ArgumentParser) -> None:
        p.add_argument("--metric", help="Metric name (default: SEMREL_METRIC_NAME)")
        p.add_argument("--language", help="Language code (default: SEMREL_LANGUAGE)")

    build_parser = subparsers.add_parser("build", help="Build and publish a feature matrix")
    add_metric_args(build_parser)
    build_parser.add_argument("--kind", choices=["vector", "link", "category"], help="Metric kind")
    build_parser.add_argument(
        "--mode", choices=["similarity", "cosimilarity", "both"], help="Normalizers to fit"
    )
    build_parser.add_argument(
        "--normalizer", choices=["identity", "percentile", "loess"], help="Normalizer type"
    )
    build_parser.add_argument("--corpus", required=True, help="JSON-lines feature file")

    subparsers.add_parser("status", help="Show published feature matrices")

    sim_parser = subparsers.add_parser("similarity", help="Relatedness of two concepts")
    add_metric_args(sim_parser)
    sim_parser.add_argument("a", type=int, help="First concept id")
    sim_parser.add_argument("b", type=int, help="Second concept id")

    ms_parser = subparsers.add_parser("most-similar", help="Top-k related concepts")
    add_metric_args(ms_parser)
    ms_parser.add_argument("concept_id", type=int, help="Query concept id")
    ms_parser.add_argument("-k", type=int, default=10, help="Number of results")

    eval_parser = subparsers.add_parser("evaluate", help="Evaluate phrase relatedness")
    add_metric_args(eval_parser)
    eval_parser.add_argument("--bundles", required=True, help="Tab-separated phrase bundles")
    eval_parser.add_argument("-k", type=int, default=10, help="Neighbours per phrase")
    eval_parser.add_argument("--samples", type=int, default=1000, help="Bundles sampled")
    eval_parser.add_argument("--crosswikis", help="Crosswikis dictionary for unknown phrases")
    eval_parser.add_argument(
        "--workers", type=int, help="Registration threads (default: SEMREL_EVALUATION_WORKERS)"
    )

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 0

    commands = {
        "build": cmd_build,
        "status": cmd_status,
        "similarity": cmd_similarity,
        "most-similar": cmd_most_similar,
        "evaluate": cmd_evaluate,
    }

    cmd_func = commands.get(args.command)
    if cmd_func:
        return cmd_func(args)
    else:
        parser.print_help()
        return 1


if __name__ == "__main__":
    sys.exit(main())
