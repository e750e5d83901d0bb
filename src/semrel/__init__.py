"""
semrel - semantic relatedness between concepts and phrases.

Represents each concept as a sparse feature vector and answers three
query shapes against prebuilt feature matrices: pairwise similarity,
top-k mostSimilar and dense cosimilarity matrices. Raw metric scores are
normalized onto a comparable scale and can be combined into weighted
ensembles.

Usage:
    from semrel import load_registry, get_settings

    registry = load_registry(get_settings())
    engine = registry.engine("simple", "esa")
    engine.most_similar(42, k=10)
"""

from .core.config import Settings, get_settings
from .query.engine import QueryEngine
from .registry import SRRegistry, load_registry

__version__ = "0.3.0"

__all__ = ["QueryEngine", "SRRegistry", "Settings", "get_settings", "load_registry"]
