"""
Phrase resolution: free-text phrases onto concept space.

- StringNormalizer: canonical phrase form
- PhraseIdDictionary: thread-safe phrase <-> id arena
- PhraseResolver: phrase -> concept mapping and phrase mostSimilar
- creators: turn phrases into metric queries
- loader: crosswikis anchor-text dictionary
"""

from .creators import ChainedPhraseCreator, KnownPhraseCreator, PhraseCreator, WeightedConceptCreator
from .dictionary import PhraseIdDictionary
from .loader import (
    CrosswikisEntry,
    PhraseConceptCounts,
    load_crosswikis_dictionary,
    load_crosswikis_file,
)
from .normalizer import StringNormalizer
from .resolver import PhraseResolver

__all__ = [
    "ChainedPhraseCreator",
    "CrosswikisEntry",
    "KnownPhraseCreator",
    "PhraseConceptCounts",
    "PhraseCreator",
    "PhraseIdDictionary",
    "PhraseResolver",
    "StringNormalizer",
    "WeightedConceptCreator",
    "load_crosswikis_dictionary",
    "load_crosswikis_file",
]
