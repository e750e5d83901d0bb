"""
Phrase resolver.

Maps free-text phrases onto concept space:

    resolver = PhraseResolver(engine)
    resolver.add_phrase("Jazz music", concept_id=7)
    resolver.most_similar("jazz   MUSIC", k=10)

Phrases are normalized before lookup. Every distinct normalized phrase gets
a dense id from a PhraseIdDictionary (which may be shared across
resolvers of one language). The first concept recorded for a phrase wins.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Iterable

from ..core.errors import NotFoundError
from ..core.models import ResultList
from ..query.engine import QueryEngine
from .creators import ChainedPhraseCreator, KnownPhraseCreator, PhraseCreator
from .dictionary import PhraseIdDictionary
from .normalizer import StringNormalizer

logger = logging.getLogger(__name__)


class PhraseResolver:
    """
    Phrase -> concept mapping in front of a QueryEngine.

    Args:
        engine: Engine answering the concept-space queries
        creators: Fallback creators tried after known phrases
        dictionary: Phrase id arena (a new one if omitted)
        normalizer: Phrase normalizer
    """

    def __init__(
        self,
        engine: QueryEngine,
        creators: Iterable[PhraseCreator] = (),
        dictionary: PhraseIdDictionary | None = None,
        normalizer: StringNormalizer | None = None,
    ):
        self.engine = engine
        self.dictionary = dictionary if dictionary is not None else PhraseIdDictionary()
        self.normalizer = normalizer or StringNormalizer()
        self._lock = threading.Lock()
        self._concepts: dict[int, int] = {}
        self._phrases_by_concept: dict[int, list[int]] = {}
        self.creator = ChainedPhraseCreator([KnownPhraseCreator(self.concept_for), *creators])

    def normalize(self, text: str) -> str:
        return self.normalizer.normalize(text)

    def add_phrase(self, text: str, concept_id: int) -> int:
        """
        Record that `text` refers to `concept_id`.

        Returns:
            The phrase id of the normalized text
        """
        phrase_id = self.dictionary.get_or_create(self.normalize(text))
        with self._lock:
            if phrase_id not in self._concepts:
                self._concepts[phrase_id] = concept_id
                self._phrases_by_concept.setdefault(concept_id, []).append(phrase_id)
            elif self._concepts[phrase_id] != concept_id:
                logger.debug(
                    "Phrase %r already maps to concept %d; ignoring %d",
                    text,
                    self._concepts[phrase_id],
                    concept_id,
                )
        return phrase_id

    def phrase_id(self, text: str) -> int | None:
        return self.dictionary.get(self.normalize(text))

    def concept_for(self, text: str) -> int | None:
        """Concept recorded for a phrase (normalized here), or None."""
        phrase_id = self.phrase_id(text)
        return None if phrase_id is None else self._concepts.get(phrase_id)

    def phrases_for(self, concept_id: int) -> list[str]:
        return [self.dictionary.phrase(pid) for pid in self._phrases_by_concept.get(concept_id, ())]

    def query_for(self, text: str, state: Any = None) -> Any:
        """
        Concept id or vector representing a phrase.

        Raises:
            NotFoundError: If no creator can represent the phrase
        """
        state = state if state is not None else self.engine.snapshot()
        normalized = self.normalize(text)
        query = self.creator.create(normalized, self.engine.metric, state)
        if query is None:
            raise NotFoundError("Phrase", text, f"{self.engine.name}/{self.engine.language}")
        return query

    def most_similar(self, text: str, k: int) -> ResultList:
        """
        Concepts most related to a phrase.

        Raises:
            NotFoundError: If the phrase is unknown and no creator handles it
            NotBuiltError, NotFittedError, CapacityExceededError
        """
        self.engine.check_k(k)
        state = self.engine.snapshot()
        return self.engine.most_similar(self.query_for(text, state), k, state=state)

    def __len__(self) -> int:
        return len(self._concepts)
