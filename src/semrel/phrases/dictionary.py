"""
Phrase id dictionary.

An arena of normalized phrases: ids are dense integers indexing into a
list, and a dict maps each phrase back to its id. Insertion is
create-if-absent under a lock, so concurrent builders adding the same
phrase all receive the one id assigned by the first writer.
"""

from __future__ import annotations

import threading


class PhraseIdDictionary:
    """Thread-safe phrase <-> id arena."""

    def __init__(self):
        self._lock = threading.Lock()
        self._ids: dict[str, int] = {}
        self._phrases: list[str] = []

    def get_or_create(self, phrase: str) -> int:
        """Id of `phrase`, assigning the next unused id if it is new."""
        existing = self._ids.get(phrase)
        if existing is not None:
            return existing
        with self._lock:
            existing = self._ids.get(phrase)
            if existing is not None:
                return existing
            phrase_id = len(self._phrases)
            self._phrases.append(phrase)
            self._ids[phrase] = phrase_id
            return phrase_id

    def get(self, phrase: str) -> int | None:
        return self._ids.get(phrase)

    def phrase(self, phrase_id: int) -> str:
        """
        Phrase text for an id.

        Raises:
            KeyError: If the id was never assigned
        """
        if not 0 <= phrase_id < len(self._phrases):
            raise KeyError(phrase_id)
        return self._phrases[phrase_id]

    def __contains__(self, phrase: object) -> bool:
        return phrase in self._ids

    def __len__(self) -> int:
        return len(self._phrases)
