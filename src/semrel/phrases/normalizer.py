"""Phrase string normalization."""

import re
import unicodedata

_WHITESPACE = re.compile(r"\s+")


class StringNormalizer:
    """
    Canonical form of a phrase: Unicode NFKC, case-folded, whitespace
    collapsed to single spaces, stripped.

        >>> StringNormalizer().normalize("  Jazz\\tMUSIC ")
        'jazz music'
    """

    def normalize(self, text: str) -> str:
        text = unicodedata.normalize("NFKC", text).casefold()
        return _WHITESPACE.sub(" ", text).strip()

    __call__ = normalize
