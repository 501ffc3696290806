"""
Similarity Scorer

Deterministic lexical and structural similarity. Two normalizations are
used and must not be mixed up:

- ``normalize``: lowercase, strip punctuation and diacritics, collapse
  whitespace. Produces canonical entity names and lexical terms.
- ``identity_key``: case-insensitive, whitespace-insensitive, but keeps
  diacritics. Used by the exact and alias tiers, so "Rīga" is not an exact
  hit for "riga" and falls through to the lexical tier.
"""

import re
import unicodedata
from typing import Any, Iterable

_PUNCTUATION = re.compile(r"[^\w\s]|_", re.UNICODE)
_WHITESPACE = re.compile(r"\s+")

STOPWORDS = frozenset({
    "the", "and", "for", "are", "but", "not", "you", "all", "any", "can",
    "had", "her", "was", "one", "our", "out", "has", "have", "his", "how",
    "its", "may", "who", "did", "get", "him", "she", "too", "use", "that",
    "with", "this", "from", "they", "will", "would", "there", "their",
    "what", "about", "which", "when", "were", "been", "into", "than",
    "then", "them", "these", "some", "also", "does", "of", "in", "on",
    "at", "to", "is", "a", "an", "or", "by", "be", "as", "it",
})


class SimilarityScorer:
    """
    Lexical and structural similarity measures.

    Args:
        stopwords: Words ignored by core-term extraction
        min_term_length: Shortest word kept as a core term
    """

    def __init__(self, stopwords: Iterable[str] | None = None, min_term_length: int = 3):
        self.stopwords = frozenset(stopwords) if stopwords is not None else STOPWORDS
        self.min_term_length = min_term_length

    @staticmethod
    def normalize(text: str) -> str:
        """Canonical form: ``"  São-Paulo! "`` -> ``"sao paulo"``."""
        decomposed = unicodedata.normalize("NFKD", str(text))
        stripped = "".join(c for c in decomposed if not unicodedata.combining(c))
        lowered = stripped.lower()
        no_punct = _PUNCTUATION.sub(" ", lowered)
        return _WHITESPACE.sub(" ", no_punct).strip()

    @staticmethod
    def identity_key(text: str) -> str:
        """Exact-tier key: ``"  RIGA "`` -> ``"riga"``, ``"Rīga"`` -> ``"rīga"``."""
        composed = unicodedata.normalize("NFC", str(text))
        return _WHITESPACE.sub(" ", composed.casefold()).strip()

    def core_terms(self, text: str) -> set[str]:
        """
        Significant words of a text.

        Falls back to every normalized token when nothing survives the
        stopword/length filter, so very short names still compare.
        """
        tokens = self.normalize(text).split()
        terms = {
            t for t in tokens
            if len(t) >= self.min_term_length and t not in self.stopwords
        }
        return terms or set(tokens)

    @staticmethod
    def jaccard(a: set[Any], b: set[Any]) -> float:
        if not a or not b:
            return 0.0
        return len(a & b) / len(a | b)

    def string_similarity(self, a: str, b: str) -> float:
        """Set-overlap similarity of two strings' core terms."""
        return self.jaccard(self.core_terms(a), self.core_terms(b))

    def term_overlap(self, query: str, text: str) -> float:
        """Fraction of the query's core terms present in ``text``."""
        query_terms = self.core_terms(query)
        if not query_terms:
            return 0.0
        text_terms = self.core_terms(text)
        return len(query_terms & text_terms) / len(query_terms)

    @staticmethod
    def structural_similarity(
        fields_a: dict[str, Any],
        fields_b: dict[str, Any],
        type_mismatch_weight: float = 0.5,
    ) -> float:
        """
        Jaccard over field-path sets, weighted by type agreement.

        A shared path counts 1.0 when both values have the same type and
        ``type_mismatch_weight`` otherwise.
        """
        paths_a = set(fields_a)
        paths_b = set(fields_b)
        union = paths_a | paths_b
        if not union:
            return 0.0

        credit = 0.0
        for path in paths_a & paths_b:
            same_type = type(fields_a[path]) is type(fields_b[path])
            credit += 1.0 if same_type else type_mismatch_weight
        return credit / len(union)
