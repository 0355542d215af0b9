"""
Atlas Building Registry — Building Name Matching

Normalizes building names and scores how alike two names are.  The main
score combines exact, containment and token Jaccard checks.  An
edit-distance score from rapidfuzz is exposed separately and only feeds the
human review report (transliterations such as "Kotelnicheskaya" vs
"Kotelnicheskaja").

Dependencies:
    pip install rapidfuzz
"""

from __future__ import annotations

import re

from rapidfuzz.distance import Levenshtein


# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------

# Anything that is neither a letter/digit nor whitespace.  "_" is a \w
# character in Python regexes, so it is listed explicitly.
_NON_ALNUM = re.compile(r"[^\w\s]|_")
_MULTI_SPACE = re.compile(r"\s+")

# Suffixes removed before comparing "base" names
_PARENTHETICAL = re.compile(r"\s*\([^)]*\)")
_BRACKETED = re.compile(r"\s*\[[^\]]*\]")
_DASH_QUALIFIER = re.compile(r"\s*-\s*[^-]*$")

MIN_TOKEN_LENGTH = 3
MIN_BASE_LENGTH = 5
MIN_PORTION_RATIO = 0.6


def normalize(name: str | None) -> str:
    """
    Normalize a building name for comparison.

    Steps:
        1. Lowercase
        2. Remove every character that is not alphanumeric or whitespace
        3. Collapse whitespace and trim

    Idempotent: normalize(normalize(s)) == normalize(s).
    """
    if not name:
        return ""

    text = name.lower()
    text = _NON_ALNUM.sub("", text)
    text = _MULTI_SPACE.sub(" ", text).strip()

    return text


def _tokens(normalized: str) -> set[str]:
    return {t for t in normalized.split(" ") if len(t) >= MIN_TOKEN_LENGTH}


# ---------------------------------------------------------------------------
# Scoring functions
# ---------------------------------------------------------------------------


def exact_match(name_a: str | None, name_b: str | None) -> bool:
    """True when both names normalize to the same non-empty string."""
    norm_a = normalize(name_a)
    return bool(norm_a) and norm_a == normalize(name_b)


def similarity(name_a: str | None, name_b: str | None) -> float:
    """
    Similarity between two building names, in [0.0, 1.0].

    Scoring ladder on the normalized forms:
        - identical                      → 1.0
        - one contains the other         → len(shorter) / len(longer)
        - otherwise                      → Jaccard index of the token sets
                                           (tokens of 3+ characters)

    Names that normalize to nothing (e.g. "???") only score 1.0 against an
    identical raw name; against anything else they score 0.0.
    """
    norm_a = normalize(name_a)
    norm_b = normalize(name_b)

    if not norm_a or not norm_b:
        return 1.0 if name_a and name_a == name_b else 0.0

    if norm_a == norm_b:
        return 1.0

    if norm_a in norm_b or norm_b in norm_a:
        shorter, longer = sorted((len(norm_a), len(norm_b)))
        return shorter / longer

    tokens_a = _tokens(norm_a)
    tokens_b = _tokens(norm_b)
    if not tokens_a or not tokens_b:
        return 0.0

    return len(tokens_a & tokens_b) / len(tokens_a | tokens_b)


def base_name(name: str | None) -> str:
    """
    Strip qualifiers that often differ between sources and normalize.

        "Hotel Ukraina (Radisson Collection)"  → "hotel ukraina"
        "Palace of Culture - Warsaw"           → "palace of culture"
    """
    text = name or ""
    text = _PARENTHETICAL.sub("", text)
    text = _BRACKETED.sub("", text)
    text = _DASH_QUALIFIER.sub("", text)
    return normalize(text.strip())


def shares_significant_portion(name_a: str | None, name_b: str | None) -> bool:
    """
    Stricter aliasing test: do the two names share the same base name?

    True when the base names are equal (and non-empty), or when one base
    contains the other, both are at least 5 characters long and the shorter
    covers at least 60% of the longer.
    """
    base_a = base_name(name_a)
    base_b = base_name(name_b)

    if not base_a or not base_b:
        return False
    if base_a == base_b:
        return True

    if len(base_a) >= MIN_BASE_LENGTH and len(base_b) >= MIN_BASE_LENGTH:
        if base_a in base_b or base_b in base_a:
            shorter, longer = sorted((len(base_a), len(base_b)))
            return shorter / longer >= MIN_PORTION_RATIO

    return False


def edit_similarity(name_a: str | None, name_b: str | None) -> float:
    """
    Normalised Levenshtein similarity of the normalized names, in [0.0, 1.0].

    Only used to flag likely transliteration variants for review.
    """
    norm_a = normalize(name_a)
    norm_b = normalize(name_b)
    if not norm_a or not norm_b:
        return 0.0
    return Levenshtein.normalized_similarity(norm_a, norm_b)
