"""String similarity primitives for job reference and vehicle plate matching.

Pure Python, no I/O. Jaro-Winkler is used for scoring because it behaves
better than edit distance on short codes such as job references and plates.
"""

from __future__ import annotations

import re
from collections.abc import Iterable

_SEPARATORS = re.compile(r"[\s\-_]+")
_NON_ALNUM = re.compile(r"[^a-z0-9]")

# Winkler prefix bonus
PREFIX_SCALE = 0.1
MAX_PREFIX = 4

# UK plate formats, checked after upper-casing and removing whitespace
PLATE_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"^[A-Z]{2}\d{2}[A-Z]{3}$"),  # current: GV66XRO
    re.compile(r"^[A-Z]{1,3}\d{1,4}[A-Z]{0,3}$"),  # prefix
    re.compile(r"^\d{1,4}[A-Z]{1,3}$"),  # suffix
    re.compile(r"^[A-Z]{1,2}\d{1,4}[A-Z]{1,2}$"),  # Northern Ireland
)

FUZZY_PLATE_THRESHOLD = 0.85


def normalize(value: str | None) -> str:
    """Lowercase and drop everything that is not a letter or digit."""
    if not value or not isinstance(value, str):
        return ""
    return _NON_ALNUM.sub("", _SEPARATORS.sub("", value.lower()))


def edit_distance(a: str, b: str) -> int:
    """Levenshtein distance via the full (|a|+1) x (|b|+1) table."""
    m, n = len(a), len(b)
    dp = [[0] * (n + 1) for _ in range(m + 1)]
    for i in range(m + 1):
        dp[i][0] = i
    for j in range(n + 1):
        dp[0][j] = j

    for i in range(1, m + 1):
        for j in range(1, n + 1):
            if a[i - 1] == b[j - 1]:
                dp[i][j] = dp[i - 1][j - 1]
            else:
                dp[i][j] = 1 + min(
                    dp[i - 1][j],  # deletion
                    dp[i][j - 1],  # insertion
                    dp[i - 1][j - 1],  # substitution
                )
    return dp[m][n]


def common_prefix_length(a: str, b: str) -> int:
    length = 0
    for ca, cb in zip(a, b):
        if ca != cb:
            break
        length += 1
    return length


def similarity(a: str, b: str) -> float:
    """Jaro-Winkler similarity in [0, 1].

    Identical strings score 1.0 and an empty side scores 0.0. Characters
    match greedily within a window of floor(max_len / 2) - 1 without reusing
    a target position; the Winkler bonus uses a common prefix capped at 4.
    """
    if a == b:
        return 1.0
    if not a or not b:
        return 0.0

    len_a, len_b = len(a), len(b)
    window = max(len_a, len_b) // 2 - 1
    if window < 0:
        return 0.0

    a_matched = [False] * len_a
    b_matched = [False] * len_b
    matches = 0

    for i in range(len_a):
        start = max(0, i - window)
        end = min(i + window + 1, len_b)
        for j in range(start, end):
            if b_matched[j] or a[i] != b[j]:
                continue
            a_matched[i] = True
            b_matched[j] = True
            matches += 1
            break

    if matches == 0:
        return 0.0

    half_transpositions = 0
    k = 0
    for i in range(len_a):
        if not a_matched[i]:
            continue
        while not b_matched[k]:
            k += 1
        if a[i] != b[k]:
            half_transpositions += 1
        k += 1
    transpositions = half_transpositions / 2

    jaro = (matches / len_a + matches / len_b + (matches - transpositions) / matches) / 3

    prefix = min(common_prefix_length(a, b), MAX_PREFIX)
    bonus = prefix * PREFIX_SCALE * (1 - jaro)
    return min(jaro + bonus, 1.0)


def fuzzy_match(value: str | None, target: str | None, threshold: float = 0.8) -> float:
    """Similarity of the normalized inputs, or 0.0 when below threshold.

    0.0 is the "no match" sentinel, never a legitimate low score.
    """
    if not value or not target:
        return 0.0

    norm_value = normalize(value)
    norm_target = normalize(target)
    if not norm_value or not norm_target:
        return 0.0
    if norm_value == norm_target:
        return 1.0

    score = similarity(norm_value, norm_target)
    return score if score >= threshold else 0.0


def parse_plate(value: str | None) -> str | None:
    """Upper-cased plate with whitespace removed, or None if no format matches."""
    if not value or not isinstance(value, str):
        return None

    cleaned = re.sub(r"\s+", "", value.upper())
    if any(pattern.match(cleaned) for pattern in PLATE_PATTERNS):
        return cleaned
    return None


def plates_match(value: str | None, target: str | None) -> bool:
    """Exact comparison of two parsed plates."""
    parsed_value = parse_plate(value)
    parsed_target = parse_plate(target)
    if parsed_value is None or parsed_target is None:
        return False
    return parsed_value == parsed_target


def plate_similarity(value: str | None, target: str | None, fuzzy: bool = True) -> float:
    """1.0 for identical plates, Jaro-Winkler when close enough, else 0.0."""
    parsed_value = parse_plate(value)
    parsed_target = parse_plate(target)
    if parsed_value is None or parsed_target is None:
        return 0.0
    if parsed_value == parsed_target:
        return 1.0
    if fuzzy:
        score = similarity(parsed_value, parsed_target)
        if score >= FUZZY_PLATE_THRESHOLD:
            return score
    return 0.0


def rank_targets(
    value: str | None,
    targets: Iterable[str],
    threshold: float = 0.8,
    limit: int = 10,
) -> list[tuple[str, float]]:
    """Score every target, drop non-matches, best first, truncated to limit.

    Equal scores keep their input order.
    """
    if not value:
        return []

    scored = [(target, fuzzy_match(value, target, threshold)) for target in targets]
    ranked = sorted((pair for pair in scored if pair[1] > 0), key=lambda pair: pair[1], reverse=True)
    return ranked[:limit]
