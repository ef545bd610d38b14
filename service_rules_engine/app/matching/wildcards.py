"""
Wildcard helpers shared by the pattern matcher and pattern utilities.
"""

import re
from functools import lru_cache
from typing import Pattern


@lru_cache(maxsize=512)
def wildcard_to_regex(pattern: str, case_sensitive: bool = False) -> Pattern:
    """Compile an anchored regex where ``*`` matches any run of characters.

    Every other character, dots included, is matched literally.
    """
    escaped = ".*".join(re.escape(part) for part in pattern.split("*"))
    flags = 0 if case_sensitive else re.IGNORECASE
    return re.compile(f"^{escaped}$", flags)


def has_wildcards(pattern: str) -> bool:
    return "*" in pattern


def count_wildcards(pattern: str) -> int:
    return pattern.count("*")


def wildcard_score(pattern: str, penalty: float, floor: float = 0.3) -> float:
    """Specificity score for a wildcard pattern: fewer wildcards score higher."""
    return max(floor, 1.0 - pattern.count("*") * penalty)
