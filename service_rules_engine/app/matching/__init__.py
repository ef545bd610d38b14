"""
URL pattern matching package.

- pattern_matcher: Weighted per-part matching and scoring of URLs.
- patterns: Validation, normalization and specificity ranking of patterns.
- wildcards: Wildcard-to-regex helpers.
"""

from .pattern_matcher import URLPatternMatcher, match_url_pattern, find_best_match
from .patterns import (
    validate_url_pattern,
    normalize_url_pattern,
    pattern_to_string,
    parse_url_to_pattern,
    calculate_specificity,
    specificity_level,
    is_pattern_too_restrictive,
)

__all__ = [
    "URLPatternMatcher",
    "match_url_pattern",
    "find_best_match",
    "validate_url_pattern",
    "normalize_url_pattern",
    "pattern_to_string",
    "parse_url_to_pattern",
    "calculate_specificity",
    "specificity_level",
    "is_pattern_too_restrictive",
]
