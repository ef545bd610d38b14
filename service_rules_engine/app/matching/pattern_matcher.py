"""
URL pattern matcher.

Scores a URL against a rule's ``URLPattern`` the same way the host engine
decides whether a rule applies, so diagnostics agree with enforcement.
Each sub-part contributes a fixed weight to the score; a constrained part
that does not match fails the whole pattern.
"""

from typing import Iterable, Optional, Tuple
from urllib.parse import urlsplit, SplitResult

from shared.logging import get_logger
from ..rules.models import URLPattern, PatternMatchResult
from .wildcards import wildcard_to_regex, wildcard_score


PROTOCOL_WEIGHT = 0.1
DOMAIN_WEIGHT = 0.4
PATH_WEIGHT = 0.3
PORT_WEIGHT = 0.1
QUERY_WEIGHT = 0.1

DOMAIN_WILDCARD_PENALTY = 0.2
PATH_WILDCARD_PENALTY = 0.1
QUERY_CONTAINS_SCORE = 0.7

DEFAULT_PORTS = {"https": "443", "http": "80"}


class URLPatternMatcher:
    """Matches URLs against URL patterns and scores their specificity."""

    def __init__(self):
        self.logger = get_logger("rules_engine.pattern_matcher")

    def match(self, url: str, pattern: URLPattern) -> PatternMatchResult:
        """Match ``url`` against ``pattern``. Never raises."""
        matched_parts = {}
        try:
            parts = self._split_url(url)
            if parts is None:
                return PatternMatchResult(matches=False, score=0.0, matched_parts=matched_parts,
                                          error="Malformed URL")
            if not pattern.domain:
                return PatternMatchResult(matches=False, score=0.0, matched_parts=matched_parts,
                                          error="Pattern has no domain")

            scheme = parts.scheme.lower()
            checks = (
                ("protocol", PROTOCOL_WEIGHT, self.match_protocol(pattern.protocol, scheme)),
                ("domain", DOMAIN_WEIGHT, self.match_domain(pattern.domain, parts.hostname or "")),
                ("path", PATH_WEIGHT, self.match_path(pattern.path, parts.path or "/")),
                ("port", PORT_WEIGHT, self.match_port(pattern.port, parts.port, scheme)),
                ("query", QUERY_WEIGHT, self.match_query(pattern.query, parts.query)),
            )

            score = 0.0
            for name, weight, (matched, part_score) in checks:
                if not matched:
                    matched_parts[name] = False
                    return PatternMatchResult(matches=False, score=0.0, matched_parts=matched_parts)
                matched_parts[name] = True
                score += part_score * weight

            return PatternMatchResult(
                matches=True,
                score=round(min(score, 1.0), 4),
                matched_parts=matched_parts
            )

        except Exception as e:
            self.logger.error("Error matching URL pattern", url=url, error=str(e))
            return PatternMatchResult(matches=False, score=0.0, matched_parts={}, error=str(e))

    def find_best_match(
        self, url: str, patterns: Iterable[URLPattern]
    ) -> Tuple[Optional[URLPattern], Optional[PatternMatchResult]]:
        """Return the highest-scoring matching pattern, or ``(None, None)``."""
        best_pattern = None
        best_result = None
        for pattern in patterns:
            result = self.match(url, pattern)
            if result.matches and (best_result is None or result.score > best_result.score):
                best_pattern, best_result = pattern, result
        return best_pattern, best_result

    @staticmethod
    def _split_url(url: str) -> Optional[SplitResult]:
        if not isinstance(url, str) or not url:
            return None
        try:
            parts = urlsplit(url.strip())
            # Accessing .port validates it and raises ValueError when out of range
            parts.port
        except ValueError:
            return None
        if not parts.scheme or not parts.hostname:
            return None
        return parts

    @staticmethod
    def match_protocol(pattern: Optional[str], scheme: str) -> Tuple[bool, float]:
        if not pattern or pattern == "*":
            return True, 1.0
        return pattern.lower() == scheme, 1.0

    @staticmethod
    def match_domain(pattern: str, hostname: str) -> Tuple[bool, float]:
        pattern = pattern.lower()
        hostname = hostname.lower()
        if pattern == "*" or pattern == hostname:
            return True, 1.0
        if "*" in pattern and wildcard_to_regex(pattern).match(hostname):
            return True, wildcard_score(pattern, DOMAIN_WILDCARD_PENALTY)
        return False, 0.0

    @staticmethod
    def match_path(pattern: Optional[str], path: str) -> Tuple[bool, float]:
        if not pattern or pattern in ("*", "/*") or pattern == path:
            return True, 1.0
        if "*" in pattern and wildcard_to_regex(pattern, case_sensitive=True).match(path):
            return True, wildcard_score(pattern, PATH_WILDCARD_PENALTY)
        return False, 0.0

    @staticmethod
    def match_port(pattern: Optional[str], port: Optional[int], scheme: str) -> Tuple[bool, float]:
        if not pattern or pattern == "*":
            return True, 1.0
        actual = str(port) if port is not None else DEFAULT_PORTS.get(scheme, "80")
        return str(pattern) == actual, 1.0

    @staticmethod
    def match_query(pattern: Optional[str], query: str) -> Tuple[bool, float]:
        if not pattern or pattern == "*":
            return True, 1.0
        pattern = pattern.lstrip("?")
        query = query.lstrip("?")
        if pattern == query:
            return True, 1.0
        if pattern in query:
            return True, QUERY_CONTAINS_SCORE
        if "*" in pattern and wildcard_to_regex(pattern, case_sensitive=True).match(query):
            return True, QUERY_CONTAINS_SCORE
        return False, 0.0


_default_matcher = URLPatternMatcher()


def match_url_pattern(url: str, pattern: URLPattern) -> PatternMatchResult:
    """Match ``url`` against ``pattern`` with the module-level matcher."""
    return _default_matcher.match(url, pattern)


def find_best_match(
    url: str, patterns: Iterable[URLPattern]
) -> Tuple[Optional[URLPattern], Optional[PatternMatchResult]]:
    """Find the best matching pattern with the module-level matcher."""
    return _default_matcher.find_best_match(url, patterns)
