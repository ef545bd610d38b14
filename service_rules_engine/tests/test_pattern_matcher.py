"""
Unit tests for the URL pattern matcher and pattern utilities.
"""

import pytest

from service_rules_engine.app.rules.models import URLPattern
from service_rules_engine.app.matching.pattern_matcher import (
    URLPatternMatcher, match_url_pattern, find_best_match
)
from service_rules_engine.app.matching.patterns import (
    validate_url_pattern,
    normalize_url_pattern,
    pattern_to_string,
    parse_url_to_pattern,
    calculate_specificity,
    specificity_level,
    is_pattern_too_restrictive,
)
from service_rules_engine.app.matching.wildcards import wildcard_to_regex, wildcard_score


class TestURLPatternMatcher:
    """Test cases for URLPatternMatcher."""

    @pytest.fixture
    def matcher(self):
        """Create URLPatternMatcher instance."""
        return URLPatternMatcher()

    def test_exact_match_all_parts_scores_one(self, matcher):
        """Every part present and matching exactly gives a perfect score."""
        pattern = URLPattern(
            domain="example.com", protocol="https", path="/api/users", port="443", query="a=1"
        )

        result = matcher.match("https://example.com:443/api/users?a=1", pattern)

        assert result.matches is True
        assert result.score == pytest.approx(1.0)
        assert result.matched_parts == {
            "protocol": True, "domain": True, "path": True, "port": True, "query": True
        }

    def test_domain_only_pattern_scores_one(self, matcher):
        """Absent parts count as matched."""
        result = matcher.match("http://example.com/anything?x=1", URLPattern(domain="example.com"))

        assert result.matches is True
        assert result.score == pytest.approx(1.0)

    def test_wildcard_path_lowers_score(self, matcher):
        """One wildcard in the path reduces the path sub-score to 0.9."""
        pattern = URLPattern(domain="example.com", path="/api/*")

        result = matcher.match("https://example.com/api/v1/users", pattern)

        assert result.matches is True
        assert result.score == pytest.approx(0.1 + 0.4 + 0.3 * 0.9 + 0.1 + 0.1)
        assert result.score < 1.0

    def test_catch_all_path_scores_full(self, matcher):
        """A ``/*`` path is not penalised."""
        result = matcher.match("https://example.com/a/b", URLPattern(domain="example.com", path="/*"))

        assert result.score == pytest.approx(1.0)

    def test_wildcard_subdomain(self, matcher):
        """``*.example.com`` matches subdomains with a reduced domain score."""
        pattern = URLPattern(domain="*.example.com")

        result = matcher.match("https://api.example.com/", pattern)

        assert result.matches is True
        assert result.score == pytest.approx(0.1 + 0.4 * 0.8 + 0.3 + 0.1 + 0.1)

    def test_wildcard_subdomain_does_not_match_apex(self, matcher):
        """Dots are literal, so the apex domain does not match ``*.example.com``."""
        result = matcher.match("https://example.com/", URLPattern(domain="*.example.com"))

        assert result.matches is False
        assert result.score == 0.0

    def test_wildcard_score_has_floor(self):
        """Heavily wildcarded patterns never drop below 0.3."""
        assert wildcard_score("*.*.*.*.*", 0.2) == pytest.approx(0.3)
        assert wildcard_score("/*/*", 0.1) == pytest.approx(0.8)

    def test_domain_comparison_is_case_insensitive(self, matcher):
        """Domain matching ignores case."""
        result = matcher.match("https://EXAMPLE.com/", URLPattern(domain="Example.COM"))

        assert result.matches is True

    def test_path_comparison_is_case_sensitive(self, matcher):
        """Path matching respects case."""
        result = matcher.match("https://example.com/API", URLPattern(domain="example.com", path="/api"))

        assert result.matches is False

    def test_protocol_mismatch_fails(self, matcher):
        """A constrained protocol must match."""
        pattern = URLPattern(domain="example.com", protocol="https")

        result = matcher.match("http://example.com/", pattern)

        assert result.matches is False
        assert result.score == 0.0
        assert result.matched_parts["protocol"] is False

    def test_wildcard_protocol_matches_any(self, matcher):
        """A ``*`` protocol accepts any scheme."""
        pattern = URLPattern(domain="example.com", protocol="*")

        assert matcher.match("http://example.com/", pattern).matches is True
        assert matcher.match("https://example.com/", pattern).matches is True

    def test_default_ports(self, matcher):
        """Ports default to 443 for https and 80 otherwise."""
        assert matcher.match("https://example.com/", URLPattern(domain="example.com", port="443")).matches
        assert matcher.match("http://example.com/", URLPattern(domain="example.com", port="80")).matches
        assert not matcher.match("https://example.com/", URLPattern(domain="example.com", port="80")).matches

    def test_explicit_port(self, matcher):
        """An explicit port in the URL is compared against the pattern."""
        pattern = URLPattern(domain="localhost", port="8080")

        assert matcher.match("http://localhost:8080/", pattern).matches is True
        assert matcher.match("http://localhost:3000/", pattern).matches is False

    def test_query_substring_scores_lower(self, matcher):
        """Query containment matches with a 0.7 query sub-score."""
        pattern = URLPattern(domain="example.com", query="a=1")

        result = matcher.match("https://example.com/?a=1&b=2", pattern)

        assert result.matches is True
        assert result.score == pytest.approx(0.9 + 0.1 * 0.7)

    def test_query_leading_question_mark_ignored(self, matcher):
        """A leading ``?`` in the pattern's query does not matter."""
        pattern = URLPattern(domain="example.com", query="?a=1")

        result = matcher.match("https://example.com/?a=1", pattern)

        assert result.score == pytest.approx(1.0)

    def test_query_mismatch_fails(self, matcher):
        """A query that is neither equal nor contained fails the pattern."""
        pattern = URLPattern(domain="example.com", query="debug=true")

        assert matcher.match("https://example.com/?a=1", pattern).matches is False

    @pytest.mark.parametrize("url", [
        "",
        "not a url",
        "example.com/path",
        "http://",
        "https://example.com:99999/",
        None,
    ])
    def test_malformed_urls_fail_closed(self, matcher, url):
        """Malformed URLs never match and never raise."""
        result = matcher.match(url, URLPattern(domain="*"))

        assert result.matches is False
        assert result.score == 0.0

    def test_pattern_without_domain_fails(self, matcher):
        """A pattern with no domain cannot match."""
        result = matcher.match("https://example.com/", URLPattern(domain=""))

        assert result.matches is False
        assert result.error

    def test_find_best_match_prefers_specific_pattern(self):
        """The most specific matching pattern wins."""
        broad = URLPattern(domain="*.example.com")
        specific = URLPattern(domain="api.example.com")
        unrelated = URLPattern(domain="other.org")

        pattern, result = find_best_match("https://api.example.com/", [broad, unrelated, specific])

        assert pattern is specific
        assert result.score == pytest.approx(1.0)

    def test_find_best_match_none(self):
        """No matching pattern gives ``(None, None)``."""
        assert find_best_match("https://example.com/", [URLPattern(domain="other.org")]) == (None, None)

    def test_module_level_match(self):
        """The module-level helper uses a shared matcher."""
        assert match_url_pattern("https://example.com/", URLPattern(domain="example.com")).matches is True


class TestWildcards:
    """Test cases for wildcard helpers."""

    def test_dots_are_literal(self):
        """A dot in the pattern does not match arbitrary characters."""
        regex = wildcard_to_regex("a.b")

        assert regex.match("a.b")
        assert not regex.match("axb")

    def test_anchored(self):
        """Patterns must match the whole value."""
        regex = wildcard_to_regex("/api/*", case_sensitive=True)

        assert regex.match("/api/v1")
        assert not regex.match("/v2/api/v1")


class TestPatternUtilities:
    """Test cases for pattern validation and specificity helpers."""

    def test_validate_valid_pattern(self):
        """A well formed pattern validates."""
        result = validate_url_pattern(URLPattern(domain="example.com", protocol="https", path="/api", port="8080"))

        assert result == {"is_valid": True, "errors": []}

    def test_validate_reports_every_problem(self):
        """Each invalid part produces its own error."""
        result = validate_url_pattern(URLPattern(domain="", protocol="ftp", path="api", port="70000"))

        assert result["is_valid"] is False
        assert len(result["errors"]) == 4

    def test_validate_rejects_double_dot_domain(self):
        """Consecutive dots are invalid."""
        assert validate_url_pattern(URLPattern(domain="example..com"))["is_valid"] is False

    def test_normalize(self):
        """Domain and protocol are lower-cased and the path defaults to ``/*``."""
        normalized = normalize_url_pattern(URLPattern(domain="Example.COM", protocol="HTTPS"))

        assert normalized.domain == "example.com"
        assert normalized.protocol == "https"
        assert normalized.path == "/*"

    def test_pattern_to_string(self):
        """Patterns render as URL-like strings."""
        pattern = URLPattern(domain="example.com", protocol="https", path="/api", port="8443", query="a=1")

        assert pattern_to_string(pattern) == "https://example.com:8443/api?a=1"
        assert pattern_to_string(URLPattern(domain="example.com")) == "*://example.com"

    def test_parse_url_to_pattern(self):
        """A concrete URL becomes an exact pattern that matches itself perfectly."""
        url = "https://example.com:8443/api/users?id=7"
        pattern = parse_url_to_pattern(url)

        assert pattern == URLPattern(domain="example.com", protocol="https", path="/api/users", port="8443", query="id=7")
        assert match_url_pattern(url, pattern).score == pytest.approx(1.0)

    def test_parse_url_to_pattern_malformed(self):
        """Malformed URLs give no pattern."""
        assert parse_url_to_pattern("not a url") is None

    def test_specificity_ranking(self):
        """Exact patterns rank above wildcard ones."""
        exact = URLPattern(domain="api.example.com", protocol="https", path="/v1/users")
        wildcard = URLPattern(domain="*.example.com", path="/*")
        catch_all = URLPattern(domain="*")

        assert calculate_specificity(exact) > calculate_specificity(wildcard) > calculate_specificity(catch_all)
        assert specificity_level(exact) == "high"
        assert specificity_level(catch_all) == "low"

    def test_too_restrictive(self):
        """More than two pinned parts is flagged."""
        pinned = URLPattern(domain="example.com", path="/login", port="443", query="next=home")

        assert is_pattern_too_restrictive(pinned) is True
        assert is_pattern_too_restrictive(URLPattern(domain="example.com", path="/*")) is False
