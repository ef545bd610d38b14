"""
URL pattern utilities: validation, normalization, string forms and
specificity analysis.
"""

from typing import Dict, List, Optional
from urllib.parse import urlsplit

from ..rules.models import URLPattern
from .wildcards import count_wildcards, has_wildcards


VALID_PROTOCOLS = frozenset({"http", "https", "*"})


def validate_url_pattern(pattern: URLPattern) -> Dict[str, object]:
    """Validate a URL pattern, returning ``{"is_valid": bool, "errors": [...]}``."""
    errors: List[str] = []

    if not pattern.domain:
        errors.append("Domain is required")
    elif ".." in pattern.domain:
        errors.append("Invalid domain pattern")

    if pattern.protocol and pattern.protocol.lower() not in VALID_PROTOCOLS:
        errors.append("Invalid protocol")

    if pattern.path and not pattern.path.startswith("/"):
        errors.append("Path must start with /")

    if pattern.port and pattern.port != "*":
        try:
            port = int(pattern.port)
        except ValueError:
            port = 0
        if not 1 <= port <= 65535:
            errors.append("Port must be a number between 1 and 65535 or *")

    return {"is_valid": not errors, "errors": errors}


def normalize_url_pattern(pattern: URLPattern) -> URLPattern:
    """Lower-case domain and protocol and default the path to ``/*``."""
    return URLPattern(
        domain=pattern.domain.lower(),
        protocol=pattern.protocol.lower() if pattern.protocol else None,
        path=pattern.path or "/*",
        port=pattern.port or None,
        query=pattern.query or None,
    )


def pattern_to_string(pattern: URLPattern) -> str:
    protocol = pattern.protocol or "*"
    port = f":{pattern.port}" if pattern.port else ""
    query = f"?{pattern.query}" if pattern.query else ""
    return f"{protocol}://{pattern.domain}{port}{pattern.path or ''}{query}"


def parse_url_to_pattern(url: str) -> Optional[URLPattern]:
    """Build an exact pattern from a concrete URL; ``None`` when malformed."""
    try:
        parts = urlsplit(url)
        port = parts.port
    except ValueError:
        return None
    if not parts.scheme or not parts.hostname:
        return None
    return URLPattern(
        domain=parts.hostname,
        protocol=parts.scheme,
        path=parts.path or "/",
        port=str(port) if port is not None else None,
        query=parts.query or None,
    )


def calculate_specificity(pattern: URLPattern) -> int:
    """Points-based specificity used to rank patterns independent of any URL."""
    score = 0

    if pattern.protocol and pattern.protocol != "*":
        score += 10

    if pattern.domain:
        if pattern.domain == "*":
            score += 1
        elif pattern.domain.startswith("*."):
            score += 5
        else:
            score += 15

    if pattern.path:
        score += max(1, 10 - count_wildcards(pattern.path) * 2)

    if pattern.port and pattern.port != "*":
        score += 5

    if pattern.query:
        score += 3

    return score


def specificity_level(pattern: URLPattern) -> str:
    score = calculate_specificity(pattern)
    if score <= 5:
        return "low"
    if score <= 20:
        return "medium"
    return "high"


def sort_by_specificity(patterns: List[URLPattern]) -> List[URLPattern]:
    """Most specific first."""
    return sorted(patterns, key=calculate_specificity, reverse=True)


def is_pattern_too_restrictive(pattern: URLPattern) -> bool:
    """True when more than two parts are pinned to literal values."""
    specific = [
        bool(pattern.path and pattern.path != "/*" and not has_wildcards(pattern.path)),
        bool(pattern.query and not has_wildcards(pattern.query)),
        bool(pattern.port and pattern.port != "*"),
        bool(pattern.domain and not has_wildcards(pattern.domain)),
    ]
    return sum(specific) > 2
