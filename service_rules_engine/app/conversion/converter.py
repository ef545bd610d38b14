"""
Rule-to-platform converter.

Turns the rules applicable to the active profile into the declarative
rule list the host network-filtering platform enforces. Header templates
are resolved here because the platform cannot evaluate them.
"""

import re
import time
from dataclasses import dataclass, field
from typing import Dict, Any, Optional, List, Mapping, Tuple

from shared.errors import RuleConversionError
from shared.logging import get_logger, set_conversion_id, set_profile_context, clear_context
from shared.metrics import MetricsCollector
from ..rules.models import (
    Rule,
    HeaderEntry,
    HeaderOperation,
    HeaderTarget,
    URLPattern,
    PlatformRule,
    PlatformRuleCondition,
    PlatformRuleAction,
    PlatformHeaderAction,
    ConversionSettings,
)
from ..rules.profiles import ProfileRuleSelector, RuleCollection
from ..variables.models import VariableContext
from ..variables.resolver import VariableResolver, contains_template
from ..monitoring.analytics import AnalyticsMonitor
from ..monitoring.performance import PerformanceMonitor
from .cache import ResolutionCache


HEADER_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9-]+$")


def is_valid_header_name(name: str) -> bool:
    if not name or name[0] in ("-", "_"):
        return False
    return HEADER_NAME_PATTERN.match(name) is not None


def build_url_filter(pattern: URLPattern) -> str:
    """Build the platform url filter, e.g. ``*://example.com/api/*``."""
    protocol = pattern.protocol if pattern.protocol and pattern.protocol != "*" else "*"
    url_filter = f"{protocol}://{pattern.domain}"

    path = pattern.path
    if not path or path == "/*":
        return url_filter + "/*"

    if not path.startswith("/"):
        path = "/" + path
    # The platform treats filters as prefixes only when they end in a wildcard
    if "*" not in path:
        path += "*"
    return url_filter + path


@dataclass
class ConversionResult:
    """Platform rules produced by one conversion pass, plus diagnostics."""
    rules: List[PlatformRule] = field(default_factory=list)
    skipped: Dict[str, str] = field(default_factory=dict)
    errors: Dict[str, str] = field(default_factory=dict)
    truncated: int = 0
    rules_with_templates: int = 0
    duration_ms: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rules": [r.to_platform() for r in self.rules],
            "skipped": dict(self.skipped),
            "errors": dict(self.errors),
            "truncated": self.truncated,
            "rulesWithTemplates": self.rules_with_templates,
            "durationMs": self.duration_ms,
        }


class PlatformRuleConverter:
    """Converts engine rules into platform rules."""

    def __init__(
        self,
        resolver: Optional[VariableResolver] = None,
        selector: Optional[ProfileRuleSelector] = None,
        analytics: Optional[AnalyticsMonitor] = None,
        performance: Optional[PerformanceMonitor] = None,
        metrics: Optional[MetricsCollector] = None
    ):
        self.resolver = resolver or VariableResolver(metrics=metrics)
        self.selector = selector or ProfileRuleSelector()
        self.analytics = analytics
        self.performance = performance
        self.metrics = metrics
        self.logger = get_logger("rules_engine.converter")

    async def convert(
        self,
        rules: RuleCollection,
        active_profile: str,
        context: VariableContext,
        settings: Optional[ConversionSettings] = None,
        cache: Optional[ResolutionCache] = None,
        invalid_rules: Optional[Mapping[str, str]] = None
    ) -> ConversionResult:
        """Run one conversion pass. Failures of individual rules never abort the pass.

        ``invalid_rules`` maps ids of records that could not be parsed to the
        parse error; they are reported in ``errors`` alongside conversion failures.
        """
        start_time = time.perf_counter()
        settings = settings or ConversionSettings()
        cache = cache if cache is not None else ResolutionCache()
        result = ConversionResult()
        if invalid_rules:
            result.errors.update(invalid_rules)

        set_conversion_id()
        set_profile_context(active_profile)
        try:
            all_rules = list(rules.values()) if isinstance(rules, Mapping) else list(rules)
            selected = self.selector.select(all_rules, active_profile)

            await self._notify_analytics("update_rule_stats", all_rules)

            if settings.sort_by_priority:
                selected = sorted(selected, key=lambda r: r.priority or 1, reverse=True)

            context_hash = context.fingerprint()
            for rule in selected:
                await self._convert_one(rule, context, settings, cache, result, context_hash)

            if len(result.rules) > settings.max_rules:
                result.truncated = len(result.rules) - settings.max_rules
                self.logger.warning(
                    "Platform rule limit exceeded, truncating",
                    max_rules=settings.max_rules,
                    generated=len(result.rules),
                    dropped=result.truncated
                )
                result.rules = result.rules[:settings.max_rules]
                if self.metrics is not None:
                    self.metrics.record_truncation(result.truncated)

            result.duration_ms = round((time.perf_counter() - start_time) * 1000, 3)
            self.logger.info(
                "Rules converted",
                selected=len(selected),
                converted=len(result.rules),
                skipped=len(result.skipped),
                errors=len(result.errors),
                truncated=result.truncated,
                rules_with_templates=result.rules_with_templates,
                duration_ms=result.duration_ms
            )
            return result
        finally:
            clear_context()

    async def convert_rules(
        self,
        rules: RuleCollection,
        active_profile: str,
        context: VariableContext,
        settings: Optional[ConversionSettings] = None,
        cache: Optional[ResolutionCache] = None
    ) -> List[PlatformRule]:
        result = await self.convert(rules, active_profile, context, settings, cache)
        return result.rules

    async def _convert_one(
        self,
        rule: Rule,
        context: VariableContext,
        settings: ConversionSettings,
        cache: ResolutionCache,
        result: ConversionResult,
        context_hash: Optional[str] = None
    ):
        timer = self.performance.start_rule_execution(rule.id) if self.performance else None
        rule_start = time.perf_counter()
        success = False

        try:
            platform_rule, has_templates = await self.convert_rule(
                rule, len(result.rules) + 1, context, settings, cache, context_hash
            )
            if platform_rule is None:
                result.skipped[rule.id] = "No valid headers"
            else:
                result.rules.append(platform_rule)
                if has_templates:
                    result.rules_with_templates += 1
                success = True

        except Exception as e:
            result.errors[rule.id] = str(e)
            self.logger.error("Error converting rule", rule_id=rule.id, rule_name=rule.name, error=str(e))
            await self._notify_analytics("track_error", "rule_conversion", str(e), rule_id=rule.id, severity="high")

        finally:
            if timer is not None:
                duration_ms = self.performance.end_rule_execution(timer)
            else:
                duration_ms = (time.perf_counter() - rule_start) * 1000

        await self._notify_analytics("track_rule_usage", rule.id, rule.name, success, duration_ms)

    async def _notify_analytics(self, event: str, *args, **kwargs):
        """Forward to the analytics monitor; its failures are logged and never affect conversion."""
        if self.analytics is None:
            return
        try:
            await getattr(self.analytics, event)(*args, **kwargs)
        except Exception as e:
            self.logger.warning("Analytics update failed", analytics_event=event, error=str(e))

    async def convert_rule(
        self,
        rule: Rule,
        platform_id: int,
        context: VariableContext,
        settings: ConversionSettings,
        cache: ResolutionCache,
        context_hash: Optional[str] = None
    ) -> Tuple[Optional[PlatformRule], bool]:
        """Convert a single rule; returns ``(None, False)`` when it has no usable headers."""
        if rule.pattern is None or not rule.pattern.domain:
            raise RuleConversionError(rule.id, "Rule pattern has no domain")

        request_headers: List[PlatformHeaderAction] = []
        response_headers: List[PlatformHeaderAction] = []
        has_templates = False
        if context_hash is None:
            context_hash = context.fingerprint()

        for header in rule.headers:
            if not self._is_usable_header(rule, header):
                continue

            action, templated = await self._build_header_action(rule, header, context, cache, context_hash)
            has_templates = has_templates or templated
            if header.target == HeaderTarget.RESPONSE:
                response_headers.append(action)
            else:
                request_headers.append(action)

        if not request_headers and not response_headers:
            self.logger.warning("Rule has no valid headers, skipping", rule_id=rule.id, rule_name=rule.name)
            return None, False

        platform_rule = PlatformRule(
            id=platform_id,
            priority=max(1, rule.priority or 1),
            condition=PlatformRuleCondition(
                url_filter=build_url_filter(rule.pattern),
                resource_types=list(rule.resource_types or settings.default_resource_types)
            ),
            action=PlatformRuleAction(
                request_headers=request_headers or None,
                response_headers=response_headers or None
            )
        )
        return platform_rule, has_templates

    def _is_usable_header(self, rule: Rule, header: HeaderEntry) -> bool:
        if not is_valid_header_name(header.name):
            self.logger.warning("Invalid header name", rule_id=rule.id, header=header.name)
            return False
        if header.operation != HeaderOperation.REMOVE and not header.value:
            self.logger.warning("Header value missing", rule_id=rule.id, header=header.name)
            return False
        return True

    async def _build_header_action(
        self,
        rule: Rule,
        header: HeaderEntry,
        context: VariableContext,
        cache: ResolutionCache,
        context_hash: str
    ) -> Tuple[PlatformHeaderAction, bool]:
        if header.operation == HeaderOperation.REMOVE:
            return PlatformHeaderAction(header=header.name, operation=header.operation), False

        if not contains_template(header.value):
            return PlatformHeaderAction(header=header.name, operation=header.operation, value=header.value), False

        value = await self._resolve_header_value(rule, header, context, cache, context_hash)
        return PlatformHeaderAction(header=header.name, operation=header.operation, value=value), True

    async def _resolve_header_value(
        self,
        rule: Rule,
        header: HeaderEntry,
        context: VariableContext,
        cache: ResolutionCache,
        context_hash: str
    ) -> str:
        cache_key = cache.make_key(rule.id, header.target.value, header.name, header.value, context_hash)
        cached = cache.get(cache_key)
        if cached is not None:
            return cached

        try:
            resolution = await self.resolver.resolve(header.value, context)
        except Exception as e:
            self.logger.error(
                "Header template resolution failed, keeping original value",
                rule_id=rule.id,
                header=header.name,
                error=str(e)
            )
            return header.value

        if not resolution.success:
            self.logger.warning(
                "Header template partially unresolved",
                rule_id=rule.id,
                header=header.name,
                unresolved=resolution.unresolved_variables,
                error=resolution.error
            )

        cache.set(cache_key, resolution.value)
        return resolution.value
