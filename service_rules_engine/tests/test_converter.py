"""
Unit tests for the rule-to-platform converter.
"""

import dataclasses

import pytest
from unittest.mock import AsyncMock, MagicMock

from service_rules_engine.app.rules.models import (
    URLPattern, ConversionSettings, UNASSIGNED_PROFILE
)
from service_rules_engine.app.variables.models import Variable, VariableScope, VariableContext
from service_rules_engine.app.variables.resolver import VariableResolver
from service_rules_engine.app.conversion.cache import ResolutionCache
from service_rules_engine.app.conversion.converter import (
    PlatformRuleConverter, build_url_filter, is_valid_header_name
)
from service_rules_engine.app.monitoring.analytics import AnalyticsMonitor, MetricsAnalyticsMonitor
from service_rules_engine.app.monitoring.performance import PerformanceMonitor
from shared.config import DEFAULT_RESOURCE_TYPES


class TestPlatformRuleConverter:
    """Test cases for PlatformRuleConverter."""

    @pytest.fixture
    def converter(self):
        """Create PlatformRuleConverter instance."""
        return PlatformRuleConverter()

    @pytest.fixture
    def context(self):
        """Variable context with a global token."""
        return VariableContext.build(
            global_variables=[Variable(name="token", value="abc123", scope=VariableScope.GLOBAL)]
        )

    @pytest.mark.asyncio
    async def test_scenario_named_profile(self, converter, context, rule_factory):
        """Only the active profile's rule is converted."""
        rules = [
            rule_factory("dev", headers=[{"name": "X-Env", "value": "dev"}], profileId="dev"),
            rule_factory("prod", headers=[{"name": "X-Env", "value": "prod"}], profileId="prod"),
        ]

        result = await converter.convert(rules, "dev", context)

        assert len(result.rules) == 1
        headers = result.rules[0].to_platform()["action"]["requestHeaders"]
        assert headers == [{"header": "X-Env", "operation": "set", "value": "dev"}]

    @pytest.mark.asyncio
    async def test_scenario_unassigned_profile(self, converter, context, rule_factory):
        """An empty profile id is visible under ``unassigned``."""
        rules = [rule_factory("r1", profileId="")]

        assert len(await converter.convert_rules(rules, UNASSIGNED_PROFILE, context)) == 1

    @pytest.mark.asyncio
    async def test_scenario_unassigned_rule_hidden_from_named_profile(self, converter, context, rule_factory):
        """Unassigned rules are not applied under a named profile."""
        rules = [rule_factory("r1", profileId="")]

        assert await converter.convert_rules(rules, "dev", context) == []

    @pytest.mark.asyncio
    async def test_disabled_rules_skipped(self, converter, context, rule_factory):
        """Disabled rules are never converted."""
        rules = [rule_factory("r1", enabled=False)]

        assert await converter.convert_rules(rules, UNASSIGNED_PROFILE, context) == []

    @pytest.mark.asyncio
    async def test_platform_rule_shape(self, converter, context, rule_factory):
        """Platform rules serialize to the host's exact format."""
        rules = [rule_factory(
            "r1",
            headers=[{"name": "X-Test", "value": "1"}],
            pattern={"protocol": "https", "path": "/api"},
        )]

        platform_rules = await converter.convert_rules(rules, UNASSIGNED_PROFILE, context)

        assert platform_rules[0].to_platform() == {
            "id": 1,
            "priority": 1,
            "condition": {
                "urlFilter": "https://example.com/api*",
                "resourceTypes": DEFAULT_RESOURCE_TYPES,
            },
            "action": {
                "type": "modifyHeaders",
                "requestHeaders": [{"header": "X-Test", "operation": "set", "value": "1"}],
            },
        }

    @pytest.mark.asyncio
    async def test_headers_partitioned_by_target(self, converter, context, rule_factory):
        """Response headers go to ``responseHeaders``; removals carry no value."""
        rules = [rule_factory("r1", headers=[
            {"name": "X-Request", "value": "a"},
            {"name": "X-Response", "value": "b", "target": "response"},
            {"name": "Cookie", "operation": "remove"},
        ])]

        platform_rule = (await converter.convert_rules(rules, UNASSIGNED_PROFILE, context))[0].to_platform()

        assert platform_rule["action"]["requestHeaders"] == [
            {"header": "X-Request", "operation": "set", "value": "a"},
            {"header": "Cookie", "operation": "remove"},
        ]
        assert platform_rule["action"]["responseHeaders"] == [
            {"header": "X-Response", "operation": "set", "value": "b"},
        ]

    @pytest.mark.asyncio
    async def test_template_values_resolved(self, converter, context, rule_factory):
        """``Bearer ${token}`` becomes ``Bearer abc123``."""
        rules = [rule_factory("r1", headers=[{"name": "Authorization", "value": "Bearer ${token}"}])]

        result = await converter.convert(rules, UNASSIGNED_PROFILE, context)

        header = result.rules[0].action.request_headers[0]
        assert header.value == "Bearer abc123"
        assert result.rules_with_templates == 1

    @pytest.mark.asyncio
    async def test_unresolved_template_kept(self, converter, context, rule_factory):
        """A template that cannot be resolved is still emitted."""
        rules = [rule_factory("r1", headers=[{"name": "X-Key", "value": "${missing}"}])]

        platform_rules = await converter.convert_rules(rules, UNASSIGNED_PROFILE, context)

        assert platform_rules[0].action.request_headers[0].value == "${missing}"

    @pytest.mark.asyncio
    async def test_resolver_failure_keeps_original_value(self, context, rule_factory):
        """A raising resolver does not drop the header."""
        resolver = MagicMock(spec=VariableResolver)
        resolver.resolve = AsyncMock(side_effect=RuntimeError("boom"))
        converter = PlatformRuleConverter(resolver=resolver)
        rules = [rule_factory("r1", headers=[{"name": "Authorization", "value": "Bearer ${token}"}])]

        result = await converter.convert(rules, UNASSIGNED_PROFILE, context)

        assert result.rules[0].action.request_headers[0].value == "Bearer ${token}"
        assert result.errors == {}

    @pytest.mark.asyncio
    async def test_cache_hit_skips_resolution(self, context, rule_factory):
        """Cached resolutions are reused within a pass."""
        resolver = MagicMock(spec=VariableResolver)
        resolver.resolve = AsyncMock()
        converter = PlatformRuleConverter(resolver=resolver)
        cache = ResolutionCache()
        cache.set(
            ResolutionCache.make_key("r1", "request", "Authorization", "Bearer ${token}", context.fingerprint()),
            "Bearer cached"
        )
        rules = [rule_factory("r1", headers=[{"name": "Authorization", "value": "Bearer ${token}"}])]

        result = await converter.convert(rules, UNASSIGNED_PROFILE, context, cache=cache)

        assert result.rules[0].action.request_headers[0].value == "Bearer cached"
        resolver.resolve.assert_not_awaited()
        assert cache.hits == 1

    @pytest.mark.asyncio
    async def test_shared_cache_sees_changed_variables(self, converter, rule_factory):
        """A cache reused across passes does not serve values from an older context."""
        cache = ResolutionCache()
        rules = [rule_factory("r1", headers=[{"name": "Authorization", "value": "Bearer ${token}"}])]
        first = VariableContext.build(
            global_variables=[Variable(name="token", value="abc", scope=VariableScope.GLOBAL)]
        )
        second = VariableContext.build(
            global_variables=[Variable(name="token", value="xyz", scope=VariableScope.GLOBAL)]
        )

        await converter.convert(rules, UNASSIGNED_PROFILE, first, cache=cache)
        result = await converter.convert(rules, UNASSIGNED_PROFILE, second, cache=cache)

        assert result.rules[0].action.request_headers[0].value == "Bearer xyz"
        assert cache.hits == 0

    @pytest.mark.asyncio
    async def test_invalid_header_names_drop_rule(self, converter, context, rule_factory):
        """A rule whose headers are all invalid is skipped entirely."""
        rules = [rule_factory("r1", headers=[
            {"name": "Bad Header", "value": "x"},
            {"name": "-leading", "value": "x"},
            {"name": "_under", "value": "x"},
            {"name": "", "value": "x"},
        ])]

        result = await converter.convert(rules, UNASSIGNED_PROFILE, context)

        assert result.rules == []
        assert result.skipped == {"r1": "No valid headers"}

    @pytest.mark.asyncio
    async def test_invalid_headers_filtered(self, converter, context, rule_factory):
        """Valid headers survive alongside invalid ones."""
        rules = [rule_factory("r1", headers=[
            {"name": "Bad Header", "value": "x"},
            {"name": "X-Good", "value": "y"},
            {"name": "X-Empty", "value": ""},
        ])]

        platform_rules = await converter.convert_rules(rules, UNASSIGNED_PROFILE, context)

        assert [h.header for h in platform_rules[0].action.request_headers] == ["X-Good"]

    @pytest.mark.asyncio
    async def test_ids_are_sequential_positions(self, converter, context, rule_factory):
        """Ids follow output position, not input position."""
        rules = [
            rule_factory("r1"),
            rule_factory("r2", headers=[{"name": "bad name", "value": "x"}]),
            rule_factory("r3"),
        ]

        platform_rules = await converter.convert_rules(rules, UNASSIGNED_PROFILE, context)

        assert [r.id for r in platform_rules] == [1, 2]

    @pytest.mark.asyncio
    async def test_priority_sort_with_missing_priority(self, converter, context, rule_factory):
        """A rule without a priority sorts as priority 1."""
        unset = dataclasses.replace(rule_factory("unset"), priority=None)
        rules = [unset, rule_factory("high", priority=5)]
        settings = ConversionSettings(sort_by_priority=True)

        result = await converter.convert(rules, UNASSIGNED_PROFILE, context, settings)

        assert result.errors == {}
        assert [r.action.request_headers[0].value for r in result.rules] == ["high", "unset"]
        assert [r.priority for r in result.rules] == [5, 1]
        assert platform_rules[1].action.request_headers[0].value == "r3"

    @pytest.mark.asyncio
    async def test_truncates_to_max_rules(self, converter, context, rule_factory):
        """Exceeding the cap truncates from the tail."""
        rules = [rule_factory(f"r{i}") for i in range(1, 6)]

        result = await converter.convert(rules, UNASSIGNED_PROFILE, context, ConversionSettings(max_rules=3))

        assert len(result.rules) == 3
        assert result.truncated == 2
        assert [r.action.request_headers[0].value for r in result.rules] == ["r1", "r2", "r3"]

    @pytest.mark.asyncio
    async def test_priority_copied_and_clamped(self, converter, context, rule_factory):
        """Priority carries through; non-positive values become 1."""
        rules = [rule_factory("r1", priority=5), rule_factory("r2", priority=0)]

        platform_rules = await converter.convert_rules(rules, UNASSIGNED_PROFILE, context)

        assert [r.priority for r in platform_rules] == [5, 1]

    @pytest.mark.asyncio
    async def test_input_order_kept_by_default(self, converter, context, rule_factory):
        """Without sorting, input order decides output order."""
        rules = [rule_factory("low", priority=1), rule_factory("high", priority=10)]

        platform_rules = await converter.convert_rules(rules, UNASSIGNED_PROFILE, context)

        assert [r.priority for r in platform_rules] == [1, 10]

    @pytest.mark.asyncio
    async def test_optional_priority_sort(self, converter, context, rule_factory):
        """Priority sorting puts the highest priority first."""
        rules = [rule_factory("low", priority=1), rule_factory("high", priority=10)]
        settings = ConversionSettings(sort_by_priority=True)

        platform_rules = await converter.convert_rules(rules, UNASSIGNED_PROFILE, context, settings)

        assert [r.priority for r in platform_rules] == [10, 1]
        assert [r.id for r in platform_rules] == [1, 2]

    @pytest.mark.asyncio
    async def test_rule_resource_types(self, converter, context, rule_factory):
        """Rule resource types override the defaults."""
        rules = [rule_factory("r1", resourceTypes=["script"])]

        platform_rules = await converter.convert_rules(rules, UNASSIGNED_PROFILE, context)

        assert platform_rules[0].condition.resource_types == ["script"]

    @pytest.mark.asyncio
    async def test_rule_error_isolated(self, context, rule_factory):
        """One broken rule does not abort the pass."""
        analytics = AsyncMock(spec=AnalyticsMonitor)
        converter = PlatformRuleConverter(analytics=analytics)
        rules = [rule_factory("broken", domain=""), rule_factory("ok")]

        result = await converter.convert(rules, UNASSIGNED_PROFILE, context)

        assert len(result.rules) == 1
        assert "broken" in result.errors
        analytics.track_error.assert_awaited_once()
        assert analytics.track_error.await_args.kwargs["rule_id"] == "broken"
        analytics.update_rule_stats.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_analytics_failures_do_not_break_conversion(self, context, rule_factory):
        """A failing analytics backend is logged and conversion carries on."""
        analytics = AsyncMock(spec=AnalyticsMonitor)
        analytics.update_rule_stats.side_effect = RuntimeError("analytics down")
        analytics.track_rule_usage.side_effect = RuntimeError("analytics down")
        analytics.track_error.side_effect = RuntimeError("analytics down")
        converter = PlatformRuleConverter(analytics=analytics)
        rules = [rule_factory("broken", domain=""), rule_factory("ok")]

        result = await converter.convert(rules, UNASSIGNED_PROFILE, context)

        assert [r.action.request_headers[0].value for r in result.rules] == ["ok"]
        assert list(result.errors) == ["broken"]
        assert analytics.track_rule_usage.await_count == 2

    @pytest.mark.asyncio
    async def test_invalid_records_reported_as_errors(self, converter, context, rule_factory):
        """Records that failed to parse are listed with conversion errors."""
        result = await converter.convert(
            [rule_factory("r1")], UNASSIGNED_PROFILE, context, invalid_rules={"bad": "unparseable"}
        )

        assert len(result.rules) == 1
        assert result.errors == {"bad": "unparseable"}

    @pytest.mark.asyncio
    async def test_monitors_receive_usage(self, context, rule_factory):
        """Usage and timing are reported per rule."""
        analytics = MetricsAnalyticsMonitor()
        performance = PerformanceMonitor()
        converter = PlatformRuleConverter(analytics=analytics, performance=performance)

        await converter.convert([rule_factory("r1"), rule_factory("r2")], UNASSIGNED_PROFILE, context)

        assert analytics.rule_counts == {"r1": 1, "r2": 1}
        assert performance.get_rule_metrics("r1").executions == 1
        assert analytics.get_summary()["total_rules"] == 2

    @pytest.mark.asyncio
    async def test_accepts_mapping(self, converter, context, rule_factory):
        """Rule collections keyed by id are accepted."""
        rule = rule_factory("r1")

        assert len(await converter.convert_rules({rule.id: rule}, UNASSIGNED_PROFILE, context)) == 1


class TestUrlFilter:
    """Test cases for url filter construction."""

    @pytest.mark.parametrize("pattern,expected", [
        (URLPattern(domain="example.com"), "*://example.com/*"),
        (URLPattern(domain="example.com", protocol="*"), "*://example.com/*"),
        (URLPattern(domain="example.com", protocol="https", path="/*"), "https://example.com/*"),
        (URLPattern(domain="example.com", path="/api/*"), "*://example.com/api/*"),
        (URLPattern(domain="example.com", path="/api"), "*://example.com/api*"),
        (URLPattern(domain="example.com", path="api/v1"), "*://example.com/api/v1*"),
        (URLPattern(domain="*.example.com", protocol="http"), "http://*.example.com/*"),
    ])
    def test_build_url_filter(self, pattern, expected):
        """Url filters combine protocol, domain and path."""
        assert build_url_filter(pattern) == expected

    @pytest.mark.parametrize("name,valid", [
        ("X-Custom", True),
        ("Authorization", True),
        ("x123", True),
        ("Bad Header", False),
        ("-x", False),
        ("_x", False),
        ("X_Under", False),
        ("", False),
    ])
    def test_header_name_validation(self, name, valid):
        """Header names are alphanumeric with dashes."""
        assert is_valid_header_name(name) is valid
