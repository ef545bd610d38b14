"""
Rules engine diagnostics service for RequestKit.

Exposes conversion, request analysis, template resolution and platform
sync over HTTP. Callers supply the rule collection and variables with
each request; the service keeps no rule storage of its own.
"""

from typing import Dict, Any, Optional, Tuple

from shared.base_service import BaseService
from shared.errors import ValidationError

from .rules.models import (
    Rule,
    RequestData,
    ConversionSettings,
    parse_rules,
    ConvertRequest,
    AnalyzeRequest,
    TestMatchRequest,
    SyncRequest,
    ResolveTemplateRequest,
    ValidateTemplateRequest,
)
from .variables.models import VariableContext
from .variables.resolver import VariableResolver, validate_template, parse_template, build_request_context
from .conversion.cache import ResolutionCache
from .conversion.converter import PlatformRuleConverter
from .conversion.platform import InMemoryPlatformClient, DynamicRulesUpdater, PlatformRulesClient
from .processor.rule_processor import RuleProcessor
from .processor.stats import RuleStatsTracker
from .monitoring.analytics import MetricsAnalyticsMonitor
from .monitoring.performance import PerformanceMonitor


class RulesEngineService(BaseService):
    """Rules engine service implementation."""

    def __init__(self, platform_client: Optional[PlatformRulesClient] = None):
        super().__init__("rules_engine", 8015)

        self.analytics = MetricsAnalyticsMonitor(self.metrics, max_tracked_rules=self.config.max_tracked_rules)
        self.performance = PerformanceMonitor(max_tracked_rules=self.config.max_tracked_rules)
        self.rule_stats = RuleStatsTracker(max_tracked_rules=self.config.max_tracked_rules)
        self.resolver = VariableResolver(max_passes=self.config.resolution_max_passes, metrics=self.metrics)
        self.converter = PlatformRuleConverter(
            resolver=self.resolver,
            analytics=self.analytics,
            performance=self.performance,
            metrics=self.metrics
        )
        self.processor = RuleProcessor(resolver=self.resolver, stats=self.rule_stats, metrics=self.metrics)
        self.platform_client = platform_client or InMemoryPlatformClient(max_rules=self.config.max_rules)
        self.updater = DynamicRulesUpdater(self.platform_client, self.converter, self.metrics)

        self._setup_rules_engine_routes()

    def _setup_rules_engine_routes(self):
        """Set up rules engine routes."""

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": "rules_engine",
                "message": "RequestKit - Rule Matching & Resolution Engine",
                "version": "1.0.0",
                "capabilities": ["pattern_matching", "conditions", "variables", "platform_conversion"]
            }

        @self.app.post("/rules/convert")
        async def convert_rules(payload: ConvertRequest):
            """Convert rules for the active profile into platform rules."""
            rules, invalid = self._load_rules(payload.rules)
            result = await self.converter.convert(
                rules,
                payload.active_profile,
                self._load_context(payload.variables, payload.active_profile),
                payload.settings or self._default_settings(),
                self._new_cache(),
                invalid_rules=invalid
            )
            return result.to_dict()

        @self.app.post("/rules/analyze")
        async def analyze_request(payload: AnalyzeRequest):
            """Analyze a request against the active rules."""
            request = self._load_request(payload.request)
            result = await self.processor.analyze_request(
                request,
                self._load_rules(payload.rules)[0],
                payload.active_profile,
                self._load_context(payload.variables, payload.active_profile)
            )
            return result.to_dict()

        @self.app.post("/rules/test-match")
        async def test_rule_match(payload: TestMatchRequest):
            """Test a single rule against a URL."""
            request = self._load_request(payload.request) if payload.request else None
            result = await self.processor.test_rule_match(
                payload.rule_id,
                payload.url,
                request,
                self._load_rules(payload.rules)[0],
                self._load_context(payload.variables, payload.active_profile)
            )
            return result.to_dict()

        @self.app.post("/variables/resolve")
        async def resolve_template(payload: ResolveTemplateRequest):
            """Resolve a template against the supplied variables."""
            context = self._load_context(payload.variables)
            if payload.request:
                request = self._load_request(payload.request)
                context = context.with_request(
                    build_request_context(request.url, request.method, request.headers, request.tab_id)
                )
            result = await self.resolver.resolve(payload.template, context)
            return result.to_dict()

        @self.app.post("/variables/validate")
        async def validate(payload: ValidateTemplateRequest):
            """Validate template syntax and list its references."""
            validation = validate_template(payload.template)
            parsed = parse_template(payload.template)
            return {
                **validation,
                "variables": parsed.variables,
                "functions": [name for name, _ in parsed.functions],
            }

        @self.app.get("/variables/functions")
        async def list_functions():
            """List built-in template functions."""
            return {"functions": self.resolver.available_functions()}

        @self.app.post("/platform/sync")
        async def sync_platform(payload: SyncRequest):
            """Replace the installed platform rules with a fresh conversion."""
            enabled = self.config.rules_enabled if payload.enabled is None else payload.enabled
            rules, invalid = self._load_rules(payload.rules)
            result = await self.updater.sync(
                enabled,
                rules,
                payload.active_profile,
                self._load_context(payload.variables, payload.active_profile),
                payload.settings or self._default_settings(),
                self._new_cache(),
                invalid_rules=invalid
            )
            return result.to_dict()

        @self.app.get("/platform/rules")
        async def get_platform_rules():
            """Rules currently installed on the platform."""
            rules = await self.platform_client.get_dynamic_rules()
            return {"rules": [rule.to_platform() for rule in rules], "count": len(rules)}

        @self.app.get("/stats")
        async def get_stats():
            """Usage, timing and match statistics."""
            return {
                "analytics": self.analytics.get_summary(),
                "slowest_rules": [m.to_dict() for m in self.performance.get_slowest_rules()],
                "rule_stats": self.rule_stats.get_all(),
            }

    async def _check_dependencies(self) -> Dict[str, str]:
        await self.platform_client.get_dynamic_rules()
        return {"platform": "ok"}

    def _default_settings(self) -> ConversionSettings:
        return ConversionSettings.from_config(self.config)

    def _new_cache(self) -> ResolutionCache:
        return ResolutionCache(
            ttl_seconds=self.config.resolution_cache_ttl_seconds,
            max_entries=self.config.resolution_cache_max_entries
        )

    def _load_rules(self, records: Dict[str, Dict[str, Any]]) -> Tuple[Dict[str, Rule], Dict[str, str]]:
        """Parse the supplied rules, setting aside records that cannot be parsed."""
        invalid: Dict[str, str] = {}
        rules = parse_rules(records, invalid)
        if invalid:
            self.logger.warning("Skipping invalid rule records", rule_ids=list(invalid), errors=invalid)
        return rules, invalid

    @staticmethod
    def _load_context(variables: Dict[str, Any], profile_id: Optional[str] = None) -> VariableContext:
        try:
            data = dict(variables)
            if profile_id and "profileId" not in data:
                data["profileId"] = profile_id
            return VariableContext.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            raise ValidationError("Invalid variables payload", {"error": str(e)})

    @staticmethod
    def _load_request(data: Dict[str, Any]) -> RequestData:
        if not data.get("url"):
            raise ValidationError("Request url is required")
        return RequestData.from_dict(data)


def create_app():
    """Create rules engine service application."""
    service = RulesEngineService()
    return service.app


if __name__ == "__main__":
    service = RulesEngineService()
    service.run()
