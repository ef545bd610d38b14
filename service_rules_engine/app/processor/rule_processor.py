"""
Rule processor.

Runs the same selection and matching as the converter against a concrete
request, for introspection tooling. It never produces platform rules.
"""

import time
from datetime import datetime, timezone
from typing import Optional, List, Mapping

from shared.errors import RuleNotFoundError
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from ..rules.models import (
    Rule,
    RequestData,
    HeaderOperation,
    PatternMatchResult,
    MatchedRule,
    HeaderModification,
    HeaderAnalysis,
    RuleMatchResult,
    AnalysisResult,
    TestRuleMatchResult,
)
from ..rules.conditions import ConditionEvaluator
from ..rules.profiles import ProfileRuleSelector, RuleCollection
from ..matching.pattern_matcher import URLPatternMatcher
from ..variables.models import VariableContext
from ..variables.resolver import VariableResolver, build_request_context
from .stats import RuleStatsTracker


PARTIAL_MATCH_FACTOR = 0.5


def _elapsed_ms(start_time: float) -> float:
    return round((time.perf_counter() - start_time) * 1000, 3)


class RuleProcessor:
    """Analyzes requests against the active rule set."""

    def __init__(
        self,
        matcher: Optional[URLPatternMatcher] = None,
        evaluator: Optional[ConditionEvaluator] = None,
        resolver: Optional[VariableResolver] = None,
        selector: Optional[ProfileRuleSelector] = None,
        stats: Optional[RuleStatsTracker] = None,
        metrics: Optional[MetricsCollector] = None
    ):
        self.matcher = matcher or URLPatternMatcher()
        self.evaluator = evaluator or ConditionEvaluator()
        self.resolver = resolver or VariableResolver(metrics=metrics)
        self.selector = selector or ProfileRuleSelector()
        self.stats = stats or RuleStatsTracker()
        self.metrics = metrics
        self.logger = get_logger("rules_engine.rule_processor")

    async def analyze_request(
        self,
        request: RequestData,
        rules: RuleCollection,
        active_profile: str,
        context: Optional[VariableContext] = None
    ) -> AnalysisResult:
        """Report which active rules match ``request`` and the headers they would change."""
        start_time = time.perf_counter()
        context = self._with_request(context or VariableContext(), request)

        matched_rules: List[MatchedRule] = []
        header_modifications: List[HeaderModification] = []

        for rule in self.selector.select(rules, active_profile):
            result = await self.analyze_rule_match(rule, request, context)
            if not result.matches:
                continue

            matched_rules.append(MatchedRule(
                rule_id=rule.id,
                rule_name=rule.name,
                match_score=result.score,
                execution_time=result.execution_time,
                priority=rule.priority
            ))

            for analysis in result.header_analysis:
                header_modifications.append(HeaderModification(
                    rule_id=rule.id,
                    rule_name=rule.name,
                    header_name=analysis.name,
                    header_value=analysis.original_value,
                    operation=analysis.operation,
                    target=analysis.target,
                    resolved_value=analysis.resolved_value
                ))

        execution_time = _elapsed_ms(start_time)
        self.stats.record_matches(matched_rules, execution_time)

        self.logger.info(
            "Request analyzed",
            url=request.url,
            method=request.method,
            active_profile=active_profile,
            matched_rules=len(matched_rules),
            execution_time_ms=execution_time
        )

        return AnalysisResult(
            url=request.url,
            method=request.method,
            matched_rules=matched_rules,
            header_modifications=header_modifications,
            execution_time=execution_time,
            timestamp=datetime.now(timezone.utc).isoformat()
        )

    async def test_rule_match(
        self,
        rule_id: str,
        url: str,
        request: Optional[RequestData],
        rules: Mapping[str, Rule],
        context: Optional[VariableContext] = None
    ) -> TestRuleMatchResult:
        """Test one rule against ``url``; raises ``RuleNotFoundError`` for an unknown id."""
        rule = rules.get(rule_id)
        if rule is None:
            raise RuleNotFoundError(rule_id)

        test_request = RequestData(
            url=url,
            method=(request.method if request else None) or "GET",
            headers=dict(request.headers) if request else {},
            tab_id=request.tab_id if request else None
        )
        context = self._with_request(context or VariableContext(), test_request)
        result = await self.analyze_rule_match(rule, test_request, context)

        return TestRuleMatchResult(
            rule_id=rule.id,
            rule_name=rule.name,
            test_url=url,
            matches=result.matches,
            match_score=result.score,
            execution_time=result.execution_time,
            match_details=result.match_details,
            conditions_match=result.conditions_match,
            applied_headers=list(rule.headers) if result.matches else []
        )

    async def analyze_rule_match(
        self, rule: Rule, request: RequestData, context: VariableContext
    ) -> RuleMatchResult:
        """Match one rule against one request, resolving its header values."""
        start_time = time.perf_counter()

        try:
            url_match = self.matcher.match(request.url, rule.pattern)
            if not url_match.matches:
                self._record_match(False)
                return RuleMatchResult(
                    matches=False,
                    score=0.0,
                    execution_time=_elapsed_ms(start_time),
                    match_details=url_match
                )

            header_analysis = await self._analyze_headers(rule, context)

            if rule.conditions and not self.evaluator.evaluate(rule.conditions, request):
                self._record_match(False)
                return RuleMatchResult(
                    matches=False,
                    score=round(url_match.score * PARTIAL_MATCH_FACTOR, 4),
                    execution_time=_elapsed_ms(start_time),
                    match_details=url_match,
                    conditions_match=False,
                    header_analysis=header_analysis
                )

            self._record_match(True)
            return RuleMatchResult(
                matches=True,
                score=url_match.score,
                execution_time=_elapsed_ms(start_time),
                match_details=url_match,
                conditions_match=True if rule.conditions else None,
                header_analysis=header_analysis
            )

        except Exception as e:
            self.logger.error("Error analyzing rule match", rule_id=rule.id, error=str(e))
            self.stats.record_error(rule.id, str(e))
            return RuleMatchResult(
                matches=False,
                score=0.0,
                execution_time=_elapsed_ms(start_time),
                match_details=PatternMatchResult(matches=False, score=0.0, error=str(e))
            )

    async def _analyze_headers(self, rule: Rule, context: VariableContext) -> List[HeaderAnalysis]:
        analysis: List[HeaderAnalysis] = []
        for header in rule.headers:
            resolved_value = header.value
            resolution_error = None

            if header.operation != HeaderOperation.REMOVE and header.value:
                resolution = await self.resolver.resolve(header.value, context)
                resolved_value = resolution.value
                if resolution.error:
                    resolution_error = resolution.error
                elif not resolution.success:
                    resolution_error = "Unresolved: " + ", ".join(resolution.unresolved_variables)

            analysis.append(HeaderAnalysis(
                name=header.name,
                original_value=header.value,
                resolved_value=resolved_value,
                operation=header.operation.value,
                target=header.target.value,
                resolution_error=resolution_error
            ))
        return analysis

    @staticmethod
    def _with_request(context: VariableContext, request: RequestData) -> VariableContext:
        return context.with_request(
            build_request_context(request.url, request.method, request.headers, request.tab_id)
        )

    def _record_match(self, matched: bool):
        if self.metrics is not None:
            self.metrics.increment_counter("rule_matches_total", matched=str(matched).lower())
