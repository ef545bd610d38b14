"""
Analytics port for rule usage and errors.

The converter and processor receive an ``AnalyticsMonitor`` instead of
reaching for a process-wide singleton.
"""

from abc import ABC, abstractmethod
from collections import OrderedDict, deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Any, Optional, List, Sequence

from shared.logging import get_logger
from shared.metrics import MetricsCollector
from ..rules.models import Rule


@dataclass
class RuleUsageRecord:
    rule_id: str
    rule_name: str
    success: bool
    execution_time_ms: float
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class ErrorRecord:
    error_type: str
    message: str
    rule_id: Optional[str] = None
    severity: str = "medium"
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class AnalyticsMonitor(ABC):
    """Receives rule usage and error events."""

    @abstractmethod
    async def update_rule_stats(self, rules: Sequence[Rule]) -> None:
        """Record the rule set a conversion pass is about to process."""

    @abstractmethod
    async def track_rule_usage(
        self, rule_id: str, rule_name: str, success: bool, execution_time_ms: float
    ) -> None:
        """Record one rule being converted or matched."""

    @abstractmethod
    async def track_error(
        self, error_type: str, message: str, rule_id: Optional[str] = None, severity: str = "medium"
    ) -> None:
        """Record an error attributed to a rule (or to the engine)."""


class MetricsAnalyticsMonitor(AnalyticsMonitor):
    """Keeps recent usage and error records in memory and feeds Prometheus metrics."""

    def __init__(
        self,
        metrics: Optional[MetricsCollector] = None,
        max_records: int = 1000,
        max_tracked_rules: int = 1000
    ):
        self.metrics = metrics
        self.max_tracked_rules = max_tracked_rules
        self.logger = get_logger("rules_engine.analytics")
        self.usage: deque = deque(maxlen=max_records)
        self.errors: deque = deque(maxlen=max_records)
        self.rule_counts: "OrderedDict[str, int]" = OrderedDict()
        self.total_rules = 0
        self.enabled_rules = 0

    async def update_rule_stats(self, rules: Sequence[Rule]) -> None:
        self.total_rules = len(rules)
        self.enabled_rules = len([r for r in rules if r.enabled])

    async def track_rule_usage(
        self, rule_id: str, rule_name: str, success: bool, execution_time_ms: float
    ) -> None:
        self.usage.append(RuleUsageRecord(rule_id, rule_name, success, execution_time_ms))
        self.rule_counts[rule_id] = self.rule_counts.get(rule_id, 0) + 1
        self.rule_counts.move_to_end(rule_id)
        # Least recently used rules are forgotten first
        while len(self.rule_counts) > self.max_tracked_rules:
            self.rule_counts.popitem(last=False)

        if self.metrics is not None:
            self.metrics.record_rule_conversion(success, execution_time_ms / 1000)

    async def track_error(
        self, error_type: str, message: str, rule_id: Optional[str] = None, severity: str = "medium"
    ) -> None:
        self.errors.append(ErrorRecord(error_type, message, rule_id, severity))
        self.logger.warning(
            "Rule error tracked",
            error_type=error_type,
            message=message,
            rule_id=rule_id,
            severity=severity
        )

        if self.metrics is not None:
            self.metrics.record_error(error_type)

    def get_summary(self) -> Dict[str, Any]:
        """Usage and error totals, most used rules first."""
        top_rules: List[Dict[str, Any]] = [
            {"rule_id": rule_id, "count": count}
            for rule_id, count in sorted(self.rule_counts.items(), key=lambda item: item[1], reverse=True)[:10]
        ]
        return {
            "total_rules": self.total_rules,
            "enabled_rules": self.enabled_rules,
            "usage_events": len(self.usage),
            "failed_usage_events": len([u for u in self.usage if not u.success]),
            "error_events": len(self.errors),
            "top_rules": top_rules,
        }
