"""
Per-rule execution timing.
"""

import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Dict, Any, Optional, List


@dataclass
class RuleTimer:
    rule_id: str
    started_at: float


@dataclass
class RuleMetrics:
    rule_id: str
    executions: int = 0
    total_ms: float = 0.0
    min_ms: Optional[float] = None
    max_ms: float = 0.0
    last_ms: float = 0.0

    @property
    def average_ms(self) -> float:
        return self.total_ms / self.executions if self.executions else 0.0

    def record(self, duration_ms: float):
        self.executions += 1
        self.total_ms += duration_ms
        self.last_ms = duration_ms
        self.max_ms = max(self.max_ms, duration_ms)
        self.min_ms = duration_ms if self.min_ms is None else min(self.min_ms, duration_ms)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rule_id": self.rule_id,
            "executions": self.executions,
            "average_ms": round(self.average_ms, 3),
            "min_ms": round(self.min_ms or 0.0, 3),
            "max_ms": round(self.max_ms, 3),
            "last_ms": round(self.last_ms, 3),
        }


class PerformanceMonitor:
    """Collects execution time per rule, for at most ``max_tracked_rules`` recently executed rules."""

    def __init__(self, max_tracked_rules: int = 1000):
        self.max_tracked_rules = max_tracked_rules
        self._metrics: "OrderedDict[str, RuleMetrics]" = OrderedDict()

    def start_rule_execution(self, rule_id: str) -> RuleTimer:
        return RuleTimer(rule_id=rule_id, started_at=time.perf_counter())

    def end_rule_execution(self, timer: RuleTimer) -> float:
        """Stop ``timer`` and return the elapsed milliseconds."""
        duration_ms = (time.perf_counter() - timer.started_at) * 1000
        metrics = self._metrics.get(timer.rule_id)
        if metrics is None:
            metrics = self._metrics[timer.rule_id] = RuleMetrics(rule_id=timer.rule_id)
        else:
            self._metrics.move_to_end(timer.rule_id)
        metrics.record(duration_ms)
        while len(self._metrics) > self.max_tracked_rules:
            self._metrics.popitem(last=False)
        return duration_ms

    def get_rule_metrics(self, rule_id: str) -> Optional[RuleMetrics]:
        return self._metrics.get(rule_id)

    def get_slowest_rules(self, limit: int = 5) -> List[RuleMetrics]:
        return sorted(self._metrics.values(), key=lambda m: m.average_ms, reverse=True)[:limit]

    def reset(self):
        self._metrics.clear()
