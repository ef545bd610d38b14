"""
In-memory per-rule match statistics.
"""

from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Any, Optional, Iterable

from ..rules.models import MatchedRule


@dataclass
class RuleStats:
    rule_id: str
    match_count: int = 0
    average_execution_time: float = 0.0
    last_matched: Optional[datetime] = None
    error_count: int = 0
    last_error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ruleId": self.rule_id,
            "matchCount": self.match_count,
            "averageExecutionTime": round(self.average_execution_time, 3),
            "lastMatched": self.last_matched.isoformat() if self.last_matched else None,
            "errorCount": self.error_count,
            "lastError": self.last_error,
        }


class RuleStatsTracker:
    """Tracks how often rules match and how long analysis takes.

    At most ``max_tracked_rules`` rules are tracked; the least recently updated is
    dropped when a new one arrives.
    """

    def __init__(self, max_tracked_rules: int = 1000):
        self.max_tracked_rules = max_tracked_rules
        self._stats: "OrderedDict[str, RuleStats]" = OrderedDict()

    def _get_or_create(self, rule_id: str) -> RuleStats:
        stats = self._stats.get(rule_id)
        if stats is None:
            stats = self._stats[rule_id] = RuleStats(rule_id=rule_id)
            while len(self._stats) > self.max_tracked_rules:
                self._stats.popitem(last=False)
        else:
            self._stats.move_to_end(rule_id)
        return stats

    def record_matches(self, matched_rules: Iterable[MatchedRule], execution_time: float):
        """Count a match for each rule and fold ``execution_time`` into its running average."""
        now = datetime.now(timezone.utc)
        for matched in matched_rules:
            stats = self._get_or_create(matched.rule_id)
            stats.match_count += 1
            stats.last_matched = now
            stats.average_execution_time += (execution_time - stats.average_execution_time) / stats.match_count

    def record_error(self, rule_id: str, message: str):
        stats = self._get_or_create(rule_id)
        stats.error_count += 1
        stats.last_error = message

    def get(self, rule_id: str) -> Optional[RuleStats]:
        return self._stats.get(rule_id)

    def get_all(self) -> Dict[str, Dict[str, Any]]:
        return {rule_id: stats.to_dict() for rule_id, stats in self._stats.items()}

    def reset(self):
        self._stats.clear()
