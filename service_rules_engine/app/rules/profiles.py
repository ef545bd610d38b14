"""
Profile rule selection.

Profile assignment is exact-match: a named profile sees only the rules
assigned to it, and the ``unassigned`` view sees only rules with no
profile. The two views are never combined.
"""

from typing import Dict, Iterable, List, Mapping, Union

from shared.logging import get_logger
from .models import Rule, UNASSIGNED_PROFILE


RuleCollection = Union[Mapping[str, Rule], Iterable[Rule]]


def _iter_rules(rules: RuleCollection) -> Iterable[Rule]:
    if isinstance(rules, Mapping):
        return rules.values()
    return rules


def is_rule_active(rule: Rule, active_profile: str) -> bool:
    """Whether ``rule`` applies under ``active_profile``."""
    if not rule.enabled:
        return False
    if active_profile == UNASSIGNED_PROFILE:
        return rule.is_unassigned
    return rule.profile_id == active_profile


class ProfileRuleSelector:
    """Selects the enabled rules applicable to the active profile."""

    def __init__(self):
        self.logger = get_logger("rules_engine.profile_selector")

    def select(self, rules: RuleCollection, active_profile: str) -> List[Rule]:
        """Return applicable rules, preserving input order."""
        all_rules = list(_iter_rules(rules))
        selected = [rule for rule in all_rules if is_rule_active(rule, active_profile)]

        self.logger.debug(
            "Rules selected for profile",
            active_profile=active_profile,
            total_rules=len(all_rules),
            selected_rules=len(selected)
        )
        return selected

    def count_rules_by_profile(self, rules: RuleCollection) -> Dict[str, int]:
        """Count rules per profile id; rules without one count as ``unassigned``."""
        counts: Dict[str, int] = {}
        for rule in _iter_rules(rules):
            key = rule.profile_id or UNASSIGNED_PROFILE
            counts[key] = counts.get(key, 0) + 1
        return counts

    def summarize_profile_switch(
        self, rules: RuleCollection, previous_profile: str, current_profile: str
    ) -> Dict[str, int]:
        """How many rules a switch from ``previous_profile`` activates and deactivates."""
        activated = 0
        deactivated = 0
        for rule in _iter_rules(rules):
            was_active = is_rule_active(rule, previous_profile)
            now_active = is_rule_active(rule, current_profile)
            if now_active and not was_active:
                activated += 1
            elif was_active and not now_active:
                deactivated += 1

        self.logger.info(
            "Profile switched",
            previous_profile=previous_profile,
            current_profile=current_profile,
            activated=activated,
            deactivated=deactivated
        )
        return {"activated": activated, "deactivated": deactivated}


def select_rules_for_profile(rules: RuleCollection, active_profile: str) -> List[Rule]:
    """Module-level shortcut for ``ProfileRuleSelector().select``."""
    return ProfileRuleSelector().select(rules, active_profile)
