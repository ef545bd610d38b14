"""
Rule condition evaluator.
"""

import re
from typing import Dict, Optional, Sequence

from shared.logging import get_logger
from .models import RuleCondition, RequestData, ConditionType, ConditionOperator


class ConditionEvaluator:
    """Evaluates a rule's auxiliary conditions against a request.

    Conditions are AND-combined. Condition types the evaluator does not
    handle evaluate to true, so rules written for newer condition types
    keep working rather than silently switching off.
    """

    def __init__(self):
        self.logger = get_logger("rules_engine.condition_evaluator")

    def evaluate(self, conditions: Optional[Sequence[RuleCondition]], request: RequestData) -> bool:
        """Return True only when every condition holds."""
        if not conditions:
            return True

        try:
            for condition in conditions:
                if not self.evaluate_condition(condition, request):
                    return False
            return True
        except Exception as e:
            self.logger.error("Error evaluating conditions", error=str(e))
            return False

    def evaluate_condition(self, condition: RuleCondition, request: RequestData) -> bool:
        """Evaluate a single condition."""
        try:
            if condition.type == ConditionType.REQUEST_METHOD.value:
                return self._evaluate_method(condition, request.method or "")

            elif condition.type == ConditionType.HEADER.value:
                return self._evaluate_header(condition, request.headers or {})

            elif condition.type == ConditionType.URL.value:
                return self._evaluate_url(condition, request.url or "")

            else:
                self.logger.warning(
                    "Unsupported condition type, treating as satisfied",
                    condition_type=condition.type,
                    operator=condition.operator
                )
                return True

        except Exception as e:
            self.logger.error(
                "Error evaluating condition",
                condition_type=condition.type,
                operator=condition.operator,
                error=str(e)
            )
            return False

    def _evaluate_method(self, condition: RuleCondition, method: str) -> bool:
        expected = str(condition.value)

        if condition.operator == ConditionOperator.EQUALS.value:
            return method == expected

        elif condition.operator == ConditionOperator.CONTAINS.value:
            return expected.lower() in method.lower()

        return True

    def _evaluate_header(self, condition: RuleCondition, headers: Dict[str, str]) -> bool:
        header_name = condition.name or str(condition.value)
        header_value = _find_header(headers, header_name)

        if condition.operator == ConditionOperator.EXISTS.value:
            return bool(header_value)

        elif condition.operator == ConditionOperator.EQUALS.value:
            return header_value == str(condition.value)

        elif condition.operator == ConditionOperator.CONTAINS.value:
            return header_value is not None and str(condition.value) in header_value

        return True

    def _evaluate_url(self, condition: RuleCondition, url: str) -> bool:
        expected = str(condition.value)

        if condition.operator == ConditionOperator.CONTAINS.value:
            return expected in url

        elif condition.operator == ConditionOperator.REGEX.value:
            return re.search(expected, url) is not None

        return True


def _find_header(headers: Dict[str, str], name: str) -> Optional[str]:
    """Case-insensitive header lookup."""
    if name in headers:
        return headers[name]
    lowered = name.lower()
    for key, value in headers.items():
        if key.lower() == lowered:
            return value
    return None
