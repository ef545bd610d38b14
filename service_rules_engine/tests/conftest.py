"""
Shared fixtures for rules engine tests.
"""

import itertools
from typing import Any, Dict, List, Optional

import pytest

from service_rules_engine.app.rules.models import Rule


@pytest.fixture
def rule_factory():
    """Build ``Rule`` objects from compact keyword arguments."""
    counter = itertools.count(1)

    def make_rule(
        rule_id: Optional[str] = None,
        domain: str = "example.com",
        headers: Optional[List[Dict[str, Any]]] = None,
        **overrides: Any
    ) -> Rule:
        rule_id = rule_id or f"rule-{next(counter)}"
        record: Dict[str, Any] = {
            "id": rule_id,
            "name": overrides.pop("name", f"Rule {rule_id}"),
            "pattern": {"domain": domain, **overrides.pop("pattern", {})},
            "headers": headers if headers is not None else [{"name": "X-Test", "value": rule_id}],
        }
        record.update(overrides)
        return Rule.from_dict(record)

    return make_rule
