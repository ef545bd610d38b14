"""
Unit tests for the platform client and dynamic rules updater.
"""

import pytest
from unittest.mock import AsyncMock, MagicMock

from service_rules_engine.app.rules.models import (
    PlatformRule, PlatformRuleCondition, PlatformRuleAction, PlatformHeaderAction,
    HeaderOperation, UNASSIGNED_PROFILE
)
from service_rules_engine.app.variables.models import VariableContext
from service_rules_engine.app.conversion.converter import PlatformRuleConverter
from service_rules_engine.app.conversion.platform import (
    InMemoryPlatformClient, DynamicRulesUpdater, PlatformRulesClient
)
from shared.errors import PlatformUpdateError


def _platform_rule(rule_id: int) -> PlatformRule:
    return PlatformRule(
        id=rule_id,
        condition=PlatformRuleCondition(url_filter="*://example.com/*", resource_types=["main_frame"]),
        action=PlatformRuleAction(request_headers=[
            PlatformHeaderAction(header="X-Test", operation=HeaderOperation.SET, value=str(rule_id))
        ])
    )


class TestInMemoryPlatformClient:
    """Test cases for InMemoryPlatformClient."""

    @pytest.fixture
    def client(self):
        """Create InMemoryPlatformClient instance."""
        return InMemoryPlatformClient()

    @pytest.mark.asyncio
    async def test_replace_all(self, client):
        """Removing and adding in one call replaces the rule set."""
        await client.update_dynamic_rules([], [_platform_rule(1), _platform_rule(2)])
        await client.update_dynamic_rules([1, 2], [_platform_rule(1)])

        rules = await client.get_dynamic_rules()

        assert [r.id for r in rules] == [1]
        assert client.update_count == 2

    @pytest.mark.asyncio
    async def test_duplicate_id_rejected_atomically(self, client):
        """A rejected update leaves the installed rules untouched."""
        await client.update_dynamic_rules([], [_platform_rule(1)])

        with pytest.raises(PlatformUpdateError):
            await client.update_dynamic_rules([], [_platform_rule(2), _platform_rule(1)])

        assert [r.id for r in await client.get_dynamic_rules()] == [1]

    @pytest.mark.asyncio
    async def test_limit_enforced(self):
        """The client rejects more rules than its limit."""
        client = InMemoryPlatformClient(max_rules=1)

        with pytest.raises(PlatformUpdateError):
            await client.update_dynamic_rules([], [_platform_rule(1), _platform_rule(2)])


class TestDynamicRulesUpdater:
    """Test cases for DynamicRulesUpdater."""

    @pytest.fixture
    def client(self):
        """Create an in-memory platform client."""
        return InMemoryPlatformClient()

    @pytest.fixture
    def metrics(self):
        """Mock metrics collector."""
        return MagicMock()

    @pytest.fixture
    def updater(self, client, metrics):
        """Create DynamicRulesUpdater instance."""
        return DynamicRulesUpdater(client, PlatformRuleConverter(), metrics)

    @pytest.mark.asyncio
    async def test_sync_installs_converted_rules(self, updater, client, metrics, rule_factory):
        """Enabled sync installs the converted rules."""
        rules = [rule_factory("r1"), rule_factory("r2")]

        result = await updater.sync(True, rules, UNASSIGNED_PROFILE, VariableContext())

        assert result.success is True
        assert result.added == 2
        assert result.removed == 0
        assert len(await client.get_dynamic_rules()) == 2
        metrics.set_active_platform_rules.assert_called_with(2)

    @pytest.mark.asyncio
    async def test_sync_replaces_existing_rules(self, updater, client, rule_factory):
        """A second sync removes everything installed by the first."""
        await updater.sync(True, [rule_factory("r1"), rule_factory("r2")], UNASSIGNED_PROFILE, VariableContext())

        result = await updater.sync(True, [rule_factory("r3")], UNASSIGNED_PROFILE, VariableContext())

        assert result.removed == 2
        assert result.added == 1
        installed = await client.get_dynamic_rules()
        assert [r.action.request_headers[0].value for r in installed] == ["r3"]

    @pytest.mark.asyncio
    async def test_disabled_removes_everything(self, updater, client, metrics, rule_factory):
        """When the engine is disabled all platform rules are removed."""
        await updater.sync(True, [rule_factory("r1")], UNASSIGNED_PROFILE, VariableContext())

        result = await updater.sync(False, [rule_factory("r1")], UNASSIGNED_PROFILE, VariableContext())

        assert result.success is True
        assert result.enabled is False
        assert result.removed == 1
        assert await client.get_dynamic_rules() == []
        metrics.set_active_platform_rules.assert_called_with(0)

    @pytest.mark.asyncio
    async def test_platform_failure_reported_not_raised(self, metrics, rule_factory):
        """Host failures come back in the result."""
        client = AsyncMock(spec=PlatformRulesClient)
        client.get_dynamic_rules.return_value = []
        client.update_dynamic_rules.side_effect = PlatformUpdateError("quota exceeded")
        updater = DynamicRulesUpdater(client, PlatformRuleConverter(), metrics)

        result = await updater.sync(True, [rule_factory("r1")], UNASSIGNED_PROFILE, VariableContext())

        assert result.success is False
        assert "quota exceeded" in result.error
        metrics.record_error.assert_called_once_with("platform_update")

    @pytest.mark.asyncio
    async def test_result_to_dict(self, updater, rule_factory):
        """Results serialize with the conversion diagnostics."""
        result = await updater.sync(True, [rule_factory("r1")], UNASSIGNED_PROFILE, VariableContext())

        data = result.to_dict()

        assert data["success"] is True
        assert data["conversion"]["rules"][0]["id"] == 1
