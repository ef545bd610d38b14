"""
Hand-off of converted rules to the host platform.

The engine always computes the full desired rule set; the update is a
single remove-existing/add-new call rather than an incremental diff.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Any, Optional, List, Mapping

from shared.errors import PlatformUpdateError
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from ..rules.models import PlatformRule, ConversionSettings
from ..rules.profiles import RuleCollection
from ..variables.models import VariableContext
from .cache import ResolutionCache
from .converter import PlatformRuleConverter, ConversionResult


class PlatformRulesClient(ABC):
    """Port to the host platform's dynamic rule store."""

    @abstractmethod
    async def get_dynamic_rules(self) -> List[PlatformRule]:
        """Return the currently installed rules."""

    @abstractmethod
    async def update_dynamic_rules(self, remove_rule_ids: List[int], add_rules: List[PlatformRule]) -> None:
        """Atomically remove ``remove_rule_ids`` and add ``add_rules``."""


class InMemoryPlatformClient(PlatformRulesClient):
    """Platform client that keeps rules in memory, validating updates the way the host does."""

    def __init__(self, max_rules: Optional[int] = None):
        self.max_rules = max_rules
        self._rules: Dict[int, PlatformRule] = {}
        self.update_count = 0

    async def get_dynamic_rules(self) -> List[PlatformRule]:
        return [self._rules[rule_id] for rule_id in sorted(self._rules)]

    async def update_dynamic_rules(self, remove_rule_ids: List[int], add_rules: List[PlatformRule]) -> None:
        removed = set(remove_rule_ids)
        remaining = {k: v for k, v in self._rules.items() if k not in removed}

        for rule in add_rules:
            if rule.id in remaining:
                raise PlatformUpdateError(f"Rule with id {rule.id} already exists", {"rule_id": rule.id})
            remaining[rule.id] = rule

        if self.max_rules is not None and len(remaining) > self.max_rules:
            raise PlatformUpdateError(
                "Dynamic rule limit exceeded",
                {"max_rules": self.max_rules, "requested": len(remaining)}
            )

        self._rules = remaining
        self.update_count += 1


@dataclass
class UpdateResult:
    """Outcome of one sync with the host platform."""
    success: bool
    enabled: bool
    removed: int = 0
    added: int = 0
    error: Optional[str] = None
    conversion: Optional[ConversionResult] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "success": self.success,
            "enabled": self.enabled,
            "removed": self.removed,
            "added": self.added,
        }
        if self.error:
            data["error"] = self.error
        if self.conversion is not None:
            data["conversion"] = self.conversion.to_dict()
        return data


class DynamicRulesUpdater:
    """Keeps the host platform's rules in step with the engine's desired state."""

    def __init__(
        self,
        client: PlatformRulesClient,
        converter: PlatformRuleConverter,
        metrics: Optional[MetricsCollector] = None
    ):
        self.client = client
        self.converter = converter
        self.metrics = metrics
        self.logger = get_logger("rules_engine.platform_updater")

    async def sync(
        self,
        is_enabled: bool,
        rules: RuleCollection,
        active_profile: str,
        context: VariableContext,
        settings: Optional[ConversionSettings] = None,
        cache: Optional[ResolutionCache] = None,
        invalid_rules: Optional[Mapping[str, str]] = None
    ) -> UpdateResult:
        """Replace every installed rule with the freshly converted set. Never raises."""
        try:
            existing = await self.client.get_dynamic_rules()
            existing_ids = [rule.id for rule in existing]

            if not is_enabled:
                await self.client.update_dynamic_rules(existing_ids, [])
                self._set_active(0)
                self.logger.info("Rules engine disabled, platform rules cleared", removed=len(existing_ids))
                return UpdateResult(success=True, enabled=False, removed=len(existing_ids))

            conversion = await self.converter.convert(
                rules, active_profile, context, settings, cache, invalid_rules=invalid_rules
            )
            await self.client.update_dynamic_rules(existing_ids, conversion.rules)
            self._set_active(len(conversion.rules))

            self.logger.info(
                "Platform rules updated",
                active_profile=active_profile,
                removed=len(existing_ids),
                added=len(conversion.rules)
            )
            return UpdateResult(
                success=True,
                enabled=True,
                removed=len(existing_ids),
                added=len(conversion.rules),
                conversion=conversion
            )

        except Exception as e:
            self.logger.error("Failed to update platform rules", active_profile=active_profile, error=str(e))
            if self.metrics is not None:
                self.metrics.record_error("platform_update")
            return UpdateResult(success=False, enabled=is_enabled, error=str(e))

    def _set_active(self, count: int):
        if self.metrics is not None:
            self.metrics.set_active_platform_rules(count)
