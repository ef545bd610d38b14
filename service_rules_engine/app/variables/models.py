"""
Variable data models.
"""

import hashlib
import json
from typing import Dict, Any, Optional, List, Tuple, Iterable
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum


class VariableScope(str, Enum):
    """Variable scopes, lowest precedence first."""
    SYSTEM = "system"
    GLOBAL = "global"
    PROFILE = "profile"
    RULE = "rule"


SCOPE_PRECEDENCE = (VariableScope.SYSTEM, VariableScope.GLOBAL, VariableScope.PROFILE, VariableScope.RULE)


@dataclass(frozen=True)
class Variable:
    """A named value or template usable in header values."""
    name: str
    value: str
    scope: VariableScope = VariableScope.GLOBAL
    id: Optional[str] = None
    enabled: bool = True
    description: Optional[str] = None
    profile_id: Optional[str] = None
    rule_id: Optional[str] = None
    tags: Tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: Dict[str, Any], scope: Optional[VariableScope] = None) -> "Variable":
        return cls(
            name=data["name"],
            value=str(data.get("value", "")),
            scope=scope or VariableScope(data.get("scope") or VariableScope.GLOBAL.value),
            id=data.get("id"),
            enabled=data.get("enabled", True) is not False,
            description=data.get("description"),
            profile_id=data.get("profileId", data.get("profile_id")),
            rule_id=data.get("ruleId", data.get("rule_id")),
            tags=tuple(data.get("tags") or ()),
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id or f"{self.scope.value}_{self.name}",
            "name": self.name,
            "value": self.value,
            "scope": self.scope.value,
            "enabled": self.enabled,
        }
        if self.description:
            data["description"] = self.description
        if self.profile_id:
            data["profileId"] = self.profile_id
        if self.rule_id:
            data["ruleId"] = self.rule_id
        if self.tags:
            data["tags"] = list(self.tags)
        return data


@dataclass(frozen=True)
class RequestContext:
    """Request details exposed to templates as system-scope variables."""
    url: str
    method: str = "GET"
    headers: Dict[str, str] = field(default_factory=dict, hash=False, compare=False)
    timestamp: float = field(default_factory=lambda: datetime.now(timezone.utc).timestamp())
    tab_id: Optional[int] = None
    domain: Optional[str] = None
    path: Optional[str] = None
    protocol: Optional[str] = None
    query: Dict[str, str] = field(default_factory=dict, hash=False, compare=False)
    referrer: Optional[str] = None
    user_agent: Optional[str] = None

    def template_values(self) -> Dict[str, str]:
        """Values published under the ``url``, ``domain``, ``path``, ``method`` and ``protocol`` names."""
        values = {"url": self.url, "method": self.method}
        if self.domain:
            values["domain"] = self.domain
        if self.path:
            values["path"] = self.path
        if self.protocol:
            values["protocol"] = self.protocol
        return values


def _as_tuple(variables: Optional[Iterable[Variable]]) -> Tuple[Variable, ...]:
    return tuple(variables or ())


@dataclass(frozen=True)
class VariableContext:
    """Immutable snapshot of variables by scope, built fresh per resolution call."""
    system_variables: Tuple[Variable, ...] = ()
    global_variables: Tuple[Variable, ...] = ()
    profile_variables: Tuple[Variable, ...] = ()
    rule_variables: Tuple[Variable, ...] = ()
    profile_id: Optional[str] = None
    request_context: Optional[RequestContext] = None

    @classmethod
    def build(
        cls,
        system_variables: Optional[Iterable[Variable]] = None,
        global_variables: Optional[Iterable[Variable]] = None,
        profile_variables: Optional[Iterable[Variable]] = None,
        rule_variables: Optional[Iterable[Variable]] = None,
        profile_id: Optional[str] = None,
        request_context: Optional[RequestContext] = None,
    ) -> "VariableContext":
        return cls(
            system_variables=_as_tuple(system_variables),
            global_variables=_as_tuple(global_variables),
            profile_variables=_as_tuple(profile_variables),
            rule_variables=_as_tuple(rule_variables),
            profile_id=profile_id,
            request_context=request_context,
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VariableContext":
        """Build a context from ``{"globalVariables": [...], ...}`` payloads."""
        def load(key: str, snake: str, scope: VariableScope) -> List[Variable]:
            records = data.get(key, data.get(snake)) or []
            return [Variable.from_dict(record, scope) for record in records]

        return cls.build(
            system_variables=load("systemVariables", "system_variables", VariableScope.SYSTEM),
            global_variables=load("globalVariables", "global_variables", VariableScope.GLOBAL),
            profile_variables=load("profileVariables", "profile_variables", VariableScope.PROFILE),
            rule_variables=load("ruleVariables", "rule_variables", VariableScope.RULE),
            profile_id=data.get("profileId", data.get("profile_id")),
        )

    def with_request(self, request_context: Optional[RequestContext]) -> "VariableContext":
        return replace(self, request_context=request_context)

    def with_rule_variables(self, rule_variables: Iterable[Variable]) -> "VariableContext":
        return replace(self, rule_variables=_as_tuple(rule_variables))

    def variables_by_scope(self) -> List[Tuple[VariableScope, Tuple[Variable, ...]]]:
        return [
            (VariableScope.SYSTEM, self.system_variables),
            (VariableScope.GLOBAL, self.global_variables),
            (VariableScope.PROFILE, self.profile_variables),
            (VariableScope.RULE, self.rule_variables),
        ]

    def fingerprint(self) -> str:
        """Hash of everything resolution reads: enabled variables by scope, profile and request values."""
        context_str = json.dumps({
            "profile_id": self.profile_id,
            "variables": [
                [scope.value, [[v.name, v.value] for v in variables if v.enabled]]
                for scope, variables in self.variables_by_scope()
            ],
            "request": self.request_context.template_values() if self.request_context else None,
        }, sort_keys=True)
        return hashlib.md5(context_str.encode()).hexdigest()


@dataclass
class ResolutionResult:
    """Outcome of resolving one template."""
    success: bool
    value: str
    resolved_variables: List[str] = field(default_factory=list)
    unresolved_variables: List[str] = field(default_factory=list)
    resolution_time: float = 0.0
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "success": self.success,
            "value": self.value,
            "resolvedVariables": list(self.resolved_variables),
            "unresolvedVariables": list(self.unresolved_variables),
            "resolutionTime": self.resolution_time,
        }
        if self.error:
            data["error"] = self.error
        return data


@dataclass
class TemplateParseResult:
    """Variable and function references found in a template."""
    template: str
    variables: List[str] = field(default_factory=list)
    functions: List[Tuple[str, List[str]]] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "template": self.template,
            "variables": list(self.variables),
            "functions": [{"name": name, "args": list(args)} for name, args in self.functions],
            "errors": list(self.errors),
        }
