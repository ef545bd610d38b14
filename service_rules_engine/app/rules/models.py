"""
Rule data models for the rules engine.

Domain objects are plain dataclasses read by the engine; the platform
rule and API payloads are pydantic models so they serialize to the exact
camelCase shape the host network-filtering platform expects.
"""

from typing import Dict, Any, Optional, List, Union
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from shared.config import BaseConfig, DEFAULT_RESOURCE_TYPES


UNASSIGNED_PROFILE = "unassigned"


class HeaderOperation(str, Enum):
    """Header modification operations."""
    SET = "set"
    APPEND = "append"
    REMOVE = "remove"


class HeaderTarget(str, Enum):
    """Which side of the exchange a header applies to."""
    REQUEST = "request"
    RESPONSE = "response"


class ConditionType(str, Enum):
    """Rule condition types."""
    REQUEST_METHOD = "requestMethod"
    HEADER = "header"
    URL = "url"
    RESPONSE_STATUS = "responseStatus"
    USER_AGENT = "userAgent"
    COOKIE = "cookie"
    TIME = "time"
    CUSTOM = "custom"


class ConditionOperator(str, Enum):
    """Rule condition operators."""
    EQUALS = "equals"
    CONTAINS = "contains"
    REGEX = "regex"
    GREATER = "greater"
    LESS = "less"
    EXISTS = "exists"


@dataclass
class URLPattern:
    """URL pattern a rule applies to. Every part except domain is optional."""
    domain: str
    protocol: Optional[str] = None
    path: Optional[str] = None
    port: Optional[str] = None
    query: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "URLPattern":
        port = data.get("port")
        return cls(
            domain=data.get("domain") or "",
            protocol=data.get("protocol") or None,
            path=data.get("path") or None,
            port=str(port) if port not in (None, "") else None,
            query=data.get("query") or None,
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"domain": self.domain}
        for key in ("protocol", "path", "port", "query"):
            value = getattr(self, key)
            if value:
                data[key] = value
        return data


@dataclass
class HeaderEntry:
    """A single header modification."""
    name: str
    value: str = ""
    operation: HeaderOperation = HeaderOperation.SET
    target: HeaderTarget = HeaderTarget.REQUEST

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "HeaderEntry":
        return cls(
            name=data.get("name") or "",
            value=data.get("value") or "",
            operation=HeaderOperation(data.get("operation") or HeaderOperation.SET.value),
            target=HeaderTarget(data.get("target") or HeaderTarget.REQUEST.value),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "value": self.value,
            "operation": self.operation.value,
            "target": self.target.value,
        }


@dataclass
class RuleCondition:
    """Auxiliary condition evaluated beyond URL pattern matching.

    Types and operators are kept as strings so conditions written by newer
    clients still load; the evaluator decides what it understands.
    """
    type: str
    operator: str
    value: Union[str, int, float] = ""
    name: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RuleCondition":
        return cls(
            type=str(data.get("type", "")),
            operator=str(data.get("operator", "")),
            value=data.get("value", ""),
            name=data.get("name"),
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"type": self.type, "operator": self.operator, "value": self.value}
        if self.name:
            data["name"] = self.name
        return data


@dataclass
class Rule:
    """Header modification rule."""
    id: str
    name: str
    pattern: URLPattern
    headers: List[HeaderEntry] = field(default_factory=list)
    enabled: bool = True
    profile_id: Optional[str] = None
    conditions: List[RuleCondition] = field(default_factory=list)
    priority: int = 1
    resource_types: List[str] = field(default_factory=list)
    description: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)

    @property
    def is_unassigned(self) -> bool:
        return not self.profile_id

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Rule":
        """Build a rule from a stored record (camelCase or snake_case keys)."""
        profile_id = data.get("profileId", data.get("profile_id"))
        resource_types = data.get("resourceTypes", data.get("resource_types")) or []
        created_at = data.get("createdAt", data.get("created_at"))
        updated_at = data.get("updatedAt", data.get("updated_at"))
        priority = data.get("priority")
        return cls(
            id=str(data["id"]),
            name=data.get("name") or str(data["id"]),
            pattern=URLPattern.from_dict(data.get("pattern") or {}),
            headers=[HeaderEntry.from_dict(h) for h in data.get("headers") or []],
            enabled=bool(data.get("enabled", True)),
            profile_id=profile_id or None,
            conditions=[RuleCondition.from_dict(c) for c in data.get("conditions") or []],
            priority=int(priority) if priority is not None else 1,
            resource_types=list(resource_types),
            description=data.get("description"),
            created_at=_parse_datetime(created_at),
            updated_at=_parse_datetime(updated_at),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "enabled": self.enabled,
            "profileId": self.profile_id,
            "pattern": self.pattern.to_dict(),
            "headers": [h.to_dict() for h in self.headers],
            "conditions": [c.to_dict() for c in self.conditions],
            "priority": self.priority,
            "resourceTypes": list(self.resource_types),
            "description": self.description,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }


def _parse_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str) and value:
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            pass
    return datetime.now()


def parse_rules(
    data: Dict[str, Dict[str, Any]],
    errors: Optional[Dict[str, str]] = None
) -> Dict[str, Rule]:
    """Build an ordered rule collection from stored records keyed by rule id.

    When ``errors`` is given, records that fail to parse are skipped and
    recorded there by id; otherwise the first failure propagates.
    """
    rules: Dict[str, Rule] = {}
    for rule_id, record in data.items():
        try:
            record = dict(record)
            record.setdefault("id", rule_id)
            rule = Rule.from_dict(record)
        except Exception as e:
            if errors is None:
                raise
            errors[str(rule_id)] = f"Invalid rule record: {e}"
            continue
        rules[rule.id] = rule
    return rules


# ---------------------------------------------------------------------------
# Pattern matching results
# ---------------------------------------------------------------------------


@dataclass
class PatternMatchResult:
    """Result of matching one URL against one pattern."""
    matches: bool
    score: float
    matched_parts: Dict[str, bool] = field(default_factory=dict)
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "matches": self.matches,
            "score": self.score,
            "matchedParts": dict(self.matched_parts),
        }
        if self.error:
            data["error"] = self.error
        return data


# ---------------------------------------------------------------------------
# Host platform rule format
# ---------------------------------------------------------------------------


class PlatformModel(BaseModel):
    """Base for models emitted verbatim to the host platform."""
    model_config = ConfigDict(populate_by_name=True)

    def to_platform(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class PlatformHeaderAction(PlatformModel):
    header: str
    operation: HeaderOperation
    value: Optional[str] = None


class PlatformRuleCondition(PlatformModel):
    url_filter: str = Field(..., alias="urlFilter")
    resource_types: List[str] = Field(default_factory=list, alias="resourceTypes")


class PlatformRuleAction(PlatformModel):
    type: str = "modifyHeaders"
    request_headers: Optional[List[PlatformHeaderAction]] = Field(None, alias="requestHeaders")
    response_headers: Optional[List[PlatformHeaderAction]] = Field(None, alias="responseHeaders")


class PlatformRule(PlatformModel):
    """Declarative rule handed to the host network-filtering engine."""
    id: int = Field(..., ge=1)
    priority: int = Field(1, ge=1)
    condition: PlatformRuleCondition
    action: PlatformRuleAction


class ConversionSettings(BaseModel):
    """Enforcement settings for a single conversion pass."""
    max_rules: int = Field(100, ge=1, alias="maxRules")
    sort_by_priority: bool = Field(False, alias="sortByPriority")
    default_resource_types: List[str] = Field(
        default_factory=lambda: list(DEFAULT_RESOURCE_TYPES),
        alias="defaultResourceTypes"
    )

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_config(cls, config: BaseConfig) -> "ConversionSettings":
        return cls(
            max_rules=config.max_rules,
            sort_by_priority=config.sort_by_priority,
            default_resource_types=list(config.default_resource_types),
        )


# ---------------------------------------------------------------------------
# Rule processor (introspection) results
# ---------------------------------------------------------------------------


@dataclass
class RequestData:
    """Request under analysis."""
    url: str
    method: str = "GET"
    headers: Dict[str, str] = field(default_factory=dict)
    tab_id: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RequestData":
        return cls(
            url=data.get("url", ""),
            method=data.get("method") or "GET",
            headers=dict(data.get("headers") or {}),
            tab_id=data.get("tabId", data.get("tab_id")),
        )


@dataclass
class MatchedRule:
    rule_id: str
    rule_name: str
    match_score: float
    execution_time: float
    priority: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ruleId": self.rule_id,
            "ruleName": self.rule_name,
            "matchScore": self.match_score,
            "executionTime": self.execution_time,
            "priority": self.priority,
        }


@dataclass
class HeaderModification:
    rule_id: str
    rule_name: str
    header_name: str
    header_value: str
    operation: str
    target: str
    resolved_value: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "ruleId": self.rule_id,
            "ruleName": self.rule_name,
            "headerName": self.header_name,
            "headerValue": self.header_value,
            "operation": self.operation,
            "target": self.target,
        }
        if self.resolved_value is not None:
            data["resolvedValue"] = self.resolved_value
        return data


@dataclass
class HeaderAnalysis:
    name: str
    original_value: str
    resolved_value: str
    operation: str
    target: str
    resolution_error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "originalValue": self.original_value,
            "resolvedValue": self.resolved_value,
            "operation": self.operation,
            "target": self.target,
            "resolutionError": self.resolution_error,
        }


@dataclass
class RuleMatchResult:
    """Outcome of analysing one rule against one request."""
    matches: bool
    score: float
    execution_time: float
    match_details: PatternMatchResult
    conditions_match: Optional[bool] = None
    header_analysis: List[HeaderAnalysis] = field(default_factory=list)


@dataclass
class AnalysisResult:
    url: str
    method: str
    matched_rules: List[MatchedRule]
    header_modifications: List[HeaderModification]
    execution_time: float
    timestamp: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "url": self.url,
            "method": self.method,
            "matchedRules": [m.to_dict() for m in self.matched_rules],
            "headerModifications": [h.to_dict() for h in self.header_modifications],
            "executionTime": self.execution_time,
            "timestamp": self.timestamp,
        }


@dataclass
class TestRuleMatchResult:
    rule_id: str
    rule_name: str
    test_url: str
    matches: bool
    match_score: float
    execution_time: float
    match_details: PatternMatchResult
    conditions_match: Optional[bool]
    applied_headers: List[HeaderEntry]

    __test__ = False

    def to_dict(self) -> Dict[str, Any]:
        details = self.match_details.to_dict()
        if self.conditions_match is not None:
            details["conditionsMatch"] = self.conditions_match
        return {
            "ruleId": self.rule_id,
            "ruleName": self.rule_name,
            "testUrl": self.test_url,
            "matches": self.matches,
            "matchScore": self.match_score,
            "executionTime": self.execution_time,
            "matchDetails": details,
            "appliedHeaders": [h.to_dict() for h in self.applied_headers],
        }


# ---------------------------------------------------------------------------
# API payloads
# ---------------------------------------------------------------------------


class RulesPayload(BaseModel):
    """Rule collection and variable snapshot supplied by the caller."""
    rules: Dict[str, Dict[str, Any]] = Field(default_factory=dict)
    active_profile: str = Field(UNASSIGNED_PROFILE, alias="activeProfile")
    variables: Dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(populate_by_name=True)


class ConvertRequest(RulesPayload):
    settings: Optional[ConversionSettings] = None


class AnalyzeRequest(RulesPayload):
    request: Dict[str, Any]


class TestMatchRequest(RulesPayload):
    rule_id: str = Field(..., alias="ruleId")
    url: str
    request: Optional[Dict[str, Any]] = None


class SyncRequest(ConvertRequest):
    enabled: Optional[bool] = None


class ResolveTemplateRequest(BaseModel):
    template: str
    variables: Dict[str, Any] = Field(default_factory=dict)
    request: Optional[Dict[str, Any]] = None


class ValidateTemplateRequest(BaseModel):
    template: str
