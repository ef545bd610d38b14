"""
Shared error handling for the RequestKit rules engine.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """Standard error response format."""

    code: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)


class RulesEngineException(Exception):
    """Base exception for rules engine components."""

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            code=self.code,
            message=self.message,
            details=self.details
        )


class ValidationError(RulesEngineException):
    """Invalid input supplied to the engine."""

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class PatternError(RulesEngineException):
    """A URL pattern cannot be used."""

    def __init__(self, message: str = "Invalid URL pattern", details: Optional[Dict[str, Any]] = None):
        super().__init__("PATTERN_ERROR", message, details)


class TemplateResolutionError(RulesEngineException):
    """A variable template could not be resolved."""

    def __init__(self, message: str = "Template resolution failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("TEMPLATE_RESOLUTION_ERROR", message, details)


class RuleConversionError(RulesEngineException):
    """A single rule could not be converted to the platform format."""

    def __init__(self, rule_id: str, message: str = "Rule conversion failed", details: Optional[Dict[str, Any]] = None):
        self.rule_id = rule_id
        super().__init__("RULE_CONVERSION_ERROR", f"{rule_id}: {message}", details)


class RuleNotFoundError(RulesEngineException):
    """Requested rule does not exist in the supplied collection."""

    def __init__(self, rule_id: str, details: Optional[Dict[str, Any]] = None):
        self.rule_id = rule_id
        super().__init__("RULE_NOT_FOUND", f"Rule {rule_id} not found", details)


class PlatformUpdateError(RulesEngineException):
    """The host platform rejected a rule update."""

    def __init__(self, message: str = "Platform update failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("PLATFORM_UPDATE_ERROR", message, details)
