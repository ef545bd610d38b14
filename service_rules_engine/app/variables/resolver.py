"""
Variable template resolver.

Expands ``${name}`` references and ``${fn(args)}`` calls against a
``VariableContext``. Scope precedence is system < global < profile < rule.
Resolution runs a bounded number of passes so a variable whose value is
itself a template is expanded without risking unbounded work on cycles.
"""

import re
import time
from dataclasses import replace
from typing import Dict, Optional, List, Tuple
from urllib.parse import urlsplit, parse_qsl

from shared.logging import get_logger
from shared.metrics import MetricsCollector
from .functions import (
    BUILT_IN_FUNCTIONS,
    execute_function,
    parse_function_args,
    available_functions,
)
from .models import (
    Variable,
    VariableScope,
    VariableContext,
    RequestContext,
    ResolutionResult,
    TemplateParseResult,
)


VARIABLE_REFERENCE = re.compile(r"\$\{([a-zA-Z_][a-zA-Z0-9_]*)\}")
FUNCTION_CALL = re.compile(r"\$\{([a-zA-Z_][a-zA-Z0-9_]*)\(([^)]*)\)\}")
TEMPLATE_MARKER = re.compile(r"\$\{([^}]*)\}")

DEFAULT_MAX_PASSES = 2

SYSTEM_VARIABLES: Dict[str, Variable] = {
    name: Variable(
        id=f"system_{name}",
        name=name,
        value=value,
        scope=VariableScope.SYSTEM,
        description=description,
    )
    for name, value, description in (
        ("timestamp", "${timestamp()}", "Current Unix timestamp"),
        ("iso_date", "${iso_date()}", "Current ISO 8601 date"),
        ("uuid", "${uuid()}", "Random UUID v4"),
        ("request_id", "${uuid()}", "Unique id for the request"),
    )
}


def contains_template(value: Optional[str]) -> bool:
    """Whether ``value`` holds any variable reference or function call."""
    if not value or "${" not in value:
        return False
    return bool(VARIABLE_REFERENCE.search(value) or FUNCTION_CALL.search(value))


def parse_template(template: str) -> TemplateParseResult:
    """Find the variable and function references in ``template``."""
    result = TemplateParseResult(template=template)

    for match in TEMPLATE_MARKER.finditer(template):
        body = match.group(0)
        if VARIABLE_REFERENCE.fullmatch(body):
            name = match.group(1)
            if name not in result.variables:
                result.variables.append(name)
            continue

        call = FUNCTION_CALL.fullmatch(body)
        if call:
            result.functions.append((call.group(1), parse_function_args(call.group(2))))
            continue

        result.errors.append(f"Invalid template expression: {body}")

    return result


def get_referenced_variables(template: str) -> List[str]:
    return parse_template(template).variables


def get_referenced_functions(template: str) -> List[str]:
    names: List[str] = []
    for name, _ in parse_template(template).functions:
        if name not in names:
            names.append(name)
    return names


def validate_template(template: str) -> Dict[str, object]:
    """Check syntax and function names; returns ``is_valid``, ``errors``, ``warnings``."""
    parsed = parse_template(template)
    errors = list(parsed.errors)
    warnings: List[str] = []

    for name, _ in parsed.functions:
        if name not in BUILT_IN_FUNCTIONS:
            errors.append(f"Unknown function: {name}")

    if template.count("${") != len(TEMPLATE_MARKER.findall(template)):
        errors.append("Unclosed template expression")

    for name in parsed.variables:
        if name in BUILT_IN_FUNCTIONS and name not in SYSTEM_VARIABLES:
            warnings.append(f"'{name}' will call the built-in function unless a variable defines it")

    return {"is_valid": not errors, "errors": errors, "warnings": warnings}


def build_request_context(
    url: str,
    method: str = "GET",
    headers: Optional[Dict[str, str]] = None,
    tab_id: Optional[int] = None,
) -> RequestContext:
    """Derive a request context from a URL; URL parts are left empty when it is malformed."""
    headers = dict(headers or {})
    lowered = {k.lower(): v for k, v in headers.items()}
    domain = path = protocol = None
    query: Dict[str, str] = {}
    try:
        parts = urlsplit(url)
        domain = parts.hostname or None
        path = parts.path or ("/" if domain else None)
        protocol = parts.scheme or None
        query = dict(parse_qsl(parts.query))
    except ValueError:
        pass

    return RequestContext(
        url=url,
        method=method.upper() if method else "GET",
        headers=headers,
        tab_id=tab_id,
        domain=domain,
        path=path,
        protocol=protocol,
        query=query,
        referrer=lowered.get("referer"),
        user_agent=lowered.get("user-agent"),
    )


class VariableResolver:
    """Resolves templates against variable contexts."""

    def __init__(self, max_passes: int = DEFAULT_MAX_PASSES, metrics: Optional[MetricsCollector] = None):
        self.max_passes = max(1, max_passes)
        self.metrics = metrics
        self.logger = get_logger("rules_engine.variable_resolver")

    async def resolve(self, template: str, context: VariableContext) -> ResolutionResult:
        """Resolve ``template``. On any failure the original template is returned."""
        start_time = time.perf_counter()

        if not contains_template(template):
            return ResolutionResult(
                success=True,
                value=template,
                resolution_time=_elapsed_ms(start_time)
            )

        try:
            lookup = self.build_variable_lookup(context)
            value = template
            resolved: List[str] = []

            for _ in range(self.max_passes):
                value, pass_resolved = self._resolve_pass(value, lookup)
                for name in pass_resolved:
                    if name not in resolved:
                        resolved.append(name)
                if not contains_template(value):
                    break

            unresolved = self._remaining_references(value)
            result = ResolutionResult(
                success=not unresolved,
                value=value,
                resolved_variables=resolved,
                unresolved_variables=unresolved,
                resolution_time=_elapsed_ms(start_time)
            )

            if unresolved:
                self.logger.warning(
                    "Template left unresolved references",
                    unresolved=unresolved,
                    profile_id=context.profile_id
                )
            self._record(result.success)
            return result

        except Exception as e:
            self.logger.error("Template resolution failed", template=template, error=str(e))
            self._record(False)
            return ResolutionResult(
                success=False,
                value=template,
                resolution_time=_elapsed_ms(start_time),
                error=f"Resolution failed: {e}"
            )

    def build_variable_lookup(self, context: VariableContext) -> Dict[str, Variable]:
        """Flatten the context into one name -> variable map, higher scopes winning."""
        lookup: Dict[str, Variable] = dict(SYSTEM_VARIABLES)

        if context.request_context is not None:
            for name, value in context.request_context.template_values().items():
                lookup[name] = Variable(name=name, value=value, scope=VariableScope.SYSTEM)

        for _, variables in context.variables_by_scope():
            for variable in variables:
                if variable.enabled:
                    lookup[variable.name] = variable

        return lookup

    def _resolve_pass(self, template: str, lookup: Dict[str, Variable]) -> Tuple[str, List[str]]:
        resolved: List[str] = []

        def replace_function(match: "re.Match") -> str:
            name, args_string = match.group(1), match.group(2)
            try:
                value = execute_function(name, parse_function_args(args_string))
            except Exception as e:
                self.logger.warning("Function call failed", function=name, error=str(e))
                return match.group(0)
            resolved.append(f"{name}()")
            return value

        def replace_variable(match: "re.Match") -> str:
            name = match.group(1)
            variable = lookup.get(name)
            if variable is not None:
                resolved.append(name)
                return variable.value
            if name in BUILT_IN_FUNCTIONS:
                resolved.append(f"{name}()")
                return execute_function(name, [])
            return match.group(0)

        value = FUNCTION_CALL.sub(replace_function, template)
        value = VARIABLE_REFERENCE.sub(replace_variable, value)
        return value, resolved

    @staticmethod
    def _remaining_references(value: str) -> List[str]:
        parsed = parse_template(value)
        remaining = list(parsed.variables)
        for name, _ in parsed.functions:
            call = f"{name}()"
            if call not in remaining:
                remaining.append(call)
        return remaining

    def _record(self, success: bool):
        if self.metrics is not None:
            self.metrics.increment_counter(
                "template_resolutions_total",
                status="success" if success else "failure"
            )

    async def preview(self, template: str, sample_variables: Optional[Dict[str, str]] = None) -> ResolutionResult:
        """Resolve against ad-hoc sample values given as global variables."""
        variables = [
            Variable(name=name, value=str(value), scope=VariableScope.GLOBAL)
            for name, value in (sample_variables or {}).items()
        ]
        return await self.resolve(template, VariableContext.build(global_variables=variables))

    async def pre_resolve_variable(self, variable: Variable) -> Variable:
        """Execute function calls embedded in a variable's value, leaving variable references alone."""
        if not FUNCTION_CALL.search(variable.value):
            return variable

        def replace_function(match: "re.Match") -> str:
            try:
                return execute_function(match.group(1), parse_function_args(match.group(2)))
            except Exception as e:
                self.logger.warning(
                    "Function call failed during pre-resolution",
                    variable=variable.name,
                    function=match.group(1),
                    error=str(e)
                )
                return match.group(0)

        return replace(variable, value=FUNCTION_CALL.sub(replace_function, variable.value))

    @staticmethod
    def available_functions():
        return available_functions()


def _elapsed_ms(start_time: float) -> float:
    return round((time.perf_counter() - start_time) * 1000, 3)
