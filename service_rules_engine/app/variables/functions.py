"""
Built-in template functions.

Functions are called from templates as ``${name(arg1, arg2)}``; a bare
``${name}`` that does not name a variable also calls the function.
"""

import base64
import random
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, List, Any

from shared.errors import TemplateResolutionError


@dataclass(frozen=True)
class FunctionParameter:
    name: str
    type: str
    required: bool
    description: str
    default: Any = None


@dataclass(frozen=True)
class BuiltInFunction:
    name: str
    description: str
    execute: Callable[[List[str]], str]
    parameters: List[FunctionParameter] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "parameters": [
                {
                    "name": p.name,
                    "type": p.type,
                    "required": p.required,
                    "description": p.description,
                    "defaultValue": p.default,
                }
                for p in self.parameters
            ],
        }


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso_now() -> str:
    return _utcnow().isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _unix_timestamp() -> str:
    return str(int(_utcnow().timestamp()))


def _to_int(value: str, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _arg(args: List[str], index: int, default: str = "") -> str:
    return args[index] if len(args) > index and args[index] != "" else default


def _timestamp(args: List[str]) -> str:
    return _unix_timestamp()


def _iso_date(args: List[str]) -> str:
    return _iso_now()


def _uuid(args: List[str]) -> str:
    return str(uuid.uuid4())


def _random(args: List[str]) -> str:
    low = _to_int(_arg(args, 0), 0)
    high = _to_int(_arg(args, 1), 100)
    if low > high:
        low, high = high, low
    return str(random.randint(low, high))


def _base64(args: List[str]) -> str:
    value = _arg(args, 0)
    return base64.b64encode(value.encode("utf-8")).decode("ascii")


def _date(args: List[str]) -> str:
    fmt = _arg(args, 0, "iso").lower()
    now = _utcnow()

    if fmt == "locale":
        return now.astimezone().strftime("%c")
    if fmt == "timestamp":
        return str(int(now.timestamp()))
    if fmt == "yyyy-mm-dd":
        return now.strftime("%Y-%m-%d")
    if fmt == "mm-dd-yy":
        return now.strftime("%m-%d-%y")
    return _iso_now()


BUILT_IN_FUNCTIONS: Dict[str, BuiltInFunction] = {
    f.name: f
    for f in (
        BuiltInFunction("timestamp", "Current Unix timestamp", _timestamp),
        BuiltInFunction("iso_date", "Current date as an ISO 8601 string", _iso_date),
        BuiltInFunction("uuid", "Random UUID v4", _uuid),
        BuiltInFunction(
            "random",
            "Random integer between min and max (inclusive)",
            _random,
            [
                FunctionParameter("min", "number", True, "Minimum value", 0),
                FunctionParameter("max", "number", True, "Maximum value", 100),
            ],
        ),
        BuiltInFunction(
            "base64",
            "Base64 encode a value",
            _base64,
            [FunctionParameter("value", "string", True, "Value to encode")],
        ),
        BuiltInFunction(
            "date",
            "Format the current date",
            _date,
            [
                FunctionParameter(
                    "format", "string", False,
                    "Date format (iso, locale, timestamp, yyyy-mm-dd, mm-dd-yy)", "iso"
                )
            ],
        ),
    )
}


def is_built_in_function(name: str) -> bool:
    return name in BUILT_IN_FUNCTIONS


def parse_function_args(args_string: str) -> List[str]:
    """Split a call's argument string on commas, trimming whitespace and quotes."""
    args = []
    for raw in (args_string or "").split(","):
        arg = raw.strip()
        if len(arg) >= 2 and arg[0] == arg[-1] and arg[0] in ("'", '"'):
            arg = arg[1:-1]
        if arg:
            args.append(arg)
    return args


def execute_function(name: str, args: List[str]) -> str:
    """Run a built-in function; raises ``TemplateResolutionError`` for unknown names."""
    function = BUILT_IN_FUNCTIONS.get(name)
    if function is None:
        raise TemplateResolutionError(f"Unknown function: {name}", {"function": name})
    return function.execute(args)


def available_functions() -> List[Dict[str, Any]]:
    return [f.to_dict() for f in BUILT_IN_FUNCTIONS.values()]
