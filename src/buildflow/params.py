# params.py
from __future__ import annotations

import enum
import os
import re
import sys
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

import click

from .errors import REDACTED, ConfigurationError

# ---------------------------------------------------------------------
# Parameters are resolved once per run, before any target executes:
#
#   explicit argument  >  environment variable  >  interactive prompt  >  default
#
# Names are matched loosely: "--release-feed-api-key", "RELEASE_FEED_API_KEY"
# and "ReleaseFeedApiKey" all bind the parameter declared as ReleaseFeedApiKey.
# ---------------------------------------------------------------------

_TRUE = {"1", "true", "yes", "on", "y"}
_FALSE = {"0", "false", "no", "off", "n"}


def normalize_name(name: str) -> str:
    return re.sub(r"[-_\s]", "", name).lower()


def screaming_snake(name: str) -> str:
    """ReleaseFeedApiKey -> RELEASE_FEED_API_KEY"""
    snake = re.sub(r"(?<=[a-z0-9])(?=[A-Z])", "_", name)
    return re.sub(r"[-\s]", "_", snake).upper()


class Secret:
    """A resolved secret value that never renders its content."""

    __slots__ = ("_value",)

    def __init__(self, value: str):
        self._value = value

    def reveal(self) -> str:
        return self._value

    def __str__(self) -> str:
        return REDACTED

    def __repr__(self) -> str:
        return f"Secret({REDACTED})"

    def __format__(self, spec: str) -> str:
        return REDACTED

    def __bool__(self) -> bool:
        return bool(self._value)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Secret):
            return self._value == other._value
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self._value)


@dataclass(frozen=True)
class Parameter:
    """A named build input bound from the command line, environment, prompt or default."""
    name: str
    description: str = ""
    type: Callable[[str], Any] = str
    required: bool = False
    secret: bool = False
    default: Any = None          # value, or zero-arg provider function
    env: str | None = None       # explicit environment variable name

    @property
    def key(self) -> str:
        return normalize_name(self.name)

    def env_names(self) -> List[str]:
        names = [self.env] if self.env else []
        names += [self.name, screaming_snake(self.name)]
        # keep first occurrence, preserve order
        return list(dict.fromkeys(names))

    def has_default(self) -> bool:
        return self.default is not None


def _to_bool(raw: str) -> bool:
    value = raw.strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ValueError(f"not a boolean: {raw!r}")


def _to_enum(enum_type: type[enum.Enum], raw: str) -> enum.Enum:
    wanted = raw.strip().lower()
    for member in enum_type:
        if str(member.value).lower() == wanted or member.name.lower() == wanted:
            return member
    raise ValueError(f"expected one of {[m.value for m in enum_type]}")


def convert(param: Parameter, raw: Any) -> Any:
    """Convert a raw (usually string) value to the parameter's declared type."""
    if raw is None:
        return None
    if not isinstance(raw, str):
        value = raw
    else:
        try:
            if param.type is bool:
                value = _to_bool(raw)
            elif isinstance(param.type, type) and issubclass(param.type, enum.Enum):
                value = _to_enum(param.type, raw)
            else:
                value = param.type(raw)
        except (TypeError, ValueError) as e:
            shown = REDACTED if param.secret else repr(raw)
            type_name = getattr(param.type, "__name__", str(param.type))
            # the converter's own message may quote the raw value
            reason = "invalid value" if param.secret else str(e)
            raise ConfigurationError(
                f"Parameter '{param.name}' value {shown} is not a valid {type_name}: {reason}"
            ) from None

    if param.secret and value is not None and not isinstance(value, Secret):
        value = Secret(str(value))
    return value


def _is_unbound(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, Secret):
        return not value
    if isinstance(value, str):
        return value.strip() == ""
    return False


@dataclass(frozen=True)
class ResolvedParameters:
    """Immutable snapshot of the parameter values bound for one run."""
    parameters: Mapping[str, Parameter] = field(default_factory=dict)
    values: Mapping[str, Any] = field(default_factory=dict)

    def __getitem__(self, name: str) -> Any:
        key = normalize_name(name)
        if key not in self.values:
            raise KeyError(name)
        return self.values[key]

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and normalize_name(name) in self.values

    def get(self, name: str, default: Any = None) -> Any:
        return self.values.get(normalize_name(name), default)

    def is_bound(self, name: str) -> bool:
        return not _is_unbound(self.get(name))

    def reveal(self, name: str) -> Any:
        """Raw value with any Secret wrapper removed. Never log the result."""
        value = self.get(name)
        return value.reveal() if isinstance(value, Secret) else value

    def revealed(self) -> Dict[str, Any]:
        """Declared name -> raw value, for expanding shell step placeholders."""
        out: Dict[str, Any] = {}
        for key, param in self.parameters.items():
            value = self.reveal(param.name)
            out[param.name] = "" if value is None else (value.value if isinstance(value, enum.Enum) else value)
        return out

    def secret_values(self) -> List[str]:
        return [v.reveal() for v in self.values.values() if isinstance(v, Secret) and v]

    def describe(self) -> Dict[str, str]:
        """Printable view: secrets only report presence."""
        out: Dict[str, str] = {}
        for key, param in self.parameters.items():
            value = self.values.get(key)
            if param.secret:
                out[param.name] = "<set>" if not _is_unbound(value) else "<unset>"
            elif value is None:
                out[param.name] = "<unset>"
            else:
                out[param.name] = str(value.value if isinstance(value, enum.Enum) else value)
        return out


class ParameterResolver:
    def __init__(
        self,
        parameters: Iterable[Parameter],
        *,
        arguments: Optional[Mapping[str, Any]] = None,
        environ: Optional[Mapping[str, str]] = None,
        interactive: Optional[bool] = None,
        prompt: Optional[Callable[[Parameter], Any]] = None,
    ):
        self.parameters: Dict[str, Parameter] = {}
        for p in parameters:
            if p.key in self.parameters:
                raise ValueError(f"Duplicate parameter name: {p.name}")
            self.parameters[p.key] = p

        self.arguments = {normalize_name(k): v for k, v in (arguments or {}).items()}
        self.environ = os.environ if environ is None else environ
        if interactive is None:
            interactive = sys.stdin.isatty()
        self.interactive = interactive
        self.prompt = prompt or _click_prompt

    def _lookup(self, name: str) -> Parameter:
        try:
            return self.parameters[normalize_name(name)]
        except KeyError:
            raise ConfigurationError(f"Unknown parameter '{name}'") from None

    def resolve(self, name: str, *, prompt: bool = True) -> Any:
        param = self._lookup(name)

        if param.key in self.arguments:
            return convert(param, self.arguments[param.key])

        for env_name in param.env_names():
            raw = self.environ.get(env_name)
            if raw is not None and raw != "":
                return convert(param, raw)

        if prompt and self.interactive and not param.has_default():
            raw = self.prompt(param)
            if raw not in (None, ""):
                return convert(param, raw)
            return None

        default = param.default() if callable(param.default) else param.default
        return convert(param, default)

    def resolve_all(self, needed: Optional[Iterable[str]] = None) -> ResolvedParameters:
        """
        Resolve every declared parameter.

        When `needed` is given, only required parameters and the ones named
        there are prompted for; the rest stay unbound unless an argument,
        environment variable or default binds them.

        Raises:
            ConfigurationError: unknown argument names, or required parameters
                left empty. Raised before any target runs.
        """
        unknown = sorted(k for k in self.arguments if k not in self.parameters)
        if unknown:
            raise ConfigurationError(
                "Unknown parameter(s): " + ", ".join(unknown),
                details={"known": ", ".join(p.name for p in self.parameters.values())},
            )

        wanted = None if needed is None else {normalize_name(n) for n in needed}
        values = {
            key: self.resolve(p.name, prompt=wanted is None or p.required or key in wanted)
            for key, p in self.parameters.items()
        }

        missing = [p.name for key, p in self.parameters.items() if p.required and _is_unbound(values[key])]
        if missing:
            raise ConfigurationError(
                "Required parameter(s) not set: " + ", ".join(missing),
                details={"hint": "pass --<name> <value> or set the environment variable"},
            )

        return ResolvedParameters(parameters=dict(self.parameters), values=values)


def _click_prompt(param: Parameter) -> Any:
    text = param.description or param.name
    return click.prompt(
        f"{param.name} ({text})" if param.description else text,
        default="",
        show_default=False,
        hide_input=param.secret,
    )
