# errors.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import ClassVar, Iterable

REDACTED = "***"


@dataclass
class BuildError(Exception):
    """
    Structured build error with enough context for:
      - a clean run summary
      - propagation decisions in the engine
      - debugging without full tracebacks

    Messages must never carry secret values; callers redact before raising.
    """
    message: str
    target: str | None = None
    details: dict = field(default_factory=dict)

    kind: ClassVar[str] = "BuildError"

    def __str__(self) -> str:
        lines = [f"{self.kind}: {self.message}"]
        if self.target:
            lines.append(f"target={self.target}")
        for k, v in self.details.items():
            lines.append(f"{k}={v}")
        return "\n".join(lines)

    @property
    def diagnostic(self) -> str:
        """First line of the message, for one-line summaries."""
        return self.message.split("\n")[0]


@dataclass
class ConfigurationError(BuildError):
    """A required parameter or secret is unresolved, or a requirement check failed."""
    kind: ClassVar[str] = "ConfigurationError"


@dataclass
class DependencyCycleError(BuildError):
    """The target graph contains a cycle. Fatal for the whole invocation."""
    cycle: list[str] = field(default_factory=list)

    kind: ClassVar[str] = "DependencyCycleError"


@dataclass
class ExecutionFailure(BuildError):
    """A target's action reported non-success."""
    kind: ClassVar[str] = "ExecutionFailure"


@dataclass
class ArtifactContractViolation(BuildError):
    """A target's declared outputs (or a consumed target's outputs) are absent."""
    patterns: list[str] = field(default_factory=list)

    kind: ClassVar[str] = "ArtifactContractViolation"


def redact(text: str, secrets: Iterable[str]) -> str:
    """Replace every occurrence of a secret value in text with the redaction marker."""
    # longest first so a secret containing another secret is fully masked
    for value in sorted({s for s in secrets if s}, key=len, reverse=True):
        text = text.replace(value, REDACTED)
    return text
