# model.py
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Tuple

from .errors import BuildError

if TYPE_CHECKING:
    from .params import ResolvedParameters
    from .runner import TargetContext

Action = Callable[["TargetContext"], Any]
Condition = Callable[["TargetContext"], bool]
Requirement = Tuple[Callable[["ResolvedParameters"], bool], str]


def target_key(name: str) -> str:
    """Target names are case-insensitive."""
    return name.strip().lower()


@dataclass(frozen=True)
class Step:
    """A single shell command inside a target. `run` may use {Parameter} placeholders."""
    name: str
    run: str
    cwd: str | None = None


@dataclass(frozen=True)
class Target:
    """
    A named unit of work: dependencies + ordering + conditions + action +
    artifact contract.

    `dependencies` propagate results (a failed dependency blocks this target),
    `before` / `after` only constrain scheduling order.
    """
    name: str
    description: str = ""
    dependencies: Tuple[str, ...] = ()
    before: Tuple[str, ...] = ()
    after: Tuple[str, ...] = ()
    conditions: Tuple[Condition, ...] = ()
    steps: Tuple[Step, ...] = ()
    action: Optional[Action] = None
    produces: Tuple[str, ...] = ()
    consumes: Tuple[str, ...] = ()
    unlisted: bool = False
    required_parameters: Tuple[str, ...] = ()
    requirements: Tuple[Requirement, ...] = ()

    @property
    def key(self) -> str:
        return target_key(self.name)


class TargetState(str, enum.Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"
    BLOCKED = "blocked"          # skipped because a dependency failed
    CANCELLED = "cancelled"

    @property
    def terminal(self) -> bool:
        return self not in (TargetState.PENDING, TargetState.RUNNING)

    @property
    def is_failure(self) -> bool:
        return self in (TargetState.FAILED, TargetState.BLOCKED, TargetState.CANCELLED)


@dataclass(frozen=True)
class TargetResult:
    name: str
    state: TargetState
    error: Optional[BuildError] = None
    reason: str = ""
    duration: float = 0.0
    value: Any = None

    @property
    def error_kind(self) -> str | None:
        return self.error.kind if self.error is not None else None


@dataclass
class ExecutionReport:
    """Terminal state of every target visited by one run, in visiting order."""
    requested: List[str]
    results: Dict[str, TargetResult] = field(default_factory=dict)
    ran: List[str] = field(default_factory=list)     # targets whose action was invoked, in order

    def __getitem__(self, name: str) -> TargetResult:
        return self.results[target_key(name)]

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and target_key(name) in self.results

    def state_of(self, name: str) -> TargetState:
        return self[name].state

    @property
    def ok(self) -> bool:
        return not any(r.state.is_failure for r in self.results.values())

    @property
    def first_failure(self) -> Optional[TargetResult]:
        for r in self.results.values():
            if r.state is TargetState.FAILED:
                return r
        for r in self.results.values():
            if r.state.is_failure:
                return r
        return None

    def summary_lines(self) -> List[str]:
        lines = []
        for r in self.results.values():
            line = f"{r.name}: {r.state.value.upper()}"
            if r.error is not None:
                line += f" [{r.error.kind}] {r.error.diagnostic}"
            elif r.reason:
                line += f" ({r.reason})"
            lines.append(line)
        return lines
