# ci/workflow.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Tuple


@dataclass(frozen=True)
class WorkflowStep:
    """One provider step: either `uses` an action or `run`s a command."""
    name: str
    uses: Optional[str] = None
    run: Optional[str] = None
    with_: Mapping[str, str] = field(default_factory=dict)
    env: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self):
        if (self.uses is None) == (self.run is None):
            raise ValueError(f"Step '{self.name}' must define exactly one of 'uses' or 'run'")

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"name": self.name}
        if self.uses is not None:
            out["uses"] = self.uses
        else:
            out["run"] = self.run
        if self.with_:
            out["with"] = {k: str(v) for k, v in self.with_.items()}
        if self.env:
            out["env"] = {k: str(v) for k, v in self.env.items()}
        return out


@dataclass(frozen=True)
class WorkflowJob:
    """
    A generated CI workflow with a single job.

    `triggers` maps an event name to its branch globs, `permissions` is an
    ordered (scope, access) list, `imported_secrets` holds secret names only.
    """
    name: str
    runs_on: str
    triggers: Tuple[Tuple[str, Tuple[str, ...]], ...]
    permissions: Tuple[Tuple[str, str], ...]
    imported_secrets: Tuple[str, ...]
    steps: Tuple[WorkflowStep, ...]
    env: Tuple[Tuple[str, str], ...] = ()

    def step_names(self) -> list[str]:
        return [s.name for s in self.steps]

    def to_dict(self) -> Dict[str, Any]:
        doc: Dict[str, Any] = {"name": self.name}
        doc["on"] = {event: {"branches": list(branches)} for event, branches in self.triggers}
        if self.permissions:
            doc["permissions"] = dict(self.permissions)
        job: Dict[str, Any] = {"name": self.runs_on, "runs-on": self.runs_on}
        if self.env:
            job["env"] = dict(self.env)
        job["steps"] = [s.to_dict() for s in self.steps]
        doc["jobs"] = {self.runs_on: job}
        return doc
