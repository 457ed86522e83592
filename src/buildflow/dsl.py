# src/buildflow/dsl.py
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from .ci.github_actions import GitHubActionsMetadata, generate
from .ci.hooks import StepHook
from .ci.workflow import WorkflowJob
from .dag import TargetGraph, build_graph
from .model import Action, Condition, Step, Target, target_key
from .params import Parameter, ParameterResolver, ResolvedParameters


# ---------------------------------------------------------------------
# Step helper
# ---------------------------------------------------------------------

def sh(name: str, cmd: str, *, cwd: str | None = None) -> Step:
    """Create a shell step."""
    return Step(name=name, run=cmd, cwd=cwd)


TargetRef = Union[str, "TargetBuilder"]


def _name(ref: TargetRef) -> str:
    return ref.name if isinstance(ref, TargetBuilder) else ref


# ---------------------------------------------------------------------
# Builder API
# ---------------------------------------------------------------------

class TargetBuilder:
    """
    Fluent target declaration.

        build.target("Pack")
            .depends_on(compile)
            .before("UnitTest")
            .produces("artifacts/nuget-packages/*.nupkg")
            .define_step("dotnet pack", "dotnet pack -c {Configuration}")
    """

    def __init__(self, name: str):
        if not name or not name.strip():
            raise ValueError("Target name must be non-empty")
        self.name = name
        self._description = ""
        self._needs: list[str] = []
        self._before: list[str] = []
        self._after: list[str] = []
        self._conditions: list[Condition] = []
        self._steps: list[Step] = []
        self._action: Optional[Action] = None
        self._produces: list[str] = []
        self._consumes: list[str] = []
        self._unlisted = False
        self._requires: list[str] = []
        self._requirements: list[Tuple[Callable[[ResolvedParameters], bool], str]] = []

    def description(self, text: str):
        self._description = text
        return self

    def depends_on(self, *targets: TargetRef):
        self._needs.extend(_name(t) for t in targets)
        return self

    def before(self, *targets: TargetRef):
        self._before.extend(_name(t) for t in targets)
        return self

    def after(self, *targets: TargetRef):
        self._after.extend(_name(t) for t in targets)
        return self

    def only_when(self, *conditions: Condition):
        self._conditions.extend(conditions)
        return self

    def requires(self, *parameters: Union[str, Parameter]):
        self._requires.extend(p.name if isinstance(p, Parameter) else p for p in parameters)
        return self

    def requires_that(self, check: Callable[[ResolvedParameters], bool], description: str):
        self._requirements.append((check, description))
        return self

    def produces(self, *patterns: Union[str, Path]):
        self._produces.extend(str(p) for p in patterns)
        return self

    def consumes(self, *targets: TargetRef):
        self._consumes.extend(_name(t) for t in targets)
        return self

    def unlisted(self, flag: bool = True):
        self._unlisted = flag
        return self

    def define_step(self, name: str, run: str, cwd: str | None = None):
        self._steps.append(Step(name=name, run=run, cwd=cwd))
        return self

    def steps(self, *steps: Step):
        self._steps.extend(steps)
        return self

    def executes(self, action: Action):
        if self._action is not None:
            raise ValueError(f"Target '{self.name}' already has an action")
        self._action = action
        return self

    def build(self) -> Target:
        return Target(
            name=self.name,
            description=self._description,
            dependencies=tuple(dict.fromkeys(self._needs)),
            before=tuple(dict.fromkeys(self._before)),
            after=tuple(dict.fromkeys(self._after)),
            conditions=tuple(self._conditions),
            steps=tuple(self._steps),
            action=self._action,
            produces=tuple(dict.fromkeys(self._produces)),
            consumes=tuple(dict.fromkeys(self._consumes)),
            unlisted=self._unlisted,
            required_parameters=tuple(dict.fromkeys(self._requires)),
            requirements=tuple(self._requirements),
        )


@dataclass(frozen=True)
class WorkflowSpec:
    """A registered CI workflow: provider metadata plus its step hooks."""
    metadata: GitHubActionsMetadata
    hooks: Tuple[StepHook, ...] = ()


# ---------------------------------------------------------------------
# Registration table
# ---------------------------------------------------------------------

class BuildDefinition:
    """
    Explicit registration table for one build: parameters, targets, workflows.

    Targets are kept in declaration order; names are case-insensitive.
    """

    def __init__(self, name: str = "build", *, default_target: str | None = None, root: str | Path = "."):
        self.name = name
        self.default_target = default_target
        self.root = Path(root)
        self._parameters: Dict[str, Parameter] = {}
        self._targets: Dict[str, TargetBuilder] = {}
        self._workflows: List[WorkflowSpec] = []

    # ---- declarations ----

    def parameter(self, name: str, **options: Any) -> Parameter:
        param = Parameter(name=name, **options)
        if param.key in self._parameters:
            raise ValueError(f"Duplicate parameter name: {name}")
        self._parameters[param.key] = param
        return param

    def target(self, name: str) -> TargetBuilder:
        key = target_key(name)
        if key in self._targets:
            raise ValueError(f"Duplicate target name: {name}")
        builder = TargetBuilder(name)
        self._targets[key] = builder
        return builder

    def github_actions(self, metadata: GitHubActionsMetadata, *hooks: StepHook) -> WorkflowSpec:
        spec = WorkflowSpec(metadata=metadata, hooks=tuple(hooks))
        self._workflows.append(spec)
        return spec

    # ---- views ----

    @property
    def parameters(self) -> List[Parameter]:
        return list(self._parameters.values())

    @property
    def targets(self) -> List[Target]:
        return [b.build() for b in self._targets.values()]

    @property
    def workflows(self) -> List[WorkflowSpec]:
        return list(self._workflows)

    def graph(self) -> TargetGraph:
        """Build the immutable graph. Raises DependencyCycleError / ValueError."""
        return build_graph(self.targets)

    def resolver(self, **options: Any) -> ParameterResolver:
        return ParameterResolver(self.parameters, **options)

    def workflow_jobs(self) -> List[WorkflowJob]:
        graph = self.graph()
        return [
            generate(graph, spec.metadata, hooks=spec.hooks, parameters=self.parameters)
            for spec in self._workflows
        ]


def definition(name: str = "build", **kwargs: Any) -> BuildDefinition:
    """Convenience: BUILD = definition("MyBuild", default_target="Build")"""
    return BuildDefinition(name, **kwargs)
