# ci/github_actions.py
from __future__ import annotations

import enum
import posixpath
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

import yaml
from pydantic import BaseModel, ConfigDict, Field

from ..dag import TargetGraph
from ..model import Target
from ..params import Parameter, normalize_name, screaming_snake
from .hooks import StepHook, compose
from .workflow import WorkflowJob, WorkflowStep

CHECKOUT_ACTION = "actions/checkout@v4"
UPLOAD_ARTIFACT_ACTION = "actions/upload-artifact@v4"
WORKFLOWS_DIR = Path(".github") / "workflows"
HEADER = (
    "# ------------------------------------------------------------------------------\n"
    "# <auto-generated>\n"
    "#     This file was generated by buildflow. Changes will be lost when regenerated.\n"
    "#     Regenerate with: buildflow generate\n"
    "# </auto-generated>\n"
    "# ------------------------------------------------------------------------------\n"
    "\n"
)


class GitHubActionsPermission(str, enum.Enum):
    # declaration order is the serialization order
    ACTIONS = "actions"
    ATTESTATIONS = "attestations"
    CHECKS = "checks"
    CONTENTS = "contents"
    DEPLOYMENTS = "deployments"
    ID_TOKEN = "id-token"
    ISSUES = "issues"
    PACKAGES = "packages"
    PAGES = "pages"
    PULL_REQUESTS = "pull-requests"
    SECURITY_EVENTS = "security-events"
    STATUSES = "statuses"


class GitHubActionsMetadata(BaseModel):
    """Provider metadata for one generated GitHub Actions workflow."""
    model_config = ConfigDict(frozen=True)

    name: str
    runs_on: str = "ubuntu-latest"
    on_push_branches: Tuple[str, ...] = ()
    on_pull_request_branches: Tuple[str, ...] = ()
    invoked_targets: Tuple[str, ...] = Field(min_length=1)
    fetch_depth: Optional[int] = Field(default=None, ge=0)
    publish_artifacts: bool = False
    enable_github_token: bool = False
    import_secrets: Tuple[str, ...] = ()
    write_permissions: Tuple[GitHubActionsPermission, ...] = ()
    read_permissions: Tuple[GitHubActionsPermission, ...] = ()
    build_command: str = "./build.sh"

    @property
    def file_name(self) -> str:
        return f"{self.name}.yml"


StepMapping = Callable[[Target, GitHubActionsMetadata], Sequence[WorkflowStep]]


def checkout_step(metadata: GitHubActionsMetadata) -> WorkflowStep:
    with_: Dict[str, str] = {}
    if metadata.fetch_depth is not None:
        with_["fetch-depth"] = str(metadata.fetch_depth)
    return WorkflowStep(name="Checkout", uses=CHECKOUT_ACTION, with_=with_)


def target_steps(target: Target, metadata: GitHubActionsMetadata) -> List[WorkflowStep]:
    """Default mapping: each target runs as its own build invocation, dependencies already done."""
    return [WorkflowStep(name=f"Run {target.name}", run=f"{metadata.build_command} {target.name} --skip")]


def artifact_steps(targets: Iterable[Target]) -> List[WorkflowStep]:
    steps: List[WorkflowStep] = []
    seen = set()
    for t in targets:
        for pattern in t.produces:
            if pattern in seen:
                continue
            seen.add(pattern)
            directory = posixpath.dirname(pattern.replace("\\", "/")) or "."
            artifact = posixpath.basename(directory.rstrip("/")) or t.name
            steps.append(
                WorkflowStep(
                    name=f"Publish: {artifact}",
                    uses=UPLOAD_ARTIFACT_ACTION,
                    with_={"name": artifact, "path": pattern},
                )
            )
    return steps


def secret_env_name(name: str, parameters: Iterable[Parameter] = ()) -> str:
    for p in parameters:
        if p.key == normalize_name(name):
            return p.env or screaming_snake(p.name)
    return screaming_snake(name)


def _permissions(metadata: GitHubActionsMetadata) -> Tuple[Tuple[str, str], ...]:
    out = []
    for perm in GitHubActionsPermission:
        if perm in metadata.write_permissions:
            out.append((perm.value, "write"))
        elif perm in metadata.read_permissions:
            out.append((perm.value, "read"))
    return tuple(out)


def _triggers(metadata: GitHubActionsMetadata) -> Tuple[Tuple[str, Tuple[str, ...]], ...]:
    out = []
    if metadata.on_push_branches:
        out.append(("push", tuple(metadata.on_push_branches)))
    if metadata.on_pull_request_branches:
        out.append(("pull_request", tuple(metadata.on_pull_request_branches)))
    return tuple(out)


def generate(
    graph: TargetGraph,
    metadata: GitHubActionsMetadata,
    *,
    entry_targets: Optional[Iterable[str]] = None,
    step_mapping: StepMapping = target_steps,
    hooks: Sequence[StepHook] = (),
    parameters: Iterable[Parameter] = (),
) -> WorkflowJob:
    """
    Project the entry targets' sub-graph into a workflow job.

    Steps follow the same topological order the local engine uses, so what
    runs first locally runs first on the CI server.
    """
    entries = list(entry_targets) if entry_targets is not None else list(metadata.invoked_targets)
    order = graph.order(entries)

    base: List[WorkflowStep] = [checkout_step(metadata)]
    for target in order:
        base.extend(step_mapping(target, metadata))
    if metadata.publish_artifacts:
        base.extend(artifact_steps(order))

    steps = compose(*hooks)(tuple(base))

    parameters = list(parameters)
    env: List[Tuple[str, str]] = []
    if metadata.enable_github_token:
        env.append(("GITHUB_TOKEN", "${{ secrets.GITHUB_TOKEN }}"))
    for secret in metadata.import_secrets:
        var = secret_env_name(secret, parameters)
        env.append((var, "${{ secrets.%s }}" % var))

    return WorkflowJob(
        name=metadata.name,
        runs_on=metadata.runs_on,
        triggers=_triggers(metadata),
        permissions=_permissions(metadata),
        imported_secrets=tuple(metadata.import_secrets),
        steps=tuple(steps),
        env=tuple(env),
    )


def render(job: WorkflowJob) -> str:
    """Serialize deterministically: fixed header, insertion-ordered keys."""
    body = yaml.safe_dump(
        job.to_dict(),
        sort_keys=False,
        default_flow_style=False,
        allow_unicode=True,
        width=1000,
    )
    return HEADER + body


def workflow_path(metadata: GitHubActionsMetadata, root: str | Path = ".") -> Path:
    return Path(root) / WORKFLOWS_DIR / metadata.file_name


def write_workflow(job: WorkflowJob, path: str | Path) -> bool:
    """Write the rendered workflow. Returns True when the file content changed."""
    path = Path(path)
    text = render(job)
    if path.exists() and path.read_text(encoding="utf-8") == text:
        return False
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return True
