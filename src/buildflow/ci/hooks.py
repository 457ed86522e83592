# ci/hooks.py
# Step customization hooks: functions from an immutable step tuple to a new
# step sequence, applied after base step generation and before serialization.
from __future__ import annotations

from typing import Callable, Sequence, Tuple

from .workflow import WorkflowStep

StepHook = Callable[[Tuple[WorkflowStep, ...]], Sequence[WorkflowStep]]

SETUP_DOTNET_ACTION = "actions/setup-dotnet@v4"
SETUP_PYTHON_ACTION = "actions/setup-python@v5"


def identity(steps: Tuple[WorkflowStep, ...]) -> Tuple[WorkflowStep, ...]:
    return steps


def compose(*hooks: StepHook) -> StepHook:
    """Apply hooks left to right. Each hook receives a tuple it cannot mutate."""
    if not hooks:
        return identity

    def composed(steps: Tuple[WorkflowStep, ...]) -> Tuple[WorkflowStep, ...]:
        current = tuple(steps)
        for hook in hooks:
            current = tuple(hook(current))
        return current

    return composed


def insert_step(index: int, step: WorkflowStep) -> StepHook:
    """Insert a fixed step at a fixed index (e.g. toolchain setup right after checkout)."""

    def hook(steps: Tuple[WorkflowStep, ...]) -> Tuple[WorkflowStep, ...]:
        if index < 0 or index > len(steps):
            raise IndexError(f"Cannot insert '{step.name}' at {index}: workflow has {len(steps)} steps")
        return steps[:index] + (step,) + steps[index:]

    hook.__name__ = f"insert_step({index}, {step.name!r})"
    return hook


def replace_step(name: str, step: WorkflowStep) -> StepHook:
    """Swap every step called `name` for `step`."""

    def hook(steps: Tuple[WorkflowStep, ...]) -> Tuple[WorkflowStep, ...]:
        return tuple(step if s.name == name else s for s in steps)

    hook.__name__ = f"replace_step({name!r})"
    return hook


def setup_python(version: str) -> WorkflowStep:
    return WorkflowStep(
        name="Setup Python",
        uses=SETUP_PYTHON_ACTION,
        with_={"python-version": version},
    )


def install_buildflow() -> WorkflowStep:
    """Install this repository's build tool so `./build.sh` steps can run."""
    return WorkflowStep(name="Install buildflow", run="python -m pip install -e .")


def setup_dotnet(version: str) -> WorkflowStep:
    return WorkflowStep(
        name="Setup .NET",
        uses=SETUP_DOTNET_ACTION,
        with_={"dotnet-version": version},
    )
