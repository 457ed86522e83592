# runner.py
from __future__ import annotations

import os
import re
import runpy
import subprocess
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Mapping, Optional, Sequence, Set, Union

from . import artifacts
from .dag import TargetGraph
from .errors import (
    ArtifactContractViolation,
    BuildError,
    ConfigurationError,
    ExecutionFailure,
    redact,
)
from .model import ExecutionReport, Step, Target, TargetResult, TargetState, target_key
from .params import ResolvedParameters, normalize_name
from .ui.console import Console, get_console
from .git_facts.git import current_branch

if TYPE_CHECKING:
    from .dsl import BuildDefinition


# ----------------------------------------------------------------------
# Errors
# ----------------------------------------------------------------------

@dataclass
class StepFailure(Exception):
    target: str
    step: str
    cmd: str
    exit_code: int
    stdout: str = ""
    stderr: str = ""

    def __str__(self) -> str:
        return f"[{self.target}] step '{self.step}' failed (exit={self.exit_code}): {self.cmd}"


# ----------------------------------------------------------------------
# Run configuration / per-target context
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class RunConfig:
    root: Path = Path(".")
    max_workers: int = 1
    skip: frozenset = frozenset()        # target names never visited this run
    skip_dependencies: bool = False      # only run the requested targets themselves
    fail_fast: bool = False              # cancel everything not started after the first failure
    branch: str | None = None            # overrides git / CI detection
    environ: Optional[Mapping[str, str]] = None


@dataclass(frozen=True)
class TargetContext:
    """What an action or condition can see: its target, parameters and finished results."""
    target: Target
    params: ResolvedParameters
    root: Path
    environ: Mapping[str, str]
    branch: str | None
    results: Mapping[str, TargetResult] = field(default_factory=dict)

    def result_of(self, name: str) -> Any:
        """Value returned by an already-succeeded target's action, else None."""
        result = self.results.get(target_key(name))
        if result is None or result.state is not TargetState.SUCCEEDED:
            return None
        return result.value

    def path(self, *parts: str) -> Path:
        return self.root.joinpath(*parts)

    def run(self, command: Union[str, Sequence[str]], *, cwd: str | None = None, name: str | None = None) -> str:
        """
        Run an external command and return its stdout.

        Raises:
            StepFailure: non-zero exit. Command and output tails are redacted.
        """
        secrets = self.params.secret_values()
        shell = isinstance(command, str)
        shown = command if shell else " ".join(str(c) for c in command)
        workdir = (self.root / (cwd or ".")).resolve()
        if not workdir.exists():
            raise FileNotFoundError(f"[{self.target.name}] cwd not found: {workdir}")

        env = dict(os.environ)
        env.update(self.environ)
        proc = subprocess.run(
            command if shell else [str(c) for c in command],
            shell=shell,
            cwd=str(workdir),
            env=env,
            text=True,
            capture_output=True,
        )
        if proc.returncode != 0:
            raise StepFailure(
                target=self.target.name,
                step=name or redact(shown, secrets),
                cmd=redact(shown, secrets),
                exit_code=proc.returncode,
                stdout=redact(proc.stdout[-4000:], secrets),
                stderr=redact(proc.stderr[-4000:], secrets),
            )
        return proc.stdout


# ----------------------------------------------------------------------
# Execution primitives
# ----------------------------------------------------------------------

_PLACEHOLDER = re.compile(r"\{(\w+)\}")


def expand(template: str, params: ResolvedParameters) -> str:
    """Replace {Parameter} placeholders with revealed values. Unknown names stay as written."""
    values = {normalize_name(k): v for k, v in params.revealed().items()}

    def sub(m: re.Match) -> str:
        key = normalize_name(m.group(1))
        return str(values[key]) if key in values else m.group(0)

    return _PLACEHOLDER.sub(sub, template)


def parameters_used(targets: Iterable[Target]) -> Set[str]:
    """Parameter names a set of targets requires or references in step placeholders."""
    names: Set[str] = set()
    for t in targets:
        names.update(t.required_parameters)
        for step in t.steps:
            names.update(_PLACEHOLDER.findall(step.run))
    return names


def _run_step(ctx: TargetContext, step: Step, console: Console) -> None:
    console.print_step(step.name)
    # only the template is ever shown, never the expanded command
    cmd = expand(step.run, ctx.params)
    try:
        ctx.run(cmd, cwd=step.cwd, name=step.name)
    except StepFailure as e:
        e.cmd = step.run
        raise


def _invoke(ctx: TargetContext, console: Console) -> Any:
    for step in ctx.target.steps:
        _run_step(ctx, step, console)
    if ctx.target.action is not None:
        return ctx.target.action(ctx)
    return None


class Executor:
    """
    Runs a requested sub-graph once.

    Targets run in topological order (sequentially, or on a thread pool when
    max_workers > 1). Failure blocks only the dependent closure of the failed
    target unless fail_fast is set.
    """

    def __init__(
        self,
        graph: TargetGraph,
        params: Optional[ResolvedParameters] = None,
        config: Optional[RunConfig] = None,
        console: Optional[Console] = None,
    ):
        self.graph = graph
        self.params = params or ResolvedParameters()
        self.config = config or RunConfig()
        self.console = console or get_console()
        self.environ: Mapping[str, str] = dict(os.environ if self.config.environ is None else self.config.environ)
        self._cancel = threading.Event()
        self._lock = threading.Lock()
        self._results: Dict[str, TargetResult] = {}
        self._report: Optional[ExecutionReport] = None
        self._branch: Optional[str] = None
        self._interrupted = False

    # ---- public ----

    def cancel(self) -> None:
        """Stop scheduling. Running actions are allowed to finish."""
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    @property
    def interrupted(self) -> bool:
        """True when the last run was stopped by Ctrl-C."""
        return self._interrupted

    def _interrupt(self) -> None:
        self.console.print_info("\nCancelling: waiting for running targets to finish")
        self._interrupted = True
        self.cancel()

    def plan(self, requested: Iterable[str]) -> List[Target]:
        """
        Targets this run will visit, in execution order.

        Raises:
            ConfigurationError: a requested target is also excluded by `skip`.
        """
        requested = [self.graph.get(n).key for n in requested]
        skip = {target_key(n) for n in self.config.skip}
        excluded = [self.graph.get(k).name for k in dict.fromkeys(requested) if k in skip]
        if excluded:
            raise ConfigurationError("Requested target(s) are also skipped: " + ", ".join(excluded))
        keys = []
        for t in self.graph.closure(requested):
            if t.key in skip:
                continue
            if self.config.skip_dependencies and t.key not in requested:
                continue
            keys.append(t.key)
        return self.graph.order_of(keys)

    def run(self, requested: Iterable[str]) -> ExecutionReport:
        requested = list(requested)
        order = self.plan(requested)
        self._results = {}
        self._interrupted = False
        self._report = ExecutionReport(requested=[self.graph.get(n).name for n in requested])
        self._branch = self.config.branch if self.config.branch is not None else current_branch(
            self.environ, cwd=str(self.config.root)
        )

        if self.config.max_workers > 1:
            self._run_parallel(order)
        else:
            self._run_sequential(order)

        self._report.results = {t.key: self._results[t.key] for t in order if t.key in self._results}
        return self._report

    # ---- scheduling ----

    def _run_sequential(self, order: List[Target]) -> None:
        planned = {t.key for t in order}
        for t in order:
            decided = self._gate(t, planned)
            if decided is not None:
                self._record(decided)
                continue
            try:
                result = self._execute(t)
            except KeyboardInterrupt:
                self._interrupt()
                result = TargetResult(t.name, TargetState.CANCELLED, reason="interrupted")
            self._record(result)

    def _run_parallel(self, order: List[Target]) -> None:
        planned = {t.key for t in order}
        position = {t.key: i for i, t in enumerate(order)}
        waiting: Dict[str, Set[str]] = {t.key: self.graph.predecessors(t.key, planned) for t in order}
        ready: List[str] = [k for k, preds in waiting.items() if not preds]
        in_flight: Dict[Future, str] = {}

        def release(done_key: str) -> None:
            for key, preds in waiting.items():
                if done_key in preds:
                    preds.discard(done_key)
                    if not preds and key not in self._results and key not in in_flight.values():
                        ready.append(key)

        with ThreadPoolExecutor(max_workers=self.config.max_workers) as pool:
            while ready or in_flight:
                ready.sort(key=position.__getitem__)
                while ready and len(in_flight) < self.config.max_workers:
                    key = ready.pop(0)
                    target = self.graph.get(key)
                    decided = self._gate(target, planned)
                    if decided is not None:
                        self._record(decided)
                        release(key)
                        continue
                    in_flight[pool.submit(self._execute, target)] = key

                if not in_flight:
                    continue

                try:
                    done, _ = wait(list(in_flight), return_when=FIRST_COMPLETED)
                except KeyboardInterrupt:
                    self._interrupt()
                    continue

                for fut in sorted(done, key=lambda f: position[in_flight[f]]):
                    key = in_flight.pop(fut)
                    try:
                        result = fut.result()
                    except KeyboardInterrupt:
                        self._interrupt()
                        result = TargetResult(self.graph.get(key).name, TargetState.CANCELLED, reason="interrupted")
                    self._record(result)
                    release(key)

    # ---- per-target decisions ----

    def _context(self, target: Target) -> TargetContext:
        with self._lock:
            snapshot = dict(self._results)
        return TargetContext(
            target=target,
            params=self.params,
            root=Path(self.config.root),
            environ=self.environ,
            branch=self._branch,
            results=snapshot,
        )

    def _record(self, result: TargetResult) -> None:
        with self._lock:
            self._results[target_key(result.name)] = result
        self.console.print_target_result(result)
        if self.config.fail_fast and result.state is TargetState.FAILED:
            self.cancel()

    def _gate(self, target: Target, planned: Set[str]) -> Optional[TargetResult]:
        """
        Decide a target's terminal state without running it, or return None when
        it should run: cancellation, failed dependencies, unavailable consumed
        artifacts, false conditions, unbound parameters.
        """
        name = target.name
        if self.cancelled:
            return TargetResult(name, TargetState.CANCELLED, reason="run cancelled")

        for dep in target.dependencies:
            result = self._results.get(target_key(dep))
            if result is not None and result.state.is_failure:
                return TargetResult(
                    name, TargetState.BLOCKED, reason=f"dependency '{result.name}' {result.state.value}"
                )

        for producer_name in target.consumes:
            producer = self.graph.get(producer_name)
            if producer.key in planned:
                result = self._results.get(producer.key)
                if result is None or result.state is not TargetState.SUCCEEDED:
                    state = result.state.value if result is not None else "not run"
                    return TargetResult(
                        name,
                        TargetState.BLOCKED,
                        error=ArtifactContractViolation(
                            f"Consumed artifacts of '{producer.name}' unavailable ({state})",
                            target=name,
                            patterns=list(producer.produces),
                        ),
                    )
            else:
                missing = artifacts.missing_patterns(producer, self.config.root)
                if missing:
                    return TargetResult(
                        name,
                        TargetState.BLOCKED,
                        error=ArtifactContractViolation(
                            f"Consumed artifacts of '{producer.name}' not found: {', '.join(missing)}",
                            target=name,
                            patterns=missing,
                        ),
                    )

        ctx = self._context(target)
        for condition in target.conditions:
            try:
                passed = bool(condition(ctx))
            except Exception as e:
                return self._failure(target, e)
            if not passed:
                label = getattr(condition, "__name__", "condition")
                return TargetResult(name, TargetState.SKIPPED, reason=f"{label} is false")

        unbound = [p for p in target.required_parameters if not self.params.is_bound(p)]
        if unbound:
            return TargetResult(
                name,
                TargetState.FAILED,
                error=ConfigurationError(
                    "Required parameter(s) not set: " + ", ".join(unbound), target=name
                ),
            )

        for check, description in target.requirements:
            try:
                satisfied = bool(check(self.params))
            except Exception as e:
                return self._failure(target, e)
            if not satisfied:
                return TargetResult(
                    name,
                    TargetState.FAILED,
                    error=ConfigurationError(f"Requirement not met: {description}", target=name),
                )
        return None

    def _failure(self, target: Target, exc: BaseException, duration: float = 0.0) -> TargetResult:
        secrets = self.params.secret_values()
        if isinstance(exc, BuildError):
            error = exc
            error.message = redact(error.message, secrets)
            error.details = {k: redact(str(v), secrets) for k, v in error.details.items()}
            if error.target is None:
                error.target = target.name
        else:
            details: Dict[str, Any] = {"exception": type(exc).__name__}
            if isinstance(exc, StepFailure):
                details["exit_code"] = exc.exit_code
                if exc.stderr.strip():
                    details["stderr"] = exc.stderr.strip().splitlines()[-1]
            error = ExecutionFailure(redact(str(exc), secrets), target=target.name, details=details)
        return TargetResult(target.name, TargetState.FAILED, error=error, duration=duration)

    def _execute(self, target: Target) -> TargetResult:
        """Run the action of a target that passed its gate. Called at most once per target."""
        with self._lock:
            if target.key in self._results or target.name in self._report.ran:
                raise RuntimeError(f"Target '{target.name}' scheduled twice")
            self._report.ran.append(target.name)

        self.console.print_target_start(target.name)
        ctx = self._context(target)
        started = time.monotonic()
        try:
            value = _invoke(ctx, self.console)
            if target.produces:
                artifacts.verify(target, self.config.root)
        except Exception as e:
            return self._failure(target, e, time.monotonic() - started)
        return TargetResult(
            target.name, TargetState.SUCCEEDED, duration=time.monotonic() - started, value=value
        )


def run_targets(
    graph: TargetGraph,
    requested: Iterable[str],
    params: Optional[ResolvedParameters] = None,
    config: Optional[RunConfig] = None,
    console: Optional[Console] = None,
) -> ExecutionReport:
    return Executor(graph, params, config, console).run(requested)


# ----------------------------------------------------------------------
# Build definition loading (local file/module)
# ----------------------------------------------------------------------

def load_definition(path: str | Path) -> "BuildDefinition":
    """
    Load a build definition from a python file path.

    The file must define either:
      - definition() -> BuildDefinition
      - BUILD = BuildDefinition(...)
    """
    from .dsl import BuildDefinition

    def_path = Path(path).expanduser().resolve()
    if not def_path.exists():
        raise FileNotFoundError(f"Build definition not found: {def_path}")
    if def_path.suffix != ".py":
        raise ValueError(f"Build definition must be a .py file, got: {def_path.name}")

    module_name = f"buildflow_definition_{def_path.stem}"
    globals_dict = runpy.run_path(str(def_path), run_name=module_name)

    build = None
    if "definition" in globals_dict and callable(globals_dict["definition"]):
        build = globals_dict["definition"]()
    elif "BUILD" in globals_dict:
        build = globals_dict["BUILD"]

    if not isinstance(build, BuildDefinition):
        raise TypeError(
            "Build definition file must define definition() -> BuildDefinition "
            "or BUILD = BuildDefinition(...)."
        )
    return build
