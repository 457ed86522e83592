# conditions.py
# Ready-made run conditions for TargetBuilder.only_when().
# Each condition is a predicate taking the TargetContext of the target being gated.
from __future__ import annotations

from typing import TYPE_CHECKING, Any, Callable, Mapping

from .git_facts.git import is_feature_branch, is_master_branch
from .params import normalize_name

if TYPE_CHECKING:
    from .runner import TargetContext

_SERVER_VARIABLES = ("GITHUB_ACTIONS", "CI", "TF_BUILD")


def server_build(environ: Mapping[str, str]) -> bool:
    """True when running under a CI server rather than on a developer machine."""
    return any(environ.get(k, "").lower() in ("true", "1") for k in _SERVER_VARIABLES)


def is_server_build(ctx: "TargetContext") -> bool:
    return server_build(ctx.environ)


def is_local_build(ctx: "TargetContext") -> bool:
    return not server_build(ctx.environ)


def on_master_branch(ctx: "TargetContext") -> bool:
    return is_master_branch(ctx.branch)


def on_feature_branch(ctx: "TargetContext") -> bool:
    return is_feature_branch(ctx.branch)


def on_branch(*names: str) -> Callable[["TargetContext"], bool]:
    wanted = set(names)

    def check(ctx: "TargetContext") -> bool:
        return ctx.branch in wanted

    check.__name__ = f"on_branch({', '.join(names)})"
    return check


def any_of(*conditions: Callable[["TargetContext"], bool]) -> Callable[["TargetContext"], bool]:
    def check(ctx: "TargetContext") -> bool:
        return any(c(ctx) for c in conditions)

    check.__name__ = " or ".join(getattr(c, "__name__", "condition") for c in conditions)
    return check


def param_equals(name: str, expected: Any) -> Callable[["TargetContext"], bool]:
    def check(ctx: "TargetContext") -> bool:
        return ctx.params.reveal(name) == expected

    check.__name__ = f"{normalize_name(name)} == {expected!r}"
    return check
