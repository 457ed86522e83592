# git.py
# Small, focused wrapper around the Git CLI.
# Run conditions (branch checks) and version defaults read repository facts
# through this module so the rest of the codebase never calls git directly.

from __future__ import annotations

import os
import subprocess
from typing import Mapping, Optional

MASTER_BRANCHES = ("master", "main")
FEATURE_BRANCH_PREFIX = "feature/"


def _git(args: list[str], cwd: Optional[str] = None) -> str:
    """
    Execute a git command and return its stdout as a clean string.

    Args:
        args: List of git arguments (e.g. ["rev-parse", "HEAD"])
        cwd: Optional working directory in which to run the git command.

    Returns:
        Stdout from the git command with surrounding whitespace removed.

    Raises:
        subprocess.CalledProcessError: git exited with a non-zero status.
        FileNotFoundError: git is not installed.
    """
    out = subprocess.check_output(
        ["git", *args],
        cwd=cwd,
        text=True,
        stderr=subprocess.DEVNULL,
    )
    return out.strip()


def current_branch(
    environ: Optional[Mapping[str, str]] = None,
    cwd: Optional[str] = None,
) -> Optional[str]:
    """
    Return the branch being built, or None when it cannot be determined.

    On GitHub Actions the checkout is usually a detached HEAD, so the
    GITHUB_REF_NAME / GITHUB_HEAD_REF variables take precedence over
    asking git.

    Args:
        environ: Environment to inspect (defaults to os.environ).
        cwd: Optional working directory for the git fallback.
    """
    env = os.environ if environ is None else environ
    for key in ("GITHUB_HEAD_REF", "GITHUB_REF_NAME"):
        value = env.get(key)
        if value:
            return value

    try:
        branch = _git(["rev-parse", "--abbrev-ref", "HEAD"], cwd=cwd)
    except (subprocess.CalledProcessError, FileNotFoundError):
        return None

    # detached HEAD
    if branch == "HEAD":
        return None
    return branch


def describe_version(cwd: Optional[str] = None, fallback: str = "0.0.0-local") -> str:
    """
    Return a version string derived from the closest tag.

    Version derivation proper is an external concern; this is only the
    default used when no Version parameter is passed.
    """
    try:
        described = _git(["describe", "--tags", "--abbrev=0"], cwd=cwd)
    except (subprocess.CalledProcessError, FileNotFoundError):
        return fallback
    return described.lstrip("v") or fallback


def is_master_branch(branch: Optional[str]) -> bool:
    return branch in MASTER_BRANCHES


def is_feature_branch(branch: Optional[str]) -> bool:
    return bool(branch) and branch.startswith(FEATURE_BRANCH_PREFIX)
