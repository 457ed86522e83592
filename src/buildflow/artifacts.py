# artifacts.py
from __future__ import annotations

import glob
import os
from pathlib import Path
from typing import List

from .errors import ArtifactContractViolation
from .model import Target


def matching_files(pattern: str, root: str | Path = ".") -> List[Path]:
    """Existing files matching a glob pattern (recursive `**` allowed), relative patterns anchored at root."""
    full = pattern if os.path.isabs(pattern) else os.path.join(str(root), pattern)
    return sorted(Path(p) for p in glob.glob(full, recursive=True) if os.path.isfile(p))


def missing_patterns(target: Target, root: str | Path = ".") -> List[str]:
    return [p for p in target.produces if not matching_files(p, root)]


def verify(target: Target, root: str | Path = ".") -> None:
    """
    Check a target's artifact contract after its action reported success.

    Raises:
        ArtifactContractViolation: a `produces` pattern matched no file.
    """
    missing = missing_patterns(target, root)
    if missing:
        raise ArtifactContractViolation(
            f"Declared outputs not found: {', '.join(missing)}",
            target=target.name,
            patterns=missing,
        )
