# dag.py
from __future__ import annotations

import heapq
from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional, Set, Tuple

from .errors import DependencyCycleError
from .model import Target, target_key


@dataclass(frozen=True)
class TargetGraph:
    """
    Immutable target graph.

    `targets` keeps declaration order, which breaks ties in every ordering.
    `precede` maps a target key to the keys that must run after it
    (depends-on, before/after and consumes edges combined).
    """
    targets: Tuple[Target, ...]
    index: Mapping[str, int]
    precede: Mapping[str, Tuple[str, ...]]

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and target_key(name) in self.index

    def __iter__(self):
        return iter(self.targets)

    def __len__(self) -> int:
        return len(self.targets)

    def get(self, name: str) -> Target:
        key = target_key(name)
        if key not in self.index:
            raise ValueError(
                f"Unknown target '{name}'. Known targets: {[t.name for t in self.targets]}"
            )
        return self.targets[self.index[key]]

    def listed(self) -> List[Target]:
        return [t for t in self.targets if not t.unlisted]

    def dependencies_of(self, name: str) -> List[str]:
        return [target_key(d) for d in self.get(name).dependencies]

    def closure(self, requested: Iterable[str]) -> List[Target]:
        """
        Requested targets plus all transitive depends-on targets (not dependents),
        in declaration order.
        """
        seen: Set[str] = set()
        stack = [self.get(n).key for n in requested]
        while stack:
            key = stack.pop()
            if key in seen:
                continue
            seen.add(key)
            stack.extend(self.dependencies_of(key))
        return [t for t in self.targets if t.key in seen]

    def predecessors(self, name: str, within: Optional[Set[str]] = None) -> Set[str]:
        """Keys that must reach a terminal state before `name` may start."""
        key = target_key(name)
        preds = {src for src, dsts in self.precede.items() if key in dsts}
        if within is not None:
            preds &= within
        return preds

    def order(self, requested: Optional[Iterable[str]] = None) -> List[Target]:
        """
        One topological order of the requested closure (whole graph when None).

        Honours depends-on, before/after and consumes edges whose both ends are
        in the closure. Ties are broken by declaration order.
        """
        nodes = self.targets if requested is None else self.closure(requested)
        return self.order_of([t.key for t in nodes])

    def order_of(self, keys: Iterable[str]) -> List[Target]:
        """Topological order of an explicit node set."""
        keys = set(keys)
        indeg: Dict[str, int] = {k: 0 for k in keys}
        for src in keys:
            for dst in self.precede[src]:
                if dst in keys:
                    indeg[dst] += 1

        ready = [self.index[k] for k, d in indeg.items() if d == 0]
        heapq.heapify(ready)
        out: List[Target] = []
        while ready:
            t = self.targets[heapq.heappop(ready)]
            out.append(t)
            for dst in self.precede[t.key]:
                if dst in keys:
                    indeg[dst] -= 1
                    if indeg[dst] == 0:
                        heapq.heappush(ready, self.index[dst])

        if len(out) != len(keys):
            # unreachable after build_graph's cycle check
            stuck = sorted(k for k, d in indeg.items() if d > 0)
            raise DependencyCycleError(f"Graph has a cycle. Stuck targets: {stuck}")
        return out

    def levels(self, requested: Optional[Iterable[str]] = None) -> List[List[str]]:
        """
        Group the requested closure into stages.
        Each stage only needs earlier stages, so its targets may run in parallel.
        """
        nodes = self.order(requested)
        keys = {t.key for t in nodes}
        depth: Dict[str, int] = {}
        for t in nodes:
            preds = self.predecessors(t.key, keys)
            depth[t.key] = 1 + max((depth[p] for p in preds), default=-1)

        levels: List[List[str]] = []
        for t in nodes:
            while len(levels) <= depth[t.key]:
                levels.append([])
            levels[depth[t.key]].append(t.name)
        return levels


def _edges(targets: List[Target], by_key: Dict[str, Target]) -> Dict[str, List[str]]:
    precede: Dict[str, List[str]] = {t.key: [] for t in targets}

    def add(src: str, dst: str, owner: Target, relation: str) -> None:
        s, d = target_key(src), target_key(dst)
        for ref in (s, d):
            if ref not in by_key:
                raise ValueError(
                    f"Target '{owner.name}' {relation} missing target '{src if ref == s else dst}'. "
                    f"Known targets: {[t.name for t in targets]}"
                )
        if d not in precede[s]:
            precede[s].append(d)

    for t in targets:
        for dep in t.dependencies:
            add(dep, t.name, t, "depends on")
        for other in t.before:
            add(t.name, other, t, "runs before")
        for other in t.after:
            add(other, t.name, t, "runs after")
        for producer in t.consumes:
            add(producer, t.name, t, "consumes")
    return precede


def find_cycle(precede: Mapping[str, List[str]], order: List[str]) -> Optional[List[str]]:
    """
    Depth-first search tracking the in-progress path.
    Returns the cycle path (first node repeated at the end) or None.
    """
    done: Set[str] = set()
    path: List[str] = []
    on_path: Set[str] = set()

    def visit(node: str) -> Optional[List[str]]:
        path.append(node)
        on_path.add(node)
        for nxt in precede[node]:
            if nxt in on_path:
                return path[path.index(nxt):] + [nxt]
            if nxt not in done:
                cycle = visit(nxt)
                if cycle:
                    return cycle
        path.pop()
        on_path.discard(node)
        done.add(node)
        return None

    for node in order:
        if node not in done:
            cycle = visit(node)
            if cycle:
                return cycle
    return None


def build_graph(targets: Iterable[Target]) -> TargetGraph:
    """
    Build the immutable target graph.

    Raises:
        ValueError: duplicate names (case-insensitive) or unknown references.
        DependencyCycleError: the declarations contain a cycle.
    """
    targets = list(targets)
    names = [t.key for t in targets]
    if len(set(names)) != len(names):
        dupes = sorted({t.name for t in targets if names.count(t.key) > 1})
        raise ValueError(f"Duplicate target names found: {dupes}")

    by_key = {t.key: t for t in targets}
    precede = _edges(targets, by_key)

    cycle = find_cycle(precede, names)
    if cycle:
        shown = [by_key[k].name for k in cycle]
        raise DependencyCycleError(
            "Dependency cycle: " + " -> ".join(shown),
            target=shown[0],
            cycle=shown,
        )

    return TargetGraph(
        targets=tuple(targets),
        index={t.key: i for i, t in enumerate(targets)},
        precede={k: tuple(v) for k, v in precede.items()},
    )
