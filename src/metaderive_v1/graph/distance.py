from __future__ import annotations

import math
from collections import deque
from dataclasses import dataclass, field
from typing import AbstractSet, Dict, Iterator, List, Mapping, Sequence, Tuple

from ..collaborators import EdgeStore

INFINITY = math.inf


@dataclass
class Adjacency:
    """Outgoing-neighbour index built once from an edge store and reused across BFS runs."""

    targets: Dict[str, List[str]] = field(default_factory=dict)

    @classmethod
    def from_edge_store(cls, store: EdgeStore) -> "Adjacency":
        targets: Dict[str, List[str]] = {}
        by_source = getattr(store, "by_source", None) or {}
        edges = getattr(store, "edges", None) or {}
        for source_id, edge_ids in by_source.items():
            out: List[str] = []
            for edge_id in edge_ids:
                edge = edges.get(edge_id)
                if edge is None or edge.target_id in out:
                    continue
                out.append(edge.target_id)
            if out:
                targets[source_id] = out
        return cls(targets=targets)

    def neighbors(self, record_id: str) -> Sequence[str]:
        return self.targets.get(record_id, ())


def compute_domain_distance(
    adjacency: Adjacency,
    ids_a: AbstractSet[str],
    ids_b: AbstractSet[str],
    max_hops: int = 6,
) -> float:
    """Fewest outgoing hops from any record of A to any record of B.

    Returns 0 when the sets share a record and ``inf`` when B is not reached
    within ``max_hops``.
    """
    if ids_a & ids_b:
        return 0
    best = INFINITY
    for start in sorted(ids_a):
        visited = {start}
        queue: deque[Tuple[str, int]] = deque([(start, 0)])
        while queue:
            node, depth = queue.popleft()
            if depth >= max_hops or depth + 1 >= best:
                continue
            for target in adjacency.neighbors(node):
                if target in visited:
                    continue
                visited.add(target)
                if target in ids_b:
                    best = depth + 1
                    break
                queue.append((target, depth + 1))
        if best == 1:
            break
    return best


def pair_key(domain_a: str, domain_b: str) -> str:
    return f"{domain_a}|{domain_b}"


class DistanceMatrix(Mapping[str, float]):
    """Upper-triangle domain distances; lookups accept either key order."""

    def __init__(self, values: Mapping[str, float] | None = None) -> None:
        self._values: Dict[str, float] = dict(values or {})

    def set(self, domain_a: str, domain_b: str, distance: float) -> None:
        self._values[pair_key(domain_a, domain_b)] = distance

    def distance(self, domain_a: str, domain_b: str, default: float = 0) -> float:
        if domain_a == domain_b:
            return 0
        value = self._values.get(pair_key(domain_a, domain_b))
        if value is None:
            value = self._values.get(pair_key(domain_b, domain_a))
        return default if value is None else value

    def __getitem__(self, key: str) -> float:
        return self._values[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def as_dict(self) -> Dict[str, float]:
        return dict(self._values)


def build_distance_matrix(
    domain_ids: Mapping[str, AbstractSet[str]],
    adjacency: Adjacency,
    max_hops: int = 6,
) -> DistanceMatrix:
    domains = list(domain_ids.keys())
    matrix = DistanceMatrix()
    for i, domain_a in enumerate(domains):
        for domain_b in domains[i + 1 :]:
            matrix.set(
                domain_a,
                domain_b,
                compute_domain_distance(
                    adjacency, domain_ids[domain_a], domain_ids[domain_b], max_hops
                ),
            )
    return matrix
