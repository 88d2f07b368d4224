from __future__ import annotations

import math
from typing import List, Optional, Sequence, Tuple, Union

from ..pool import representative_invariant
from ..schemas import DistantSet, Failure, Invariant, InvariantPool
from .distance import Adjacency, DistanceMatrix, build_distance_matrix


def ranked_pairs(domains: Sequence[str], matrix: DistanceMatrix) -> List[Tuple[str, str]]:
    """All domain pairs, most distant first; ties keep domain order."""
    pairs: List[Tuple[float, int, Tuple[str, str]]] = []
    for i, domain_a in enumerate(domains):
        for domain_b in domains[i + 1 :]:
            pairs.append((matrix.distance(domain_a, domain_b), len(pairs), (domain_a, domain_b)))
    pairs.sort(key=lambda item: (-item[0], item[1]))
    return [pair for _, _, pair in pairs]


def select_distant_domains(
    domains: Sequence[str],
    matrix: DistanceMatrix,
    n: int,
    seed_rank: int = 0,
) -> List[str]:
    """Greedy max-min selection seeded with the ``seed_rank``-th most distant pair."""
    if len(domains) <= n:
        return list(domains)
    pairs = ranked_pairs(domains, matrix)
    if not pairs:
        return list(domains[:n])
    seed = pairs[min(seed_rank, len(pairs) - 1)]
    selected: List[str] = list(seed)

    while len(selected) < n:
        best_candidate: Optional[str] = None
        best_min = -1.0
        for candidate in domains:
            if candidate in selected:
                continue
            min_to_set = min(matrix.distance(candidate, existing) for existing in selected)
            if min_to_set > best_min:
                best_min = min_to_set
                best_candidate = candidate
        if best_candidate is None:
            break
        selected.append(best_candidate)
    return selected


def set_distance_score(selected: Sequence[str], matrix: DistanceMatrix, max_hops: int) -> float:
    """Smallest pairwise distance of a selection; unreached pairs count as ``max_hops + 1``."""
    scores: List[float] = []
    for i, domain_a in enumerate(selected):
        for domain_b in selected[i + 1 :]:
            value = matrix.distance(domain_a, domain_b)
            scores.append(float(max_hops + 1) if math.isinf(value) else float(value))
    return min(scores) if scores else 0.0


def select_maximally_distant_set(
    invariant_pool: InvariantPool,
    adjacency: Adjacency,
    set_size: int = 5,
    *,
    max_hops: int = 6,
    matrix: Optional[DistanceMatrix] = None,
    seed_rank: int = 0,
) -> Union[DistantSet, Failure]:
    domains = list(invariant_pool.pool.keys())
    if len(domains) < set_size:
        return Failure(
            error="insufficient_domains",
            context={"required": set_size, "actual": len(domains)},
        )
    if matrix is None:
        matrix = build_distance_matrix(invariant_pool.domain_record_ids(), adjacency, max_hops)

    selected = select_distant_domains(domains, matrix, set_size, seed_rank=seed_rank)
    invariants: List[Invariant] = []
    for domain in selected:
        best = representative_invariant(invariant_pool.pool[domain])
        if best is not None:
            invariants.append(best)

    return DistantSet(
        selected_domains=selected,
        invariants=invariants,
        distance_matrix=matrix.as_dict(),
        distance_score=set_distance_score(selected, matrix, max_hops),
    )
