import math

from hypothesis import given
from hypothesis import settings as hypo_settings
from hypothesis import strategies as st

from metaderive_v1.graph.distance import (
    Adjacency,
    DistanceMatrix,
    build_distance_matrix,
    compute_domain_distance,
)
from metaderive_v1.stores.memory import MemoryEdgeStore


def _chain_store(*nodes: str) -> MemoryEdgeStore:
    store = MemoryEdgeStore()
    for source, target in zip(nodes, nodes[1:]):
        store.create_edge(
            source_id=source, target_id=target, edge_type="references", weight=1.0, provenance={}
        )
    return store


def test_shared_record_means_distance_zero() -> None:
    adjacency = Adjacency()
    assert compute_domain_distance(adjacency, {"a", "b"}, {"b", "c"}) == 0


def test_hop_count_along_chain() -> None:
    adjacency = Adjacency.from_edge_store(_chain_store("a", "x", "y", "b"))
    assert compute_domain_distance(adjacency, {"a"}, {"b"}) == 3
    assert compute_domain_distance(adjacency, {"a"}, {"x"}) == 1


def test_traversal_follows_outgoing_edges_only() -> None:
    adjacency = Adjacency.from_edge_store(_chain_store("a", "x", "b"))
    assert math.isinf(compute_domain_distance(adjacency, {"b"}, {"a"}))


def test_unreached_within_max_hops_is_infinite() -> None:
    nodes = [f"n{i}" for i in range(9)]
    adjacency = Adjacency.from_edge_store(_chain_store(*nodes))
    assert compute_domain_distance(adjacency, {"n0"}, {"n6"}, max_hops=6) == 6
    assert math.isinf(compute_domain_distance(adjacency, {"n0"}, {"n7"}, max_hops=6))


def test_shortest_path_across_several_starts() -> None:
    store = _chain_store("a1", "m1", "m2", "b")
    store.create_edge(
        source_id="a2", target_id="b", edge_type="derives", weight=0.8, provenance={}
    )
    adjacency = Adjacency.from_edge_store(store)
    assert compute_domain_distance(adjacency, {"a1", "a2"}, {"b"}) == 1


def test_matrix_lookup_is_order_independent() -> None:
    matrix = DistanceMatrix()
    matrix.set("law", "physics", 3)
    assert matrix.distance("law", "physics") == 3
    assert matrix.distance("physics", "law") == 3
    assert matrix.distance("law", "law") == 0
    assert matrix.distance("law", "biology") == 0
    assert matrix.as_dict() == {"law|physics": 3}


def test_build_matrix_stores_upper_triangle() -> None:
    adjacency = Adjacency.from_edge_store(_chain_store("p0", "b0", "e0"))
    matrix = build_distance_matrix(
        {"physics": {"p0"}, "biology": {"b0"}, "economics": {"e0"}}, adjacency, 6
    )
    assert len(matrix) == 3
    assert matrix.distance("physics", "biology") == 1
    assert matrix.distance("physics", "economics") == 2
    assert matrix["biology|economics"] == 1
    assert set(matrix) == {"physics|biology", "physics|economics", "biology|economics"}


_record_ids = st.sampled_from([f"r{i}" for i in range(8)])
_domain_ids = st.dictionaries(
    keys=st.sampled_from(["physics", "biology", "law", "music", "economics"]),
    values=st.sets(_record_ids, min_size=1, max_size=3),
    min_size=2,
    max_size=5,
)
_edges = st.lists(st.tuples(_record_ids, _record_ids), max_size=20)


@hypo_settings(derandomize=True, max_examples=100)
@given(domain_ids=_domain_ids, edges=_edges)
def test_matrix_is_symmetric_with_zero_diagonal(domain_ids, edges) -> None:
    store = MemoryEdgeStore()
    for source, target in edges:
        store.create_edge(
            source_id=source, target_id=target, edge_type="references", weight=1.0, provenance={}
        )
    matrix = build_distance_matrix(domain_ids, Adjacency.from_edge_store(store), 6)
    for domain_a in domain_ids:
        assert matrix.distance(domain_a, domain_a) == 0
        for domain_b in domain_ids:
            forward = matrix.distance(domain_a, domain_b)
            assert forward == matrix.distance(domain_b, domain_a)
            assert forward >= 0
