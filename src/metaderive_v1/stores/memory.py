from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from ..schemas import AgentAge, Edge, Record
from ..utils import read_json, stable_hash, to_jsonable, utc_now, write_json

RECORDS_FILE = "records.json"
EDGES_FILE = "edges.json"


class MemoryKnowledgeStore:
    def __init__(self, records: Optional[Iterable[Record]] = None) -> None:
        self._records: Dict[str, Record] = {}
        for record in records or []:
            self._records[record.id] = record

    def records(self) -> List[Record]:
        return list(self._records.values())

    def get(self, record_id: str) -> Optional[Record]:
        return self._records.get(record_id)

    def count(self) -> int:
        return len(self._records)

    def upsert(self, record: Record) -> Record:
        existing = self._records.get(record.id)
        if existing is not None:
            record = record.model_copy(
                update={"created_at": existing.created_at, "updated_at": utc_now()}
            )
        self._records[record.id] = record
        return record

    def to_payload(self) -> List[Dict[str, Any]]:
        return [record.model_dump(mode="json") for record in self._records.values()]

    @classmethod
    def from_payload(cls, payload: Any) -> "MemoryKnowledgeStore":
        if not isinstance(payload, list):
            return cls()
        return cls(Record(**item) for item in payload if isinstance(item, dict))


class MemoryEdgeStore:
    """Edge index with ``by_source`` adjacency; idempotent per (source, target, type)."""

    def __init__(self, edges: Optional[Iterable[Edge]] = None) -> None:
        self.edges: Dict[str, Edge] = {}
        self.by_source: Dict[str, List[str]] = {}
        for edge in edges or []:
            self._index(edge)

    def _index(self, edge: Edge) -> Edge:
        existing = self.edges.get(edge.id)
        if existing is not None:
            return existing
        self.edges[edge.id] = edge
        self.by_source.setdefault(edge.source_id, []).append(edge.id)
        return edge

    def create_edge(
        self,
        *,
        source_id: str,
        target_id: str,
        edge_type: str,
        weight: float,
        provenance: Dict[str, Any],
    ) -> Edge:
        if not source_id or not target_id:
            raise ValueError("source_id and target_id required")
        edge = Edge(
            source_id=source_id,
            target_id=target_id,
            edge_type=edge_type,
            weight=weight,
            provenance=dict(provenance),
        )
        return self._index(edge)

    def outgoing(self, record_id: str, edge_type: Optional[str] = None) -> List[Edge]:
        found = [self.edges[eid] for eid in self.by_source.get(record_id, []) if eid in self.edges]
        if edge_type is None:
            return found
        return [edge for edge in found if edge.edge_type == edge_type]

    def to_payload(self) -> List[Dict[str, Any]]:
        return [edge.model_dump(mode="json") for edge in self.edges.values()]

    @classmethod
    def from_payload(cls, payload: Any) -> "MemoryEdgeStore":
        if not isinstance(payload, list):
            return cls()
        return cls(Edge(**item) for item in payload if isinstance(item, dict))


class HashIdGenerator:
    """Deterministic ids: ``<prefix>_<blake3(seed, counter)[:20]>``."""

    def __init__(self, seed: str = "metaderive", start: int = 0) -> None:
        self.seed = seed
        self.issued = start

    def new_id(self, prefix: str) -> str:
        digest = stable_hash({"seed": self.seed, "n": self.issued, "prefix": prefix})
        self.issued += 1
        return f"{prefix}_{digest[:20]}"


class MemoryNeedQueue:
    def __init__(self) -> None:
        self.needs: List[Dict[str, Any]] = []

    def record_need(
        self,
        *,
        type: str,
        priority: float,
        matching_roles: List[str],
        description: str,
    ) -> Dict[str, Any]:
        need = {
            "type": type,
            "priority": priority,
            "matching_roles": list(matching_roles),
            "description": description,
        }
        self.needs.append(need)
        return need


class MemoryEventBus:
    def __init__(self) -> None:
        self.events: List[tuple[str, Dict[str, Any]]] = []

    def emit(self, name: str, payload: Dict[str, Any]) -> None:
        self.events.append((name, to_jsonable(payload)))

    def names(self) -> List[str]:
        return [name for name, _ in self.events]


class MemoryAgentClock:
    def __init__(
        self,
        ages: Optional[Dict[str, AgentAge]] = None,
        active: Optional[set[str]] = None,
    ) -> None:
        self.ages: Dict[str, AgentAge] = dict(ages or {})
        self.active = set(active) if active is not None else set(self.ages)
        self.epochs: List[tuple[str, str]] = []
        self.ticks: List[tuple[str, bool, int]] = []

    def active_agents(self) -> List[str]:
        return sorted(self.active)

    def get_agent_age(self, agent_id: str) -> Optional[AgentAge]:
        return self.ages.get(agent_id)

    def record_epoch(self, agent_id: str, kind: str) -> None:
        self.epochs.append((agent_id, kind))

    def record_tick(self, agent_id: str, *, is_novel: bool = False, depth: int = 0) -> None:
        self.ticks.append((agent_id, is_novel, depth))
        age = self.ages.get(agent_id)
        if age is not None:
            age.ticks += 1


def load_snapshot(root: Path) -> tuple[MemoryKnowledgeStore, MemoryEdgeStore]:
    root = Path(root)
    records_path = root / RECORDS_FILE
    edges_path = root / EDGES_FILE
    knowledge = (
        MemoryKnowledgeStore.from_payload(read_json(records_path))
        if records_path.exists()
        else MemoryKnowledgeStore()
    )
    edges = (
        MemoryEdgeStore.from_payload(read_json(edges_path))
        if edges_path.exists()
        else MemoryEdgeStore()
    )
    return knowledge, edges


def save_snapshot(root: Path, knowledge: MemoryKnowledgeStore, edges: MemoryEdgeStore) -> None:
    root = Path(root)
    write_json(root / RECORDS_FILE, knowledge.to_payload())
    write_json(root / EDGES_FILE, edges.to_payload())
