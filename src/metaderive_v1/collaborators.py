from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Protocol, Sequence

from .schemas import AgentAge, Edge, Record, SideEffect

logger = logging.getLogger(__name__)


class KnowledgeStore(Protocol):
    def records(self) -> Iterable[Record]:
        ...

    def get(self, record_id: str) -> Optional[Record]:
        ...

    def count(self) -> int:
        ...

    def upsert(self, record: Record) -> Record:
        ...


class EdgeStore(Protocol):
    by_source: Mapping[str, Sequence[str]]
    edges: Mapping[str, Edge]

    def create_edge(
        self,
        *,
        source_id: str,
        target_id: str,
        edge_type: str,
        weight: float,
        provenance: Dict[str, Any],
    ) -> Edge:
        ...


class IdGenerator(Protocol):
    def new_id(self, prefix: str) -> str:
        ...


class NeedQueue(Protocol):
    def record_need(
        self,
        *,
        type: str,
        priority: float,
        matching_roles: List[str],
        description: str,
    ) -> Any:
        ...


class EventBus(Protocol):
    def emit(self, name: str, payload: Dict[str, Any]) -> None:
        ...


class AgentClock(Protocol):
    def active_agents(self) -> Iterable[str]:
        ...

    def get_agent_age(self, agent_id: str) -> Optional[AgentAge]:
        ...

    def record_epoch(self, agent_id: str, kind: str) -> None:
        ...

    def record_tick(self, agent_id: str, *, is_novel: bool = False, depth: int = 0) -> None:
        ...


def best_effort(label: str, action: Callable[[], Any]) -> SideEffect:
    """Run a non-critical side effect; failures are logged and reported, not raised."""
    try:
        action()
    except Exception as exc:  # noqa: BLE001
        logger.warning("non-critical side effect %s failed: %s", label, exc)
        return SideEffect(label=label, ok=False, error=f"{type(exc).__name__}: {exc}")
    return SideEffect(label=label, ok=True)


@dataclass
class Collaborators:
    """External boundaries the engine writes through; all but events and agents are required."""

    knowledge: KnowledgeStore
    edges: EdgeStore
    ids: IdGenerator
    needs: NeedQueue
    events: Optional[EventBus] = None
    agents: Optional[AgentClock] = None

    def emit(self, name: str, payload: Dict[str, Any]) -> Optional[SideEffect]:
        if self.events is None:
            return None
        events = self.events
        return best_effort(f"emit:{name}", lambda: events.emit(name, payload))

    def link(
        self,
        source_id: str,
        target_id: str,
        edge_type: str,
        weight: float,
        provenance: Dict[str, Any],
    ) -> SideEffect:
        return best_effort(
            f"edge:{edge_type}:{target_id}",
            lambda: self.edges.create_edge(
                source_id=source_id,
                target_id=target_id,
                edge_type=edge_type,
                weight=weight,
                provenance=provenance,
            ),
        )
