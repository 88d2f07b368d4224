from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel

from .schemas import Convergence, DreamRecord, MetaRecord, PendingPrediction
from .utils import parse_iso, to_jsonable, utc_date_key


class CycleState(BaseModel):
    last_cycle_at: Optional[datetime] = None
    last_convergence_at: Optional[datetime] = None
    cycle_in_progress: bool = False
    committed_today: int = 0
    today: Optional[str] = None

    def roll_date(self, now: datetime) -> None:
        """Reset the daily commit counter when the UTC date changes."""
        key = utc_date_key(now)
        if self.today != key:
            self.today = key
            self.committed_today = 0


class EngineMetrics(BaseModel):
    cycles_run: int = 0
    sessions_run: int = 0
    candidates_generated: int = 0
    candidates_validated: int = 0
    candidates_rejected: int = 0
    dream_inputs_ingested: int = 0
    convergences_found: int = 0
    predictions_verified: int = 0


@dataclass
class EngineState:
    cycle: CycleState = field(default_factory=CycleState)
    metrics: EngineMetrics = field(default_factory=EngineMetrics)
    committed: Dict[str, MetaRecord] = field(default_factory=dict)
    dream_inputs: Dict[str, DreamRecord] = field(default_factory=dict)
    convergences: Dict[str, Convergence] = field(default_factory=dict)
    pending_predictions: Dict[str, PendingPrediction] = field(default_factory=dict)
    ids_issued: int = 0

    def to_payload(self) -> Dict[str, Any]:
        return {
            "cycle": self.cycle.model_dump(mode="json"),
            "metrics": self.metrics.model_dump(mode="json"),
            "committed": {k: v.model_dump(mode="json") for k, v in self.committed.items()},
            "dream_inputs": {k: v.model_dump(mode="json") for k, v in self.dream_inputs.items()},
            "convergences": {k: v.model_dump(mode="json") for k, v in self.convergences.items()},
            "pending_predictions": {
                k: v.model_dump(mode="json") for k, v in self.pending_predictions.items()
            },
            "ids_issued": self.ids_issued,
        }

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "EngineState":
        if not isinstance(payload, Mapping):
            return cls()

        def _section(name: str) -> Dict[str, Any]:
            value = payload.get(name)
            return value if isinstance(value, dict) else {}

        cycle = CycleState(**_section("cycle"))
        # A persisted in-progress flag means the writer died mid-cycle.
        cycle.cycle_in_progress = False
        return cls(
            cycle=cycle,
            metrics=EngineMetrics(**_section("metrics")),
            committed={k: MetaRecord(**v) for k, v in _section("committed").items()},
            dream_inputs={k: DreamRecord(**v) for k, v in _section("dream_inputs").items()},
            convergences={k: Convergence(**v) for k, v in _section("convergences").items()},
            pending_predictions={
                k: PendingPrediction(**v) for k, v in _section("pending_predictions").items()
            },
            ids_issued=int(payload.get("ids_issued", 0) or 0),
        )

    def summary(self) -> Dict[str, Any]:
        return to_jsonable(
            {
                "last_cycle_at": self.cycle.last_cycle_at,
                "last_convergence_at": self.cycle.last_convergence_at,
                "committed_today": self.cycle.committed_today,
                "committed_count": len(self.committed),
                "dream_input_count": len(self.dream_inputs),
                "convergence_count": len(self.convergences),
                "pending_predictions": len(self.pending_predictions),
            }
        )


def elapsed_since(previous: Optional[datetime], now: datetime) -> Optional[float]:
    """Seconds between ``previous`` and ``now``; ``None`` when never run."""
    start = parse_iso(previous)
    if start is None:
        return None
    return (parse_iso(now) or now).timestamp() - start.timestamp()
