from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Any, ClassVar, Dict, List, Literal, Optional, Tuple

import orjson
from pydantic import BaseModel, Field, model_validator

from .utils import CANONICALIZATION, HASH_ALGORITHM, stable_hash, utc_now

SHADOW_TIER = "shadow"
MEGA_TIER = "mega"
HYPER_TIER = "hyper"


class HashableModel(BaseModel):
    schema_version: str = "v1"
    canonicalization: ClassVar[str] = CANONICALIZATION
    hash_algorithm: ClassVar[str] = HASH_ALGORITHM
    hash_inputs: ClassVar[Tuple[str, ...]] = ()

    def hash_payload(self) -> Dict[str, Any]:
        data = self.model_dump(mode="json")
        keys = self.hash_inputs or tuple(data.keys())
        payload = {key: data[key] for key in keys if key in data}
        payload["canonicalization"] = self.canonicalization
        payload["hash_algorithm"] = self.hash_algorithm
        return payload

    def stable_hash(self) -> str:
        return stable_hash(self.hash_payload())


class Record(HashableModel):
    """A knowledge-store record as seen by the engine."""

    id: str
    title: str = ""
    content: str = ""
    tier: str = "regular"
    tags: List[str] = Field(default_factory=list)
    definitions: List[str] = Field(default_factory=list)
    invariants: List[str] = Field(default_factory=list)
    claims: List[str] = Field(default_factory=list)
    next_actions: List[str] = Field(default_factory=list)
    source: str = ""
    confidence: float = 0.5
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: Optional[datetime] = None

    hash_inputs: ClassVar[Tuple[str, ...]] = (
        "schema_version",
        "id",
        "tier",
        "tags",
        "content",
        "invariants",
        "claims",
    )

    @property
    def kind(self) -> str:
        return str(self.metadata.get("kind", ""))

    @property
    def is_shadow(self) -> bool:
        return self.tier == SHADOW_TIER

    def text_for_similarity(self) -> str:
        return f"{self.content} {' '.join(self.invariants)}"


class Edge(HashableModel):
    id: str = ""
    source_id: str
    target_id: str
    edge_type: str
    weight: float = 1.0
    provenance: Dict[str, Any] = Field(default_factory=dict)

    hash_inputs: ClassVar[Tuple[str, ...]] = ("source_id", "target_id", "edge_type")

    @model_validator(mode="after")
    def _set_id(self) -> "Edge":
        if not self.id:
            self.id = f"edge_{self.stable_hash()[:20]}"
        return self


class Invariant(BaseModel):
    text: str
    domain: str
    source_record_ids: List[str] = Field(default_factory=list)
    validation_count: int = 1


class InvariantPool(BaseModel):
    pool: Dict[str, List[Invariant]]
    record_count: int
    domain_count: int
    invariant_count: int

    def domain_record_ids(self) -> Dict[str, set[str]]:
        return {
            domain: {rid for item in items for rid in item.source_record_ids}
            for domain, items in self.pool.items()
        }


class DistantSet(BaseModel):
    selected_domains: List[str]
    invariants: List[Invariant]
    distance_matrix: Dict[str, float]
    distance_score: float = 0.0

    @property
    def set_key(self) -> str:
        return "|".join(sorted(self.selected_domains))

    @property
    def source_record_ids(self) -> List[str]:
        return [rid for inv in self.invariants for rid in inv.source_record_ids]


class Prompt(BaseModel):
    system: str
    content: str


class DerivationSession(BaseModel):
    session_id: str
    participant_id: Optional[str] = None
    prompt: Prompt
    invariants: List[Invariant]
    source_record_ids: List[str]
    selected_domains: List[str]
    distance_score: float = 0.0
    distance_matrix: Dict[str, float] = Field(default_factory=dict)

    @property
    def set_key(self) -> str:
        return "|".join(sorted(self.selected_domains))


class ParsedResponse(BaseModel):
    meta_invariant: Optional[str] = None
    predicted_domain: Optional[str] = None
    prediction: Optional[str] = None
    reasoning: Optional[str] = None


class Candidate(BaseModel):
    meta_invariant: Optional[str] = None
    prediction: Optional[str] = None
    predicted_domain: Optional[str] = None
    reasoning: Optional[str] = None
    source_invariants: List[str] = Field(default_factory=list)
    source_record_ids: List[str] = Field(default_factory=list)
    source_domains: List[str] = Field(default_factory=list)
    distance_score: float = 0.0

    @classmethod
    def from_session(cls, session: DerivationSession, parsed: ParsedResponse) -> "Candidate":
        return cls(
            meta_invariant=parsed.meta_invariant,
            prediction=parsed.prediction,
            predicted_domain=parsed.predicted_domain,
            reasoning=parsed.reasoning,
            source_invariants=[inv.text for inv in session.invariants],
            source_record_ids=list(session.source_record_ids),
            source_domains=list(session.selected_domains),
            distance_score=session.distance_score,
        )


PredictionStatus = Literal["no_prediction", "unfalsified_pending", "contradicted", "consistent"]


class GateResult(BaseModel):
    gate: str
    passed: bool
    reason: str
    status: Optional[PredictionStatus] = None
    max_similarity: Optional[float] = None


class ValidationReport(BaseModel):
    passed: bool
    reason: Optional[str] = None
    gates: Dict[str, GateResult]

    @property
    def verification_status(self) -> Optional[PredictionStatus]:
        gate = self.gates.get("predictive_verification")
        return gate.status if gate else None

    def failed_gates(self) -> List[str]:
        return [name for name, gate in self.gates.items() if not gate.passed]


class MetaRecord(BaseModel):
    record_id: str
    meta_invariant: str
    source_domains: List[str]
    created_at: datetime


class DreamRecord(BaseModel):
    record_id: str
    raw_text: str
    captured_at: datetime
    ingested_at: datetime
    convergence_checked: bool = False


class Convergence(HashableModel):
    convergence_id: str
    dream_record_id: str
    meta_record_id: str
    similarity: float
    dream_created_at: datetime
    meta_created_at: datetime
    discovered_at: datetime
    convergence_record_id: Optional[str] = None

    @staticmethod
    def pair_key(dream_record_id: str, meta_record_id: str) -> str:
        return f"{dream_record_id}|{meta_record_id}"


class PendingPrediction(BaseModel):
    prediction_id: str
    prediction: str
    predicted_domain: Optional[str] = None
    status: Literal["pending", "confirmed", "refuted"] = "pending"
    meta_record_id: str
    created_at: datetime
    resolved_at: Optional[datetime] = None


class AgentAge(BaseModel):
    ticks: int = 0
    cycles: int = 0
    novelty_ratio: Optional[float] = None


class Failure(BaseModel):
    """Expected precondition failure; returned, never raised."""

    ok: Literal[False] = False
    error: str
    context: Dict[str, Any] = Field(default_factory=dict)


class SideEffect(BaseModel):
    label: str
    ok: bool
    error: Optional[str] = None


class CommitResult(BaseModel):
    ok: Literal[True] = True
    record: Record
    edges_created: int = 0
    need_created: bool = False
    prediction_id: Optional[str] = None
    side_effects: List[SideEffect] = Field(default_factory=list)


class DreamIngestResult(BaseModel):
    ok: Literal[True] = True
    record: Record
    dream: DreamRecord


class ConvergenceResult(BaseModel):
    ok: Literal[True] = True
    convergences: List[Convergence] = Field(default_factory=list)
    reason: Optional[str] = None
    side_effects: List[SideEffect] = Field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.convergences)


class CycleResult(BaseModel):
    ok: Literal[True] = True
    sessions: List[DerivationSession]
    domain_count: int
    invariant_count: int

    @property
    def session_count(self) -> int:
        return len(self.sessions)


class DerivationOutcome(BaseModel):
    session_id: str
    response: ParsedResponse
    candidate: Candidate
    report: ValidationReport
    commit: Optional[CommitResult] = None
    failure: Optional[Failure] = None

    @property
    def committed(self) -> bool:
        return self.commit is not None


def export_schemas(output_dir: str) -> None:
    output = Path(output_dir)
    output.mkdir(parents=True, exist_ok=True)
    models = [
        Record,
        Edge,
        Invariant,
        DistantSet,
        DerivationSession,
        Candidate,
        ValidationReport,
        MetaRecord,
        DreamRecord,
        Convergence,
        PendingPrediction,
    ]
    for model in models:
        schema = model.model_json_schema()
        path = output / f"{model.__name__}.schema.json"
        path.write_bytes(orjson.dumps(schema, option=orjson.OPT_SORT_KEYS))
