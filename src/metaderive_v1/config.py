from __future__ import annotations

from datetime import timedelta
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .utils import read_json, stable_hash

KNOWN_DOMAINS = (
    "mathematics",
    "physics",
    "biology",
    "chemistry",
    "philosophy",
    "economics",
    "psychology",
    "sociology",
    "linguistics",
    "history",
    "engineering",
    "medicine",
    "law",
    "ethics",
    "logic",
    "computation",
    "ecology",
    "neuroscience",
    "cosmology",
    "governance",
)

NEGATION_MARKERS = ("not", "never", "no", "cannot", "impossible", "false", "incorrect")


class GatePolicy(BaseModel):
    contradiction_overlap: float = 0.5
    prediction_overlap: float = 0.4
    triviality_threshold: float = 0.4
    convergence_similarity: float = 0.7
    negation_markers: List[str] = Field(default_factory=lambda: list(NEGATION_MARKERS))


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="METADERIVE_")

    cycle_interval_hours: float = 6.0
    convergence_interval_hours: float = 24.0
    independence_gap_hours: float = 1.0
    min_records: int = 100
    min_domains: int = 5
    min_invariants_per_domain: int = 5
    min_invariant_chars: int = 10
    set_size: int = 5
    max_sessions_per_cycle: int = 3
    daily_cap: int = 10
    bfs_max_hops: int = 6
    prediction_edge_cap: int = 20
    derives_edge_weight: float = 0.8
    reference_edge_weight: float = 0.5
    convergence_edge_weight: float = 1.0
    meta_confidence: float = 0.6
    dream_confidence: float = 0.5
    convergence_confidence: float = 0.9
    need_priority: float = 0.8
    dream_text_limit: int = 5000
    min_dream_chars: int = 10
    agent_min_ticks: int = 50
    agent_min_cycles: int = 5
    agent_tick_weight: int = 3
    known_domains: List[str] = Field(default_factory=lambda: list(KNOWN_DOMAINS))
    gate_policy: GatePolicy = Field(default_factory=GatePolicy)
    ledger_path: Optional[str] = None

    @property
    def cycle_interval(self) -> timedelta:
        return timedelta(hours=self.cycle_interval_hours)

    @property
    def convergence_interval(self) -> timedelta:
        return timedelta(hours=self.convergence_interval_hours)

    @property
    def independence_gap(self) -> timedelta:
        return timedelta(hours=self.independence_gap_hours)

    def policy_hash(self) -> str:
        return stable_hash(self.model_dump(exclude={"ledger_path"}))


def load_settings(config: Optional[Path]) -> Settings:
    if config is None:
        return Settings()
    data = read_json(config)
    return Settings(**data)
