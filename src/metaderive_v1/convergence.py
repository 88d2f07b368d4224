from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional

from .collaborators import Collaborators
from .commit import META_KIND
from .config import Settings
from .dream import DREAM_TAG
from .gates.text import jaccard_similarity, tokenize
from .ledger.ledger import Ledger
from .schemas import HYPER_TIER, Convergence, ConvergenceResult, Record, SideEffect
from .state import EngineState

logger = logging.getLogger(__name__)

CONVERGENCE_EVENT = "lattice:meta:convergence"
CONVERGENCE_CLAIM = (
    "Independent convergence from human intuition and computational derivation "
    "validates this constraint geometry"
)


def is_independent(dream: Record, meta: Record, settings: Settings) -> bool:
    """Time-gap proxy for independent creation; a heuristic, not a causal guarantee."""
    gap = abs(dream.created_at.timestamp() - meta.created_at.timestamp())
    return gap >= settings.independence_gap.total_seconds()


def build_convergence_record(
    record_id: str,
    dream: Record,
    meta: Record,
    similarity: float,
    settings: Settings,
    now: datetime,
) -> Record:
    return Record(
        id=record_id,
        title=f'Convergence: "{dream.content[:60]}" <-> "{meta.content[:60]}"',
        content=(
            "Independent convergence between human intuition and computational "
            f"derivation. Similarity: {similarity:.3f}."
        ),
        tier=HYPER_TIER,
        tags=["convergence", "meta-derivation", "verified"],
        definitions=[text for text in (dream.content, meta.content) if text],
        invariants=[*dream.invariants, *meta.invariants],
        claims=[*dream.claims, *meta.claims, CONVERGENCE_CLAIM],
        source="meta-derivation.convergence",
        confidence=settings.convergence_confidence,
        metadata={
            "kind": "independent_convergence",
            "dream_record_id": dream.id,
            "meta_record_id": meta.id,
            "similarity": similarity,
        },
        created_at=now,
        updated_at=now,
    )


def detect_convergences(
    *,
    state: EngineState,
    collaborators: Collaborators,
    settings: Settings,
    now: datetime,
    ledger: Optional[Ledger] = None,
    commit_records: bool = True,
) -> ConvergenceResult:
    """Match dream records against committed meta records; idempotent per (dream, meta) pair."""
    records = list(collaborators.knowledge.records())
    dreams = [record for record in records if DREAM_TAG in record.tags]
    metas = [record for record in records if record.kind == META_KIND]
    if not dreams or not metas:
        return ConvergenceResult(reason="insufficient_data")

    threshold = settings.gate_policy.convergence_similarity
    meta_tokens = {meta.id: tokenize(meta.text_for_similarity()) for meta in metas}
    found: List[Convergence] = []
    effects: List[SideEffect] = []

    for dream in dreams:
        dream_tokens = tokenize(dream.text_for_similarity())
        for meta in metas:
            if dream.id in (meta.metadata.get("source_record_ids") or []):
                continue
            similarity = jaccard_similarity(dream_tokens, meta_tokens[meta.id])
            if similarity < threshold:
                continue
            if not is_independent(dream, meta, settings):
                continue
            key = Convergence.pair_key(dream.id, meta.id)
            if key in state.convergences:
                continue

            convergence = Convergence(
                convergence_id=key,
                dream_record_id=dream.id,
                meta_record_id=meta.id,
                similarity=similarity,
                dream_created_at=dream.created_at,
                meta_created_at=meta.created_at,
                discovered_at=now,
            )
            state.convergences[key] = convergence
            state.metrics.convergences_found += 1
            found.append(convergence)

            if commit_records:
                record_id = collaborators.ids.new_id("conv")
                collaborators.knowledge.upsert(
                    build_convergence_record(record_id, dream, meta, similarity, settings, now)
                )
                convergence.convergence_record_id = record_id
                for target, role in ((dream.id, "dream_input"), (meta.id, "meta_derivation")):
                    effects.append(
                        collaborators.link(
                            record_id,
                            target,
                            "derives",
                            settings.convergence_edge_weight,
                            {"source": "convergence", "role": role},
                        )
                    )

            emitted = collaborators.emit(
                CONVERGENCE_EVENT,
                {
                    "convergence_id": key,
                    "dream_record_id": dream.id,
                    "meta_record_id": meta.id,
                    "similarity": similarity,
                },
            )
            if emitted is not None:
                effects.append(emitted)
            if ledger is not None:
                ledger.append(
                    "CONVERGENCE_FOUND",
                    {
                        "convergence_id": key,
                        "similarity": similarity,
                        "convergence_record_id": convergence.convergence_record_id,
                        "convergence_hash": convergence.stable_hash(),
                    },
                )

    for dream in dreams:
        tracked = state.dream_inputs.get(dream.id)
        if tracked is not None:
            tracked.convergence_checked = True
    state.cycle.last_convergence_at = now
    logger.debug("convergence pass found %d new matches", len(found))
    return ConvergenceResult(convergences=found, side_effects=effects)
