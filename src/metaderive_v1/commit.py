from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional, Union

from .collaborators import Collaborators, best_effort
from .config import Settings
from .domains import domain_tags
from .gates import records_in_domain
from .ledger.ledger import Ledger
from .schemas import (
    MEGA_TIER,
    Candidate,
    CommitResult,
    Failure,
    MetaRecord,
    PendingPrediction,
    Record,
    SideEffect,
    ValidationReport,
)
from .state import EngineState

logger = logging.getLogger(__name__)

META_KIND = "meta_derivation"
META_TAGS = ("meta-derivation", "meta-invariant")
VERIFICATION_ROLES = ["critic", "researcher", "validator"]
DERIVED_EVENT = "lattice:meta:derived"


def convergence_score(distance_score: float) -> float:
    if not distance_score:
        return 0.0
    return 1.0 - 1.0 / (distance_score + 1.0)


def build_meta_record(
    record_id: str,
    candidate: Candidate,
    verification_status: Optional[str],
    settings: Settings,
    now: datetime,
) -> Record:
    meta = candidate.meta_invariant or ""
    pending = verification_status == "unfalsified_pending" and bool(candidate.prediction)
    next_actions: List[str] = []
    if pending:
        next_actions.append(
            f'Verify prediction in domain "{candidate.predicted_domain}": {candidate.prediction}'
        )
    return Record(
        id=record_id,
        title=f"Meta-Invariant: {meta[:120]}",
        content=meta,
        tier=MEGA_TIER,
        tags=[
            *META_TAGS,
            f"domains:{'+'.join(candidate.source_domains)}",
            *domain_tags(candidate.source_domains),
        ],
        definitions=[meta],
        invariants=[meta],
        claims=[candidate.prediction] if candidate.prediction else [],
        next_actions=next_actions,
        source="meta-derivation.cycle",
        confidence=settings.meta_confidence,
        metadata={
            "kind": META_KIND,
            "source_invariants": list(candidate.source_invariants),
            "source_record_ids": list(candidate.source_record_ids),
            "source_domains": list(candidate.source_domains),
            "distance_score": candidate.distance_score,
            "convergence_score": convergence_score(candidate.distance_score),
            "predicted_domain": candidate.predicted_domain,
            "verification_status": verification_status,
            "reasoning": candidate.reasoning,
        },
        created_at=now,
        updated_at=now,
    )


def commit_meta_invariant(
    candidate: Candidate,
    report: ValidationReport,
    *,
    state: EngineState,
    collaborators: Collaborators,
    settings: Settings,
    now: datetime,
    ledger: Optional[Ledger] = None,
) -> Union[CommitResult, Failure]:
    """Persist a validated candidate as a mega-tier record plus provenance edges."""
    state.cycle.roll_date(now)
    if state.cycle.committed_today >= settings.daily_cap:
        return Failure(error="daily_meta_dtu_cap_reached", context={"cap": settings.daily_cap})
    if not report.passed or not candidate.meta_invariant:
        return Failure(
            error="candidate_not_validated",
            context={"reason": report.reason, "failed_gates": report.failed_gates()},
        )
    if not candidate.source_record_ids:
        return Failure(error="no_source_records", context={})

    verification_status = report.verification_status
    record_id = collaborators.ids.new_id("meta")
    record = build_meta_record(record_id, candidate, verification_status, settings, now)
    record = collaborators.knowledge.upsert(record)
    state.cycle.committed_today += 1
    state.committed[record_id] = MetaRecord(
        record_id=record_id,
        meta_invariant=candidate.meta_invariant,
        source_domains=list(candidate.source_domains),
        created_at=now,
    )

    effects: List[SideEffect] = []
    edges_created = 0
    for source_id in dict.fromkeys(candidate.source_record_ids):
        effect = collaborators.link(
            record_id,
            source_id,
            "derives",
            settings.derives_edge_weight,
            {"source": "meta-derivation", "role": "source_invariant"},
        )
        effects.append(effect)
        edges_created += int(effect.ok)

    if candidate.predicted_domain:
        targets = records_in_domain(
            collaborators.knowledge.records(), candidate.predicted_domain, settings.known_domains
        )
        references = 0
        for target in targets:
            if references >= settings.prediction_edge_cap:
                break
            if target.id == record_id:
                continue
            effect = collaborators.link(
                record_id,
                target.id,
                "references",
                settings.reference_edge_weight,
                {"source": "meta-derivation", "role": "prediction_target"},
            )
            effects.append(effect)
            if effect.ok:
                references += 1
                edges_created += 1

    prediction_id: Optional[str] = None
    need_created = False
    if verification_status == "unfalsified_pending" and candidate.prediction:
        prediction_id = collaborators.ids.new_id("mpred")
        state.pending_predictions[prediction_id] = PendingPrediction(
            prediction_id=prediction_id,
            prediction=candidate.prediction,
            predicted_domain=candidate.predicted_domain,
            meta_record_id=record_id,
            created_at=now,
        )
        description = (
            f'Meta-invariant [{record_id}] predicts "{candidate.prediction}" about '
            f"{candidate.predicted_domain}. Needs empirical verification."
        )
        need = best_effort(
            "record_need",
            lambda: collaborators.needs.record_need(
                type="meta_prediction_verification",
                priority=settings.need_priority,
                matching_roles=list(VERIFICATION_ROLES),
                description=description,
            ),
        )
        effects.append(need)
        need_created = need.ok

    emitted = collaborators.emit(
        DERIVED_EVENT,
        {
            "record_id": record_id,
            "meta_invariant": candidate.meta_invariant[:200],
            "source_domains": list(candidate.source_domains),
            "predicted_domain": candidate.predicted_domain,
        },
    )
    if emitted is not None:
        effects.append(emitted)

    if ledger is not None:
        ledger.append(
            "META_COMMITTED",
            {
                "record_id": record_id,
                "record_hash": record.stable_hash(),
                "source_domains": list(candidate.source_domains),
                "edges_created": edges_created,
                "prediction_id": prediction_id,
                "verification_status": verification_status,
                "failed_side_effects": [e.label for e in effects if not e.ok],
            },
        )
    logger.debug("committed meta-invariant %s (%d edges)", record_id, edges_created)
    return CommitResult(
        record=record,
        edges_created=edges_created,
        need_created=need_created,
        prediction_id=prediction_id,
        side_effects=effects,
    )
