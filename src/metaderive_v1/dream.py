from __future__ import annotations

import re
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from .collaborators import Collaborators
from .config import Settings
from .ledger.ledger import Ledger
from .schemas import MEGA_TIER, DreamIngestResult, DreamRecord, Failure, Record
from .state import EngineState
from .utils import parse_iso

DREAM_KIND = "dream_input"
DREAM_TAG = "dream-input"

_SENTENCE_END = re.compile(r"[.!?]+")


def extract_key_points(text: str, limit: int = 5) -> List[str]:
    sentences = [part.strip() for part in _SENTENCE_END.split(text)]
    return [sentence for sentence in sentences if len(sentence) > 10][:limit]


def ingest_dream_input(
    raw_text: object,
    captured_at: Optional[Union[str, datetime]],
    *,
    state: EngineState,
    collaborators: Collaborators,
    settings: Settings,
    now: datetime,
    ledger: Optional[Ledger] = None,
) -> Union[DreamIngestResult, Failure]:
    """Wrap human-authored text into a mega-tier record; no gates run on this path."""
    if not isinstance(raw_text, str) or len(raw_text) < settings.min_dream_chars:
        return Failure(
            error="text_required_min_10_chars",
            context={"min_chars": settings.min_dream_chars},
        )
    captured = parse_iso(captured_at)
    if captured is None:
        if captured_at is not None and str(captured_at).strip():
            return Failure(error="invalid_captured_at", context={"captured_at": str(captured_at)})
        captured = now
    record_id = collaborators.ids.new_id("dream")
    record = Record(
        id=record_id,
        title=f"Dream Input: {raw_text[:100]}",
        content=raw_text,
        tier=MEGA_TIER,
        tags=[DREAM_TAG, "meta-derivation", "source:human"],
        next_actions=["Extract invariants", "Check for convergence"],
        source="meta-derivation.dream-input",
        confidence=settings.dream_confidence,
        metadata={
            "kind": DREAM_KIND,
            "captured_at": captured.isoformat(),
            "key_points": extract_key_points(raw_text),
        },
        created_at=now,
        updated_at=now,
    )
    record = collaborators.knowledge.upsert(record)

    dream = DreamRecord(
        record_id=record_id,
        raw_text=raw_text[: settings.dream_text_limit],
        captured_at=captured,
        ingested_at=now,
    )
    state.dream_inputs[record_id] = dream
    state.metrics.dream_inputs_ingested += 1
    if ledger is not None:
        ledger.append(
            "DREAM_INGESTED",
            {"record_id": record_id, "chars": len(raw_text), "captured_at": captured},
        )
    return DreamIngestResult(record=record, dream=dream)


def dream_history(
    state: EngineState, collaborators: Collaborators, limit: int = 50
) -> List[Dict[str, Any]]:
    """Ingested dreams, newest first."""
    dreams = sorted(state.dream_inputs.values(), key=lambda d: d.ingested_at, reverse=True)
    history: List[Dict[str, Any]] = []
    for dream in dreams[:limit]:
        record = collaborators.knowledge.get(dream.record_id)
        converged = any(
            conv.dream_record_id == dream.record_id for conv in state.convergences.values()
        )
        history.append(
            {
                "record_id": dream.record_id,
                "title": record.title if record else "",
                "summary": dream.raw_text[:200],
                "key_points": extract_key_points(dream.raw_text),
                "captured_at": dream.captured_at,
                "ingested_at": dream.ingested_at,
                "convergence_checked": dream.convergence_checked,
                "converged": converged,
            }
        )
    return history
