from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Sequence

from ..config import GatePolicy
from ..domains import extract_domain_tag
from ..schemas import Candidate, GateResult, Record, ValidationReport
from .text import contains_negation, jaccard_similarity, tokenize

SELF_CONSISTENCY = "self_consistency"
PREDICTIVE_VERIFICATION = "predictive_verification"
NON_TRIVIALITY = "non_triviality"
GATE_ORDER = (SELF_CONSISTENCY, PREDICTIVE_VERIFICATION, NON_TRIVIALITY)

NO_META_INVARIANT = "no_meta_invariant"


def _quote(text: str, limit: int = 100) -> str:
    return f'"{text[:limit]}"'


def self_consistency_gate(
    meta_invariant: Optional[str], source_invariants: Sequence[str], policy: GatePolicy
) -> GateResult:
    if not meta_invariant:
        return GateResult(gate=SELF_CONSISTENCY, passed=False, reason=NO_META_INVARIANT)
    meta_tokens = tokenize(meta_invariant)
    for text in source_invariants:
        if not text:
            continue
        overlap = jaccard_similarity(meta_tokens, tokenize(text))
        if overlap > policy.contradiction_overlap and contains_negation(
            meta_invariant, text, policy.negation_markers
        ):
            return GateResult(
                gate=SELF_CONSISTENCY,
                passed=False,
                reason=f"Contradicts source invariant: {_quote(text)}",
            )
    return GateResult(
        gate=SELF_CONSISTENCY, passed=True, reason="No contradictions with source invariants"
    )


def predictive_verification_gate(
    prediction: Optional[str],
    predicted_domain: Optional[str],
    domain_records: Sequence[Record],
    policy: GatePolicy,
) -> GateResult:
    if not prediction or not predicted_domain:
        return GateResult(
            gate=PREDICTIVE_VERIFICATION,
            passed=True,
            status="no_prediction",
            reason="No prediction to verify",
        )
    if not domain_records:
        return GateResult(
            gate=PREDICTIVE_VERIFICATION,
            passed=True,
            status="unfalsified_pending",
            reason=f'No records in domain "{predicted_domain}" to check against',
        )
    prediction_tokens = tokenize(prediction)
    for record in domain_records:
        for text in record.invariants:
            overlap = jaccard_similarity(prediction_tokens, tokenize(text))
            if overlap > policy.prediction_overlap and contains_negation(
                prediction, text, policy.negation_markers
            ):
                return GateResult(
                    gate=PREDICTIVE_VERIFICATION,
                    passed=False,
                    status="contradicted",
                    reason=f"Contradicts validated knowledge: {_quote(text)}",
                )
    return GateResult(
        gate=PREDICTIVE_VERIFICATION,
        passed=True,
        status="consistent",
        reason=f'Consistent with {len(domain_records)} records in domain "{predicted_domain}"',
    )


def non_triviality_gate(
    meta_invariant: Optional[str], source_invariants: Sequence[str], policy: GatePolicy
) -> GateResult:
    if not meta_invariant:
        return GateResult(
            gate=NON_TRIVIALITY, passed=False, reason=NO_META_INVARIANT, max_similarity=0.0
        )
    meta_tokens = tokenize(meta_invariant)
    max_similarity = 0.0
    most_similar = ""
    for text in source_invariants:
        if not text:
            continue
        similarity = jaccard_similarity(meta_tokens, tokenize(text))
        if similarity > max_similarity:
            max_similarity = similarity
            most_similar = text
    threshold = policy.triviality_threshold
    if max_similarity >= threshold:
        return GateResult(
            gate=NON_TRIVIALITY,
            passed=False,
            max_similarity=max_similarity,
            reason=(
                f"Trivial restatement (Jaccard {max_similarity:.3f} >= {threshold}) "
                f"of: {_quote(most_similar)}"
            ),
        )
    return GateResult(
        gate=NON_TRIVIALITY,
        passed=True,
        max_similarity=max_similarity,
        reason=f"Sufficiently novel (max Jaccard {max_similarity:.3f})",
    )


def records_in_domain(
    records: Iterable[Record], domain: Optional[str], known_domains: Sequence[str]
) -> List[Record]:
    if not domain:
        return []
    return [
        record
        for record in records
        if not record.is_shadow and extract_domain_tag(record.tags, known_domains) == domain
    ]


def run_gates(
    candidate: Candidate, domain_records: Sequence[Record], policy: GatePolicy
) -> Dict[str, GateResult]:
    return {
        SELF_CONSISTENCY: self_consistency_gate(
            candidate.meta_invariant, candidate.source_invariants, policy
        ),
        PREDICTIVE_VERIFICATION: predictive_verification_gate(
            candidate.prediction, candidate.predicted_domain, domain_records, policy
        ),
        NON_TRIVIALITY: non_triviality_gate(
            candidate.meta_invariant, candidate.source_invariants, policy
        ),
    }


def validate_candidate(
    candidate: Candidate, domain_records: Sequence[Record], policy: GatePolicy
) -> ValidationReport:
    """Run all three gates; the candidate passes only when every gate passes."""
    gates = run_gates(candidate, domain_records, policy)
    passed = all(gates[name].passed for name in GATE_ORDER)
    reason: Optional[str] = None
    if not candidate.meta_invariant:
        reason = NO_META_INVARIANT
    elif not passed:
        reason = next(name for name in GATE_ORDER if not gates[name].passed)
    return ValidationReport(passed=passed, reason=reason, gates=gates)
