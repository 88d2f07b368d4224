from .gates import (
    GATE_ORDER,
    NO_META_INVARIANT,
    NON_TRIVIALITY,
    PREDICTIVE_VERIFICATION,
    SELF_CONSISTENCY,
    non_triviality_gate,
    predictive_verification_gate,
    records_in_domain,
    run_gates,
    self_consistency_gate,
    validate_candidate,
)
from .text import contains_negation, jaccard_similarity, text_similarity, tokenize

__all__ = [
    "GATE_ORDER",
    "NO_META_INVARIANT",
    "NON_TRIVIALITY",
    "PREDICTIVE_VERIFICATION",
    "SELF_CONSISTENCY",
    "non_triviality_gate",
    "predictive_verification_gate",
    "records_in_domain",
    "run_gates",
    "self_consistency_gate",
    "validate_candidate",
    "contains_negation",
    "jaccard_similarity",
    "text_similarity",
    "tokenize",
]
