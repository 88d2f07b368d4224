import pytest
from conftest import make_record
from pydantic import ValidationError

from metaderive_v1.config import KNOWN_DOMAINS, GatePolicy
from metaderive_v1.gates import (
    NON_TRIVIALITY,
    PREDICTIVE_VERIFICATION,
    SELF_CONSISTENCY,
    non_triviality_gate,
    predictive_verification_gate,
    records_in_domain,
    self_consistency_gate,
    validate_candidate,
)
from metaderive_v1.schemas import Candidate, GateResult

POLICY = GatePolicy()
SOURCES = [
    "energy is conserved in every closed physical system",
    "cells regulate membranes through gradient feedback",
]
NOVEL_META = "Every persistent structure must balance opposing flows against bounded capacity"


def test_self_consistency_flags_negated_restatement() -> None:
    result = self_consistency_gate(
        "energy is not conserved in every closed physical system", SOURCES, POLICY
    )
    assert not result.passed
    assert result.reason.startswith("Contradicts source invariant")


def test_self_consistency_passes_novel_statement() -> None:
    result = self_consistency_gate(NOVEL_META, SOURCES, POLICY)
    assert result.passed


def test_missing_meta_invariant_fails_structural_gates() -> None:
    assert self_consistency_gate(None, SOURCES, POLICY).reason == "no_meta_invariant"
    trivial = non_triviality_gate("", SOURCES, POLICY)
    assert not trivial.passed
    assert trivial.reason == "no_meta_invariant"


def test_prediction_without_domain_records_is_pending() -> None:
    result = predictive_verification_gate("tides follow the moon", "cosmology", [], POLICY)
    assert result.passed
    assert result.status == "unfalsified_pending"


def test_no_prediction_passes_with_status() -> None:
    result = predictive_verification_gate(None, "law", [], POLICY)
    assert result.passed
    assert result.status == "no_prediction"


def test_gate_status_is_restricted_to_known_values() -> None:
    with pytest.raises(ValidationError):
        GateResult(gate=PREDICTIVE_VERIFICATION, passed=True, reason="ok", status="maybe")


def test_prediction_contradicted_by_domain_record() -> None:
    records = [make_record("law-1", "law", ["contracts are never enforceable without consent"])]
    result = predictive_verification_gate(
        "contracts are enforceable without consent", "law", records, POLICY
    )
    assert not result.passed
    assert result.status == "contradicted"


def test_prediction_consistent_with_domain_records() -> None:
    records = [make_record("law-1", "law", ["statutes bind officials after promulgation"])]
    result = predictive_verification_gate(
        "contracts are enforceable without consent", "law", records, POLICY
    )
    assert result.passed
    assert result.status == "consistent"


def test_non_triviality_rejects_near_copy() -> None:
    result = non_triviality_gate(
        "energy is conserved in every closed system", SOURCES, POLICY
    )
    assert not result.passed
    assert result.max_similarity is not None and result.max_similarity >= 0.4


def test_non_triviality_accepts_novel_statement() -> None:
    result = non_triviality_gate(NOVEL_META, SOURCES, POLICY)
    assert result.passed
    assert result.max_similarity is not None and result.max_similarity < 0.4


def test_records_in_domain_excludes_shadow_and_other_domains() -> None:
    records = [
        make_record("a", "law", ["x" * 12]),
        make_record("b", "law", ["y" * 12], tier="shadow"),
        make_record("c", "physics", ["z" * 12]),
        make_record("d", None, ["w" * 12], tags=["law"]),
    ]
    found = records_in_domain(records, "law", KNOWN_DOMAINS)
    assert [record.id for record in found] == ["a", "d"]
    assert records_in_domain(records, None, KNOWN_DOMAINS) == []


def test_validate_candidate_reports_first_failing_gate() -> None:
    candidate = Candidate(
        meta_invariant="energy is conserved in every closed system",
        source_invariants=SOURCES,
    )
    report = validate_candidate(candidate, [], POLICY)
    assert not report.passed
    assert report.reason == NON_TRIVIALITY
    assert report.failed_gates() == [NON_TRIVIALITY]
    assert set(report.gates) == {SELF_CONSISTENCY, PREDICTIVE_VERIFICATION, NON_TRIVIALITY}


def test_validate_candidate_without_meta_invariant() -> None:
    report = validate_candidate(Candidate(source_invariants=SOURCES), [], POLICY)
    assert not report.passed
    assert report.reason == "no_meta_invariant"


def test_validate_candidate_passes_novel_pending_prediction() -> None:
    candidate = Candidate(
        meta_invariant=NOVEL_META,
        prediction="stellar nurseries cap star formation at a bounded rate",
        predicted_domain="cosmology",
        source_invariants=SOURCES,
    )
    report = validate_candidate(candidate, [], POLICY)
    assert report.passed
    assert report.reason is None
    assert report.verification_status == "unfalsified_pending"
