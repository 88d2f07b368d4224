from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Union

from .collaborators import Collaborators
from .commit import commit_meta_invariant
from .config import Settings
from .convergence import detect_convergences
from .derivation_api import DerivationModel
from .dream import dream_history, ingest_dream_input
from .gates import records_in_domain, validate_candidate
from .graph.distance import Adjacency, DistanceMatrix, build_distance_matrix
from .graph.selection import ranked_pairs, select_maximally_distant_set
from .ledger.ledger import Ledger
from .parsing import parse_derivation_response
from .pool import extract_invariant_pool
from .schemas import (
    Candidate,
    CommitResult,
    Convergence,
    ConvergenceResult,
    CycleResult,
    DerivationOutcome,
    DerivationSession,
    DistantSet,
    DreamIngestResult,
    Failure,
    InvariantPool,
    MetaRecord,
    PendingPrediction,
    ValidationReport,
)
from .session import build_session
from .state import EngineState, elapsed_since
from .utils import to_jsonable, utc_now

logger = logging.getLogger(__name__)

RESOLVED_STATUSES = ("confirmed", "refuted")


class MetaDerivationEngine:
    """Owns the meta-derivation state and drives cycles through injected collaborators.

    Every public call that reads or mutates state runs under one re-entrant lock.
    The lock and the ``cycle_in_progress`` flag are process-local; a deployment
    with several writers needs an external lock or a single elected owner.
    """

    def __init__(
        self,
        collaborators: Collaborators,
        settings: Optional[Settings] = None,
        *,
        state: Optional[EngineState] = None,
        ledger: Optional[Ledger] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.collaborators = collaborators
        self.settings = settings or Settings()
        self.state = state or EngineState()
        self.ledger = ledger or Ledger()
        self.clock = clock
        self._lock = threading.RLock()

    def now(self) -> datetime:
        return self.clock()

    # -- pool, distance, selection -------------------------------------------------

    def extract_pool(self) -> Union[InvariantPool, Failure]:
        with self._lock:
            return extract_invariant_pool(self.collaborators.knowledge.records(), self.settings)

    def adjacency(self) -> Adjacency:
        return Adjacency.from_edge_store(self.collaborators.edges)

    def distance_matrix(
        self, pool: InvariantPool, adjacency: Optional[Adjacency] = None
    ) -> DistanceMatrix:
        return build_distance_matrix(
            pool.domain_record_ids(), adjacency or self.adjacency(), self.settings.bfs_max_hops
        )

    def select_distant_set(
        self,
        pool: InvariantPool,
        *,
        set_size: Optional[int] = None,
        adjacency: Optional[Adjacency] = None,
        matrix: Optional[DistanceMatrix] = None,
        seed_rank: int = 0,
    ) -> Union[DistantSet, Failure]:
        with self._lock:
            return select_maximally_distant_set(
                pool,
                adjacency or self.adjacency(),
                set_size or self.settings.set_size,
                max_hops=self.settings.bfs_max_hops,
                matrix=matrix,
                seed_rank=seed_rank,
            )

    # -- sessions ------------------------------------------------------------------

    def build_session(self, distant_set: DistantSet) -> Union[DerivationSession, Failure]:
        with self._lock:
            built = build_session(
                distant_set,
                session_id=self.collaborators.ids.new_id("msession"),
                settings=self.settings,
                clock=self.collaborators.agents,
            )
            if isinstance(built, Failure):
                return built
            session, effects = built
            self.state.metrics.sessions_run += 1
            self.ledger.append(
                "SESSION_BUILT",
                {
                    "session_id": session.session_id,
                    "participant_id": session.participant_id,
                    "domains": session.selected_domains,
                    "distance_score": session.distance_score,
                    "failed_side_effects": [e.label for e in effects if not e.ok],
                },
            )
            return session

    # -- validation and commit ---------------------------------------------------

    def validate(self, candidate: Candidate) -> ValidationReport:
        with self._lock:
            domain_records = records_in_domain(
                self.collaborators.knowledge.records(),
                candidate.predicted_domain,
                self.settings.known_domains,
            )
            report = validate_candidate(candidate, domain_records, self.settings.gate_policy)
            if report.passed:
                self.state.metrics.candidates_validated += 1
            else:
                self.state.metrics.candidates_rejected += 1
            self.ledger.append(
                "GATE_RESULT",
                {
                    "passed": report.passed,
                    "reason": report.reason,
                    "gates": {
                        name: gate.model_dump(exclude_none=True)
                        for name, gate in report.gates.items()
                    },
                    "source_domains": candidate.source_domains,
                },
            )
            return report

    def commit(
        self, candidate: Candidate, report: ValidationReport
    ) -> Union[CommitResult, Failure]:
        with self._lock:
            result = commit_meta_invariant(
                candidate,
                report,
                state=self.state,
                collaborators=self.collaborators,
                settings=self.settings,
                now=self.now(),
                ledger=self.ledger,
            )
            if isinstance(result, Failure):
                self.ledger.append(
                    "COMMIT_REJECTED", {"error": result.error, "context": result.context}
                )
            return result

    def derive_session(
        self, session: DerivationSession, model: DerivationModel
    ) -> Union[DerivationOutcome, Failure]:
        """Model call, parse, gates, and commit for one session."""
        try:
            response = model.complete(session)
        except Exception as exc:  # noqa: BLE001
            logger.warning("derivation model failed for %s: %s", session.session_id, exc)
            failure = Failure(
                error="derivation_failed",
                context={"session_id": session.session_id, "detail": str(exc)},
            )
            with self._lock:
                self.ledger.append("DERIVATION_FAILED", failure.context)
            return failure

        parsed = parse_derivation_response(response)
        candidate = Candidate.from_session(session, parsed)
        report = self.validate(candidate)
        outcome = DerivationOutcome(
            session_id=session.session_id, response=parsed, candidate=candidate, report=report
        )
        if not report.passed:
            return outcome
        committed = self.commit(candidate, report)
        if isinstance(committed, Failure):
            outcome.failure = committed
        else:
            outcome.commit = committed
        return outcome

    # -- cycles ----------------------------------------------------------------------

    def _begin_cycle(self) -> Union[CycleResult, Failure]:
        with self._lock:
            cycle = self.state.cycle
            cycle.roll_date(self.now())
            if cycle.cycle_in_progress:
                return Failure(error="cycle_already_in_progress")
            if cycle.committed_today >= self.settings.daily_cap:
                return Failure(error="daily_cap_reached", context={"cap": self.settings.daily_cap})
            pool = extract_invariant_pool(self.collaborators.knowledge.records(), self.settings)
            if isinstance(pool, Failure):
                return pool

            cycle.cycle_in_progress = True
            try:
                self.state.metrics.cycles_run += 1
                self.ledger.append(
                    "CYCLE_STARTED",
                    {
                        "domain_count": pool.domain_count,
                        "invariant_count": pool.invariant_count,
                        "policy_hash": self.settings.policy_hash(),
                    },
                )
                sessions = self._generate_sessions(pool)
            except BaseException:
                cycle.cycle_in_progress = False
                raise
            self.state.metrics.candidates_generated += len(sessions)
            return CycleResult(
                sessions=sessions,
                domain_count=pool.domain_count,
                invariant_count=pool.invariant_count,
            )

    def _generate_sessions(self, pool: InvariantPool) -> List[DerivationSession]:
        adjacency = self.adjacency()
        matrix = self.distance_matrix(pool, adjacency)
        attempts = max(1, len(ranked_pairs(list(pool.pool.keys()), matrix)))
        sessions: List[DerivationSession] = []
        used: set[str] = set()
        for rank in range(attempts):
            if len(sessions) >= self.settings.max_sessions_per_cycle:
                break
            distant = self.select_distant_set(
                pool, adjacency=adjacency, matrix=matrix, seed_rank=rank
            )
            if isinstance(distant, Failure):
                break
            if distant.set_key in used:
                continue
            used.add(distant.set_key)
            session = self.build_session(distant)
            if isinstance(session, DerivationSession):
                sessions.append(session)
        return sessions

    def _cap_reached(self) -> bool:
        with self._lock:
            self.state.cycle.roll_date(self.now())
            return self.state.cycle.committed_today >= self.settings.daily_cap

    def _end_cycle(self, sessions: int, committed: int = 0) -> None:
        with self._lock:
            self.state.cycle.cycle_in_progress = False
            self.state.cycle.last_cycle_at = self.now()
            self.ledger.append("CYCLE_COMPLETED", {"sessions": sessions, "committed": committed})

    def trigger_cycle(self) -> Union[CycleResult, Failure]:
        """Generate the cycle's sessions; the model calls are left to the caller."""
        result = self._begin_cycle()
        if isinstance(result, Failure):
            return result
        self._end_cycle(result.session_count)
        return result

    def run_cycle(
        self, model: DerivationModel
    ) -> Union[List[Union[DerivationOutcome, Failure]], Failure]:
        """Full cycle: generate sessions, derive each one, commit what passes the gates."""
        result = self._begin_cycle()
        if isinstance(result, Failure):
            return result
        outcomes: List[Union[DerivationOutcome, Failure]] = []
        try:
            for session in result.sessions:
                if self._cap_reached():
                    outcomes.append(
                        Failure(
                            error="daily_meta_dtu_cap_reached",
                            context={
                                "cap": self.settings.daily_cap,
                                "session_id": session.session_id,
                            },
                        )
                    )
                    continue
                outcomes.append(self.derive_session(session, model))
        finally:
            committed = sum(
                1 for item in outcomes if isinstance(item, DerivationOutcome) and item.committed
            )
            self._end_cycle(result.session_count, committed)
        return outcomes

    def should_run_meta_cycle(self) -> bool:
        with self._lock:
            cycle = self.state.cycle
            now = self.now()
            cycle.roll_date(now)
            if cycle.cycle_in_progress:
                return False
            if cycle.committed_today >= self.settings.daily_cap:
                return False
            if self.collaborators.knowledge.count() < self.settings.min_records:
                return False
            elapsed = elapsed_since(cycle.last_cycle_at, now)
            if elapsed is not None and elapsed < self.settings.cycle_interval.total_seconds():
                return False
            return True

    def should_run_convergence_check(self) -> bool:
        with self._lock:
            if not self.state.dream_inputs:
                return False
            elapsed = elapsed_since(self.state.cycle.last_convergence_at, self.now())
            if elapsed is not None and elapsed < self.settings.convergence_interval.total_seconds():
                return False
            return True

    # -- dreams and convergence ----------------------------------------------------

    def ingest_dream(
        self, raw_text: object, captured_at: Optional[Union[str, datetime]] = None
    ) -> Union[DreamIngestResult, Failure]:
        with self._lock:
            return ingest_dream_input(
                raw_text,
                captured_at,
                state=self.state,
                collaborators=self.collaborators,
                settings=self.settings,
                now=self.now(),
                ledger=self.ledger,
            )

    def run_convergence_check(self) -> ConvergenceResult:
        with self._lock:
            return detect_convergences(
                state=self.state,
                collaborators=self.collaborators,
                settings=self.settings,
                now=self.now(),
                ledger=self.ledger,
            )

    # -- queries -------------------------------------------------------------------

    def pending_predictions(self) -> List[PendingPrediction]:
        with self._lock:
            return [p for p in self.state.pending_predictions.values() if p.status == "pending"]

    def resolve_prediction(
        self, prediction_id: str, status: str
    ) -> Union[PendingPrediction, Failure]:
        if status not in RESOLVED_STATUSES:
            raise ValueError(f"status must be one of {RESOLVED_STATUSES}")
        with self._lock:
            prediction = self.state.pending_predictions.get(prediction_id)
            if prediction is None:
                return Failure(error="unknown_prediction", context={"prediction_id": prediction_id})
            if prediction.status != "pending":
                return Failure(
                    error="prediction_already_resolved",
                    context={"prediction_id": prediction_id, "status": prediction.status},
                )
            prediction.status = status  # type: ignore[assignment]
            prediction.resolved_at = self.now()
            self.state.metrics.predictions_verified += 1
            self.ledger.append(
                "PREDICTION_RESOLVED",
                {
                    "prediction_id": prediction_id,
                    "status": status,
                    "meta_record_id": prediction.meta_record_id,
                },
            )
            return prediction

    def convergences(self) -> List[Convergence]:
        with self._lock:
            return list(self.state.convergences.values())

    def meta_invariants(self) -> List[MetaRecord]:
        with self._lock:
            return list(self.state.committed.values())

    def dream_history(self, limit: int = 50) -> List[Dict[str, Any]]:
        with self._lock:
            return to_jsonable(dream_history(self.state, self.collaborators, limit))

    def metrics(self) -> Dict[str, Any]:
        with self._lock:
            self.state.cycle.roll_date(self.now())
            payload: Dict[str, Any] = self.state.summary()
            payload.update(
                {
                    "daily_cap": self.settings.daily_cap,
                    "cycle_interval_hours": self.settings.cycle_interval_hours,
                    "cycle_in_progress": self.state.cycle.cycle_in_progress,
                }
            )
            payload.update(self.state.metrics.model_dump())
            return payload
