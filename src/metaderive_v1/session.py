from __future__ import annotations

from typing import List, Optional, Sequence, Tuple, Union

from .collaborators import AgentClock, best_effort
from .config import Settings
from .schemas import DerivationSession, DistantSet, Failure, Invariant, Prompt, SideEffect

SESSION_KIND = "meta_derivation"

SYSTEM_PROMPT = (
    "You are examining invariants drawn from maximally distant domains of a knowledge "
    "lattice. Every one of them has been independently validated. Identify the constraint "
    "that must exist for ALL of them to hold simultaneously: not a summary and not a "
    "synthesis, but the unstated geometric constraint that makes their co-existence "
    "necessary. Then state one falsifiable prediction this constraint makes about a domain "
    "that is NOT represented in the input set.\n"
    "\n"
    "Respond in exactly this format:\n"
    "META_INVARIANT: <the constraint statement>\n"
    "PREDICTED_DOMAIN: <domain name>\n"
    "PREDICTION: <testable claim about that domain>\n"
    "REASONING: <derivation path, 2-4 sentences>"
)


def build_prompt(invariants: Sequence[Invariant]) -> Prompt:
    domain_list = ", ".join(inv.domain for inv in invariants)
    blocks = [
        f'[Domain: {inv.domain}] (validated in {inv.validation_count} records)\n  "{inv.text}"'
        for inv in invariants
    ]
    content = f"Invariants from maximally distant domains ({domain_list}):\n\n" + "\n\n".join(
        blocks
    )
    return Prompt(system=SYSTEM_PROMPT, content=content)


def select_participant(clock: Optional[AgentClock], settings: Settings) -> Optional[str]:
    """Most experienced active agent, scored as ticks + novelty_ratio * 100."""
    if clock is None:
        return None
    best_id: Optional[str] = None
    best_score = -1.0
    for agent_id in clock.active_agents():
        age = clock.get_agent_age(agent_id)
        if age is None:
            continue
        if age.ticks < settings.agent_min_ticks or age.cycles < settings.agent_min_cycles:
            continue
        novelty = age.novelty_ratio if age.novelty_ratio is not None else 0.5
        score = age.ticks + novelty * 100
        if score > best_score:
            best_score = score
            best_id = agent_id
    return best_id


def credit_participant(
    clock: AgentClock, agent_id: str, settings: Settings
) -> List[SideEffect]:
    effects = [best_effort("record_epoch", lambda: clock.record_epoch(agent_id, SESSION_KIND))]
    for _ in range(settings.agent_tick_weight):
        effects.append(
            best_effort(
                "record_tick", lambda: clock.record_tick(agent_id, is_novel=True, depth=1)
            )
        )
    return effects


def build_session(
    distant_set: DistantSet,
    *,
    session_id: str,
    settings: Settings,
    clock: Optional[AgentClock] = None,
) -> Union[Tuple[DerivationSession, List[SideEffect]], Failure]:
    if len(distant_set.invariants) < 2:
        return Failure(
            error="insufficient_invariants",
            context={"required": 2, "actual": len(distant_set.invariants)},
        )
    participant = select_participant(clock, settings)
    effects: List[SideEffect] = []
    if participant is not None and clock is not None:
        effects = credit_participant(clock, participant, settings)
    session = DerivationSession(
        session_id=session_id,
        participant_id=participant,
        prompt=build_prompt(distant_set.invariants),
        invariants=list(distant_set.invariants),
        source_record_ids=distant_set.source_record_ids,
        selected_domains=list(distant_set.selected_domains),
        distance_score=distant_set.distance_score,
        distance_matrix=dict(distant_set.distance_matrix),
    )
    return session, effects
