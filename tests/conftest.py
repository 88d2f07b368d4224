import os
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable, List, Optional

import pytest

from metaderive_v1.collaborators import Collaborators
from metaderive_v1.config import Settings
from metaderive_v1.engine import MetaDerivationEngine
from metaderive_v1.schemas import Record
from metaderive_v1.stores.memory import (
    HashIdGenerator,
    MemoryEdgeStore,
    MemoryEventBus,
    MemoryKnowledgeStore,
    MemoryNeedQueue,
)

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

DOMAIN_PHRASES = {
    "physics": "energy flows conserve momentum inside closed systems",
    "biology": "cells regulate membranes through gradient feedback",
    "economics": "prices settle where marginal supply meets demand",
    "linguistics": "grammars constrain which utterances speakers produce",
    "law": "statutes bind officials only after promulgation",
    "music": "harmony resolves tension toward tonal centers",
}


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    _ = config
    run_slow = os.getenv("RUN_SLOW_TESTS", "") or os.getenv("METADERIVE_RUN_SLOW", "")
    if str(run_slow).strip().lower() in {"1", "true", "yes"}:
        return
    skip_slow = pytest.mark.skip(reason="set RUN_SLOW_TESTS=1 to run slow tests")
    for item in items:
        if "slow" in item.keywords:
            item.add_marker(skip_slow)


def make_record(
    record_id: str,
    domain: Optional[str],
    invariants: Iterable[str] = (),
    *,
    tags: Optional[List[str]] = None,
    tier: str = "regular",
    created_at: datetime = T0,
    content: str = "",
) -> Record:
    record_tags = list(tags or [])
    if domain:
        record_tags.insert(0, f"domain:{domain}")
    return Record(
        id=record_id,
        title=record_id,
        content=content,
        tier=tier,
        tags=record_tags,
        invariants=list(invariants),
        created_at=created_at,
    )


def build_corpus(domains: Iterable[str], per_domain: int = 5) -> List[Record]:
    """``per_domain`` records per domain, each carrying one distinct invariant."""
    records: List[Record] = []
    for domain in domains:
        phrase = DOMAIN_PHRASES.get(domain, f"{domain} structures persist under scrutiny")
        for idx in range(per_domain):
            records.append(
                make_record(f"{domain}-{idx}", domain, [f"{phrase} case {domain}{idx}"])
            )
    return records


def small_settings(**overrides: object) -> Settings:
    values: dict = {
        "min_records": 10,
        "min_domains": 3,
        "min_invariants_per_domain": 5,
        "set_size": 3,
    }
    values.update(overrides)
    return Settings(**values)


class FakeClock:
    def __init__(self, start: datetime = T0) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **delta: float) -> datetime:
        self.current = self.current + timedelta(**delta)
        return self.current


def make_collaborators(records: Iterable[Record] = ()) -> Collaborators:
    return Collaborators(
        knowledge=MemoryKnowledgeStore(records),
        edges=MemoryEdgeStore(),
        ids=HashIdGenerator(seed="tests"),
        needs=MemoryNeedQueue(),
        events=MemoryEventBus(),
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def engine_factory(clock: FakeClock) -> Callable[..., MetaDerivationEngine]:
    def _factory(
        records: Iterable[Record] = (), settings: Optional[Settings] = None
    ) -> MetaDerivationEngine:
        return MetaDerivationEngine(
            make_collaborators(records), settings or small_settings(), clock=clock
        )

    return _factory
