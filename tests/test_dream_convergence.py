from datetime import datetime

from conftest import T0, FakeClock, make_collaborators, small_settings

from metaderive_v1.convergence import CONVERGENCE_EVENT
from metaderive_v1.engine import MetaDerivationEngine
from metaderive_v1.schemas import ConvergenceResult, DreamIngestResult, Failure, Record

META = "Every persistent structure must balance opposing flows against bounded capacity"
# Eight of the ten meta tokens: Jaccard 0.8.
DREAM = "Every persistent structure must balance opposing flows against"


def _meta_record(created_at: datetime = T0) -> Record:
    return Record(
        id="meta-1",
        title=f"Meta-Invariant: {META}",
        content=META,
        tier="mega",
        tags=["meta-derivation", "meta-invariant"],
        invariants=[META],
        metadata={"kind": "meta_derivation", "source_record_ids": ["physics-0"]},
        created_at=created_at,
    )


def test_short_dream_is_rejected(engine_factory) -> None:
    engine = engine_factory()
    for text in ("too short", "", None, 42):
        result = engine.ingest_dream(text)
        assert isinstance(result, Failure)
        assert result.error == "text_required_min_10_chars"
    assert engine.collaborators.knowledge.count() == 0


def test_unparseable_capture_time_is_rejected(engine_factory) -> None:
    engine = engine_factory()
    result = engine.ingest_dream("A long enough dream about tides.", "yesterday-ish")
    assert isinstance(result, Failure)
    assert result.error == "invalid_captured_at"
    assert result.context == {"captured_at": "yesterday-ish"}
    assert engine.state.dream_inputs == {}
    assert engine.collaborators.knowledge.count() == 0


def test_dream_ingest_creates_mega_record(engine_factory, clock: FakeClock) -> None:
    engine = engine_factory()
    text = "Lattices fold inward when nobody watches. " * 200
    result = engine.ingest_dream(text, "2026-02-28T06:30:00Z")
    assert isinstance(result, DreamIngestResult)
    record = result.record
    assert record.tier == "mega"
    assert record.tags == ["dream-input", "meta-derivation", "source:human"]
    assert record.content == text
    assert record.confidence == 0.5
    assert record.created_at == clock.current
    assert record.metadata["key_points"][0] == "Lattices fold inward when nobody watches"
    dream = engine.state.dream_inputs[record.id]
    assert len(dream.raw_text) == 5000
    assert dream.captured_at.isoformat() == "2026-02-28T06:30:00+00:00"
    assert engine.metrics()["dream_inputs_ingested"] == 1
    assert engine.ledger.events("DREAM_INGESTED")


def test_convergence_after_independence_gap(engine_factory, clock: FakeClock) -> None:
    engine = engine_factory([_meta_record()])
    clock.advance(hours=2)
    dream = engine.ingest_dream(DREAM)
    assert isinstance(dream, DreamIngestResult)

    result = engine.run_convergence_check()
    assert isinstance(result, ConvergenceResult)
    assert result.count == 1
    convergence = result.convergences[0]
    assert convergence.dream_record_id == dream.record.id
    assert convergence.meta_record_id == "meta-1"
    assert convergence.similarity == 0.8

    record = engine.collaborators.knowledge.get(convergence.convergence_record_id or "")
    assert record is not None
    assert record.tier == "hyper"
    assert record.confidence == 0.9
    assert "dream-input" not in record.tags
    edges = [
        edge
        for edge in engine.collaborators.edges.edges.values()
        if edge.source_id == record.id
    ]
    assert sorted(edge.target_id for edge in edges) == sorted([dream.record.id, "meta-1"])
    assert all(edge.edge_type == "derives" and edge.weight == 1.0 for edge in edges)
    assert CONVERGENCE_EVENT in engine.collaborators.events.names()
    assert engine.state.dream_inputs[dream.record.id].convergence_checked


def test_convergence_is_idempotent(engine_factory, clock: FakeClock) -> None:
    engine = engine_factory([_meta_record()])
    clock.advance(hours=2)
    engine.ingest_dream(DREAM)
    first = engine.run_convergence_check()
    clock.advance(hours=25)
    second = engine.run_convergence_check()
    assert first.count == 1
    assert second.count == 0
    assert len(engine.convergences()) == 1
    assert engine.metrics()["convergences_found"] == 1


def test_no_convergence_inside_independence_gap(engine_factory, clock: FakeClock) -> None:
    engine = engine_factory([_meta_record()])
    clock.advance(minutes=30)
    engine.ingest_dream(DREAM)
    result = engine.run_convergence_check()
    assert result.count == 0
    assert engine.convergences() == []


def test_dissimilar_dream_does_not_converge(engine_factory, clock: FakeClock) -> None:
    engine = engine_factory([_meta_record()])
    clock.advance(hours=2)
    engine.ingest_dream("A river of glass sang over quiet hills at dawn")
    assert engine.run_convergence_check().count == 0


def test_insufficient_data_keeps_last_convergence_unset(engine_factory) -> None:
    engine = engine_factory()
    engine.ingest_dream(DREAM)
    result = engine.run_convergence_check()
    assert result.count == 0
    assert result.reason == "insufficient_data"
    assert engine.state.cycle.last_convergence_at is None


def test_should_run_convergence_check_schedule(engine_factory, clock: FakeClock) -> None:
    engine = engine_factory([_meta_record()])
    assert not engine.should_run_convergence_check()
    clock.advance(hours=2)
    engine.ingest_dream(DREAM)
    assert engine.should_run_convergence_check()
    engine.run_convergence_check()
    assert not engine.should_run_convergence_check()
    clock.advance(hours=24)
    assert engine.should_run_convergence_check()


def test_dream_history_newest_first(engine_factory, clock: FakeClock) -> None:
    engine = engine_factory()
    engine.ingest_dream("The first dream was about tidal clocks. It ended abruptly.")
    clock.advance(hours=1)
    engine.ingest_dream("The second dream concerned mirrored libraries.")
    history = engine.dream_history(limit=10)
    assert [item["summary"][:16] for item in history] == ["The second dream", "The first dream "]
    assert history[1]["key_points"] == [
        "The first dream was about tidal clocks",
        "It ended abruptly",
    ]
    assert engine.dream_history(limit=1)[0]["summary"].startswith("The second dream")


def test_engine_without_clock_uses_wall_time() -> None:
    engine = MetaDerivationEngine(make_collaborators(), small_settings())
    assert engine.now().tzinfo is not None
