from conftest import build_corpus, make_record, small_settings

from metaderive_v1.config import Settings
from metaderive_v1.domains import extract_domain_tag
from metaderive_v1.pool import extract_invariant_pool, representative_invariant
from metaderive_v1.schemas import Failure, Invariant, InvariantPool


def test_too_few_records_is_insufficient_dtus() -> None:
    records = build_corpus(["physics", "biology"], per_domain=5)
    result = extract_invariant_pool(records, Settings())
    assert isinstance(result, Failure)
    assert result.error == "insufficient_dtus"
    assert result.context == {"required": 100, "actual": 10}


def test_shadow_records_do_not_count() -> None:
    records = build_corpus(["physics", "biology", "economics"], per_domain=5)
    records += [
        make_record(f"shadow-{i}", "law", ["shadowed invariant text"], tier="shadow")
        for i in range(10)
    ]
    result = extract_invariant_pool(records, small_settings(min_records=16))
    assert isinstance(result, Failure)
    assert result.error == "insufficient_dtus"
    assert result.context["actual"] == 15


def test_domains_below_threshold_are_dropped() -> None:
    records = build_corpus(["physics", "biology", "economics"], per_domain=5)
    records += build_corpus(["law"], per_domain=4)
    result = extract_invariant_pool(records, small_settings())
    assert isinstance(result, InvariantPool)
    assert sorted(result.pool) == ["biology", "economics", "physics"]
    assert result.domain_count == 3
    assert result.invariant_count == 15
    assert result.record_count == 19


def test_insufficient_domains() -> None:
    records = build_corpus(["physics", "biology"], per_domain=6)
    result = extract_invariant_pool(records, small_settings())
    assert isinstance(result, Failure)
    assert result.error == "insufficient_domains"
    assert result.context == {"required": 3, "actual": 2}


def test_short_invariants_and_untagged_records_are_skipped() -> None:
    records = build_corpus(["physics", "biology", "economics"], per_domain=5)
    records.append(make_record("short", "physics", ["tiny"]))
    records.append(make_record("untagged", None, ["a perfectly valid invariant"]))
    result = extract_invariant_pool(records, small_settings())
    assert isinstance(result, InvariantPool)
    assert len(result.pool["physics"]) == 5
    all_ids = {
        rid for items in result.pool.values() for inv in items for rid in inv.source_record_ids
    }
    assert "short" not in all_ids
    assert "untagged" not in all_ids


def test_every_pool_entry_meets_thresholds() -> None:
    records = build_corpus(["physics", "biology", "economics", "law"], per_domain=6)
    result = extract_invariant_pool(records, small_settings())
    assert isinstance(result, InvariantPool)
    for domain, items in result.pool.items():
        assert len(items) >= 5
        for item in items:
            assert item.domain == domain
            assert len(item.text) >= 10


def test_explicit_domain_tag_beats_vocabulary() -> None:
    assert extract_domain_tag(["physics", "domain:music"]) == "music"
    assert extract_domain_tag(["misc", "biology", "physics"]) == "biology"
    assert extract_domain_tag(["misc"]) is None


def test_representative_invariant_prefers_repeated_text() -> None:
    items = [
        Invariant(text="first invariant text", domain="law", source_record_ids=["a"]),
        Invariant(text="second invariant text", domain="law", source_record_ids=["b"]),
        Invariant(text="second invariant text", domain="law", source_record_ids=["c"]),
    ]
    best = representative_invariant(items)
    assert best is not None
    assert best.text == "second invariant text"
    assert best.validation_count == 2
    assert best.source_record_ids == ["b", "c"]


def test_representative_invariant_first_seen_wins_ties() -> None:
    items = [
        Invariant(text="first invariant text", domain="law", source_record_ids=["a"]),
        Invariant(text="second invariant text", domain="law", source_record_ids=["b"]),
    ]
    best = representative_invariant(items)
    assert best is not None
    assert best.text == "first invariant text"
    assert representative_invariant([]) is None
