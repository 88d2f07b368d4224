from __future__ import annotations

from typing import Dict, Iterable, List, Union

from .config import Settings
from .domains import extract_domain_tag
from .schemas import Failure, Invariant, InvariantPool, Record


def extract_invariant_pool(
    records: Iterable[Record], settings: Settings
) -> Union[InvariantPool, Failure]:
    """Group validated invariants of non-shadow records by domain.

    Each qualifying invariant contributes one pool entry per carrying record;
    only domains with ``min_invariants_per_domain`` entries are kept.
    """
    eligible = [record for record in records if not record.is_shadow]
    if len(eligible) < settings.min_records:
        return Failure(
            error="insufficient_dtus",
            context={"required": settings.min_records, "actual": len(eligible)},
        )

    grouped: Dict[str, List[Invariant]] = {}
    for record in eligible:
        if not record.invariants:
            continue
        domain = extract_domain_tag(record.tags, settings.known_domains)
        if not domain:
            continue
        items = grouped.setdefault(domain, [])
        for text in record.invariants:
            if not isinstance(text, str) or len(text) < settings.min_invariant_chars:
                continue
            items.append(Invariant(text=text, domain=domain, source_record_ids=[record.id]))

    qualified = {
        domain: items
        for domain, items in sorted(grouped.items())
        if len(items) >= settings.min_invariants_per_domain
    }
    if len(qualified) < settings.min_domains:
        return Failure(
            error="insufficient_domains",
            context={"required": settings.min_domains, "actual": len(qualified)},
        )

    return InvariantPool(
        pool=qualified,
        record_count=len(eligible),
        domain_count=len(qualified),
        invariant_count=sum(len(items) for items in qualified.values()),
    )


def representative_invariant(items: List[Invariant]) -> Invariant | None:
    """Most widely repeated invariant text of a domain; first seen wins ties."""
    merged: Dict[str, Invariant] = {}
    for item in items:
        entry = merged.get(item.text)
        if entry is None:
            merged[item.text] = Invariant(
                text=item.text,
                domain=item.domain,
                source_record_ids=list(item.source_record_ids),
                validation_count=len(item.source_record_ids),
            )
            continue
        entry.source_record_ids.extend(item.source_record_ids)
        entry.validation_count += len(item.source_record_ids)
    if not merged:
        return None
    return max(merged.values(), key=lambda inv: inv.validation_count)
