from __future__ import annotations

from typing import Iterable, Optional, Sequence

from .config import KNOWN_DOMAINS

DOMAIN_PREFIX = "domain:"


def extract_domain_tag(
    tags: Iterable[object], known_domains: Sequence[str] = KNOWN_DOMAINS
) -> Optional[str]:
    """Explicit ``domain:x`` tag wins; otherwise the first tag in the known vocabulary."""
    tag_list = [tag for tag in tags if isinstance(tag, str)]
    for tag in tag_list:
        if tag.startswith(DOMAIN_PREFIX) and len(tag) > len(DOMAIN_PREFIX):
            return tag[len(DOMAIN_PREFIX) :]
    known = set(known_domains)
    for tag in tag_list:
        if tag in known:
            return tag
    return None


def domain_tags(domains: Iterable[str]) -> list[str]:
    return [f"{DOMAIN_PREFIX}{domain}" for domain in domains]
