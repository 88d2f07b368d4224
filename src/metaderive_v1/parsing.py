from __future__ import annotations

import re
from typing import Dict, Optional

from .schemas import ParsedResponse

LABELS = ("META_INVARIANT", "PREDICTED_DOMAIN", "PREDICTION", "REASONING")

_FIELD_NAMES = {
    "META_INVARIANT": "meta_invariant",
    "PREDICTED_DOMAIN": "predicted_domain",
    "PREDICTION": "prediction",
    "REASONING": "reasoning",
}

_ANY_LABEL = "|".join(LABELS)

# A section runs from its label to the next line that opens with any label.
_PATTERNS = {
    label: re.compile(
        rf"(?<![A-Za-z0-9_]){label}:[ \t]*(.*?)(?=\n[ \t]*(?:{_ANY_LABEL}):|\Z)",
        re.DOTALL,
    )
    for label in LABELS
}


def _extract(text: str, label: str) -> Optional[str]:
    match = _PATTERNS[label].search(text)
    if match is None:
        return None
    value = match.group(1).strip()
    return value or None


def parse_derivation_response(response: object) -> ParsedResponse:
    """Extract the four labelled sections; absent or empty sections become ``None``."""
    text = str(response) if response is not None else ""
    values: Dict[str, Optional[str]] = {
        _FIELD_NAMES[label]: _extract(text, label) for label in LABELS
    }
    return ParsedResponse(**values)
