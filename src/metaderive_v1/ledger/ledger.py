from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from ..utils import iso, read_jsonl, stable_hash, to_jsonable, utc_now, write_jsonl_line


def _event_hash(entry: Dict[str, Any]) -> str:
    return stable_hash(
        {
            "ts": entry.get("ts"),
            "type": entry.get("type"),
            "payload": entry.get("payload"),
            "prev_hash": entry.get("prev_hash"),
        }
    )


class Ledger:
    """Hash-chained audit trail of engine decisions.

    With a path only the last hash is held; entries live in the JSONL file.
    Without a path the chain is kept in memory.
    """

    def __init__(self, path: Optional[Path] = None) -> None:
        self.path = Path(path) if path is not None else None
        self._memory: List[Dict[str, Any]] = []
        self._last_hash = ""
        if self.path is not None and self.path.exists():
            entries = read_jsonl(self.path)
            if entries:
                self._last_hash = entries[-1].get("hash", "")

    @property
    def entries(self) -> List[Dict[str, Any]]:
        if self.path is None:
            return list(self._memory)
        return read_jsonl(self.path)

    def append(self, event_type: str, payload: Dict[str, Any]) -> str:
        event: Dict[str, Any] = {
            "ts": iso(utc_now()),
            "type": event_type,
            "payload": to_jsonable(payload),
            "prev_hash": self._last_hash,
        }
        event["hash"] = _event_hash(event)
        if self.path is not None:
            write_jsonl_line(self.path, event)
        else:
            self._memory.append(event)
        self._last_hash = event["hash"]
        return event["hash"]

    def events(self, event_type: Optional[str] = None) -> List[Dict[str, Any]]:
        entries = self.entries
        if event_type is None:
            return entries
        return [entry for entry in entries if entry.get("type") == event_type]

    @staticmethod
    def verify_entries(entries: List[Dict[str, Any]]) -> Tuple[bool, str]:
        prev_hash = ""
        for idx, entry in enumerate(entries):
            if entry.get("prev_hash") != prev_hash:
                return False, f"prev_hash mismatch at {idx}"
            if _event_hash(entry) != entry.get("hash", ""):
                return False, f"hash mismatch at {idx}"
            prev_hash = entry["hash"]
        return True, "ok"

    @staticmethod
    def verify_chain(path: Path) -> Tuple[bool, str]:
        return Ledger.verify_entries(read_jsonl(path))
