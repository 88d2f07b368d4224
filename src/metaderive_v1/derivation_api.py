from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Any, Dict, List, Protocol

import orjson

from .schemas import DerivationSession
from .utils import canonical_dumps, read_json


class DerivationError(RuntimeError):
    """The derivation model could not produce a response."""


class DerivationModel(Protocol):
    def complete(self, session: DerivationSession) -> str:
        ...


class StaticDerivationModel:
    def __init__(self, response: str) -> None:
        self.response = response
        self.calls: List[str] = []

    def complete(self, session: DerivationSession) -> str:
        self.calls.append(session.session_id)
        return self.response


class ReplayDerivationModel:
    """Recorded responses keyed by the order-independent domain-set key (``a|b|c``)."""

    def __init__(self, replay_path: Path) -> None:
        self.replay_path = Path(replay_path)
        self.responses = self._load(self.replay_path)

    @staticmethod
    def _key(domains: Any) -> str:
        if isinstance(domains, str):
            domains = domains.split("|")
        if not isinstance(domains, list):
            return ""
        return "|".join(sorted(str(item) for item in domains))

    def _load(self, path: Path) -> Dict[str, str]:
        if not path.exists():
            return {}
        records: List[Dict[str, Any]] = []
        if path.suffix == ".jsonl":
            for line in path.read_bytes().splitlines():
                if not line:
                    continue
                try:
                    record = orjson.loads(line)
                except orjson.JSONDecodeError:
                    continue
                if isinstance(record, dict):
                    records.append(record)
        else:
            data = read_json(path)
            if isinstance(data, list):
                records = [item for item in data if isinstance(item, dict)]
            elif isinstance(data, dict):
                records = [
                    {"domains": key, "response": value}
                    for key, value in data.items()
                    if isinstance(value, str)
                ]
        indexed: Dict[str, str] = {}
        for record in records:
            key = self._key(record.get("domains"))
            response = record.get("response")
            if key and isinstance(response, str):
                indexed[key] = response
        return indexed

    def complete(self, session: DerivationSession) -> str:
        response = self.responses.get(session.set_key)
        if response is None:
            response = self.responses.get("*")
        if response is None:
            raise DerivationError(f"no recorded response for {session.set_key}")
        return response


class SubprocessDerivationModel:
    """Sends the prompt as JSON on stdin and reads ``{"response": ...}`` from stdout."""

    def __init__(self, command: List[str], timeout_s: float = 120.0) -> None:
        self.command = list(command)
        self.timeout_s = timeout_s

    def complete(self, session: DerivationSession) -> str:
        payload = {
            "session_id": session.session_id,
            "system": session.prompt.system,
            "content": session.prompt.content,
            "domains": list(session.selected_domains),
        }
        try:
            result = subprocess.run(
                self.command,
                input=canonical_dumps(payload),
                stdout=subprocess.PIPE,
                stderr=subprocess.DEVNULL,
                timeout=self.timeout_s,
                check=False,
            )
        except subprocess.TimeoutExpired as exc:
            raise DerivationError("timeout") from exc
        except OSError as exc:
            raise DerivationError("spawn_failed") from exc
        if result.returncode != 0:
            raise DerivationError("nonzero")
        try:
            output = orjson.loads(result.stdout or b"{}")
        except orjson.JSONDecodeError as exc:
            raise DerivationError("bad_json") from exc
        response = output.get("response") if isinstance(output, dict) else None
        if not isinstance(response, str):
            raise DerivationError("missing_response")
        return response
