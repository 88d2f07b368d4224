from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

import typer
from rich.console import Console
from rich.table import Table

from .collaborators import Collaborators
from .config import load_settings
from .derivation_api import (
    DerivationModel,
    ReplayDerivationModel,
    StaticDerivationModel,
    SubprocessDerivationModel,
)
from .engine import MetaDerivationEngine
from .ledger.ledger import Ledger
from .schemas import DerivationOutcome, Failure, export_schemas
from .state import EngineState
from .stores.memory import (
    HashIdGenerator,
    MemoryEdgeStore,
    MemoryEventBus,
    MemoryKnowledgeStore,
    MemoryNeedQueue,
    load_snapshot,
    save_snapshot,
)
from .utils import ensure_dir, read_json, to_jsonable, write_json, write_jsonl_line

app = typer.Typer(help="Meta-invariant derivation CLI")
console = Console()

STATE_FILE = "state.json"
LEDGER_FILE = "ledger.jsonl"
NEEDS_FILE = "needs.jsonl"
EVENTS_FILE = "events.jsonl"
SESSIONS_FILE = "sessions.json"

SNAPSHOT_OPTION = typer.Option(..., "--snapshot", exists=True, file_okay=False)
CONFIG_OPTION = typer.Option(None, "--config", exists=True, dir_okay=False)
MODEL_OPTION = typer.Option("replay", "--model")
RESPONSE_OPTION = typer.Option(None, "--response")
REPLAY_FILE_OPTION = typer.Option(None, "--replay-file")
CMD_OPTION = typer.Option(None, "--cmd")
TIMEOUT_OPTION = typer.Option(120.0, "--timeout")
CAPTURED_AT_OPTION = typer.Option(None, "--captured-at")
LIMIT_OPTION = typer.Option(50, "--limit")
STATUS_OPTION = typer.Option(..., "--status")
SCHEMA_OUT_OPTION = typer.Option(Path("schemas"), "--out-dir")

pool_app = typer.Typer(help="Invariant pool commands")
cycle_app = typer.Typer(help="Derivation cycle commands")
dream_app = typer.Typer(help="Dream input commands")
convergence_app = typer.Typer(help="Convergence commands")
predictions_app = typer.Typer(help="Pending prediction commands")
ledger_app = typer.Typer(help="Ledger commands")
schema_app = typer.Typer(help="Schema utilities")


@app.callback()
def main() -> None:
    pass


@dataclass
class Workspace:
    """An engine bound to a snapshot directory; ``save`` writes everything back."""

    root: Path
    engine: MetaDerivationEngine
    knowledge: MemoryKnowledgeStore
    edges: MemoryEdgeStore
    ids: HashIdGenerator
    needs: MemoryNeedQueue
    events: MemoryEventBus

    def save(self) -> None:
        self.engine.state.ids_issued = self.ids.issued
        save_snapshot(self.root, self.knowledge, self.edges)
        write_json(self.root / STATE_FILE, self.engine.state.to_payload())
        for need in self.needs.needs:
            write_jsonl_line(self.root / NEEDS_FILE, need)
        for name, payload in self.events.events:
            write_jsonl_line(self.root / EVENTS_FILE, {"name": name, "payload": payload})
        self.needs.needs.clear()
        self.events.events.clear()


def _open_workspace(root: Path, config: Optional[Path]) -> Workspace:
    settings = load_settings(config)
    knowledge, edges = load_snapshot(root)
    state_path = root / STATE_FILE
    state = EngineState()
    if state_path.exists():
        state = EngineState.from_payload(read_json(state_path))
    ledger_path = Path(settings.ledger_path) if settings.ledger_path else root / LEDGER_FILE
    ids = HashIdGenerator(seed=root.resolve().name, start=state.ids_issued)
    needs = MemoryNeedQueue()
    events = MemoryEventBus()
    collaborators = Collaborators(
        knowledge=knowledge, edges=edges, ids=ids, needs=needs, events=events
    )
    engine = MetaDerivationEngine(
        collaborators, settings, state=state, ledger=Ledger(ledger_path)
    )
    return Workspace(
        root=root,
        engine=engine,
        knowledge=knowledge,
        edges=edges,
        ids=ids,
        needs=needs,
        events=events,
    )


def _build_model(
    model_kind: str,
    response: Optional[str],
    replay_file: Optional[Path],
    cmd: Optional[List[str]],
    timeout_s: float,
) -> DerivationModel:
    if model_kind == "static":
        if not response:
            raise typer.BadParameter("missing --response for static model")
        path = Path(response)
        text = path.read_text(encoding="utf-8") if path.exists() else response
        return StaticDerivationModel(text)
    if model_kind == "replay":
        if replay_file is None:
            raise typer.BadParameter("missing --replay-file for replay model")
        return ReplayDerivationModel(replay_file)
    if model_kind == "subprocess":
        if not cmd:
            raise typer.BadParameter("missing --cmd for subprocess model")
        return SubprocessDerivationModel(cmd, timeout_s=timeout_s)
    raise typer.BadParameter(f"unknown model: {model_kind}")


def _print_failure(failure: Failure) -> None:
    console.print({"ok": False, "error": failure.error, "context": to_jsonable(failure.context)})


def _kv_table(title: str, data: Dict[str, Any]) -> Table:
    table = Table(title=title)
    table.add_column("Field")
    table.add_column("Value")
    for key, value in data.items():
        table.add_row(key, str(value))
    return table


@pool_app.command("stats")
def pool_stats_cmd(
    snapshot: Path = SNAPSHOT_OPTION,
    config: Optional[Path] = CONFIG_OPTION,
) -> None:
    workspace = _open_workspace(snapshot, config)
    pool = workspace.engine.extract_pool()
    if isinstance(pool, Failure):
        _print_failure(pool)
        raise typer.Exit(code=1)
    table = Table(title="Invariant Pool")
    table.add_column("Domain")
    table.add_column("Invariants")
    table.add_column("Records")
    record_ids = pool.domain_record_ids()
    for domain, items in pool.pool.items():
        table.add_row(domain, str(len(items)), str(len(record_ids[domain])))
    console.print(table)
    console.print(
        {
            "records": pool.record_count,
            "domains": pool.domain_count,
            "invariants": pool.invariant_count,
        }
    )


@cycle_app.command("run")
def cycle_run_cmd(
    snapshot: Path = SNAPSHOT_OPTION,
    config: Optional[Path] = CONFIG_OPTION,
) -> None:
    workspace = _open_workspace(snapshot, config)
    result = workspace.engine.trigger_cycle()
    if isinstance(result, Failure):
        _print_failure(result)
        workspace.save()
        raise typer.Exit(code=1)
    sessions = [session.model_dump(mode="json") for session in result.sessions]
    write_json(snapshot / SESSIONS_FILE, sessions)
    workspace.save()
    table = Table(title="Derivation Sessions")
    table.add_column("Session")
    table.add_column("Domains")
    table.add_column("Distance")
    for session in result.sessions:
        table.add_row(
            session.session_id, ", ".join(session.selected_domains), str(session.distance_score)
        )
    console.print(table)
    console.print({"sessions": str(snapshot / SESSIONS_FILE)})


@app.command("derive")
def derive_cmd(
    snapshot: Path = SNAPSHOT_OPTION,
    config: Optional[Path] = CONFIG_OPTION,
    model_kind: str = MODEL_OPTION,
    response: Optional[str] = RESPONSE_OPTION,
    replay_file: Optional[Path] = REPLAY_FILE_OPTION,
    cmd: Optional[List[str]] = CMD_OPTION,
    timeout_s: float = TIMEOUT_OPTION,
) -> None:
    model = _build_model(model_kind, response, replay_file, cmd, timeout_s)
    workspace = _open_workspace(snapshot, config)
    outcomes = workspace.engine.run_cycle(model)
    workspace.save()
    if isinstance(outcomes, Failure):
        _print_failure(outcomes)
        raise typer.Exit(code=1)
    table = Table(title="Derivation Outcomes")
    table.add_column("Session")
    table.add_column("Verdict")
    table.add_column("Record")
    for outcome in outcomes:
        if isinstance(outcome, Failure):
            table.add_row(str(outcome.context.get("session_id", "")), outcome.error, "")
        elif isinstance(outcome, DerivationOutcome):
            if outcome.commit is not None:
                table.add_row(outcome.session_id, "committed", outcome.commit.record.id)
            elif outcome.failure is not None:
                table.add_row(outcome.session_id, outcome.failure.error, "")
            else:
                table.add_row(outcome.session_id, f"rejected:{outcome.report.reason}", "")
    console.print(table)


@dream_app.command("ingest")
def dream_ingest_cmd(
    text: str = typer.Argument(...),
    snapshot: Path = SNAPSHOT_OPTION,
    config: Optional[Path] = CONFIG_OPTION,
    captured_at: Optional[str] = CAPTURED_AT_OPTION,
) -> None:
    workspace = _open_workspace(snapshot, config)
    result = workspace.engine.ingest_dream(text, captured_at)
    if isinstance(result, Failure):
        _print_failure(result)
        raise typer.Exit(code=1)
    workspace.save()
    console.print({"ok": True, "record_id": result.record.id})


@dream_app.command("history")
def dream_history_cmd(
    snapshot: Path = SNAPSHOT_OPTION,
    config: Optional[Path] = CONFIG_OPTION,
    limit: int = LIMIT_OPTION,
) -> None:
    workspace = _open_workspace(snapshot, config)
    table = Table(title="Dream Inputs")
    table.add_column("Record")
    table.add_column("Ingested")
    table.add_column("Checked")
    table.add_column("Summary")
    for item in workspace.engine.dream_history(limit):
        table.add_row(
            item["record_id"],
            str(item["ingested_at"]),
            str(item["convergence_checked"]),
            item["summary"][:60],
        )
    console.print(table)


@convergence_app.command("check")
def convergence_check_cmd(
    snapshot: Path = SNAPSHOT_OPTION,
    config: Optional[Path] = CONFIG_OPTION,
) -> None:
    workspace = _open_workspace(snapshot, config)
    result = workspace.engine.run_convergence_check()
    workspace.save()
    payload: Dict[str, Any] = {"ok": True, "convergences": result.count}
    if result.reason:
        payload["reason"] = result.reason
    console.print(payload)


@predictions_app.command("list")
def predictions_list_cmd(
    snapshot: Path = SNAPSHOT_OPTION,
    config: Optional[Path] = CONFIG_OPTION,
) -> None:
    workspace = _open_workspace(snapshot, config)
    table = Table(title="Pending Predictions")
    table.add_column("Prediction")
    table.add_column("Domain")
    table.add_column("Meta record")
    table.add_column("Claim")
    for prediction in workspace.engine.pending_predictions():
        table.add_row(
            prediction.prediction_id,
            prediction.predicted_domain or "",
            prediction.meta_record_id,
            prediction.prediction[:80],
        )
    console.print(table)


@predictions_app.command("resolve")
def predictions_resolve_cmd(
    prediction_id: str = typer.Argument(...),
    status: str = STATUS_OPTION,
    snapshot: Path = SNAPSHOT_OPTION,
    config: Optional[Path] = CONFIG_OPTION,
) -> None:
    if status not in {"confirmed", "refuted"}:
        raise typer.BadParameter("status must be confirmed or refuted")
    workspace = _open_workspace(snapshot, config)
    result = workspace.engine.resolve_prediction(prediction_id, status)
    if isinstance(result, Failure):
        _print_failure(result)
        raise typer.Exit(code=1)
    workspace.save()
    console.print({"ok": True, "prediction_id": prediction_id, "status": result.status})


@app.command("metrics")
def metrics_cmd(
    snapshot: Path = SNAPSHOT_OPTION,
    config: Optional[Path] = CONFIG_OPTION,
) -> None:
    workspace = _open_workspace(snapshot, config)
    console.print(_kv_table("Meta-Derivation Metrics", workspace.engine.metrics()))


@ledger_app.command("verify")
def ledger_verify_cmd(snapshot: Path = SNAPSHOT_OPTION) -> None:
    ok, message = Ledger.verify_chain(snapshot / LEDGER_FILE)
    console.print({"ok": ok, "message": message})
    if not ok:
        raise typer.Exit(code=1)


@schema_app.command("export")
def schema_export_cmd(out_dir: Path = SCHEMA_OUT_OPTION) -> None:
    ensure_dir(out_dir)
    export_schemas(str(out_dir))
    console.print({"schemas": str(out_dir)})



app.add_typer(pool_app, name="pool")
app.add_typer(cycle_app, name="cycle")
app.add_typer(dream_app, name="dream")
app.add_typer(convergence_app, name="convergence")
app.add_typer(predictions_app, name="predictions")
app.add_typer(ledger_app, name="ledger")
app.add_typer(schema_app, name="schema")
