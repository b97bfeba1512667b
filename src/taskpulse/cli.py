"""Operator CLI for inspecting the contextual-analysis pipeline."""

from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

import typer
import yaml
from pydantic import ValidationError

from .analysis import AnalysisOrchestrator, ContextError, StaticSubjectProvider, parse_analysis_reply
from .clock import ensure_aware, utc_now
from .config import DEFAULT_CONFIG_NAME, ConfigError, PipelineConfig, load_config, write_config
from .memory import AggregationEngine, ContextualDataPoint, ContextualDataStore, DataKind, TimeRange
from .models import ResponsesClient, TextGenerationClient
from .records import SubjectRecord

APP_HELP = "Inspect and exercise the taskpulse contextual-analysis pipeline."

app = typer.Typer(help=APP_HELP)


class ReplayClient(TextGenerationClient):
    """Offline client that answers every prompt with a fixed reply."""

    def __init__(self, reply: str, model: str = "replay") -> None:
        super().__init__(model=model)
        self._reply = reply

    def _raw_invoke(self, payload: Dict[str, Any]) -> str:
        return self._reply


def _load_pipeline_config(config_path: Path) -> PipelineConfig:
    """Load configuration, falling back to defaults when the file is absent."""
    if not config_path.exists():
        return PipelineConfig()
    try:
        return load_config(config_path)
    except ConfigError as error:
        typer.echo(str(error))
        raise typer.Exit(code=1) from error


def _read_text(path: Path) -> str:
    if not path.exists():
        raise typer.BadParameter(f"File not found: {path}")
    return path.read_text(encoding="utf-8")


def _load_points(path: Path) -> List[ContextualDataPoint]:
    points: List[ContextualDataPoint] = []
    for line_number, line in enumerate(_read_text(path).splitlines(), start=1):
        if not line.strip():
            continue
        try:
            points.append(ContextualDataPoint.model_validate_json(line))
        except ValidationError as error:
            typer.echo(f"Invalid data point on line {line_number}: {error}")
            raise typer.Exit(code=1) from error
    return points


def _load_subjects(path: Path) -> List[SubjectRecord]:
    try:
        data = yaml.safe_load(_read_text(path))
    except yaml.YAMLError as error:
        typer.echo(f"Failed to parse subject file: {error}")
        raise typer.Exit(code=1) from error
    entries = data if isinstance(data, list) else [data]
    try:
        return [SubjectRecord.model_validate(entry) for entry in entries]
    except ValidationError as error:
        typer.echo(f"Invalid subject record: {error}")
        raise typer.Exit(code=1) from error


def _echo_json(payload: Any) -> None:
    typer.echo(json.dumps(payload, indent=2, sort_keys=True))


@app.command()
def init(
    config: str = typer.Option(
        DEFAULT_CONFIG_NAME,
        "--config",
        "-c",
        help="Path to the pipeline configuration file.",
    ),
    force: bool = typer.Option(
        False,
        "--force",
        help="Overwrite an existing configuration file.",
    ),
) -> None:
    """Write the default configuration template."""
    config_path = Path(config)
    if config_path.exists() and not force:
        typer.echo(f"Configuration already exists at {config_path}; use --force to overwrite.")
        raise typer.Exit(code=1)
    written = write_config(config_path)
    typer.echo(f"Wrote default configuration to {written}.")


@app.command()
def repair(
    reply_file: Path = typer.Argument(..., help="File holding a raw model reply."),
    subject: str = typer.Option("subject", "--subject", "-s", help="Subject identifier used for action ids."),
    config: str = typer.Option(
        DEFAULT_CONFIG_NAME,
        "--config",
        "-c",
        help="Path to the pipeline configuration file.",
    ),
) -> None:
    """Run the repair cascade and validator over a reply and print the result."""
    settings = _load_pipeline_config(Path(config)).repair
    result, quality = parse_analysis_reply(_read_text(reply_file), subject, settings=settings)
    _echo_json({"quality": quality.value, "result": result.to_payload()})


@app.command()
def aggregate(
    points_file: Path = typer.Argument(..., help="JSON Lines file of contextual data points."),
    kind: DataKind = typer.Option(..., "--kind", "-k", help="Data kind to aggregate."),
    hours: float = typer.Option(24.0, "--hours", help="Window length ending at --end."),
    end: Optional[datetime] = typer.Option(None, "--end", help="Window end (defaults to now)."),
    config: str = typer.Option(
        DEFAULT_CONFIG_NAME,
        "--config",
        "-c",
        help="Path to the pipeline configuration file.",
    ),
) -> None:
    """Aggregate stored points of one kind over a trailing window."""
    if hours <= 0:
        raise typer.BadParameter("--hours must be positive.")
    store = ContextualDataStore.from_config(_load_pipeline_config(Path(config)))
    store.insert(_load_points(points_file))
    window_end = ensure_aware(end) if end is not None else utc_now()
    result = AggregationEngine(store).aggregate(kind, TimeRange.trailing(window_end, hours))
    _echo_json(result.model_dump(mode="json"))


@app.command()
def analyze(
    subject_file: Path = typer.Argument(..., help="YAML or JSON file with one or more subject records."),
    subject: Optional[str] = typer.Option(None, "--subject", "-s", help="Subject to analyse (defaults to the first)."),
    reply: Optional[Path] = typer.Option(
        None,
        "--reply",
        help="Answer with the contents of this file instead of calling the model endpoint.",
    ),
    config: str = typer.Option(
        DEFAULT_CONFIG_NAME,
        "--config",
        "-c",
        help="Path to the pipeline configuration file.",
    ),
) -> None:
    """Run one analysis cycle for a subject and print the result."""
    pipeline = _load_pipeline_config(Path(config))
    records = _load_subjects(subject_file)
    if not records:
        raise typer.BadParameter("Subject file contains no records.")
    subject_id = subject or records[0].task.id

    client: TextGenerationClient
    if reply is not None:
        client = ReplayClient(_read_text(reply))
    else:
        try:
            client = ResponsesClient.from_config(pipeline)
        except ValueError as error:
            typer.echo(f"Failed to initialise model client: {error}")
            raise typer.Exit(code=1) from error

    with AnalysisOrchestrator.from_config(pipeline, StaticSubjectProvider(records), client) as orchestrator:
        try:
            result = orchestrator.trigger_analysis(subject_id).result()
        except ContextError as error:
            typer.echo(str(error))
            raise typer.Exit(code=1) from error
        resolutions = orchestrator.resolutions()

    quality = resolutions[-1].quality.value if resolutions else "cached"
    _echo_json({"subject": subject_id, "quality": quality, "result": result.to_payload()})


if __name__ == "__main__":  # pragma: no cover
    app()
