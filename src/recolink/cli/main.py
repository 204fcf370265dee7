"""Command-line interface for recolink.

Provides CLI commands to validate and run reconciliation requests.
"""

from __future__ import annotations

import importlib.metadata
import json
import sys
from pathlib import Path
from typing import TYPE_CHECKING

import click

if TYPE_CHECKING:
    from recolink.engine import JobOrchestrator

__all__ = ["cli"]

try:
    __version__ = importlib.metadata.version("recolink")
except importlib.metadata.PackageNotFoundError:
    __version__ = "0.1.0"  # Fallback for development

PAGE_SIZE = 500


@click.group()
@click.version_option(version=__version__, prog_name="recolink")
def cli() -> None:
    """Reconcile records across datasets and environments.

    Use 'recolink COMMAND --help' for command-specific help.
    """


@cli.command()
@click.argument("request_json", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Print the parsed configuration",
)
def validate(request_json: str, verbose: bool) -> None:
    """Validate REQUEST_JSON against the request schema and thresholds.

    Examples
    --------
        recolink validate request.json
    """
    from recolink.api import load_request
    from recolink.errors import RecolinkError

    try:
        request = load_request(request_json)
        request.configuration.validate()
    except RecolinkError as e:
        click.secho(f"✗ Invalid request: {e}", fg="red", err=True)
        sys.exit(1)

    if verbose:
        click.echo(json.dumps(request.to_dict(), indent=2), err=True)
    click.secho(f"✓ {request_json} is a valid request ({request.request_id})", fg="green")


@cli.command()
@click.argument("request_json", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--data-dir",
    "-d",
    type=click.Path(exists=True, file_okay=False),
    required=True,
    help="Directory holding <dataset>.json or <dataset>.jsonl files",
)
@click.option(
    "--models-dir",
    "-m",
    type=click.Path(exists=True, file_okay=False),
    default=None,
    help="Directory holding <model>/<version>.json artifacts",
)
@click.option(
    "--output",
    "-o",
    type=click.Path(dir_okay=False),
    default=None,
    help="Output JSONL file for matches (default: stdout)",
)
@click.option(
    "--id-field",
    type=str,
    default="id",
    help="Field holding the record identifier (default: id)",
)
@click.option(
    "--log-file",
    type=click.Path(dir_okay=False),
    default=None,
    help="Write the JSONL audit log to this file",
)
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Enable verbose output",
)
def run(
    request_json: str,
    data_dir: str,
    models_dir: str | None,
    output: str | None,
    id_field: str,
    log_file: str | None,
    verbose: bool,
) -> None:
    """Run the reconciliation described by REQUEST_JSON and wait for it.

    Matches are written as JSON Lines, one match per line.

    Examples
    --------
        recolink run request.json -d data/ -o matches.jsonl
        recolink run request.json -d data/ -m models/ --log-file audit.jsonl
    """
    from recolink.adapters import FileIngestor, FileModelStore, InMemoryJobStore, InMemoryMatchStore
    from recolink.api import load_request
    from recolink.audit import AuditLogger, generate_run_id
    from recolink.engine import JobOrchestrator
    from recolink.errors import RecolinkError
    from recolink.registry import ModelRegistry

    logger = AuditLogger(generate_run_id(), Path(log_file)) if log_file else None
    registry = ModelRegistry(FileModelStore(Path(models_dir)), logger=logger) if models_dir else None

    try:
        request = load_request(request_json)
        if verbose:
            click.echo(f"Running request {request.request_id}", err=True)
            click.echo(f"  Source: {request.source_dataset}", err=True)
            click.echo(f"  Target: {request.target_dataset}", err=True)

        with JobOrchestrator(
            FileIngestor(Path(data_dir), id_field=id_field),
            InMemoryJobStore(),
            InMemoryMatchStore(),
            registry=registry,
            logger=logger,
        ) as orchestrator:
            result = orchestrator.start(request).result()
            written = _write_matches(orchestrator, result.job_id, output)

        if not result.success:
            click.secho(f"✗ Job {result.status}: {result.error_message}", fg="red", err=True)
            sys.exit(1)

        if verbose:
            click.echo("\nResults:", err=True)
            click.echo(f"  Source records: {result.total_records}", err=True)
            click.echo(f"  Candidate pairs: {result.candidate_pairs}", err=True)
            for status, count in sorted(result.matches_by_status.items()):
                click.echo(f"  {status}: {count}", err=True)
            click.echo(f"  Duplicate clusters: {len(result.clusters)}", err=True)
            if result.model_version:
                click.echo(f"  Model version: {result.model_version}", err=True)

        click.secho(
            f"✓ Reconciled {result.processed_records} records "
            f"({result.matched_records} matched, {written} matches written)",
            fg="green",
            err=output is None,
        )

    except RecolinkError as e:
        click.secho(f"✗ Error: {e}", fg="red", err=True)
        sys.exit(1)
    finally:
        if logger:
            logger.close()


def _write_matches(orchestrator: JobOrchestrator, job_id: str, output: str | None) -> int:
    lines: list[str] = []
    page = 0
    while True:
        result = orchestrator.get_matches(job_id, page=page, size=PAGE_SIZE)
        lines.extend(
            json.dumps(m.to_dict(), ensure_ascii=False, default=str) for m in result.content
        )
        page += 1
        if page >= result.total_pages:
            break

    if output is None:
        for line in lines:
            click.echo(line)
    else:
        out_path = Path(output)
        out_path.parent.mkdir(parents=True, exist_ok=True)
        with out_path.open("w", encoding="utf-8") as f:
            for line in lines:
                f.write(line + "\n")
    return len(lines)


if __name__ == "__main__":
    cli()
