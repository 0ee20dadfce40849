"""Typer CLI: run the pipeline and inspect the file index."""

import json
import logging
from pathlib import Path

import typer
import yaml
from pydantic import ValidationError
from rich.console import Console
from rich.progress import BarColumn, MofNCompleteColumn, Progress, TextColumn, TimeElapsedColumn
from rich.table import Table

from webimg.core.config import Settings, get_config, set_config
from webimg.core.logging import get_flight_logger, setup_logging
from webimg.models.entities import AssetMetadata, IndexStatus, OutputProfile
from webimg.pipeline.process import MissingInputRootError, RunSummary, run as run_pipeline
from webimg.repository.index_repo import FileIndexRepository, IndexStoreError, index_path_for
from webimg.workers.reconciler import ReconcileError

_log = logging.getLogger(__name__)

app = typer.Typer(no_args_is_help=True, help="Incremental photo/video pipeline for web galleries.")
index_app = typer.Typer(help="Inspect the persistent file index.")
app.add_typer(index_app, name="index")

_FALSE_WORDS = {"off", "false", "no", "0"}


def parse_profile(option: str) -> OutputProfile:
    """Parse "name:image=H,video=H,preview=off" into an OutputProfile."""
    name, _, rest = option.partition(":")
    fields: dict[str, object] = {"name": name.strip()}
    for part in filter(None, (p.strip() for p in rest.split(","))):
        key, sep, value = part.partition("=")
        if not sep:
            raise ValueError(f"Expected key=value in profile {option!r}, got {part!r}")
        key = key.strip().lower()
        value = value.strip()
        if key == "image":
            fields["image_height"] = int(value)
        elif key == "video":
            fields["video_height"] = int(value)
        elif key == "preview":
            fields["preview"] = value.lower() not in _FALSE_WORDS
        else:
            raise ValueError(f"Unknown profile key {key!r} in {option!r}")
    return OutputProfile(**fields)


def _build_settings(
    config: Path | None,
    *,
    input_root: str | None,
    output_root: str | None,
    exclude: list[str] | None,
    relocate_converted: str | None,
    dry_run: bool,
    profiles: list[str] | None,
    use_custom_profiles: bool,
    workers: int | None,
    verbose: bool,
) -> Settings:
    """Config file (or default config) with CLI options applied on top."""
    base = get_config(config) if config is not None else get_config()
    data = base.model_dump()
    if input_root is not None:
        data["input"] = input_root
    if output_root is not None:
        data["output"] = output_root
    if exclude:
        data["exclude"] = list(data.get("exclude") or []) + list(exclude)
    if relocate_converted is not None:
        data["relocate_converted"] = relocate_converted
    if dry_run:
        data["dry_run"] = True
    if profiles:
        data["profiles"] = [parse_profile(p) for p in profiles]
    if use_custom_profiles:
        data["use_custom_profiles"] = True
    if workers is not None:
        data["max_workers"] = workers
    if verbose:
        data["log_level"] = "INFO"
    return set_config(Settings.model_validate(data))


def _dump_flight_log() -> None:
    fl = get_flight_logger()
    if fl is None:
        return
    try:
        path = fl.dump("webimg")
    except OSError as e:
        typer.secho(f"Could not write flight log: {e}", err=True, fg=typer.colors.YELLOW)
        return
    typer.secho(f"Flight log written to {path}", err=True)


def _print_summary(console: Console, summary: RunSummary) -> None:
    table = Table(title="Run summary" + (" (DRY RUN)" if summary.dry_run else ""))
    table.add_column("Processed", justify="right")
    table.add_column("Converted", justify="right")
    table.add_column("Resized", justify="right")
    table.add_column("Linked", justify="right")
    table.add_column("Deleted", justify="right")
    table.add_column("Time (s)", justify="right")
    table.add_row(
        str(summary.processed),
        str(summary.converted),
        str(summary.resized),
        str(summary.linked),
        str(summary.deleted),
        f"{summary.elapsed_seconds:.2f}",
    )
    console.print(table)
    if summary.problems:
        problems = Table(title=f"Encountered issues with {len(summary.problems)} files")
        problems.add_column("File")
        problems.add_column("Stage")
        problems.add_column("Error", style="dim")
        for p in summary.problems:
            problems.add_row(p.asset.rel_path, p.stage, p.message)
        console.print(problems)


@app.command("run")
def run_command(
    input_root: str | None = typer.Option(None, "--input", "-i", help="Source library root."),
    output_root: str | None = typer.Option(None, "--output", "-o", help="Output root (index, logs and media tree)."),
    exclude: list[str] | None = typer.Option(None, "--exclude", "-e", help="Glob of source paths to skip (repeatable)."),
    relocate_converted: str | None = typer.Option(
        None, "--relocate-converted", help="Move converted files here and symlink them back into the media tree."
    ),
    dry_run: bool = typer.Option(False, "--dry-run", help="Report what would be done without writing anything."),
    profile: list[str] | None = typer.Option(
        None, "--profile", help="Output profile name:image=H,video=H,preview=off (repeatable)."
    ),
    use_custom_profiles: bool = typer.Option(
        False, "--use-custom-profiles", help="Render the given profiles instead of the built-in large/small/thumb."
    ),
    workers: int | None = typer.Option(None, "--workers", "-w", help="Parallel work items per stage."),
    config: Path | None = typer.Option(None, "--config", "-c", help="Path to a webimg.yml config file."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log progress to the console."),
) -> None:
    """Index the input tree, regenerate stale derived files and remove orphaned ones."""
    try:
        settings = _build_settings(
            config,
            input_root=input_root,
            output_root=output_root,
            exclude=exclude,
            relocate_converted=relocate_converted,
            dry_run=dry_run,
            profiles=profile,
            use_custom_profiles=use_custom_profiles,
            workers=workers,
            verbose=verbose,
        )
    except (ValueError, ValidationError, FileNotFoundError, yaml.YAMLError) as e:
        typer.secho(f"Invalid configuration: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1)
    if not settings.input or not settings.output:
        typer.secho("Both --input and --output are required.", fg=typer.colors.RED, err=True)
        raise typer.Exit(1)
    if settings.profiles and not settings.use_custom_profiles:
        typer.secho(
            "Custom profiles are validated but not applied (pass --use-custom-profiles to render them).",
            fg=typer.colors.YELLOW,
            err=True,
        )

    setup_logging(settings)
    console = Console()
    progress = Progress(
        TextColumn("[bold]{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        TimeElapsedColumn(),
        TextColumn("{task.fields[current]}", style="dim"),
        console=console,
        transient=True,
    )
    tasks: dict[str, int] = {}

    def on_progress(stage: str, completed: int, total: int, current: str | None) -> None:
        if stage not in tasks:
            tasks[stage] = progress.add_task(stage, total=total or None, current="")
        progress.update(tasks[stage], completed=completed, total=total or None, current=current or "")

    try:
        with progress:
            summary = run_pipeline(settings, on_progress=on_progress, on_log=_log.info)
    except (MissingInputRootError, ReconcileError, IndexStoreError) as e:
        _log.critical("Fatal: %s", e, exc_info=True)
        _dump_flight_log()
        typer.secho(f"Fatal: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1)
    except KeyboardInterrupt:
        typer.secho("Interrupted; processed state up to the last completed stage is kept.", err=True)
        raise typer.Exit(130)

    _print_summary(console, summary)


def _open_index(output_root: str) -> FileIndexRepository:
    db_path = index_path_for(Path(output_root))
    if not db_path.exists():
        typer.echo(f"No index found at {db_path}.", err=True)
        raise typer.Exit(1)
    try:
        return FileIndexRepository.open(db_path)
    except IndexStoreError as e:
        typer.secho(str(e), fg=typer.colors.RED, err=True)
        raise typer.Exit(1)


@index_app.command("list")
def index_list(
    output_root: str = typer.Option(..., "--output", "-o", help="Output root holding index.db."),
    status: str | None = typer.Option(None, "--status", help="Filter by status: live, dead, pending, processed"),
    limit: int = typer.Option(50, "--limit", help="Maximum number of rows to show"),
) -> None:
    """List indexed source files."""
    status_enum: IndexStatus | None = None
    if status is not None:
        try:
            status_enum = IndexStatus(status)
        except ValueError:
            typer.echo(f"Invalid status: '{status}'.", err=True)
            raise typer.Exit(1)

    with _open_index(output_root) as repo:
        rows = repo.list_entries(status=status_enum, limit=limit)
        counts = repo.count_by_status()

    table = Table(title=None)
    table.add_column("ID", style="dim")
    table.add_column("Path")
    table.add_column("Live")
    table.add_column("Processed")
    table.add_column("Metadata")
    for r in rows:
        table.add_row(
            str(r.id) if r.id is not None else "",
            r.path,
            "yes" if r.is_live else "no",
            "yes" if r.processed else "no",
            "yes" if r.file_metadata else "no",
        )
    console = Console()
    console.print(table)
    typer.echo(
        f"Showing {len(rows)} of {counts['total']} files "
        f"({counts['live']} live, {counts['dead']} dead, {counts['processed']} processed)."
    )


@index_app.command("show")
def index_show(
    rel_path: str = typer.Argument(..., help="Source path relative to the input root"),
    output_root: str = typer.Option(..., "--output", "-o", help="Output root holding index.db."),
) -> None:
    """Dump one index record as JSON."""
    with _open_index(output_root) as repo:
        row = repo.get_entry(rel_path)
    if row is None:
        typer.echo("File not found in index.", err=True)
        raise typer.Exit(1)
    try:
        metadata = AssetMetadata.from_blob(row.file_metadata)
    except ValueError:
        metadata = None
    payload = {
        "id": row.id,
        "path": row.path,
        "file_mtime": row.file_mtime,
        "date": row.date,
        "exists": bool(row.is_live),
        "processed": bool(row.processed),
        "metadata": metadata.model_dump(by_alias=True) if metadata is not None else row.file_metadata,
    }
    typer.echo(json.dumps(payload, indent=2, default=str))


def main() -> None:
    app()


if __name__ == "__main__":
    main()
