"""Typer CLI entry point for content-engine."""

from __future__ import annotations

import asyncio
import json
import sys
from pathlib import Path
from typing import Annotated, Any

import structlog
import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from content_engine import __version__
from content_engine.config import BatchSettings, Settings, format_validation_error
from content_engine.exceptions import (
    ContentEngineError,
    MalformedResponseError,
    SchemaNotFoundError,
    categorize_error,
)
from content_engine.logging import configure_logging
from content_engine.orchestrator import GenerationOrchestrator, StreamEventKind
from content_engine.parsing import decode_nested_strings, parse_and_validate_json
from content_engine.providers.base import GenerationOptions
from content_engine.resilience.retry import RetryPolicy, retry_with_backoff
from content_engine.schemas.registry import SchemaRegistry
from content_engine.sections import SectionGenerator, SectionResult, SectionTask

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

console = Console()
err_console = Console(stderr=True)

app = typer.Typer(
    name="content-engine",
    help="Multi-provider content generation with fallback, caching and JSON repair.",
    no_args_is_help=True,
)

ConfigOption = Annotated[
    Path | None,
    typer.Option("--config", "-c", help="Path to config YAML file."),
]
VerboseOption = Annotated[
    bool,
    typer.Option("--verbose", "-v", help="Enable verbose logging."),
]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _load_settings(
    config_path: Path | None = None,
    **overrides: Any,
) -> Settings:
    """Load settings with error handling and user-friendly messages."""
    from pydantic import ValidationError

    try:
        return Settings.load(config_path=config_path, **overrides)
    except ValidationError as exc:
        err_console.print(
            Panel(
                format_validation_error(exc),
                title="Configuration Error",
                border_style="red",
            )
        )
        raise typer.Exit(code=1) from exc


def _setup(config_path: Path | None, verbose: bool) -> Settings:
    settings = _load_settings(config_path)
    configure_logging(
        level="DEBUG" if verbose else settings.logging.level,
        fmt=settings.logging.format,
        log_file=settings.logging.file,
    )
    return settings


def _read_input(source: str) -> str:
    if source == "-":
        return sys.stdin.read()
    path = Path(source)
    if not path.is_file():
        err_console.print(f"[red]File not found:[/red] {source}")
        raise typer.Exit(code=1)
    return path.read_text(encoding="utf-8")


def _print_failure(exc: Exception) -> None:
    category = categorize_error(exc)
    err_console.print(
        Panel(
            f"{exc}\n\n[dim]category: {category.value}[/dim]",
            title="Generation Failed",
            border_style="red",
        )
    )


def _print_task_file_error(message: str) -> None:
    err_console.print(Panel(message, title="Invalid Task File", border_style="red"))


def _load_tasks(source: Path, defaults: GenerationOptions) -> list[SectionTask]:
    """Read section tasks from a YAML or JSON file.

    The file holds either a list of tasks or a mapping with ``tasks`` and an
    optional shared ``system_prompt``. Task ``options`` are layered over
    ``defaults`` with JSON mode switched on.
    """
    import yaml
    from pydantic import TypeAdapter, ValidationError

    if not source.is_file():
        err_console.print(f"[red]File not found:[/red] {source}")
        raise typer.Exit(code=1)
    try:
        document = yaml.safe_load(source.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        _print_task_file_error(str(exc))
        raise typer.Exit(code=1) from exc

    shared_system: str | None = None
    entries = document
    if isinstance(document, dict):
        shared_system = document.get("system_prompt")
        entries = document.get("tasks")
    if not isinstance(entries, list) or not entries:
        _print_task_file_error(
            "Expected a non-empty list of tasks, or a mapping with a `tasks` list."
        )
        raise typer.Exit(code=1)

    base_options = {**defaults.model_dump(), "json_mode": True}
    prepared: list[Any] = []
    for entry in entries:
        if isinstance(entry, dict):
            entry = dict(entry)
            if shared_system is not None:
                entry.setdefault("system_prompt", shared_system)
            task_options = entry.get("options") or {}
            if isinstance(task_options, dict):
                entry["options"] = {**base_options, **task_options}
        prepared.append(entry)

    try:
        return TypeAdapter(list[SectionTask]).validate_python(prepared)
    except ValidationError as exc:
        _print_task_file_error(format_validation_error(exc))
        raise typer.Exit(code=1) from exc


def _version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"[bold]content-engine[/bold] {__version__}")
        raise typer.Exit


@app.callback()
def common(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit.",
            callback=_version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """content-engine global options."""


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@app.command()
def status(
    config: ConfigOption = None,
    as_json: Annotated[
        bool,
        typer.Option("--json", help="Print machine-readable JSON."),
    ] = False,
    verbose: VerboseOption = False,
) -> None:
    """Show which providers are enabled, credentialed and usable."""
    settings = _setup(config, verbose)
    orchestrator = GenerationOrchestrator.from_settings(settings)
    report = orchestrator.registry.status()

    if as_json:
        typer.echo(json.dumps(report, indent=2))
        return

    table = Table(title="AI Providers", show_lines=True)
    table.add_column("Provider", style="cyan")
    table.add_column("Enabled", justify="center")
    table.add_column("Credential", justify="center")
    table.add_column("Text model")
    table.add_column("Image model")
    table.add_column("Usable", justify="center")

    def _flag(value: bool) -> str:
        return "[green]yes[/green]" if value else "[red]no[/red]"

    for entry in report.values():
        table.add_row(
            entry["name"],
            _flag(entry["enabled"]),
            _flag(entry["credential_present"]),
            entry["text_model"],
            entry["image_model"] or "-",
            _flag(entry["usable"]),
        )
    console.print(table)


@app.command()
def generate(
    prompt: Annotated[str, typer.Argument(help="User prompt to send.")],
    system: Annotated[
        str,
        typer.Option("--system", "-s", help="System instructions."),
    ] = "You are a helpful marketing copywriter.",
    provider: Annotated[
        str | None,
        typer.Option(
            "--provider", "-p", help="Preferred provider key (OPENAI, CLAUDE, GEMINI)."
        ),
    ] = None,
    json_mode: Annotated[
        bool,
        typer.Option("--json-mode/--text-mode", help="Ask the model for JSON output."),
    ] = False,
    schema: Annotated[
        str | None,
        typer.Option(
            "--schema", help="Parse the output and recover it against this schema."
        ),
    ] = None,
    max_tokens: Annotated[
        int | None,
        typer.Option("--max-tokens", help="Maximum tokens to generate."),
    ] = None,
    temperature: Annotated[
        float | None,
        typer.Option("--temperature", "-t", help="Sampling temperature."),
    ] = None,
    timeout: Annotated[
        float | None,
        typer.Option("--timeout", help="Per-provider timeout in seconds."),
    ] = None,
    stream: Annotated[
        bool,
        typer.Option("--stream", help="Print tokens as they arrive."),
    ] = False,
    config: ConfigOption = None,
    verbose: VerboseOption = False,
) -> None:
    """Generate text with provider fallback and print the result."""
    settings = _setup(config, verbose)
    orchestrator = GenerationOrchestrator.from_settings(settings)

    updates: dict[str, Any] = {
        "json_mode": json_mode or schema is not None,
        "preferred_provider": provider.upper() if provider else None,
    }
    if max_tokens is not None:
        updates["max_tokens"] = max_tokens
    if temperature is not None:
        updates["temperature"] = temperature
    if timeout is not None:
        updates["timeout"] = timeout
    options = GenerationOptions.model_validate(
        {**orchestrator.default_options.model_dump(), **updates}
    )

    async def _stream() -> str:
        text = ""
        async for event in orchestrator.stream(system, prompt, options):
            if event.kind is StreamEventKind.TOKEN:
                typer.echo(event.text, nl=False)
            elif event.kind is StreamEventKind.RESTART:
                err_console.print(
                    f"\n[yellow]{event.provider} failed mid-stream; "
                    "retrying with the next provider[/yellow]"
                )
            else:
                text = event.text
        typer.echo("")
        return text

    try:
        if stream:
            text = asyncio.run(_stream())
        else:
            text = asyncio.run(
                retry_with_backoff(
                    lambda: orchestrator.generate(system, prompt, options),
                    RetryPolicy.from_settings(settings.retry),
                )
            )
    except ContentEngineError as exc:
        _print_failure(exc)
        raise typer.Exit(code=1) from exc

    if schema is None:
        if not stream:
            typer.echo(text)
        return

    registry = SchemaRegistry.default()
    try:
        parsed = parse_and_validate_json(text)
    except MalformedResponseError as exc:
        _print_failure(exc)
        raise typer.Exit(code=1) from exc
    recovery = registry.recover(schema, parsed)
    typer.echo(json.dumps(recovery.value, indent=2, ensure_ascii=False))
    if not recovery.valid:
        err_console.print("[yellow]Output did not fully match the schema.[/yellow]")


@app.command("generate-sections")
def generate_sections(
    task_file: Annotated[
        Path,
        typer.Argument(help="YAML or JSON file listing the sections to generate."),
    ],
    output: Annotated[
        Path | None,
        typer.Option("--output", "-o", help="Write the generated content JSON here."),
    ] = None,
    concurrency: Annotated[
        int | None,
        typer.Option("--concurrency", help="Maximum sections in flight at once."),
    ] = None,
    strategy: Annotated[
        str | None,
        typer.Option("--strategy", help="Batching strategy: chunked or pool."),
    ] = None,
    config: ConfigOption = None,
    verbose: VerboseOption = False,
) -> None:
    """Generate every section in a task file with bounded parallelism."""
    from pydantic import ValidationError

    settings = _setup(config, verbose)

    batch_updates: dict[str, Any] = {}
    if concurrency is not None:
        batch_updates["concurrency_limit"] = concurrency
    if strategy is not None:
        batch_updates["strategy"] = strategy.lower()
    if batch_updates:
        try:
            batch = BatchSettings.model_validate(
                {**settings.batch.model_dump(), **batch_updates}
            )
        except ValidationError as exc:
            err_console.print(
                Panel(
                    format_validation_error(exc),
                    title="Configuration Error",
                    border_style="red",
                )
            )
            raise typer.Exit(code=1) from exc
        settings = settings.model_copy(update={"batch": batch})

    orchestrator = GenerationOrchestrator.from_settings(settings)
    tasks = _load_tasks(task_file, orchestrator.default_options)
    generator = SectionGenerator.from_settings(settings, orchestrator)

    def _progress(result: SectionResult, completed: int, total: int) -> None:
        mark = "[green]done[/green]" if result.success else "[red]failed[/red]"
        err_console.print(f"[{completed}/{total}] {result.key}: {mark}")

    try:
        report = asyncio.run(generator.generate_all(tasks, on_progress=_progress))
    except ValueError as exc:
        _print_task_file_error(str(exc))
        raise typer.Exit(code=1) from exc

    table = Table(title="Sections", show_lines=False)
    table.add_column("Section", style="cyan")
    table.add_column("Status", justify="center")
    table.add_column("Schema", justify="center")
    table.add_column("Error")
    for result in report.results.values():
        schema_cell = {True: "valid", False: "invalid", None: "-"}[result.schema_valid]
        table.add_row(
            result.key,
            "[green]ok[/green]" if result.success else "[red]failed[/red]",
            schema_cell,
            result.error_category.value if result.error_category else "",
        )
    err_console.print(table)
    err_console.print(report.summary())

    content = json.dumps(report.content(), indent=2, ensure_ascii=False)
    if output is not None:
        output.write_text(content + "\n", encoding="utf-8")
        err_console.print(f"Wrote {output}")
    else:
        typer.echo(content)

    if report.failed:
        raise typer.Exit(code=1)


@app.command()
def parse(
    source: Annotated[
        str,
        typer.Argument(help="File containing raw model output, or '-' for stdin."),
    ] = "-",
    schema: Annotated[
        str | None,
        typer.Option("--schema", help="Recover the parsed value against this schema."),
    ] = None,
    required: Annotated[
        list[str] | None,
        typer.Option("--require", "-r", help="Top-level key that must be present."),
    ] = None,
    decode_nested: Annotated[
        bool,
        typer.Option("--decode-nested", help="Decode JSON held in string values."),
    ] = False,
    verbose: VerboseOption = False,
) -> None:
    """Extract JSON from raw model output and print it."""
    configure_logging(level="DEBUG" if verbose else "WARNING")
    text = _read_input(source)

    try:
        value = parse_and_validate_json(text, required or [])
    except MalformedResponseError as exc:
        err_console.print(f"[red]Could not parse JSON:[/red] {exc}")
        raise typer.Exit(code=1) from exc
    if decode_nested:
        value = decode_nested_strings(value)

    if schema is not None:
        registry = SchemaRegistry.default()
        if schema not in registry:
            err_console.print(
                f"[red]Unknown schema:[/red] {schema} "
                f"(available: {', '.join(registry.names())})"
            )
            raise typer.Exit(code=1)
        recovery = registry.recover(schema, value)
        value = recovery.value
        if not recovery.valid:
            err_console.print("[yellow]Value did not fully match the schema.[/yellow]")

    typer.echo(json.dumps(value, indent=2, ensure_ascii=False))


@app.command()
def schemas(
    name: Annotated[
        str | None,
        typer.Argument(help="Schema to show as JSON Schema."),
    ] = None,
) -> None:
    """List content schemas, or print one as JSON Schema."""
    registry = SchemaRegistry.default()
    if name is None:
        for schema_name in registry.names():
            typer.echo(schema_name)
        return
    try:
        structure = registry.structure(name)
    except SchemaNotFoundError as exc:
        err_console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1) from exc
    typer.echo(json.dumps(structure, indent=2))


def main() -> None:
    """Main entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
