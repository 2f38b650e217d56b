"""CLI entrypoint for remote sources.

Browse the registry, install sources into the current process, and check
source files before publishing them.
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn
from rich.table import Table

from extensions.client import RegistryClient
from extensions.installer import build_installer
from extensions.integrity import integrity_for
from extensions.validator import CodeValidator
from pipeline import __version__
from pipeline.config import get_config, reload_config
from plugins.errors import SourceLoaderError, StructuralError, format_error
from plugins.runtime import resolve_runtime, strategy_names
from plugins.shape import describe_capabilities

app = typer.Typer(
    name="sources",
    help="Discover, verify and load remote content sources.",
    add_completion=False,
)
console = Console()


def get_client() -> RegistryClient:
    """Get a registry client from configuration."""
    config = get_config()
    return RegistryClient(
        registry_url=config.registry.url,
        fallback_url=config.registry.fallback_url,
        cache_duration=config.registry.cache_duration,
        timeout=config.registry.timeout,
    )


@app.callback()
def main(
    config_path: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to sources.toml (default: search current and parent directories)",
    ),
    log_level: Optional[str] = typer.Option(
        None,
        "--log-level",
        help="Log level (default: from configuration)",
    ),
) -> None:
    """Remote sources command line."""
    config = reload_config(config_path) if config_path else get_config()
    level = (log_level or config.log_level).upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@app.command("list")
def list_sources(
    official: bool = typer.Option(False, "--official", help="Only show official sources"),
    sfw: bool = typer.Option(False, "--sfw", help="Hide NSFW sources"),
) -> None:
    """List sources published in the registry.

    Example:
        sources list --official
    """
    client = get_client()

    try:
        entries = asyncio.run(client.get_sources())
    except SourceLoaderError as e:
        console.print(f"[red]Failed to fetch registry: {escape(str(e))}[/red]")
        raise typer.Exit(1)

    if official:
        entries = [e for e in entries if e.metadata.official]
    if sfw:
        entries = [e for e in entries if not e.metadata.nsfw]

    if not entries:
        console.print("[yellow]No sources found[/yellow]")
        return

    table = Table(title="Available Sources")
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("Version", style="green")
    table.add_column("Languages")
    table.add_column("Type")
    table.add_column("Official", justify="center")

    for entry in entries:
        table.add_row(
            entry.id,
            entry.name,
            entry.version,
            ", ".join(entry.metadata.languages) or "-",
            entry.legal.source_type.value,
            "✓" if entry.metadata.official else "",
        )

    console.print(table)


@app.command()
def search(
    query: str = typer.Argument(..., help="Search query"),
) -> None:
    """Search the registry by name, description and tags.

    Example:
        sources search manga
    """
    client = get_client()

    try:
        results = asyncio.run(client.search_sources(query))
    except SourceLoaderError as e:
        console.print(f"[red]Search failed: {escape(str(e))}[/red]")
        raise typer.Exit(1)

    if not results:
        console.print(f"[yellow]No sources found for: {query}[/yellow]")
        return

    table = Table(title=f"Search Results: {query}")
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("Version", style="green")
    table.add_column("Description")

    for entry in results:
        desc = entry.description[:50] + "..." if len(entry.description) > 50 else entry.description
        table.add_row(entry.id, entry.name, entry.version, desc)

    console.print(table)


@app.command()
def info(
    source_id: str = typer.Argument(..., help="Source id"),
) -> None:
    """Show detailed information about a source.

    Example:
        sources info mangadex
    """
    client = get_client()

    try:
        entry = asyncio.run(client.require_source(source_id))
    except SourceLoaderError as e:
        console.print(f"[red]{escape(str(e))}[/red]")
        raise typer.Exit(1)

    console.print(f"\n[bold cyan]{entry.name}[/bold cyan] v{entry.version}")
    if entry.author:
        console.print(f"[dim]by {entry.author}[/dim]\n")
    if entry.description:
        console.print(f"{entry.description}\n")

    console.print("[bold]Details[/bold]")
    console.print(f"  Base URL: {entry.base_url}")
    console.print(f"  Languages: {', '.join(entry.metadata.languages) or '-'}")
    console.print(f"  Type: {entry.legal.source_type.value}")
    console.print(f"  NSFW: {'Yes' if entry.metadata.nsfw else 'No'}")
    console.print(f"  Official: {'Yes' if entry.metadata.official else 'No'}")
    console.print(f"  Downloads: {entry.statistics.downloads:,}")
    console.print(f"  Core version: {entry.metadata.min_core_version}..{entry.metadata.max_core_version or 'any'}")
    if entry.repository:
        console.print(f"  Repository: {entry.repository}")

    supported = [
        name.removeprefix("supports_")
        for name, enabled in entry.capabilities.model_dump().items()
        if enabled
    ]
    console.print(f"\n[bold]Capabilities[/bold]\n  {', '.join(supported) or 'none declared'}")

    console.print("\n[bold]Integrity[/bold]")
    console.print(f"  sha256: {entry.integrity.sha256}")
    if entry.integrity.sha512:
        console.print(f"  sha512: {entry.integrity.sha512}")

    if entry.changelog:
        latest = entry.changelog[0]
        console.print(f"\n[bold]Latest changes ({latest.version}, {latest.date})[/bold]")
        for change in latest.changes:
            console.print(f"  • {change}")


@app.command()
def install(
    source_id: str = typer.Argument(..., help="Source id"),
    version: Optional[str] = typer.Option(None, "--version", "-v", help="Specific published version"),
) -> None:
    """Download, verify and load a source into this process.

    Example:
        sources install mangadex
    """
    try:
        installer = build_installer()
    except ValueError as e:
        console.print(f"[red]{escape(str(e))}[/red]")
        raise typer.Exit(1)

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        console=console,
    ) as progress:
        task = progress.add_task(f"Installing {source_id}", total=100)

        def on_progress(percent: int, status: str) -> None:
            progress.update(task, completed=percent, description=status)

        try:
            source = asyncio.run(installer.install(source_id, on_progress, version=version))
        except SourceLoaderError as e:
            progress.stop()
            console.print(f"[red]Installation failed: {escape(format_error(e))}[/red]")
            reasons = getattr(e, "reasons", None)
            for reason in reasons or []:
                console.print(f"  [dim]- {escape(reason)}[/dim]")
            raise typer.Exit(1)

    capabilities = describe_capabilities(source).supported()
    console.print(
        Panel(
            f"[dim]Version:[/dim] {source.version}  "
            f"[dim]Base URL:[/dim] {source.base_url}\n"
            f"[dim]Capabilities:[/dim] {', '.join(capabilities) or 'none'}\n"
            f"[dim]Strategy order:[/dim] {', '.join(installer.loader.strategy_names)}",
            title=f"[green]Installed[/green] [cyan]{source.name}[/cyan] ({source.id})",
            border_style="green",
        )
    )


@app.command("hash")
def hash_file(
    path: Path = typer.Argument(..., help="Source file to hash", exists=True, dir_okay=False),
    as_json: bool = typer.Option(False, "--json", help="Print the manifest integrity block as JSON"),
) -> None:
    """Compute the integrity values to publish for a source file.

    Example:
        sources hash dist/mangadex.py --json
    """
    values = integrity_for(path.read_bytes())

    if as_json:
        console.print_json(json.dumps({"integrity": values}))
        return

    table = Table(title=f"Integrity: {path.name}")
    table.add_column("Algorithm", style="cyan")
    table.add_column("Digest")
    for algorithm, digest in values.items():
        table.add_row(algorithm, digest)
    console.print(table)


@app.command()
def check(
    path: Path = typer.Argument(..., help="Source file to check", exists=True, dir_okay=False),
) -> None:
    """Run the structure and security checks on a source file.

    Example:
        sources check dist/mangadex.py
    """
    code = path.read_text(encoding="utf-8")
    validator = CodeValidator()
    failed = False

    try:
        validator.validate_structure(code)
        console.print("[green]✓ Structure: BaseSource subclass with default export[/green]")
    except StructuralError as e:
        failed = True
        console.print(f"[red]✗ Structure: {escape(str(e))}[/red]")

    violations = validator.find_violations(code)
    if violations:
        failed = True
        table = Table(title="Security Violations")
        table.add_column("Line", justify="right")
        table.add_column("Pattern", style="red")
        table.add_column("Code")
        for violation in violations:
            table.add_row(str(violation.line), violation.description, escape(violation.text))
        console.print(table)
    else:
        console.print("[green]✓ Security: no denylisted patterns[/green]")

    if failed:
        raise typer.Exit(1)


@app.command()
def runtime() -> None:
    """Show the detected runtime class and strategy order."""
    config = get_config()

    try:
        runtime_class = resolve_runtime(config.loader.runtime)
    except ValueError as e:
        console.print(f"[red]{escape(str(e))}[/red]")
        raise typer.Exit(1)

    source = "configured" if config.loader.runtime.lower() != "auto" else "detected"
    console.print(f"Runtime class: [cyan]{runtime_class.value}[/cyan] ({source})")
    console.print(f"Strategy order: {' → '.join(strategy_names(runtime_class))}")


@app.command()
def version() -> None:
    """Show version."""
    console.print(f"remote-sources v{__version__}")


if __name__ == "__main__":
    app()
