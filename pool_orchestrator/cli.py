"""
Command-line interface.

Usage::

    pool-orchestrator provision --config infra.yaml --dry-run
    pool-orchestrator reprovision --config infra.yaml
    pool-orchestrator migrate --config move.yaml --timeout 600
    pool-orchestrator optimize --config optimize.yaml
    pool-orchestrator deploy-all --config deploy.yaml --backend http
    pool-orchestrator cleanup rg-pools-dev --yes
    pool-orchestrator serve

Every command exits with the exit code of its result: 0 success, 1 failed,
2 completed with errors, 3 timed out.
"""
import asyncio
import json
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Optional

import typer
import yaml
from rich.console import Console
from rich.table import Table

from pool_orchestrator.config.logging import configure_logging
from pool_orchestrator.models.commands import CommandResult
from pool_orchestrator.services.command_service import CommandService, build_backend

app = typer.Typer(
    name="pool-orchestrator",
    help="Provision, migrate and maintain elastic database pools.",
    no_args_is_help=True,
)
console = Console()
err_console = Console(stderr=True)

STATUS_STYLE = {
    "succeeded": "green",
    "validated_only": "green",
    "dry_run": "cyan",
    "completed_with_errors": "yellow",
    "timed_out": "yellow",
    "failed": "red",
}

ConfigOption = typer.Option(..., "--config", "-c", exists=True, dir_okay=False, help="YAML or JSON config file.")
BackendOption = typer.Option(None, "--backend", "-b", help="Resource backend: memory or http.")
JsonOption = typer.Option(False, "--json", help="Print the full result as JSON.")


def load_config(path: Path) -> Dict[str, Any]:
    """Read a YAML or JSON config file into a dict."""
    text = path.read_text(encoding="utf-8")
    try:
        if path.suffix.lower() == ".json":
            data = json.loads(text)
        else:
            data = yaml.safe_load(text)
    except (ValueError, yaml.YAMLError) as e:
        err_console.print(f"[bold red]Error[/bold red]: cannot parse {path}: {e}")
        raise typer.Exit(code=1)

    if not isinstance(data, dict):
        err_console.print(f"[bold red]Error[/bold red]: {path} must contain a mapping at the top level")
        raise typer.Exit(code=1)
    return data


def _execute(
    backend_name: Optional[str],
    action: Callable[[CommandService], Awaitable[CommandResult]],
) -> CommandResult:
    configure_logging()
    try:
        backend = build_backend(backend_name)
    except ValueError as e:
        err_console.print(f"[bold red]Error[/bold red]: {e}")
        raise typer.Exit(code=1)

    async def run() -> CommandResult:
        try:
            return await action(CommandService(backend))
        finally:
            await backend.aclose()

    return asyncio.run(run())


def _summary_rows(result: CommandResult):
    details = result.details
    if "report" in details:
        for step in details["report"].get("steps", []):
            yield step["name"], step["status"], step.get("detail", "")
    for item in details.get("results", []):
        yield (
            item["resource_group"],
            "dry_run" if item.get("dry_run") else result.command + "ed",
            f"{len(item['created'])} created, {len(item['updated'])} updated, "
            f"{len(item['existing'])} present, {len(item['planned'])} planned",
        )
    if "outcome" in details:
        outcome = details["outcome"]
        yield outcome["database_id"], outcome["status"], outcome.get("reason") or ""
    for summary in details.get("summaries", []):
        applied = summary.get("apply_result") or {}
        yield (
            summary["database_name"],
            "analyzed" if summary.get("dry_run") else "optimized",
            f"{summary['records_analyzed']} indexes, {applied.get('optimized_count', 0)} maintained",
        )
    for database, error in details.get("failed_databases", {}).items():
        yield database, "failed", error.get("message", "")


def print_result(result: CommandResult, as_json: bool = False) -> None:
    """Render a CommandResult and exit with its exit code."""
    if as_json:
        typer.echo(result.model_dump_json(indent=2))
        raise typer.Exit(code=result.exit_code)

    style = STATUS_STYLE.get(result.status.value, "white")
    table = Table(title=f"{result.command} [{style}]{result.status.value}[/{style}] ({result.run_id})")
    table.add_column("Item", style="bold")
    table.add_column("Status")
    table.add_column("Detail")
    for item, status, detail in _summary_rows(result):
        table.add_row(str(item), str(status), str(detail))
    console.print(table)

    for warning in result.warnings:
        console.print(f"[yellow]warning[/yellow] {warning}")
    if result.error:
        err_console.print(f"[bold red]Error[/bold red]: {result.error.get('message')}")
    if result.report_path:
        console.print(f"Report: {result.report_path}")
    raise typer.Exit(code=result.exit_code)


@app.command()
def provision(
    config: Path = ConfigOption,
    dry_run: bool = typer.Option(False, "--dry-run", help="Only report what would be created."),
    backend: Optional[str] = BackendOption,
    json_out: bool = JsonOption,
) -> None:
    """Create missing infrastructure, idempotently."""
    data = load_config(config)
    if dry_run:
        data["dry_run"] = True
    print_result(_execute(backend, lambda commands: commands.provision(data)), as_json=json_out)


@app.command()
def reprovision(
    config: Path = ConfigOption,
    dry_run: bool = typer.Option(False, "--dry-run", help="Only report which pools would change."),
    backend: Optional[str] = BackendOption,
    json_out: bool = JsonOption,
) -> None:
    """Reapply pool capacity and per-database limits to existing pools."""
    data = load_config(config)
    if dry_run:
        data["dry_run"] = True
    print_result(_execute(backend, lambda commands: commands.reprovision(data)), as_json=json_out)


@app.command()
def migrate(
    config: Path = ConfigOption,
    validate_only: bool = typer.Option(False, "--validate-only", help="Only check preconditions."),
    timeout: Optional[float] = typer.Option(None, "--timeout", min=1, help="Seconds to wait for the move."),
    backend: Optional[str] = BackendOption,
    json_out: bool = JsonOption,
) -> None:
    """Move a database to another pool or a standalone tier."""
    data = load_config(config)
    if validate_only:
        data["validate_only"] = True
    if timeout is not None:
        data["timeout_seconds"] = timeout
    print_result(_execute(backend, lambda commands: commands.migrate(data)), as_json=json_out)


@app.command()
def optimize(
    config: Path = ConfigOption,
    dry_run: bool = typer.Option(False, "--dry-run", help="Analyze and classify only."),
    backend: Optional[str] = BackendOption,
    json_out: bool = JsonOption,
) -> None:
    """Analyze index fragmentation and run maintenance."""
    data = load_config(config)
    if dry_run:
        data["dry_run"] = True
    print_result(_execute(backend, lambda commands: commands.optimize(data)), as_json=json_out)


@app.command("deploy-all")
def deploy_all(
    config: Path = ConfigOption,
    backend: Optional[str] = BackendOption,
    json_out: bool = JsonOption,
) -> None:
    """Run the full deployment pipeline."""
    data = load_config(config)
    print_result(_execute(backend, lambda commands: commands.deploy_all(data)), as_json=json_out)


@app.command()
def cleanup(
    resource_group: str = typer.Argument(..., help="Resource group to delete."),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation."),
    backend: Optional[str] = BackendOption,
    json_out: bool = JsonOption,
) -> None:
    """Delete a resource group and everything in it."""
    if not yes:
        typer.confirm(f"Delete resource group '{resource_group}' and everything in it?", abort=True)
    print_result(_execute(backend, lambda commands: commands.cleanup(resource_group)), as_json=json_out)


@app.command()
def serve() -> None:
    """Serve the HTTP API."""
    from pool_orchestrator.main import run

    run()


def main() -> None:
    app()


if __name__ == "__main__":
    main()
