"""Main CLI entry point using Typer."""

import json
from pathlib import Path
from typing import Any

import anyio
import typer
from rich.console import Console
from rich.panel import Panel
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn
from rich.table import Table

from taskweave import __version__
from taskweave.capabilities.builtin import default_catalog
from taskweave.core.config import Settings, get_settings
from taskweave.core.logs import configure_logging
from taskweave.core.manager import TaskManager
from taskweave.knowledge.database import close_db
from taskweave.knowledge.store import TaskStore, to_jsonable
from taskweave.tasks.models import TaskResult

app = typer.Typer(
    name="taskweave",
    help="taskweave - run dependency graphs of tasks in concurrent waves",
    add_completion=True,
    rich_markup_mode="rich",
)

console = Console()


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"[bold blue]taskweave[/bold blue] version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-v",
        help="Show version and exit.",
        callback=version_callback,
        is_eager=True,
    ),
) -> None:
    """
    taskweave - dependency-graph task scheduler.

    Runs declared tasks in concurrency-bounded waves, feeding each task the
    outputs of the dependencies it waits for.
    """
    pass


def load_task_file(path: Path) -> list[dict[str, Any]]:
    """
    Read task configurations from a JSON file.

    The file holds either a list of task configs or an object with a
    ``tasks`` list.
    """
    try:
        data = json.loads(path.read_text())
    except json.JSONDecodeError as e:
        raise typer.BadParameter(f"{path} is not valid JSON: {e}") from e

    if isinstance(data, dict):
        data = data.get("tasks")
    if not isinstance(data, list) or not all(isinstance(t, dict) for t in data):
        raise typer.BadParameter(f"{path} must contain a list of task objects")
    return data


def _summarise(result: TaskResult, limit: int = 60) -> str:
    if not result.success:
        return f"{type(result.error).__name__}: {result.error}"
    text = json.dumps(to_jsonable(result.output))
    return text[:limit] + "..." if len(text) > limit else text


def _register(manager: TaskManager, configs: list[dict[str, Any]]) -> None:
    for config in configs:
        try:
            manager.add_existing_task(config)
        except ValueError as e:
            console.print(f"[bold red]Invalid task {config.get('name', config)}:[/bold red] {e}")
            raise typer.Exit(code=2) from e


@app.command()
def run(
    file: Path = typer.Argument(..., exists=True, dir_okay=False, help="JSON file of task configs"),
    concurrency: int | None = typer.Option(
        None,
        "--concurrency",
        "-c",
        min=1,
        help="Maximum tasks per wave (defaults to TASKWEAVE_CONCURRENCY)",
    ),
    persist: bool | None = typer.Option(
        None,
        "--persist/--no-persist",
        help="Persist task records (defaults to TASKWEAVE_PERSIST)",
    ),
    output: Path | None = typer.Option(
        None,
        "--output",
        "-o",
        help="Write results as JSON to this file",
    ),
    debug: bool = typer.Option(
        False,
        "--debug",
        "-d",
        help="Enable debug mode",
    ),
) -> None:
    """
    Run the tasks declared in FILE.

    Example:
        taskweave run tasks.json --concurrency 2 --no-persist
    """
    settings = get_settings()
    overrides: dict[str, Any] = {}
    if debug:
        overrides["taskweave_debug"] = True
    if persist is not None:
        overrides["taskweave_persist"] = persist
    if overrides:
        settings = settings.model_copy(update=overrides)
    configure_logging(settings)

    configs = load_task_file(file)
    console.print(
        Panel(
            f"[bold]Tasks:[/bold] {len(configs)}\n"
            f"[bold]Concurrency:[/bold] {concurrency or settings.taskweave_concurrency}\n"
            f"[bold]Persistence:[/bold] {'on' if settings.taskweave_persist else 'off'}",
            title="[bold blue]taskweave[/bold blue]",
            border_style="blue",
        )
    )

    async def execute() -> dict[str, TaskResult]:
        store = None
        if settings.taskweave_persist:
            store = TaskStore()
            await store.initialize()

        manager = TaskManager(
            catalog=default_catalog(),
            store=store,
            concurrency=concurrency,
            settings=settings,
        )
        try:
            _register(manager, configs)

            with Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                BarColumn(),
                TextColumn("{task.completed}/{task.total}"),
                console=console,
            ) as progress:
                bar = progress.add_task("Running tasks...", total=len(manager))
                manager.add_callback(lambda _task_id, _result: progress.advance(bar))
                results = await manager.run()

            table = Table(title="Results")
            table.add_column("Task", style="bold")
            table.add_column("Name")
            table.add_column("Status")
            table.add_column("Retries", justify="right")
            table.add_column("Output / Error")

            for task_id, result in results.items():
                task = manager.get_task(task_id)
                status_text = "[green]completed[/green]" if result.success else "[red]failed[/red]"
                table.add_row(
                    task_id,
                    task.name if task else "-",
                    status_text,
                    str(task.retries if task else 0),
                    _summarise(result),
                )

            console.print(table)
            console.print(
                f"[dim]{len(manager.last_waves)} waves: "
                f"{' | '.join(', '.join(w.task_ids) for w in manager.last_waves)}[/dim]"
            )
            await manager.flush()
            return results
        finally:
            if store is not None:
                await close_db()

    results = anyio.run(execute)

    if output:
        output.write_text(
            json.dumps({k: to_jsonable(r.to_dict()) for k, r in results.items()}, indent=2)
        )
        console.print(f"[green]Saved results to {output}[/green]")

    failed = [task_id for task_id, r in results.items() if not r.success]
    if failed:
        console.print(f"\n[bold red]{len(failed)} of {len(results)} tasks failed[/bold red]")
        raise typer.Exit(code=1)

    console.print(f"\n[bold green]All {len(results)} tasks completed successfully![/bold green]")


@app.command()
def plan(
    file: Path = typer.Argument(..., exists=True, dir_okay=False, help="JSON file of task configs"),
    concurrency: int | None = typer.Option(
        None,
        "--concurrency",
        "-c",
        min=1,
        help="Maximum tasks per wave (defaults to TASKWEAVE_CONCURRENCY)",
    ),
) -> None:
    """
    Show the waves FILE would run in, without executing anything.

    Useful for previewing dependency order and spotting cycles.
    """
    settings = get_settings()
    configs = load_task_file(file)

    manager = TaskManager(catalog=default_catalog(), concurrency=concurrency, settings=settings)
    _register(manager, configs)
    outline = manager.plan()

    table = Table(title="Execution Plan")
    table.add_column("Wave", style="cyan")
    table.add_column("Task", style="bold")
    table.add_column("Name")
    table.add_column("Dependencies")

    for wave_number, wave in enumerate(outline["waves"]):
        for task_id in wave:
            task = manager.get_task(task_id)
            deps = ", ".join(task.dependencies) or "-"
            table.add_row(str(wave_number), task_id, task.name, deps)

    console.print(table)

    for cycle in outline["cycles"]:
        console.print(f"[yellow]Cycle:[/yellow] {' -> '.join(cycle)}")
    if outline["unresolved"]:
        console.print(
            f"[bold red]Never ready:[/bold red] {', '.join(outline['unresolved'])}"
        )


@app.command()
def config() -> None:
    """
    Show the effective configuration.
    """
    settings = get_settings()

    table = Table(title="Configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value")

    for name, value in settings.model_dump().items():
        table.add_row(name.upper(), str(value))

    console.print(table)


@app.command()
def serve(
    port: int = typer.Option(8000, "--port", "-p", help="Port for the API server"),
    host: str = typer.Option("127.0.0.1", "--host", "-h", help="Host to bind to"),
) -> None:
    """
    Start the taskweave HTTP API.

    Example:
        taskweave serve --port 3000
    """
    import uvicorn

    from taskweave.api.main import create_app

    settings: Settings = get_settings()
    configure_logging(settings)

    console.print(
        Panel(
            f"[bold]API:[/bold]      http://{host}:{port}/api/tasks\n"
            f"[bold]API Docs:[/bold] http://{host}:{port}/docs\n"
            f"[bold]Health:[/bold]   http://{host}:{port}/health",
            title="[bold cyan]taskweave API[/bold cyan]",
            border_style="cyan",
        )
    )

    uvicorn.run(create_app(settings=settings), host=host, port=port, log_level="info")


if __name__ == "__main__":
    app()
