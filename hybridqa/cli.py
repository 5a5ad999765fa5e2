"""CLI entry point for the hybrid UI test orchestrator."""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from pathlib import Path

import click
from pydantic import ValidationError as PydanticValidationError
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from hybridqa.errors import PersistenceError
from hybridqa.models.config import OrchestratorConfig
from hybridqa.models.test_case import TestCase, TestCaseCreate
from hybridqa.models.test_result import TestResult
from hybridqa.orchestrator import Orchestrator
from hybridqa.state.store import StateStore

console = Console()

DEFAULT_CONFIG = "hybridqa-config.json"

_STATUS_STYLE = {"pass": "green", "fail": "red", "error": "red"}


def setup_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
    )


def _load_config(path: str) -> OrchestratorConfig:
    try:
        return OrchestratorConfig.load(path)
    except FileNotFoundError:
        console.print(f"[red]Config file not found: {path}[/red]")
        console.print("Run 'hybridqa init' to create a default config.")
        sys.exit(1)


def _load_tests(test_file: str) -> list[TestCase]:
    with open(test_file) as f:
        data = json.load(f)
    items = data if isinstance(data, list) else [data]
    return [TestCaseCreate.model_validate(item).with_id() for item in items]


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def cli(verbose: bool) -> None:
    """Hybrid UI test orchestrator: browser automation plus visual review."""
    setup_logging(verbose)


@cli.command()
@click.option("--state-file", "-s", default="test-state.json", help="Where the snapshot is kept")
def init(state_file: str) -> None:
    """Create a default configuration file."""
    config_path = Path(DEFAULT_CONFIG)
    if config_path.exists():
        if not click.confirm(f"{DEFAULT_CONFIG} already exists. Overwrite?"):
            return

    cfg = OrchestratorConfig(state_file=state_file)
    cfg.save(config_path)
    console.print(f"[green]Created {config_path}[/green]")
    console.print("\nStart the server with:")
    console.print("  [blue]hybridqa serve[/blue]")
    console.print("\nOr run a test definition directly:")
    console.print("  [blue]hybridqa run my-test.json[/blue]")


@cli.command()
@click.option("--config", "-c", default=DEFAULT_CONFIG, help="Config file path")
@click.option("--host", default=None, help="Override the configured host")
@click.option("--port", "-p", type=int, default=None, help="Override the configured port")
def serve(config: str, host: str | None, port: int | None) -> None:
    """Run the HTTP server until interrupted."""
    import uvicorn

    from hybridqa.api.main import create_app

    cfg = _load_config(config)
    app = create_app(cfg)
    console.print(
        f"Testing system server running at [blue]http://{host or cfg.host}:{port or cfg.port}[/blue]"
    )
    # uvicorn handles SIGINT/SIGTERM and runs the app's shutdown cleanup
    uvicorn.run(app, host=host or cfg.host, port=port or cfg.port, log_config=None)


async def _run_tests(cfg: OrchestratorConfig, tests: list[TestCase]) -> list[TestResult]:
    orchestrator = Orchestrator(cfg)
    await orchestrator.initialize()
    try:
        for test in tests:
            await orchestrator.queue_test(test)
        await orchestrator.wait_until_idle()
    finally:
        await orchestrator.cleanup()
    wanted = {t.id for t in tests}
    return [r for r in orchestrator.snapshot.current.results if r.test_id in wanted]


@cli.command()
@click.argument("test_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--config", "-c", default=DEFAULT_CONFIG, help="Config file path")
def run(test_file: str, config: str) -> None:
    """Queue the test definition(s) in TEST_FILE and wait for the results."""
    cfg = _load_config(config)
    try:
        tests = _load_tests(test_file)
    except (json.JSONDecodeError, PydanticValidationError) as e:
        console.print(f"[red]Invalid test file {test_file}:[/red] {e}")
        sys.exit(1)

    names = {t.id: t.name for t in tests}
    results = asyncio.run(_run_tests(cfg, tests))

    table = Table(title="Results Summary")
    table.add_column("Test", style="bold")
    table.add_column("Status")
    table.add_column("Steps")
    table.add_column("Issues")
    table.add_column("Duration")
    for result in results:
        style = _STATUS_STYLE.get(result.status, "white")
        steps = result.automation_results.steps
        passed = sum(1 for s in steps if s.status == "pass")
        table.add_row(
            names.get(result.test_id, result.test_id),
            f"[{style}]{result.status.upper()}[/{style}]",
            f"{passed}/{len(steps)}",
            str(len(result.visual_analysis.issues)),
            f"{result.duration / 1000:.1f}s",
        )
    console.print(table)

    if any(r.status != "pass" for r in results):
        sys.exit(1)


@cli.command()
@click.option("--config", "-c", default=DEFAULT_CONFIG, help="Config file path")
def state(config: str) -> None:
    """Show queue sizes and analytics from the state file."""
    cfg = _load_config(config)
    try:
        snapshot = StateStore(cfg.state_file).load()
    except PersistenceError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)
    if snapshot is None:
        console.print(f"[yellow]No state found at {cfg.state_file}[/yellow]")
        return

    queue = snapshot.queue
    analytics = snapshot.analytics
    table = Table(title="Orchestrator State")
    table.add_column("Metric", style="bold")
    table.add_column("Value")
    table.add_row("Phase", snapshot.current.phase)
    table.add_row("Pending", str(len(queue.pending)))
    table.add_row("Running", str(len(queue.running)))
    table.add_row("Completed", f"[green]{len(queue.completed)}[/green]")
    table.add_row("Failed", f"[red]{len(queue.failed)}[/red]")
    table.add_row("Total Runs", str(analytics.total_runs))
    table.add_row("Pass Rate", f"{analytics.pass_rate:.1f}%")
    table.add_row("Average Duration", f"{analytics.average_duration / 1000:.1f}s")
    console.print(table)

    if analytics.common_issues:
        console.print("\n[bold]Common issues[/bold]")
        for issue in sorted(analytics.common_issues, key=lambda i: i.count, reverse=True)[:10]:
            console.print(f"  {issue.count:>4}  {issue.type}")


@cli.command()
@click.option("--config", "-c", default=DEFAULT_CONFIG, help="Config file path")
def evict(config: str) -> None:
    """Delete stored screenshots older than the retention window."""
    from hybridqa.visual.claude_oracle import ClaudeVisualOracle

    cfg = _load_config(config)
    oracle = ClaudeVisualOracle(cfg.screenshot_dir, retention_seconds=cfg.retention_seconds)
    removed = asyncio.run(oracle.evict_stale(cfg.retention_seconds))
    console.print(f"[green]Removed {removed} stale screenshot(s)[/green]")


if __name__ == "__main__":
    cli()
