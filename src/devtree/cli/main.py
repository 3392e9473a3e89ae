"""Main CLI for devtree."""

import asyncio
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from ..core.config import find_config_dir, load_config
from ..errors.translator import ErrorTranslator, translate_message
from ..hooks.manager import HooksManager
from ..hooks.models import StepStatus
from ..utils.rich_logging import setup_logging
from ..workspace.manager import WorktreeManager
from ..workspace.models import OperationResult

console = Console()

STATUS_STYLES = {
    "running": "green",
    "starting": "yellow",
    "stopping": "yellow",
    "creating": "cyan",
    "deleting": "red",
    "stopped": "dim",
}


@click.group()
@click.option("--config-dir", "-c", default=None, help="Path to the project's .devtree directory")
@click.option("--log-level", default=None, help="Override log level (DEBUG, INFO, WARNING)")
@click.pass_context
def cli(ctx, config_dir, log_level):
    """devtree - run git worktrees side by side, each with its own dev server."""
    ctx.ensure_object(dict)
    resolved = Path(config_dir).resolve() if config_dir else find_config_dir()
    ctx.obj["config_dir"] = resolved
    ctx.obj["log_level"] = log_level


def _manager(ctx) -> WorktreeManager:
    config_dir = ctx.obj["config_dir"]
    config = load_config(config_dir)
    setup_logging(config_dir, ctx.obj["log_level"] or config.log_level, use_file=False)
    return WorktreeManager(config_dir, config=config)


def _print_failure(result: OperationResult) -> None:
    friendly = translate_message(result.error)
    console.print(ErrorTranslator().format_for_cli(friendly))
    if not friendly.show_technical and result.error:
        console.print(f"\n[dim]{result.code}: {result.error}[/]")


@cli.command()
@click.option("--port", "-p", type=int, default=None, help="Server port (default: server_port from config)")
@click.option("--host", default="127.0.0.1", help="Interface to bind")
@click.pass_context
def serve(ctx, port, host):
    """Start the devtree server (HTTP API + event stream)."""
    from ..web.server import run_server

    config_dir = ctx.obj["config_dir"]
    config = load_config(config_dir)
    setup_logging(config_dir, ctx.obj["log_level"] or config.log_level, use_file=True)
    console.print(f"[bold green]Serving {config_dir.parent}[/]")
    run_server(config_dir, host=host, port=port)


@cli.command("list")
@click.pass_context
def list_worktrees(ctx):
    """List worktrees on disk."""
    manager = _manager(ctx)
    worktrees = manager.list_worktrees()
    if not worktrees:
        console.print("[dim]No worktrees yet. Create one with 'devtree create <branch>'[/]")
        return

    table = Table()
    table.add_column("ID", style="cyan")
    table.add_column("Branch")
    table.add_column("Status")
    table.add_column("Ports")
    table.add_column("Path", style="dim")
    for worktree in worktrees:
        style = STATUS_STYLES.get(worktree.status.value, "")
        table.add_row(
            worktree.id,
            worktree.branch,
            f"[{style}]{worktree.status.value}[/]" if style else worktree.status.value,
            ", ".join(str(p) for p in worktree.ports) or "-",
            worktree.path,
        )
    console.print(table)


@cli.command()
@click.argument("branch")
@click.option("--name", "-n", default=None, help="Worktree id (default: derived from branch)")
@click.pass_context
def create(ctx, branch, name):
    """Create a worktree for BRANCH and install its dependencies."""
    manager = _manager(ctx)
    with console.status(f"Creating worktree for {branch}..."):
        result = asyncio.run(manager.create_worktree(branch, name))
    if not result.success:
        _print_failure(result)
        raise SystemExit(1)
    console.print(f"[green]✓[/] Created [bold]{result.worktree.id}[/] at {result.worktree.path}")


@cli.command()
@click.argument("worktree_id")
@click.pass_context
def remove(ctx, worktree_id):
    """Remove a worktree (stops it first)."""
    manager = _manager(ctx)
    result = asyncio.run(manager.remove_worktree(worktree_id))
    if not result.success:
        _print_failure(result)
        raise SystemExit(1)
    console.print(f"[green]✓[/] Removed {worktree_id}")


@cli.command("detect-env")
@click.option("--save/--no-save", default=False, help="Write the mapping to config.yaml")
@click.pass_context
def detect_env(ctx, save):
    """Suggest env_mapping entries from the project's .env files."""
    manager = _manager(ctx)
    if not manager.allocator.base_ports:
        console.print("[yellow]No ports configured. Set ports.discovered in config.yaml first.[/]")
        return
    mapping = manager.detect_env_mapping(save=save)
    if not mapping:
        console.print("[dim]No env vars reference the configured ports[/]")
        return

    table = Table()
    table.add_column("Variable", style="cyan")
    table.add_column("Template")
    for name, template in mapping.items():
        table.add_row(name, template)
    console.print(table)
    if save:
        console.print("[green]✓[/] Saved env_mapping to config.yaml")


@cli.group()
def hooks():
    """Manage and run verification hooks."""


@hooks.command("list")
@click.pass_context
def hooks_list(ctx):
    """Show configured steps and skills."""
    config = HooksManager(_manager(ctx)).get_config()

    table = Table(title="Steps")
    table.add_column("ID", style="dim")
    table.add_column("Name", style="cyan")
    table.add_column("Command")
    table.add_column("Trigger")
    table.add_column("Enabled")
    for step in config.steps:
        table.add_row(
            step.id, step.name, step.command, step.effective_trigger.value,
            "[green]yes[/]" if step.enabled else "[dim]no[/]",
        )
    console.print(table)

    if config.skills:
        skills = Table(title="Skills")
        skills.add_column("Skill", style="cyan")
        skills.add_column("Trigger")
        skills.add_column("Enabled")
        for skill in config.skills:
            skills.add_row(
                skill.skill_name, skill.effective_trigger.value,
                "[green]yes[/]" if skill.enabled else "[dim]no[/]",
            )
        console.print(skills)


@hooks.command("add")
@click.argument("name")
@click.argument("command")
@click.pass_context
def hooks_add(ctx, name, command):
    """Add a step NAME running shell COMMAND."""
    config = HooksManager(_manager(ctx)).add_step(name, command)
    console.print(f"[green]✓[/] Added step {config.steps[-1].id}")


@hooks.command("run")
@click.argument("worktree_id")
@click.pass_context
def hooks_run(ctx, worktree_id):
    """Run all enabled steps against a worktree."""
    pipeline = HooksManager(_manager(ctx))
    with console.status(f"Running hooks for {worktree_id}..."):
        run = asyncio.run(pipeline.run_all(worktree_id))

    for step in run.steps:
        mark = "[green]✓[/]" if step.status == StepStatus.PASSED else "[red]✗[/]"
        duration = f" [dim]({step.duration_ms}ms)[/]" if step.duration_ms is not None else ""
        console.print(f"{mark} [bold]{step.step_name}[/]{duration}")
        if step.status != StepStatus.PASSED and step.output:
            console.print(step.output, markup=False, highlight=False)

    console.print(f"\nRun {run.id}: [bold]{run.status.value}[/]")
    if run.status.value != "completed":
        raise SystemExit(1)


if __name__ == "__main__":
    cli()
