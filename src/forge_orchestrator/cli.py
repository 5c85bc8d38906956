"""CLI entry point for forge-orchestrator."""

from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.table import Table

from forge_orchestrator.config import Config, load_config
from forge_orchestrator.core.agent_registry import (
    AgentRegistry,
    AgentRegistryError,
    get_agent_metadata,
)
from forge_orchestrator.core.reconcile import ReconcileService
from forge_orchestrator.core.worktree import (
    GitRepositoryNotFoundError,
    WorktreeError,
    WorktreeManager,
)
from forge_orchestrator.logging import configure_logging
from forge_orchestrator.models.agent import (
    AgentFilter,
    RegisterDirectorInput,
    RegisterStewardInput,
    RegisterWorkerInput,
    StewardFocus,
    WorkerMode,
)
from forge_orchestrator.models.elements import Entity, EntityType
from forge_orchestrator.models.worktree_info import get_worktree_state_description
from forge_orchestrator.store import JsonStore

console = Console()

OPERATOR_NAME = "operator"


class CliContext:
    """Lazily built services shared by the commands of one invocation."""

    def __init__(self, config: Config, root: Path):
        self.config = config
        self.root = root
        self._manager: Optional[WorktreeManager] = None
        self._store: Optional[JsonStore] = None

    @property
    def manager(self) -> WorktreeManager:
        if self._manager is None:
            self._manager = get_worktree_manager(self.config, self.root)
        return self._manager

    @property
    def store(self) -> JsonStore:
        if self._store is None:
            self._store = JsonStore(self.root / self.config.store.path)
        return self._store

    @property
    def registry(self) -> AgentRegistry:
        return AgentRegistry(self.store)


def get_worktree_manager(config: Config, root: Path) -> WorktreeManager:
    """
    Build and initialize a WorktreeManager for the workspace.

    Raises:
        click.ClickException: If the root is not a git repository.
    """
    wt = config.worktree
    manager = WorktreeManager(
        root,
        worktree_dir=wt.worktree_dir,
        default_base_branch=wt.default_base_branch,
        git_timeout=wt.git_timeout,
        install_timeout=wt.install_timeout,
    )
    try:
        manager.init_workspace()
    except GitRepositoryNotFoundError as e:
        raise click.ClickException(str(e)) from e
    return manager


def get_operator(store: JsonStore) -> Entity:
    """The human entity agents registered from the CLI report to."""
    operator = store.lookup_entity_by_name(OPERATOR_NAME)
    if operator is None:
        operator = store.create(
            Entity(name=OPERATOR_NAME, entity_type=EntityType.HUMAN, created_by="system")
        )
    return operator


@click.group()
@click.version_option(package_name="forge-orchestrator")
@click.option("--config", "config_path", type=click.Path(), help="Path to a config file.")
@click.option("--log-level", default=None, help="Log level (default from config).")
@click.option(
    "--root",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Workspace root (default: current directory).",
)
@click.pass_context
def main(
    ctx: click.Context,
    config_path: Optional[str],
    log_level: Optional[str],
    root: Optional[Path],
) -> None:
    """Forge Orchestrator - git worktrees and agents for parallel AI work."""
    config = load_config(config_path)
    configure_logging(log_level or config.logging.level)
    ctx.obj = CliContext(config, (root or Path.cwd()).resolve())


@main.command("init")
@click.pass_obj
def init_workspace(obj: CliContext) -> None:
    """Prepare the workspace for agent worktrees."""
    manager = obj.manager
    console.print(f"[bold green]Workspace initialized:[/bold green] {manager.workspace_root}")
    console.print(f"[bold]Worktrees:[/bold]      {manager.worktree_dir}")
    console.print(f"[bold]Default branch:[/bold] {manager.get_default_branch()}")


@main.command("create")
@click.argument("agent")
@click.argument("task_id")
@click.option("-t", "--title", help="Task title used for the branch and directory name.")
@click.option("--branch", help="Custom branch name.")
@click.option("-p", "--path", help="Custom path relative to the workspace root.")
@click.option("-b", "--base", "base_branch", help="Base branch to start from.")
@click.option(
    "--deps/--no-deps",
    default=None,
    help="Install dependencies in the new worktree (default from config).",
)
@click.pass_obj
def create_worktree(
    obj: CliContext,
    agent: str,
    task_id: str,
    title: Optional[str],
    branch: Optional[str],
    path: Optional[str],
    base_branch: Optional[str],
    deps: Optional[bool],
) -> None:
    """Create a worktree for AGENT working on TASK_ID.

    Example:
        forge create alice el-1234 --title "Fix login bug"
    """
    manager = obj.manager
    install = obj.config.worktree.install_dependencies if deps is None else deps

    try:
        with console.status(f"[bold blue]Creating worktree for {agent}..."):
            result = manager.create_worktree(
                agent,
                task_id,
                title,
                custom_branch=branch,
                custom_path=path,
                base_branch=base_branch,
                track_remote=obj.config.worktree.track_remote,
                install_dependencies=install,
            )
    except WorktreeError as e:
        raise click.ClickException(f"{e} ({e.code.value})") from e

    console.print()
    console.print("[bold green]Worktree created successfully!")
    console.print(f"[bold]Branch:[/bold]  {result.branch}" + ("" if result.branch_created else " (existing)"))
    console.print(f"[bold]Path:[/bold]    {result.worktree.relative_path}")
    console.print(f"[bold]Commit:[/bold]  {result.worktree.short_head}")
    console.print()
    console.print(f"[dim]cd {result.path}[/dim]")


@main.command("readonly")
@click.argument("agent")
@click.argument("purpose")
@click.pass_obj
def create_read_only(obj: CliContext, agent: str, purpose: str) -> None:
    """Create a detached, read-only worktree for AGENT."""
    try:
        result = obj.manager.create_read_only_worktree(agent, purpose)
    except WorktreeError as e:
        raise click.ClickException(f"{e} ({e.code.value})") from e

    console.print(f"[bold green]Read-only worktree created:[/bold green] {result.worktree.relative_path}")
    console.print(f"[bold]Commit:[/bold] {result.worktree.short_head}")


@main.command("list")
@click.option("-a", "--all", "show_all", is_flag=True, help="Include the main worktree.")
@click.pass_obj
def list_worktrees(obj: CliContext, show_all: bool) -> None:
    """List worktrees of this workspace."""
    try:
        worktrees = obj.manager.list_worktrees(include_main=show_all)
    except WorktreeError as e:
        raise click.ClickException(str(e)) from e

    if not worktrees:
        console.print("[yellow]No worktrees found.[/yellow]")
        if not show_all:
            console.print("[dim]Use --all to show the main worktree.[/dim]")
        return

    table = Table(title="Agent Worktrees", show_header=True, header_style="bold cyan")
    table.add_column("Path", style="bold")
    table.add_column("Branch", style="green")
    table.add_column("Commit", style="dim")
    table.add_column("Agent")
    table.add_column("Task")
    table.add_column("State", justify="center")

    for wt in worktrees:
        state = "[blue]main[/blue]" if wt.is_main else wt.state.value
        table.add_row(
            wt.relative_path,
            wt.branch,
            wt.short_head,
            wt.agent_name or "",
            wt.task_id or "",
            state,
        )

    console.print()
    console.print(table)
    console.print()


@main.command("show")
@click.argument("path")
@click.pass_obj
def show_worktree(obj: CliContext, path: str) -> None:
    """Show details of the worktree at PATH."""
    worktree = obj.manager.get_worktree(path)
    if worktree is None:
        raise click.ClickException(f"Worktree not found: {path}")

    console.print(f"[bold]Path:[/bold]    {worktree.path}")
    console.print(f"[bold]Branch:[/bold]  {worktree.branch}")
    console.print(f"[bold]HEAD:[/bold]    {worktree.head}")
    console.print(f"[bold]Main:[/bold]    {'yes' if worktree.is_main else 'no'}")
    console.print(f"[bold]State:[/bold]   {get_worktree_state_description(worktree.state)}")
    if worktree.agent_name:
        console.print(f"[bold]Agent:[/bold]   {worktree.agent_name}")
    if worktree.task_id:
        console.print(f"[bold]Task:[/bold]    {worktree.task_id}")


@main.command("remove")
@click.argument("path")
@click.option("-f", "--force", is_flag=True, help="Remove even with uncommitted changes.")
@click.option("--delete-branch", is_flag=True, help="Delete the worktree's branch.")
@click.option("--force-branch-delete", is_flag=True, help="Delete the branch even if unmerged.")
@click.option("--delete-remote", is_flag=True, help="Also delete the branch on origin.")
@click.option("-y", "--yes", is_flag=True, help="Skip confirmation prompt.")
@click.pass_obj
def remove_worktree(
    obj: CliContext,
    path: str,
    force: bool,
    delete_branch: bool,
    force_branch_delete: bool,
    delete_remote: bool,
    yes: bool,
) -> None:
    """Remove the worktree at PATH."""
    manager = obj.manager
    worktree = manager.get_worktree(path)
    if worktree is None:
        raise click.ClickException(f"Worktree not found: {path}")

    if not yes:
        console.print(f"[bold]About to remove worktree:[/bold] {worktree.relative_path}")
        if delete_branch:
            console.print(f"  Branch {worktree.branch} [yellow](will be deleted)[/yellow]")
        if not click.confirm("Are you sure?"):
            console.print("[yellow]Aborted.[/yellow]")
            return

    try:
        with console.status(f"[bold red]Removing worktree '{path}'..."):
            manager.remove_worktree(
                path,
                force=force,
                delete_branch=delete_branch,
                force_branch_delete=force_branch_delete,
                delete_remote_branch=delete_remote,
            )
    except WorktreeError as e:
        message = f"{e} ({e.code.value})"
        if e.details:
            message += f"\n{e.details}"
        raise click.ClickException(message) from e

    console.print(f"[bold green]Worktree removed:[/bold green] {worktree.relative_path}")


@main.command("suspend")
@click.argument("path")
@click.pass_obj
def suspend_worktree(obj: CliContext, path: str) -> None:
    """Mark the worktree at PATH suspended."""
    try:
        obj.manager.suspend_worktree(path)
    except WorktreeError as e:
        raise click.ClickException(str(e)) from e
    console.print(f"[green]Suspended:[/green] {path}")


@main.command("resume")
@click.argument("path")
@click.pass_obj
def resume_worktree(obj: CliContext, path: str) -> None:
    """Resume the suspended worktree at PATH."""
    try:
        obj.manager.resume_worktree(path)
    except WorktreeError as e:
        raise click.ClickException(str(e)) from e
    console.print(f"[green]Resumed:[/green] {path}")


@main.command("agents")
@click.option(
    "-r",
    "--role",
    type=click.Choice(["director", "worker", "steward"]),
    help="Only show agents with this role.",
)
@click.pass_obj
def list_agents(obj: CliContext, role: Optional[str]) -> None:
    """List registered agents."""
    agents = obj.registry.list_agents(AgentFilter(role=role) if role else None)

    if not agents:
        console.print("[yellow]No agents registered.[/yellow]")
        return

    table = Table(title="Agents", show_header=True, header_style="bold cyan")
    table.add_column("Name", style="bold")
    table.add_column("ID", style="dim")
    table.add_column("Role", style="green")
    table.add_column("Session")
    table.add_column("Channel", style="dim")

    for agent in agents:
        meta = get_agent_metadata(agent)
        status = meta.session_status.value if meta.session_status else "-"
        table.add_row(agent.name, agent.id, meta.agent_role, status, meta.channel_id or "-")

    console.print()
    console.print(table)
    console.print()


@main.command("register")
@click.argument("role", type=click.Choice(["director", "worker", "steward"]))
@click.argument("name")
@click.option(
    "--mode",
    "worker_mode",
    type=click.Choice([m.value for m in WorkerMode]),
    default=WorkerMode.EPHEMERAL.value,
    help="Worker mode.",
)
@click.option(
    "--focus",
    type=click.Choice([f.value for f in StewardFocus]),
    default=StewardFocus.MERGE.value,
    help="Steward focus.",
)
@click.option("--playbook", help="Playbook for custom stewards.")
@click.option("--reports-to", help="Entity id the agent reports to.")
@click.option("--tag", "tags", multiple=True, help="Tag to attach (repeatable).")
@click.pass_obj
def register_agent(
    obj: CliContext,
    role: str,
    name: str,
    worker_mode: str,
    focus: str,
    playbook: Optional[str],
    reports_to: Optional[str],
    tags: tuple[str, ...],
) -> None:
    """Register an agent with ROLE under NAME."""
    operator = get_operator(obj.store)
    common = {
        "name": name,
        "created_by": operator.id,
        "tags": list(tags),
        "provider": obj.config.session.provider,
        "model": obj.config.session.model,
    }

    if role == "director":
        data = RegisterDirectorInput(**common)
    elif role == "worker":
        data = RegisterWorkerInput(**common, worker_mode=worker_mode, reports_to=reports_to)
    else:
        data = RegisterStewardInput(
            **common, steward_focus=focus, playbook=playbook, reports_to=reports_to
        )

    try:
        agent = obj.registry.register_agent(data)
    except AgentRegistryError as e:
        raise click.ClickException(str(e)) from e

    meta = get_agent_metadata(agent)
    console.print(f"[bold green]Registered {role}:[/bold green] {agent.name} ({agent.id})")
    console.print(f"[bold]Channel:[/bold] {meta.channel_id}")


@main.command("reconcile")
@click.option("--apply", is_flag=True, help="Remove orphans instead of only reporting them.")
@click.option("-f", "--force", is_flag=True, help="Remove worktrees with uncommitted changes.")
@click.pass_obj
def reconcile(obj: CliContext, apply: bool, force: bool) -> None:
    """Find worktrees and channels nothing references."""
    service = ReconcileService(obj.manager, obj.store)
    report = service.reconcile(dry_run=not apply, force=force)

    if report.is_clean:
        console.print("[green]Nothing to reconcile.[/green]")
        return

    for path in report.orphaned_worktrees:
        console.print(f"[yellow]Orphaned worktree:[/yellow] {path}")
    for channel_id in report.orphaned_channels:
        console.print(f"[yellow]Orphaned channel:[/yellow]  {channel_id}")
    for agent_id in report.agents_missing_channel:
        console.print(f"[yellow]Agent without channel:[/yellow] {agent_id}")
    for skipped in report.skipped:
        console.print(f"[dim]Skipped {skipped}[/dim]")
    for error in report.errors:
        console.print(f"[red]{error}[/red]")

    if report.dry_run:
        console.print()
        console.print("[dim]Dry run. Re-run with --apply to clean up.[/dim]")
    else:
        console.print()
        console.print(
            f"[bold green]Removed {report.worktrees_removed} worktrees, "
            f"deleted {report.channels_deleted} channels, "
            f"relinked {report.agents_relinked} agents[/bold green]"
        )


if __name__ == "__main__":
    main()
