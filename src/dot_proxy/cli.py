"""Command-line interface for dot"""

import asyncio
import functools
import logging
from pathlib import Path
from typing import Optional

import click
from git import Git, GitCommandError

from .clone import CloneDiscovery
from .configuration import ConfigManager
from .exceptions import DotError, ExitCode, PartialClone
from .github import get_hosting_client
from .index import GlobalIndexManager
from .logging_config import configure_logging, verbosity_to_level
from .project import ProjectManager
from .transaction import TransactionReport

logger = logging.getLogger(__name__)


class CliContext:
    """Options shared by every command; configuration is loaded on first use."""

    def __init__(self, config_path: Optional[Path], skip_hidden: bool, atomic: bool):
        self.config_path = config_path
        self.skip_hidden = skip_hidden
        self.atomic = atomic
        self._manager: Optional[ConfigManager] = None

    @property
    def manager(self) -> ConfigManager:
        if self._manager is None:
            self._manager = ConfigManager.load(self.config_path)
        return self._manager

    @property
    def config(self):
        return self.manager.config

    def project(self, hosting=None) -> ProjectManager:
        return ProjectManager(
            Path.cwd(),
            self.config,
            GlobalIndexManager(self.config, hosting=hosting),
            hosting=hosting,
            skip_hidden=self.skip_hidden,
            atomic=self.atomic,
        )


def run_command(func):
    """Run a command body, mapping dot errors and interrupts to exit codes."""

    @functools.wraps(func)
    @click.pass_context
    def wrapper(ctx: click.Context, *args, **kwargs):
        try:
            result = func(ctx.obj, *args, **kwargs)
            if asyncio.iscoroutine(result):
                asyncio.run(result)
        except DotError as e:
            logger.debug("Command failed", exc_info=True)
            click.echo(f"Error: {e.message}", err=True)
            ctx.exit(int(e.exit_code))
        except KeyboardInterrupt:
            click.echo("Interrupted", err=True)
            ctx.exit(int(ExitCode.INTERRUPTED))

    return wrapper


def echo_report(report: TransactionReport) -> None:
    """Per-repository outcome table."""
    if not report.results:
        click.echo("No repositories to process")
        return
    width = max(len(r.name) for r in report.results)
    for row in report.results:
        detail = row.result.reason if row.result.is_failed else row.result.message
        click.echo(f"  {row.name:<{width}}  {row.result.kind.value:<8} {detail}")
    for handle in report.not_reached:
        click.echo(f"  {handle.display_name:<{width}}  skipped")


def finish(report: TransactionReport, success: str) -> None:
    if not report.atomic or report.failed:
        echo_report(report)
    report.raise_for_state()
    click.echo(success)


@click.group()
@click.option("--skip-hidden", is_flag=True, help="Operate on the main repository only")
@click.option("--no-atomic", is_flag=True, help="Continue after failures instead of rolling back")
@click.option("-v", "--verbose", count=True, help="Increase log verbosity (-v info, -vv debug)")
@click.option("--json-logs", is_flag=True, help="Emit logs as JSON lines on stderr")
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Configuration file (default ~/.dot/dot.conf)",
)
@click.version_option(package_name="dot-proxy")
@click.pass_context
def main(
    ctx: click.Context,
    skip_hidden: bool,
    no_atomic: bool,
    verbose: int,
    json_logs: bool,
    config_path: Optional[Path],
) -> None:
    """dot - manage a main repository and its hidden directories as one"""
    configure_logging(verbosity_to_level(verbose), json_output=json_logs)
    ctx.obj = CliContext(config_path, skip_hidden=skip_hidden, atomic=not no_atomic)


@main.command()
@click.option("--organization", "-o", help="Organization that stores hidden repositories")
@click.option("--token", help="GitHub token (optional, the gh CLI is used otherwise)")
@click.option("--skip-index", is_flag=True, help="Do not create or clone the index repository")
@run_command
async def setup(obj: CliContext, organization: Optional[str], token: Optional[str], skip_index: bool):
    """Interactive first-time setup"""
    click.echo("Step 1/3: checking git configuration")
    user = _global_git_user()
    if user == "unknown":
        click.echo("  git user.name is not configured: git config --global user.name \"Your Name\"")
    else:
        click.echo(f"  git user: {user}")

    click.echo("Step 2/3: organization and credentials")
    manager = obj.manager
    if not organization:
        organization = click.prompt(
            "Organization (or your user name) for hidden repositories",
            default=manager.get_default_organization() or None,
        )
    manager.add_organization(organization)
    manager.set_default_organization(organization)
    if token is None and not manager.config.resolve_github_token():
        token = click.prompt(
            "GitHub token (leave empty to use the gh CLI)",
            default="",
            show_default=False,
            hide_input=True,
        )
    if token:
        manager.config.github_token = token
        manager.save()
    click.echo(f"  configuration written to {manager.config_path}")

    if skip_index:
        return
    click.echo("Step 3/3: index repository")
    hosting = get_hosting_client(manager.config)
    index = GlobalIndexManager(manager.config, hosting=hosting)
    try:
        await index.open()
        click.echo(f"  index ready at {index.local_path}")
    finally:
        index.close()
        await hosting.close()
    click.echo("Setup complete. Next: dot init <directory>")


def _global_git_user() -> str:
    try:
        return Git().config("--get", "user.name").strip() or "unknown"
    except GitCommandError:
        return "unknown"


@main.group()
def org():
    """Manage authorized organizations"""


@org.command("add")
@click.argument("organization")
@click.option("--default", "make_default", is_flag=True, help="Also make it the default")
@run_command
def org_add(obj: CliContext, organization: str, make_default: bool):
    obj.manager.add_organization(organization)
    if make_default:
        obj.manager.set_default_organization(organization)
    click.echo(f"Authorized organization {organization}")


@org.command("remove")
@click.argument("organization")
@run_command
def org_remove(obj: CliContext, organization: str):
    obj.manager.remove_organization(organization)
    click.echo(f"Removed organization {organization}")


@org.command("default")
@click.argument("organization")
@run_command
def org_default(obj: CliContext, organization: str):
    obj.manager.set_default_organization(organization)
    click.echo(f"Default organization is now {organization}")


@org.command("list")
@run_command
def org_list(obj: CliContext):
    config = obj.config
    if not config.authorized_organizations:
        click.echo("No authorized organizations")
        return
    for name in config.authorized_organizations:
        marker = "*" if name == config.default_organization else " "
        click.echo(f"{marker} {name}")


@main.command()
@click.argument("directories", nargs=-1, required=True)
@run_command
async def init(obj: CliContext, directories):
    """Create hidden repositories for DIRECTORIES"""
    hosting = get_hosting_client(obj.config)
    project = obj.project(hosting)
    try:
        report = await project.init(directories)
    finally:
        project.index.close()
        await hosting.close()
    finish(report, f"Initialized {len(directories)} hidden director{'y' if len(directories) == 1 else 'ies'}")


@main.command()
@run_command
async def status(obj: CliContext):
    """Show the status of every repository"""
    project = obj.project()
    try:
        rows = await project.status()
    finally:
        project.index.close()
    for name, text in rows:
        click.echo(f"=== {name} ===")
        click.echo(text.rstrip() or "clean")


@main.command()
@click.argument("paths", nargs=-1, required=True)
@run_command
async def add(obj: CliContext, paths):
    """Stage PATHS (relative to the project root) in their repositories"""
    project = obj.project()
    try:
        report = await project.add(paths)
    finally:
        project.index.close()
    finish(report, "Staged changes")


@main.command()
@click.option("-m", "--message", required=True, help="Commit message")
@run_command
async def commit(obj: CliContext, message: str):
    """Commit staged changes in every repository"""
    project = obj.project()
    try:
        report = await project.commit(message)
    finally:
        project.index.close()
    finish(report, "Committed")


@main.command()
@run_command
async def push(obj: CliContext):
    """Push every repository, hidden directories first"""
    project = obj.project()
    try:
        report = await project.push()
    finally:
        project.index.close()
    finish(report, "Pushed")


@main.command()
@click.argument("url")
@click.argument("destination", required=False, type=click.Path(file_okay=False, path_type=Path))
@run_command
async def clone(obj: CliContext, url: str, destination: Optional[Path]):
    """Clone a project and its hidden directories"""
    index = GlobalIndexManager(obj.config)
    try:
        outcome = await CloneDiscovery(obj.config, index).clone(url, destination)
    finally:
        index.close()
    click.echo(f"Cloned main repository into {outcome.main_path}")
    for path in outcome.cloned:
        click.echo(f"  cloned {path}")
    try:
        outcome.raise_for_state()
    except PartialClone as e:
        for path, reason in sorted(e.failed.items()):
            click.echo(f"  failed {path}: {reason}", err=True)
        click.echo(f"The main repository at {outcome.main_path} is usable", err=True)
        raise
