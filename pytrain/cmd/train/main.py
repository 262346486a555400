"""CLI entry point."""

import functools
import os
import sys
import click
import logging
from typing import Any, Callable, Dict, Optional, TypeVar, cast
from click import Context

from ...config import Config
from ...config.config_parser import parse_config, save_user_config, user_config_file_path
from ...config.models import AutoResolveStrategy, ForcePushMode
from ...errors import CancelledByUser, TrainError
from ...git import RealGit
from ...config import default_config
from ...train import StackManager

# Get module logger
logger = logging.getLogger(__name__)

F = TypeVar('F', bound=Callable[..., Any])

class AliasedGroup(click.Group):
    """Command group with support for aliases."""

    def __init__(self, name: Optional[str] = None, commands: Optional[Dict[str, click.Command]] = None, **attrs: Any) -> None:
        """Initialize with aliases map."""
        super().__init__(name, commands, **attrs)
        self.aliases: Dict[str, str] = {}

    def add_alias(self, alias: str, command: str) -> None:
        """Add an alias for a command."""
        self.aliases[alias] = command

    def get_command(self, ctx: Context, cmd_name: str) -> Optional[click.Command]:
        """Get a command by name, supporting aliases."""
        if cmd_name in self.aliases:
            cmd_name = self.aliases[cmd_name]
        return super().get_command(ctx, cmd_name)

@click.group(cls=AliasedGroup)
@click.pass_context
def cli(ctx: Context) -> None:
    """git-train - stacked branches with GitLab merge requests."""
    ctx.obj = {}

def common_options(func: F) -> F:
    """-C/--directory and -v/--verbose, shared by every command."""
    func = click.option('-v', '--verbose', count=True,
                        help="Increase verbosity (-v debug, -vv also HTTP)")(func)
    func = click.option('-C', '--directory', type=click.Path(exists=True, file_okay=False, dir_okay=True),
                        help='Run as if train was started in DIRECTORY instead of the current working directory')(func)
    return func

def handle_errors(func: F) -> F:
    """Map pytrain errors to log output and exit codes."""
    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except CancelledByUser:
            logger.info("Cancelled")
            sys.exit(130)
        except TrainError as e:
            logger.error(f"Error: {e}")
            if e.hint:
                logger.info(f"Hint: {e.hint}")
            sys.exit(1)
    return cast(F, wrapper)

def setup_manager(directory: Optional[str] = None, verbose: int = 0,
                  pretend: bool = False) -> StackManager:
    """Setup logging, git command, config and the stack manager."""
    from ... import setup_logging
    setup_logging(verbose)

    if directory:
        os.chdir(directory)

    git_cmd = RealGit(default_config())
    try:
        git_cmd.run_cmd("rev-parse --git-dir")
    except TrainError as e:
        logger.error(f"{e}")
        sys.exit(2)

    config = Config(parse_config(git_cmd))
    config.tool.pretend = pretend
    git_cmd = RealGit(config)
    return StackManager(config, git_cmd)

@cli.command(name="create", help="Create a new stack from the current branch")
@click.argument('name')
@common_options
@handle_errors
def create(name: str, directory: Optional[str], verbose: int) -> None:
    setup_manager(directory, verbose).create_stack(name)

@cli.command(name="save", help="Commit working changes to the current stack branch and update dependants")
@click.option('-m', '--message', required=True, help="Commit message")
@common_options
@handle_errors
def save(message: str, directory: Optional[str], verbose: int) -> None:
    setup_manager(directory, verbose).commit_changes(message)

@cli.command(name="amend", help="Amend the tip of the current stack branch and update dependants")
@click.option('-m', '--message', help="New commit message")
@common_options
@handle_errors
def amend(message: Optional[str], directory: Optional[str], verbose: int) -> None:
    setup_manager(directory, verbose).amend_changes(message)

@cli.command(name="add", help="Add the current branch to the stack")
@click.option('--parent', '-p', help="Parent branch (detected from history when omitted)")
@common_options
@handle_errors
def add(parent: Optional[str], directory: Optional[str], verbose: int) -> None:
    setup_manager(directory, verbose).add_branch(parent)

@cli.command(name="status", help="Show the stack hierarchy and merge request states")
@common_options
@handle_errors
def status(directory: Optional[str], verbose: int) -> None:
    setup_manager(directory, verbose).show_status()

@cli.command(name="list", help="List all stacks")
@common_options
@handle_errors
def list_cmd(directory: Optional[str], verbose: int) -> None:
    setup_manager(directory, verbose).list_stacks()

@cli.command(name="switch", help="Make another stack the current one")
@click.argument('stack')
@common_options
@handle_errors
def switch(stack: str, directory: Optional[str], verbose: int) -> None:
    setup_manager(directory, verbose).switch_stack(stack)

@cli.command(name="delete", help="Delete a stack (branches are kept)")
@click.argument('stack')
@click.option('--force', '-f', is_flag=True, help="Do not ask for confirmation")
@common_options
@handle_errors
def delete(stack: str, force: bool, directory: Optional[str], verbose: int) -> None:
    setup_manager(directory, verbose).delete_stack(stack, force)

@cli.command(name="push", help="Push every stack branch and create or update merge requests")
@click.option('--pretend', is_flag=True, help="Don't actually push or touch merge requests, just show what would happen")
@common_options
@handle_errors
def push(pretend: bool, directory: Optional[str], verbose: int) -> None:
    setup_manager(directory, verbose, pretend=pretend).push_stack()

@cli.command(name="sync", help="Update the base branch, rebase the stack on it and fix merge request targets")
@common_options
@handle_errors
def sync(directory: Optional[str], verbose: int) -> None:
    setup_manager(directory, verbose).sync_with_remote()

@cli.command(name="navigate", help="Interactively move around the stack")
@common_options
@handle_errors
def navigate(directory: Optional[str], verbose: int) -> None:
    setup_manager(directory, verbose).navigate()

@cli.group(name="resolve", help="Inspect and resolve an interrupted rebase, merge or cherry-pick")
def resolve() -> None:
    pass

@resolve.command(name="check", help="Show repository state and conflicted files")
@common_options
@handle_errors
def resolve_check(directory: Optional[str], verbose: int) -> None:
    setup_manager(directory, verbose).resolve_check()

@resolve.command(name="interactive", help="Open conflicted files in the editor and continue")
@common_options
@handle_errors
def resolve_interactive(directory: Optional[str], verbose: int) -> None:
    setup_manager(directory, verbose).resolve_interactive()

@resolve.command(name="auto", help="Try automatic resolution and continue")
@common_options
@handle_errors
def resolve_auto(directory: Optional[str], verbose: int) -> None:
    if not setup_manager(directory, verbose).resolve_auto():
        sys.exit(1)

@resolve.command(name="abort", help="Abort the current operation")
@common_options
@handle_errors
def resolve_abort(directory: Optional[str], verbose: int) -> None:
    setup_manager(directory, verbose).resolve_abort()

@resolve.command(name="continue", help="Stage resolved files and continue the current operation")
@common_options
@handle_errors
def resolve_continue(directory: Optional[str], verbose: int) -> None:
    setup_manager(directory, verbose).resolve_continue()

@cli.group(name="config", help="Show or change user configuration")
def config_group() -> None:
    pass

@config_group.command(name="show", help="Print the effective configuration")
@common_options
@handle_errors
def config_show(directory: Optional[str], verbose: int) -> None:
    manager = setup_manager(directory, verbose)
    click.echo(f"# user config: {user_config_file_path()}")
    click.echo(manager.config.model_dump_json(indent=2))

@config_group.command(name="set-editor", help="Set the editor used for conflict resolution")
@click.argument('editor')
@click.option('--arg', 'args', multiple=True, help="Extra editor argument (repeatable)")
@handle_errors
def config_set_editor(editor: str, args: tuple) -> None:
    values: Dict[str, Any] = {'command': editor}
    if args:
        values['args'] = list(args)
    save_user_config('editor', values)

@config_group.command(name="set-strategy", help="Set the automatic conflict resolution strategy")
@click.argument('strategy', type=click.Choice([s.value for s in AutoResolveStrategy]))
@handle_errors
def config_set_strategy(strategy: str) -> None:
    save_user_config('conflict', {'auto_resolve_strategy': strategy})

@config_group.command(name="set-force-push", help="Set the force push policy")
@click.argument('mode', type=click.Choice([m.value for m in ForcePushMode]))
@handle_errors
def config_set_force_push(mode: str) -> None:
    save_user_config('conflict', {'force_push': mode})

@config_group.command(name="setup", help="Interactively configure editor, strategy and force push policy")
@handle_errors
def config_setup() -> None:
    from ... import setup_logging
    setup_logging(0)
    current = Config(parse_config())
    try:
        editor = click.prompt("Editor command", default=current.editor.command)
        strategy = click.prompt("Auto-resolve strategy",
                                type=click.Choice([s.value for s in AutoResolveStrategy]),
                                default=current.conflict.auto_resolve_strategy.value)
        force_push = click.prompt("Force push policy",
                                  type=click.Choice([m.value for m in ForcePushMode]),
                                  default=current.conflict.force_push.value)
    except click.Abort as e:
        raise CancelledByUser("config setup") from e
    save_user_config('editor', {'command': editor})
    save_user_config('conflict', {'auto_resolve_strategy': strategy, 'force_push': force_push})

def main() -> None:
    """Main entry point."""
    cli.aliases['commit'] = 'save'
    cli.aliases['st'] = 'status'
    cli.aliases['ls'] = 'list'
    cli.aliases['nav'] = 'navigate'
    cli(obj={})

if __name__ == "__main__":
    main()
