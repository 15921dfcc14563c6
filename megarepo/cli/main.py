"""Command-line interface for megarepo"""

import sys

from rich.console import Console
from rich.markup import escape

from megarepo.cli.args import parse_args
from megarepo.config import Config
from megarepo.core.megarepo import Megarepo, install_signal_handlers
from megarepo.exceptions import MegarepoError
from megarepo.models.results import SyncStatus
from megarepo.services.display_service import DisplayService
from megarepo.services.sync_service import SyncOptions
from megarepo.utils.logging import get_logger, setup_logging
from megarepo.utils.threading import get_optimal_worker_count, is_free_threading_enabled

console = Console()
logger = get_logger(__name__)


def _build_config(args) -> Config:
    return Config(
        store_path=args.store,
        dry_run=getattr(args, "dry_run", False),
        force=getattr(args, "force", False),
        frozen=getattr(args, "frozen", False),
        pull=getattr(args, "pull", False),
        deep=getattr(args, "deep", False),
        verbose=args.verbose,
        debug=args.debug,
        sequential=args.sequential,
        workers=args.workers,
        git_protocol=args.git_protocol,
    )


def _show_debug_info(config: Config) -> None:
    console.print("[yellow]Debug mode enabled[/yellow]")
    console.print("[yellow]Threading Information:[/yellow]")
    console.print(f"  Python version: {sys.version.split()[0]}")
    console.print(f"  Free-threading enabled: {is_free_threading_enabled()}")
    console.print(f"  Optimal workers: {get_optimal_worker_count(config.workers)}")
    console.print("[yellow]Configuration:[/yellow]")
    for key, value in config.to_dict().items():
        console.print(f"  {key}: {value}")


def run_status(app: Megarepo, args, display: DisplayService) -> int:
    status = app.status(args.root)
    if args.json:
        display.print_json(status.to_dict())
    else:
        display.display_status(status, show_all=args.all)
    return 0


def run_sync(app: Megarepo, args, display: DisplayService) -> int:
    options = SyncOptions.from_config(app.config, only=args.only, skip=args.skip)
    result = app.sync(args.root, options)
    if args.json:
        display.print_json(result.to_dict())
    else:
        display.display_sync(result)
    return 1 if result.has_errors else 0


def run_pin(app: Megarepo, args, display: DisplayService) -> int:
    if args.command == "pin":
        result = app.pin(args.name, commit=args.commit, root=args.root)
    else:
        result = app.unpin(args.name, root=args.root)
    if args.json:
        display.print_json(result.to_dict())
    else:
        display.display_member_result(result)
    return 1 if result.status is SyncStatus.ERROR else 0


def run_add(app: Megarepo, args, display: DisplayService) -> int:
    result = app.add(args.source, name=args.name, sync=args.sync, root=args.root)
    if args.json:
        display.print_json(result.to_dict())
    else:
        display.display_add(result)
    return 1 if result.has_errors else 0


def run_exec(app: Megarepo, args, display: DisplayService) -> int:
    results = app.exec_command(args.exec_command, member=args.member,
                               parallel=args.mode == "parallel", root=args.root)
    if args.json:
        display.print_json({"results": [r.to_dict() for r in results]})
    else:
        display.display_exec(results)
    return 0 if all(r.ok for r in results) else 1


def run_store(app: Megarepo, args, display: DisplayService) -> int:
    command = args.store_command
    if command == "add":
        results = [app.store_add(args.source, dry_run=args.dry_run)]
    elif command == "fetch":
        results = app.store_fetch(dry_run=args.dry_run)
    elif command == "gc":
        gc_result = app.gc(args.lock, force=args.force, dry_run=args.dry_run,
                           prune_bare=args.prune_bare, remove_all=args.all, root=args.root)
        if args.json:
            display.print_json(gc_result.to_dict())
        else:
            display.display_gc(gc_result)
        return 1 if gc_result.has_errors else 0
    elif command == "status":
        statuses = app.store_status()
        if args.json:
            display.print_json([s.to_dict() for s in statuses])
        else:
            display.display_store_status(statuses)
        return 0
    else:
        repos = app.store_ls()
        if args.json:
            display.print_json(repos)
        else:
            for repo in repos:
                console.print(repo)
        return 0

    if args.json:
        display.print_json([r.to_dict() for r in results])
    else:
        display.display_store_results(results)
    return 1 if any(r.status == "error" for r in results) else 0


COMMANDS = {
    "status": run_status,
    "sync": run_sync,
    "pin": run_pin,
    "unpin": run_pin,
    "add": run_add,
    "exec": run_exec,
    "store": run_store,
}


def main(argv=None) -> int:
    """Main entry point for the application."""
    parsed_args = None
    try:
        parsed_args = parse_args(argv)

        # Setup logging before creating Megarepo
        setup_logging(verbose=parsed_args.verbose, debug=parsed_args.debug)
        install_signal_handlers()

        config = _build_config(parsed_args)
        if parsed_args.debug:
            _show_debug_info(config)

        app = Megarepo(config)
        display = DisplayService(console)
        return COMMANDS[parsed_args.command](app, parsed_args, display)
    except KeyboardInterrupt:
        console.print("\n[yellow]Operation cancelled by user[/yellow]")
        return 1
    except MegarepoError as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        hint = getattr(e, "hint", None)
        if hint:
            console.print(f"[dim]hint: {escape(hint)}[/dim]")
        if parsed_args is not None and parsed_args.debug:
            console.print_exception()
        return 1
    except ValueError as e:
        # Config validation
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        return 1


if __name__ == "__main__":
    sys.exit(main())
