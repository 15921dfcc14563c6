"""Command-line argument parsing for megarepo."""

import argparse
from megarepo.__version__ import __version__


def _add_json(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--json", action="store_true", help="Print machine-readable JSON output")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="megarepo",
        description="Compose many git repositories into one workspace through a shared store",
        epilog="The store defaults to $MEGAREPO_STORE or ~/.megarepo. "
        "Set MEGAREPO_ROOT to target a workspace from anywhere.",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Show verbose output")
    parser.add_argument("--version", action="version", version=f"megarepo {__version__}")
    parser.add_argument(
        "--debug", action="store_true", help="Show debug information for troubleshooting"
    )
    parser.add_argument("--store", metavar="PATH", help="Store root (overrides $MEGAREPO_STORE)")
    parser.add_argument(
        "-C", "--root", metavar="DIR", help="Workspace directory (default: current directory)"
    )
    parser.add_argument(
        "--git-protocol",
        choices=["auto", "ssh", "https"],
        default="auto",
        help="Protocol used for GitHub shorthand sources (default: auto)",
    )
    parser.add_argument(
        "--workers",
        type=int,
        metavar="N",
        help="Number of parallel workers (default: auto-detect based on CPU and threading mode)",
    )
    parser.add_argument(
        "--sequential",
        action="store_true",
        help="Force sequential processing (disable parallelism)",
    )

    commands = parser.add_subparsers(dest="command", metavar="COMMAND")
    commands.required = True

    status = commands.add_parser("status", help="Show workspace status and drift")
    status.add_argument("--all", action="store_true", help="Also list members of nested megarepos")
    _add_json(status)

    sync = commands.add_parser("sync", help="Reconcile the workspace with megarepo.json and the lock")
    sync.add_argument(
        "--dry-run",
        action="store_true",
        help="Preview mode - show what would change without touching anything",
    )
    sync.add_argument(
        "--frozen",
        action="store_true",
        help="Materialise exactly what the lock says; never fetch or write the lock",
    )
    sync.add_argument("--pull", action="store_true", help="Fetch and fast-forward unpinned members")
    sync.add_argument(
        "--force", action="store_true", help="Relink or update even when worktrees have local work"
    )
    sync.add_argument("--deep", action="store_true", help="Recurse into nested megarepos")
    sync.add_argument("--only", nargs="+", default=[], metavar="NAME", help="Sync only these members")
    sync.add_argument("--skip", nargs="+", default=[], metavar="NAME", help="Skip these members")
    _add_json(sync)

    pin = commands.add_parser("pin", help="Pin a member to its current (or a given) commit")
    pin.add_argument("name", help="Member name")
    pin.add_argument("-c", "--commit", help="Commit to pin to (default: current HEAD)")
    _add_json(pin)

    unpin = commands.add_parser("unpin", help="Let a pinned member follow its ref again")
    unpin.add_argument("name", help="Member name")
    _add_json(unpin)

    add_member = commands.add_parser("add", help="Add a member to megarepo.json and sync it")
    add_member.add_argument("source", help="owner/repo, a git URL or a local path, optionally with #ref")
    add_member.add_argument("-n", "--name", help="Member name (default: the repository name)")
    add_member.add_argument(
        "--no-sync", dest="sync", action="store_false", help="Only edit megarepo.json; do not sync"
    )
    _add_json(add_member)

    exec_parser = commands.add_parser("exec", help="Run a shell command in every member directory")
    exec_parser.add_argument("exec_command", metavar="CMD", help="Command to run with sh -c")
    exec_parser.add_argument("-m", "--member", help="Run only in this member")
    exec_parser.add_argument(
        "--mode",
        choices=["parallel", "sequential"],
        default="parallel",
        help="Run members in parallel (default) or one after another",
    )
    _add_json(exec_parser)

    store = commands.add_parser("store", help="Inspect and maintain the shared store")
    store_commands = store.add_subparsers(dest="store_command", metavar="STORE_COMMAND")
    store_commands.required = True

    add = store_commands.add_parser("add", help="Clone a repository into the store")
    add.add_argument("source", help="owner/repo (GitHub) or a git URL, optionally with #ref")
    add.add_argument("--dry-run", action="store_true", help="Show what would be cloned")
    _add_json(add)

    fetch = store_commands.add_parser("fetch", help="Fetch every repository in the store")
    fetch.add_argument("--dry-run", action="store_true", help="List what would be fetched")
    _add_json(fetch)

    gc = store_commands.add_parser("gc", help="Remove worktrees no lock file references")
    gc.add_argument(
        "--lock",
        nargs="+",
        default=[],
        metavar="PATH",
        help="Lock files or workspace roots whose members must be kept "
        "(default: the current workspace's lock)",
    )
    gc.add_argument("--dry-run", action="store_true", help="Show what would be removed")
    gc.add_argument("--force", action="store_true", help="Also remove dirty or unpushed worktrees")
    gc.add_argument(
        "--prune-bare",
        action="store_true",
        help="Remove bare repositories left without worktrees or lock references",
    )
    gc.add_argument(
        "--all",
        action="store_true",
        help="Ignore lock files and treat every worktree as unused (dirty ones still need --force)",
    )
    _add_json(gc)

    store_status = store_commands.add_parser("status", help="Show every worktree in the store")
    _add_json(store_status)

    ls = store_commands.add_parser("ls", help="List repositories in the store")
    _add_json(ls)

    return parser


def parse_args(argv=None):
    """Parse command-line arguments."""
    return build_parser().parse_args(argv)
