"""Console and JSON rendering of status, sync, gc and store results"""
from rich.console import Console
from rich.markup import escape
from rich.table import Table
from typing import List, Optional

from megarepo.constants import (
    GC_COLUMNS,
    STATUS_COLORS,
    STATUS_COLUMNS,
    SYMBOL_MISSING,
    SYMBOL_NESTED,
    SYMBOL_OK,
    SYMBOL_PINNED,
    SYNC_COLUMNS,
    SHORT_SHA_LENGTH,
)
from megarepo.models.results import (
    AddMemberResult,
    ExecResult,
    GcResult,
    MegarepoSyncResult,
    MemberSyncResult,
    StoreRepoResult,
    StoreWorktreeStatus,
)
from megarepo.models.status import MemberStatus, WorkspaceStatus
from megarepo.utils.logging import get_logger

logger = get_logger(__name__)


def _short(commit: Optional[str]) -> str:
    return commit[:SHORT_SHA_LENGTH] if commit else ""


def _member_state(member: MemberStatus) -> str:
    if not member.symlink_exists:
        return f"[red]{SYMBOL_MISSING} not synced[/red]"
    if not member.exists:
        return f"[red]{SYMBOL_MISSING} missing[/red]"
    if member.ref_mismatch or member.symlink_drift:
        return "[red]drift[/red]"
    if member.git_status and member.git_status.is_dirty:
        return f"[yellow]dirty ({member.git_status.changes_count})[/yellow]"
    if member.git_status and member.git_status.has_unpushed:
        return "[yellow]unpushed[/yellow]"
    if member.commit_drift:
        return "[yellow]ahead of lock[/yellow]"
    return f"[green]{SYMBOL_OK}[/green]"


def _member_notes(member: MemberStatus) -> str:
    notes = []
    if member.lock_info and member.lock_info.pinned:
        notes.append(f"{SYMBOL_PINNED} pinned")
    if member.ref_mismatch:
        notes.append(f"HEAD is '{member.ref_mismatch.actual_ref}', expected '{member.ref_mismatch.expected_ref}'")
    if member.symlink_drift:
        notes.append(f"links '{member.symlink_drift.symlink_ref}', lock has '{member.symlink_drift.expected_ref}'")
    if member.commit_drift:
        notes.append(f"HEAD {_short(member.commit_drift.local_commit)} vs lock "
                     f"{_short(member.commit_drift.locked_commit)}")
    if member.is_local:
        notes.append("local")
    if member.error:
        notes.append(f"[red]{escape(member.error)}[/red]")
    return "; ".join(notes)


class DisplayService:
    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console()

    def print_json(self, data) -> None:
        self.console.print_json(data=data)

    def display_status(self, status: WorkspaceStatus, show_all: bool = False) -> None:
        """Render a workspace status. Nested members are shown only with show_all."""
        table = Table(title=f"{status.name} ({status.root})")
        for col in STATUS_COLUMNS:
            table.add_column(col.label, max_width=col.width or None)

        def _add_rows(members: List[MemberStatus], depth: int) -> None:
            for member in members:
                indent = ("  " * (depth - 1) + f"{SYMBOL_NESTED} ") if depth else ""
                label = f"{indent}{member.name}"
                if member.is_megarepo:
                    label += " [dim](megarepo)[/dim]"
                ref = member.ref or (member.lock_info.ref if member.lock_info else "")
                if member.ref_type and member.ref_type != "heads":
                    ref = f"{member.ref_type}/{ref}" if member.ref_type != "commits" else _short(ref)
                commit = member.git_status.short_rev if member.git_status else _short(
                    member.lock_info.commit if member.lock_info else None)
                table.add_row(label, member.source, ref or "", commit or "",
                              _member_state(member), _member_notes(member))
                if show_all and member.nested_members:
                    _add_rows(member.nested_members, depth + 1)

        _add_rows(status.members, 0)
        self.console.print(table)

        if status.problems:
            self.console.print("\nProblems:")
            for problem in status.problems:
                color = {"error": "red", "warning": "yellow"}.get(problem.severity, "cyan")
                self.console.print(f"  [{color}]{problem.kind.value}[/{color}] {escape(problem.message)}")
                hint = problem.fix_hint()
                if hint:
                    self.console.print(f"    [dim]fix: {escape(hint)}[/dim]")

        if status.sync_needed:
            self.console.print("\n[yellow]Sync needed:[/yellow]")
            for reason in status.sync_reasons:
                self.console.print(f"  - {escape(reason)}")
        else:
            self.console.print(f"\n[green]{SYMBOL_OK} Workspace is in sync[/green]")
        if status.last_sync_time:
            self.console.print(f"[dim]Last sync: {status.last_sync_time}[/dim]")

    def _sync_row(self, result: MemberSyncResult, prefix: str = ""):
        color = STATUS_COLORS.get(result.status.value, "white")
        if result.previous_commit and result.commit:
            commit = f"{_short(result.previous_commit)} -> {_short(result.commit)}"
        else:
            commit = _short(result.commit)
        return (f"{prefix}{result.name}", f"[{color}]{result.label}[/{color}]", commit, escape(result.message or ""))

    def display_sync(self, result: MegarepoSyncResult) -> None:
        table = Table(title=("Dry run: " if result.dry_run else "") + f"sync {result.root}")
        for col in SYNC_COLUMNS:
            table.add_column(col.label)

        def _add(node: MegarepoSyncResult, prefix: str) -> None:
            for member in node.results:
                table.add_row(*self._sync_row(member, prefix))
            for name, nested in zip(node.nested_megarepos, node.nested_results):
                _add(nested, f"{prefix}{name}/")

        _add(result, "")
        self.console.print(table)

        summary = result.summary
        parts = [f"{count} {label}" for label, count in summary.to_dict().items() if count]
        self.console.print("Summary: " + (", ".join(parts) if parts else "nothing to do"))
        if result.lock_written:
            self.console.print("[dim]Lock file updated[/dim]")

    def display_member_result(self, result: MemberSyncResult) -> None:
        _, label, commit, message = self._sync_row(result)
        self.console.print(f"{result.name}: {label} {commit} {message}".rstrip())

    def display_add(self, result: AddMemberResult) -> None:
        self.console.print(f"Added member [bold]{escape(result.name)}[/bold] ({escape(result.source)})")
        member = result.member_result
        if member is not None:
            self.display_member_result(member)
        elif result.sync_result is None:
            self.console.print("[dim]Run megarepo sync to materialise it[/dim]")

    def display_exec(self, results: List[ExecResult]) -> None:
        for result in results:
            color = "green" if result.ok else "red"
            self.console.print(f"[bold]{escape(result.name)}[/bold] [{color}](exit {result.exit_code})[/{color}]")
            if result.stdout:
                self.console.print(result.stdout.rstrip("\n"), markup=False, highlight=False)
            if result.stderr:
                self.console.print(f"[red]{escape(result.stderr.rstrip())}[/red]", highlight=False)

    def display_gc(self, result: GcResult) -> None:
        for warning in result.warnings:
            self.console.print(f"[yellow]Warning:[/yellow] {escape(warning)}")

        table = Table(title="Dry run: store gc" if result.dry_run else "store gc")
        for col in GC_COLUMNS:
            table.add_column(col.label)
        for entry in result.results:
            color = STATUS_COLORS.get(entry.status.value, "white")
            label = "would remove" if entry.status.value == "would_remove" else entry.status.value
            table.add_row(entry.repo, f"{entry.ref_type}/{entry.ref}", f"[{color}]{label}[/{color}]",
                          escape(entry.message or ""))
        self.console.print(table)

        for repo in result.removed_bare_repos:
            verb = "Would remove" if result.dry_run else "Removed"
            self.console.print(f"{verb} bare repository {repo}")

    def display_store_results(self, results: List[StoreRepoResult]) -> None:
        for entry in results:
            color = STATUS_COLORS.get(entry.status, "green" if entry.status != "error" else "red")
            suffix = f" ({escape(entry.message)})" if entry.message else ""
            self.console.print(f"{entry.repo}: [{color}]{entry.status}[/{color}]{suffix}")

    def display_store_status(self, statuses: List[StoreWorktreeStatus]) -> None:
        table = Table(title="store status")
        for label in ("Repository", "Ref", "State"):
            table.add_column(label)
        for entry in statuses:
            if entry.broken:
                state = "[red]broken[/red]"
            elif entry.is_dirty:
                state = f"[yellow]dirty ({entry.changes_count})[/yellow]"
            elif entry.has_unpushed:
                state = "[yellow]unpushed[/yellow]"
            else:
                state = f"[green]{SYMBOL_OK}[/green]"
            table.add_row(entry.repo, f"{entry.ref_type}/{entry.ref}", state)
        self.console.print(table)
