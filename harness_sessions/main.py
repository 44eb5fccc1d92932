#!/usr/bin/env python3
"""Harness Sessions - index, search and attribute AI coding agent sessions.

Entry point for the CLI application.
"""

import argparse
import asyncio
import json
import logging
import sys
from datetime import datetime, timedelta
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table
from rich.text import Text

from .models import to_dict

console = Console()


def setup_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
    )


def _print_json(data) -> None:
    print(json.dumps(data, indent=2, ensure_ascii=False))


def _fmt_time(moment: Optional[datetime]) -> str:
    if moment is None:
        return "Never"
    return moment.astimezone().strftime("%Y-%m-%d %H:%M")


def cmd_providers(args):
    """List available providers."""
    from .index import CorpusIndexer
    from .providers import get_all_providers
    from . import config

    providers = get_all_providers()
    table = Table(title="Providers")
    table.add_column("")
    table.add_column("Provider")
    table.add_column("Path")
    table.add_column("Status")

    stats = {}
    if args.status:
        installed = [p for p in providers if p.is_installed()]
        stats = asyncio.run(CorpusIndexer(providers=installed, resolve_remotes=False).provider_stats())
        table.add_column("Sessions", justify="right")

    for p in providers:
        if not config.is_provider_enabled(p.kind):
            status = Text("disabled", style="dim")
        elif p.is_installed():
            status = Text("available", style="green")
        else:
            status = Text("not found", style="red")
        row = [p.icon, Text(p.display_name, style=p.color), str(p.get_sessions_dir()), status]
        if args.status:
            row.append(str(stats.get(p.name, {}).get("session_count", 0)))
        table.add_row(*row)

    console.print(table)


def cmd_index(args):
    """Build the index and list projects with their sessions."""
    from .index import CorpusIndexer

    index = asyncio.run(CorpusIndexer().build_index())
    projects = index.projects
    if args.project:
        needle = args.project.lower()
        projects = [p for p in projects if needle in p.project_name.lower() or needle in p.project_id.lower()]
    projects = projects[:args.limit]

    if args.json:
        _print_json({
            "projects": [
                {**to_dict(p), "sessions": [to_dict(s) for s in index.project_sessions(p.project_id)]}
                for p in projects
            ]
        })
        return

    if not projects:
        console.print("No sessions found.")
        return

    for project in projects:
        title = f"{project.project_name}  ({project.session_count} sessions"
        if project.is_active:
            title += f", {project.active_session_count} active"
        title += ")"
        table = Table(title=title, title_justify="left", show_edge=False)
        table.add_column("Source")
        table.add_column("Session")
        table.add_column("Last Activity")
        table.add_column("Msgs", justify="right")
        table.add_column("Prompt", overflow="ellipsis", no_wrap=True, max_width=60)
        for s in index.project_sessions(project.project_id):
            session_id = s.session_id[:12]
            if s.is_active:
                session_id = Text(session_id, style="bold green")
            prompt = (s.summary_goal or s.first_prompt or "").replace("\n", " ")
            table.add_row(s.source.value, session_id, _fmt_time(s.last_activity_at), str(s.message_count), prompt)
        console.print(table)
        console.print()


def cmd_sessions(args):
    """List recent sessions across every provider."""
    from .dates import utc_now
    from .providers import list_all_sessions

    since = utc_now() - timedelta(days=args.days) if args.days else None
    sessions = asyncio.run(list_all_sessions(since=since, project_filter=args.project))[:args.limit]

    if args.json:
        _print_json([to_dict(s) for s in sessions])
        return

    if not sessions:
        console.print("No sessions found.")
        return

    table = Table(title=f"{len(sessions)} sessions")
    table.add_column("Source")
    table.add_column("Session")
    table.add_column("Project")
    table.add_column("Last Activity")
    table.add_column("Prompt", overflow="ellipsis", no_wrap=True, max_width=60)
    for s in sessions:
        session_id = s.session_id[:12]
        if s.is_active:
            session_id = Text(session_id, style="bold green")
        prompt = (s.summary_goal or s.first_prompt or "").replace("\n", " ")
        table.add_row(s.source.value, session_id, s.project_name, _fmt_time(s.last_activity_at), prompt)
    console.print(table)


def cmd_search(args):
    """Search session logs for a pattern."""
    from .deps import static_probe
    from .search import ContentSearch, SearchError

    probe = static_probe(ripgrep=False) if args.fallback else None
    search = ContentSearch(probe=probe)
    try:
        matches = asyncio.run(search.search(args.pattern, max_results=args.limit, files_only=args.files_only))
    except SearchError as e:
        console.print(f"[red]Search failed:[/red] {e}")
        sys.exit(1)

    if args.json:
        _print_json([{**to_dict(m), "session_id": search.session_id_for_file(m.file)} for m in matches])
        return

    if not matches:
        print(f"No matches found for: {args.pattern}")
        return

    table = Table(title=f"{len(matches)} matches")
    table.add_column("Session")
    table.add_column("File")
    table.add_column("Line", justify="right")
    if not args.files_only:
        table.add_column("Content", overflow="ellipsis", no_wrap=True, max_width=80)
    for m in matches:
        row = [(search.session_id_for_file(m.file) or "?")[:12], m.file, str(m.line)]
        if not args.files_only:
            row.append(m.content.strip())
        table.add_row(*row)
    console.print(table)


def cmd_transcript(args):
    """Print the transcript of one session."""
    from .index import CorpusIndexer
    from .providers import get_available_providers, provider_for_session

    providers = get_available_providers()
    index = asyncio.run(CorpusIndexer(providers=providers, resolve_remotes=False).build_index())
    session = index.get_session(args.session_id)
    if session is None:
        console.print(f"[red]No unique session matches[/red] {args.session_id}")
        sys.exit(1)

    provider = provider_for_session(session, providers)
    events = provider.list_transcript(session) if provider else []

    if args.json:
        _print_json({"session": to_dict(session), "events": [to_dict(e) for e in events]})
        return

    console.print(f"[bold]{session.project_name}[/bold]  {session.source.value} {session.session_id}")
    for event in events:
        label = event.tool_name if event.type == "tool" else event.type
        style = {"user": "cyan", "assistant": "green"}.get(event.type, "yellow")
        console.print(Text(f"[{label}]", style=style), Text(_fmt_time(event.timestamp), style="dim"))
        if event.content:
            console.print(event.content, markup=False, highlight=False)
        console.print()


def cmd_commit(args):
    """Find the sessions that most likely produced a commit."""
    from .commits import CommitAttributor

    result = asyncio.run(CommitAttributor().find_commit(args.hash))

    if args.json:
        _print_json({
            "commit": to_dict(result.commit) if result.commit else None,
            "sessions": [to_dict(m) for m in result.sessions],
            "error": result.error,
        })
        if not result.ok:
            sys.exit(1)
        return

    if not result.ok:
        console.print(f"[red]{result.error}[/red]")
        sys.exit(1)

    commit = result.commit
    console.print(f"[bold]{commit.hash[:12]}[/bold] {commit.message}")
    console.print(f"  {commit.author}, {commit.date}  ({commit.repository_name}, {len(commit.changed_files)} files)")
    console.print()

    if not result.sessions:
        console.print("No sessions touched these files.")
        return

    table = Table()
    table.add_column("Score", justify="right")
    table.add_column("Session")
    table.add_column("Project")
    table.add_column("Matched Files")
    for m in result.sessions:
        table.add_row(f"{m.score:.2f}", m.session_id[:12], m.project_name, ", ".join(m.matched_files))
    console.print(table)


def cmd_deps(args):
    """Show external tool availability."""
    from .deps import check_deps

    status = asyncio.run(check_deps())
    for name, dep in (("ripgrep", status.ripgrep), ("git", status.git)):
        if dep.ok:
            console.print(f"[green]✓[/green] {name:<8} {dep.version}")
        else:
            console.print(f"[red]✗[/red] {name:<8} not found  [dim]{dep.install or ''}[/dim]")


def main():
    """Main entry point for harness-sessions CLI."""
    parser = argparse.ArgumentParser(
        description="Index, search and attribute sessions from AI coding assistants",
        prog="harness-sessions",
    )
    parser.add_argument("--version", action="store_true", help="Show version")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    providers_parser = subparsers.add_parser("providers", help="List available providers")
    providers_parser.add_argument("--status", "-s", action="store_true", help="Include session counts")

    index_parser = subparsers.add_parser("index", help="List projects and sessions")
    index_parser.add_argument("--project", "-p", help="Filter to projects matching this text")
    index_parser.add_argument("--limit", "-l", type=int, default=20, help="Max projects to show")
    index_parser.add_argument("--json", action="store_true", help="JSON output")

    sessions_parser = subparsers.add_parser("sessions", help="List recent sessions, newest first")
    sessions_parser.add_argument("--days", "-d", type=float, help="Only sessions changed in the last N days")
    sessions_parser.add_argument("--project", "-p", help="Filter to project names containing this text")
    sessions_parser.add_argument("--limit", "-l", type=int, default=50, help="Max sessions to show")
    sessions_parser.add_argument("--json", action="store_true", help="JSON output")

    search_parser = subparsers.add_parser("search", help="Search session logs")
    search_parser.add_argument("pattern", help="Case-insensitive regex")
    search_parser.add_argument("--limit", "-l", type=int, default=100, help="Max matches")
    search_parser.add_argument("--files-only", action="store_true", help="One match per file")
    search_parser.add_argument("--fallback", action="store_true", help="Skip ripgrep and scan in-process")
    search_parser.add_argument("--json", action="store_true", help="JSON output")

    transcript_parser = subparsers.add_parser("transcript", help="Show a session transcript")
    transcript_parser.add_argument("session_id", help="Session id or unique prefix")
    transcript_parser.add_argument("--json", action="store_true", help="JSON output")

    commit_parser = subparsers.add_parser("commit", help="Find sessions behind a commit")
    commit_parser.add_argument("hash", help="Commit hash (7-40 hex characters)")
    commit_parser.add_argument("--json", action="store_true", help="JSON output")

    subparsers.add_parser("deps", help="Check ripgrep and git")

    args = parser.parse_args()

    if args.version:
        from . import __version__
        print(f"harness-sessions {__version__}")
        return

    setup_logging(args.verbose)

    commands = {
        "providers": cmd_providers,
        "index": cmd_index,
        "sessions": cmd_sessions,
        "search": cmd_search,
        "transcript": cmd_transcript,
        "commit": cmd_commit,
        "deps": cmd_deps,
    }
    command = commands.get(args.command)
    if command is None:
        parser.print_help()
        return
    command(args)


if __name__ == "__main__":
    main()
