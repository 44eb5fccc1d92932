"""Tests for the corpus indexer."""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from harness_sessions.git import GitRootResolver
from harness_sessions.index import CorpusIndex, CorpusIndexer
from harness_sessions.models import ProviderKind, Session
from harness_sessions.providers.base import SessionProvider

NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


class StaticProvider(SessionProvider):
    """Serves a fixed list of sessions."""

    kind = ProviderKind.CODEX

    def __init__(self, root, sessions=(), kind=ProviderKind.CODEX, fail=False):
        super().__init__(root=root, clock=lambda: NOW)
        self.kind = kind
        self.sessions = list(sessions)
        self.fail = fail

    def discover_session_files(self):
        return []

    def parse_session(self, path):
        return None

    def list_transcript(self, session):
        return []

    def load_sessions(self, since=None):
        if self.fail:
            raise PermissionError("storage unreadable")
        return list(self.sessions)


class FakeGit:
    def __init__(self, identities=None):
        self.identities = identities or {}
        self.calls = []

    async def repo_identity(self, root):
        self.calls.append(root)
        return self.identities.get(root, (None, None))


def make_session(session_id, cwd="", minutes_ago=60, content_length=500, source=ProviderKind.CODEX):
    last = NOW - timedelta(minutes=minutes_ago)
    return Session(
        session_id=session_id,
        source=source,
        file_path=Path(f"/logs/{session_id}.jsonl"),
        working_directory=cwd,
        content_length=content_length,
        started_at=last - timedelta(minutes=10),
        last_activity_at=last,
    )


def build(sessions, tmp_path, git=None, **kwargs) -> CorpusIndex:
    indexer = CorpusIndexer(
        providers=[StaticProvider(tmp_path, sessions)],
        git=git or FakeGit(),
        clock=lambda: NOW,
        **kwargs,
    )
    return asyncio.run(indexer.build_index())


@pytest.fixture
def repo(tmp_path):
    root = tmp_path / "webapp"
    (root / ".git").mkdir(parents=True)
    (root / "src" / "components").mkdir(parents=True)
    return root


class TestContentFilter:
    def test_short_inactive_session_dropped(self, tmp_path):
        index = build([make_session("short-old", "/w", minutes_ago=60, content_length=50)], tmp_path)
        assert index.sessions == []

    def test_short_active_session_kept(self, tmp_path):
        index = build([make_session("short-new", "/w", minutes_ago=1, content_length=50)], tmp_path)
        assert [s.session_id for s in index.sessions] == ["short-new"]
        assert index.sessions[0].is_active

    def test_long_inactive_session_kept(self, tmp_path):
        index = build([make_session("long-old", "/w", minutes_ago=60 * 24, content_length=5000)], tmp_path)
        assert [s.session_id for s in index.sessions] == ["long-old"]
        assert not index.sessions[0].is_active

    def test_filter_iff_active(self, tmp_path):
        sessions = [
            make_session(f"s{i}", "/w", minutes_ago=minutes, content_length=length)
            for i, (minutes, length) in enumerate([(1, 10), (2, 99), (10, 10), (600, 99), (600, 100)])
        ]
        index = build(sessions, tmp_path)
        for session in index.sessions:
            assert session.content_length >= 100 or session.is_active
        assert {s.session_id for s in index.sessions} == {"s0", "s1", "s4"}

    def test_active_flag_recomputed_from_clock(self, tmp_path):
        session = make_session("s", "/w", minutes_ago=2)
        session.is_active = False
        assert build([session], tmp_path).sessions[0].is_active


class TestProjectGrouping:
    def test_sessions_grouped_by_git_root(self, tmp_path, repo):
        sessions = [
            make_session("a", str(repo), minutes_ago=30),
            make_session("b", str(repo / "src" / "components"), minutes_ago=10),
        ]
        index = build(sessions, tmp_path)

        assert len(index.projects) == 1
        project = index.projects[0]
        assert project.project_id == str(repo)
        assert project.project_name == "webapp"
        assert project.session_count == 2
        assert project.last_activity_at == NOW - timedelta(minutes=10)
        assert {s.project_id for s in index.sessions} == {str(repo)}

    def test_remote_identity_names_project(self, tmp_path, repo):
        git = FakeGit({str(repo): ("acme/webapp", "https://github.com/acme/webapp")})
        index = build([make_session("a", str(repo / "src"))], tmp_path, git=git)

        assert git.calls == [str(repo)]
        project = index.projects[0]
        assert project.project_name == "acme/webapp"
        assert project.repo_url == "https://github.com/acme/webapp"
        assert index.sessions[0].repo_id == "acme/webapp"

    def test_remote_identity_skipped(self, tmp_path, repo):
        git = FakeGit({str(repo): ("acme/webapp", "https://github.com/acme/webapp")})
        index = build([make_session("a", str(repo))], tmp_path, git=git, resolve_remotes=False)

        assert git.calls == []
        assert index.projects[0].project_name == "webapp"

    def test_no_git_root_uses_working_directory(self, tmp_path):
        cwd = str(tmp_path / "scratch" / "notes")
        index = build([make_session("a", cwd)], tmp_path)

        assert index.projects[0].project_id == cwd
        assert index.projects[0].project_name == "notes"

    def test_no_working_directory_uses_synthetic_id(self, tmp_path):
        index = build([make_session("0123456789abcdef", "")], tmp_path)
        assert index.sessions[0].project_id == "codex-01234567"

    def test_active_session_counts(self, tmp_path, repo):
        sessions = [
            make_session("a", str(repo), minutes_ago=1),
            make_session("b", str(repo), minutes_ago=2),
            make_session("c", str(repo), minutes_ago=120),
        ]
        project = build(sessions, tmp_path).projects[0]

        assert project.active_session_count == 2
        assert project.is_active

    def test_projects_sorted_by_activity(self, tmp_path):
        sessions = [
            make_session("old", "/projects/old", minutes_ago=500),
            make_session("new", "/projects/new", minutes_ago=5),
            make_session("mid", "/projects/mid", minutes_ago=50),
        ]
        index = build(sessions, tmp_path)
        assert [p.project_name for p in index.projects] == ["new", "mid", "old"]
        assert [s.session_id for s in index.sessions] == ["new", "mid", "old"]


class TestIndexer:
    def test_idempotent(self, tmp_path, repo):
        sessions = [
            make_session("a", str(repo), minutes_ago=30),
            make_session("b", "/projects/other", minutes_ago=30),
            make_session("c", "", minutes_ago=90),
        ]
        indexer = CorpusIndexer(
            providers=[StaticProvider(tmp_path, sessions)],
            git=FakeGit(),
            resolver=GitRootResolver(),
            clock=lambda: NOW,
        )
        first = asyncio.run(indexer.build_index())
        second = asyncio.run(indexer.build_index())

        assert first.sessions == second.sessions
        assert first.projects == second.projects

    def test_provider_failure_is_isolated(self, tmp_path, caplog):
        good = StaticProvider(tmp_path, [make_session("ok", "/w")], kind=ProviderKind.CLAUDE)
        bad = StaticProvider(tmp_path, fail=True, kind=ProviderKind.OPENCODE)
        indexer = CorpusIndexer(providers=[bad, good], git=FakeGit(), clock=lambda: NOW)

        with caplog.at_level(logging.WARNING):
            index = asyncio.run(indexer.build_index())

        assert [s.session_id for s in index.sessions] == ["ok"]
        assert "opencode" in caplog.text

    def test_sessions_from_all_providers(self, tmp_path):
        claude = StaticProvider(tmp_path, [make_session("c1", "/w", source=ProviderKind.CLAUDE)], kind=ProviderKind.CLAUDE)
        codex = StaticProvider(tmp_path, [make_session("x1", "/w", minutes_ago=20)])
        indexer = CorpusIndexer(providers=[claude, codex], git=FakeGit(), clock=lambda: NOW)

        index = asyncio.run(indexer.build_index())

        assert [s.session_id for s in index.sessions] == ["x1", "c1"]
        assert index.projects[0].session_count == 2

    def test_provider_stats(self, tmp_path):
        present = StaticProvider(tmp_path, [make_session("a", "/w")], kind=ProviderKind.CLAUDE)
        missing = StaticProvider(tmp_path / "missing", [make_session("b", "/w")])
        indexer = CorpusIndexer(providers=[present, missing], git=FakeGit(), clock=lambda: NOW)

        stats = asyncio.run(indexer.provider_stats())

        assert stats["claude"] == {"installed": True, "session_count": 1, "root": str(tmp_path)}
        assert stats["codex"]["installed"] is False
        assert stats["codex"]["session_count"] == 0


class TestCorpusIndex:
    @pytest.fixture
    def index(self, tmp_path):
        return build([
            make_session("abc-111", "/w/one", minutes_ago=10),
            make_session("abc-222", "/w/two", minutes_ago=20),
            make_session("xyz-333", "/w/one", minutes_ago=30),
        ], tmp_path)

    def test_get_session_exact(self, index):
        assert index.get_session("abc-111").session_id == "abc-111"

    def test_get_session_unique_prefix(self, index):
        assert index.get_session("xyz").session_id == "xyz-333"

    def test_get_session_ambiguous_prefix(self, index):
        assert index.get_session("abc") is None

    def test_get_session_missing(self, index):
        assert index.get_session("nope") is None

    def test_project_sessions(self, index):
        assert [s.session_id for s in index.project_sessions("/w/one")] == ["abc-111", "xyz-333"]

    def test_working_directories(self, index):
        assert index.working_directories() == ["/w/one", "/w/two"]
