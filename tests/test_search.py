"""Tests for content search."""

import asyncio
import base64
import json
import shutil
from pathlib import Path

import pytest

from harness_sessions.deps import static_probe
from harness_sessions.process import CommandNotFound, CommandResult
from harness_sessions.providers.claude_code import ClaudeCodeProvider
from harness_sessions.providers.opencode import OpenCodeProvider
from harness_sessions.search import ContentSearch, SearchError, basename_pattern, escape_pattern


def write_lines(path: Path, lines: list[str]) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("\n".join(lines) + "\n")
    return path


def rg_match(path: Path, line_number: int, text: str) -> str:
    return json.dumps({
        "type": "match",
        "data": {
            "path": {"text": str(path)},
            "lines": {"text": text + "\n"},
            "line_number": line_number,
            "absolute_offset": 0,
            "submatches": [],
        },
    })


@pytest.fixture
def claude_root(tmp_path):
    root = tmp_path / "claude"
    write_lines(root / "-home-user-app" / "with-foo.jsonl", ["first", "second", "the foo line", "last"])
    write_lines(root / "-home-user-app" / "without.jsonl", ["nothing", "to", "see"])
    return root


@pytest.fixture
def fallback_search(claude_root):
    return ContentSearch(providers=[ClaudeCodeProvider(root=claude_root)], probe=static_probe(ripgrep=False))


class TestPatternHelpers:
    def test_escape_pattern(self):
        assert escape_pattern("LoginForm.tsx") == r"LoginForm\.tsx"
        assert escape_pattern("a(b)[c]{d}") == r"a\(b\)\[c\]\{d\}"
        assert escape_pattern("x|y*z+?^$") == r"x\|y\*z\+\?\^\$"

    def test_escape_plain_text_unchanged(self):
        assert escape_pattern("main_module-v2") == "main_module-v2"

    def test_basename_pattern_dedupes(self):
        paths = ["/repo/a/utils.py", "/repo/b/utils.py", "/repo/src/App.tsx"]
        assert basename_pattern(paths) == r"utils\.py|App\.tsx"

    def test_basename_pattern_empty(self):
        assert basename_pattern([]) == ""


class TestFallbackSearch:
    """In-process search used when ripgrep is missing."""

    def test_single_match_on_line_three(self, fallback_search, claude_root):
        matches = asyncio.run(fallback_search.search("foo"))

        assert len(matches) == 1
        assert matches[0].line == 3
        assert matches[0].file == str(claude_root / "-home-user-app" / "with-foo.jsonl")
        assert matches[0].content == "the foo line"

    def test_case_insensitive(self, fallback_search):
        assert len(asyncio.run(fallback_search.search("FOO"))) == 1

    def test_regex_pattern(self, fallback_search):
        matches = asyncio.run(fallback_search.search(r"^(first|last)$"))
        assert [m.line for m in matches] == [1, 4]

    def test_no_matches(self, fallback_search):
        assert asyncio.run(fallback_search.search("absent")) == []

    def test_empty_pattern(self, fallback_search):
        assert asyncio.run(fallback_search.search("")) == []

    def test_files_only(self, tmp_path):
        root = tmp_path / "claude"
        write_lines(root / "-p" / "a.jsonl", ["foo one", "foo two", "foo three"])
        write_lines(root / "-p" / "b.jsonl", ["foo four"])
        search = ContentSearch(providers=[ClaudeCodeProvider(root=root)], probe=static_probe(ripgrep=False))

        matches = asyncio.run(search.search("foo", files_only=True))

        assert [(Path(m.file).name, m.line) for m in matches] == [("a.jsonl", 1), ("b.jsonl", 1)]
        assert all(m.content == "" for m in matches)

    def test_max_results(self, tmp_path):
        root = tmp_path / "claude"
        write_lines(root / "-p" / "a.jsonl", [f"foo {i}" for i in range(5)])
        write_lines(root / "-p" / "b.jsonl", [f"foo {i}" for i in range(5)])
        search = ContentSearch(providers=[ClaudeCodeProvider(root=root)], probe=static_probe(ripgrep=False))

        assert len(asyncio.run(search.search("foo", max_results=7))) == 7

    def test_per_file_cap(self, tmp_path):
        root = tmp_path / "claude"
        write_lines(root / "-p" / "a.jsonl", [f"foo {i}" for i in range(25)])
        search = ContentSearch(providers=[ClaudeCodeProvider(root=root)], probe=static_probe(ripgrep=False))

        assert len(asyncio.run(search.search("foo"))) == 10

    def test_content_truncated(self, tmp_path):
        root = tmp_path / "claude"
        write_lines(root / "-p" / "a.jsonl", ["foo" + "x" * 1000])
        search = ContentSearch(providers=[ClaudeCodeProvider(root=root)], probe=static_probe(ripgrep=False))

        assert len(asyncio.run(search.search("foo"))[0].content) == 500

    def test_ignores_files_outside_globs(self, claude_root, fallback_search):
        write_lines(claude_root / "-home-user-app" / "notes.txt", ["foo"])
        assert len(asyncio.run(fallback_search.search("foo"))) == 1

    def test_invalid_regex(self, fallback_search):
        with pytest.raises(SearchError):
            asyncio.run(fallback_search.search("(unclosed"))

    def test_missing_roots(self, tmp_path):
        search = ContentSearch(providers=[ClaudeCodeProvider(root=tmp_path / "nope")], probe=static_probe(ripgrep=False))
        assert search.roots() == []
        assert asyncio.run(search.search("foo")) == []


class TestRipgrepSearch:
    """ripgrep path, with the subprocess replaced."""

    @pytest.fixture
    def rg_search(self, claude_root):
        return ContentSearch(providers=[ClaudeCodeProvider(root=claude_root)], probe=static_probe(ripgrep=True))

    def test_parses_match_records(self, rg_search, claude_root, monkeypatch):
        target = claude_root / "-home-user-app" / "with-foo.jsonl"
        stdout = "\n".join([
            json.dumps({"type": "begin", "data": {"path": {"text": str(target)}}}),
            rg_match(target, 3, "the foo line"),
            json.dumps({"type": "end", "data": {}}),
            json.dumps({"type": "summary", "data": {}}),
        ])
        calls = []

        async def fake_run(argv, timeout, check=False):
            calls.append(argv)
            return CommandResult(argv=list(argv), returncode=0, stdout=stdout, stderr="")

        monkeypatch.setattr("harness_sessions.search.run_command", fake_run)
        matches = asyncio.run(rg_search.search("foo"))

        assert len(matches) == 1
        assert matches[0].file == str(target)
        assert matches[0].line == 3
        assert matches[0].content == "the foo line"

        argv = calls[0]
        assert argv[0] == "rg"
        assert "--json" in argv
        assert argv[argv.index("--max-count") + 1] == "10"
        assert argv[argv.index("--max-filesize") + 1] == "50M"
        assert argv[argv.index("-g") + 1] == "*.jsonl"
        assert argv[argv.index("-e") + 1] == "foo"
        assert argv[-1] == str(claude_root)

    def test_files_only_flags(self, rg_search, claude_root, monkeypatch):
        target = claude_root / "-home-user-app" / "with-foo.jsonl"
        calls = []

        async def fake_run(argv, timeout, check=False):
            calls.append(argv)
            return CommandResult(argv=list(argv), returncode=0, stdout=rg_match(target, 3, "the foo line"), stderr="")

        monkeypatch.setattr("harness_sessions.search.run_command", fake_run)
        matches = asyncio.run(rg_search.search("foo", files_only=True))

        assert calls[0][calls[0].index("--max-count") + 1] == "1"
        assert matches[0].content == ""

    def test_non_utf8_line_is_decoded(self, rg_search, claude_root, monkeypatch):
        target = claude_root / "-home-user-app" / "with-foo.jsonl"
        raw = b'{"file_path": "/repo/src/app.py", "note": "caf\xe9"}\n'
        record = json.dumps({
            "type": "match",
            "data": {
                "path": {"text": str(target)},
                "lines": {"bytes": base64.b64encode(raw).decode("ascii")},
                "line_number": 7,
            },
        })

        async def fake_run(argv, timeout, check=False):
            return CommandResult(argv=list(argv), returncode=0, stdout=record, stderr="")

        monkeypatch.setattr("harness_sessions.search.run_command", fake_run)

        matches = asyncio.run(rg_search.search("app"))
        assert matches[0].line == 7
        assert matches[0].content == '{"file_path": "/repo/src/app.py", "note": "caf�"}'

        touched = asyncio.run(rg_search.sessions_touching_paths(["/repo/src/app.py"]))
        assert touched == {"/repo/src/app.py": {"with-foo"}}

    def test_exit_one_is_empty(self, rg_search, monkeypatch):
        async def fake_run(argv, timeout, check=False):
            return CommandResult(argv=list(argv), returncode=1, stdout="", stderr="")

        monkeypatch.setattr("harness_sessions.search.run_command", fake_run)
        assert asyncio.run(rg_search.search("foo")) == []

    def test_other_failure_raises(self, rg_search, monkeypatch):
        async def fake_run(argv, timeout, check=False):
            return CommandResult(argv=list(argv), returncode=2, stdout="", stderr="regex parse error")

        monkeypatch.setattr("harness_sessions.search.run_command", fake_run)
        with pytest.raises(SearchError, match="regex parse error"):
            asyncio.run(rg_search.search("foo"))

    def test_missing_binary_falls_back(self, rg_search, monkeypatch):
        async def fake_run(argv, timeout, check=False):
            raise CommandNotFound(argv)

        monkeypatch.setattr("harness_sessions.search.run_command", fake_run)
        matches = asyncio.run(rg_search.search("foo"))

        assert [m.line for m in matches] == [3]

    @pytest.mark.skipif(shutil.which("rg") is None, reason="ripgrep not installed")
    def test_real_ripgrep_agrees_with_fallback(self, rg_search, fallback_search):
        fast = asyncio.run(rg_search.search("foo"))
        slow = asyncio.run(fallback_search.search("foo"))
        assert [(m.file, m.line, m.content) for m in fast] == [(m.file, m.line, m.content) for m in slow]


class TestSessionsTouchingPaths:
    @pytest.fixture
    def search(self, tmp_path):
        root = tmp_path / "claude"
        write_lines(root / "-repo" / "sess-1.jsonl", ['{"input": {"file_path": "/repo/src/LoginForm.tsx"}}'])
        write_lines(root / "-repo" / "sess-2.jsonl", [
            '{"input": {"file_path": "/elsewhere/LoginForm.tsx"}}',
            '{"input": {"file_path": "/repo/lib/utils.py"}}',
        ])
        return ContentSearch(providers=[ClaudeCodeProvider(root=root)], probe=static_probe(ripgrep=False))

    def test_maps_paths_to_sessions(self, search):
        paths = ["/repo/src/LoginForm.tsx", "/repo/lib/utils.py", "/repo/README.md"]
        result = asyncio.run(search.sessions_touching_paths(paths))

        # Basename matching credits sess-2 for a LoginForm.tsx in another directory
        assert result["/repo/src/LoginForm.tsx"] == {"sess-1", "sess-2"}
        assert result["/repo/lib/utils.py"] == {"sess-2"}
        assert result["/repo/README.md"] == set()

    def test_single_search_invocation(self, search, monkeypatch):
        patterns = []
        real_search = search._search

        async def spy(pattern, *args):
            patterns.append(pattern)
            return await real_search(pattern, *args)

        monkeypatch.setattr(search, "_search", spy)
        asyncio.run(search.sessions_touching_paths(["/repo/src/LoginForm.tsx", "/repo/lib/utils.py"]))

        assert patterns == [r"LoginForm\.tsx|utils\.py"]

    def test_no_paths(self, search):
        assert asyncio.run(search.sessions_touching_paths([])) == {}


class TestSessionIdForFile:
    def test_routes_to_owning_provider(self, tmp_path):
        claude = ClaudeCodeProvider(root=tmp_path / "claude")
        opencode = OpenCodeProvider(root=tmp_path / "opencode")
        search = ContentSearch(providers=[claude, opencode], probe=static_probe(ripgrep=False))

        assert search.session_id_for_file(tmp_path / "claude" / "-p" / "abc.jsonl") == "abc"
        assert search.session_id_for_file(tmp_path / "opencode" / "message" / "ses_9" / "msg_1.json") == "ses_9"
        assert search.session_id_for_file(tmp_path / "elsewhere" / "abc.jsonl") is None
