"""Content search across session logs.

Uses ripgrep when it is installed and falls back to a pure-Python line scan
otherwise. Both paths return the same ``SearchMatch`` records.
"""

import asyncio
import base64
import binascii
import fnmatch
import json
import logging
import os
import re
from pathlib import Path
from typing import Iterable, Optional

from . import config
from .deps import DependencyProbe
from .models import SearchMatch
from .process import CommandError, CommandNotFound, HarnessError, run_command
from .providers import get_available_providers
from .providers.base import SessionProvider

logger = logging.getLogger(__name__)

MAX_FILESIZE_BYTES = 50 * 1024 * 1024
TOUCHING_PATHS_MAX_RESULTS = 500
RG_NO_MATCHES = 1

_REGEX_SPECIALS = set("\\.^$|?*+()[]{}")


class SearchError(HarnessError):
    """The search tool failed for a reason other than "no matches"."""


def rg_text(value) -> str:
    """Read a ripgrep JSON string field.

    Non-UTF-8 data arrives base64-encoded under ``bytes`` instead of ``text``;
    it is decoded with replacement characters, as the in-process scan reads files.
    """
    if not isinstance(value, dict):
        return ""
    if isinstance(value.get("text"), str):
        return value["text"]
    if isinstance(value.get("bytes"), str):
        try:
            return base64.b64decode(value["bytes"]).decode("utf-8", errors="replace")
        except (binascii.Error, ValueError):
            logger.debug(f"Undecodable ripgrep bytes field: {value['bytes'][:40]}")
    return ""


def escape_pattern(text: str) -> str:
    """Escape regex metacharacters; the result is valid for both ripgrep and ``re``."""
    return "".join(f"\\{ch}" if ch in _REGEX_SPECIALS else ch for ch in text)


def basename_pattern(paths: Iterable[str]) -> str:
    """One alternation over the distinct basenames of ``paths``."""
    names = dict.fromkeys(Path(p).name for p in paths)
    return "|".join(escape_pattern(name) for name in names if name)


class ContentSearch:
    """Pattern search over every provider's storage roots."""

    def __init__(
        self,
        providers: Optional[list[SessionProvider]] = None,
        probe: Optional[DependencyProbe] = None,
        timeout: float = config.SEARCH_TIMEOUT,
        max_per_file: int = config.SEARCH_MAX_PER_FILE,
    ):
        self.providers = providers if providers is not None else get_available_providers()
        self.probe = probe or DependencyProbe()
        self.timeout = timeout
        self.max_per_file = max_per_file

    def roots(self) -> list[Path]:
        roots = []
        for provider in self.providers:
            for root in provider.search_roots():
                if root.is_dir() and root not in roots:
                    roots.append(root)
        return roots

    def globs(self) -> list[str]:
        return list(dict.fromkeys(g for p in self.providers for g in p.search_globs))

    def session_id_for_file(self, path: str | Path) -> Optional[str]:
        for provider in self.providers:
            if provider.owns(path):
                return provider.session_id_for_file(path)
        return None

    async def search(
        self,
        pattern: str,
        max_results: int = config.SEARCH_MAX_RESULTS,
        files_only: bool = False,
    ) -> list[SearchMatch]:
        """Search every session log for ``pattern`` (a case-insensitive regex).

        In ``files_only`` mode at most one match per file is returned and
        ``content`` is left empty.
        """
        return await self._search(pattern, max_results, files_only, config.MATCH_CONTENT_CHARS)

    async def _search(
        self,
        pattern: str,
        max_results: int,
        files_only: bool,
        content_limit: Optional[int],
    ) -> list[SearchMatch]:
        if not pattern:
            return []
        roots = self.roots()
        if not roots:
            return []

        if await self.probe.has_ripgrep():
            try:
                return await self.ripgrep_search(pattern, roots, max_results, files_only, content_limit)
            except CommandNotFound:
                logger.info("ripgrep disappeared from PATH, falling back to in-process search")
                self.probe.invalidate()

        return await asyncio.to_thread(
            self.fallback_search, pattern, roots, max_results, files_only, content_limit
        )

    async def ripgrep_search(
        self,
        pattern: str,
        roots: list[Path],
        max_results: int,
        files_only: bool = False,
        content_limit: Optional[int] = config.MATCH_CONTENT_CHARS,
    ) -> list[SearchMatch]:
        argv = [
            "rg",
            "--json",
            "--ignore-case",
            "--no-ignore",
            "--max-count", "1" if files_only else str(self.max_per_file),
            "--max-filesize", config.SEARCH_MAX_FILESIZE,
        ]
        for glob in self.globs():
            argv += ["-g", glob]
        argv += ["-e", pattern, "--", *(str(r) for r in roots)]

        try:
            result = await run_command(argv, timeout=self.timeout)
        except CommandNotFound:
            raise
        except CommandError as e:
            raise SearchError(str(e)) from e

        if result.returncode == RG_NO_MATCHES:
            return []
        if not result.ok:
            raise SearchError(str(CommandError(argv, result.returncode, result.stderr)))

        matches: list[SearchMatch] = []
        for line in result.stdout.splitlines():
            try:
                record = json.loads(line)
            except json.JSONDecodeError:
                continue
            if record.get("type") != "match":
                continue
            data = record.get("data") or {}
            text = rg_text(data.get("lines")).rstrip("\r\n")
            matches.append(SearchMatch(
                file=rg_text(data.get("path")),
                line=data.get("line_number") or 0,
                content="" if files_only else text[:content_limit],
            ))
            if len(matches) >= max_results:
                break

        return matches

    def _iter_files(self, roots: list[Path]):
        globs = self.globs()
        for root in roots:
            for dirpath, dirnames, filenames in os.walk(root):
                dirnames.sort()
                for filename in sorted(filenames):
                    if any(fnmatch.fnmatch(filename, g) for g in globs):
                        yield Path(dirpath) / filename

    def fallback_search(
        self,
        pattern: str,
        roots: list[Path],
        max_results: int,
        files_only: bool = False,
        content_limit: Optional[int] = config.MATCH_CONTENT_CHARS,
    ) -> list[SearchMatch]:
        """Line-by-line scan with ``re``; orders of magnitude slower than ripgrep."""
        try:
            regex = re.compile(pattern, re.IGNORECASE)
        except re.error as e:
            raise SearchError(f"Invalid search pattern: {e}") from e

        matches: list[SearchMatch] = []
        for path in self._iter_files(roots):
            if len(matches) >= max_results:
                break
            try:
                if path.stat().st_size > MAX_FILESIZE_BYTES:
                    continue
                per_file = 0
                with open(path, encoding="utf-8", errors="replace") as f:
                    for line_num, line in enumerate(f, start=1):
                        if not regex.search(line):
                            continue
                        text = line.rstrip("\r\n")
                        matches.append(SearchMatch(
                            file=str(path),
                            line=line_num,
                            content="" if files_only else text[:content_limit],
                        ))
                        per_file += 1
                        if files_only or per_file >= self.max_per_file or len(matches) >= max_results:
                            break
            except OSError:
                continue

        return matches

    async def sessions_touching_paths(self, paths: list[str]) -> dict[str, set[str]]:
        """Map each path to the ids of sessions whose logs mention its basename.

        Runs a single search for all basenames. A match is credited to every
        requested path whose basename appears in the matched line, so files
        sharing a name in different directories are all attributed.
        """
        result: dict[str, set[str]] = {p: set() for p in paths}
        pattern = basename_pattern(paths)
        if not pattern:
            return result

        matches = await self._search(pattern, TOUCHING_PATHS_MAX_RESULTS, False, None)
        return await asyncio.to_thread(self._attribute, matches, paths, result)

    def _attribute(
        self,
        matches: list[SearchMatch],
        paths: list[str],
        result: dict[str, set[str]],
    ) -> dict[str, set[str]]:
        session_ids: dict[str, Optional[str]] = {}
        for match in matches:
            if match.file not in session_ids:
                session_ids[match.file] = self.session_id_for_file(match.file)
            session_id = session_ids[match.file]
            if not session_id:
                continue
            for path in paths:
                name = Path(path).name
                if name and name in match.content:
                    result[path].add(session_id)
        return result
