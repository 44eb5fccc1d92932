"""Commit attribution: which agent sessions likely produced a git commit."""

import asyncio
import logging
import re
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, Optional

from .dates import file_mtime, parse_timestamp, utc_now
from .git import GitClient, GitRootResolver
from .index import CorpusIndex, CorpusIndexer
from .models import CommitInfo, CommitSearchResult, Session, SessionMatch
from .process import CommandError
from .search import ContentSearch, SearchError

logger = logging.getLogger(__name__)

COMMIT_HASH_RE = re.compile(r"^[a-f0-9]{7,40}$", re.IGNORECASE)

INVALID_HASH = "Invalid commit hash format"
NOT_FOUND = "Commit not found in any known repository"
UNREADABLE = "Failed to read commit details"

ONE_DAY = timedelta(days=1)
ONE_WEEK = timedelta(days=7)


def validate_hash(commit_hash: str) -> bool:
    return bool(commit_hash) and COMMIT_HASH_RE.match(commit_hash) is not None


def time_boost(session_time: datetime, commit_time: datetime) -> float:
    delta = abs(commit_time - session_time)
    if delta < ONE_DAY:
        return 1.5
    if delta < ONE_WEEK:
        return 1.2
    return 1.0


def score(matched: int, total: int, boost: float = 1.0) -> float:
    """Fraction of changed files the session touched, boosted and capped at 1."""
    if total <= 0:
        return 0.0
    return min(1.0, matched / total * boost)


class CommitAttributor:
    """Ranks indexed sessions as likely authors of a commit.

    The working directories of the indexed sessions define which
    repositories are probed; content search decides which sessions
    touched the commit's files.
    """

    def __init__(
        self,
        indexer: Optional[CorpusIndexer] = None,
        search: Optional[ContentSearch] = None,
        git: Optional[GitClient] = None,
        resolver: Optional[GitRootResolver] = None,
        index: Optional[CorpusIndex] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.git = git or GitClient()
        self.resolver = resolver or GitRootResolver()
        self.indexer = indexer
        self.search = search if search is not None else ContentSearch()
        self.clock = clock
        self._index = index

    async def get_index(self) -> CorpusIndex:
        if self._index is None:
            if self.indexer is None:
                self.indexer = CorpusIndexer(resolver=self.resolver, git=self.git)
            self._index = await self.indexer.build_index()
        return self._index

    async def candidate_roots(self) -> list[str]:
        index = await self.get_index()
        cwds = index.working_directories()
        roots = await asyncio.to_thread(lambda: [self.resolver.find_root(c) for c in cwds])
        return list(dict.fromkeys(r for r in roots if r))

    async def resolve_repository(self, commit_hash: str) -> Optional[str]:
        """Probe every known git root concurrently; the first root holding the commit wins."""
        roots = await self.candidate_roots()
        if not roots:
            return None

        async def probe(root: str) -> Optional[str]:
            return root if await self.git.commit_exists(commit_hash, root) else None

        tasks = [asyncio.create_task(probe(root)) for root in roots]
        try:
            for next_done in asyncio.as_completed(tasks):
                try:
                    root = await next_done
                except CommandError as e:
                    logger.debug(f"Probe for {commit_hash} failed: {e}")
                    continue
                if root:
                    return root
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
        return None

    async def load_commit_info(self, commit_hash: str, root: str) -> Optional[CommitInfo]:
        try:
            meta, files = await asyncio.gather(
                self.git.commit_metadata(commit_hash, root),
                self.git.changed_files(commit_hash, root),
            )
        except CommandError as e:
            logger.warning(f"Could not read commit {commit_hash} in {root}: {e}")
            return None
        return CommitInfo(
            hash=meta.hash,
            repository_root=root,
            repository_name=Path(root).name,
            message=meta.subject,
            author=meta.author,
            date=meta.date,
            changed_files=files,
        )

    async def attribute_sessions(self, commit: CommitInfo) -> list[SessionMatch]:
        """Score every session whose logs mention the commit's changed files.

        Raises SearchError when content search fails.
        """
        if not commit.changed_files:
            return []

        root = Path(commit.repository_root)
        relative = {str(root / f): f for f in commit.changed_files}
        touching = await self.search.sessions_touching_paths(list(relative))

        session_ids: dict[str, None] = {}
        for ids in touching.values():
            for session_id in sorted(ids):
                session_ids.setdefault(session_id, None)

        index = await self.get_index()
        by_id: dict[str, Session] = {}
        for session in index.sessions:
            by_id.setdefault(session.session_id, session)

        commit_time = parse_timestamp(commit.date) or self.clock()
        total = len(commit.changed_files)
        matches: list[SessionMatch] = []

        for session_id in session_ids:
            session = by_id.get(session_id)
            if session is None:
                logger.debug(f"Session {session_id} matched but is not indexed")
                continue
            matched_files = [relative[p] for p, ids in touching.items() if session_id in ids]
            session_time = await asyncio.to_thread(file_mtime, session.file_path) or self.clock()
            matches.append(SessionMatch(
                session_id=session_id,
                project_name=session.project_name,
                score=score(len(matched_files), total, time_boost(session_time, commit_time)),
                matched_files=matched_files,
                file_path=str(session.file_path),
            ))

        matches.sort(key=lambda m: m.score, reverse=True)
        return matches

    async def find_commit(self, commit_hash: str) -> CommitSearchResult:
        """Full attribution flow; failures come back in ``error``, never raised."""
        commit_hash = (commit_hash or "").strip()
        if not validate_hash(commit_hash):
            return CommitSearchResult(error=INVALID_HASH)

        root = await self.resolve_repository(commit_hash)
        if root is None:
            return CommitSearchResult(error=NOT_FOUND)

        commit = await self.load_commit_info(commit_hash, root)
        if commit is None:
            return CommitSearchResult(error=UNREADABLE)

        try:
            sessions = await self.attribute_sessions(commit)
        except SearchError as e:
            return CommitSearchResult(commit=commit, error=f"Search failed: {e}")

        logger.info(f"Commit {commit.hash[:12]} in {commit.repository_name}: {len(sessions)} candidate sessions")
        return CommitSearchResult(commit=commit, sessions=sessions)
