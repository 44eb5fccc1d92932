"""Full-corpus indexer: every provider's sessions folded into projects."""

import asyncio
import logging
import time
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Callable, Optional

from .. import config
from ..dates import is_recent, utc_now
from ..git import GitClient, GitRootResolver
from ..models import Project, Session
from ..providers import get_available_providers
from ..providers.base import SessionProvider

logger = logging.getLogger(__name__)

_EPOCH = 0.0


def _activity_key(moment: Optional[datetime]) -> float:
    return moment.timestamp() if moment else _EPOCH


@dataclass
class CorpusIndex:
    """Result of one indexing pass."""

    sessions: list[Session] = field(default_factory=list)
    projects: list[Project] = field(default_factory=list)

    def get_session(self, session_id: str) -> Session | None:
        """Exact id match, else the only session whose id starts with ``session_id``."""
        for session in self.sessions:
            if session.session_id == session_id:
                return session
        candidates = [s for s in self.sessions if s.session_id.startswith(session_id)]
        if len(candidates) == 1:
            return candidates[0]
        return None

    def project_sessions(self, project_id: str) -> list[Session]:
        return [s for s in self.sessions if s.project_id == project_id]

    def working_directories(self) -> list[str]:
        """Distinct non-empty working directories, in index order."""
        return list(dict.fromkeys(s.working_directory for s in self.sessions if s.working_directory))


@dataclass
class _ProjectEntry:
    project_id: str
    project_name: str
    repo_id: Optional[str] = None
    repo_url: Optional[str] = None
    sessions: list[Session] = field(default_factory=list)


class CorpusIndexer:
    """Scan every provider and build the session/project index.

    Args:
        providers: Providers to scan; defaults to every enabled, installed one.
        resolver: Git root cache shared with the commit attributor.
        git: Used to resolve "owner/repo" identity from the origin remote.
        clock: Supplies "now" for the activity window.
        min_content_length: Inactive sessions with less transcript text are dropped.
    """

    def __init__(
        self,
        providers: Optional[list[SessionProvider]] = None,
        resolver: Optional[GitRootResolver] = None,
        git: Optional[GitClient] = None,
        clock: Callable[[], datetime] = utc_now,
        min_content_length: int = config.MIN_CONTENT_LENGTH,
        resolve_remotes: bool = True,
    ):
        self.providers = providers if providers is not None else get_available_providers()
        self.resolver = resolver or GitRootResolver()
        self.git = git or GitClient()
        self.clock = clock
        self.min_content_length = min_content_length
        self.resolve_remotes = resolve_remotes

    async def _load_all(self) -> list[Session]:
        results = await asyncio.gather(
            *(asyncio.to_thread(p.load_sessions) for p in self.providers),
            return_exceptions=True,
        )
        loaded = []
        for provider, result in zip(self.providers, results):
            if isinstance(result, BaseException):
                logger.warning(f"Failed to index {provider.name} sessions: {result}")
                continue
            logger.debug(f"{provider.name}: {len(result)} sessions parsed")
            loaded.extend(result)
        return loaded

    def _resolve_roots(self, sessions: list[Session]) -> list[tuple[Session, Optional[str]]]:
        return [(s, self.resolver.find_root(s.working_directory)) for s in sessions]

    async def _resolve_identities(self, roots: list[str]) -> dict[str, tuple[Optional[str], Optional[str]]]:
        if not self.resolve_remotes or not roots:
            return {}
        results = await asyncio.gather(*(self.git.repo_identity(r) for r in roots), return_exceptions=True)
        identities = {}
        for root, result in zip(roots, results):
            if isinstance(result, BaseException):
                logger.debug(f"No remote identity for {root}: {result}")
                continue
            identities[root] = result
        return identities

    async def build_index(self) -> CorpusIndex:
        """Full re-scan of every provider.

        Output is sorted by descending last activity, so two passes over
        unchanged files agree except for the activity flags.
        """
        start_time = time.time()
        now = self.clock()

        loaded = await asyncio.to_thread(self._resolve_roots, await self._load_all())
        roots = sorted({root for _, root in loaded if root})
        identities = await self._resolve_identities(roots)

        sessions: list[Session] = []
        projects: dict[str, _ProjectEntry] = {}
        skipped = 0

        for session, git_root in loaded:
            is_active = is_recent(session.last_activity_at, now, config.ACTIVE_WINDOW_SECONDS)

            # Skip sessions with minimal content (unless active)
            if not is_active and session.content_length < self.min_content_length:
                skipped += 1
                continue

            project_id = git_root or session.working_directory or f"{session.source.value}-{session.session_id[:8]}"
            repo_id, repo_url = identities.get(git_root, (None, None)) if git_root else (None, None)
            project_name = repo_id or project_id.rstrip("/").split("/")[-1] or project_id

            session = replace(
                session,
                project_id=project_id,
                project_name=project_name,
                repo_id=repo_id,
                repo_url=repo_url,
                is_active=is_active,
            )
            sessions.append(session)

            entry = projects.get(project_id)
            if entry is None:
                entry = projects[project_id] = _ProjectEntry(project_id, project_name, repo_id, repo_url)
            entry.sessions.append(session)

        sessions.sort(key=lambda s: (-_activity_key(s.last_activity_at), s.source.value, s.session_id))
        project_list = [self._summarize(entry) for entry in projects.values()]
        project_list.sort(key=lambda p: (-_activity_key(p.last_activity_at), p.project_id))

        logger.info(
            f"Indexed {len(sessions)} sessions in {len(project_list)} projects "
            f"({skipped} skipped) in {int((time.time() - start_time) * 1000)}ms"
        )
        return CorpusIndex(sessions=sessions, projects=project_list)

    @staticmethod
    def _summarize(entry: _ProjectEntry) -> Project:
        activity = [s.last_activity_at for s in entry.sessions if s.last_activity_at]
        return Project(
            project_id=entry.project_id,
            project_name=entry.project_name,
            repo_id=entry.repo_id,
            repo_url=entry.repo_url,
            last_activity_at=max(activity) if activity else None,
            session_count=len(entry.sessions),
            active_session_count=sum(1 for s in entry.sessions if s.is_active),
        )

    async def provider_stats(self) -> dict[str, dict]:
        """Installed flag and session count for every configured provider."""
        async def stats_for(provider: SessionProvider) -> dict:
            installed = provider.is_installed()
            count = 0
            if installed:
                try:
                    count = len(await asyncio.to_thread(provider.load_sessions))
                except Exception as e:
                    logger.warning(f"Failed to count {provider.name} sessions: {e}")
            return {"installed": installed, "session_count": count, "root": str(provider.root)}

        results = await asyncio.gather(*(stats_for(p) for p in self.providers))
        return {p.name: r for p, r in zip(self.providers, results)}
