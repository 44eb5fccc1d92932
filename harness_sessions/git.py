"""Git helpers: root discovery, remote identity and commit lookups."""

import logging
import re
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from . import config
from .process import CommandError, run_command

logger = logging.getLogger(__name__)

GIT_MARKER = ".git"

# git@github.com:owner/repo.git, https://github.com/owner/repo(.git), ssh://git@host/owner/repo
_REMOTE_PATTERNS = [
    re.compile(r"^[\w.-]+@(?P<host>[\w.-]+):(?P<path>.+?)(?:\.git)?/?$"),
    re.compile(r"^(?:https?|ssh|git)://(?:[^@/]+@)?(?P<host>[\w.-]+)(?::\d+)?/(?P<path>.+?)(?:\.git)?/?$"),
]


def find_git_root(cwd: str | Path | None) -> Optional[str]:
    """Walk upward from ``cwd`` to the nearest directory containing ``.git``."""
    if not cwd:
        return None
    current = Path(cwd)
    if not current.is_absolute():
        return None
    while True:
        if current.parent == current:
            # Never treat the filesystem root as a project
            return None
        try:
            if (current / GIT_MARKER).exists():
                return str(current)
        except OSError:
            return None
        current = current.parent


class GitRootResolver:
    """Memoizes ``find_git_root`` per working directory for ``ttl`` seconds."""

    def __init__(self, ttl: float = 300, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self._clock = clock
        self._cache: dict[str, tuple[Optional[str], float]] = {}

    def find_root(self, cwd: str | None) -> Optional[str]:
        if not cwd:
            return None
        now = self._clock()
        entry = self._cache.get(cwd)
        if entry is not None and now - entry[1] < self.ttl:
            return entry[0]
        root = find_git_root(cwd)
        self._cache[cwd] = (root, now)
        return root

    def clear(self, cwd: str | None = None) -> None:
        """Forget one working directory, or everything when ``cwd`` is None."""
        if cwd is None:
            self._cache.clear()
        else:
            self._cache.pop(cwd, None)


def parse_remote_url(url: str) -> tuple[Optional[str], Optional[str]]:
    """Turn a remote URL into ("owner/repo", "https://host/owner/repo")."""
    url = (url or "").strip()
    for pattern in _REMOTE_PATTERNS:
        match = pattern.match(url)
        if not match:
            continue
        path = match.group("path").strip("/")
        if path.count("/") < 1:
            return None, None
        repo_id = "/".join(path.split("/")[-2:])
        return repo_id, f"https://{match.group('host')}/{path}"
    return None, None


@dataclass
class CommitMetadata:
    hash: str
    subject: str
    author: str
    date: str


class GitClient:
    """Thin async wrapper over the ``git`` command line."""

    def __init__(self, timeout: float = config.GIT_TIMEOUT, executable: str = "git"):
        self.timeout = timeout
        self.executable = executable

    async def _git(self, root: str, *args: str, check: bool = True):
        return await run_command([self.executable, "-C", root, *args], timeout=self.timeout, check=check)

    async def commit_exists(self, commit_hash: str, root: str) -> bool:
        """``git cat-file -t``: exit 0 means the object is present."""
        try:
            result = await self._git(root, "cat-file", "-t", commit_hash, check=False)
        except CommandError as e:
            logger.debug(f"Probe failed in {root}: {e}")
            return False
        return result.ok

    async def commit_metadata(self, commit_hash: str, root: str) -> CommitMetadata:
        result = await self._git(root, "log", "-1", "--format=%H%n%s%n%an%n%aI", commit_hash)
        lines = result.stdout.strip("\n").split("\n")
        lines += [""] * (4 - len(lines))
        full_hash, subject, author, date = lines[:4]
        return CommitMetadata(hash=full_hash.strip() or commit_hash, subject=subject, author=author, date=date.strip())

    async def changed_files(self, commit_hash: str, root: str) -> list[str]:
        result = await self._git(root, "show", "--name-only", "--format=", commit_hash)
        return [line for line in result.stdout.splitlines() if line.strip()]

    async def remote_url(self, root: str) -> Optional[str]:
        try:
            result = await self._git(root, "config", "--get", "remote.origin.url", check=False)
        except CommandError as e:
            logger.debug(f"Could not read remote for {root}: {e}")
            return None
        url = result.stdout.strip()
        return url if result.ok and url else None

    async def repo_identity(self, root: str) -> tuple[Optional[str], Optional[str]]:
        url = await self.remote_url(root)
        if not url:
            return None, None
        return parse_remote_url(url)
