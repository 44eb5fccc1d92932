"""Dependency checker - validates external tools are available."""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from . import config
from .process import CommandError, run_command

logger = logging.getLogger(__name__)

INSTALL_HINTS = {
    "rg": "brew install ripgrep  (or: apt install ripgrep)",
    "git": "xcode-select --install  (or: apt install git)",
}


@dataclass
class DepStatus:
    ok: bool
    version: Optional[str] = None
    install: Optional[str] = None


@dataclass
class DepsStatus:
    ripgrep: DepStatus
    git: DepStatus


async def check_command(cmd: str, version_flag: str = "--version") -> DepStatus:
    try:
        result = await run_command([cmd, version_flag], timeout=5)
    except CommandError:
        return DepStatus(ok=False, install=INSTALL_HINTS.get(cmd))
    if not result.ok:
        return DepStatus(ok=False, install=INSTALL_HINTS.get(cmd))
    lines = result.stdout.strip().splitlines()
    version = lines[0].strip() if lines else "installed"
    return DepStatus(ok=True, version=version)


async def check_deps() -> DepsStatus:
    ripgrep, git = await asyncio.gather(check_command("rg"), check_command("git"))
    return DepsStatus(ripgrep=ripgrep, git=git)


class DependencyProbe:
    """Caches the result of ``check_deps`` for ``ttl`` seconds.

    ``checker`` and ``clock`` are injectable so tests can pin tool
    availability and time.
    """

    def __init__(
        self,
        ttl: float = config.DEPS_CACHE_TTL,
        checker: Callable[[], Awaitable[DepsStatus]] = check_deps,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl = ttl
        self._checker = checker
        self._clock = clock
        self._cached: Optional[DepsStatus] = None
        self._checked_at = 0.0

    async def get(self) -> DepsStatus:
        now = self._clock()
        if self._cached is not None and now - self._checked_at < self.ttl:
            return self._cached
        self._cached = await self._checker()
        self._checked_at = now
        if not self._cached.ripgrep.ok:
            logger.info("ripgrep not found - content search will use the slow fallback")
        return self._cached

    async def has_ripgrep(self) -> bool:
        return (await self.get()).ripgrep.ok

    async def has_git(self) -> bool:
        return (await self.get()).git.ok

    def invalidate(self) -> None:
        self._cached = None
        self._checked_at = 0.0


def static_probe(ripgrep: bool, git: bool = True) -> DependencyProbe:
    """A probe with fixed answers, for callers that already know what is installed."""

    async def checker() -> DepsStatus:
        return DepsStatus(ripgrep=DepStatus(ok=ripgrep), git=DepStatus(ok=git))

    return DependencyProbe(ttl=float("inf"), checker=checker)
