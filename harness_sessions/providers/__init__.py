"""Provider registry and discovery."""

import asyncio
import logging
from datetime import datetime
from typing import Iterable, Optional, Type

from .. import config
from ..models import ProviderKind, Session
from .base import SessionProvider

logger = logging.getLogger(__name__)

# Registry of all providers, one per ProviderKind
_PROVIDERS: dict[ProviderKind, Type[SessionProvider]] = {}


def register_provider(provider_class: Type[SessionProvider]) -> Type[SessionProvider]:
    """Decorator to register a provider class under its kind."""
    if provider_class.kind in _PROVIDERS:
        raise ValueError(f"Provider already registered for {provider_class.kind.value}")
    _PROVIDERS[provider_class.kind] = provider_class
    return provider_class


def get_provider(kind: ProviderKind | str, **kwargs) -> SessionProvider | None:
    """Get an instance of a provider by kind."""
    try:
        kind = ProviderKind(kind)
    except ValueError:
        return None
    provider_class = _PROVIDERS.get(kind)
    if provider_class:
        return provider_class(**kwargs)
    return None


def get_all_providers() -> list[SessionProvider]:
    """Get instances of all registered providers."""
    return [_PROVIDERS[kind]() for kind in ProviderKind]


def get_available_providers() -> list[SessionProvider]:
    """Get instances of all enabled providers whose storage root exists."""
    return [
        p for p in get_all_providers()
        if config.is_provider_enabled(p.kind) and p.is_installed()
    ]


def provider_for_session(session: Session, providers: Iterable[SessionProvider]) -> SessionProvider | None:
    for provider in providers:
        if provider.kind == session.source:
            return provider
    return None


async def list_all_sessions(
    since: Optional[datetime] = None,
    project_filter: Optional[str] = None,
    providers: Optional[list[SessionProvider]] = None,
) -> list[Session]:
    """List sessions from every provider concurrently, most recent first."""
    if providers is None:
        providers = get_available_providers()

    results = await asyncio.gather(
        *(asyncio.to_thread(p.list_sessions, since, project_filter) for p in providers),
        return_exceptions=True,
    )

    all_sessions: list[Session] = []
    for provider, result in zip(providers, results):
        if isinstance(result, BaseException):
            logger.warning(f"Failed to list {provider.name} sessions: {result}")
            continue
        all_sessions.extend(result)

    all_sessions.sort(key=lambda s: (s.last_activity_at.timestamp() if s.last_activity_at else 0), reverse=True)
    return all_sessions


def _check_registry() -> None:
    missing = [kind.value for kind in ProviderKind if kind not in _PROVIDERS]
    if missing:
        raise RuntimeError(f"No provider registered for: {', '.join(missing)}")


# Import providers to trigger registration
from . import claude_code  # noqa: F401, E402
from . import codex  # noqa: F401, E402
from . import opencode  # noqa: F401, E402

_check_registry()
