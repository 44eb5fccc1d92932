"""Harness Sessions configuration."""
import os
from pathlib import Path

from .models import ProviderKind


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _env_path(name: str, default: Path) -> Path:
    value = os.getenv(name)
    if not value:
        return default
    return Path(value).expanduser()


HOME = Path.home()

# Provider storage roots
CLAUDE_DIR = _env_path("HARNESS_CLAUDE_DIR", HOME / ".claude" / "projects")
CODEX_DIR = _env_path("HARNESS_CODEX_DIR", HOME / ".codex" / "sessions")
OPENCODE_DIR = _env_path("HARNESS_OPENCODE_DIR", HOME / ".local" / "share" / "opencode" / "storage")

CLAUDE_ENABLED = _env_bool("HARNESS_CLAUDE_ENABLED", True)
CODEX_ENABLED = _env_bool("HARNESS_CODEX_ENABLED", True)
OPENCODE_ENABLED = _env_bool("HARNESS_OPENCODE_ENABLED", True)

# Indexing
MIN_CONTENT_LENGTH = _env_int("HARNESS_MIN_CONTENT_LENGTH", 100)
ACTIVE_WINDOW_SECONDS = _env_int("HARNESS_ACTIVE_WINDOW_SECONDS", 5 * 60)
PROMPT_PREVIEW_CHARS = 500
GOAL_PREVIEW_CHARS = 200

# Subprocess timeouts (seconds)
SEARCH_TIMEOUT = _env_int("HARNESS_SEARCH_TIMEOUT", 30)
GIT_TIMEOUT = _env_int("HARNESS_GIT_TIMEOUT", 5)

# Capability probe cache
DEPS_CACHE_TTL = _env_int("HARNESS_DEPS_CACHE_TTL", 60)

# Search limits
SEARCH_MAX_RESULTS = 100
SEARCH_MAX_PER_FILE = 10
SEARCH_MAX_FILESIZE = "50M"
MATCH_CONTENT_CHARS = 500

_PROVIDER_PATHS = {
    ProviderKind.CLAUDE: CLAUDE_DIR,
    ProviderKind.CODEX: CODEX_DIR,
    ProviderKind.OPENCODE: OPENCODE_DIR,
}

_PROVIDER_ENABLED = {
    ProviderKind.CLAUDE: CLAUDE_ENABLED,
    ProviderKind.CODEX: CODEX_ENABLED,
    ProviderKind.OPENCODE: OPENCODE_ENABLED,
}


def get_provider_path(kind: ProviderKind) -> Path:
    """Storage root configured for a provider."""
    return _PROVIDER_PATHS[ProviderKind(kind)]


def is_provider_enabled(kind: ProviderKind) -> bool:
    return _PROVIDER_ENABLED[ProviderKind(kind)]
