"""Base class for session providers."""

import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Callable, Iterator, Optional

from .. import config
from ..dates import is_recent, utc_now
from ..models import ProviderKind, Session, TranscriptEvent

logger = logging.getLogger(__name__)

TEXT_BLOCK_TYPES = ("text", "input_text", "output_text")
TOOL_CONTENT_CHARS = 500


def truncate(text: Optional[str], max_len: int) -> str:
    if not text:
        return ""
    return text[:max_len]


def extract_text_content(content) -> str:
    """Extract text from message content (handles both string and list formats)."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        texts = []
        for item in content:
            if isinstance(item, dict):
                if item.get("type", "text") in TEXT_BLOCK_TYPES and isinstance(item.get("text"), str):
                    texts.append(item["text"])
            elif isinstance(item, str):
                texts.append(item)
        return "\n".join(t for t in texts if t)
    return ""


def is_system_text(text: str) -> bool:
    """Injected context blocks that should never become a prompt preview."""
    head = text.lstrip()[:40]
    return head.startswith(("<system-reminder>", "<environment_context>", "<user_instructions>"))


def tool_payload(value) -> str:
    """Serialize a tool input/output for transcript display."""
    if isinstance(value, str):
        return value[:TOOL_CONTENT_CHARS]
    try:
        return json.dumps(value if value is not None else {}, ensure_ascii=False)[:TOOL_CONTENT_CHARS]
    except (TypeError, ValueError):
        return str(value)[:TOOL_CONTENT_CHARS]


def iter_jsonl(path: Path) -> Iterator[dict]:
    """Yield each JSON object in a JSONL file, skipping malformed lines.

    Raises OSError when the file itself cannot be opened.
    """
    with open(path, encoding="utf-8", errors="replace") as f:
        for line in f:
            if not line.strip():
                continue
            try:
                data = json.loads(line)
            except json.JSONDecodeError:
                continue
            if isinstance(data, dict):
                yield data


def read_json(path: Path) -> Optional[dict]:
    """Load a JSON object from ``path``; None when unreadable or not an object."""
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, UnicodeDecodeError, json.JSONDecodeError):
        return None
    return data if isinstance(data, dict) else None


def clamp_start(started: Optional[datetime], last: Optional[datetime]) -> Optional[datetime]:
    """Keep ``started_at <= last_activity_at``."""
    if started is None:
        return last
    if last is not None and started > last:
        return last
    return started


class SessionProvider(ABC):
    """Abstract base class for session providers.

    Each AI coding tool implements this interface to provide session
    discovery, parsing and transcripts. Providers are tagged by ``kind``;
    the registry in ``providers/__init__.py`` holds exactly one class per
    ``ProviderKind``.
    """

    kind: ProviderKind
    display_name: str = ""
    icon: str = ""
    color: str = ""
    search_globs: tuple[str, ...] = ("*.jsonl",)

    def __init__(self, root: Path | str | None = None, clock: Callable[[], datetime] = utc_now):
        self.root = Path(root).expanduser() if root else config.get_provider_path(self.kind)
        self.clock = clock

    @property
    def name(self) -> str:
        return self.kind.value

    def get_sessions_dir(self) -> Path:
        return self.root

    def is_installed(self) -> bool:
        """Check if this provider's storage root exists."""
        return self.root.is_dir()

    def watch_roots(self) -> list[Path]:
        """Directories an external file watcher should subscribe to."""
        return [self.root]

    def search_roots(self) -> list[Path]:
        """Directories content search scans for this provider."""
        return [self.root]

    def owns(self, path: Path | str) -> bool:
        path = Path(path)
        return any(path.is_relative_to(root) for root in self.search_roots())

    def session_id_for_file(self, path: Path | str) -> Optional[str]:
        """Map a log file found by content search back to a session id."""
        return Path(path).stem or None

    def is_active(self, last_activity: Optional[datetime]) -> bool:
        return is_recent(last_activity, self.clock(), config.ACTIVE_WINDOW_SECONDS)

    @abstractmethod
    def discover_session_files(self) -> list[Path]:
        """Discover all session files, sorted."""
        ...

    @abstractmethod
    def parse_session(self, path: Path) -> Session | None:
        """Parse a session file into a Session, or None when it has no content."""
        ...

    @abstractmethod
    def list_transcript(self, session: Session) -> list[TranscriptEvent]:
        """Ordered transcript events for a session."""
        ...

    def _candidate_files(self, since: Optional[datetime] = None) -> list[Path]:
        files = self.discover_session_files()
        if since is None:
            return files
        cutoff = since.timestamp()
        recent = []
        for path in files:
            try:
                if path.stat().st_mtime >= cutoff:
                    recent.append(path)
            except OSError:
                continue
        return recent

    def _collect(self, paths: list[Path], parse: Callable[[Path], Session | None]) -> list[Session]:
        sessions = []
        for path in paths:
            try:
                session = parse(path)
            except Exception as e:
                logger.debug(f"Skipping {path}: {e}")
                continue
            if session:
                sessions.append(session)
        return sessions

    def load_sessions(self, since: Optional[datetime] = None) -> list[Session]:
        """Load all sessions from this provider."""
        return self._collect(self._candidate_files(since), self.parse_session)

    def list_sessions(
        self,
        since: Optional[datetime] = None,
        project_filter: Optional[str] = None,
    ) -> list[Session]:
        """Sessions whose file changed at or after ``since`` and whose
        project name contains ``project_filter`` (case-insensitive)."""
        sessions = self.load_sessions(since)
        if project_filter:
            needle = project_filter.lower()
            sessions = [s for s in sessions if needle in s.project_name.lower()]
        return sessions
