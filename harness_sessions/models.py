"""Unified session model for all providers."""

from dataclasses import asdict, dataclass, field, is_dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Optional


class ProviderKind(str, Enum):
    """Closed set of supported assistant tools."""

    CLAUDE = "claude"
    CODEX = "codex"
    OPENCODE = "opencode"


@dataclass
class Session:
    """One continuous interaction with one assistant tool."""

    # Identity
    session_id: str
    source: ProviderKind
    file_path: Path  # owning log file

    # Project context
    project_id: str = ""
    project_name: str = ""
    working_directory: str = ""
    branch: Optional[str] = None
    git_commit: Optional[str] = None
    repo_id: Optional[str] = None  # "owner/repo"
    repo_url: Optional[str] = None

    # Content
    first_prompt: str = ""
    summary_goal: Optional[str] = None
    message_count: int = 0
    content_length: int = 0  # total transcript characters

    # Timing
    started_at: Optional[datetime] = None
    last_activity_at: Optional[datetime] = None
    is_active: bool = False

    # Hierarchy
    is_sub_agent: bool = False
    parent_session_id: Optional[str] = None

    # Model identity
    model_provider: Optional[str] = None
    model_id: Optional[str] = None


@dataclass
class Project:
    """Sessions grouped by git root or working directory."""

    project_id: str
    project_name: str
    repo_id: Optional[str] = None
    repo_url: Optional[str] = None
    last_activity_at: Optional[datetime] = None
    session_count: int = 0
    active_session_count: int = 0

    @property
    def is_active(self) -> bool:
        return self.active_session_count > 0


@dataclass
class TranscriptEvent:
    """A single turn inside a session."""

    type: str  # "user", "assistant" or "tool"
    timestamp: Optional[datetime] = None
    content: Optional[str] = None
    tool_name: Optional[str] = None


@dataclass
class SearchMatch:
    file: str
    line: int  # 1-based
    content: str = ""


@dataclass
class CommitInfo:
    hash: str
    repository_root: str
    repository_name: str
    message: str = ""
    author: str = ""
    date: str = ""
    changed_files: list[str] = field(default_factory=list)


@dataclass
class SessionMatch:
    """A candidate session for a commit, scored in [0, 1]."""

    session_id: str
    project_name: str
    score: float
    matched_files: list[str]
    file_path: str


@dataclass
class CommitSearchResult:
    """Outcome of commit attribution: either a commit with matches or an error."""

    commit: Optional[CommitInfo] = None
    sessions: list[SessionMatch] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _plain(value):
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_plain(v) for v in value]
    return value


def to_dict(obj) -> dict:
    """Convert a model dataclass into JSON-safe primitives."""
    if not is_dataclass(obj):
        raise TypeError(f"Expected a dataclass instance, got {type(obj).__name__}")
    data = _plain(asdict(obj))
    if isinstance(obj, Project):
        data["is_active"] = obj.is_active
    return data
