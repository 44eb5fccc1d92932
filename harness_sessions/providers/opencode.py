"""OpenCode session provider.

OpenCode splits one session across three parallel trees under its storage root:

* ``project/<hash>.json`` - project metadata (``id``, ``worktree``)
* ``session/<hash>/<sessionId>.json`` - session metadata (``id``, ``title``, ``parentID``)
* ``message/<sessionId>/<messageId>.json`` - one file per message

Message text lives either inline in ``content`` or in
``part/<messageId>/*.json`` files.
"""

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Optional

from .. import config
from ..dates import file_ctime, file_mtime, parse_timestamp
from ..models import ProviderKind, Session, TranscriptEvent
from . import register_provider
from .base import (
    SessionProvider,
    clamp_start,
    extract_text_content,
    is_system_text,
    read_json,
    tool_payload,
    truncate,
)

MODEL_SCAN_DEPTH = 5
GLOBAL_PROJECT_FILE = "global.json"


@dataclass
class OpenCodeLookup:
    """Join tables for one listing pass: project hash -> worktree, session id -> message dir."""

    worktrees: dict[str, str] = field(default_factory=dict)
    message_dirs: dict[str, Path] = field(default_factory=dict)

    @classmethod
    def build(cls, storage_dir: Path) -> "OpenCodeLookup":
        lookup = cls()

        project_dir = storage_dir / "project"
        if project_dir.is_dir():
            for project_file in sorted(project_dir.glob("*.json")):
                if project_file.name == GLOBAL_PROJECT_FILE:
                    continue
                project = read_json(project_file)
                if project and project.get("id") and isinstance(project.get("worktree"), str):
                    lookup.worktrees[project["id"]] = project["worktree"]

        message_dir = storage_dir / "message"
        if message_dir.is_dir():
            for session_dir in message_dir.iterdir():
                if session_dir.is_dir():
                    lookup.message_dirs[session_dir.name] = session_dir

        return lookup


def _message_text(msg: dict, part_dir: Path) -> str:
    content = msg.get("content")
    if content:
        return extract_text_content(content)
    message_id = msg.get("id")
    if not message_id:
        return ""
    texts = []
    for part in _load_parts(part_dir / message_id):
        if part.get("type") == "text" and isinstance(part.get("text"), str):
            texts.append(part["text"])
    return "\n".join(texts)


def _load_parts(part_msg_dir: Path) -> list[dict]:
    if not part_msg_dir.is_dir():
        return []
    parts = []
    for part_file in sorted(part_msg_dir.glob("*.json")):
        part = read_json(part_file)
        if part is not None:
            parts.append(part)
    return parts


def _model_identity(msg: dict) -> tuple[Optional[str], Optional[str]]:
    model = msg.get("model")
    if isinstance(model, dict) and model.get("providerID") and model.get("modelID"):
        return model["providerID"], model["modelID"]
    if msg.get("providerID") and msg.get("modelID"):
        return msg["providerID"], msg["modelID"]
    return None, None


def _session_id(data: dict, path: Path) -> str:
    session_id = data.get("id")
    return session_id if isinstance(session_id, str) and session_id else path.stem


def _created(msg: dict) -> Optional[datetime]:
    time_data = msg.get("time")
    if isinstance(time_data, dict):
        return parse_timestamp(time_data.get("created"))
    return None


@register_provider
class OpenCodeProvider(SessionProvider):
    """Provider for OpenCode sessions."""

    kind = ProviderKind.OPENCODE
    display_name = "OpenCode"
    icon = "💻"
    color = "magenta"
    search_globs = ("*.json",)

    @property
    def session_dir(self) -> Path:
        return self.root / "session"

    @property
    def message_dir(self) -> Path:
        return self.root / "message"

    @property
    def part_dir(self) -> Path:
        return self.root / "part"

    def search_roots(self) -> list[Path]:
        return [self.session_dir, self.message_dir, self.part_dir]

    def session_id_for_file(self, path: Path | str) -> Optional[str]:
        path = Path(path)
        if path.is_relative_to(self.message_dir):
            return path.parent.name
        if path.is_relative_to(self.session_dir):
            data = read_json(path)
            return _session_id(data, path) if data is not None else path.stem
        if path.is_relative_to(self.part_dir):
            part = read_json(path)
            if part and isinstance(part.get("sessionID"), str):
                return part["sessionID"]
        return None

    def discover_session_files(self) -> list[Path]:
        files = []
        if not self.session_dir.is_dir():
            return files
        for project_dir in sorted(self.session_dir.iterdir()):
            if project_dir.is_dir():
                files.extend(sorted(project_dir.glob("*.json")))
        return files

    def load_sessions(self, since: Optional[datetime] = None) -> list[Session]:
        lookup = OpenCodeLookup.build(self.root)
        return self._collect(self._candidate_files(since), lambda p: self._parse(p, lookup))

    def parse_session(self, path: Path) -> Session | None:
        return self._parse(Path(path), OpenCodeLookup.build(self.root))

    def _message_files(self, session_id: str, lookup: OpenCodeLookup) -> list[Path]:
        message_dir = lookup.message_dirs.get(session_id)
        if message_dir is None:
            return []
        return sorted(message_dir.glob("*.json"))

    def _parse(self, path: Path, lookup: OpenCodeLookup) -> Session | None:
        data = read_json(path)
        if data is None:
            return None

        session_id = _session_id(data, path)
        project_hash = path.parent.name
        cwd = lookup.worktrees.get(project_hash) or data.get("directory") or ""

        message_files = self._message_files(session_id, lookup)
        messages = [m for m in (read_json(f) for f in message_files) if m is not None]

        first_prompt = ""
        content_length = 0
        earliest: Optional[datetime] = None
        latest: Optional[datetime] = None
        for msg in messages:
            text = _message_text(msg, self.part_dir)
            content_length += len(text)
            if msg.get("role") == "user" and not first_prompt and text.strip() and not is_system_text(text):
                first_prompt = text.strip()
            created = _created(msg)
            if created:
                earliest = created if earliest is None or created < earliest else earliest
                latest = created if latest is None or created > latest else latest

        if not messages and not data.get("title"):
            return None

        # Model identity is only reliable on recent assistant messages.
        model_provider, model_id = None, None
        for msg in reversed(messages[-(MODEL_SCAN_DEPTH + 1):]):
            model_provider, model_id = _model_identity(msg)
            if model_id:
                break

        last_activity = (file_mtime(message_files[-1]) if message_files else None) or latest or file_mtime(path)
        session_created = _created(data)
        started_at = clamp_start(session_created or earliest or file_ctime(path), last_activity)

        title = data.get("title") if isinstance(data.get("title"), str) else ""
        parent_id = data.get("parentID") or None

        return Session(
            session_id=session_id,
            source=self.kind,
            file_path=path,
            project_id=cwd,
            project_name=Path(cwd).name if cwd else project_hash[:8],
            working_directory=cwd,
            first_prompt=truncate(title or first_prompt, config.PROMPT_PREVIEW_CHARS),
            message_count=len(message_files),
            content_length=content_length,
            started_at=started_at,
            last_activity_at=last_activity,
            is_active=self.is_active(last_activity),
            is_sub_agent=bool(parent_id),
            parent_session_id=parent_id,
            model_provider=model_provider,
            model_id=model_id,
        )

    def list_transcript(self, session: Session) -> list[TranscriptEvent]:
        events: list[TranscriptEvent] = []
        message_dir = self.message_dir / session.session_id
        if not message_dir.is_dir():
            return events

        for msg_file in sorted(message_dir.glob("*.json")):
            msg = read_json(msg_file)
            if msg is None:
                continue
            ts = _created(msg)
            role = msg.get("role")
            if role in ("user", "assistant"):
                events.append(TranscriptEvent(type=role, timestamp=ts, content=_message_text(msg, self.part_dir)))

            if msg.get("type") == "edit":
                events.append(TranscriptEvent(
                    type="tool", timestamp=ts, tool_name="edit", content=tool_payload(msg.get("content") or ""),
                ))

            message_id = msg.get("id")
            if not message_id:
                continue
            for part in _load_parts(self.part_dir / message_id):
                if part.get("type") != "tool":
                    continue
                state = part.get("state") if isinstance(part.get("state"), dict) else {}
                events.append(TranscriptEvent(
                    type="tool",
                    timestamp=ts,
                    tool_name=part.get("tool") or "tool",
                    content=tool_payload(state.get("input", {})),
                ))

        return events
