"""Codex (OpenAI) session provider.

Codex writes one rollout file per session into a dated tree:
``~/.codex/sessions/YYYY/MM/DD/rollout-<datetime>-<uuid>.jsonl``.
"""

import os
import re
from datetime import datetime
from pathlib import Path
from typing import Optional

from .. import config
from ..dates import file_mtime, parse_timestamp
from ..models import ProviderKind, Session, TranscriptEvent
from . import register_provider
from .base import (
    SessionProvider,
    clamp_start,
    extract_text_content,
    is_system_text,
    iter_jsonl,
    tool_payload,
    truncate,
)

SESSION_FILE_SUFFIXES = (".jsonl", ".json")
TOOL_RECORD_TYPES = ("function_call", "tool_use", "custom_tool_call", "local_shell_call")

_UUID_RE = re.compile(r"([a-f0-9]{8}-[a-f0-9]{4}-[a-f0-9]{4}-[a-f0-9]{4}-[a-f0-9]{12})", re.IGNORECASE)


def extract_session_id(filename: str) -> str:
    """Session id is the UUID embedded in the filename, else the bare name."""
    match = _UUID_RE.search(filename)
    if match:
        return match.group(1)
    return re.sub(r"\.(jsonl|json)$", "", filename)


def _message_fields(data: dict) -> tuple[Optional[dict], Optional[str]]:
    """Return (message dict, role) for response_item payloads and legacy message records."""
    msg_type = data.get("type")
    if msg_type == "response_item" and isinstance(data.get("payload"), dict):
        payload = data["payload"]
        return payload, payload.get("role")
    if msg_type == "message":
        return data, data.get("role")
    return None, None


def _tool_record(data: dict) -> Optional[dict]:
    if data.get("type") in TOOL_RECORD_TYPES:
        return data
    payload = data.get("payload")
    if data.get("type") == "response_item" and isinstance(payload, dict) and payload.get("type") in TOOL_RECORD_TYPES:
        return payload
    return None


@register_provider
class CodexProvider(SessionProvider):
    """Provider for OpenAI Codex CLI sessions."""

    kind = ProviderKind.CODEX
    display_name = "Codex"
    icon = "🌀"
    color = "green"
    search_globs = ("*.jsonl", "*.json")

    def discover_session_files(self) -> list[Path]:
        """Walk the dated tree to any depth."""
        files = []
        if not self.root.is_dir():
            return files

        for dirpath, dirnames, filenames in os.walk(self.root):
            dirnames.sort()
            for filename in sorted(filenames):
                if filename.endswith(SESSION_FILE_SUFFIXES):
                    files.append(Path(dirpath) / filename)

        return files

    def session_id_for_file(self, path: Path | str) -> Optional[str]:
        return extract_session_id(Path(path).name)

    def parse_session(self, path: Path) -> Session | None:
        """Parse a Codex rollout file."""
        path = Path(path)
        mtime = file_mtime(path)
        if mtime is None:
            return None

        session_id = extract_session_id(path.name)
        cwd = ""
        git_branch: Optional[str] = None
        git_commit: Optional[str] = None
        model_provider: Optional[str] = None
        model_id: Optional[str] = None
        first_prompt = ""
        meta_started: Optional[datetime] = None
        started_at: Optional[datetime] = None
        last_activity: Optional[datetime] = None
        message_count = 0
        content_length = 0
        parsed_any = False

        try:
            for data in iter_jsonl(path):
                parsed_any = True
                msg_type = data.get("type")
                payload = data.get("payload") if isinstance(data.get("payload"), dict) else {}

                if msg_type == "session_meta":
                    cwd = payload.get("cwd") or cwd
                    git = payload.get("git") if isinstance(payload.get("git"), dict) else {}
                    git_branch = git.get("branch") or git_branch
                    git_commit = git.get("commit_hash") or git_commit
                    model_provider = payload.get("model_provider") or model_provider
                    meta_started = parse_timestamp(payload.get("timestamp")) or meta_started
                elif msg_type == "turn_context":
                    model_id = payload.get("model") or model_id
                    cwd = cwd or payload.get("cwd") or ""

                ts = parse_timestamp(data.get("timestamp"))
                if ts:
                    if started_at is None or ts < started_at:
                        started_at = ts
                    if last_activity is None or ts > last_activity:
                        last_activity = ts

                msg, role = _message_fields(data)
                if msg is None or role not in ("user", "assistant"):
                    continue
                message_count += 1
                text = extract_text_content(msg.get("content"))
                content_length += len(text)
                if role == "user" and not first_prompt and text.strip() and not is_system_text(text):
                    first_prompt = truncate(text.strip(), config.PROMPT_PREVIEW_CHARS)
        except OSError:
            return None

        if not parsed_any:
            return None

        if last_activity is None:
            last_activity = mtime
        started_at = clamp_start(meta_started or started_at, last_activity)

        return Session(
            session_id=session_id,
            source=self.kind,
            file_path=path,
            project_id=cwd,
            project_name=Path(cwd).name if cwd else "",
            working_directory=cwd,
            branch=git_branch,
            git_commit=git_commit,
            first_prompt=first_prompt,
            message_count=message_count,
            content_length=content_length,
            started_at=started_at,
            last_activity_at=last_activity,
            is_active=self.is_active(last_activity),
            model_provider=model_provider,
            model_id=model_id,
        )

    def list_transcript(self, session: Session) -> list[TranscriptEvent]:
        events: list[TranscriptEvent] = []
        try:
            for data in iter_jsonl(Path(session.file_path)):
                if data.get("type") == "session_meta":
                    continue
                ts = parse_timestamp(data.get("timestamp"))

                tool = _tool_record(data)
                if tool is not None:
                    events.append(TranscriptEvent(
                        type="tool",
                        timestamp=ts,
                        tool_name=tool.get("name") or "function",
                        content=tool_payload(tool.get("arguments") or tool.get("input") or tool.get("action")),
                    ))
                    continue

                msg, role = _message_fields(data)
                if msg is None or role not in ("user", "assistant"):
                    continue
                events.append(TranscriptEvent(
                    type=role,
                    timestamp=ts,
                    content=extract_text_content(msg.get("content")),
                ))
        except OSError:
            return []
        return events
