"""Claude Code session provider."""

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

AGENT_FILE_PREFIX = "agent-"
_AGENT_PARENT_RE = re.compile(r"^agent-([a-f0-9-]+)-")


def decode_path(encoded: str) -> str:
    """Decode a project directory name back to the working directory.

    Claude Code replaces every "/" with "-", so "-Users-me-my-app" decodes to
    "/Users/me/my/app". Directories whose names contain "-" cannot be
    recovered exactly; callers prefer the ``cwd`` recorded in the log.
    """
    return encoded.replace("-", "/")


def _blocks(content) -> list:
    return content if isinstance(content, list) else []


@register_provider
class ClaudeCodeProvider(SessionProvider):
    """Provider for Claude Code sessions."""

    kind = ProviderKind.CLAUDE
    display_name = "Claude Code"
    icon = "🧠"
    color = "cyan"
    search_globs = ("*.jsonl",)

    def discover_session_files(self) -> list[Path]:
        """Discover all JSONL session files, one level below the project folders."""
        files = []
        if not self.root.is_dir():
            return files

        for project_dir in sorted(self.root.iterdir()):
            if not project_dir.is_dir():
                continue
            files.extend(sorted(project_dir.glob("*.jsonl")))

        return files

    def parse_session(self, path: Path) -> Session | None:
        """Parse a Claude Code JSONL session file."""
        path = Path(path)
        mtime = file_mtime(path)
        if mtime is None:
            return None

        record_session_id = ""
        cwd = ""
        git_branch = ""
        first_prompt = ""
        goal: Optional[str] = None
        model_id: Optional[str] = None
        started_at: Optional[datetime] = None
        last_activity: Optional[datetime] = None
        message_count = 0
        content_length = 0
        is_sidechain = False
        parsed_any = False

        try:
            for data in iter_jsonl(path):
                parsed_any = True
                msg_type = data.get("type")

                if not record_session_id and isinstance(data.get("sessionId"), str):
                    record_session_id = data["sessionId"]
                if not cwd and isinstance(data.get("cwd"), str):
                    cwd = data["cwd"]
                if not git_branch and isinstance(data.get("gitBranch"), str):
                    git_branch = data["gitBranch"]
                if data.get("isSidechain"):
                    is_sidechain = True

                ts = parse_timestamp(data.get("timestamp"))
                if ts:
                    if started_at is None or ts < started_at:
                        started_at = ts
                    if last_activity is None or ts > last_activity:
                        last_activity = ts

                if msg_type == "summary":
                    summary = data.get("summary")
                    if not goal and isinstance(summary, str) and summary:
                        goal = truncate(summary, config.GOAL_PREVIEW_CHARS)
                    continue

                if msg_type not in ("user", "human", "assistant"):
                    continue

                message_count += 1
                msg = data.get("message")
                if not isinstance(msg, dict):
                    continue
                text = extract_text_content(msg.get("content"))
                content_length += len(text)

                if msg_type == "assistant" and not model_id and isinstance(msg.get("model"), str):
                    model_id = msg["model"]
                if msg_type != "assistant" and not first_prompt and text.strip() and not is_system_text(text):
                    first_prompt = truncate(text.strip(), config.PROMPT_PREVIEW_CHARS)
        except OSError:
            return None

        if not parsed_any:
            return None

        # The file stem is the session id. Resumed sessions copy earlier
        # history in, so record sessionIds may name another session.
        # Sub-agent transcripts live beside their parent as agent-*.jsonl and
        # reuse the parent's sessionId in every record.
        session_id = path.stem
        is_sub_agent = path.name.startswith(AGENT_FILE_PREFIX) or is_sidechain
        parent_session_id = None
        if is_sub_agent:
            if record_session_id and record_session_id != session_id:
                parent_session_id = record_session_id
            else:
                match = _AGENT_PARENT_RE.match(path.name)
                parent_session_id = match.group(1) if match else None

        if last_activity is None:
            last_activity = mtime
        started_at = clamp_start(started_at, last_activity)

        working_directory = cwd or decode_path(path.parent.name)
        project_name = Path(working_directory).name or working_directory

        return Session(
            session_id=session_id,
            source=self.kind,
            file_path=path,
            project_id=working_directory,
            project_name=project_name,
            working_directory=working_directory,
            branch=git_branch or None,
            first_prompt=first_prompt,
            summary_goal=goal,
            message_count=message_count,
            content_length=content_length,
            started_at=started_at,
            last_activity_at=last_activity,
            is_active=self.is_active(last_activity),
            is_sub_agent=is_sub_agent,
            parent_session_id=parent_session_id,
            model_provider="anthropic" if model_id else None,
            model_id=model_id,
        )

    def list_transcript(self, session: Session) -> list[TranscriptEvent]:
        events: list[TranscriptEvent] = []
        tool_names: dict[str, str] = {}
        try:
            for data in iter_jsonl(Path(session.file_path)):
                msg_type = data.get("type")
                ts = parse_timestamp(data.get("timestamp"))

                if msg_type in ("tool_use", "tool_result"):
                    events.append(TranscriptEvent(
                        type="tool",
                        timestamp=ts,
                        tool_name=data.get("name") or data.get("tool_name") or "tool",
                        content=tool_payload(data.get("input") or data.get("content")),
                    ))
                    continue

                if msg_type not in ("user", "human", "assistant"):
                    continue
                msg = data.get("message")
                if not isinstance(msg, dict):
                    continue

                content = msg.get("content")
                text = extract_text_content(content)
                if text:
                    events.append(TranscriptEvent(
                        type="assistant" if msg_type == "assistant" else "user",
                        timestamp=ts,
                        content=text,
                    ))

                for block in _blocks(content):
                    if not isinstance(block, dict):
                        continue
                    if block.get("type") == "tool_use":
                        name = block.get("name") or "tool"
                        if block.get("id"):
                            tool_names[block["id"]] = name
                        events.append(TranscriptEvent(
                            type="tool", timestamp=ts, tool_name=name, content=tool_payload(block.get("input")),
                        ))
                    elif block.get("type") == "tool_result":
                        events.append(TranscriptEvent(
                            type="tool",
                            timestamp=ts,
                            tool_name=tool_names.get(block.get("tool_use_id"), "tool_result"),
                            content=tool_payload(block.get("content")),
                        ))
        except OSError:
            return []
        return events
