"""Session lifecycle utilities."""

from __future__ import annotations

import json
import os
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ValidationError

from chatloop.core.conversation import Conversation, ConversationLoadError
from chatloop.core.history import format_history
from chatloop.core.logs import redact


def _default_root() -> Path:
    return Path(os.environ.get("CHATLOOP_HOME", Path.home() / ".chatloop")) / "sessions"


DEFAULT_ROOT = _default_root()
MAX_SESSIONS = 20


class SessionLoadError(RuntimeError):
    """Raised when a session directory exists but cannot be deserialized."""


class SessionMetadata(BaseModel):
    session_id: str
    created_at: datetime
    updated_at: datetime
    provider: str | None = None
    model: str | None = None
    exchanges: int = 0
    llm_input_tokens: int = 0
    llm_output_tokens: int = 0
    last_stop_reason: str | None = None


@dataclass
class SessionContext:
    metadata: SessionMetadata
    conversation: Conversation = field(default_factory=Conversation)


class SessionManager:
    def __init__(self, root: Path | None = None, *, max_sessions: int = MAX_SESSIONS) -> None:
        self.root = root or _default_root()
        self.root.mkdir(parents=True, exist_ok=True)
        self.max_sessions = max(max_sessions, 1)

    def start(
        self,
        session_id: str | None = None,
        *,
        provider: str | None = None,
        model: str | None = None,
    ) -> SessionContext:
        if session_id:
            context = self._load_existing(session_id)
            if provider:
                context.metadata.provider = provider
            if model:
                context.metadata.model = model
            return context
        return self._create_new(provider=provider, model=model)

    def save(self, context: SessionContext) -> None:
        context.metadata.updated_at = datetime.now(UTC)
        session_dir = self.root / context.metadata.session_id
        session_dir.mkdir(parents=True, exist_ok=True)
        state_path = session_dir / "state.json"
        payload = json.dumps(
            {
                "metadata": context.metadata.model_dump(mode="json"),
                "conversation": context.conversation.to_payload(),
            },
            default=str,
            indent=2,
        )
        tmp_path = state_path.with_suffix(".json.tmp")
        tmp_path.write_text(payload)
        tmp_path.replace(state_path)
        self._enforce_rotation()

    def record_exchange(
        self,
        context: SessionContext,
        *,
        usage: dict[str, int] | None = None,
        stop_reason: str | None = None,
    ) -> None:
        metadata = context.metadata
        metadata.exchanges += 1
        metadata.last_stop_reason = stop_reason
        if usage:
            metadata.llm_input_tokens += int(
                usage.get("input_tokens") or usage.get("prompt_tokens") or 0
            )
            metadata.llm_output_tokens += int(
                usage.get("output_tokens") or usage.get("completion_tokens") or 0
            )
        self.save(context)

    def list_sessions(self) -> list[SessionMetadata]:
        sessions: list[SessionMetadata] = []
        for session_dir in self._session_dirs():
            try:
                sessions.append(self._load_existing(session_dir.name).metadata)
            except SessionLoadError:
                continue
        return sessions

    # ------------------------------------------------------------------
    def _create_new(self, *, provider: str | None, model: str | None) -> SessionContext:
        session_id = uuid.uuid4().hex[:12]
        metadata = SessionMetadata(
            session_id=session_id,
            created_at=datetime.now(UTC),
            updated_at=datetime.now(UTC),
            provider=provider,
            model=model,
        )
        context = SessionContext(metadata=metadata)
        self.save(context)
        return context

    def _load_existing(self, session_id: str) -> SessionContext:
        state_path = self.root / session_id / "state.json"
        if not state_path.exists():
            raise FileNotFoundError(f"Session '{session_id}' not found")
        try:
            data = json.loads(state_path.read_text())
        except json.JSONDecodeError as exc:
            raise SessionLoadError(f"Session '{session_id}' state is corrupted") from exc
        if not isinstance(data, dict):
            raise SessionLoadError(f"Session '{session_id}' state is corrupted")

        try:
            metadata = SessionMetadata(**data["metadata"])
        except (KeyError, TypeError, ValidationError) as exc:
            raise SessionLoadError(f"Session '{session_id}' metadata is invalid") from exc

        try:
            conversation = Conversation.from_payload(data.get("conversation", []))
        except ConversationLoadError as exc:
            raise SessionLoadError(f"Session '{session_id}' conversation is invalid") from exc
        return SessionContext(metadata=metadata, conversation=conversation)

    def _session_dirs(self) -> list[Path]:
        dirs = [path for path in self.root.iterdir() if path.is_dir()]
        return sorted(dirs, key=lambda p: p.stat().st_mtime, reverse=True)

    def _enforce_rotation(self) -> None:
        for extra in self._session_dirs()[self.max_sessions:]:
            for child in extra.iterdir():
                child.unlink()
            extra.rmdir()

    # ------------------------------------------------------------------
    def export_session(self, session_id: str, *, redact_secrets: bool = True) -> dict[str, Any]:
        """Return metadata plus the formatted transcript of a stored session."""

        context = self._load_existing(session_id)
        metadata = context.metadata.model_dump(mode="json")
        transcript = [message.model_dump(mode="json") for message in format_history(context.conversation.messages)]
        if redact_secrets:
            metadata = _redact_value(metadata)
            transcript = _redact_value(transcript)
        return {"metadata": metadata, "transcript": transcript}


def _redact_value(value: Any) -> Any:
    if isinstance(value, str):
        return redact(value)
    if isinstance(value, dict):
        return {key: _redact_value(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_redact_value(item) for item in value]
    return value


__all__ = ["DEFAULT_ROOT", "MAX_SESSIONS", "SessionContext", "SessionLoadError", "SessionManager", "SessionMetadata"]
