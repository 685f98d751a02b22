"""Read bounded, display-ready message threads from session transcript logs."""

from __future__ import annotations

import json
import logging
from collections import OrderedDict
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Literal

from .config import MissionControlSettings

logger = logging.getLogger(__name__)

MessageRole = Literal["user", "assistant", "system", "tool"]

_SKIPPED_PART_TYPES = {"thinking", "toolCall"}


@dataclass(slots=True)
class TranscriptMessage:
    id: str
    role: MessageRole
    text: str
    timestamp: str | int | float | None = None


class SessionModelCache:
    """Bounded LRU of model identities keyed by resolved transcript path.

    An entry is reused only while the file's size and mtime are unchanged.
    """

    def __init__(self, maxsize: int = 256) -> None:
        self._maxsize = maxsize
        self._entries: OrderedDict[Path, tuple[tuple[int, int] | None, str | None]] = OrderedDict()

    @staticmethod
    def _signature(path: Path) -> tuple[int, int] | None:
        try:
            stat = path.stat()
        except OSError:
            return None
        return (stat.st_size, stat.st_mtime_ns)

    def lookup(self, path: Path) -> tuple[bool, str | None]:
        entry = self._entries.get(path)
        if entry is None:
            return False, None
        signature, value = entry
        if signature != self._signature(path):
            del self._entries[path]
            return False, None
        self._entries.move_to_end(path)
        return True, value

    def store(self, path: Path, value: str | None) -> None:
        self._entries[path] = (self._signature(path), value)
        self._entries.move_to_end(path)
        while len(self._entries) > self._maxsize:
            self._entries.popitem(last=False)

    def __len__(self) -> int:
        return len(self._entries)


def _normalize_role(raw: Any) -> MessageRole:
    if raw in ("user", "assistant", "system"):
        return raw
    return "tool"


def extract_text(content: Any) -> str:
    """Flatten message content into plain text, dropping thinking and tool-call parts."""

    if not content:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts: list[str] = []
        for item in content:
            if not isinstance(item, dict):
                continue
            if item.get("type") in _SKIPPED_PART_TYPES:
                continue
            text = item.get("text")
            if isinstance(text, str) and text.strip():
                parts.append(text)
            nested = item.get("content")
            if nested:
                nested_text = extract_text(nested)
                if nested_text.strip():
                    parts.append(nested_text)
        return "\n\n".join(parts).strip()
    if isinstance(content, dict):
        text = content.get("text")
        if isinstance(text, str):
            return text
    return ""


def _model_from_record(item: dict[str, Any]) -> str | None:
    if item.get("type") == "model_change" and isinstance(item.get("modelId"), str):
        provider = item.get("provider")
        model = item["modelId"].strip()
    elif item.get("type") == "custom" and item.get("customType") == "model-snapshot":
        data = item.get("data") if isinstance(item.get("data"), dict) else {}
        snapshot_model = data.get("modelId") or data.get("model")
        if not isinstance(snapshot_model, str) or not snapshot_model:
            return None
        provider = data.get("provider")
        model = snapshot_model.strip()
    else:
        return None
    provider = provider.strip() if isinstance(provider, str) else ""
    return f"{provider}/{model}" if provider else model


class TranscriptReader:
    """Reads ``<session>.jsonl`` logs newest-first with bounded scan depth."""

    def __init__(
        self,
        settings: MissionControlSettings,
        model_cache: SessionModelCache | None = None,
    ) -> None:
        self._settings = settings
        self._model_cache = model_cache or SessionModelCache(settings.model_cache_size)

    @property
    def model_cache(self) -> SessionModelCache:
        return self._model_cache

    def resolve_path(self, session_id: str | None, session_file: str | None = None) -> Path | None:
        if session_file:
            candidate = Path(session_file)
            return candidate if candidate.is_absolute() else self._settings.sessions_dir / candidate
        if not session_id:
            return None
        return self._settings.sessions_dir / f"{session_id}.jsonl"

    @staticmethod
    def _read_lines(path: Path) -> list[str] | None:
        try:
            return path.read_text(encoding="utf-8", errors="replace").split("\n")
        except FileNotFoundError:
            return None
        except OSError as exc:
            logger.warning("Could not read transcript", extra={"path": str(path), "error": str(exc)})
            return None

    def read_messages(
        self, session_id: str | None, session_file: str | None = None
    ) -> list[TranscriptMessage]:
        """Return up to ``max_messages_per_agent`` non-tool messages, oldest first."""

        path = self.resolve_path(session_id, session_file)
        if path is None:
            return []
        lines = self._read_lines(path)
        if lines is None:
            return []

        max_messages = self._settings.max_messages_per_agent
        max_lines = self._settings.max_lines_per_session_scan
        max_chars = self._settings.max_message_chars
        fallback_id = session_id or path.stem

        messages: list[TranscriptMessage] = []
        scanned = 0
        for index in range(len(lines) - 1, -1, -1):
            if scanned >= max_lines or len(messages) >= max_messages:
                break
            line = lines[index]
            if not line:
                continue
            scanned += 1

            try:
                item = json.loads(line)
            except json.JSONDecodeError:
                continue
            if not isinstance(item, dict) or item.get("type") != "message":
                continue
            message = item.get("message")
            if not isinstance(message, dict) or not message.get("role"):
                continue

            role = _normalize_role(message.get("role"))
            if role == "tool":
                continue
            text = extract_text(message.get("content")).strip()
            if not text:
                continue

            item_id = item.get("id")
            messages.append(
                TranscriptMessage(
                    id=item_id if isinstance(item_id, str) and item_id else f"{fallback_id}-{index}",
                    role=role,
                    text=text[:max_chars],
                    timestamp=message.get("timestamp", item.get("timestamp")),
                )
            )

        messages.reverse()
        return messages

    def read_model(self, session_id: str | None, session_file: str | None = None) -> str | None:
        """Last model declaration within the first ``max_lines_for_model_scan`` lines."""

        path = self.resolve_path(session_id, session_file)
        if path is None:
            return None

        hit, cached = self._model_cache.lookup(path)
        if hit:
            return cached

        value: str | None = None
        lines = self._read_lines(path) or []
        for line in lines[: self._settings.max_lines_for_model_scan]:
            if not line:
                continue
            try:
                item = json.loads(line)
            except json.JSONDecodeError:
                continue
            if isinstance(item, dict):
                declared = _model_from_record(item)
                if declared:
                    value = declared

        self._model_cache.store(path, value)
        return value


__all__ = ["SessionModelCache", "TranscriptMessage", "TranscriptReader", "extract_text"]
