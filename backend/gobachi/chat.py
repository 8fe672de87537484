import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Deque, Dict, List, Optional

from gobachi.services.feeding.protocol import is_control


DEFAULT_EMOJI = '👻'


@dataclass(frozen=True)
class ChatEntry:
    sender_id: str
    emoji: str
    text: str
    ts: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {'id': self.sender_id, 'emoji': self.emoji, 'text': self.text, 'ts': self.ts}

    @classmethod
    def from_payload(cls, payload: Any) -> Optional['ChatEntry']:
        """Parse a relayed entry; returns None for anything malformed."""
        if not isinstance(payload, dict):
            return None
        text = payload.get('text')
        if not isinstance(text, str):
            return None
        try:
            ts = int(payload.get('ts') or 0)
        except (TypeError, ValueError):
            ts = 0
        return cls(
            sender_id=str(payload.get('id') or ''),
            emoji=str(payload.get('emoji') or DEFAULT_EMOJI),
            text=text,
            ts=ts,
        )


class ChatHistory:
    """Bounded in-memory chat log kept by the relay for newly connected clients."""

    def __init__(self, size: int = 50, max_length: int = 200) -> None:
        self.configure(size, max_length)

    def configure(self, size: int, max_length: int) -> None:
        """Resize and empty the log."""
        self.max_length = max(1, max_length)
        self._entries: Deque[ChatEntry] = deque(maxlen=max(1, size))

    def append(self, sender_id: str, emoji: Optional[str], text: Any) -> Optional[ChatEntry]:
        """Store a line, cutting chat to max_length. Over-long control lines are refused."""
        if not isinstance(text, str):
            return None
        cleaned = text.strip()
        if not cleaned:
            return None
        if len(cleaned) > self.max_length and is_control(cleaned):
            # A cut control line can still parse, with the wrong fields
            return None
        entry = ChatEntry(
            sender_id=sender_id,
            emoji=(str(emoji).strip() if emoji else '') or DEFAULT_EMOJI,
            text=cleaned[:self.max_length],
            ts=int(time.time() * 1000),
        )
        self._entries.append(entry)
        return entry

    def recent(self) -> List[Dict[str, Any]]:
        return [e.to_dict() for e in self._entries]

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
