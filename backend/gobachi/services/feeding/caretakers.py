from typing import Dict


class CaretakerRegistry:
    """Participants of the current feeding session, keyed by participant id.

    There is deliberately no leave operation: someone who drops off the chat
    still counts toward the coop bonus of the session they joined.
    """

    def __init__(self) -> None:
        self._entries: Dict[str, str] = {}

    def add(self, caretaker_id: str, emoji: str) -> None:
        # Rejoining with another emoji only updates the display emoji
        self._entries[caretaker_id] = emoji

    def count(self) -> int:
        return len(self._entries)

    def all(self) -> Dict[str, str]:
        return dict(self._entries)

    def clear(self) -> None:
        self._entries.clear()

    def __contains__(self, caretaker_id: object) -> bool:
        return caretaker_id in self._entries
