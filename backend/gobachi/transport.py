"""Client side of the chat relay, used as the coop broadcast transport."""

import logging
from typing import Any, Callable, Dict, List, Optional

import socketio

from gobachi.chat import ChatEntry
from gobachi.services.feeding.router import CoopRouter
from gobachi.services.feeding.session import FeedingConfig
from gobachi.services.feeding.timers import BackgroundTaskScheduler


logger = logging.getLogger(__name__)

ChatHandler = Callable[[ChatEntry], None]
PresenceHandler = Callable[[int], None]


class SocketIOChatTransport:
    """Broadcasts chat lines through the relay and hands live lines to handlers.

    Lines replayed in the relay's ``init`` history are kept in ``history``
    for display only; they never reach message handlers, so old control
    messages cannot restart finished sessions.

    The wrapped client also serves as the task runner for
    :class:`~gobachi.services.feeding.timers.BackgroundTaskScheduler`.
    """

    def __init__(self, emoji: str, client: Optional[socketio.Client] = None, namespace: str = '/ws') -> None:
        self.emoji = emoji
        self.namespace = namespace
        self.client = client or socketio.Client(reconnection=True)
        self.history: List[ChatEntry] = []
        self.presence = 0
        self._handlers: List[ChatHandler] = []
        self._presence_handlers: List[PresenceHandler] = []
        self.client.on('init', self._on_init, namespace=namespace)
        self.client.on('chat', self._on_chat, namespace=namespace)
        self.client.on('presence', self._on_presence, namespace=namespace)

    def connect(self, url: str, **kwargs: Any) -> None:
        self.client.connect(url, namespaces=[self.namespace], **kwargs)
        logger.info(f"[transport-connect] url={url} sid={self.sender_id}")

    def disconnect(self) -> None:
        self.client.disconnect()

    @property
    def sender_id(self) -> Optional[str]:
        return self.client.get_sid(namespace=self.namespace)

    @property
    def connected(self) -> bool:
        return bool(self.client.connected)

    # ---------- Transport ----------
    def broadcast(self, text: str) -> None:
        if not self.connected:
            logger.info("[transport-drop] not connected; broadcast discarded")
            return
        self.client.emit('chat', {'emoji': self.emoji, 'text': text}, namespace=self.namespace)

    def on_message(self, handler: ChatHandler) -> None:
        self._handlers.append(handler)

    def on_presence(self, handler: PresenceHandler) -> None:
        self._presence_handlers.append(handler)

    # ---------- TaskRunner ----------
    def start_background_task(self, target: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        return self.client.start_background_task(target, *args, **kwargs)

    def sleep(self, seconds: float) -> Any:
        return self.client.sleep(seconds)

    # ---------- relay events ----------
    def _on_init(self, data: Dict[str, Any]) -> None:
        data = data if isinstance(data, dict) else {}
        self.history = [e for e in (ChatEntry.from_payload(p) for p in data.get('chat') or []) if e]
        self._set_presence(data.get('presence'))

    def _on_chat(self, data: Dict[str, Any]) -> None:
        entry = ChatEntry.from_payload((data or {}).get('entry') if isinstance(data, dict) else None)
        if entry is None:
            return
        for handler in list(self._handlers):
            try:
                handler(entry)
            except Exception:
                logger.exception("[transport-handler-error] chat handler failed")

    def _on_presence(self, data: Dict[str, Any]) -> None:
        self._set_presence((data or {}).get('presence') if isinstance(data, dict) else None)

    def _set_presence(self, value: Any) -> None:
        if not isinstance(value, int):
            return
        self.presence = value
        for handler in list(self._presence_handlers):
            handler(value)


def create_coop_router(transport: SocketIOChatTransport, config: Optional[FeedingConfig] = None) -> CoopRouter:
    """Router for an already connected transport, ticking on its background tasks."""
    if not transport.sender_id:
        raise RuntimeError("transport must be connected before creating a router")
    return CoopRouter(
        transport,
        local_id=transport.sender_id,
        local_emoji=transport.emoji,
        config=config,
        scheduler=BackgroundTaskScheduler(transport),
    )
