import logging
import threading
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Deque, List, Optional, Protocol

from gobachi.chat import ChatEntry
from .protocol import (
    BeginMessage,
    DropMessage,
    JoinMessage,
    StartMessage,
    decode,
    encode,
    is_control,
)
from .session import ACTIVE, IDLE, JOINING, FeedingConfig, FeedingSession
from .timers import Clock, Scheduler, SystemClock


logger = logging.getLogger(__name__)

# How many finished session keys and past connection ids a router remembers
KEYS_REMEMBERED = 32


class Transport(Protocol):
    """Opaque fire-and-forget broadcast channel (the pet chat)."""

    def broadcast(self, text: str) -> None:
        ...

    def on_message(self, handler: Callable[[ChatEntry], None]) -> None:
        ...


@dataclass(frozen=True)
class RemoteDrop:
    key: str
    sender_id: str
    x: float
    y: float
    emoji: str


SessionListener = Callable[[FeedingSession], None]
DropListener = Callable[[RemoteDrop], None]


class CoopRouter:
    """Keeps one local feeding session in step with peers over the chat.

    Local actions are applied to the tracked session and then broadcast as
    control messages. Inbound chat lines are decoded and applied to the
    tracked session when their key matches; everything else is ignored.

    Only the local host may close the join window early through ``begin()``.
    An inbound ``begin`` is honoured from any peer, because the transport
    carries no authority.

    Sessions are built with the router's lock. Session listeners may call
    back into the router from a timer task without a second lock to order.

    The local id follows ``transport.sender_id`` when the transport has one,
    since a reconnect hands out a new id. Lines sent under any id this router
    used recently count as its own echoes.
    """

    def __init__(self, transport: Transport, local_id: str, local_emoji: str,
                 config: Optional[FeedingConfig] = None, clock: Optional[Clock] = None,
                 scheduler: Optional[Scheduler] = None,
                 session_factory: Optional[Callable[[Any], FeedingSession]] = None) -> None:
        self.transport = transport
        self.local_emoji = local_emoji
        self.clock = clock or SystemClock()
        self.session_factory = session_factory or (
            lambda lock: FeedingSession(config=config, clock=self.clock, scheduler=scheduler, lock=lock)
        )
        self.session: Optional[FeedingSession] = None
        self._local_id = local_id
        self._own_ids: Deque[str] = deque([local_id], maxlen=KEYS_REMEMBERED)
        self._closed_keys: Deque[str] = deque(maxlen=KEYS_REMEMBERED)
        self._session_listeners: List[SessionListener] = []
        self._drop_listeners: List[DropListener] = []
        self._lock = threading.RLock()
        transport.on_message(self.handle_entry)

    @property
    def local_id(self) -> str:
        current = getattr(self.transport, 'sender_id', None)
        if current and current != self._local_id:
            logger.info(f"[coop-identity] {self._local_id} -> {current}")
            self._local_id = current
            if current not in self._own_ids:
                self._own_ids.append(current)
        return self._local_id

    def is_own(self, sender_id: str) -> bool:
        """True for lines this router sent, under its current or an earlier id."""
        return sender_id == self.local_id or sender_id in self._own_ids

    # ---------- subscriptions ----------
    def on_session(self, fn: SessionListener) -> SessionListener:
        """Called with every new session instance before it starts joining."""
        self._session_listeners.append(fn)
        return fn

    def on_remote_drop(self, fn: DropListener) -> DropListener:
        self._drop_listeners.append(fn)
        return fn

    # ---------- local actions ----------
    def host(self) -> Optional[FeedingSession]:
        with self._lock:
            if self._busy():
                logger.info(f"[coop-reject] host while key={self.session.key} phase={self.session.phase}")
                return None
            session = self._new_session()
            if not session.start_joining(self.local_id, self.local_emoji):
                return None
            snap = session.snapshot()
            self.transport.broadcast(encode(StartMessage(
                key=snap.key, join_ends_at=snap.join_ends_at, host_emoji=self.local_emoji,
            )))
            return session

    def join(self) -> bool:
        with self._lock:
            session = self.session
            if session is None or session.phase != JOINING:
                return False
            local_id = self.local_id
            if any(self.is_own(cid) and cid != local_id for cid, _ in session.snapshot().caretakers):
                # Already in under the id we had before reconnecting
                return True
            if not session.join(local_id, self.local_emoji):
                return False
            self.transport.broadcast(encode(JoinMessage(key=session.key)))
            return True

    def begin(self) -> bool:
        with self._lock:
            session = self.session
            if session is None or session.host_id is None or not self.is_own(session.host_id):
                return False
            if not session.force_start(by=self.local_id):
                return False
            self.transport.broadcast(encode(BeginMessage(key=session.key)))
            return True

    def spawn_drop(self, x: float, y: float) -> bool:
        """Tell peers a food piece was thrown; purely visual for them."""
        with self._lock:
            session = self.session
            if session is None or session.phase != ACTIVE:
                return False
            self.transport.broadcast(encode(DropMessage(
                key=session.key, x=x, y=y, emoji=self.local_emoji,
            )))
            return True

    def resolve_drop(self, success: bool) -> bool:
        with self._lock:
            if self.session is None:
                return False
            return self.session.register_drop(success)

    def show_results(self) -> bool:
        with self._lock:
            if self.session is None:
                return False
            return self.session.start_results()

    def end(self) -> None:
        with self._lock:
            if self.session is not None:
                self.session.end()

    # ---------- inbound ----------
    def handle_entry(self, entry: ChatEntry) -> None:
        message = decode(entry.text)
        if message is None:
            if is_control(entry.text):
                logger.debug(f"[coop-discard] malformed control text from={entry.sender_id!r}")
            return
        with self._lock:
            if isinstance(message, StartMessage):
                self._on_start(message, entry)
            elif isinstance(message, JoinMessage):
                self._on_join(message, entry)
            elif isinstance(message, BeginMessage):
                self._on_begin(message, entry)
            elif isinstance(message, DropMessage):
                self._on_drop(message, entry)

    def _on_start(self, message: StartMessage, entry: ChatEntry) -> None:
        if self._busy() or message.key in self._closed_keys:
            return
        if self.session is not None and self.session.key == message.key:
            # Already ran this one locally; a late copy must not revive it
            return
        if self.is_own(entry.sender_id):
            return
        if message.join_ends_at <= self.clock.now_ms():
            logger.info(f"[coop-stale] start key={message.key} deadline already passed")
            return
        session = self._new_session()
        session.start_joining(
            host_id=entry.sender_id,
            host_emoji=message.host_emoji,
            key=message.key,
            join_ends_at=message.join_ends_at,
        )

    def _on_join(self, message: JoinMessage, entry: ChatEntry) -> None:
        session = self._tracking(message.key)
        if session is None or self.is_own(entry.sender_id):
            return
        session.join(entry.sender_id, entry.emoji)

    def _on_begin(self, message: BeginMessage, entry: ChatEntry) -> None:
        session = self._tracking(message.key)
        if session is None or session.phase != JOINING:
            return
        session.force_start(by=entry.sender_id)

    def _on_drop(self, message: DropMessage, entry: ChatEntry) -> None:
        session = self._tracking(message.key)
        if session is None or session.phase != ACTIVE or self.is_own(entry.sender_id):
            return
        drop = RemoteDrop(key=message.key, sender_id=entry.sender_id, x=message.x, y=message.y, emoji=message.emoji)
        for fn in list(self._drop_listeners):
            try:
                fn(drop)
            except Exception:
                logger.exception(f"[coop-listener-error] remote drop listener failed key={message.key}")

    # ---------- helpers ----------
    def _busy(self) -> bool:
        return self.session is not None and self.session.phase != IDLE

    def _tracking(self, key: str) -> Optional[FeedingSession]:
        session = self.session
        if session is None or session.key != key or session.phase == IDLE:
            return None
        return session

    def _new_session(self) -> FeedingSession:
        previous = self.session
        if previous is not None:
            if previous.key:
                self._closed_keys.append(previous.key)
            previous.dispose()
        session = self.session_factory(self._lock)
        self.session = session
        for fn in list(self._session_listeners):
            try:
                fn(session)
            except Exception:
                logger.exception("[coop-listener-error] session listener failed")
        return session
