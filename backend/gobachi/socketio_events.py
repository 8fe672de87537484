from flask import current_app, request
from flask_socketio import emit
from gobachi import chat_history
from gobachi.services.feeding.protocol import is_control
from typing import Dict, Set


# Connected socket ids per namespace; the relay has no other notion of who is around
_connected: Dict[str, Set[str]] = {}


def _get_sid() -> str:
    # type: ignore: request.sid exists in Socket.IO context
    return request.sid  # type: ignore


def _get_namespace() -> str:
    return getattr(request, 'namespace', None) or '/ws'


def presence_count(namespace: str = '/ws') -> int:
    """Sockets currently connected to the namespace."""
    return len(_connected.get(namespace, ()))


def handle_connect():
    namespace = _get_namespace()
    _connected.setdefault(namespace, set()).add(_get_sid())
    emit('init', {'chat': chat_history.recent(), 'presence': presence_count(namespace)})
    emit('presence', {'presence': presence_count(namespace)}, broadcast=True)


def handle_disconnect(*args):
    namespace = _get_namespace()
    _connected.get(namespace, set()).discard(_get_sid())
    emit('presence', {'presence': presence_count(namespace)}, broadcast=True)


def handle_chat(data):
    data = data if isinstance(data, dict) else {}
    entry = chat_history.append(_get_sid(), data.get('emoji'), data.get('text'))
    if entry is None:
        return
    if is_control(entry.text):
        current_app.logger.info(f"[relay-control] sid={entry.sender_id} text={entry.text}")
    # Sender receives its own line too; peers must tolerate the echo
    emit('chat', {'entry': entry.to_dict()}, broadcast=True)


def handle_ping(data):
    emit('pong', data or {})


def reset_relay_state() -> None:
    _connected.clear()
    chat_history.clear()


def register_socketio_handlers(testing: bool = False) -> None:
    """Register Socket.IO event handlers.

    Always register on namespace '/ws'. When testing is True, also mirror
    handlers on the default namespace '/' to accommodate the test harness.
    """
    from gobachi import socketio

    # Primary namespace
    socketio.on_event('connect', handle_connect, namespace='/ws')
    socketio.on_event('disconnect', handle_disconnect, namespace='/ws')
    socketio.on_event('chat', handle_chat, namespace='/ws')
    socketio.on_event('ping', handle_ping, namespace='/ws')

    if testing:
        # Test-only mirror on default namespace
        socketio.on_event('connect', handle_connect, namespace='/')
        socketio.on_event('disconnect', handle_disconnect, namespace='/')
        socketio.on_event('chat', handle_chat, namespace='/')
        socketio.on_event('ping', handle_ping, namespace='/')
