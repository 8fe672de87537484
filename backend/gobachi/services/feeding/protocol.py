"""Coop control messages carried as plain chat text.

The chat relay has no notion of sessions, so feeding sessions are
coordinated by posting reserved-prefix chat lines::

    __coop_start:<key>:<deadline_epoch_ms>:<host_emoji>
    __coop_join:<key>
    __coop_begin:<key>
    __coop_drop:<key>:<x>:<y>:<emoji>

Text is decoded into one of the message dataclasses right at the boundary.
Anything that does not parse cleanly (regular chat, unknown kinds, wrong
field counts, non-numeric numbers) decodes to ``None`` and is dropped.
"""

import math
from dataclasses import dataclass
from typing import Optional, Union


CONTROL_PREFIX = '__coop_'
FIELD_SEP = ':'

KIND_START = 'start'
KIND_JOIN = 'join'
KIND_BEGIN = 'begin'
KIND_DROP = 'drop'


@dataclass(frozen=True)
class StartMessage:
    key: str
    join_ends_at: int
    host_emoji: str


@dataclass(frozen=True)
class JoinMessage:
    key: str


@dataclass(frozen=True)
class BeginMessage:
    key: str


@dataclass(frozen=True)
class DropMessage:
    key: str
    x: float
    y: float
    emoji: str


ControlMessage = Union[StartMessage, JoinMessage, BeginMessage, DropMessage]

# Number of fields after the kind, including the key
_FIELD_COUNTS = {KIND_START: 3, KIND_JOIN: 1, KIND_BEGIN: 1, KIND_DROP: 4}


def is_control(text: str) -> bool:
    return isinstance(text, str) and text.startswith(CONTROL_PREFIX)


def encode(message: ControlMessage) -> str:
    if isinstance(message, StartMessage):
        parts = [KIND_START, message.key, str(int(message.join_ends_at)), message.host_emoji]
    elif isinstance(message, JoinMessage):
        parts = [KIND_JOIN, message.key]
    elif isinstance(message, BeginMessage):
        parts = [KIND_BEGIN, message.key]
    elif isinstance(message, DropMessage):
        parts = [KIND_DROP, message.key, _format_float(message.x), _format_float(message.y), message.emoji]
    else:
        raise TypeError(f"not a control message: {message!r}")
    for part in parts[1:]:
        if FIELD_SEP in part:
            raise ValueError(f"control field may not contain {FIELD_SEP!r}: {part!r}")
    return CONTROL_PREFIX + FIELD_SEP.join(parts)


def decode(text: str) -> Optional[ControlMessage]:
    if not is_control(text):
        return None
    kind, *fields = text[len(CONTROL_PREFIX):].split(FIELD_SEP)
    expected = _FIELD_COUNTS.get(kind)
    if expected is None or len(fields) != expected:
        return None
    key = fields[0].strip()
    if not key:
        return None

    if kind == KIND_JOIN:
        return JoinMessage(key=key)
    if kind == KIND_BEGIN:
        return BeginMessage(key=key)
    if kind == KIND_START:
        deadline = fields[1].strip()
        if not (deadline.isascii() and deadline.isdigit()):
            return None
        if not fields[2].strip():
            return None
        return StartMessage(key=key, join_ends_at=int(deadline), host_emoji=fields[2])
    x = _parse_float(fields[1])
    y = _parse_float(fields[2])
    if x is None or y is None or not fields[3].strip():
        return None
    return DropMessage(key=key, x=x, y=y, emoji=fields[3])


def _parse_float(raw: str) -> Optional[float]:
    try:
        value = float(raw)
    except ValueError:
        return None
    if math.isnan(value) or math.isinf(value):
        return None
    return value


def _format_float(value: float) -> str:
    return repr(float(value))
