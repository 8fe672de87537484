import logging
import math
import secrets
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from .caretakers import CaretakerRegistry
from .scoring import FeedingResults, compute_score
from .timers import Clock, Scheduler, SystemClock, TimerHandle


logger = logging.getLogger(__name__)

IDLE = 'idle'
JOINING = 'joining'
ACTIVE = 'active'
RESULTS = 'results'
PHASES = (IDLE, JOINING, ACTIVE, RESULTS)

# Allowed forward transitions; end() may additionally return to idle from anywhere
_NEXT_PHASE = {IDLE: JOINING, JOINING: ACTIVE, ACTIVE: RESULTS, RESULTS: IDLE}


@dataclass(frozen=True)
class FeedingConfig:
    total_drops: int = 50
    join_window_ms: int = 10_000
    result_window_ms: int = 6_000
    tick_interval_ms: int = 250
    per_player_bonus: int = 5
    bonus_cap: int = 15

    def __post_init__(self) -> None:
        if self.total_drops <= 0:
            raise ValueError("total_drops must be positive")
        if self.join_window_ms < 0 or self.result_window_ms < 0:
            raise ValueError("windows must not be negative")
        if self.tick_interval_ms <= 0:
            raise ValueError("tick_interval_ms must be positive")
        if self.per_player_bonus < 0 or self.bonus_cap < 0:
            raise ValueError("coop bonus settings must not be negative")

    @classmethod
    def from_mapping(cls, cfg: Mapping[str, Any]) -> 'FeedingConfig':
        """Build from a Flask config (or any mapping using the FEED_* keys)."""
        return cls(
            total_drops=int(cfg.get('FEED_TOTAL_DROPS', 50)),
            join_window_ms=int(cfg.get('FEED_JOIN_WINDOW_SEC', 10)) * 1000,
            result_window_ms=int(cfg.get('FEED_RESULTS_WINDOW_SEC', 6)) * 1000,
            tick_interval_ms=int(cfg.get('FEED_TICK_MS', 250)),
            per_player_bonus=int(cfg.get('FEED_COOP_BONUS_PER_PLAYER', 5)),
            bonus_cap=int(cfg.get('FEED_COOP_BONUS_CAP', 15)),
        )

    def to_dict(self) -> Dict[str, int]:
        return {
            'total_drops': self.total_drops,
            'join_window_ms': self.join_window_ms,
            'result_window_ms': self.result_window_ms,
            'tick_interval_ms': self.tick_interval_ms,
            'per_player_bonus': self.per_player_bonus,
            'bonus_cap': self.bonus_cap,
        }


@dataclass(frozen=True)
class SessionSnapshot:
    key: Optional[str]
    phase: str
    host: Optional[Tuple[str, str]]
    caretakers: Tuple[Tuple[str, str], ...]
    total_drops: int
    hits: int
    finished: int
    join_ends_at: int
    results_ends_at: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            'key': self.key,
            'phase': self.phase,
            'host': {'id': self.host[0], 'emoji': self.host[1]} if self.host else None,
            'caretakers': [{'id': cid, 'emoji': emoji} for cid, emoji in self.caretakers],
            'total_drops': self.total_drops,
            'hits': self.hits,
            'finished': self.finished,
            'join_ends_at': self.join_ends_at,
            'results_ends_at': self.results_ends_at,
        }


@dataclass(frozen=True)
class Tick:
    seconds: int
    snapshot: SessionSnapshot


PhaseListener = Callable[[str, Dict[str, Any]], None]
TickListener = Callable[[Tick], None]


@dataclass
class _Listeners:
    phase: List[PhaseListener] = field(default_factory=list)
    join_tick: List[TickListener] = field(default_factory=list)
    results_tick: List[TickListener] = field(default_factory=list)


def new_session_key() -> str:
    return secrets.token_hex(6)


class FeedingSession:
    """One cooperative feeding session: phases, deadlines and drop counters.

    Phases cycle idle -> joining -> active -> results -> idle. Calls made in
    a phase that does not allow them return False instead of raising, since
    control messages from other peers may legitimately arrive late.

    The join and results windows are bounded by absolute epoch-ms deadlines.
    A repeating tick emits the remaining seconds and advances the phase on
    its own once a deadline passes, so a silent host never stalls a session.

    Completion does not end the active phase: ``is_complete()`` reports it
    and the driver calls ``start_results()`` when its visuals are done.

    ``force_start(by)`` records who closed the join window but does not
    check it; deciding who may do that is up to the caller.

    Listeners run while the session lock is held. An owner whose listeners
    call back into it passes its own re-entrant ``lock`` so both sides
    serialise on the same one.
    """

    def __init__(self, config: Optional[FeedingConfig] = None, clock: Optional[Clock] = None,
                 scheduler: Optional[Scheduler] = None, lock=None) -> None:
        self.config = config or FeedingConfig()
        self.clock = clock or SystemClock()
        # Without a scheduler the owner drives tick() itself
        self.scheduler = scheduler
        self._lock = lock or threading.RLock()
        self._listeners = _Listeners()
        self._caretakers = CaretakerRegistry()
        self._phase = IDLE
        self._key: Optional[str] = None
        self._host: Optional[Tuple[str, str]] = None
        self._hits = 0
        self._finished = 0
        self._join_ends_at = 0
        self._results_ends_at = 0
        self._join_timer: Optional[TimerHandle] = None
        self._results_timer: Optional[TimerHandle] = None

    # ---------- listeners ----------
    def on_phase(self, fn: PhaseListener) -> PhaseListener:
        self._listeners.phase.append(fn)
        return fn

    def on_join_tick(self, fn: TickListener) -> TickListener:
        self._listeners.join_tick.append(fn)
        return fn

    def on_results_tick(self, fn: TickListener) -> TickListener:
        self._listeners.results_tick.append(fn)
        return fn

    # ---------- properties ----------
    @property
    def phase(self) -> str:
        return self._phase

    @property
    def key(self) -> Optional[str]:
        return self._key

    @property
    def host_id(self) -> Optional[str]:
        return self._host[0] if self._host else None

    # ---------- lifecycle ----------
    def start_joining(self, host_id: str, host_emoji: str, key: Optional[str] = None,
                      join_ends_at: Optional[int] = None) -> bool:
        """Open the join window with the host as first caretaker.

        Peers seeding a session from a broadcast pass the host's key and
        absolute deadline. Rejected unless the session is idle.
        """
        with self._lock:
            if self._phase != IDLE:
                logger.info(f"[feed-reject] start_joining key={self._key} phase={self._phase}")
                return False
            self._cancel_timers()
            self._key = key or new_session_key()
            self._host = (host_id, host_emoji)
            self._hits = 0
            self._finished = 0
            self._caretakers.clear()
            self._caretakers.add(host_id, host_emoji)
            self._join_ends_at = int(join_ends_at) if join_ends_at is not None else \
                self.clock.now_ms() + self.config.join_window_ms
            self._results_ends_at = 0
            self._transition(JOINING, {'by': host_id, 'reason': 'start'})
            if self.scheduler is not None:
                self._join_timer = self.scheduler.every(self.config.tick_interval_ms, self._on_join_timer)
            return True

    def join(self, caretaker_id: str, emoji: str) -> bool:
        with self._lock:
            if self._phase != JOINING:
                return False
            self._caretakers.add(caretaker_id, emoji)
            logger.info(f"[feed-join] key={self._key} caretaker={caretaker_id} count={self._caretakers.count()}")
            return True

    def force_start(self, by: Optional[str] = None) -> bool:
        with self._lock:
            if self._phase != JOINING:
                return False
            self._begin_active(by=by, reason='force_start')
            return True

    def register_drop(self, success: bool) -> bool:
        with self._lock:
            if self._phase != ACTIVE or self._finished >= self.config.total_drops:
                return False
            self._finished += 1
            if success:
                self._hits += 1
            return True

    def is_complete(self) -> bool:
        with self._lock:
            return self._finished >= self.config.total_drops

    def get_results(self) -> FeedingResults:
        with self._lock:
            summary = compute_score(
                hits=self._hits,
                total_drops=self.config.total_drops,
                player_count=self._caretakers.count(),
                per_player_bonus=self.config.per_player_bonus,
                bonus_cap=self.config.bonus_cap,
            )
            return FeedingResults(
                players=summary.players,
                coop_bonus=summary.coop_bonus,
                base_percent=summary.base_percent,
                final_percent=summary.final_percent,
                hits=self._hits,
                misses=self.config.total_drops - self._hits,
                drops=self.config.total_drops,
                caretakers=self._caretaker_items(),
                host=self._host,
            )

    def start_results(self) -> bool:
        with self._lock:
            if self._phase != ACTIVE:
                return False
            self._cancel_timers()
            self._results_ends_at = self.clock.now_ms() + self.config.result_window_ms
            self._transition(RESULTS, {'reason': 'results', 'results': self.get_results()})
            if self.scheduler is not None:
                self._results_timer = self.scheduler.every(self.config.tick_interval_ms, self._on_results_timer)
            return True

    def end(self) -> None:
        """Cancel every timer and return to idle. Safe from any phase."""
        with self._lock:
            self._end(reason='end')

    dispose = end

    def tick(self) -> None:
        """Recompute the countdown of the current phase; advance if it elapsed."""
        with self._lock:
            if self._phase == JOINING:
                self._join_tick()
            elif self._phase == RESULTS:
                self._results_tick()

    def snapshot(self) -> SessionSnapshot:
        with self._lock:
            return SessionSnapshot(
                key=self._key,
                phase=self._phase,
                host=self._host,
                caretakers=self._caretaker_items(),
                total_drops=self.config.total_drops,
                hits=self._hits,
                finished=self._finished,
                join_ends_at=self._join_ends_at,
                results_ends_at=self._results_ends_at,
            )

    # ---------- internals ----------
    def _caretaker_items(self) -> Tuple[Tuple[str, str], ...]:
        return tuple(sorted(self._caretakers.all().items()))

    def _remaining_seconds(self, deadline: int) -> int:
        remaining_ms = max(0, deadline - self.clock.now_ms())
        return int(math.ceil(remaining_ms / 1000.0))

    def _on_join_timer(self) -> None:
        with self._lock:
            if self._phase == JOINING:
                self._join_tick()

    def _on_results_timer(self) -> None:
        with self._lock:
            if self._phase == RESULTS:
                self._results_tick()

    def _join_tick(self) -> None:
        seconds = self._remaining_seconds(self._join_ends_at)
        self._emit(self._listeners.join_tick, Tick(seconds=seconds, snapshot=self.snapshot()))
        if seconds == 0 and self._phase == JOINING:
            self._begin_active(by=None, reason='timeout')

    def _results_tick(self) -> None:
        seconds = self._remaining_seconds(self._results_ends_at)
        self._emit(self._listeners.results_tick, Tick(seconds=seconds, snapshot=self.snapshot()))
        if seconds == 0 and self._phase == RESULTS:
            self._end(reason='results_timeout')

    def _begin_active(self, by: Optional[str], reason: str) -> None:
        self._cancel_timers()
        self._transition(ACTIVE, {'by': by, 'reason': reason})

    def _end(self, reason: str) -> None:
        self._cancel_timers()
        self._join_ends_at = 0
        self._results_ends_at = 0
        if self._phase == IDLE:
            return
        self._transition(IDLE, {'reason': reason})

    def _cancel_timers(self) -> None:
        for handle in (self._join_timer, self._results_timer):
            if handle is not None:
                handle.cancel()
        self._join_timer = None
        self._results_timer = None

    def _transition(self, new_phase: str, meta: Dict[str, Any]) -> None:
        old_phase = self._phase
        if new_phase != IDLE and _NEXT_PHASE[old_phase] != new_phase:
            raise RuntimeError(f"illegal feeding transition {old_phase} -> {new_phase}")
        self._phase = new_phase
        logger.info(f"[feed-phase] key={self._key} {old_phase} -> {new_phase} reason={meta.get('reason')}")
        payload = dict(meta)
        payload['key'] = self._key
        payload['previous'] = old_phase
        payload['snapshot'] = self.snapshot()
        for fn in list(self._listeners.phase):
            try:
                fn(new_phase, payload)
            except Exception:
                logger.exception(f"[feed-listener-error] phase listener failed key={self._key}")

    def _emit(self, listeners: List[TickListener], tick: Tick) -> None:
        for fn in list(listeners):
            try:
                fn(tick)
            except Exception:
                logger.exception(f"[feed-listener-error] tick listener failed key={self._key}")
