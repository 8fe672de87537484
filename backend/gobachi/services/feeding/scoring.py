import math
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple


@dataclass(frozen=True)
class ScoreSummary:
    players: int
    coop_bonus: int
    base_percent: int
    final_percent: int


@dataclass(frozen=True)
class FeedingResults:
    players: int
    coop_bonus: int
    base_percent: int
    final_percent: int
    hits: int
    misses: int
    drops: int
    caretakers: Tuple[Tuple[str, str], ...] = ()
    host: Optional[Tuple[str, str]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'players': self.players,
            'coop_bonus': self.coop_bonus,
            'base_percent': self.base_percent,
            'final_percent': self.final_percent,
            'hits': self.hits,
            'misses': self.misses,
            'drops': self.drops,
            'caretakers': [{'id': cid, 'emoji': emoji} for cid, emoji in self.caretakers],
            'host': {'id': self.host[0], 'emoji': self.host[1]} if self.host else None,
        }


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def compute_score(hits: int, total_drops: int, player_count: int,
                  per_player_bonus: int, bonus_cap: int) -> ScoreSummary:
    """Completion percentage plus the capped cooperative bonus.

    A session always has at least one player (the host), so the bonus is
    computed from max(1, player_count). Halves round up.
    """
    base_percent = _round_half_up(hits / total_drops * 100) if total_drops > 0 else 0
    players = max(1, int(player_count))
    coop_bonus = max(0, min(players * per_player_bonus, bonus_cap))
    return ScoreSummary(
        players=players,
        coop_bonus=coop_bonus,
        base_percent=base_percent,
        final_percent=base_percent + coop_bonus,
    )
