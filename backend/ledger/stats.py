"""
Statistics derived by replaying the round log.

No counter is ever stored: every number here is recomputed from the
committed records, so edits, undos and CSV rebuilds can never leave totals
out of sync with history. Records that can no longer be replayed (their
participants do not resolve to four known players) are skipped everywhere.
"""

from __future__ import annotations

from collections import defaultdict
from datetime import date
from typing import TYPE_CHECKING

import structlog
from pydantic import BaseModel

from ledger.models import TABLE_SIZE, RoundRecord, normalize_name
from ledger.rules import DEFAULT_RULES, ScoringRules
from ledger.transfers import round_deltas

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence
    from datetime import datetime

    from ledger.days import LedgerCalendar
    from ledger.models import Ledger, Player

logger = structlog.get_logger()


class PlayerStats(BaseModel):
    """Per-player fold over a set of records."""

    score_delta: int = 0
    win_count: int = 0
    self_drawn_count: int = 0
    lose_count: int = 0
    exposed_kong_count: int = 0
    concealed_kong_count: int = 0

    @property
    def kong_count(self) -> int:
        return self.exposed_kong_count + self.concealed_kong_count


class DayGroup(BaseModel):
    day: date
    records: list[RoundRecord]


class PlayerStanding(BaseModel):
    player_id: str
    name: str
    stats: PlayerStats


class Leaders(BaseModel):
    """Most wins, most discards paid and most kongs. None when nobody scored."""

    win_king: PlayerStanding | None = None
    lose_king: PlayerStanding | None = None
    kong_king: PlayerStanding | None = None


def participants(ledger: Ledger, record: RoundRecord) -> list[Player] | None:
    """Resolve the players a record is replayed against, or None when it cannot be."""
    if record.is_adjustment:
        names = {a.player_name for a in record.adjustments}
        return [p for p in ledger.players.values() if normalize_name(p.name) in names]

    if len(set(record.player_ids)) != TABLE_SIZE or record.winner_id not in record.player_ids:
        return None
    players = [ledger.players.get(pid) for pid in record.player_ids]
    if any(p is None for p in players):
        return None
    return players  # type: ignore[return-value]


def is_replayable(ledger: Ledger, record: RoundRecord) -> bool:
    return participants(ledger, record) is not None


def involves_player(record: RoundRecord, player: Player) -> bool:
    if record.is_adjustment:
        name = normalize_name(player.name)
        return any(a.player_name == name for a in record.adjustments)
    return player.player_id in record.player_ids


def record_deltas(
    ledger: Ledger,
    record: RoundRecord,
    rules: ScoringRules = DEFAULT_RULES,
) -> dict[str, int] | None:
    """Replay one record. Return None when it is not replayable."""
    players = participants(ledger, record)
    if players is None:
        logger.debug("skipping unreplayable record", record_id=record.record_id)
        return None
    return round_deltas(record, players, rules)


def aggregate_stats(
    ledger: Ledger,
    player_id: str,
    records: Iterable[RoundRecord],
    rules: ScoringRules = DEFAULT_RULES,
) -> PlayerStats:
    """Fold a subset of records into one player's statistics."""
    stats = PlayerStats()
    player = ledger.get_player(player_id)
    if player is None:
        return stats

    for record in records:
        if not involves_player(record, player):
            continue
        deltas = record_deltas(ledger, record, rules)
        if deltas is None:
            continue
        stats.score_delta += deltas.get(player_id, 0)
        if record.is_adjustment:
            continue
        if record.winner_id == player_id:
            stats.win_count += 1
            if record.is_self_drawn:
                stats.self_drawn_count += 1
        if record.loser_id == player_id and not record.is_self_drawn:
            stats.lose_count += 1
        kong = record.kong_for(player_id)
        if kong is not None:
            stats.exposed_kong_count += kong.exposed_kong_count
            stats.concealed_kong_count += kong.concealed_kong_count
    return stats


def player_stats(ledger: Ledger, player_id: str, rules: ScoringRules = DEFAULT_RULES) -> PlayerStats:
    """Lifetime statistics over every committed record."""
    return aggregate_stats(ledger, player_id, ledger.committed_records(), rules)


def total_score(ledger: Ledger, player_id: str, rules: ScoringRules = DEFAULT_RULES) -> int:
    return player_stats(ledger, player_id, rules).score_delta


def win_count(ledger: Ledger, player_id: str) -> int:
    return player_stats(ledger, player_id).win_count


def lose_count(ledger: Ledger, player_id: str) -> int:
    return player_stats(ledger, player_id).lose_count


def total_kongs(ledger: Ledger, player_id: str) -> int:
    return player_stats(ledger, player_id).kong_count


def next_round_number_for_today(ledger: Ledger, calendar: LedgerCalendar, now: datetime | None = None) -> int:
    """Count today's committed records (adjustments included) plus one."""
    now = now or calendar.now()
    today = sum(1 for r in ledger.committed_records() if calendar.is_same_day(r.timestamp, now))
    return today + 1


def _latest_adjustment(records: Sequence[RoundRecord], player: Player | None = None) -> datetime | None:
    latest: datetime | None = None
    for record in records:
        if not record.is_adjustment:
            continue
        if player is not None and not involves_player(record, player):
            continue
        if latest is None or record.timestamp > latest:
            latest = record.timestamp
    return latest


def _windowed_delta(
    ledger: Ledger,
    player_id: str,
    records: Iterable[RoundRecord],
    since: datetime | None,
    rules: ScoringRules,
) -> int:
    total = 0
    for record in records:
        if record.is_adjustment or (since is not None and record.timestamp <= since):
            continue
        deltas = record_deltas(ledger, record, rules)
        if deltas is not None:
            total += deltas.get(player_id, 0)
    return total


def session_score_delta(ledger: Ledger, player_id: str, rules: ScoringRules = DEFAULT_RULES) -> int:
    """Player's net over every round played after the latest adjustment, at any table."""
    records = ledger.committed_records()
    return _windowed_delta(ledger, player_id, records, _latest_adjustment(records), rules)


def today_score_delta(
    ledger: Ledger,
    player_id: str,
    calendar: LedgerCalendar,
    now: datetime | None = None,
    rules: ScoringRules = DEFAULT_RULES,
) -> int:
    """Player's net over today's rounds after the latest adjustment involving them."""
    player = ledger.get_player(player_id)
    if player is None:
        return 0
    now = now or calendar.now()
    records = ledger.committed_records()
    since = _latest_adjustment(records, player)
    todays = [r for r in records if calendar.is_same_day(r.timestamp, now) and involves_player(r, player)]
    return _windowed_delta(ledger, player_id, todays, since, rules)


def group_records_by_day(records: Iterable[RoundRecord], calendar: LedgerCalendar) -> list[DayGroup]:
    """Partition records by local day: newest day first, each day oldest record first."""
    by_day: dict[date, list[RoundRecord]] = defaultdict(list)
    for record in records:
        by_day[calendar.day_of(record.timestamp)].append(record)
    return [
        DayGroup(day=day, records=sorted(by_day[day], key=lambda r: r.timestamp))
        for day in sorted(by_day, reverse=True)
    ]


def standings(ledger: Ledger, rules: ScoringRules = DEFAULT_RULES) -> list[PlayerStanding]:
    """Active players ranked by total score, then name."""
    records = ledger.committed_records()
    result = [
        PlayerStanding(
            player_id=p.player_id,
            name=p.name,
            stats=aggregate_stats(ledger, p.player_id, records, rules),
        )
        for p in ledger.active_players()
    ]
    result.sort(key=lambda s: (-s.stats.score_delta, s.name))
    return result


def find_leaders(ledger: Ledger, rules: ScoringRules = DEFAULT_RULES) -> Leaders:
    table = standings(ledger, rules)

    def leader(metric: str) -> PlayerStanding | None:
        best = max(table, key=lambda s: getattr(s.stats, metric), default=None)
        if best is None or getattr(best.stats, metric) <= 0:
            return None
        return best

    return Leaders(
        win_king=leader("win_count"),
        lose_king=leader("lose_count"),
        kong_king=leader("kong_count"),
    )
