"""
Round lifecycle: sessions, round creation, edits, undo and adjustments.

Lifecycle of a RoundRecord:
- pending: round input collected by the caller, no record yet
- committed: appended to its session and the ledger, included in every statistic
- retracted: removed by ``undo_round``; nothing is recomputed because scores
  are always replayed from the remaining records

Invalid input never raises and never touches the ledger: operations return
None or False and log the reason. Callers are expected to have validated
the input already; the job here is to keep the ledger consistent.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from ledger.models import TABLE_SIZE, GameSession, KongDetail, RoundRecord, ScoreAdjustment, utc_now
from ledger.rules import DEFAULT_RULES, ScoringRules
from ledger.stats import total_score

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence
    from datetime import datetime

    from ledger.models import Ledger

logger = structlog.get_logger()


def start_session(
    ledger: Ledger,
    player_ids: Sequence[str],
    dealer_id: str,
    *,
    now: datetime | None = None,
) -> GameSession | None:
    """Seat four distinct known players with a dealer among them."""
    seats = list(player_ids)
    if len(set(seats)) != TABLE_SIZE or len(seats) != TABLE_SIZE:
        logger.warning("session rejected", reason="table needs four distinct players", player_ids=seats)
        return None
    unknown = [pid for pid in seats if pid not in ledger.players]
    if unknown:
        logger.warning("session rejected", reason="unknown players", player_ids=unknown)
        return None
    if dealer_id not in seats:
        logger.warning("session rejected", reason="dealer not seated", dealer_id=dealer_id)
        return None

    session = GameSession(player_ids=seats, current_dealer_id=dealer_id, created_at=now or utc_now())
    ledger.sessions[session.session_id] = session
    logger.info("session started", session_id=session.session_id, dealer_id=dealer_id)
    return session


def continue_session(
    ledger: Ledger,
    player_ids: Sequence[str],
    dealer_id: str,
    *,
    now: datetime | None = None,
) -> GameSession | None:
    """Reuse the latest session of the same four players with a new dealer, or start one."""
    wanted = set(player_ids)
    candidates = [s for s in ledger.sessions.values() if s.is_table and set(s.player_ids) == wanted]
    if candidates:
        session = max(candidates, key=lambda s: s.created_at)
        if set_dealer(session, dealer_id):
            return session
        return None
    return start_session(ledger, player_ids, dealer_id, now=now)


def set_dealer(session: GameSession, dealer_id: str) -> bool:
    """Change who deals next. Existing records keep the dealer they were played with."""
    if dealer_id not in session.player_ids:
        logger.warning("dealer change rejected", session_id=session.session_id, dealer_id=dealer_id)
        return False
    session.current_dealer_id = dealer_id
    return True


def _validate_outcome(
    seats: Sequence[str],
    winner_id: str,
    loser_id: str | None,
    *,
    is_self_drawn: bool,
) -> str | None:
    """Return the reason the outcome is invalid for this table, or None."""
    if len(set(seats)) != TABLE_SIZE:
        return "table does not have four players"
    if winner_id not in seats:
        return "winner not seated"
    if is_self_drawn:
        return None
    if loser_id is None or loser_id not in seats:
        return "discarder not seated"
    if loser_id == winner_id:
        return "discarder cannot be the winner"
    return None


def _table_kongs(seats: Sequence[str], kongs: Sequence[KongDetail]) -> list[KongDetail]:
    """Keep one entry per seated player, in seat order; entries for others are dropped."""
    by_player: dict[str, KongDetail] = {}
    for kong in kongs:
        if kong.player_id in seats:
            by_player[kong.player_id] = kong
    return [by_player[pid] for pid in seats if pid in by_player]


def create_round(
    ledger: Ledger,
    session: GameSession,
    round_number: int,
    winner_id: str,
    loser_id: str | None,
    *,
    is_self_drawn: bool,
    kongs: Sequence[KongDetail] = (),
    now: datetime | None = None,
) -> RoundRecord | None:
    """
    Commit a new round to the session.

    The record captures the session's current dealer and seat order. The
    round number is supplied by the caller (see
    ``stats.next_round_number_for_today``). Return the new record, or None
    when the outcome does not fit the table.
    """
    seats = list(session.player_ids)
    reason = _validate_outcome(seats, winner_id, loser_id, is_self_drawn=is_self_drawn)
    if reason is not None:
        logger.warning("round rejected", session_id=session.session_id, reason=reason)
        return None

    record = RoundRecord(
        timestamp=now or utc_now(),
        round_number=round_number,
        winner_id=winner_id,
        loser_id=None if is_self_drawn else loser_id,
        is_self_drawn=is_self_drawn,
        kong_details=_table_kongs(seats, kongs),
        dealer_id=session.current_dealer_id,
        session_id=session.session_id,
        player_ids=seats,
    )
    ledger.records[record.record_id] = record
    session.record_ids.append(record.record_id)
    logger.info(
        "round committed",
        record_id=record.record_id,
        session_id=session.session_id,
        round_number=round_number,
    )
    return record


def update_round(
    record: RoundRecord,
    session: GameSession,
    winner_id: str,
    loser_id: str | None,
    *,
    is_self_drawn: bool,
    kongs: Sequence[KongDetail] = (),
) -> bool:
    """
    Rewrite the outcome of a committed round in place.

    Identity, round number, dealer, seats, position in the session and the
    original timestamp are all preserved.
    """
    if record.is_adjustment:
        logger.warning("round edit rejected", record_id=record.record_id, reason="adjustment record")
        return False
    if record.session_id != session.session_id or record.record_id not in session.record_ids:
        logger.warning("round edit rejected", record_id=record.record_id, reason="record not in session")
        return False

    seats = record.player_ids or list(session.player_ids)
    reason = _validate_outcome(seats, winner_id, loser_id, is_self_drawn=is_self_drawn)
    if reason is not None:
        logger.warning("round edit rejected", record_id=record.record_id, reason=reason)
        return False

    record.winner_id = winner_id
    record.loser_id = None if is_self_drawn else loser_id
    record.is_self_drawn = is_self_drawn
    record.kong_details = _table_kongs(seats, kongs)
    logger.info("round edited", record_id=record.record_id, session_id=session.session_id)
    return True


def undo_round(ledger: Ledger, record: RoundRecord, session: GameSession) -> bool:
    """Retract a record from its session and the ledger."""
    if record.record_id not in session.record_ids:
        logger.warning("undo rejected", record_id=record.record_id, reason="record not in session")
        return False
    session.record_ids = [rid for rid in session.record_ids if rid != record.record_id]
    record.session_id = None
    ledger.records.pop(record.record_id, None)
    logger.info("round retracted", record_id=record.record_id, session_id=session.session_id)
    return True


def build_adjustments(
    ledger: Ledger,
    targets: Mapping[str, int],
    rules: ScoringRules = DEFAULT_RULES,
) -> list[ScoreAdjustment]:
    """Turn player_id -> target score into the adjustments that reach it.

    Players already at their target are left out; an empty list means there
    is nothing to balance.
    """
    adjustments: list[ScoreAdjustment] = []
    for player_id, target in targets.items():
        player = ledger.get_player(player_id)
        if player is None:
            logger.warning("adjustment target ignored", player_id=player_id, reason="unknown player")
            continue
        delta = target - total_score(ledger, player_id, rules)
        if delta != 0:
            adjustments.append(ScoreAdjustment(player_name=player.name, delta=delta))
    return adjustments


def record_adjustment(
    ledger: Ledger,
    adjustments: Sequence[ScoreAdjustment],
    round_number: int,
    *,
    now: datetime | None = None,
) -> RoundRecord | None:
    """Commit an adjustment record in its own session of the adjusted players."""
    if not adjustments:
        logger.warning("adjustment rejected", reason="no adjustments")
        return None

    player_ids: list[str] = []
    for adjustment in adjustments:
        player = ledger.find_player_by_name(adjustment.player_name)
        if player is not None and player.player_id not in player_ids:
            player_ids.append(player.player_id)
    if not player_ids:
        logger.warning("adjustment rejected", reason="no adjusted player is known")
        return None

    timestamp = now or utc_now()
    session = GameSession(player_ids=player_ids, current_dealer_id=player_ids[0], created_at=timestamp)
    record = RoundRecord(
        timestamp=timestamp,
        round_number=round_number,
        session_id=session.session_id,
        player_ids=player_ids,
        is_adjustment=True,
        adjustments=list(adjustments),
    )
    session.record_ids.append(record.record_id)
    ledger.sessions[session.session_id] = session
    ledger.records[record.record_id] = record
    logger.info("adjustment committed", record_id=record.record_id, players=len(player_ids))
    return record


def clear_records(ledger: Ledger) -> int:
    """Delete every record. Players and sessions stay; return how many records went."""
    count = len(ledger.records)
    ledger.records.clear()
    for session in ledger.sessions.values():
        session.record_ids.clear()
    logger.info("records cleared", count=count)
    return count
