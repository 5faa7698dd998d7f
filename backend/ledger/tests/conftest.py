from datetime import UTC, datetime, timedelta

import pytest

from ledger.days import LedgerCalendar
from ledger.models import GameSession, Ledger, Player, RoundRecord, ScoreAdjustment
from ledger.players import add_player
from ledger.rounds import create_round, record_adjustment, start_session

# 2025-06-01 09:00 UTC; tests that care about days use a UTC calendar
BASE_TIME = datetime(2025, 6, 1, 9, 0, tzinfo=UTC)
PLAYER_NAMES = ("A", "B", "C", "D")


# ============================================================================
# Test State Builder Helpers
# ============================================================================


def at(minutes: int = 0, *, days: int = 0) -> datetime:
    """Timestamp offset from BASE_TIME."""
    return BASE_TIME + timedelta(days=days, minutes=minutes)


def create_ledger(names: tuple[str, ...] = PLAYER_NAMES) -> Ledger:
    """Ledger with one active player per name."""
    ledger = Ledger()
    for name in names:
        add_player(ledger, name)
    return ledger


def player_id(ledger: Ledger, name: str) -> str:
    player = ledger.find_player_by_name(name)
    assert player is not None, f"no player named {name}"
    return player.player_id


def ids(ledger: Ledger, *names: str) -> list[str]:
    return [player_id(ledger, name) for name in names]


def create_table(
    ledger: Ledger,
    names: tuple[str, ...] = PLAYER_NAMES,
    dealer: str | None = None,
    *,
    now: datetime = BASE_TIME,
) -> GameSession:
    """Start a session for four named players; dealer defaults to the first."""
    session = start_session(ledger, ids(ledger, *names), player_id(ledger, dealer or names[0]), now=now)
    assert session is not None
    return session


def play_round(
    ledger: Ledger,
    session: GameSession,
    winner: str,
    loser: str | None = None,
    *,
    kongs=(),
    round_number: int = 1,
    now: datetime = BASE_TIME,
) -> RoundRecord:
    """Commit a round by name; a missing loser means self-drawn."""
    record = create_round(
        ledger,
        session,
        round_number,
        player_id(ledger, winner),
        player_id(ledger, loser) if loser else None,
        is_self_drawn=loser is None,
        kongs=kongs,
        now=now,
    )
    assert record is not None
    return record


def adjust(ledger: Ledger, deltas: dict[str, int], *, round_number: int = 1, now: datetime = BASE_TIME) -> RoundRecord:
    adjustments = [ScoreAdjustment(player_name=name, delta=delta) for name, delta in deltas.items()]
    record = record_adjustment(ledger, adjustments, round_number, now=now)
    assert record is not None
    return record


def seated(ledger: Ledger, names: tuple[str, ...] = PLAYER_NAMES) -> list[Player]:
    return [ledger.players[pid] for pid in ids(ledger, *names)]


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def ledger() -> Ledger:
    return create_ledger()


@pytest.fixture
def session(ledger: Ledger) -> GameSession:
    return create_table(ledger)


@pytest.fixture
def utc_calendar() -> LedgerCalendar:
    return LedgerCalendar(UTC)
