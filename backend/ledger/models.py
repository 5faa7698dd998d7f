"""
Pydantic models for the scoring ledger.

The ledger is an arena: players, sessions and round records live in
dictionaries keyed by opaque string ids. Sessions reference players and
records by id, records reference their owning session by id. Nothing here
stores a running score; totals are always derived by replaying records
(see ``ledger.stats``).
"""

from datetime import UTC, datetime
from typing import Self
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

TABLE_SIZE = 4
MAX_KONGS = 4  # per player, per kind, per round

# Joins kong and adjustment entries in the CSV Kongs and Adjustments columns
NAME_SEPARATOR = "|"


def new_id() -> str:
    return str(uuid4())


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


def clamp_kong_count(value: int) -> int:
    return max(0, min(MAX_KONGS, value))


def normalize_name(name: str) -> str:
    return name.strip()


def ensure_aware(value: datetime) -> datetime:
    """Treat a naive timestamp as UTC so every stored instant compares with every other."""
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


class KongDetail(BaseModel, frozen=True):
    """Exposed and concealed kongs declared by one player in one round."""

    player_id: str
    exposed_kong_count: int = 0
    concealed_kong_count: int = 0

    @field_validator("exposed_kong_count", "concealed_kong_count")
    @classmethod
    def _clamp(cls, v: int) -> int:
        return clamp_kong_count(v)

    @property
    def total(self) -> int:
        return self.exposed_kong_count + self.concealed_kong_count


class ScoreAdjustment(BaseModel, frozen=True):
    """Manual balance correction, keyed by player name so it survives CSV rebuilds."""

    player_name: str
    delta: int

    @field_validator("player_name")
    @classmethod
    def _strip_name(cls, v: str) -> str:
        return normalize_name(v)


class Player(BaseModel):
    """A family member. Deactivated instead of deleted once referenced by history."""

    model_config = ConfigDict(ser_json_bytes="base64", val_json_bytes="base64")

    player_id: str = Field(default_factory=new_id)
    name: str
    avatar: bytes | None = None  # opaque to the engine
    is_active: bool = True

    @field_validator("name")
    @classmethod
    def _validate_name(cls, v: str) -> str:
        name = normalize_name(v)
        if not name:
            raise ValueError("Player name must not be empty")
        if NAME_SEPARATOR in name:
            raise ValueError(f"Player name must not contain '{NAME_SEPARATOR}'")
        return name


class GameSession(BaseModel):
    """A table of players with a current dealer and the records played there.

    A playing table has exactly four players. The session synthesized by a
    CSV import holds the union of every imported name instead.
    """

    session_id: str = Field(default_factory=new_id)
    player_ids: list[str]
    current_dealer_id: str
    record_ids: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utc_now)

    @field_validator("created_at")
    @classmethod
    def _aware_created_at(cls, v: datetime) -> datetime:
        return ensure_aware(v)

    @model_validator(mode="after")
    def _validate_dealer(self) -> Self:
        if self.current_dealer_id not in self.player_ids:
            raise ValueError("current_dealer_id must be one of the session players")
        return self

    @property
    def is_table(self) -> bool:
        return len(set(self.player_ids)) == TABLE_SIZE


class RoundRecord(BaseModel):
    """One settled round, or one balance adjustment.

    ``dealer_id`` and ``player_ids`` are captured from the session when the
    record is created and never follow later session changes, so history is
    replayed against the table as it was.
    """

    record_id: str = Field(default_factory=new_id)
    timestamp: datetime = Field(default_factory=utc_now)
    round_number: int
    winner_id: str | None = None
    loser_id: str | None = None
    is_self_drawn: bool = False
    kong_details: list[KongDetail] = Field(default_factory=list)
    dealer_id: str | None = None
    session_id: str | None = None
    player_ids: list[str] = Field(default_factory=list)
    is_adjustment: bool = False
    adjustments: list[ScoreAdjustment] = Field(default_factory=list)

    @field_validator("timestamp")
    @classmethod
    def _aware_timestamp(cls, v: datetime) -> datetime:
        return ensure_aware(v)

    @model_validator(mode="after")
    def _validate_kind(self) -> Self:
        if self.is_adjustment:
            return self
        if self.winner_id is None or self.dealer_id is None:
            raise ValueError("Normal rounds require winner_id and dealer_id")
        if self.is_self_drawn:
            self.loser_id = None
        return self

    def kong_for(self, player_id: str) -> KongDetail | None:
        return next((k for k in self.kong_details if k.player_id == player_id), None)


class Ledger(BaseModel):
    """In-memory arena holding every player, session and record."""

    players: dict[str, Player] = Field(default_factory=dict)
    sessions: dict[str, GameSession] = Field(default_factory=dict)
    records: dict[str, RoundRecord] = Field(default_factory=dict)

    def get_player(self, player_id: str | None) -> Player | None:
        if player_id is None:
            return None
        return self.players.get(player_id)

    def player_name(self, player_id: str | None) -> str:
        player = self.get_player(player_id)
        return player.name if player is not None else ""

    def find_player_by_name(self, name: str) -> Player | None:
        """Exact, case-sensitive match on the trimmed name, preferring active players."""
        target = normalize_name(name)
        if not target:
            return None
        matches = [p for p in self.players.values() if p.name == target]
        for player in matches:
            if player.is_active:
                return player
        return matches[0] if matches else None

    def active_players(self) -> list[Player]:
        return sorted((p for p in self.players.values() if p.is_active), key=lambda p: p.name)

    def is_committed(self, record: RoundRecord) -> bool:
        session = self.sessions.get(record.session_id) if record.session_id else None
        return session is not None and record.record_id in session.record_ids

    def committed_records(self) -> list[RoundRecord]:
        """Records attached to a live session, oldest first."""
        records = [r for r in self.records.values() if self.is_committed(r)]
        return sorted(records, key=lambda r: (r.timestamp, r.round_number))

    def is_player_referenced(self, player_id: str) -> bool:
        player = self.players.get(player_id)
        name = player.name if player is not None else None
        for record in self.records.values():
            if record.is_adjustment:
                if name is not None and any(a.player_name == name for a in record.adjustments):
                    return True
            elif player_id in record.player_ids:
                return True
        return False
