"""
CSV export and import of the round log.

Format (one header row, one row per record):

    Type,Timestamp,RoundNumber,DealerName,WinnerName,LoserName,IsSelfDrawn,Kongs,Adjustments

- Type: ``Normal`` or ``Adjustment``
- Timestamp: ``yyyy-MM-dd HH:mm:ss`` wall-clock time of the ledger calendar
- names are written instead of ids so a file survives a database rebuild
- Kongs: ``name:exposed:concealed`` entries joined by ``|``, non-zero only
- Adjustments: ``name:delta`` entries joined by ``|``
- RFC 4180 quoting; ``\\n`` and ``\\r\\n`` line endings are both accepted

Import is all-or-nothing: every row is parsed and validated, every new
player, session and record is built, and only then is the ledger touched.
"""

from __future__ import annotations

import csv
import io
from datetime import datetime
from typing import TYPE_CHECKING

import structlog
from pydantic import BaseModel, field_validator

from ledger.enums import ImportMode, RecordType
from ledger.models import (
    NAME_SEPARATOR,
    TABLE_SIZE,
    GameSession,
    KongDetail,
    Player,
    RoundRecord,
    ScoreAdjustment,
    clamp_kong_count,
    normalize_name,
    utc_now,
)
from ledger.rounds import clear_records

if TYPE_CHECKING:
    from collections.abc import Iterable

    from ledger.days import LedgerCalendar
    from ledger.models import Ledger

logger = structlog.get_logger()

CSV_HEADER = (
    "Type",
    "Timestamp",
    "RoundNumber",
    "DealerName",
    "WinnerName",
    "LoserName",
    "IsSelfDrawn",
    "Kongs",
    "Adjustments",
)
COLUMN_COUNT = len(CSV_HEADER)
TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"
ENTRY_SEPARATOR = NAME_SEPARATOR
FIELD_SEPARATOR = ":"
_TRUE_VALUES = {"true", "1", "yes"}
_BOM = "\ufeff"


class CsvFormatError(ValueError):
    """The CSV text cannot be imported. ``row`` is 1-based, the header being row 1."""

    def __init__(self, reason: str, row: int | None = None) -> None:
        self.reason = reason
        self.row = row
        super().__init__(f"row {row}: {reason}" if row is not None else reason)


class KongEntry(BaseModel, frozen=True):
    name: str
    exposed: int
    concealed: int

    @field_validator("exposed", "concealed")
    @classmethod
    def _clamp(cls, v: int) -> int:
        return clamp_kong_count(v)


class CsvRow(BaseModel, frozen=True):
    """One validated data row, still keyed by names."""

    row_number: int
    record_type: RecordType
    timestamp: datetime
    round_number: int
    dealer_name: str = ""
    winner_name: str = ""
    loser_name: str = ""
    is_self_drawn: bool = False
    kongs: list[KongEntry] = []
    adjustments: list[ScoreAdjustment] = []

    @property
    def is_adjustment(self) -> bool:
        return self.record_type == RecordType.ADJUSTMENT

    def names(self) -> list[str]:
        """Every player name the row mentions, first mention first."""
        if self.is_adjustment:
            candidates = [a.player_name for a in self.adjustments]
        else:
            candidates = [self.dealer_name, self.winner_name, self.loser_name, *(k.name for k in self.kongs)]
        result: list[str] = []
        for name in candidates:
            if name and name not in result:
                result.append(name)
        return result


class ImportResult(BaseModel):
    mode: ImportMode
    session_id: str
    records_imported: int
    records_removed: int = 0
    players_created: list[str] = []


# ============================================================================
# Export
# ============================================================================


def encode_kongs(ledger: Ledger, record: RoundRecord) -> str:
    entries = [
        FIELD_SEPARATOR.join((ledger.player_name(k.player_id), str(k.exposed_kong_count), str(k.concealed_kong_count)))
        for k in record.kong_details
        if k.total > 0
    ]
    return ENTRY_SEPARATOR.join(entries)


def encode_adjustments(record: RoundRecord) -> str:
    return ENTRY_SEPARATOR.join(f"{a.player_name}{FIELD_SEPARATOR}{a.delta}" for a in record.adjustments)


def encode_record(ledger: Ledger, record: RoundRecord, calendar: LedgerCalendar) -> list[str]:
    timestamp = calendar.localize(record.timestamp).strftime(TIMESTAMP_FORMAT)
    if record.is_adjustment:
        return [
            RecordType.ADJUSTMENT.value,
            timestamp,
            str(record.round_number),
            "",
            "",
            "",
            "false",
            "",
            encode_adjustments(record),
        ]
    return [
        RecordType.NORMAL.value,
        timestamp,
        str(record.round_number),
        ledger.player_name(record.dealer_id),
        ledger.player_name(record.winner_id),
        ledger.player_name(record.loser_id),
        "true" if record.is_self_drawn else "false",
        encode_kongs(ledger, record),
        "",
    ]


def export_csv(
    ledger: Ledger,
    calendar: LedgerCalendar,
    records: Iterable[RoundRecord] | None = None,
) -> str:
    """Serialize records (default: every committed record, oldest first)."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(CSV_HEADER)
    for record in records if records is not None else ledger.committed_records():
        writer.writerow(encode_record(ledger, record, calendar))
    return buffer.getvalue()


# ============================================================================
# Parsing and validation
# ============================================================================


def decode_kongs(value: str) -> list[KongEntry]:
    """Decode ``name:exposed:concealed|...``; malformed entries are skipped."""
    entries: list[KongEntry] = []
    for raw in value.split(ENTRY_SEPARATOR):
        parts = raw.strip().rsplit(FIELD_SEPARATOR, 2)
        if len(parts) != 3:
            continue
        name = normalize_name(parts[0])
        try:
            exposed, concealed = int(parts[1]), int(parts[2])
        except ValueError:
            continue
        if name:
            entries.append(KongEntry(name=name, exposed=exposed, concealed=concealed))
    return entries


def decode_adjustments(value: str) -> list[ScoreAdjustment]:
    """Decode ``name:delta|...``; malformed entries are skipped."""
    entries: list[ScoreAdjustment] = []
    for raw in value.split(ENTRY_SEPARATOR):
        parts = raw.strip().rsplit(FIELD_SEPARATOR, 1)
        if len(parts) != 2:
            continue
        name = normalize_name(parts[0])
        try:
            delta = int(parts[1])
        except ValueError:
            continue
        if name:
            entries.append(ScoreAdjustment(player_name=name, delta=delta))
    return entries


def parse_timestamp(value: str, calendar: LedgerCalendar) -> datetime | None:
    """Parse the fixed format, then ISO 8601; naive values are calendar wall-clock time."""
    for parse in (lambda v: datetime.strptime(v, TIMESTAMP_FORMAT), datetime.fromisoformat):  # noqa: DTZ007
        try:
            return calendar.localize(parse(value))
        except ValueError:
            continue
    return None


def _read_rows(text: str) -> list[list[str]]:
    if text.startswith(_BOM):
        text = text[len(_BOM) :]
    reader = csv.reader(io.StringIO(text, newline=""))
    try:
        return [row for row in reader if any(cell.strip() for cell in row)]
    except csv.Error as exc:
        raise CsvFormatError(f"unreadable CSV: {exc}", row=reader.line_num) from exc


def _parse_row(row: list[str], row_number: int, calendar: LedgerCalendar, fallback: datetime) -> CsvRow:
    cells = [cell.strip() for cell in row[:COLUMN_COUNT]]
    cells += [""] * (COLUMN_COUNT - len(cells))
    type_, timestamp_text, round_text, dealer, winner, loser, self_drawn, kongs, adjustments = cells

    try:
        record_type = RecordType(type_)
    except ValueError:
        raise CsvFormatError(f"Type must be Normal or Adjustment, got '{type_}'", row=row_number) from None

    try:
        round_number = int(round_text)
    except ValueError:
        raise CsvFormatError(f"RoundNumber '{round_text}' is not an integer", row=row_number) from None

    if record_type == RecordType.ADJUSTMENT:
        decoded = decode_adjustments(adjustments)
        if not decoded:
            raise CsvFormatError("Adjustment row has no valid adjustments", row=row_number)
    else:
        decoded = []
        if not dealer or not winner:
            raise CsvFormatError("Normal row needs DealerName and WinnerName", row=row_number)
        if any(ENTRY_SEPARATOR in name for name in (dealer, winner, loser)):
            raise CsvFormatError(f"player names must not contain '{ENTRY_SEPARATOR}'", row=row_number)

    timestamp = parse_timestamp(timestamp_text, calendar)
    if timestamp is None:
        logger.warning("unparseable timestamp, using import time", row=row_number, value=timestamp_text)
        timestamp = fallback

    return CsvRow(
        row_number=row_number,
        record_type=record_type,
        timestamp=timestamp,
        round_number=round_number,
        dealer_name=normalize_name(dealer),
        winner_name=normalize_name(winner),
        loser_name=normalize_name(loser),
        is_self_drawn=self_drawn.lower() in _TRUE_VALUES,
        kongs=decode_kongs(kongs) if record_type == RecordType.NORMAL else [],
        adjustments=decoded,
    )


def parse_csv(text: str, calendar: LedgerCalendar, *, now: datetime | None = None) -> list[CsvRow]:
    """Parse and validate every row. Raises CsvFormatError on the first violation."""
    rows = _read_rows(text)
    if len(rows) < 2:
        raise CsvFormatError("expected a header row and at least one data row")
    if len(rows[0]) < COLUMN_COUNT:
        raise CsvFormatError(f"header has {len(rows[0])} columns, expected {COLUMN_COUNT}", row=1)

    fallback = now or calendar.now()
    return [_parse_row(row, number, calendar, fallback) for number, row in enumerate(rows[1:], start=2)]


# ============================================================================
# Import
# ============================================================================


def _merge_kongs(entries: list[KongEntry], players: dict[str, Player]) -> list[KongDetail]:
    """One KongDetail per player; repeated entries for a name are added up."""
    totals: dict[str, tuple[int, int]] = {}
    for entry in entries:
        exposed, concealed = totals.get(entry.name, (0, 0))
        totals[entry.name] = (exposed + entry.exposed, concealed + entry.concealed)
    return [
        KongDetail(player_id=players[name].player_id, exposed_kong_count=exposed, concealed_kong_count=concealed)
        for name, (exposed, concealed) in totals.items()
    ]


def _resolve_seats(mentioned: list[str], tables: list[GameSession], roster: list[str]) -> list[str]:
    """
    Seat a normal row.

    A row only names its dealer, winner, loser and kong declarers. The empty
    seats come from the latest known table holding every mentioned player,
    preferring tables whose players all appear in the file, and otherwise
    from the file's roster when it is exactly one table.
    """
    if len(mentioned) >= TABLE_SIZE:
        return mentioned

    wanted = set(mentioned)
    in_file = set(roster)
    matches = [s for s in tables if wanted <= set(s.player_ids)]
    if matches:
        table = max(matches, key=lambda s: (set(s.player_ids) <= in_file, s.created_at))
        return mentioned + [pid for pid in table.player_ids if pid not in wanted]
    if len(roster) == TABLE_SIZE:
        return mentioned + [pid for pid in roster if pid not in wanted]
    return mentioned


def _build_record(
    row: CsvRow,
    players: dict[str, Player],
    tables: list[GameSession],
    roster: list[str],
    session_id: str,
) -> RoundRecord:
    mentioned = [players[name].player_id for name in row.names()]
    if row.is_adjustment:
        return RoundRecord(
            timestamp=row.timestamp,
            round_number=row.round_number,
            session_id=session_id,
            player_ids=mentioned,
            is_adjustment=True,
            adjustments=row.adjustments,
        )

    seats = _resolve_seats(mentioned, tables, roster)
    if len(seats) != TABLE_SIZE:
        logger.warning("imported round cannot be replayed", row=row.row_number, seats=len(seats))

    return RoundRecord(
        timestamp=row.timestamp,
        round_number=row.round_number,
        winner_id=players[row.winner_name].player_id,
        loser_id=players[row.loser_name].player_id if row.loser_name else None,
        is_self_drawn=row.is_self_drawn,
        kong_details=_merge_kongs(row.kongs, players),
        dealer_id=players[row.dealer_name].player_id,
        session_id=session_id,
        player_ids=seats,
    )


def import_csv(
    ledger: Ledger,
    text: str,
    mode: ImportMode | str,
    calendar: LedgerCalendar,
    *,
    now: datetime | None = None,
) -> ImportResult:
    """
    Import CSV text into the ledger.

    Names resolve to known players (trimmed, case-sensitive) or become new
    players. All rows land in one new session whose roster is every name in
    the file. In overwrite mode existing records are purged first. Raises
    CsvFormatError before any change when the text does not validate.
    """
    mode = ImportMode(mode)
    rows = parse_csv(text, calendar, now=now)

    players: dict[str, Player] = {}
    created: list[Player] = []
    for row in rows:
        for name in row.names():
            if name in players:
                continue
            player = ledger.find_player_by_name(name)
            if player is None:
                player = Player(name=name)
                created.append(player)
            players[name] = player

    roster = [p.player_id for p in players.values()]
    first_normal = next((row for row in rows if not row.is_adjustment), None)
    dealer_id = players[first_normal.dealer_name].player_id if first_normal else roster[0]
    session = GameSession(player_ids=roster, current_dealer_id=dealer_id, created_at=now or utc_now())
    tables = [s for s in ledger.sessions.values() if s.is_table]
    records = [_build_record(row, players, tables, roster, session.session_id) for row in rows]
    session.record_ids = [r.record_id for r in records]

    removed = clear_records(ledger) if mode == ImportMode.OVERWRITE else 0
    for player in created:
        ledger.players[player.player_id] = player
    ledger.sessions[session.session_id] = session
    for record in records:
        ledger.records[record.record_id] = record

    logger.info(
        "csv imported",
        mode=mode,
        records=len(records),
        removed=removed,
        players_created=len(created),
        session_id=session.session_id,
    )
    return ImportResult(
        mode=mode,
        session_id=session.session_id,
        records_imported=len(records),
        records_removed=removed,
        players_created=[p.name for p in created],
    )
