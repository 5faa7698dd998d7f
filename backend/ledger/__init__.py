"""Family Mahjong scoring ledger: round log, point transfers and replayed statistics."""

from ledger.csv_codec import CsvFormatError, ImportResult, export_csv, import_csv, parse_csv
from ledger.days import LedgerCalendar
from ledger.enums import ImportMode, RecordType
from ledger.models import GameSession, KongDetail, Ledger, Player, RoundRecord, ScoreAdjustment
from ledger.players import PlayerError, add_player, remove_player, rename_player
from ledger.rules import DEFAULT_RULES, ScoringRules
from ledger.settings import LedgerSettings

__all__ = [
    "DEFAULT_RULES",
    "CsvFormatError",
    "GameSession",
    "ImportMode",
    "ImportResult",
    "KongDetail",
    "Ledger",
    "LedgerCalendar",
    "LedgerSettings",
    "Player",
    "PlayerError",
    "RecordType",
    "RoundRecord",
    "ScoreAdjustment",
    "ScoringRules",
    "add_player",
    "export_csv",
    "import_csv",
    "parse_csv",
    "remove_player",
    "rename_player",
]
