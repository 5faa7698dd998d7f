"""Command-line host for the scoring ledger.

Reads and writes the JSON ledger snapshot configured by LEDGER_DATA_PATH.

Usage:
    python bin/ledger.py export --output scores.csv
    python bin/ledger.py import scores.csv --mode overwrite
    python bin/ledger.py standings
    python bin/ledger.py days
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import TYPE_CHECKING

import structlog

from ledger.csv_codec import CsvFormatError, export_csv, import_csv
from ledger.enums import ImportMode
from ledger.settings import LedgerSettings
from ledger.stats import find_leaders, group_records_by_day, record_deltas, standings
from shared.logging import setup_logging
from shared.storage import LocalLedgerStorage, read_csv_file, write_text_atomic

if TYPE_CHECKING:
    from ledger.models import Ledger
    from shared.storage import LedgerStorage

logger = structlog.get_logger()


def cmd_export(ledger: Ledger, settings: LedgerSettings, args: argparse.Namespace) -> int:
    text = export_csv(ledger, settings.calendar())
    if args.output is None:
        sys.stdout.write(text)
    else:
        write_text_atomic(args.output, text, prefix=".export_")
        print(f"Exported {len(ledger.committed_records())} records to {args.output}")
    return 0


def cmd_import(ledger: Ledger, settings: LedgerSettings, args: argparse.Namespace, storage: LedgerStorage) -> int:
    text = read_csv_file(args.path)
    result = import_csv(ledger, text, args.mode, settings.calendar())
    storage.save(ledger)
    print(f"Imported {result.records_imported} records ({result.mode})")
    if result.records_removed:
        print(f"Removed {result.records_removed} existing records")
    if result.players_created:
        print(f"New players: {', '.join(result.players_created)}")
    return 0


def cmd_standings(ledger: Ledger, settings: LedgerSettings) -> int:
    table = standings(ledger, settings.rules)
    if not table:
        print("No players yet")
        return 0

    print(f"{'#':>2}  {'Player':<16} {'Score':>7} {'Wins':>5} {'Self':>5} {'Lost':>5} {'Kongs':>5}")
    for rank, row in enumerate(table, start=1):
        s = row.stats
        print(
            f"{rank:>2}  {row.name:<16} {s.score_delta:>+7} {s.win_count:>5} "
            f"{s.self_drawn_count:>5} {s.lose_count:>5} {s.kong_count:>5}"
        )

    leaders = find_leaders(ledger, settings.rules)
    titles = (("Win king", leaders.win_king), ("Lose king", leaders.lose_king), ("Kong king", leaders.kong_king))
    print()
    for title, leader in titles:
        print(f"{title}: {leader.name if leader else '-'}")
    return 0


def cmd_days(ledger: Ledger, settings: LedgerSettings) -> int:
    calendar = settings.calendar()
    groups = group_records_by_day(ledger.committed_records(), calendar)
    if not groups:
        print("No rounds recorded")
        return 0

    for group in groups:
        totals: dict[str, int] = {}
        for record in group.records:
            for player_id, delta in (record_deltas(ledger, record, settings.rules) or {}).items():
                totals[player_id] = totals.get(player_id, 0) + delta
        print(f"{group.day.isoformat()}  ({len(group.records)} records)")
        for player_id, delta in sorted(totals.items(), key=lambda item: -item[1]):
            print(f"    {ledger.player_name(player_id):<16} {delta:>+7}")
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Family Mahjong scoring ledger")
    subparsers = parser.add_subparsers(dest="command", required=True)

    export_parser = subparsers.add_parser("export", help="write the round log as CSV")
    export_parser.add_argument("-o", "--output", type=Path, help="output file (default: stdout)")

    import_parser = subparsers.add_parser("import", help="import a CSV round log")
    import_parser.add_argument("path", type=Path, help="CSV file to import")
    import_parser.add_argument(
        "--mode",
        choices=[m.value for m in ImportMode],
        default=ImportMode.APPEND.value,
        help="append to or overwrite the existing log (default: append)",
    )

    subparsers.add_parser("standings", help="print the leaderboard")
    subparsers.add_parser("days", help="print per-day totals")

    args = parser.parse_args(argv)

    settings = LedgerSettings()
    setup_logging(log_dir=settings.log_dir, level=settings.log_level, json_mode=settings.json_logs)
    storage = LocalLedgerStorage(settings.data_path)

    try:
        ledger = storage.load()
        if args.command == "export":
            return cmd_export(ledger, settings, args)
        if args.command == "import":
            return cmd_import(ledger, settings, args, storage)
        if args.command == "standings":
            return cmd_standings(ledger, settings)
        return cmd_days(ledger, settings)
    except CsvFormatError as exc:
        logger.error("csv rejected", reason=exc.reason, row=exc.row)
        print(f"Invalid CSV: {exc}", file=sys.stderr)
        return 1
    except OSError as exc:
        logger.error("storage failure", error=str(exc))
        print(f"Error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
