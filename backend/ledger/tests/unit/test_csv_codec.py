"""CSV export, parsing and all-or-nothing import."""

import logging

import pytest

from ledger.csv_codec import CSV_HEADER, CsvFormatError, decode_kongs, export_csv, import_csv, parse_csv
from ledger.enums import ImportMode, RecordType
from ledger.models import KongDetail, Ledger
from ledger.players import add_player, remove_player
from ledger.rounds import set_dealer, undo_round
from ledger.stats import player_stats, total_kongs, total_score
from ledger.tests.conftest import adjust, at, create_ledger, create_table, play_round, player_id

HEADER = ",".join(CSV_HEADER)


def _csv(*rows: str) -> str:
    return "\n".join((HEADER, *rows)) + "\n"


def _stats_by_name(ledger):
    return {p.name: player_stats(ledger, p.player_id) for p in ledger.players.values()}


def _populated_ledger():
    ledger = create_ledger()
    session = create_table(ledger)
    play_round(ledger, session, "A", now=at(1))
    kong = KongDetail(player_id=player_id(ledger, "D"), exposed_kong_count=1)
    play_round(ledger, session, "C", "B", kongs=[kong], round_number=2, now=at(2))
    set_dealer(session, player_id(ledger, "B"))
    kong = KongDetail(player_id=player_id(ledger, "A"), concealed_kong_count=2)
    play_round(ledger, session, "B", kongs=[kong], round_number=3, now=at(3))
    adjust(ledger, {"A": -10, "C": 10}, round_number=4, now=at(4))
    play_round(ledger, session, "D", "A", round_number=1, now=at(0, days=1))
    return ledger


class TestExport:
    def test_header_only_for_empty_ledger(self, utc_calendar):
        assert export_csv(Ledger(), utc_calendar) == HEADER + "\n"

    def test_normal_rows(self, ledger, session, utc_calendar):
        play_round(ledger, session, "A", now=at(1))
        kong = KongDetail(player_id=player_id(ledger, "D"), exposed_kong_count=1)
        play_round(ledger, session, "C", "B", kongs=[kong], round_number=2, now=at(2))

        assert export_csv(ledger, utc_calendar) == _csv(
            "Normal,2025-06-01 09:01:00,1,A,A,,true,,",
            "Normal,2025-06-01 09:02:00,2,A,C,B,false,D:1:0,",
        )

    def test_adjustment_row(self, ledger, utc_calendar):
        adjust(ledger, {"A": 50, "B": -50}, round_number=3, now=at(5))

        assert export_csv(ledger, utc_calendar) == _csv("Adjustment,2025-06-01 09:05:00,3,,,,false,,A:50|B:-50")

    def test_zero_kong_entries_omitted(self, ledger, session, utc_calendar):
        kongs = [
            KongDetail(player_id=player_id(ledger, "B")),
            KongDetail(player_id=player_id(ledger, "C"), concealed_kong_count=1),
        ]
        play_round(ledger, session, "A", kongs=kongs, now=at(1))

        assert export_csv(ledger, utc_calendar).splitlines()[1].endswith(",true,C:0:1,")

    def test_names_with_commas_are_quoted(self, utc_calendar):
        ledger = create_ledger(("Li, Wei", "B", "C", "D"))
        session = create_table(ledger, ("Li, Wei", "B", "C", "D"))
        play_round(ledger, session, "Li, Wei", now=at(1))

        row = export_csv(ledger, utc_calendar).splitlines()[1]

        assert row == 'Normal,2025-06-01 09:01:00,1,"Li, Wei","Li, Wei",,true,,'

    def test_rows_in_timestamp_order(self, utc_calendar):
        ledger = _populated_ledger()

        rows = export_csv(ledger, utc_calendar).splitlines()[1:]

        assert [r.split(",")[1] for r in rows] == sorted(r.split(",")[1] for r in rows)
        assert len(rows) == 5

    def test_retracted_records_not_exported(self, ledger, session, utc_calendar):
        record = play_round(ledger, session, "A", now=at(1))
        undo_round(ledger, record, session)

        assert export_csv(ledger, utc_calendar) == HEADER + "\n"


class TestParse:
    def test_parses_normal_row(self, utc_calendar):
        rows = parse_csv(_csv("Normal,2025-06-01 09:01:00,7,A,C,B,false,D:1:2,"), utc_calendar)

        assert len(rows) == 1
        row = rows[0]
        assert row.row_number == 2
        assert row.record_type == RecordType.NORMAL
        assert row.timestamp == at(1)
        assert row.round_number == 7
        assert (row.dealer_name, row.winner_name, row.loser_name) == ("A", "C", "B")
        assert not row.is_self_drawn
        assert [(k.name, k.exposed, k.concealed) for k in row.kongs] == [("D", 1, 2)]
        assert row.names() == ["A", "C", "B", "D"]

    def test_strips_bom_and_accepts_crlf(self, utc_calendar):
        text = "\ufeff" + HEADER + "\r\n" + "Normal,2025-06-01 09:01:00,1,A,A,,true,,\r\n"

        rows = parse_csv(text, utc_calendar)

        assert rows[0].is_self_drawn

    def test_skips_blank_lines(self, utc_calendar):
        text = HEADER + "\n\n" + "Normal,2025-06-01 09:01:00,1,A,A,,true,,\n\n"

        assert len(parse_csv(text, utc_calendar)) == 1

    def test_quoted_fields(self, utc_calendar):
        rows = parse_csv(_csv('Normal,2025-06-01 09:01:00,1,"Li, Wei","Say ""hi""",,TRUE,,'), utc_calendar)

        assert rows[0].dealer_name == "Li, Wei"
        assert rows[0].winner_name == 'Say "hi"'
        assert rows[0].is_self_drawn

    @pytest.mark.parametrize(
        ("value", "expected"),
        [("true", True), ("1", True), ("yes", True), ("false", False), ("", False)],
    )
    def test_self_drawn_values(self, utc_calendar, value, expected):
        rows = parse_csv(_csv(f"Normal,2025-06-01 09:01:00,1,A,A,,{value},,"), utc_calendar)

        assert rows[0].is_self_drawn is expected

    def test_pads_short_rows(self, utc_calendar):
        rows = parse_csv(_csv("Normal,2025-06-01 09:01:00,1,A,B"), utc_calendar)

        assert rows[0].loser_name == ""
        assert rows[0].kongs == []

    def test_iso_timestamp_accepted(self, utc_calendar):
        rows = parse_csv(_csv("Normal,2025-06-01T09:01:00+00:00,1,A,A,,true,,"), utc_calendar)

        assert rows[0].timestamp == at(1)

    def test_bad_timestamp_falls_back_to_import_time(self, utc_calendar, caplog):
        with caplog.at_level(logging.WARNING):
            rows = parse_csv(_csv("Normal,yesterday,1,A,A,,true,,"), utc_calendar, now=at(99))

        assert rows[0].timestamp == at(99)
        warnings = [r for r in caplog.records if r.levelno == logging.WARNING]
        assert warnings[0].msg["event"] == "unparseable timestamp, using import time"
        assert warnings[0].msg["row"] == 2

    def test_adjustment_row(self, utc_calendar):
        rows = parse_csv(_csv("Adjustment,2025-06-01 09:01:00,1,,,,false,,A:50| B : -20 |junk|C:x"), utc_calendar)

        assert [(a.player_name, a.delta) for a in rows[0].adjustments] == [("A", 50), ("B", -20)]
        assert rows[0].names() == ["A", "B"]

    def test_quoted_fields_with_line_breaks(self, utc_calendar):
        text = HEADER + "\r\n" + 'Normal,2025-06-01 09:01:00,1,"Li\nWei","Li\r\nWei",,true,,\r\n'

        rows = parse_csv(text, utc_calendar)

        assert len(rows) == 1
        assert rows[0].dealer_name == "Li\nWei"
        assert rows[0].winner_name == "Li\r\nWei"

    def test_kong_names_may_contain_colons(self):
        entries = decode_kongs("Mr:X:1:0|Y:9:0|bad|Z:a:1")

        assert [(k.name, k.exposed, k.concealed) for k in entries] == [("Mr:X", 1, 0), ("Y", 4, 0)]


class TestParseErrors:
    def test_header_only(self, utc_calendar):
        with pytest.raises(CsvFormatError, match="at least one data row"):
            parse_csv(HEADER + "\n", utc_calendar)

    def test_empty_text(self, utc_calendar):
        with pytest.raises(CsvFormatError):
            parse_csv("", utc_calendar)

    def test_short_header(self, utc_calendar):
        with pytest.raises(CsvFormatError) as exc_info:
            parse_csv("Type,Timestamp\nNormal,2025-06-01 09:01:00\n", utc_calendar)

        assert exc_info.value.row == 1

    def test_unknown_type(self, utc_calendar):
        text = _csv("Normal,2025-06-01 09:01:00,1,A,A,,true,,", "Draw,2025-06-01 09:02:00,2,A,,,,,")

        with pytest.raises(CsvFormatError) as exc_info:
            parse_csv(text, utc_calendar)

        assert exc_info.value.row == 3
        assert "Draw" in exc_info.value.reason
        assert str(exc_info.value).startswith("row 3: ")

    def test_round_number_not_integer(self, utc_calendar):
        with pytest.raises(CsvFormatError, match="RoundNumber"):
            parse_csv(_csv("Normal,2025-06-01 09:01:00,one,A,A,,true,,"), utc_calendar)

    def test_adjustment_without_entries(self, utc_calendar):
        with pytest.raises(CsvFormatError, match="no valid adjustments"):
            parse_csv(_csv("Adjustment,2025-06-01 09:01:00,1,,,,false,,junk"), utc_calendar)

    def test_normal_without_winner(self, utc_calendar):
        with pytest.raises(CsvFormatError, match="DealerName and WinnerName"):
            parse_csv(_csv("Normal,2025-06-01 09:01:00,1,A,,,true,,"), utc_calendar)

    def test_separator_in_player_name(self, utc_calendar):
        with pytest.raises(CsvFormatError, match="must not contain"):
            parse_csv(_csv("Normal,2025-06-01 09:01:00,1,A|B,C,,true,,"), utc_calendar)

    def test_row_numbers_skip_blank_lines(self, utc_calendar):
        text = HEADER + "\n\nNormal,2025-06-01 09:01:00,1,A,A,,true,,\nNormal,bad,x,A,A,,true,,\n"

        with pytest.raises(CsvFormatError) as exc_info:
            parse_csv(text, utc_calendar)

        assert exc_info.value.row == 3


class TestImport:
    def test_creates_unknown_players(self, utc_calendar):
        ledger = Ledger()

        result = import_csv(ledger, _csv("Normal,2025-06-01 09:01:00,1,A,C,B,false,D:1:0,"), "append", utc_calendar)

        assert result.players_created == ["A", "C", "B", "D"]
        assert result.records_imported == 1
        assert sorted(p.name for p in ledger.players.values()) == ["A", "B", "C", "D"]

    def test_resolves_existing_players(self, ledger, utc_calendar):
        before = dict(ledger.players)
        text = _csv("Normal,2025-06-01 09:01:00,1, A ,C,B,false,,")

        result = import_csv(ledger, text, ImportMode.APPEND, utc_calendar)

        assert result.players_created == []
        assert ledger.players == before

    def test_builds_one_union_session(self, utc_calendar):
        ledger = Ledger()
        text = _csv(
            "Normal,2025-06-01 09:01:00,1,A,A,,true,,",
            "Normal,2025-06-01 09:02:00,2,B,C,D,false,,",
        )

        result = import_csv(ledger, text, ImportMode.APPEND, utc_calendar, now=at(10))

        session = ledger.sessions[result.session_id]
        assert [ledger.player_name(pid) for pid in session.player_ids] == ["A", "B", "C", "D"]
        assert session.current_dealer_id == player_id(ledger, "A")
        assert len(session.record_ids) == 2
        assert session.created_at == at(10)

    def test_union_of_four_fills_seats(self, utc_calendar):
        ledger = Ledger()
        text = _csv(
            "Normal,2025-06-01 09:01:00,1,A,A,,true,,",
            "Normal,2025-06-01 09:02:00,2,B,C,D,false,,",
        )

        import_csv(ledger, text, ImportMode.APPEND, utc_calendar)

        # first row only mentions A, the four-name roster seats the rest
        # round 2 is dealt by B: D pays 20, B pays 10x2, A pays 10
        assert player_stats(ledger, player_id(ledger, "A")).score_delta == 120 - 10
        assert player_stats(ledger, player_id(ledger, "B")).score_delta == -40 - 20

    def test_union_larger_than_table_leaves_sparse_rows_unreplayable(self, utc_calendar):
        ledger = Ledger()
        text = _csv(
            "Normal,2025-06-01 09:01:00,1,A,A,,true,,",
            "Normal,2025-06-01 09:02:00,2,B,C,D,false,E:1:0,",
        )

        import_csv(ledger, text, ImportMode.APPEND, utc_calendar)

        assert player_stats(ledger, player_id(ledger, "A")).win_count == 0
        assert player_stats(ledger, player_id(ledger, "C")).win_count == 1

    def test_preserves_timestamp_and_round_number(self, utc_calendar):
        ledger = Ledger()

        import_csv(ledger, _csv("Normal,2025-06-01 09:01:00,9,A,A,,true,,"), ImportMode.APPEND, utc_calendar)

        (record,) = ledger.committed_records()
        assert record.timestamp == at(1)
        assert record.round_number == 9
        assert record.dealer_id == player_id(ledger, "A")

    def test_append_keeps_existing_records(self, ledger, session, utc_calendar):
        play_round(ledger, session, "A", now=at(1))

        result = import_csv(ledger, _csv("Normal,2025-06-01 09:02:00,2,A,B,,true,,"), ImportMode.APPEND, utc_calendar)

        assert result.records_removed == 0
        assert len(ledger.committed_records()) == 2

    def test_overwrite_purges_existing_records(self, ledger, session, utc_calendar):
        play_round(ledger, session, "A", now=at(1))
        play_round(ledger, session, "B", now=at(2))

        result = import_csv(ledger, _csv("Normal,2025-06-01 09:03:00,1,A,C,,true,,"), "overwrite", utc_calendar)

        assert result.records_removed == 2
        assert [ledger.player_name(r.winner_id) for r in ledger.committed_records()] == ["C"]
        assert session.record_ids == []

    def test_failed_import_changes_nothing(self, ledger, session, utc_calendar):
        play_round(ledger, session, "A", now=at(1))
        before = ledger.model_dump()
        text = _csv(
            "Normal,2025-06-01 09:02:00,1,A,New,,true,,",
            "Normal,2025-06-01 09:03:00,2,A,,,true,,",
        )

        with pytest.raises(CsvFormatError) as exc_info:
            import_csv(ledger, text, ImportMode.OVERWRITE, utc_calendar)

        assert exc_info.value.row == 3
        assert ledger.model_dump() == before

    def test_known_table_fills_seats(self, ledger, session, utc_calendar):
        import_csv(ledger, _csv("Normal,2025-06-01 09:01:00,1,A,A,,true,,"), ImportMode.APPEND, utc_calendar)

        (record,) = ledger.committed_records()
        assert sorted(record.player_ids) == sorted(session.player_ids)
        assert total_score(ledger, player_id(ledger, "A")) == 120

    def test_latest_matching_table_fills_seats(self, utc_calendar):
        ledger = create_ledger(("A", "B", "C", "D", "E"))
        create_table(ledger, ("A", "B", "C", "D"), now=at(0))
        later = create_table(ledger, ("A", "B", "C", "E"), now=at(5))

        import_csv(ledger, _csv("Normal,2025-06-01 09:06:00,1,A,B,,true,,"), ImportMode.APPEND, utc_calendar)

        (record,) = ledger.committed_records()
        assert sorted(record.player_ids) == sorted(later.player_ids)

    def test_repeated_kong_entries_merged(self, ledger, session, utc_calendar):
        text = _csv("Normal,2025-06-01 09:01:00,1,A,A,,true,A:1:0|A:0:1,")
        import_csv(ledger, text, ImportMode.APPEND, utc_calendar)
        single = create_ledger()
        create_table(single)
        import_csv(single, _csv("Normal,2025-06-01 09:01:00,1,A,A,,true,A:1:1,"), ImportMode.APPEND, utc_calendar)

        (record,) = ledger.committed_records()
        assert len(record.kong_details) == 1
        assert total_kongs(ledger, player_id(ledger, "A")) == 2
        assert _stats_by_name(ledger) == _stats_by_name(single)

    def test_adjustment_rows(self, utc_calendar):
        ledger = Ledger()

        import_csv(ledger, _csv("Adjustment,2025-06-01 09:01:00,1,,,,false,,A:30|B:-30"), "append", utc_calendar)

        assert player_stats(ledger, player_id(ledger, "A")).score_delta == 30
        assert player_stats(ledger, player_id(ledger, "B")).score_delta == -30


class TestRoundTrip:
    def test_overwrite_reimport_reproduces_stats(self, utc_calendar):
        ledger = _populated_ledger()
        before = _stats_by_name(ledger)
        text = export_csv(ledger, utc_calendar)

        result = import_csv(ledger, text, ImportMode.OVERWRITE, utc_calendar)

        assert result.records_imported == 5
        assert _stats_by_name(ledger) == before
        assert export_csv(ledger, utc_calendar) == text

    def test_import_into_empty_ledger_reproduces_stats(self, utc_calendar):
        source = _populated_ledger()
        text = export_csv(source, utc_calendar)
        target = Ledger()

        import_csv(target, text, ImportMode.APPEND, utc_calendar)

        assert _stats_by_name(target) == _stats_by_name(source)

    def test_single_dealer_self_draw_survives_overwrite(self, ledger, session, utc_calendar):
        play_round(ledger, session, "A", now=at(1))
        before = _stats_by_name(ledger)

        import_csv(ledger, export_csv(ledger, utc_calendar), ImportMode.OVERWRITE, utc_calendar)

        assert before["A"].score_delta == 120
        assert _stats_by_name(ledger) == before

    def test_multi_table_log_survives_overwrite(self, utc_calendar):
        ledger = create_ledger(("A", "B", "C", "D", "E"))
        first = create_table(ledger, ("A", "B", "C", "D"), now=at(0))
        second = create_table(ledger, ("A", "B", "C", "E"), now=at(5))
        play_round(ledger, first, "D", now=at(1))
        play_round(ledger, second, "E", "A", now=at(6))
        before = _stats_by_name(ledger)
        text = export_csv(ledger, utc_calendar)

        import_csv(ledger, text, ImportMode.OVERWRITE, utc_calendar)

        assert before["D"].win_count == 1
        assert before["E"].win_count == 1
        assert _stats_by_name(ledger) == before
        assert export_csv(ledger, utc_calendar) == text

    def test_names_with_line_breaks_survive(self, utc_calendar):
        names = ("Li\nWei", "B", "C", "D")
        ledger = create_ledger(names)
        session = create_table(ledger, names)
        play_round(ledger, session, "Li\nWei", "C", now=at(1))
        before = _stats_by_name(ledger)
        text = export_csv(ledger, utc_calendar)

        import_csv(ledger, text, ImportMode.OVERWRITE, utc_calendar)

        assert '"Li\nWei"' in text
        assert _stats_by_name(ledger) == before
        assert export_csv(ledger, utc_calendar) == text

    def test_names_with_separators_survive(self, utc_calendar):
        names = ("Li, Wei", 'Say "hi"', "Mr:X", "D")
        ledger = create_ledger(names)
        session = create_table(ledger, names)
        kongs = [
            KongDetail(player_id=player_id(ledger, "Mr:X"), exposed_kong_count=2),
            KongDetail(player_id=player_id(ledger, "D"), concealed_kong_count=1),
        ]
        play_round(ledger, session, 'Say "hi"', "Li, Wei", kongs=kongs, now=at(1))
        before = _stats_by_name(ledger)

        target = Ledger()
        import_csv(target, export_csv(ledger, utc_calendar), ImportMode.APPEND, utc_calendar)

        assert _stats_by_name(target) == before

    def test_deactivated_name_reused_on_import(self, ledger, session, utc_calendar):
        play_round(ledger, session, "D", now=at(1))
        remove_player(ledger, player_id(ledger, "D"))
        replacement = add_player(ledger, "D")

        import_csv(ledger, _csv("Normal,2025-06-01 09:02:00,2,A,D,,true,,"), ImportMode.APPEND, utc_calendar)

        last = ledger.committed_records()[-1]
        assert last.winner_id == replacement.player_id
