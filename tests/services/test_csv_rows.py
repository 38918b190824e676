from __future__ import annotations

import io

from listing_index.services.csv_rows import (
    CsvRowReader,
    count_unescaped_quotes,
    iter_logical_rows,
    split_cells,
)


def test_doubled_quotes_do_not_toggle_quote_state() -> None:
    assert count_unescaped_quotes('a,"b ""quoted"" c",d') == 2
    assert count_unescaped_quotes('""') == 0
    assert count_unescaped_quotes('"open') == 1


def test_embedded_newline_is_one_logical_row() -> None:
    source = io.StringIO('id,description\n1,"first line\nsecond line"\n2,plain\n')

    rows = list(CsvRowReader(source))

    assert rows == [
        ["id", "description"],
        ["1", "first line\nsecond line"],
        ["2", "plain"],
    ]


def test_crlf_line_endings_are_stripped_and_newlines_joined() -> None:
    lines = ['1,"a\r\n', 'b"\r\n', "2,c\r\n"]

    assert list(iter_logical_rows(lines)) == ['1,"a\nb"', "2,c"]


def test_doubled_quotes_unescape_inside_quoted_cell() -> None:
    assert split_cells('1,"say ""hi""",x') == ["1", 'say "hi"', "x"]


def test_delimiter_inside_quotes_is_literal() -> None:
    assert split_cells('1;"a;b";c', ";") == ["1", "a;b", "c"]


def test_empty_cells_are_kept() -> None:
    assert split_cells("1,,3,") == ["1", "", "3", ""]


def test_unbalanced_quote_at_end_of_stream_yields_partial_row() -> None:
    source = io.StringIO('id,name\n1,ok\n2,"never closed\nstill open\n')

    rows = list(CsvRowReader(source))

    assert rows[-1] == ["2", "never closed\nstill open"]
    assert len(rows) == 3


def test_reader_rejects_multi_character_delimiter() -> None:
    try:
        CsvRowReader(io.StringIO(""), delimiter="||")
    except ValueError as exc:
        assert "single character" in str(exc)
    else:
        raise AssertionError("Expected ValueError for a two-character delimiter")
