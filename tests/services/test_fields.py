from __future__ import annotations

from datetime import date

from listing_index.services.fields import (
    Header,
    epoch_millis,
    html_to_text,
    parse_amenities,
    parse_date,
    parse_float,
    parse_int,
    parse_price,
)


def test_duplicate_header_names_keep_first_position() -> None:
    header = Header(["id", "name", "name"])
    row = ["1", "first", "second"]

    assert header.position("name") == 1
    assert header.get(row, "name") == "first"
    assert len(header) == 3


def test_header_get_returns_none_for_unknown_short_or_empty_cells() -> None:
    header = Header(["id", "name", "price"])

    assert header.get(["1", "x"], "missing") is None
    assert header.get(["1", "x"], "price") is None
    assert header.get(["1", "", "10"], "name") is None
    assert header.get(["1", " ", "10"], "name") == " "


def test_header_strips_byte_order_mark() -> None:
    header = Header(["\ufeffid", "host_id"])

    assert "id" in header
    assert header.missing(["id", "host_id", "name"]) == ["name"]


def test_parse_int_truncates_decimals_and_rejects_junk() -> None:
    assert parse_int(" 42 ") == 42
    assert parse_int("3.0") == 3
    assert parse_int("2.9") == 2
    assert parse_int("abc") is None
    assert parse_int("") is None
    assert parse_int(None) is None
    assert parse_int("inf") is None


def test_parse_int_rejects_values_outside_64_bit_range() -> None:
    assert parse_int("9223372036854775807") == 2**63 - 1
    assert parse_int("-9223372036854775808") == -(2**63)
    assert parse_int("9223372036854775808") is None
    assert parse_int("99999999999999999999") is None
    assert parse_int("1e30") is None
    assert parse_int("-1e30") is None


def test_parse_float_rejects_non_finite_values() -> None:
    assert parse_float("4.6") == 4.6
    assert parse_float("nan") is None
    assert parse_float("x") is None


def test_parse_price_strips_currency_and_thousands() -> None:
    assert parse_price("$1,250.00") == 1250.0
    assert parse_price("$75") == 75.0
    assert parse_price("free") is None


def test_parse_date_and_epoch_millis() -> None:
    assert parse_date("2015-06-01") == date(2015, 6, 1)
    assert parse_date("06/01/2015") is None
    assert epoch_millis(date(1970, 1, 2)) == 86_400_000


def test_html_to_text_replaces_only_known_fragments() -> None:
    assert html_to_text("a<br />b<br/>c<br>d&nbsp;e") == "a b c d e"
    assert html_to_text("<b>bold</b>") == "<b>bold</b>"
    assert html_to_text(None) is None


def test_parse_amenities_reads_json_array() -> None:
    assert parse_amenities('["Wifi", "Kitchen", " "]') == ["Wifi", "Kitchen"]


def test_parse_amenities_falls_back_on_malformed_array() -> None:
    raw = '["Wifi", "Sound system \\"Bose\\"", Kitchen]'

    assert parse_amenities(raw) == ["Wifi", 'Sound system "Bose"', "Kitchen"]


def test_parse_amenities_blank_is_empty() -> None:
    assert parse_amenities(None) == []
    assert parse_amenities("  ") == []
