"""Header-aware field access and lenient value parsers for listing rows."""

from __future__ import annotations

import json
import math
from collections.abc import Sequence
from datetime import date, datetime, timezone

BOM = "\ufeff"
INT64_MIN = -(2**63)
INT64_MAX = 2**63 - 1

# Literal fragments replaced by a space; not a markup parser.
HTML_FRAGMENTS = ("<br />", "<br/>", "<br>", "&nbsp;")


class Header:
    """Column name -> position map built once per source file.

    When a name appears more than once the first column keeps it.
    """

    def __init__(self, columns: Sequence[str]) -> None:
        self.columns = list(columns)
        if self.columns and self.columns[0].startswith(BOM):
            self.columns[0] = self.columns[0][len(BOM):]
        self._positions: dict[str, int] = {}
        for position, name in enumerate(self.columns):
            self._positions.setdefault(name, position)

    def __contains__(self, name: object) -> bool:
        return name in self._positions

    def __len__(self) -> int:
        return len(self.columns)

    def position(self, name: str) -> int | None:
        return self._positions.get(name)

    def get(self, row: Sequence[str], name: str) -> str | None:
        """Return the raw cell for `name`, or None if unknown, out of range, or empty."""

        position = self._positions.get(name)
        if position is None or position >= len(row):
            return None
        value = row[position]
        if value is None or value == "":
            return None
        return value

    def missing(self, required: Sequence[str]) -> list[str]:
        return [name for name in required if name not in self._positions]


def is_blank(value: str | None) -> bool:
    return value is None or not value.strip()


def parse_int(raw_value: str | None) -> int | None:
    """Parse an integer cell; decimal text is truncated ("3.0" -> 3), junk returns None.

    Values outside the signed 64-bit range the index stores are junk too.
    """

    if is_blank(raw_value):
        return None
    value = raw_value.strip()
    try:
        number = int(value)
    except ValueError:
        try:
            number = int(float(value))
        except (ValueError, OverflowError):
            return None
    if not INT64_MIN <= number <= INT64_MAX:
        return None
    return number


def parse_float(raw_value: str | None) -> float | None:
    if is_blank(raw_value):
        return None
    try:
        value = float(raw_value.strip())
    except ValueError:
        return None
    if not math.isfinite(value):
        return None
    return value


def parse_price(raw_value: str | None) -> float | None:
    """Parse "$1,250.00" style prices."""

    if is_blank(raw_value):
        return None
    return parse_float(raw_value.replace("$", "").replace(",", ""))


def parse_date(raw_value: str | None) -> date | None:
    if is_blank(raw_value):
        return None
    try:
        return datetime.strptime(raw_value.strip(), "%Y-%m-%d").date()
    except ValueError:
        return None


def epoch_millis(day: date) -> int:
    """UTC midnight of `day` as epoch milliseconds."""

    moment = datetime(day.year, day.month, day.day, tzinfo=timezone.utc)
    return int(moment.timestamp() * 1000)


def html_to_text(raw_value: str | None) -> str | None:
    if raw_value is None:
        return None
    text = raw_value
    for fragment in HTML_FRAGMENTS:
        text = text.replace(fragment, " ")
    return text


def parse_amenities(raw_value: str | None) -> list[str]:
    """Parse the amenities cell, normally a JSON array of strings.

    Malformed arrays fall back to a quote-aware comma split so that one bad
    escape does not drop the whole list.
    """

    if is_blank(raw_value):
        return []
    text = raw_value.strip()
    try:
        parsed = json.loads(text)
    except ValueError:
        parsed = None
    if isinstance(parsed, list):
        return [str(item).strip() for item in parsed if str(item).strip()]
    return _split_amenities(text)


def _split_amenities(text: str) -> list[str]:
    if text.startswith("[") and text.endswith("]"):
        text = text[1:-1]

    tokens: list[str] = []
    current: list[str] = []
    in_quotes = False
    i = 0
    while i < len(text):
        char = text[i]
        if char == "\\" and i + 1 < len(text) and text[i + 1] == '"':
            current.append('"')
            i += 1
        elif char == '"':
            if in_quotes and i + 1 < len(text) and text[i + 1] == '"':
                current.append('"')
                i += 1
            else:
                in_quotes = not in_quotes
        elif char == "," and not in_quotes:
            tokens.append("".join(current))
            current = []
        else:
            current.append(char)
        i += 1
    tokens.append("".join(current))

    amenities: list[str] = []
    for token in tokens:
        amenity = token.strip()
        if amenity:
            amenities.append(amenity)
    return amenities
