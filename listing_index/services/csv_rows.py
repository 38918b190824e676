"""Logical-row reader for listing CSV extracts with multi-line quoted fields."""

from __future__ import annotations

from collections.abc import Iterable, Iterator

QUOTE = '"'


def count_unescaped_quotes(line: str) -> int:
    """Count quote characters in `line`, treating a doubled `""` as one literal quote."""

    count = 0
    i = 0
    length = len(line)
    while i < length:
        if line[i] == QUOTE:
            if i + 1 < length and line[i + 1] == QUOTE:
                i += 2
                continue
            count += 1
        i += 1
    return count


def iter_logical_rows(lines: Iterable[str]) -> Iterator[str]:
    """Yield logical rows, folding physical lines while a quoted field is still open.

    Physical lines are joined with ``\\n``. When the stream ends inside an open
    quote the partial row is yielded as-is instead of being rejected.
    """

    pending: list[str] | None = None
    open_quotes = 0
    for raw_line in lines:
        line = raw_line.rstrip("\r\n")
        if pending is None:
            pending = [line]
            open_quotes = count_unescaped_quotes(line)
        else:
            pending.append(line)
            open_quotes += count_unescaped_quotes(line)
        if open_quotes % 2 == 0:
            yield "\n".join(pending)
            pending = None
    if pending is not None:
        yield "\n".join(pending)


def split_cells(row: str, delimiter: str = ",") -> list[str]:
    """Split one logical row into cells, unquoting `"..."` fields and `""` escapes."""

    cells: list[str] = []
    current: list[str] = []
    in_quotes = False
    i = 0
    length = len(row)
    while i < length:
        char = row[i]
        if char == QUOTE:
            if in_quotes and i + 1 < length and row[i + 1] == QUOTE:
                current.append(QUOTE)
                i += 1
            else:
                in_quotes = not in_quotes
        elif char == delimiter and not in_quotes:
            cells.append("".join(current))
            current = []
        else:
            current.append(char)
        i += 1
    cells.append("".join(current))
    return cells


class CsvRowReader:
    """Lazy, single-pass reader producing cell lists from a character stream."""

    def __init__(self, stream: Iterable[str], *, delimiter: str = ",") -> None:
        if len(delimiter) != 1:
            raise ValueError(f"CSV delimiter must be a single character, got {delimiter!r}")
        self.delimiter = delimiter
        self._rows = iter_logical_rows(stream)

    def __iter__(self) -> Iterator[list[str]]:
        return self

    def __next__(self) -> list[str]:
        return split_cells(next(self._rows), self.delimiter)
