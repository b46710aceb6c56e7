"""Library for formatting tabular console output."""

from collections.abc import Generator

__all__ = [
    "column_format_string",
    "format_columns",
]

PADDING = 4


def column_format_string(rows: list[list[str]]) -> str:
    """Produce a format string based on max width of columns."""
    num_cols = len(rows[0])
    widths = [0] * num_cols
    for row in rows:
        for i, value in enumerate(row):
            widths[i] = max(widths[i], len(str(value)))
    return "".join([f"{{:{w+PADDING}}}" for w in widths])


def format_columns(
    headers: list[str], rows: list[list[str]], trailer: list[str] | None = None
) -> Generator[str, None, None]:
    """Yield the specified rows in a column format.

    Each entry of `trailer` is appended unpadded to the line of the row with
    the same index (the header row is index 0).
    """
    data = [headers] + rows
    format_string = column_format_string(data)
    if format_string:
        for i, row in enumerate(data):
            line = format_string.format(*[str(x) for x in row])
            if trailer:
                line += trailer[i]
            yield line
