"""Quote-aware CSV tokenizer.

WHAT:
    Turns raw CSV text into a list of rows, each a list of trimmed strings.

WHY:
    Sheet exports and user uploads are small enough to parse in one pass, and
    we need exact control over the quirks we tolerate:
        - separators inside double quotes are literal
        - `""` inside quotes is one literal quote
        - CRLF, LF and bare CR all end a row (outside quotes)
        - blank lines are skipped, not emitted as empty rows

REFERENCES:
    - funnelboard/services/sheet_fetcher.py (Google Sheets CSV)
    - funnelboard/services/lead_service.py (lead CSV import, `;` delimiter)
"""

from typing import List


def parse_csv(text: str, delimiter: str = ",") -> List[List[str]]:
    """Parse CSV text into rows of trimmed fields.

    Example:
        >>> parse_csv('a,"b,c",d')
        [['a', 'b,c', 'd']]
    """
    rows: List[List[str]] = []
    row: List[str] = []
    field: List[str] = []
    in_quotes = False
    i = 0
    length = len(text)

    def end_row() -> None:
        row.append("".join(field).strip())
        field.clear()
        # A row made of a single empty field is a blank line
        if len(row) > 1 or row[0]:
            rows.append(list(row))
        row.clear()

    while i < length:
        char = text[i]

        if char == '"':
            if in_quotes and i + 1 < length and text[i + 1] == '"':
                field.append('"')
                i += 2
                continue
            in_quotes = not in_quotes
        elif char == delimiter and not in_quotes:
            row.append("".join(field).strip())
            field.clear()
        elif char in "\r\n" and not in_quotes:
            if char == "\r" and i + 1 < length and text[i + 1] == "\n":
                i += 1
            end_row()
        else:
            field.append(char)
        i += 1

    if field or row:
        end_row()

    return rows
