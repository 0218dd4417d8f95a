"""Parsed CSV rows -> typed CampaignRow records.

Each CampaignRow field is resolved to a column once per sheet, then every
data row is read through the parser matching the field's declared type.
Rows whose date cell is not `YYYY-MM-DD` are dropped silently: trailing
totals and repeated header rows are normal in exports.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Sequence

from ..schemas import CampaignRow
from .column_resolver import found_columns, resolve_columns
from .number_parsing import parse_brazilian_number, parse_int_safe

logger = logging.getLogger(__name__)

ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")

_PARSERS: Dict[type, Callable] = {
    int: parse_int_safe,
    float: parse_brazilian_number,
    str: lambda value: value,
}

CAMPAIGN_FIELDS = {name: info.annotation for name, info in CampaignRow.model_fields.items()}


@dataclass
class MappedSheet:
    """Result of mapping one sheet.

    rows are sorted by date descending; columns_found lists the camelCase
    fields that matched a header (diagnostic for silently missing columns).
    """

    headers: List[str]
    rows: List[CampaignRow] = field(default_factory=list)
    columns_found: List[str] = field(default_factory=list)

    @property
    def has_date_column(self) -> bool:
        return "date" in self.columns_found

    @property
    def date_range(self):
        if not self.rows:
            return None
        return {"start": self.rows[-1].date, "end": self.rows[0].date}


def _cell(row: Sequence[str], index: int) -> str:
    if index < 0 or index >= len(row):
        return ""
    return row[index]


def map_rows(parsed: Sequence[Sequence[str]]) -> MappedSheet:
    """Map parsed CSV rows (first row = headers) into CampaignRow records."""
    if not parsed:
        return MappedSheet(headers=[])

    headers = list(parsed[0])
    indexes = resolve_columns(headers, list(CAMPAIGN_FIELDS))
    mapped = MappedSheet(headers=headers, columns_found=found_columns(indexes))

    if indexes["date"] < 0:
        return mapped

    dropped = 0
    for raw in parsed[1:]:
        date = _cell(raw, indexes["date"])
        if not ISO_DATE_RE.match(date):
            dropped += 1
            continue
        values = {
            name: _PARSERS[CAMPAIGN_FIELDS[name]](_cell(raw, index))
            for name, index in indexes.items()
        }
        mapped.rows.append(CampaignRow(**values))

    mapped.rows.sort(key=lambda r: r.date, reverse=True)
    logger.info(
        f"[SHEETS] Mapped {len(mapped.rows)} rows ({dropped} dropped), "
        f"{len(mapped.columns_found)}/{len(CAMPAIGN_FIELDS)} columns found"
    )
    return mapped
