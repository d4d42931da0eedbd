"""vetrecord_etl.tabular

Turns an uploaded CSV or XLSX buffer into a list of header-keyed rows, each
numbered by its position in the file.
CSV text goes through the csv module; spreadsheets through openpyxl with
cached values (formulas are not re-evaluated).
"""

from __future__ import annotations

import csv
import io
import logging
import zipfile
from pathlib import PurePath
from typing import Any, Iterable, NamedTuple, Sequence

import openpyxl
from openpyxl.utils.exceptions import InvalidFileException

from vetrecord_etl.fields import is_blank
from vetrecord_etl.shared import FileError

log = logging.getLogger(__name__)

CSV_ENCODINGS = ("utf-8-sig", "cp1256", "latin-1")
XLSX_SUFFIXES = frozenset({".xlsx", ".xlsm"})


class SourceRow(NamedTuple):
    """A non-blank data row and its 1-based position among the file's data rows.

    Blank rows still count, so `number` is the spreadsheet row minus the
    header row.
    """

    number: int
    values: dict[str, Any]


def normalize_headers(raw: dict[Any, Any]) -> dict[str, Any]:
    """Return a new dict with header keys whitespace-stripped; unnamed columns dropped."""
    return {str(k).strip(): v for k, v in raw.items() if k is not None and str(k).strip()}


def _is_blank_row(row: dict[str, Any]) -> bool:
    return all(is_blank(v) for v in row.values())


def _number_rows(header: Sequence[Any], records: Iterable[Sequence[Any]]) -> list[SourceRow]:
    rows = []
    for number, cells in enumerate(records, start=1):
        values = normalize_headers(dict(zip(header, cells)))
        if not _is_blank_row(values):
            rows.append(SourceRow(number, values))
    return rows


def _decode(buffer: bytes) -> str:
    for encoding in CSV_ENCODINGS:
        try:
            return buffer.decode(encoding)
        except UnicodeDecodeError:
            continue
    raise FileError("file is not valid text in any supported encoding")


def parse_csv(buffer: bytes) -> list[SourceRow]:
    text = _decode(buffer)
    try:
        # csv.reader keeps empty lines as [], which DictReader would skip
        reader = csv.reader(io.StringIO(text, newline=""))
        header = next(reader, None)
        if not header or not any(h.strip() for h in header):
            raise FileError("file has no header row")
        return _number_rows(header, reader)
    except csv.Error as e:
        raise FileError(f"malformed CSV: {e}") from e


def parse_xlsx(buffer: bytes) -> list[SourceRow]:
    try:
        workbook = openpyxl.load_workbook(io.BytesIO(buffer), read_only=True, data_only=True)
    except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError) as e:
        raise FileError(f"unreadable spreadsheet: {e}") from e
    try:
        sheet = workbook.worksheets[0] if workbook.worksheets else None
        if sheet is None:
            raise FileError("workbook has no worksheets")
        values = sheet.iter_rows(values_only=True)
        header = next(values, None)
        if header is None or all(is_blank(h) for h in header):
            raise FileError("file has no header row")
        return _number_rows(header, values)
    finally:
        workbook.close()


def parse_tabular(buffer: bytes, file_name: str) -> list[SourceRow]:
    """Parse `buffer` by the extension of `file_name`.

    Raises:
        FileError: unsupported type, unreadable content, no header, or no data rows.
    """
    if not buffer:
        raise FileError("file is empty")
    suffix = PurePath(file_name).suffix.lower()
    if suffix == ".csv":
        rows = parse_csv(buffer)
    elif suffix in XLSX_SUFFIXES:
        rows = parse_xlsx(buffer)
    else:
        raise FileError(f"unsupported file type {suffix or file_name!r}; expected .csv or .xlsx")
    if not rows:
        raise FileError("file contains no data rows")
    log.info("Parsed %d rows from %s", len(rows), file_name)
    return rows
