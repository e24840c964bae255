"""
mirror/ingest.py -- Parse and render the flat mirror file format.

Pure functions, no I/O: content strings in, MirrorRecords out (and back).
File handling lives in mirror/store.py; merging into the credential store
lives in mirror/sync.py.

Format: CSV with a header row.
  first_name,last_name,email,password,role,status,created_at,updated_at

camelCase headers (firstName, lastName, createdAt, updatedAt) are accepted on
read for files produced by other tools. Extra columns are ignored. Rows are
not validated here beyond whitespace trimming -- reconcile() decides which
rows are usable, so the report can say why a row was skipped.

Security: every rendered cell goes through _sanitize_csv_cell() (CWE-1236,
CSV formula injection). Names come from user input and the file is meant to
be opened in spreadsheet applications.
"""

import csv
import io

from mirror.models import MirrorRecord

MIRROR_COLUMNS = [
    "first_name",
    "last_name",
    "email",
    "password",
    "role",
    "status",
    "created_at",
    "updated_at",
]

_ALIASES = {
    "first_name": ("first_name", "firstName"),
    "last_name": ("last_name", "lastName"),
    "email": ("email",),
    "password": ("password",),
    "role": ("role",),
    "status": ("status",),
    "created_at": ("created_at", "createdAt"),
    "updated_at": ("updated_at", "updatedAt"),
}

_FORMULA_PREFIXES = ("=", "+", "-", "@")


def _sanitize_csv_cell(value: str) -> str:
    """Tab-prefix cells that a spreadsheet would evaluate as a formula.

    The leading tab makes spreadsheet applications treat the cell as text.
    parse_csv() strips surrounding whitespace, so the tab does not survive a
    round trip.
    """
    if value and value.startswith(_FORMULA_PREFIXES):
        return "\t" + value
    return value


def _cell(row: dict, column: str) -> str:
    for name in _ALIASES[column]:
        value = row.get(name)
        if value:
            return value.strip()
    return ""


def parse_csv(content: str) -> list[MirrorRecord]:
    """Parse mirror CSV content into MirrorRecords.

    Blank role/status/timestamp cells become None. A header-only or empty
    file yields an empty list.
    """
    records: list[MirrorRecord] = []
    reader = csv.DictReader(io.StringIO(content))
    for row in reader:
        if not any((v or "").strip() for v in row.values() if isinstance(v, str)):
            continue
        records.append(
            MirrorRecord(
                first_name=_cell(row, "first_name"),
                last_name=_cell(row, "last_name"),
                email=_cell(row, "email"),
                password=_cell(row, "password"),
                role=_cell(row, "role") or None,
                status=_cell(row, "status") or None,
                created_at=_cell(row, "created_at") or None,
                updated_at=_cell(row, "updated_at") or None,
            )
        )
    return records


def to_csv(records: list[MirrorRecord]) -> str:
    """Render MirrorRecords as mirror CSV, header row first."""
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(MIRROR_COLUMNS)
    for r in records:
        writer.writerow(
            [
                _sanitize_csv_cell(r.first_name or ""),
                _sanitize_csv_cell(r.last_name or ""),
                _sanitize_csv_cell(r.email or ""),
                r.password or "",
                r.role or "",
                r.status or "",
                r.created_at or "",
                r.updated_at or "",
            ]
        )
    return buf.getvalue()
