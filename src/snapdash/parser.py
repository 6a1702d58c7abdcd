"""Parsing of backend listing and status output.

Everything here is pure: no I/O, no logging, and the same input always
produces the same output. The backend's text format is the most fragile
part of the system, so all string handling for it lives in this module.

Two listing forms are understood:

- the column table printed by ``snapper list`` (cells separated by ``|`` or the
  box-drawing ``│``, a header row naming the columns, widths free);
- the JSON object printed by ``snapper --jsonout list`` (config name mapped
  to a list of entries).
"""

from __future__ import annotations

import json
import re
from collections.abc import Iterable, Sequence
from datetime import datetime
from typing import Any, NamedTuple

from snapdash.models import ParseError, Snapshot, SnapshotType, excerpt

__all__ = [
    "ListingParse",
    "format_date",
    "format_listing",
    "format_size",
    "parse_date",
    "parse_listing",
    "parse_size",
    "parse_status",
    "parse_userdata",
]


class ListingParse(NamedTuple):
    """Snapshots read from a listing plus the number of rows that were skipped."""

    snapshots: list[Snapshot]
    skipped: int


# Header cell (lowercased) -> Snapshot field
_COLUMNS = {
    "#": "id",
    "number": "id",
    "type": "type",
    "pre #": "pre_number",
    "pre-number": "pre_number",
    "date": "date",
    "user": "user",
    "used space": "used_space",
    "used-space": "used_space",
    "cleanup": "cleanup_algorithm",
    "description": "description",
    "userdata": "userdata",
}

_SEPARATOR_RE = re.compile(r"^[\s\-+=|│┃─┼━╋]+$")
_CELL_SPLIT_RE = re.compile(r"([|│┃])")
_NUMBER_RE = re.compile(r"^(\d+)([*+\-]?)$")
_SIZE_RE = re.compile(r"^(\d+(?:[.,]\d+)?)\s*([KMGTPE]?)(?:i?B)?$", re.IGNORECASE)
_DIFF_RE = re.compile(r"^([+\-c.][.a-z]{3,6})\s+(/.*)$")
_KEY_VALUE_RE = re.compile(r"^\s*([A-Za-z][\w \-#]*?)\s*[:=]\s*(.*?)\s*$")
_TZ_RE = re.compile(r"\s+(?!AM$|PM$)[A-Z]{2,5}$")

_SIZE_UNITS = ["", "K", "M", "G", "T", "P", "E"]

_DATE_FORMATS = [
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d %H:%M",
    "%a %d %b %Y %I:%M:%S %p",  # en_US: Mon 02 Oct 2023 10:00:00 AM
    "%a %d %b %Y %H:%M:%S",  # 24h locales: Mon 02 Oct 2023 22:00:00
    "%a %b %d %H:%M:%S %Y",  # C locale: Mon Oct  2 10:00:00 2023
    "%a %d %b %Y %I:%M:%S",
    "%d.%m.%Y %H:%M:%S",
    "%d/%m/%Y %H:%M:%S",
]


# Scalars


def parse_date(text: str) -> datetime | None:
    """Parse a backend date in ISO or locale form.

    Trailing timezone abbreviations (``CEST``, ``UTC``) are dropped and the
    result is naive. Returns None for empty or unrecognized input.
    """
    text = " ".join(text.split())
    if not text:
        return None
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        pass
    candidates = [text]
    stripped = _TZ_RE.sub("", text)
    if stripped != text:
        candidates.append(stripped)
    for candidate in candidates:
        for fmt in _DATE_FORMATS:
            try:
                return datetime.strptime(candidate, fmt)
            except ValueError:
                continue
    return None


def format_date(value: datetime | None) -> str:
    return value.strftime("%Y-%m-%d %H:%M:%S") if value is not None else ""


def parse_size(text: str) -> int | None:
    """Parse a human-readable binary size (``1.50 MiB``, ``12K``, ``512 B``) to bytes."""
    match = _SIZE_RE.match(text.strip())
    if match is None:
        return None
    value = float(match.group(1).replace(",", "."))
    unit = match.group(2).upper()
    return round(value * 1024 ** _SIZE_UNITS.index(unit))


def format_size(num_bytes: int) -> str:
    """Format a byte count with binary units and two decimals."""
    if num_bytes < 1024:
        return f"{num_bytes} B"
    value = float(num_bytes)
    for unit in _SIZE_UNITS[1:]:
        value /= 1024
        if value < 1024 or unit == _SIZE_UNITS[-1]:
            return f"{value:.2f} {unit}iB"
    raise AssertionError("unreachable")


def parse_userdata(text: str) -> dict[str, str]:
    """Parse ``key=value, key2=value2`` userdata cells."""
    result: dict[str, str] = {}
    for item in text.split(","):
        key, sep, value = item.partition("=")
        if sep and key.strip():
            result[key.strip()] = value.strip()
    return result


def _format_userdata(userdata: dict[str, str]) -> str:
    return ", ".join(f"{key}={value}" for key, value in userdata.items())


# Listing


def parse_listing(raw_text: str) -> ListingParse:
    """Parse a backend listing into snapshot records.

    Rows that cannot be read are skipped and counted rather than failing the
    whole listing.

    Raises:
        ParseError: If the text is empty or has no recognizable header
    """
    text = raw_text.strip()
    if not text:
        raise ParseError("", "empty listing")
    if text.startswith("{"):
        return _parse_json_listing(text)
    return _parse_table_listing(text)


def _parse_table_listing(text: str) -> ListingParse:
    lines = [line for line in text.splitlines() if line.strip()]
    header_index = None
    columns: list[str | None] = []
    for index, line in enumerate(lines):
        cells = [cell.strip().lower() for cell in _CELL_SPLIT_RE.split(line)[::2]]
        fields = [_COLUMNS.get(cell) for cell in cells]
        if "id" in fields and "type" in fields:
            header_index = index
            columns = fields
            break
    if header_index is None:
        raise ParseError(excerpt(text), "no listing header")

    snapshots: list[Snapshot] = []
    skipped = 0
    for line in lines[header_index + 1 :]:
        if _SEPARATOR_RE.match(line):
            continue
        cells = _split_row(line, columns)
        if cells is None:
            skipped += 1
            continue
        values = {name: cell for name, cell in zip(columns, cells, strict=True) if name is not None}
        snapshot = _snapshot_from_cells(values)
        if snapshot is None:
            skipped += 1
            continue
        snapshots.append(snapshot)
    return ListingParse(snapshots, skipped)


def _split_row(line: str, columns: Sequence[str | None]) -> list[str] | None:
    """Split a table row into one stripped cell per header column.

    Surplus cells come from separator characters inside the description and
    are joined back into it. Returns None when the row cannot be aligned.
    """
    parts = _CELL_SPLIT_RE.split(line)
    cells, separators = parts[::2], parts[1::2]
    surplus = len(cells) - len(columns)
    if surplus > 0 and "description" in columns:
        start = columns.index("description")
        end = start + surplus
        tail = zip(separators[start:end], cells[start + 1 : end + 1], strict=True)
        merged = cells[start] + "".join(sep + cell for sep, cell in tail)
        cells = [*cells[:start], merged, *cells[end + 1 :]]
    if len(cells) != len(columns):
        return None
    return [cell.strip() for cell in cells]


def _snapshot_from_cells(values: dict[str, str]) -> Snapshot | None:
    number = _NUMBER_RE.match(values.get("id", ""))
    if number is None:
        return None
    try:
        snapshot_type = SnapshotType(values.get("type", "").lower())
    except ValueError:
        return None
    pre_text = values.get("pre_number", "")
    if pre_text and not pre_text.isdigit():
        return None
    marker = number.group(2)
    return Snapshot(
        id=int(number.group(1)),
        type=snapshot_type,
        date=parse_date(values.get("date", "")),
        user=values.get("user", ""),
        description=values.get("description", ""),
        used_space=parse_size(values.get("used_space", "")),
        cleanup_algorithm=values.get("cleanup_algorithm") or None,
        pre_number=int(pre_text) if pre_text else None,
        userdata=parse_userdata(values.get("userdata", "")),
        default=marker in ("*", "+"),
        active=marker in ("*", "-"),
    )


def _parse_json_listing(text: str) -> ListingParse:
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as e:
        raise ParseError(excerpt(text), f"invalid JSON: {e.msg}") from e
    if not isinstance(payload, dict):
        raise ParseError(excerpt(text), "JSON listing is not an object")

    snapshots: list[Snapshot] = []
    skipped = 0
    for entries in payload.values():
        if not isinstance(entries, list):
            skipped += 1
            continue
        for entry in entries:
            snapshot = _snapshot_from_json(entry) if isinstance(entry, dict) else None
            if snapshot is None:
                skipped += 1
                continue
            snapshots.append(snapshot)
    return ListingParse(snapshots, skipped)


def _snapshot_from_json(entry: dict[str, Any]) -> Snapshot | None:
    number = entry.get("number")
    if not isinstance(number, int) or isinstance(number, bool):
        return None
    try:
        snapshot_type = SnapshotType(str(entry.get("type", "")).lower())
    except ValueError:
        return None
    pre_number = entry.get("pre-number")
    if pre_number is not None and (not isinstance(pre_number, int) or isinstance(pre_number, bool)):
        return None
    cleanup = entry.get("cleanup")
    userdata = entry.get("userdata") or {}
    used_space = entry.get("used-space")
    return Snapshot(
        id=number,
        type=snapshot_type,
        date=parse_date(str(entry.get("date") or "")),
        user=str(entry.get("user") or ""),
        description=str(entry.get("description") or ""),
        used_space=used_space if isinstance(used_space, int) else None,
        cleanup_algorithm=cleanup if isinstance(cleanup, str) and cleanup else None,
        pre_number=pre_number,
        userdata={str(k): str(v) for k, v in userdata.items()} if isinstance(userdata, dict) else {},
        default=bool(entry.get("default", False)),
        active=bool(entry.get("active", False)),
    )


_HEADERS = ["#", "Type", "Pre #", "Date", "User", "Used Space", "Cleanup", "Description", "Userdata"]


def format_listing(snapshots: Iterable[Snapshot]) -> str:
    """Render snapshots in the backend's column table form.

    Cells are padded for alignment, so leading and trailing whitespace in a
    description does not survive a parse; the backend trims descriptions the
    same way.
    """
    rows: list[Sequence[str]] = []
    for snap in snapshots:
        marker = "*" if snap.default and snap.active else "+" if snap.default else "-" if snap.active else ""
        rows.append(
            [
                f"{snap.id}{marker}",
                snap.type.value,
                str(snap.pre_number) if snap.pre_number is not None else "",
                format_date(snap.date),
                snap.user,
                format_size(snap.used_space) if snap.used_space is not None else "",
                snap.cleanup_algorithm or "",
                snap.description,
                _format_userdata(snap.userdata),
            ]
        )
    widths = [max([len(header), *(len(row[i]) for row in rows)]) for i, header in enumerate(_HEADERS)]
    lines = [
        " | ".join(header.ljust(widths[i]) for i, header in enumerate(_HEADERS)).rstrip(),
        "-+-".join("-" * width for width in widths),
    ]
    lines.extend(" | ".join(cell.ljust(widths[i]) for i, cell in enumerate(row)).rstrip() for row in rows)
    return "\n".join(lines) + "\n"


# Status


def parse_status(raw_text: str) -> dict[str, str]:
    """Parse status output into a field map.

    ``key: value`` lines become normalized keys (``Used Space`` ->
    ``used_space``). Change lines (``c..... /etc/fstab``) are gathered into
    ``changes`` and counted in ``changed_files``.

    Raises:
        ParseError: If no field could be read
    """
    fields: dict[str, str] = {}
    changes: list[str] = []
    for line in raw_text.splitlines():
        stripped = line.strip()
        if not stripped:
            continue
        if _DIFF_RE.match(stripped):
            changes.append(stripped)
            continue
        match = _KEY_VALUE_RE.match(stripped)
        if match:
            key = re.sub(r"[^a-z0-9]+", "_", match.group(1).lower()).strip("_")
            if key:
                fields[key] = match.group(2)
    if changes:
        fields["changes"] = "\n".join(changes)
        fields["changed_files"] = str(len(changes))
    if not fields:
        raise ParseError(excerpt(raw_text), "no status fields")
    return fields
