"""Reading and writing the song catalog CSV format.

Cells other than ``filename`` hold either a bare value or a JSON array literal
such as ``["道中","1面"]``. Commas inside ``[...]`` or inside a spreadsheet-quoted
cell (``"Hello, World"``) are not field separators.
"""
from __future__ import annotations

import json
import logging
from typing import Iterable, List, Optional

from song_catalog import METADATA_FIELDS, EmptyCatalogError, FormatError, SongCatalogEntry

LOGGER = logging.getLogger(__name__)


CATALOG_COLUMNS = ["filename"] + METADATA_FIELDS + ["fileHash"]
CATALOG_HEADER = ",".join(CATALOG_COLUMNS)

PLATFORM_WINDOWS = "windows"
PLATFORM_POSIX = "posix"
PLATFORMS = (PLATFORM_WINDOWS, PLATFORM_POSIX)


def split_catalog_line(line: str) -> List[str]:
    """Split one catalog line on commas outside quoted cells and ``[...]`` spans.

    A cell that starts with ``"`` runs to the matching closing quote, with
    ``""`` standing for a literal quote. Inside a bracket span, JSON strings are
    skipped over so that ``]`` or ``,`` within them does not end the span. An
    unclosed ``[`` or ``"`` keeps the rest of the line in one cell.
    """

    cells: List[str] = []
    current: List[str] = []
    depth = 0
    quoted = False
    in_string = False
    escaped = False
    index = 0
    length = len(line)
    while index < length:
        char = line[index]
        index += 1
        if quoted:
            current.append(char)
            if char == '"':
                if index < length and line[index] == '"':
                    current.append('"')
                    index += 1
                else:
                    quoted = False
            continue
        if in_string:
            current.append(char)
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"' and not depth and not "".join(current).strip():
            quoted = True
        elif char == "[":
            depth += 1
        elif char == "]" and depth:
            depth -= 1
        elif char == '"' and depth:
            in_string = True
        elif char == "," and not depth:
            cells.append("".join(current))
            current = []
            continue
        current.append(char)
    cells.append("".join(current))
    return cells


def _unquote(cell: str) -> str:
    """Undo spreadsheet-style quoting: surrounding quotes go, doubled quotes become one."""

    text = cell.strip()
    if len(text) >= 2 and text.startswith('"') and text.endswith('"'):
        text = text[1:-1].replace('""', '"').strip()
    return text


def _quote(cell: str) -> str:
    if ',' in cell or '"' in cell or cell.startswith("["):
        return '"' + cell.replace('"', '""') + '"'
    return cell


def decode_list_cell(cell: Optional[str], *, line_number: Optional[int] = None) -> List[str]:
    text = _unquote(cell or "")
    if not text:
        return []
    if text.startswith("[") and text.endswith("]"):
        try:
            decoded = json.loads(text)
        except ValueError:
            LOGGER.warning("Line %s: could not decode JSON array cell %r; using it as a single value", line_number, text)
            return [text]
        if isinstance(decoded, list):
            return [item if isinstance(item, str) else json.dumps(item, ensure_ascii=False) for item in decoded]
        return [text]
    return [text]


def encode_list_cell(values: Iterable[str]) -> str:
    return json.dumps(list(values), ensure_ascii=False, separators=(",", ":"))


def normalise_catalog_filename(filename: str, platform: str) -> str:
    if platform == PLATFORM_WINDOWS:
        return filename.replace("/", "\\")
    return filename


def _cell(cells: List[str], index: int) -> str:
    return cells[index] if index < len(cells) else ""


def parse_catalog(text: str, platform: str = PLATFORM_POSIX) -> List[SongCatalogEntry]:
    """Parse catalog CSV text into entries.

    Rows without a filename or a title are skipped. Raises ``FormatError`` for a
    header with fewer than two columns and ``EmptyCatalogError`` when nothing
    usable remains.
    """

    if platform not in PLATFORMS:
        raise ValueError(f"Unsupported catalog platform: {platform}")
    if not text or not text.strip():
        raise EmptyCatalogError("Catalog is empty")

    lines = [line.rstrip("\r") for line in text.split("\n")]
    header = split_catalog_line(lines[0])
    if len(header) < 2:
        raise FormatError(f"Catalog header must have at least 2 columns, got {len(header)}")

    entries: List[SongCatalogEntry] = []
    skipped = 0
    for line_number, line in enumerate(lines[1:], start=2):
        if not line.strip():
            continue
        cells = split_catalog_line(line)
        filename = _unquote(_cell(cells, 0))
        decoded = {
            name: decode_list_cell(_cell(cells, index), line_number=line_number)
            for index, name in enumerate(METADATA_FIELDS, start=1)
        }
        title = decoded["title"]
        if not filename:
            LOGGER.debug("Line %d: skipping row without filename", line_number)
            skipped += 1
            continue
        if not title or not title[0].strip():
            LOGGER.debug("Line %d: skipping row without title (%s)", line_number, filename)
            skipped += 1
            continue
        entries.append(
            SongCatalogEntry(
                filename=normalise_catalog_filename(filename, platform),
                file_hash=decode_list_cell(_cell(cells, len(METADATA_FIELDS) + 1), line_number=line_number),
                **decoded,
            )
        )

    LOGGER.info("Parsed %d catalog entries (%d rows skipped)", len(entries), skipped)
    if not entries:
        raise EmptyCatalogError("Catalog contains no valid rows")
    return entries


def serialize_catalog(entries: Iterable[SongCatalogEntry], header: str = CATALOG_HEADER) -> str:
    lines = [header]
    for entry in entries:
        hashes = entry.valid_hashes()
        cells = [_quote(entry.filename)]
        cells.extend(encode_list_cell(getattr(entry, name)) for name in METADATA_FIELDS)
        cells.append(encode_list_cell(hashes) if hashes else "")
        lines.append(",".join(cells))
    return "\n".join(lines)
