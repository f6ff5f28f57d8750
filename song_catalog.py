"""Song catalog data model and browsing helpers."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence

LOGGER = logging.getLogger(__name__)


METADATA_FIELDS = ["title", "generation", "type", "game", "character", "stage"]

KEYWORD_SEARCH_FIELDS = ["title", "game", "character", "stage", "type", "generation"]

DESCRIPTION_SEPARATOR = ", "


class CatalogError(Exception):
    """Base class for fatal catalog and recognition failures."""


class FormatError(CatalogError):
    """The catalog header is malformed."""


class EmptyCatalogError(CatalogError):
    """The catalog contains no usable rows."""


class NoMatchesFoundError(CatalogError):
    """Recognition matched no catalog entry to any audio file."""


class RecognitionCancelled(CatalogError):
    """A hashing pass was interrupted through its cancellation token."""


class LibraryBusyError(CatalogError):
    """Another pass is already mutating the catalog."""


@dataclass(eq=False)
class SongCatalogEntry:
    """One catalog row plus the file resolved for it in the current run.

    Entries compare by identity: two rows with the same title are still two
    distinct songs.
    """

    filename: str
    title: List[str] = field(default_factory=list)
    generation: List[str] = field(default_factory=list)
    type: List[str] = field(default_factory=list)
    game: List[str] = field(default_factory=list)
    character: List[str] = field(default_factory=list)
    stage: List[str] = field(default_factory=list)
    file_hash: List[str] = field(default_factory=list)
    file_path: str = ""
    file_exists: bool = False

    @property
    def primary_title(self) -> str:
        return self.title[0] if self.title else ""

    def valid_hashes(self) -> List[str]:
        return [value.strip() for value in self.file_hash if value and value.strip()]

    def resolve(self, path: str) -> None:
        self.file_path = path
        self.file_exists = bool(path)

    def clear_resolution(self) -> None:
        self.file_path = ""
        self.file_exists = False

    def display_value(self, attribute: str) -> str:
        values = getattr(self, attribute)
        return DESCRIPTION_SEPARATOR.join(value for value in values if value)

    def full_description(self) -> str:
        description = self.display_value("title")
        game = self.display_value("game")
        if game:
            description += f" ({game})"
        song_type = self.display_value("type")
        if song_type:
            description += f" - {song_type}"
        character = self.display_value("character")
        if character:
            description += f" / {character}"
        stage = self.display_value("stage")
        if stage:
            description += f" [{stage}]"
        return description


def _field_values(entry: SongCatalogEntry, attribute: str) -> List[str]:
    if attribute not in METADATA_FIELDS:
        raise ValueError(f"Unknown catalog attribute: {attribute}")
    return getattr(entry, attribute)


def _matches_selection(values: Sequence[str], selected: Sequence[str]) -> bool:
    if not selected:
        return True
    wanted = set(selected)
    return any(value in wanted for value in values)


def _matches_keyword(entry: SongCatalogEntry, keyword: str) -> bool:
    needle = keyword.strip().casefold()
    if not needle:
        return True
    for attribute in KEYWORD_SEARCH_FIELDS:
        for value in getattr(entry, attribute):
            if needle in value.casefold():
                return True
    return False


def filter_songs(
    entries: Iterable[SongCatalogEntry],
    *,
    keywords: Optional[Sequence[str]] = None,
    types: Optional[Sequence[str]] = None,
    generations: Optional[Sequence[str]] = None,
    games: Optional[Sequence[str]] = None,
    stages: Optional[Sequence[str]] = None,
    characters: Optional[Sequence[str]] = None,
    only_with_file: bool = False,
) -> List[SongCatalogEntry]:
    """Return the entries satisfying every given filter.

    Selection filters are OR within a group and AND across groups; an empty
    group does not filter. Every keyword must occur in some searchable field.
    """

    keywords = [keyword for keyword in (keywords or []) if keyword and keyword.strip()]
    result: List[SongCatalogEntry] = []
    for entry in entries:
        if only_with_file and not entry.file_exists:
            continue
        if not _matches_selection(entry.type, types or []):
            continue
        if not _matches_selection(entry.generation, generations or []):
            continue
        if not _matches_selection(entry.game, games or []):
            continue
        if not _matches_selection(entry.stage, stages or []):
            continue
        if not _matches_selection(entry.character, characters or []):
            continue
        if not all(_matches_keyword(entry, keyword) for keyword in keywords):
            continue
        result.append(entry)
    return result


def unique_attribute_values(entries: Iterable[SongCatalogEntry], attribute: str) -> List[str]:
    values = set()
    for entry in entries:
        for value in _field_values(entry, attribute):
            if value and value.strip():
                values.add(value)
    return sorted(values)


def sort_songs(
    entries: Iterable[SongCatalogEntry],
    sort_by: str = "title",
    ascending: bool = True,
) -> List[SongCatalogEntry]:
    def _key(entry: SongCatalogEntry) -> str:
        values = _field_values(entry, sort_by)
        return values[0].casefold() if values else ""

    return sorted(entries, key=_key, reverse=not ascending)


def playable_songs(entries: Iterable[SongCatalogEntry]) -> List[SongCatalogEntry]:
    return [entry for entry in entries if entry.file_exists and entry.file_path]
