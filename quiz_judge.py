"""Answer judging for the quiz."""
from __future__ import annotations

import re
import unicodedata
from typing import Dict, Iterable, List, NamedTuple

from song_catalog import SongCatalogEntry

ZERO_WIDTH_CHARACTERS = {
    "\u200b",  # zero width space
    "\u200c",  # zero width non-joiner
    "\u200d",  # zero width joiner
    "\ufeff",  # zero width no-break space / BOM
    "\u2060",  # word joiner
}

_WHITESPACE_RE = re.compile(r"\s+")


class TitleGroups(NamedTuple):
    titles: List[str]
    representatives: Dict[str, SongCatalogEntry]


def normalise_answer(value: str) -> str:
    """Trim, fold every whitespace run (full-width included) to one space, lowercase."""

    text = "".join(char for char in (value or "") if char not in ZERO_WIDTH_CHARACTERS)
    text = unicodedata.normalize("NFC", text)
    return _WHITESPACE_RE.sub(" ", text).strip().lower()


def exact_match(answer: str, entry: SongCatalogEntry) -> bool:
    expected = normalise_answer(entry.primary_title)
    given = normalise_answer(answer)
    return bool(given) and given == expected


def fuzzy_match(answer: str, entry: SongCatalogEntry) -> bool:
    # Either-direction containment: a very short title matches most long answers.
    given = normalise_answer(answer)
    if not given:
        return False
    for title in entry.title:
        expected = normalise_answer(title)
        if expected and (given in expected or expected in given):
            return True
    return False


def find_fuzzy_candidates(answer: str, entries: Iterable[SongCatalogEntry]) -> List[SongCatalogEntry]:
    return [entry for entry in entries if fuzzy_match(answer, entry)]


def group_by_title(candidates: Iterable[SongCatalogEntry]) -> TitleGroups:
    titles: List[str] = []
    representatives: Dict[str, SongCatalogEntry] = {}
    for entry in candidates:
        key = entry.primary_title.lower()
        if key not in representatives:
            representatives[key] = entry
            titles.append(key)
    return TitleGroups(titles, representatives)
