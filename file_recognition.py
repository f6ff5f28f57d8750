"""Match catalog entries to audio files on disk.

Two lookups are available: the *path* lookup keys every discovered file by its
path relative to the music directory (extension stripped, lowercased), and the
*hash* lookup keys files by content hash. The recognition mode only decides
which lookup runs first; entries the first lookup misses fall through to the
second, which never sees files the first one already assigned.
"""
from __future__ import annotations

import logging
import time
import unicodedata
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Sequence, Set

from audio_files import CancellationToken, Hasher, ProgressCallback, hash_files
from song_catalog import NoMatchesFoundError, SongCatalogEntry

LOGGER = logging.getLogger(__name__)


class RecognitionMode(str, Enum):
    HASH_FIRST = "hash-first"
    PATH_FIRST = "path-first"


def strip_extension(path: str) -> str:
    dot = path.rfind(".")
    separator = max(path.rfind("/"), path.rfind("\\"))
    if dot > separator + 1:
        return path[:dot]
    return path


def match_key(path: str) -> str:
    """Separator-, case- and Unicode-form-insensitive key for a relative path."""

    text = unicodedata.normalize("NFC", path).replace("\\", "/")
    return text.strip("/").lower()


def relative_to_music_dir(path: str, music_dir: str) -> str:
    root = music_dir.rstrip("/\\")
    if root and path.lower().startswith(root.lower()):
        remainder = path[len(root):]
        if not remainder or remainder[0] in "/\\":
            return remainder.lstrip("/\\")
    return path


def file_key(path: str, music_dir: str) -> str:
    return match_key(strip_extension(relative_to_music_dir(path, music_dir)))


def catalog_key(filename: str) -> str:
    return match_key(strip_extension(filename))


def build_path_index(audio_files: Iterable[str], music_dir: str) -> Dict[str, str]:
    index: Dict[str, str] = {}
    for path in audio_files:
        index.setdefault(file_key(path, music_dir), path)
    return index


def build_hash_index(file_hashes: Dict[str, str]) -> Dict[str, str]:
    index: Dict[str, str] = {}
    for path, digest in file_hashes.items():
        index.setdefault(digest, path)
    return index


@dataclass
class _MatchPhase:
    name: str
    keys: Callable[[SongCatalogEntry], List[str]]
    build_index: Callable[[List[str]], Awaitable[Dict[str, str]]]


class FileRecognitionEngine:
    """Assign ``file_path``/``file_exists`` on catalog entries for one run."""

    def __init__(
        self,
        music_dir: str,
        mode: RecognitionMode = RecognitionMode.HASH_FIRST,
        hasher: Optional[Hasher] = None,
    ) -> None:
        self.music_dir = music_dir
        self.mode = RecognitionMode(mode)
        self._hasher = hasher

    async def recognize(
        self,
        entries: Sequence[SongCatalogEntry],
        audio_files: Sequence[str],
        on_progress: Optional[ProgressCallback] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> Dict[str, object]:
        """Resolve every entry against ``audio_files``.

        Raises ``NoMatchesFoundError`` when a non-empty catalog ends up with no
        resolved entry at all. Unmatched entries are otherwise normal.
        """

        start_time = time.perf_counter()
        summary: Dict[str, object] = {
            "mode": self.mode.value,
            "entries": len(entries),
            "files": len(audio_files),
            "matched_hash": 0,
            "matched_path": 0,
            "unmatched": 0,
            "hashed_files": 0,
            "hash_errors": 0,
        }

        async def _hash_index(available: List[str]) -> Dict[str, str]:
            file_hashes, errors = await hash_files(
                available,
                on_progress=on_progress,
                cancel_token=cancel_token,
                hasher=self._hasher,
            )
            summary["hashed_files"] = int(summary["hashed_files"]) + len(file_hashes)
            summary["hash_errors"] = int(summary["hash_errors"]) + errors
            return build_hash_index(file_hashes)

        async def _path_index(available: List[str]) -> Dict[str, str]:
            return build_path_index(available, self.music_dir)

        hash_phase = _MatchPhase("hash", lambda entry: entry.valid_hashes(), _hash_index)
        path_phase = _MatchPhase("path", lambda entry: [catalog_key(entry.filename)], _path_index)
        if self.mode is RecognitionMode.HASH_FIRST:
            phases = [hash_phase, path_phase]
        else:
            phases = [path_phase, hash_phase]

        for entry in entries:
            entry.clear_resolution()

        consumed: Set[str] = set()
        pending: List[SongCatalogEntry] = list(entries)
        for phase in phases:
            if not any(phase.keys(entry) for entry in pending):
                continue
            available = [path for path in audio_files if path not in consumed]
            index = await phase.build_index(available)
            unmatched: List[SongCatalogEntry] = []
            for entry in pending:
                resolved = next((index[key] for key in phase.keys(entry) if key in index), None)
                if resolved is None:
                    unmatched.append(entry)
                    continue
                entry.resolve(resolved)
                consumed.add(resolved)
                summary[f"matched_{phase.name}"] = int(summary[f"matched_{phase.name}"]) + 1
                LOGGER.debug("Matched %s by %s -> %s", entry.filename, phase.name, resolved)
            pending = unmatched

        summary["unmatched"] = len(pending)
        summary["duration_seconds"] = round(time.perf_counter() - start_time, 3)
        matched = len(entries) - len(pending)
        LOGGER.info(
            "Recognition (%s) matched %d/%d entries (hash: %s, path: %s)",
            self.mode.value,
            matched,
            len(entries),
            summary["matched_hash"],
            summary["matched_path"],
        )
        if entries and not matched:
            raise NoMatchesFoundError(
                "No catalog entry matched any audio file; check the music directory and the filename convention"
            )
        return summary
