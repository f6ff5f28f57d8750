"""File system helpers: audio discovery, catalog I/O, content hashing and watching."""
from __future__ import annotations

import asyncio
import contextlib
import fnmatch
import hashlib
import logging
import os
import tempfile
import threading
import unicodedata
from pathlib import Path
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

import aiofiles
from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from song_catalog import RecognitionCancelled

LOGGER = logging.getLogger(__name__)


SUPPORTED_AUDIO_EXTS = [
    ".ogg",
    ".mp3",
    ".wav",
    ".m4a",
    ".aac",
    ".flac",
    ".opus",
]

DEFAULT_IGNORE_GLOBS = ["._*", "**/._*"]

ENCODINGS = ["utf-8-sig", "utf-8", "cp932", "shift_jis", "utf-16", "latin-1"]

HASH_CHUNK_SIZE = 1024 * 1024

ProgressCallback = Callable[[int, int], None]
Hasher = Callable[[str], Awaitable[str]]


class CancellationToken:
    """Cooperative cancellation flag checked between files of a hashing pass."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise RecognitionCancelled("Hashing pass cancelled")


def _match_any(path: str, patterns: Iterable[str]) -> bool:
    if not patterns:
        return False
    return any(fnmatch.fnmatch(path, pattern) for pattern in patterns)


def _normalise_extensions(extensions: Optional[Sequence[str]]) -> List[str]:
    result = []
    for ext in extensions or []:
        ext = ext.strip().lower()
        if not ext:
            continue
        result.append(ext if ext.startswith(".") else "." + ext)
    return result


def enumerate_audio_files(
    directory: str,
    extensions: Optional[Sequence[str]] = None,
    ignore_globs: Optional[Iterable[str]] = None,
) -> List[str]:
    """Recursively list audio files under ``directory``.

    Extensions compare case-insensitively. Unreadable subdirectories are logged
    and skipped. The result is sorted per directory so repeated runs see the
    same order.
    """

    exts = _normalise_extensions(extensions if extensions is not None else SUPPORTED_AUDIO_EXTS)
    patterns = list(ignore_globs or [])
    root = os.path.abspath(directory)
    if not os.path.isdir(root):
        LOGGER.warning("Music directory %s does not exist", root)
        return []

    def _on_error(error: OSError) -> None:
        LOGGER.warning("Skipping unreadable directory %s: %s", getattr(error, "filename", "?"), error)

    found: List[str] = []
    for current, dirnames, filenames in os.walk(root, onerror=_on_error):
        dirnames.sort()
        for name in sorted(filenames):
            if exts and os.path.splitext(name)[1].lower() not in exts:
                continue
            path = os.path.join(current, name)
            relative = Path(os.path.relpath(path, root)).as_posix()
            if _match_any(relative, patterns):
                continue
            found.append(path)
    LOGGER.info("Found %d audio files under %s", len(found), root)
    return found


def read_catalog_text(path: str) -> str:
    raw_bytes = Path(path).read_bytes()
    encoding_used: Optional[str] = None
    for encoding in ENCODINGS:
        try:
            text = raw_bytes.decode(encoding)
            encoding_used = encoding
            break
        except UnicodeDecodeError:
            continue
    else:
        text = raw_bytes.decode("utf-8", errors="replace")
        encoding_used = "utf-8"
    if encoding_used and not encoding_used.lower().startswith("utf"):
        LOGGER.warning("Decoded %s using non-UTF encoding %s", path, encoding_used)
    return unicodedata.normalize("NFC", text.lstrip("\ufeff"))


def write_catalog_text(path: str, content: str) -> None:
    """Replace ``path`` with ``content`` (UTF-8) without leaving a partial file."""

    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=str(target.parent), prefix=f".{target.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as handle:
            handle.write(content)
        os.replace(tmp_path, str(target))
    except BaseException:
        with contextlib.suppress(OSError):
            os.unlink(tmp_path)
        raise


def compute_content_hash(path: str) -> str:
    digest = hashlib.md5()
    with open(path, "rb") as handle:
        for chunk in iter(lambda: handle.read(HASH_CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


async def compute_content_hash_async(path: str) -> str:
    digest = hashlib.md5()
    async with aiofiles.open(path, "rb") as handle:
        while True:
            chunk = await handle.read(HASH_CHUNK_SIZE)
            if not chunk:
                break
            digest.update(chunk)
    return digest.hexdigest()


async def hash_files(
    paths: Sequence[str],
    on_progress: Optional[ProgressCallback] = None,
    cancel_token: Optional[CancellationToken] = None,
    hasher: Optional[Hasher] = None,
) -> Tuple[Dict[str, str], int]:
    """Hash ``paths`` in order, one file at a time.

    Returns the ``path -> hash`` mapping (insertion order follows ``paths``) and
    the number of files that could not be read. ``on_progress`` is called after
    every file, failed ones included.
    """

    hasher = hasher or compute_content_hash_async
    hashes: Dict[str, str] = {}
    errors = 0
    total = len(paths)
    for index, path in enumerate(paths, start=1):
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()
        try:
            hashes[path] = await hasher(path)
            LOGGER.debug("Hashed %s -> %s", path, hashes[path])
        except OSError as exc:
            errors += 1
            LOGGER.warning("Failed to hash %s: %s", path, exc)
        if on_progress is not None:
            on_progress(index, total)
        await asyncio.sleep(0)
    return hashes, errors


class _DebouncedHandler(FileSystemEventHandler):
    def __init__(self, trigger: Callable[[], None], debounce: float, suffixes: Sequence[str]) -> None:
        super().__init__()
        self._trigger = trigger
        self._debounce = debounce
        self._suffixes = set(suffixes)
        self._timer: Optional[threading.Timer] = None
        self._lock = threading.Lock()

    def _schedule(self) -> None:
        with self._lock:
            if self._timer:
                self._timer.cancel()
            self._timer = threading.Timer(self._debounce, self._trigger)
            self._timer.daemon = True
            self._timer.start()

    def cancel(self) -> None:
        with self._lock:
            if self._timer:
                self._timer.cancel()
                self._timer = None

    def on_any_event(self, event):  # type: ignore[override]
        if getattr(event, "is_directory", False):
            return
        path = getattr(event, "dest_path", "") or getattr(event, "src_path", "")
        if Path(str(path)).suffix.lower() not in self._suffixes:
            return
        self._schedule()


class LibraryWatcher:
    """Handle for a running directory observer."""

    def __init__(self, observer: Observer, handler: _DebouncedHandler) -> None:
        self._observer = observer
        self._handler = handler

    def stop(self) -> None:
        self._handler.cancel()
        try:
            self._observer.stop()
            self._observer.join(timeout=5)
        except RuntimeError:
            LOGGER.debug("Failed to stop library watcher cleanly")
        LOGGER.info("Library watcher stopped")


def start_library_watcher(
    directories: Sequence[str],
    callback: Callable[[], None],
    *,
    extensions: Optional[Sequence[str]] = None,
    debounce_seconds: float = 1.0,
) -> Optional[LibraryWatcher]:
    """Call ``callback`` once changes to audio or catalog files settle down."""

    watched = [directory for directory in dict.fromkeys(directories) if directory and os.path.isdir(directory)]
    if not watched:
        LOGGER.warning("No existing directory to watch; live library updates disabled")
        return None
    suffixes = _normalise_extensions(extensions if extensions is not None else SUPPORTED_AUDIO_EXTS) + [".csv"]
    handler = _DebouncedHandler(callback, debounce_seconds, suffixes)
    observer = Observer()
    observer.daemon = True
    for directory in watched:
        observer.schedule(handler, directory, recursive=True)
    observer.start()
    LOGGER.info("Library watcher started for %s", ", ".join(watched))
    return LibraryWatcher(observer, handler)
