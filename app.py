#!/usr/bin/env python3

import argparse
import asyncio
import importlib
import importlib.util
import logging
import os
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from audio_files import (
    DEFAULT_IGNORE_GLOBS,
    SUPPORTED_AUDIO_EXTS,
    CancellationToken,
    Hasher,
    LibraryWatcher,
    ProgressCallback,
    enumerate_audio_files,
    read_catalog_text,
    start_library_watcher,
    write_catalog_text,
)
from catalog_csv import PLATFORM_POSIX, PLATFORM_WINDOWS, parse_catalog, serialize_catalog
from file_recognition import FileRecognitionEngine, RecognitionMode
from hash_appender import ContentHashAppender
from quiz_session import AnswerMode, QuizSession
from song_catalog import (
    CatalogError,
    LibraryBusyError,
    SongCatalogEntry,
    filter_songs,
    unique_attribute_values,
)

LOGGER = logging.getLogger(__name__)


def _load_config_module():
    """Load configuration module from several possible locations."""

    module_name = os.environ.get("MUSIC_QUIZ_CONFIG_MODULE")
    search_order = []
    if module_name:
        search_order.append(module_name)
    search_order.extend(["config.config", "config"])

    for name in search_order:
        try:
            return importlib.import_module(name)
        except ModuleNotFoundError:
            continue

    path_candidates = [
        Path(os.environ.get("MUSIC_QUIZ_CONFIG_PATH", "config.py")),
        Path("config/config.py"),
    ]
    for config_path in path_candidates:
        if not config_path.exists():
            continue
        spec = importlib.util.spec_from_file_location("config", config_path)
        if spec and spec.loader:
            module = importlib.util.module_from_spec(spec)
            spec.loader.exec_module(module)  # type: ignore[attr-defined]
            return module

    LOGGER.debug("No config.py found; using environment and defaults (see config.example.py)")
    return None


def take_config(config, name, required=False):
    if config is not None and hasattr(config, name):
        return getattr(config, name)
    if required:
        raise ValueError('Required option is not defined in the config.py file: {}'.format(name))
    return None


def _coerce_bool(value, default):
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    text = str(value).strip().lower()
    if not text:
        return default
    return text not in {'0', 'false', 'no', 'off'}


def _coerce_list(value, default):
    if value is None:
        return list(default)
    if isinstance(value, str):
        return [item.strip() for item in value.split(',') if item.strip()]
    return list(value)


@dataclass
class Settings:
    catalog_path: str
    music_dir: str = ''
    recognition_mode: RecognitionMode = RecognitionMode.HASH_FIRST
    audio_extensions: List[str] = field(default_factory=lambda: list(SUPPORTED_AUDIO_EXTS))
    ignore_globs: List[str] = field(default_factory=lambda: list(DEFAULT_IGNORE_GLOBS))
    platform: str = PLATFORM_WINDOWS if os.name == 'nt' else PLATFORM_POSIX
    enable_watcher: bool = False
    watcher_debounce_seconds: float = 1.0
    log_level: str = 'INFO'


def load_settings(config=None) -> Settings:
    if config is None:
        config = _load_config_module()

    def _value(name):
        env_value = os.environ.get(name)
        if env_value is not None:
            return env_value
        return take_config(config, name)

    catalog_path = _value('CATALOG_PATH')
    if not catalog_path:
        raise ValueError('CATALOG_PATH must be set in config.py or the environment')
    music_dir = _value('MUSIC_DIR') or ''
    return Settings(
        catalog_path=str(Path(catalog_path).expanduser()),
        music_dir=str(Path(music_dir).expanduser().resolve()) if music_dir else '',
        recognition_mode=RecognitionMode(_value('RECOGNITION_MODE') or RecognitionMode.HASH_FIRST.value),
        audio_extensions=_coerce_list(_value('AUDIO_EXTENSIONS'), SUPPORTED_AUDIO_EXTS),
        ignore_globs=_coerce_list(_value('SCAN_IGNORE_GLOBS'), DEFAULT_IGNORE_GLOBS),
        platform=_value('CATALOG_PLATFORM') or (PLATFORM_WINDOWS if os.name == 'nt' else PLATFORM_POSIX),
        enable_watcher=_coerce_bool(_value('ENABLE_LIBRARY_WATCHER'), False),
        watcher_debounce_seconds=float(_value('WATCHER_DEBOUNCE_SECONDS') or 1.0),
        log_level=str(_value('LOG_LEVEL') or 'INFO').upper(),
    )


class MusicLibrary:
    """Owns the loaded catalog and serializes the passes that mutate it."""

    def __init__(self, settings: Settings, hasher: Optional[Hasher] = None) -> None:
        self.settings = settings
        self.entries: List[SongCatalogEntry] = []
        self.last_summary: Dict[str, object] = {}
        self._hasher = hasher
        self._pass_lock = threading.Lock()
        self._watcher: Optional[LibraryWatcher] = None

    def load_catalog(self) -> List[SongCatalogEntry]:
        text = read_catalog_text(self.settings.catalog_path)
        self.entries = parse_catalog(text, self.settings.platform)
        return self.entries

    def discover_audio_files(self) -> List[str]:
        if not self.settings.music_dir:
            return []
        return enumerate_audio_files(
            self.settings.music_dir,
            self.settings.audio_extensions,
            self.settings.ignore_globs,
        )

    def _acquire(self, operation: str) -> None:
        if not self._pass_lock.acquire(blocking=False):
            raise LibraryBusyError(f'Cannot {operation} while another catalog pass is running')

    async def _recognize(self, on_progress, cancel_token) -> Dict[str, object]:
        engine = FileRecognitionEngine(self.settings.music_dir, self.settings.recognition_mode, hasher=self._hasher)
        summary = await engine.recognize(
            self.entries,
            self.discover_audio_files(),
            on_progress=on_progress,
            cancel_token=cancel_token,
        )
        self.last_summary = summary
        return summary

    async def recognize(
        self,
        on_progress: Optional[ProgressCallback] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> Dict[str, object]:
        self._acquire('recognize files')
        try:
            return await self._recognize(on_progress, cancel_token)
        finally:
            self._pass_lock.release()

    async def reload(
        self,
        on_progress: Optional[ProgressCallback] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> Dict[str, object]:
        """Re-read the catalog (discarding current entries) and match it again."""

        self._acquire('reload the catalog')
        try:
            self.load_catalog()
            return await self._recognize(on_progress, cancel_token)
        finally:
            self._pass_lock.release()

    async def write_back_hashes(
        self,
        on_progress: Optional[ProgressCallback] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> Dict[str, int]:
        self._acquire('write back hashes')
        try:
            summary = await ContentHashAppender(self._hasher).append_hashes(
                self.entries,
                on_progress=on_progress,
                cancel_token=cancel_token,
            )
            write_catalog_text(self.settings.catalog_path, serialize_catalog(self.entries))
        finally:
            self._pass_lock.release()
        LOGGER.info('Catalog written to %s', self.settings.catalog_path)
        return summary

    def filter(self, **filters) -> List[SongCatalogEntry]:
        return filter_songs(self.entries, **filters)

    def attribute_values(self, attribute: str) -> List[str]:
        return unique_attribute_values(self.entries, attribute)

    def new_quiz(self, answer_mode: AnswerMode = AnswerMode.EXACT, **filters) -> QuizSession:
        filters['only_with_file'] = True
        pool = filter_songs(self.entries, **filters)
        session = QuizSession(catalog=self.entries, answer_mode=answer_mode)
        session.start(pool)
        return session

    def start_watcher(self) -> Optional[LibraryWatcher]:
        if self._watcher is not None:
            return self._watcher
        if not self.settings.enable_watcher:
            LOGGER.info('Library watcher disabled')
            return None

        def _run_reload():
            try:
                asyncio.run(self.reload())
            except LibraryBusyError:
                LOGGER.info('Skipping live reload; another catalog pass is running')
            except (CatalogError, OSError):
                LOGGER.exception('Live catalog reload failed')

        directories = [self.settings.music_dir, str(Path(self.settings.catalog_path).parent)]
        self._watcher = start_library_watcher(
            directories,
            _run_reload,
            extensions=self.settings.audio_extensions,
            debounce_seconds=self.settings.watcher_debounce_seconds,
        )
        return self._watcher

    def stop_watcher(self) -> None:
        if self._watcher is not None:
            self._watcher.stop()
            self._watcher = None


def _log_progress(processed: int, total: int) -> None:
    if processed == total or processed % 50 == 0:
        LOGGER.info('Hashing %d/%d', processed, total)


async def _run(args: argparse.Namespace, settings: Settings) -> Dict[str, object]:
    library = MusicLibrary(settings)
    library.load_catalog()
    summary = await library.recognize(on_progress=_log_progress)
    if args.write_hashes:
        summary['hash_write_back'] = await library.write_back_hashes(on_progress=_log_progress)
    return summary


if __name__ == '__main__':
    parser = argparse.ArgumentParser(description='Load the song catalog and match it against the music directory.')
    parser.add_argument('--mode', choices=[mode.value for mode in RecognitionMode], help='Recognition mode override.')
    parser.add_argument('--write-hashes', action='store_true', help='Append current file hashes to the catalog.')
    args = parser.parse_args()

    settings = load_settings()
    if args.mode:
        settings.recognition_mode = RecognitionMode(args.mode)
    logging.basicConfig(level=settings.log_level, format='%(asctime)s %(levelname)s %(name)s %(message)s')
    try:
        result = asyncio.run(_run(args, settings))
    except CatalogError as exc:
        LOGGER.error('%s', exc)
        raise SystemExit(1)
    LOGGER.info('Done: %s', result)
