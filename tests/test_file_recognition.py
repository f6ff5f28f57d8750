from pathlib import Path
import sys
import unittest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from audio_files import CancellationToken
from file_recognition import (
    FileRecognitionEngine,
    RecognitionMode,
    catalog_key,
    file_key,
    relative_to_music_dir,
    strip_extension,
)
from song_catalog import NoMatchesFoundError, RecognitionCancelled, SongCatalogEntry

MUSIC_DIR = "/music"


class FakeHasher:
    """Async hasher backed by a dict; unknown paths fail like unreadable files."""

    def __init__(self, hashes):
        self.hashes = dict(hashes)
        self.calls = []

    async def __call__(self, path):
        self.calls.append(path)
        if path not in self.hashes:
            raise OSError(f"cannot read {path}")
        return self.hashes[path]


def _entry(filename, *hashes, title=None):
    return SongCatalogEntry(filename=filename, title=[title or filename], file_hash=list(hashes))


class TestPathKeys(unittest.TestCase):
    def test_strip_extension_only_touches_last_component(self):
        self.assertEqual(strip_extension("a.b/song.mp3"), "a.b/song")
        self.assertEqual(strip_extension("a.b/song"), "a.b/song")
        self.assertEqual(strip_extension("dir/.hidden"), "dir/.hidden")

    def test_relative_to_music_dir_requires_separator_boundary(self):
        self.assertEqual(relative_to_music_dir("/music/a/b.mp3", "/music"), "a/b.mp3")
        self.assertEqual(relative_to_music_dir("/music2/b.mp3", "/music"), "/music2/b.mp3")
        self.assertEqual(relative_to_music_dir("C:\\Music\\b.mp3", "c:\\music\\"), "b.mp3")

    def test_keys_ignore_extension_case_and_separator(self):
        self.assertEqual(file_key("/music/TH06/01.OGG", MUSIC_DIR), catalog_key("th06\\01.mp3"))


class TestFileRecognitionEngine(unittest.IsolatedAsyncioTestCase):
    async def test_hash_first_matches_by_hash_then_path(self):
        files = ["/music/renamed.mp3", "/music/b.mp3"]
        hasher = FakeHasher({"/music/renamed.mp3": "h1", "/music/b.mp3": "h2"})
        by_hash = _entry("a.mp3", "h1")
        by_path = _entry("b.mp3")
        engine = FileRecognitionEngine(MUSIC_DIR, RecognitionMode.HASH_FIRST, hasher=hasher)

        summary = await engine.recognize([by_hash, by_path], files)

        self.assertEqual(by_hash.file_path, "/music/renamed.mp3")
        self.assertTrue(by_hash.file_exists)
        self.assertEqual(by_path.file_path, "/music/b.mp3")
        self.assertEqual(summary["matched_hash"], 1)
        self.assertEqual(summary["matched_path"], 1)
        self.assertEqual(summary["unmatched"], 0)

    async def test_path_first_prefers_path_over_stale_hash(self):
        files = ["/music/a.mp3", "/music/other.mp3"]
        hasher = FakeHasher({"/music/a.mp3": "new", "/music/other.mp3": "old"})
        entry = _entry("a.mp3", "old")
        engine = FileRecognitionEngine(MUSIC_DIR, RecognitionMode.PATH_FIRST, hasher=hasher)

        summary = await engine.recognize([entry], files)

        self.assertEqual(entry.file_path, "/music/a.mp3")
        self.assertEqual(summary["matched_path"], 1)
        self.assertEqual(summary["matched_hash"], 0)
        self.assertEqual(hasher.calls, [])

    async def test_hash_first_prefers_hash_over_path(self):
        files = ["/music/a.mp3", "/music/other.mp3"]
        hasher = FakeHasher({"/music/a.mp3": "new", "/music/other.mp3": "old"})
        entry = _entry("a.mp3", "old")
        engine = FileRecognitionEngine(MUSIC_DIR, RecognitionMode.HASH_FIRST, hasher=hasher)

        await engine.recognize([entry], files)

        self.assertEqual(entry.file_path, "/music/other.mp3")

    async def test_both_modes_agree_when_path_and_hash_point_to_same_file(self):
        files = ["/music/th06/01.mp3", "/music/th06/02.mp3"]
        hasher = FakeHasher({"/music/th06/01.mp3": "h1", "/music/th06/02.mp3": "h2"})
        resolved = {}

        for mode in RecognitionMode:
            entry = _entry("th06/01.mp3", "h1")
            engine = FileRecognitionEngine(MUSIC_DIR, mode, hasher=hasher)
            await engine.recognize([entry], files)
            resolved[mode] = entry.file_path

        self.assertEqual(resolved[RecognitionMode.HASH_FIRST], "/music/th06/01.mp3")
        self.assertEqual(resolved[RecognitionMode.PATH_FIRST], "/music/th06/01.mp3")

    async def test_fallback_never_reuses_consumed_file(self):
        files = ["/music/a.mp3"]
        hasher = FakeHasher({"/music/a.mp3": "h1"})
        claimed = _entry("x.mp3", "h1")
        same_path = _entry("a.mp3")
        engine = FileRecognitionEngine(MUSIC_DIR, RecognitionMode.HASH_FIRST, hasher=hasher)

        summary = await engine.recognize([claimed, same_path], files)

        self.assertEqual(claimed.file_path, "/music/a.mp3")
        self.assertFalse(same_path.file_exists)
        self.assertEqual(same_path.file_path, "")
        self.assertEqual(summary["unmatched"], 1)

    async def test_path_first_hashes_only_unconsumed_files(self):
        files = ["/music/a.mp3", "/music/moved.mp3"]
        hasher = FakeHasher({"/music/a.mp3": "h1", "/music/moved.mp3": "h2"})
        by_path = _entry("a.mp3")
        by_hash = _entry("gone.mp3", "h2")
        engine = FileRecognitionEngine(MUSIC_DIR, RecognitionMode.PATH_FIRST, hasher=hasher)

        summary = await engine.recognize([by_path, by_hash], files)

        self.assertEqual(hasher.calls, ["/music/moved.mp3"])
        self.assertEqual(by_hash.file_path, "/music/moved.mp3")
        self.assertEqual(summary["hashed_files"], 1)

    async def test_hash_phase_skipped_when_no_entry_has_hashes(self):
        hasher = FakeHasher({"/music/a.mp3": "h1"})
        entry = _entry("a.mp3", "", "  ")
        engine = FileRecognitionEngine(MUSIC_DIR, RecognitionMode.HASH_FIRST, hasher=hasher)

        await engine.recognize([entry], ["/music/a.mp3"])

        self.assertEqual(hasher.calls, [])
        self.assertTrue(entry.file_exists)

    async def test_path_match_ignores_extension(self):
        entry = _entry("th06/01.wav")
        engine = FileRecognitionEngine(MUSIC_DIR, RecognitionMode.PATH_FIRST, hasher=FakeHasher({}))

        await engine.recognize([entry], ["/music/TH06/01.ogg"])

        self.assertEqual(entry.file_path, "/music/TH06/01.ogg")

    async def test_unreadable_files_are_counted_and_skipped(self):
        files = ["/music/broken.mp3", "/music/ok.mp3"]
        hasher = FakeHasher({"/music/ok.mp3": "h1"})
        entry = _entry("renamed.mp3", "h1")
        engine = FileRecognitionEngine(MUSIC_DIR, RecognitionMode.HASH_FIRST, hasher=hasher)

        with self.assertLogs("audio_files", level="WARNING"):
            summary = await engine.recognize([entry], files)

        self.assertEqual(entry.file_path, "/music/ok.mp3")
        self.assertEqual(summary["hash_errors"], 1)
        self.assertEqual(summary["hashed_files"], 1)

    async def test_no_match_at_all_raises(self):
        engine = FileRecognitionEngine(MUSIC_DIR, RecognitionMode.PATH_FIRST, hasher=FakeHasher({}))

        with self.assertRaises(NoMatchesFoundError):
            await engine.recognize([_entry("a.mp3")], ["/music/b.mp3"])

    async def test_empty_catalog_does_not_raise(self):
        engine = FileRecognitionEngine(MUSIC_DIR, hasher=FakeHasher({}))

        summary = await engine.recognize([], ["/music/b.mp3"])

        self.assertEqual(summary["entries"], 0)

    async def test_rerun_is_idempotent_and_clears_stale_resolution(self):
        files = ["/music/a.mp3", "/music/b.mp3"]
        hasher = FakeHasher({"/music/a.mp3": "h1", "/music/b.mp3": "h2"})
        entries = [_entry("a.mp3", "h1"), _entry("b.mp3"), _entry("c.mp3")]
        entries[2].resolve("/music/stale.mp3")
        engine = FileRecognitionEngine(MUSIC_DIR, RecognitionMode.HASH_FIRST, hasher=hasher)

        await engine.recognize(entries, files)
        first = [(entry.file_path, entry.file_exists) for entry in entries]
        await engine.recognize(entries, files)
        second = [(entry.file_path, entry.file_exists) for entry in entries]

        self.assertEqual(first, second)
        self.assertEqual(first[2], ("", False))

    async def test_progress_is_monotonic_and_complete(self):
        files = [f"/music/{index}.mp3" for index in range(5)]
        hasher = FakeHasher({path: path for path in files})
        progress = []
        engine = FileRecognitionEngine(MUSIC_DIR, RecognitionMode.HASH_FIRST, hasher=hasher)

        await engine.recognize(
            [_entry("x.mp3", "/music/3.mp3")],
            files,
            on_progress=lambda done, total: progress.append((done, total)),
        )

        self.assertEqual(progress, [(index, 5) for index in range(1, 6)])

    async def test_cancelled_pass_raises(self):
        token = CancellationToken()
        token.cancel()
        engine = FileRecognitionEngine(MUSIC_DIR, hasher=FakeHasher({"/music/a.mp3": "h1"}))

        with self.assertRaises(RecognitionCancelled):
            await engine.recognize([_entry("a.mp3", "h1")], ["/music/a.mp3"], cancel_token=token)

    async def test_first_file_wins_on_duplicate_keys(self):
        files = ["/music/a.mp3", "/music/a.ogg"]
        entry = _entry("a.flac")
        engine = FileRecognitionEngine(MUSIC_DIR, RecognitionMode.PATH_FIRST, hasher=FakeHasher({}))

        await engine.recognize([entry], files)

        self.assertEqual(entry.file_path, "/music/a.mp3")


if __name__ == "__main__":
    unittest.main()
