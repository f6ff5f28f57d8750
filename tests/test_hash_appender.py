from pathlib import Path
import sys
import unittest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from audio_files import CancellationToken
from hash_appender import ContentHashAppender
from song_catalog import RecognitionCancelled, SongCatalogEntry


def _resolved(filename, path, *hashes):
    entry = SongCatalogEntry(filename=filename, title=[filename], file_hash=list(hashes))
    entry.resolve(path)
    return entry


def _hasher(hashes):
    async def _hash(path):
        if path not in hashes:
            raise OSError(f"cannot read {path}")
        return hashes[path]

    return _hash


class TestContentHashAppender(unittest.IsolatedAsyncioTestCase):
    async def test_appends_new_hash_once(self):
        entry = _resolved("a.mp3", "/music/a.mp3", "old")
        appender = ContentHashAppender(_hasher({"/music/a.mp3": "new"}))

        first = await appender.append_hashes([entry])
        second = await appender.append_hashes([entry])

        self.assertEqual(entry.file_hash, ["old", "new"])
        self.assertEqual(first["appended"], 1)
        self.assertEqual(second["appended"], 0)
        self.assertEqual(second["already_present"], 1)

    async def test_unresolved_entries_are_ignored(self):
        unresolved = SongCatalogEntry(filename="b.mp3", title=["B"], file_hash=["x"])
        resolved = _resolved("a.mp3", "/music/a.mp3")
        progress = []
        appender = ContentHashAppender(_hasher({"/music/a.mp3": "h1"}))

        summary = await appender.append_hashes(
            [unresolved, resolved],
            on_progress=lambda done, total: progress.append((done, total)),
        )

        self.assertEqual(unresolved.file_hash, ["x"])
        self.assertEqual(resolved.file_hash, ["h1"])
        self.assertEqual(summary["processed"], 1)
        self.assertEqual(progress, [(1, 1)])

    async def test_unreadable_file_is_skipped(self):
        broken = _resolved("a.mp3", "/music/a.mp3", "old")
        ok = _resolved("b.mp3", "/music/b.mp3")
        appender = ContentHashAppender(_hasher({"/music/b.mp3": "h2"}))

        with self.assertLogs("hash_appender", level="WARNING"):
            summary = await appender.append_hashes([broken, ok])

        self.assertEqual(broken.file_hash, ["old"])
        self.assertEqual(ok.file_hash, ["h2"])
        self.assertEqual(summary["errors"], 1)
        self.assertEqual(summary["processed"], 2)

    async def test_cancellation_stops_the_pass(self):
        token = CancellationToken()
        token.cancel()
        entry = _resolved("a.mp3", "/music/a.mp3")
        appender = ContentHashAppender(_hasher({"/music/a.mp3": "h1"}))

        with self.assertRaises(RecognitionCancelled):
            await appender.append_hashes([entry], cancel_token=token)
        self.assertEqual(entry.file_hash, [])


if __name__ == "__main__":
    unittest.main()
