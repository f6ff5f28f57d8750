"""Record the current content hash of every resolved catalog entry."""
from __future__ import annotations

import asyncio
import logging
from typing import Dict, Optional, Sequence

from audio_files import CancellationToken, Hasher, ProgressCallback, compute_content_hash_async
from song_catalog import SongCatalogEntry

LOGGER = logging.getLogger(__name__)


class ContentHashAppender:
    """Append newly computed hashes to ``file_hash`` without duplicating any."""

    def __init__(self, hasher: Optional[Hasher] = None) -> None:
        self._hasher = hasher or compute_content_hash_async

    async def append_hashes(
        self,
        entries: Sequence[SongCatalogEntry],
        on_progress: Optional[ProgressCallback] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> Dict[str, int]:
        resolved = [entry for entry in entries if entry.file_exists and entry.file_path]
        summary = {"processed": 0, "appended": 0, "already_present": 0, "errors": 0}
        total = len(resolved)
        for index, entry in enumerate(resolved, start=1):
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()
            try:
                digest = await self._hasher(entry.file_path)
            except OSError as exc:
                summary["errors"] += 1
                LOGGER.warning("Failed to hash %s (%s): %s", entry.file_path, entry.filename, exc)
            else:
                if digest in entry.file_hash:
                    summary["already_present"] += 1
                    LOGGER.debug("Hash already recorded for %s", entry.filename)
                else:
                    entry.file_hash.append(digest)
                    summary["appended"] += 1
                    LOGGER.debug("Appended hash %s to %s", digest, entry.filename)
            summary["processed"] += 1
            if on_progress is not None:
                on_progress(index, total)
            await asyncio.sleep(0)
        LOGGER.info(
            "Hash write-back processed %d entries (%d appended, %d errors)",
            summary["processed"],
            summary["appended"],
            summary["errors"],
        )
        return summary
