"""
Curated Catalog
===============

Read-only access to the curated song catalog. The JSON file is loaded once
into an immutable snapshot; call ``invalidate()`` after editing the file.

Accepted layouts: ``{"metadata": {...}, "songs": [...]}`` or a bare list.
"""

import json
import logging
import threading
from pathlib import Path
from typing import Iterable, Optional, Tuple, Union

from .config import CURATED_CATALOG_PATH
from .features import CuratedSong
from .utils import validate_track_id

logger = logging.getLogger(__name__)


class CuratedCatalog:
    """Immutable in-memory snapshot of the curated catalog."""

    def __init__(
        self,
        path: Union[str, Path, None] = CURATED_CATALOG_PATH,
        songs: Optional[Iterable[CuratedSong]] = None,
    ):
        """
        Args:
            path: JSON catalog file
            songs: Songs to serve directly instead of reading a file
        """
        self.path = Path(path) if path else None
        self._songs: Optional[Tuple[CuratedSong, ...]] = tuple(songs) if songs is not None else None
        self._from_file = songs is None
        self._lock = threading.Lock()

    def list(self) -> Tuple[CuratedSong, ...]:
        """All catalog songs; loads the file on first use."""
        with self._lock:
            if self._songs is None:
                self._songs = self._load()
            return self._songs

    def invalidate(self) -> None:
        """Drop the snapshot so the next ``list()`` rereads the file."""
        with self._lock:
            if self._from_file:
                self._songs = None

    def __len__(self) -> int:
        return len(self.list())

    def _load(self) -> Tuple[CuratedSong, ...]:
        if self.path is None or not self.path.exists():
            logger.warning("Curated catalog not found at %s, skipping curated source", self.path)
            return ()

        with open(self.path, "r", encoding="utf-8") as f:
            raw = json.load(f)

        entries = raw.get("songs", []) if isinstance(raw, dict) else raw

        songs = []
        for entry in entries:
            try:
                song = CuratedSong.from_dict(entry)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("Skipping malformed catalog entry %r: %s", entry, e)
                continue
            if not validate_track_id(song.spotify_id):
                logger.warning(
                    "Skipping catalog entry %r: invalid spotify_id %r", song.title, song.spotify_id
                )
                continue
            songs.append(song)

        logger.info("Loaded %d curated songs from %s", len(songs), self.path)
        return tuple(songs)
