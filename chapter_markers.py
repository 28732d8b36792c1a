"""
Chapter marker files
A hidden ".<chapter id>" file in the publication folder holds the absolute path of
the archive that was written for that chapter, so lookups need no directory scan.
"""

import os
import logging
from typing import Optional

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

MARKER_MODE = 0o775
FILE_ATTRIBUTE_HIDDEN = 0x02


class MarkerStore:
    """Reads and writes chapter markers inside one publication directory"""

    def __init__(self, directory: str):
        self.directory = directory

    def marker_path(self, chapter_id: str) -> str:
        return os.path.join(self.directory, f".{chapter_id}")

    def write(self, chapter_id: Optional[str], archive_path: str) -> Optional[str]:
        """
        Record archive_path as the marker's entire content

        Returns:
            Path of the marker file, or None when the chapter has no id
        """
        if chapter_id is None:
            return None

        path = self.marker_path(chapter_id)
        with open(path, 'w', encoding='utf-8') as f:
            f.write(os.path.abspath(archive_path))

        _set_hidden(path)
        if os.name == 'posix':
            os.chmod(path, MARKER_MODE)
        logger.debug(f"Wrote marker {path} -> {archive_path}")
        return path

    def read(self, chapter_id: Optional[str]) -> Optional[str]:
        """Return the archive path recorded for chapter_id, or None if there is no marker"""
        if chapter_id is None:
            return None
        path = self.marker_path(chapter_id)
        if not os.path.isfile(path):
            return None
        with open(path, 'r', encoding='utf-8') as f:
            return f.read().strip()

    def resolve(self, chapter_id: Optional[str]) -> Optional[str]:
        """
        Return the marked archive path if it still exists.
        A marker pointing at a missing file is stale and gets deleted.
        """
        archive_path = self.read(chapter_id)
        if archive_path is None:
            return None
        if archive_path and os.path.isfile(archive_path):
            return archive_path

        stale = self.marker_path(chapter_id)
        logger.info(f"Removing stale marker {stale} (points to missing {archive_path!r})")
        try:
            os.remove(stale)
        except FileNotFoundError:
            logger.debug(f"Stale marker {stale} already removed")
        return None


def _set_hidden(path: str):
    """Dot-files are already hidden on POSIX; Windows needs the attribute set"""
    if os.name != 'nt':
        return
    import ctypes
    if not ctypes.windll.kernel32.SetFileAttributesW(path, FILE_ATTRIBUTE_HIDDEN):
        logger.warning(f"Could not set hidden attribute on {path}")
