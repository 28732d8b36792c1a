"""
Chapter duplicate detection
Decides whether a chapter archive already exists before anything is downloaded.

Rules run in order and stop at the first hit:
    1. direct path   - the canonical "<folder> - Vol.X Ch.Y[ - Name].cbz" exists
    2. marker        - the ".<chapter id>" marker points at an existing file
    3. strict scan   - an archive name contains "Vol.X Ch.Y" as a whole token
    4. lenient scan  - regex parse of archive names, tolerant of truncated names

Only the marker rule may touch the filesystem, and only to delete a stale marker.
Archives are never renamed or moved here.
"""

import os
import re
import logging
from typing import List, Optional

from manga_models import Chapter, parse_number
from chapter_markers import MarkerStore

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

ARCHIVE_EXTENSION = '.cbz'

# "<anything>Vol.3 Ch.75.5 - Name.cbz", "Volume.3 - Chapter.12.cbz", "Ch.4.cbz"
LENIENT_ARCHIVE_PATTERN = re.compile(
    r"(?:Vol(?:ume)?\.([0-9]+(?:\.[0-9]+)?)\D*)?"
    r"Ch(?:apter)?\.([0-9]+(?:\.[0-9]+)?)"
    r"(?: - (.*))?"
    r"\.[cC][bB][zZ]$"
)


def list_archives(directory: str) -> List[str]:
    """Archive file names in a publication directory, sorted for stable results"""
    return sorted(
        name for name in os.listdir(directory)
        if name.lower().endswith(ARCHIVE_EXTENSION) and os.path.isfile(os.path.join(directory, name))
    )


def direct_path_match(chapter: Chapter, download_location: str) -> bool:
    return os.path.isfile(chapter.archive_path(download_location))


def strict_number_match(file_stem: str, volume: str, chapter_number: str) -> bool:
    """
    True when file_stem contains "Vol.<volume> Ch.<chapter_number>" followed by a
    space, '-', '.' or the end of the name.

    A whole-number chapter never matches a name carrying a decimal suffix,
    so chapter 2 does not match "Ch.2.3".
    """
    token = f"Vol.{volume} Ch.{chapter_number}"
    bounded = (
        f"{token} " in file_stem
        or f"{token}-" in file_stem
        or f"{token}." in file_stem
        or file_stem.endswith(token)
    )
    if not bounded:
        return False
    if '.' not in chapter_number and re.search(rf"Ch\.{re.escape(chapter_number)}\.[0-9]+", file_stem):
        return False
    return True


def names_related(file_chapter_name: Optional[str], chapter_name: Optional[str]) -> bool:
    """
    Chapter names match when both are absent, or when one is a prefix of the other,
    or when they share the first word. Older archives may carry truncated names.
    """
    if not file_chapter_name and not chapter_name:
        return True
    if file_chapter_name is None or not chapter_name:
        return False
    if file_chapter_name == chapter_name:
        return True
    if chapter_name.startswith(file_chapter_name) or file_chapter_name.startswith(chapter_name):
        return True
    return chapter_name.split(' ')[0] == file_chapter_name.split(' ')[0]


def _numbers_equal(file_value: str, formatted: str, value: float) -> bool:
    if file_value == formatted:
        return True
    try:
        return parse_number(file_value) == value
    except ValueError:
        return False


def lenient_pattern_match(archive_name: str, chapter: Chapter) -> bool:
    """Last-resort match of one archive file name against a chapter"""
    if archive_name.lower() == chapter.archive_file_name().lower():
        return True

    match = LENIENT_ARCHIVE_PATTERN.search(archive_name)
    if not match:
        return False

    file_volume, file_chapter, file_name = match.group(1), match.group(2), match.group(3)

    volume_matches = (
        not file_volume
        or _numbers_equal(file_volume, chapter.formatted_volume_number, chapter.volume_number)
    )
    chapter_matches = _numbers_equal(file_chapter, chapter.formatted_chapter_number, chapter.chapter_number)
    name_matches = names_related(file_name, chapter.cleaned_name)

    return volume_matches and chapter_matches and name_matches


class DedupResolver:
    """Answers "is this chapter already archived?" for a download location"""

    def __init__(self, download_location: str):
        self.download_location = download_location

    def markers_for(self, chapter: Chapter) -> MarkerStore:
        return MarkerStore(chapter.parent_publication.folder_path(self.download_location))

    def find_archive(self, chapter: Chapter) -> Optional[str]:
        """
        Locate the existing archive for a chapter

        Returns:
            Path of the matching archive, or None when the chapter is not downloaded
        """
        directory = chapter.parent_publication.folder_path(self.download_location)
        if not os.path.isdir(directory):
            return None

        expected = chapter.archive_path(self.download_location)
        if direct_path_match(chapter, self.download_location):
            logger.debug(f"{chapter}: found at canonical path")
            return expected

        marked = self.markers_for(chapter).resolve(chapter.id)
        if marked:
            logger.debug(f"{chapter}: found through marker -> {marked}")
            return marked

        archives = list_archives(directory)
        volume = chapter.formatted_volume_number
        number = chapter.formatted_chapter_number

        for name in archives:
            stem = name[:-len(ARCHIVE_EXTENSION)]
            if strict_number_match(stem, volume, number):
                logger.info(f"{chapter}: matched existing archive {name} by volume/chapter number")
                return os.path.join(directory, name)

        for name in archives:
            if lenient_pattern_match(name, chapter):
                logger.info(f"{chapter}: matched existing archive {name} by filename pattern")
                return os.path.join(directory, name)

        return None

    def is_downloaded(self, chapter: Chapter) -> bool:
        return self.find_archive(chapter) is not None
