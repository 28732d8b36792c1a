"""
Publication and Chapter models for chapterdown
Chapter identity (display file name, numeric ordering) and publication folder handling
"""

import os
import re
import html
import shutil
import logging
import threading
import uuid
from enum import Enum
from dataclasses import dataclass, field
from functools import total_ordering
from typing import List, Dict, Optional, Iterable, Any

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Characters kept in a chapter name before it becomes part of a file name
CHAPTER_NAME_ILLEGAL = re.compile(r"[^A-Za-z0-9 .\-,\[\]'()~!]")
# Volume/chapter tokens are stripped so they never appear twice in a file name
CHAPTER_NAME_TOKENS = re.compile(r"(Vol(ume)?|Ch(apter)?)\.?", re.IGNORECASE)
FOLDER_NAME_ILLEGAL = re.compile(r"[^A-Za-zÀ-ÖØ-öø-ÿ0-9 .\-,'()~!+]")


def parse_number(text: Optional[str], default: float = 0.0) -> float:
    """
    Parse a volume/chapter number using a fixed decimal point.
    float() never consults the host locale, so "75.5" always parses the same way.
    """
    if text is None:
        return default
    text = str(text).strip()
    if not text:
        return default
    return float(text)


def format_number(value: float) -> str:
    """Format a number without trailing zeros: 12.0 -> '12', 75.5 -> '75.5'"""
    text = f"{value:f}".rstrip('0').rstrip('.')
    if text in ('', '-0'):
        return '0'
    return text


def clean_chapter_name(name: Optional[str]) -> str:
    """Strip disallowed characters and Vol/Ch tokens from a connector-supplied chapter name"""
    if not name:
        return ''
    legal = CHAPTER_NAME_ILLEGAL.sub('', name)
    return CHAPTER_NAME_TOKENS.sub('', legal).strip()


def sanitize_folder_name(sort_name: str) -> str:
    """Build a filesystem-safe publication folder name from its display title"""
    folder = FOLDER_NAME_ILLEGAL.sub('', html.unescape(sort_name))
    return folder.rstrip('.')


class ReleaseStatus(Enum):
    CONTINUING = 0
    COMPLETED = 1
    ON_HIATUS = 2
    CANCELLED = 3
    UNRELEASED = 4


@dataclass(eq=False)
class Publication:
    """
    A series (manga) as known to the catalog.

    folder_name can only change through move_folder(), which also migrates the
    directory on disk. The high-water marks are guarded by a per-publication lock
    because several chapter downloads of the same series may finish concurrently.
    """
    sort_name: str
    publication_id: str
    authors: List[str] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)
    description: Optional[str] = None
    original_language: Optional[str] = None
    cover_url: Optional[str] = None
    website_url: Optional[str] = None
    year: Optional[int] = None
    release_status: ReleaseStatus = ReleaseStatus.CONTINUING
    alt_titles: Dict[str, str] = field(default_factory=dict)
    folder_name: Optional[str] = None
    internal_id: Optional[str] = None
    ignore_chapters_below: float = 0.0
    latest_chapter_downloaded: float = 0.0
    latest_chapter_available: float = 0.0
    _lock: threading.RLock = field(default_factory=threading.RLock, init=False, repr=False)

    def __post_init__(self):
        self.sort_name = html.unescape(self.sort_name)
        self.authors = [html.unescape(a) for a in self.authors]
        self.tags = [html.unescape(t) for t in self.tags]
        if self.description is not None:
            self.description = html.unescape(self.description)
        if not self.folder_name:
            self.folder_name = sanitize_folder_name(self.sort_name)
        if not self.internal_id:
            self.internal_id = uuid.uuid4().hex

    def __str__(self):
        return f"Publication {self.sort_name} {self.internal_id}"

    @property
    def lock(self) -> threading.RLock:
        return self._lock

    def folder_path(self, download_location: str) -> str:
        return os.path.join(download_location, self.folder_name)

    def update_latest_downloaded(self, chapter: 'Chapter') -> float:
        """Raise latest_chapter_downloaded to the chapter's number if it is higher"""
        with self._lock:
            if chapter.chapter_number > self.latest_chapter_downloaded:
                self.latest_chapter_downloaded = chapter.chapter_number
            return self.latest_chapter_downloaded

    def update_latest_available(self, chapters: Iterable['Chapter']) -> float:
        chapters = list(chapters)
        with self._lock:
            if chapters:
                self.latest_chapter_available = max(chapters).chapter_number
            return self.latest_chapter_available

    def move_folder(self, download_location: str, new_folder_name: str) -> str:
        """
        Rename the publication and migrate its directory.

        If the new directory already exists, entries it does not have yet (files and
        subdirectories) are moved into it. The old directory is removed only once it
        is empty; colliding entries stay behind and are logged. Otherwise the
        directory itself is moved.

        Returns:
            Path of the publication directory after the move
        """
        with self._lock:
            old_path = self.folder_path(download_location)
            new_path = os.path.join(download_location, new_folder_name)
            if os.path.normpath(old_path) == os.path.normpath(new_path):
                return new_path

            if os.path.isdir(old_path):
                if os.path.isdir(new_path):
                    existing = set(os.listdir(new_path))
                    for item in os.listdir(old_path):
                        if item not in existing:
                            shutil.move(os.path.join(old_path, item), os.path.join(new_path, item))
                    left_behind = os.listdir(old_path)
                    if left_behind:
                        logger.warning(f"Kept {old_path}: {len(left_behind)} entries already exist in "
                                       f"{new_path} ({', '.join(sorted(left_behind))})")
                    else:
                        os.rmdir(old_path)
                else:
                    os.makedirs(download_location, exist_ok=True)
                    shutil.move(old_path, new_path)
                logger.info(f"Moved publication folder {old_path} -> {new_path}")

            self.folder_name = new_folder_name
            return new_path

    def with_metadata(self, other: 'Publication') -> 'Publication':
        """Merge refreshed metadata from the connector into this publication"""
        with self._lock:
            self.sort_name = other.sort_name
            self.description = other.description
            self.cover_url = other.cover_url
            self.authors = self.authors + [a for a in other.authors if a not in self.authors]
            self.tags = self.tags + [t for t in other.tags if t not in self.tags]
            merged_titles = dict(other.alt_titles)
            merged_titles.update(self.alt_titles)
            self.alt_titles = merged_titles
            self.release_status = other.release_status
            self.website_url = other.website_url
            self.year = other.year
        return self

    def to_dict(self) -> Dict[str, Any]:
        return {
            'sort_name': self.sort_name,
            'publication_id': self.publication_id,
            'authors': list(self.authors),
            'tags': list(self.tags),
            'description': self.description,
            'original_language': self.original_language,
            'cover_url': self.cover_url,
            'website_url': self.website_url,
            'year': self.year,
            'release_status': self.release_status.name,
            'alt_titles': dict(self.alt_titles),
            'folder_name': self.folder_name,
            'internal_id': self.internal_id,
            'ignore_chapters_below': self.ignore_chapters_below,
            'latest_chapter_downloaded': self.latest_chapter_downloaded,
            'latest_chapter_available': self.latest_chapter_available,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Publication':
        data = dict(data)
        status = data.pop('release_status', ReleaseStatus.CONTINUING.name)
        return cls(release_status=ReleaseStatus[status], **data)


@total_ordering
@dataclass(frozen=True, eq=False)
class Chapter:
    """
    One numbered chapter of a publication.

    Chapters order by volume number, then chapter number, and are equal when both
    match. file_name is "Vol.<v> Ch.<c>[ - <name>]".
    """
    parent_publication: Publication
    name: Optional[str]
    volume_number: float
    chapter_number: float
    url: str
    id: Optional[str] = None

    @classmethod
    def from_strings(cls, parent_publication: Publication, name: Optional[str],
                     volume_number: Optional[str], chapter_number: str, url: str,
                     chapter_id: Optional[str] = None) -> 'Chapter':
        """Build a chapter from the raw strings a connector scraped"""
        return cls(
            parent_publication=parent_publication,
            name=name,
            volume_number=parse_number(volume_number),
            chapter_number=parse_number(chapter_number),
            url=url,
            id=chapter_id,
        )

    @property
    def formatted_volume_number(self) -> str:
        return format_number(self.volume_number)

    @property
    def formatted_chapter_number(self) -> str:
        return format_number(self.chapter_number)

    @property
    def cleaned_name(self) -> str:
        return clean_chapter_name(self.name)

    @property
    def file_name(self) -> str:
        numbers = f"Vol.{self.formatted_volume_number} Ch.{self.formatted_chapter_number}"
        cleaned = self.cleaned_name
        return f"{numbers} - {cleaned}" if cleaned else numbers

    def archive_file_name(self) -> str:
        return f"{self.parent_publication.folder_name} - {self.file_name}.cbz"

    def archive_path(self, download_location: str) -> str:
        """Canonical archive path: <root>/<folder>/<folder> - <fileName>.cbz"""
        return os.path.join(self.parent_publication.folder_path(download_location),
                            self.archive_file_name())

    @property
    def lock_key(self) -> str:
        publication = self.parent_publication
        return f"{publication.internal_id}:{self.formatted_volume_number}:{self.formatted_chapter_number}"

    def _key(self):
        return (self.volume_number, self.chapter_number)

    def __eq__(self, other):
        if not isinstance(other, Chapter):
            return NotImplemented
        return self._key() == other._key()

    def __lt__(self, other):
        if not isinstance(other, Chapter):
            return NotImplemented
        return self._key() < other._key()

    def __hash__(self):
        return hash(self._key())

    def __str__(self):
        publication = self.parent_publication
        return f"Chapter {publication.sort_name} {publication.internal_id} {self.formatted_chapter_number} {self.name or ''}".rstrip()

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'volume_number': self.volume_number,
            'chapter_number': self.chapter_number,
            'url': self.url,
            'id': self.id,
        }

    @classmethod
    def from_dict(cls, parent_publication: Publication, data: Dict[str, Any]) -> 'Chapter':
        return cls(
            parent_publication=parent_publication,
            name=data.get('name'),
            volume_number=float(data.get('volume_number') or 0),
            chapter_number=float(data['chapter_number']),
            url=data.get('url', ''),
            id=data.get('id'),
        )
