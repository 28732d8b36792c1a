"""
Chapter archive assembly
Stages page images plus ComicInfo.xml in a temporary directory and seals them into a
single CBZ at the chapter's canonical path. A chapter is either archived completely
or not at all.
"""

import os
import json
import shutil
import zipfile
import logging
import tempfile
import threading
import posixpath
import xml.etree.ElementTree as ET
from contextlib import contextmanager
from http import HTTPStatus
from typing import Dict, List, Optional
from urllib.parse import urlparse

from manga_models import Chapter, Publication, ReleaseStatus, format_number
from chapter_dedup import DedupResolver
from chapter_markers import MarkerStore
from image_fetch import ImageFetchPipeline
from progress_token import ProgressToken, CANCELLED_STATUS, is_success

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

DIRECTORY_MODE = 0o770
ARCHIVE_MODE = 0o775
SERIES_INFO_MODE = 0o666
COMIC_INFO_NAME = 'ComicInfo.xml'
IMAGE_EXTENSIONS = {'jpg', 'jpeg', 'png', 'gif', 'webp', 'avif', 'bmp', 'apng'}


class ComicInfoGenerator:
    """
    Generates ComicInfo.xml metadata for CBZ files
    ComicInfo.xml is the metadata format comic readers (Komga, Kavita, ...) look for
    """

    @staticmethod
    def create_comic_info_xml(chapter: Chapter) -> str:
        publication = chapter.parent_publication
        root = ET.Element('ComicInfo')

        fields = (
            ('Tags', ','.join(publication.tags)),
            ('LanguageISO', publication.original_language or ''),
            ('Title', chapter.name or ''),
            ('Writer', ','.join(publication.authors)),
            ('Volume', format_number(chapter.volume_number)),
            ('Number', format_number(chapter.chapter_number)),
        )
        for tag, value in fields:
            element = ET.SubElement(root, tag)
            element.text = value

        xml_str = ET.tostring(root, encoding='unicode')
        return f'<?xml version="1.0" encoding="utf-8"?>\n{xml_str}'


class SeriesInfoWriter:
    """Writes series.json, the per-series metadata Komga and Mylar read"""

    STATUS_NAMES = {
        ReleaseStatus.CONTINUING: 'Continuing',
        ReleaseStatus.COMPLETED: 'Ended',
        ReleaseStatus.ON_HIATUS: 'OnHiatus',
        ReleaseStatus.CANCELLED: 'Cancelled',
        ReleaseStatus.UNRELEASED: 'Unreleased',
    }

    def __init__(self, download_location: str):
        self.download_location = download_location

    def build(self, publication: Publication) -> Dict:
        return {
            'metadata': {
                'type': 'Manga',
                'publisher': '',
                'comicid': 0,
                'booktype': '',
                'ComicImage': '',
                'total_issues': 0,
                'publication_run': '',
                'name': publication.sort_name,
                'year': str(publication.year) if publication.year is not None else '',
                'status': self.STATUS_NAMES.get(publication.release_status, 'Ended'),
                'description_text': publication.description or '',
            }
        }

    def write(self, publication: Publication, overwrite: bool = False) -> str:
        series_dir = publication.folder_path(self.download_location)
        make_publication_dir(series_dir)
        metadata_path = os.path.join(series_dir, 'series.json')

        if overwrite or not os.path.exists(metadata_path):
            with open(metadata_path, 'w', encoding='utf-8') as f:
                json.dump(self.build(publication), f, indent=2, ensure_ascii=False)
            if os.name == 'posix':
                os.chmod(metadata_path, SERIES_INFO_MODE)
            logger.info(f"Created metadata: {metadata_path}")

        return metadata_path


class ChapterLocks:
    """
    One lock per chapter identity, so duplicate jobs for a chapter run one at a time.
    An entry lives only while some thread holds or waits for it.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, List] = {}

    def __len__(self):
        with self._guard:
            return len(self._locks)

    @contextmanager
    def hold(self, key: str):
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = self._locks[key] = [threading.Lock(), 0]
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]


def make_publication_dir(path: str):
    if os.path.isdir(path):
        return
    os.makedirs(path, exist_ok=True)
    if os.name == 'posix':
        os.chmod(path, DIRECTORY_MODE)
    logger.info(f"Created series directory: {path}")


def image_extension(url: str) -> str:
    """File extension of the image at url, 'jpg' when the URL does not name one"""
    path = urlparse(url).path
    ext = posixpath.splitext(path)[1].lstrip('.').lower()
    if ext in IMAGE_EXTENSIONS:
        return 'jpg' if ext == 'jpeg' else ext
    return ext if ext.isalnum() and 0 < len(ext) <= 5 else 'jpg'


class ArchiveAssembler:
    """
    Downloads a chapter's pages and seals them into <folder>/<folder> - <fileName>.cbz

    Steps for one chapter run under that chapter's lock, so two jobs for the same
    chapter never produce two archives.
    """

    def __init__(self, download_location: str, fetcher: ImageFetchPipeline,
                 resolver: Optional[DedupResolver] = None, locks: Optional[ChapterLocks] = None):
        self.download_location = download_location
        self.fetcher = fetcher
        self.resolver = resolver or DedupResolver(download_location)
        self.locks = locks if locks is not None else ChapterLocks()

    def assemble(self, chapter: Chapter, image_urls: List[str], referrer: Optional[str] = None,
                 progress_token: Optional[ProgressToken] = None) -> int:
        """
        Archive one chapter

        Returns:
            200 archived, 201 already present, 204 chapter has no images,
            499 cancelled, or the failing status of a page / integrity check
        """
        token = progress_token or ProgressToken()
        with self.locks.hold(chapter.lock_key):
            try:
                return self._assemble_locked(chapter, image_urls, referrer, token)
            finally:
                token.complete()

    def _assemble_locked(self, chapter: Chapter, image_urls: List[str], referrer: Optional[str],
                         token: ProgressToken) -> int:
        archive_path = chapter.archive_path(self.download_location)

        if token.cancellation_requested:
            return CANCELLED_STATUS

        if self.resolver.is_downloaded(chapter):
            logger.info(f"Chapter already downloaded: {archive_path}")
            return HTTPStatus.CREATED

        if not image_urls:
            logger.warning(f"No images found for {chapter}")
            return HTTPStatus.NO_CONTENT

        token.add_increments(len(image_urls))

        series_dir = os.path.dirname(archive_path)
        make_publication_dir(series_dir)
        markers = MarkerStore(series_dir)

        if os.path.isfile(archive_path):
            logger.info(f"Archive already exists, refreshing marker: {archive_path}")
            markers.write(chapter.id, archive_path)
            return HTTPStatus.CREATED

        staging_dir = tempfile.mkdtemp(prefix='chapterdown-')
        try:
            status = self._fetch_pages(chapter, image_urls, referrer, token, staging_dir)
            if status is not None:
                return status

            try:
                with open(os.path.join(staging_dir, COMIC_INFO_NAME), 'w', encoding='utf-8') as f:
                    f.write(ComicInfoGenerator.create_comic_info_xml(chapter))
            except OSError as e:
                logger.error(f"Failed to write {COMIC_INFO_NAME} for {chapter}: {e}")
                return HTTPStatus.INTERNAL_SERVER_ERROR

            if token.cancellation_requested:
                logger.info(f"Cancelled before sealing {archive_path}")
                return CANCELLED_STATUS

            try:
                self._seal(staging_dir, archive_path)
            except (OSError, zipfile.BadZipFile) as e:
                logger.error(f"Failed to create CBZ {archive_path}: {e}")
                return HTTPStatus.INTERNAL_SERVER_ERROR
            if not os.path.isfile(archive_path):
                logger.error(f"Archive missing after sealing: {archive_path}")
                return HTTPStatus.INTERNAL_SERVER_ERROR

            file_size_mb = os.path.getsize(archive_path) / (1024 * 1024)
            logger.info(f"Created CBZ successfully: {archive_path} ({file_size_mb:.2f} MB)")

            markers.write(chapter.id, archive_path)
            if os.name == 'posix':
                os.chmod(archive_path, ARCHIVE_MODE)
            return HTTPStatus.OK
        finally:
            shutil.rmtree(staging_dir, ignore_errors=True)

    def _fetch_pages(self, chapter: Chapter, image_urls: List[str], referrer: Optional[str],
                     token: ProgressToken, staging_dir: str) -> Optional[int]:
        """Download every page into staging_dir; returns a status only when the chapter must stop"""
        total = len(image_urls)
        width = max(4, len(str(total)))
        for index, url in enumerate(image_urls, start=1):
            if token.cancellation_requested:
                logger.info(f"Download of {chapter} cancelled at page {index}/{total}")
                return CANCELLED_STATUS

            filename = f"{index:0{width}d}.{image_extension(url)}"
            logger.info(f"Downloading image {index:03d}/{total:03d} for {chapter}")
            status = self.fetcher.fetch_one(url, os.path.join(staging_dir, filename), referrer,
                                            chapter=chapter, image_number=index)
            if not is_success(status):
                logger.error(f"Failed to download image {index:03d} ({status}), aborting chapter download")
                return status
            token.increment()
        return None

    @staticmethod
    def _seal(staging_dir: str, archive_path: str):
        """
        Zip the staging directory next to the final archive, then rename it into place.
        The canonical path only ever holds a complete archive.
        """
        partial_path = os.path.join(os.path.dirname(archive_path),
                                    f".{os.path.basename(archive_path)}.partial")
        try:
            with zipfile.ZipFile(partial_path, 'w', zipfile.ZIP_STORED) as cbz:
                for name in sorted(os.listdir(staging_dir)):
                    cbz.write(os.path.join(staging_dir, name), arcname=name)
            os.replace(partial_path, archive_path)
        finally:
            if os.path.exists(partial_path):
                os.remove(partial_path)
