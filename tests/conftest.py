import threading
import time
from typing import Dict, List, Optional

import pytest

from chapter_archive import ArchiveAssembler, ChapterLocks, SeriesInfoWriter
from chapter_dedup import DedupResolver
from download_client import RequestResult
from download_jobs import JobContext
from image_fetch import ImageFetchPipeline
from manga_models import Chapter, Publication

PAGE_BYTES = b'\x89PNG' + b'x' * 4096


class FakeTransport:
    """Transport double: per-URL scripted results, default 200 with a large body"""

    def __init__(self, responses: Optional[Dict[str, List[RequestResult]]] = None, default=None, delay: float = 0.0):
        self.responses = responses or {}
        self.default = default or RequestResult(200, PAGE_BYTES)
        self.delay = delay
        self.calls: List[tuple] = []
        self._lock = threading.Lock()

    def make_request(self, url, referrer=None):
        with self._lock:
            self.calls.append((url, referrer))
            queue = self.responses.get(url)
            result = queue.pop(0) if queue else self.default
        if self.delay:
            time.sleep(self.delay)
        return result


class RecordingNotifier:
    def __init__(self):
        self.messages = []

    def notify(self, title, body, is_success=False):
        self.messages.append((title, body, is_success))

    @property
    def failures(self):
        return [m for m in self.messages if not m[2]]


class FakeConnector:
    name = 'fake'

    def __init__(self, chapters=None, images=None, publication=None):
        self.chapters = chapters or []
        self.images = images or {}
        self.publication = publication
        self.image_requests = []

    def list_chapters(self, publication):
        return list(self.chapters)

    def fetch_chapter_images(self, chapter):
        self.image_requests.append(chapter)
        return list(self.images.get(chapter.formatted_chapter_number, []))

    def fetch_publication_metadata(self, url_or_id):
        return self.publication


@pytest.fixture
def download_root(tmp_path):
    root = tmp_path / 'manga'
    root.mkdir()
    return root


@pytest.fixture
def publication():
    return Publication(
        sort_name='Alpha',
        publication_id='alpha-1',
        authors=['Jane Doe', 'John Roe'],
        tags=['Action', 'Drama'],
        original_language='ja',
        internal_id='alpha-internal',
    )


@pytest.fixture
def chapter(publication):
    return Chapter(publication, 'The Return', 0, 12, 'https://example.test/alpha/12', id='ch-12')


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def fetcher(transport, notifier):
    return ImageFetchPipeline(transport, notifier=notifier, max_attempts=5, min_valid_size=1024, retry_delay=0)


@pytest.fixture
def resolver(download_root):
    return DedupResolver(str(download_root))


@pytest.fixture
def assembler(download_root, fetcher, resolver):
    return ArchiveAssembler(str(download_root), fetcher, resolver, ChapterLocks())


@pytest.fixture
def context(download_root, resolver, assembler, notifier):
    return JobContext(
        download_location=str(download_root),
        resolver=resolver,
        assembler=assembler,
        series_writer=SeriesInfoWriter(str(download_root)),
        notifier=notifier,
    )


def make_archive(directory, name, content=b'PK\x05\x06' + b'\x00' * 18):
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / name
    path.write_bytes(content)
    return path
