"""
HTTP download client for chapterdown
One explicitly owned requests.Session shared by everything that fetches remote content
"""

import time
import logging
import threading
from dataclasses import dataclass, field
from http import HTTPStatus
from typing import Dict, Optional

import requests

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

DEFAULT_HEADERS = {
    'User-Agent': 'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36',
    'Accept': 'text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,image/apng,*/*;q=0.8',
    'Accept-Language': 'en-US,en;q=0.9',
    'Accept-Encoding': 'gzip, deflate',
    'DNT': '1',
    'Connection': 'keep-alive',
}


@dataclass
class RequestResult:
    """Outcome of one transport request. content is None when no body was received."""
    status_code: int
    content: Optional[bytes] = None
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


class HttpDownloadClient:
    """
    Transport capability backed by requests

    The session only exists between start() and stop(); the client can also be used
    as a context manager. make_request() starts it lazily if needed.
    """

    def __init__(self, timeout=(5, 30), request_delay: float = 0.0, headers: Optional[Dict[str, str]] = None):
        self.timeout = timeout
        self.request_delay = request_delay
        self.headers = dict(DEFAULT_HEADERS)
        if headers:
            self.headers.update(headers)
        self.session: Optional[requests.Session] = None
        self._lock = threading.Lock()

    def start(self) -> 'HttpDownloadClient':
        with self._lock:
            if self.session is None:
                self.session = requests.Session()
                self.session.headers.update(self.headers)
                logger.info("Download client started")
        return self

    def stop(self):
        with self._lock:
            if self.session is not None:
                self.session.close()
                self.session = None
                logger.info("Download client stopped")

    def __enter__(self):
        return self.start()

    def __exit__(self, exc_type, exc, tb):
        self.stop()

    def make_request(self, url: str, referrer: Optional[str] = None) -> RequestResult:
        """
        GET url and return the status code and body.
        Network errors are reported as status codes instead of exceptions.
        """
        if self.session is None:
            self.start()

        if self.request_delay:
            time.sleep(self.request_delay)

        headers = {'Referer': referrer} if referrer else None
        try:
            response = self.session.get(url, timeout=self.timeout, headers=headers)
        except requests.Timeout:
            logger.warning(f"Request timeout for {url}")
            return RequestResult(HTTPStatus.REQUEST_TIMEOUT)
        except requests.RequestException as e:
            logger.error(f"Request failed for {url}: {e}")
            return RequestResult(HTTPStatus.INTERNAL_SERVER_ERROR)

        if not 200 <= response.status_code < 300:
            logger.warning(f"Request for {url} returned {response.status_code}")
            return RequestResult(response.status_code, None, dict(response.headers))

        return RequestResult(response.status_code, response.content, dict(response.headers))
