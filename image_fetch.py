"""
Image fetch pipeline
Downloads one page image with bounded retries and validates what landed on disk
"""

import os
import time
import logging
from http import HTTPStatus
from typing import Optional

from manga_models import Chapter

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 20
MIN_VALID_SIZE = 1024  # most manga pages are far larger than 1KB
RETRY_DELAY = 1.0


class ImageFetchPipeline:
    """
    Fetches images through an injected transport

    Args:
        transport: object with make_request(url, referrer) -> RequestResult
        notifier: object with notify(title, body, is_success), or None
        max_attempts: attempts per image before giving up
        min_valid_size: smaller files are retried, but accepted on the final attempt
        retry_delay: seconds to wait before each retry
    """

    def __init__(self, transport, notifier=None, max_attempts: int = MAX_ATTEMPTS,
                 min_valid_size: int = MIN_VALID_SIZE, retry_delay: float = RETRY_DELAY):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.transport = transport
        self.notifier = notifier
        self.max_attempts = max_attempts
        self.min_valid_size = min_valid_size
        self.retry_delay = retry_delay

    def fetch_one(self, url: str, destination_path: str, referrer: Optional[str] = None,
                  chapter: Optional[Chapter] = None, image_number: int = 0) -> int:
        """
        Download url to destination_path

        Returns:
            2xx status on success. Otherwise the last transport status, 404 when no
            body ever arrived, 502 when the image stayed empty, or 500 when the file
            could not be written.
        """
        for attempt in range(1, self.max_attempts + 1):
            final = attempt == self.max_attempts
            if attempt > 1:
                self._backoff()

            logger.info(f"Downloading image from {url} (attempt {attempt}/{self.max_attempts})")
            result = self.transport.make_request(url, referrer)

            if not 200 <= int(result.status_code) < 300:
                logger.warning(f"Failed to download image: {result.status_code} (attempt {attempt}/{self.max_attempts})")
                if final:
                    self._notify_failure(chapter, image_number, url, f"HTTP {int(result.status_code)}")
                    return int(result.status_code)
                continue

            if result.content is None:
                logger.warning(f"Image response had no body (attempt {attempt}/{self.max_attempts})")
                if final:
                    self._notify_failure(chapter, image_number, url, "no response body")
                    return HTTPStatus.NOT_FOUND
                continue

            try:
                with open(destination_path, 'wb') as f:
                    f.write(result.content)
                size = os.path.getsize(destination_path)
            except OSError as e:
                logger.error(f"Error writing image file {destination_path}: {e} (attempt {attempt}/{self.max_attempts})")
                if final:
                    self._notify_failure(chapter, image_number, url, f"write error: {e}")
                    return HTTPStatus.INTERNAL_SERVER_ERROR
                continue

            logger.debug(f"Image written to {destination_path}. Size: {size} bytes")

            if size == 0:
                logger.warning(f"Downloaded image is 0 bytes (attempt {attempt}/{self.max_attempts})")
                os.remove(destination_path)
                if final:
                    self._notify_failure(chapter, image_number, url, "0-byte file")
                    return HTTPStatus.BAD_GATEWAY
                continue

            if size < self.min_valid_size:
                logger.warning(f"Downloaded image is suspiciously small ({size} bytes) (attempt {attempt}/{self.max_attempts})")
                if not final:
                    os.remove(destination_path)
                    continue
                # some pages really are tiny; keep what the last attempt produced
                self._notify(
                    "Download Warning",
                    f"Image {image_number} is suspiciously small ({size} bytes)\n"
                    f"{self._describe(chapter)}"
                    f"URL: {url}",
                )

            logger.info(f"Image download successful. Final size: {size} bytes")
            return int(result.status_code)

        return HTTPStatus.INTERNAL_SERVER_ERROR

    def _backoff(self):
        if self.retry_delay > 0:
            time.sleep(self.retry_delay)

    @staticmethod
    def _describe(chapter: Optional[Chapter]) -> str:
        if chapter is None:
            return ''
        return f"Chapter: {chapter.parent_publication.sort_name} - {chapter.file_name}\n"

    def _notify_failure(self, chapter: Optional[Chapter], image_number: int, url: str, issue: str):
        self._notify(
            "Download Failed",
            f"Image {image_number} failed to download after {self.max_attempts} attempts\n"
            f"{self._describe(chapter)}"
            f"Issue: {issue}\n"
            f"URL: {url}",
        )

    def _notify(self, title: str, body: str):
        if self.notifier is not None:
            self.notifier.notify(title, body, False)
