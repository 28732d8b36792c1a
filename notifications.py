"""
Notification delivery for chapterdown
Push messages (ntfy) about finished chapters and failed downloads
"""

import logging
import threading
from typing import List, Optional

import requests

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class Notifier:
    """Base class for notification targets"""

    def notify(self, title: str, body: str, is_success: bool = False):
        raise NotImplementedError


class NtfyNotifier(Notifier):
    """Publishes JSON messages to an ntfy server"""

    def __init__(self, endpoint: str, topic: str = 'chapterdown', username: Optional[str] = None,
                 password: Optional[str] = None, timeout: float = 10):
        self.endpoint = endpoint.rstrip('/')
        self.topic = topic
        self.auth = (username, password) if username and password else None
        self.timeout = timeout
        self.session = requests.Session()

    def __str__(self):
        return f"Ntfy {self.endpoint} {self.topic}"

    def notify(self, title: str, body: str, is_success: bool = False):
        message = {
            'topic': self.topic,
            'title': title,
            'message': body,
            'priority': 3 if is_success else 4,
        }
        logger.info(f"Sending notification: {title} - {body}")
        response = self.session.post(self.endpoint, json=message, auth=self.auth, timeout=self.timeout)
        if not response.ok:
            logger.warning(f"{response.status_code}: {response.text}")


class NotificationManager(Notifier):
    """Fans a notification out to every registered notifier; delivery errors are only logged"""

    def __init__(self, notifiers: Optional[List[Notifier]] = None):
        self.notifiers: List[Notifier] = list(notifiers or [])
        self.lock = threading.Lock()

    def add(self, notifier: Notifier):
        with self.lock:
            self.notifiers.append(notifier)

    def notify(self, title: str, body: str, is_success: bool = False):
        with self.lock:
            targets = list(self.notifiers)
        for notifier in targets:
            try:
                notifier.notify(title, body, is_success)
            except Exception as e:
                logger.error(f"Notification via {notifier} failed: {e}")
