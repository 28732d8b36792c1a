"""
Runtime configuration for chapterdown, read from environment variables
"""

import os
from dataclasses import dataclass
from typing import Callable, Mapping, Optional

ENV_PREFIX = 'CHAPTERDOWN_'


def _read(env: Mapping[str, str], name: str, default, cast: Callable):
    raw = env.get(name)
    if raw is None or raw.strip() == '':
        return default
    try:
        return cast(raw.strip())
    except ValueError:
        raise ValueError(f"Invalid value for {name}: {raw!r}") from None


@dataclass
class Settings:
    download_location: str = '/downloads/manga'
    db_path: str = 'config/chapterdown.db'
    tick_interval: float = 1.0
    max_image_attempts: int = 20
    min_image_size: int = 1024
    retry_delay: float = 1.0
    request_delay: float = 0.0
    ntfy_endpoint: Optional[str] = None
    ntfy_topic: str = 'chapterdown'
    ntfy_username: Optional[str] = None
    ntfy_password: Optional[str] = None
    port: int = 5100
    debug: bool = False

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> 'Settings':
        env = os.environ if env is None else env
        defaults = cls()
        p = ENV_PREFIX
        return cls(
            download_location=_read(env, f'{p}DOWNLOAD_LOCATION', defaults.download_location, str),
            db_path=_read(env, f'{p}DB_PATH', defaults.db_path, str),
            tick_interval=_read(env, f'{p}TICK_INTERVAL', defaults.tick_interval, float),
            max_image_attempts=_read(env, f'{p}MAX_IMAGE_ATTEMPTS', defaults.max_image_attempts, int),
            min_image_size=_read(env, f'{p}MIN_IMAGE_SIZE', defaults.min_image_size, int),
            retry_delay=_read(env, f'{p}RETRY_DELAY', defaults.retry_delay, float),
            request_delay=_read(env, f'{p}REQUEST_DELAY', defaults.request_delay, float),
            ntfy_endpoint=_read(env, f'{p}NTFY_ENDPOINT', None, str),
            ntfy_topic=_read(env, f'{p}NTFY_TOPIC', defaults.ntfy_topic, str),
            ntfy_username=_read(env, f'{p}NTFY_USERNAME', None, str),
            ntfy_password=_read(env, f'{p}NTFY_PASSWORD', None, str),
            port=_read(env, 'PORT', defaults.port, int),
            debug=env.get('FLASK_ENV', 'production') != 'production',
        )
