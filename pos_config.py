"""
Coffee Bell POS configuration.

Environment (all optional, `.env` is honoured):
  COFFEEBELL_API_URL         Remote endpoint; wins over the stored value
  POS_SETTINGS_DB            SQLite file for durable settings (default: pos_settings.db)
  POS_SYNC_INTERVAL          Seconds between sync polls (default: 30)
  POS_HTTP_TIMEOUT           Seconds per remote request (default: 20)
  POS_SYNC_PERIOD            Stats period requested by admin sessions
  POS_DROP_STALE_SNAPSHOTS   '1' drops sync responses that arrive out of order
  POS_LOG_LEVEL              Logging level (default: INFO)
"""
from __future__ import annotations

import logging
import os
import sqlite3
import threading
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlparse

from dotenv import load_dotenv

load_dotenv()

# Key used by every till to persist the remote endpoint
API_URL_KEY = 'COFFE_BELL_API_URL'

DEFAULT_SYNC_INTERVAL = 30.0
DEFAULT_HTTP_TIMEOUT = 20.0

_LOGGING_CONFIGURED = False


def _env_string(name: str, default: Optional[str] = None) -> Optional[str]:
    """Return trimmed string-valued env vars, normalizing empty strings to None."""
    raw = os.getenv(name, default)
    if raw is None:
        return default
    if isinstance(raw, str):
        clean = raw.strip()
        return clean if clean else default
    return raw


def _env_float(name: str, default: float) -> float:
    try:
        value = float(_env_string(name) or default)
    except ValueError:
        return default
    return value if value >= 0 else default


@dataclass(frozen=True)
class PosSettings:
    api_url: Optional[str]
    settings_db: str
    sync_interval: float
    http_timeout: float
    sync_period: Optional[str]
    drop_stale: bool
    log_level: str


def load_settings() -> PosSettings:
    return PosSettings(
        api_url=_env_string('COFFEEBELL_API_URL'),
        settings_db=_env_string('POS_SETTINGS_DB', 'pos_settings.db'),
        sync_interval=_env_float('POS_SYNC_INTERVAL', DEFAULT_SYNC_INTERVAL),
        http_timeout=_env_float('POS_HTTP_TIMEOUT', DEFAULT_HTTP_TIMEOUT) or DEFAULT_HTTP_TIMEOUT,
        sync_period=_env_string('POS_SYNC_PERIOD'),
        drop_stale=_env_string('POS_DROP_STALE_SNAPSHOTS', '0') == '1',
        log_level=(_env_string('POS_LOG_LEVEL', 'INFO') or 'INFO').upper(),
    )


def configure_logging(level: str = 'INFO') -> None:
    """Configure root logging once per process."""
    global _LOGGING_CONFIGURED
    if _LOGGING_CONFIGURED:
        return
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s %(levelname)s %(name)s %(message)s',
    )
    _LOGGING_CONFIGURED = True


class SettingsStore:
    """Durable key/value settings kept in a small SQLite table."""

    def __init__(self, path: str = 'pos_settings.db'):
        self.path = path
        self._lock = threading.Lock()
        # ':memory:' databases vanish with their connection, so keep one open
        self._conn = sqlite3.connect(path, timeout=30, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS settings (
              key         TEXT PRIMARY KEY,
              value       TEXT NOT NULL
            )
        """)
        self._conn.commit()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            row = self._conn.execute('SELECT value FROM settings WHERE key=?', (key,)).fetchone()
        return row['value'] if row else None

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._conn.execute("""
                INSERT INTO settings (key, value) VALUES (?,?)
                ON CONFLICT(key) DO UPDATE SET value=excluded.value
            """, (key, value))
            self._conn.commit()

    def delete(self, key: str) -> None:
        with self._lock:
            self._conn.execute('DELETE FROM settings WHERE key=?', (key,))
            self._conn.commit()

    def close(self) -> None:
        with self._lock:
            self._conn.close()


def validate_api_url(url: Optional[str]) -> str:
    text = (url or '').strip()
    parsed = urlparse(text)
    if parsed.scheme not in ('http', 'https') or not parsed.netloc:
        raise ValueError('Invalid endpoint URL: expected an absolute http(s) address')
    return text


def load_api_url(store: SettingsStore, settings: Optional[PosSettings] = None) -> Optional[str]:
    if settings and settings.api_url:
        return settings.api_url
    return store.get(API_URL_KEY)


def save_api_url(store: SettingsStore, url: str) -> str:
    clean = validate_api_url(url)
    store.set(API_URL_KEY, clean)
    return clean
