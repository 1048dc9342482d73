#!/usr/bin/env python3
"""
Coffee Bell Sync Worker

Keeps a LocalStore fresh by polling the remote `getSyncData` action for the
session's role, feeding every answer through the reconciler and re-rendering
only the view that is on screen.

Each start() opens a new task generation; stop() cancels it and any answer
that arrives for a cancelled task is discarded.

Env vars (headless mode):
  COFFEEBELL_API_URL   remote endpoint (or the value stored by the setup flow)
  POS_SYNC_ROLE        role to poll for (default: public)
  POS_SYNC_INTERVAL    seconds between polls (default: 30)

Run:
  python sync_worker.py
"""
from __future__ import annotations

import logging
import os
import threading
import time
from typing import Any, Dict, Optional

from pos_store import LocalStore, reconcile
from pos_transport import BusinessError, PosApiError, Transport, business_failure
from pos_views import Role, ViewRegistry, default_view, normalize_role

logger = logging.getLogger(__name__)

SYNC_ACTION = 'getSyncData'


class SyncTask:
    """Handle for one polling generation."""

    def __init__(self, generation: int, role: Role, period: Optional[str] = None):
        self.generation = generation
        self.role = role
        self.period = period
        self.thread: Optional[threading.Thread] = None
        self.attempts = 0
        self.failures = 0
        self.last_error: Optional[PosApiError] = None
        self.last_success_at: Optional[float] = None
        self._stop = threading.Event()

    @property
    def cancelled(self) -> bool:
        return self._stop.is_set()

    def cancel(self) -> None:
        self._stop.set()

    def wait(self, interval: float) -> bool:
        """Sleep for one period; True once the task has been cancelled."""
        return self._stop.wait(interval)

    def join(self, timeout: Optional[float] = None) -> None:
        if self.thread is not None:
            self.thread.join(timeout)

    def params(self) -> Dict[str, Any]:
        params: Dict[str, Any] = {'role': self.role.value}
        if self.period:
            params['period'] = self.period
        return params


class SyncScheduler:
    def __init__(self, transport: Transport, store: LocalStore, views: ViewRegistry,
                 interval: float = 30.0, drop_stale: bool = False):
        self.transport = transport
        self.store = store
        self.views = views
        self.interval = interval
        self.drop_stale = drop_stale
        self._lock = threading.Lock()
        self._task: Optional[SyncTask] = None
        self._generation = 0
        self._seq = 0

    @property
    def task(self) -> Optional[SyncTask]:
        return self._task

    def start(self, role: Any, period: Optional[str] = None) -> SyncTask:
        self.stop()
        with self._lock:
            self._generation += 1
            task = SyncTask(self._generation, normalize_role(role), period)
            self._task = task
        logger.info("Sync task %s starting (role=%s, interval=%ss)", task.generation, task.role.value, self.interval)
        # First paint should not wait a full period
        self._poll(task)
        if task.cancelled:
            return task
        task.thread = threading.Thread(
            target=self._run,
            args=(task,),
            name=f'pos-sync-{task.generation}',
            daemon=True,
        )
        task.thread.start()
        return task

    def stop(self) -> None:
        with self._lock:
            task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        logger.info("Sync task %s stopped after %d poll(s)", task.generation, task.attempts)

    def resync(self) -> bool:
        """One out-of-band fetch for the current role, e.g. after a write."""
        task = self._task
        if task is None or task.cancelled:
            logger.debug("Resync skipped: no active sync task")
            return False
        return self._poll(task)

    def status(self) -> Dict[str, Any]:
        task = self._task
        with self.store.lock:
            last_sync_at = self.store.last_sync_at
        if task is None:
            return {'running': False, 'last_sync_at': last_sync_at}
        return {
            'running': not task.cancelled,
            'role': task.role.value,
            'generation': task.generation,
            'attempts': task.attempts,
            'failures': task.failures,
            'last_error': str(task.last_error) if task.last_error else None,
            'last_error_kind': task.last_error.kind.value if task.last_error else None,
            'last_sync_at': last_sync_at,
        }

    def _next_seq(self) -> int:
        with self._lock:
            self._seq += 1
            return self._seq

    def _run(self, task: SyncTask) -> None:
        while not task.wait(self.interval):
            try:
                self._poll(task)
            except Exception:
                # keep polling; a broken render must not end the session's sync
                logger.exception("Sync task %s poll crashed", task.generation)

    def _poll(self, task: SyncTask) -> bool:
        if task.cancelled:
            return False
        seq = self._next_seq()
        with self._lock:
            task.attempts += 1
        try:
            snapshot = self.transport.call(SYNC_ACTION, task.params(), 'GET')
            message = business_failure(snapshot)
            if message:
                raise BusinessError(message, SYNC_ACTION)
            with self.store.lock:
                if task.cancelled:
                    logger.debug("Dropping sync answer for cancelled task %s", task.generation)
                    return False
                changed = reconcile(self.store, snapshot, seq=seq, drop_stale=self.drop_stale)
                if changed:
                    self.views.refresh_active(self.store)
        except PosApiError as exc:
            with self._lock:
                task.failures += 1
                task.last_error = exc
            logger.warning("Sync poll failed (role=%s, kind=%s): %s", task.role.value, exc.kind.value, exc)
            return False
        task.last_error = None
        task.last_success_at = time.time()
        logger.debug("Sync poll %s applied (changed=%s)", seq, changed)
        return True


def main():
    import pos_config

    settings = pos_config.load_settings()
    pos_config.configure_logging(settings.log_level)
    url = pos_config.load_api_url(pos_config.SettingsStore(settings.settings_db), settings)
    if not url:
        logger.error("No endpoint configured; set COFFEEBELL_API_URL or run the setup flow first")
        return
    role = normalize_role(os.getenv('POS_SYNC_ROLE', 'public'))
    store = LocalStore()
    views = ViewRegistry()
    views.add_listener(lambda view_id, rendered: logger.info(
        "[sync] %s refreshed: %d tables, %d products, %d orders",
        view_id, len(store.tables), len(store.products), len(store.orders)))
    views.activate(default_view(role), store)
    scheduler = SyncScheduler(
        Transport(url, timeout=settings.http_timeout),
        store,
        views,
        interval=settings.sync_interval,
        drop_stale=settings.drop_stale,
    )
    scheduler.start(role, settings.sync_period if role is Role.ADMIN else None)
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        logger.info("[sync] exiting on Ctrl+C")
    finally:
        scheduler.stop()


if __name__ == '__main__':
    main()
