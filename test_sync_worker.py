import threading
import time
import unittest

from pos_store import LocalStore
from pos_transport import InvalidResponse, NetworkError
from pos_views import Role, ViewRegistry
from sync_worker import SYNC_ACTION, SyncScheduler


class ScriptedTransport:
    """Plays back one outcome per call; callables build the answer, exceptions are raised."""

    def __init__(self, outcomes=None, default=None, on_call=None):
        self.outcomes = list(outcomes or [])
        self.default = {} if default is None else default
        self.on_call = on_call
        self.calls = []
        self._lock = threading.Lock()

    def call(self, action, payload=None, method='GET'):
        with self._lock:
            self.calls.append((action, dict(payload or {}), method))
            index = len(self.calls) - 1
        outcome = self.outcomes[index] if index < len(self.outcomes) else self.default
        if self.on_call:
            self.on_call(index + 1)
        if callable(outcome):
            outcome = outcome(index + 1)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def _counting_views(*view_ids):
    counts = {v: 0 for v in view_ids}

    def make(view_id):
        def render(store):
            counts[view_id] += 1
            return {'view': view_id, 'orders': len(store.orders)}
        return render

    return ViewRegistry({v: make(v) for v in view_ids}), counts


def _wait_for(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.005)
    return predicate()


class SyncSchedulerTest(unittest.TestCase):
    def setUp(self):
        self.store = LocalStore()
        self.views, self.counts = _counting_views('tables', 'kitchen')
        self.scheduler = None

    def tearDown(self):
        if self.scheduler is not None:
            self.scheduler.stop()

    def _scheduler(self, transport, interval=60.0, **kwargs):
        self.scheduler = SyncScheduler(transport, self.store, self.views, interval=interval, **kwargs)
        return self.scheduler

    def test_start_fetches_immediately_with_role(self):
        transport = ScriptedTransport([{'tables': [{'id': 1}], 'timestamp': 10}])
        task = self._scheduler(transport).start('mozo')
        self.assertEqual(transport.calls, [(SYNC_ACTION, {'role': 'waiter'}, 'GET')])
        self.assertEqual(task.role, Role.WAITER)
        self.assertEqual(self.store.tables, [{'id': 1}])
        self.assertEqual(self.store.server_timestamp, 10)

    def test_admin_period_is_sent(self):
        transport = ScriptedTransport()
        self._scheduler(transport).start(Role.ADMIN, 'week')
        self.assertEqual(transport.calls[0][1], {'role': 'admin', 'period': 'week'})

    def test_failures_do_not_stop_polling(self):
        failures = [
            NetworkError('offline', SYNC_ACTION),
            InvalidResponse('html page', SYNC_ACTION, body='<html>'),
            NetworkError('timeout', SYNC_ACTION),
            {'success': False, 'message': 'sheet locked'},
            InvalidResponse('html page', SYNC_ACTION),
        ]
        outcomes = failures + [{'orders': [{'id': 'O1', 'status': 'pending'}]}]
        scheduler = None

        def stop_after_success(n):
            if n == len(outcomes) + 1:
                scheduler.stop()

        transport = ScriptedTransport(outcomes, on_call=stop_after_success)
        scheduler = self._scheduler(transport, interval=0)
        task = scheduler.start(Role.KITCHEN)
        task.join(timeout=5)

        self.assertFalse(task.thread.is_alive())
        self.assertEqual(len(transport.calls), len(outcomes) + 1)
        self.assertEqual(task.attempts, len(outcomes) + 1)
        self.assertEqual(task.failures, len(failures))
        self.assertEqual(self.store.orders, [{'id': 'O1', 'status': 'pending'}])

    def test_failed_poll_leaves_store_untouched(self):
        transport = ScriptedTransport([NetworkError('offline', SYNC_ACTION)])
        task = self._scheduler(transport).start(Role.WAITER)
        self.assertIsNone(self.store.last_sync_at)
        self.assertEqual(task.failures, 1)
        self.assertEqual(self.scheduler.status()['last_error_kind'], 'network_error')

    def test_no_reconcile_after_stop(self):
        transport = ScriptedTransport(default={'orders': [{'id': 'O1'}]})
        scheduler = self._scheduler(transport, interval=0.005)
        task = scheduler.start(Role.KITCHEN)
        self.assertTrue(_wait_for(lambda: len(transport.calls) >= 3))
        # holding the store lock means no reconcile is half way through
        with self.store.lock:
            scheduler.stop()
            applied_seq = self.store.last_applied_seq
        task.join(timeout=2)
        time.sleep(0.05)
        self.assertFalse(task.thread.is_alive())
        self.assertEqual(self.store.last_applied_seq, applied_seq)
        self.assertFalse(scheduler.status()['running'])

    def test_answer_for_cancelled_task_is_discarded(self):
        scheduler = None
        transport = ScriptedTransport(
            [{'orders': [{'id': 'late'}]}],
            on_call=lambda n: scheduler.stop(),
        )
        scheduler = self._scheduler(transport)
        task = scheduler.start(Role.CASHIER)
        self.assertTrue(task.cancelled)
        self.assertIsNone(task.thread)
        self.assertEqual(self.store.orders, [])
        self.assertIsNone(self.store.last_sync_at)

    def test_restart_cancels_previous_task(self):
        transport = ScriptedTransport()
        scheduler = self._scheduler(transport)
        first = scheduler.start(Role.WAITER)
        second = scheduler.start(Role.KITCHEN)
        self.assertTrue(first.cancelled)
        self.assertFalse(second.cancelled)
        self.assertGreater(second.generation, first.generation)
        self.assertIs(scheduler.task, second)
        self.assertEqual(transport.calls[-1][1], {'role': 'kitchen'})

    def test_stop_is_idempotent(self):
        scheduler = self._scheduler(ScriptedTransport())
        scheduler.stop()
        scheduler.start(Role.PUBLIC)
        scheduler.stop()
        scheduler.stop()
        self.assertIsNone(scheduler.task)

    def test_only_active_view_is_rerendered(self):
        transport = ScriptedTransport([{'orders': [{'id': 'O1'}]}, {'orders': [{'id': 'O1'}, {'id': 'O2'}]}])
        scheduler = self._scheduler(transport)
        self.views.activate('kitchen', self.store)
        self.assertEqual(self.counts, {'tables': 0, 'kitchen': 1})

        scheduler.start(Role.KITCHEN)
        self.assertTrue(scheduler.resync())
        self.assertEqual(self.counts, {'tables': 0, 'kitchen': 3})
        self.assertEqual(self.views.last_rendered['kitchen'], {'view': 'kitchen', 'orders': 2})

    def test_unchanged_snapshot_skips_render(self):
        snapshot = {'tables': [{'id': 1}]}
        transport = ScriptedTransport([snapshot, snapshot])
        scheduler = self._scheduler(transport)
        self.views.activate('tables', self.store)
        scheduler.start(Role.WAITER)
        scheduler.resync()
        self.assertEqual(self.counts['tables'], 2)

    def test_crashing_renderer_does_not_end_polling(self):
        renders = []

        def broken(store):
            renders.append(len(store.orders))
            raise ValueError('bad row')

        # every answer differs, so every poll re-renders
        transport = ScriptedTransport(default=lambda n: {'orders': [{'id': i} for i in range(n)]})
        scheduler = self._scheduler(transport, interval=0.001)
        task = scheduler.start(Role.KITCHEN)
        self.views.register('broken', broken)
        self.views.active = 'broken'

        with self.assertLogs('sync_worker', level='ERROR') as logs:
            self.assertTrue(_wait_for(lambda: len(renders) >= 5))
        polled = len(transport.calls)
        self.assertTrue(_wait_for(lambda: len(transport.calls) >= polled + 5))
        self.assertTrue(task.thread.is_alive())
        self.assertIn('poll crashed', logs.output[0])

    def test_resync_without_task(self):
        transport = ScriptedTransport()
        scheduler = self._scheduler(transport)
        self.assertFalse(scheduler.resync())
        self.assertEqual(transport.calls, [])
        self.assertEqual(scheduler.status(), {'running': False, 'last_sync_at': None})


if __name__ == '__main__':
    unittest.main()
