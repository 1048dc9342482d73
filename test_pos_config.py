import os
import unittest
from unittest import mock

import pos_config


class SettingsStoreTest(unittest.TestCase):
    def setUp(self):
        self.store = pos_config.SettingsStore(':memory:')

    def tearDown(self):
        self.store.close()

    def test_set_get_delete(self):
        self.assertIsNone(self.store.get('theme'))
        self.store.set('theme', 'dark')
        self.store.set('theme', 'light')
        self.assertEqual(self.store.get('theme'), 'light')
        self.store.delete('theme')
        self.assertIsNone(self.store.get('theme'))

    def test_api_url_roundtrip(self):
        saved = pos_config.save_api_url(self.store, '  https://script.example.test/exec  ')
        self.assertEqual(saved, 'https://script.example.test/exec')
        self.assertEqual(self.store.get(pos_config.API_URL_KEY), saved)
        self.assertEqual(pos_config.load_api_url(self.store), saved)

    def test_env_url_wins_over_stored(self):
        self.store.set(pos_config.API_URL_KEY, 'https://stored.example.test/exec')
        with mock.patch.dict(os.environ, {'COFFEEBELL_API_URL': 'https://env.example.test/exec'}):
            settings = pos_config.load_settings()
        self.assertEqual(pos_config.load_api_url(self.store, settings), 'https://env.example.test/exec')

    def test_invalid_urls_are_not_saved(self):
        for bad in ('', '   ', 'script.example.test/exec', 'ftp://example.test', None):
            with self.assertRaises(ValueError):
                pos_config.save_api_url(self.store, bad)
        self.assertIsNone(self.store.get(pos_config.API_URL_KEY))


class LoadSettingsTest(unittest.TestCase):
    def test_defaults(self):
        env = {k: '' for k in ('COFFEEBELL_API_URL', 'POS_SETTINGS_DB', 'POS_SYNC_INTERVAL', 'POS_HTTP_TIMEOUT',
                               'POS_SYNC_PERIOD', 'POS_DROP_STALE_SNAPSHOTS', 'POS_LOG_LEVEL')}
        with mock.patch.dict(os.environ, env):
            settings = pos_config.load_settings()
        self.assertIsNone(settings.api_url)
        self.assertEqual(settings.settings_db, 'pos_settings.db')
        self.assertEqual(settings.sync_interval, 30.0)
        self.assertEqual(settings.http_timeout, 20.0)
        self.assertIsNone(settings.sync_period)
        self.assertFalse(settings.drop_stale)
        self.assertEqual(settings.log_level, 'INFO')

    def test_overrides(self):
        env = {
            'POS_SYNC_INTERVAL': '5',
            'POS_HTTP_TIMEOUT': 'abc',
            'POS_SYNC_PERIOD': ' week ',
            'POS_DROP_STALE_SNAPSHOTS': '1',
            'POS_LOG_LEVEL': 'debug',
        }
        with mock.patch.dict(os.environ, env):
            settings = pos_config.load_settings()
        self.assertEqual(settings.sync_interval, 5.0)
        self.assertEqual(settings.http_timeout, 20.0)
        self.assertEqual(settings.sync_period, 'week')
        self.assertTrue(settings.drop_stale)
        self.assertEqual(settings.log_level, 'DEBUG')


if __name__ == '__main__':
    unittest.main()
