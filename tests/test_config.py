import os
import shutil
import tempfile
import unittest

from config import load_config, validate
from errors import InvalidParameter
from tests.fakes import make_config


class ConfigTest(unittest.TestCase):

    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()
        self.path = os.path.join(self.tmpdir, 'rss.conf')

    def tearDown(self):
        shutil.rmtree(self.tmpdir, ignore_errors=True)

    def write(self, text):
        with open(self.path, 'w') as f:
            f.write(text)

    def test_defaults_fill_optional_sections(self):
        self.write('[Main]\nUrl = https://newsblur.com\nUsername = reader\nPassword = secret\n')

        config = load_config(self.path)

        self.assertEqual(config['Main'].getint('Interval'), 120)
        self.assertEqual(config['Sync'].getint('CutoffMonths'), 3)
        self.assertFalse(config['Connector'].getboolean('Enabled'))
        self.assertEqual(config['Database']['DB'], 'newsblur_sync.db')

    def test_missing_credentials(self):
        self.write('[Main]\nUrl = https://newsblur.com\n')

        with self.assertRaises(InvalidParameter) as ctx:
            load_config(self.path)

        self.assertIn('Main.Username', str(ctx.exception))
        self.assertIn('Main.Password', str(ctx.exception))

    def test_unreadable_file(self):
        with self.assertRaises(InvalidParameter):
            load_config(os.path.join(self.tmpdir, 'nope.conf'))

    def test_enabled_connector_needs_host(self):
        config = make_config(':memory:', connector=True)
        config['Connector']['Host'] = ''

        with self.assertRaises(InvalidParameter) as ctx:
            validate(config)

        self.assertIn('Connector.Host', str(ctx.exception))

    def test_disabled_connector_is_not_checked(self):
        config = make_config(':memory:')
        config['Connector']['Host'] = ''
        self.assertIs(validate(config), config)
