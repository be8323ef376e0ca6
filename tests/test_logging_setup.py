#!/usr/bin/env python3
"""
Tests for logging setup and sensitive data filtering.
"""

import logging
import os
import shutil
import sys
import tempfile
import unittest

# Add the project directory to the path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from org_link.logging_setup import SensitiveDataFilter, LoggingManager, LOG_FILE_NAME


class TestSensitiveDataFilter(unittest.TestCase):
    """Test cases for SensitiveDataFilter."""

    def setUp(self):
        self.filter = SensitiveDataFilter()

    def filtered(self, msg, *args):
        record = logging.LogRecord('test', logging.INFO, __file__, 1, msg, args, None)
        self.assertTrue(self.filter.filter(record))
        return record.getMessage()

    def test_filter_patterns(self):
        test_cases = [
            ('password=secret123', 'password=****'),
            ('token=abc123def456', 'token=****'),
            ('APIToken:ghp_abc123', 'APIToken:****'),
            ('{"bind_password": "topsecret"}', '{"bind_password": "****"}'),
            ('Authorization: Bearer ghp_abcdef123456', 'Authorization: Bearer ****'),
            ('Normal message without secrets', 'Normal message without secrets'),
            ("Linked 'geoff' to 'contoso-geoff' in 'Contoso'", "Linked 'geoff' to 'contoso-geoff' in 'Contoso'"),
        ]

        for input_msg, expected in test_cases:
            self.assertEqual(self.filtered(input_msg), expected)

    def test_filter_formats_arguments_first(self):
        result = self.filtered('headers %s', {'Authorization': 'Bearer ghp_abcdef123456'})

        self.assertNotIn('ghp_abcdef123456', result)

    def test_credential_file_content_is_masked(self):
        result = self.filtered("APIToken:abc123\nOrganisation:Contoso")

        self.assertNotIn('abc123', result)
        self.assertIn('Organisation:Contoso', result)


class TestLoggingManager(unittest.TestCase):
    """Test cases for LoggingManager."""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp(prefix='org_link_logs_')
        self.root_logger = logging.getLogger()
        self.saved_handlers = list(self.root_logger.handlers)
        self.saved_level = self.root_logger.level

    def tearDown(self):
        for handler in self.root_logger.handlers:
            handler.close()
        self.root_logger.handlers[:] = self.saved_handlers
        self.root_logger.setLevel(self.saved_level)
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_file_logging_scrubs_secrets(self):
        manager = LoggingManager()
        manager.setup_logging({'level': 'DEBUG', 'log_dir': self.temp_dir, 'console_output': False})

        logging.getLogger('org_link.test').info('token=supersecretvalue')
        for handler in self.root_logger.handlers:
            handler.flush()

        with open(os.path.join(self.temp_dir, LOG_FILE_NAME), encoding='utf-8') as f:
            content = f.read()
        self.assertIn('token=****', content)
        self.assertNotIn('supersecretvalue', content)

    def test_setup_is_idempotent(self):
        manager = LoggingManager()
        config = {'log_dir': self.temp_dir, 'rotation': 'none', 'console_output': True}

        manager.setup_logging(config)
        handler_count = len(self.root_logger.handlers)
        manager.setup_logging(config)

        self.assertEqual(len(self.root_logger.handlers), handler_count)
        self.assertEqual(handler_count, 2)

    def test_old_rotated_logs_removed(self):
        old_log = os.path.join(self.temp_dir, LOG_FILE_NAME + '.2020-01-01')
        with open(old_log, 'w') as f:
            f.write('old')
        os.utime(old_log, (0, 0))

        manager = LoggingManager()
        manager.setup_logging({'log_dir': self.temp_dir, 'retention_days': 7, 'console_output': False})

        self.assertFalse(os.path.exists(old_log))


if __name__ == "__main__":
    unittest.main()
