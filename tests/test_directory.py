#!/usr/bin/env python3
"""
Unit tests for the directory attribute client.

The ldap3 Server and Connection classes are mocked so no directory server is
needed.
"""

import os
import sys
import unittest
from unittest.mock import Mock, patch

# Add the project directory to the path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from ldap3 import MODIFY_REPLACE
from ldap3.core.exceptions import LDAPSocketOpenError, LDAPResponseTimeoutError

from org_link.directory import DirectoryAttributeClient, DirectoryConnectionError, DirectoryQueryError
from org_link.errors import ConfigurationError, NotFound, Timeout, TransportError


def make_entry(dn, attributes):
    entry = Mock()
    entry.entry_dn = dn
    entry.entry_attributes_as_dict = attributes
    return entry


class TestDirectoryAttributeClient(unittest.TestCase):
    """Test cases for DirectoryAttributeClient."""

    def setUp(self):
        self.config = {
            'server_url': 'ldaps://ldap.example.com:636',
            'bind_dn': 'CN=svc,OU=Service,DC=example,DC=com',
            'bind_password': 'password123',
            'user_base_dn': 'OU=Users,DC=example,DC=com',
        }

        server_patcher = patch('org_link.directory.Server')
        connection_patcher = patch('org_link.directory.Connection')
        self.mock_server = server_patcher.start()
        self.mock_connection_class = connection_patcher.start()
        self.addCleanup(server_patcher.stop)
        self.addCleanup(connection_patcher.stop)

        self.conn = Mock()
        self.conn.open.return_value = True
        self.conn.bind.return_value = True
        self.conn.search.return_value = True
        self.conn.modify.return_value = True
        self.conn.result = {'result': 0, 'description': 'success'}
        self.conn.entries = []
        self.mock_connection_class.return_value = self.conn

        self.client = DirectoryAttributeClient(self.config)

    def test_initialization_defaults(self):
        self.assertTrue(self.client.use_ssl)
        self.assertFalse(self.client.start_tls)
        self.assertEqual(self.client.identity_attribute, 'sAMAccountName')
        self.assertEqual(self.client.link_attribute, 'info')

    def test_initialization_requires_bind_settings(self):
        with self.assertRaises(ConfigurationError):
            DirectoryAttributeClient({'server_url': 'ldap://ldap.example.com'})

    def test_connect_binds_once(self):
        self.assertTrue(self.client.connect())
        self.assertTrue(self.client.connect())

        self.assertEqual(self.conn.bind.call_count, 1)
        kwargs = self.mock_server.call_args[1]
        self.assertTrue(kwargs['use_ssl'])
        self.assertEqual(kwargs['connect_timeout'], 10)

    def test_connect_bind_failure(self):
        self.conn.bind.return_value = False
        self.conn.result = {'result': 49, 'description': 'invalidCredentials'}

        with self.assertRaises(DirectoryConnectionError) as ctx:
            self.client.connect()

        self.assertIsInstance(ctx.exception, TransportError)
        self.assertIn('Bind failed', str(ctx.exception))
        self.assertEqual(self.mock_connection_class.call_count, 1)

    def test_connect_socket_error_is_not_retried(self):
        self.conn.open.side_effect = LDAPSocketOpenError('unreachable')

        with self.assertRaises(DirectoryConnectionError):
            self.client.connect()

        self.assertEqual(self.conn.open.call_count, 1)

    def test_connect_timeout(self):
        self.conn.open.side_effect = LDAPResponseTimeoutError('no answer')

        with self.assertRaises(Timeout):
            self.client.connect()

    def test_get_external_id(self):
        self.conn.entries = [make_entry('CN=Geoff,OU=Users,DC=example,DC=com',
                                        {'sAMAccountName': ['geoff'], 'info': ['contoso-geoff']})]

        self.assertEqual(self.client.get_external_id('geoff'), 'contoso-geoff')

        kwargs = self.conn.search.call_args[1]
        self.assertEqual(kwargs['search_base'], 'OU=Users,DC=example,DC=com')
        self.assertEqual(kwargs['search_filter'], '(&(objectClass=person)(sAMAccountName=geoff))')
        self.assertEqual(kwargs['attributes'], ['sAMAccountName', 'info'])

    def test_get_external_id_empty_attribute(self):
        self.conn.entries = [make_entry('CN=Geoff,OU=Users,DC=example,DC=com',
                                        {'sAMAccountName': ['geoff'], 'info': []})]

        self.assertIsNone(self.client.get_external_id('geoff'))

    def test_get_external_id_absent_attribute(self):
        self.conn.entries = [make_entry('CN=Geoff,OU=Users,DC=example,DC=com',
                                        {'sAMAccountName': ['geoff']})]

        self.assertIsNone(self.client.get_external_id('geoff'))

    def test_get_external_id_unknown_user(self):
        self.conn.search.return_value = False
        self.conn.entries = []

        with self.assertRaises(NotFound):
            self.client.get_external_id('nobody')

    def test_search_filter_is_escaped(self):
        self.conn.search.return_value = False

        with self.assertRaises(NotFound):
            self.client.get_external_id('ev*il)(x')

        search_filter = self.conn.search.call_args[1]['search_filter']
        self.assertIn(r'ev\2ail\29\28x', search_filter.lower())

    def test_search_failure(self):
        self.conn.search.return_value = False
        self.conn.result = {'result': 50, 'description': 'insufficientAccessRights'}

        with self.assertRaises(DirectoryQueryError) as ctx:
            self.client.get_external_id('geoff')
        self.assertIn('insufficientAccessRights', str(ctx.exception))

    def test_set_external_id_replaces_value(self):
        dn = 'CN=Geoff,OU=Users,DC=example,DC=com'
        self.conn.entries = [make_entry(dn, {'sAMAccountName': ['geoff'], 'info': ['old']})]

        self.client.set_external_id('geoff', 'contoso-geoff')

        self.conn.modify.assert_called_once_with(dn, {'info': [(MODIFY_REPLACE, ['contoso-geoff'])]})

    def test_set_external_id_custom_attribute(self):
        self.config['link_attribute'] = 'employeeType'
        client = DirectoryAttributeClient(self.config)
        dn = 'CN=Geoff,OU=Users,DC=example,DC=com'
        self.conn.entries = [make_entry(dn, {'sAMAccountName': ['geoff']})]

        client.set_external_id('geoff', 'contoso-geoff')

        self.conn.modify.assert_called_once_with(dn, {'employeeType': [(MODIFY_REPLACE, ['contoso-geoff'])]})

    def test_set_external_id_rejected(self):
        self.conn.entries = [make_entry('CN=Geoff,OU=Users,DC=example,DC=com', {'sAMAccountName': ['geoff']})]
        self.conn.modify.return_value = False
        self.conn.result = {'result': 50, 'description': 'insufficientAccessRights'}

        with self.assertRaises(DirectoryQueryError):
            self.client.set_external_id('geoff', 'contoso-geoff')

    def test_set_external_id_unknown_user(self):
        self.conn.search.return_value = False

        with self.assertRaises(NotFound):
            self.client.set_external_id('nobody', 'contoso-nobody')
        self.conn.modify.assert_not_called()

    def test_clear_external_id(self):
        dn = 'CN=Geoff,OU=Users,DC=example,DC=com'
        self.conn.entries = [make_entry(dn, {'sAMAccountName': ['geoff'], 'info': ['contoso-geoff']})]

        self.client.clear_external_id('geoff')

        self.conn.modify.assert_called_once_with(dn, {'info': [(MODIFY_REPLACE, [])]})

    def test_find_internal_ids(self):
        self.conn.entries = [
            make_entry('CN=Geoff,OU=Users,DC=example,DC=com', {'sAMAccountName': ['geoff'], 'info': ['contoso-geoff']}),
            make_entry('CN=G2,OU=Users,DC=example,DC=com', {'sAMAccountName': ['geoff2'], 'info': ['contoso-geoff']}),
        ]

        self.assertEqual(self.client.find_internal_ids('contoso-geoff'), ['geoff', 'geoff2'])
        self.assertEqual(self.conn.search.call_args[1]['search_filter'],
                         '(&(objectClass=person)(info=contoso-geoff))')

    def test_domain_base_from_bind_dn(self):
        del self.config['user_base_dn']
        client = DirectoryAttributeClient(self.config)

        self.assertEqual(client._get_domain_base(), 'DC=example,DC=com')

    def test_context_manager_disconnects(self):
        with self.client as client:
            client.connect()

        self.conn.unbind.assert_called_once()
        self.assertIsNone(self.client.connection)


if __name__ == "__main__":
    unittest.main()
