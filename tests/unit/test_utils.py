import os
import ssl
import shutil
import tempfile
import unittest
from unittest import mock

from cryptography import x509
from cryptography.x509.oid import NameOID

from sdft import utils
from sdft.certs import generate_self_signed_cert


class UtilsTest(unittest.TestCase):

    def test_passwords_match(self):
        self.assertTrue(utils.passwords_match('correct horse', 'correct horse'))
        self.assertFalse(utils.passwords_match('correct horse', 'correct hors'))
        self.assertFalse(utils.passwords_match('correct horse', ''))
        self.assertTrue(utils.passwords_match('pässwörd', 'pässwörd'))

    def test_internal_ips(self):
        self.assertTrue(utils.is_internal_ip('127.0.0.1'))
        self.assertTrue(utils.is_internal_ip('169.254.3.4'))
        self.assertTrue(utils.is_internal_ip('not an ip'))
        self.assertFalse(utils.is_internal_ip('192.168.1.20'))
        self.assertFalse(utils.is_internal_ip('8.8.8.8'))

    def test_get_local_ip_without_network(self):
        with mock.patch('socket.socket.connect', side_effect=OSError("network is unreachable")):
            self.assertIsNone(utils.get_local_ip())

    def test_client_context_verification(self):
        context = utils.client_ssl_context()
        self.assertFalse(context.check_hostname)
        self.assertEqual(ssl.CERT_NONE, context.verify_mode)


class CertificateTest(unittest.TestCase):

    def setUp(self):
        self.tmp_dir = tempfile.mkdtemp()
        self.addCleanup(shutil.rmtree, self.tmp_dir)

    def test_generate_self_signed_cert(self):
        cert_path = os.path.join(self.tmp_dir, 'a', 'cert.pem')
        key_path = os.path.join(self.tmp_dir, 'b', 'key.pem')
        generate_self_signed_cert(cert_path, key_path, 'transfer.example.com', ['localhost'])
        with open(cert_path, 'rb') as f:
            cert = x509.load_pem_x509_certificate(f.read())
        self.assertEqual(
            'transfer.example.com', cert.subject.get_attributes_for_oid(NameOID.COMMON_NAME)[0].value
        )
        names = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
        self.assertListEqual(['transfer.example.com', 'localhost'], names.get_values_for_type(x509.DNSName))
        self.assertIsInstance(utils.server_ssl_context(cert_path, key_path), ssl.SSLContext)

        context = utils.client_ssl_context(ca_file=cert_path)
        self.assertTrue(context.check_hostname)
        self.assertEqual(ssl.CERT_REQUIRED, context.verify_mode)
