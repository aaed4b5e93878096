import os
import ssl
import shutil
import tempfile
import unittest
import contextlib
from io import StringIO

from sdft.cli import (
    main, server_main, ensure_certificate, get_server_argument_parser, setup_logging, CONSOLE_HANDLER, log
)
from sdft.conf import ServerConfig
from sdft.error import CertificateMissingError
from sdft.utils import server_ssl_context


class CLITest(unittest.TestCase):

    def setUp(self):
        self.tmp_dir = tempfile.mkdtemp()
        self.addCleanup(shutil.rmtree, self.tmp_dir)

    def run_main(self, func, argv):
        stdout, stderr = StringIO(), StringIO()
        with contextlib.redirect_stdout(stdout), contextlib.redirect_stderr(stderr):
            code = func(argv)
        return code, stdout.getvalue(), stderr.getvalue()

    def test_help_without_action(self):
        code, stdout, _ = self.run_main(main, [])
        self.assertEqual(0, code)
        self.assertIn('--upload', stdout)
        self.assertIn('--download', stdout)
        self.assertIn('--password', stdout)

    def test_version(self):
        stdout = StringIO()
        with contextlib.redirect_stdout(stdout):
            with self.assertRaises(SystemExit) as cm:
                main(['--version'])
        self.assertEqual(0, cm.exception.code)
        self.assertIn('sdft 1.0.0', stdout.getvalue())

    def test_unreachable_server_exits_with_error(self):
        code, _, stderr = self.run_main(main, ['-d', 'ABCDE', '-l', '127.0.0.1', '-n', '1'])
        self.assertEqual(1, code)
        self.assertIn('Connection failed', stderr)

    def test_missing_upload_path_exits_with_error(self):
        code, _, stderr = self.run_main(
            main, ['-u', os.path.join(self.tmp_dir, 'missing'), '-l', '127.0.0.1', '-n', '1']
        )
        self.assertEqual(1, code)
        self.assertIn('File not found', stderr)

    def test_server_without_certificate(self):
        code, _, stderr = self.run_main(server_main, [
            '--cert-file', os.path.join(self.tmp_dir, 'cert.pem'),
            '--key-file', os.path.join(self.tmp_dir, 'key.pem'),
            '--config', os.path.join(self.tmp_dir, 'nothing.yml'),
        ])
        self.assertEqual(1, code)
        self.assertIn("Cannot find provided configuration file", stderr)

        code, _, stderr = self.run_main(server_main, [
            '--cert-file', os.path.join(self.tmp_dir, 'cert.pem'),
            '--key-file', os.path.join(self.tmp_dir, 'key.pem'),
        ])
        self.assertEqual(1, code)
        self.assertIn("--generate-cert", stderr)

    def test_generate_certificate(self):
        args = get_server_argument_parser().parse_args([
            '--generate-cert',
            '--cert-file', os.path.join(self.tmp_dir, 'cert', 'cert.pem'),
            '--key-file', os.path.join(self.tmp_dir, 'cert', 'key.pem'),
        ])
        self.assertTrue(args.generate_cert)
        conf = ServerConfig.create_from_arguments(args, {})
        with self.assertRaises(CertificateMissingError):
            ensure_certificate(conf, False)
        ensure_certificate(conf, True)
        self.assertTrue(os.path.isfile(conf.cert_file))
        self.assertEqual(0o600, os.stat(conf.key_file).st_mode & 0o777)
        self.assertIsInstance(server_ssl_context(conf.cert_file, conf.key_file), ssl.SSLContext)
        modified = os.path.getmtime(conf.cert_file)
        ensure_certificate(conf, True)
        self.assertEqual(modified, os.path.getmtime(conf.cert_file))

    def test_logging_handler_installed_once(self):
        self.addCleanup(log.removeHandler, CONSOLE_HANDLER)
        setup_logging(verbose=True)
        setup_logging(verbose=True)
        self.assertEqual(1, log.handlers.count(CONSOLE_HANDLER))
        setup_logging(quiet=True)
        self.assertNotIn(CONSOLE_HANDLER, log.handlers)
