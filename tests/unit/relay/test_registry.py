import asyncio
import threading
import unittest

from sdft.error import CodeCollisionError, CodeSpaceExhaustedError
from sdft.relay.registry import Session, SessionRegistry
from sdft.relay.serialization import UPLOAD, DOWNLOAD


def upload_session(**kwargs):
    return Session(UPLOAD, file_name='notes.txt', file_type='file', **kwargs)


class TestSessionRegistry(unittest.TestCase):

    def test_allocate_uses_configured_length_and_alphabet(self):
        registry = SessionRegistry(code_size=7, allowed_chars='XYZ')
        for _ in range(50):
            code = registry.allocate()
            self.assertEqual(7, len(code))
            self.assertTrue(set(code).issubset(set('XYZ')))
            registry.release(code)
        self.assertEqual(4, len(registry.allocate(4)))

    def test_default_code_is_five_uppercase_alphanumerics(self):
        code = SessionRegistry().allocate()
        self.assertEqual(5, len(code))
        self.assertTrue(code.isalnum())
        self.assertEqual(code, code.upper())

    def test_codes_are_unique_until_released(self):
        registry = SessionRegistry(code_size=1, allowed_chars='AB')
        first = registry.allocate()
        registry.register(first, upload_session())
        second = registry.allocate()
        registry.register(second, upload_session())
        self.assertEqual({'A', 'B'}, {first, second})
        with self.assertRaises(CodeSpaceExhaustedError):
            registry.allocate()
        registry.release(first)
        self.assertEqual(first, registry.allocate())

    def test_allocated_codes_are_reserved_before_registration(self):
        registry = SessionRegistry(code_size=1, allowed_chars='AB')
        self.assertNotEqual(registry.allocate(), registry.allocate())
        with self.assertRaises(CodeSpaceExhaustedError):
            registry.allocate()

    def test_register_collision(self):
        registry = SessionRegistry()
        registry.register('ABCDE', upload_session())
        with self.assertRaises(CodeCollisionError):
            registry.register('ABCDE', upload_session())
        self.assertEqual(1, len(registry))

    def test_lookup_and_release(self):
        registry = SessionRegistry()
        session = upload_session(password='secret')
        code = registry.allocate()
        registry.register(code, session)
        self.assertIs(session, registry.lookup(code))
        self.assertEqual(code, session.code)
        self.assertIn(code, registry)
        self.assertIs(session, registry.release(code))
        self.assertIsNone(registry.release(code))
        self.assertIsNone(registry.lookup(code))
        self.assertNotIn(code, registry)

    def test_mark_busy_first_caller_wins(self):
        registry = SessionRegistry()
        session = upload_session()
        registry.register('CODE1', session)
        self.assertFalse(session.busy)
        self.assertTrue(registry.mark_busy('CODE1'))
        self.assertFalse(registry.mark_busy('CODE1'))
        self.assertTrue(session.busy)
        self.assertFalse(registry.mark_busy('NOPE1'))

    def test_concurrent_allocation(self):
        registry = SessionRegistry(code_size=3)
        errors = []

        def worker():
            try:
                for _ in range(200):
                    registry.register(registry.allocate(), Session(DOWNLOAD))
            except Exception as err:  # pylint: disable=broad-except
                errors.append(err)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        self.assertListEqual([], errors)
        self.assertEqual(1600, len(registry))


class TestSession(unittest.TestCase):

    def test_pair_hands_over_connection_once(self):
        loop = asyncio.new_event_loop()
        self.addCleanup(loop.close)
        pairing = loop.create_future()
        session = upload_session(pairing=pairing)
        downloader = object()
        self.assertTrue(session.pair(downloader))
        self.assertFalse(session.pair(object()))
        self.assertIs(downloader, pairing.result())

    def test_pair_fails_once_uploader_is_gone(self):
        loop = asyncio.new_event_loop()
        self.addCleanup(loop.close)
        pairing = loop.create_future()
        pairing.cancel()
        self.assertFalse(upload_session(pairing=pairing).pair(object()))
        self.assertFalse(Session(DOWNLOAD).pair(object()))

    def test_unknown_role(self):
        with self.assertRaises(AssertionError):
            Session('sideways')
