import os
import shutil
import asyncio
import tempfile
import unittest
from time import time
import typing

from sdft.conf import ClientConfig, ServerConfig
from sdft.certs import generate_self_signed_cert
from sdft.utils import client_ssl_context
from sdft.relay.connection import Connection
from sdft.relay.server import RendezvousServer
from sdft.relay.serialization import TransferMessage, parse_response, response_types


class AsyncioTestCase(unittest.IsolatedAsyncioTestCase):

    TIMEOUT = 30.0

    maxDiff = None

    async def asyncSetUp(self):  # pylint: disable=C0103
        self.loop = asyncio.get_running_loop()  # pylint: disable=W0201
        self.add_timeout()

    def cancel(self):
        for task in asyncio.all_tasks(self.loop):
            if not task.done():
                task.print_stack()
                task.cancel()

    def add_timeout(self):
        if self.TIMEOUT:
            self.loop.call_later(self.TIMEOUT, self.check_timeout, time())

    def check_timeout(self, started):
        if time() - started >= self.TIMEOUT:
            self.cancel()
        else:
            self.loop.call_later(self.TIMEOUT, self.check_timeout, started)

    async def assertEventually(self, predicate: typing.Callable[[], bool], timeout: float = 5.0):  # pylint: disable=C0103
        started = time()
        while not predicate():
            if time() - started > timeout:
                self.fail("condition was not met in time")
            await asyncio.sleep(0.01)


class RendezvousTestCase(AsyncioTestCase):
    """
    Runs a transfer server with a throwaway certificate on an ephemeral
    loopback port.
    """

    server_settings: typing.Dict = {}

    async def asyncSetUp(self):
        await super().asyncSetUp()
        self.tmp_dir = tempfile.mkdtemp()  # pylint: disable=W0201
        self.addCleanup(shutil.rmtree, self.tmp_dir, True)
        cert_file = os.path.join(self.tmp_dir, 'cert', 'cert.pem')
        key_file = os.path.join(self.tmp_dir, 'cert', 'key.pem')
        generate_self_signed_cert(cert_file, key_file)
        self.server_conf = ServerConfig(  # pylint: disable=W0201
            interface='127.0.0.1', port=0, cert_file=cert_file, key_file=key_file, **self.server_settings
        )
        self.server = RendezvousServer(self.server_conf)  # pylint: disable=W0201
        await self.server.start()
        self.addAsyncCleanup(self.server.stop)
        self.registry = self.server.registry  # pylint: disable=W0201
        self.download_dir = os.path.join(self.tmp_dir, 'downloads')  # pylint: disable=W0201
        self.client_conf = ClientConfig(  # pylint: disable=W0201
            host='127.0.0.1', port=self.server.port, download_dir=self.download_dir, progress=False
        )

    async def connect(self) -> Connection:
        connection = await Connection.open('127.0.0.1', self.server.port, client_ssl_context())
        self.addAsyncCleanup(connection.close)
        return connection

    async def request(self, connection: Connection, message: TransferMessage) -> response_types:
        await connection.send(message)
        return await self.response(connection)

    async def response(self, connection: Connection) -> response_types:
        data = await connection.read_message()
        self.assertIsNotNone(data, "connection closed without a response")
        return parse_response(data)
