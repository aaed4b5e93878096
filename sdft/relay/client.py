import os
import asyncio
import typing
import logging
from sdft.conf import ClientConfig
from sdft.console import Console, Silent
from sdft.error import (
    HandshakeRejectedError, UnexpectedMessageError, MalformedMessageError, TransportError
)
from sdft.archive import StagedUpload, ARCHIVE_SUFFIX, stage_upload, unpack_download, remove_quietly
from sdft.utils import client_ssl_context, get_local_ip
from sdft.relay.connection import Connection, TRANSPORT_ERRORS
from sdft.relay.serialization import (
    READY, UploadIntent, DownloadIntent, FinalizeHandshake,
    PipingComplete, ErrorResponse, TransferMessage, parse_response
)

log = logging.getLogger(__name__)

INIT = 'init'
SENT_INTENT = 'sent_intent'
HAVE_CODE = 'have_code'
AWAIT_READY = 'await_ready'
TRANSFERRING = 'transferring'
AWAIT_PAIRING_COMPLETE = 'await_pairing_complete'
READY_SENT = 'ready_sent'
RECEIVING = 'receiving'
DONE = 'done'


class ReceivedArchive(typing.NamedTuple):
    archive: str
    file_name: str
    file_type: str
    file_size: int


async def read_response(connection: Connection, expected: typing.Type[TransferMessage]) -> TransferMessage:
    data = await connection.read_message()
    if data is None:
        raise TransportError("server closed the connection during the handshake")
    response = parse_response(data)
    if isinstance(response, ErrorResponse):
        raise HandshakeRejectedError(response.error)
    if not isinstance(response, expected):
        raise UnexpectedMessageError(expected.seq, getattr(response, 'seq', None))
    return response


class UploadDriver:
    def __init__(self, connection: Connection, console: typing.Optional[Console] = None,
                 chunk_size: int = 2 ** 16):
        self.connection = connection
        self.console = console or Silent()
        self.chunk_size = chunk_size
        self.state = INIT
        self.code: typing.Optional[str] = None

    async def run(self, staged: StagedUpload, password: typing.Optional[str] = None,
                  local_ip: typing.Optional[str] = None) -> str:
        await self.connection.send(UploadIntent(
            staged.file_name, staged.file_type, staged.file_size, password, local_ip
        ))
        self.state = SENT_INTENT
        response = await read_response(self.connection, FinalizeHandshake)
        self.code = response.code
        self.state = HAVE_CODE
        self.console.status(f"Your Code: {self.code}")

        self.state = AWAIT_READY
        await self.wait_for_ready()

        self.state = TRANSFERRING
        log.debug("sending %s (%i bytes)", staged.archive, staged.file_size)
        progress = self.console.progress("Uploading", staged.file_size)
        try:
            with open(staged.archive, 'rb') as archive:
                while True:
                    chunk = archive.read(self.chunk_size)
                    if not chunk:
                        break
                    await self.connection.write(chunk)
                    progress.update(len(chunk))
        finally:
            progress.close()
        await self.connection.close()
        self.state = DONE
        return self.code

    async def wait_for_ready(self):
        """
        Wait for the downloader's raw READY token. The server may instead send
        a json error record, which is reported with its reason.
        """
        try:
            ready = await self.connection.reader.readexactly(1)
            if ready == b'{':
                rest = await self.connection.read_message()
                if rest is None:
                    raise TransportError("connection closed before a download started")
                response = parse_response(ready + rest)
                if isinstance(response, ErrorResponse):
                    raise HandshakeRejectedError(response.error)
                raise UnexpectedMessageError(READY.decode(), getattr(response, 'seq', None))
            ready += await self.connection.reader.readexactly(len(READY) - 1)
        except asyncio.IncompleteReadError as err:
            raise TransportError("connection closed before a download started") from err
        if ready != READY:
            raise UnexpectedMessageError(READY.decode(), ready.decode(errors='replace'))


class DownloadDriver:
    def __init__(self, connection: Connection, console: typing.Optional[Console] = None,
                 chunk_size: int = 2 ** 16, download_dir: str = '.'):
        self.connection = connection
        self.console = console or Silent()
        self.chunk_size = chunk_size
        self.download_dir = download_dir
        self.state = INIT
        self.code: typing.Optional[str] = None

    async def run(self, client_code: str, password: typing.Optional[str] = None,
                  local_ip: typing.Optional[str] = None) -> ReceivedArchive:
        await self.connection.send(DownloadIntent(client_code, password, local_ip))
        self.state = SENT_INTENT
        response = await read_response(self.connection, FinalizeHandshake)
        self.code = response.code
        self.state = HAVE_CODE

        self.state = AWAIT_PAIRING_COMPLETE
        info = await read_response(self.connection, PipingComplete)
        file_name = os.path.basename(info.file_name)
        if file_name in ('', '.', '..'):
            raise MalformedMessageError(f"invalid file name '{info.file_name}'")
        os.makedirs(self.download_dir, exist_ok=True)
        archive_path = os.path.join(self.download_dir, file_name + ARCHIVE_SUFFIX)

        await self.connection.write(READY)
        self.state = READY_SENT

        self.state = RECEIVING
        received = 0
        progress = self.console.progress("Downloading", info.file_size)
        try:
            with open(archive_path, 'wb') as archive:
                while True:
                    data = await self.connection.reader.read(self.chunk_size)
                    if not data:
                        break
                    archive.write(data)
                    received += len(data)
                    progress.update(len(data))
        except BaseException:
            remove_quietly(archive_path)
            raise
        finally:
            progress.close()
        await self.connection.close()
        if info.file_size is not None and received < info.file_size:
            remove_quietly(archive_path)
            raise TransportError(f"transfer ended after {received} of {info.file_size} bytes")
        self.state = DONE
        return ReceivedArchive(archive_path, file_name, info.file_type, received)


class TransferClient:
    """
    Connects to a transfer server and runs one upload or download.
    """

    def __init__(self, conf: ClientConfig, console: typing.Optional[Console] = None):
        self.conf = conf
        self.console = console or Silent()

    async def connect(self) -> Connection:
        ssl_context = client_ssl_context(
            self.conf.ca_file or None, self.conf.cert_file or None, self.conf.key_file or None
        )
        try:
            connection = await Connection.open(self.conf.host, self.conf.port, ssl_context)
        except TRANSPORT_ERRORS as err:
            raise TransportError(str(err)) from err
        log.debug("connected to %s:%i", self.conf.host, self.conf.port)
        return connection

    async def upload(self, path: str, password: typing.Optional[str] = None) -> str:
        staged = stage_upload(path)
        try:
            connection = await self.connect()
            try:
                driver = UploadDriver(connection, self.console, self.conf.relay_chunk_size)
                return await driver.run(staged, password, get_local_ip())
            except TRANSPORT_ERRORS as err:
                raise TransportError(str(err)) from err
            finally:
                await connection.close()
        finally:
            remove_quietly(os.path.dirname(staged.archive))

    async def download(self, code: str, password: typing.Optional[str] = None) -> str:
        connection = await self.connect()
        try:
            driver = DownloadDriver(
                connection, self.console, self.conf.relay_chunk_size, self.conf.download_dir
            )
            received = await driver.run(code, password, get_local_ip())
        except TRANSPORT_ERRORS as err:
            raise TransportError(str(err)) from err
        finally:
            await connection.close()
        path = unpack_download(received.archive, received.file_name, received.file_type, self.conf.download_dir)
        self.console.status(f"Saved {path}")
        return path
