import os
import ssl
import asyncio
import typing
import logging
from sdft.conf import ServerConfig
from sdft.error import (
    ProtocolError, ValidationError, RegistryError, EarlyPayloadError, DownloadNotFoundError,
    DownloadBusyError, PasswordMismatchError, CertificateMissingError
)
from sdft.prometheus import SESSIONS_REGISTERED, SESSIONS_ACTIVE, PAIRINGS, REJECTIONS
from sdft.utils import passwords_match, server_ssl_context
from sdft.relay.connection import Connection, TRANSPORT_ERRORS
from sdft.relay.pipe import relay
from sdft.relay.registry import Session, SessionRegistry
from sdft.relay.serialization import (
    UPLOAD, DOWNLOAD, UploadIntent, DownloadIntent, FinalizeHandshake, PipingComplete, parse_intent
)

log = logging.getLogger(__name__)

AWAIT_INTENT = 'await_intent'
VALIDATING = 'validating'
REGISTERED = 'registered'
PAIRED = 'paired'
REJECTED = 'rejected'


class TransferHandler:
    """
    Serves a single client connection from its intent until it closes.
    """

    def __init__(self, registry: SessionRegistry, connection: Connection, relay_chunk_size: int = 2 ** 16):
        self.registry = registry
        self.connection = connection
        self.relay_chunk_size = relay_chunk_size
        self.state = AWAIT_INTENT

    async def handle(self):
        peer = self.connection.peer_address_and_port
        try:
            data = await self.connection.read_message()
            if data is None:
                log.debug("%s disconnected before sending a request", peer)
                return
            self.state = VALIDATING
            intent = parse_intent(data)
            if isinstance(intent, UploadIntent):
                await self.serve_upload(intent)
            else:
                await self.serve_download(intent)
        except (ProtocolError, ValidationError, RegistryError) as err:
            self.state = REJECTED
            REJECTIONS.labels(reason=type(err).__name__).inc()
            log.warning("rejected request from %s: %s", peer, err)
            await self.connection.send_error(str(err))
        except TRANSPORT_ERRORS as err:
            log.warning("connection to %s failed: %s", peer, err)
        finally:
            await self.connection.close()

    async def wait_for_pairing(self, pairing: asyncio.Future) -> typing.Optional[Connection]:
        """
        Wait for a downloader while watching the uploader. Returns None if the
        uploader disconnects first, any data it sends before pairing is an error.
        """
        read_task = asyncio.ensure_future(self.connection.reader.read(self.relay_chunk_size))
        try:
            await asyncio.wait([read_task, pairing], return_when=asyncio.FIRST_COMPLETED)
        finally:
            if not read_task.done():
                read_task.cancel()
                try:
                    await read_task
                except asyncio.CancelledError:
                    pass
        if not read_task.cancelled():
            if read_task.exception() is not None:
                raise read_task.exception()
            if read_task.result():
                raise EarlyPayloadError()
            log.debug("uploader %s disconnected before a download started", self.connection.peer_address_and_port)
            return None
        return pairing.result()

    async def serve_upload(self, intent: UploadIntent):
        code = self.registry.allocate()
        pairing = asyncio.get_running_loop().create_future()
        session = Session(
            UPLOAD, self.connection, intent.file_name, intent.file_type, intent.file_size, intent.password,
            pairing=pairing
        )
        self.registry.register(code, session)
        SESSIONS_REGISTERED.inc()
        SESSIONS_ACTIVE.inc()
        log.info("registered %s '%s' from %s as %s", intent.file_type, intent.file_name,
                 self.connection.peer_address_and_port, code)
        try:
            await self.connection.send(FinalizeHandshake(code))
            self.state = REGISTERED
            downloader = await self.wait_for_pairing(pairing)
            if downloader is None:
                return
            self.state = PAIRED
            sent, _ = await relay(self.connection, downloader, self.relay_chunk_size)
            log.info("finished transfer %s, relayed %i bytes", code, sent)
        finally:
            self.registry.release(code)
            SESSIONS_ACTIVE.dec()
            if not pairing.done():
                pairing.cancel()
            elif not pairing.cancelled():
                await pairing.result().close()

    async def serve_download(self, intent: DownloadIntent):
        session = self.registry.lookup(intent.client_code)
        if session is None or not session.is_upload:
            raise DownloadNotFoundError()
        if session.busy:
            raise DownloadBusyError()
        if session.password is not None:
            if intent.password is None or not passwords_match(session.password, intent.password):
                raise PasswordMismatchError()
        code = self.registry.allocate()
        try:
            if not self.registry.mark_busy(intent.client_code):
                raise DownloadBusyError()
            self.registry.register(code, Session(DOWNLOAD, self.connection))
            if not session.pair(self.connection):
                raise DownloadNotFoundError()
            PAIRINGS.inc()
            self.state = PAIRED
            log.info("paired %s with upload %s", self.connection.peer_address_and_port, intent.client_code)
            await self.connection.send(FinalizeHandshake(code))
            await self.connection.send(PipingComplete(session.file_type, session.file_name, session.file_size))
            await self.connection.wait_closed()
        finally:
            self.registry.release(code)


class RendezvousServer:
    def __init__(self, conf: ServerConfig, registry: typing.Optional[SessionRegistry] = None,
                 ssl_context: typing.Optional[ssl.SSLContext] = None):
        self.conf = conf
        self.registry = registry or SessionRegistry(conf.code_size, conf.allowed_chars)
        self.ssl_context = ssl_context
        self.server: typing.Optional[asyncio.AbstractServer] = None
        self.handlers: typing.Set[asyncio.Task] = set()
        self.port: typing.Optional[int] = None

    def _load_ssl_context(self) -> ssl.SSLContext:
        for path in (self.conf.cert_file, self.conf.key_file):
            if not os.path.isfile(path):
                raise CertificateMissingError(path)
        return server_ssl_context(self.conf.cert_file, self.conf.key_file)

    async def start(self, interface: typing.Optional[str] = None, port: typing.Optional[int] = None):
        if self.server is not None:
            raise Exception("already running")
        if self.ssl_context is None:
            self.ssl_context = self._load_ssl_context()
        interface = self.conf.interface if interface is None else interface
        port = self.conf.port if port is None else port
        self.server = await asyncio.start_server(
            self.accept, interface, port, ssl=self.ssl_context, limit=self.conf.max_message_size
        )
        self.port = self.server.sockets[0].getsockname()[1]
        log.info("transfer server listening on TCP %s:%i", interface, self.port)

    async def accept(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        task = asyncio.current_task()
        self.handlers.add(task)
        connection = Connection(reader, writer, self.conf.max_message_size)
        log.debug("accepted connection from %s", connection.peer_address_and_port)
        try:
            await TransferHandler(self.registry, connection, self.conf.relay_chunk_size).handle()
        finally:
            self.handlers.discard(task)

    async def serve_forever(self):
        if self.server is None:
            await self.start()
        await self.server.serve_forever()

    async def stop(self):
        if self.server is None:
            return
        self.server.close()
        handlers = list(self.handlers)
        for task in handlers:
            task.cancel()
        await asyncio.gather(*handlers, return_exceptions=True)
        await self.server.wait_closed()
        self.server = None
        log.info("stopped transfer server")
