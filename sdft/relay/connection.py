import ssl
import asyncio
import typing
import logging
from sdft.error import MalformedMessageError, MessageTooLargeError
from sdft.relay.serialization import TransferMessage, ErrorResponse, RECORD_SEPARATOR

log = logging.getLogger(__name__)

# a standard intent is well under 300 bytes
MAX_MESSAGE_SIZE = 2 ** 16

TRANSPORT_ERRORS = (ConnectionError, ssl.SSLError, OSError)


class Connection:
    """
    One encrypted byte stream. Handshake messages are newline terminated json
    records, anything after the handshake is read and written raw.
    """

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter,
                 max_message_size: int = MAX_MESSAGE_SIZE):
        self.reader = reader
        self.writer = writer
        self.max_message_size = max_message_size
        self.closed = asyncio.Event()
        peername = writer.get_extra_info('peername')
        if peername:
            self.peer_address_and_port = "%s:%i" % tuple(peername[:2])
        else:
            self.peer_address_and_port = "unknown"

    def __repr__(self):
        return f"Connection({self.peer_address_and_port})"

    @classmethod
    async def open(cls, host: str, port: int, ssl_context: typing.Optional[ssl.SSLContext],
                   limit: int = MAX_MESSAGE_SIZE) -> 'Connection':
        server_hostname = host if ssl_context is not None else None
        reader, writer = await asyncio.open_connection(
            host, port, ssl=ssl_context, server_hostname=server_hostname, limit=limit
        )
        return cls(reader, writer, limit)

    async def read_message(self) -> typing.Optional[bytes]:
        """
        Read one record, None if the peer closed the stream before sending one.
        """
        try:
            data = await self.reader.readuntil(RECORD_SEPARATOR)
        except asyncio.IncompleteReadError as err:
            if not err.partial:
                return None
            raise MalformedMessageError("stream ended in the middle of a message") from err
        except asyncio.LimitOverrunError as err:
            raise MessageTooLargeError(self.max_message_size) from err
        if len(data) > self.max_message_size:
            raise MessageTooLargeError(self.max_message_size)
        return data[:-len(RECORD_SEPARATOR)]

    async def send(self, message: TransferMessage):
        await self.write(message.serialize())

    async def write(self, data: bytes):
        self.writer.write(data)
        await self.writer.drain()

    async def send_error(self, reason: str):
        try:
            await self.send(ErrorResponse(reason))
        except TRANSPORT_ERRORS as err:
            log.debug("could not send error to %s: %s", self.peer_address_and_port, err)

    def shutdown_write(self):
        """
        Signal the end of the stream to the peer. TLS transports can't half
        close, so they are closed entirely.
        """
        if self.writer.is_closing():
            return
        if self.writer.can_write_eof():
            try:
                self.writer.write_eof()
                return
            except TRANSPORT_ERRORS as err:
                log.debug("failed to half close %s: %s", self.peer_address_and_port, err)
        self.writer.close()

    def is_closing(self) -> bool:
        return self.writer.is_closing()

    async def close(self):
        if not self.writer.is_closing():
            self.writer.close()
        try:
            await self.writer.wait_closed()
        except TRANSPORT_ERRORS as err:
            log.debug("error closing connection to %s: %s", self.peer_address_and_port, err)
        finally:
            self.closed.set()

    async def wait_closed(self):
        await self.closed.wait()
