import asyncio
import logging
import typing
from sdft.prometheus import RELAYED_BYTES
from sdft.relay.connection import Connection, TRANSPORT_ERRORS

log = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 2 ** 16


async def pump(source: Connection, destination: Connection, chunk_size: int = DEFAULT_CHUNK_SIZE) -> int:
    """
    Copy bytes from source to destination until the source ends or either side
    fails. The next chunk is only read once the previous one has drained, so a
    slow destination throttles the source.
    """
    relayed = 0
    try:
        while True:
            data = await source.reader.read(chunk_size)
            if not data:
                break
            destination.writer.write(data)
            await destination.writer.drain()
            relayed += len(data)
            RELAYED_BYTES.inc(len(data))
    except TRANSPORT_ERRORS as err:
        log.warning("relay %s -> %s stopped: %s", source.peer_address_and_port,
                    destination.peer_address_and_port, err)
    finally:
        destination.shutdown_write()
    log.debug("relayed %i bytes %s -> %s", relayed, source.peer_address_and_port,
              destination.peer_address_and_port)
    return relayed


async def relay(uploader: Connection, downloader: Connection,
                chunk_size: int = DEFAULT_CHUNK_SIZE) -> typing.Tuple[int, int]:
    """
    Splice two connections together in both directions. Both are closed once
    neither direction has anything left to carry.
    """
    try:
        sent, returned = await asyncio.gather(
            pump(uploader, downloader, chunk_size),
            pump(downloader, uploader, chunk_size)
        )
    finally:
        await asyncio.gather(uploader.close(), downloader.close())
    return sent, returned
