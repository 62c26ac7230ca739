"""
TCP Transport
=============

Thin wrapper around asyncio streams. The client only ever talks to this
surface, so any object providing the same coroutines can stand in for it:

    await connect(host, port)
    stream_available() -> bool
    await write(data)
    await read_exactly(n) -> bytes
    await close()

Errors are the ones asyncio raises (OSError, asyncio.IncompleteReadError);
the client translates them into its own error kinds.
"""

import asyncio
import logging
from typing import Optional

logger = logging.getLogger(__name__)


class TcpTransport:
    """Single TCP connection backed by an asyncio StreamReader/StreamWriter."""

    def __init__(self):
        self.reader: Optional[asyncio.StreamReader] = None
        self.writer: Optional[asyncio.StreamWriter] = None

    async def connect(self, host: str, port: int):
        self.reader, self.writer = await asyncio.open_connection(host, port)
        logger.debug(f"TCP stream opened to {host}:{port}")

    def stream_available(self) -> bool:
        """True while the stream can still be written to."""
        return (
            self.reader is not None
            and self.writer is not None
            and not self.writer.is_closing()
        )

    async def write(self, data: bytes):
        if not self.stream_available():
            raise ConnectionResetError("Stream is closed")
        self.writer.write(data)
        await self.writer.drain()

    async def read_exactly(self, n: int) -> bytes:
        """Read exactly n bytes, across as many TCP segments as needed."""
        if self.reader is None:
            raise ConnectionResetError("Stream is closed")
        return await self.reader.readexactly(n)

    async def close(self):
        """Close the stream; a no-op when it was never opened."""
        writer = self.writer
        self.reader = None
        self.writer = None
        if writer is None:
            return
        writer.close()
        try:
            await writer.wait_closed()
        except OSError as e:
            # Peer already reset the connection; it is closed either way
            logger.debug(f"Error while waiting for stream close: {e}")
