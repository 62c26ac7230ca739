"""
Modbus TCP Connection State
===========================

Tracks the lifecycle of one client connection.

Connection phases:
    DISCONNECTED - No stream (initial state, after close or a transport fault)
    CONNECTED    - Stream open, requests allowed

Busy:
    While connect, close or a request is executing the connection is busy.
    Busy is held by an asyncio.Lock; a second caller is rejected at once
    with BusyError instead of queueing behind the lock.

Sequence:
    1. connect() under the lock (DISCONNECTED -> CONNECTED)
    2. Requests, one at a time, each under the lock
    3. close() under the lock (-> DISCONNECTED)
"""

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from modbus_tcp.exceptions import BusyError, NotConnectedError
from modbus_tcp.sequencer import TransactionSequencer


class ConnectionPhase(Enum):
    """Modbus TCP connection phases"""
    DISCONNECTED = 0
    CONNECTED = 1


@dataclass
class ConnectionState:
    """
    Per-client connection state

    Attributes:
        hostname: Device IP address or hostname
        port: Modbus TCP port
        unit_identifier: Unit id written into every MBAP header
        transport: Open transport, None while disconnected
        phase: Current connection phase
        sequencer: Transaction id source
        last_recv_time: Timestamp of last reply received
    """

    hostname: str
    port: int = 502
    unit_identifier: int = 0
    transport: Optional[Any] = None
    phase: ConnectionPhase = ConnectionPhase.DISCONNECTED
    sequencer: TransactionSequencer = field(default_factory=TransactionSequencer)
    last_recv_time: Optional[datetime] = None
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    @property
    def connected(self) -> bool:
        return self.phase == ConnectionPhase.CONNECTED

    @asynccontextmanager
    async def exclusive(self):
        """
        Hold the busy guard for the body of an operation.

        Raises:
            BusyError: another operation already holds the guard
        """
        if self._lock.locked():
            raise BusyError()
        # Uncontended acquire completes without suspending
        async with self._lock:
            yield

    def require_connected(self):
        if not self.connected or self.transport is None:
            raise NotConnectedError()

    def on_connected(self, transport: Any):
        """Handle transport opened"""
        self.transport = transport
        self.phase = ConnectionPhase.CONNECTED
        self.last_recv_time = datetime.now()

    def on_disconnected(self) -> Optional[Any]:
        """Mark disconnected and hand back the transport for closing"""
        transport = self.transport
        self.transport = None
        self.phase = ConnectionPhase.DISCONNECTED
        return transport

    def on_data_received(self):
        self.last_recv_time = datetime.now()

    def __str__(self):
        return (f"ModbusTCP[{self.hostname}:{self.port} unit={self.unit_identifier}] "
                f"state={self.phase.name} busy={self.busy} "
                f"tid={self.sequencer.current}")
