"""
Modbus TCP Client
=================

Asynchronous Modbus TCP client for one remote device.

Features:
    - Connection management (connect / close, async context manager)
    - Read operations (FC01, FC02, FC03, FC04)
    - Write operations (FC05, FC06, FC15, FC16)
    - Typed errors for device exception replies
    - Timeout on every network wait
    - Register value helpers (uint16, uint32, float32)

Only one operation runs at a time per client. A call made while another
is in flight fails immediately with BusyError; nothing is queued.

Example:
    async with ModbusTcpClient("192.168.1.10", unit_identifier=1) as client:
        coils = await client.read_coils(0, 10)
        registers = await client.read_holding_registers(3000, 2)
        value = ModbusTcpClient.get_float(registers, 0)
"""

import asyncio
import logging
from datetime import datetime
from functools import partial
from typing import Any, Callable, Dict, List, Optional, Sequence

import pydantic

from modbus_tcp import numeric
from modbus_tcp.config import MODBUS_CONFIG, ClientSettings
from modbus_tcp.connection import ConnectionState
from modbus_tcp.constants import MBAP_HEADER_LENGTH, FunctionCode
from modbus_tcp.exceptions import (
    ConnectFailedError,
    InvalidEndpointError,
    InvalidResponseError,
    ModbusTcpClientError,
    ModbusTimeoutError,
    StreamUnavailableError,
    TransportIoError,
)
from modbus_tcp.framing import (
    MbapHeader,
    build_adu,
    encode_read_request,
    encode_write_multiple_coils,
    encode_write_multiple_registers,
    encode_write_single_coil,
    encode_write_single_register,
)
from modbus_tcp.interpreter import decode_bits, decode_registers, interpret
from modbus_tcp.transport import TcpTransport


logger = logging.getLogger(__name__)

READ_FUNCTIONS = {
    FunctionCode.READ_COILS,
    FunctionCode.READ_DISCRETE_INPUTS,
    FunctionCode.READ_HOLDING_REGISTERS,
    FunctionCode.READ_INPUT_REGISTERS,
}


def _acknowledge(payload: bytes) -> bool:
    """Write replies echo the request; the function code is the acknowledgement."""
    return True


class ModbusTcpClient:
    """
    Modbus TCP client for communication with a single device.

    Implements Modbus protocol framing:
    - MBAP (Modbus Application Protocol) header
    - Function codes: FC01-FC06, FC15, FC16
    """

    get_ushort = staticmethod(numeric.get_ushort)
    set_ushort = staticmethod(numeric.set_ushort)
    get_uint = staticmethod(numeric.get_uint)
    set_uint = staticmethod(numeric.set_uint)
    get_float = staticmethod(numeric.get_float)
    set_float = staticmethod(numeric.set_float)

    def __init__(
        self,
        hostname: str,
        port: int = MODBUS_CONFIG["port"],
        unit_identifier: int = MODBUS_CONFIG["unit_id"],
        timeout_s: float = MODBUS_CONFIG["timeout_s"],
        transport_factory: Callable[[], Any] = TcpTransport,
    ):
        """
        Initialize Modbus client.

        The endpoint is validated by connect(), which raises
        InvalidEndpointError for an unusable hostname, port or unit id.

        Args:
            hostname: Device IP address or hostname
            port: Modbus TCP port (default 502)
            unit_identifier: Unit id for every request (default 0)
            timeout_s: Limit for each connect, send and receive wait
            transport_factory: Builds the transport used by connect()

        Raises:
            ValueError: timeout_s is not a positive number of seconds
        """
        if not timeout_s > 0:
            raise ValueError(f"timeout_s must be greater than zero, got {timeout_s}")

        self.state = ConnectionState(hostname, port, unit_identifier)
        self.timeout_s = timeout_s
        self.transport_factory = transport_factory
        self.last_error: Optional[str] = None

        # Connection statistics
        self.stats = {
            'connections': 0,
            'disconnections': 0,
            'reads': 0,
            'writes': 0,
            'errors': 0,
            'bytes_sent': 0,
            'bytes_received': 0,
        }

    @property
    def hostname(self) -> str:
        return self.state.hostname

    @property
    def port(self) -> int:
        return self.state.port

    @property
    def unit_identifier(self) -> int:
        return self.state.unit_identifier

    @property
    def connected(self) -> bool:
        return self.state.connected

    @property
    def busy(self) -> bool:
        return self.state.busy

    async def __aenter__(self) -> 'ModbusTcpClient':
        await self.connect()
        return self

    async def __aexit__(self, *_):
        await self.close()

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> bool:
        """
        Open the TCP connection to the device.

        Returns:
            True once connected (also when already connected)

        Raises:
            BusyError: another operation is in flight
            InvalidEndpointError: hostname, port or unit id unusable
            ConnectFailedError: connection refused or unreachable
            StreamUnavailableError: connected but stream not usable
            ModbusTimeoutError: no connection within timeout_s
        """
        try:
            async with self.state.exclusive():
                if self.state.connected:
                    return True
                await self._open()
        except ModbusTcpClientError as e:
            self._record_error("connect", e)
            raise

        self.stats['connections'] += 1
        logger.info(f"Modbus connected to {self.hostname}:{self.port} (unit {self.unit_identifier})")
        return True

    async def _open(self):
        try:
            settings = ClientSettings(
                hostname=self.state.hostname,
                port=self.state.port,
                unit_identifier=self.state.unit_identifier,
            )
        except pydantic.ValidationError as e:
            raise InvalidEndpointError() from e

        transport = self.transport_factory()
        try:
            await asyncio.wait_for(
                transport.connect(settings.hostname, settings.port),
                timeout=self.timeout_s
            )
        except asyncio.TimeoutError as e:
            raise ModbusTimeoutError(f"Connection to {settings.hostname}:{settings.port} timed out.") from e
        except ValueError as e:
            raise InvalidEndpointError() from e
        except OSError as e:
            raise ConnectFailedError() from e

        if not transport.stream_available():
            await self._close_transport(transport)
            raise StreamUnavailableError()

        self.state.on_connected(transport)

    async def close(self) -> bool:
        """
        Close the connection. Closing a closed client is a no-op.

        Returns:
            True

        Raises:
            BusyError: another operation is in flight
        """
        async with self.state.exclusive():
            transport = self.state.on_disconnected()
            if transport is not None:
                await self._close_transport(transport)
                self.stats['disconnections'] += 1
                logger.info(f"Modbus disconnected from {self.hostname}:{self.port}")
        return True

    async def _close_transport(self, transport: Any):
        try:
            await asyncio.wait_for(transport.close(), timeout=self.timeout_s)
        except asyncio.TimeoutError:
            logger.warning(f"Timeout waiting for connection close to {self.hostname}:{self.port}")

    async def _drop_connection(self, reason: ModbusTcpClientError):
        """Abandon a stream whose position is unknown after a failed exchange."""
        transport = self.state.on_disconnected()
        if transport is not None:
            await self._close_transport(transport)
            self.stats['disconnections'] += 1
            logger.warning(f"Modbus connection to {self.hostname} dropped: {reason}")

    # ------------------------------------------------------------------
    # Request execution
    # ------------------------------------------------------------------

    async def _execute(
        self,
        function_code: FunctionCode,
        encode: Callable[[], bytes],
        decode: Callable[[bytes], Any],
    ) -> Any:
        """
        Validate, send one request and decode its reply.

        Args:
            function_code: Request function code
            encode: Builds the request payload; raises ValidationError
            decode: Turns the success payload into the operation's result
        """
        try:
            payload = encode()
            async with self.state.exclusive():
                self.state.require_connected()
                reply = await self._transact(function_code, payload)
                result = decode(reply)
        except ModbusTcpClientError as e:
            self._record_error(f"FC{function_code:02d}", e)
            raise

        if function_code in READ_FUNCTIONS:
            self.stats['reads'] += 1
        else:
            self.stats['writes'] += 1
        return result

    async def _transact(self, function_code: FunctionCode, payload: bytes) -> bytes:
        """Send the ADU and return the success payload of the matching reply."""
        transaction_id = self.state.sequencer.next()
        adu = build_adu(transaction_id, self.state.unit_identifier, function_code, payload)

        try:
            pdu = await self._exchange(transaction_id, adu)
        except (ModbusTimeoutError, TransportIoError, InvalidResponseError) as e:
            await self._drop_connection(e)
            raise
        except asyncio.CancelledError:
            # The reply may still arrive and would be read by the next request
            await self._drop_connection(ModbusTimeoutError("Request cancelled."))
            raise

        return interpret(function_code, pdu)

    async def _exchange(self, transaction_id: int, adu: bytes) -> bytes:
        """Write one ADU and read back one framed reply PDU."""
        transport = self.state.transport
        logger.debug(f"TX tid={transaction_id} FC{adu[MBAP_HEADER_LENGTH]:02d} {adu.hex()}")

        try:
            await asyncio.wait_for(transport.write(adu), timeout=self.timeout_s)
            self.stats['bytes_sent'] += len(adu)

            # Header first; its length field says how much PDU follows
            raw_header = await asyncio.wait_for(
                transport.read_exactly(MBAP_HEADER_LENGTH),
                timeout=self.timeout_s
            )
            header = MbapHeader.decode(raw_header)
            pdu = await asyncio.wait_for(
                transport.read_exactly(header.pdu_length),
                timeout=self.timeout_s
            )
        except asyncio.TimeoutError as e:
            raise ModbusTimeoutError(f"No response from {self.hostname} within {self.timeout_s}s.") from e
        except asyncio.IncompleteReadError as e:
            raise TransportIoError.stream_closed() from e
        except OSError as e:
            raise TransportIoError() from e

        self.state.on_data_received()
        self.stats['bytes_received'] += MBAP_HEADER_LENGTH + len(pdu)
        logger.debug(f"RX tid={header.transaction_id} {(raw_header + pdu).hex()}")

        if header.transaction_id != transaction_id:
            raise InvalidResponseError(
                f"Transaction id mismatch: sent {transaction_id}, received {header.transaction_id}."
            )
        if header.unit_id != self.state.unit_identifier:
            logger.warning(f"Unit ID mismatch: expected {self.state.unit_identifier}, got {header.unit_id}")

        return pdu

    def _record_error(self, operation: str, error: ModbusTcpClientError):
        self.last_error = str(error)
        self.stats['errors'] += 1
        logger.error(f"Modbus {operation} failed for {self.hostname}: {error}")

    # ------------------------------------------------------------------
    # Function codes
    # ------------------------------------------------------------------

    async def read_coils(self, starting_address: int, quantity: int) -> List[bool]:
        """
        Read coils (FC01).

        Args:
            starting_address: First coil address (0-65535)
            quantity: Number of coils (1-2000)

        Returns:
            List of `quantity` coil states
        """
        fc = FunctionCode.READ_COILS
        return await self._execute(
            fc,
            partial(encode_read_request, fc, starting_address, quantity),
            partial(decode_bits, quantity=quantity),
        )

    async def read_discrete_inputs(self, starting_address: int, quantity: int) -> List[bool]:
        """
        Read discrete inputs (FC02).

        Args:
            starting_address: First input address (0-65535)
            quantity: Number of inputs (1-2000)

        Returns:
            List of `quantity` input states
        """
        fc = FunctionCode.READ_DISCRETE_INPUTS
        return await self._execute(
            fc,
            partial(encode_read_request, fc, starting_address, quantity),
            partial(decode_bits, quantity=quantity),
        )

    async def read_holding_registers(self, starting_address: int, quantity: int) -> bytes:
        """
        Read holding registers (FC03).

        Args:
            starting_address: First register address (0-65535)
            quantity: Number of registers (1-125)

        Returns:
            `quantity * 2` bytes in wire order; see get_ushort/get_uint/get_float
        """
        fc = FunctionCode.READ_HOLDING_REGISTERS
        return await self._execute(
            fc,
            partial(encode_read_request, fc, starting_address, quantity),
            partial(decode_registers, quantity=quantity),
        )

    async def read_input_registers(self, starting_address: int, quantity: int) -> bytes:
        """
        Read input registers (FC04).

        Args:
            starting_address: First register address (0-65535)
            quantity: Number of registers (1-125)

        Returns:
            `quantity * 2` bytes in wire order
        """
        fc = FunctionCode.READ_INPUT_REGISTERS
        return await self._execute(
            fc,
            partial(encode_read_request, fc, starting_address, quantity),
            partial(decode_registers, quantity=quantity),
        )

    async def write_single_coil(self, address: int, value: bool) -> bool:
        """
        Write single coil (FC05).

        Args:
            address: Coil address
            value: True (ON) or False (OFF)
        """
        return await self._execute(
            FunctionCode.WRITE_SINGLE_COIL,
            partial(encode_write_single_coil, address, value),
            _acknowledge,
        )

    async def write_single_register(self, address: int, value_bytes: bytes) -> bool:
        """
        Write single register (FC06).

        The two bytes are sent in swapped order: value_bytes[1] first.

        Args:
            address: Register address
            value_bytes: Exactly 2 bytes
        """
        return await self._execute(
            FunctionCode.WRITE_SINGLE_REGISTER,
            partial(encode_write_single_register, address, value_bytes),
            _acknowledge,
        )

    async def write_multiple_coils(self, starting_address: int, values: Sequence[bool]) -> bool:
        """
        Write multiple coils (FC15).

        Args:
            starting_address: First coil address
            values: 1-1968 coil states
        """
        return await self._execute(
            FunctionCode.WRITE_MULTIPLE_COILS,
            partial(encode_write_multiple_coils, starting_address, values),
            _acknowledge,
        )

    async def write_multiple_registers(self, starting_address: int, register_bytes: bytes) -> bool:
        """
        Write multiple registers (FC16).

        Args:
            starting_address: First register address
            register_bytes: Even number of bytes, at most 246, in wire order
        """
        return await self._execute(
            FunctionCode.WRITE_MULTIPLE_REGISTERS,
            partial(encode_write_multiple_registers, starting_address, register_bytes),
            _acknowledge,
        )

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    def get_stats(self) -> Dict:
        """Get connection statistics."""
        return self.stats.copy()

    def is_healthy(self) -> bool:
        """Check if connection is healthy."""
        if not self.connected:
            return False

        last_activity = self.state.last_recv_time
        if last_activity is None:
            return False

        # Check for timeout
        idle_s = (datetime.now() - last_activity).total_seconds()
        return idle_s <= MODBUS_CONFIG["healthy_idle_s"]

    def __str__(self):
        return str(self.state)
