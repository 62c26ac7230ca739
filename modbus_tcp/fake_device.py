"""
Simulated Modbus TCP Device
===========================

In-process asyncio Modbus TCP server used by the test suite to exercise
the client end to end over real sockets.

Behavior:
    - MBAP framing (header read first, then length - 1 bytes)
    - Transaction id and unit id echoed in every reply
    - FC01, FC02, FC03, FC04, FC05, FC06, FC15, FC16 against an in-memory
      DeviceImage
    - Exception replies (FC | 0x80) for out-of-range addresses and for
      function codes listed in `forced_exceptions`
    - Optional reply delay and byte-at-a-time reply writes, to exercise
      client timeouts and reply reassembly

Not a general-purpose Modbus server.
"""

import asyncio
import logging
import struct
from typing import Dict, List, Optional

from modbus_tcp.constants import EXCEPTION_OFFSET, ExceptionCode, FunctionCode
from modbus_tcp.framing import MbapHeader, pack_bits, unpack_bits

logger = logging.getLogger(__name__)


class DeviceImage:
    """Coil and register storage of the simulated device."""

    def __init__(self, size: int = 1000):
        self.size = size
        self.coils = [False] * size
        self.discrete_inputs = [False] * size
        self.holding_registers = [0] * size
        self.input_registers = [0] * size

    def in_range(self, address: int, count: int) -> bool:
        return address + count <= self.size


class FakeModbusDevice:
    """Modbus TCP server backed by a DeviceImage."""

    def __init__(self, image: Optional[DeviceImage] = None, host: str = '127.0.0.1'):
        self.image = image or DeviceImage()
        self.host = host
        self.port: Optional[int] = None
        self.server: Optional[asyncio.Server] = None
        self.connections: List[asyncio.StreamWriter] = []

        # Test controls
        self.forced_exceptions: Dict[int, int] = {}
        self.reply_delay_s = 0.0
        self.split_replies = False

        # Raw request ADUs as received
        self.requests: List[bytes] = []

    async def start(self):
        """Start listening on an ephemeral port."""
        self.server = await asyncio.start_server(self._handle_connection, self.host, 0)
        self.port = self.server.sockets[0].getsockname()[1]
        logger.info(f"Simulated Modbus device listening on {self.host}:{self.port}")

    async def stop(self):
        if self.server:
            self.server.close()
            for writer in list(self.connections):
                writer.close()
            await self.server.wait_closed()
            logger.info("Simulated Modbus device stopped")

    async def __aenter__(self) -> 'FakeModbusDevice':
        await self.start()
        return self

    async def __aexit__(self, *_):
        await self.stop()

    async def _handle_connection(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        addr = writer.get_extra_info('peername')
        logger.debug(f"Connection from {addr}")
        self.connections.append(writer)

        try:
            while True:
                raw_header = await reader.readexactly(7)
                header = MbapHeader.decode(raw_header)
                pdu = await reader.readexactly(header.pdu_length)
                self.requests.append(raw_header + pdu)

                response_pdu = self._process_request(pdu)
                response = MbapHeader(
                    header.transaction_id, 0, len(response_pdu) + 1, header.unit_id
                ).encode() + response_pdu

                if self.reply_delay_s:
                    await asyncio.sleep(self.reply_delay_s)

                if self.split_replies:
                    for i in range(len(response)):
                        writer.write(response[i:i + 1])
                        await writer.drain()
                        await asyncio.sleep(0)
                else:
                    writer.write(response)
                    await writer.drain()

        except (asyncio.IncompleteReadError, ConnectionError):
            logger.debug(f"Connection closed by {addr}")
        finally:
            self.connections.remove(writer)
            writer.close()

    def _process_request(self, pdu: bytes) -> bytes:
        function_code = pdu[0]
        data = pdu[1:]

        if function_code in self.forced_exceptions:
            return self._exception(function_code, self.forced_exceptions[function_code])

        handlers = {
            FunctionCode.READ_COILS: self._handle_read_bits,
            FunctionCode.READ_DISCRETE_INPUTS: self._handle_read_bits,
            FunctionCode.READ_HOLDING_REGISTERS: self._handle_read_registers,
            FunctionCode.READ_INPUT_REGISTERS: self._handle_read_registers,
            FunctionCode.WRITE_SINGLE_COIL: self._handle_write_coil,
            FunctionCode.WRITE_SINGLE_REGISTER: self._handle_write_register,
            FunctionCode.WRITE_MULTIPLE_COILS: self._handle_write_coils,
            FunctionCode.WRITE_MULTIPLE_REGISTERS: self._handle_write_registers,
        }
        handler = handlers.get(function_code)
        if handler is None:
            return self._exception(function_code, ExceptionCode.ILLEGAL_FUNCTION)
        return handler(function_code, data)

    def _handle_read_bits(self, function_code: int, data: bytes) -> bytes:
        address, count = struct.unpack('>HH', data[:4])
        if not self.image.in_range(address, count):
            return self._exception(function_code, ExceptionCode.ILLEGAL_DATA_ACCESS)

        source = self.image.coils if function_code == FunctionCode.READ_COILS else self.image.discrete_inputs
        packed = pack_bits(source[address:address + count])
        return struct.pack('BB', function_code, len(packed)) + packed

    def _handle_read_registers(self, function_code: int, data: bytes) -> bytes:
        address, count = struct.unpack('>HH', data[:4])
        if not self.image.in_range(address, count):
            return self._exception(function_code, ExceptionCode.ILLEGAL_DATA_ACCESS)

        if function_code == FunctionCode.READ_HOLDING_REGISTERS:
            source = self.image.holding_registers
        else:
            source = self.image.input_registers

        response = struct.pack('BB', function_code, count * 2)
        for value in source[address:address + count]:
            response += struct.pack('>H', value)
        return response

    def _handle_write_coil(self, function_code: int, data: bytes) -> bytes:
        address, value = struct.unpack('>HH', data[:4])
        if value not in (0x0000, 0xFF00):
            return self._exception(function_code, ExceptionCode.ILLEGAL_DATA_VALUE)
        if not self.image.in_range(address, 1):
            return self._exception(function_code, ExceptionCode.ILLEGAL_DATA_ACCESS)

        self.image.coils[address] = value == 0xFF00
        return struct.pack('>BHH', function_code, address, value)

    def _handle_write_register(self, function_code: int, data: bytes) -> bytes:
        address, value = struct.unpack('>HH', data[:4])
        if not self.image.in_range(address, 1):
            return self._exception(function_code, ExceptionCode.ILLEGAL_DATA_ACCESS)

        self.image.holding_registers[address] = value
        return struct.pack('>BHH', function_code, address, value)

    def _handle_write_coils(self, function_code: int, data: bytes) -> bytes:
        address, count, byte_count = struct.unpack('>HHB', data[:5])
        if byte_count != (count + 7) // 8:
            return self._exception(function_code, ExceptionCode.ILLEGAL_DATA_VALUE)
        if not self.image.in_range(address, count):
            return self._exception(function_code, ExceptionCode.ILLEGAL_DATA_ACCESS)

        for i, value in enumerate(unpack_bits(data[5:5 + byte_count], count)):
            self.image.coils[address + i] = value
        return struct.pack('>BHH', function_code, address, count)

    def _handle_write_registers(self, function_code: int, data: bytes) -> bytes:
        address, count, byte_count = struct.unpack('>HHB', data[:5])
        if byte_count != count * 2:
            return self._exception(function_code, ExceptionCode.ILLEGAL_DATA_VALUE)
        if not self.image.in_range(address, count):
            return self._exception(function_code, ExceptionCode.ILLEGAL_DATA_ACCESS)

        for i in range(count):
            offset = 5 + (i * 2)
            self.image.holding_registers[address + i], = struct.unpack('>H', data[offset:offset + 2])
        return struct.pack('>BHH', function_code, address, count)

    @staticmethod
    def _exception(function_code: int, exception_code: int) -> bytes:
        return struct.pack('BB', function_code | EXCEPTION_OFFSET, exception_code)
