"""
Test Suite for the Modbus TCP Client
====================================

Tests validate:
    - Connection lifecycle and endpoint validation
    - Byte-exact requests through a scripted in-memory transport
    - Busy rejection while a request is in flight
    - Timeout, transport and framing faults
    - End-to-end operation against the simulated device over TCP
"""

import asyncio
import unittest
from typing import List, Optional

import pydantic

from modbus_tcp.client import ModbusTcpClient
from modbus_tcp.config import ClientSettings
from modbus_tcp.connection import ConnectionPhase
from modbus_tcp.constants import ExceptionCode, FunctionCode
from modbus_tcp.exceptions import (
    BusyError,
    ConnectFailedError,
    ErrorKind,
    IllegalDataAccessError,
    InvalidEndpointError,
    InvalidResponseError,
    ModbusTimeoutError,
    NotConnectedError,
    ServerDeviceFailureError,
    StreamUnavailableError,
    TransportIoError,
    UnexpectedFunctionCodeError,
    UnknownProtocolExceptionError,
    ValidationError,
)
from modbus_tcp.fake_device import DeviceImage, FakeModbusDevice
from modbus_tcp.framing import MbapHeader


class ScriptedTransport:
    """
    In-memory transport.

    Every write queues the next scripted reply: entries in `raw_replies` are
    sent as-is, entries in `pdus` are framed with the request's transaction
    id and unit id.
    """

    def __init__(self, pdus: Optional[List[bytes]] = None,
                 raw_replies: Optional[List[bytes]] = None,
                 connect_error: Optional[Exception] = None,
                 write_error: Optional[Exception] = None,
                 stream_ok: bool = True,
                 connect_delay_s: float = 0.0):
        self.pdus = list(pdus or [])
        self.raw_replies = list(raw_replies or [])
        self.connect_error = connect_error
        self.write_error = write_error
        self.stream_ok = stream_ok
        self.connect_delay_s = connect_delay_s
        self.read_gate: Optional[asyncio.Event] = None
        self.written: List[bytes] = []
        self.rx = bytearray()
        self.connected_to = None
        self.closed = False

    async def connect(self, host, port):
        if self.connect_delay_s:
            await asyncio.sleep(self.connect_delay_s)
        if self.connect_error:
            raise self.connect_error
        self.connected_to = (host, port)

    def stream_available(self):
        return self.stream_ok

    async def write(self, data):
        if self.write_error:
            raise self.write_error
        self.written.append(bytes(data))
        if self.raw_replies:
            self.rx.extend(self.raw_replies.pop(0))
        elif self.pdus:
            header = MbapHeader.decode(data[:7])
            pdu = self.pdus.pop(0)
            self.rx.extend(MbapHeader(header.transaction_id, 0, len(pdu) + 1, header.unit_id).encode() + pdu)

    async def read_exactly(self, n):
        if self.read_gate is not None:
            await self.read_gate.wait()
        if len(self.rx) < n:
            raise asyncio.IncompleteReadError(bytes(self.rx), n)
        chunk = bytes(self.rx[:n])
        del self.rx[:n]
        return chunk

    async def close(self):
        self.closed = True


def scripted_client(transport: ScriptedTransport, **kwargs) -> ModbusTcpClient:
    kwargs.setdefault('timeout_s', 1.0)
    return ModbusTcpClient('10.0.0.5', transport_factory=lambda: transport, **kwargs)


class TestConnectionLifecycle(unittest.TestCase):
    """Test connect/close behavior"""

    def test_initial_state(self):
        client = ModbusTcpClient('10.0.0.5')
        self.assertEqual(client.port, 502)
        self.assertEqual(client.unit_identifier, 0)
        self.assertFalse(client.connected)
        self.assertFalse(client.busy)
        self.assertEqual(client.state.phase, ConnectionPhase.DISCONNECTED)

    def test_connect_and_close(self):
        asyncio.run(self._test_connect_and_close())

    async def _test_connect_and_close(self):
        transport = ScriptedTransport()
        client = scripted_client(transport, port=1502)

        self.assertTrue(await client.connect())
        self.assertTrue(client.connected)
        self.assertFalse(client.busy)
        self.assertEqual(transport.connected_to, ('10.0.0.5', 1502))

        self.assertTrue(await client.close())
        self.assertFalse(client.connected)
        self.assertTrue(transport.closed)

        # Idempotent
        self.assertTrue(await client.close())
        self.assertEqual(client.get_stats()['connections'], 1)
        self.assertEqual(client.get_stats()['disconnections'], 1)

    def test_close_without_connect(self):
        client = ModbusTcpClient('10.0.0.5')
        self.assertTrue(asyncio.run(client.close()))
        self.assertFalse(client.connected)

    def test_connect_refused(self):
        transport = ScriptedTransport(connect_error=ConnectionRefusedError())
        client = scripted_client(transport)

        with self.assertRaises(ConnectFailedError) as ctx:
            asyncio.run(client.connect())
        self.assertEqual(ctx.exception.code, 6)
        self.assertEqual(ctx.exception.kind, ErrorKind.CONNECT_FAILED)
        self.assertFalse(client.connected)
        self.assertFalse(client.busy)
        self.assertEqual(client.get_stats()['errors'], 1)

    def test_invalid_endpoint(self):
        for kwargs in ({'hostname': ''}, {'hostname': 'plc', 'port': 70000},
                       {'hostname': 'plc', 'unit_identifier': 256}):
            with self.subTest(**kwargs):
                transport = ScriptedTransport()
                client = ModbusTcpClient(transport_factory=lambda: transport, **kwargs)
                with self.assertRaises(InvalidEndpointError) as ctx:
                    asyncio.run(client.connect())
                self.assertEqual(ctx.exception.code, 5)
                self.assertIsNone(transport.connected_to)
                self.assertFalse(client.busy)

    def test_stream_unavailable(self):
        transport = ScriptedTransport(stream_ok=False)
        client = scripted_client(transport)

        with self.assertRaises(StreamUnavailableError) as ctx:
            asyncio.run(client.connect())
        self.assertEqual(ctx.exception.code, 7)
        self.assertTrue(transport.closed)
        self.assertFalse(client.connected)

    def test_connect_timeout(self):
        asyncio.run(self._test_connect_timeout())

    async def _test_connect_timeout(self):
        transport = ScriptedTransport(connect_delay_s=0.5)
        client = scripted_client(transport, timeout_s=0.05)

        with self.assertRaises(ModbusTimeoutError) as ctx:
            await client.connect()
        self.assertEqual(ctx.exception.code, 21)
        self.assertEqual(ctx.exception.kind, ErrorKind.TIMEOUT)
        self.assertFalse(client.connected)
        self.assertFalse(client.busy)

        # Guard released: a later connect proceeds
        transport.connect_delay_s = 0.0
        self.assertTrue(await client.connect())
        self.assertTrue(client.connected)

    def test_timeout_must_be_positive(self):
        for timeout_s in (0, -1.0):
            with self.subTest(timeout_s=timeout_s):
                with self.assertRaises(ValueError):
                    ModbusTcpClient('10.0.0.5', timeout_s=timeout_s)

    def test_request_before_connect(self):
        client = scripted_client(ScriptedTransport())
        with self.assertRaises(NotConnectedError) as ctx:
            asyncio.run(client.read_coils(0, 1))
        self.assertEqual(ctx.exception.code, 2)

    def test_settings_are_immutable(self):
        settings = ClientSettings(hostname='plc')
        with self.assertRaises(pydantic.ValidationError):
            settings.port = 503


class TestScriptedRequests(unittest.TestCase):
    """Test request bytes and reply handling with a scripted transport"""

    def test_read_coils_request_bytes(self):
        asyncio.run(self._test_read_coils_request_bytes())

    async def _test_read_coils_request_bytes(self):
        transport = ScriptedTransport(pdus=[b'\x01\x02\xFF\x03'])
        client = scripted_client(transport)
        await client.connect()

        coils = await client.read_coils(0, 10)

        self.assertEqual(transport.written[0], bytes([
            0x00, 0x01, 0x00, 0x00, 0x00, 0x06, 0x00,
            0x01, 0x00, 0x00, 0x00, 0x0A,
        ]))
        self.assertEqual(coils, [True] * 10)
        self.assertEqual(client.get_stats()['reads'], 1)

    def test_unit_identifier_in_header(self):
        asyncio.run(self._test_unit_identifier_in_header())

    async def _test_unit_identifier_in_header(self):
        transport = ScriptedTransport(pdus=[b'\x05\x00\x01\xFF\x00'])
        client = scripted_client(transport, unit_identifier=17)
        await client.connect()

        self.assertTrue(await client.write_single_coil(1, True))
        self.assertEqual(transport.written[0][6], 17)
        self.assertEqual(transport.written[0][7:], b'\x05\x00\x01\xFF\x00')

    def test_transaction_ids_wrap(self):
        asyncio.run(self._test_transaction_ids_wrap())

    async def _test_transaction_ids_wrap(self):
        transport = ScriptedTransport(pdus=[b'\x06\x00\x00\x00\x00'] * 3)
        client = scripted_client(transport)
        await client.connect()
        client.state.sequencer.current = 65534

        for _ in range(3):
            await client.write_single_register(0, b'\x00\x00')

        ids = [MbapHeader.decode(adu[:7]).transaction_id for adu in transport.written]
        self.assertEqual(ids, [65535, 0, 1])

    def test_write_multiple_coils_request(self):
        asyncio.run(self._test_write_multiple_coils_request())

    async def _test_write_multiple_coils_request(self):
        transport = ScriptedTransport(pdus=[b'\x0F\x00\x00\x00\x09'])
        client = scripted_client(transport)
        await client.connect()

        self.assertTrue(await client.write_multiple_coils(0, [True] * 9))
        self.assertEqual(transport.written[0][4:6], b'\x00\x09')  # length
        self.assertEqual(transport.written[0][7:], b'\x0F\x00\x00\x00\x09\x02\xFF\x01')

    def test_validation_sends_nothing(self):
        asyncio.run(self._test_validation_sends_nothing())

    async def _test_validation_sends_nothing(self):
        transport = ScriptedTransport()
        client = scripted_client(transport)
        await client.connect()

        with self.assertRaises(ValidationError):
            await client.write_single_register(0, b'\x01\x02\x03')
        with self.assertRaises(ValidationError):
            await client.read_holding_registers(0, 126)
        with self.assertRaises(ValidationError):
            await client.read_discrete_inputs(0, 0)

        self.assertEqual(transport.written, [])
        self.assertEqual(client.state.sequencer.current, 0)
        self.assertFalse(client.busy)
        self.assertTrue(client.connected)

    def test_exception_reply(self):
        asyncio.run(self._test_exception_reply())

    async def _test_exception_reply(self):
        transport = ScriptedTransport(pdus=[b'\x83\x02', b'\x03\x02\x00\x07'])
        client = scripted_client(transport)
        await client.connect()

        with self.assertRaises(IllegalDataAccessError):
            await client.read_holding_registers(0, 1)

        # Device exceptions leave the connection usable
        self.assertTrue(client.connected)
        self.assertEqual(await client.read_holding_registers(0, 1), b'\x00\x07')

    def test_unexpected_function_code(self):
        asyncio.run(self._test_unexpected_function_code())

    async def _test_unexpected_function_code(self):
        transport = ScriptedTransport(pdus=[b'\x09\x02\x00\x07'])
        client = scripted_client(transport)
        await client.connect()

        with self.assertRaises(UnexpectedFunctionCodeError):
            await client.read_holding_registers(0, 1)

    def test_transaction_id_mismatch(self):
        asyncio.run(self._test_transaction_id_mismatch())

    async def _test_transaction_id_mismatch(self):
        stale = MbapHeader(99, 0, 5, 0).encode() + b'\x03\x02\x00\x07'
        transport = ScriptedTransport(raw_replies=[stale])
        client = scripted_client(transport)
        await client.connect()

        with self.assertRaises(InvalidResponseError):
            await client.read_holding_registers(0, 1)
        self.assertFalse(client.connected)
        self.assertTrue(transport.closed)

    def test_stream_closed_by_peer(self):
        asyncio.run(self._test_stream_closed_by_peer())

    async def _test_stream_closed_by_peer(self):
        transport = ScriptedTransport()
        client = scripted_client(transport)
        await client.connect()

        with self.assertRaises(TransportIoError) as ctx:
            await client.read_input_registers(0, 1)
        self.assertEqual(ctx.exception.code, 4)
        self.assertFalse(client.connected)
        self.assertFalse(client.busy)

    def test_write_failure(self):
        asyncio.run(self._test_write_failure())

    async def _test_write_failure(self):
        transport = ScriptedTransport(write_error=BrokenPipeError())
        client = scripted_client(transport)
        await client.connect()

        with self.assertRaises(TransportIoError) as ctx:
            await client.write_single_coil(0, False)
        self.assertEqual(ctx.exception.code, 3)
        self.assertEqual(ctx.exception.kind, ErrorKind.TRANSPORT_IO)

        with self.assertRaises(NotConnectedError):
            await client.write_single_coil(0, False)

    def test_read_timeout(self):
        asyncio.run(self._test_read_timeout())

    async def _test_read_timeout(self):
        transport = ScriptedTransport(pdus=[b'\x03\x02\x00\x07'])
        transport.read_gate = asyncio.Event()
        client = scripted_client(transport, timeout_s=0.05)
        await client.connect()

        with self.assertRaises(ModbusTimeoutError) as ctx:
            await client.read_holding_registers(0, 1)
        self.assertEqual(ctx.exception.kind, ErrorKind.TIMEOUT)
        self.assertFalse(client.busy)
        self.assertFalse(client.connected)
        self.assertTrue(transport.closed)


class TestBusyGuard(unittest.TestCase):
    """Test rejection of overlapping operations"""

    def test_second_request_rejected(self):
        asyncio.run(self._test_second_request_rejected())

    async def _test_second_request_rejected(self):
        transport = ScriptedTransport(pdus=[b'\x03\x02\x00\x07'])
        transport.read_gate = asyncio.Event()
        client = scripted_client(transport)
        await client.connect()

        first = asyncio.create_task(client.read_holding_registers(0, 1))
        await asyncio.sleep(0)
        self.assertTrue(client.busy)

        with self.assertRaises(BusyError) as ctx:
            await client.read_coils(0, 1)
        self.assertEqual(ctx.exception.code, 1)

        with self.assertRaises(BusyError):
            await client.close()

        with self.assertRaises(BusyError):
            await client.connect()

        transport.read_gate.set()
        self.assertEqual(await first, b'\x00\x07')
        self.assertEqual(len(transport.written), 1)
        self.assertFalse(client.busy)
        self.assertTrue(client.connected)


class TestDeviceIntegration(unittest.TestCase):
    """End-to-end tests against the simulated device over TCP"""

    def _run(self, scenario, timeout_s: float = 1.0, image: Optional[DeviceImage] = None):
        async def runner():
            async with FakeModbusDevice(image or DeviceImage(size=1000)) as device:
                async with ModbusTcpClient('127.0.0.1', port=device.port, unit_identifier=1,
                                           timeout_s=timeout_s) as client:
                    await scenario(device, client)
        asyncio.run(runner())

    def test_coils_round_trip(self):
        async def scenario(device, client):
            values = [True, False, True, True, False, False, False, False, True]
            self.assertTrue(await client.write_multiple_coils(100, values))
            self.assertEqual(device.image.coils[100:109], values)
            self.assertEqual(await client.read_coils(100, 9), values)

            self.assertTrue(await client.write_single_coil(101, True))
            self.assertTrue(device.image.coils[101])

        self._run(scenario)

    def test_discrete_inputs(self):
        image = DeviceImage(size=100)
        image.discrete_inputs[10] = True
        image.discrete_inputs[12] = True

        async def scenario(device, client):
            self.assertEqual(await client.read_discrete_inputs(10, 4), [True, False, True, False])

        self._run(scenario, image=image)

    def test_registers_round_trip(self):
        async def scenario(device, client):
            data = bytearray(8)
            client.set_uint(data, 0, 123456)
            client.set_float(data, 4, 50.0)
            self.assertTrue(await client.write_multiple_registers(0, bytes(data)))

            registers = await client.read_holding_registers(0, 4)
            self.assertEqual(registers, bytes(data))
            self.assertEqual(client.get_uint(registers, 0), 123456)
            self.assertEqual(client.get_float(registers, 4), 50.0)
            self.assertEqual(device.image.holding_registers[0:2], [0x0001, 0xE240])

        self._run(scenario)

    def test_input_registers(self):
        image = DeviceImage(size=100)
        image.input_registers[5] = 0x1234
        image.input_registers[6] = 0xABCD

        async def scenario(device, client):
            registers = await client.read_input_registers(5, 2)
            self.assertEqual(registers, b'\x12\x34\xAB\xCD')
            self.assertEqual(client.get_ushort(registers, 2), 0xABCD)

        self._run(scenario, image=image)

    def test_single_register_byte_order(self):
        async def scenario(device, client):
            self.assertTrue(await client.write_single_register(7, b'\x34\x12'))
            self.assertEqual(device.image.holding_registers[7], 0x1234)

        self._run(scenario)

    def test_device_exceptions(self):
        async def scenario(device, client):
            with self.assertRaises(IllegalDataAccessError):
                await client.read_holding_registers(990, 20)

            device.forced_exceptions[FunctionCode.WRITE_SINGLE_COIL] = ExceptionCode.SERVER_DEVICE_FAILURE
            with self.assertRaises(ServerDeviceFailureError):
                await client.write_single_coil(0, True)

            device.forced_exceptions[FunctionCode.READ_COILS] = 0x07
            with self.assertRaises(UnknownProtocolExceptionError) as ctx:
                await client.read_coils(0, 1)
            self.assertEqual(ctx.exception.exception_code, 0x07)

            self.assertTrue(client.connected)

        self._run(scenario)

    def test_reply_split_across_segments(self):
        """Replies written one byte at a time are reassembled from the length field"""
        image = DeviceImage(size=200)
        image.holding_registers[:125] = list(range(125))

        async def scenario(device, client):
            device.split_replies = True
            registers = await client.read_holding_registers(0, 125)
            self.assertEqual(len(registers), 250)
            self.assertEqual(client.get_ushort(registers, 124 * 2), 124)

        self._run(scenario, image=image)

    def test_sequential_transaction_ids(self):
        async def scenario(device, client):
            for _ in range(5):
                await client.read_coils(0, 1)
            ids = [MbapHeader.decode(adu[:7]).transaction_id for adu in device.requests]
            self.assertEqual(ids, [1, 2, 3, 4, 5])
            self.assertTrue(all(adu[6] == 1 for adu in device.requests))

        self._run(scenario)

    def test_timeout_drops_connection(self):
        async def scenario(device, client):
            device.reply_delay_s = 0.3
            with self.assertRaises(ModbusTimeoutError):
                await client.read_coils(0, 1)
            self.assertFalse(client.connected)
            self.assertFalse(client.is_healthy())

        self._run(scenario, timeout_s=0.05)

    def test_cancelled_request_drops_connection(self):
        """A reply still in flight after cancellation is never read by the next request"""
        async def scenario(device, client):
            device.reply_delay_s = 0.2
            with self.assertRaises(asyncio.TimeoutError):
                await asyncio.wait_for(client.read_coils(0, 1), 0.02)
            self.assertFalse(client.connected)
            self.assertFalse(client.busy)

            with self.assertRaises(NotConnectedError):
                await client.read_coils(0, 1)

            device.reply_delay_s = 0.0
            device.image.coils[0] = True
            await client.connect()
            self.assertEqual(await client.read_coils(0, 1), [True])

        self._run(scenario)

    def test_health_and_stats(self):
        async def scenario(device, client):
            self.assertTrue(client.is_healthy())
            await client.read_coils(0, 8)
            await client.write_single_coil(0, True)

            stats = client.get_stats()
            self.assertEqual(stats['reads'], 1)
            self.assertEqual(stats['writes'], 1)
            self.assertEqual(stats['errors'], 0)
            self.assertEqual(stats['bytes_sent'], 24)
            self.assertEqual(stats['bytes_received'], 10 + 12)

        self._run(scenario)

    def test_connect_refused(self):
        async def scenario():
            device = FakeModbusDevice()
            await device.start()
            port = device.port
            await device.stop()

            client = ModbusTcpClient('127.0.0.1', port=port, timeout_s=1.0)
            with self.assertRaises(ConnectFailedError):
                await client.connect()
            self.assertFalse(client.connected)

        asyncio.run(scenario())


if __name__ == '__main__':
    unittest.main(verbosity=2)
