"""
Modbus TCP Client
=================

Asynchronous client-side implementation of the Modbus TCP protocol.

This package provides:
    - ModbusTcpClient: connect/close and FC01-FC06, FC15, FC16 requests
    - MBAP framing with length-driven reply reassembly
    - Typed errors for busy/connection/transport/validation failures and
      device exception replies
    - Register value helpers (uint16, uint32, float32)

Usage:
    from modbus_tcp import ModbusTcpClient

    async with ModbusTcpClient("192.168.1.10", unit_identifier=1) as client:
        coils = await client.read_coils(0, 16)
"""

from modbus_tcp.client import ModbusTcpClient
from modbus_tcp.connection import ConnectionPhase, ConnectionState
from modbus_tcp.constants import ExceptionCode, FunctionCode, QuantityLimit
from modbus_tcp.exceptions import (
    BusyError,
    ConnectFailedError,
    ErrorKind,
    IllegalDataAccessError,
    IllegalDataValueError,
    IllegalFunctionError,
    InvalidEndpointError,
    InvalidResponseError,
    ModbusProtocolError,
    ModbusTcpClientError,
    ModbusTimeoutError,
    NotConnectedError,
    ServerDeviceFailureError,
    StreamUnavailableError,
    TransportIoError,
    UnexpectedFunctionCodeError,
    UnknownProtocolExceptionError,
    ValidationError,
)
from modbus_tcp.numeric import (
    get_float,
    get_uint,
    get_ushort,
    set_float,
    set_uint,
    set_ushort,
)
from modbus_tcp.sequencer import TransactionSequencer

__all__ = [
    # Client
    'ModbusTcpClient',
    'ConnectionState',
    'ConnectionPhase',
    'TransactionSequencer',

    # Protocol constants
    'FunctionCode',
    'ExceptionCode',
    'QuantityLimit',

    # Errors
    'ErrorKind',
    'ModbusTcpClientError',
    'BusyError',
    'NotConnectedError',
    'TransportIoError',
    'InvalidEndpointError',
    'ConnectFailedError',
    'StreamUnavailableError',
    'ValidationError',
    'UnexpectedFunctionCodeError',
    'ModbusProtocolError',
    'IllegalFunctionError',
    'IllegalDataAccessError',
    'IllegalDataValueError',
    'ServerDeviceFailureError',
    'UnknownProtocolExceptionError',
    'ModbusTimeoutError',
    'InvalidResponseError',

    # Register helpers
    'get_ushort',
    'set_ushort',
    'get_uint',
    'set_uint',
    'get_float',
    'set_float',
]
