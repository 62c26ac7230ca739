"""
Register Value Conversion
=========================

Helpers for reading and writing numeric values inside register buffers
(as returned by read_holding_registers / read_input_registers and as
passed to write_multiple_registers).

Byte order: values are stored big-endian, most significant byte at the
lowest offset, which is how Modbus transmits register contents. 32-bit
values span two consecutive registers, high word first.

Examples:
    >>> buf = bytearray(4)
    >>> set_float(buf, 0, 50.0)
    >>> bytes(buf)
    b'BH\\x00\\x00'
    >>> get_float(buf, 0)
    50.0
"""

import struct


def get_ushort(data: bytes, offset: int) -> int:
    """Unsigned 16-bit value at `offset`."""
    return struct.unpack_from('>H', data, offset)[0]


def set_ushort(data: bytearray, offset: int, value: int):
    """Store an unsigned 16-bit value at `offset`."""
    struct.pack_into('>H', data, offset, value & 0xFFFF)


def get_uint(data: bytes, offset: int) -> int:
    """Unsigned 32-bit value at `offset`."""
    return struct.unpack_from('>I', data, offset)[0]


def set_uint(data: bytearray, offset: int, value: int):
    """Store an unsigned 32-bit value at `offset`."""
    struct.pack_into('>I', data, offset, value & 0xFFFFFFFF)


def get_float(data: bytes, offset: int) -> float:
    """IEEE-754 single-precision value at `offset`."""
    return struct.unpack_from('>f', data, offset)[0]


def set_float(data: bytearray, offset: int, value: float):
    """Store an IEEE-754 single-precision value at `offset`."""
    struct.pack_into('>f', data, offset, value)
