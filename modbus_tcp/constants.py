"""
Modbus Protocol Constants
=========================

Function codes, device exception sub-codes and per-function quantity
limits used by the client.

Quantity limits are protocol maxima (Modbus Application Protocol v1.1b3):
    FC01/FC02: 2000 bits  (250 data bytes)
    FC03/FC04: 125 registers
    FC15:      1968 coils (246 data bytes)
    FC16:      246 data bytes (123 registers)
"""

from enum import IntEnum


MBAP_HEADER_LENGTH = 7
PROTOCOL_IDENTIFIER = 0x0000
EXCEPTION_OFFSET = 0x80

# MBAP length field counts the unit id plus the PDU (max PDU is 253 bytes)
MIN_MBAP_LENGTH = 2
MAX_MBAP_LENGTH = 254

COIL_ON = 0xFF00
COIL_OFF = 0x0000

MAX_ADDRESS = 0xFFFF
MAX_TRANSACTION_ID = 0xFFFF


class FunctionCode(IntEnum):
    """Supported Modbus function codes."""
    READ_COILS = 1
    READ_DISCRETE_INPUTS = 2
    READ_HOLDING_REGISTERS = 3
    READ_INPUT_REGISTERS = 4
    WRITE_SINGLE_COIL = 5
    WRITE_SINGLE_REGISTER = 6
    WRITE_MULTIPLE_COILS = 15
    WRITE_MULTIPLE_REGISTERS = 16

    @property
    def exception_code(self) -> int:
        """Function code a device replies with when rejecting this request."""
        return self.value | EXCEPTION_OFFSET


class ExceptionCode(IntEnum):
    """Modbus exception sub-codes returned by a device."""
    ILLEGAL_FUNCTION = 0x01
    ILLEGAL_DATA_ACCESS = 0x02
    ILLEGAL_DATA_VALUE = 0x03
    SERVER_DEVICE_FAILURE = 0x04


class QuantityLimit(IntEnum):
    """Protocol maxima per function (items, or bytes for FC16)."""
    READ_COILS = 2000
    READ_DISCRETE_INPUTS = 2000
    READ_HOLDING_REGISTERS = 125
    READ_INPUT_REGISTERS = 125
    WRITE_MULTIPLE_COILS = 1968
    WRITE_MULTIPLE_REGISTERS = 246
