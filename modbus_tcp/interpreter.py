"""
Modbus Response Interpretation
==============================

Classifies a reply PDU and decodes its payload.

Reply classes:
    function code == expected          success, payload follows
    function code == expected | 0x80   device exception, 1-byte sub-code
    anything else                      UnexpectedFunctionCodeError
"""

import logging
from typing import List

from modbus_tcp.constants import EXCEPTION_OFFSET
from modbus_tcp.exceptions import (
    InvalidResponseError,
    UnexpectedFunctionCodeError,
    protocol_exception_for,
)
from modbus_tcp.framing import unpack_bits

logger = logging.getLogger(__name__)


def interpret(expected_function_code: int, pdu: bytes) -> bytes:
    """
    Check a reply PDU against the request's function code.

    Args:
        expected_function_code: Function code of the request
        pdu: Reply PDU (function code + payload)

    Returns:
        Payload following the function code of a success reply

    Raises:
        ModbusProtocolError: device returned an exception reply
        UnexpectedFunctionCodeError: function code matches neither form
        InvalidResponseError: PDU too short to classify
    """
    if not pdu:
        raise InvalidResponseError("Response PDU is empty.")

    function_code = pdu[0]

    if function_code == expected_function_code:
        return pdu[1:]

    if function_code == expected_function_code | EXCEPTION_OFFSET:
        if len(pdu) < 2:
            raise InvalidResponseError("Exception response without exception code.")
        exception_code = pdu[1]
        logger.debug(f"FC{expected_function_code:02d} rejected by device, exception code {exception_code:#04x}")
        raise protocol_exception_for(exception_code)

    raise UnexpectedFunctionCodeError(function_code)


def _data_after_byte_count(payload: bytes, required: int) -> bytes:
    if len(payload) < 1:
        raise InvalidResponseError("Response is missing the byte count.")
    byte_count = payload[0]
    data = payload[1:1 + byte_count]
    if byte_count < required or len(data) < required:
        raise InvalidResponseError(
            f"Response carries {len(data)} data bytes, {required} required."
        )
    return data


def decode_bits(payload: bytes, quantity: int) -> List[bool]:
    """Decode a FC01/FC02 payload into `quantity` booleans."""
    data = _data_after_byte_count(payload, (quantity + 7) // 8)
    return unpack_bits(data, quantity)


def decode_registers(payload: bytes, quantity: int) -> bytes:
    """Decode a FC03/FC04 payload into `quantity * 2` bytes in wire order."""
    data = _data_after_byte_count(payload, quantity * 2)
    return bytes(data[:quantity * 2])
