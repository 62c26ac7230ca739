"""
Modbus TCP Framing
==================

Builds request ADUs and decodes MBAP headers of replies.

MBAP Header Format (7 bytes):
    Transaction ID:  2 bytes (big-endian, echoed by the device)
    Protocol ID:     2 bytes (always 0x0000 for Modbus)
    Length:          2 bytes (byte count of Unit ID + PDU)
    Unit ID:         1 byte

PDU Format:
    Function Code:   1 byte
    Data:            Variable (function-specific)

TCP does not preserve message boundaries, so a reply is read as a 7-byte
header first and then exactly `length - 1` further bytes.

Request payload encoders validate their arguments against the protocol
limits and raise ValidationError before anything is written to the wire.
"""

import struct
from dataclasses import dataclass
from typing import List, Optional, Sequence

from modbus_tcp.constants import (
    COIL_OFF,
    COIL_ON,
    MAX_ADDRESS,
    MAX_MBAP_LENGTH,
    MBAP_HEADER_LENGTH,
    MIN_MBAP_LENGTH,
    PROTOCOL_IDENTIFIER,
    FunctionCode,
    QuantityLimit,
)
from modbus_tcp.exceptions import InvalidResponseError, ValidationError


# Validation error code and message per operation
VALIDATION_ERRORS = {
    FunctionCode.READ_COILS: (14, "Quantity of coils is out of range."),
    FunctionCode.READ_DISCRETE_INPUTS: (15, "Quantity of discrete inputs is out of range."),
    FunctionCode.READ_HOLDING_REGISTERS: (16, "Quantity of holding registers is out of range."),
    FunctionCode.READ_INPUT_REGISTERS: (17, "Quantity of input registers is out of range."),
    FunctionCode.WRITE_SINGLE_REGISTER: (18, "Byte count of register is out of range."),
    FunctionCode.WRITE_MULTIPLE_COILS: (19, "Quantity of coils is out of range."),
    FunctionCode.WRITE_MULTIPLE_REGISTERS: (20, "Byte count of registers is out of range."),
}

READ_LIMITS = {
    FunctionCode.READ_COILS: QuantityLimit.READ_COILS,
    FunctionCode.READ_DISCRETE_INPUTS: QuantityLimit.READ_DISCRETE_INPUTS,
    FunctionCode.READ_HOLDING_REGISTERS: QuantityLimit.READ_HOLDING_REGISTERS,
    FunctionCode.READ_INPUT_REGISTERS: QuantityLimit.READ_INPUT_REGISTERS,
}


@dataclass(frozen=True)
class MbapHeader:
    """Decoded MBAP header."""
    transaction_id: int
    protocol_id: int
    length: int
    unit_id: int

    @property
    def pdu_length(self) -> int:
        """Bytes still to read after the header (length counts the unit id)."""
        return self.length - 1

    def encode(self) -> bytes:
        return struct.pack('>HHHB', self.transaction_id, self.protocol_id,
                           self.length, self.unit_id)

    @staticmethod
    def decode(data: bytes) -> 'MbapHeader':
        """
        Decode and sanity-check a 7-byte MBAP header.

        Raises:
            InvalidResponseError: wrong size, non-zero protocol id, or a
                length field outside what a Modbus PDU can carry
        """
        if len(data) != MBAP_HEADER_LENGTH:
            raise InvalidResponseError(f"MBAP header must be 7 bytes, got {len(data)}.")

        transaction_id, protocol_id, length, unit_id = struct.unpack('>HHHB', data)

        if protocol_id != PROTOCOL_IDENTIFIER:
            raise InvalidResponseError(f"Invalid protocol identifier {protocol_id:#06x}.")

        if not MIN_MBAP_LENGTH <= length <= MAX_MBAP_LENGTH:
            raise InvalidResponseError(f"Invalid MBAP length {length}.")

        return MbapHeader(transaction_id, protocol_id, length, unit_id)


def build_adu(transaction_id: int, unit_id: int, function_code: int, payload: bytes = b'') -> bytes:
    """Assemble MBAP header + PDU for a request."""
    pdu = bytes([function_code]) + payload
    header = MbapHeader(transaction_id, PROTOCOL_IDENTIFIER, len(pdu) + 1, unit_id)
    return header.encode() + pdu


def _validation_error(function_code: FunctionCode, message: Optional[str] = None) -> ValidationError:
    code, default_message = VALIDATION_ERRORS.get(function_code, (None, None))
    return ValidationError(message or default_message, code=code)


def _check_address(function_code: FunctionCode, address: int):
    if not 0 <= address <= MAX_ADDRESS:
        raise _validation_error(function_code, f"Address {address} is out of range.")


def pack_bits(values: Sequence[bool]) -> bytes:
    """Pack booleans LSB-first, 8 per byte; padding bits are 0."""
    packed = bytearray((len(values) + 7) // 8)
    for i, value in enumerate(values):
        if value:
            packed[i // 8] |= 1 << (i % 8)
    return bytes(packed)


def unpack_bits(data: bytes, quantity: int) -> List[bool]:
    """Inverse of pack_bits, truncated to `quantity` items."""
    return [bool((data[i // 8] >> (i % 8)) & 1) for i in range(quantity)]


def encode_read_request(function_code: FunctionCode, address: int, quantity: int) -> bytes:
    """Payload for FC01-FC04: starting address + quantity."""
    limit = READ_LIMITS[function_code]
    if not 1 <= quantity <= limit:
        raise _validation_error(function_code)
    _check_address(function_code, address)
    return struct.pack('>HH', address, quantity)


def encode_write_single_coil(address: int, value: bool) -> bytes:
    """Payload for FC05: address + 0xFF00 (on) or 0x0000 (off)."""
    _check_address(FunctionCode.WRITE_SINGLE_COIL, address)
    return struct.pack('>HH', address, COIL_ON if value else COIL_OFF)


def encode_write_single_register(address: int, value_bytes: bytes) -> bytes:
    """
    Payload for FC06: address + the two value bytes in swapped order.

    The caller's second byte goes on the wire first.
    """
    if len(value_bytes) != 2:
        raise _validation_error(FunctionCode.WRITE_SINGLE_REGISTER)
    _check_address(FunctionCode.WRITE_SINGLE_REGISTER, address)
    return struct.pack('>H', address) + bytes([value_bytes[1], value_bytes[0]])


def encode_write_multiple_coils(address: int, values: Sequence[bool]) -> bytes:
    """Payload for FC15: address + quantity + byte count + packed coils."""
    quantity = len(values)
    if not 1 <= quantity <= QuantityLimit.WRITE_MULTIPLE_COILS:
        raise _validation_error(FunctionCode.WRITE_MULTIPLE_COILS)
    _check_address(FunctionCode.WRITE_MULTIPLE_COILS, address)
    packed = pack_bits(values)
    return struct.pack('>HHB', address, quantity, len(packed)) + packed


def encode_write_multiple_registers(address: int, register_bytes: bytes) -> bytes:
    """Payload for FC16: address + register count + byte count + raw bytes."""
    byte_count = len(register_bytes)
    if byte_count == 0 or byte_count % 2 != 0 or byte_count > QuantityLimit.WRITE_MULTIPLE_REGISTERS:
        raise _validation_error(FunctionCode.WRITE_MULTIPLE_REGISTERS)
    _check_address(FunctionCode.WRITE_MULTIPLE_REGISTERS, address)
    return struct.pack('>HHB', address, byte_count // 2, byte_count) + bytes(register_bytes)
