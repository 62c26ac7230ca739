"""
Modbus TCP Client Errors
========================

Every failure the client can report is a subclass of ModbusTcpClientError
carrying a numeric code, a message and an ErrorKind.

Code map:
    1       Busy
    2       Not connected
    3-4     Transport I/O (send failed / stream closed)
    5-7     Endpoint, connect and stream failures
    8       Unexpected function code in reply
    9       Device exception with an undefined sub-code
    10-13   Device exception (illegal function / data access / data value /
            server device failure)
    14-20   Local validation, one code per operation
    21      Timeout
    22      Malformed response frame
"""

from enum import Enum
from typing import Dict, Optional, Type

from modbus_tcp.constants import ExceptionCode


class ErrorKind(Enum):
    """Distinguishable failure kinds."""
    BUSY = "busy"
    NOT_CONNECTED = "not_connected"
    TRANSPORT_IO = "transport_io"
    INVALID_ENDPOINT = "invalid_endpoint"
    CONNECT_FAILED = "connect_failed"
    STREAM_UNAVAILABLE = "stream_unavailable"
    VALIDATION = "validation"
    UNEXPECTED_FUNCTION_CODE = "unexpected_function_code"
    PROTOCOL_EXCEPTION = "protocol_exception"
    UNKNOWN_PROTOCOL_EXCEPTION = "unknown_protocol_exception"
    TIMEOUT = "timeout"
    INVALID_RESPONSE = "invalid_response"


class ModbusTcpClientError(Exception):
    """Base class for all client failures."""

    kind: ErrorKind
    default_code: int = 0
    default_message: str = "Modbus TCP client error."

    def __init__(self, message: Optional[str] = None, code: Optional[int] = None):
        self.code = self.default_code if code is None else code
        self.message = self.default_message if message is None else message
        super().__init__(self.message)

    def __str__(self):
        return f"{self.code} : {self.message}"


class BusyError(ModbusTcpClientError):
    kind = ErrorKind.BUSY
    default_code = 1
    default_message = "ModbusTcpClient is busy."


class NotConnectedError(ModbusTcpClientError):
    kind = ErrorKind.NOT_CONNECTED
    default_code = 2
    default_message = "ModbusTcpClient is not connected to a remote device."


class TransportIoError(ModbusTcpClientError):
    """Write or read on the stream failed."""
    kind = ErrorKind.TRANSPORT_IO
    default_code = 3
    default_message = "Sending request failed."

    @classmethod
    def stream_closed(cls) -> 'TransportIoError':
        return cls("Network stream is closed.", code=4)


class InvalidEndpointError(ModbusTcpClientError):
    kind = ErrorKind.INVALID_ENDPOINT
    default_code = 5
    default_message = "Hostname or port is not valid."


class ConnectFailedError(ModbusTcpClientError):
    kind = ErrorKind.CONNECT_FAILED
    default_code = 6
    default_message = "Connection failed."


class StreamUnavailableError(ModbusTcpClientError):
    kind = ErrorKind.STREAM_UNAVAILABLE
    default_code = 7
    default_message = "Network stream failed."


class UnexpectedFunctionCodeError(ModbusTcpClientError):
    kind = ErrorKind.UNEXPECTED_FUNCTION_CODE
    default_code = 8
    default_message = "Unexpected function code."

    def __init__(self, function_code: Optional[int] = None, message: Optional[str] = None):
        super().__init__(message)
        self.function_code = function_code


class ModbusProtocolError(ModbusTcpClientError):
    """Device answered with an exception reply."""
    kind = ErrorKind.PROTOCOL_EXCEPTION
    exception_code: Optional[int] = None


class UnknownProtocolExceptionError(ModbusProtocolError):
    kind = ErrorKind.UNKNOWN_PROTOCOL_EXCEPTION
    default_code = 9
    default_message = "Modbus exception, unexpected modbus error code."

    def __init__(self, exception_code: Optional[int] = None, message: Optional[str] = None):
        super().__init__(message)
        self.exception_code = exception_code


class IllegalFunctionError(ModbusProtocolError):
    default_code = 10
    default_message = "Modbus exception, illegal function."
    exception_code = ExceptionCode.ILLEGAL_FUNCTION


class IllegalDataAccessError(ModbusProtocolError):
    default_code = 11
    default_message = "Modbus exception, illegal data access."
    exception_code = ExceptionCode.ILLEGAL_DATA_ACCESS


class IllegalDataValueError(ModbusProtocolError):
    default_code = 12
    default_message = "Modbus exception, illegal data value."
    exception_code = ExceptionCode.ILLEGAL_DATA_VALUE


class ServerDeviceFailureError(ModbusProtocolError):
    default_code = 13
    default_message = "Modbus exception, server device failure."
    exception_code = ExceptionCode.SERVER_DEVICE_FAILURE


class ValidationError(ModbusTcpClientError):
    """Caller argument violates a protocol limit; nothing was sent."""
    kind = ErrorKind.VALIDATION
    default_code = 14
    default_message = "Argument is out of range."


class ModbusTimeoutError(ModbusTcpClientError):
    kind = ErrorKind.TIMEOUT
    default_code = 21
    default_message = "Operation timed out."


class InvalidResponseError(ModbusTcpClientError):
    kind = ErrorKind.INVALID_RESPONSE
    default_code = 22
    default_message = "Response frame is malformed."


PROTOCOL_EXCEPTIONS: Dict[int, Type[ModbusProtocolError]] = {
    ExceptionCode.ILLEGAL_FUNCTION: IllegalFunctionError,
    ExceptionCode.ILLEGAL_DATA_ACCESS: IllegalDataAccessError,
    ExceptionCode.ILLEGAL_DATA_VALUE: IllegalDataValueError,
    ExceptionCode.SERVER_DEVICE_FAILURE: ServerDeviceFailureError,
}


def protocol_exception_for(exception_code: int) -> ModbusProtocolError:
    """Map a device exception sub-code to the matching error instance."""
    error_class = PROTOCOL_EXCEPTIONS.get(exception_code)
    if error_class is None:
        return UnknownProtocolExceptionError(exception_code)
    return error_class()
