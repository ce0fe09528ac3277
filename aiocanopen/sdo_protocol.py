"""SDO command specifiers, abort codes, addressing and errors."""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum

from .frame import STANDARD_ID_MAX, CanFrame, CanId, InvalidIdError
from .objects import ObjectIndex

U32_MAX = 0xFFFF_FFFF


class ClientCommand(IntEnum):
    """SDO command that can be sent by a client."""

    SEGMENT_DOWNLOAD = 0
    INITIATE_DOWNLOAD = 1
    INITIATE_UPLOAD = 2
    SEGMENT_UPLOAD = 3
    ABORT_TRANSFER = 4

    def __str__(self) -> str:
        return _COMMAND_NAMES[self.name]


class ServerCommand(IntEnum):
    """SDO command that can be sent by a server."""

    SEGMENT_UPLOAD = 0
    SEGMENT_DOWNLOAD = 1
    INITIATE_UPLOAD = 2
    INITIATE_DOWNLOAD = 3
    ABORT_TRANSFER = 4

    def __str__(self) -> str:
        return _COMMAND_NAMES[self.name]


_COMMAND_NAMES = {
    "SEGMENT_DOWNLOAD": "download-segment",
    "INITIATE_DOWNLOAD": "initiate-download",
    "INITIATE_UPLOAD": "initiate-upload",
    "SEGMENT_UPLOAD": "upload-segment",
    "ABORT_TRANSFER": "abort-transfer",
}


class AbortReason(IntEnum):
    """The reason for aborting a transfer (CiA 301 section 7.2.3.3.17 table 22)."""

    TOGGLE_BIT_NOT_ALTERNATED = 0x0503_0000
    SDO_PROTOCOL_TIMED_OUT = 0x0504_0000
    INVALID_OR_UNKNOWN_COMMAND_SPECIFIER = 0x0504_0001
    INVALID_BLOCK_SIZE = 0x0504_0002
    INVALID_SEQUENCE_NUMBER = 0x0504_0003
    CRC_ERROR = 0x0504_0004
    OUT_OF_MEMORY = 0x0504_0005
    UNSUPPORTED_OBJECT_ACCESS = 0x0601_0000
    READ_FROM_WRITE_ONLY_OBJECT = 0x0601_0001
    WRITE_TO_READ_ONLY_OBJECT = 0x0601_0002
    OBJECT_DOES_NOT_EXIST = 0x0602_0000
    OBJECT_CAN_NOT_BE_MAPPED = 0x0604_0041
    NUMBER_AND_LENGTH_OF_OBJECTS_EXCEED_PDO_LENGTH = 0x0604_0042
    GENERAL_PARAMETER_ERROR = 0x0604_0043
    GENERAL_INTERNAL_ERROR = 0x0604_0047
    HARDWARE_ERROR = 0x0606_0000
    LENGTH_MISMATCH = 0x0607_0010
    LENGTH_TOO_HIGH = 0x0607_0012
    LENGTH_TOO_LOW = 0x0607_0013
    SUB_INDEX_DOES_NOT_EXIST = 0x0609_0011
    OBJECT_VALUE_INVALID = 0x0609_0030
    OBJECT_VALUE_TOO_HIGH = 0x0609_0031
    OBJECT_VALUE_TOO_LOW = 0x0609_0032
    MAXIMUM_BELOW_MINIMUM = 0x0609_0036
    RESOURCE_NOT_AVAILABLE = 0x060A_0023
    GENERAL_ERROR = 0x0800_0000
    CAN_NOT_TRANSFER_DATA = 0x0800_0020
    LOCAL_CONTROL_ERROR = 0x0800_0021
    INVALID_DEVICE_STATE_FOR_TRANSFER = 0x0800_0022
    FAILED_TO_GENERATE_DYNAMIC_DICTIONARY = 0x0800_0023
    NO_DATA_AVAILABLE = 0x0800_0024

    def __str__(self) -> str:
        return _ABORT_DESCRIPTIONS[self.name]


_ABORT_DESCRIPTIONS = {
    "TOGGLE_BIT_NOT_ALTERNATED": "toggle bit not alternated",
    "SDO_PROTOCOL_TIMED_OUT": "SDO protocol timed out",
    "INVALID_OR_UNKNOWN_COMMAND_SPECIFIER": "invalid or unknown SDO command",
    "INVALID_BLOCK_SIZE": "invalid block size ",
    "INVALID_SEQUENCE_NUMBER": "invalid sequence number",
    "CRC_ERROR": "CRC error",
    "OUT_OF_MEMORY": "out of memory",
    "UNSUPPORTED_OBJECT_ACCESS": "unsupported access to an object",
    "READ_FROM_WRITE_ONLY_OBJECT": "attempt to read a write only object",
    "WRITE_TO_READ_ONLY_OBJECT": "attempt to write a read only object",
    "OBJECT_DOES_NOT_EXIST": "object does not exist in the object dictionary",
    "OBJECT_CAN_NOT_BE_MAPPED": "object cannot be mapped to the PDO",
    "NUMBER_AND_LENGTH_OF_OBJECTS_EXCEED_PDO_LENGTH":
        "the number and length of the objects to be mapped would exceed PDO length",
    "GENERAL_PARAMETER_ERROR": "general parameter incompatibility reason",
    "GENERAL_INTERNAL_ERROR": "general internal incompatibility in the device",
    "HARDWARE_ERROR": "access failed due to an hardware error",
    "LENGTH_MISMATCH": "data type does not match, length of service parameter does not match",
    "LENGTH_TOO_HIGH": "data type does not match, length of service parameter too high",
    "LENGTH_TOO_LOW": "data type does not match, length of service parameter too low",
    "SUB_INDEX_DOES_NOT_EXIST": "sub-index does not exist",
    "OBJECT_VALUE_INVALID": "invalid value for parameter",
    "OBJECT_VALUE_TOO_HIGH": "value of parameter written is too high",
    "OBJECT_VALUE_TOO_LOW": "value of parameter written is too low",
    "MAXIMUM_BELOW_MINIMUM": "maximum value is less than minimum value",
    "RESOURCE_NOT_AVAILABLE": "resource not available: SDO connection",
    "GENERAL_ERROR": "general error",
    "CAN_NOT_TRANSFER_DATA": "data cannot be transferred or stored to the application",
    "LOCAL_CONTROL_ERROR":
        "data cannot be transferred or stored to the application because of local control",
    "INVALID_DEVICE_STATE_FOR_TRANSFER":
        "data cannot be transferred or stored to the application because of the present device state",
    "FAILED_TO_GENERATE_DYNAMIC_DICTIONARY":
        "dynamic object dictionary generation failed or no object dictionary is present",
    "NO_DATA_AVAILABLE": "no data available",
}


@dataclass(frozen=True)
class SdoAddress:
    """The pair of COB IDs (without node ID) used for SDO commands and responses."""

    command_address: int
    response_address: int

    def __post_init__(self) -> None:
        for address in (self.command_address, self.response_address):
            if not 0 <= address <= STANDARD_ID_MAX:
                raise InvalidIdError(address, extended=False)

    @classmethod
    def standard(cls) -> SdoAddress:
        """The standard SDO addresses: 0x600 for commands, 0x580 for responses."""
        return cls(0x600, 0x580)

    def command_id(self, node_id: int) -> CanId:
        """The CAN ID for sending SDO commands to a node."""
        return CanId(self.command_address | node_id)

    def response_id(self, node_id: int) -> CanId:
        """The CAN ID on which a node replies to SDO commands."""
        return CanId(self.response_address | node_id)


class SdoError(Exception):
    """An error during an SDO transfer."""


class DataLengthExceedsMaximum(SdoError):
    """The data is too long for an SDO transfer."""

    def __init__(self, data_len: int) -> None:
        self.data_len = data_len
        super().__init__(
            f"Data length is too long for an SDO transfer: length is {data_len}, "
            f"but the maximum is {U32_MAX}"
        )


class SendFailed(SdoError):
    """Sending a CAN frame failed."""

    def __init__(self, cause: OSError) -> None:
        self.cause = cause
        super().__init__(f"Failed to transmit can frame: {cause}")


class RecvFailed(SdoError):
    """Receiving a CAN frame failed."""

    def __init__(self, cause: OSError) -> None:
        self.cause = cause
        super().__init__(f"Failed to receive can frame: {cause}")


class SdoTimeout(SdoError, TimeoutError):
    """No response arrived before the timeout."""

    def __init__(self) -> None:
        super().__init__("Timeout while waiting for response")


class BufferTooSmall(SdoError):
    """The receiving buffer cannot hold the requested object."""

    def __init__(self, available: int, needed: int) -> None:
        self.available = available
        self.needed = needed
        super().__init__(
            f"Buffer is too small to receive the requested data, buffer size is "
            f"{available} bytes, need atleast {needed}"
        )


class TransferAborted(SdoError):
    """The SDO server aborted the transfer."""

    def __init__(self, reason: AbortReason | int) -> None:
        self.reason = reason
        if isinstance(reason, AbortReason):
            message = f"SDO transfer aborted by server: {reason}"
        else:
            message = f"SDO transfer aborted by server with unknown reason code: 0x{reason:04X}"
        super().__init__(message)


class MalformedResponse(SdoError):
    """The server response is not a well-formed SDO response."""

    def __init__(self, *, frame_size: int | None = None, command: int | None = None) -> None:
        self.frame_size = frame_size
        self.command = command
        if command is not None:
            message = f"Invalid server command: 0x{command:02X}"
        else:
            message = f"Wrong frame size: expected 8 bytes, got {frame_size}"
        super().__init__(message)


class UnexpectedResponse(SdoError):
    """The server answered with a different command than expected."""

    def __init__(self, expected: ServerCommand, actual: ServerCommand) -> None:
        self.expected = expected
        self.actual = actual
        super().__init__(f"Unexpected response: expected {expected}, got {actual}")


class NoExpeditedOrSizeFlag(SdoError):
    """Neither the expedited nor the size flag is set in the response."""

    def __init__(self) -> None:
        super().__init__(
            "Invalid flags in server response: neither the expedited nor the size flags is set"
        )


class InvalidToggleFlag(SdoError):
    """The toggle flag of a segment response is not in the expected state."""

    def __init__(self) -> None:
        super().__init__("Invalid toggle flag in server response")


class WrongDataCount(SdoError):
    """The server sent a different amount of data than it announced."""

    def __init__(self, expected: int, actual: int) -> None:
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Received wrong amount of data from server, expected {expected} bytes, got {actual}"
        )


def get_server_command(frame: CanFrame) -> tuple[ServerCommand, bytes]:
    """Extract the server command and the 8 data bytes from an SDO response frame."""
    if frame.is_rtr():
        raise MalformedResponse(frame_size=0)
    data = frame.data
    if len(data) != 8:
        raise MalformedResponse(frame_size=len(data))
    raw_command = data[0] >> 5
    try:
        command = ServerCommand(raw_command)
    except ValueError:
        raise MalformedResponse(command=raw_command) from None
    return command, data


def check_server_command(frame: CanFrame, expected: ServerCommand) -> bytes:
    """Return the frame data if it carries the expected server command.

    An abort from the server raises TransferAborted; any other command
    raises UnexpectedResponse.
    """
    command, data = get_server_command(frame)
    if command == expected:
        return data
    if command == ServerCommand.ABORT_TRANSFER:
        code = int.from_bytes(data[4:8], "little")
        try:
            reason: AbortReason | int = AbortReason(code)
        except ValueError:
            reason = code
        raise TransferAborted(reason)
    raise UnexpectedResponse(expected, command)


def make_abort_frame(
    address: SdoAddress,
    node_id: int,
    obj: ObjectIndex,
    reason: AbortReason,
) -> CanFrame:
    """Build the frame that tells an SDO server the transfer is aborted."""
    data = (
        bytes([ClientCommand.ABORT_TRANSFER << 5])
        + obj.index.to_bytes(2, "big")
        + bytes([obj.subindex])
        + int(reason).to_bytes(4, "big")
    )
    return CanFrame(address.command_id(node_id), data)