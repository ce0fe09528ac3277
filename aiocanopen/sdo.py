"""SDO upload and download transfers, expedited and segmented."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Protocol, Union

from .frame import CanFrame, CanId
from .objects import ObjectIndex
from .sdo_protocol import (
    U32_MAX,
    AbortReason,
    BufferTooSmall,
    ClientCommand,
    DataLengthExceedsMaximum,
    InvalidToggleFlag,
    NoExpeditedOrSizeFlag,
    RecvFailed,
    SdoAddress,
    SdoError,
    SdoTimeout,
    SendFailed,
    ServerCommand,
    WrongDataCount,
    check_server_command,
    make_abort_frame,
)

log = logging.getLogger(__name__)

SEGMENT_SIZE = 7
EXPEDITED_SIZE = 4


class SdoBus(Protocol):
    """What an SDO transfer needs from the bus it runs on.

    ``send_frame`` and ``recv_new_by_can_id`` raise OSError on socket failure;
    ``recv_new_by_can_id`` returns None when the timeout expires.
    """

    async def send_frame(self, frame: CanFrame) -> None: ...

    async def recv_new_by_can_id(self, can_id: CanId, timeout: float) -> CanFrame | None: ...


class DataType(Enum):
    """The type of an object dictionary value moved by an SDO transfer."""

    U8 = "u8"
    I8 = "i8"
    U16 = "u16"
    I16 = "i16"
    U32 = "u32"
    I32 = "i32"
    U64 = "u64"
    I64 = "i64"
    U128 = "u128"
    I128 = "i128"
    BYTES = "bytes"
    STRING = "string"

    @property
    def size(self) -> int | None:
        """The size in bytes of an integer type, or None for variable length data."""
        if self in (DataType.BYTES, DataType.STRING):
            return None
        return int(self.value[1:]) // 8

    @property
    def signed(self) -> bool:
        """True for the signed integer types."""
        return self.value.startswith("i")


class UploadParseError(ValueError):
    """The uploaded data could not be turned into the requested type."""


Value = Union[int, bytes, bytearray, str]


def encode_value(value: Value, data_type: DataType | None = None) -> bytes:
    """Encode a value as the bytes of an SDO download.

    Integers need an explicit integer data type; bytes and strings may
    leave the type out.
    """
    if data_type is None:
        if isinstance(value, (bytes, bytearray, memoryview)):
            data_type = DataType.BYTES
        elif isinstance(value, str):
            data_type = DataType.STRING
        else:
            raise TypeError(f"a data type is required to encode {type(value).__name__} values")

    if data_type is DataType.BYTES:
        return bytes(value)  # type: ignore[arg-type]
    if data_type is DataType.STRING:
        if not isinstance(value, str):
            raise TypeError("a STRING value must be a str")
        return value.encode("utf-8")
    if not isinstance(value, int):
        raise TypeError(f"a {data_type.name} value must be an int")
    size = data_type.size
    assert size is not None
    try:
        return value.to_bytes(size, "little", signed=data_type.signed)
    except OverflowError:
        raise ValueError(f"value {value} does not fit in {data_type.name}") from None


def decode_value(data: bytes, data_type: DataType) -> Value:
    """Decode uploaded bytes as a value of the given type.

    Integers shorter than their type are zero padded; longer data does not fit.
    """
    if data_type is DataType.BYTES:
        return bytes(data)
    if data_type is DataType.STRING:
        try:
            return bytes(data).decode("utf-8")
        except UnicodeDecodeError as error:
            raise UploadParseError(f"invalid UTF-8 in string data: {error}") from error
    size = data_type.size
    assert size is not None
    if len(data) > size:
        raise BufferTooSmall(available=size, needed=len(data))
    padded = bytes(data) + bytes(size - len(data))
    return int.from_bytes(padded, "little", signed=data_type.signed)


@dataclass(frozen=True)
class ExpeditedUpload:
    """An initiate upload response that carries the data itself."""

    data: bytes


@dataclass(frozen=True)
class SegmentedUpload:
    """An initiate upload response announcing a segmented transfer of ``length`` bytes."""

    length: int


def _object_bytes(obj: ObjectIndex) -> bytes:
    return obj.index.to_bytes(2, "little") + bytes([obj.subindex])


def make_initiate_upload_request(node_id: int, address: SdoAddress, obj: ObjectIndex) -> CanFrame:
    """Build an SDO initiate upload request."""
    data = bytes([ClientCommand.INITIATE_UPLOAD << 5]) + _object_bytes(obj) + bytes(4)
    return CanFrame(address.command_id(node_id), data)


def make_upload_segment_request(address: SdoAddress, node_id: int, toggle: bool) -> CanFrame:
    """Build an SDO upload segment request."""
    command = ClientCommand.SEGMENT_UPLOAD << 5 | int(toggle) << 4
    return CanFrame(address.command_id(node_id), bytes([command]) + bytes(7))


def parse_initiate_upload_response(frame: CanFrame) -> ExpeditedUpload | SegmentedUpload:
    """Parse the server's answer to an initiate upload request."""
    data = check_server_command(frame, ServerCommand.INITIATE_UPLOAD)
    n = data[0] >> 2 & 0x03
    expedited = bool(data[0] & 0x02)
    size_set = bool(data[0] & 0x01)

    if expedited:
        length = EXPEDITED_SIZE - n if size_set else EXPEDITED_SIZE
        return ExpeditedUpload(bytes(data[4:4 + length]))
    if not size_set:
        raise NoExpeditedOrSizeFlag()
    return SegmentedUpload(int.from_bytes(data[4:8], "little"))


def parse_segment_upload_response(frame: CanFrame, expected_toggle: bool) -> tuple[bool, bytes]:
    """Parse an upload segment; returns whether it is the last one, and its data."""
    data = check_server_command(frame, ServerCommand.SEGMENT_UPLOAD)
    toggle = bool(data[0] & 0x10)
    n = data[0] >> 1 & 0x07
    complete = bool(data[0] & 0x01)
    if toggle != expected_toggle:
        raise InvalidToggleFlag()
    return complete, bytes(data[1:1 + SEGMENT_SIZE - n])


def make_expedited_download_command(
    node_id: int, address: SdoAddress, obj: ObjectIndex, data: bytes
) -> CanFrame:
    """Build an SDO initiate expedited download command carrying up to 4 bytes."""
    if len(data) > EXPEDITED_SIZE:
        raise ValueError(f"expedited download holds at most 4 bytes, got {len(data)}")
    n = EXPEDITED_SIZE - len(data)
    # 0x03: expedited and size-set flags.
    command = (ClientCommand.INITIATE_DOWNLOAD << 5 | n << 2 | 0x03) & 0xFF
    payload = bytes(data).ljust(EXPEDITED_SIZE, b"\x00")
    return CanFrame(address.command_id(node_id), bytes([command]) + _object_bytes(obj) + payload)


def make_initiate_segmented_download_command(
    node_id: int, address: SdoAddress, obj: ObjectIndex, length: int
) -> CanFrame:
    """Build an SDO initiate segmented download command announcing ``length`` bytes."""
    if not 0 <= length <= U32_MAX:
        raise DataLengthExceedsMaximum(length)
    # 0x01: not expedited, size-set.
    command = ClientCommand.INITIATE_DOWNLOAD << 5 | 0x01
    data = bytes([command]) + _object_bytes(obj) + length.to_bytes(4, "little")
    return CanFrame(address.command_id(node_id), data)


def make_segment_download_command(
    node_id: int, address: SdoAddress, toggle: bool, complete: bool, data: bytes
) -> CanFrame:
    """Build an SDO download segment command carrying up to 7 bytes."""
    if len(data) > SEGMENT_SIZE:
        raise ValueError(f"a download segment holds at most 7 bytes, got {len(data)}")
    n = SEGMENT_SIZE - len(data)
    command = ClientCommand.SEGMENT_DOWNLOAD << 5 | int(toggle) << 4 | n << 1 | int(complete)
    payload = bytes(data).ljust(SEGMENT_SIZE, b"\x00")
    return CanFrame(address.command_id(node_id), bytes([command]) + payload)


def parse_segment_download_response(frame: CanFrame, expected_toggle: bool) -> None:
    """Check the server's acknowledgement of a download segment."""
    data = check_server_command(frame, ServerCommand.SEGMENT_DOWNLOAD)
    if bool(data[0] & 0x10) != expected_toggle:
        raise InvalidToggleFlag()


async def _send(bus: SdoBus, frame: CanFrame) -> None:
    try:
        await bus.send_frame(frame)
    except OSError as error:
        raise SendFailed(error) from error


async def _receive(bus: SdoBus, address: SdoAddress, node_id: int, timeout: float) -> CanFrame:
    try:
        frame = await bus.recv_new_by_can_id(address.response_id(node_id), timeout)
    except OSError as error:
        raise RecvFailed(error) from error
    if frame is None:
        raise SdoTimeout()
    return frame


async def _abort(bus: SdoBus, address: SdoAddress, node_id: int, obj: ObjectIndex) -> None:
    try:
        await bus.send_frame(make_abort_frame(address, node_id, obj, AbortReason.GENERAL_ERROR))
    except OSError:
        log.debug("failed to send SDO abort to node 0x%02X", node_id)


def _check_capacity(capacity: int | None, needed: int) -> None:
    if capacity is not None and needed > capacity:
        raise BufferTooSmall(available=capacity, needed=needed)


async def sdo_upload(
    bus: SdoBus,
    node_id: int,
    address: SdoAddress,
    obj: ObjectIndex,
    timeout: float,
    capacity: int | None = None,
) -> bytes:
    """Read an object from an SDO server and return its bytes.

    ``capacity`` limits how many bytes may be received; None means no limit.
    On a failure after the request went out, an abort is sent to the server.
    """
    log.debug(
        "Sending initiate upload request to node 0x%02X for %r (timeout %ss)",
        node_id, obj, timeout,
    )
    await _send(bus, make_initiate_upload_request(node_id, address, obj))

    try:
        response = parse_initiate_upload_response(await _receive(bus, address, node_id, timeout))
        if isinstance(response, ExpeditedUpload):
            log.debug("Received SDO expedited upload response: %s", response.data.hex())
            _check_capacity(capacity, len(response.data))
            return response.data

        length = response.length
        log.debug("Received SDO initiate segmented upload response with length 0x%04X", length)
        _check_capacity(capacity, length)

        received = bytearray()
        toggle = False
        while True:
            await _send(bus, make_upload_segment_request(address, node_id, toggle))
            frame = await _receive(bus, address, node_id, timeout)
            complete, segment = parse_segment_upload_response(frame, toggle)
            log.debug("Received SDO segment: %s (last: %s)", segment.hex(), complete)
            if len(received) + len(segment) > length:
                raise WrongDataCount(expected=length, actual=len(received) + len(segment))
            received += segment
            if complete:
                break
            toggle = not toggle

        if len(received) != length:
            raise WrongDataCount(expected=length, actual=len(received))
        return bytes(received)
    except SdoError:
        await _abort(bus, address, node_id, obj)
        raise


async def sdo_download(
    bus: SdoBus,
    node_id: int,
    address: SdoAddress,
    obj: ObjectIndex,
    data: bytes,
    timeout: float,
) -> None:
    """Write bytes to an object on an SDO server.

    Up to 4 bytes go in one expedited transfer, more in 7 byte segments.
    """
    data = bytes(data)
    if len(data) <= EXPEDITED_SIZE:
        log.debug("Sending expedited download to node 0x%02X for %r: %s", node_id, obj, data.hex())
        await _send(bus, make_expedited_download_command(node_id, address, obj, data))
        frame = await _receive(bus, address, node_id, timeout)
        check_server_command(frame, ServerCommand.INITIATE_DOWNLOAD)
        return

    if len(data) > U32_MAX:
        raise DataLengthExceedsMaximum(len(data))

    log.debug(
        "Sending initiate segmented download to node 0x%02X for %r, length 0x%04X",
        node_id, obj, len(data),
    )
    await _send(bus, make_initiate_segmented_download_command(node_id, address, obj, len(data)))
    frame = await _receive(bus, address, node_id, timeout)
    check_server_command(frame, ServerCommand.INITIATE_DOWNLOAD)

    chunks = [data[start:start + SEGMENT_SIZE] for start in range(0, len(data), SEGMENT_SIZE)]
    try:
        for number, chunk in enumerate(chunks):
            toggle = number % 2 == 1
            complete = number + 1 == len(chunks)
            await _send(bus, make_segment_download_command(node_id, address, toggle, complete, chunk))
            frame = await _receive(bus, address, node_id, timeout)
            parse_segment_download_response(frame, toggle)
    except SdoError:
        await _abort(bus, address, node_id, obj)
        raise