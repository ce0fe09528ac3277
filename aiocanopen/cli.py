"""Command line tools for talking to CANopen nodes on a SocketCAN interface."""

from __future__ import annotations

import argparse
import asyncio
import logging
import math
import socket
import struct
import sys
import time
from collections.abc import Callable, Sequence
from enum import Enum

from .frame import CanFrame, CanId
from .nmt import NmtCommand, NmtError
from .objects import ObjectIndex
from .pdo_types import (
    PdoConfigError,
    PdoMapping,
    RpdoConfiguration,
    RpdoTransmissionType,
    TpdoConfiguration,
    TpdoTransmissionType,
)
from .sdo_protocol import SdoAddress, SdoError
from .socket import CanOpenSocket, CanTransport

log = logging.getLogger(__name__)

CAN_EFF_FLAG = 0x8000_0000
CAN_RTR_FLAG = 0x4000_0000
CAN_ERR_FLAG = 0x2000_0000
CAN_SFF_MASK = 0x7FF
CAN_EFF_MASK = 0x1FFF_FFFF

# struct can_frame: 32 bit id with flags, length, three padding bytes, 8 data bytes.
_CAN_FRAME = struct.Struct("=IB3x8s")

BYTES_PER_LINE = 20

_FAILURES = (SdoError, NmtError, PdoConfigError, OSError, ValueError)


class ByteStyle(Enum):
    """How each byte is written when showing binary data."""

    OCTAL = "octal"
    DECIMAL = "decimal"
    HEXADECIMAL = "hexadecimal"


def encode_can_frame(frame: CanFrame) -> bytes:
    """Pack a frame in the layout of a SocketCAN ``struct can_frame``."""
    can_id = frame.can_id.value
    if frame.can_id.extended:
        can_id |= CAN_EFF_FLAG
    if frame.is_rtr():
        can_id |= CAN_RTR_FLAG
    return _CAN_FRAME.pack(can_id, len(frame.data), frame.data)


def decode_can_frame(raw: bytes) -> CanFrame:
    """Unpack a SocketCAN ``struct can_frame`` into a frame."""
    if len(raw) < _CAN_FRAME.size:
        raise ValueError(
            f"CAN frame is too short: expected {_CAN_FRAME.size} bytes, got {len(raw)}"
        )
    can_id, length, payload = _CAN_FRAME.unpack(raw[:_CAN_FRAME.size])
    if can_id & CAN_ERR_FLAG:
        raise ValueError(f"received a CAN error frame: 0x{can_id & CAN_EFF_MASK:08X}")
    extended = bool(can_id & CAN_EFF_FLAG)
    value = can_id & (CAN_EFF_MASK if extended else CAN_SFF_MASK)
    rtr = bool(can_id & CAN_RTR_FLAG)
    data = b"" if rtr else payload[:min(length, 8)]
    return CanFrame(CanId(value, extended), data, rtr)


class SocketCanTransport:
    """An asynchronous raw SocketCAN socket bound to one interface."""

    def __init__(self, sock: socket.socket) -> None:
        self._sock = sock

    @classmethod
    def open(cls, interface: str) -> SocketCanTransport:
        """Open a raw CAN socket on the named interface."""
        if not hasattr(socket, "AF_CAN"):
            raise OSError("SocketCAN is not available on this platform")
        sock = socket.socket(socket.AF_CAN, socket.SOCK_RAW, socket.CAN_RAW)
        try:
            sock.bind((interface,))
            sock.setblocking(False)
        except OSError:
            sock.close()
            raise
        return cls(sock)

    async def send(self, frame: CanFrame) -> None:
        """Transmit a frame."""
        loop = asyncio.get_running_loop()
        await loop.sock_sendall(self._sock, encode_can_frame(frame))

    async def recv(self) -> CanFrame:
        """Wait for the next frame from the bus."""
        loop = asyncio.get_running_loop()
        raw = await loop.sock_recv(self._sock, _CAN_FRAME.size)
        try:
            return decode_can_frame(raw)
        except ValueError as error:
            raise OSError(str(error)) from error

    def close(self) -> None:
        """Close the socket."""
        self._sock.close()


def parse_number(text: str, low: int, high: int) -> int:
    """Parse a decimal, 0x hexadecimal, 0o octal or 0b binary integer in [low, high]."""
    for prefix, base in (("0x", 16), ("0o", 8), ("0b", 2)):
        if text.startswith(prefix):
            digits = text[len(prefix):]
            break
    else:
        digits, base = text, 10
    if not digits or "_" in digits or digits != digits.strip():
        raise ValueError(f"invalid number: {text!r}")
    try:
        value = int(digits, base)
    except ValueError:
        raise ValueError(f"invalid number: {text!r}") from None
    if not low <= value <= high:
        raise ValueError(f"value out of range: {value} is not between {low} and {high}")
    return value


def parse_timeout(text: str) -> float:
    """Parse a duration given in (fractional) seconds."""
    try:
        seconds = float(text)
    except ValueError:
        raise ValueError("invalid duration: expected timeout in seconds") from None
    if not math.isfinite(seconds) or seconds < 0:
        raise ValueError("invalid duration: expected a finite, non-negative number of seconds")
    return seconds


def parse_pdo_mapping(text: str) -> PdoMapping:
    """Parse a PDO mapping written as INDEX,SUBINDEX,BITS."""
    index, sep, tail = text.partition(",")
    subindex, sep2, bits = tail.partition(",")
    if not sep or not sep2:
        raise ValueError(f"invalid mapping: {text!r}: expected INDEX,SUBINDEX,BITS")
    return PdoMapping(
        ObjectIndex(parse_number(index, 0, 0xFFFF), parse_number(subindex, 0, 0xFF)),
        parse_number(bits, 0, 0xFF),
    )


def format_bytes(data: bytes, style: ByteStyle) -> str:
    """Write bytes as text, 20 to a line; empty data gives one empty line."""
    formats = {
        ByteStyle.OCTAL: "{:03o}",
        ByteStyle.DECIMAL: "{:3}",
        ByteStyle.HEXADECIMAL: "{:02X}",
    }
    pattern = formats[style]
    lines = [
        " ".join(pattern.format(byte) for byte in data[start:start + BYTES_PER_LINE])
        for start in range(0, len(data), BYTES_PER_LINE)
    ] or [""]
    return "".join(line + "\n" for line in lines)


def _number_type(low: int, high: int) -> Callable[[str], int]:
    def convert(text: str) -> int:
        try:
            return parse_number(text, low, high)
        except ValueError as error:
            raise argparse.ArgumentTypeError(str(error)) from None

    convert.__name__ = "number"
    return convert


def _argument_type(parse: Callable[[str], object]) -> Callable[[str], object]:
    def convert(text: str) -> object:
        try:
            return parse(text)
        except ValueError as error:
            raise argparse.ArgumentTypeError(str(error)) from None

    convert.__name__ = parse.__name__
    return convert


def _cob_id(text: str) -> CanId:
    return CanId.from_int(parse_number(text, 0, CAN_EFF_MASK))


_U8 = _number_type(0, 0xFF)
_U16 = _number_type(0, 0xFFFF)
_TIMEOUT = _argument_type(parse_timeout)

_NMT_COMMANDS = {
    "start": NmtCommand.START,
    "stop": NmtCommand.STOP,
    "go-to-pre-operational": NmtCommand.GO_TO_PRE_OPERATIONAL,
    "reset": NmtCommand.RESET,
    "reset-communication": NmtCommand.RESET_COMMUNICATION,
}

_FORMATS = {
    "raw": "raw",
    "octal": "octal",
    "oct": "octal",
    "hexadecimal": "hexadecimal",
    "hex": "hexadecimal",
    "decimal": "decimal",
    "dec": "decimal",
    "utf8": "utf8",
    "utf16": "utf16",
}


async def _cmd_nmt(options: argparse.Namespace, bus: CanOpenSocket) -> int:
    try:
        await bus.send_nmt_command(options.node_id, _NMT_COMMANDS[options.command], options.timeout)
    except _FAILURES as error:
        print(error, file=sys.stderr)
        return 1
    print("OK", file=sys.stderr)
    return 0


async def _cmd_sync(options: argparse.Namespace, bus: CanOpenSocket) -> int:
    try:
        await bus.send_sync(options.counter)
    except OSError as error:
        print(error, file=sys.stderr)
        return 1
    log.info("Sync window duration: %ss", options.sync_window)
    deadline = time.monotonic() + options.sync_window
    while True:
        try:
            frame = await bus.recv_frame_deadline(deadline)
        except OSError as error:
            log.error("Failed to receive CAN frame: %s", error)
            return 1
        if frame is None:
            break
        log.info("Received CAN frame: %r", frame)
    print("OK", file=sys.stderr)
    return 0


async def _cmd_read_pdo_config(options: argparse.Namespace, bus: CanOpenSocket) -> int:
    sdo = SdoAddress.standard()
    if options.rpdo is not None:
        kind, pdo_number, read = "RPDO", options.rpdo, bus.read_rpdo_configuration
    elif options.tpdo is not None:
        kind, pdo_number, read = "TPDO", options.tpdo, bus.read_tpdo_configuration
    else:
        return 0
    try:
        config = await read(options.node_id, sdo, pdo_number, options.timeout)
    except _FAILURES as error:
        log.error(
            "Failed to read configuration of %s %s of node %s: %s",
            kind, pdo_number, options.node_id, error,
        )
        return 1
    print(config)
    return 0


def _apply_common(
    config: RpdoConfiguration | TpdoConfiguration, options: argparse.Namespace
) -> None:
    if options.clear_mappings:
        config.mapping.clear()
    elif options.mapping:
        config.mapping = list(options.mapping)
    if options.enable:
        config.communication.enabled = True
    elif options.disable:
        config.communication.enabled = False
    if options.cob_id is not None:
        config.communication.cob_id = options.cob_id
    if options.inhibit_time is not None:
        config.communication.inhibit_time_100us = options.inhibit_time


async def _cmd_configure_pdo(options: argparse.Namespace, bus: CanOpenSocket) -> int:
    sdo = SdoAddress.standard()
    node_id = options.node_id
    if options.rpdo is not None:
        pdo_number = options.rpdo
        try:
            rpdo = await bus.read_rpdo_configuration(node_id, sdo, pdo_number, options.timeout)
        except _FAILURES as error:
            log.error(
                "Failed to read configuration of RPDO %s of node %s: %s", pdo_number, node_id, error
            )
            return 1
        _apply_common(rpdo, options)
        if options.transmission_type is not None:
            rpdo.communication.mode = RpdoTransmissionType(options.transmission_type)
        if options.event_timer is not None:
            rpdo.communication.deadline_timer_ms = options.event_timer
        log.info("Setting RPDO configuration: %r", rpdo)
        try:
            await bus.configure_rpdo(node_id, sdo, pdo_number, rpdo, options.timeout)
        except _FAILURES as error:
            log.error("Failed to configure RPDO %s of node %s: %s", pdo_number, node_id, error)
            return 1
    elif options.tpdo is not None:
        pdo_number = options.tpdo
        try:
            tpdo = await bus.read_tpdo_configuration(node_id, sdo, pdo_number, options.timeout)
        except _FAILURES as error:
            log.error(
                "Failed to read configuration of TPDO %s of node %s: %s", pdo_number, node_id, error
            )
            return 1
        _apply_common(tpdo, options)
        if options.transmission_type is not None:
            tpdo.communication.mode = TpdoTransmissionType(options.transmission_type)
        if options.event_timer is not None:
            tpdo.communication.event_timer_ms = options.event_timer
        if options.start_sync is not None:
            tpdo.communication.start_sync = options.start_sync
        log.info("Setting TPDO configuration: %r", tpdo)
        try:
            await bus.configure_tpdo(node_id, sdo, pdo_number, tpdo, options.timeout)
        except _FAILURES as error:
            log.error("Failed to configure TPDO %s of node %s: %s", pdo_number, node_id, error)
            return 1
    return 0


def _display(data: bytes, output_format: str) -> int:
    if output_format == "raw":
        sys.stdout.flush()
        sys.stdout.buffer.write(data)
        sys.stdout.buffer.flush()
        return 0
    if output_format in ("utf8", "utf16"):
        try:
            text = data.decode("utf-8")
        except UnicodeDecodeError as error:
            log.error("invalid UTF-8 in string data: %s", error)
            return 1
        print(text)
        return 0
    sys.stdout.write(format_bytes(data, ByteStyle(output_format)))
    return 0


async def _cmd_read_sdo(options: argparse.Namespace, bus: CanOpenSocket) -> int:
    obj = ObjectIndex(options.index, options.subindex)
    try:
        data = await bus.sdo_upload_raw(
            options.node_id, SdoAddress.standard(), obj, options.timeout
        )
    except _FAILURES as error:
        log.error("%s", error)
        return 1
    return _display(data, _FORMATS[options.format])


async def _cmd_write_sdo(options: argparse.Namespace, bus: CanOpenSocket) -> int:
    obj = ObjectIndex(options.index, options.subindex)
    try:
        await bus.sdo_download(
            options.node_id, SdoAddress.standard(), obj, bytes(options.data), options.timeout
        )
    except _FAILURES as error:
        log.error("%s", error)
        return 1
    return 0


def _add_timeout(parser: argparse.ArgumentParser, help_text: str) -> None:
    parser.add_argument("-t", "--timeout", type=_TIMEOUT, default=1.0, help=help_text)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="aiocanopen", description="Talk to CANopen nodes.")
    commands = parser.add_subparsers(dest="command_name", required=True)

    nmt = commands.add_parser("nmt", help="send an NMT command to a node")
    nmt.add_argument("interface", help="the CAN interface to use")
    nmt.add_argument("node_id", type=_U8, help="the node to command")
    nmt.add_argument("command", choices=list(_NMT_COMMANDS), help="the command to send")
    _add_timeout(nmt, "timeout in seconds for receiving the reply")
    nmt.set_defaults(handler=_cmd_nmt)

    sync = commands.add_parser("sync", help="send a SYNC command to the network")
    sync.add_argument("interface", help="the CAN interface to use")
    sync.add_argument(
        "--counter", type=_number_type(1, 0xFF), help="the counter value to add to the SYNC"
    )
    sync.add_argument(
        "--sync-window", type=_TIMEOUT, default=0.010,
        help="seconds to wait for frames after the SYNC",
    )
    sync.set_defaults(handler=_cmd_sync)

    read_pdo = commands.add_parser("read-pdo-config", help="show the configuration of a PDO")
    read_pdo.add_argument("interface", help="the CAN interface to use")
    read_pdo.add_argument("node_id", type=_U8, help="the node to read from")
    which = read_pdo.add_mutually_exclusive_group()
    which.add_argument("--rpdo", type=_U16, help="read the specified RPDO")
    which.add_argument("--tpdo", type=_U16, help="read the specified TPDO")
    _add_timeout(read_pdo, "timeout in seconds for individual SDO operations")
    read_pdo.set_defaults(handler=_cmd_read_pdo_config)

    configure = commands.add_parser("configure-pdo", help="change the configuration of a PDO")
    configure.add_argument("interface", help="the CAN interface to use")
    configure.add_argument("node_id", type=_U8, help="the node to configure")
    configure.add_argument(
        "cob_id", nargs="?", type=_argument_type(_cob_id), help="the COB ID of the PDO"
    )
    which = configure.add_mutually_exclusive_group()
    which.add_argument("--rpdo", type=_U16, help="configure the specified RPDO")
    which.add_argument("--tpdo", type=_U16, help="configure the specified TPDO")
    on_off = configure.add_mutually_exclusive_group()
    on_off.add_argument("--enable", action="store_true", help="enable the PDO")
    on_off.add_argument("--disable", action="store_true", help="disable the PDO")
    configure.add_argument("--transmission-type", type=_U8, help="the transmission type")
    configure.add_argument(
        "--inhibit-time", type=_U16, help="the inhibit time in multiples of 100 microseconds"
    )
    configure.add_argument(
        "--event-timer", type=_U16, help="the event/deadline timer in milliseconds"
    )
    configure.add_argument(
        "--start-sync", type=_U8, help="TPDO: ignore SYNC messages with a lower counter"
    )
    mappings = configure.add_mutually_exclusive_group()
    mappings.add_argument(
        "--clear-mappings", action="store_true", help="remove all mappings of the PDO"
    )
    mappings.add_argument(
        "--mapping", action="append", default=[], type=_argument_type(parse_pdo_mapping),
        metavar="INDEX,SUBINDEX,BITS", help="a mapping of the PDO (repeatable)",
    )
    _add_timeout(configure, "timeout in seconds for individual SDO operations")
    configure.set_defaults(handler=_cmd_configure_pdo)

    read_sdo = commands.add_parser("read-sdo", help="read an object with an SDO upload")
    read_sdo.add_argument("interface", help="the CAN interface to use")
    read_sdo.add_argument("node_id", type=_U8, help="the node to read from")
    read_sdo.add_argument("index", type=_U16, help="the object index")
    read_sdo.add_argument("subindex", type=_U8, help="the object subindex")
    read_sdo.add_argument(
        "-f", "--format", choices=list(_FORMATS), default="hexadecimal",
        help="how to show the data",
    )
    _add_timeout(read_sdo, "timeout in seconds for receiving the reply")
    read_sdo.set_defaults(handler=_cmd_read_sdo)

    write_sdo = commands.add_parser("write-sdo", help="write an object with an SDO download")
    write_sdo.add_argument("interface", help="the CAN interface to use")
    write_sdo.add_argument("node_id", type=_U8, help="the node to write to")
    write_sdo.add_argument("index", type=_U16, help="the object index")
    write_sdo.add_argument("subindex", type=_U8, help="the object subindex")
    write_sdo.add_argument("data", nargs="*", type=_U8, help="the bytes to write")
    _add_timeout(write_sdo, "timeout in seconds for receiving the reply")
    write_sdo.set_defaults(handler=_cmd_write_sdo)

    return parser


async def _run(options: argparse.Namespace, transport: CanTransport | None = None) -> int:
    opened: SocketCanTransport | None = None
    if transport is None:
        try:
            opened = SocketCanTransport.open(options.interface)
        except OSError as error:
            log.error("Failed to create CAN socket for interface %s: %s", options.interface, error)
            return 1
        transport = opened
    try:
        return await options.handler(options, CanOpenSocket(transport))
    finally:
        if opened is not None:
            opened.close()


def main(argv: Sequence[str] | None = None) -> int:
    """Run the command line tool; returns the exit status."""
    options = _build_parser().parse_args(argv)
    logging.basicConfig(format="%(levelname)s: %(message)s")
    logging.getLogger(__name__).setLevel(logging.INFO)
    return asyncio.run(_run(options))


if __name__ == "__main__":
    raise SystemExit(main())