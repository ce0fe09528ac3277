"""Network management (NMT) commands, heartbeats and the SYNC message."""

from __future__ import annotations

import logging
from enum import IntEnum
from typing import Protocol

from .frame import CanFrame, CanId

log = logging.getLogger(__name__)

NMT_COB_ID = 0x000
SYNC_DEFAULT_COB_ID = 0x80
FUNCTION_HEARTBEAT = 0x700


class NmtBus(Protocol):
    """What NMT and SYNC need from the bus they run on.

    ``send_frame`` and ``recv_new_by_can_id`` raise OSError on socket failure;
    ``recv_new_by_can_id`` returns None when the timeout expires.
    """

    async def send_frame(self, frame: CanFrame) -> None: ...

    async def recv_new_by_can_id(self, can_id: CanId, timeout: float) -> CanFrame | None: ...


class NmtState(IntEnum):
    """The NMT state of a CANopen device."""

    INITIALIZING = 0x00
    STOPPED = 0x04
    OPERATIONAL = 0x05
    PRE_OPERATIONAL = 0x7F

    def __str__(self) -> str:
        return _STATE_NAMES[self.name]


_STATE_NAMES = {
    "INITIALIZING": "initializing",
    "STOPPED": "stopped",
    "OPERATIONAL": "operation",
    "PRE_OPERATIONAL": "pre-operational",
}


class NmtCommand(IntEnum):
    """An NMT command."""

    START = 1
    STOP = 2
    GO_TO_PRE_OPERATIONAL = 128
    RESET = 129
    RESET_COMMUNICATION = 130

    def expected_state(self) -> NmtState:
        """The state a device reports after carrying out the command."""
        return _EXPECTED_STATES[self.name]

    def __str__(self) -> str:
        return _COMMAND_NAMES[self.name]


_EXPECTED_STATES = {
    "START": NmtState.OPERATIONAL,
    "STOP": NmtState.STOPPED,
    "GO_TO_PRE_OPERATIONAL": NmtState.PRE_OPERATIONAL,
    "RESET": NmtState.INITIALIZING,
    "RESET_COMMUNICATION": NmtState.INITIALIZING,
}

_COMMAND_NAMES = {
    "START": "initializing",
    "STOP": "stopped",
    "GO_TO_PRE_OPERATIONAL": "go-to-pre-operational",
    "RESET": "reset",
    "RESET_COMMUNICATION": "reset-communication",
}


class NmtError(Exception):
    """An error while sending an NMT command."""


class NmtSendFailed(NmtError):
    """Transmitting the command frame failed."""

    def __init__(self, cause: OSError) -> None:
        self.cause = cause
        super().__init__(f"failed to send CAN frame: {cause}")


class NmtRecvFailed(NmtError):
    """Receiving the response frame failed."""

    def __init__(self, cause: OSError) -> None:
        self.cause = cause
        super().__init__(f"failed to receive CAN frame: {cause}")


class NmtTimeout(NmtError, TimeoutError):
    """The device did not report its new state in time."""

    def __init__(self) -> None:
        super().__init__("timeout while waiting for reply")


class MalformedNmtResponse(NmtError):
    """The heartbeat frame from the device holds invalid data."""

    def __init__(self) -> None:
        super().__init__("received malformed response frame")


class UnexpectedState(NmtError):
    """The device reports a different state than the command should lead to."""

    def __init__(self, expected: NmtState, actual: NmtState) -> None:
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"state change failed: device reports state {actual} instead of {expected}"
        )


def heartbeat_id(node_id: int) -> CanId:
    """The CAN ID on which a node sends its heartbeat."""
    return CanId(FUNCTION_HEARTBEAT | node_id)


def make_nmt_frame(node_id: int, command: NmtCommand) -> CanFrame:
    """Build the frame that sends an NMT command to a node."""
    return CanFrame(CanId(NMT_COB_ID), bytes([int(command), node_id]))


def parse_heartbeat(frame: CanFrame) -> NmtState:
    """Read the NMT state from a heartbeat frame."""
    if frame.is_rtr() or len(frame.data) != 1:
        raise MalformedNmtResponse()
    try:
        return NmtState(frame.data[0])
    except ValueError:
        raise MalformedNmtResponse() from None


async def send_nmt_command(
    bus: NmtBus, node_id: int, command: NmtCommand, timeout: float
) -> None:
    """Send an NMT command and wait for the node to report the expected state."""
    command = NmtCommand(command)
    log.debug("Sending NMT command %s to node 0x%02X (timeout %ss)", command.name, node_id, timeout)
    try:
        await bus.send_frame(make_nmt_frame(node_id, command))
    except OSError as error:
        raise NmtSendFailed(error) from error

    try:
        frame = await bus.recv_new_by_can_id(heartbeat_id(node_id), timeout)
    except OSError as error:
        raise NmtRecvFailed(error) from error
    if frame is None:
        raise NmtTimeout()

    state = parse_heartbeat(frame)
    log.debug("Received heartbeat from node 0x%02X with state %s", node_id, state.name)
    expected = command.expected_state()
    if state != expected:
        raise UnexpectedState(expected, state)


def make_sync_frame(counter: int | None = None) -> CanFrame:
    """Build a SYNC frame, with a counter from 1 to 255 or without one."""
    if counter is None:
        return CanFrame(CanId(SYNC_DEFAULT_COB_ID), b"")
    if not 1 <= counter <= 0xFF:
        raise ValueError(f"SYNC counter must be between 1 and 255, got {counter}")
    return CanFrame(CanId(SYNC_DEFAULT_COB_ID), bytes([counter]))


async def send_sync(bus: NmtBus, counter: int | None = None) -> None:
    """Send a SYNC message to the network; socket failures raise OSError."""
    frame = make_sync_frame(counter)
    log.debug("Sending SYNC (counter: %s)", "no counter" if counter is None else counter)
    await bus.send_frame(frame)