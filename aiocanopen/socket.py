"""A CANopen socket on top of an asynchronous CAN transport."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from typing import Protocol

from . import nmt
from . import pdo as pdo_config
from .frame import CanFrame, CanId
from .objects import ObjectIndex
from .pdo_types import RpdoConfiguration, TpdoConfiguration
from .sdo import DataType, Value, decode_value, encode_value
from .sdo import sdo_download as _sdo_download
from .sdo import sdo_upload as _sdo_upload
from .sdo_protocol import SdoAddress


class CanTransport(Protocol):
    """An asynchronous CAN bus connection; both methods raise OSError on failure."""

    async def send(self, frame: CanFrame) -> None: ...

    async def recv(self) -> CanFrame: ...


class CanOpenSocket:
    """A CAN transport that speaks the CANopen protocol."""

    def __init__(self, transport: CanTransport) -> None:
        self.transport = transport

    async def recv_frame_deadline(self, deadline: float) -> CanFrame | None:
        """Receive a raw frame, or None if the ``time.monotonic()`` deadline passes first."""
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            return None
        try:
            return await asyncio.wait_for(self.transport.recv(), remaining)
        except asyncio.TimeoutError:
            return None

    async def send_frame(self, frame: CanFrame) -> None:
        """Send a raw CAN frame."""
        await self.transport.send(frame)

    async def send_nmt_command(
        self, node_id: int, command: nmt.NmtCommand, timeout: float
    ) -> None:
        """Send an NMT command and wait for the node to reach the matching state."""
        await nmt.send_nmt_command(self, node_id, command, timeout)

    async def sdo_upload_raw(
        self,
        node_id: int,
        sdo: SdoAddress,
        obj: ObjectIndex,
        timeout: float,
        capacity: int | None = None,
    ) -> bytes:
        """Read the raw bytes of an object from an SDO server."""
        return await _sdo_upload(self, node_id, sdo, obj, timeout, capacity)

    async def sdo_upload(
        self,
        node_id: int,
        sdo: SdoAddress,
        obj: ObjectIndex,
        data_type: DataType,
        timeout: float,
    ) -> Value:
        """Read an object from an SDO server as a value of the given type."""
        data = await _sdo_upload(self, node_id, sdo, obj, timeout, data_type.size)
        return decode_value(data, data_type)

    async def sdo_download(
        self,
        node_id: int,
        sdo: SdoAddress,
        obj: ObjectIndex,
        data: Value,
        timeout: float,
        data_type: DataType | None = None,
    ) -> None:
        """Write a value to an object on an SDO server."""
        await _sdo_download(self, node_id, sdo, obj, encode_value(data, data_type), timeout)

    async def read_rpdo_configuration(
        self, node_id: int, sdo: SdoAddress, pdo: int, timeout: float
    ) -> RpdoConfiguration:
        """Read the full configuration of an RPDO of a remote node."""
        return await pdo_config.read_rpdo_configuration(self, node_id, sdo, pdo, timeout)

    async def read_tpdo_configuration(
        self, node_id: int, sdo: SdoAddress, pdo: int, timeout: float
    ) -> TpdoConfiguration:
        """Read the full configuration of a TPDO of a remote node."""
        return await pdo_config.read_tpdo_configuration(self, node_id, sdo, pdo, timeout)

    async def configure_rpdo(
        self,
        node_id: int,
        sdo: SdoAddress,
        pdo: int,
        config: RpdoConfiguration,
        timeout: float,
    ) -> None:
        """Configure an RPDO of a remote node."""
        await pdo_config.configure_rpdo(self, node_id, sdo, pdo, config, timeout)

    async def configure_tpdo(
        self,
        node_id: int,
        sdo: SdoAddress,
        pdo: int,
        config: TpdoConfiguration,
        timeout: float,
    ) -> None:
        """Configure a TPDO of a remote node."""
        await pdo_config.configure_tpdo(self, node_id, sdo, pdo, config, timeout)

    async def enable_rpdo(
        self, node_id: int, sdo: SdoAddress, pdo: int, enable: bool, timeout: float
    ) -> None:
        """Enable or disable an RPDO of a remote node."""
        await pdo_config.enable_rpdo(self, node_id, sdo, pdo, enable, timeout)

    async def enable_tpdo(
        self, node_id: int, sdo: SdoAddress, pdo: int, enable: bool, timeout: float
    ) -> None:
        """Enable or disable a TPDO of a remote node."""
        await pdo_config.enable_tpdo(self, node_id, sdo, pdo, enable, timeout)

    async def send_sync(self, counter: int | None = None) -> None:
        """Send a SYNC message, with an optional counter from 1 to 255."""
        await nmt.send_sync(self, counter)

    async def recv_new_filtered(
        self, predicate: Callable[[CanFrame], bool], timeout: float
    ) -> CanFrame | None:
        """Receive the next frame that matches the predicate, or None on timeout.

        Frames that do not match are dropped.
        """

        async def receive() -> CanFrame:
            while True:
                frame = await self.transport.recv()
                if predicate(frame):
                    return frame

        try:
            return await asyncio.wait_for(receive(), timeout)
        except asyncio.TimeoutError:
            return None

    async def recv_new_by_can_id(self, can_id: CanId, timeout: float) -> CanFrame | None:
        """Receive the next data frame with the given standard CAN ID, or None on timeout."""
        return await self.recv_new_filtered(
            lambda frame: not frame.is_rtr() and frame.can_id == can_id, timeout
        )