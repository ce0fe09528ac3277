import asyncio
import time

import pytest

from aiocanopen.frame import CanFrame, CanId
from aiocanopen.nmt import NmtCommand, NmtTimeout, UnexpectedState
from aiocanopen.objects import ObjectIndex
from aiocanopen.pdo_types import InvalidPdoNumber
from aiocanopen.sdo import DataType, UploadParseError
from aiocanopen.sdo_protocol import SdoAddress, SdoTimeout
from aiocanopen.socket import CanOpenSocket

NODE = 5
ADDRESS = SdoAddress.standard()


class FakeTransport:
    def __init__(self):
        self.incoming = asyncio.Queue()
        self.sent = []

    async def send(self, frame):
        self.sent.append(frame)

    async def recv(self):
        item = await self.incoming.get()
        if isinstance(item, Exception):
            raise item
        return item


def make_socket():
    transport = FakeTransport()
    return CanOpenSocket(transport), transport


@pytest.mark.asyncio
async def test_recv_frame_deadline_returns_frame():
    socket, transport = make_socket()
    frame = CanFrame(CanId(0x181), b"\x01\x02")
    transport.incoming.put_nowait(frame)
    assert await socket.recv_frame_deadline(time.monotonic() + 1.0) == frame


@pytest.mark.asyncio
async def test_recv_frame_deadline_in_the_past_returns_none():
    socket, transport = make_socket()
    transport.incoming.put_nowait(CanFrame(CanId(0x181), b"\x01"))
    assert await socket.recv_frame_deadline(time.monotonic() - 1.0) is None
    assert transport.incoming.qsize() == 1


@pytest.mark.asyncio
async def test_recv_frame_deadline_expires():
    socket, _ = make_socket()
    assert await socket.recv_frame_deadline(time.monotonic() + 0.05) is None


@pytest.mark.asyncio
async def test_recv_frame_deadline_propagates_socket_errors():
    socket, transport = make_socket()
    transport.incoming.put_nowait(OSError("bus down"))
    with pytest.raises(OSError, match="bus down"):
        await socket.recv_frame_deadline(time.monotonic() + 1.0)


@pytest.mark.asyncio
async def test_send_frame_goes_to_transport():
    socket, transport = make_socket()
    frame = CanFrame(CanId(0x201), b"\x10\x00")
    await socket.send_frame(frame)
    assert transport.sent == [frame]


@pytest.mark.asyncio
async def test_recv_new_by_can_id_skips_other_frames():
    socket, transport = make_socket()
    wanted = CanFrame(CanId(0x705), b"\x05")
    for frame in (
        CanFrame(CanId(0x185), b"\x01"),
        CanFrame(CanId(0x705), rtr=True),
        CanFrame(CanId(0x705, extended=True), b"\x05"),
        wanted,
    ):
        transport.incoming.put_nowait(frame)
    assert await socket.recv_new_by_can_id(CanId(0x705), 1.0) == wanted
    assert transport.incoming.empty()


@pytest.mark.asyncio
async def test_recv_new_filtered_timeout_returns_none():
    socket, transport = make_socket()
    transport.incoming.put_nowait(CanFrame(CanId(0x185), b"\x01"))
    assert await socket.recv_new_filtered(lambda frame: False, 0.05) is None
    assert transport.incoming.empty()


@pytest.mark.asyncio
async def test_send_sync_with_and_without_counter():
    socket, transport = make_socket()
    await socket.send_sync(7)
    await socket.send_sync()
    assert [(int(frame.can_id), frame.data) for frame in transport.sent] == [
        (0x80, b"\x07"),
        (0x80, b""),
    ]


@pytest.mark.asyncio
async def test_send_nmt_command_checks_heartbeat_state():
    socket, transport = make_socket()
    transport.incoming.put_nowait(CanFrame(CanId(0x700 | NODE), b"\x05"))
    await socket.send_nmt_command(NODE, NmtCommand.START, 1.0)
    assert transport.sent[0].data == bytes([NmtCommand.START, NODE])

    transport.incoming.put_nowait(CanFrame(CanId(0x700 | NODE), b"\x7f"))
    with pytest.raises(UnexpectedState):
        await socket.send_nmt_command(NODE, NmtCommand.STOP, 1.0)


@pytest.mark.asyncio
async def test_send_nmt_command_timeout():
    socket, _ = make_socket()
    with pytest.raises(NmtTimeout):
        await socket.send_nmt_command(NODE, NmtCommand.RESET, 0.05)


@pytest.mark.asyncio
async def test_sdo_upload_expedited_u16():
    socket, transport = make_socket()
    reply = bytes([0x4B, 0x41, 0x60, 0x00, 0x34, 0x12, 0x00, 0x00])
    transport.incoming.put_nowait(CanFrame(ADDRESS.response_id(NODE), reply))
    value = await socket.sdo_upload(NODE, ADDRESS, ObjectIndex(0x6041, 0), DataType.U16, 1.0)
    assert value == 0x1234
    request = transport.sent[0]
    assert request.can_id == ADDRESS.command_id(NODE)
    assert request.data == bytes([0x40, 0x41, 0x60, 0x00, 0, 0, 0, 0])


@pytest.mark.asyncio
async def test_sdo_upload_raw_returns_bytes():
    socket, transport = make_socket()
    reply = bytes([0x43, 0x00, 0x10, 0x00, 0x01, 0x02, 0x03, 0x04])
    transport.incoming.put_nowait(CanFrame(ADDRESS.response_id(NODE), reply))
    data = await socket.sdo_upload_raw(NODE, ADDRESS, ObjectIndex(0x1000, 0), 1.0)
    assert data == b"\x01\x02\x03\x04"


@pytest.mark.asyncio
async def test_sdo_upload_string_parse_error():
    socket, transport = make_socket()
    reply = bytes([0x4F, 0x08, 0x10, 0x00, 0xFF, 0x00, 0x00, 0x00])
    transport.incoming.put_nowait(CanFrame(ADDRESS.response_id(NODE), reply))
    with pytest.raises(UploadParseError):
        await socket.sdo_upload(NODE, ADDRESS, ObjectIndex(0x1008, 0), DataType.STRING, 1.0)


@pytest.mark.asyncio
async def test_sdo_upload_timeout_sends_abort():
    socket, transport = make_socket()
    with pytest.raises(SdoTimeout):
        await socket.sdo_upload(NODE, ADDRESS, ObjectIndex(0x6041, 0), DataType.U16, 0.05)
    assert transport.sent[-1].data[0] >> 5 == 4


@pytest.mark.asyncio
async def test_sdo_download_expedited_u16():
    socket, transport = make_socket()
    ack = bytes([0x60, 0x40, 0x60, 0x00, 0, 0, 0, 0])
    transport.incoming.put_nowait(CanFrame(ADDRESS.response_id(NODE), ack))
    await socket.sdo_download(NODE, ADDRESS, ObjectIndex(0x6040, 0), 6, 1.0, DataType.U16)
    assert transport.sent[0].data == bytes([0x2B, 0x40, 0x60, 0x00, 0x06, 0x00, 0x00, 0x00])


@pytest.mark.asyncio
async def test_sdo_download_integer_needs_data_type():
    socket, transport = make_socket()
    with pytest.raises(TypeError):
        await socket.sdo_download(NODE, ADDRESS, ObjectIndex(0x6040, 0), 6, 1.0)
    assert transport.sent == []


@pytest.mark.asyncio
async def test_pdo_methods_validate_pdo_number():
    socket, transport = make_socket()
    with pytest.raises(InvalidPdoNumber):
        await socket.read_rpdo_configuration(NODE, ADDRESS, 512, 1.0)
    with pytest.raises(InvalidPdoNumber):
        await socket.enable_tpdo(NODE, ADDRESS, 1000, True, 1.0)
    assert transport.sent == []


@pytest.mark.asyncio
async def test_enable_rpdo_through_socket():
    socket, transport = make_socket()
    upload_reply = bytes([0x43, 0x01, 0x14, 0x01, 0x01, 0x02, 0x00, 0x00])
    download_ack = bytes([0x60, 0x01, 0x14, 0x01, 0, 0, 0, 0])
    transport.incoming.put_nowait(CanFrame(ADDRESS.response_id(NODE), upload_reply))
    transport.incoming.put_nowait(CanFrame(ADDRESS.response_id(NODE), download_ack))
    await socket.enable_rpdo(NODE, ADDRESS, 1, False, 1.0)
    written = int.from_bytes(transport.sent[-1].data[4:8], "little")
    assert written & (1 << 31)
    assert written & 0xFFFF == 0x0201