from collections import deque

import pytest

from aiocanopen.frame import CanFrame, CanId
from aiocanopen.objects import ObjectIndex
from aiocanopen.pdo import (
    configure_pdo_mapping,
    configure_rpdo,
    configure_tpdo,
    enable_rpdo,
    enable_tpdo,
    read_pdo_mapping,
    read_rpdo_communication_parameters,
    read_rpdo_configuration,
    read_tpdo_communication_parameters,
    read_tpdo_configuration,
    write_rpdo_communication_parameters,
    write_tpdo_communication_parameters,
)
from aiocanopen.pdo_types import (
    DeadlineTimerNotSupported,
    EventTimerNotSupported,
    InhibitTimeNotSupported,
    InvalidPdoNumber,
    PdoConfigError,
    PdoMapping,
    RpdoCommunicationParameters,
    RpdoConfiguration,
    RpdoTransmissionType,
    StartSyncNotSupported,
    TpdoCommunicationParameters,
    TpdoConfiguration,
    TpdoTransmissionType,
)
from aiocanopen.sdo_protocol import AbortReason, SdoAddress, TransferAborted

NODE = 5
ADDRESS = SdoAddress.standard()
TIMEOUT = 1.0


def u8(value):
    return value.to_bytes(1, "little")


def u16(value):
    return value.to_bytes(2, "little")


def u32(value):
    return value.to_bytes(4, "little")


class FakeSdoServer:
    """An SDO server holding an object dictionary, answering expedited transfers."""

    def __init__(self, objects):
        self.objects = {key: bytes(value) for key, value in objects.items()}
        self.uploads = []
        self.downloads = []
        self.sent = []
        self._replies = deque()

    def value(self, index, subindex):
        return int.from_bytes(self.objects[(index, subindex)], "little")

    async def send_frame(self, frame):
        self.sent.append(frame)
        data = frame.data
        command = data[0] >> 5
        key = (int.from_bytes(data[1:3], "little"), data[3])
        if command == 2:
            self.uploads.append(key)
            value = self.objects.get(key)
            if value is None:
                self._reply(0x80, data[1:4], u32(AbortReason.OBJECT_DOES_NOT_EXIST))
            else:
                n = 4 - len(value)
                self._reply(0x43 | n << 2, data[1:4], value.ljust(4, b"\x00"))
        elif command == 1:
            n = data[0] >> 2 & 0x03
            value = bytes(data[4:8 - n])
            self.objects[key] = value
            self.downloads.append((key, value))
            self._reply(0x60, data[1:4], bytes(4))

    def _reply(self, command, obj, payload):
        frame = CanFrame(ADDRESS.response_id(NODE), bytes([command]) + bytes(obj) + payload)
        self._replies.append(frame)

    async def recv_new_by_can_id(self, can_id, timeout):
        assert can_id == ADDRESS.response_id(NODE)
        return self._replies.popleft() if self._replies else None


MAPPING_A = PdoMapping(ObjectIndex(0x6042, 0), 16)
MAPPING_B = PdoMapping(ObjectIndex(0x2039, 5), 32)


@pytest.mark.asyncio
async def test_read_rpdo_configuration():
    server = FakeSdoServer({
        (0x1400, 0): u8(5),
        (0x1400, 1): u32(0x201),
        (0x1400, 2): u8(0xFF),
        (0x1400, 3): u16(100),
        (0x1400, 5): u16(250),
        (0x1600, 0): u8(1),
        (0x1600, 1): u32(MAPPING_A.to_u32()),
    })
    config = await read_rpdo_configuration(server, NODE, ADDRESS, 0, TIMEOUT)
    expected = RpdoConfiguration(
        RpdoCommunicationParameters(
            enabled=True,
            cob_id=CanId(0x201),
            mode=RpdoTransmissionType.event_driven(False),
            inhibit_time_100us=100,
            deadline_timer_ms=250,
        ),
        [MAPPING_A],
    )
    assert config == expected


@pytest.mark.asyncio
async def test_read_rpdo_parameters_skips_missing_subindices():
    server = FakeSdoServer({
        (0x1402, 0): u8(2),
        (0x1402, 1): u32((1 << 31) | 0x203),
        (0x1402, 2): u8(0),
    })
    params = await read_rpdo_communication_parameters(server, NODE, ADDRESS, 2, TIMEOUT)
    assert params.enabled is False
    assert params.cob_id == CanId(0x203)
    assert params.inhibit_time_100us == 0
    assert params.deadline_timer_ms == 0
    assert server.uploads == [(0x1402, 0), (0x1402, 1), (0x1402, 2)]


@pytest.mark.asyncio
async def test_read_tpdo_configuration_with_rtr_disallowed():
    server = FakeSdoServer({
        (0x1801, 0): u8(6),
        (0x1801, 1): u32((1 << 30) | 0x182),
        (0x1801, 2): u8(1),
        (0x1801, 3): u16(7),
        (0x1801, 5): u16(20),
        (0x1801, 6): u8(3),
        (0x1A01, 0): u8(2),
        (0x1A01, 1): u32(MAPPING_A.to_u32()),
        (0x1A01, 2): u32(MAPPING_B.to_u32()),
    })
    config = await read_tpdo_configuration(server, NODE, ADDRESS, 1, TIMEOUT)
    assert config.communication == TpdoCommunicationParameters(
        enabled=True,
        rtr_allowed=False,
        cob_id=CanId(0x182),
        mode=TpdoTransmissionType.sync(1),
        inhibit_time_100us=7,
        event_timer_ms=20,
        start_sync=3,
    )
    assert config.mapping == [MAPPING_A, MAPPING_B]


@pytest.mark.asyncio
async def test_read_tpdo_parameters_without_start_sync():
    server = FakeSdoServer({
        (0x1800, 0): u8(5),
        (0x1800, 1): u32(0x181),
        (0x1800, 2): u8(0xFE),
        (0x1800, 3): u16(0),
        (0x1800, 5): u16(0),
    })
    params = await read_tpdo_communication_parameters(server, NODE, ADDRESS, 0, TIMEOUT)
    assert params.start_sync == 0
    assert params.rtr_allowed is True
    assert (0x1800, 6) not in server.uploads


@pytest.mark.asyncio
async def test_read_pdo_mapping_empty():
    server = FakeSdoServer({(0x1A00, 0): u8(0)})
    assert await read_pdo_mapping(server, NODE, ADDRESS, 0x1A00, TIMEOUT) == []


@pytest.mark.asyncio
async def test_invalid_pdo_number_sends_nothing():
    server = FakeSdoServer({})
    with pytest.raises(InvalidPdoNumber):
        await read_tpdo_configuration(server, NODE, ADDRESS, 512, TIMEOUT)
    with pytest.raises(InvalidPdoNumber):
        await enable_rpdo(server, NODE, ADDRESS, 600, True, TIMEOUT)
    assert server.sent == []


@pytest.mark.asyncio
async def test_missing_object_is_a_config_error_caused_by_abort():
    server = FakeSdoServer({})
    with pytest.raises(PdoConfigError) as info:
        await read_rpdo_communication_parameters(server, NODE, ADDRESS, 0, TIMEOUT)
    assert isinstance(info.value.__cause__, TransferAborted)
    assert info.value.__cause__.reason is AbortReason.OBJECT_DOES_NOT_EXIST
    assert server.sent[-1].data[0] >> 5 == 4


@pytest.mark.asyncio
async def test_enable_and_disable_rpdo_toggle_bit_31():
    server = FakeSdoServer({(0x1400, 1): u32(0x201)})
    await enable_rpdo(server, NODE, ADDRESS, 0, False, TIMEOUT)
    assert server.value(0x1400, 1) & (1 << 31)
    assert server.value(0x1400, 1) & 0x7FFF_FFFF == 0x201
    await enable_rpdo(server, NODE, ADDRESS, 0, True, TIMEOUT)
    assert server.value(0x1400, 1) == 0x201


@pytest.mark.asyncio
async def test_enable_tpdo_keeps_other_bits():
    server = FakeSdoServer({(0x1803, 1): u32((1 << 31) | (1 << 30) | 0x184)})
    await enable_tpdo(server, NODE, ADDRESS, 3, True, TIMEOUT)
    assert server.value(0x1803, 1) == (1 << 30) | 0x184


@pytest.mark.asyncio
async def test_configure_pdo_mapping_write_order():
    server = FakeSdoServer({})
    await configure_pdo_mapping(server, NODE, ADDRESS, 0x1600, [MAPPING_A, MAPPING_B], TIMEOUT)
    assert server.downloads == [
        ((0x1600, 0), b"\x00"),
        ((0x1600, 1), u32(MAPPING_A.to_u32())),
        ((0x1600, 2), u32(MAPPING_B.to_u32())),
        ((0x1600, 0), u8(2)),
    ]


def _tpdo_objects():
    return {
        (0x1800, 0): u8(6),
        (0x1800, 1): u32((1 << 31) | 0x180),
        (0x1800, 2): u8(0xFF),
        (0x1800, 3): u16(0),
        (0x1800, 5): u16(0),
        (0x1800, 6): u8(0),
        (0x1A00, 0): u8(0),
    }


@pytest.mark.asyncio
async def test_configure_tpdo_round_trip():
    server = FakeSdoServer(_tpdo_objects())
    config = TpdoConfiguration(
        TpdoCommunicationParameters(
            enabled=True,
            rtr_allowed=False,
            cob_id=CanId(0x181),
            mode=TpdoTransmissionType.sync(1),
            inhibit_time_100us=10,
            event_timer_ms=50,
            start_sync=2,
        ),
        [MAPPING_A, MAPPING_B],
    )
    await configure_tpdo(server, NODE, ADDRESS, 0, config, TIMEOUT)
    assert await read_tpdo_configuration(server, NODE, ADDRESS, 0, TIMEOUT) == config
    assert server.value(0x1800, 1) & (1 << 31) == 0


@pytest.mark.asyncio
async def test_configure_disabled_tpdo_stays_disabled():
    server = FakeSdoServer(_tpdo_objects())
    config = TpdoConfiguration(
        TpdoCommunicationParameters(
            enabled=False,
            rtr_allowed=True,
            cob_id=CanId(0x185),
            mode=TpdoTransmissionType.rtr_only(False),
        ),
        [MAPPING_A],
    )
    await configure_tpdo(server, NODE, ADDRESS, 0, config, TIMEOUT)
    assert await read_tpdo_configuration(server, NODE, ADDRESS, 0, TIMEOUT) == config


@pytest.mark.asyncio
async def test_configure_rpdo_round_trip_with_extended_id():
    server = FakeSdoServer({
        (0x1400, 0): u8(5),
        (0x1400, 1): u32((1 << 31) | 0x200),
        (0x1400, 2): u8(0xFF),
        (0x1400, 3): u16(0),
        (0x1400, 5): u16(0),
        (0x1600, 0): u8(0),
    })
    config = RpdoConfiguration(
        RpdoCommunicationParameters(
            enabled=True,
            cob_id=CanId(0x1234567, extended=True),
            mode=RpdoTransmissionType.sync(),
            deadline_timer_ms=30,
        ),
        [MAPPING_A],
    )
    await configure_rpdo(server, NODE, ADDRESS, 0, config, TIMEOUT)
    assert server.value(0x1400, 1) & (1 << 29)
    assert await read_rpdo_configuration(server, NODE, ADDRESS, 0, TIMEOUT) == config


@pytest.mark.asyncio
async def test_write_rpdo_rejects_unsupported_inhibit_time():
    server = FakeSdoServer({(0x1400, 0): u8(2)})
    params = RpdoCommunicationParameters(True, CanId(0x201), RpdoTransmissionType.sync(), 10, 0)
    with pytest.raises(InhibitTimeNotSupported):
        await write_rpdo_communication_parameters(server, NODE, ADDRESS, 0, params, TIMEOUT)
    assert server.downloads == []


@pytest.mark.asyncio
async def test_write_rpdo_rejects_unsupported_deadline_timer():
    server = FakeSdoServer({(0x1400, 0): u8(4)})
    params = RpdoCommunicationParameters(True, CanId(0x201), RpdoTransmissionType.sync(), 0, 5)
    with pytest.raises(DeadlineTimerNotSupported):
        await write_rpdo_communication_parameters(server, NODE, ADDRESS, 0, params, TIMEOUT)


@pytest.mark.asyncio
async def test_write_tpdo_rejects_unsupported_event_timer_and_start_sync():
    server = FakeSdoServer({(0x1800, 0): u8(4)})
    params = TpdoCommunicationParameters(
        True, True, CanId(0x181), TpdoTransmissionType.sync_acyclic(), event_timer_ms=5
    )
    with pytest.raises(EventTimerNotSupported):
        await write_tpdo_communication_parameters(server, NODE, ADDRESS, 0, params, TIMEOUT)

    server = FakeSdoServer({(0x1800, 0): u8(5)})
    params = TpdoCommunicationParameters(
        True, True, CanId(0x181), TpdoTransmissionType.sync_acyclic(), start_sync=1
    )
    with pytest.raises(StartSyncNotSupported):
        await write_tpdo_communication_parameters(server, NODE, ADDRESS, 0, params, TIMEOUT)
    assert server.downloads == []


@pytest.mark.asyncio
async def test_write_tpdo_leaves_pdo_disabled_and_skips_missing_subindices():
    server = FakeSdoServer({(0x1800, 0): u8(2)})
    params = TpdoCommunicationParameters(True, True, CanId(0x181), TpdoTransmissionType(0xFE))
    await write_tpdo_communication_parameters(server, NODE, ADDRESS, 0, params, TIMEOUT)
    assert [key for key, _ in server.downloads] == [(0x1800, 1), (0x1800, 2)]
    assert server.value(0x1800, 1) & (1 << 31)
    assert server.value(0x1800, 1) & (1 << 30) == 0
    assert server.value(0x1800, 2) == 0xFE