"""Reading and writing PDO configurations through SDO transfers."""

from __future__ import annotations

from collections.abc import Sequence

from .frame import CanId
from .objects import ObjectIndex
from .pdo_types import (
    DeadlineTimerNotSupported,
    EventTimerNotSupported,
    InhibitTimeNotSupported,
    PdoConfigError,
    PdoMapping,
    RpdoCommunicationParameters,
    RpdoConfiguration,
    RpdoTransmissionType,
    StartSyncNotSupported,
    TpdoCommunicationParameters,
    TpdoConfiguration,
    TpdoTransmissionType,
    rpdo_communication_params_object,
    rpdo_mapping_object,
    tpdo_communication_params_object,
    tpdo_mapping_object,
)
from .sdo import DataType, SdoBus, decode_value, encode_value, sdo_download, sdo_upload
from .sdo_protocol import SdoAddress, SdoError

# Bit 31 of a PDO COB ID: set means the PDO is disabled.
DISABLED_BIT = 1 << 31
# Bit 30 of a TPDO COB ID: set means remote transmission requests are not allowed.
NO_RTR_BIT = 1 << 30
# Bit 29 of a PDO COB ID: set for extended CAN IDs.
EXTENDED_BIT = 1 << 29
COB_ID_MASK = 0x1FFF_FFFF


async def _upload(
    bus: SdoBus,
    node_id: int,
    sdo: SdoAddress,
    index: int,
    subindex: int,
    data_type: DataType,
    timeout: float,
) -> int:
    try:
        data = await sdo_upload(
            bus, node_id, sdo, ObjectIndex(index, subindex), timeout, data_type.size
        )
        value = decode_value(data, data_type)
    except SdoError as error:
        raise PdoConfigError(str(error)) from error
    assert isinstance(value, int)
    return value


async def _download(
    bus: SdoBus,
    node_id: int,
    sdo: SdoAddress,
    index: int,
    subindex: int,
    value: int,
    data_type: DataType,
    timeout: float,
) -> None:
    data = encode_value(value, data_type)
    try:
        await sdo_download(bus, node_id, sdo, ObjectIndex(index, subindex), data, timeout)
    except SdoError as error:
        raise PdoConfigError(str(error)) from error


def _encode_cob_id(cob_id: CanId) -> int:
    """The COB ID value with the disabled bit set, so the PDO stays off while configuring."""
    if cob_id.extended:
        return cob_id.value | EXTENDED_BIT | DISABLED_BIT
    return cob_id.value | DISABLED_BIT


async def read_rpdo_configuration(
    bus: SdoBus, node_id: int, sdo: SdoAddress, pdo: int, timeout: float
) -> RpdoConfiguration:
    """Read the communication parameters and mapping of an RPDO."""
    mapping_index = rpdo_mapping_object(pdo)
    communication = await read_rpdo_communication_parameters(bus, node_id, sdo, pdo, timeout)
    mapping = await read_pdo_mapping(bus, node_id, sdo, mapping_index, timeout)
    return RpdoConfiguration(communication, mapping)


async def read_tpdo_configuration(
    bus: SdoBus, node_id: int, sdo: SdoAddress, pdo: int, timeout: float
) -> TpdoConfiguration:
    """Read the communication parameters and mapping of a TPDO."""
    mapping_index = tpdo_mapping_object(pdo)
    communication = await read_tpdo_communication_parameters(bus, node_id, sdo, pdo, timeout)
    mapping = await read_pdo_mapping(bus, node_id, sdo, mapping_index, timeout)
    return TpdoConfiguration(communication, mapping)


async def read_rpdo_communication_parameters(
    bus: SdoBus, node_id: int, sdo: SdoAddress, pdo: int, timeout: float
) -> RpdoCommunicationParameters:
    """Read the communication parameters of an RPDO."""
    index = rpdo_communication_params_object(pdo)

    valid_subindices = await _upload(bus, node_id, sdo, index, 0, DataType.U8, timeout)
    raw_cob_id = await _upload(bus, node_id, sdo, index, 1, DataType.U32, timeout)
    mode = await _upload(bus, node_id, sdo, index, 2, DataType.U8, timeout)
    inhibit_time = 0
    if valid_subindices >= 3:
        inhibit_time = await _upload(bus, node_id, sdo, index, 3, DataType.U16, timeout)
    deadline_timer = 0
    if valid_subindices >= 5:
        deadline_timer = await _upload(bus, node_id, sdo, index, 5, DataType.U16, timeout)

    return RpdoCommunicationParameters(
        enabled=not raw_cob_id & DISABLED_BIT,
        cob_id=CanId.from_int(raw_cob_id & COB_ID_MASK),
        mode=RpdoTransmissionType(mode),
        inhibit_time_100us=inhibit_time,
        deadline_timer_ms=deadline_timer,
    )


async def read_tpdo_communication_parameters(
    bus: SdoBus, node_id: int, sdo: SdoAddress, pdo: int, timeout: float
) -> TpdoCommunicationParameters:
    """Read the communication parameters of a TPDO."""
    index = tpdo_communication_params_object(pdo)

    valid_subindices = await _upload(bus, node_id, sdo, index, 0, DataType.U8, timeout)
    raw_cob_id = await _upload(bus, node_id, sdo, index, 1, DataType.U32, timeout)
    mode = await _upload(bus, node_id, sdo, index, 2, DataType.U8, timeout)
    inhibit_time = 0
    if valid_subindices >= 3:
        inhibit_time = await _upload(bus, node_id, sdo, index, 3, DataType.U16, timeout)
    event_timer = 0
    if valid_subindices >= 5:
        event_timer = await _upload(bus, node_id, sdo, index, 5, DataType.U16, timeout)
    start_sync = 0
    if valid_subindices >= 6:
        start_sync = await _upload(bus, node_id, sdo, index, 6, DataType.U8, timeout)

    return TpdoCommunicationParameters(
        enabled=not raw_cob_id & DISABLED_BIT,
        rtr_allowed=not raw_cob_id & NO_RTR_BIT,
        cob_id=CanId.from_int(raw_cob_id & COB_ID_MASK),
        mode=TpdoTransmissionType(mode),
        inhibit_time_100us=inhibit_time,
        event_timer_ms=event_timer,
        start_sync=start_sync,
    )


async def read_pdo_mapping(
    bus: SdoBus, node_id: int, sdo: SdoAddress, object_index: int, timeout: float
) -> list[PdoMapping]:
    """Read the mapping entries stored in a PDO mapping object."""
    count = await _upload(bus, node_id, sdo, object_index, 0, DataType.U8, timeout)
    mappings = []
    for subindex in range(1, count + 1):
        raw = await _upload(bus, node_id, sdo, object_index, subindex, DataType.U32, timeout)
        mappings.append(PdoMapping.from_u32(raw))
    return mappings


async def _set_enabled(
    bus: SdoBus, node_id: int, sdo: SdoAddress, index: int, enabled: bool, timeout: float
) -> None:
    cob_id = await _upload(bus, node_id, sdo, index, 1, DataType.U32, timeout)
    if enabled:
        cob_id &= ~DISABLED_BIT
    else:
        cob_id |= DISABLED_BIT
    await _download(bus, node_id, sdo, index, 1, cob_id, DataType.U32, timeout)


async def enable_rpdo(
    bus: SdoBus, node_id: int, sdo: SdoAddress, pdo: int, enabled: bool, timeout: float
) -> None:
    """Enable or disable an RPDO, leaving the rest of its COB ID untouched."""
    index = rpdo_communication_params_object(pdo)
    await _set_enabled(bus, node_id, sdo, index, enabled, timeout)


async def enable_tpdo(
    bus: SdoBus, node_id: int, sdo: SdoAddress, pdo: int, enabled: bool, timeout: float
) -> None:
    """Enable or disable a TPDO, leaving the rest of its COB ID untouched."""
    index = tpdo_communication_params_object(pdo)
    await _set_enabled(bus, node_id, sdo, index, enabled, timeout)


async def configure_rpdo(
    bus: SdoBus,
    node_id: int,
    sdo: SdoAddress,
    pdo: int,
    config: RpdoConfiguration,
    timeout: float,
) -> None:
    """Write the full configuration of an RPDO; it is disabled while being changed."""
    mapping_index = rpdo_mapping_object(pdo)
    await enable_rpdo(bus, node_id, sdo, pdo, False, timeout)
    await write_rpdo_communication_parameters(
        bus, node_id, sdo, pdo, config.communication, timeout
    )
    await configure_pdo_mapping(bus, node_id, sdo, mapping_index, config.mapping, timeout)
    if config.communication.enabled:
        await enable_rpdo(bus, node_id, sdo, pdo, True, timeout)


async def configure_tpdo(
    bus: SdoBus,
    node_id: int,
    sdo: SdoAddress,
    pdo: int,
    config: TpdoConfiguration,
    timeout: float,
) -> None:
    """Write the full configuration of a TPDO; it is disabled while being changed."""
    mapping_index = tpdo_mapping_object(pdo)
    await enable_tpdo(bus, node_id, sdo, pdo, False, timeout)
    await write_tpdo_communication_parameters(
        bus, node_id, sdo, pdo, config.communication, timeout
    )
    await configure_pdo_mapping(bus, node_id, sdo, mapping_index, config.mapping, timeout)
    if config.communication.enabled:
        await enable_tpdo(bus, node_id, sdo, pdo, True, timeout)


async def write_rpdo_communication_parameters(
    bus: SdoBus,
    node_id: int,
    sdo: SdoAddress,
    pdo: int,
    params: RpdoCommunicationParameters,
    timeout: float,
) -> None:
    """Write the communication parameters of an RPDO, leaving it disabled."""
    index = rpdo_communication_params_object(pdo)

    # The count is a u8 by the standard, but some devices answer with 4 bytes.
    valid_subindices = await _upload(bus, node_id, sdo, index, 0, DataType.U32, timeout)
    if valid_subindices < 3 and params.inhibit_time_100us > 0:
        raise InhibitTimeNotSupported()
    if valid_subindices < 5 and params.deadline_timer_ms > 0:
        raise DeadlineTimerNotSupported()

    cob_id = _encode_cob_id(params.cob_id)
    await _download(bus, node_id, sdo, index, 1, cob_id, DataType.U32, timeout)
    await _download(bus, node_id, sdo, index, 2, int(params.mode), DataType.U8, timeout)
    if valid_subindices >= 3:
        await _download(
            bus, node_id, sdo, index, 3, params.inhibit_time_100us, DataType.U16, timeout
        )
    if valid_subindices >= 5:
        await _download(
            bus, node_id, sdo, index, 5, params.deadline_timer_ms, DataType.U16, timeout
        )


async def write_tpdo_communication_parameters(
    bus: SdoBus,
    node_id: int,
    sdo: SdoAddress,
    pdo: int,
    params: TpdoCommunicationParameters,
    timeout: float,
) -> None:
    """Write the communication parameters of a TPDO, leaving it disabled."""
    index = tpdo_communication_params_object(pdo)

    # The count is a u8 by the standard, but some devices answer with 4 bytes.
    valid_subindices = await _upload(bus, node_id, sdo, index, 0, DataType.U32, timeout)
    if valid_subindices < 3 and params.inhibit_time_100us > 0:
        raise InhibitTimeNotSupported()
    if valid_subindices < 5 and params.event_timer_ms > 0:
        raise EventTimerNotSupported()
    if valid_subindices < 6 and params.start_sync > 0:
        raise StartSyncNotSupported()

    cob_id = _encode_cob_id(params.cob_id)
    if params.rtr_allowed:
        cob_id &= ~NO_RTR_BIT
    else:
        cob_id |= NO_RTR_BIT

    await _download(bus, node_id, sdo, index, 1, cob_id, DataType.U32, timeout)
    await _download(bus, node_id, sdo, index, 2, int(params.mode), DataType.U8, timeout)
    if valid_subindices >= 3:
        await _download(
            bus, node_id, sdo, index, 3, params.inhibit_time_100us, DataType.U16, timeout
        )
    if valid_subindices >= 5:
        await _download(
            bus, node_id, sdo, index, 5, params.event_timer_ms, DataType.U16, timeout
        )
    if valid_subindices >= 6:
        await _download(bus, node_id, sdo, index, 6, params.start_sync, DataType.U8, timeout)


async def configure_pdo_mapping(
    bus: SdoBus,
    node_id: int,
    sdo: SdoAddress,
    object_index: int,
    mappings: Sequence[PdoMapping],
    timeout: float,
) -> None:
    """Replace the mapping entries of a PDO mapping object (RPDO or TPDO)."""
    if len(mappings) > 0xFF:
        raise ValueError(f"too many PDO mappings: {len(mappings)}")
    await _download(bus, node_id, sdo, object_index, 0, 0, DataType.U8, timeout)
    for subindex, mapping in enumerate(mappings, start=1):
        await _download(
            bus, node_id, sdo, object_index, subindex, mapping.to_u32(), DataType.U32, timeout
        )
    await _download(bus, node_id, sdo, object_index, 0, len(mappings), DataType.U8, timeout)