"""PDO configuration types, transmission types and their errors."""

from __future__ import annotations

from dataclasses import dataclass, field

from .frame import CanId
from .objects import ObjectIndex

MAX_PDO_NUMBER = 511
SYNC_INTERVAL_MAX = 0xF0


class PdoConfigError(Exception):
    """An error while reading or writing a PDO configuration."""


class InvalidPdoNumber(PdoConfigError, ValueError):
    """The PDO number is not between 0 and 511."""

    def __init__(self, value: int) -> None:
        self.value = value
        super().__init__(
            "invalid PDO number: value must be between 0 and 511 (inclusive), "
            f"but got {value}"
        )


class InvalidSyncInterval(ValueError):
    """The interval for the `nth sync` PDO mode is not between 1 and 240."""

    def __init__(self, value: int) -> None:
        self.value = value
        super().__init__(
            "invalid value for PDO mode `nth sync`: value must be between 1 and 240 "
            f"(inclusive), but got {value}"
        )


class InhibitTimeNotSupported(PdoConfigError):
    """The PDO has no inhibit time parameter."""

    def __init__(self) -> None:
        super().__init__("The PDO does not support the inhibit time parameter")


class DeadlineTimerNotSupported(PdoConfigError):
    """The PDO has no deadline timer parameter."""

    def __init__(self) -> None:
        super().__init__("The PDO does not support the deadline timer parameter")


class EventTimerNotSupported(PdoConfigError):
    """The PDO has no event timer parameter."""

    def __init__(self) -> None:
        super().__init__("The PDO does not support the event timer parameter")


class StartSyncNotSupported(PdoConfigError):
    """The PDO has no start SYNC parameter."""

    def __init__(self) -> None:
        super().__init__("The PDO does not support the start SYNC parameter")


@dataclass(frozen=True)
class PdoMapping:
    """One object mapped into a PDO, with the number of its bits that are sent."""

    object: ObjectIndex
    bit_length: int

    def __post_init__(self) -> None:
        if not 0 <= self.bit_length <= 0xFF:
            raise ValueError(f"PDO mapping bit length out of range: {self.bit_length}")

    @classmethod
    def from_u32(cls, raw: int) -> PdoMapping:
        """Parse a mapping from its 32 bit object dictionary value."""
        index = raw >> 16 & 0xFFFF
        subindex = raw >> 8 & 0xFF
        return cls(ObjectIndex(index, subindex), raw & 0xFF)

    def to_u32(self) -> int:
        """The 32 bit object dictionary value of the mapping."""
        return self.object.index << 16 | self.object.subindex << 8 | self.bit_length


def _check_u8(raw: int) -> None:
    if not 0 <= raw <= 0xFF:
        raise ValueError(f"transmission type must fit in one byte, got {raw}")


def _is_event_driven(raw: int) -> bool | None:
    if raw == 0xFE:
        return True
    if raw == 0xFF:
        return False
    return None


@dataclass(frozen=True)
class RpdoTransmissionType:
    """The transmission type of an RPDO; reserved values are kept as they are."""

    raw: int

    def __post_init__(self) -> None:
        _check_u8(self.raw)

    @classmethod
    def sync(cls) -> RpdoTransmissionType:
        """Synchronous: the last received value is applied at every SYNC."""
        return cls(0)

    def is_sync(self) -> bool:
        """True for the synchronous transmission types."""
        return self.raw <= SYNC_INTERVAL_MAX

    def is_reserved(self) -> bool:
        """True for the reserved values 0xF1 to 0xFB."""
        return 0xF1 <= self.raw <= 0xFB

    @classmethod
    def event_driven(cls, manufacturer_specific: bool) -> RpdoTransmissionType:
        """Event driven: the value is applied as soon as the PDO arrives."""
        return cls(0xFE if manufacturer_specific else 0xFF)

    def is_event_driven(self) -> bool | None:
        """True for manufacturer specific, False for profile based, None otherwise."""
        return _is_event_driven(self.raw)

    def __int__(self) -> int:
        return self.raw

    def __repr__(self) -> str:
        raw = self.raw
        if self.is_sync():
            return f"Sync(0x{raw:02X})"
        if self.is_reserved():
            return f"Reserved(0x{raw:02X})"
        specific = self.is_event_driven()
        if specific is not None:
            flag = str(specific).lower()
            return f"EventDriven(manufacturer_specific: {flag}, 0x{raw:02X})"
        return f"Unknown(0x{raw:02X})"


@dataclass(frozen=True)
class TpdoTransmissionType:
    """The transmission type of a TPDO; reserved values are kept as they are."""

    raw: int

    def __post_init__(self) -> None:
        _check_u8(self.raw)

    @classmethod
    def sync_acyclic(cls) -> TpdoTransmissionType:
        """Sent on a SYNC, but only if an event occurred."""
        return cls(0)

    def is_sync_acyclic(self) -> bool:
        """True for synchronous acyclic transmission."""
        return self.raw == 0

    @classmethod
    def sync(cls, interval: int) -> TpdoTransmissionType:
        """Sent after every ``interval`` SYNC messages (1 to 240)."""
        if not 1 <= interval <= SYNC_INTERVAL_MAX:
            raise InvalidSyncInterval(interval)
        return cls(interval)

    def is_sync(self) -> int | None:
        """The SYNC interval for cyclic synchronous transmission, else None."""
        if 1 <= self.raw <= SYNC_INTERVAL_MAX:
            return self.raw
        return None

    def is_reserved(self) -> bool:
        """True for the reserved values 0xF1 to 0xFB."""
        return 0xF1 <= self.raw <= 0xFB

    @classmethod
    def rtr_only(cls, sync: bool) -> TpdoTransmissionType:
        """Sent only in response to a remote transmission request."""
        return cls(0xFC if sync else 0xFD)

    def is_rtr_only(self) -> bool | None:
        """True for synchronous RTR only, False for plain RTR only, None otherwise."""
        if self.raw == 0xFC:
            return True
        if self.raw == 0xFD:
            return False
        return None

    @classmethod
    def event_driven(cls, manufacturer_specific: bool) -> TpdoTransmissionType:
        """Sent when an event occurs, ignoring SYNC messages."""
        return cls(0xFE if manufacturer_specific else 0xFF)

    def is_event_driven(self) -> bool | None:
        """True for manufacturer specific, False for profile based, None otherwise."""
        return _is_event_driven(self.raw)

    def __int__(self) -> int:
        return self.raw

    def __repr__(self) -> str:
        raw = self.raw
        if self.is_sync_acyclic():
            return f"SyncAcyclic(0x{raw:02X})"
        if self.is_sync() is not None:
            return f"Sync(0x{raw:02X})"
        if self.is_reserved():
            return f"Reserved(0x{raw:02X})"
        rtr = self.is_rtr_only()
        if rtr is not None:
            return f"RtrOnly(sync: {str(rtr).lower()}, 0x{raw:02X})"
        specific = self.is_event_driven()
        if specific is not None:
            flag = str(specific).lower()
            return f"EventDriven(manufacturer_specific: {flag}, 0x{raw:02X})"
        return f"Unknown(0x{raw:02X})"


@dataclass
class RpdoCommunicationParameters:
    """The communication parameters of an RPDO.

    The inhibit time is in units of 100 microseconds; the deadline timer in
    milliseconds notifies the application when the PDO stops arriving.
    """

    enabled: bool
    cob_id: CanId
    mode: RpdoTransmissionType
    inhibit_time_100us: int = 0
    deadline_timer_ms: int = 0


@dataclass
class RpdoConfiguration:
    """Communication parameters and mapping of an RPDO."""

    communication: RpdoCommunicationParameters
    mapping: list[PdoMapping] = field(default_factory=list)


@dataclass
class TpdoCommunicationParameters:
    """The communication parameters of a TPDO.

    The inhibit time (units of 100 microseconds) and the event timer
    (milliseconds) apply to event driven transmission only; ``start_sync`` is
    the SYNC counter value to wait for before the first transmission.
    """

    enabled: bool
    rtr_allowed: bool
    cob_id: CanId
    mode: TpdoTransmissionType
    inhibit_time_100us: int = 0
    event_timer_ms: int = 0
    start_sync: int = 0


@dataclass
class TpdoConfiguration:
    """Communication parameters and mapping of a TPDO."""

    communication: TpdoCommunicationParameters
    mapping: list[PdoMapping] = field(default_factory=list)


def _pdo_object(base: int, pdo: int) -> int:
    if not 0 <= pdo <= MAX_PDO_NUMBER:
        raise InvalidPdoNumber(pdo)
    return base + pdo


def rpdo_communication_params_object(pdo: int) -> int:
    """The object index of an RPDO's communication parameters."""
    return _pdo_object(0x1400, pdo)


def rpdo_mapping_object(pdo: int) -> int:
    """The object index of an RPDO's mapping."""
    return _pdo_object(0x1600, pdo)


def tpdo_communication_params_object(pdo: int) -> int:
    """The object index of a TPDO's communication parameters."""
    return _pdo_object(0x1800, pdo)


def tpdo_mapping_object(pdo: int) -> int:
    """The object index of a TPDO's mapping."""
    return _pdo_object(0x1A00, pdo)