"""CAN identifiers and frames, with the CANopen view of an identifier."""

from __future__ import annotations

from dataclasses import dataclass

STANDARD_ID_MAX = 0x7FF
EXTENDED_ID_MAX = 0x1FFF_FFFF


class InvalidIdError(ValueError):
    """A CAN identifier is out of range for its kind."""

    def __init__(self, value: int, extended: bool) -> None:
        self.value = value
        self.extended = extended
        limit = EXTENDED_ID_MAX if extended else STANDARD_ID_MAX
        kind = "extended" if extended else "standard"
        super().__init__(
            f"invalid {kind} CAN ID: 0x{value:X} (maximum is 0x{limit:X})"
        )


@dataclass(frozen=True)
class CanId:
    """A standard (11 bit) or extended (29 bit) CAN identifier."""

    value: int
    extended: bool = False

    def __post_init__(self) -> None:
        limit = EXTENDED_ID_MAX if self.extended else STANDARD_ID_MAX
        if not 0 <= self.value <= limit:
            raise InvalidIdError(self.value, self.extended)

    @classmethod
    def from_int(cls, value: int) -> CanId:
        """Make a standard ID if the value fits in 11 bits, otherwise an extended one."""
        if 0 <= value <= STANDARD_ID_MAX:
            return cls(value)
        return cls(value, extended=True)

    def _require_standard(self) -> None:
        if self.extended:
            raise ValueError("CANopen only uses standard CAN IDs")

    def function_code(self) -> int:
        """The function code bits of the ID (``id & 0x780``), left unshifted."""
        self._require_standard()
        return self.value & (0x0F << 7)

    def node_id(self) -> int:
        """The node ID: the 7 least significant bits of the ID."""
        self._require_standard()
        return self.value & 0x7F

    def __int__(self) -> int:
        return self.value

    def __repr__(self) -> str:
        if self.extended:
            return f"CanId(0x{self.value:08X}, extended)"
        return f"CanId(0x{self.value:03X})"


@dataclass(frozen=True)
class CanFrame:
    """A classic CAN frame with at most 8 data bytes, or a remote frame."""

    can_id: CanId
    data: bytes = b""
    rtr: bool = False

    def __post_init__(self) -> None:
        if isinstance(self.can_id, int):
            object.__setattr__(self, "can_id", CanId.from_int(self.can_id))
        data = bytes(self.data)
        if len(data) > 8:
            raise ValueError(f"CAN frame data is too long: {len(data)} bytes, maximum is 8")
        if self.rtr and data:
            raise ValueError("a remote frame carries no data")
        object.__setattr__(self, "data", data)

    def is_rtr(self) -> bool:
        """True for a remote transmission request frame."""
        return self.rtr