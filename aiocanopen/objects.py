"""Addressing of entries in a CANopen object dictionary."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, order=True)
class ObjectIndex:
    """An index and subindex in the object dictionary."""

    index: int
    subindex: int = 0

    def __post_init__(self) -> None:
        if not 0 <= self.index <= 0xFFFF:
            raise ValueError(f"object index out of range: {self.index}")
        if not 0 <= self.subindex <= 0xFF:
            raise ValueError(f"object subindex out of range: {self.subindex}")

    def __repr__(self) -> str:
        return f"ObjectIndex(index=0x{self.index:04X}, subindex=0x{self.subindex:02X})"