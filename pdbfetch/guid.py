"""GUID values as stored in PE debug records and printed by symbol servers."""

from __future__ import annotations

import re
import struct
from dataclasses import dataclass

_BIG_ENDIAN = struct.Struct(">IHH8s")
_LITTLE_ENDIAN = struct.Struct("<IHH8s")

_GUID_TEXT = re.compile(
    r"[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}"
)

_LAYOUTS = {
    "D": "{}-{}-{}-{}-{}",
    "N": "{}{}{}{}{}",
    "B": "{{{}-{}-{}-{}-{}}}",
    "P": "({}-{}-{}-{}-{})",
    "X": "({}-{}-{}-{}-{})",
}


@dataclass(frozen=True)
class Guid:
    """A GUID split into its four native fields."""

    data1: int = 0
    data2: int = 0
    data3: int = 0
    data4: bytes = bytes(8)

    def __post_init__(self) -> None:
        if not 0 <= self.data1 <= 0xFFFFFFFF:
            raise ValueError(f"data1 out of range: {self.data1!r}")
        if not 0 <= self.data2 <= 0xFFFF:
            raise ValueError(f"data2 out of range: {self.data2!r}")
        if not 0 <= self.data3 <= 0xFFFF:
            raise ValueError(f"data3 out of range: {self.data3!r}")
        data4 = bytes(self.data4)
        if len(data4) != 8:
            raise ValueError(f"data4 must be 8 bytes, got {len(data4)}")
        object.__setattr__(self, "data4", data4)

    @classmethod
    def _unpack(cls, data: bytes, layout: struct.Struct) -> Guid:
        data = bytes(data)
        if len(data) != 16:
            raise ValueError(f"a GUID needs 16 bytes, got {len(data)}")
        return cls(*layout.unpack(data))

    @classmethod
    def from_bytes(cls, data: bytes) -> Guid:
        """Build a GUID from its 16-byte big-endian encoding."""
        return cls._unpack(data, _BIG_ENDIAN)

    @classmethod
    def from_windows_bytes(cls, data: bytes) -> Guid:
        """Build a GUID from its 16-byte Windows (little-endian) encoding."""
        return cls._unpack(data, _LITTLE_ENDIAN)

    def to_bytes(self) -> bytes:
        """Return the 16-byte big-endian encoding."""
        return _BIG_ENDIAN.pack(self.data1, self.data2, self.data3, self.data4)

    def to_windows_bytes(self) -> bytes:
        """Return the 16-byte Windows (little-endian) encoding."""
        return _LITTLE_ENDIAN.pack(self.data1, self.data2, self.data3, self.data4)

    def format(self, spec: str = "") -> str:
        """Format as "N", "D", "B", "P" or "X"; an empty spec means "D"."""
        layout = _LAYOUTS.get(spec or "D")
        if layout is None:
            raise ValueError("invalid format specified")
        return layout.format(
            f"{self.data1:08x}",
            f"{self.data2:04x}",
            f"{self.data3:04x}",
            self.data4[:2].hex(),
            self.data4[2:].hex(),
        )

    @classmethod
    def from_string(cls, text: str) -> Guid:
        """Parse the xxxxxxxx-xxxx-xxxx-xxxx-xxxxxxxxxxxx form."""
        if len(text) != 36 or any(text[i] != "-" for i in (8, 13, 18, 23)):
            raise ValueError(f"invalid GUID {text!r}")
        if not _GUID_TEXT.fullmatch(text):
            raise ValueError(f"invalid GUID {text!r}")
        return cls(
            int(text[0:8], 16),
            int(text[9:13], 16),
            int(text[14:18], 16),
            bytes.fromhex(text[19:23] + text[24:36]),
        )

    def __str__(self) -> str:
        return self.format("D")