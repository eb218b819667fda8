"""Small numeric and name-validation helpers used while parsing PE images."""

import re

# Longest string read out of an image; longer strings are rare enough to
# treat as corrupt data.
MAX_STRING_LENGTH = 0x100000

INVALID_IMPORT_NAME = b"<invalid>"

# Letters, digits and the punctuation that mangled function names use.
_VALID_FUNC_NAME = re.compile(r"[\w?@$()]+")

# Characters allowed in FAT 8.3 short file names; the length is not checked
# because DLL names are often longer than 8.3.
_VALID_DOS_NAME = re.compile(r"[\w!/$%&'()`\-@^{}~+,.;=\[\]]+")


def power_of_two(value: int) -> bool:
    """Return whether ``value`` is a (non-zero) power of two."""
    return value != 0 and value & (value - 1) == 0


def align_down(value: int, alignment: int) -> int:
    """Round ``value`` down to a multiple of the power-of-two ``alignment``."""
    return value & ~(alignment - 1)


def align_up(value: int, alignment: int) -> int:
    """Round ``value`` up to a multiple of the power-of-two ``alignment``."""
    if value & (alignment - 1):
        return align_down(value, alignment) + alignment
    return value


def memset_repeat(buffer, value: int) -> None:
    """Fill a writable byte buffer in place with the byte ``value``."""
    fill = bytes([value])
    buffer[:] = fill * len(buffer)


def _as_text(name) -> str:
    if isinstance(name, str):
        return name
    return bytes(name).decode("utf-8", errors="replace")


def valid_func_name(name) -> bool:
    """Return whether ``name`` only holds characters seen in function names."""
    return _VALID_FUNC_NAME.fullmatch(_as_text(name)) is not None


def valid_dos_filename(name) -> bool:
    """Return whether ``name`` only holds characters valid in DOS file names."""
    return _VALID_DOS_NAME.fullmatch(_as_text(name)) is not None