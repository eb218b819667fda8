"""PE/COFF on-disk structures and the constants that describe them.

Every structure is a dataclass whose wire fields carry a ``"fmt"`` entry in
their field metadata (a :mod:`struct` code); they are read little-endian and
packed, in declaration order.
"""

import struct
from dataclasses import Field, dataclass, field, fields
from typing import ClassVar

# Signatures
IMAGE_DOS_SIGNATURE = 0x5A4D
IMAGE_DOSZM_SIGNATURE = 0x4D5A
IMAGE_NE_SIGNATURE = 0x454E
IMAGE_LE_SIGNATURE = 0x454C
IMAGE_LX_SIGNATURE = 0x584C
IMAGE_TE_SIGNATURE = 0x5A56
IMAGE_NT_SIGNATURE = 0x00004550

IMAGE_NT_OPTIONAL_HDR32_MAGIC = 0x10B
IMAGE_NT_OPTIONAL_HDR64_MAGIC = 0x20B

IMAGE_NUMBEROF_DIRECTORY_ENTRIES = 16

IMAGE_SIZEOF_SHORT_NAME = 8
IMAGE_SIZEOF_FILE_HEADER = 20
IMAGE_SIZEOF_SECTION_HEADER = 40
IMAGE_SIZEOF_SYMBOL = 18
IMAGE_SIZEOF_RELOCATION = 10

IMAGE_ORDINAL_FLAG = 0x80000000
IMAGE_ORDINAL_FLAG64 = 0x8000000000000000

IMAGE_FILE_ALIGNMENT_HARDCODED_VALUE = 0x200

IMAGE_DEBUG_TYPE_CODEVIEW = 2

CV_PDB_70_SIGNATURE = 0x53445352  # "RSDS"
CV_PDB_20_SIGNATURE = 0x3031424E  # "NB10"

DIRECTORY_ENTRY_TYPES: dict[int, str] = {
    0: "IMAGE_DIRECTORY_ENTRY_EXPORT",
    1: "IMAGE_DIRECTORY_ENTRY_IMPORT",
    2: "IMAGE_DIRECTORY_ENTRY_RESOURCE",
    3: "IMAGE_DIRECTORY_ENTRY_EXCEPTION",
    4: "IMAGE_DIRECTORY_ENTRY_SECURITY",
    5: "IMAGE_DIRECTORY_ENTRY_BASERELOC",
    6: "IMAGE_DIRECTORY_ENTRY_DEBUG",
    7: "IMAGE_DIRECTORY_ENTRY_COPYRIGHT",
    8: "IMAGE_DIRECTORY_ENTRY_GLOBALPTR",
    9: "IMAGE_DIRECTORY_ENTRY_TLS",
    10: "IMAGE_DIRECTORY_ENTRY_LOAD_CONFIG",
    11: "IMAGE_DIRECTORY_ENTRY_BOUND_IMPORT",
    12: "IMAGE_DIRECTORY_ENTRY_IAT",
    13: "IMAGE_DIRECTORY_ENTRY_DELAY_IMPORT",
    14: "IMAGE_DIRECTORY_ENTRY_COM_DESCRIPTOR",
    15: "IMAGE_DIRECTORY_ENTRY_RESERVED",
}

IMAGE_CHARACTERISTICS: dict[str, int] = {
    "IMAGE_FILE_RELOCS_STRIPPED": 0x0001,
    "IMAGE_FILE_EXECUTABLE_IMAGE": 0x0002,
    "IMAGE_FILE_LINE_NUMS_STRIPPED": 0x0004,
    "IMAGE_FILE_LOCAL_SYMS_STRIPPED": 0x0008,
    "IMAGE_FILE_AGGRESIVE_WS_TRIM": 0x0010,
    "IMAGE_FILE_LARGE_ADDRESS_AWARE": 0x0020,
    "IMAGE_FILE_16BIT_MACHINE": 0x0040,
    "IMAGE_FILE_BYTES_REVERSED_LO": 0x0080,
    "IMAGE_FILE_32BIT_MACHINE": 0x0100,
    "IMAGE_FILE_DEBUG_STRIPPED": 0x0200,
    "IMAGE_FILE_REMOVABLE_RUN_FROM_SWAP": 0x0400,
    "IMAGE_FILE_NET_RUN_FROM_SWAP": 0x0800,
    "IMAGE_FILE_SYSTEM": 0x1000,
    "IMAGE_FILE_DLL": 0x2000,
    "IMAGE_FILE_UP_SYSTEM_ONLY": 0x4000,
    "IMAGE_FILE_BYTES_REVERSED_HI": 0x8000,
}

DLL_CHARACTERISTICS: dict[str, int] = {
    "IMAGE_DLLCHARACTERISTICS_HIGH_ENTROPY_VA": 0x0020,
    "IMAGE_DLLCHARACTERISTICS_DYNAMIC_BASE": 0x0040,
    "IMAGE_DLLCHARACTERISTICS_FORCE_INTEGRITY": 0x0080,
    "IMAGE_DLLCHARACTERISTICS_NX_COMPAT": 0x0100,
    "IMAGE_DLLCHARACTERISTICS_NO_ISOLATION": 0x0200,
    "IMAGE_DLLCHARACTERISTICS_NO_SEH": 0x0400,
    "IMAGE_DLLCHARACTERISTICS_NO_BIND": 0x0800,
    "IMAGE_DLLCHARACTERISTICS_APPCONTAINER": 0x1000,
    "IMAGE_DLLCHARACTERISTICS_WDM_DRIVER": 0x2000,
    "IMAGE_DLLCHARACTERISTICS_GUARD_CF": 0x4000,
    "IMAGE_DLLCHARACTERISTICS_TERMINAL_SERVER_AWARE": 0x8000,
}

SECTION_CHARACTERISTICS: dict[str, int] = {
    "IMAGE_SCN_TYPE_NO_PAD": 0x00000008,
    "IMAGE_SCN_CNT_CODE": 0x00000020,
    "IMAGE_SCN_CNT_INITIALIZED_DATA": 0x00000040,
    "IMAGE_SCN_CNT_UNINITIALIZED_DATA": 0x00000080,
    "IMAGE_SCN_LNK_OTHER": 0x00000100,
    "IMAGE_SCN_LNK_INFO": 0x00000200,
    "IMAGE_SCN_LNK_REMOVE": 0x00000800,
    "IMAGE_SCN_LNK_COMDAT": 0x00001000,
    "IMAGE_SCN_GPREL": 0x00008000,
    "IMAGE_SCN_LNK_NRELOC_OVFL": 0x01000000,
    "IMAGE_SCN_MEM_DISCARDABLE": 0x02000000,
    "IMAGE_SCN_MEM_NOT_CACHED": 0x04000000,
    "IMAGE_SCN_MEM_NOT_PAGED": 0x08000000,
    "IMAGE_SCN_MEM_SHARED": 0x10000000,
    "IMAGE_SCN_MEM_EXECUTE": 0x20000000,
    "IMAGE_SCN_MEM_READ": 0x40000000,
    "IMAGE_SCN_MEM_WRITE": 0x80000000,
}

RELOCATION_TYPES_I386: dict[int, str] = {
    0x0000: "IMAGE_REL_I386_ABSOLUTE",
    0x0001: "IMAGE_REL_I386_DIR16",
    0x0002: "IMAGE_REL_I386_REL16",
    0x0006: "IMAGE_REL_I386_DIR32",
    0x0007: "IMAGE_REL_I386_DIR32NB",
    0x0009: "IMAGE_REL_I386_SEG12",
    0x000A: "IMAGE_REL_I386_SECTION",
    0x000B: "IMAGE_REL_I386_SECREL",
    0x000C: "IMAGE_REL_I386_TOKEN",
    0x000D: "IMAGE_REL_I386_SECREL7",
    0x0014: "IMAGE_REL_I386_REL32",
}


class PEFormatError(ValueError):
    """Raised when an image is truncated or malformed."""


def _wire(fmt: str, default=0):
    return field(default=default, metadata={"fmt": fmt})


def _u8():
    return _wire("B")


def _u16():
    return _wire("H")


def _u32():
    return _wire("I")


def _u64():
    return _wire("Q")


def _i8():
    return _wire("b")


def _i16():
    return _wire("h")


def _raw(size: int):
    return _wire(f"{size}s", bytes(size))


def flag_string(flags: dict[str, bool]) -> str:
    """Render a flag map as ``"Flags: A | B\\n"`` or ``"No Flags\\n"``."""
    if not flags:
        return "No Flags\n"
    return "Flags: " + " | ".join(name for name, on in flags.items() if on) + "\n"


def set_flags(characteristics: dict[str, int], value: int) -> dict[str, bool]:
    """Map each named characteristic to whether all its bits are set in ``value``."""
    return {name: value & mask == mask for name, mask in characteristics.items()}


@dataclass
class Structure:
    """Base of the fixed-layout structures read from an image."""

    LABEL: ClassVar[str] = ""
    HAS_FLAGS: ClassVar[bool] = False
    SIZE: ClassVar[int] = 0
    _LAYOUT: ClassVar[tuple] = ()
    _STRUCT: ClassVar[struct.Struct] = struct.Struct("<")

    file_offset: int = field(default=0, kw_only=True, compare=False)
    flags: dict[str, bool] = field(default_factory=dict, kw_only=True, compare=False, repr=False)

    def __init_subclass__(cls, **kwargs):
        super().__init_subclass__(**kwargs)
        layout = []
        fmt = "<"
        for name in cls.__dict__.get("__annotations__", {}):
            default = cls.__dict__.get(name)
            if isinstance(default, Field) and "fmt" in default.metadata:
                code = default.metadata["fmt"]
                layout.append((name, code, struct.calcsize(fmt)))
                fmt += code
        if layout:
            cls._LAYOUT = tuple(layout)
            cls._STRUCT = struct.Struct(fmt)
            cls.SIZE = cls._STRUCT.size

    @classmethod
    def unpack_from(cls, data, offset: int = 0):
        """Read the structure from ``data`` at ``offset``."""
        if offset < 0 or offset + cls.SIZE > len(data):
            raise PEFormatError(
                f"{cls.__name__} at offset {offset:#x} lies outside the data"
            )
        values = cls._STRUCT.unpack_from(data, offset)
        wire = {name: value for (name, _, _), value in zip(cls._LAYOUT, values)}
        return cls(**wire, file_offset=offset)

    def is_empty(self) -> bool:
        """Return whether every wire field is zero."""
        for name, code, _ in self._LAYOUT:
            value = getattr(self, name)
            if code.endswith("s"):
                if any(value):
                    return False
            elif value:
                return False
        return True

    def describe(self) -> str:
        """Return a field-by-field listing with file and structure offsets."""
        lines = [f"[{self.LABEL}]\n"]
        for name, code, relative in self._LAYOUT:
            value = getattr(self, name)
            absolute = self.file_offset + relative
            if code in ("B", "H", "I"):
                lines.append(f"0x{absolute:<4X}\t\t0x{relative:<4X}\t{name:<24}\t0x{value:X}\n")
            elif code.endswith("s"):
                text = bytes(value).decode("latin-1")
                lines.append(f"0x{absolute:<4X}\t\t0x{relative:<4X}\t{name:<24}\t{text}\n")
        text = "".join(lines)
        if self.HAS_FLAGS:
            text += flag_string(self.flags)
        return text


@dataclass
class DosHeader(Structure):
    LABEL = "IMAGE_DOS_HEADER"
    HAS_FLAGS = True

    e_magic: int = _u16()
    e_cblp: int = _u16()
    e_cp: int = _u16()
    e_crlc: int = _u16()
    e_cparhdr: int = _u16()
    e_minalloc: int = _u16()
    e_maxalloc: int = _u16()
    e_ss: int = _u16()
    e_sp: int = _u16()
    e_csum: int = _u16()
    e_ip: int = _u16()
    e_cs: int = _u16()
    e_lfarlc: int = _u16()
    e_ovno: int = _u16()
    e_res: bytes = _raw(8)
    e_oemid: int = _u16()
    e_oeminfo: int = _u16()
    e_res2: bytes = _raw(20)
    e_lfanew: int = _u32()


@dataclass
class NtHeader(Structure):
    LABEL = "IMAGE_NT_HEADER"
    HAS_FLAGS = True

    signature: int = _u32()


@dataclass
class FileHeader(Structure):
    LABEL = "IMAGE_FILE_HEADER"
    HAS_FLAGS = True

    machine: int = _u16()
    number_of_sections: int = _u16()
    time_date_stamp: int = _u32()
    pointer_to_symbol_table: int = _u32()
    number_of_symbols: int = _u32()
    size_of_optional_header: int = _u16()
    characteristics: int = _u16()


@dataclass
class DataDirectory(Structure):
    LABEL = "DATA_DIRECTORY"

    virtual_address: int = _u32()
    size: int = _u32()
    name: str = ""


@dataclass
class OptionalHeader32(Structure):
    LABEL = "OPTIONAL_HEADER"
    HAS_FLAGS = True

    magic: int = _u16()
    major_linker_version: int = _u8()
    minor_linker_version: int = _u8()
    size_of_code: int = _u32()
    size_of_initialized_data: int = _u32()
    size_of_uninitialized_data: int = _u32()
    address_of_entry_point: int = _u32()
    base_of_code: int = _u32()
    base_of_data: int = _u32()
    image_base: int = _u32()
    section_alignment: int = _u32()
    file_alignment: int = _u32()
    major_operating_system_version: int = _u16()
    minor_operating_system_version: int = _u16()
    major_image_version: int = _u16()
    minor_image_version: int = _u16()
    major_subsystem_version: int = _u16()
    minor_subsystem_version: int = _u16()
    reserved1: int = _u32()
    size_of_image: int = _u32()
    size_of_headers: int = _u32()
    check_sum: int = _u32()
    subsystem: int = _u16()
    dll_characteristics: int = _u16()
    size_of_stack_reserve: int = _u32()
    size_of_stack_commit: int = _u32()
    size_of_heap_reserve: int = _u32()
    size_of_heap_commit: int = _u32()
    loader_flags: int = _u32()
    number_of_rva_and_sizes: int = _u32()
    data_dirs: dict[str, DataDirectory] = field(default_factory=dict)


@dataclass
class OptionalHeader64(Structure):
    LABEL = "OPTIONAL_HEADER64"
    HAS_FLAGS = True

    magic: int = _u16()
    major_linker_version: int = _u8()
    minor_linker_version: int = _u8()
    size_of_code: int = _u32()
    size_of_initialized_data: int = _u32()
    size_of_uninitialized_data: int = _u32()
    address_of_entry_point: int = _u32()
    base_of_code: int = _u32()
    base_of_data: int = _u32()
    image_base: int = _u32()
    section_alignment: int = _u32()
    file_alignment: int = _u32()
    major_operating_system_version: int = _u16()
    minor_operating_system_version: int = _u16()
    major_image_version: int = _u16()
    minor_image_version: int = _u16()
    major_subsystem_version: int = _u16()
    minor_subsystem_version: int = _u16()
    reserved1: int = _u32()
    size_of_image: int = _u32()
    size_of_headers: int = _u32()
    check_sum: int = _u32()
    subsystem: int = _u16()
    dll_characteristics: int = _u16()
    size_of_stack_reserve: int = _u64()
    size_of_stack_commit: int = _u64()
    size_of_heap_reserve: int = _u64()
    size_of_heap_commit: int = _u64()
    loader_flags: int = _u32()
    number_of_rva_and_sizes: int = _u32()
    data_dirs: dict[str, DataDirectory] = field(default_factory=dict)


@dataclass
class Symbol(Structure):
    """A COFF symbol; a zero first dword in ``short_name`` means a long name."""

    LABEL = "Symbol"

    short_name: bytes = _raw(IMAGE_SIZEOF_SHORT_NAME)
    value: int = _u32()
    section_number: int = _i16()
    type: int = _u16()
    storage_class: int = _i8()
    number_of_aux_symbols: int = _i8()
    name: str = ""


@dataclass
class Relocation(Structure):
    LABEL = "Relocation"

    virtual_address: int = _u32()
    symbol_table_index: int = _u32()
    type: int = _u16()
    symbol: Symbol | None = None


@dataclass
class SectionHeader(Structure):
    LABEL = "SECTION_HEADER"
    HAS_FLAGS = True

    name: bytes = _raw(IMAGE_SIZEOF_SHORT_NAME)
    misc_virtual_size: int = _u32()
    virtual_address: int = _u32()
    size_of_raw_data: int = _u32()
    pointer_to_raw_data: int = _u32()
    pointer_to_relocations: int = _u32()
    pointer_to_linenumbers: int = _u32()
    number_of_relocations: int = _u16()
    number_of_linenumbers: int = _u16()
    characteristics: int = _u32()
    raw_data: bytes = b""
    relocations: list[Relocation] = field(default_factory=list)
    next_header_rva: int = 0

    def describe(self) -> str:
        text = super().describe()
        if self.relocations:
            text += f"Relocations:\n{'VA':<12}{'Type':<30}Symbol\n"
        for reloc in self.relocations:
            kind = RELOCATION_TYPES_I386.get(reloc.type, "")
            symbol = reloc.symbol.name if reloc.symbol is not None else ""
            text += f"0x{reloc.virtual_address:<10X}{kind:<30}{symbol}\n"
        return text


@dataclass
class ThunkData32(Structure):
    LABEL = "ThunkData"

    address_of_data: int = _u32()


@dataclass
class ThunkData64(Structure):
    LABEL = "ThunkData64"

    address_of_data: int = _u64()


@dataclass
class ImportData:
    """One imported symbol, by name or by ordinal."""

    struct_table: ThunkData32 | ThunkData64 | None = None
    struct_iat: ThunkData32 | ThunkData64 | None = None
    import_by_ordinal: bool = False
    ordinal: int = 0
    ordinal_offset: int = 0
    hint: int = 0
    name: bytes = b""
    name_offset: int = 0
    bound: int = 0
    address: int = 0
    hint_name_table_rva: int = 0
    thunk_offset: int = 0
    thunk_rva: int = 0


@dataclass
class ImportDescriptor(Structure):
    LABEL = "IMPORT_DESCRIPTOR"
    HAS_FLAGS = True

    characteristics: int = _u32()
    time_date_stamp: int = _u32()
    forwarder_chain: int = _u32()
    name: int = _u32()
    first_thunk: int = _u32()
    module: bytes = b""
    imports: list[ImportData] = field(default_factory=list)
    imports64: list[ImportData] = field(default_factory=list)


@dataclass
class ExportData:
    """One exported symbol."""

    ordinal: int = 0
    ordinal_offset: int = 0
    address: int = 0
    address_offset: int = 0
    name: bytes = b""
    name_offset: int = 0
    forwarder: bytes = b""
    forwarder_offset: int = 0


@dataclass
class ExportDirectory(Structure):
    LABEL = "EXPORT_DIRECTORY"
    HAS_FLAGS = True

    characteristics: int = _u32()
    time_date_stamp: int = _u32()
    major_version: int = _u16()
    minor_version: int = _u16()
    name: int = _u32()
    base: int = _u32()
    number_of_functions: int = _u32()
    number_of_names: int = _u32()
    address_of_functions: int = _u32()
    address_of_names: int = _u32()
    address_of_name_ordinals: int = _u32()
    exports: list[ExportData] = field(default_factory=list)


@dataclass
class OmfSignature(Structure):
    """CodeView OMF signature ("NBxx", "RSDS") and file position."""

    LABEL = "OMFSignature"

    signature: int = _u32()
    filepos: int = _u32()


@dataclass
class CvInfoPdb20(Structure):
    """CodeView "NB10" record; the PDB file name follows it."""

    LABEL = "CvInfoPdb20"

    cv_signature: int = _u32()
    filepos: int = _u32()
    signature: int = _u32()
    age: int = _u32()


@dataclass
class CvInfoPdb70(Structure):
    """CodeView "RSDS" record; the PDB file name follows it."""

    LABEL = "CvInfoPdb70"

    cv_signature: int = _u32()
    signature: bytes = _raw(16)
    age: int = _u32()


@dataclass
class DebugDirectory(Structure):
    LABEL = "DebugDirectory"
    HAS_FLAGS = True

    characteristics: int = _u32()
    time_date_stamp: int = _u32()
    major_version: int = _u16()
    minor_version: int = _u16()
    type: int = _u32()
    size_of_data: int = _u32()
    address_of_raw_data: int = _u32()
    pointer_to_raw_data: int = _u32()
    raw_data: bytes = b""
    symbol_name: bytes = b""
    info_pdb70: CvInfoPdb70 | None = None
    info_pdb20: CvInfoPdb20 | None = None


def _wire_names(cls) -> list[str]:
    return [f.name for f in fields(cls) if "fmt" in f.metadata]