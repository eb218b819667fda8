"""Reading PE images and COFF object files into :class:`PEFile` objects."""

from __future__ import annotations

import logging
import mmap
import struct
from operator import attrgetter
from pathlib import Path

from pdbfetch.directories import (
    parse_debug_directory,
    parse_export_directory,
    parse_import_directory,
)
from pdbfetch.structures import (
    DIRECTORY_ENTRY_TYPES,
    DLL_CHARACTERISTICS,
    IMAGE_CHARACTERISTICS,
    IMAGE_DOS_SIGNATURE,
    IMAGE_DOSZM_SIGNATURE,
    IMAGE_FILE_ALIGNMENT_HARDCODED_VALUE,
    IMAGE_LE_SIGNATURE,
    IMAGE_LX_SIGNATURE,
    IMAGE_NE_SIGNATURE,
    IMAGE_NT_OPTIONAL_HDR64_MAGIC,
    IMAGE_NT_SIGNATURE,
    IMAGE_NUMBEROF_DIRECTORY_ENTRIES,
    IMAGE_SIZEOF_RELOCATION,
    IMAGE_SIZEOF_SYMBOL,
    IMAGE_TE_SIGNATURE,
    SECTION_CHARACTERISTICS,
    DataDirectory,
    DebugDirectory,
    DosHeader,
    ExportDirectory,
    FileHeader,
    ImportDescriptor,
    NtHeader,
    OptionalHeader32,
    OptionalHeader64,
    PEFormatError,
    Relocation,
    SectionHeader,
    Symbol,
    set_flags,
)
from pdbfetch.util import power_of_two

log = logging.getLogger(__name__)

_U32_MASK = 0xFFFFFFFF
_INVALID_OFFSET = -1

_DIRECTORY_PARSERS = {
    "IMAGE_DIRECTORY_ENTRY_IMPORT": parse_import_directory,
    "IMAGE_DIRECTORY_ENTRY_EXPORT": parse_export_directory,
    "IMAGE_DIRECTORY_ENTRY_DEBUG": parse_debug_directory,
}

_FOREIGN_SIGNATURES = {
    IMAGE_NE_SIGNATURE: "invalid NT Headers signature (probably a NE file)",
    IMAGE_LE_SIGNATURE: "invalid NT Headers signature (probably a LE file)",
    IMAGE_LX_SIGNATURE: "invalid NT Headers signature (probably a LX file)",
    IMAGE_TE_SIGNATURE: "invalid NT Headers signature (probably a TE file)",
}


class PEFile:
    """A parsed PE image or COFF object file together with its raw bytes."""

    def __init__(self, data, filename: str = "") -> None:
        self.filename = filename
        self.data = bytes(data)
        self.dos_header: DosHeader | None = None
        self.nt_header: NtHeader | None = None
        self.file_header: FileHeader | None = None
        self.optional_header: OptionalHeader32 | None = None
        self.optional_header64: OptionalHeader64 | None = None
        self.string_table_offset = 0
        self.string_table = b""
        self.symbol_table: list[Symbol] = []
        self.sections: list[SectionHeader] = []
        self.import_descriptors: list[ImportDescriptor] = []
        self.export_directory: ExportDirectory | None = None
        self.debug_directories: list[DebugDirectory] = []
        self.header_end = 0

    def __repr__(self) -> str:
        return f"PEFile(filename={self.filename!r}, size={len(self.data)})"

    # ------------------------------------------------------------ reading

    def unpack(self, struct_cls, offset: int):
        """Read a structure of type ``struct_cls`` at file ``offset``."""
        return struct_cls.unpack_from(self.data, offset)

    def _read_u32(self, offset: int) -> int:
        if offset < 0 or offset + 4 > len(self.data):
            raise PEFormatError(f"read of 4 bytes at {offset:#x} lies outside the data")
        return struct.unpack_from("<I", self.data, offset)[0]

    # ------------------------------------------------------------ parsing

    def _parse_pe(self) -> None:
        offset = 0
        self.dos_header = self.unpack(DosHeader, offset)
        if self.dos_header.e_magic == IMAGE_DOSZM_SIGNATURE:
            raise PEFormatError("probably a ZM Executable (not a PE file)")
        if self.dos_header.e_magic != IMAGE_DOS_SIGNATURE:
            raise PEFormatError("DOS Header magic not found")
        if self.dos_header.e_lfanew > len(self.data):
            raise PEFormatError("invalid e_lfanew value, probably not a PE file")

        offset = self.dos_header.e_lfanew
        self.nt_header = self.unpack(NtHeader, offset)
        signature = self.nt_header.signature
        if signature & 0xFFFF in _FOREIGN_SIGNATURES:
            raise PEFormatError(_FOREIGN_SIGNATURES[signature & 0xFFFF])
        if signature != IMAGE_NT_SIGNATURE:
            raise PEFormatError("invalid NT headers signature")
        offset += NtHeader.SIZE

        self.file_header = self.unpack(FileHeader, offset)
        self.file_header.flags = set_flags(IMAGE_CHARACTERISTICS, self.file_header.characteristics)
        offset += FileHeader.SIZE

        self.optional_header = self.unpack(OptionalHeader32, offset)
        self.optional_header.flags = set_flags(
            DLL_CHARACTERISTICS, self.optional_header.dll_characteristics
        )
        if self.optional_header.magic == IMAGE_NT_OPTIONAL_HDR64_MAGIC:
            self.optional_header64 = self.unpack(OptionalHeader64, offset)
            self.optional_header64.flags = set_flags(
                DLL_CHARACTERISTICS, self.optional_header64.dll_characteristics
            )

        if self.optional_header.address_of_entry_point < self.optional_header.size_of_headers:
            log.warning(
                "SizeOfHeaders is larger than AddressOfEntryPoint - "
                "this file cannot run under Windows 8"
            )

        self._parse_symbol_table()

        section_offset = offset + self.file_header.size_of_optional_header
        header = self.optional_header64 if self.optional_header64 is not None else self.optional_header
        if header.number_of_rva_and_sizes > IMAGE_NUMBEROF_DIRECTORY_ENTRIES:
            log.warning(
                "Suspicious NumberOfRvaAndSizes in the Optional Header. "
                "Normal values are never larger than 16, the value is: 0x%x",
                header.number_of_rva_and_sizes,
            )
        offset += type(header).SIZE

        for index in range(header.number_of_rva_and_sizes & 0x7FFFFFFF):
            if len(self.data) == offset:
                break
            entry = self.unpack(DataDirectory, offset)
            offset += DataDirectory.SIZE
            name = DIRECTORY_ENTRY_TYPES.get(index)
            if name is None:
                break
            entry.name = name
            header.data_dirs[name] = entry

        offset = self._parse_sections(section_offset)
        self._calculate_header_end(offset)

        entry_point = self.optional_header.address_of_entry_point
        if self.section_by_rva(entry_point) is not None:
            if self.offset_from_rva(entry_point) > len(self.data):
                log.warning("AddressOfEntryPoint lies outside the file: 0x%x", entry_point)
        else:
            log.warning(
                "AddressOfEntryPoint lies outside the section boundaries: 0x%x", entry_point
            )

        self._parse_data_directories()

    def _parse_object(self) -> None:
        offset = 0
        self.file_header = self.unpack(FileHeader, offset)
        if self.file_header.size_of_optional_header != 0:
            raise PEFormatError(
                "invalid or corrupt object file - should not have an optional header size"
            )
        self.file_header.flags = set_flags(IMAGE_CHARACTERISTICS, self.file_header.characteristics)
        self._parse_symbol_table()
        offset += FileHeader.SIZE
        offset = self._parse_sections(offset)
        self._calculate_header_end(offset)

    def _parse_symbol_table(self) -> None:
        header = self.file_header
        if not header.pointer_to_symbol_table:
            return
        start = header.pointer_to_symbol_table
        count = header.number_of_symbols
        self.symbol_table = [
            self.unpack(Symbol, start + index * IMAGE_SIZEOF_SYMBOL) for index in range(count)
        ]

        self.string_table_offset = start + count * IMAGE_SIZEOF_SYMBOL
        size = self._read_u32(self.string_table_offset)
        end = self.string_table_offset + size
        if end > len(self.data):
            raise PEFormatError("symbol string table runs past the end of the file")
        self.string_table = self.data[self.string_table_offset:end]

        for symbol in self.symbol_table:
            symbol.name = self._symbol_name(symbol)

    def _symbol_name(self, symbol: Symbol) -> str:
        short_name = bytes(symbol.short_name)
        if short_name[:4] != b"\0\0\0\0":
            return short_name.rstrip(b"\0").decode("utf-8", errors="replace")
        start = struct.unpack("<I", short_name[4:])[0]
        if start > len(self.string_table):
            raise PEFormatError(f"symbol name offset {start:#x} lies outside the string table")
        end = self.string_table.find(b"\0", start)
        if end < 0:
            end = len(self.string_table)
        return self.string_table[start:end].decode("utf-8", errors="replace")

    def _read_relocation(self, offset: int) -> Relocation:
        relocation = self.unpack(Relocation, offset)
        index = relocation.symbol_table_index
        if index >= len(self.symbol_table):
            raise PEFormatError(f"relocation refers to missing symbol {index}")
        relocation.symbol = self.symbol_table[index]
        return relocation

    def _parse_sections(self, offset: int) -> int:
        for _ in range(self.file_header.number_of_sections):
            section = self.unpack(SectionHeader, offset)
            start = section.pointer_to_raw_data
            end = start + section.size_of_raw_data
            if end > len(self.data):
                raise PEFormatError(
                    f"raw data of section at {offset:#x} runs past the end of the file"
                )
            section.raw_data = self.data[start:end]

            if section.pointer_to_relocations:
                section.relocations = [
                    self._read_relocation(
                        section.pointer_to_relocations + index * IMAGE_SIZEOF_RELOCATION
                    )
                    for index in range(section.number_of_relocations)
                ]

            section.flags = set_flags(SECTION_CHARACTERISTICS, section.characteristics)
            self.sections.append(section)
            offset += SectionHeader.SIZE

        # Record each section's successor so overlapping sections can be clipped.
        self.sections.sort(key=attrgetter("virtual_address"))
        followers = self.sections[1:] + [None]
        for section, following in zip(self.sections, followers):
            section.next_header_rva = following.virtual_address if following is not None else 0
        return offset

    def _parse_data_directories(self) -> None:
        header = self.optional_header64 if self.optional_header64 is not None else self.optional_header
        for name, entry in list(header.data_dirs.items()):
            parser = _DIRECTORY_PARSERS.get(name)
            if entry.virtual_address > 0 and parser is not None:
                parser(self, entry.virtual_address, entry.size)

    def _calculate_header_end(self, offset: int) -> None:
        pointers = [
            self.adjust_file_alignment(section.pointer_to_raw_data, self._file_alignment())
            for section in self.sections
            if section.pointer_to_raw_data > 0
        ]
        lowest = min(pointers, default=0)
        self.header_end = offset if lowest == 0 or lowest < offset else lowest

    # ------------------------------------------------------------ alignment

    def _file_alignment(self) -> int:
        if self.optional_header is not None:
            return self.optional_header.file_alignment
        return 4

    def _section_alignment(self) -> int:
        if self.optional_header is not None:
            return self.optional_header.section_alignment
        return 4

    def adjust_file_alignment(self, pointer: int, file_alignment: int) -> int:
        """Round a raw-data pointer the way the Windows loader does."""
        if file_alignment > IMAGE_FILE_ALIGNMENT_HARDCODED_VALUE and not power_of_two(
            file_alignment
        ):
            log.warning("if FileAlignment > 512 it should be a power of 2: %x", file_alignment)
        if file_alignment < IMAGE_FILE_ALIGNMENT_HARDCODED_VALUE:
            return pointer
        return (
            pointer // IMAGE_FILE_ALIGNMENT_HARDCODED_VALUE
        ) * IMAGE_FILE_ALIGNMENT_HARDCODED_VALUE

    def adjust_section_alignment(
        self, pointer: int, section_alignment: int, file_alignment: int
    ) -> int:
        """Round a section's virtual address down to its effective alignment."""
        if file_alignment < IMAGE_FILE_ALIGNMENT_HARDCODED_VALUE and file_alignment != section_alignment:
            log.warning(
                "if FileAlignment(%x) < 512 it should equal SectionAlignment(%x)",
                file_alignment,
                section_alignment,
            )
        if section_alignment < mmap.PAGESIZE:
            section_alignment = file_alignment
        elif section_alignment < 0x80:
            section_alignment = 0x80
        if section_alignment and pointer % section_alignment:
            return section_alignment * (pointer // section_alignment)
        return pointer

    def _adjusted(self, section: SectionHeader) -> tuple[int, int]:
        pointer = self.adjust_file_alignment(section.pointer_to_raw_data, self._file_alignment())
        vaddr = self.adjust_section_alignment(
            section.virtual_address, self._section_alignment(), self._file_alignment()
        )
        return pointer, vaddr

    # ------------------------------------------------------------ addresses

    def section_by_rva(self, rva: int) -> SectionHeader | None:
        """Return the section whose memory image holds ``rva``."""
        for section in self.sections:
            pointer, vaddr = self._adjusted(section)
            if (len(self.data) - pointer) & _U32_MASK < section.size_of_raw_data:
                size = section.misc_virtual_size
            else:
                size = max(section.size_of_raw_data, section.misc_virtual_size)
            following = section.next_header_rva
            if following and following > section.virtual_address and vaddr + size > following:
                size = following - vaddr
            if vaddr <= rva < vaddr + size:
                return section
        return None

    def section_by_offset(self, offset: int) -> SectionHeader | None:
        """Return the section whose raw data holds file ``offset``."""
        for section in self.sections:
            if section.pointer_to_raw_data == 0:
                continue
            pointer = self.adjust_file_alignment(section.pointer_to_raw_data, self._file_alignment())
            if pointer <= offset < pointer + section.size_of_raw_data:
                return section
        return None

    def rva_from_offset(self, offset: int) -> int:
        """Translate a file offset to an RVA; 0xffffffff if it cannot be."""
        section = self.section_by_offset(offset)
        if section is None:
            if not self.sections:
                return offset
            lowest = min(self._adjusted(candidate)[1] for candidate in self.sections)
            # Offsets before the first section are taken to lie in the headers.
            if offset < lowest:
                return offset
            log.warning("data at Offset cannot be fetched - corrupt header?")
            return _U32_MASK
        pointer, vaddr = self._adjusted(section)
        return (offset - pointer + vaddr) & _U32_MASK

    def offset_from_rva(self, rva: int) -> int:
        """Translate an RVA to a file offset; -1 if it cannot be."""
        section = self.section_by_rva(rva)
        if section is None:
            if rva < len(self.data):
                return rva
            log.warning("data at RVA cannot be fetched - corrupt header?")
            return _INVALID_OFFSET
        pointer, vaddr = self._adjusted(section)
        return (rva - vaddr + pointer) & _U32_MASK

    def data_bounds(self, rva: int, length: int) -> tuple[int, int]:
        """Return the file offsets ``(start, end)`` of ``length`` bytes at ``rva``.

        A zero ``length`` means up to the end of the section (or file).
        Both are -1 when the RVA maps to nothing in the file.
        """
        end = rva + length if length > 0 else len(self.data)
        section = self.section_by_rva(rva)
        if section is None:
            if rva < self.header_end:
                end = min(end, self.header_end)
            # Files without sections may still rely on the loader mapping
            # the start of the file, so accept any RVA inside it.
            if rva < len(self.data):
                return rva, end
            return _INVALID_OFFSET, _INVALID_OFFSET

        pointer, vaddr = self._adjusted(section)
        offset = pointer if rva == 0 else ((rva - vaddr) & _U32_MASK) + pointer
        end = offset + (length if length else section.size_of_raw_data)
        if end > pointer + section.size_of_raw_data:
            end = section.pointer_to_raw_data + section.size_of_raw_data
        return offset, end

    def string_at_rva(self, rva: int) -> bytes:
        """Return the NUL-terminated string stored at ``rva``."""
        start, _ = self.data_bounds(rva, 0)
        return self.string_from_data(start)

    def string_from_data(self, offset: int) -> bytes:
        """Return the NUL-terminated string at file ``offset``."""
        if offset < 0 or offset > len(self.data):
            return b""
        end = self.data.find(b"\0", offset)
        if end < 0:
            end = len(self.data)
        return self.data[offset:end]


def parse_pe(data, filename: str = "") -> PEFile:
    """Parse a PE image held in memory."""
    image = PEFile(data, filename)
    image._parse_pe()
    return image


def parse_object(data, filename: str = "") -> PEFile:
    """Parse a COFF object file held in memory."""
    image = PEFile(data, filename)
    image._parse_object()
    return image


def open_pe(path) -> PEFile:
    """Read and parse the PE image at ``path``."""
    return parse_pe(Path(path).read_bytes(), str(path))


def open_object(path) -> PEFile:
    """Read and parse the COFF object file at ``path``."""
    return parse_object(Path(path).read_bytes(), str(path))