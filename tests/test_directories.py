import struct

import pytest

from pdbfetch.directories import (
    get_import_table,
    parse_debug_directory,
    parse_export_directory,
    parse_import_directory,
    parse_imports,
)
from pdbfetch.guid import Guid
from pdbfetch.structures import (
    IMAGE_DEBUG_TYPE_CODEVIEW,
    ImportDescriptor,
    OptionalHeader32,
    OptionalHeader64,
    PEFormatError,
    SectionHeader,
)
from pdbfetch.util import INVALID_IMPORT_NAME


class FlatImage:
    """An image without sections: every RVA is its own file offset."""

    def __init__(self, data, pe64=False, image_base=0x400000):
        self.data = bytes(data)
        self.optional_header = OptionalHeader32(image_base=image_base)
        self.optional_header64 = OptionalHeader64(image_base=image_base) if pe64 else None
        self.debug_directories = []
        self.export_directory = None
        self.import_descriptors = []

    def unpack(self, struct_cls, offset):
        return struct_cls.unpack_from(self.data, offset)

    def data_bounds(self, rva, length):
        if rva < len(self.data):
            return rva, (rva + length if length else len(self.data))
        return -1, -1

    def offset_from_rva(self, rva):
        return rva if rva < len(self.data) else -1

    def rva_from_offset(self, offset):
        return offset

    def section_by_rva(self, rva):
        if rva < len(self.data):
            return SectionHeader(virtual_address=0, size_of_raw_data=len(self.data))
        return None

    def string_from_data(self, offset):
        if offset > len(self.data):
            return b""
        end = self.data.find(b"\0", offset)
        return self.data[offset:] if end < 0 else self.data[offset:end]

    def string_at_rva(self, rva):
        start, _ = self.data_bounds(rva, 0)
        return self.string_from_data(start)


def buffer(size=0x800):
    return bytearray(size)


def put(buf, offset, blob):
    buf[offset : offset + len(blob)] = blob


def debug_entry(kind, size_of_data, pointer):
    return struct.pack("<IIHHIIII", 0, 0, 0, 0, kind, size_of_data, pointer, pointer)


GUID_BYTES = bytes(range(16))


# ------------------------------------------------------------------ debug


def rsds_image():
    buf = buffer()
    record = b"RSDS" + GUID_BYTES + struct.pack("<I", 3) + b"ntkrnlmp.pdb\0"
    put(buf, 0x100, debug_entry(IMAGE_DEBUG_TYPE_CODEVIEW, len(record), 0x200))
    put(buf, 0x200, record)
    return FlatImage(buf), len(record)


def test_debug_directory_reads_pdb70_record():
    image, record_size = rsds_image()
    parsed = parse_debug_directory(image, 0x100, 28)
    assert len(parsed) == 1
    entry = parsed[0]
    assert entry.type == IMAGE_DEBUG_TYPE_CODEVIEW
    assert entry.symbol_name == b"ntkrnlmp.pdb"
    assert entry.info_pdb70.age == 3
    assert entry.info_pdb70.signature == GUID_BYTES
    assert entry.info_pdb20 is None
    assert len(entry.raw_data) == record_size
    assert image.debug_directories == parsed


def test_debug_guid_round_trips_through_windows_encoding():
    image, _ = rsds_image()
    entry = parse_debug_directory(image, 0x100, 28)[0]
    guid = Guid.from_windows_bytes(entry.info_pdb70.signature)
    assert guid.to_windows_bytes() == GUID_BYTES


def test_debug_directory_reads_pdb20_record():
    buf = buffer()
    record = b"NB10" + struct.pack("<III", 0, 0x1234, 2) + b"old.pdb\0"
    put(buf, 0x100, debug_entry(IMAGE_DEBUG_TYPE_CODEVIEW, len(record), 0x200))
    put(buf, 0x200, record)
    image = FlatImage(buf)
    entry = parse_debug_directory(image, 0x100, 28)[0]
    assert entry.symbol_name == b"old.pdb"
    assert entry.info_pdb20.signature == 0x1234
    assert entry.info_pdb20.age == 2
    assert entry.info_pdb70 is None


def test_debug_directory_with_zero_size_is_empty():
    image, _ = rsds_image()
    assert parse_debug_directory(image, 0x100, 0) == []
    assert image.debug_directories == []


def test_debug_directory_reads_every_entry():
    buf = buffer()
    record = b"RSDS" + GUID_BYTES + struct.pack("<I", 1) + b"a.pdb\0"
    put(buf, 0x100, debug_entry(IMAGE_DEBUG_TYPE_CODEVIEW, len(record), 0x200))
    put(buf, 0x100 + 28, debug_entry(13, 0, 0))
    put(buf, 0x200, record)
    parsed = parse_debug_directory(FlatImage(buf), 0x100, 56)
    assert [entry.type for entry in parsed] == [IMAGE_DEBUG_TYPE_CODEVIEW, 13]
    assert parsed[1].raw_data == b""


def test_short_codeview_data_is_corrupt():
    buf = buffer()
    put(buf, 0x100, debug_entry(IMAGE_DEBUG_TYPE_CODEVIEW, 4, 0x200))
    put(buf, 0x200, b"RSDS")
    with pytest.raises(PEFormatError, match="corrupt codeview data"):
        parse_debug_directory(FlatImage(buf), 0x100, 28)


def test_truncated_pdb70_record_is_corrupt():
    buf = buffer()
    put(buf, 0x100, debug_entry(IMAGE_DEBUG_TYPE_CODEVIEW, 12, 0x200))
    put(buf, 0x200, b"RSDS" + bytes(8))
    with pytest.raises(PEFormatError, match="corrupt PDB 7.0 data"):
        parse_debug_directory(FlatImage(buf), 0x100, 28)


# ------------------------------------------------------------------ exports


def export_image(names, functions, ordinals=None, export_size=0x40):
    buf = buffer()
    ordinals = list(range(len(names))) if ordinals is None else ordinals
    header = struct.pack(
        "<IIHHIIIIIII", 0, 0, 0, 0, 0, 1, len(functions), len(names), 0x200, 0x220, 0x240
    )
    put(buf, 0x100, header)
    for index, address in enumerate(functions):
        put(buf, 0x200 + index * 4, struct.pack("<I", address))
    for index, name in enumerate(names):
        name_rva = 0x300 + index * 0x10
        put(buf, 0x220 + index * 4, struct.pack("<I", name_rva))
        put(buf, name_rva, name + b"\0")
    for index, ordinal in enumerate(ordinals):
        put(buf, 0x240 + index * 2, struct.pack("<H", ordinal))
    return FlatImage(buf), export_size


def test_export_directory_reads_named_exports():
    image, size = export_image([b"Alpha", b"Beta"], [0x1000, 0x1100])
    directory = parse_export_directory(image, 0x100, size)
    assert image.export_directory is directory
    assert [e.name for e in directory.exports] == [b"Alpha", b"Beta"]
    assert [e.ordinal for e in directory.exports] == [1, 2]
    assert [e.address for e in directory.exports] == [0x1000, 0x1100]
    assert all(e.forwarder == b"" for e in directory.exports)


def test_export_forwarder_inside_directory_is_resolved():
    image, _ = export_image([b"Alpha"], [0x1A0])
    data = bytearray(image.data)
    put(data, 0x1A0, b"NTDLL.RtlAlpha\0")
    image.data = bytes(data)
    directory = parse_export_directory(image, 0x100, 0x100)
    assert directory.exports[0].forwarder == b"NTDLL.RtlAlpha"
    assert directory.exports[0].forwarder_offset == 0x1A0


def test_exports_by_ordinal_only_follow_named_ones():
    image, size = export_image([b"Alpha", b"Beta"], [0x1000, 0x1100, 0x1200])
    directory = parse_export_directory(image, 0x100, size)
    assert [e.name for e in directory.exports] == [b"Alpha", b"Beta", b""]
    unnamed = directory.exports[2]
    assert unnamed.ordinal == 3
    assert unnamed.address == 0x1200


def test_export_with_zero_address_is_skipped():
    image, size = export_image([b"Alpha", b"Beta"], [0, 0x1100])
    directory = parse_export_directory(image, 0x100, size)
    assert [e.name for e in directory.exports] == [b"Beta"]


def test_invalid_export_name_stops_the_name_table():
    image, size = export_image([b"Alpha", b"bad name"], [0x1000, 0x1100])
    directory = parse_export_directory(image, 0x100, size)
    assert [e.name for e in directory.exports] == [b"Alpha", b""]
    assert directory.exports[1].ordinal == 2


def test_export_names_outside_any_section_fail():
    buf = buffer()
    header = struct.pack("<IIHHIIIIIII", 0, 0, 0, 0, 0, 1, 1, 1, 0x200, 0x9000, 0x240)
    put(buf, 0x100, header)
    with pytest.raises(PEFormatError, match="AddressOfNames"):
        parse_export_directory(FlatImage(buf), 0x100, 0x40)


# ------------------------------------------------------------------ imports


def import_image(module=b"kernel32.dll", ilt=(0x400, 0x80000005), iat=None, pe64=False):
    buf = buffer()
    width = "Q" if pe64 else "I"
    step = 8 if pe64 else 4
    iat = ilt if iat is None else iat
    put(buf, 0x100, struct.pack("<IIIII", 0x200, 0, 0, 0x300, 0x280))
    for index, value in enumerate(ilt):
        put(buf, 0x200 + index * step, struct.pack("<" + width, value))
    for index, value in enumerate(iat):
        put(buf, 0x280 + index * step, struct.pack("<" + width, value))
    put(buf, 0x300, module + b"\0")
    put(buf, 0x400, struct.pack("<H", 7) + b"CreateFileA\0")
    return FlatImage(buf, pe64=pe64)


def test_import_directory_reads_names_and_ordinals():
    image = import_image()
    descriptors = parse_import_directory(image, 0x100, 0x28)
    assert image.import_descriptors == descriptors
    assert len(descriptors) == 1
    descriptor = descriptors[0]
    assert descriptor.module == b"kernel32.dll"
    names = [entry.name for entry in descriptor.imports]
    assert names == [b"CreateFileA", b""]
    by_name, by_ordinal = descriptor.imports
    assert by_name.hint == 7
    assert by_name.import_by_ordinal is False
    assert by_name.hint_name_table_rva == 0x400
    assert by_ordinal.import_by_ordinal is True
    assert by_ordinal.ordinal == 5
    assert by_name.address == 0x280 + image.optional_header.image_base
    assert by_ordinal.address - by_name.address == 4
    assert by_name.bound == 0


def test_ordinal_imports_from_known_dlls_get_names():
    image = import_image(module=b"WS2_32.dll", ilt=(0x80000017,))
    descriptor = parse_import_directory(image, 0x100, 0x28)[0]
    assert [entry.name for entry in descriptor.imports] == [b"socket"]


def test_import_bound_when_iat_differs():
    image = import_image(ilt=(0x400,), iat=(0x7FF00000,))
    descriptor = parse_import_directory(image, 0x100, 0x28)[0]
    entry = descriptor.imports[0]
    assert entry.bound == 0x7FF00000
    assert entry.struct_iat.address_of_data == 0x7FF00000


def test_invalid_module_name_is_replaced():
    image = import_image(module=b"bad name?")
    descriptor = parse_import_directory(image, 0x100, 0x28)[0]
    assert descriptor.module == INVALID_IMPORT_NAME


def test_empty_import_directory():
    image = FlatImage(buffer())
    assert parse_import_directory(image, 0x100, 0x28) == []
    assert image.import_descriptors == []


def test_imports_in_64bit_image_go_to_imports64():
    image = import_image(ilt=(0x400, (1 << 63) | 9), pe64=True)
    descriptor = parse_import_directory(image, 0x100, 0x28)[0]
    assert descriptor.imports == []
    assert [entry.name for entry in descriptor.imports64] == [b"CreateFileA", b""]
    assert descriptor.imports64[1].ordinal == 9
    assert descriptor.imports64[1].address - descriptor.imports64[0].address == 8


def test_get_import_table_stops_at_zero_thunk():
    image = import_image()
    descriptor = ImportDescriptor.unpack_from(image.data, 0x100)
    table = get_import_table(image, 0x200, descriptor)
    assert [thunk.address_of_data for thunk in table] == [0x400, 0x80000005]
    assert [thunk.file_offset for thunk in table] == [0x200, 0x204]


def test_get_import_table_rejects_oversized_ordinal():
    image = import_image(ilt=(0x80010000,))
    descriptor = ImportDescriptor.unpack_from(image.data, 0x100)
    with pytest.raises(PEFormatError, match="Corruption detected"):
        get_import_table(image, 0x200, descriptor)


def test_parse_imports_needs_a_table():
    image = import_image(ilt=())
    descriptor = ImportDescriptor.unpack_from(image.data, 0x100)
    with pytest.raises(PEFormatError, match="both ILT and IAT"):
        parse_imports(image, descriptor)


def test_invalid_import_names_are_skipped():
    image = import_image()
    data = bytearray(image.data)
    put(data, 0x402, b"bad name\0")
    image.data = bytes(data)
    descriptor = ImportDescriptor.unpack_from(image.data, 0x100)
    imports = parse_imports(image, descriptor)
    assert [entry.ordinal for entry in imports] == [5]
    assert descriptor.imports == imports