"""Parsers for the debug, export and import data directories of a PE image.

Each parser takes the image being read (a :class:`pdbfetch.pefile.PEFile` or
anything offering the same address-translation methods) and records what it
finds on it, returning the parsed objects as well.
"""

from __future__ import annotations

import logging
import struct

from pdbfetch.ordinals import ord_lookup
from pdbfetch.structures import (
    CV_PDB_20_SIGNATURE,
    CV_PDB_70_SIGNATURE,
    IMAGE_DEBUG_TYPE_CODEVIEW,
    IMAGE_ORDINAL_FLAG,
    IMAGE_ORDINAL_FLAG64,
    CvInfoPdb20,
    CvInfoPdb70,
    DebugDirectory,
    ExportData,
    ExportDirectory,
    ImportData,
    ImportDescriptor,
    OmfSignature,
    PEFormatError,
    ThunkData32,
    ThunkData64,
)
from pdbfetch.util import INVALID_IMPORT_NAME, valid_dos_filename, valid_func_name

log = logging.getLogger(__name__)

_U32_MASK = 0xFFFFFFFF
_MAX_ADDRESS_SPREAD = 128 * 1024 * 1024
_MAX_REPEATED_ADDRESSES = 16
_MAX_INVALID_IMPORTS = 1000


def _read(image, fmt: str, offset: int) -> int:
    """Read one little-endian integer from the image's data."""
    layout = struct.Struct("<" + fmt)
    if offset < 0 or offset + layout.size > len(image.data):
        raise PEFormatError(f"read of {layout.size} bytes at {offset:#x} lies outside the data")
    return layout.unpack_from(image.data, offset)[0]


def _is_64bit(image) -> bool:
    return getattr(image, "optional_header64", None) is not None


# ---------------------------------------------------------------- debug


def _parse_codeview(image, directory: DebugDirectory) -> None:
    data_offset = directory.pointer_to_raw_data
    data_size = directory.size_of_data

    if len(directory.raw_data) < OmfSignature.SIZE:
        raise PEFormatError("corrupt codeview data")
    omf = image.unpack(OmfSignature, data_offset)

    if omf.signature == CV_PDB_70_SIGNATURE:
        if data_size < CvInfoPdb70.SIZE:
            raise PEFormatError("corrupt PDB 7.0 data")
        directory.info_pdb70 = image.unpack(CvInfoPdb70, data_offset)
        directory.symbol_name = bytes(image.string_from_data(data_offset + CvInfoPdb70.SIZE))
    elif omf.signature == CV_PDB_20_SIGNATURE:
        if data_size < CvInfoPdb20.SIZE:
            raise PEFormatError("corrupt PDB 2.0 data")
        directory.info_pdb20 = image.unpack(CvInfoPdb20, data_offset)
        directory.symbol_name = bytes(image.string_from_data(data_offset + CvInfoPdb20.SIZE))


def parse_debug_directory(image, rva: int, size: int) -> list[DebugDirectory]:
    """Read every debug directory entry in ``size`` bytes at ``rva``.

    CodeView entries also get their PDB 7.0 ("RSDS") or PDB 2.0 ("NB10")
    record and the PDB file name that follows it.
    """
    parsed: list[DebugDirectory] = []
    offset = 0
    while offset < size:
        start, _ = image.data_bounds(rva + offset, 0)
        directory = image.unpack(DebugDirectory, start)
        directory.file_offset = image.offset_from_rva(rva + offset)

        if directory.size_of_data:
            data_offset = directory.pointer_to_raw_data
            end = data_offset + directory.size_of_data
            if end > len(image.data):
                raise PEFormatError(
                    f"debug data at {data_offset:#x} runs past the end of the file"
                )
            directory.raw_data = bytes(image.data[data_offset:end])
            if directory.type == IMAGE_DEBUG_TYPE_CODEVIEW:
                _parse_codeview(image, directory)

        image.debug_directories.append(directory)
        parsed.append(directory)
        offset += DebugDirectory.SIZE
    return parsed


# ---------------------------------------------------------------- exports


def _entry_limit(image, table_rva: int, count: int, table_name: str) -> int:
    section = image.section_by_rva(table_rva)
    if section is None:
        message = (
            f"RVA {table_name} in the export directory points to an invalid address: {table_rva:x}"
        )
        log.warning(message)
        raise PEFormatError(message)
    boundary = (section.virtual_address + section.size_of_raw_data - table_rva) & _U32_MASK
    return min(boundary // 4, count)


def _resolve_forwarder(image, export: ExportData, rva: int, size: int) -> None:
    if rva <= export.address < rva + size:
        export.forwarder = bytes(image.string_at_rva(export.address))
        export.forwarder_offset = image.offset_from_rva(export.address)


def parse_export_directory(image, rva: int, size: int) -> ExportDirectory:
    """Read the export directory at ``rva`` with all its exported symbols.

    Named exports come first, in name-table order; functions exported by
    ordinal only follow them.
    """
    start, _ = image.data_bounds(rva, 0)
    directory = image.unpack(ExportDirectory, start)
    directory.file_offset = image.offset_from_rva(rva)
    image.export_directory = directory

    names_start, _ = image.data_bounds(directory.address_of_names, 0)
    ordinals_start, _ = image.data_bounds(directory.address_of_name_ordinals, 0)
    functions_start, _ = image.data_bounds(directory.address_of_functions, 0)

    count = _entry_limit(
        image, directory.address_of_names, directory.number_of_names, "AddressOfNames"
    )
    seen: set[int] = set()

    for index in range(count):
        name_rva = _read(image, "I", names_start + index * 4)
        name = bytes(image.string_at_rva(name_rva))
        if not valid_func_name(name):
            break
        export = ExportData(name=name, name_offset=image.offset_from_rva(name_rva))

        export.ordinal_offset = ordinals_start + index * 2
        export.ordinal = _read(image, "H", export.ordinal_offset)

        export.address_offset = functions_start + export.ordinal * 4
        export.address = _read(image, "I", export.address_offset)
        if export.address == 0:
            continue

        _resolve_forwarder(image, export, rva, size)
        export.ordinal = (export.ordinal + directory.base) & 0xFFFF
        seen.add(export.ordinal)
        directory.exports.append(export)

    count = _entry_limit(
        image, directory.address_of_functions, directory.number_of_functions, "AddressOfFunctions"
    )
    for index in range(count):
        ordinal = (index + directory.base) & 0xFFFF
        if ordinal in seen:
            continue
        export = ExportData(address_offset=functions_start + index * 4)
        export.address = _read(image, "I", export.address_offset)
        if export.address == 0:
            continue
        _resolve_forwarder(image, export, rva, size)
        export.ordinal = ordinal
        directory.exports.append(export)

    return directory


# ---------------------------------------------------------------- imports


def get_import_table(image, rva: int, descriptor: ImportDescriptor) -> list:
    """Read the thunk table at ``rva`` up to its terminating zero entry.

    Tables that look bogus (many repeated entries, addresses spread too far
    apart, ordinals above 0xffff) raise :class:`PEFormatError`.
    """
    if _is_64bit(image):
        thunk_cls, ordinal_flag = ThunkData64, IMAGE_ORDINAL_FLAG64
    else:
        thunk_cls, ordinal_flag = ThunkData32, IMAGE_ORDINAL_FLAG
    address_mask = ordinal_flag - 1

    seen_rvas: set[int] = set()
    table: list = []
    repeated = 0
    start_rva = rva
    lowest: int | None = None
    highest = 0

    max_len = len(image.data) - descriptor.file_offset
    if rva > descriptor.characteristics or rva > descriptor.first_thunk:
        max_len = max(
            (rva - descriptor.characteristics) & _U32_MASK,
            (rva - descriptor.first_thunk) & _U32_MASK,
        )
    last_rva = rva + max_len

    while True:
        if rva >= last_rva:
            log.warning("Error parsing the import table. Entries go beyond bounds.")
            break
        if repeated >= _MAX_REPEATED_ADDRESSES:
            raise PEFormatError("bogus data found in imports")
        if lowest is not None and highest - lowest > _MAX_ADDRESS_SPREAD:
            raise PEFormatError("data addresses too spread out")

        thunk = image.unpack(thunk_cls, image.offset_from_rva(rva))
        if thunk.is_empty():
            break

        address = thunk.address_of_data
        if start_rva <= address <= rva:
            log.warning(
                "Error parsing the import table. "
                "AddressOfData overlaps with THUNK_DATA for THUNK at:\n  RVA 0x%x",
                rva,
            )
            break

        if address > 0:
            if address & ordinal_flag:
                if address & address_mask > 0xFFFF:
                    message = f"Corruption detected in thunk data at 0x{rva:x}"
                    log.warning(message)
                    raise PEFormatError(message)
            else:
                if rva in seen_rvas:
                    repeated += 1
                highest = max(highest, address)
                lowest = address if lowest is None else min(lowest, address)

        seen_rvas.add(rva)
        table.append(thunk)
        rva += thunk_cls.SIZE

    return table


def parse_imports(image, descriptor: ImportDescriptor) -> list[ImportData]:
    """Read the symbols imported through ``descriptor`` and record them on it."""
    ilt = get_import_table(image, descriptor.characteristics, descriptor)
    iat = get_import_table(image, descriptor.first_thunk, descriptor)
    if not ilt and not iat:
        raise PEFormatError(
            "invalid import table information - both ILT and IAT appear to be broken"
        )

    if _is_64bit(image):
        ordinal_flag, entry_size = IMAGE_ORDINAL_FLAG64, 8
        image_base = image.optional_header64.image_base
        target = descriptor.imports64
        width_mask = (1 << 64) - 1
    else:
        ordinal_flag, entry_size = IMAGE_ORDINAL_FLAG, 4
        image_base = image.optional_header.image_base
        target = descriptor.imports
        width_mask = _U32_MASK
    address_mask = ordinal_flag - 1

    table = ilt or iat
    invalid = 0

    for index, thunk in enumerate(table):
        entry = ImportData(struct_table=thunk, ordinal_offset=thunk.file_offset)
        address = thunk.address_of_data

        if address > 0:
            if address & ordinal_flag:
                entry.import_by_ordinal = True
                entry.ordinal = address & 0xFFFF
            else:
                entry.hint_name_table_rva = address & address_mask
                entry.hint = _read(image, "H", image.offset_from_rva(entry.hint_name_table_rva))
                name = bytes(image.string_at_rva(address + 2))
                entry.name = name if valid_func_name(name) else INVALID_IMPORT_NAME
                entry.name_offset = image.offset_from_rva(address + 2)
            entry.thunk_offset = thunk.file_offset
            entry.thunk_rva = image.rva_from_offset(entry.thunk_offset)

        entry.address = (descriptor.first_thunk + image_base + index * entry_size) & width_mask

        if ilt and iat and index < len(iat) and ilt[index].address_of_data != iat[index].address_of_data:
            entry.bound = iat[index].address_of_data
            entry.struct_iat = iat[index]

        has_name = bool(entry.name)
        if entry.ordinal == 0 and not has_name:
            raise PEFormatError("must have either an ordinal or a name in an import")

        # Some images interleave valid and invalid entries: skip the invalid
        # ones unless nothing but invalid entries has been seen.
        if entry.name == INVALID_IMPORT_NAME:
            if invalid > _MAX_INVALID_IMPORTS and invalid == index:
                raise PEFormatError("too many invalid names, aborting parsing")
            invalid += 1
            continue

        if entry.ordinal > 0 or has_name:
            target.append(entry)

    return target


def parse_import_directory(image, rva: int, size: int) -> list[ImportDescriptor]:
    """Read the import descriptors at ``rva`` up to the terminating empty one.

    Ordinal imports from well-known DLLs are given their function names.
    """
    image.import_descriptors = []

    while True:
        descriptor = image.unpack(ImportDescriptor, image.offset_from_rva(rva))
        if descriptor.is_empty():
            break
        rva += ImportDescriptor.SIZE

        module = bytes(image.string_at_rva(descriptor.name))
        descriptor.module = module if valid_dos_filename(module) else INVALID_IMPORT_NAME
        module_name = descriptor.module.decode("latin-1")

        for entry in parse_imports(image, descriptor):
            if entry.import_by_ordinal:
                name = ord_lookup(module_name, entry.ordinal, False)
                if name:
                    entry.name = name.encode("ascii")

        image.import_descriptors.append(descriptor)

    return image.import_descriptors