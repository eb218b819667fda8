"""Further PE structures: relocations, resources, version info, TLS,
load configuration, delay and bound imports.

They share the layout machinery of :class:`pdbfetch.structures.Structure`
and are read little-endian and packed, field by field in declaration order.
"""

from dataclasses import dataclass

from pdbfetch.structures import Structure, _u16, _u32, _u64

# Value of VsFixedFileInfo.signature in a well-formed version resource.
VS_FFI_SIGNATURE = 0xFEEF04BD


@dataclass
class BaseRelocation(Structure):
    """Header of one block of base relocations."""

    LABEL = "BaseRelocation"

    virtual_address: int = _u32()
    size_of_block: int = _u32()


@dataclass
class BaseRelocationEntry(Structure):
    """One base relocation: the type in the top 4 bits, the offset below."""

    LABEL = "BaseRelocationEntry"

    data: int = _u16()


@dataclass
class DelayImportDescriptor(Structure):
    LABEL = "DELAY_IMPORT_DESCRIPTOR"
    HAS_FLAGS = True

    grattrs: int = _u32()
    sz_name: int = _u32()
    phmod: int = _u32()
    p_iat: int = _u32()
    p_int: int = _u32()
    p_bound_iat: int = _u32()
    p_unload_iat: int = _u32()
    dw_time_stamp: int = _u32()


@dataclass
class ResourceDirectory(Structure):
    LABEL = "RESOURCE_DIRECTORY"
    HAS_FLAGS = True

    characteristics: int = _u32()
    time_date_stamp: int = _u32()
    major_version: int = _u16()
    minor_version: int = _u16()
    number_of_named_entries: int = _u16()
    number_of_id_entries: int = _u16()


@dataclass
class ResourceDirectoryEntry(Structure):
    LABEL = "RESOURCE_DIRECTORY_ENTRY"

    name: int = _u32()
    offset_to_data: int = _u32()


@dataclass
class ResourceDataEntry(Structure):
    """Location, size and code page of one resource's data."""

    LABEL = "RESOURCE_DATA_ENTRY"

    offset_to_data: int = _u32()
    size: int = _u32()
    code_page: int = _u32()
    reserved: int = _u32()


@dataclass
class VersionInfoBlock(Structure):
    """Header of a VS_VERSIONINFO block; key, padding and children follow it."""

    LABEL = "RESOURCE_DATA_ENTRY"

    length: int = _u16()
    value_length: int = _u16()
    type: int = _u16()


@dataclass
class VsFixedFileInfo(Structure):
    LABEL = "VSFixedFileInfo"

    signature: int = _u32()
    struc_version: int = _u32()
    file_version_ms: int = _u32()
    file_version_ls: int = _u32()
    product_version_ms: int = _u32()
    product_version_ls: int = _u32()
    file_flags_mask: int = _u32()
    file_flags: int = _u32()
    file_os: int = _u32()
    file_type: int = _u32()
    file_subtype: int = _u32()
    file_date_ms: int = _u32()
    file_date_ls: int = _u32()


@dataclass
class StringFileInfo(Structure):
    LABEL = "StringFileInfo"

    length: int = _u16()
    value_length: int = _u16()
    type: int = _u16()


@dataclass
class VsStringTable(Structure):
    LABEL = "StringTable"

    length: int = _u16()
    value_length: int = _u16()
    type: int = _u16()


@dataclass
class VsString(Structure):
    LABEL = "String"

    length: int = _u16()
    value_length: int = _u16()
    type: int = _u16()


@dataclass
class VsVar(Structure):
    LABEL = "Var"

    length: int = _u16()
    value_length: int = _u16()
    type: int = _u16()


@dataclass
class TlsDirectory32(Structure):
    LABEL = "TLSDirectory"
    HAS_FLAGS = True

    start_address_of_raw_data: int = _u32()
    end_address_of_raw_data: int = _u32()
    address_of_index: int = _u32()
    address_of_call_backs: int = _u32()
    size_of_zero_fill: int = _u32()
    characteristics: int = _u32()


@dataclass
class TlsDirectory64(Structure):
    LABEL = "TLSDirectory64"
    HAS_FLAGS = True

    start_address_of_raw_data: int = _u64()
    end_address_of_raw_data: int = _u64()
    address_of_index: int = _u64()
    address_of_call_backs: int = _u64()
    size_of_zero_fill: int = _u32()
    characteristics: int = _u32()


@dataclass
class LoadConfigDirectory32(Structure):
    LABEL = "LoadConfigDirectory"
    HAS_FLAGS = True

    size: int = _u32()
    time_date_stamp: int = _u32()
    major_version: int = _u16()
    minor_version: int = _u16()
    global_flags_clear: int = _u32()
    global_flags_set: int = _u32()
    critical_section_default_timeout: int = _u32()
    de_commit_free_block_threshold: int = _u32()
    de_commit_total_free_threshold: int = _u32()
    lock_prefix_table: int = _u32()
    maximum_allocation_size: int = _u32()
    virtual_memory_threshold: int = _u32()
    process_heap_flags: int = _u32()
    process_affinity_mask: int = _u32()
    csd_version: int = _u16()
    reserved1: int = _u16()
    edit_list: int = _u32()
    security_cookie: int = _u32()
    se_handler_table: int = _u32()
    se_handler_count: int = _u32()
    guard_cf_check_function_pointer: int = _u32()
    reserved2: int = _u32()
    guard_cf_function_table: int = _u32()
    guard_cf_function_count: int = _u32()
    guard_flags: int = _u32()


@dataclass
class LoadConfigDirectory64(Structure):
    LABEL = "LoadConfigDirectory64"
    HAS_FLAGS = True

    size: int = _u32()
    time_date_stamp: int = _u32()
    major_version: int = _u16()
    minor_version: int = _u16()
    global_flags_clear: int = _u32()
    global_flags_set: int = _u32()
    critical_section_default_timeout: int = _u32()
    de_commit_free_block_threshold: int = _u64()
    de_commit_total_free_threshold: int = _u64()
    lock_prefix_table: int = _u64()
    maximum_allocation_size: int = _u64()
    virtual_memory_threshold: int = _u64()
    process_affinity_mask: int = _u64()
    process_heap_flags: int = _u32()
    csd_version: int = _u16()
    reserved1: int = _u16()
    edit_list: int = _u64()
    security_cookie: int = _u64()
    se_handler_table: int = _u64()
    se_handler_count: int = _u64()
    guard_cf_check_function_pointer: int = _u64()
    reserved2: int = _u64()
    guard_cf_function_table: int = _u64()
    guard_cf_function_count: int = _u64()
    guard_flags: int = _u32()


@dataclass
class BoundImportDescriptor(Structure):
    LABEL = "BoundImportDescriptor"

    time_date_stamp: int = _u32()
    offset_module_name: int = _u16()
    number_of_module_forwarder_refs: int = _u16()


@dataclass
class BoundForwarderRef(Structure):
    LABEL = "BoundForwarderRef"

    time_date_stamp: int = _u32()
    offset_module_name: int = _u16()
    reserved: int = _u16()