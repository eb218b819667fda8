import pytest

from pdbfetch.util import (
    INVALID_IMPORT_NAME,
    align_down,
    align_up,
    memset_repeat,
    power_of_two,
    valid_dos_filename,
    valid_func_name,
)


@pytest.mark.parametrize("value", [1, 2, 0x80, 0x200, 0x1000, 1 << 31])
def test_power_of_two_true(value):
    assert power_of_two(value) is True


@pytest.mark.parametrize("value", [0, 3, 6, 0x201, 0xFFF])
def test_power_of_two_false(value):
    assert power_of_two(value) is False


@pytest.mark.parametrize("value", [0, 1, 0x1FF, 0x200, 0x201, 0x1234, 0xFFFF])
@pytest.mark.parametrize("alignment", [1, 4, 0x200, 0x1000])
def test_alignment_invariants(value, alignment):
    down = align_down(value, alignment)
    up = align_up(value, alignment)
    assert down % alignment == 0
    assert up % alignment == 0
    assert down <= value <= up
    assert up - down in (0, alignment)


def test_aligned_value_is_unchanged():
    assert align_up(0x2000, 0x1000) == 0x2000
    assert align_down(0x2000, 0x1000) == 0x2000


def test_memset_repeat_fills_buffer():
    buffer = bytearray(10)
    memset_repeat(buffer, 0xAB)
    assert buffer == bytearray([0xAB] * 10)


def test_memset_repeat_empty_buffer():
    buffer = bytearray()
    memset_repeat(buffer, 7)
    assert buffer == bytearray()


def test_memset_repeat_slice_only():
    buffer = bytearray(6)
    memset_repeat(memoryview(buffer)[2:4], 1)
    assert buffer == bytearray([0, 0, 1, 1, 0, 0])


def test_memset_repeat_rejects_out_of_range_byte():
    with pytest.raises(ValueError):
        memset_repeat(bytearray(2), 256)


@pytest.mark.parametrize(
    "name", [b"CreateFileW", b"?foo@@YAXXZ", b"_init$1", "GetProcAddress", b"f(x)"]
)
def test_valid_func_names(name):
    assert valid_func_name(name) is True


@pytest.mark.parametrize(
    "name", [b"", b"bad name", b"a\x00b", b"\xff\xfe", INVALID_IMPORT_NAME, b"a*b"]
)
def test_invalid_func_names(name):
    assert valid_func_name(name) is False


@pytest.mark.parametrize(
    "name", [b"KERNEL32.dll", b"api-ms-win-core-synch-l1-2-0.dll", b"msvcp_win.dll", "[x]~1.DLL"]
)
def test_valid_dos_filenames(name):
    assert valid_dos_filename(name) is True


@pytest.mark.parametrize("name", [b"", b"bad name.dll", b"a*b.dll", b"x?.dll", b"a\x00"])
def test_invalid_dos_filenames(name):
    assert valid_dos_filename(name) is False