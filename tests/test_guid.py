import pytest

from pdbfetch.guid import Guid

SAMPLE = "1a2b3c4d-5e6f-7081-92a3-b4c5d6e7f809"


def test_windows_bytes_pinned_layout():
    guid = Guid.from_windows_bytes(bytes(range(16)))
    assert str(guid) == "03020100-0504-0706-0809-0a0b0c0d0e0f"


def test_from_string_round_trip():
    assert str(Guid.from_string(SAMPLE)) == SAMPLE


def test_from_string_uppercase_is_printed_lowercase():
    assert str(Guid.from_string(SAMPLE.upper())) == SAMPLE


def test_format_variants():
    guid = Guid.from_string(SAMPLE)
    assert guid.format("") == SAMPLE
    assert guid.format("D") == SAMPLE
    assert guid.format("N") == SAMPLE.replace("-", "")
    assert guid.format("B") == "{" + SAMPLE + "}"
    assert guid.format("P") == "(" + SAMPLE + ")"
    assert guid.format("X") == guid.format("P")


def test_invalid_format_raises():
    with pytest.raises(ValueError):
        Guid.from_string(SAMPLE).format("Z")


def test_big_endian_round_trip():
    data = bytes(range(100, 116))
    assert Guid.from_bytes(data).to_bytes() == data


def test_windows_round_trip():
    data = bytes(range(200, 216))
    assert Guid.from_windows_bytes(data).to_windows_bytes() == data


def test_encodings_share_tail_and_swap_head():
    data = bytes(range(16))
    big = Guid.from_bytes(data)
    little = Guid.from_windows_bytes(data)
    assert big.data4 == little.data4 == data[8:]
    assert big.data1 == int.from_bytes(data[:4], "big")
    assert little.data1 == int.from_bytes(data[:4], "little")
    assert big.to_windows_bytes()[:4] == data[:4][::-1]


def test_string_and_bytes_agree():
    guid = Guid.from_string(SAMPLE)
    assert guid.to_bytes().hex() == SAMPLE.replace("-", "")
    assert Guid.from_bytes(guid.to_bytes()) == guid


def test_default_guid_is_zero():
    assert Guid().to_bytes() == bytes(16)
    assert Guid().format("N") == "0" * 32


@pytest.mark.parametrize(
    "text",
    [
        "",
        SAMPLE[:-1],
        SAMPLE + "0",
        SAMPLE.replace("-", "_"),
        "1a2b3c4d-5e6f-7081-92a3-b4c5d6e7f8zz",
        "+a2b3c4d-5e6f-7081-92a3-b4c5d6e7f809",
        "1a2b3c4d-5e6f-7081-92a3b-4c5d6e7f809",
    ],
)
def test_from_string_rejects_bad_text(text):
    with pytest.raises(ValueError):
        Guid.from_string(text)


@pytest.mark.parametrize("size", [0, 15, 17])
def test_wrong_length_bytes_rejected(size):
    with pytest.raises(ValueError):
        Guid.from_bytes(bytes(size))
    with pytest.raises(ValueError):
        Guid.from_windows_bytes(bytes(size))


def test_field_ranges_are_checked():
    with pytest.raises(ValueError):
        Guid(data1=1 << 32)
    with pytest.raises(ValueError):
        Guid(data2=-1)
    with pytest.raises(ValueError):
        Guid(data4=bytes(7))