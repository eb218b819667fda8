import pytest

from pdbfetch.ordinals import (
    OLEAUT32_ORD_NAMES,
    ORD_NAMES,
    WS2_32_ORD_NAMES,
    ord_lookup,
)


@pytest.mark.parametrize(
    "libname, ordinal, expected",
    [
        ("ws2_32.dll", 1, "accept"),
        ("ws2_32.dll", 23, "socket"),
        ("ws2_32.dll", 99, "getnameinfo"),
        ("ws2_32.dll", 101, "WSAAsyncSelect"),
        ("ws2_32.dll", 115, "WSAStartup"),
        ("ws2_32.dll", 116, "WSACleanup"),
        ("ws2_32.dll", 151, "__WSAFDIsSet"),
        ("ws2_32.dll", 500, "WEP"),
        ("oleaut32.dll", 2, "SysAllocString"),
        ("oleaut32.dll", 9, "VariantClear"),
        ("oleaut32.dll", 144, "DllCanUnloadNow"),
        ("oleaut32.dll", 301, "OACreateTypeLib2"),
        ("oleaut32.dll", 303, "VarCyMul"),
        ("oleaut32.dll", 319, "VarDateFromUdateEx"),
        ("oleaut32.dll", 327, "SetOaNoCache"),
        ("oleaut32.dll", 349, "VarI4FromUI8"),
        ("oleaut32.dll", 379, "VarUI2FromUI8"),
        ("oleaut32.dll", 402, "OleLoadPictureFileEx"),
        ("oleaut32.dll", 443, "UnRegisterTypeLibForUser"),
    ],
)
def test_known_ordinals(libname, ordinal, expected):
    assert ord_lookup(libname, ordinal, False) == expected
    assert ord_lookup(libname, ordinal, True) == expected


def test_library_name_is_case_insensitive():
    assert ord_lookup("WS2_32.DLL", 3, False) == "closesocket"
    assert ord_lookup("OleAut32.Dll", 6, False) == "SysFreeString"


def test_wsock32_shares_ws2_32_table():
    for ordinal, name in WS2_32_ORD_NAMES.items():
        assert ord_lookup("wsock32.dll", ordinal, False) == name


def test_gap_in_table_without_make_name_is_empty():
    assert ord_lookup("ws2_32.dll", 100, False) == ""
    assert ord_lookup("oleaut32.dll", 1, False) == ""


def test_make_name_for_unknown_ordinal():
    assert ord_lookup("ws2_32.dll", 100, True) == "ord100"


def test_unknown_library():
    assert ord_lookup("kernel32.dll", 1, False) == ""
    assert ord_lookup("kernel32.dll", 7, True) == "ord7"


def test_lookup_matches_every_table_entry():
    for libname, table in ORD_NAMES.items():
        for ordinal, name in table.items():
            assert ord_lookup(libname, ordinal, True) == name


def test_tables_have_expected_extent():
    assert ord_lookup("ws2_32.dll", 0, False) == ""
    assert ord_lookup("ws2_32.dll", 501, True) == "ord501"
    assert ord_lookup("oleaut32.dll", 302, False) == ""
    assert ord_lookup("oleaut32.dll", 444, True) == "ord444"
    assert len(WS2_32_ORD_NAMES) == 117
    assert len(OLEAUT32_ORD_NAMES) == 398