import dataclasses

import pytest

from tag import (
    DEFAULT_TAG_TYPE,
    NTAG21X_ATR,
    NTAG216,
    TAG_GEOMETRIES,
    TagGeometry,
    geometry_for,
    supported_tag_types,
    tag_type_from_atr,
    tag_type_info,
)


@pytest.mark.parametrize("geometry", TAG_GEOMETRIES.values(), ids=TAG_GEOMETRIES.keys())
def test_geometry_invariants(geometry):
    assert geometry.page_size_bytes == 4
    assert geometry.max_ndef_payload_bytes <= geometry.usable_memory_bytes
    assert geometry.data_pages * geometry.page_size_bytes >= geometry.max_ndef_payload_bytes
    assert geometry.user_pages * geometry.page_size_bytes == geometry.usable_memory_bytes


def test_ntag216_layout():
    assert NTAG216.total_memory_bytes == 924
    assert NTAG216.usable_memory_bytes == 888
    assert NTAG216.total_pages == 231
    assert (NTAG216.first_data_page, NTAG216.last_data_page) == (4, 225)
    assert (NTAG216.config_page, NTAG216.password_page) == (227, 229)
    assert NTAG216.uid_length_bytes == 7
    assert NTAG216.max_ndef_payload_bytes == 868


def test_geometry_is_immutable():
    with pytest.raises(dataclasses.FrozenInstanceError):
        NTAG216.first_data_page = 0


def test_geometry_rejects_payload_larger_than_memory():
    with pytest.raises(ValueError):
        dataclasses.replace(NTAG216, max_ndef_payload_bytes=900)


def test_geometry_rejects_payload_larger_than_data_window():
    with pytest.raises(ValueError):
        dataclasses.replace(NTAG216, last_data_page=100)


def test_reader_atr_maps_to_default_family():
    assert tag_type_from_atr(NTAG21X_ATR) == DEFAULT_TAG_TYPE == "NTAG216"


@pytest.mark.parametrize("atr, expected", [
    (bytes.fromhex("3b8f8001804f0ca000000306030001000000006a"), "MIFARE_CLASSIC_1K"),
    (bytes.fromhex("3b8f8001804f0ca0000003060300020000000069"), "MIFARE_CLASSIC_4K"),
    (bytes.fromhex("3b0a0042"), "NTAG215"),
    (bytes.fromhex("3b0a003e"), "NTAG213"),
])
def test_atr_patterns(atr, expected):
    assert tag_type_from_atr(atr) == expected


@pytest.mark.parametrize("atr", [None, b"", bytes.fromhex("3b1196")])
def test_unknown_atr_falls_back_to_default(atr):
    assert tag_type_from_atr(atr) == DEFAULT_TAG_TYPE
    assert tag_type_from_atr(atr, default="NTAG213") == "NTAG213"


def test_geometry_for_unknown_family():
    assert geometry_for("NTAG213").family == "NTAG 213"
    assert geometry_for("MIFARE_CLASSIC_1K") is NTAG216


def test_tag_type_info():
    info = tag_type_info(NTAG216)
    assert info["family"] == "NTAG 216"
    assert info["manufacturer"] == "NXP Semiconductors"
    assert info["usable_memory_bytes"] == 888
    assert info["uid_length_bytes"] == 7
    assert "NFC Forum Type 2 Tag" in info["compatibility_standards"]


def test_supported_tag_types():
    types = supported_tag_types()
    assert len(types) == 12
    assert [entry["id"] for entry in types if entry["encodable"]] == ["NTAG213", "NTAG215", "NTAG216"]
    assert {"id": "ISO15693", "name": "ISO 15693", "encodable": False} in types
    assert {"id": "MIFARE_CLASSIC_1K", "name": "MIFARE Classic 1K", "encodable": False} in types
