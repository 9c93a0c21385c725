from math import ceil

import pytest

from errors import CapacityExceeded, PageWriteError
from ndef_text import decode, encode_text
from reader import TagReader
from tag import NTAG213, NTAG216


@pytest.fixture
def reader(transport):
    return TagReader(transport, NTAG216)


@pytest.mark.parametrize("length", [1, 3, 4, 5, 8, 13, 258, 868])
def test_one_update_binary_per_page(link, reader, length):
    buffer = bytes(range(256)) * 4
    pages = reader.write_buffer(buffer[:length])

    assert pages == ceil(length / 4)
    assert [command[3] for command in link.writes] == list(range(4, 4 + ceil(length / 4)))


def test_last_page_is_zero_padded(link, reader):
    reader.write_buffer(b"\x03\x00\xfe")
    assert link.writes == [[0xFF, 0xD6, 0x00, 0x04, 0x04, 0x03, 0x00, 0xFE, 0x00]]


def test_capacity_is_checked_before_any_apdu(link, transport):
    reader = TagReader(transport, NTAG213)
    with pytest.raises(CapacityExceeded):
        reader.write_buffer(bytes(NTAG213.max_ndef_payload_bytes + 1))
    assert link.commands == []


def test_write_aborts_at_the_first_failing_page(link, reader):
    link.failing_pages.add(6)
    with pytest.raises(PageWriteError) as excinfo:
        reader.write_buffer(bytes(20))

    assert excinfo.value.page == 6
    assert excinfo.value.pages_written == 2
    assert excinfo.value.status_word == "6a82"
    assert [command[3] for command in link.writes] == [4, 5, 6]


def test_rewriting_after_a_failure_completes_the_tag(link, reader):
    message = encode_text("second attempt")
    link.failing_pages.add(6)
    with pytest.raises(PageWriteError):
        reader.write_buffer(message)

    link.failing_pages.clear()
    reader.write_buffer(message)
    assert decode(bytes(link.memory[16:16 + len(message)])) == {"text": "second attempt"}


def test_read_pages(link, reader):
    link.memory[16:24] = b"abcdefgh"
    assert reader.read_pages(4, 2) == b"abcdefgh"
    assert [command[3] for command in link.reads] == [4, 5]


def test_read_pages_keeps_what_was_read_before_a_failure(link, reader):
    link.memory[16:32] = b"0123456789abcdef"
    link.failing_pages.add(6)
    assert reader.read_pages(4, 4) == b"01234567"


def test_read_ndef_area_follows_the_tlv_length(link, reader):
    message = encode_text("x" * 200)
    link.memory[16:16 + len(message)] = message

    data = reader.read_ndef_area(initial_pages=4)

    assert len(data) >= len(message)
    assert decode(data) == {"text": "x" * 200}
    assert len(link.reads) == ceil(len(message) / 4)


def test_read_ndef_area_stops_when_the_message_fits(link, reader):
    message = encode_text("short")
    link.memory[16:16 + len(message)] = message

    reader.read_ndef_area(initial_pages=20)

    assert len(link.reads) == 20
