import threading
import time

import pytest

from apdu import ApduTransport, check_response, read_binary, update_binary
from errors import ApduError, MalformedResponseError


def test_read_binary_command():
    assert read_binary(5) == [0xFF, 0xB0, 0x00, 0x05, 0x04]


def test_update_binary_command():
    assert update_binary(4, b"\x03\x00\xfe\x00") == [0xFF, 0xD6, 0x00, 0x04, 0x04, 0x03, 0x00, 0xFE, 0x00]


def test_update_binary_needs_a_full_page():
    with pytest.raises(ValueError):
        update_binary(4, b"\x03\x00")


def test_success_status_word_is_stripped():
    assert check_response([0x01, 0x02, 0x03, 0x04, 0x90, 0x00]) == b"\x01\x02\x03\x04"


def test_success_without_data():
    assert check_response([0x90, 0x00]) == b""


def test_error_status_word():
    with pytest.raises(ApduError, match="6a82") as excinfo:
        check_response([0x01, 0x6A, 0x82])
    assert excinfo.value.status_word == "6a82"
    assert (excinfo.value.sw1, excinfo.value.sw2) == (0x6A, 0x82)


@pytest.mark.parametrize("response", [[], [0x90]])
def test_short_response_is_malformed(response):
    with pytest.raises(MalformedResponseError):
        check_response(response)


def test_malformed_response_is_an_apdu_error():
    assert issubclass(MalformedResponseError, ApduError)


def test_read_page(link, transport):
    link.memory[16:20] = b"\x03\x00\xfe\x00"
    assert transport.read_page(4) == b"\x03\x00\xfe\x00"
    assert link.commands == [[0xFF, 0xB0, 0x00, 0x04, 0x04]]


def test_update_page(link, transport):
    transport.update_page(7, b"abcd")
    assert link.page(7) == b"abcd"


def test_failing_page_raises(link, transport):
    link.failing_pages.add(9)
    with pytest.raises(ApduError, match="6a82"):
        transport.read_page(9)


class _BrokenLink:
    def transmit(self, apdu):
        raise OSError("card removed")


def test_link_failure_becomes_apdu_error():
    transport = ApduTransport(_BrokenLink(), timeout_sec=1.0)
    try:
        with pytest.raises(ApduError, match="card removed"):
            transport.transmit([0xFF, 0xB0, 0x00, 0x04, 0x04])
    finally:
        transport.close()


class _StuckLink:
    def __init__(self):
        self.release = threading.Event()

    def transmit(self, apdu):
        self.release.wait(5)
        return [], 0x90, 0x00


def test_timeout_becomes_apdu_error():
    link = _StuckLink()
    transport = ApduTransport(link, timeout_sec=0.05)
    try:
        with pytest.raises(ApduError, match="No response"):
            transport.transmit([0xFF, 0xB0, 0x00, 0x04, 0x04])
    finally:
        link.release.set()
        transport.close()


class _CountingLink:
    def __init__(self):
        self.active = 0
        self.max_active = 0
        self.lock = threading.Lock()

    def transmit(self, apdu):
        with self.lock:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        time.sleep(0.001)
        with self.lock:
            self.active -= 1
        return [0, 0, 0, 0], 0x90, 0x00


def test_commands_on_one_reader_never_overlap():
    link = _CountingLink()
    transport = ApduTransport(link, timeout_sec=5.0)

    def worker():
        for page in range(4, 14):
            transport.read_page(page)

    threads = [threading.Thread(target=worker) for _ in range(4)]
    try:
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
    finally:
        transport.close()
    assert link.max_active == 1
