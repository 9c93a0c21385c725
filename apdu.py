import logging
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from typing import Final, Protocol, Sequence

from errors import ApduError, MalformedResponseError

logger = logging.getLogger(__name__)

SUCCESS_SW: Final[tuple[int, int]] = (0x90, 0x00)
READ_BINARY: Final[list[int]] = [0xFF, 0xB0, 0x00] # + [page, amount_of_bytes_to_read]
UPDATE_BINARY: Final[list[int]] = [0xFF, 0xD6, 0x00] # + [page, amount_of_bytes_to_write] + content
PAGE_SIZE: Final[int] = 4
DEFAULT_TIMEOUT_SEC: Final[float] = 3.0

class Link(Protocol):
    """
    Anything exposing pyscard's CardConnection.transmit signature
    """
    def transmit(self, apdu: list[int]) -> tuple[list[int], int, int]: ...

def read_binary(page: int) -> list[int]:
    return READ_BINARY + [page & 0xFF, PAGE_SIZE]

def update_binary(page: int, data: bytes) -> list[int]:
    if len(data) != PAGE_SIZE:
        raise ValueError(f"A page write takes exactly {PAGE_SIZE} bytes, got {len(data)}")
    return UPDATE_BINARY + [page & 0xFF, PAGE_SIZE] + list(data)

def check_response(response: Sequence[int]) -> bytes:
    """
    Validates the trailing status word and returns the response without it
    """
    if len(response) < 2:
        raise MalformedResponseError(f"Response too short to hold a status word: {bytes(response).hex()}")
    sw1, sw2 = response[-2], response[-1]
    if (sw1, sw2) != SUCCESS_SW:
        raise ApduError(f"APDU failed with status word {sw1:02x}{sw2:02x}", sw1, sw2)
    return bytes(response[:-2])

class ApduTransport:
    """
    Issues APDUs on a link from a single worker thread, so commands sent to one reader never overlap.
    """
    link: Link
    timeout_sec: float

    def __init__(self, link: Link, timeout_sec: float = DEFAULT_TIMEOUT_SEC, name: str = "reader"):
        self.link = link
        self.timeout_sec = timeout_sec
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"apdu-{name}")

    def _exchange(self, command: list[int]) -> list[int]:
        data, sw1, sw2 = self.link.transmit(command)
        return list(data or []) + [sw1, sw2]

    def transmit(self, command: list[int]) -> bytes:
        logger.debug("> %s", bytes(command).hex(" "))
        try:
            future = self._executor.submit(self._exchange, command)
        except RuntimeError as err: # transport closed, the reader is gone
            raise ApduError(f"Transmit failed: {err}") from err
        try:
            response = future.result(timeout=self.timeout_sec)
        except FutureTimeoutError:
            future.cancel()
            raise ApduError(f"No response within {self.timeout_sec}s to APDU {bytes(command[:4]).hex()}")
        except Exception as err: # card removed, reader unplugged
            raise ApduError(f"Transmit failed: {err}") from err
        logger.debug("< %s", bytes(response).hex(" "))
        return check_response(response)

    def read_page(self, page: int) -> bytes:
        data = self.transmit(read_binary(page))
        if len(data) < PAGE_SIZE:
            raise MalformedResponseError(f"Read of page {page} returned {len(data)} bytes")
        return data[:PAGE_SIZE]

    def update_page(self, page: int, data: bytes):
        self.transmit(update_binary(page, data))

    def close(self):
        self._executor.shutdown(wait=False, cancel_futures=True)
