class NfcError(Exception):
    """Base class of every error raised by the tag layer."""

class HardwareUnavailable(NfcError):
    pass

class NoReaderPresent(NfcError):
    pass

class CapacityExceeded(NfcError):
    size: int
    limit: int

    def __init__(self, size: int, limit: int, what: str = "NDEF message"):
        super().__init__(f"{what} is too large for the given tag. The max size is {limit} bytes and the current message is {size} bytes")
        self.size = size
        self.limit = limit

class ApduError(NfcError):
    detail: str
    sw1: int | None
    sw2: int | None

    def __init__(self, detail: str, sw1: int | None = None, sw2: int | None = None):
        super().__init__(detail)
        self.detail = detail
        self.sw1 = sw1
        self.sw2 = sw2

    @property
    def status_word(self) -> str | None:
        if self.sw1 is None or self.sw2 is None:
            return None
        return f"{self.sw1:02x}{self.sw2:02x}"

class MalformedResponseError(ApduError):
    pass

class PageWriteError(ApduError):
    page: int
    pages_written: int

    def __init__(self, page: int, pages_written: int, cause: ApduError):
        super().__init__(f"Write aborted at page {page} after {pages_written} page(s): {cause.detail}", cause.sw1, cause.sw2)
        self.page = page
        self.pages_written = pages_written
