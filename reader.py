import logging
from math import ceil

from apdu import ApduTransport
from errors import ApduError, CapacityExceeded, PageWriteError
from ndef_text import NDEF_TLV_START
from tag import TagGeometry

logger = logging.getLogger(__name__)

class TagReader:
    """
    Maps a flat byte buffer onto the page-addressed data window of a tag
    """
    transport: ApduTransport
    tag: TagGeometry

    def __init__(self, transport: ApduTransport, tag: TagGeometry):
        self.transport = transport
        self.tag = tag

    def write_buffer(self, buffer: bytes) -> int:
        """
        Writes the buffer page by page from the first data page, zero-padding the last page.
        Not atomic: a failed page aborts the write and leaves the earlier pages written.
        """
        if len(buffer) > self.tag.max_ndef_payload_bytes:
            raise CapacityExceeded(len(buffer), self.tag.max_ndef_payload_bytes)

        page_size = self.tag.page_size_bytes
        pages_needed = ceil(len(buffer) / page_size)
        logger.debug("Writing %d bytes to pages %d-%d", len(buffer), self.tag.first_data_page, self.tag.first_data_page + pages_needed - 1)
        for index in range(pages_needed):
            page = self.tag.first_data_page + index
            content = buffer[index * page_size : (index + 1) * page_size]
            content = content + bytes(page_size - len(content))
            try:
                self.transport.update_page(page, content)
            except ApduError as err:
                logger.warning("Failed to write page %d: %s", page, err)
                raise PageWriteError(page, index, err) from err
        return pages_needed

    def read_pages(self, start_page: int, page_count: int) -> bytes:
        """
        Reads consecutive pages. Stops at the first failing page and returns what was read so far.
        """
        data = bytearray()
        for page in range(start_page, start_page + page_count):
            if page < self.tag.first_data_page:
                logger.debug("Reading page %d, outside of user memory (starts at %d)", page, self.tag.first_data_page)
            try:
                data.extend(self.transport.read_page(page))
            except ApduError as err:
                logger.warning("Failed to read page %d, returning %d bytes read so far: %s", page, len(data), err)
                break
        return bytes(data)

    def read_ndef_area(self, initial_pages: int) -> bytes:
        """
        Reads the first pages of the data window, then the rest of the NDEF TLV if its header announces more
        """
        initial_pages = max(1, min(initial_pages, self.tag.data_pages))
        content = self.read_pages(self.tag.first_data_page, initial_pages)
        if len(content) < initial_pages * self.tag.page_size_bytes:
            return content

        tlv_start = content.find(NDEF_TLV_START)
        if tlv_start < 0 or tlv_start + 1 >= len(content):
            return content

        record_length = content[tlv_start + 1]
        needed = tlv_start + 2 + record_length + 1 # up to the terminator
        if needed <= len(content):
            return content

        pages_needed = min(ceil(needed / self.tag.page_size_bytes), self.tag.data_pages)
        logger.debug("Record should be %d bytes long, reading %d more page(s)", record_length, pages_needed - initial_pages)
        return content + self.read_pages(self.tag.first_data_page + initial_pages, pages_needed - initial_pages)
