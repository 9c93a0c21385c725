import pytest

from apdu import ApduTransport
from config import NfcSettings
from service import NfcService
from session import HardwareCapability, ReaderAttached, SessionManager, TagInserted
from tag import NTAG21X_ATR, NTAG216

READER_NAME = "ACS ACR122U PICC Interface 00 00"
TAG_UID = bytes.fromhex("04A1B2C3D4E5F6")


class FakeTagLink:
    """
    In-memory Type 2 tag behind a PC/SC reader, answering READ BINARY and UPDATE BINARY
    with pyscard's (data, sw1, sw2) tuples.
    """

    def __init__(self, total_pages=NTAG216.total_pages):
        self.memory = bytearray(total_pages * 4)
        self.total_pages = total_pages
        self.commands = []
        self.failing_pages = set()
        self.failure_sw = (0x6A, 0x82)

    @property
    def writes(self):
        return [command for command in self.commands if command[1] == 0xD6]

    @property
    def reads(self):
        return [command for command in self.commands if command[1] == 0xB0]

    def page(self, number):
        return bytes(self.memory[number * 4 : number * 4 + 4])

    def transmit(self, apdu):
        apdu = list(apdu)
        self.commands.append(apdu)
        _, ins, _, page, length = apdu[:5]
        if page in self.failing_pages or page >= self.total_pages:
            return [], *self.failure_sw
        if ins == 0xB0:
            return list(self.memory[page * 4 : page * 4 + length]), 0x90, 0x00
        if ins == 0xD6:
            self.memory[page * 4 : page * 4 + 4] = bytes(apdu[5:9])
            return [], 0x90, 0x00
        return [], 0x6D, 0x00


@pytest.fixture
def link():
    return FakeTagLink()


@pytest.fixture
def transport(link):
    transport = ApduTransport(link, timeout_sec=2.0, name="test")
    yield transport
    transport.close()


@pytest.fixture
def live_session(link):
    session = SessionManager(HardwareCapability(True))
    session.apply(ReaderAttached(READER_NAME, link))
    session.apply(TagInserted(TAG_UID, NTAG21X_ATR, READER_NAME))
    yield session
    session.close()


@pytest.fixture
def live_service(live_session):
    service = NfcService(NfcSettings(), session=live_session)
    yield service
    service.close()


@pytest.fixture
def simulated_service():
    service = NfcService(NfcSettings(force_simulation=True))
    yield service
    service.close()
