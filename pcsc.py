"""
PC/SC binding on top of pyscard.

Importing this module fails when pyscard or the platform PC/SC library cannot be loaded;
session.detect_hardware() relies on that to decide between live and simulated mode.
"""
import logging
import threading

from smartcard.CardMonitoring import CardMonitor, CardObserver
from smartcard.Exceptions import SmartcardException
from smartcard.ReaderMonitoring import ReaderMonitor, ReaderObserver
from smartcard.System import readers
from smartcard.pcsc.PCSCExceptions import BaseSCardException
from smartcard.util import toHexString

from apdu import check_response
from errors import ApduError, HardwareUnavailable
from session import ReaderAttached, ReaderDetached, SessionManager, TagInserted, TagRemoved

logger = logging.getLogger(__name__)

GET_UID_APDU: list[int] = [0xFF, 0xCA, 0x00, 0x00, 0x00]

def probe() -> list[str]:
    """
    Names of the readers currently attached. Raises HardwareUnavailable when no PC/SC context can be established.
    """
    try:
        return [str(reader) for reader in readers()]
    except BaseSCardException as err:
        raise HardwareUnavailable(f"Could not establish a PC/SC context: {err}") from err

class PcscLink:
    """
    Card connection of one reader, opened on first use and dropped when the card leaves.
    `reader` is anything with createConnection(): a pyscard Reader, or a Card seen before its reader.
    """
    def __init__(self, reader, name: str | None = None):
        self.reader = reader
        self.name = name or str(reader)
        self._connection = None
        self._lock = threading.Lock()

    def transmit(self, apdu: list[int]) -> tuple[list[int], int, int]:
        with self._lock:
            if self._connection is None:
                connection = self.reader.createConnection()
                connection.connect()
                self._connection = connection
            return self._connection.transmit(apdu)

    def reset(self):
        with self._lock:
            connection, self._connection = self._connection, None
        if connection is None:
            return
        try:
            connection.disconnect()
            connection.release()
        except SmartcardException as err:
            logger.debug("Closing connection with %s: %s", self.name, err)

def read_uid(link: PcscLink) -> bytes:
    """
    GET DATA (FF CA 00 00 00), supported by ACR122U-class readers
    """
    data, sw1, sw2 = link.transmit(GET_UID_APDU)
    return check_response(list(data) + [sw1, sw2])

class _ReaderObserver(ReaderObserver):
    def __init__(self, monitor: "PcscMonitor"):
        super().__init__()
        self.monitor = monitor

    def update(self, observable, actions):
        (added, removed) = actions
        for reader in added:
            self.monitor.reader_attached(reader)
        for reader in removed:
            self.monitor.reader_detached(reader)

class _CardObserver(CardObserver):
    def __init__(self, monitor: "PcscMonitor"):
        super().__init__()
        self.monitor = monitor

    def update(self, observable, actions):
        (added, removed) = actions
        for card in removed:
            self.monitor.card_removed(card)
        for card in added:
            self.monitor.card_inserted(card)

class PcscMonitor:
    """
    Turns pyscard reader and card notifications (delivered on pyscard's threads) into session events
    """
    session: SessionManager

    def __init__(self, session: SessionManager):
        self.session = session
        self._links: dict[str, PcscLink] = {}
        self._lock = threading.Lock()
        self._reader_monitor = None
        self._card_monitor = None
        self._reader_observer = _ReaderObserver(self)
        self._card_observer = _CardObserver(self)

    def start(self):
        # Both monitors report what is already plugged in from their own thread, in no set order
        self._reader_monitor = ReaderMonitor()
        self._reader_monitor.addObserver(self._reader_observer)
        self._card_monitor = CardMonitor()
        self._card_monitor.addObserver(self._card_observer)

    def stop(self):
        if self._card_monitor is not None:
            self._card_monitor.deleteObserver(self._card_observer)
            self._card_monitor = None
        if self._reader_monitor is not None:
            self._reader_monitor.deleteObserver(self._reader_observer)
            self._reader_monitor = None
        with self._lock:
            links = list(self._links.values())
            self._links.clear()
        for link in links:
            link.reset()

    def _register(self, source, name: str) -> PcscLink:
        """
        Link of the named reader, registered with the session on first sight.
        Posting under the lock keeps ReaderAttached ahead of any tag event for that reader.
        """
        with self._lock:
            link = self._links.get(name)
            if link is None:
                link = PcscLink(source, name)
                self._links[name] = link
                self.session.post(ReaderAttached(name, link))
            return link

    def reader_attached(self, reader):
        link = self._register(reader, str(reader))
        # Already registered from a card event: connect through the reader from now on
        link.reader = reader

    def reader_detached(self, reader):
        name = str(reader)
        with self._lock:
            link = self._links.pop(name, None)
        if link is not None:
            link.reset()
        self.session.post(ReaderDetached(name))

    def card_inserted(self, card):
        reader_name = str(card.reader)
        atr = bytes(card.atr) if card.atr else None
        logger.debug("Card on %s, ATR: %s", reader_name, toHexString(list(card.atr or [])))
        link = self._register(card, reader_name)
        try:
            uid = read_uid(link)
        except (ApduError, SmartcardException) as err:
            logger.warning("Ignoring the tag on %s, its UID could not be read: %s", reader_name, err)
            link.reset()
            return
        if not uid:
            logger.warning("Ignoring the tag on %s, the reader returned an empty UID", reader_name)
            return
        self.session.post(TagInserted(uid, atr, reader_name))

    def card_removed(self, card):
        reader_name = str(card.reader)
        with self._lock:
            link = self._links.get(reader_name)
        if link is not None:
            link.reset()
        self.session.post(TagRemoved(reader_name=reader_name))
