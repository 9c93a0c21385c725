"""
Reader and tag lifecycle.

Hardware callbacks never touch the registry directly: they post typed events to a bounded queue,
and a single worker applies them in order.
"""
import logging
import queue
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable

from apdu import DEFAULT_TIMEOUT_SEC, ApduTransport, Link
from errors import HardwareUnavailable, NoReaderPresent
from tag import DEFAULT_TAG_TYPE, tag_type_from_atr

logger = logging.getLogger(__name__)

@dataclass(frozen=True)
class HardwareCapability:
    available: bool
    reason: str | None = None

def detect_hardware() -> HardwareCapability:
    """
    Loads the PC/SC binding and opens a context once. Failure means every operation runs simulated.
    """
    try:
        import pcsc
        pcsc.probe()
    except (ImportError, HardwareUnavailable) as err:
        logger.warning("PC/SC is not available, NFC operations will be simulated: %s", err)
        return HardwareCapability(False, str(err))
    return HardwareCapability(True)

@dataclass(frozen=True)
class ReaderAttached:
    name: str
    link: Link

@dataclass(frozen=True)
class ReaderDetached:
    name: str

@dataclass(frozen=True)
class TagInserted:
    uid: bytes
    atr: bytes | None
    reader_name: str

@dataclass(frozen=True)
class TagRemoved:
    uid: bytes | None = None
    reader_name: str | None = None

Event = ReaderAttached | ReaderDetached | TagInserted | TagRemoved

@dataclass
class ReaderHandle:
    name: str
    transport: ApduTransport
    connected: bool = True
    # Held for the whole of a multi-page operation
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

@dataclass(frozen=True)
class TagPresence:
    uid: bytes
    atr: bytes | None
    derived_type: str
    reader_name: str
    detected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def as_dict(self) -> dict:
        return {
            "uid": self.uid.hex().upper(),
            "atr": self.atr.hex().upper() if self.atr else None,
            "type": self.derived_type,
            "reader": self.reader_name,
            "detected_at": self.detected_at.isoformat(),
        }

class SessionState(Enum):
    NO_HARDWARE_LIBRARY = "no_hardware_library"
    WAITING_FOR_READER = "waiting_for_reader"
    READER_CONNECTED = "reader_connected"
    TAG_PRESENT = "tag_present"

_STOP = object()

class SessionManager:
    capability: HardwareCapability
    apdu_timeout_sec: float
    default_tag_type: str

    def __init__(self, capability: HardwareCapability, apdu_timeout_sec: float = DEFAULT_TIMEOUT_SEC,
                 default_tag_type: str = DEFAULT_TAG_TYPE, queue_size: int = 64):
        self.capability = capability
        self.apdu_timeout_sec = apdu_timeout_sec
        self.default_tag_type = default_tag_type
        self._lock = threading.RLock()
        self._readers: dict[str, ReaderHandle] = {}
        self._tag: TagPresence | None = None
        self._tag_present = threading.Event()
        self._events: queue.Queue = queue.Queue(maxsize=queue_size)
        self._worker: threading.Thread | None = None
        self._listeners: list[Callable[[Event], Any]] = []

    @property
    def state(self) -> SessionState:
        with self._lock:
            if not self.capability.available:
                return SessionState.NO_HARDWARE_LIBRARY
            if not self._readers:
                return SessionState.WAITING_FOR_READER
            if self._tag is None:
                return SessionState.READER_CONNECTED
            return SessionState.TAG_PRESENT

    def is_simulated(self) -> bool:
        return self.state != SessionState.TAG_PRESENT

    @property
    def current_tag(self) -> TagPresence | None:
        with self._lock:
            return self._tag

    def readers(self) -> list[ReaderHandle]:
        with self._lock:
            return list(self._readers.values())

    def get_reader(self, name: str | None = None) -> ReaderHandle | None:
        """
        Returns the named reader, or the reader holding the current tag (first registered reader otherwise).
        Naming a reader that is not registered raises NoReaderPresent.
        """
        with self._lock:
            if name is not None:
                if name not in self._readers:
                    raise NoReaderPresent(f"No reader named {name!r}")
                return self._readers[name]
            if self._tag is not None and self._tag.reader_name in self._readers:
                return self._readers[self._tag.reader_name]
            return next(iter(self._readers.values()), None)

    def add_listener(self, listener: Callable[[Event], Any]):
        self._listeners.append(listener)

    def post(self, event: Event, timeout_sec: float | None = None):
        """
        Queues an event. Safe to call from any thread, blocks while the queue is full.
        """
        self._events.put(event, timeout=timeout_sec)

    def start(self):
        if self._worker is not None:
            return
        self._worker = threading.Thread(target=self._run, name="nfc-session", daemon=True)
        self._worker.start()

    def stop(self, timeout_sec: float = 5.0):
        if self._worker is None:
            return
        self._events.put(_STOP)
        self._worker.join(timeout_sec)
        self._worker = None

    def close(self):
        self.stop()
        with self._lock:
            for handle in self._readers.values():
                handle.transport.close()
            self._readers.clear()
            self._tag = None
            self._tag_present.clear()

    def _run(self):
        while True:
            event = self._events.get()
            if event is _STOP:
                return
            self._apply_safely(event)

    def _apply_safely(self, event: Event):
        try:
            self.apply(event)
        except Exception:
            logger.exception("Failed to apply %r", event)

    def process_pending(self) -> int:
        """
        Applies queued events on the calling thread. For use when the worker is not started.
        """
        count = 0
        while True:
            try:
                event = self._events.get_nowait()
            except queue.Empty:
                return count
            if event is _STOP:
                continue
            self._apply_safely(event)
            count += 1

    def wait_for_tag(self, timeout_sec: float) -> TagPresence | None:
        if not self._tag_present.wait(timeout_sec):
            return None
        return self.current_tag

    def apply(self, event: Event):
        with self._lock:
            applied = self._transition(event)
        if not applied:
            return
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Session listener failed on %r", event)

    def _transition(self, event: Event) -> bool:
        if not self.capability.available:
            logger.debug("Ignoring %r, no PC/SC support", event)
            return False

        match event:
            case ReaderAttached(name=name, link=link):
                previous = self._readers.pop(name, None)
                if previous is not None:
                    previous.transport.close()
                self._readers[name] = ReaderHandle(name, ApduTransport(link, self.apdu_timeout_sec, name))
                logger.info("NFC reader attached: %s", name)
            case ReaderDetached(name=name):
                handle = self._readers.pop(name, None)
                if handle is None:
                    return False
                handle.connected = False
                handle.transport.close()
                if self._tag is not None and self._tag.reader_name == name:
                    self._set_tag(None)
                logger.info("NFC reader detached: %s", name)
            case TagInserted(uid=uid, atr=atr, reader_name=reader_name):
                if reader_name not in self._readers:
                    logger.warning("Tag %s reported by unknown reader %s", uid.hex(), reader_name)
                    return False
                if not uid:
                    logger.warning("Ignoring tag without UID on %s", reader_name)
                    return False
                derived_type = tag_type_from_atr(atr, self.default_tag_type)
                self._set_tag(TagPresence(bytes(uid), bytes(atr) if atr else None, derived_type, reader_name))
                logger.info("Tag detected on %s: %s (%s)", reader_name, uid.hex().upper(), derived_type)
            case TagRemoved(uid=uid, reader_name=reader_name):
                tag = self._tag
                if tag is None:
                    return False
                if reader_name is not None and reader_name != tag.reader_name:
                    return False
                if uid is not None and bytes(uid) != tag.uid:
                    return False
                self._set_tag(None)
                logger.info("Tag removed from %s: %s", tag.reader_name, tag.uid.hex().upper())
            case _:
                raise TypeError(f"Unknown session event: {event!r}")
        return True

    def _set_tag(self, tag: TagPresence | None):
        self._tag = tag
        if tag is None:
            self._tag_present.clear()
        else:
            self._tag_present.set()
