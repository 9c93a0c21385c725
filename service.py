"""
The tag service handed to the rest of the application: one instance per process, created at startup.

Every public operation returns an OperationResult. Hardware errors are reported as success=False results,
and operations fall back to simulation whenever no tag can be reached.
"""
import logging
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable

from config import NfcSettings
from errors import CapacityExceeded, NfcError, NoReaderPresent
from ndef_text import EMPTY_NDEF_MESSAGE, decode, encode_payload
from reader import TagReader
from session import HardwareCapability, ReaderHandle, SessionManager, TagPresence, detect_hardware
from simulation import SIMULATED_READER_NAME, simulated_format, simulated_read, simulated_reader, simulated_write
from tag import TAG_GEOMETRIES, TagGeometry, geometry_for, supported_tag_types, tag_type_info

logger = logging.getLogger(__name__)

@dataclass
class OperationResult:
    success: bool
    simulated: bool = False
    uid: str | None = None
    tag_type: str | None = None
    capacity_bytes: int | None = None
    decoded_payload: Any = None
    bytes_written: int | None = None
    capacity_remaining: int | None = None
    message: str | None = None
    error_detail: str | None = None

    @classmethod
    def failure(cls, err: Exception | str) -> "OperationResult":
        return cls(success=False, error_detail=str(err))

    def as_dict(self) -> dict:
        result = {"success": self.success, "simulated": self.simulated}
        optional = {
            "uid": self.uid,
            "type": self.tag_type,
            "capacity_bytes": self.capacity_bytes,
            "decoded_payload": self.decoded_payload,
            "bytes_written": self.bytes_written,
            "capacity_remaining": self.capacity_remaining,
            "message": self.message,
            "error_detail": self.error_detail,
        }
        result.update({key: value for key, value in optional.items() if value is not None})
        return result

class NfcService:
    settings: NfcSettings
    tag: TagGeometry
    session: SessionManager

    def __init__(self, settings: NfcSettings | None = None, session: SessionManager | None = None):
        self.settings = settings or NfcSettings.from_env()
        self.tag = TAG_GEOMETRIES[self.settings.tag_type]
        if session is None:
            if self.settings.force_simulation:
                capability = HardwareCapability(False, "simulation forced by configuration")
            else:
                capability = detect_hardware()
            session = SessionManager(capability, self.settings.apdu_timeout_sec, self.settings.tag_type, self.settings.event_queue_size)
        self.session = session
        self._monitor = None
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="nfc-operation")
        self.started = False

    @property
    def capability(self) -> HardwareCapability:
        return self.session.capability

    def start(self):
        if self.started:
            return
        self.session.start()
        if self.capability.available:
            import pcsc
            self._monitor = pcsc.PcscMonitor(self.session)
            self._monitor.start()
        self.started = True
        logger.info("NFC service started (%s, %s)", self.tag.family, "live" if self.capability.available else "simulated")

    def close(self):
        if self._monitor is not None:
            self._monitor.stop()
            self._monitor = None
        self.session.close()
        self._executor.shutdown(wait=False, cancel_futures=True)
        self.started = False

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, *exc_info):
        self.close()

    def submit(self, operation: Callable[..., Any], *args, **kwargs) -> Future:
        """
        Runs an operation off the calling thread. Cancelling the future only discards the result:
        a write already sent to the tag is not undone.
        """
        return self._executor.submit(operation, *args, **kwargs)

    def begin_encoding(self, payload: Any) -> bytes:
        return encode_payload(payload, self.settings.language_code)

    def _live_target(self, reader_name: str | None) -> tuple[ReaderHandle, TagPresence] | None:
        """
        The reader and tag to operate on, or None when the operation has to be simulated
        """
        if reader_name == SIMULATED_READER_NAME and not self.session.readers():
            return None
        handle = self.session.get_reader(reader_name)
        tag = self.session.current_tag
        if handle is None or tag is None or not self.capability.available:
            return None
        if tag.reader_name != handle.name:
            raise NoReaderPresent(f"No tag present on reader {handle.name!r}")
        return handle, tag

    def _geometry(self, tag: TagPresence) -> TagGeometry:
        return geometry_for(tag.derived_type, self.settings.tag_type)

    def get_status(self) -> dict:
        tag = self.session.current_tag
        return {
            "available": self.capability.available,
            "connected": self.started and self.capability.available,
            "simulated": self.session.is_simulated(),
            "state": self.session.state.value,
            "reader_count": len(self.session.readers()),
            "tag_present": tag is not None,
            "current_tag": dict(tag.as_dict(), capacity_bytes=self._geometry(tag).usable_memory_bytes) if tag else None,
            "supported_type": self.tag.family,
            "capacity_bytes": self.tag.usable_memory_bytes,
        }

    def list_readers(self) -> list[dict]:
        readers = [{"name": handle.name, "connected": handle.connected, "simulated": False} for handle in self.session.readers()]
        if not readers:
            readers.append(simulated_reader())
        return readers

    def get_tag_type_info(self) -> dict:
        return tag_type_info(self.tag)

    def supported_tag_types(self) -> list[dict]:
        return supported_tag_types()

    def read_tag(self, reader_name: str | None = None) -> OperationResult:
        try:
            target = self._live_target(reader_name)
        except NoReaderPresent as err:
            return OperationResult.failure(err)
        if target is None:
            return OperationResult(success=True, simulated=True, **simulated_read(self.tag, self.settings.tag_type))

        handle, tag = target
        geometry = self._geometry(tag)
        with handle.lock:
            data = TagReader(handle.transport, geometry).read_ndef_area(self.settings.read_pages)
        logger.info("Read %d bytes from tag %s", len(data), tag.uid.hex().upper())
        return OperationResult(
            success=True,
            uid=tag.uid.hex().upper(),
            tag_type=tag.derived_type,
            capacity_bytes=geometry.usable_memory_bytes,
            decoded_payload=decode(data),
        )

    def write_tag(self, payload: Any, reader_name: str | None = None) -> OperationResult:
        try:
            encoded = self.begin_encoding(payload)
            target = self._live_target(reader_name)
            geometry = self._geometry(target[1]) if target else self.tag
            if len(encoded) > geometry.max_ndef_payload_bytes:
                raise CapacityExceeded(len(encoded), geometry.max_ndef_payload_bytes)
        except (NfcError, TypeError, ValueError) as err:
            logger.warning("Refusing to encode payload: %s", err)
            return OperationResult.failure(err)
        if target is None:
            return OperationResult(success=True, simulated=True, message="Encoding simulated", **simulated_write(geometry, self.settings.tag_type, encoded))

        handle, tag = target
        try:
            with handle.lock:
                TagReader(handle.transport, geometry).write_buffer(encoded)
        except NfcError as err:
            logger.error("Failed to encode tag %s: %s", tag.uid.hex().upper(), err)
            return OperationResult.failure(err)
        logger.info("Encoded %d bytes on tag %s", len(encoded), tag.uid.hex().upper())
        return OperationResult(
            success=True,
            uid=tag.uid.hex().upper(),
            tag_type=tag.derived_type,
            bytes_written=len(encoded),
            capacity_remaining=geometry.usable_memory_bytes - len(encoded),
        )

    def format_tag(self, reader_name: str | None = None) -> OperationResult:
        """
        Writes an empty NDEF message at the start of the data window
        """
        try:
            target = self._live_target(reader_name)
        except NoReaderPresent as err:
            return OperationResult.failure(err)
        if target is None:
            return OperationResult(success=True, simulated=True, **simulated_format(self.tag))

        handle, tag = target
        try:
            with handle.lock:
                TagReader(handle.transport, self._geometry(tag)).write_buffer(EMPTY_NDEF_MESSAGE)
        except NfcError as err:
            logger.error("Failed to format tag %s: %s", tag.uid.hex().upper(), err)
            return OperationResult.failure(err)
        logger.info("Tag %s formatted", tag.uid.hex().upper())
        return OperationResult(success=True, uid=tag.uid.hex().upper(), tag_type=tag.derived_type, message=f"{self._geometry(tag).family} formatted")

def encode_for_print_job(service: NfcService, payload: Any, reader_name: str | None = None) -> OperationResult:
    """
    Encodes the card of a print job. A failed encoding is logged and returned, the print goes on regardless.
    """
    try:
        result = service.write_tag(payload, reader_name)
    except Exception as err:
        logger.exception("NFC encoding crashed, printing without it")
        return OperationResult.failure(err)
    if not result.success:
        logger.warning("NFC encoding failed, printing without it: %s", result.error_detail)
    return result
