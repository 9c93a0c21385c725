import json
import logging
from dataclasses import dataclass
from typing import Any, Final

import ndef

from errors import CapacityExceeded

logger = logging.getLogger(__name__)

NDEF_TLV_START: Final[int] = 0x03
NDEF_TLV_TERMINATOR: Final[int] = 0xFE
TLV_OVERHEAD: Final[int] = 3 # type + length + terminator
MAX_SHORT_TLV_LENGTH: Final[int] = 0xFF
DEFAULT_LANGUAGE: Final[str] = "fr"

# An NDEF TLV holding no record, followed by the terminator
EMPTY_NDEF_MESSAGE: Final[bytes] = bytes([NDEF_TLV_START, 0x00, NDEF_TLV_TERMINATOR])

@dataclass(frozen=True)
class NdefTextRecord:
    language_code: str
    payload_text: str
    encoded_bytes: bytes

def serialize_payload(payload: Any) -> str:
    if isinstance(payload, str):
        return payload
    return json.dumps(payload, ensure_ascii=False, separators=(",", ":"))

def build_record(payload_text: str, language_code: str = DEFAULT_LANGUAGE) -> NdefTextRecord:
    """
    Wraps a single NDEF Text record in an NDEF Message TLV:
    [0x03, record length, ...record, 0xFE]
    """
    if not 0 < len(language_code) < 64:
        raise ValueError(f"Language code must be 1 to 63 characters long, got {language_code!r}")
    record = ndef.TextRecord(text=payload_text, language=language_code, encoding="UTF-8")
    message = b"".join(ndef.message_encoder([record]))
    if len(message) > MAX_SHORT_TLV_LENGTH:
        raise CapacityExceeded(len(message), MAX_SHORT_TLV_LENGTH, "NDEF record")

    tlv_message = bytes([NDEF_TLV_START, len(message)]) + message + bytes([NDEF_TLV_TERMINATOR])
    return NdefTextRecord(language_code, payload_text, tlv_message)

def encode_text(payload_text: str, language_code: str = DEFAULT_LANGUAGE) -> bytes:
    return build_record(payload_text, language_code).encoded_bytes

def encode_payload(payload: Any, language_code: str = DEFAULT_LANGUAGE) -> bytes:
    """
    JSON-serializes the payload (strings are kept as they are) and encodes it as a Text record
    """
    return encode_text(serialize_payload(payload), language_code)

def _raw(data: bytes) -> dict:
    return {"raw": data.hex()}

def _as_utf8(message: bytes) -> bytes:
    """
    Clears the UTF-16 flag (bit 7 of the status byte) of a leading short Text record.
    Only the low six bits give the language length and the text is always read as UTF-8.
    """
    if len(message) < 4:
        return message
    header, type_length = message[0], message[1]
    if header & 0x07 != 0x01 or not header & 0x10 or type_length != 1: # well-known, short record
        return message
    has_id = bool(header & 0x08)
    type_offset = 4 if has_id else 3
    id_length = message[3] if has_id else 0
    status_offset = type_offset + type_length + id_length
    if message[type_offset : type_offset + 1] != b"T" or status_offset >= len(message):
        return message
    patched = bytearray(message)
    patched[status_offset] &= 0x7F
    return bytes(patched)

def decode(data: bytes) -> Any:
    """
    Decodes a page dump. Returns the parsed JSON of a Text record, {"text": ...} when the text is not JSON,
    and {"raw": <hex dump>} for anything else. Never raises.
    """
    data = bytes(data)
    try:
        offset = data.find(NDEF_TLV_START)
        if offset < 0:
            return _raw(data)

        record_length = data[offset + 1]
        record_start = offset + 2
        if record_start + record_length > len(data):
            logger.debug("NDEF TLV at byte %d announces %d bytes, only %d available", offset, record_length, len(data) - record_start)
            return _raw(data)

        message = _as_utf8(data[record_start : record_start + record_length])
        records = ndef.message_decoder(message, errors="relax")
        record = next(records, None)
        if not isinstance(record, ndef.TextRecord):
            return _raw(data)
        text = record.text
    except Exception as err:
        logger.debug("Could not decode NDEF message: %s", err)
        return _raw(data)

    try:
        return json.loads(text)
    except ValueError:
        return {"text": text}
