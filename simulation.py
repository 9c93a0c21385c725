"""
Results returned when no reader or no tag is available. Nothing here touches hardware.
"""
import logging
import os

from tag import TagGeometry

logger = logging.getLogger(__name__)

SIMULATED_READER_NAME = "NFC Reader (simulated)"
SIMULATED_PAYLOAD = {"message": "Simulation mode - no real tag data"}

def simulated_uid(tag: TagGeometry) -> bytes:
    """
    A UID with the manufacturer prefix of the family, random otherwise. New value on every call.
    """
    return bytes([tag.manufacturer_id]) + os.urandom(tag.uid_length_bytes - 1)

def simulated_reader() -> dict:
    return {"name": SIMULATED_READER_NAME, "connected": False, "simulated": True}

def simulated_read(tag: TagGeometry, tag_type: str) -> dict:
    return {
        "uid": simulated_uid(tag).hex().upper(),
        "tag_type": tag_type,
        "capacity_bytes": tag.usable_memory_bytes,
        "decoded_payload": dict(SIMULATED_PAYLOAD),
    }

def simulated_write(tag: TagGeometry, tag_type: str, encoded: bytes) -> dict:
    bytes_written = len(encoded)
    logger.info("[SIMULATED] Encoding %d bytes on a %s", bytes_written, tag.family)
    return {
        "uid": simulated_uid(tag).hex().upper(),
        "tag_type": tag_type,
        "bytes_written": bytes_written,
        "capacity_remaining": tag.usable_memory_bytes - bytes_written,
    }

def simulated_format(tag: TagGeometry) -> dict:
    logger.info("[SIMULATED] Formatting a %s", tag.family)
    return {"message": f"{tag.family} formatting simulated"}
