import logging
import os
from dataclasses import dataclass
from typing import Mapping

from apdu import DEFAULT_TIMEOUT_SEC
from ndef_text import DEFAULT_LANGUAGE
from tag import DEFAULT_TAG_TYPE, TAG_GEOMETRIES

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off", ""}

def _flag(value: str, name: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ValueError(f"{name} must be a boolean, got {value!r}")

@dataclass(frozen=True)
class NfcSettings:
    tag_type: str = DEFAULT_TAG_TYPE
    language_code: str = DEFAULT_LANGUAGE
    apdu_timeout_sec: float = DEFAULT_TIMEOUT_SEC
    read_pages: int = 20
    force_simulation: bool = False
    event_queue_size: int = 64
    log_level: str = "INFO"

    def __post_init__(self):
        if self.tag_type not in TAG_GEOMETRIES:
            raise ValueError(f"Unsupported tag type {self.tag_type!r}, expected one of {', '.join(TAG_GEOMETRIES)}")
        if self.apdu_timeout_sec <= 0:
            raise ValueError("The APDU timeout must be positive")
        if self.read_pages < 1:
            raise ValueError("At least one page must be read")
        if self.event_queue_size < 1:
            raise ValueError("The event queue needs room for one event")
        if not isinstance(logging.getLevelName(self.log_level.upper()), int):
            raise ValueError(f"Unknown log level {self.log_level!r}")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "NfcSettings":
        """
        NFC_TAG_TYPE, NFC_LANGUAGE, NFC_APDU_TIMEOUT, NFC_READ_PAGES, NFC_SIMULATE, NFC_EVENT_QUEUE_SIZE and LOG_LEVEL,
        falling back to the defaults
        """
        env = os.environ if environ is None else environ
        defaults = cls()
        return cls(
            tag_type=env.get("NFC_TAG_TYPE", defaults.tag_type).strip().upper(),
            language_code=env.get("NFC_LANGUAGE", defaults.language_code).strip(),
            apdu_timeout_sec=float(env.get("NFC_APDU_TIMEOUT", defaults.apdu_timeout_sec)),
            read_pages=int(env.get("NFC_READ_PAGES", defaults.read_pages)),
            force_simulation=_flag(env.get("NFC_SIMULATE", ""), "NFC_SIMULATE"),
            event_queue_size=int(env.get("NFC_EVENT_QUEUE_SIZE", defaults.event_queue_size)),
            log_level=env.get("LOG_LEVEL", defaults.log_level).strip().upper(),
        )

def configure_logging(level: str = "INFO"):
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)
