from dataclasses import dataclass
from typing import Final

@dataclass(frozen=True)
class TagGeometry:
    family: str
    manufacturer: str
    manufacturer_id: int # First byte of every UID issued by this manufacturer
    total_memory_bytes: int
    usable_memory_bytes: int
    total_pages: int
    user_pages: int
    uid_length_bytes: int
    first_data_page: int
    last_data_page: int
    config_page: int
    password_page: int
    max_ndef_payload_bytes: int
    page_size_bytes: int = 4
    compatibility_standards: tuple[str, ...] = ("ISO/IEC 14443-3A", "NFC Forum Type 2 Tag")

    def __post_init__(self):
        if self.max_ndef_payload_bytes > self.usable_memory_bytes:
            raise ValueError(f"{self.family}: max NDEF payload ({self.max_ndef_payload_bytes}) exceeds usable memory ({self.usable_memory_bytes})")
        if self.data_window_bytes < self.max_ndef_payload_bytes:
            raise ValueError(f"{self.family}: data pages {self.first_data_page}-{self.last_data_page} cannot hold {self.max_ndef_payload_bytes} bytes")

    @property
    def data_pages(self) -> int:
        return self.last_data_page - self.first_data_page + 1

    @property
    def data_window_bytes(self) -> int:
        return self.data_pages * self.page_size_bytes

# The values comes from: https://www.nxp.com/docs/en/data-sheet/NTAG213_215_216.pdf
NTAG213: Final[TagGeometry] = TagGeometry(
    family="NTAG 213",
    manufacturer="NXP Semiconductors",
    manufacturer_id=0x04,
    total_memory_bytes=180,
    usable_memory_bytes=144,
    total_pages=45,
    user_pages=36,
    uid_length_bytes=7,
    first_data_page=4,
    last_data_page=39,
    config_page=41,
    password_page=43,
    max_ndef_payload_bytes=124,
)

NTAG215: Final[TagGeometry] = TagGeometry(
    family="NTAG 215",
    manufacturer="NXP Semiconductors",
    manufacturer_id=0x04,
    total_memory_bytes=540,
    usable_memory_bytes=504,
    total_pages=135,
    user_pages=126,
    uid_length_bytes=7,
    first_data_page=4,
    last_data_page=129,
    config_page=131,
    password_page=133,
    max_ndef_payload_bytes=484,
)

NTAG216: Final[TagGeometry] = TagGeometry(
    family="NTAG 216",
    manufacturer="NXP Semiconductors",
    manufacturer_id=0x04,
    total_memory_bytes=924,
    usable_memory_bytes=888,
    total_pages=231,
    user_pages=222,
    uid_length_bytes=7,
    first_data_page=4,
    last_data_page=225,
    config_page=227,
    password_page=229,
    max_ndef_payload_bytes=868,
)

TAG_GEOMETRIES: Final[dict[str, TagGeometry]] = {
    "NTAG213": NTAG213,
    "NTAG215": NTAG215,
    "NTAG216": NTAG216,
}

SUPPORTED_TAG_TYPES: Final[tuple[tuple[str, str], ...]] = (
    ("MIFARE_CLASSIC_1K", "MIFARE Classic 1K"),
    ("MIFARE_CLASSIC_4K", "MIFARE Classic 4K"),
    ("MIFARE_ULTRALIGHT", "MIFARE Ultralight"),
    ("MIFARE_DESFIRE", "MIFARE DESFire"),
    ("MIFARE_DESFIRE_EV1", "MIFARE DESFire EV1"),
    ("MIFARE_DESFIRE_EV2", "MIFARE DESFire EV2"),
    ("NTAG213", "NTAG213"),
    ("NTAG215", "NTAG215"),
    ("NTAG216", "NTAG216"),
    ("ISO14443A", "ISO 14443-A"),
    ("ISO14443B", "ISO 14443-B"),
    ("ISO15693", "ISO 15693"),
)

# Family assumed when the ATR does not identify the tag
DEFAULT_TAG_TYPE: Final[str] = "NTAG216"

# PC/SC ATR of an NTAG21x seen through an ACR122U
NTAG21X_ATR: Final[bytes] = bytes([59, 143, 128, 1, 128, 79, 12, 160, 0, 0, 3, 6, 3, 0, 3, 0, 0, 0, 0, 104])

# First match wins, so full ATRs go before the two-byte card name patterns.
ATR_PATTERNS: Final[tuple[tuple[bytes, str], ...]] = (
    (NTAG21X_ATR, DEFAULT_TAG_TYPE),
    (bytes([0x00, 0x44]), "NTAG216"),
    (bytes([0x00, 0x42]), "NTAG215"),
    (bytes([0x00, 0x3E]), "NTAG213"),
    (bytes([0x00, 0x01]), "MIFARE_CLASSIC_1K"),
    (bytes([0x00, 0x02]), "MIFARE_CLASSIC_4K"),
    (bytes([0x00, 0x03]), "MIFARE_ULTRALIGHT"),
    (bytes([0x00, 0x04]), "MIFARE_DESFIRE"),
)

def tag_type_from_atr(atr: bytes | None, default: str = DEFAULT_TAG_TYPE) -> str:
    if not atr:
        return default
    atr = bytes(atr)
    for pattern, tag_type in ATR_PATTERNS:
        if pattern in atr:
            return tag_type
    return default

def geometry_for(tag_type: str | None, default: str = DEFAULT_TAG_TYPE) -> TagGeometry:
    """
    Geometry of a tag type, or of the default family for tags outside the NTAG21x table
    """
    if tag_type in TAG_GEOMETRIES:
        return TAG_GEOMETRIES[tag_type]
    return TAG_GEOMETRIES[default]

def tag_type_info(geometry: TagGeometry) -> dict:
    return {
        "family": geometry.family,
        "manufacturer": geometry.manufacturer,
        "total_memory_bytes": geometry.total_memory_bytes,
        "usable_memory_bytes": geometry.usable_memory_bytes,
        "total_pages": geometry.total_pages,
        "uid_length_bytes": geometry.uid_length_bytes,
        "compatibility_standards": list(geometry.compatibility_standards),
    }

def supported_tag_types() -> list[dict]:
    """
    Card families a reader may report. Only the ones with a known geometry can be encoded.
    """
    return [
        {"id": tag_type, "name": name, "encodable": tag_type in TAG_GEOMETRIES}
        for tag_type, name in SUPPORTED_TAG_TYPES
    ]
