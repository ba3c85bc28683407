import base64
import re
from typing import Optional

_HEX_HASH = re.compile(r"^[0-9a-fA-F]{40}$")
_BASE32_HASH = re.compile(r"^[A-Za-z2-7]{32}$")
_SIZE = re.compile(r"([\d.,]+)\s*([KMGT]i?B)", re.IGNORECASE)

_UNITS = {"K": 1024, "M": 1024 ** 2, "G": 1024 ** 3, "T": 1024 ** 4}

# Higher is better
_QUALITY_RANKS = {"4K": 4, "1080p": 3, "720p": 2, "480p": 1}


class VideoParser:
    @staticmethod
    def get_quality(filename: str) -> str:
        filename = filename.lower()
        if any(x in filename for x in ["2160p", "4k", "uhd"]):
            return "4K"
        if "1080p" in filename:
            return "1080p"
        if "720p" in filename:
            return "720p"
        if "480p" in filename:
            return "480p"
        return "Unknown"

    @staticmethod
    def quality_rank(quality: str) -> int:
        return _QUALITY_RANKS.get(quality, 0)

    @staticmethod
    def parse_size(text: str) -> int:
        """
        Parses the first human readable size in `text` ("💾 2.1 GB", "700 MiB") into bytes.
        Returns 0 when there is none.
        """
        match = _SIZE.search(text or "")
        if not match:
            return 0
        try:
            number = float(match.group(1).replace(",", ""))
        except ValueError:
            return 0
        return int(number * _UNITS[match.group(2)[0].upper()])

    @staticmethod
    def format_size(size_bytes: int) -> str:
        if size_bytes <= 0:
            return "? GB"
        gb_size = size_bytes / (1024 * 1024 * 1024)
        if gb_size >= 1:
            return f"{gb_size:.2f} GB"
        return f"{size_bytes / (1024 * 1024):.0f} MB"

    @staticmethod
    def normalize_info_hash(value: str) -> Optional[str]:
        """
        Returns the lowercase 40 char hex form of a v1 info-hash, converting from
        the 32 char base32 form some indexers use. None if it's neither.
        """
        value = (value or "").strip()
        if _HEX_HASH.match(value):
            return value.lower()
        if _BASE32_HASH.match(value):
            return base64.b32decode(value.upper()).hex()
        return None
