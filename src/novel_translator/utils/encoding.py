"""Encoding detection for imported text files."""

from typing import Optional

import chardet

# Tried in order when the detected encoding fails to decode
FALLBACK_ENCODINGS = ("utf-8", "gb18030", "big5", "shift_jis")


def detect_encoding(content: bytes) -> str:
    """Detect the encoding of raw file bytes.

    Args:
        content: Raw bytes content

    Returns:
        Encoding name, ``utf-8`` when detection is inconclusive
    """
    if content.startswith(b"\xef\xbb\xbf"):
        return "utf-8-sig"

    result = chardet.detect(content)
    encoding = result.get("encoding") or "utf-8"

    # GB18030 is a superset of both, and chardet often under-reports
    if encoding.lower() in ("gb2312", "gbk"):
        return "gb18030"
    if encoding.lower() == "ascii":
        return "utf-8"
    return encoding


def decode_content(content: bytes, encoding: Optional[str] = None) -> str:
    """Decode file bytes, detecting the encoding if not given.

    Args:
        content: Raw bytes content
        encoding: Optional explicit encoding, auto-detect if None

    Returns:
        Decoded text with Windows line endings normalized
    """
    if encoding is None:
        encoding = detect_encoding(content)

    for candidate in (encoding, *FALLBACK_ENCODINGS):
        try:
            text = content.decode(candidate)
            break
        except (UnicodeDecodeError, LookupError):
            continue
    else:
        text = content.decode("utf-8", errors="ignore")

    return text.replace("\r\n", "\n")
