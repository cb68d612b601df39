"""
UTF-8 validation of label values with a charset fallback.

Text columns of a database created with a non-UTF-8 encoding may come back
malformed. Such labels are transcoded from a fallback charset when possible
and degrade to the empty string otherwise.
"""

from __future__ import annotations

import codecs

import structlog

logger = structlog.get_logger()

UTF8 = "UTF8"
UTF8_CODEC = "utf-8"
GBK = "GBK"
GB18030 = "GB18030"

# Database charset names to Python codec names. GB18030 is decoded with the GBK family.
CHARSET_MAP = {
    UTF8: UTF8_CODEC,
    "UTF-8": UTF8_CODEC,
    GBK: "gbk",
    GB18030: "gbk",
}


def map_charset(charset: str) -> str:
    """Map a database charset name onto a codec name; unknown names pass through."""
    return CHARSET_MAP.get(charset.strip().upper(), charset)


def is_valid_utf8(text: str) -> bool:
    try:
        text.encode(UTF8_CODEC)
    except UnicodeEncodeError:
        return False
    return True


def decode_bytes(raw: bytes, charset: str) -> str:
    """
    Decode raw bytes from ``charset``.

    Raises:
        LookupError: if the charset is unknown
        UnicodeDecodeError: if the bytes are not valid in that charset
    """
    codec = codecs.lookup(map_charset(charset))
    return codec.decode(raw)[0]


def validate_and_fix(
    text: str,
    check_required: bool,
    db_name: str,
    fallback_charset: str = GBK,
) -> str:
    """
    Return ``text`` as a well-formed UTF-8 label value.

    Args:
        text: Label value, possibly carrying surrogate-escaped raw bytes
        check_required: Whether the column asks for the UTF-8 check
        db_name: Database-name label of the row; empty when unknown
        fallback_charset: Charset assumed for malformed text

    Returns:
        The text unchanged when no check is required or it is already valid,
        the transcoded text, or "" when it cannot be repaired.
    """
    if not check_required or is_valid_utf8(text):
        return text

    if not db_name:
        return ""

    raw = text.encode(UTF8_CODEC, errors="surrogateescape")
    try:
        return decode_bytes(raw, fallback_charset)
    except (LookupError, UnicodeError) as e:
        logger.info("label_transcode_failed", db_name=db_name, charset=fallback_charset, error=str(e))
        return ""
