"""Small string helpers shared across the daemon."""

from __future__ import annotations

import logging

logger = logging.getLogger(__name__)

_HEX_DIGITS = frozenset("0123456789abcdefABCDEF")


def decode_udev_string(value: str | None) -> str | None:
    """Unescape udev-encoded ``\\xNN`` sequences and return valid UTF-8 text.

    A malformed escape stops decoding at that point. If the unescaped bytes are
    not valid UTF-8 the result is cut at the first invalid byte. ``None`` maps
    to ``None``.
    """
    if value is None:
        return None

    out = bytearray()
    n = 0
    while n < len(value):
        ch = value[n]
        if ch == "\\":
            digits = value[n + 2 : n + 4]
            if value[n + 1 : n + 2] != "x" or len(digits) != 2 or not set(digits) <= _HEX_DIGITS:
                logger.warning("Malformed encoded string `%s'", value)
                break
            out.append(int(digits, 16))
            n += 4
            continue
        out += ch.encode("utf-8")
        n += 1

    try:
        return out.decode("utf-8")
    except UnicodeDecodeError as e:
        logger.warning(
            "The string `%r' is not valid UTF-8; truncating at byte %d", bytes(out), e.start
        )
        return out[: e.start].decode("utf-8")


def _is_path_safe(byte: int) -> bool:
    return 0x30 <= byte <= 0x39 or 0x41 <= byte <= 0x5A or 0x61 <= byte <= 0x7A


def escape_object_path_element(value: str) -> str:
    """Escape ``value`` so it only uses ``[A-Za-z0-9_]``.

    Every UTF-8 byte outside ``[A-Za-z0-9]`` becomes ``_`` plus two lowercase
    hex digits, so ``"sda 1"`` turns into ``"sda_201"``.
    """
    return "".join(
        chr(b) if _is_path_safe(b) else f"_{b:02x}" for b in value.encode("utf-8")
    )


def safe_append_to_object_path(object_path: str, value: str) -> str:
    """Return ``object_path`` with the escaped form of ``value`` appended."""
    return object_path + escape_object_path_element(value)
