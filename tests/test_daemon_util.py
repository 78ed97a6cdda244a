"""Tests for the udev string decoder and object path escaping."""

from __future__ import annotations

import logging

from diskd.daemon_util import (
    decode_udev_string,
    escape_object_path_element,
    safe_append_to_object_path,
)


class TestDecodeUdevString:
    def test_none_maps_to_none(self) -> None:
        assert decode_udev_string(None) is None

    def test_plain_text_is_unchanged(self) -> None:
        assert decode_udev_string("WDC WD10EZEX") == "WDC WD10EZEX"

    def test_hex_escapes_are_decoded(self) -> None:
        assert decode_udev_string(r"My\x20Disk") == "My Disk"
        assert decode_udev_string(r"caf\xc3\xa9") == "café"

    def test_malformed_escape_stops_decoding(self, caplog) -> None:
        with caplog.at_level(logging.WARNING, logger="diskd.daemon_util"):
            assert decode_udev_string(r"abc\x4") == "abc"
            assert decode_udev_string(r"abc\q12def") == "abc"
        assert len(caplog.records) == 2

    def test_invalid_utf8_is_truncated(self, caplog) -> None:
        with caplog.at_level(logging.WARNING, logger="diskd.daemon_util"):
            assert decode_udev_string(r"ok\xffrest") == "ok"
        assert any("not valid UTF-8" in r.getMessage() for r in caplog.records)


class TestObjectPathEscaping:
    def test_alnum_is_kept(self) -> None:
        assert escape_object_path_element("sda1") == "sda1"

    def test_other_bytes_are_hex_escaped(self) -> None:
        assert escape_object_path_element("sda 1") == "sda_201"
        assert escape_object_path_element("dm-0") == "dm_2d0"
        assert escape_object_path_element("a_b") == "a_5fb"

    def test_non_ascii_is_escaped_per_utf8_byte(self) -> None:
        assert escape_object_path_element("é") == "_c3_a9"

    def test_safe_append(self) -> None:
        base = "/org/freedesktop/UDisks2/block_devices/"
        assert safe_append_to_object_path(base, "sr0") == base + "sr0"
        assert safe_append_to_object_path(base, "loop0p1 x") == base + "loop0p1_20x"
