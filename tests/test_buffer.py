from __future__ import annotations

from nu_runtime.core.buffer import TRUNCATION_MARKER, BoundedLineBuffer, push_truncated, utf8_prefix

_MARKER_LEN = len(TRUNCATION_MARKER.encode("utf-8"))


def test_append_within_cap_is_verbatim() -> None:
    buf = BoundedLineBuffer(100)
    buf.append("hello\n")
    buf.append(b"world\n")

    assert buf.text() == "hello\nworld\n"
    assert buf.truncated is False
    assert len(buf) == 12


def test_append_exactly_cap_does_not_truncate() -> None:
    buf = BoundedLineBuffer(10)
    buf.append(b"x" * 10)

    assert buf.get_bytes() == b"x" * 10
    assert buf.truncated is False


def test_overflow_with_large_incoming_keeps_earlier_content_first() -> None:
    out = push_truncated(b"a" * 50, b"b" * 500, 200)

    # remaining = 200 - 100 = 100：先保留旧内容，再补新内容的开头
    assert out == b"a" * 50 + b"b" * 50 + TRUNCATION_MARKER.encode("utf-8")


def test_overflow_with_small_incoming_keeps_incoming_in_full() -> None:
    out = push_truncated(b"a" * 180, b"b" * 50, 200)

    assert out == b"a" * 50 + b"b" * 50 + TRUNCATION_MARKER.encode("utf-8")


def test_marker_appears_once_after_repeated_overflow() -> None:
    buf = BoundedLineBuffer(300)
    buf.append(b"a" * 250)
    buf.append(b"b" * 100)
    buf.append(b"c" * 150)

    text = buf.text()
    assert buf.truncated is True
    assert text.count(TRUNCATION_MARKER) == 1
    assert text.endswith(TRUNCATION_MARKER)
    assert text.startswith("a" * 50)
    assert "c" * 150 in text


def test_length_never_exceeds_cap_plus_marker() -> None:
    for cap in (0, 1, 50, 99, 100, 101, 257, 1000):
        buf = BoundedLineBuffer(cap)
        for i in range(60):
            buf.append(b"z" * ((i * 37) % 211 + 1) + b"\n")
            assert len(buf) <= cap + _MARKER_LEN


def test_truncation_does_not_split_utf8_characters() -> None:
    buf = BoundedLineBuffer(105)
    buf.append("é" * 60)

    text = buf.text()
    assert "�" not in text
    assert text == "éé" + TRUNCATION_MARKER


def test_utf8_prefix_backs_off_to_char_boundary() -> None:
    data = "a中b".encode("utf-8")  # 1 + 3 + 1 bytes

    assert utf8_prefix(data, 0) == b""
    assert utf8_prefix(data, 2) == b"a"
    assert utf8_prefix(data, 3) == b"a"
    assert utf8_prefix(data, 4) == "a中".encode("utf-8")
    assert utf8_prefix(data, 99) == data


def test_malformed_bytes_decode_with_replacement() -> None:
    buf = BoundedLineBuffer(100)
    buf.append(b"ok \xff\xfe\n")

    assert buf.text() == "ok ��\n"
