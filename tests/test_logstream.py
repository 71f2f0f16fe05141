import pytest

from enginectl.errors import ProtocolError
from enginectl.logstream import LogStreamDecoder, LogRing, decode
from enginectl.model import LogLine


def frame(stream, payload):
    return bytes([stream, 0, 0, 0]) + len(payload).to_bytes(4, 'big') + payload


# 01 00 00 00 00 00 00 05 "hello" 02 00 00 00 00 00 00 03 "bye"
TWO_FRAMES = frame(1, b"hello") + frame(2, b"bye")


def test_two_frame_body():
    lines = decode(TWO_FRAMES)
    assert [l.as_tuple() for l in lines] == [("stdout", "hello"), ("stderr", "bye")]


def test_exact_wire_bytes():
    raw = bytes.fromhex("0100000000000005") + b"hello" + bytes.fromhex("0200000000000003") + b"bye"
    assert raw == TWO_FRAMES
    assert decode(raw) == [LogLine("stdout", "hello"), LogLine("stderr", "bye")]


@pytest.mark.parametrize("size", [1, 2, 3, 7, 8, 9, 13, 100])
def test_chunk_boundaries_do_not_change_output(size):
    chunks = [TWO_FRAMES[i:i + size] for i in range(0, len(TWO_FRAMES), size)]
    assert LogStreamDecoder().decode_all(chunks) == decode(TWO_FRAMES)


INTERLEAVED = [
    (1, b"server starting\nlistening on :80\n"),
    (2, b"warning: no config\n"),
    (1, b"GET / 200\n"),
    (2, b"error: upstream timeout\nretrying\n"),
    (2, b"retry ok\n"),
    (1, b"GET /health 200\nGET /metrics 200\n"),
]
INTERLEAVED_BODY = b"".join(frame(s, p) for s, p in INTERLEAVED)
INTERLEAVED_LINES = [
    ("stdout", "server starting"), ("stdout", "listening on :80"),
    ("stderr", "warning: no config"),
    ("stdout", "GET / 200"),
    ("stderr", "error: upstream timeout"), ("stderr", "retrying"),
    ("stderr", "retry ok"),
    ("stdout", "GET /health 200"), ("stdout", "GET /metrics 200"),
]


def test_interleaved_frames_keep_wire_order():
    assert [l.as_tuple() for l in decode(INTERLEAVED_BODY)] == INTERLEAVED_LINES


@pytest.mark.parametrize("size", range(1, 40))
def test_interleaved_frames_any_chunking(size):
    # Small sizes cut headers and multi-line payloads mid-line
    chunks = [INTERLEAVED_BODY[i:i + size] for i in range(0, len(INTERLEAVED_BODY), size)]
    lines = LogStreamDecoder().decode_all(chunks)
    assert [l.as_tuple() for l in lines] == INTERLEAVED_LINES


def test_interleaved_frames_uneven_chunks():
    cuts = [3, 11, 12, 30, 31, 55, 90, len(INTERLEAVED_BODY)]
    chunks, start = [], 0
    for end in cuts:
        chunks.append(INTERLEAVED_BODY[start:end])
        start = end
    dec = LogStreamDecoder()
    lines = []
    for chunk in chunks:
        lines.extend(dec.feed(chunk))
    assert [l.as_tuple() for l in lines] == INTERLEAVED_LINES
    assert dec.pending == 0


def test_incomplete_frame_is_buffered():
    dec = LogStreamDecoder()
    assert list(dec.feed(TWO_FRAMES[:10])) == []
    assert dec.pending == 10

    lines = list(dec.feed(TWO_FRAMES[10:]))
    assert [l.text for l in lines] == ["hello", "bye"]
    assert dec.pending == 0


def test_incomplete_header_is_buffered():
    dec = LogStreamDecoder()
    assert list(dec.feed(b"\x01\x00\x00")) == []
    assert dec.pending == 3


def test_payload_split_into_lines():
    lines = decode(frame(1, b"first\nsecond\r\n\nthird\n"))
    assert [l.text for l in lines] == ["first", "second", "third"]
    assert all(l.stream == "stdout" for l in lines)


def test_empty_payload_yields_nothing():
    assert decode(frame(2, b"")) == []


def test_invalid_utf8_is_replaced():
    lines = decode(frame(1, b"\xffok"))
    assert lines[0].text == "�ok"


def test_unknown_stream_byte_is_protocol_error():
    dec = LogStreamDecoder()
    with pytest.raises(ProtocolError):
        list(dec.feed(frame(3, b"oops")))
    assert dec.failed


def test_decoder_stays_failed():
    dec = LogStreamDecoder()
    with pytest.raises(ProtocolError):
        list(dec.feed(frame(0, b"stdin?")))
    # A valid frame afterwards does not resynchronize the stream
    with pytest.raises(ProtocolError):
        list(dec.feed(frame(1, b"hello")))


def test_lines_before_bad_frame_are_emitted():
    dec = LogStreamDecoder()
    it = dec.feed(frame(1, b"good") + frame(9, b"bad"))
    assert next(it) == LogLine("stdout", "good")
    with pytest.raises(ProtocolError):
        next(it)


def test_ring_keeps_newest_lines():
    ring = LogRing(max_lines=2)
    ring.extend([LogLine("stdout", "a"), LogLine("stdout", "b"), LogLine("stderr", "c")])
    assert len(ring) == 2
    assert ring.texts() == ["b", "c"]

    ring.clear()
    assert ring.lines() == []
