import pytest

from mieru.segment import (
    IKCP_OVERHEAD,
    IKCP_SN_OFFSET,
    IKCP_TOTAL_LEN_OFFSET,
    Command,
    NoEnoughDataError,
    Segment,
    command_to_str,
    metrics,
    timediff,
)


def test_command_names():
    assert command_to_str(Command.PUSH) == "PUSH"
    assert command_to_str(Command.ACK) == "ACK"
    assert command_to_str(Command.WASK) == "WINDOW_ASK"
    assert command_to_str(Command.WINS) == "WINDOW_SIZE"
    assert command_to_str(99) == "UNKNOWN"


def test_encode_wire_bytes():
    seg = Segment(conv=0x01020304, cmd=Command.PUSH, wnd=0x0506, data=b"")
    assert seg.encode() == bytes.fromhex(
        "04030201" "01" "00" "0605" "00000000" "00000000" "00000000" "0000" "0000"
    )


def test_encode_length():
    seg = Segment(conv=7, cmd=Command.ACK, data=b"abc")
    assert len(seg.encode()) == IKCP_OVERHEAD


def test_encode_decode_round_trip():
    seg = Segment(conv=42, cmd=Command.PUSH, frg=3, wnd=1024, ts=123456, sn=77, una=70, data=b"hello")
    header = seg.encode()
    decoded, dlen, tlen = Segment.decode_header(header + seg.data)
    assert (decoded.conv, decoded.cmd, decoded.frg, decoded.wnd) == (42, Command.PUSH, 3, 1024)
    assert (decoded.ts, decoded.sn, decoded.una) == (123456, 77, 70)
    assert dlen == len(seg.data)
    assert tlen == len(seg.data)


def test_header_offsets_match_fields():
    seg = Segment(conv=1, cmd=Command.PUSH, sn=0xAABBCCDD, data=b"xyz")
    header = seg.encode()
    assert int.from_bytes(header[IKCP_SN_OFFSET:IKCP_SN_OFFSET + 4], "little") == seg.sn
    total = int.from_bytes(header[IKCP_TOTAL_LEN_OFFSET:IKCP_TOTAL_LEN_OFFSET + 2], "little")
    assert total == len(seg.data)


def test_decode_short_data_raises():
    with pytest.raises(NoEnoughDataError):
        Segment.decode_header(b"\x00" * (IKCP_OVERHEAD - 1))


def test_encode_counts_out_segments():
    before = metrics.out_segs
    Segment(conv=1).encode()
    Segment(conv=2).encode()
    assert metrics.out_segs == before + 2
    assert metrics.snapshot()["out_segs"] == metrics.out_segs


def test_segment_str():
    text = str(Segment(conv=9, cmd=Command.WASK, data=b"abcd"))
    assert "conv=9" in text
    assert "cmd=WINDOW_ASK" in text
    assert "len=4" in text


def test_timediff_wraps_around():
    assert timediff(0, 0xFFFFFFFF) == 1
    assert timediff(0x80000000, 0) == -(2 ** 31)


@pytest.mark.parametrize("a,b", [(5, 3), (100, 100000), (0x7FFFFFF0, 0x10)])
def test_timediff_antisymmetric(a, b):
    assert timediff(a, b) == -timediff(b, a)
    assert timediff(a, a) == 0