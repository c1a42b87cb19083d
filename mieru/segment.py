"""KCP segment wire format, commands, errors and counters."""

from __future__ import annotations

import struct
from dataclasses import asdict, dataclass, field
from datetime import timedelta
from enum import IntEnum

# Overall outer header size needed by data encryption: AEAD tag plus nonce.
OUTER_HEADER_SIZE = 16 + 12

# Maximum packet buffer size.
MAX_BUF_SIZE = 1500

# Maximum MTU of UDP packet. UDP overhead is 8 bytes, IP overhead is maximum 40 bytes.
MAX_MTU = MAX_BUF_SIZE - 48

IKCP_CMD_VER = 0
IKCP_CMD_MAX_VER = 7
IKCP_CMD_MAX_NUM = 15

IKCP_ASK_SEND = 1  # need to send a window ask
IKCP_ASK_TELL = 2  # need to send a window size

IKCP_WND_SND = 1024
IKCP_WND_RCV = 1024

IKCP_MTU_DEF = MAX_MTU - OUTER_HEADER_SIZE

IKCP_ACK_FAST = 3
IKCP_INTERVAL = 20
IKCP_OVERHEAD = 24
IKCP_DEADLINK = 20
IKCP_THRESH_MIN = 32
IKCP_PROBE_INIT = 5000
IKCP_PROBE_LIMIT = 120000
IKCP_SN_OFFSET = 12
IKCP_TOTAL_LEN_OFFSET = 22

_HEADER = struct.Struct("<IBBHIIIHH")


class Command(IntEnum):
    """KCP commands."""

    PUSH = 1 + (IKCP_CMD_VER << 5)
    ACK = 2 + (IKCP_CMD_VER << 5)
    WASK = 3 + (IKCP_CMD_VER << 5)
    WINS = 4 + (IKCP_CMD_VER << 5)


_COMMAND_NAMES = {
    Command.PUSH: "PUSH",
    Command.ACK: "ACK",
    Command.WASK: "WINDOW_ASK",
    Command.WINS: "WINDOW_SIZE",
}


def command_to_str(cmd: int) -> str:
    """Return the display name of a KCP command."""
    return _COMMAND_NAMES.get(cmd, "UNKNOWN")


def timediff(later: int, earlier: int) -> int:
    """Return the difference of two 32-bit unsigned values as a signed 32-bit int."""
    diff = (later - earlier) & 0xFFFFFFFF
    return diff - 0x100000000 if diff >= 0x80000000 else diff


class KCPError(Exception):
    """Base class of KCP errors."""


class NoEnoughDataError(KCPError):
    """Not enough data is available."""


class IDNotMatchError(KCPError):
    """The conversation ID does not match."""


class OutOfRangeError(KCPError):
    """A size or index is out of range."""


class UnknownCommandError(KCPError):
    """A KCP command is not recognised."""


class InvalidArgumentError(KCPError):
    """An argument is invalid."""


@dataclass
class KCPMetrics:
    """Counters of KCP traffic."""

    bytes_sent: int = 0
    bytes_received: int = 0
    in_segs: int = 0
    out_segs: int = 0
    repeat_segs: int = 0
    lost_segs: int = 0
    out_of_window_segs: int = 0
    fast_retrans_segs: int = 0
    early_retrans_segs: int = 0
    retrans_segs: int = 0
    out_padding_bytes: int = 0

    def snapshot(self) -> dict[str, int]:
        """Return the current counter values."""
        return asdict(self)


metrics = KCPMetrics()


@dataclass
class Segment:
    """A KCP segment: header fields, retransmission state and payload."""

    conv: int = 0
    cmd: int = 0
    frg: int = 0
    wnd: int = 0
    ts: int = 0
    sn: int = 0
    una: int = 0

    rto: timedelta = field(default_factory=timedelta)
    xmit: int = 0
    resend_ts: int = 0
    fast_ack: int = 0
    acked: bool = False
    data: bytes = b""

    def __str__(self) -> str:
        return (
            f"{{conv={self.conv}, cmd={command_to_str(self.cmd)}, frg={self.frg}, "
            f"wnd={self.wnd}, ts={self.ts}, sn={self.sn}, una={self.una}, "
            f"len={len(self.data)}}}"
        )

    def encode(self) -> bytes:
        """Return the segment header; total length equals data length until padded."""
        size = len(self.data)
        header = _HEADER.pack(
            self.conv, self.cmd, self.frg, self.wnd,
            self.ts, self.sn, self.una, size, size,
        )
        metrics.out_segs += 1
        return header

    @classmethod
    def decode_header(cls, data: bytes) -> tuple["Segment", int, int]:
        """Parse a header; return the segment, data length and total length."""
        if len(data) < IKCP_OVERHEAD:
            raise NoEnoughDataError(
                f"data size {len(data)} is smaller than KCP header size {IKCP_OVERHEAD}"
            )
        conv, cmd, frg, wnd, ts, sn, una, dlen, tlen = _HEADER.unpack_from(data)
        seg = cls(conv=conv, cmd=cmd, frg=frg, wnd=wnd, ts=ts, sn=sn, una=una)
        return seg, dlen, tlen