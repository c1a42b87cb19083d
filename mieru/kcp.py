"""The KCP reliable transport state machine."""

from __future__ import annotations

import os
import random
import time
from datetime import timedelta
from typing import Callable

from mieru.rtt import RTTStats
from mieru.segment import (
    IKCP_ACK_FAST,
    IKCP_ASK_SEND,
    IKCP_ASK_TELL,
    IKCP_DEADLINK,
    IKCP_INTERVAL,
    IKCP_MTU_DEF,
    IKCP_OVERHEAD,
    IKCP_PROBE_INIT,
    IKCP_PROBE_LIMIT,
    IKCP_THRESH_MIN,
    IKCP_TOTAL_LEN_OFFSET,
    IKCP_WND_RCV,
    IKCP_WND_SND,
    MAX_BUF_SIZE,
    Command,
    IDNotMatchError,
    InvalidArgumentError,
    NoEnoughDataError,
    OutOfRangeError,
    Segment,
    UnknownCommandError,
    command_to_str,
    metrics,
    timediff,
)

_U32 = 0xFFFFFFFF
_MS = timedelta(milliseconds=1)
_KNOWN_COMMANDS = frozenset(int(c) for c in Command)

# Monotonic reference point for KCP timestamps.
_REF_TIME = time.monotonic()

# Maximum size of padding added to a single KCP packet, fixed per process.
MAX_PADDING_SIZE = 256 + random.randrange(256)

OutputCallback = Callable[[bytes], None]


def _current_ms() -> int:
    """Return elapsed monotonic milliseconds since startup, as a 32-bit value."""
    return int((time.monotonic() - _REF_TIME) * 1000) & _U32


class KCP:
    """A single KCP connection.

    ``output`` is called with each packet that must be sent on the wire.
    Callers must serialise access to one instance themselves.
    """

    def __init__(self, conv: int, output: OutputCallback) -> None:
        self.conv = conv
        self.mtu = IKCP_MTU_DEF
        self.mss = self.mtu - IKCP_OVERHEAD
        self.stream_mode = False
        self.disconnected = False

        self.send_una = 0
        self.send_next = 0
        self.recv_next = 0
        self.ssthresh = IKCP_THRESH_MIN
        self.send_window = IKCP_WND_SND
        self.recv_window = IKCP_WND_RCV
        self.remote_window = IKCP_WND_RCV
        self.congestion_window = 0
        self.incr_window_size = 0
        self.probe = 0
        self.fast_resend = IKCP_ACK_FAST
        self.no_congestion_window = False
        self.rtt_stats = RTTStats()
        self.rtt_stats.max_ack_delay = 10 * IKCP_INTERVAL * _MS

        self.interval = IKCP_INTERVAL
        self.ts_probe = 0
        self.probe_wait = 0
        self.dead_link = IKCP_DEADLINK

        self.last_input_time: float | None = None
        self.last_output_time: float | None = None

        self.send_queue: list[Segment] = []
        self.recv_queue: list[Segment] = []
        self.send_buf: list[Segment] = []
        self.recv_buf: list[Segment] = []
        self.ack_list: list[tuple[int, int]] = []

        self.reserved = 0
        self._buffer = bytearray(self.mtu)
        self._output = output

    # ---- public API ----

    def reserve_bytes(self, n: int) -> bool:
        """Keep ``n`` bytes untouched at the start of each packet.

        Returns False if ``n`` is negative or does not leave room for data.
        """
        if n >= self.mtu - IKCP_OVERHEAD or n < 0:
            return False
        self.reserved = n
        self.mss = self.mtu - IKCP_OVERHEAD - n
        return True

    def input(self, data: bytes, ack_no_delay: bool = False) -> None:
        """Feed a packet received from the underlying transport."""
        original_send_una = self.send_una
        if len(data) < IKCP_OVERHEAD:
            raise NoEnoughDataError(
                f"data size {len(data)} is smaller than KCP header size {IKCP_OVERHEAD}"
            )

        window_changed = False
        has_ack = False
        ack_latest_ts = 0
        in_segs = 0
        offset = 0

        # A single packet may hold several segments.
        while len(data) - offset >= IKCP_OVERHEAD:
            header, dlen, tlen = Segment.decode_header(data[offset:offset + IKCP_OVERHEAD])
            offset += IKCP_OVERHEAD
            if header.conv != self.conv:
                raise IDNotMatchError(
                    f"expect KCP conversation ID {self.conv}, got {header.conv}"
                )
            remaining = len(data) - offset
            if remaining < tlen:
                raise OutOfRangeError(
                    f"data size {remaining} is smaller than KCP length {tlen}"
                )
            if header.cmd not in _KNOWN_COMMANDS:
                raise UnknownCommandError(
                    f"KCP command {command_to_str(header.cmd)} can't be recognized"
                )

            self.last_input_time = time.monotonic()
            self.remote_window = header.wnd

            if self._remove_acked_from_send_buf(header.una) > 0:
                window_changed = True
            self._adjust_send_una()

            if header.cmd == Command.ACK:
                has_ack = True
                ack_latest_ts = header.ts
                self._process_ack(header.sn)
                self._process_fast_ack(header.sn, header.ts)
            elif header.cmd == Command.PUSH:
                sn = header.sn
                if timediff(sn, (self.recv_next + self.recv_window) & _U32) < 0:
                    # Acknowledge even segments already received.
                    self.ack_list.append((sn, header.ts))
                    if timediff(sn, self.recv_next) >= 0:
                        header.data = bytes(data[offset:offset + dlen])
                        if self._process_received_data(header):
                            metrics.repeat_segs += 1
                    else:
                        metrics.out_of_window_segs += 1
                else:
                    metrics.out_of_window_segs += 1
            elif header.cmd == Command.WASK:
                self.probe |= IKCP_ASK_TELL
            # WINS needs nothing: the remote window was updated above.

            in_segs += 1
            offset += tlen
        metrics.in_segs += in_segs

        if has_ack:
            elapsed = timediff(_current_ms(), ack_latest_ts)
            if elapsed >= 0:
                self.rtt_stats.update_rtt(elapsed * _MS)

        if not self.no_congestion_window:
            self._grow_congestion_window(original_send_una)

        if window_changed:
            self.output(False)
        elif ack_no_delay and self.ack_list:
            self.output(True)

    def send(self, buffer: bytes) -> None:
        """Queue data from the upper layer for sending."""
        if not buffer:
            raise InvalidArgumentError("data to send is empty")
        if len(buffer) > 65535:
            raise OutOfRangeError("data to send is too big, maximum 65535 bytes")
        buffer = bytes(buffer)

        if self.stream_mode:
            if self.send_queue:
                last = self.send_queue[-1]
                if len(last.data) < self.mss:
                    extend = min(self.mss - len(last.data), len(buffer))
                    last.data = last.data + buffer[:extend]
                    buffer = buffer[extend:]
            if not buffer:
                return

        nfrg = max(1, -(-len(buffer) // self.mss))
        if nfrg > 255:
            raise OutOfRangeError("data to send is too big, can't fit into 255 segments")

        for i in range(nfrg):
            chunk = buffer[:self.mss]
            buffer = buffer[self.mss:]
            frg = 0 if self.stream_mode else nfrg - i - 1
            self.send_queue.append(Segment(frg=frg, data=chunk))

    def send_heartbeat(self) -> None:
        """Ask the remote for its window size, which refreshes its input time."""
        self.probe |= IKCP_ASK_SEND

    def recv(self, max_size: int = MAX_BUF_SIZE) -> bytes:
        """Return the next complete message from the receive queue."""
        peek = self.peek_size()
        if peek < 0:
            raise NoEnoughDataError("no complete message is available")
        if peek > max_size:
            raise OutOfRangeError(f"message size {peek} is larger than {max_size}")

        fast_recover = len(self.recv_queue) >= self.recv_window

        chunks = []
        count = 0
        for seg in self.recv_queue:
            chunks.append(seg.data)
            count += 1
            if seg.frg == 0:
                break
        del self.recv_queue[:count]

        self._move_recv_buf_to_queue()

        if len(self.recv_queue) < self.recv_window and fast_recover:
            # Tell the remote that our window has space again.
            self.probe |= IKCP_ASK_TELL
        return b"".join(chunks)

    def output(self, ack_only: bool = False) -> int:
        """Send accumulated data; return milliseconds until the next call."""
        seg = Segment(
            conv=self.conv,
            cmd=Command.ACK,
            wnd=self._receive_window_size(),
            sn=self.send_next,
            una=self.recv_next,
        )

        buf = self._buffer
        pos = self.reserved
        last_seg_idx = self.reserved - IKCP_OVERHEAD
        prev_seg_data_len = 0

        def add_padding() -> int:
            nonlocal pos
            if last_seg_idx < self.reserved:
                return 0
            remaining = len(buf) - pos
            if remaining <= 0:
                return 0
            padding = random.randrange(min(MAX_PADDING_SIZE, remaining))
            if padding > 0:
                len_at = last_seg_idx + IKCP_TOTAL_LEN_OFFSET
                total = int.from_bytes(buf[len_at:len_at + 2], "little")
                start = last_seg_idx + IKCP_OVERHEAD + total
                buf[start:start + padding] = os.urandom(padding)
                buf[len_at:len_at + 2] = (total + padding).to_bytes(2, "little")
                pos += padding
                metrics.out_padding_bytes += padding
            return padding

        def emit() -> None:
            add_padding()
            self._output(bytes(buf[:pos]))
            self.last_output_time = time.monotonic()

        def reserve(space: int) -> None:
            nonlocal pos, last_seg_idx, prev_seg_data_len
            if pos + space > self.mtu:
                emit()
                pos = self.reserved
                last_seg_idx = self.reserved - IKCP_OVERHEAD
                prev_seg_data_len = 0

        def flush_buffer() -> None:
            if pos > self.reserved:
                emit()

        def write(chunk: bytes) -> None:
            nonlocal pos
            buf[pos:pos + len(chunk)] = chunk
            pos += len(chunk)

        def write_control() -> None:
            nonlocal last_seg_idx
            reserve(IKCP_OVERHEAD)
            write(seg.encode())
            last_seg_idx += IKCP_OVERHEAD

        for sn, ts in self.ack_list:
            seg.sn, seg.ts = sn, ts
            write_control()
        self.ack_list.clear()

        if ack_only:
            flush_buffer()
            return self.interval

        # Probe the remote window size while it is unknown (0).
        if self.remote_window == 0:
            current = _current_ms()
            if self.probe_wait == 0:
                self.probe_wait = IKCP_PROBE_INIT
                self.ts_probe = (current + self.probe_wait) & _U32
            elif timediff(current, self.ts_probe) >= 0:
                self.probe_wait = max(self.probe_wait, IKCP_PROBE_INIT)
                self.probe_wait = min(self.probe_wait + self.probe_wait // 2, IKCP_PROBE_LIMIT)
                self.ts_probe = (current + self.probe_wait) & _U32
                self.probe |= IKCP_ASK_SEND
        else:
            self.ts_probe = 0
            self.probe_wait = 0

        if self.probe & IKCP_ASK_SEND:
            seg.cmd = Command.WASK
            write_control()
        if self.probe & IKCP_ASK_TELL:
            seg.cmd = Command.WINS
            write_control()
        self.probe = 0

        cwnd = min(self.send_window, self.remote_window)
        if not self.no_congestion_window:
            cwnd = min(self.congestion_window, cwnd)

        # Move segments from the send queue into the send buffer, up to una + cwnd.
        new_segs = 0
        for queued in self.send_queue:
            if timediff(self.send_next, (self.send_una + cwnd) & _U32) >= 0:
                break
            queued.conv = self.conv
            queued.cmd = Command.PUSH
            queued.sn = self.send_next
            self.send_buf.append(queued)
            self.send_next = (self.send_next + 1) & _U32
            new_segs += 1
        del self.send_queue[:new_segs]

        fast_resend = self.fast_resend if self.fast_resend else _U32

        current = _current_ms()
        fast_retrans = early_retrans = lost = 0

        for s in self.send_buf:
            if s.acked:
                continue
            need_send = False
            if s.xmit == 0:
                need_send = True
                s.rto = self.rtt_stats.rto()
                s.resend_ts = (current + s.rto // _MS) & _U32
            elif s.fast_ack >= fast_resend:
                need_send = True
                s.fast_ack = 0
                s.rto = self.rtt_stats.rto()
                s.resend_ts = (current + s.rto // _MS) & _U32
                fast_retrans += 1
            elif s.fast_ack > 0 and new_segs == 0:
                # Early retransmit: nothing new to send, but old segments were skipped.
                need_send = True
                s.fast_ack = 0
                s.rto = self.rtt_stats.rto()
                s.resend_ts = (current + s.rto // _MS) & _U32
                early_retrans += 1
            elif timediff(current, s.resend_ts) >= 0:
                need_send = True
                s.rto += self.rtt_stats.rto()
                s.fast_ack = 0
                s.resend_ts = (current + s.rto // _MS) & _U32
                lost += 1

            if need_send:
                current = _current_ms()
                s.xmit += 1
                s.ts = current
                s.wnd = seg.wnd
                s.una = seg.una
                reserve(IKCP_OVERHEAD + len(s.data))
                write(s.encode())
                write(s.data)
                last_seg_idx += IKCP_OVERHEAD + prev_seg_data_len
                prev_seg_data_len = len(s.data)
                if s.xmit >= self.dead_link:
                    self.disconnected = True

        flush_buffer()

        metrics.lost_segs += lost
        metrics.fast_retrans_segs += fast_retrans
        metrics.early_retrans_segs += early_retrans
        metrics.retrans_segs += lost + fast_retrans + early_retrans

        if not self.no_congestion_window:
            if fast_retrans > 0 or early_retrans > 0:
                # Rate halving.
                inflight = (self.send_next - self.send_una) & _U32
                self.ssthresh = max(inflight // 2, IKCP_THRESH_MIN)
                self.congestion_window = self.ssthresh + self.fast_resend
                self.incr_window_size = self.congestion_window * self.mss
            if lost > 0:
                self.ssthresh = max(cwnd // 2, IKCP_THRESH_MIN)
                self.congestion_window = self.ssthresh
                self.incr_window_size = self.congestion_window * self.mss
            if self.congestion_window < 1:
                self.congestion_window = 1
                self.incr_window_size = self.mss

        return self.interval

    def peek_size(self) -> int:
        """Return the size of the next complete message, or -1 if none is ready."""
        if not self.recv_queue:
            return -1
        first = self.recv_queue[0]
        if first.frg == 0:
            return len(first.data)
        if len(self.recv_queue) < first.frg + 1:
            return -1
        length = 0
        for seg in self.recv_queue:
            length += len(seg.data)
            if seg.frg == 0:
                break
        return length

    def set_mtu(self, mtu: int) -> None:
        """Change the MTU."""
        if mtu < IKCP_OVERHEAD:
            raise InvalidArgumentError(f"MTU is smaller than KCP overhead {IKCP_OVERHEAD}")
        if self.reserved >= self.mtu - IKCP_OVERHEAD or self.reserved < 0:
            raise InvalidArgumentError("no enough space for reserved bytes after set MTU")
        self.mtu = mtu
        self.mss = mtu - IKCP_OVERHEAD - self.reserved
        self._buffer = bytearray(mtu)

    def no_delay(self, interval: int, resend: int, nc: bool) -> None:
        """Set the update interval, fast resend threshold and congestion control."""
        interval = min(max(interval, 10), 100)
        self.rtt_stats.max_ack_delay = 10 * interval * _MS
        self.interval = interval
        self.fast_resend = resend
        self.no_congestion_window = nc

    def set_window_size(self, sndwnd: int, rcvwnd: int) -> None:
        """Set send and receive window sizes; non-positive values are ignored."""
        if sndwnd > 0:
            self.send_window = sndwnd
        if rcvwnd > 0:
            self.recv_window = rcvwnd

    def wait_send_size(self) -> int:
        """Return how many segments are waiting to be sent or acknowledged."""
        return len(self.send_buf) + len(self.send_queue)

    def release_tx(self) -> None:
        """Drop all outgoing segments."""
        self.send_queue.clear()
        self.send_buf.clear()

    # ---- internals ----

    def _grow_congestion_window(self, original_send_una: int) -> None:
        if timediff(self.send_una, original_send_una) <= 0:
            return
        if self.congestion_window >= self.remote_window:
            return
        mss = self.mss
        if self.congestion_window < self.ssthresh:
            # Slow start: one MSS per ACK.
            self.congestion_window += 1
            self.incr_window_size += mss
        else:
            self.incr_window_size = max(self.incr_window_size, mss)
            self.incr_window_size += (mss * mss) // self.incr_window_size + mss // 16
            if (self.congestion_window + 1) * mss <= self.incr_window_size:
                self.congestion_window = (self.incr_window_size + mss - 1) // mss
        if self.congestion_window > self.remote_window:
            self.congestion_window = self.remote_window
            self.incr_window_size = self.remote_window * mss

    def _adjust_send_una(self) -> None:
        self.send_una = self.send_buf[0].sn if self.send_buf else self.send_next

    def _process_ack(self, sn: int) -> None:
        if timediff(sn, self.send_una) < 0 or timediff(sn, self.send_next) >= 0:
            return
        for seg in self.send_buf:
            if timediff(seg.sn, sn) > 0:
                break
            if seg.sn == sn:
                # Leave it in place until una passes it.
                seg.acked = True
                seg.data = b""
                break

    def _process_fast_ack(self, sn: int, ts: int) -> None:
        if timediff(sn, self.send_una) < 0 or timediff(sn, self.send_next) >= 0:
            return
        for seg in self.send_buf:
            if timediff(seg.sn, sn) > 0:
                break
            if seg.sn != sn and timediff(seg.ts, ts) <= 0:
                seg.fast_ack += 1

    def _remove_acked_from_send_buf(self, una: int) -> int:
        count = 0
        for seg in self.send_buf:
            if timediff(una, seg.sn) > 0:
                count += 1
            else:
                break
        del self.send_buf[:count]
        return count

    def _process_received_data(self, new_seg: Segment) -> bool:
        """Insert a received segment into the receive buffer; return True if repeated."""
        sn = new_seg.sn
        if (timediff(sn, (self.recv_next + self.recv_window) & _U32) >= 0
                or timediff(sn, self.recv_next) < 0):
            return True

        insert_idx = 0
        repeat = False
        for i in range(len(self.recv_buf) - 1, -1, -1):
            existing = self.recv_buf[i]
            if existing.sn == sn:
                repeat = True
                break
            if timediff(existing.sn, sn) < 0:
                insert_idx = i + 1
                break

        if not repeat:
            self.recv_buf.insert(insert_idx, new_seg)

        self._move_recv_buf_to_queue()
        return repeat

    def _move_recv_buf_to_queue(self) -> None:
        count = 0
        for seg in self.recv_buf:
            if seg.sn == self.recv_next and len(self.recv_queue) + count < self.recv_window:
                self.recv_next = (self.recv_next + 1) & _U32
                count += 1
            else:
                break
        if count:
            self.recv_queue.extend(self.recv_buf[:count])
            del self.recv_buf[:count]

    def _receive_window_size(self) -> int:
        if len(self.recv_queue) < self.recv_window:
            return self.recv_window - len(self.recv_queue)
        return 0