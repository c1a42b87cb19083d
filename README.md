# mieru

Building blocks for a UDP-based proxy transport:

- `mieru.rtt`: `RTTStats` keeps round-trip-time statistics. These are the smoothed RTT, the mean deviation, the minimum RTT and the latest RTT. It uses them to work out a retransmission timeout (`rto()`).
- `mieru.segment` covers the pieces of a KCP segment:
  - `Segment` is the segment header. `Segment.encode()` builds it and `Segment.decode_header()` parses it.
  - `Command` and `command_to_str` give the command codes.
  - `timediff` does 32-bit sequence-number arithmetic.
  - `KCPError` is the base of the protocol errors: `NoEnoughDataError`, `IDNotMatchError`, `OutOfRangeError`, `UnknownCommandError` and `InvalidArgumentError`.
  - The shared `metrics` object is a `KCPMetrics` of transport counters. Read it with `metrics.snapshot()`.
- `mieru.kcp`: `KCP` is a reliable, ordered ARQ state machine. It does the following:
  - splits messages into segments and reassembles them;
  - handles acknowledgements, fast and timeout retransmission, window probing and congestion windows;
  - pads the datagrams it sends with random bytes.
- `mieru.levels`, `mieru.formatter`, `mieru.logger` and `mieru.exported` make up a small structured logger. It has levels and fields. `CliFormatter` and `DaemonFormatter` format output for the command line and for daemons, and `NilFormatter` discards it. A process-wide standard logger is also provided.
- `mieru.logfiles` creates and rotates client log files in the user's cache directory.

## Installation

```
pip install .
```

The package needs nothing beyond the standard library.

## Sending data with KCP

`KCP` does no I/O of its own. To use it:

- give it a callback that takes one `bytes` datagram and puts it on the wire;
- pass incoming datagrams to `input`;
- call `output` on a timer. `output` returns the interval in milliseconds until the next call.

```python
from mieru.kcp import KCP

sent = []

sender = KCP(42, sent.append)
receiver = KCP(42, lambda datagram: None)

sender.send(b"hello")
# The congestion window opens at the end of the first output call,
# so data goes out from the second call on.
for _ in range(2):
    sender.output(False)

for datagram in sent:
    receiver.input(datagram, False)

print(receiver.recv(1500))      # b'hello'
```

`recv(max_size)` returns the next complete message. It raises `NoEnoughDataError` when none is waiting, and `OutOfRangeError` when the message is larger than `max_size`. Malformed input makes `input` raise `NoEnoughDataError`, `IDNotMatchError`, `OutOfRangeError` or `UnknownCommandError`.

Further settings:

- `no_delay(interval, resend, nc)` sets the update interval (clamped to 10–100 ms), the fast-resend threshold, and whether congestion control is switched off.
- `set_window_size` sets the send and receive window sizes.
- `set_mtu` sets the MTU.
- `reserve_bytes` keeps bytes untouched at the start of every datagram.
- `set_stream_mode` is replaced by the `stream_mode` attribute. Set it to `True` to merge small writes into one segment.

Callers must serialise access to one `KCP` instance themselves.

## RTT statistics

```python
from datetime import timedelta
from mieru.rtt import RTTStats

stats = RTTStats()
stats.update_rtt(timedelta(milliseconds=300))
print(stats.smoothed_rtt, stats.mean_deviation)
print(stats.rto())
```

## Logging

```python
from mieru import exported as log
from mieru.formatter import DaemonFormatter

log.set_formatter(DaemonFormatter())
log.set_level("debug")
log.with_field("user", "alice").infof("connected from %s", "127.0.0.1")
```

Format strings use printf-style verbs such as `%s`, `%d`, `%v`, `%q` and `%x`.

- Panic-level calls (`panic`, `panicf`, `panicln`) log the entry and then raise `mieru.logger.LogPanic`, which carries the entry.
- Fatal-level calls log the entry and then call the logger's exit function with status 1. By default that function is `sys.exit`.

A logger of your own can be built with `mieru.logger.Logger(out=..., formatter=..., level=...)`.

To keep client logs on disk:

- `mieru.logfiles.new_client_log_file()` opens a new file for appending in `<user cache dir>/mieru`.
- `remove_old_client_log_files()` keeps only the newest 25 `.log` files.

## What this package does not do

The package holds the transport state machine, the timing statistics and the logging. It has none of the following:

- a command-line program;
- a proxy client or server;
- sockets or encryption;
- a SOCKS5 implementation;
- configuration storage.

Wiring `KCP` to a real UDP socket is left to the caller.

## Running the tests

```
pip install .[test]
pytest
```