"""Round-trip time statistics used for retransmission timing."""

from __future__ import annotations

import struct
from dataclasses import dataclass
from datetime import timedelta

RTT_ALPHA = 0.125
ONE_MINUS_ALPHA = 1 - RTT_ALPHA
RTT_BETA = 0.25
ONE_MINUS_BETA = 1 - RTT_BETA
DEFAULT_INITIAL_RTT = timedelta(milliseconds=500)
INF_DURATION = timedelta.max

_ZERO = timedelta(0)
_MICROSECOND = timedelta(microseconds=1)
_MIN_RTO_DEVIATION = timedelta(milliseconds=10)


def _f32(value: float) -> float:
    """Round a float to single precision."""
    return struct.unpack("f", struct.pack("f", value))[0]


@dataclass
class RTTStats:
    """Round-trip statistics of a single connection."""

    min_rtt: timedelta = _ZERO
    latest_rtt: timedelta = _ZERO
    smoothed_rtt: timedelta = _ZERO
    mean_deviation: timedelta = _ZERO
    max_ack_delay: timedelta = _ZERO
    has_measurement: bool = False

    def rto(self) -> timedelta:
        """Return the retransmission timeout."""
        if self.smoothed_rtt == _ZERO:
            return 2 * DEFAULT_INITIAL_RTT
        rto = self.smoothed_rtt + max(4 * self.mean_deviation, _MIN_RTO_DEVIATION)
        return rto + self.max_ack_delay

    def update_rtt(self, sample: timedelta) -> None:
        """Update the statistics with a new RTT sample."""
        if sample == INF_DURATION or sample <= _ZERO:
            return

        if self.min_rtt == _ZERO or self.min_rtt > sample:
            self.min_rtt = sample

        self.latest_rtt = sample
        if not self.has_measurement:
            self.has_measurement = True
            self.smoothed_rtt = sample
            self.mean_deviation = sample // 2
            return

        mean_us = self.mean_deviation // _MICROSECOND
        deviation_us = abs(self.smoothed_rtt - sample) // _MICROSECOND
        smoothed_us = self.smoothed_rtt // _MICROSECOND
        sample_us = sample // _MICROSECOND

        new_mean = _f32(
            _f32(ONE_MINUS_BETA * _f32(mean_us)) + _f32(RTT_BETA * _f32(deviation_us))
        )
        new_smoothed = _f32(
            _f32(_f32(smoothed_us) * ONE_MINUS_ALPHA) + _f32(_f32(sample_us) * RTT_ALPHA)
        )
        self.mean_deviation = timedelta(microseconds=int(new_mean))
        self.smoothed_rtt = timedelta(microseconds=int(new_smoothed))

    def set_initial_rtt(self, t: timedelta) -> None:
        """Set the initial RTT; only allowed before the first measurement."""
        if self.has_measurement:
            raise RuntimeError("initial RTT set after first measurement")
        self.smoothed_rtt = t
        self.latest_rtt = t

    def reset(self) -> None:
        """Reset the RTT measurements."""
        self.latest_rtt = _ZERO
        self.min_rtt = _ZERO
        self.smoothed_rtt = _ZERO
        self.mean_deviation = _ZERO

    def expire_smoothed_metrics(self) -> None:
        """Raise smoothed RTT and mean deviation to the latest observations."""
        self.mean_deviation = max(
            self.mean_deviation, abs(self.smoothed_rtt - self.latest_rtt)
        )
        self.smoothed_rtt = max(self.smoothed_rtt, self.latest_rtt)