"""KCP transport state machine, RTT statistics and structured logging for a proxy."""

__version__ = "1.9.1"

__all__ = [
    "rtt",
    "segment",
    "kcp",
    "levels",
    "formatter",
    "logfiles",
    "logger",
    "exported",
]