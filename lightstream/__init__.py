"""Building blocks for a low-latency streaming client: queues, threads, ciphers, sockets and recorders."""

__version__ = "0.1.0"

__all__ = [
    "addresses",
    "blocking_queue",
    "crypto",
    "platform",
    "recorder",
    "sockets",
    "version",
]