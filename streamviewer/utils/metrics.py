# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

import time
from collections import deque


class RateMeter:
    """Rolling event/byte rate over a short timestamp window."""

    def __init__(self, window_s: float = 2.5):
        self.window_s = float(window_s)
        self.samples: deque[tuple[float, int]] = deque()

    def tick(self, t: float, size: int = 0) -> None:
        """Record an event at time t carrying size bytes."""
        self.samples.append((t, size))
        cut = t - self.window_s
        while self.samples and self.samples[0][0] < cut:
            self.samples.popleft()

    def rate_hz(self) -> float:
        n = len(self.samples)
        if n < 2:
            return 0.0
        duration = self.samples[-1][0] - self.samples[0][0]
        return (n - 1) / duration if duration > 0 else 0.0

    def bitrate_bps(self) -> float:
        n = len(self.samples)
        if n < 2:
            return 0.0
        duration = self.samples[-1][0] - self.samples[0][0]
        if duration <= 0:
            return 0.0
        # The first sample opens the window; its payload arrived before it
        total = sum(size for _, size in list(self.samples)[1:])
        return total * 8 / duration

    def clear(self) -> None:
        self.samples.clear()


class ReceiveTracker:
    """Tracks datagram receive statistics for a UDP source."""

    def __init__(self, log_interval_s: float = 5.0):
        self.log_interval_s = log_interval_s
        self.last_log = time.perf_counter()
        self.meter = RateMeter()

        self.datagrams = 0
        self.bytes_received = 0
        self.realigned = 0
        self.unsynced = 0
        self.timeouts = 0

    def record_datagram(self, size: int) -> None:
        self.meter.tick(time.perf_counter(), size)
        self.datagrams += 1
        self.bytes_received += size

    def record_realign(self) -> None:
        self.realigned += 1

    def record_unsynced(self) -> None:
        self.unsynced += 1

    def record_timeout(self) -> None:
        self.timeouts += 1

    def should_log(self) -> bool:
        return self.log_interval_s > 0 and (time.perf_counter() - self.last_log) >= self.log_interval_s

    def get_metrics_and_reset(self) -> dict:
        """Get current metrics and reset counters."""
        metrics = {
            "pps": self.meter.rate_hz(),
            "kbps": self.meter.bitrate_bps() / 1000.0,
            "datagrams": self.datagrams,
            "bytes": self.bytes_received,
            "realigned": self.realigned,
            "unsynced": self.unsynced,
            "timeouts": self.timeouts,
        }

        self.datagrams = 0
        self.bytes_received = 0
        self.realigned = 0
        self.unsynced = 0
        self.timeouts = 0
        self.last_log = time.perf_counter()

        return metrics

    def format(self, metrics: dict) -> str:
        return (
            f"pps={metrics['pps']:.0f} rate={metrics['kbps']:.0f}kbps "
            f"dgrams={metrics['datagrams']} bytes={metrics['bytes']} "
            f"realigned={metrics['realigned']} unsynced={metrics['unsynced']} "
            f"timeouts={metrics['timeouts']}"
        )
