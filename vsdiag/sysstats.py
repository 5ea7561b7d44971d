"""Readers for interface, CPU and memory statistics from ``/proc``."""

from __future__ import annotations

import os
import time
from dataclasses import dataclass
from typing import Callable, Iterable


class StatsError(Exception):
    """Raised when a statistics source cannot be read or understood."""


@dataclass(frozen=True)
class InterfaceCounters:
    """Cumulative byte and drop counters of one network interface."""

    rx_bytes: int
    rx_dropped: int
    tx_bytes: int
    tx_dropped: int


@dataclass(frozen=True)
class InterfaceRates:
    """Throughput in bytes per second and drop ratios of one interface."""

    rx_rate: float = 0.0
    tx_rate: float = 0.0
    rx_drop_rate: float = 0.0
    tx_drop_rate: float = 0.0


@dataclass(frozen=True)
class MemoryUsage:
    """Available and total memory in kB."""

    available: int
    total: int


def _leading_ints(fields: Iterable[str]) -> list[int]:
    values = []
    for field in fields:
        if not field.isdigit():
            break
        values.append(int(field))
    return values


def parse_net_dev(text: str, interface: str) -> InterfaceCounters:
    """Extract the counters of ``interface`` from ``/proc/net/dev`` content."""
    for line in text.splitlines():
        name, sep, rest = line.partition(":")
        if not sep or name.strip() != interface:
            continue
        values = _leading_ints(rest.split())
        if len(values) >= 12:
            return InterfaceCounters(values[0], values[3], values[8], values[11])
        if len(values) >= 9:
            return InterfaceCounters(values[0], values[3], values[8], 0)
        raise StatsError(f"failed to parse {interface} data")
    raise StatsError(f"interface {interface} not found")


def parse_proc_stat(text: str) -> tuple[int, int]:
    """Return ``(total, idle)`` jiffies from the aggregate ``cpu`` line."""
    for line in text.splitlines():
        if line.startswith("cpu "):
            values = _leading_ints(line.split()[1:6])
            if len(values) < 5:
                raise StatsError("malformed cpu line")
            user, nice, system, idle, iowait = values
            return user + nice + system + idle + iowait, idle + iowait
    raise StatsError("no aggregate cpu line")


def parse_meminfo(text: str) -> MemoryUsage:
    """Read MemTotal and MemAvailable (falling back to Cached) in kB."""
    fields: dict[str, int] = {}
    for line in text.splitlines():
        key, sep, rest = line.partition(":")
        parts = rest.split()
        if sep and parts and parts[0].isdigit():
            fields[key.strip()] = int(parts[0])
    total = fields.get("MemTotal", 0)
    available = fields.get("MemAvailable", 0)
    cached = fields.get("Cached", 0)
    if available == 0 and cached != 0:
        available = cached
    if total == 0:
        raise StatsError("MemTotal missing")
    return MemoryUsage(available=available, total=total)


def _read(path: str | os.PathLike[str]) -> str:
    try:
        with open(path, encoding="ascii", errors="replace") as handle:
            return handle.read()
    except OSError as exc:
        raise StatsError(f"cannot read {path}: {exc}") from exc


def read_memory_usage(path: str | os.PathLike[str] = "/proc/meminfo") -> MemoryUsage:
    """Read memory usage from a meminfo file."""
    return parse_meminfo(_read(path))


@dataclass
class _NetSample:
    rx_bytes: int
    tx_bytes: int
    rx_dropped: int
    tx_dropped: int
    when: float


def _drop_ratio(prev_bytes: int, prev_dropped: int, cur_bytes: int, cur_dropped: int) -> float:
    if prev_bytes <= 0 or prev_dropped <= 0:
        return 0.0
    dropped = cur_dropped - prev_dropped
    denominator = (cur_bytes - prev_bytes) + dropped
    return dropped / denominator if denominator else 0.0


class NetworkRateMonitor:
    """Computes per-interface rates from successive ``/proc/net/dev`` readings."""

    def __init__(
        self,
        path: str | os.PathLike[str] = "/proc/net/dev",
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.path = path
        self.clock = clock
        self._previous: dict[str, _NetSample] = {}

    def rate(self, interface: str) -> InterfaceRates:
        """Return rates since the last call; the first call only records a baseline."""
        counters = parse_net_dev(_read(self.path), interface)
        now = self.clock()
        prev = self._previous.get(interface)
        if prev is None:
            # Drop counters are deliberately not part of the baseline.
            self._previous[interface] = _NetSample(
                counters.rx_bytes, counters.tx_bytes, 0, 0, now
            )
            return InterfaceRates()

        elapsed = now - prev.when
        if elapsed <= 0:
            return InterfaceRates()

        rates = InterfaceRates(
            rx_rate=(counters.rx_bytes - prev.rx_bytes) / elapsed,
            tx_rate=(counters.tx_bytes - prev.tx_bytes) / elapsed,
            rx_drop_rate=_drop_ratio(
                prev.rx_bytes, prev.rx_dropped, counters.rx_bytes, counters.rx_dropped
            ),
            tx_drop_rate=_drop_ratio(
                prev.tx_bytes, prev.tx_dropped, counters.tx_bytes, counters.tx_dropped
            ),
        )
        self._previous[interface] = _NetSample(
            counters.rx_bytes,
            counters.tx_bytes,
            counters.rx_dropped,
            counters.tx_dropped,
            now,
        )
        return rates


class CpuMonitor:
    """Computes CPU usage percentage between successive ``/proc/stat`` readings."""

    def __init__(
        self,
        path: str | os.PathLike[str] = "/proc/stat",
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.path = path
        self.clock = clock
        self._total: int | None = None
        self._idle = 0
        self._when = 0.0

    def usage(self) -> float:
        """Return busy percentage since the last call; 0.0 on the first call."""
        total, idle = parse_proc_stat(_read(self.path))
        now = self.clock()
        if self._total is None:
            self._total, self._idle, self._when = total, idle, now
            return 0.0
        if now - self._when <= 0:
            return 0.0
        total_diff = total - self._total
        idle_diff = idle - self._idle
        if total_diff == 0:
            return 0.0
        self._total, self._idle, self._when = total, idle, now
        return 100.0 * (1.0 - idle_diff / total_diff)