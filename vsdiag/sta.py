"""Wireless station statistics: parsing, topology reports and their logs."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field, replace
from datetime import datetime
from pathlib import Path
from typing import Iterable

from vsdiag.rotating_log import RotatingLog

STA_LOG_FILE = "/tmp/vs_diag_dir/sta_monitor.log"
MAX_STA_LOG_SIZE = 512 * 1024
STA_RSSI_LOG = "/tmp/vs_diag_dir/sta_rssi.log"
MAX_RSSI_LOG_SIZE = 1024 * 512
MAX_STA = 128
TARGET_VAPS = ("vap8", "vap9")

_TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"
_TOTAL_RE = re.compile(r"^\s*Total user nums:\s*([+-]?\d+)")
_AID_RE = re.compile(r"^\s*[+-]?\d+:\s*aid:")
_MAC_RE = re.compile(r"^\s*MAC ADDR:\s*(\S{1,17})")
_RSSI_RE = re.compile(r"^\s*RSSI:\s*([+-]?\d+)")


@dataclass
class StaInfo:
    """One associated station as reported by a VAP's ``sta_info`` file."""

    vap: str
    mac: str = ""
    rssi: int = 0


@dataclass(frozen=True)
class Station:
    """A client station seen by an access point in the mesh topology."""

    mac: bytes
    rssi: int = 0
    uplink_rate: int = 0
    downlink_rate: int = 0


@dataclass(frozen=True)
class ApTopology:
    """An access point and the stations attached to it."""

    mac: bytes
    stations: tuple[Station, ...] = ()
    uplink_rate: int = 0
    downlink_rate: int = 0
    rssi: int = 0


@dataclass(frozen=True)
class NetworkTopology:
    """All access points of the mesh; the first entry is the controller itself."""

    aps: tuple[ApTopology, ...] = field(default_factory=tuple)


def parse_sta_info(text: str, vap: str) -> tuple[list[StaInfo], int]:
    """Parse one ``sta_info`` file; return its stations and reported user total.

    The total is accumulated from every "Total user nums" line. When a VAP
    reports users but lists no station records, its count is added once more.
    """
    stations: list[StaInfo] = []
    total = 0
    vap_total = 0
    current: StaInfo | None = None
    has_sta = False

    for line in text.splitlines():
        if "Total user nums:" in line:
            match = _TOTAL_RE.match(line)
            if match:
                vap_total = int(match.group(1))
            total += vap_total
        elif _AID_RE.match(line):
            current = StaInfo(vap=vap)
            has_sta = True
        elif current is not None:
            if "MAC ADDR:" in line:
                match = _MAC_RE.match(line)
                if match:
                    current.mac = match.group(1)
            elif "RSSI:" in line:
                match = _RSSI_RE.match(line)
                if match:
                    current.rssi = int(match.group(1))
                stations.append(current)
                current = None

    if vap_total > 0 and not has_sta:
        total += vap_total
    return stations, total


def collect_sta_stats(
    proc_root: str | os.PathLike[str] = "/proc",
    vaps: Iterable[str] = TARGET_VAPS,
) -> tuple[list[StaInfo], int]:
    """Gather stations of all ``vaps`` (at most ``MAX_STA``) and the user total.

    VAPs whose ``sta_info`` file cannot be read are skipped.
    """
    root = Path(proc_root)
    stations: list[StaInfo] = []
    total = 0
    for vap in vaps:
        try:
            text = (root / vap / "sta_info").read_text(encoding="ascii", errors="replace")
        except OSError:
            continue
        found, vap_total = parse_sta_info(text, vap)
        stations.extend(found[: MAX_STA - len(stations)])
        total += vap_total
    return stations, total


def format_mac(mac: bytes) -> str:
    """Render the first six bytes of ``mac`` as upper-case colon-separated hex."""
    octets = bytes(mac[:6]).ljust(6, b"\0")
    return ":".join(f"{octet:02X}" for octet in octets)


def sort_stations_by_rssi(topology: NetworkTopology) -> NetworkTopology:
    """Return a topology whose stations under each AP are ordered by rising RSSI."""
    return NetworkTopology(
        aps=tuple(
            replace(ap, stations=tuple(sorted(ap.stations, key=lambda sta: sta.rssi)))
            for ap in topology.aps
        )
    )


def format_rssi_report(topology: NetworkTopology, timestamp: str) -> list[str]:
    """Build the report entries: a header, then each remote AP and its stations.

    The first AP in the topology is the controller and is left out.
    """
    remote = topology.aps[1:]
    total_sta = sum(len(ap.stations) for ap in remote)
    entries = [
        f"\n[{timestamp}] STA RSSI Report: APs={len(topology.aps) - 1}, STAs={total_sta}\n"
    ]
    for index, ap in enumerate(remote, start=1):
        entries.append(
            f"AP[{index}] MAC: {format_mac(ap.mac)} STAs={len(ap.stations)}, "
            f"ULRate:{ap.uplink_rate}, DLRate:{ap.downlink_rate}\n"
        )
        entries.extend(
            f"  STA MAC: {format_mac(sta.mac)}, RSSI: {sta.rssi}, "
            f"ULRate: {sta.uplink_rate}, DLRate:{sta.downlink_rate} \n"
            for sta in ap.stations
        )
    return entries


def _stamp(when: datetime | None) -> str:
    return (when or datetime.now()).strftime(_TIMESTAMP_FORMAT)


class StaLogWriter:
    """Appends station snapshots to a size-bounded log."""

    def __init__(
        self,
        path: str | os.PathLike[str] = STA_LOG_FILE,
        max_size: int = MAX_STA_LOG_SIZE,
    ) -> None:
        self.log = RotatingLog(path, max_size)

    def __enter__(self) -> StaLogWriter:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def write(
        self,
        stations: Iterable[StaInfo],
        total: int,
        when: datetime | None = None,
    ) -> None:
        """Write a total line followed by one line per station."""
        timestamp = _stamp(when)
        self.log.rotate_if_full()
        self.log.write(f"[{timestamp}] Total STA: {total}\n")
        for sta in stations:
            self.log.write(f"[{timestamp}] {sta.vap} MAC:{sta.mac} RSSI:{sta.rssi}\n")

    def close(self) -> None:
        self.log.close()


class RssiLogWriter:
    """Appends mesh RSSI reports to a size-bounded log."""

    def __init__(
        self,
        path: str | os.PathLike[str] = STA_RSSI_LOG,
        max_size: int = MAX_RSSI_LOG_SIZE,
    ) -> None:
        self.log = RotatingLog(path, max_size)

    def __enter__(self) -> RssiLogWriter:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def write(self, topology: NetworkTopology, when: datetime | None = None) -> None:
        """Write one report, rotating before any entry that would overflow."""
        self.log.rotate_if_full()
        for entry in format_rssi_report(topology, _stamp(when)):
            self.log.write(entry)

    def close(self) -> None:
        self.log.close()