"""Periodic system monitor: connectivity, throughput, CPU, memory and log upload."""

from __future__ import annotations

import getopt
import os
import re
import shutil
import signal
import subprocess
import sys
import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Callable, Iterable, Sequence

from vsdiag.rotating_log import RotatingLog
from vsdiag.sta import (
    STA_RSSI_LOG,
    NetworkTopology,
    RssiLogWriter,
    sort_stations_by_rssi,
)
from vsdiag.sysstats import (
    CpuMonitor,
    InterfaceRates,
    NetworkRateMonitor,
    StatsError,
    read_memory_usage,
)

MAX_LINE_LENGTH = 256
LOG_FILE = "/tmp/vs_diag_dir/system_monitor.log"
MAX_LOG_SIZE = 512 * 1000
PING_SERVERS = ("223.5.5.5", "www.baidu.com")
PING_RETRY = 3
PING_TIMEOUT = 2
PING_INTERVAL = 10
STA_INTERVAL = 10
SYSTEM_LOG_INTERVAL = 5
HOUR_INTERVAL = 3600
GATEWAY_IP = "192.168.131.1"
MAX_INTERFACES = 2
LOW_MEMORY_KB = 25 * 1024

DIAG_DIR = "/tmp/vs_diag_dir"
LOG_SEARCH_DIR = "/tmp"
MEMINFO_SOURCE = "/proc/meminfo"
EASYMESH_LOG = "/var/log/dmalloc/easymesh.log"
UPLOADED_LOG_PREFIXES = ("em_agent.log.txt", "em_controller.log.txt")

_LOG_TIMESTAMP = "%Y-%m-%d %H:%M:%S"
_FILE_TIMESTAMP = "%Y%m%d%H%M%S"
_INT_RE = re.compile(r"\s*([+-]?\d+)")


class UsageError(Exception):
    """Raised when the command line asks for help or cannot be parsed."""


@dataclass
class Timer:
    """Fires once ``interval`` seconds have passed since ``last_check``."""

    interval: float
    last_check: float = 0.0

    def due(self, now: float) -> bool:
        return now - self.last_check >= self.interval


@dataclass
class Options:
    """Settings of one monitor run."""

    debug: bool = False
    interfaces: tuple[str, ...] = ("eth0",)
    ftp_ip: str | None = None
    pid: int = -1
    log_interval: int = SYSTEM_LOG_INTERVAL
    log_sta_rssi: int = 0
    net_dev_path: str = "/proc/net/dev"
    stat_path: str = "/proc/stat"
    meminfo_path: str = "/proc/meminfo"
    log_path: str = LOG_FILE
    rssi_log_path: str = STA_RSSI_LOG
    topology_source: Callable[[], NetworkTopology] | None = field(default=None, repr=False)


def _run(args: Sequence[str]) -> int | None:
    try:
        completed = subprocess.run(
            list(args),
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            check=False,
        )
    except OSError:
        return None
    return completed.returncode


def ping(host: str, retries: int = PING_RETRY, timeout: int = PING_TIMEOUT) -> bool:
    """Return True when ``host`` answers a ping."""
    return _run(["ping", "-c", str(retries), "-W", str(timeout), host]) == 0


def check_internet_connection(servers: Iterable[str] = PING_SERVERS) -> bool:
    """Return True as soon as one of ``servers`` is reachable."""
    return any(ping(server) for server in servers)


def format_interface_info(interface: str, rates: InterfaceRates) -> str:
    """Describe one interface's throughput in MB/s and drop percentages."""
    mib = 1024 * 1024
    return (
        f"{interface}: RX={rates.rx_rate / mib:.2f}MB/s({rates.rx_drop_rate * 100:.2f}%) "
        f"TX={rates.tx_rate / mib:.2f}MB/s({rates.tx_drop_rate * 100:.2f}%) "
    )


def format_log_line(
    if_info: str,
    cpu_usage: float,
    mem_available: int,
    mem_total: int,
    internet_status: int,
    gateway_status: int,
    when: datetime | None = None,
) -> str:
    """Build one system log line, flagged with ``!!!`` when offline or low on memory."""
    timestamp = (when or datetime.now()).strftime(_LOG_TIMESTAMP)
    prefix = "" if internet_status else "!!!"
    if mem_available < LOW_MEMORY_KB:
        prefix = "!!!"
    line = (
        f"{prefix}[{timestamp}] {if_info} CPU={cpu_usage:.2f}% "
        f"Mem={mem_available / 1024.0:.1f}/{mem_total / 1024.0:.1f}MB "
        f"NET={int(internet_status)} GW_NET={int(gateway_status)}\n"
    )
    return line[: MAX_LINE_LENGTH - 1]


def _ftpput(ftp_ip: str, remote: str, local: str | os.PathLike[str]) -> None:
    _run(["ftpput", ftp_ip, remote, str(local)])


def _matching_logs(prefix: str) -> list[Path]:
    directory = Path(LOG_SEARCH_DIR)
    return sorted(
        path
        for path in directory.glob(prefix + "*")
        if path.is_file() and not path.is_symlink()
    )


def backup_and_upload(
    ftp_ip: str, upload_meminfo: bool = False, when: datetime | None = None
) -> None:
    """Upload mesh agent/controller logs, and optionally a meminfo snapshot, by FTP."""
    timestamp = (when or datetime.now()).strftime(_FILE_TIMESTAMP)
    for prefix in UPLOADED_LOG_PREFIXES:
        for path in _matching_logs(prefix):
            _ftpput(ftp_ip, f"/{path.name}_{timestamp}", path)

    if upload_meminfo:
        snapshot = Path(DIAG_DIR) / f"meminfo_{timestamp}.txt"
        try:
            shutil.copyfile(MEMINFO_SOURCE, snapshot)
        except OSError:
            pass
        try:
            _ftpput(ftp_ip, f"/meminfo_{timestamp}.txt", snapshot)
        finally:
            snapshot.unlink(missing_ok=True)


def _atoi(text: str) -> int:
    match = _INT_RE.match(text)
    return int(match.group(1)) if match else 0


def _usage(prog: str) -> str:
    return (
        f"Usage: {prog} [OPTIONS]\n"
        "Options:\n"
        "  -d, --debug         Enable debug mode\n"
        "  -i, --interface ETH Network interface (default: eth0)\n"
        f"  -l, --log-interval SEC  System log interval (default: {SYSTEM_LOG_INTERVAL})\n"
        "  -s, --server IP     FTP server IP (optional)\n"
        "  -p, --pid PID       Monitor process PID (optional)\n"
        "  -r  --log sta rssi with interval \n"
        "  -h, --help          Show this help\n"
    )


def parse_args(argv: Sequence[str]) -> Options:
    """Parse command-line arguments (without the program name) into Options."""
    long_options = [
        "debug",
        "interface=",
        "server=",
        "pid=",
        "log-interval=",
        "log-sta-rssi=",
        "help",
    ]
    try:
        pairs, _ = getopt.gnu_getopt(list(argv), "dh:i:s:p:l:r:", long_options)
    except getopt.GetoptError as exc:
        raise UsageError(str(exc)) from exc

    options = Options()
    for flag, value in pairs:
        if flag in ("-d", "--debug"):
            options.debug = True
        elif flag in ("-i", "--interface"):
            names = [name for name in value.split(",") if name]
            options.interfaces = tuple(names[:MAX_INTERFACES])
        elif flag in ("-s", "--server"):
            options.ftp_ip = value
        elif flag in ("-p", "--pid"):
            options.pid = _atoi(value)
        elif flag in ("-l", "--log-interval"):
            interval = _atoi(value)
            if interval <= 0:
                print(
                    f"Invalid log interval: {interval}, using default {SYSTEM_LOG_INTERVAL}",
                    file=sys.stderr,
                )
                interval = SYSTEM_LOG_INTERVAL
            options.log_interval = interval
        elif flag in ("-r", "--log-sta-rssi"):
            options.log_sta_rssi = _atoi(value)
        else:
            raise UsageError("help requested")
    return options


class SystemLogWriter:
    """Appends system log lines to a size-bounded log."""

    def __init__(
        self, path: str | os.PathLike[str] = LOG_FILE, max_size: int = MAX_LOG_SIZE
    ) -> None:
        self.log = RotatingLog(path, max_size)

    def __enter__(self) -> SystemLogWriter:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def write(self, line: str) -> int:
        """Write one line, rotating first if it would overflow; return bytes written."""
        return self.log.write(line)

    def close(self) -> None:
        self.log.close()


class Monitor:
    """Runs the periodic checks and writes their results to the logs."""

    def __init__(self, options: Options) -> None:
        self.options = options
        self.ping_timer = Timer(PING_INTERVAL)
        self.sta_timer = Timer(STA_INTERVAL)
        self.system_timer = Timer(options.log_interval)
        self.hourly_timer = Timer(HOUR_INTERVAL)
        self.rssi_timer = Timer(options.log_sta_rssi)
        self.internet_status = 0
        self.previous_internet_status = 1
        self.upload_requested = False
        self._now = 0.0
        self.network = NetworkRateMonitor(options.net_dev_path, clock=self._clock)
        self.cpu = CpuMonitor(options.stat_path, clock=self._clock)
        self.system_log = SystemLogWriter(options.log_path)
        self.rssi_log = RssiLogWriter(options.rssi_log_path)

    def _clock(self) -> float:
        return self._now

    def _debug(self, message: str) -> None:
        if self.options.debug:
            print(message)

    def _hourly_upload(self, now: float, when: datetime) -> None:
        pid = self.options.pid
        try:
            os.kill(pid, signal.SIGUSR2)
        except OSError:
            return
        time.sleep(1)
        ftp_ip = self.options.ftp_ip
        if not ftp_ip:
            return
        timestamp = when.strftime(_FILE_TIMESTAMP)
        _ftpput(ftp_ip, f"/easymesh_{timestamp}.log", EASYMESH_LOG)
        _ftpput(ftp_ip, f"/proc_status_{timestamp}.txt", f"/proc/{pid}/status")

    def _check_internet(self, when: datetime) -> None:
        current = int(check_internet_connection())
        if self.previous_internet_status == 1 and current == 0 and self.options.ftp_ip:
            backup_and_upload(self.options.ftp_ip, False, when)
        self.internet_status = current
        self.previous_internet_status = current

    def _write_system_log(self, when: datetime) -> None:
        parts = []
        for interface in self.options.interfaces:
            try:
                rates = self.network.rate(interface)
            except StatsError as exc:
                self._debug(f"[network] {exc}")
                continue
            parts.append(format_interface_info(interface, rates))
        if_info = "".join(parts)[: MAX_LINE_LENGTH - 1]

        try:
            cpu_usage = self.cpu.usage()
        except StatsError:
            cpu_usage = -1.0
        gateway_status = int(ping(GATEWAY_IP))

        try:
            memory = read_memory_usage(self.options.meminfo_path)
        except StatsError:
            return
        if memory.available < LOW_MEMORY_KB:
            print(f"!!! LOW MEMORY ALERT: {memory.available / 1024.0:.1f}MB available !!!")
            if self.options.ftp_ip:
                backup_and_upload(self.options.ftp_ip, True, when)

        line = format_log_line(
            if_info,
            cpu_usage,
            memory.available,
            memory.total,
            self.internet_status,
            gateway_status,
            when,
        )
        try:
            self.system_log.write(line)
        except OSError as exc:
            print(f"Failed to write log file: {exc}", file=sys.stderr)

    def _write_rssi_log(self, when: datetime) -> None:
        source = self.options.topology_source
        if source is None:
            return
        try:
            topology = sort_stations_by_rssi(source())
            self.rssi_log.write(topology, when)
        except (OSError, StatsError) as exc:
            self._debug(f"[rssi] {exc}")

    def step(self, now: float) -> None:
        """Run every check that is due at ``now`` (seconds since the epoch)."""
        self._now = now
        when = datetime.fromtimestamp(now)

        if self.hourly_timer.due(now) and self.options.pid != -1:
            self._hourly_upload(now, when)
            self.hourly_timer.last_check = now

        if self.ping_timer.due(now):
            self._check_internet(when)
            self.ping_timer.last_check = now

        if self.system_timer.due(now):
            self._write_system_log(when)
            self.system_timer.last_check = now

        if self.rssi_timer.due(now) and self.options.log_sta_rssi > 0:
            self._write_rssi_log(when)
            self.sta_timer.last_check = now

        if self.upload_requested and self.options.ftp_ip:
            backup_and_upload(self.options.ftp_ip, False, when)
            self.upload_requested = False

    def _request_upload(self, signum: int, frame: object) -> None:
        self.upload_requested = True

    def run(self) -> None:
        """Check once a second until interrupted."""
        usr2 = getattr(signal, "SIGUSR2", None)
        if usr2 is not None:
            signal.signal(usr2, self._request_upload)
        os.makedirs(Path(DIAG_DIR) / "log_backup", exist_ok=True)
        try:
            while True:
                self.step(time.time())
                time.sleep(1)
        finally:
            self.system_log.close()
            self.rssi_log.close()


def main(argv: Sequence[str] | None = None) -> int:
    """Command-line entry point."""
    args = sys.argv[1:] if argv is None else list(argv)
    try:
        options = parse_args(args)
    except UsageError:
        print(_usage("vsdiag"), end="")
        return 1
    try:
        Monitor(options).run()
    except KeyboardInterrupt:
        return 0
    return 0


if __name__ == "__main__":
    sys.exit(main())