# vsdiag

`vsdiag` is a small diagnostics daemon for Linux home gateways. Once a
second it checks which of its periodic tasks are due and runs them:

- every 10 seconds, checks internet connectivity by pinging `223.5.5.5`
  and `www.baidu.com` (the first that answers is enough);
- every log interval (5 seconds by default):
  - measures per-interface receive/transmit rates and drop ratios from
    `/proc/net/dev`;
  - measures CPU usage from `/proc/stat` and memory from `/proc/meminfo`;
  - pings the local gateway `192.168.131.1`;
  - appends a one-line summary to `/tmp/vs_diag_dir/system_monitor.log`,
    prefixed with `!!!` when the internet is down or less than 25 MB of
    memory is available.

The first reading of an interface or of the CPU only records a baseline,
so its rates are reported as zero.

The log rotates at 512,000 bytes: the full file is renamed with a `.0`
suffix and a new one is started. On start-up the directory
`/tmp/vs_diag_dir/log_backup` is created.

When an FTP server is given, files matching `/tmp/em_agent.log.txt*` and
`/tmp/em_controller.log.txt*` are uploaded with the `ftpput` command:

- when connectivity is lost;
- when memory runs low (together with a copy of `/proc/meminfo`; a
  `LOW MEMORY ALERT` is also printed);
- when the daemon receives `SIGUSR2`.

When a process id is given, that process is sent `SIGUSR2` every hour;
if an FTP server is also given, `/var/log/dmalloc/easymesh.log` and
`/proc/<pid>/status` are then uploaded.

The `ping` and `ftpput` commands must be available on the `PATH`.

## Installation

```
pip install .
```

## Usage

```
vsdiag [OPTIONS]
```

Options:

- `-d`, `--debug` — print messages about interfaces that cannot be read
- `-i`, `--interface ETH[,ETH]` — interfaces to monitor, comma separated,
  at most two (default: `eth0`)
- `-l`, `--log-interval SEC` — system log interval in seconds (default: 5);
  a value that is not positive falls back to the default
- `-s`, `--server IP` — FTP server for log uploads (optional)
- `-p`, `--pid PID` — process to signal hourly (optional)
- `-r`, `--log-sta-rssi SEC` — interval of the station RSSI report (see
  below)
- `--help` — show help and exit with status 1

Example:

```
vsdiag -i eth0,vap8 -l 10 -s 192.0.2.10
```

The daemon runs until interrupted.

## Library use

The building blocks can be used on their own.

```python
from datetime import datetime

from vsdiag.rotating_log import RotatingLog
from vsdiag.sysstats import read_memory_usage, NetworkRateMonitor, CpuMonitor
from vsdiag.sta import collect_sta_stats, StaLogWriter

print(read_memory_usage())           # MemoryUsage(available=..., total=...) in kB

net = NetworkRateMonitor()
net.rate("eth0")                     # baseline, all zeros
# ... later ...
print(net.rate("eth0"))              # InterfaceRates in bytes/s and drop ratios

with RotatingLog("/tmp/example.log", 512 * 1024) as log:
    log.write("hello\n")

stations, total = collect_sta_stats()  # reads /proc/vap8/sta_info, /proc/vap9/sta_info
with StaLogWriter("/tmp/sta.log") as writer:
    writer.write(stations, total, datetime.now())
```

Modules:

- `vsdiag.rotating_log` — `RotatingLog`, a size-bounded append log with a
  single `.0` backup.
- `vsdiag.sysstats` — parsers for `/proc/net/dev`, `/proc/stat` and
  `/proc/meminfo` (`parse_net_dev`, `parse_proc_stat`, `parse_meminfo`,
  `read_memory_usage`), and the `NetworkRateMonitor` and `CpuMonitor`
  classes. Errors are raised as `StatsError`.
- `vsdiag.sta` — parsing of per-VAP `sta_info` files (`parse_sta_info`,
  `collect_sta_stats`), the mesh topology types (`NetworkTopology`,
  `ApTopology`, `Station`), `sort_stations_by_rssi`, `format_rssi_report`,
  and the log writers `StaLogWriter` and `RssiLogWriter`.
- `vsdiag.monitor` — the daemon: `Options`, `parse_args`, `Monitor`
  (`step(now)` runs one round of due checks, `run()` loops), and `main`.

## What it does not do

- The package has no way of querying the mesh controller for its
  topology. The station RSSI report is written only when a program builds
  `Options` with a `topology_source` callable returning a
  `NetworkTopology`; from the command line `-r` has no effect.
- The daemon does not write the per-VAP station log; `StaLogWriter` is
  available for library use only.

## Running the tests

```
pip install .[test]
pytest
```