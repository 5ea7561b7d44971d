import signal
import subprocess
from datetime import datetime
from unittest import mock

import pytest

from vsdiag import monitor
from vsdiag.monitor import (
    Monitor,
    Options,
    SystemLogWriter,
    Timer,
    UsageError,
    backup_and_upload,
    check_internet_connection,
    format_interface_info,
    format_log_line,
    main,
    parse_args,
    ping,
)
from vsdiag.sta import ApTopology, NetworkTopology, Station
from vsdiag.sysstats import InterfaceRates

WHEN = datetime(2024, 1, 2, 3, 4, 5)
FTP = "192.0.2.10"


def _fake_run(ping_ok=True):
    calls = []

    def run(args, **kwargs):
        calls.append(list(args))
        code = 0 if (args[0] != "ping" or ping_ok) else 1
        return subprocess.CompletedProcess(args, code)

    return calls, run


def _net_dev(rx, tx):
    return (
        "Inter-|   Receive\n"
        " face |bytes packets\n"
        f"  eth0: {rx} 10 0 0 0 0 0 0 {tx} 20 0 0 0 0 0 0\n"
    )


@pytest.fixture
def env(tmp_path):
    net = tmp_path / "net_dev"
    net.write_text(_net_dev(1000, 2000))
    stat = tmp_path / "stat"
    stat.write_text("cpu  100 0 100 800 0 0 0 0 0 0\n")
    mem = tmp_path / "meminfo"
    mem.write_text("MemTotal: 512000 kB\nMemAvailable: 256000 kB\n")
    search = tmp_path / "search"
    search.mkdir()
    diag = tmp_path / "diag"
    diag.mkdir()
    options = Options(
        net_dev_path=str(net),
        stat_path=str(stat),
        meminfo_path=str(mem),
        log_path=str(tmp_path / "system.log"),
        rssi_log_path=str(tmp_path / "rssi.log"),
    )
    with mock.patch.object(monitor, "LOG_SEARCH_DIR", str(search)), mock.patch.object(
        monitor, "DIAG_DIR", str(diag)
    ), mock.patch.object(monitor, "MEMINFO_SOURCE", str(mem)):
        yield {
            "options": options,
            "net": net,
            "mem": mem,
            "search": search,
            "diag": diag,
            "log": tmp_path / "system.log",
            "rssi": tmp_path / "rssi.log",
        }


def test_timer_due():
    timer = Timer(interval=10, last_check=100)
    assert timer.due(110)
    assert not timer.due(109)


def test_format_interface_info():
    rates = InterfaceRates(rx_rate=2 * 1024 * 1024, tx_rate=0.0, rx_drop_rate=0.5)
    text = format_interface_info("eth0", rates)
    assert text == "eth0: RX=2.00MB/s(50.00%) TX=0.00MB/s(0.00%) "


def test_format_log_line_online():
    line = format_log_line("eth0: x ", 12.5, 256000, 512000, 1, 1, WHEN)
    assert line == (
        "[2024-01-02 03:04:05] eth0: x  CPU=12.50% Mem=250.0/500.0MB NET=1 GW_NET=1\n"
    )


def test_format_log_line_offline_is_flagged():
    line = format_log_line("", 0.0, 256000, 512000, 0, 1, WHEN)
    assert line.startswith("!!![2024-01-02 03:04:05]")
    assert "NET=0 GW_NET=1" in line


def test_format_log_line_low_memory_is_flagged():
    line = format_log_line("", 0.0, monitor.LOW_MEMORY_KB - 1, 512000, 1, 1, WHEN)
    assert line.startswith("!!!")


def test_format_log_line_truncated():
    line = format_log_line("x" * 400, 0.0, 256000, 512000, 1, 1, WHEN)
    assert len(line) == monitor.MAX_LINE_LENGTH - 1
    assert not line.endswith("\n")


def test_parse_args_defaults():
    options = parse_args([])
    assert options.interfaces == ("eth0",)
    assert options.pid == -1
    assert options.ftp_ip is None
    assert options.log_interval == monitor.SYSTEM_LOG_INTERVAL
    assert options.log_sta_rssi == 0


def test_parse_args_values():
    options = parse_args(
        ["-d", "-i", "eth0,wlan0,wlan1", "-s", FTP, "-p", "123", "-l", "30", "-r", "60"]
    )
    assert options.debug
    assert options.interfaces == ("eth0", "wlan0")
    assert options.ftp_ip == FTP
    assert options.pid == 123
    assert options.log_interval == 30
    assert options.log_sta_rssi == 60


def test_parse_args_long_options():
    options = parse_args(["--debug", "--interface=wlan0", "--server", FTP])
    assert options.debug
    assert options.interfaces == ("wlan0",)
    assert options.ftp_ip == FTP


def test_parse_args_invalid_interval_uses_default(capsys):
    options = parse_args(["-l", "0"])
    assert options.log_interval == monitor.SYSTEM_LOG_INTERVAL
    assert "Invalid log interval" in capsys.readouterr().err


@pytest.mark.parametrize("argv", [["--help"], ["-x"], ["-h"]])
def test_parse_args_usage_errors(argv):
    with pytest.raises(UsageError):
        parse_args(argv)


def test_main_help_returns_one(capsys):
    assert main(["--help"]) == 1
    assert capsys.readouterr().out.startswith("Usage: ")


def test_ping_success_and_command():
    calls, run = _fake_run()
    with mock.patch("vsdiag.monitor.subprocess.run", side_effect=run):
        assert ping("host.example.com", 3, 2) is True
    assert calls == [["ping", "-c", "3", "-W", "2", "host.example.com"]]


def test_ping_failure():
    _, run = _fake_run(ping_ok=False)
    with mock.patch("vsdiag.monitor.subprocess.run", side_effect=run):
        assert ping("host.example.com") is False


def test_ping_missing_binary():
    with mock.patch("vsdiag.monitor.subprocess.run", side_effect=FileNotFoundError):
        assert ping("host.example.com") is False


def test_check_internet_stops_at_first_reachable():
    calls, run = _fake_run()
    with mock.patch("vsdiag.monitor.subprocess.run", side_effect=run):
        assert check_internet_connection(["a.example.com", "b.example.com"])
    assert len(calls) == 1


def test_check_internet_all_down():
    calls, run = _fake_run(ping_ok=False)
    with mock.patch("vsdiag.monitor.subprocess.run", side_effect=run):
        assert not check_internet_connection(["a.example.com", "b.example.com"])
    assert [call[-1] for call in calls] == ["a.example.com", "b.example.com"]


def test_backup_and_upload_logs(env):
    search = env["search"]
    agent = search / "em_agent.log.txt"
    agent.write_text("a")
    rotated = search / "em_agent.log.txt.1"
    rotated.write_text("b")
    (search / "em_controller.log.txt").mkdir()
    (search / "other.log").write_text("c")
    calls, run = _fake_run()
    with mock.patch("vsdiag.monitor.subprocess.run", side_effect=run):
        backup_and_upload(FTP, False, WHEN)
    assert calls == [
        ["ftpput", FTP, "/em_agent.log.txt_20240102030405", str(agent)],
        ["ftpput", FTP, "/em_agent.log.txt.1_20240102030405", str(rotated)],
    ]


def test_backup_and_upload_meminfo(env):
    calls, run = _fake_run()
    snapshot = env["diag"] / "meminfo_20240102030405.txt"
    with mock.patch("vsdiag.monitor.subprocess.run", side_effect=run):
        backup_and_upload(FTP, True, WHEN)
    assert calls == [["ftpput", FTP, "/meminfo_20240102030405.txt", str(snapshot)]]
    assert not snapshot.exists()


def test_system_log_writer_rotates(tmp_path):
    path = tmp_path / "sys.log"
    with SystemLogWriter(path, 30) as writer:
        assert writer.write("a" * 19 + "\n") == 20
        writer.write("b" * 19 + "\n")
    assert (tmp_path / "sys.log.0").read_text() == "a" * 19 + "\n"
    assert path.read_text() == "b" * 19 + "\n"


def test_monitor_step_writes_system_log(env):
    _, run = _fake_run()
    mon = Monitor(env["options"])
    now = 1_700_000_000.0
    with mock.patch("vsdiag.monitor.subprocess.run", side_effect=run):
        mon.step(now)
        mon.step(now)
    lines = env["log"].read_text().splitlines()
    assert len(lines) == 1
    assert not lines[0].startswith("!!!")
    assert "eth0: RX=0.00MB/s(0.00%) TX=0.00MB/s(0.00%)" in lines[0]
    assert lines[0].endswith("NET=1 GW_NET=1")
    assert mon.internet_status == 1


def test_monitor_step_computes_rates(env):
    _, run = _fake_run()
    mon = Monitor(env["options"])
    now = 1_700_000_000.0
    interval = env["options"].log_interval
    with mock.patch("vsdiag.monitor.subprocess.run", side_effect=run):
        mon.step(now)
        env["net"].write_text(_net_dev(1000 + 2 * 1024 * 1024 * interval, 2000))
        mon.step(now + interval)
    lines = env["log"].read_text().splitlines()
    assert len(lines) == 2
    assert "RX=2.00MB/s" in lines[1]


def test_monitor_internet_loss_uploads(env):
    agent = env["search"] / "em_agent.log.txt"
    agent.write_text("a")
    env["options"].ftp_ip = FTP
    calls, run = _fake_run(ping_ok=False)
    mon = Monitor(env["options"])
    with mock.patch("vsdiag.monitor.subprocess.run", side_effect=run):
        mon.step(1_700_000_000.0)
    uploads = [call for call in calls if call[0] == "ftpput"]
    assert len(uploads) == 1
    assert uploads[0][3] == str(agent)
    line = env["log"].read_text()
    assert line.startswith("!!!")
    assert "NET=0 GW_NET=0" in line


def test_monitor_low_memory_uploads_meminfo(env, capsys):
    env["mem"].write_text("MemTotal: 512000 kB\nMemAvailable: 1000 kB\n")
    env["options"].ftp_ip = FTP
    calls, run = _fake_run()
    mon = Monitor(env["options"])
    with mock.patch("vsdiag.monitor.subprocess.run", side_effect=run):
        mon.step(1_700_000_000.0)
    uploads = [call for call in calls if call[0] == "ftpput"]
    assert len(uploads) == 1
    assert uploads[0][2].startswith("/meminfo_")
    assert "LOW MEMORY ALERT" in capsys.readouterr().out
    assert env["log"].read_text().startswith("!!!")
    assert list(env["diag"].iterdir()) == []


def test_monitor_upload_request(env):
    (env["search"] / "em_controller.log.txt").write_text("c")
    env["options"].ftp_ip = FTP
    calls, run = _fake_run()
    mon = Monitor(env["options"])
    mon.upload_requested = True
    with mock.patch("vsdiag.monitor.subprocess.run", side_effect=run):
        mon.step(1_700_000_000.0)
    uploads = [call for call in calls if call[0] == "ftpput"]
    assert len(uploads) == 1
    assert mon.upload_requested is False


def test_monitor_hourly_signals_and_uploads(env):
    env["options"].ftp_ip = FTP
    env["options"].pid = 4242
    calls, run = _fake_run()
    mon = Monitor(env["options"])
    with mock.patch("vsdiag.monitor.subprocess.run", side_effect=run), mock.patch(
        "vsdiag.monitor.os.kill"
    ) as kill, mock.patch("vsdiag.monitor.time.sleep"):
        mon.step(1_700_000_000.0)
    assert kill.call_args_list == [mock.call(4242, signal.SIGUSR2)]
    uploads = [call for call in calls if call[0] == "ftpput"]
    assert uploads[0][2].startswith("/easymesh_")
    assert uploads[0][3] == monitor.EASYMESH_LOG
    assert uploads[1][3] == "/proc/4242/status"
    assert mon.internet_status == 1
    assert env["log"].read_text().endswith("NET=1 GW_NET=1\n")


def test_monitor_rssi_log_sorted(env):
    topology = NetworkTopology(
        aps=(
            ApTopology(mac=bytes(6)),
            ApTopology(
                mac=bytes([2, 0, 0, 0, 0, 1]),
                stations=(
                    Station(mac=bytes([2, 0, 0, 0, 0, 2]), rssi=-40),
                    Station(mac=bytes([2, 0, 0, 0, 0, 3]), rssi=-70),
                ),
            ),
        )
    )
    env["options"].log_sta_rssi = 10
    env["options"].topology_source = lambda: topology
    _, run = _fake_run()
    mon = Monitor(env["options"])
    with mock.patch("vsdiag.monitor.subprocess.run", side_effect=run):
        mon.step(1_700_000_000.0)
    text = env["rssi"].read_text()
    assert "STA RSSI Report: APs=1, STAs=2" in text
    assert text.index("RSSI: -70") < text.index("RSSI: -40")