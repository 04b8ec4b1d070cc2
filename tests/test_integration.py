"""End-to-end lifecycle tests with a fake autossh script.

These run real processes: the launcher spawns a shell script standing in for
autossh, and the probe reads the real process table.
"""

import contextlib
import os
import signal
import sys
import textwrap

import pytest

from rustunnl.probe import ProcessProbe
from rustunnl.settings import ManagerSettings
from rustunnl.supervisor import Outcome, TunnelState, TunnelSupervisor

pytestmark = pytest.mark.skipif(sys.platform == "win32", reason="POSIX process model")

FOREGROUND_SCRIPT = """\
#!/bin/sh
echo "fake autossh $*"
while true; do sleep 1; done
"""

# Behaves like `autossh -f`: the launched pid exits, a copy keeps running
FORKING_SCRIPT = """\
#!/bin/sh
echo "fake autossh forking $*"
( while true; do sleep 1; done ) &
exit 0
"""

FAILING_SCRIPT = """\
#!/bin/sh
echo "u@h: Permission denied (publickey)."
exit 255
"""


@pytest.fixture
def make_autossh(tmp_path):
    def _make(script: str):
        path = tmp_path / "bin" / "autossh"
        path.parent.mkdir(exist_ok=True)
        path.write_text(textwrap.dedent(script))
        path.chmod(0o755)
        return path

    return _make


@pytest.fixture
def real_supervisor(tmp_path):
    created = []

    def _build(binary) -> TunnelSupervisor:
        settings = ManagerSettings(
            config_dir=tmp_path / "config",
            state_dir=tmp_path / "state",
            autossh_binary=str(binary),
            settle_time=0.3,
            settle_timeout=3.0,
            poll_interval=0.05,
            stop_grace_period=2.0,
            kill_wait=1.0,
            restart_pause=0.1,
        )
        supervisor = TunnelSupervisor(settings)
        created.append(supervisor)
        return supervisor

    yield _build

    # Never leave fake tunnels behind, whatever the test did
    probe = ProcessProbe()
    for supervisor in created:
        for name in supervisor.store.list_names():
            config = supervisor.loader.load(name, require_key=False)
            pattern = rf"autossh.* -R {config.remote_port}:"
            for pid in probe.find_all_by_pattern(pattern):
                for stray in [*probe.children(pid), pid]:
                    with contextlib.suppress(ProcessLookupError):
                        os.kill(stray, signal.SIGKILL)


def test_start_status_stop_scenario(make_autossh, real_supervisor, write_config):
    supervisor = real_supervisor(make_autossh(FOREGROUND_SCRIPT))
    write_config("a", REMOTE_PORT="47101")

    started = supervisor.start("a")

    assert started.outcome == Outcome.STARTED
    report = supervisor.status("a")
    assert report.state == TunnelState.RUNNING
    assert supervisor.probe.is_alive(report.pid)
    assert supervisor.store.get("a").pid == started.pid
    log = supervisor.store.log_path("a").read_text()
    assert "fake autossh -M 0 -N" in log
    assert "-R 47101:10.0.0.5:3000 u@h" in log
    assert f"Tunnel started (PID: {started.pid})" in log

    stopped = supervisor.stop("a")

    assert stopped.outcome == Outcome.STOPPED
    assert supervisor.status("a").state == TunnelState.STOPPED
    assert supervisor.store.get("a") is None
    assert not supervisor.probe.is_alive(started.pid)
    assert "Tunnel stopped" in supervisor.store.log_path("a").read_text()


def test_stop_twice_is_idempotent(make_autossh, real_supervisor, write_config):
    supervisor = real_supervisor(make_autossh(FOREGROUND_SCRIPT))
    write_config("a", REMOTE_PORT="47102")
    supervisor.start("a")

    assert supervisor.stop("a").outcome == Outcome.STOPPED
    assert supervisor.stop("a").outcome == Outcome.NOT_RUNNING
    assert supervisor.store.get("a") is None


def test_start_twice_keeps_one_process(make_autossh, real_supervisor, write_config):
    supervisor = real_supervisor(make_autossh(FOREGROUND_SCRIPT))
    write_config("a", REMOTE_PORT="47103")

    first = supervisor.start("a")
    second = supervisor.start("a")

    assert second.outcome == Outcome.ALREADY_RUNNING
    assert second.pid == first.pid
    assert supervisor.probe.find_all_by_pattern(r"autossh.* -R 47103:") == [first.pid]
    supervisor.stop("a")


def test_externally_killed_tunnel_reads_as_stopped(make_autossh, real_supervisor, write_config):
    supervisor = real_supervisor(make_autossh(FOREGROUND_SCRIPT))
    write_config("a", REMOTE_PORT="47104")
    started = supervisor.start("a")

    for child in supervisor.probe.children(started.pid):
        os.kill(child, signal.SIGKILL)
    os.kill(started.pid, signal.SIGKILL)

    assert supervisor.status("a").state == TunnelState.STOPPED
    assert supervisor.store.get("a") is None


def test_restart_gets_new_pid(make_autossh, real_supervisor, write_config):
    supervisor = real_supervisor(make_autossh(FOREGROUND_SCRIPT))
    write_config("a", REMOTE_PORT="47105")
    first = supervisor.start("a")

    restarted = supervisor.restart("a")

    assert restarted.outcome == Outcome.RESTARTED
    assert restarted.previous_pid == first.pid
    assert restarted.pid != first.pid
    assert not supervisor.probe.is_alive(first.pid)
    assert supervisor.probe.is_alive(restarted.pid)
    supervisor.stop("a")


def test_forking_launcher_pid_is_recovered(make_autossh, real_supervisor, write_config):
    supervisor = real_supervisor(make_autossh(FORKING_SCRIPT))
    write_config("a", REMOTE_PORT="47106")

    started = supervisor.start("a")

    assert supervisor.probe.is_alive(started.pid)
    assert supervisor.probe.find_by_pattern(r"autossh.* -R 47106:") == started.pid

    supervisor.stop("a")
    assert supervisor.probe.find_all_by_pattern(r"autossh.* -R 47106:") == []


def test_failing_launch_reports_log(make_autossh, real_supervisor, write_config):
    from rustunnl.common.exceptions import LaunchFailedError  # noqa: PLC0415

    supervisor = real_supervisor(make_autossh(FAILING_SCRIPT))
    write_config("a", REMOTE_PORT="47107")

    with pytest.raises(LaunchFailedError) as exc_info:
        supervisor.start("a")

    assert "u@h: Permission denied (publickey)." in exc_info.value.log_tail
    assert supervisor.store.get("a") is None


def test_same_forward_to_other_host_is_left_alone(
    make_autossh, real_supervisor, write_config
):
    supervisor = real_supervisor(make_autossh(FOREGROUND_SCRIPT))
    write_config("a", TARGET_HOST="u@host-a", REMOTE_PORT="47108")
    write_config("b", TARGET_HOST="u@host-b", REMOTE_PORT="47108")
    other = supervisor.start("b")

    assert supervisor.stop("a").outcome == Outcome.NOT_RUNNING
    assert supervisor.probe.is_alive(other.pid)

    started = supervisor.start("a")
    supervisor.stop("a")

    assert not supervisor.probe.is_alive(started.pid)
    assert supervisor.probe.is_alive(other.pid)
    assert supervisor.status("b").pid == other.pid
    supervisor.stop("b")
