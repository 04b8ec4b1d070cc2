"""Shared pytest fixtures for rustunnl tests."""

from unittest.mock import Mock

import pytest

from rustunnl.probe import ProcessProbe
from rustunnl.process import TunnelLauncher
from rustunnl.settings import ManagerSettings
from rustunnl.state import StateStore
from rustunnl.supervisor import TunnelSupervisor

DEFAULT_CONFIG = {
    "TARGET_HOST": "u@h",
    "REMOTE_PORT": "33000",
    "LOCAL_TARGET": "10.0.0.5:3000",
}


class FakeClock:
    """Monotonic clock that only moves when something sleeps."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def time(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def settings(tmp_path):
    """Settings rooted in a temporary directory with short timings."""
    return ManagerSettings(
        config_dir=tmp_path / "config",
        state_dir=tmp_path / "state",
        settle_time=0.3,
        settle_timeout=0.5,
        poll_interval=0.1,
        stop_grace_period=0.3,
        kill_wait=0.3,
        restart_pause=0.2,
    )


@pytest.fixture
def store(settings):
    store = StateStore(settings.state_dir, settings.config_dir)
    store.ensure_dirs()
    return store


@pytest.fixture
def key_file(tmp_path):
    """An existing (dummy) SSH private key."""
    path = tmp_path / "id_ed25519"
    path.write_text("not a real key\n")
    path.chmod(0o600)
    return path


@pytest.fixture
def write_config(settings, key_file):
    """Write <name>.env into the config dir.

    Keyword arguments override DEFAULT_CONFIG; a value of None drops the key.
    """

    def _write(name: str = "a", **values):
        data = {**DEFAULT_CONFIG, "SSH_KEY": str(key_file), **values}
        settings.config_dir.mkdir(parents=True, exist_ok=True)
        lines = [f'{key}="{value}"' for key, value in data.items() if value is not None]
        path = settings.config_dir / f"{name}.env"
        path.write_text("\n".join(lines) + "\n")
        return path

    return _write


@pytest.fixture
def alive_pids():
    """Pids the mocked probe reports as alive."""
    return set()


@pytest.fixture
def mock_probe(alive_pids):
    probe = Mock(spec=ProcessProbe)
    probe.is_alive.side_effect = lambda pid: pid in alive_pids
    probe.find_by_pattern.return_value = None
    probe.find_all_by_pattern.return_value = []
    probe.children.return_value = []
    return probe


@pytest.fixture
def mock_process(alive_pids):
    """A spawned autossh that stays in the foreground."""
    process = Mock()
    process.pid = 4242
    process.poll.return_value = None
    alive_pids.add(4242)
    return process


@pytest.fixture
def mock_launcher(mock_process):
    launcher = Mock(spec=TunnelLauncher)
    launcher.launch.return_value = mock_process
    return launcher


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def supervisor(settings, store, mock_probe, mock_launcher, clock):
    """Supervisor over a real StateStore with mocked process access."""
    return TunnelSupervisor(
        settings,
        store=store,
        probe=mock_probe,
        launcher=mock_launcher,
        sleep=clock.sleep,
        clock=clock.time,
    )
